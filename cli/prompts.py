"""Interactive prompts on stdin.

Ctrl+C or end of input at a prompt raises ``PromptCancelled``.
"""

from dataclasses import dataclass

from config.constants import ESP_TARGETS
from services.ports import SerialDevice


class PromptCancelled(Exception):
    """The user aborted a prompt."""


@dataclass
class Choice:
    value: str
    label: str
    hint: str | None = None


def _ask(message: str) -> str:
    try:
        return input(message)
    except (EOFError, KeyboardInterrupt) as e:
        raise PromptCancelled("Operation cancelled") from e


def confirm(message: str, default: bool = True) -> bool:
    suffix = "[Y/n]" if default else "[y/N]"
    while True:
        answer = _ask(f"? {message} {suffix} ").strip().lower()
        if not answer:
            return default
        if answer in ("y", "yes"):
            return True
        if answer in ("n", "no"):
            return False


def text(message: str, default: str | None = None) -> str:
    """Ask for a non-empty value; an empty answer takes ``default``."""
    prompt = f"? {message} ({default}) " if default else f"? {message} "
    while True:
        answer = _ask(prompt).strip()
        if answer:
            return answer
        if default:
            return default


def select(message: str, choices: list[Choice]) -> str:
    """Numbered menu; accepts the number or the value itself."""
    print(f"? {message}")
    for index, choice in enumerate(choices, start=1):
        hint = f" ({choice.hint})" if choice.hint else ""
        print(f"  {index}) {choice.label}{hint}")

    values = {choice.value for choice in choices}
    while True:
        answer = _ask(f"  Select [1-{len(choices)}]: ").strip()
        if answer in values:
            return answer
        if answer.isdigit() and 1 <= int(answer) <= len(choices):
            return choices[int(answer) - 1].value


def select_target() -> str:
    return select(
        "Select target chip",
        [
            Choice(t.id, t.name, t.description + ("" if t.stable else " (preview)"))
            for t in ESP_TARGETS
        ],
    )


def select_language() -> str:
    return select(
        "Select language",
        [
            Choice("c", "C", "Standard C project"),
            Choice("cpp", "C++", 'C++ with extern "C" linkage'),
        ],
    )


def select_device(devices: list[SerialDevice]) -> str:
    if len(devices) == 1:
        return devices[0].port
    return select(
        "Select device",
        [Choice(d.port, d.port, d.esp_chip or d.chip or d.manufacturer) for d in devices],
    )
