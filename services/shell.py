"""Login shell detection and ESP-IDF export line management."""

import os
from dataclasses import dataclass
from pathlib import Path

from config.constants import SHELL_CONFIGS
from core.exceptions import ConfigurationError, ErrorCode
from core.result import Result


@dataclass
class ShellInfo:
    type: str
    config_path: Path | None


def detect_shell() -> str:
    """Shell name from ``$SHELL``: zsh, bash, fish or unknown."""
    shell = os.environ.get("SHELL", "")
    for name in ("zsh", "bash", "fish"):
        if name in shell:
            return name
    return "unknown"


def get_shell_info() -> ShellInfo:
    shell_type = detect_shell()
    config_file = SHELL_CONFIGS.get(shell_type)
    return ShellInfo(shell_type, Path.home() / config_file if config_file else None)


def get_export_command(idf_path: str | Path) -> str:
    """Line that loads the ESP-IDF environment in the user's shell."""
    if detect_shell() == "fish":
        return f"source {idf_path}/export.fish"
    return f". {idf_path}/export.sh"


def is_line_in_shell_config(line: str) -> bool:
    info = get_shell_info()
    if info.config_path is None:
        return False
    try:
        return line in info.config_path.read_text(encoding="utf-8")
    except OSError:
        return False


def add_to_shell_config(line: str) -> Result[None]:
    """Append ``line`` to the shell's rc file unless it is already there.

    Returns:
        Result, failing with SHELL_UNSUPPORTED or SHELL_CONFIG_FAILED.
    """
    info = get_shell_info()
    if info.config_path is None:
        return Result.fail(
            ConfigurationError(
                f"Unsupported shell: {info.type}", code=ErrorCode.SHELL_UNSUPPORTED
            )
        )

    if is_line_in_shell_config(line):
        return Result.ok()

    try:
        info.config_path.parent.mkdir(parents=True, exist_ok=True)
        with info.config_path.open("a", encoding="utf-8") as f:
            f.write(f"\n{line}\n")
    except OSError as e:
        return Result.fail(
            ConfigurationError(
                f"Failed to modify shell config: {info.config_path}",
                code=ErrorCode.SHELL_CONFIG_FAILED,
                cause=e,
            )
        )
    return Result.ok()
