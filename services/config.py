"""Per-project ``.espcli`` file holding the last used target, port and bauds.

The file is ``key=value`` lines; ``#`` starts a comment. A JSON object with
the same keys (or their camelCase forms) is accepted when reading.
"""

import json
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path

from config.constants import CONFIG_FILENAME
from core.exceptions import ConfigurationError, ErrorCode
from core.result import Result
from observability import get_logger

logger = get_logger("services.config")

_JSON_ALIASES = {"flashBaud": "flash_baud", "monitorBaud": "monitor_baud"}


@dataclass
class ProjectConfig:
    target: str | None = None
    port: str | None = None
    flash_baud: int | None = None
    monitor_baud: int | None = None

    def to_dict(self) -> dict:
        return {key: value for key, value in asdict(self).items() if value is not None}


def _int_or_none(value) -> int | None:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return None
    return number or None


def _from_mapping(values: dict) -> ProjectConfig:
    config = ProjectConfig()
    known = {f.name for f in fields(ProjectConfig)}
    for raw_key, value in values.items():
        key = _JSON_ALIASES.get(raw_key, raw_key)
        if key not in known or value in (None, ""):
            continue
        if key in {"flash_baud", "monitor_baud"}:
            value = _int_or_none(value)
        else:
            value = str(value)
        config = replace(config, **{key: value})
    return config


def parse_config(content: str) -> ProjectConfig:
    """Parse ``.espcli`` content. Unknown keys and malformed lines are ignored."""
    stripped = content.strip()
    if stripped.startswith("{"):
        try:
            data = json.loads(stripped)
        except json.JSONDecodeError:
            data = None
        if isinstance(data, dict):
            return _from_mapping(data)

    values = {}
    for line in content.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        values[key.strip()] = value.strip()
    return _from_mapping(values)


def serialize_config(config: ProjectConfig) -> str:
    lines = [f"{key}={value}" for key, value in config.to_dict().items()]
    return "\n".join(lines) + "\n"


def config_path(project_dir: str | Path) -> Path:
    return Path(project_dir) / CONFIG_FILENAME


def config_exists(project_dir: str | Path) -> bool:
    return config_path(project_dir).is_file()


def load_config(project_dir: str | Path) -> ProjectConfig:
    """Load the project config, or an empty one when missing or unreadable."""
    path = config_path(project_dir)
    try:
        content = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return ProjectConfig()
    except (OSError, UnicodeDecodeError) as e:
        logger.warning("Could not read project config", path=str(path), reason=str(e))
        return ProjectConfig()
    return parse_config(content)


def save_config(project_dir: str | Path, config: ProjectConfig) -> Result[None]:
    path = config_path(project_dir)
    try:
        path.write_text(serialize_config(config), encoding="utf-8")
    except OSError as e:
        return Result.fail(
            ConfigurationError(
                f"Failed to write config: {path}", code=ErrorCode.CONFIG_WRITE_FAILED, cause=e
            )
        )
    return Result.ok()


def update_config(project_dir: str | Path, **updates) -> Result[ProjectConfig]:
    """Merge ``updates`` into the saved config and write it back.

    ``None`` values leave the existing entry untouched.
    """
    merged = replace(
        load_config(project_dir),
        **{key: value for key, value in updates.items() if value is not None},
    )
    saved = save_config(project_dir, merged)
    if not saved:
        return saved
    return Result.ok(merged)
