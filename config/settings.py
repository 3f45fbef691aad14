"""Runtime settings for espcli.

Settings come from defaults, then an optional JSON file
(``~/.espcli/config.json``), then ``ESPCLI_*`` environment variables.
"""

import json
import os
from dataclasses import dataclass, field, fields
from pathlib import Path

from .constants import DEFAULT_ESP_PATH, DEFAULT_IDF_PATH

SETTINGS_DIR = Path.home() / ".espcli"
DEFAULT_SETTINGS_FILE = SETTINGS_DIR / "config.json"


@dataclass
class ToolTimeouts:
    """Timeouts, in seconds, for bounded external calls.

    Attributes:
        health_check: Version probes run by ``doctor`` (python3, git, esptool).
        python_env: Probing a candidate IDF python interpreter.
        list_ports: Serial port enumeration.
        chip_detect: ``esptool chip_id`` per port.
        terminate: Grace period between SIGTERM and SIGKILL for batch runs.
        interactive_kill: Grace period after ``stop()`` before SIGKILL.
    """

    health_check: float = 3.0
    python_env: float = 2.0
    list_ports: float = 5.0
    chip_detect: float = 10.0
    terminate: float = 2.0
    interactive_kill: float = 1.0

    def get_timeout(self, name: str, default: float = 3.0) -> float:
        return float(getattr(self, name, default))


@dataclass
class PathSettings:
    """Filesystem locations.

    Attributes:
        esp_path: Directory ESP-IDF is cloned into by ``install``.
        idf_path: Default ESP-IDF location when IDF_PATH is unset.
        log_dir: Directory for log files.
        metrics_file: Optional JSON file for persisted operation metrics.
    """

    esp_path: Path = DEFAULT_ESP_PATH
    idf_path: Path = DEFAULT_IDF_PATH
    log_dir: Path = SETTINGS_DIR / "logs"
    metrics_file: Path | None = None


@dataclass
class ServerSettings:
    host: str = "127.0.0.1"
    port: int = 3000
    mcp_port: int = 8090
    cors_origins: list[str] = field(default_factory=lambda: ["*"])


@dataclass
class LoggingSettings:
    level: str = "WARNING"
    console_enabled: bool = True
    json_enabled: bool = True


@dataclass
class Settings:
    """All espcli settings.

    Attributes:
        paths: Filesystem locations.
        timeouts: Bounded call timeouts.
        server: HTTP/WebSocket and MCP server settings.
        logging: Logging output settings.
    """

    paths: PathSettings = field(default_factory=PathSettings)
    timeouts: ToolTimeouts = field(default_factory=ToolTimeouts)
    server: ServerSettings = field(default_factory=ServerSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)


# Environment variable -> (section, key)
ENV_OVERRIDES = {
    "ESPCLI_ESP_PATH": ("paths", "esp_path"),
    "ESPCLI_IDF_PATH": ("paths", "idf_path"),
    "ESPCLI_LOG_DIR": ("paths", "log_dir"),
    "ESPCLI_METRICS_FILE": ("paths", "metrics_file"),
    "ESPCLI_HOST": ("server", "host"),
    "ESPCLI_PORT": ("server", "port"),
    "ESPCLI_MCP_PORT": ("server", "mcp_port"),
    "ESPCLI_LOG_LEVEL": ("logging", "level"),
}


def _coerce(section: object, key: str, value):
    """Convert a raw JSON/env value to the type of the existing field."""
    current = getattr(section, key)
    if key in {"esp_path", "idf_path", "log_dir", "metrics_file"}:
        return Path(value).expanduser() if value else None
    if isinstance(current, bool):
        if isinstance(value, str):
            return value.strip().lower() in {"1", "true", "yes", "on"}
        return bool(value)
    if isinstance(current, int):
        return int(value)
    if isinstance(current, float):
        return float(value)
    if isinstance(current, list):
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return list(value)
    return value


def _apply(settings: Settings, section_name: str, values: dict) -> None:
    section = getattr(settings, section_name)
    known = {f.name for f in fields(section)}
    for key, value in values.items():
        if key not in known:
            raise ValueError(f"Unknown setting: {section_name}.{key}")
        setattr(section, key, _coerce(section, key, value))


def load_settings(config_path: Path | None = None, env: dict | None = None) -> Settings:
    """Load settings from a JSON file and environment overrides.

    Args:
        config_path: JSON file, defaults to ``~/.espcli/config.json``.
            A missing file is not an error.
        env: Environment mapping, defaults to ``os.environ``.

    Returns:
        Settings instance.

    Raises:
        ValueError: If the file is not valid JSON or names unknown settings.
    """
    settings = Settings()
    path = Path(config_path) if config_path else DEFAULT_SETTINGS_FILE

    if path.is_file():
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid settings file {path}: {e}") from e
        if not isinstance(data, dict):
            raise ValueError(f"Invalid settings file {path}: expected an object")
        for section_name, values in data.items():
            if section_name not in {f.name for f in fields(Settings)}:
                raise ValueError(f"Unknown settings section: {section_name}")
            _apply(settings, section_name, values)

    env = os.environ if env is None else env
    for variable, (section_name, key) in ENV_OVERRIDES.items():
        if env.get(variable):
            _apply(settings, section_name, {key: env[variable]})

    return settings


_settings: Settings | None = None


def get_settings() -> Settings:
    """Get the process-wide settings, loading them on first use."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def set_settings(settings: Settings) -> None:
    global _settings
    _settings = settings


def reset_settings() -> None:
    global _settings
    _settings = None
