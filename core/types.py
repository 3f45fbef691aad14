"""Configuration and result types for the operations."""

from dataclasses import dataclass, field, fields
from pathlib import Path

from config.constants import DEFAULT_ESP_PATH

LANGUAGES = ("c", "cpp")


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


class _Payload:
    """camelCase ``to_dict`` for results sent over the event bus and HTTP."""

    def to_dict(self) -> dict:
        data = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, Path):
                value = str(value)
            data[_camel(f.name)] = value
        return data


@dataclass
class InstallConfig:
    path: Path = DEFAULT_ESP_PATH
    target: str = "all"
    add_to_shell: bool = True

    @property
    def idf_path(self) -> Path:
        return Path(self.path).expanduser() / "esp-idf"


@dataclass
class InstallResult(_Payload):
    idf_path: Path
    version: str
    added_to_shell: bool
    already_installed: bool = False


@dataclass
class InitConfig:
    name: str
    directory: Path = field(default_factory=Path.cwd)
    language: str = "c"
    target: str = "esp32"

    @property
    def project_path(self) -> Path:
        return Path(self.directory).expanduser() / self.name


@dataclass
class InitResult(_Payload):
    project_path: Path
    files: list[str]


@dataclass
class BuildConfig:
    project_dir: Path
    target: str | None = None
    clean: bool = False


@dataclass
class BuildResult(_Payload):
    success: bool
    project_dir: Path


@dataclass
class FlashConfig:
    project_dir: Path
    port: str
    baud: int | None = None


@dataclass
class FlashResult(_Payload):
    success: bool
    port: str
    baud: int


@dataclass
class CleanConfig:
    project_dir: Path
    full: bool = False


@dataclass
class CleanResult(_Payload):
    success: bool
    project_dir: Path
    full: bool


@dataclass
class MonitorConfig:
    port: str
    baud: int | None = None
    project_dir: Path | None = None
