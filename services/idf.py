"""ESP-IDF toolchain resolution."""

import os
import subprocess
from dataclasses import dataclass
from pathlib import Path

from config import get_settings
from core.exceptions import ErrorCode, ToolchainError, command_failed, idf_not_found
from core.result import Result
from observability import get_logger

logger = get_logger("services.idf")


@dataclass
class IdfStatus:
    installed: bool
    path: str | None = None
    version: str | None = None

    def to_dict(self) -> dict:
        data: dict = {"installed": self.installed}
        if self.path is not None:
            data["path"] = self.path
        if self.version is not None:
            data["version"] = self.version
        return data


def idf_candidates() -> list[Path]:
    """Locations searched for ESP-IDF, in order."""
    candidates = []
    env_path = os.environ.get("IDF_PATH")
    if env_path:
        candidates.append(Path(env_path).expanduser())
    candidates.append(Path(get_settings().paths.idf_path).expanduser())
    candidates.append(Path.home() / "esp-idf")

    unique: list[Path] = []
    for candidate in candidates:
        if candidate not in unique:
            unique.append(candidate)
    return unique


def find_idf_path() -> Result[Path]:
    """Return the first existing ESP-IDF directory.

    Returns:
        Result with the path, or an IDF_NOT_FOUND error.
    """
    for candidate in idf_candidates():
        if candidate.is_dir():
            return Result.ok(candidate)
    return Result.fail(idf_not_found())


def get_export_script(idf_path: Path) -> Path:
    return Path(idf_path) / "export.sh"


def validate_idf_installation(idf_path: Path) -> Result[None]:
    """Check that ``idf_path`` exists and ships ``export.sh``."""
    idf_path = Path(idf_path)
    if not idf_path.is_dir():
        return Result.fail(
            ToolchainError(
                f"IDF path does not exist: {idf_path}", code=ErrorCode.IDF_VALIDATION_FAILED
            )
        )
    if not get_export_script(idf_path).is_file():
        return Result.fail(
            ToolchainError(
                f"export.sh not found in {idf_path}", code=ErrorCode.IDF_VALIDATION_FAILED
            )
        )
    return Result.ok()


def get_idf_version(idf_path: Path, timeout: float | None = None) -> Result[str]:
    """Read the ESP-IDF version from ``version.txt`` or ``git describe``."""
    idf_path = Path(idf_path)
    version_file = idf_path / "version.txt"
    try:
        version = version_file.read_text(encoding="utf-8").strip()
        if version:
            return Result.ok(version)
    except OSError:
        logger.debug("No version.txt, asking git", idf_path=str(idf_path))

    if timeout is None:
        timeout = get_settings().timeouts.health_check
    try:
        completed = subprocess.run(
            ["git", "describe", "--tags"],
            cwd=idf_path,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        return Result.fail(command_failed("git", "Failed to get IDF version from git", cause=e))

    if completed.returncode != 0 or not completed.stdout.strip():
        return Result.fail(command_failed("git", "Failed to get IDF version from git"))
    return Result.ok(completed.stdout.strip())


def get_idf_status() -> IdfStatus:
    """Installed flag, path and version. Never fails."""
    found = find_idf_path()
    if not found:
        return IdfStatus(installed=False)
    version = get_idf_version(found.data)
    return IdfStatus(
        installed=True,
        path=str(found.data),
        version=version.data if version else None,
    )
