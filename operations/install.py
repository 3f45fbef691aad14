"""ESP-IDF installation: clone the repository and run ``install.sh``."""

import asyncio
from pathlib import Path

from config.constants import IDF_REPO_URL
from core.exceptions import FileOperationError, InstallError
from core.process import run
from core.result import Result
from core.types import InstallConfig, InstallResult
from services.health import clear_health_cache
from services.idf import get_idf_version
from services.shell import add_to_shell_config, get_export_command

from .base import OperationContext, operation


async def _version(idf_path: Path) -> str:
    version = await asyncio.to_thread(get_idf_version, idf_path)
    return version.data if version else "unknown"


@operation("install")
async def install(ctx: OperationContext, config: InstallConfig | None) -> Result[InstallResult]:
    """Install ESP-IDF under ``config.path``; a no-op when already present."""
    config = config or InstallConfig()
    esp_path = Path(config.path).expanduser()
    idf_path = config.idf_path

    if idf_path.exists():
        ctx.log(f"ESP-IDF already installed at {idf_path}")
        return Result.ok(
            InstallResult(
                idf_path=idf_path,
                version=await _version(idf_path),
                added_to_shell=False,
                already_installed=True,
            )
        )

    ctx.progress("Creating ESP directory...")
    try:
        esp_path.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        return Result.fail(FileOperationError(f"Failed to create {esp_path}", cause=e))

    ctx.progress("Cloning ESP-IDF repository...", 10)
    cloned = await run(
        "git", ["clone", "--recursive", IDF_REPO_URL], cwd=esp_path, operation_id=ctx.operation_id
    )
    if not cloned:
        return cloned
    if cloned.data.exit_code != 0:
        return Result.fail(InstallError(f"Git clone failed with exit code {cloned.data.exit_code}"))

    ctx.progress("Running install script...", 50)
    installed = await run(
        "./install.sh", [config.target], cwd=idf_path, operation_id=ctx.operation_id
    )
    if not installed:
        return installed
    if installed.data.exit_code != 0:
        return Result.fail(
            InstallError(f"Install script failed with exit code {installed.data.exit_code}")
        )
    clear_health_cache()

    added_to_shell = False
    if config.add_to_shell:
        ctx.progress("Configuring shell...", 90)
        shell = add_to_shell_config(get_export_command(idf_path))
        if shell:
            added_to_shell = True
        else:
            ctx.log(shell.error.message, level="warn")

    return Result.ok(
        InstallResult(
            idf_path=idf_path,
            version=await _version(idf_path),
            added_to_shell=added_to_shell,
        )
    )
