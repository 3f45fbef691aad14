"""Firmware build: optional set-target, optional clean, then build."""

from core.exceptions import BuildError, CleanError, CommandError
from core.process import run_with_idf
from core.result import Result
from core.types import BuildConfig, BuildResult

from .base import OperationContext, operation, require_project


@operation("build")
async def build(ctx: OperationContext, config: BuildConfig) -> Result[BuildResult]:
    """Build the project; each step runs only if the previous one exited 0."""
    project = require_project(config.project_dir)
    if not project:
        return project
    project_dir = project.data

    async def idf(*args: str):
        return await run_with_idf("idf.py", args, cwd=project_dir, operation_id=ctx.operation_id)

    if config.target:
        ctx.progress(f"Setting target to {config.target}...", 10)
        result = await idf("set-target", config.target)
        if not result:
            return result
        if result.data.exit_code != 0:
            return ctx.step_failed(result.data, CommandError("Failed to set target"))

    if config.clean:
        ctx.progress("Cleaning...", 20)
        result = await idf("clean")
        if not result:
            return result
        if result.data.exit_code != 0:
            return ctx.step_failed(result.data, CleanError("Clean failed"))

    ctx.progress("Building project...", 30)
    result = await idf("build")
    if not result:
        return result
    if result.data.exit_code != 0:
        return ctx.step_failed(result.data, BuildError("Build failed"))

    return Result.ok(BuildResult(success=True, project_dir=project_dir))
