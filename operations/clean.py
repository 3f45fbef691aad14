"""Remove build artifacts with ``idf.py clean`` or ``fullclean``."""

from core.exceptions import CleanError
from core.process import run_with_idf
from core.result import Result
from core.types import CleanConfig, CleanResult

from .base import OperationContext, operation, require_project


@operation("clean")
async def clean(ctx: OperationContext, config: CleanConfig) -> Result[CleanResult]:
    project = require_project(config.project_dir)
    if not project:
        return project

    command = "fullclean" if config.full else "clean"
    ctx.progress(f"Running {command}...")
    result = await run_with_idf(
        "idf.py", [command], cwd=project.data, operation_id=ctx.operation_id
    )
    if not result:
        return result
    if result.data.exit_code != 0:
        return ctx.step_failed(result.data, CleanError(f"{command} failed"))

    return Result.ok(CleanResult(success=True, project_dir=project.data, full=config.full))
