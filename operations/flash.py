"""Flash the built firmware to a device."""

from config.constants import DEFAULT_FLASH_BAUD
from core.exceptions import FlashError
from core.process import run_with_idf
from core.result import Result
from core.types import FlashConfig, FlashResult

from .base import OperationContext, operation, require_project


@operation("flash")
async def flash(ctx: OperationContext, config: FlashConfig) -> Result[FlashResult]:
    project = require_project(config.project_dir)
    if not project:
        return project

    baud = config.baud or DEFAULT_FLASH_BAUD
    ctx.progress(f"Flashing to {config.port}...")
    result = await run_with_idf(
        "idf.py",
        ["-p", config.port, "-b", str(baud), "flash"],
        cwd=project.data,
        operation_id=ctx.operation_id,
    )
    if not result:
        return result
    if result.data.exit_code != 0:
        return ctx.step_failed(result.data, FlashError("Flash failed"))

    return Result.ok(FlashResult(success=True, port=config.port, baud=baud))
