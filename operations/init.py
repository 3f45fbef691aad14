"""Project creation: scaffold the files, then ``idf.py set-target``."""

from core.process import run_with_idf
from core.result import Result
from core.types import InitConfig, InitResult
from templates import create_project

from .base import OperationContext, operation


@operation("init")
async def init(ctx: OperationContext, config: InitConfig) -> Result[InitResult]:
    """Create a project. A failed set-target only warns; the project is kept."""
    ctx.progress(f"Creating project {config.name}...")
    created = create_project(config)
    if not created:
        return created

    project = created.data
    ctx.progress("Setting target...", 80)
    result = await run_with_idf(
        "idf.py",
        ["set-target", config.target],
        cwd=project.project_path,
        operation_id=ctx.operation_id,
    )
    if not result or result.data.exit_code != 0:
        ctx.log(
            f"Failed to set target. You may need to run: idf.py set-target {config.target}",
            level="warn",
        )
    return Result.ok(project)
