"""Shared coordination for operations.

An operation is an ``async`` function decorated with ``@operation(kind)``.
It receives an ``OperationContext`` for progress and log events and returns
a ``Result``. The decorator turns that return value into the single
terminal event of the operation:

    @operation("clean")
    async def clean(ctx, config):
        ctx.progress("Running clean...")
        ...
        return Result.ok(CleanResult(...))

    result = await clean(CleanConfig(project_dir), operation_id=op_id)
"""

import asyncio
import functools
import time
from collections.abc import Awaitable, Callable
from pathlib import Path

from config import get_settings
from core.events import CompleteData, ErrorData, LogData, ProgressData, create_operation_id, emitter
from core.exceptions import ESPCLIError, OperationCancelledError, not_idf_project, wrap_error
from core.process import RunResult
from core.result import Result
from observability import get_diagnostics, get_logger, get_metrics
from project import is_idf_project

logger = get_logger("operations")


class OperationContext:
    """Event helpers bound to one operation id.

    ``complete`` and ``fail`` emit the terminal event; whichever runs first
    wins and later calls do not emit again.
    """

    def __init__(self, kind: str, operation_id: str):
        self.kind = kind
        self.operation_id = operation_id
        self.error: ESPCLIError | None = None
        self._finished = False

    @property
    def finished(self) -> bool:
        return self._finished

    def progress(self, message: str, percent: int | None = None) -> None:
        emitter.emit(self.operation_id, ProgressData(message, percent))

    def log(self, message: str, level: str = "info") -> None:
        emitter.emit(self.operation_id, LogData(level, message))

    def complete(self, data=None) -> Result:
        if not self._finished:
            self._finished = True
            emitter.emit(self.operation_id, CompleteData(data))
        return Result.ok(data, operation_id=self.operation_id)

    def fail(self, error: ESPCLIError) -> Result:
        if not self._finished:
            self._finished = True
            self.error = error
            emitter.emit(self.operation_id, ErrorData(error.message, error.code.value))
        return Result.fail(error, operation_id=self.operation_id)

    def diagnose(self, output: str) -> list[str]:
        """Emit a warn log per suggestion the diagnostics engine has for ``output``."""
        diagnosis = get_diagnostics().diagnose(output)
        if diagnosis:
            logger.log_diagnosis(self.operation_id, diagnosis.to_dict(), output)
        for suggestion in diagnosis.suggestions:
            self.log(suggestion, level="warn")
        return diagnosis.suggestions

    def step_failed(self, run: RunResult, error: ESPCLIError) -> Result:
        """Failure of a toolchain step: diagnostics first, then the error."""
        logger.warning(
            f"{self.kind} step failed",
            operation_id=self.operation_id,
            exit_code=run.exit_code,
            error_code=error.code.value,
        )
        self.diagnose(run.output)
        return Result.fail(error)


def require_project(project_dir: str | Path) -> Result[Path]:
    """The resolved project directory, or NOT_IDF_PROJECT."""
    path = Path(project_dir).expanduser().resolve()
    if not is_idf_project(path):
        return Result.fail(not_idf_project(str(path)))
    return Result.ok(path)


def _record(ctx: OperationContext, start: float, success: bool) -> None:
    duration = time.monotonic() - start
    error_code = ctx.error.code.value if ctx.error else None
    logger.log_operation(ctx.kind, ctx.operation_id, duration, success, error_code)
    get_metrics(get_settings().paths.metrics_file).record_operation(
        ctx.kind, ctx.operation_id, duration, success, error_code
    )


def operation(kind: str):
    """Decorator giving an operation body its id, terminal event and metrics.

    The wrapped function is called as ``func(config, operation_id=None)``.
    Unexpected exceptions become an UNKNOWN error; asyncio cancellation
    emits a CANCELLED error and propagates.

    Args:
        kind: Operation name used in logs and metrics.
    """

    def decorator(
        func: Callable[..., Awaitable[Result]],
    ) -> Callable[..., Awaitable[Result]]:
        @functools.wraps(func)
        async def wrapper(config=None, operation_id: str | None = None) -> Result:
            ctx = OperationContext(kind, operation_id or create_operation_id())
            start = time.monotonic()
            logger.info(f"Operation started: {kind}", operation_id=ctx.operation_id)

            try:
                result = await func(ctx, config)
            except asyncio.CancelledError:
                ctx.fail(OperationCancelledError(f"{kind.capitalize()} cancelled"))
                _record(ctx, start, success=False)
                raise
            except Exception as e:
                logger.error(
                    f"Unexpected error in {kind}", exception=e, operation_id=ctx.operation_id
                )
                result = Result.fail(wrap_error(e))

            if result.success:
                result = ctx.complete(result.data)
            else:
                result = ctx.fail(result.error)
            _record(ctx, start, success=result.success)
            return result

        wrapper.kind = kind
        return wrapper

    return decorator
