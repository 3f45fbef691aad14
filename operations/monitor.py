"""Serial monitor through the interactive supervisor.

The monitor owns the terminal, so no output is streamed. Its ``complete``
event is emitted by the supervisor once the process exits.
"""

from config.constants import DEFAULT_MONITOR_BAUD
from core.events import ErrorData, ProgressData, create_operation_id, emitter
from core.interactive import (
    InteractiveHandle,
    active_interactive,
    spawn_interactive,
    stop_interactive,
)
from core.result import Result
from core.types import MonitorConfig
from observability import get_logger

logger = get_logger("operations.monitor")


async def start_monitor(
    config: MonitorConfig, operation_id: str | None = None
) -> Result[InteractiveHandle]:
    """Start ``idf.py monitor`` on ``config.port``.

    Returns:
        Result with the running handle; on failure an ``error`` event has
        already been emitted for the operation id.
    """
    operation_id = operation_id or create_operation_id()
    baud = config.baud or DEFAULT_MONITOR_BAUD
    emitter.emit(operation_id, ProgressData(f"Starting monitor on {config.port}..."))

    spawned = await spawn_interactive(
        "idf.py",
        ["-p", config.port, "-b", str(baud), "monitor"],
        cwd=config.project_dir,
        operation_id=operation_id,
    )
    if not spawned:
        emitter.emit(operation_id, ErrorData(spawned.error.message, spawned.error.code.value))
        return Result.fail(spawned.error, operation_id=operation_id)

    logger.info("Monitor started", operation_id=operation_id, port=config.port, baud=baud)
    return Result.ok(spawned.data, operation_id=operation_id)


def stop_monitor(operation_id: str) -> bool:
    """Stop a running monitor; False when none runs under ``operation_id``."""
    return stop_interactive(operation_id)


def active_monitors() -> list[str]:
    return active_interactive()
