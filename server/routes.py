"""HTTP routes of the bridge, mounted under ``/api``.

Batch operations (install, build, flash, clean) return an ``operationId``
at once; clients follow them over the ``/ws`` socket.
"""

import asyncio
from pathlib import Path

from fastapi import APIRouter, Depends, Request

from config import get_settings
from config.constants import ESP_TARGETS, VERSION
from core.events import emitter
from core.exceptions import ESPCLIError
from core.types import (
    BuildConfig,
    CleanConfig,
    FlashConfig,
    InitConfig,
    InstallConfig,
    MonitorConfig,
)
from observability import get_metrics
from operations import (
    active_monitors,
    build,
    clean,
    flash,
    init,
    install,
    list_devices,
    start_monitor,
    stop_monitor,
)
from services.idf import get_idf_status

from .bridge import OperationRunner
from .schema import (
    BuildRequest,
    CleanRequest,
    FlashRequest,
    InitRequest,
    InstallRequest,
    MonitorRequest,
    OperationRequest,
)

router = APIRouter(prefix="/api")


class ApiError(Exception):
    """Rendered as ``{"error": message, "code": code}`` with ``status``."""

    def __init__(self, message: str, status: int = 400, code: str | None = None):
        super().__init__(message)
        self.message = message
        self.status = status
        self.code = code

    @classmethod
    def from_error(cls, error: ESPCLIError, status: int = 500) -> "ApiError":
        return cls(error.message, status=status, code=error.code.value)


def get_runner(request: Request) -> OperationRunner:
    return request.app.state.runner


def _path(value: str) -> Path:
    return Path(value).expanduser()


@router.get("/health")
async def health():
    return {"status": "ok", "version": VERSION}


@router.get("/targets")
async def targets():
    return {"targets": [target.to_dict() for target in ESP_TARGETS]}


@router.get("/devices")
async def devices():
    result = await list_devices()
    if not result:
        raise ApiError.from_error(result.error)
    return {"devices": [device.to_dict() for device in result.data]}


@router.get("/idf/status")
async def idf_status():
    status = await asyncio.to_thread(get_idf_status)
    return status.to_dict()


@router.get("/operations")
async def operations(runner: OperationRunner = Depends(get_runner)):
    metrics = get_metrics(get_settings().paths.metrics_file)
    return {
        "running": runner.active(),
        "monitors": active_monitors(),
        "stats": metrics.get_all_stats(),
    }


@router.post("/install")
async def start_install(body: InstallRequest, runner: OperationRunner = Depends(get_runner)):
    config = InstallConfig(
        path=_path(body.path) if body.path else get_settings().paths.esp_path,
        target=body.target,
        add_to_shell=body.add_to_shell,
    )
    return {"operationId": runner.start(install, config)}


@router.post("/init")
async def start_init(body: InitRequest):
    config = InitConfig(
        name=body.name,
        directory=_path(body.directory),
        language=body.language,
        target=body.target,
    )
    result = await init(config)
    emitter.cleanup(result.meta["operation_id"])
    if not result:
        return {"ok": False, "error": result.error.message, "code": result.error.code.value}
    return {"ok": True, "projectPath": str(result.data.project_path)}


@router.post("/build")
async def start_build(body: BuildRequest, runner: OperationRunner = Depends(get_runner)):
    config = BuildConfig(project_dir=_path(body.project_dir), target=body.target, clean=body.clean)
    return {"operationId": runner.start(build, config)}


@router.post("/flash")
async def start_flash(body: FlashRequest, runner: OperationRunner = Depends(get_runner)):
    config = FlashConfig(project_dir=_path(body.project_dir), port=body.port, baud=body.baud)
    return {"operationId": runner.start(flash, config)}


@router.post("/clean")
async def start_clean(body: CleanRequest, runner: OperationRunner = Depends(get_runner)):
    config = CleanConfig(project_dir=_path(body.project_dir), full=body.full)
    return {"operationId": runner.start(clean, config)}


@router.post("/monitor")
async def start_monitor_route(body: MonitorRequest):
    config = MonitorConfig(
        port=body.port,
        baud=body.baud,
        project_dir=_path(body.project_dir) if body.project_dir else None,
    )
    result = await start_monitor(config)
    operation_id = result.meta["operation_id"]
    if not result:
        emitter.cleanup(operation_id)
        raise ApiError.from_error(result.error)

    loop = asyncio.get_running_loop()

    def release(event) -> None:
        # Clean up outside the delivery so other subscribers still see the event
        if event.is_terminal:
            loop.call_soon_threadsafe(emitter.cleanup, operation_id)

    emitter.subscribe(operation_id, release)
    if emitter.is_terminated(operation_id):
        emitter.cleanup(operation_id)
    return {"operationId": operation_id}


@router.post("/monitor/stop")
async def stop_monitor_route(body: OperationRequest):
    return {"ok": stop_monitor(body.operation_id)}


@router.post("/operations/cancel")
async def cancel_operation(body: OperationRequest, runner: OperationRunner = Depends(get_runner)):
    if runner.cancel(body.operation_id) or stop_monitor(body.operation_id):
        return {"ok": True}
    raise ApiError(f"No running operation: {body.operation_id}", status=404, code="NOT_FOUND")
