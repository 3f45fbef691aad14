"""Command implementations behind ``espcli <command>``.

Each command returns its process exit code. Batch operations run under a
fresh operation id; ``follow`` prints their events while they run and
releases the id afterwards.
"""

import asyncio
import signal
from argparse import Namespace
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from config import get_settings
from config.constants import DEFAULT_ESP_PATH, ESP_TARGETS
from core.events import Event, EventKind, create_operation_id, emitter
from core.exceptions import ESPCLIError, get_error_suggestion
from core.interactive import InteractiveHandle, InteractiveState, spawn_interactive
from core.result import Result
from core.types import (
    BuildConfig,
    CleanConfig,
    FlashConfig,
    InitConfig,
    InstallConfig,
    MonitorConfig,
)
from observability import get_logger
from operations import build, clean, flash, init, install, list_devices, start_monitor
from project import find_project_root
from services.config import load_config, update_config
from services.health import get_health
from services.idf import find_idf_path, get_idf_status
from services.shell import get_export_command, get_shell_info

from . import prompts
from .display import Display

logger = get_logger("cli")


@contextmanager
def follow(display: Display, operation_id: str) -> Iterator[None]:
    """Print progress, logs and tool output of ``operation_id`` until exit."""

    def on_event(event: Event) -> None:
        data = event.data
        if event.kind == EventKind.STDOUT:
            display.output(data.text)
        elif event.kind == EventKind.STDERR:
            display.output(data.text, stderr=True)
        elif event.kind == EventKind.PROGRESS:
            display.step(data.message)
        elif event.kind == EventKind.LOG:
            if data.level == "warn":
                display.warn(data.message)
            elif data.level == "error":
                display.error(data.message)
            else:
                display.info(data.message)

    unsubscribe = emitter.subscribe(operation_id, on_event)
    try:
        yield
    finally:
        unsubscribe()
        emitter.cleanup(operation_id)


async def run_operation(display: Display, operation, config) -> Result:
    operation_id = create_operation_id()
    with follow(display, operation_id):
        return await operation(config, operation_id=operation_id)


def report_error(display: Display, error: ESPCLIError) -> int:
    display.error(error.message)
    suggestion = get_error_suggestion(error)
    if suggestion:
        display.dim(f"  {suggestion}")
    return 1


def project_root(display: Display) -> Path | None:
    found = find_project_root()
    if not found:
        display.error("Not in an ESP-IDF project directory")
        display.dim(
            'Run this command from within an ESP-IDF project, or use "espcli init" to create one'
        )
        return None
    return found.data


async def resolve_port(
    display: Display, project_dir: Path, port: str | None
) -> tuple[str | None, bool]:
    """Port from the flag, the saved project config, or a device prompt.

    Returns:
        ``(port, chosen)``; ``chosen`` is False when the saved port was
        used, and ``port`` is None when no device is available.
    """
    if port:
        return port, True

    saved = load_config(project_dir).port
    if saved:
        display.info(f"Using saved port {saved}")
        return saved, False

    devices = await list_devices()
    if not devices:
        report_error(display, devices.error)
        return None, False
    if not devices.data:
        display.error("No devices found")
        return None, False
    return prompts.select_device(devices.data), True


async def watch_interactive(display: Display, handle: InteractiveHandle) -> int:
    """Wait for an interactive process; Ctrl+C stops it."""
    loop = asyncio.get_running_loop()
    loop.add_signal_handler(signal.SIGINT, handle.stop)
    try:
        exit_code = await handle.wait()
    finally:
        loop.remove_signal_handler(signal.SIGINT)
        emitter.cleanup(handle.operation_id)
    display.write()
    return exit_code


async def install_command(args: Namespace, display: Display) -> int:
    display.header("ESP-IDF Installation")

    status = await asyncio.to_thread(get_idf_status)
    if status.installed:
        display.info(f"ESP-IDF already installed at {status.path}")
        if status.version:
            display.info(f"Version: {status.version}")
        display.dim(f"Load it with: {get_export_command(status.path)}")
        return 0

    config = InstallConfig(
        path=Path(args.path).expanduser() if args.path else DEFAULT_ESP_PATH,
        target=args.target or "all",
        add_to_shell=True,
    )
    shell = get_shell_info()

    if not args.yes:
        display.write(f"  Install path: {config.path}")
        display.write(f"  Target:       {config.target}")
        display.write(f"  Shell:        {shell.type}")
        display.write(f"  Config:       {shell.config_path or '-'}")
        if not prompts.confirm("Proceed with installation?"):
            display.warn("Installation cancelled")
            return 0

    result = await run_operation(display, install, config)
    if not result:
        return report_error(display, result.error)

    data = result.data
    display.success(f"ESP-IDF {data.version} installed at {data.idf_path}")
    if data.added_to_shell:
        display.info(f"Added to {shell.config_path}")
        display.dim(f"Restart your shell or run: source {shell.config_path}")
    else:
        display.dim(f"Load it with: {get_export_command(data.idf_path)}")
    return 0


async def init_command(args: Namespace, display: Display) -> int:
    display.header("Create ESP-IDF Project")

    name = args.name or prompts.text("Project name", "my-esp-project")
    language = args.lang or prompts.select_language()
    target = args.target or prompts.select_target()
    config = InitConfig(name=name, directory=Path.cwd(), language=language, target=target)

    display.write(f"  Name:     {name}")
    display.write(f"  Language: {language.upper()}")
    display.write(f"  Target:   {target}")
    display.write(f"  Path:     {config.project_path}")
    if not args.yes and not prompts.confirm("Create project?"):
        display.warn("Cancelled")
        return 0

    result = await run_operation(display, init, config)
    if not result:
        return report_error(display, result.error)

    display.success(f"Created project at {result.data.project_path}")
    display.dim("Files created:")
    for path in result.data.files:
        display.dim(f"  {path}")
    display.write()
    display.info(f"cd {name} && espcli build")
    return 0


async def devices_command(args: Namespace, display: Display) -> int:
    display.info("Scanning for devices...")
    result = await list_devices(detect_chips=not args.no_detect)
    if not result:
        return report_error(display, result.error)

    display.write()
    if not result.data:
        display.warn("No serial devices found")
        return 0
    display.write(display.device_table(result.data))
    display.device_hint(result.data)
    return 0


async def build_command(args: Namespace, display: Display) -> int:
    project_dir = project_root(display)
    if project_dir is None:
        return 1

    config = BuildConfig(project_dir=project_dir, target=args.target, clean=args.clean)
    result = await run_operation(display, build, config)
    display.write()
    if not result:
        return report_error(display, result.error)
    display.success("Build complete")
    return 0


async def _flash(display: Display, project_dir: Path, port: str, baud: int | None) -> bool:
    result = await run_operation(display, flash, FlashConfig(project_dir, port, baud))
    display.write()
    if not result:
        report_error(display, result.error)
        return False
    display.success("Flash complete")
    return True


def _offer_to_save(project_dir: Path, port: str, baud: int | None, display: Display) -> None:
    if not prompts.confirm(f"Save {port} as the default port for this project?", False):
        return
    saved = update_config(project_dir, port=port, flash_baud=baud)
    if saved:
        display.dim("Saved to .espcli")
    else:
        display.warn(saved.error.message)


async def flash_command(args: Namespace, display: Display) -> int:
    project_dir = project_root(display)
    if project_dir is None:
        return 1

    port, chosen = await resolve_port(display, project_dir, args.port)
    if port is None:
        return 1

    baud = args.baud or load_config(project_dir).flash_baud
    if not await _flash(display, project_dir, port, baud):
        return 1
    if chosen:
        _offer_to_save(project_dir, port, args.baud, display)
    return 0


async def _monitor(display: Display, project_dir: Path, port: str, baud: int | None) -> int:
    display.step(f"Connecting to {port}...")
    display.dim("Press Ctrl+] to exit")
    display.write()

    config = MonitorConfig(port=port, baud=baud, project_dir=project_dir)
    result = await start_monitor(config)
    if not result:
        emitter.cleanup(result.meta["operation_id"])
        return report_error(display, result.error)

    exit_code = await watch_interactive(display, result.data)
    display.info("Monitor stopped")
    return 0 if exit_code == 0 or result.data.state == InteractiveState.STOPPED else exit_code


async def monitor_command(args: Namespace, display: Display) -> int:
    project_dir = project_root(display)
    if project_dir is None:
        return 1

    port, _ = await resolve_port(display, project_dir, args.port)
    if port is None:
        return 1
    baud = args.baud or load_config(project_dir).monitor_baud
    return await _monitor(display, project_dir, port, baud)


async def run_command(args: Namespace, display: Display) -> int:
    """Build, flash and attach the monitor."""
    project_dir = project_root(display)
    if project_dir is None:
        return 1

    port, _ = await resolve_port(display, project_dir, args.port)
    if port is None:
        return 1

    if not args.skip_build:
        result = await run_operation(display, build, BuildConfig(project_dir=project_dir))
        display.write()
        if not result:
            return report_error(display, result.error)
        display.success("Build complete")

    saved = load_config(project_dir)
    if not await _flash(display, project_dir, port, args.baud or saved.flash_baud):
        return 1
    return await _monitor(display, project_dir, port, args.baud or saved.monitor_baud)


async def clean_command(args: Namespace, display: Display) -> int:
    project_dir = project_root(display)
    if project_dir is None:
        return 1

    result = await run_operation(display, clean, CleanConfig(project_dir, full=args.full))
    if not result:
        return report_error(display, result.error)
    display.success("Clean complete")
    return 0


async def doctor_command(args: Namespace, display: Display) -> int:
    display.info("Checking system...")
    health = await get_health(refresh=True)
    devices = await list_devices()
    display.health_report(health, devices.data if devices else [])
    return 0 if health.all_ok else 1


async def menuconfig_command(args: Namespace, display: Display) -> int:
    project_dir = project_root(display)
    if project_dir is None:
        return 1

    display.step("Opening menuconfig...")
    spawned = await spawn_interactive("idf.py", ["menuconfig"], cwd=project_dir)
    if not spawned:
        return report_error(display, spawned.error)
    return await watch_interactive(display, spawned.data)


async def source_command(args: Namespace, display: Display) -> int:
    found = find_idf_path()
    if not found:
        return report_error(display, found.error)

    export = get_export_command(found.data)
    display.info("To add idf.py to your current terminal session, run:")
    display.write()
    display.write(f"  {display.colorize(export, 'cyan')}")
    display.write()
    return 0


async def targets_command(args: Namespace, display: Display) -> int:
    display.write(display.target_table(ESP_TARGETS))
    return 0


def serve_command(args: Namespace, display: Display) -> int:
    from server.app import run_server

    settings = get_settings().server
    host, port = args.host or settings.host, args.port or settings.port
    display.info(f"Starting espcli server on http://{host}:{port}")
    run_server(host=args.host, port=args.port)
    return 0


def mcp_command(args: Namespace, display: Display) -> int:
    from server.mcp_server import run_mcp_server

    run_mcp_server(http=args.http, host=args.host, port=args.port)
    return 0
