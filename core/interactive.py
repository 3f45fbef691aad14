"""Supervisor for interactive, terminal-attached processes (serial monitor).

The child inherits stdin/stdout/stderr, so nothing is streamed on the event
bus. The supervisor only tracks the process for cancellation and emits a
single ``complete`` event when it exits:

    spawned -> running -> stopped | exited

Handles live in a process-wide registry keyed by operation id until they
stop or exit.
"""

import asyncio
import threading
from collections.abc import Sequence
from enum import Enum
from pathlib import Path

import psutil

from config import get_settings
from observability import get_logger

from .events import CompleteData, create_operation_id, emitter
from .process import build_idf_command, merged_env, resolve_export_script, spawn_error
from .result import Result

logger = get_logger("core.interactive")


class InteractiveState(str, Enum):
    SPAWNED = "spawned"
    RUNNING = "running"
    STOPPED = "stopped"
    EXITED = "exited"


FINAL_STATES = frozenset({InteractiveState.STOPPED, InteractiveState.EXITED})

_active: dict[str, "InteractiveHandle"] = {}
_registry_lock = threading.Lock()


def _register(handle: "InteractiveHandle") -> None:
    with _registry_lock:
        _active[handle.operation_id] = handle


def _unregister(handle: "InteractiveHandle") -> bool:
    with _registry_lock:
        if _active.get(handle.operation_id) is handle:
            del _active[handle.operation_id]
            return True
        return False


class InteractiveHandle:
    """Handle to a running interactive process.

    Attributes:
        operation_id: Identifier the process is registered under.
        command: Display name of the wrapped command.
        state: Current lifecycle state.
    """

    def __init__(
        self,
        operation_id: str,
        process: asyncio.subprocess.Process,
        command: str,
        kill_timeout: float,
    ):
        self.operation_id = operation_id
        self.command = command
        self.state = InteractiveState.SPAWNED
        self._process = process
        self._kill_timeout = kill_timeout
        self._lock = threading.Lock()
        self._loop = asyncio.get_running_loop()
        self._escalation: asyncio.TimerHandle | None = None
        self._watcher = self._loop.create_task(self._watch())

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def exit_code(self) -> int | None:
        return self._process.returncode

    def stop(self) -> bool:
        """Send SIGTERM to the process tree and drop the registry entry.

        Returns:
            True if this call stopped the process, False if it had already
            been stopped or had exited.
        """
        with self._lock:
            if self.state in FINAL_STATES:
                return False
            self.state = InteractiveState.STOPPED

        _unregister(self)
        self._signal_tree(kill=False)
        logger.info("Interactive process stopped", operation_id=self.operation_id, pid=self.pid)
        self._loop.call_soon_threadsafe(self._schedule_kill)
        return True

    async def wait(self) -> int:
        """Wait for the process to exit and return its exit code."""
        return await asyncio.shield(self._watcher)

    def _schedule_kill(self) -> None:
        if self._process.returncode is None and not self._watcher.done():
            self._escalation = self._loop.call_later(self._kill_timeout, self._force_kill)

    def _force_kill(self) -> None:
        if self._process.returncode is None:
            logger.warning(
                "Interactive process ignored SIGTERM, killing",
                operation_id=self.operation_id,
                pid=self.pid,
            )
            self._signal_tree(kill=True)

    def _signal_tree(self, kill: bool) -> None:
        try:
            parent = psutil.Process(self.pid)
            procs = [*parent.children(recursive=True), parent]
        except psutil.NoSuchProcess:
            return
        for proc in procs:
            try:
                if kill:
                    proc.kill()
                else:
                    proc.terminate()
            except psutil.NoSuchProcess:
                continue

    async def _watch(self) -> int:
        with self._lock:
            if self.state == InteractiveState.SPAWNED:
                self.state = InteractiveState.RUNNING

        exit_code = await self._process.wait()

        if self._escalation is not None:
            self._escalation.cancel()
        with self._lock:
            stopped = self.state == InteractiveState.STOPPED
            if not stopped:
                self.state = InteractiveState.EXITED

        _unregister(self)
        logger.info(
            "Interactive process finished",
            operation_id=self.operation_id,
            exit_code=exit_code,
            stopped=stopped,
        )
        emitter.emit(self.operation_id, CompleteData({"stopped": stopped, "exitCode": exit_code}))
        return exit_code


async def spawn_interactive(
    command: str,
    args: Sequence[str] = (),
    *,
    cwd: str | Path | None = None,
    operation_id: str | None = None,
    env: dict[str, str] | None = None,
) -> Result[InteractiveHandle]:
    """Start ``command`` with the ESP-IDF environment and the terminal attached.

    Args:
        command: Command to run after sourcing export.sh.
        args: Arguments, quoted individually.
        cwd: Working directory.
        operation_id: Registry key; minted when omitted.
        env: Variables overlaid on the current environment.

    Returns:
        Result with the registered handle, or the toolchain / spawn error.
    """
    operation_id = operation_id or create_operation_id()

    script = resolve_export_script()
    if not script:
        return script

    line = build_idf_command(script.data, command, args)
    try:
        # Same session as the caller so the child can read the terminal
        process = await asyncio.create_subprocess_exec(
            "bash",
            "-c",
            line,
            cwd=str(cwd) if cwd is not None else None,
            env=merged_env(env),
        )
    except OSError as e:
        return Result.fail(spawn_error(command, e, cwd))

    handle = InteractiveHandle(
        operation_id, process, command, get_settings().timeouts.interactive_kill
    )
    _register(handle)
    logger.info("Interactive process started", operation_id=operation_id, pid=process.pid)
    return Result.ok(handle)


def get_interactive(operation_id: str) -> InteractiveHandle | None:
    with _registry_lock:
        return _active.get(operation_id)


def stop_interactive(operation_id: str) -> bool:
    """Stop the interactive process registered under ``operation_id``.

    Returns:
        True if a process was stopped, False if none was registered.
    """
    handle = get_interactive(operation_id)
    if handle is None:
        return False
    return handle.stop()


def active_interactive() -> list[str]:
    """Operation ids of interactive processes still registered."""
    with _registry_lock:
        return list(_active)
