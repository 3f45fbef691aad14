"""Batch process runner.

Runs one external command to completion, forwarding output chunks to the
event bus, and reports the exit status as data. A nonzero exit is a normal
``RunResult``; only spawn failures come back as errors.

``run_with_idf`` runs the command inside a shell that first sources the
ESP-IDF ``export.sh``. Every argument is quoted separately.

Cancelling the awaiting task cancels the run: the child's process tree gets
SIGTERM, then SIGKILL after ``ToolTimeouts.terminate`` seconds.
"""

import asyncio
import codecs
import os
import shlex
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

import psutil

from config import get_settings
from observability import get_logger
from services.idf import find_idf_path, get_export_script, validate_idf_installation

from .events import StderrData, StdoutData, emitter
from .exceptions import CommandError, ErrorCode, command_failed
from .result import Result

logger = get_logger("core.process")

CHUNK_SIZE = 4096


@dataclass
class RunResult:
    """Outcome of a finished process.

    Attributes:
        stdout: Everything the process wrote to stdout.
        stderr: Everything the process wrote to stderr.
        exit_code: Process exit status (negative for signals).
    """

    stdout: str
    stderr: str
    exit_code: int

    @property
    def output(self) -> str:
        """stdout and stderr joined, for diagnostics."""
        if self.stdout and self.stderr:
            return f"{self.stdout}\n{self.stderr}"
        return self.stdout or self.stderr

    def to_dict(self) -> dict:
        return {"stdout": self.stdout, "stderr": self.stderr, "exitCode": self.exit_code}


def merged_env(env: dict[str, str] | None) -> dict[str, str]:
    """Process environment overlaid with ``env``."""
    merged = dict(os.environ)
    if env:
        merged.update(env)
    return merged


def build_idf_command(export_script: Path, command: str, args: Sequence[str]) -> str:
    """Shell line that sources ``export_script`` and then runs the command.

    Example:
        >>> build_idf_command(Path("/esp/esp-idf/export.sh"), "idf.py", ["-p", "/dev/tty USB0"])
        ". /esp/esp-idf/export.sh >/dev/null 2>&1 && idf.py -p '/dev/tty USB0'"
    """
    invocation = shlex.join([command, *[str(arg) for arg in args]])
    return f". {shlex.quote(str(export_script))} >/dev/null 2>&1 && {invocation}"


def resolve_export_script() -> Result[Path]:
    """Locate ESP-IDF and its ``export.sh``.

    Returns:
        Result with the export script path, or an IDF_NOT_FOUND /
        IDF_VALIDATION_FAILED error.
    """
    found = find_idf_path()
    if not found:
        return found

    idf_path = found.data
    valid = validate_idf_installation(idf_path)
    if not valid:
        return valid
    return Result.ok(get_export_script(idf_path))


def spawn_error(command: str, error: OSError, cwd: str | Path | None) -> CommandError:
    """Translate an OSError raised while spawning into a CommandError."""
    if isinstance(error, FileNotFoundError):
        if cwd is not None and not Path(cwd).is_dir():
            return command_failed(command, f"working directory not found: {cwd}", cause=error)
        return CommandError(
            f"Command not found: {command}", code=ErrorCode.COMMAND_NOT_FOUND, cause=error
        )
    if isinstance(error, PermissionError):
        return CommandError(
            f"Permission denied: {command}", code=ErrorCode.PERMISSION_DENIED, cause=error
        )
    return command_failed(command, str(error), cause=error)


def terminate_tree(pid: int, timeout: float) -> list[int]:
    """Terminate a process and its children, killing what outlives ``timeout``.

    Blocking; run it in a thread from async code.

    Returns:
        Pids that had to be killed.
    """
    try:
        parent = psutil.Process(pid)
        procs = [parent, *parent.children(recursive=True)]
    except psutil.NoSuchProcess:
        return []

    for proc in procs:
        try:
            proc.terminate()
        except psutil.NoSuchProcess:
            continue

    _, alive = psutil.wait_procs(procs, timeout=timeout)
    for proc in alive:
        try:
            proc.kill()
        except psutil.NoSuchProcess:
            continue
    if alive:
        psutil.wait_procs(alive, timeout=timeout)
    return [proc.pid for proc in alive]


async def _pump(
    stream: asyncio.StreamReader,
    chunks: list[str],
    operation_id: str | None,
    event_type: type[StdoutData] | type[StderrData],
) -> None:
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    while True:
        raw = await stream.read(CHUNK_SIZE)
        text = decoder.decode(raw, final=not raw)
        if text:
            chunks.append(text)
            if operation_id:
                emitter.emit(operation_id, event_type(text))
        if not raw:
            break


async def _cancel_run(
    process: asyncio.subprocess.Process,
    readers: list[asyncio.Task],
    term_timeout: float,
) -> None:
    if process.returncode is None:
        killed = await asyncio.to_thread(terminate_tree, process.pid, term_timeout)
        if killed:
            logger.warning("Killed processes that ignored SIGTERM", pids=killed)
    for reader in readers:
        reader.cancel()
    await asyncio.gather(*readers, return_exceptions=True)
    await process.wait()


async def _execute(
    argv: list[str],
    display_name: str,
    cwd: str | Path | None,
    operation_id: str | None,
    env: dict[str, str] | None,
) -> Result[RunResult]:
    try:
        process = await asyncio.create_subprocess_exec(
            *argv,
            cwd=str(cwd) if cwd is not None else None,
            env=merged_env(env),
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            start_new_session=True,
        )
    except OSError as e:
        error = spawn_error(display_name, e, cwd)
        logger.warning(
            "Failed to spawn command",
            command=display_name,
            error_code=error.code.value,
            operation_id=operation_id,
        )
        return Result.fail(error)

    logger.debug("Started subprocess", pid=process.pid, command=display_name, cwd=str(cwd))

    stdout_chunks: list[str] = []
    stderr_chunks: list[str] = []
    readers = [
        asyncio.create_task(_pump(process.stdout, stdout_chunks, operation_id, StdoutData)),
        asyncio.create_task(_pump(process.stderr, stderr_chunks, operation_id, StderrData)),
    ]

    try:
        await asyncio.gather(*readers)
        exit_code = await process.wait()
    except asyncio.CancelledError:
        logger.info("Run cancelled, terminating", pid=process.pid, operation_id=operation_id)
        await asyncio.shield(_cancel_run(process, readers, get_settings().timeouts.terminate))
        raise

    logger.debug("Subprocess exited", pid=process.pid, exit_code=exit_code)
    return Result.ok(RunResult("".join(stdout_chunks), "".join(stderr_chunks), exit_code))


async def run(
    command: str,
    args: Sequence[str] = (),
    *,
    cwd: str | Path | None = None,
    operation_id: str | None = None,
    env: dict[str, str] | None = None,
) -> Result[RunResult]:
    """Run ``command`` directly (no shell) and wait for it to exit.

    Args:
        command: Executable name or path.
        args: Arguments.
        cwd: Working directory.
        operation_id: When given, output chunks are emitted as stdout/stderr events.
        env: Variables overlaid on the current environment.

    Returns:
        Result with a RunResult for any exit code, or a spawn error.
    """
    return await _execute([command, *[str(a) for a in args]], command, cwd, operation_id, env)


async def run_with_idf(
    command: str,
    args: Sequence[str] = (),
    *,
    cwd: str | Path | None = None,
    operation_id: str | None = None,
    env: dict[str, str] | None = None,
) -> Result[RunResult]:
    """Run ``command`` with the ESP-IDF environment exported.

    Fails with an IDF_NOT_FOUND error, without spawning anything, when
    ESP-IDF cannot be located.
    """
    script = resolve_export_script()
    if not script:
        return script

    line = build_idf_command(script.data, command, args)
    return await _execute(["bash", "-c", line], command, cwd, operation_id, env)


__all__ = [
    "RunResult",
    "build_idf_command",
    "resolve_export_script",
    "run",
    "run_with_idf",
    "terminate_tree",
]
