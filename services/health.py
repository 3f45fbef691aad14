"""System health checks used by ``espcli doctor`` and serial enumeration.

Every probe is a short external call bounded by a timeout; a probe that
times out reports the check as failing instead of hanging the caller.
Results are cached for the life of the process.
"""

import asyncio
import re
from collections.abc import Sequence
from dataclasses import asdict, dataclass
from pathlib import Path

from config import get_settings
from core.exceptions import OperationTimeoutError, idf_not_installed, idf_python_not_found
from core.process import RunResult, run
from core.result import Result
from observability import get_logger

from .idf import get_idf_version, idf_candidates

logger = get_logger("services.health")

INSTALL_HINT = "Run: espcli install"
REINSTALL_HINT = "Reinstall ESP-IDF: espcli install"


@dataclass
class HealthStatus:
    ok: bool
    name: str
    version: str | None = None
    path: str | None = None
    error: str | None = None
    hint: str | None = None

    def to_dict(self) -> dict:
        return {key: value for key, value in asdict(self).items() if value is not None}


@dataclass
class SystemHealth:
    python: HealthStatus
    git: HealthStatus
    idf: HealthStatus
    pyserial: HealthStatus
    esptool: HealthStatus
    idf_python: str | None = None

    @property
    def checks(self) -> list[HealthStatus]:
        return [self.python, self.git, self.idf, self.pyserial, self.esptool]

    @property
    def all_ok(self) -> bool:
        return all(check.ok for check in self.checks)

    def to_dict(self) -> dict:
        return {
            "python": self.python.to_dict(),
            "git": self.git.to_dict(),
            "idf": self.idf.to_dict(),
            "pyserial": self.pyserial.to_dict(),
            "esptool": self.esptool.to_dict(),
            "idfPython": self.idf_python,
            "ok": self.all_ok,
        }


@dataclass
class IdfRequirement:
    python: str
    idf_path: str


_health_cache: SystemHealth | None = None


async def probe(
    command: str,
    args: Sequence[str],
    timeout: float,
    cwd: str | Path | None = None,
) -> Result[RunResult]:
    """Run a short command, failing with a TIMEOUT error past ``timeout``."""
    try:
        return await asyncio.wait_for(run(command, args, cwd=cwd), timeout)
    except asyncio.TimeoutError:
        logger.warning("Health probe timed out", command=command, timeout=timeout)
        return Result.fail(OperationTimeoutError(f"Operation timed out: {command}"))


def _probe_ok(result: Result[RunResult]) -> bool:
    return result.success and result.data.exit_code == 0


async def check_python() -> HealthStatus:
    result = await probe("python3", ["--version"], get_settings().timeouts.health_check)
    if not _probe_ok(result):
        return HealthStatus(
            ok=False,
            name="Python",
            error="Python 3 not found",
            hint="Install Python 3: https://www.python.org/downloads/",
        )
    # Old interpreters print the version on stderr
    text = (result.data.stdout or result.data.stderr).strip()
    return HealthStatus(ok=True, name="Python", version=text.replace("Python ", ""))


async def check_git() -> HealthStatus:
    result = await probe("git", ["--version"], get_settings().timeouts.health_check)
    if not _probe_ok(result):
        return HealthStatus(
            ok=False,
            name="Git",
            error="Git not found",
            hint="Install Git: https://git-scm.com/downloads",
        )
    return HealthStatus(
        ok=True, name="Git", version=result.data.stdout.replace("git version ", "").strip()
    )


async def check_idf() -> HealthStatus:
    for candidate in idf_candidates():
        if not candidate.is_dir():
            continue
        version = await asyncio.to_thread(get_idf_version, candidate)
        return HealthStatus(
            ok=True,
            name="ESP-IDF",
            version=version.data if version else "unknown",
            path=str(candidate),
        )
    return HealthStatus(ok=False, name="ESP-IDF", error="ESP-IDF not found", hint=INSTALL_HINT)


async def find_idf_python() -> str | None:
    """Locate a working interpreter under ``~/.espressif/python_env/idf*``."""
    env_dir = Path.home() / ".espressif" / "python_env"
    if not env_dir.is_dir():
        return None

    timeout = get_settings().timeouts.python_env
    for env in sorted(env_dir.glob("idf*"), reverse=True):
        python = env / "bin" / "python"
        if not python.exists():
            continue
        if _probe_ok(await probe(str(python), ["--version"], timeout)):
            return str(python)
    return None


async def check_pyserial(python: str) -> HealthStatus:
    result = await probe(
        python,
        ["-c", "import serial; print(serial.__version__)"],
        get_settings().timeouts.health_check,
    )
    if not _probe_ok(result):
        return HealthStatus(
            ok=False,
            name="pyserial",
            error="pyserial not installed in IDF environment",
            hint=REINSTALL_HINT,
        )
    return HealthStatus(ok=True, name="pyserial", version=result.data.stdout.strip())


async def check_esptool(python: str) -> HealthStatus:
    result = await probe(python, ["-m", "esptool", "version"], get_settings().timeouts.health_check)
    if not _probe_ok(result):
        return HealthStatus(
            ok=False,
            name="esptool",
            error="esptool not installed in IDF environment",
            hint=REINSTALL_HINT,
        )
    # "esptool.py v4.8.1"
    match = re.search(r"v?(\d+(?:\.\d+)+)", result.data.stdout)
    return HealthStatus(ok=True, name="esptool", version=match.group(1) if match else "unknown")


async def run_health_checks() -> SystemHealth:
    python, git, idf = await asyncio.gather(check_python(), check_git(), check_idf())

    idf_python = await find_idf_python() if idf.ok else None
    if idf_python:
        pyserial, esptool = await asyncio.gather(
            check_pyserial(idf_python), check_esptool(idf_python)
        )
    else:
        reason = "ESP-IDF not installed" if not idf.ok else "ESP-IDF Python environment not found"
        pyserial = HealthStatus(ok=False, name="pyserial", error=reason, hint=INSTALL_HINT)
        esptool = HealthStatus(ok=False, name="esptool", error=reason, hint=INSTALL_HINT)

    return SystemHealth(
        python=python,
        git=git,
        idf=idf,
        pyserial=pyserial,
        esptool=esptool,
        idf_python=idf_python,
    )


async def get_health(refresh: bool = False) -> SystemHealth:
    """Cached system health; ``refresh`` forces the probes to run again."""
    global _health_cache
    if _health_cache is None or refresh:
        _health_cache = await run_health_checks()
        logger.debug("Health checks finished", health=_health_cache.to_dict())
    return _health_cache


def clear_health_cache() -> None:
    global _health_cache
    _health_cache = None


async def require_idf() -> Result[IdfRequirement]:
    """ESP-IDF path and its python interpreter, or why they are unavailable."""
    health = await get_health()
    if not health.idf.ok:
        return Result.fail(idf_not_installed())
    if not health.idf_python:
        return Result.fail(idf_python_not_found())
    return Result.ok(IdfRequirement(python=health.idf_python, idf_path=health.idf.path))
