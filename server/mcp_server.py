"""espcli MCP server.

Exposes the project operations as MCP tools. Each tool runs the same
operation the CLI and HTTP bridge run, collecting its output from the
event bus for the tool response.
"""

import re
import time
from dataclasses import dataclass

from mcp.server.fastmcp import FastMCP

from config import get_settings
from config.constants import DEFAULT_FLASH_BAUD
from core.events import Event, EventKind, create_operation_id, emitter
from core.result import Result
from core.types import BuildConfig, CleanConfig, FlashConfig
from observability import get_logger, get_metrics
from operations import build, clean, flash, list_devices
from project import ProjectInfo
from services.idf import get_idf_status

logger = get_logger("server.mcp")

OUTPUT_TAIL = 4000


@dataclass
class ToolResponse:
    """Text returned by a tool.

    Attributes:
        success: Whether the operation succeeded.
        message: Human-readable status message.
        details: Tool output or error context.
        error_code: Error code for programmatic handling.
        duration_seconds: Operation duration in seconds.
    """

    success: bool
    message: str
    details: str = ""
    error_code: str | None = None
    duration_seconds: float = 0.0

    def to_response(self) -> str:
        if self.success:
            parts = [self.message]
            if self.duration_seconds > 0:
                parts.append(f" (duration: {self.duration_seconds:.2f}s)")
        else:
            parts = [f"[{self.error_code}] " if self.error_code else "", f"Error: {self.message}"]
        if self.details:
            parts.append(f"\n\n{self.sanitize(self.details)}")
        return "".join(parts)

    @staticmethod
    def sanitize(details: str) -> str:
        """Replace user home directories with ``~/``."""
        sanitized = re.sub(r"/home/[^/\s]+/", "~/", details)
        sanitized = re.sub(r"/Users/[^/\s]+/", "~/", sanitized)
        return re.sub(r"[A-Z]:\\Users\\[^\\]+\\", "~/", sanitized, flags=re.IGNORECASE)


class OutputCollector:
    """Subscribes to one operation id and keeps its stdout/stderr text."""

    def __init__(self, operation_id: str):
        self.operation_id = operation_id
        self._chunks: list[str] = []
        self._unsubscribe = emitter.subscribe(operation_id, self._on_event)

    def _on_event(self, event: Event) -> None:
        if event.kind in (EventKind.STDOUT, EventKind.STDERR):
            self._chunks.append(event.data.text)
        elif event.kind == EventKind.LOG and event.data.level == "warn":
            self._chunks.append(f"\nSuggestion: {event.data.message}")

    @property
    def output(self) -> str:
        return "".join(self._chunks)[-OUTPUT_TAIL:].strip()

    def close(self) -> None:
        self._unsubscribe()
        emitter.cleanup(self.operation_id)


async def run_tool(name: str, operation, config, success_message: str) -> str:
    """Run a batch operation and format its outcome as tool text."""
    operation_id = create_operation_id()
    collector = OutputCollector(operation_id)
    start = time.monotonic()
    try:
        result: Result = await operation(config, operation_id=operation_id)
    finally:
        collector.close()
    duration = time.monotonic() - start

    if result:
        return ToolResponse(
            True, success_message, details=collector.output, duration_seconds=duration
        ).to_response()
    logger.warning("Tool failed", tool=name, error_code=result.error.code.value)
    return ToolResponse(
        False,
        result.error.message,
        details=collector.output,
        error_code=result.error.code.value,
    ).to_response()


def create_server(project: ProjectInfo, host: str = "127.0.0.1", port: int = 8090) -> FastMCP:
    """Create the MCP server bound to ``project``.

    Args:
        project: Detected project; build/flash/clean run in its root.
        host: HTTP mode listening address.
        port: HTTP mode listening port.

    Returns:
        Configured FastMCP server instance.
    """
    mcp = FastMCP("espcli", host=host, port=port, stateless_http=True)

    @mcp.tool()
    def esp_project_info() -> str:
        """Show the ESP-IDF project the server works on.

        RETURNS:
            str: Project root, sdkconfig status, configured target and build
            state, or why the directory is not a valid project.
        """
        if not project.is_valid:
            message, hints = project.explain()
            details = "\n".join([message, *(f"- {hint}" for hint in hints)])
            return ToolResponse(False, "Not a valid ESP-IDF project", details=details).to_response()

        return "\n".join(
            [
                f"Project directory: {project.root}",
                f"sdkconfig: {'exists' if project.sdkconfig_path.exists() else 'not found'}",
                f"Target: {project.configured_target() or 'not configured'}",
                f"Build directory: {'exists' if project.build_dir.is_dir() else 'not built yet'}",
            ]
        )

    @mcp.tool()
    def esp_idf_status() -> str:
        """Report whether ESP-IDF is installed, where, and which version."""
        status = get_idf_status()
        if not status.installed:
            return ToolResponse(
                False, "ESP-IDF not found. Run `espcli install` first.", error_code="IDF_NOT_FOUND"
            ).to_response()
        return ToolResponse(
            True, f"ESP-IDF {status.version or 'unknown'}", details=f"Path: {status.path}"
        ).to_response()

    @mcp.tool()
    async def esp_list_devices() -> str:
        """List USB serial devices with bridge chip and detected ESP chip.

        RETURNS:
            str: One line per device, e.g.
            "/dev/ttyUSB0 - CP210x (ESP32-S3)".
        """
        result = await list_devices()
        if not result:
            return ToolResponse(
                False, result.error.message, error_code=result.error.code.value
            ).to_response()
        if not result.data:
            return "No serial devices detected"

        lines = []
        for device in result.data:
            line = f"{device.port} - {device.chip or device.description or 'unknown'}"
            if device.esp_chip:
                line += f" ({device.esp_chip})"
            lines.append(line)
        return "\n".join(lines)

    @mcp.tool()
    async def esp_build(target: str | None = None, clean: bool = False) -> str:
        """Build the project firmware with idf.py.

        PARAMETERS:
            target (str | None): Chip to set before building, e.g. "esp32s3".
            clean (bool): Run idf.py clean before building.
        """
        config = BuildConfig(project_dir=project.root, target=target, clean=clean)
        return await run_tool("esp_build", build, config, "Build succeeded")

    @mcp.tool()
    async def esp_flash(port: str, baud: int = DEFAULT_FLASH_BAUD) -> str:
        """Flash the built firmware to the device on ``port``.

        PARAMETERS:
            port (str): Serial device, e.g. "/dev/ttyUSB0".
            baud (int): Flash baud rate, 460800 by default.
        """
        config = FlashConfig(project_dir=project.root, port=port, baud=baud)
        return await run_tool("esp_flash", flash, config, f"Flash to {port} succeeded")

    @mcp.tool()
    async def esp_clean(full: bool = False) -> str:
        """Remove build artifacts; ``full`` runs fullclean."""
        config = CleanConfig(project_dir=project.root, full=full)
        message = "Full clean succeeded" if full else "Clean succeeded"
        return await run_tool("esp_clean", clean, config, message)

    @mcp.tool()
    def esp_operation_stats() -> str:
        """Summarize operation durations and failures recorded by this server."""
        metrics = get_metrics(get_settings().paths.metrics_file)
        stats = metrics.get_all_stats()
        if not stats:
            return "No operations recorded yet"

        lines = []
        for kind, data in sorted(stats.items()):
            lines.append(
                f"{kind}: {data['call_count']} runs, "
                f"{data['success_rate']:.0%} success, avg {data['avg_duration_ms']:.0f}ms"
            )
        failures = metrics.get_failure_summary()
        for kind, summary in sorted(failures.items()):
            errors = ", ".join(f"{e['error_code']} x{e['count']}" for e in summary["common_errors"])
            if errors:
                lines.append(f"{kind} failures: {errors}")
        return "\n".join(lines)

    return mcp


def run_mcp_server(http: bool = False, host: str | None = None, port: int | None = None) -> None:
    """Detect the project and serve MCP over stdio or streamable HTTP."""
    settings = get_settings().server
    project = ProjectInfo.detect()
    mcp = create_server(project, host=host or settings.host, port=port or settings.mcp_port)
    if http:
        mcp.run(transport="streamable-http")
    else:
        mcp.run()
