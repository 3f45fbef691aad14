"""Terminal output for the espcli commands.

Colors are ANSI escapes and are left out when stdout is not a terminal or
``NO_COLOR`` is set.
"""

import os
import sys

from config.constants import EspTarget
from services.health import HealthStatus, SystemHealth
from services.ports import SerialDevice


class Display:
    """Colored status lines, tables and operation output.

    Example:
        display = Display()
        display.success("Build complete")
        print(display.table(["Port", "Chip"], [["/dev/ttyUSB0", "CP210x"]]))
    """

    # ANSI color codes for terminal output
    COLORS = {
        "green": "\033[32m",
        "red": "\033[31m",
        "yellow": "\033[33m",
        "blue": "\033[34m",
        "cyan": "\033[36m",
        "dim": "\033[2m",
        "bold": "\033[1m",
        "reset": "\033[0m",
    }

    ICONS = {
        "info": ("ℹ", "blue"),
        "success": ("✔", "green"),
        "warn": ("⚠", "yellow"),
        "error": ("✖", "red"),
        "step": ("→", "cyan"),
    }

    def __init__(self, stream=None, use_colors: bool | None = None):
        self.stream = stream or sys.stdout
        if use_colors is None:
            use_colors = self.stream.isatty() and "NO_COLOR" not in os.environ
        self.use_colors = use_colors

    def colorize(self, text: str, color: str) -> str:
        if not self.use_colors:
            return text
        return f"{self.COLORS[color]}{text}{self.COLORS['reset']}"

    def write(self, text: str = "", end: str = "\n") -> None:
        self.stream.write(text + end)
        self.stream.flush()

    def _line(self, level: str, message: str) -> None:
        icon, color = self.ICONS[level]
        self.write(f"{self.colorize(icon, color)} {message}")

    def info(self, message: str) -> None:
        self._line("info", message)

    def success(self, message: str) -> None:
        self._line("success", message)

    def warn(self, message: str) -> None:
        self._line("warn", message)

    def error(self, message: str) -> None:
        self._line("error", message)

    def step(self, message: str) -> None:
        self._line("step", message)

    def dim(self, message: str) -> None:
        self.write(self.colorize(message, "dim"))

    def header(self, title: str) -> None:
        self.write()
        self.write(self.colorize(title, "bold"))
        self.write(self.colorize("─" * len(title), "dim"))

    def output(self, text: str, stderr: bool = False) -> None:
        """Raw tool output, written without a trailing newline."""
        if stderr:
            text = self.colorize(text, "yellow")
        self.stream.write(text)
        self.stream.flush()

    def table(self, headers: list[str], rows: list[list[str]]) -> str:
        """Box-drawn table sized to its widest cells."""
        widths = [len(header) for header in headers]
        for row in rows:
            for i, cell in enumerate(row):
                widths[i] = max(widths[i], len(cell))

        def border(left: str, middle: str, right: str) -> str:
            return left + middle.join("─" * (w + 2) for w in widths) + right

        def line(cells: list[str], color: str | None = None) -> str:
            padded = []
            for cell, width in zip(cells, widths, strict=True):
                # Pad before coloring, escape codes take no columns
                cell = cell.ljust(width)
                padded.append(f" {self.colorize(cell, color) if color else cell} ")
            return "│" + "│".join(padded) + "│"

        lines = [border("┌", "┬", "┐"), line(headers, "bold"), border("├", "┼", "┤")]
        lines.extend(line(row) for row in rows)
        lines.append(border("└", "┴", "┘"))
        return "\n".join(lines)

    def device_table(self, devices: list[SerialDevice]) -> str:
        rows = []
        for device in devices:
            kind = {"native-usb": "USB", "uart-bridge": "UART"}.get(device.connection_type, "-")
            rows.append(
                [
                    device.port,
                    kind,
                    device.chip or device.description or "-",
                    device.esp_chip or ("?" if device.connection_type == "native-usb" else "-"),
                ]
            )
        return self.table(["Port", "Type", "Chip", "ESP"], rows)

    def device_hint(self, devices: list[SerialDevice]) -> None:
        """Explain the two ports a board with native USB and a UART bridge shows."""
        kinds = {device.connection_type for device in devices}
        if {"native-usb", "uart-bridge"} <= kinds:
            self.write()
            self.dim("  Hint: Multiple ports from same board")
            self.dim("  • UART - Reliable flashing & monitoring")
            self.dim("  • USB  - JTAG debugging")

    def target_table(self, targets: list[EspTarget]) -> str:
        rows = [
            [t.id, t.name, t.description, "stable" if t.stable else "preview"] for t in targets
        ]
        return self.table(["Target", "Name", "Description", "Status"], rows)

    def health_line(self, status: HealthStatus) -> None:
        """One ``doctor`` line: icon, padded name, version or error, path."""
        name = status.name.ljust(10)
        if status.ok:
            detail = f"v{status.version}" if status.version else ""
            if status.path:
                detail = f"{detail} {self.colorize(status.path, 'dim')}".strip()
            self.write(f"  {self.colorize('✓', 'green')} {name} {detail}".rstrip())
        else:
            self.write(f"  {self.colorize('✗', 'red')} {name} {status.error or 'not found'}")
            if status.hint:
                self.write(f"    {self.colorize('→ ' + status.hint, 'dim')}")

    def health_report(self, health: SystemHealth, devices: list[SerialDevice]) -> None:
        self.header("System")
        for status in health.checks:
            self.health_line(status)

        self.header("Devices")
        if not devices:
            self.dim("  No serial devices detected")
        for device in devices:
            via = "USB" if device.connection_type == "native-usb" else "UART"
            chip = device.esp_chip or device.chip or "unknown"
            self.write(f"  • {device.port} ({chip} via {via})")

        self.write()
        if health.all_ok:
            self.write(
                self.colorize("✓ All checks passed! Ready for ESP32 development.", "green")
            )
        else:
            self.write(
                self.colorize("⚠ Some checks failed. See hints above to fix issues.", "yellow")
            )
