"""Serial device enumeration.

Ports come from pyserial's ``comports()``. USB bridges are labelled from
the vendor table in ``config.constants``; ESP-compatible ports are then
probed with ``esptool chip_id`` in the ESP-IDF python environment.
"""

import asyncio
import re
from dataclasses import asdict, dataclass, replace

import serial.tools.list_ports

from config import get_settings
from config.constants import ESPRESSIF_VID, USB_VENDORS
from core.exceptions import CommandError, ErrorCode
from core.result import Result
from observability import get_logger

from .health import probe, require_idf

logger = get_logger("services.ports")

# Bridge chips that are commonly wired to an ESP module
ESP_BRIDGE_CHIPS = ("CH34", "CP210", "FT232", "CH9")

CHIP_PATTERNS = (
    re.compile(r"Chip is (ESP32[A-Za-z0-9-]*)", re.IGNORECASE),
    re.compile(r"Detecting chip type[.\s]*(ESP32[A-Za-z0-9-]*)", re.IGNORECASE),
    re.compile(r"Chip type:\s*(ESP32[A-Za-z0-9-]*)", re.IGNORECASE),
)

_HWID_PATTERN = re.compile(r"VID:PID=([0-9A-Fa-f]+):([0-9A-Fa-f]+)")


@dataclass
class SerialDevice:
    """A USB serial port.

    Attributes:
        port: Device path, e.g. ``/dev/ttyUSB0``.
        connection_type: ``native-usb``, ``uart-bridge`` or ``unknown``.
        vendor_id: USB vendor id, uppercase hex.
        product_id: USB product id, uppercase hex.
        manufacturer: Vendor name from the USB table.
        chip: Bridge chip (CP210x, CH340, ...) or vendor name.
        esp_chip: ESP chip reported by esptool, when detected.
        description: Port description from the OS.
    """

    port: str
    connection_type: str = "unknown"
    vendor_id: str | None = None
    product_id: str | None = None
    manufacturer: str | None = None
    chip: str | None = None
    esp_chip: str | None = None
    description: str | None = None

    @property
    def is_esp_compatible(self) -> bool:
        if self.connection_type == "native-usb":
            return True
        return bool(self.chip) and any(name in self.chip for name in ESP_BRIDGE_CHIPS)

    def to_dict(self) -> dict:
        names = {
            "connection_type": "connectionType",
            "vendor_id": "vendorId",
            "product_id": "productId",
            "esp_chip": "espChip",
        }
        return {names.get(k, k): v for k, v in asdict(self).items() if v is not None}


def parse_hwid(hwid: str) -> tuple[str, str] | None:
    """Extract ``(vendor_id, product_id)`` from a pyserial hwid string.

    Example:
        >>> parse_hwid("USB VID:PID=303A:1001 SER=C0:4E LOCATION=1-1")
        ('303A', '1001')
    """
    match = _HWID_PATTERN.search(hwid or "")
    if not match:
        return None
    return match.group(1).upper(), match.group(2).upper()


def connection_type(vendor_id: str | None) -> str:
    if not vendor_id:
        return "unknown"
    return "native-usb" if vendor_id.upper() == ESPRESSIF_VID else "uart-bridge"


def identify_chip(vendor_id: str | None, product_id: str | None) -> str | None:
    """Bridge chip name for a VID:PID, falling back to the vendor name."""
    vendor = USB_VENDORS.get((vendor_id or "").upper())
    if vendor is None:
        return None
    return vendor.chips.get((product_id or "").upper(), vendor.name)


def detect_chip_from_output(output: str) -> str | None:
    """ESP chip name from esptool output, uppercased."""
    for pattern in CHIP_PATTERNS:
        match = pattern.search(output)
        if match:
            return match.group(1).upper()
    return None


def device_from_port(port_info) -> SerialDevice | None:
    """Build a SerialDevice from a pyserial ``ListPortInfo``; None for non-USB ports."""
    if port_info.vid is not None and port_info.pid is not None:
        ids = (f"{port_info.vid:04X}", f"{port_info.pid:04X}")
    else:
        ids = parse_hwid(port_info.hwid)
    if ids is None:
        return None

    vendor_id, product_id = ids
    vendor = USB_VENDORS.get(vendor_id)
    description = port_info.description
    return SerialDevice(
        port=port_info.device,
        connection_type=connection_type(vendor_id),
        vendor_id=vendor_id,
        product_id=product_id,
        manufacturer=vendor.name if vendor else port_info.manufacturer,
        chip=identify_chip(vendor_id, product_id),
        description=description if description and description != "n/a" else None,
    )


def scan_ports() -> list[SerialDevice]:
    """USB serial ports, without chip detection. Blocking."""
    devices = []
    for port_info in serial.tools.list_ports.comports():
        device = device_from_port(port_info)
        if device is not None:
            devices.append(device)
    return sorted(devices, key=lambda d: d.port)


async def detect_esp_chip(python: str, port: str) -> str | None:
    result = await probe(
        python, ["-m", "esptool", "--port", port, "chip_id"], get_settings().timeouts.chip_detect
    )
    if not result:
        logger.debug("Chip detection failed", port=port, reason=result.error_message)
        return None
    return detect_chip_from_output(result.data.output)


async def list_ports(detect_chips: bool = True) -> Result[list[SerialDevice]]:
    """List USB serial devices.

    Args:
        detect_chips: Probe ESP-compatible ports with esptool when the
            ESP-IDF python environment is available.

    Returns:
        Result with the devices sorted by port, or a TIMEOUT / COMMAND_FAILED
        error when enumeration itself fails.
    """
    timeout = get_settings().timeouts.list_ports
    try:
        devices = await asyncio.wait_for(asyncio.to_thread(scan_ports), timeout)
    except asyncio.TimeoutError:
        return Result.fail(
            CommandError("Serial port enumeration timed out", code=ErrorCode.TIMEOUT)
        )
    except OSError as e:
        return Result.fail(
            CommandError("Failed to enumerate serial ports", code=ErrorCode.COMMAND_FAILED, cause=e)
        )

    if not detect_chips or not devices:
        return Result.ok(devices)

    idf = await require_idf()
    if not idf:
        logger.debug("Skipping chip detection", reason=idf.error_message)
        return Result.ok(devices)

    compatible = [d for d in devices if d.is_esp_compatible]
    chips = await asyncio.gather(*(detect_esp_chip(idf.data.python, d.port) for d in compatible))
    detected = {d.port: chip for d, chip in zip(compatible, chips)}
    return Result.ok([replace(d, esp_chip=detected.get(d.port)) for d in devices])
