"""Serial device listing."""

from core.result import Result
from services.ports import SerialDevice, list_ports


async def list_devices(detect_chips: bool = True) -> Result[list[SerialDevice]]:
    return await list_ports(detect_chips=detect_chips)
