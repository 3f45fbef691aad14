"""Static ESP-IDF knowledge: chip targets, USB bridges, defaults."""

from dataclasses import dataclass
from pathlib import Path

VERSION = "0.0.1"

DEFAULT_ESP_PATH = Path.home() / "esp"
DEFAULT_IDF_PATH = DEFAULT_ESP_PATH / "esp-idf"
IDF_REPO_URL = "https://github.com/espressif/esp-idf.git"

DEFAULT_FLASH_BAUD = 460800
DEFAULT_MONITOR_BAUD = 115200

CONFIG_FILENAME = ".espcli"

# Espressif's USB vendor id, used by chips with a native USB-Serial/JTAG unit
ESPRESSIF_VID = "303A"


@dataclass(frozen=True)
class EspTarget:
    """A chip accepted by ``idf.py set-target``."""

    id: str
    name: str
    description: str
    stable: bool

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "stable": self.stable,
        }


ESP_TARGETS: list[EspTarget] = [
    # Xtensa
    EspTarget("esp32", "ESP32", "Original dual-core Xtensa", True),
    EspTarget("esp32s2", "ESP32-S2", "Single-core Xtensa with USB OTG", True),
    EspTarget("esp32s3", "ESP32-S3", "Dual-core Xtensa with AI acceleration", True),
    EspTarget("esp32s31", "ESP32-S3 (rev1)", "ESP32-S3 revision 1", False),
    # RISC-V
    EspTarget("esp32c2", "ESP32-C2", "Single-core RISC-V (cost-optimized)", True),
    EspTarget("esp32c3", "ESP32-C3", "Single-core RISC-V", True),
    EspTarget("esp32c5", "ESP32-C5", "RISC-V with WiFi 6", False),
    EspTarget("esp32c6", "ESP32-C6", "RISC-V with WiFi 6 & 802.15.4", True),
    EspTarget("esp32c61", "ESP32-C61", "ESP32-C6 variant", False),
    # 802.15.4 / Thread / Zigbee
    EspTarget("esp32h2", "ESP32-H2", "RISC-V with 802.15.4/Zigbee/Thread", True),
    EspTarget("esp32h21", "ESP32-H21", "ESP32-H2 variant", False),
    EspTarget("esp32h4", "ESP32-H4", "RISC-V 802.15.4", False),
    # High performance
    EspTarget("esp32p4", "ESP32-P4", "High-performance dual-core RISC-V", False),
]

TARGET_IDS = frozenset(target.id for target in ESP_TARGETS)


@dataclass(frozen=True)
class UsbVendor:
    """USB vendor with the bridge chips espcli recognizes by product id."""

    name: str
    chips: dict[str, str]


USB_VENDORS: dict[str, UsbVendor] = {
    "10C4": UsbVendor("Silicon Labs", {"EA60": "CP210x", "EA70": "CP2105"}),
    "1A86": UsbVendor(
        "QinHeng Electronics",
        {"7523": "CH340", "5523": "CH341", "55D3": "CH343", "55D4": "CH9102"},
    ),
    "0403": UsbVendor(
        "FTDI",
        {"6001": "FT232R", "6010": "FT2232", "6011": "FT4232", "6014": "FT232H"},
    ),
    ESPRESSIF_VID: UsbVendor(
        "Espressif",
        {"1001": "ESP32 (USB-JTAG)", "1002": "ESP32 (USB-OTG)"},
    ),
}

# Relative to the home directory
SHELL_CONFIGS: dict[str, str] = {
    "zsh": ".zshrc",
    "bash": ".bashrc",
    "fish": ".config/fish/config.fish",
}
