"""Configuration module for espcli.

Static ESP-IDF constants and runtime settings.
"""

from .constants import (
    CONFIG_FILENAME,
    DEFAULT_FLASH_BAUD,
    DEFAULT_MONITOR_BAUD,
    ESP_TARGETS,
    USB_VENDORS,
    VERSION,
)
from .settings import (
    Settings,
    ToolTimeouts,
    get_settings,
    load_settings,
    reset_settings,
    set_settings,
)

__all__ = [
    # Constants
    "CONFIG_FILENAME",
    "DEFAULT_FLASH_BAUD",
    "DEFAULT_MONITOR_BAUD",
    "ESP_TARGETS",
    "USB_VENDORS",
    "VERSION",
    # Settings
    "Settings",
    "ToolTimeouts",
    "get_settings",
    "load_settings",
    "reset_settings",
    "set_settings",
]
