"""High-level ESP-IDF operations.

Each batch operation takes a config dataclass and an optional operation id,
streams its events on ``core.events.emitter`` and returns a ``Result``.
"""

from .build import build
from .clean import clean
from .devices import list_devices
from .flash import flash
from .init import init
from .install import install
from .monitor import active_monitors, start_monitor, stop_monitor

__all__ = [
    "active_monitors",
    "build",
    "clean",
    "flash",
    "init",
    "install",
    "list_devices",
    "start_monitor",
    "stop_monitor",
]
