"""Core of espcli: event bus, results, errors and process supervision.

``core.process`` and ``core.interactive`` are imported directly by their
users; they depend on ``services.idf``.
"""

from .events import EventBus, EventKind, create_operation_id, emitter
from .exceptions import ErrorCode, ErrorKind, ESPCLIError
from .result import Result

__all__ = [
    "ESPCLIError",
    "ErrorCode",
    "ErrorKind",
    "EventBus",
    "EventKind",
    "Result",
    "create_operation_id",
    "emitter",
]
