"""Process-wide event bus keyed by operation identifier.

Every long-running operation gets an id from ``create_operation_id``. The
process runner and the operation itself emit events under that id; CLI and
server adapters subscribe to render them.

Delivery is synchronous and happens while the registry lock is held, so once
an unsubscribe function returns the handler never sees another event. Handlers
must be quick; adapters that do real work (socket writes) queue the event and
return.
"""

import secrets
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal, Union

from observability import get_logger

logger = get_logger("core.events")


class EventKind(str, Enum):
    PROGRESS = "progress"
    LOG = "log"
    STDOUT = "stdout"
    STDERR = "stderr"
    COMPLETE = "complete"
    ERROR = "error"


TERMINAL_KINDS = frozenset({EventKind.COMPLETE, EventKind.ERROR})

LogLevel = Literal["info", "warn", "error"]


@dataclass(frozen=True)
class ProgressData:
    message: str
    percent: float | None = None
    kind: EventKind = field(default=EventKind.PROGRESS, init=False)


@dataclass(frozen=True)
class LogData:
    level: LogLevel
    message: str
    kind: EventKind = field(default=EventKind.LOG, init=False)


@dataclass(frozen=True)
class StdoutData:
    text: str
    kind: EventKind = field(default=EventKind.STDOUT, init=False)


@dataclass(frozen=True)
class StderrData:
    text: str
    kind: EventKind = field(default=EventKind.STDERR, init=False)


@dataclass(frozen=True)
class CompleteData:
    result: Any = None
    kind: EventKind = field(default=EventKind.COMPLETE, init=False)


@dataclass(frozen=True)
class ErrorData:
    message: str
    code: str | None = None
    kind: EventKind = field(default=EventKind.ERROR, init=False)


EventData = Union[ProgressData, LogData, StdoutData, StderrData, CompleteData, ErrorData]


def _to_jsonable(value: Any) -> Any:
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, dict):
        return {k: _to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_jsonable(v) for v in value]
    if isinstance(value, Enum):
        return value.value
    return value


@dataclass(frozen=True)
class Event:
    """Immutable record delivered to subscribers.

    Attributes:
        kind: Event kind, mirrors ``data.kind``.
        timestamp: Emission time in epoch seconds.
        operation_id: Routing key.
        data: Kind-specific payload.
    """

    kind: EventKind
    timestamp: float
    operation_id: str
    data: EventData

    @property
    def is_terminal(self) -> bool:
        return self.kind in TERMINAL_KINDS

    def to_dict(self) -> dict:
        """Wire form used by the WebSocket bridge."""
        payload: dict[str, Any] = {"type": self.kind.value}
        if isinstance(self.data, ProgressData):
            payload["message"] = self.data.message
            if self.data.percent is not None:
                payload["percent"] = self.data.percent
        elif isinstance(self.data, LogData):
            payload["level"] = self.data.level
            payload["message"] = self.data.message
        elif isinstance(self.data, (StdoutData, StderrData)):
            payload["text"] = self.data.text
        elif isinstance(self.data, CompleteData):
            payload["result"] = _to_jsonable(self.data.result)
        elif isinstance(self.data, ErrorData):
            payload["message"] = self.data.message
            if self.data.code is not None:
                payload["code"] = self.data.code
        return {
            "type": self.kind.value,
            "timestamp": int(self.timestamp * 1000),
            "operationId": self.operation_id,
            "data": payload,
        }


Handler = Callable[[Event], None]
Unsubscribe = Callable[[], None]


def create_operation_id() -> str:
    """Mint a new operation identifier, e.g. ``op_1718000000000_k3j9x2``."""
    return f"op_{int(time.time() * 1000)}_{secrets.token_hex(3)}"


class EventBus:
    """Publish/subscribe registry for operation events.

    Example:
        unsubscribe = bus.subscribe(op_id, lambda event: print(event.kind))
        bus.emit(op_id, ProgressData("Building project..."))
        unsubscribe()
        bus.cleanup(op_id)
    """

    def __init__(self):
        self._handlers: dict[str, list[Handler]] = {}
        self._global_handlers: list[Handler] = []
        self._terminated: set[str] = set()
        self._lock = threading.RLock()

    def subscribe(self, operation_id: str, handler: Handler) -> Unsubscribe:
        """Register ``handler`` for one operation id.

        Returns:
            Function that removes the registration. Calling it more than once
            is harmless.
        """
        with self._lock:
            self._handlers.setdefault(operation_id, []).append(handler)

        def unsubscribe() -> None:
            with self._lock:
                handlers = self._handlers.get(operation_id)
                if handlers and handler in handlers:
                    handlers.remove(handler)
                    if not handlers:
                        del self._handlers[operation_id]

        return unsubscribe

    def subscribe_all(self, handler: Handler) -> Unsubscribe:
        """Register ``handler`` for every event regardless of id."""
        with self._lock:
            self._global_handlers.append(handler)

        def unsubscribe() -> None:
            with self._lock:
                if handler in self._global_handlers:
                    self._global_handlers.remove(handler)

        return unsubscribe

    def emit(self, operation_id: str, data: EventData) -> Event | None:
        """Build an event and deliver it to id-scoped, then global handlers.

        After a terminal event (complete/error) for an id, later emissions
        for that id are dropped until ``cleanup`` is called.

        Returns:
            The delivered event, or None if it was dropped.
        """
        with self._lock:
            if operation_id in self._terminated:
                logger.debug(
                    "Dropped event after terminal event",
                    operation_id=operation_id,
                    event_kind=data.kind.value,
                )
                return None

            event = Event(
                kind=data.kind,
                timestamp=time.time(),
                operation_id=operation_id,
                data=data,
            )
            if event.is_terminal:
                self._terminated.add(operation_id)

            # Snapshot so handlers may unsubscribe while being called
            for handler in list(self._handlers.get(operation_id, ())):
                if handler in self._handlers.get(operation_id, ()):
                    self._deliver(handler, event)
            for handler in list(self._global_handlers):
                if handler in self._global_handlers:
                    self._deliver(handler, event)
            return event

    def cleanup(self, operation_id: str) -> None:
        """Drop all id-scoped subscriptions and the terminal marker for an id."""
        with self._lock:
            self._handlers.pop(operation_id, None)
            self._terminated.discard(operation_id)

    def is_terminated(self, operation_id: str) -> bool:
        with self._lock:
            return operation_id in self._terminated

    def active_operations(self) -> list[str]:
        """Ids that currently have id-scoped subscribers."""
        with self._lock:
            return list(self._handlers)

    def reset(self) -> None:
        """Drop every subscription. Used by tests."""
        with self._lock:
            self._handlers.clear()
            self._global_handlers.clear()
            self._terminated.clear()

    @staticmethod
    def _deliver(handler: Handler, event: Event) -> None:
        try:
            handler(event)
        except Exception as e:
            logger.error(
                "Event handler failed",
                exception=e,
                operation_id=event.operation_id,
                event_kind=event.kind.value,
            )


emitter = EventBus()

__all__ = [
    "CompleteData",
    "ErrorData",
    "Event",
    "EventBus",
    "EventData",
    "EventKind",
    "LogData",
    "ProgressData",
    "StderrData",
    "StdoutData",
    "create_operation_id",
    "emitter",
]
