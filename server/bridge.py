"""Glue between the event bus and the HTTP/WebSocket server.

``OperationRunner`` starts batch operations as asyncio tasks and releases
their bus state once they finish. ``EventHub`` fans events out to the
WebSocket connections subscribed to their operation id.
"""

import asyncio
import threading
from collections.abc import Awaitable, Callable

from fastapi import WebSocket

from core.events import Event, EventBus, create_operation_id, emitter
from core.result import Result
from observability import get_logger

logger = get_logger("server.bridge")


class OperationRunner:
    """Background tasks for batch operations, keyed by operation id."""

    def __init__(self, bus: EventBus = emitter):
        self._bus = bus
        self._tasks: dict[str, asyncio.Task] = {}

    def start(
        self,
        operation: Callable[..., Awaitable[Result]],
        config,
        operation_id: str | None = None,
    ) -> str:
        """Schedule ``operation(config, operation_id=...)`` and return its id."""
        operation_id = operation_id or create_operation_id()
        task = asyncio.create_task(operation(config, operation_id=operation_id))
        self._tasks[operation_id] = task
        task.add_done_callback(lambda t: self._finished(operation_id, t))
        logger.info(
            "Operation scheduled",
            operation_id=operation_id,
            operation_kind=getattr(operation, "kind", operation.__name__),
        )
        return operation_id

    def cancel(self, operation_id: str) -> bool:
        task = self._tasks.get(operation_id)
        if task is None or task.done():
            return False
        return task.cancel()

    def active(self) -> list[str]:
        return [op_id for op_id, task in self._tasks.items() if not task.done()]

    async def shutdown(self) -> None:
        """Cancel running operations and wait for their cleanup."""
        tasks = [task for task in self._tasks.values() if not task.done()]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    def _finished(self, operation_id: str, task: asyncio.Task) -> None:
        self._tasks.pop(operation_id, None)
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                "Operation task failed", exception=task.exception(), operation_id=operation_id
            )
        self._bus.cleanup(operation_id)


class Connection:
    """One WebSocket client: its subscriptions and an outgoing queue.

    Only ``sender`` writes to the socket, so replies and events keep
    their order.
    """

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket
        self.subscriptions: set[str] = set()
        self.queue: asyncio.Queue[dict] = asyncio.Queue()

    def send(self, message: dict) -> None:
        self.queue.put_nowait(message)

    async def sender(self) -> None:
        while True:
            message = await self.queue.get()
            await self.websocket.send_json(message)


class EventHub:
    """Forwards bus events to subscribed WebSocket connections.

    ``dispatch`` may run on any thread; it only enqueues onto the server
    loop with ``call_soon_threadsafe``.
    """

    def __init__(self, bus: EventBus = emitter):
        self._bus = bus
        self._connections: set[Connection] = set()
        self._lock = threading.Lock()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._unsubscribe: Callable[[], None] | None = None

    def start(self) -> None:
        self._loop = asyncio.get_running_loop()
        self._unsubscribe = self._bus.subscribe_all(self.dispatch)

    def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def connect(self, connection: Connection) -> None:
        with self._lock:
            self._connections.add(connection)

    def disconnect(self, connection: Connection) -> None:
        with self._lock:
            self._connections.discard(connection)

    def subscribe(self, connection: Connection, operation_id: str) -> None:
        with self._lock:
            connection.subscriptions.add(operation_id)

    def unsubscribe(self, connection: Connection, operation_id: str) -> None:
        with self._lock:
            connection.subscriptions.discard(operation_id)

    @property
    def connection_count(self) -> int:
        with self._lock:
            return len(self._connections)

    def dispatch(self, event: Event) -> None:
        with self._lock:
            targets = [c for c in self._connections if event.operation_id in c.subscriptions]
        if not targets or self._loop is None or self._loop.is_closed():
            return

        message = {"type": "event", "operationId": event.operation_id, "event": event.to_dict()}
        for connection in targets:
            self._loop.call_soon_threadsafe(connection.send, message)
