"""Tests for the HTTP + WebSocket bridge."""

import asyncio
import threading

import pytest
from fastapi.testclient import TestClient

import server.routes
from config import get_settings
from config.constants import VERSION
from core.events import CompleteData, EventBus, ProgressData, StdoutData, emitter
from core.exceptions import CommandError, ErrorCode
from core.result import Result
from server.app import create_app, handle_client_message
from server.bridge import Connection, EventHub, OperationRunner
from services.ports import SerialDevice


@pytest.fixture
def client():
    with TestClient(create_app()) as test_client:
        yield test_client


@pytest.fixture
def gate():
    """Holds fake operations until the test releases them."""
    event = threading.Event()
    yield event
    event.set()


@pytest.fixture
def gated_build(monkeypatch, gate):
    """Replace the build operation with one that waits for ``gate``."""

    async def fake_build(config, operation_id=None):
        await asyncio.to_thread(gate.wait, 5)
        emitter.emit(operation_id, ProgressData("Building project..."))
        emitter.emit(operation_id, CompleteData({"projectDir": str(config.project_dir)}))
        return Result.ok(operation_id=operation_id)

    monkeypatch.setattr(server.routes, "build", fake_build)
    return fake_build


def drain(connection: Connection) -> list[dict]:
    messages = []
    while not connection.queue.empty():
        messages.append(connection.queue.get_nowait())
    return messages


# ============================================================================
# HTTP routes
# ============================================================================


class TestInfoRoutes:
    """Test read-only endpoints."""

    def test_health(self, client):
        """Test the health endpoint reports the version."""
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "version": VERSION}

    def test_targets(self, client):
        """Test the chip list is served."""
        targets = client.get("/api/targets").json()["targets"]
        assert targets[0] == {
            "id": "esp32",
            "name": "ESP32",
            "description": "Original dual-core Xtensa",
            "stable": True,
        }

    def test_idf_status_not_installed(self, client):
        """Test the IDF status without an installation."""
        assert client.get("/api/idf/status").json() == {"installed": False}

    def test_idf_status_installed(self, client, fake_idf):
        """Test the IDF status reports path and version."""
        data = client.get("/api/idf/status").json()
        assert data == {"installed": True, "path": str(fake_idf), "version": "v5.2.1"}

    def test_devices(self, client, monkeypatch):
        """Test devices are listed with camelCase keys."""

        async def fake_list_devices():
            return Result.ok([SerialDevice("/dev/ttyACM0", "native-usb", "303A", "1001")])

        monkeypatch.setattr(server.routes, "list_devices", fake_list_devices)

        assert client.get("/api/devices").json() == {
            "devices": [
                {
                    "port": "/dev/ttyACM0",
                    "connectionType": "native-usb",
                    "vendorId": "303A",
                    "productId": "1001",
                }
            ]
        }

    def test_devices_error(self, client, monkeypatch):
        """Test an enumeration failure is a 500 with its code."""

        async def fake_list_devices():
            return Result.fail(
                CommandError("Serial port enumeration timed out", code=ErrorCode.TIMEOUT)
            )

        monkeypatch.setattr(server.routes, "list_devices", fake_list_devices)

        response = client.get("/api/devices")
        assert response.status_code == 500
        assert response.json() == {
            "error": "Serial port enumeration timed out",
            "code": "TIMEOUT",
        }

    def test_operations_empty(self, client):
        """Test nothing is running on a fresh server."""
        assert client.get("/api/operations").json() == {
            "running": [],
            "monitors": [],
            "stats": {},
        }

    def test_unknown_route(self, client):
        """Test unknown paths get the JSON error shape."""
        response = client.get("/api/nope")
        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"


class TestOperationRoutes:
    """Test endpoints that start operations."""

    def test_invalid_body(self, client):
        """Test a missing field is a 400 naming the field."""
        response = client.post("/api/build", json={"target": "esp32"})

        assert response.status_code == 400
        body = response.json()
        assert body["code"] == "VALIDATION_FAILED"
        assert "projectDir" in body["error"]

    def test_invalid_baud(self, client):
        """Test a non-positive baud is rejected."""
        response = client.post(
            "/api/flash", json={"projectDir": "/tmp/blink", "port": "/dev/ttyUSB0", "baud": 0}
        )
        assert response.status_code == 400

    def test_build_returns_operation_id(self, client, gated_build):
        """Test a build starts in the background and returns its id."""
        response = client.post("/api/build", json={"projectDir": "/tmp/blink"})

        assert response.status_code == 200
        operation_id = response.json()["operationId"]
        assert operation_id.startswith("op_")
        assert client.get("/api/operations").json()["running"] == [operation_id]

    def test_cancel_running_operation(self, client, gated_build):
        """Test a running operation can be cancelled by id."""
        operation_id = client.post("/api/build", json={"projectDir": "/tmp/blink"}).json()[
            "operationId"
        ]

        response = client.post("/api/operations/cancel", json={"operationId": operation_id})

        assert response.json() == {"ok": True}

    def test_cancel_unknown_operation(self, client):
        """Test cancelling an unknown id is a 404."""
        response = client.post("/api/operations/cancel", json={"operationId": "op_missing"})

        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"

    def test_init_creates_project(self, client, tmp_path):
        """Test init runs inline and returns the project path."""
        response = client.post(
            "/api/init", json={"name": "blink", "directory": str(tmp_path), "target": "esp32c3"}
        )

        assert response.json() == {"ok": True, "projectPath": str((tmp_path / "blink").resolve())}
        assert (tmp_path / "blink" / "main" / "main.c").is_file()
        assert emitter.active_operations() == []

    def test_init_failure(self, client, tmp_path):
        """Test init failures are reported in the body."""
        (tmp_path / "blink").mkdir()
        (tmp_path / "blink" / "keep.txt").write_text("x")

        data = client.post("/api/init", json={"name": "blink", "directory": str(tmp_path)}).json()

        assert data["ok"] is False
        assert data["code"] == "INIT_FAILED"

    def test_init_rejects_unknown_language(self, client, tmp_path):
        """Test only c and cpp projects can be created."""
        response = client.post(
            "/api/init", json={"name": "blink", "directory": str(tmp_path), "language": "rust"}
        )
        assert response.status_code == 400

    def test_monitor_without_idf(self, client):
        """Test the monitor fails up front when ESP-IDF is missing."""
        response = client.post("/api/monitor", json={"port": "/dev/ttyUSB0"})

        assert response.status_code == 500
        assert response.json()["code"] == "IDF_NOT_FOUND"
        assert emitter.active_operations() == []

    def test_install_defaults_to_configured_path(self, client, monkeypatch):
        """Test an install without a path uses the configured ESP directory."""
        started = threading.Event()
        configs = []

        async def fake_install(config, operation_id=None):
            configs.append(config)
            started.set()
            return Result.ok(operation_id=operation_id)

        monkeypatch.setattr(server.routes, "install", fake_install)

        response = client.post("/api/install", json={"target": "esp32c3"})

        assert response.json()["operationId"].startswith("op_")
        assert started.wait(5)
        assert configs[0].path == get_settings().paths.esp_path
        assert configs[0].target == "esp32c3"

    def test_stop_unknown_monitor(self, client):
        """Test stopping a monitor that is not running."""
        assert client.post("/api/monitor/stop", json={"operationId": "op_x"}).json() == {
            "ok": False
        }


# ============================================================================
# WebSocket
# ============================================================================


class TestWebSocket:
    """Test event streaming over /ws."""

    def test_invalid_message(self, client):
        """Test malformed messages get an error reply."""
        with client.websocket_connect("/ws") as ws:
            ws.send_text("not json")
            assert ws.receive_json() == {"type": "error", "message": "Invalid message format"}

            ws.send_json({"type": "subscribe"})
            assert ws.receive_json()["type"] == "error"

    def test_binary_frame_keeps_connection_open(self, client):
        """Test a binary frame gets an error reply and the socket stays usable."""
        with client.websocket_connect("/ws") as ws:
            ws.send_bytes(b"\x00\x01")
            assert ws.receive_json() == {"type": "error", "message": "Invalid message format"}

            ws.send_json({"type": "subscribe", "operationId": "op_a"})
            assert ws.receive_json() == {"type": "subscribed", "operationId": "op_a"}

    def test_subscribe_and_unsubscribe(self, client):
        """Test subscription acknowledgements echo the id."""
        with client.websocket_connect("/ws") as ws:
            ws.send_json({"type": "subscribe", "operationId": "op_a"})
            assert ws.receive_json() == {"type": "subscribed", "operationId": "op_a"}

            ws.send_json({"type": "unsubscribe", "operationId": "op_a"})
            assert ws.receive_json() == {"type": "unsubscribed", "operationId": "op_a"}

    def test_input_is_ignored(self, client):
        """Test input messages get no reply."""
        with client.websocket_connect("/ws") as ws:
            ws.send_json({"type": "input", "operationId": "op_a", "data": "r"})
            ws.send_json({"type": "subscribe", "operationId": "op_a"})
            assert ws.receive_json()["type"] == "subscribed"

    def test_operation_events_are_streamed(self, client, gated_build, gate):
        """Test a subscribed client receives the events of a build in order."""
        with client.websocket_connect("/ws") as ws:
            operation_id = client.post("/api/build", json={"projectDir": "/tmp/blink"}).json()[
                "operationId"
            ]
            ws.send_json({"type": "subscribe", "operationId": operation_id})
            assert ws.receive_json()["type"] == "subscribed"

            gate.set()
            progress = ws.receive_json()
            complete = ws.receive_json()

        assert progress["type"] == "event"
        assert progress["operationId"] == operation_id
        assert progress["event"]["data"] == {"type": "progress", "message": "Building project..."}
        assert complete["event"]["type"] == "complete"
        assert complete["event"]["data"]["result"] == {"projectDir": "/tmp/blink"}


# ============================================================================
# Bridge internals
# ============================================================================


class TestClientMessages:
    """Test client message handling without a socket."""

    def test_subscribe_updates_connection(self):
        """Test subscribe records the id on the connection."""
        hub = EventHub(EventBus())
        connection = Connection(None)

        handle_client_message(hub, connection, '{"type": "subscribe", "operationId": "op_a"}')

        assert connection.subscriptions == {"op_a"}
        assert drain(connection) == [{"type": "subscribed", "operationId": "op_a"}]

    def test_snake_case_is_accepted(self):
        """Test field names may also be given in snake_case."""
        hub = EventHub(EventBus())
        connection = Connection(None)

        handle_client_message(hub, connection, '{"type": "subscribe", "operation_id": "op_b"}')

        assert connection.subscriptions == {"op_b"}

    def test_unknown_type(self):
        """Test unknown message types are rejected."""
        connection = Connection(None)
        handle_client_message(EventHub(EventBus()), connection, '{"type": "resize"}')
        assert drain(connection)[0]["type"] == "error"


class TestEventHub:
    """Test fan-out of bus events to connections."""

    @pytest.mark.asyncio
    async def test_dispatch_to_subscribers_only(self):
        """Test only connections subscribed to the id get the event."""
        bus = EventBus()
        hub = EventHub(bus)
        hub.start()
        watching, other = Connection(None), Connection(None)
        hub.connect(watching)
        hub.connect(other)
        hub.subscribe(watching, "op_a")

        bus.emit("op_a", StdoutData("I (312) main: hello\n"))
        await asyncio.sleep(0)

        messages = drain(watching)
        assert len(messages) == 1
        assert messages[0]["operationId"] == "op_a"
        assert messages[0]["event"]["data"] == {"type": "stdout", "text": "I (312) main: hello\n"}
        assert drain(other) == []
        hub.stop()

    @pytest.mark.asyncio
    async def test_disconnected_connection_gets_nothing(self):
        """Test a disconnected client is no longer a target."""
        bus = EventBus()
        hub = EventHub(bus)
        hub.start()
        connection = Connection(None)
        hub.connect(connection)
        hub.subscribe(connection, "op_a")
        hub.disconnect(connection)

        bus.emit("op_a", StdoutData("x"))
        await asyncio.sleep(0)

        assert drain(connection) == []
        assert hub.connection_count == 0
        hub.stop()


class TestOperationRunner:
    """Test background operation tasks."""

    @pytest.mark.asyncio
    async def test_finished_operation_is_released(self):
        """Test the bus state of an operation is cleaned up when its task ends."""
        bus = EventBus()
        runner = OperationRunner(bus)

        async def operation(config, operation_id=None):
            bus.emit(operation_id, CompleteData(config))
            return Result.ok(config)

        operation_id = runner.start(operation, {"ok": True}, operation_id="op_done")
        assert runner.active() == ["op_done"]
        await asyncio.sleep(0.05)

        assert operation_id == "op_done"
        assert runner.active() == []
        assert not bus.is_terminated("op_done")

    @pytest.mark.asyncio
    async def test_shutdown_cancels_running(self):
        """Test shutdown cancels and awaits running operations."""
        runner = OperationRunner(EventBus())
        cancelled = asyncio.Event()

        async def operation(config, operation_id=None):
            try:
                await asyncio.sleep(30)
            except asyncio.CancelledError:
                cancelled.set()
                raise

        runner.start(operation, None)
        await asyncio.sleep(0)
        await runner.shutdown()

        assert cancelled.is_set()
        assert runner.active() == []

    @pytest.mark.asyncio
    async def test_cancel_finished_returns_false(self):
        """Test cancel only applies to running tasks."""
        runner = OperationRunner(EventBus())
        assert runner.cancel("op_missing") is False
