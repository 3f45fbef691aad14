"""espcli local server - FastAPI application.

HTTP endpoints under ``/api`` start operations; the ``/ws`` socket streams
their events. Client messages:

    {"type": "subscribe", "operationId": "op_..."}
    {"type": "unsubscribe", "operationId": "op_..."}
    {"type": "input", "operationId": "op_...", "data": "..."}

Server messages: ``subscribed``, ``unsubscribed``, ``event`` and ``error``.
"""

import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import get_settings
from config.constants import VERSION
from observability import get_logger

from .bridge import Connection, EventHub, OperationRunner
from .routes import ApiError, router
from .schema import InputMessage, SubscribeMessage, client_message

logger = get_logger("server")


def _error(message: str, status: int, code: str | None = None) -> JSONResponse:
    content = {"error": message}
    if code:
        content["code"] = code
    return JSONResponse(status_code=status, content=content)


def _validation_message(exc: RequestValidationError) -> str:
    problems = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        problems.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    return "Invalid request: " + "; ".join(problems)


def create_app() -> FastAPI:
    """Build the server application with a fresh runner and event hub."""
    runner = OperationRunner()
    hub = EventHub()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        hub.start()
        logger.info("Server started", version=VERSION)
        try:
            yield
        finally:
            hub.stop()
            await runner.shutdown()
            logger.info("Server stopped")

    app = FastAPI(title="espcli", version=VERSION, lifespan=lifespan)
    app.state.runner = runner
    app.state.hub = hub

    app.add_middleware(
        CORSMiddleware,
        allow_origins=get_settings().server.cors_origins,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type"],
    )

    @app.exception_handler(ApiError)
    async def api_error_handler(request: Request, exc: ApiError):
        return _error(exc.message, exc.status, exc.code)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return _error(_validation_message(exc), 400, "VALIDATION_FAILED")

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        code = "NOT_FOUND" if exc.status_code == 404 else None
        return _error(str(exc.detail), exc.status_code, code)

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.error("Unhandled exception", exception=exc, path=request.url.path)
        return _error("Internal server error", 500, "UNKNOWN")

    app.include_router(router)

    @app.websocket("/ws")
    async def events_socket(websocket: WebSocket):
        await websocket.accept()
        connection = Connection(websocket)
        hub.connect(connection)
        sender = asyncio.create_task(connection.sender())
        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    raise WebSocketDisconnect(message.get("code", 1000))
                text = message.get("text")
                if text is None:
                    connection.send({"type": "error", "message": "Invalid message format"})
                    continue
                handle_client_message(hub, connection, text)
        except WebSocketDisconnect:
            logger.debug("WebSocket client disconnected")
        finally:
            hub.disconnect(connection)
            sender.cancel()
            await asyncio.gather(sender, return_exceptions=True)

    return app


def handle_client_message(hub: EventHub, connection: Connection, text: str) -> None:
    """Apply one client message; malformed ones get an ``error`` reply."""
    try:
        message = client_message.validate_json(text)
    except ValidationError:
        connection.send({"type": "error", "message": "Invalid message format"})
        return

    if isinstance(message, SubscribeMessage):
        hub.subscribe(connection, message.operation_id)
        connection.send({"type": "subscribed", "operationId": message.operation_id})
    elif isinstance(message, InputMessage):
        # The monitor reads the server's terminal, not the socket
        logger.debug("Ignoring input message", operation_id=message.operation_id)
    else:
        hub.unsubscribe(connection, message.operation_id)
        connection.send({"type": "unsubscribed", "operationId": message.operation_id})


def run_server(host: str | None = None, port: int | None = None) -> None:
    """Serve the app with uvicorn until interrupted."""
    import uvicorn

    settings = get_settings().server
    uvicorn.run(
        create_app(),
        host=host or settings.host,
        port=port or settings.port,
        log_level="warning",
    )
