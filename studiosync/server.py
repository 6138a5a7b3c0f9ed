from __future__ import annotations

import argparse
import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Any, Callable, Dict, Optional

import anyio
from fastapi import FastAPI, Request, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import ServerConfig
from .context import SyncContext
from .errors import (
    CODE_INVALID_JSON,
    CODE_NOT_FOUND,
    CODE_PAYLOAD_TOO_LARGE,
    CODE_SERVER_ERROR,
    GENERIC_ERROR_MESSAGE,
    TransportError,
)
from .gateway import Rejected
from .logs import configure_logging
from .models import (
    EVENT_PING,
    EVENT_REQUEST_UPDATE,
    SERVICE_NAME,
    SERVICE_VERSION,
    ErrorResponse,
    HealthResponse,
    ObserverMessage,
    StatsResponse,
    model_to_dict,
)

logger = logging.getLogger("studiosync.server")

CLOSE_GOING_AWAY = 1001
REASON_SERVER_SHUTDOWN = "server shutdown"
REASON_TRANSPORT_ERROR = "transport error"
REASON_SERVER_ERROR = "server error"


def create_app(
    *,
    context: Optional[SyncContext] = None,
    config: Optional[ServerConfig] = None,
) -> FastAPI:
    resolved_config = config or ServerConfig()
    resolved_context = context or SyncContext(
        expose_errors=not resolved_config.is_production,
        outbox_size=resolved_config.outbox_size,
    )
    max_body_bytes = max(1, int(resolved_config.max_body_bytes))

    @asynccontextmanager
    async def _lifespan(_: FastAPI):
        logger.info(
            "SERVER_START version=%s environment=%s",
            SERVICE_VERSION,
            resolved_config.environment,
        )
        try:
            yield
        finally:
            resolved_context.shutdown()
            logger.info("SERVER_STOP")

    app = FastAPI(
        title=SERVICE_NAME,
        description="Relays Roblox Studio state from the sync plugin to live observers.",
        version=SERVICE_VERSION,
        lifespan=_lifespan,
    )
    app.state.context = resolved_context
    app.state.config = resolved_config

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        logger.info("REQUEST method=%s path=%s", request.method, request.url.path)
        return await call_next(request)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(resolved_config.cors_origins),
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
        allow_credentials=True,
    )

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        if exc.status_code == 404:
            body = ErrorResponse(error="Not Found", code=CODE_NOT_FOUND, path=request.url.path)
        else:
            body = ErrorResponse(error=str(exc.detail), code=f"HTTP_{exc.status_code}")
        return JSONResponse(status_code=exc.status_code, content=model_to_dict(body, exclude_none=True))

    @app.exception_handler(Exception)
    async def unhandled_error(request: Request, exc: Exception) -> JSONResponse:
        logger.error("UNHANDLED_ERROR path=%s error=%r", request.url.path, exc)
        body = ErrorResponse(
            error="Internal Server Error",
            code=CODE_SERVER_ERROR,
            message=GENERIC_ERROR_MESSAGE if resolved_config.is_production else str(exc),
        )
        return JSONResponse(status_code=500, content=model_to_dict(body, exclude_none=True))

    @app.get("/")
    async def index(request: Request) -> dict:
        host = request.headers.get("host") or f"localhost:{resolved_config.port}"
        return {
            "name": SERVICE_NAME,
            "version": SERVICE_VERSION,
            "status": "online",
            "endpoints": {
                "health": "/health",
                "sync": "POST /api/sync",
                "current": "/api/current",
                "stats": "/api/stats",
            },
            "websocket": {
                "connected": resolved_context.registry.size(),
                "endpoint": f"ws://{host}/ws",
            },
        }

    @app.get("/health", response_model=HealthResponse)
    @app.get("/api/health", response_model=HealthResponse, include_in_schema=False)
    async def health() -> HealthResponse:
        return resolved_context.health()

    @app.post("/api/sync")
    @app.post("/sync", include_in_schema=False)
    async def sync(request: Request) -> JSONResponse:
        body = await _read_body_within(request, max_body_bytes)
        if body is None:
            return _error_response(413, "Payload too large", CODE_PAYLOAD_TOO_LARGE)
        try:
            payload = json.loads(body) if body else {}
        except ValueError:
            return _error_response(400, "Invalid JSON body", CODE_INVALID_JSON)

        result = resolved_context.ingest(payload)
        if isinstance(result, Rejected):
            return JSONResponse(status_code=result.status, content=result.to_dict())
        return JSONResponse(content=result.to_dict())

    @app.get("/api/current")
    @app.get("/current", include_in_schema=False)
    async def current() -> dict:
        return resolved_context.current()

    @app.get("/api/stats", response_model=StatsResponse)
    @app.get("/stats", response_model=StatsResponse, include_in_schema=False)
    async def stats() -> StatsResponse:
        return resolved_context.stats_view()

    @app.websocket("/ws")
    async def ws_observer(websocket: WebSocket) -> None:
        await websocket.accept()
        address = websocket.client.host if websocket.client else ""
        connection, _ = resolved_context.connect(address, websocket.headers.get("user-agent"))
        reason: Any = None
        try:
            reason = await _run_observer_session(resolved_context, websocket, connection.id)
        finally:
            resolved_context.disconnect(connection.id, reason)

    return app


async def _run_observer_session(context: SyncContext, websocket: WebSocket, connection_id: str) -> Any:
    """Run reader and writer until either ends; returns the disconnect reason.

    Both halves handle their own errors and cancel the other on exit, so no
    failure outlives the session.
    """
    outcome: Dict[str, Any] = {}

    async with anyio.create_task_group() as group:

        async def _reader() -> None:
            try:
                outcome.setdefault("reason", await _read_frames(context, websocket, connection_id))
            except Exception as exc:
                logger.error("OBSERVER_READ_FAILED id=%s error=%r", connection_id, exc)
                outcome.setdefault("reason", REASON_SERVER_ERROR)
            finally:
                group.cancel_scope.cancel()

        async def _writer() -> None:
            try:
                await context.dispatcher.drain(connection_id, websocket.send_json)
            except TransportError as exc:
                logger.warning("OBSERVER_SEND_FAILED id=%s error=%s", connection_id, exc.message)
                outcome.setdefault("reason", REASON_TRANSPORT_ERROR)
            except Exception as exc:
                logger.error("OBSERVER_WRITE_FAILED id=%s error=%r", connection_id, exc)
                outcome.setdefault("reason", REASON_SERVER_ERROR)
            else:
                outcome.setdefault("reason", REASON_SERVER_SHUTDOWN)
            finally:
                group.cancel_scope.cancel()

        group.start_soon(_reader)
        group.start_soon(_writer)

    reason = outcome.get("reason")
    if reason == REASON_SERVER_SHUTDOWN:
        try:
            await websocket.close(code=CLOSE_GOING_AWAY)
        except Exception as exc:
            logger.debug("OBSERVER_CLOSE_SKIPPED id=%s error=%r", connection_id, exc)
    return reason


async def _read_frames(context: SyncContext, websocket: WebSocket, connection_id: str) -> Any:
    """Handle observer frames until the peer disconnects; returns the close code."""
    while True:
        message = await websocket.receive()
        if message.get("type") == "websocket.disconnect":
            return message.get("code")

        raw = message.get("text")
        if raw is None and message.get("bytes") is not None:
            raw = message["bytes"].decode("utf-8", errors="replace")
        if not raw:
            continue
        try:
            frame = json.loads(raw)
        except ValueError:
            frame = {"event": raw.strip()}

        observer_message = ObserverMessage.parse_frame(frame)
        if observer_message is None:
            logger.warning("FRAME_IGNORED id=%s reason=malformed", connection_id)
            continue
        if observer_message.event == EVENT_REQUEST_UPDATE:
            context.request_update(connection_id)
        elif observer_message.event == EVENT_PING:
            context.ping(connection_id)
        else:
            logger.debug("FRAME_IGNORED id=%s event=%s", connection_id, observer_message.event)


def _fatal_handler(server: Any) -> Callable[[asyncio.AbstractEventLoop, Dict[str, Any]], None]:
    """Loop exception handler: stop the server on faults, but not on one observer's transport error."""

    def _on_fatal(loop: asyncio.AbstractEventLoop, fault: Dict[str, Any]) -> None:
        error = fault.get("exception")
        if isinstance(error, TransportError):
            logger.warning("OBSERVER_FAULT_IGNORED id=%s error=%s", error.connection_id, error.message)
            return
        logger.critical("FATAL error=%r", error or fault.get("message"))
        server.should_exit = True

    return _on_fatal


async def _read_body_within(request: Request, limit: int) -> Optional[bytes]:
    """Read the request body, or return None once it is known to exceed ``limit``."""
    declared = request.headers.get("content-length")
    if declared is not None:
        try:
            if int(declared) > limit:
                return None
        except ValueError:
            pass

    chunks = []
    total = 0
    async for chunk in request.stream():
        total += len(chunk)
        if total > limit:
            return None
        chunks.append(chunk)
    return b"".join(chunks)


def _error_response(status: int, error: str, code: str) -> JSONResponse:
    body = ErrorResponse(error=error, code=code)
    return JSONResponse(status_code=status, content=model_to_dict(body, exclude_none=True))


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run the Roblox Studio sync relay server.")
    parser.add_argument("--host", type=str, default=None)
    parser.add_argument("--port", type=int, default=None)
    parser.add_argument("--environment", type=str, default=None)
    parser.add_argument("--cors-origins", type=str, default=None, help="comma-separated allowed origins")
    parser.add_argument("--max-body-bytes", type=int, default=None)
    parser.add_argument("--ws-ping-interval", type=float, default=None)
    parser.add_argument("--ws-ping-timeout", type=float, default=None)
    parser.add_argument("--shutdown-timeout", type=float, default=None)
    parser.add_argument("--log-level", type=str, default=None)
    parser.add_argument("--log-file", type=str, default=None)
    return parser


def _log_banner(config: ServerConfig) -> None:
    base = f"http://localhost:{config.port}"
    logger.info("SERVER_READY host=%s port=%s environment=%s", config.host, config.port, config.environment)
    logger.info("ENDPOINTS health=%s/health sync=POST %s/api/sync current=%s/api/current stats=%s/api/stats",
                base, base, base, base)
    logger.info("WEBSOCKET endpoint=ws://localhost:%s/ws", config.port)


async def _serve(config: ServerConfig) -> None:
    import uvicorn

    app = create_app(config=config)
    server = uvicorn.Server(
        uvicorn.Config(
            app,
            host=config.host,
            port=config.port,
            log_level=str(config.log_level).lower(),
            ws_ping_interval=config.ws_ping_interval,
            ws_ping_timeout=config.ws_ping_timeout,
            timeout_graceful_shutdown=max(1, int(config.shutdown_timeout)),
        )
    )

    asyncio.get_running_loop().set_exception_handler(_fatal_handler(server))
    _log_banner(config)
    await server.serve()


def main() -> None:
    parser = _build_parser()
    args = parser.parse_args()
    config = ServerConfig.from_env().apply_args(args)
    configure_logging(config.log_level, config.log_file)
    asyncio.run(_serve(config))


if __name__ == "__main__":
    main()
