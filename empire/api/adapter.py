"""
Request adapter: one ASGI callable for both execution models.

- listener mode:   RequestAdapter(mode=LISTENER).listen() binds uvicorn to a port
- serverless mode: api/index.py exports a RequestAdapter(mode=SERVERLESS)

Either way the pipeline is built once (per process, or per cold start) and
every request goes through the same PendingInvocation contract: CORS first,
OPTIONS answered without touching the pipeline, and a well-formed response
no matter how the pipeline fails.
"""

import asyncio
from enum import Enum
from typing import TYPE_CHECKING, Awaitable, Callable, Optional

import uvicorn
from loguru import logger
from starlette.types import Message, Receive, Scope, Send

from empire.api.config import Settings
from empire.api.errors import AdapterInvocationFailure, UnrecoverableStartupFailure
from empire.api.metrics import ADAPTER_ERRORS
from empire.api.middleware import apply_cors_headers, send_preflight
from empire.api.responses import encode_json, error_payload, fallback_payload

if TYPE_CHECKING:
    from empire.api.bootstrap import Pipeline

PipelineFactory = Callable[[], Awaitable["Pipeline"]]


class AdapterMode(str, Enum):
    LISTENER = "listener"
    SERVERLESS = "serverless"


class PendingInvocation:
    """One request/response pair bound to the pipeline. Lives for a single request."""

    def __init__(self, scope: Scope, receive: Receive, send: Send):
        self.scope = scope
        self.receive = receive
        self._send = send
        self.headers_sent = False
        self.status_code: Optional[int] = None
        self.finished = asyncio.Event()

    async def send(self, message: Message) -> None:
        if message["type"] == "http.response.start":
            apply_cors_headers(message)
            self.headers_sent = True
            self.status_code = message["status"]
        elif message["type"] == "http.response.body" and not message.get("more_body", False):
            self.finished.set()
        await self._send(message)

    async def respond_json(self, status: int, payload: dict) -> None:
        body = encode_json(payload)
        await self.send(
            {
                "type": "http.response.start",
                "status": status,
                "headers": [
                    (b"content-type", b"application/json"),
                    (b"content-length", str(len(body)).encode("latin-1")),
                ],
            }
        )
        await self.send({"type": "http.response.body", "body": body, "more_body": False})

    async def close_body(self) -> None:
        """Terminate a response whose headers already went out."""
        if self.headers_sent and not self.finished.is_set():
            await self.send({"type": "http.response.body", "body": b"", "more_body": False})

    @property
    def path(self) -> str:
        return self.scope.get("path", "")

    @property
    def method(self) -> str:
        return self.scope.get("method", "")


async def _default_factory(settings: Settings):
    # Imported here so an import-time failure surfaces as a construction failure.
    from empire.api.bootstrap import build_pipeline

    return await build_pipeline(settings)


class RequestAdapter:
    """ASGI entry point shared by listener and serverless deployments."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        mode: AdapterMode = AdapterMode.SERVERLESS,
        pipeline_factory: Optional[PipelineFactory] = None,
    ):
        self.settings = settings if settings is not None else Settings()
        self.mode = AdapterMode(mode)
        self._factory = pipeline_factory or (lambda: _default_factory(self.settings))
        self._pipeline = None
        self._lock = asyncio.Lock()

    @property
    def pipeline(self):
        return self._pipeline

    async def ensure_pipeline(self):
        """Build the pipeline on first use. A failed build is retried on the next call."""
        if self._pipeline is not None:
            return self._pipeline
        async with self._lock:
            if self._pipeline is None:
                try:
                    pipeline = await self._factory()
                except Exception as e:
                    logger.opt(exception=e).error(f"Pipeline construction failed: {e}")
                    ADAPTER_ERRORS.labels(kind="construction").inc()
                    return None
                if self.mode is AdapterMode.LISTENER:
                    pipeline.start_background()
                self._pipeline = pipeline
        return self._pipeline

    async def shutdown(self) -> None:
        if self._pipeline is not None:
            await self._pipeline.stop_background()

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "lifespan":
            await self._lifespan(receive, send)
        elif scope["type"] == "http":
            await self.invoke(scope, receive, send)
        else:
            pipeline = await self.ensure_pipeline()
            if pipeline is None:
                await send({"type": "websocket.close", "code": 1011})
                return
            await pipeline(scope, receive, send)

    async def invoke(self, scope: Scope, receive: Receive, send: Send) -> PendingInvocation:
        """Drive one HTTP request through the pipeline. Never raises."""
        invocation = PendingInvocation(scope, receive, send)

        if invocation.method == "OPTIONS":
            await send_preflight(invocation.send)
            return invocation

        pipeline = await self.ensure_pipeline()
        if pipeline is None:
            server = self.settings.server
            await invocation.respond_json(200, fallback_payload(server.environment, server.version))
            return invocation

        try:
            await pipeline(scope, receive, invocation.send)
        except Exception as e:
            await self._recover(invocation, e)
            return invocation

        if not invocation.headers_sent:
            await self._recover(
                invocation, AdapterInvocationFailure("pipeline returned without sending a response")
            )
        elif not invocation.finished.is_set():
            await invocation.close_body()
        return invocation

    async def _recover(self, invocation: PendingInvocation, exc: Exception) -> None:
        ADAPTER_ERRORS.labels(kind="invocation").inc()
        if invocation.headers_sent:
            # A response is already on the wire; only make sure it ends.
            logger.opt(exception=exc).error(
                f"Pipeline failed after responding {invocation.status_code} "
                f"to {invocation.method} {invocation.path}"
            )
            await invocation.close_body()
            return
        logger.opt(exception=exc).error(f"Pipeline failed on {invocation.method} {invocation.path}")
        await invocation.respond_json(500, error_payload(exc, self.settings.server.is_development))

    async def _lifespan(self, receive: Receive, send: Send) -> None:
        while True:
            message = await receive()
            if message["type"] == "lifespan.startup":
                await self.ensure_pipeline()
                await send({"type": "lifespan.startup.complete"})
            elif message["type"] == "lifespan.shutdown":
                await self.shutdown()
                await send({"type": "lifespan.shutdown.complete"})
                return

    def listen(self, host: Optional[str] = None, port: Optional[int] = None) -> None:
        """Bind to a socket and serve until interrupted (listener mode)."""
        server = self.settings.server
        host = host or server.host
        port = port or server.port
        logger.info(f"Listening on {host}:{port} (environment={server.environment})")
        try:
            uvicorn.run(self, host=host, port=port, lifespan="on", log_level=server.log_level.lower())
        except OSError as e:
            raise UnrecoverableStartupFailure(f"cannot bind {host}:{port}: {e}") from e


def create_serverless_app(settings: Optional[Settings] = None) -> RequestAdapter:
    """Adapter for per-invocation platforms. No background loops run in this mode."""
    return RequestAdapter(settings=settings, mode=AdapterMode.SERVERLESS)
