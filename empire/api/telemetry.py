"""
Response telemetry tap.

Pure ASGI middleware: it observes the messages a handler sends and forwards
each one unchanged. For API paths it emits one line per request once the
final body chunk has gone out (or, if the handler raises, as a 500 before
the error propagates), e.g.

    GET /api/status 200 in 3ms :: {"success":true,"status":"healthy",…
"""

import time
from dataclasses import dataclass
from typing import Callable, Optional

from loguru import logger
from starlette.datastructures import Headers
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from empire.api.logging_config import get_logger
from empire.api.metrics import API_REQUESTS
from empire.api.middleware import is_api_path

TRUNCATION_MARKER = "…"


@dataclass
class RequestTrace:
    """One request, from pipeline entry to response completion. Logged, never stored."""

    method: str
    path: str
    status_code: int = 0
    duration_ms: int = 0
    response_summary: Optional[str] = None

    def render(self, max_length: int = 80) -> str:
        line = f"{self.method} {self.path} {self.status_code} in {self.duration_ms}ms"
        if self.response_summary:
            line += f" :: {self.response_summary}"
        if len(line) > max_length:
            line = line[: max_length - 1] + TRUNCATION_MARKER
        return line


def _default_sink() -> Callable[[str], None]:
    telemetry_logger = get_logger()
    return lambda line: telemetry_logger.info(line)


class ResponseTelemetryMiddleware:
    """Capture method, path, status, duration and a JSON summary for API requests."""

    def __init__(
        self,
        app: ASGIApp,
        api_prefix: str = "/api",
        max_line_length: int = 80,
        sink: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.app = app
        self.api_prefix = api_prefix
        self.max_line_length = max_line_length
        self.sink = sink if sink is not None else _default_sink()

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or not is_api_path(scope["path"], self.api_prefix):
            await self.app(scope, receive, send)
            return

        trace = RequestTrace(method=scope["method"], path=scope["path"])
        start = time.perf_counter()
        captured = bytearray()
        is_json = False
        emitted = False

        def finish() -> None:
            nonlocal emitted
            emitted = True
            trace.duration_ms = int((time.perf_counter() - start) * 1000)
            if captured:
                trace.response_summary = captured.decode("utf-8", errors="replace")
            self._emit(trace)

        async def send_wrapper(message: Message) -> None:
            nonlocal is_json
            await send(message)

            if message["type"] == "http.response.start":
                trace.status_code = message["status"]
                content_type = Headers(raw=message.get("headers", [])).get("content-type", "")
                is_json = content_type.startswith("application/json")
            elif message["type"] == "http.response.body":
                # The rendered line never exceeds the cap, so neither does the capture.
                if is_json and len(captured) < self.max_line_length:
                    captured.extend(message.get("body", b"")[: self.max_line_length])
                if not message.get("more_body", False):
                    finish()

        try:
            await self.app(scope, receive, send_wrapper)
        except Exception:
            # The 500 for an unhandled error is sent by an outer layer.
            if not emitted:
                trace.status_code = trace.status_code or 500
                finish()
            raise

    def _emit(self, trace: RequestTrace) -> None:
        API_REQUESTS.labels(method=trace.method, status=str(trace.status_code)).inc()
        try:
            self.sink(trace.render(self.max_line_length))
        except Exception as e:
            logger.warning(f"Telemetry sink failed for {trace.method} {trace.path}: {e}")
