"""
CORS header policy.

- CORS_HEADERS: the fixed header table applied to every response
- CORSHeadersMiddleware: pure ASGI middleware, answers OPTIONS itself
- is_api_path: which request paths belong to the JSON API
"""

from starlette.datastructures import MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

CORS_HEADERS = {
    "Access-Control-Allow-Credentials": "true",
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET,OPTIONS,PATCH,DELETE,POST,PUT",
    "Access-Control-Allow-Headers": (
        "X-CSRF-Token, X-Requested-With, Accept, Accept-Version, Content-Length, "
        "Content-MD5, Content-Type, Date, X-Api-Version, Authorization, x-client-version"
    ),
}


def is_api_path(path: str, api_prefix: str) -> bool:
    """Match on a segment boundary: /api and /api/offers, not /apiary."""
    prefix = api_prefix.rstrip("/")
    return path == prefix or path.startswith(prefix + "/")


def apply_cors_headers(message: Message) -> None:
    """Set (not append) the CORS headers on an http.response.start message."""
    message.setdefault("headers", [])
    headers = MutableHeaders(scope=message)
    for name, value in CORS_HEADERS.items():
        headers[name] = value


async def send_preflight(send: Send) -> None:
    """200, empty body, CORS headers."""
    start: Message = {
        "type": "http.response.start",
        "status": 200,
        "headers": [(b"content-length", b"0")],
    }
    apply_cors_headers(start)
    await send(start)
    await send({"type": "http.response.body", "body": b"", "more_body": False})


class CORSHeadersMiddleware:
    """Apply CORS headers before anything else and short-circuit pre-flight requests."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        if scope["method"] == "OPTIONS":
            await send_preflight(send)
            return

        async def send_with_cors(message: Message) -> None:
            if message["type"] == "http.response.start":
                apply_cors_headers(message)
            await send(message)

        await self.app(scope, receive, send_with_cors)
