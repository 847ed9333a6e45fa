"""
Fixed-shape payloads shared by the pipeline and the request adapter.
"""

import json
import traceback
from typing import Optional

from fastapi import Request
from fastapi.responses import JSONResponse
from loguru import logger

from empire.api.schemas import ErrorResponse, FallbackResponse
from empire.utils import utc_timestamp

ERROR_TITLE = "Empire systems temporarily unavailable"
GENERIC_MESSAGE = "Internal server error"


def error_payload(exc: Optional[BaseException], development: bool = False) -> dict:
    """500 body. Exception detail and stack only leave the process in development."""
    message = GENERIC_MESSAGE
    stack = None
    if development and exc is not None:
        message = str(exc) or type(exc).__name__
        stack = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return ErrorResponse(
        error=ERROR_TITLE,
        timestamp=utc_timestamp(),
        message=message,
        stack=stack,
    ).model_dump(exclude_none=True)


def fallback_payload(environment: str, version: str) -> dict:
    return FallbackResponse(
        timestamp=utc_timestamp(),
        environment=environment,
        version=version,
    ).model_dump()


def encode_json(payload: dict) -> bytes:
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def make_exception_handler(development: bool):
    """Pipeline-level handler for unhandled route exceptions."""

    async def handle_exception(request: Request, exc: Exception) -> JSONResponse:
        logger.opt(exception=exc).error(f"Unhandled error on {request.method} {request.url.path}")
        return JSONResponse(status_code=500, content=error_payload(exc, development))

    return handle_exception
