"""
Optional subsystems behind a uniform attempt() contract.

A capability either installs itself onto the pipeline or reports why it
could not. The orchestrator folds over an ordered list of them; no failure
here ever stops startup or changes the server phase.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence

import httpx
from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from loguru import logger
from starlette.types import Receive, Scope, Send

from empire.api.errors import AuxiliaryServiceFailure
from empire.api.metrics import CAPABILITY_FAILURES
from empire.api.middleware import is_api_path

# Hop-by-hop and length headers are recomputed by the server.
_DROPPED_HEADERS = {"connection", "keep-alive", "transfer-encoding", "content-length", "content-encoding"}

_ALL_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE"]


def _api_not_found() -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": "Not Found"})


@dataclass(frozen=True)
class CapabilityResult:
    name: str
    ok: bool
    error: Optional[str] = None


class Capability:
    """Base class. Subclasses implement install() and raise on failure."""

    name = "capability"

    async def install(self, app: FastAPI) -> None:
        raise NotImplementedError

    async def attempt(self, app: FastAPI) -> CapabilityResult:
        try:
            await self.install(app)
        except Exception as e:
            logger.warning(f"{self.name} unavailable, continuing without it: {e}")
            CAPABILITY_FAILURES.labels(capability=self.name).inc()
            return CapabilityResult(name=self.name, ok=False, error=str(e) or type(e).__name__)
        logger.info(f"{self.name} installed")
        return CapabilityResult(name=self.name, ok=True)

    async def close(self) -> None:
        return None


class ClientFiles(StaticFiles):
    """
    StaticFiles over several directories, searched in order.

    API paths never reach the file lookup: whatever the method they get a
    JSON 404, so an API route that is not installed reads as missing
    rather than as a 405 from the file server.
    """

    def __init__(self, directories: Sequence[str], api_prefix: str = "/api"):
        super().__init__(directory=directories[0], html=True)
        self.all_directories = list(directories)
        self.api_prefix = api_prefix

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "http" and is_api_path(scope["path"], self.api_prefix):
            await _api_not_found()(scope, receive, send)
            return
        await super().__call__(scope, receive, send)


class StaticAssets(Capability):
    """
    Serve the built client. Production and serverless profile.

    The build directory is required. Extra directories (the PWA public/
    folder) are searched after it when they exist.
    """

    name = "static-assets"

    def __init__(
        self,
        directory: str,
        extra_directories: Sequence[str] = (),
        mount_path: str = "/",
        api_prefix: str = "/api",
    ):
        self.directory = directory
        self.extra_directories = list(extra_directories)
        self.mount_path = mount_path
        self.api_prefix = api_prefix

    async def install(self, app: FastAPI) -> None:
        if not Path(self.directory).is_dir():
            raise AuxiliaryServiceFailure(self.name, f"build directory not found: {self.directory}")
        directories = [self.directory]
        for extra in self.extra_directories:
            if Path(extra).is_dir():
                directories.append(extra)
            else:
                logger.debug(f"Skipping missing asset directory {extra}")
        app.mount(self.mount_path, ClientFiles(directories, api_prefix=self.api_prefix), name=self.name)


class DevAssetProxy(Capability):
    """
    Forward non-API traffic to the frontend dev server. Development profile.

    The dev server is checked once at install time (bounded by the timeout);
    if it is not running the proxy is not installed and the API still works.
    """

    name = "dev-asset-proxy"

    def __init__(
        self,
        dev_server_url: str,
        timeout_seconds: float = 2.0,
        api_prefix: str = "/api",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.dev_server_url = dev_server_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.api_prefix = api_prefix
        self.transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def install(self, app: FastAPI) -> None:
        if not self.dev_server_url:
            raise AuxiliaryServiceFailure(self.name, "no dev server URL configured")

        client = httpx.AsyncClient(
            base_url=self.dev_server_url, timeout=self.timeout_seconds, transport=self.transport
        )
        try:
            await client.get("/")
        except httpx.HTTPError as e:
            await client.aclose()
            raise AuxiliaryServiceFailure(self.name, f"dev server not reachable at {self.dev_server_url}: {e}") from e
        self._client = client

        prefix = self.api_prefix.rstrip("/")
        for api_path in (prefix, prefix + "/{path:path}"):
            app.add_api_route(
                api_path,
                _api_not_found,
                methods=_ALL_METHODS,
                include_in_schema=False,
                name=f"{self.name}-api-miss",
            )
        app.add_api_route(
            "/{path:path}",
            self._forward,
            methods=["GET", "HEAD"],
            include_in_schema=False,
            name=self.name,
        )

    async def _forward(self, request: Request, path: str) -> Response:
        if is_api_path(request.url.path, self.api_prefix):
            return _api_not_found()
        upstream = await self._client.request(
            request.method,
            "/" + path,
            params=request.query_params,
            headers={k: v for k, v in request.headers.items() if k.lower() != "host"},
        )
        headers = {k: v for k, v in upstream.headers.items() if k.lower() not in _DROPPED_HEADERS}
        return Response(content=upstream.content, status_code=upstream.status_code, headers=headers)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


async def attempt_all(capabilities: Sequence[Capability], app: FastAPI) -> List[CapabilityResult]:
    """Try each capability in order and record the outcome of every one."""
    results = []
    for capability in capabilities:
        results.append(await capability.attempt(app))
    return results
