"""
Tests for the request adapter: pre-flight, construction failure, error
synthesis, no double-send, lifespan, listener mode.

Pipelines are plain ASGI callables or real pipelines built with fakes.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi import APIRouter
from httpx import ASGITransport, AsyncClient

from empire.api.adapter import AdapterMode, RequestAdapter, create_serverless_app
from empire.api.bootstrap import BootstrapOrchestrator
from empire.api.config import DatabaseConfig, RoutesConfig, ServerConfig, Settings
from empire.api.errors import UnrecoverableStartupFailure
from empire.api.middleware import CORS_HEADERS
from empire.api.prober import DependencyProber
from empire.api.registrar import RouteGroup, RouteRegistrar

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def make_settings(environment="serverless"):
    settings = Settings()
    settings.server = ServerConfig(environment=environment)
    settings.database = DatabaseConfig(url="", monitor_enabled=False)
    settings.routes = RoutesConfig(modules=["empire.api.routes.system"])
    return settings


def http_scope(method="GET", path="/api/offers"):
    return {
        "type": "http",
        "asgi": {"version": "3.0"},
        "http_version": "1.1",
        "method": method,
        "scheme": "http",
        "path": path,
        "raw_path": path.encode(),
        "root_path": "",
        "query_string": b"",
        "headers": [],
        "client": ("127.0.0.1", 50000),
        "server": ("test", 80),
    }


async def receive():
    return {"type": "http.request", "body": b"", "more_body": False}


class Recorder:
    def __init__(self):
        self.messages = []

    async def __call__(self, message):
        self.messages.append(message)

    @property
    def starts(self):
        return [m for m in self.messages if m["type"] == "http.response.start"]

    @property
    def bodies(self):
        return [m for m in self.messages if m["type"] == "http.response.body"]


def factory_for(pipeline):
    return AsyncMock(return_value=pipeline)


async def ok_pipeline(scope, receive, send):
    await send({"type": "http.response.start", "status": 200, "headers": [(b"content-type", b"application/json")]})
    await send({"type": "http.response.body", "body": b'{"offers":[]}'})


async def raising_pipeline(scope, receive, send):
    raise RuntimeError("revenue engine exploded")


async def half_sent_pipeline(scope, receive, send):
    await send({"type": "http.response.start", "status": 200, "headers": []})
    await send({"type": "http.response.body", "body": b"partial", "more_body": True})
    raise RuntimeError("stream broke")


async def silent_pipeline(scope, receive, send):
    return None


def assert_cors(headers):
    for name, value in CORS_HEADERS.items():
        assert headers[name] == value


async def build_real_pipeline(settings, groups):
    orchestrator = BootstrapOrchestrator(
        settings,
        prober=DependencyProber({}),
        registrar=RouteRegistrar(groups),
        capabilities=[],
        hooks=[],
        telemetry_sink=lambda line: None,
    )
    return await orchestrator.build()


# ---------------------------------------------------------------------------
# Pre-flight
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
class TestPreflight:
    async def test_options_short_circuits_before_pipeline(self):
        factory = factory_for(ok_pipeline)
        adapter = RequestAdapter(make_settings(), pipeline_factory=factory)
        transport = ASGITransport(app=adapter)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            resp = await client.options("/api/anything/at/all")
        assert resp.status_code == 200
        assert resp.content == b""
        assert_cors(resp.headers)
        factory.assert_not_awaited()


# ---------------------------------------------------------------------------
# Pipeline construction failure
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
class TestConstructionFailure:
    async def test_serves_static_fallback_payload(self):
        factory = AsyncMock(side_effect=ImportError("cannot import bootstrap"))
        adapter = RequestAdapter(make_settings(), pipeline_factory=factory)
        transport = ASGITransport(app=adapter)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            resp = await client.get("/api/offers")
        assert resp.status_code == 200
        data = resp.json()
        assert data["message"] == "Findawise Empire API"
        assert data["status"] == "operational"
        assert data["environment"] == "serverless"
        assert data["version"] == "1.0.0"
        assert "timestamp" in data
        assert_cors(resp.headers)

    async def test_failure_is_not_cached(self):
        factory = AsyncMock(side_effect=[RuntimeError("cold start failed"), ok_pipeline])
        adapter = RequestAdapter(make_settings(), pipeline_factory=factory)
        transport = ASGITransport(app=adapter)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            first = await client.get("/api/offers")
            second = await client.get("/api/offers")
        assert first.json()["status"] == "operational"
        assert second.json() == {"offers": []}
        assert factory.await_count == 2

    async def test_pipeline_built_once_under_concurrency(self):
        async def slow_build():
            await asyncio.sleep(0.01)
            return ok_pipeline

        factory = AsyncMock(side_effect=slow_build)
        adapter = RequestAdapter(make_settings(), pipeline_factory=factory)
        transport = ASGITransport(app=adapter)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            responses = await asyncio.gather(*[client.get("/api/offers") for _ in range(5)])
        assert all(r.status_code == 200 for r in responses)
        assert factory.await_count == 1


# ---------------------------------------------------------------------------
# Pipeline errors
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
class TestPipelineErrors:
    async def test_error_before_headers_synthesizes_500(self):
        adapter = RequestAdapter(make_settings("production"), pipeline_factory=factory_for(raising_pipeline))
        transport = ASGITransport(app=adapter)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            resp = await client.get("/api/offers")
        assert resp.status_code == 500
        data = resp.json()
        assert data["status"] == "error"
        assert data["error"] == "Empire systems temporarily unavailable"
        assert data["message"] == "Internal server error"
        assert "stack" not in data
        assert "timestamp" in data
        assert_cors(resp.headers)

    async def test_development_exposes_detail(self):
        adapter = RequestAdapter(make_settings("development"), pipeline_factory=factory_for(raising_pipeline))
        transport = ASGITransport(app=adapter)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            resp = await client.get("/api/offers")
        data = resp.json()
        assert data["message"] == "revenue engine exploded"
        assert "RuntimeError" in data["stack"]

    async def test_error_after_headers_is_not_double_sent(self):
        adapter = RequestAdapter(make_settings(), pipeline_factory=factory_for(half_sent_pipeline))
        recorder = Recorder()
        invocation = await adapter.invoke(http_scope(), receive, recorder)
        assert len(recorder.starts) == 1
        assert recorder.starts[0]["status"] == 200
        assert recorder.bodies[-1]["more_body"] is False
        assert invocation.headers_sent is True
        assert invocation.finished.is_set()

    async def test_pipeline_without_response_gets_500(self):
        adapter = RequestAdapter(make_settings(), pipeline_factory=factory_for(silent_pipeline))
        recorder = Recorder()
        invocation = await adapter.invoke(http_scope(), receive, recorder)
        assert invocation.status_code == 500
        assert len(recorder.starts) == 1

    async def test_completion_token_resolves(self):
        adapter = RequestAdapter(make_settings(), pipeline_factory=factory_for(ok_pipeline))
        recorder = Recorder()
        invocation = await adapter.invoke(http_scope(), receive, recorder)
        assert invocation.finished.is_set()
        assert invocation.status_code == 200
        headers = dict(recorder.starts[0]["headers"])
        assert headers[b"access-control-allow-origin"] == b"*"

    async def test_route_exception_in_real_pipeline(self):
        def group(router: APIRouter):
            @router.get("/api/revenue")
            async def revenue():
                raise ValueError("ledger offline")

        settings = make_settings("production")
        pipeline = await build_real_pipeline(settings, [RouteGroup("revenue", group)])
        adapter = RequestAdapter(settings, pipeline_factory=factory_for(pipeline))
        transport = ASGITransport(app=adapter)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            resp = await client.get("/api/revenue")
            after = await client.get("/api/status")
        assert resp.status_code == 500
        assert resp.json()["status"] == "error"
        assert resp.json()["message"] == "Internal server error"
        assert_cors(resp.headers)
        assert after.status_code == 200


# ---------------------------------------------------------------------------
# End to end with the default factory
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
class TestDefaultFactory:
    async def test_serverless_cold_start(self):
        settings = make_settings("production")
        settings.brain.enabled = False
        adapter = create_serverless_app(settings)
        transport = ASGITransport(app=adapter)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            status = await client.get("/api/status")
            deps = await client.get("/api/system/dependencies")
            health = await client.get("/health")
        assert status.status_code == 200
        assert status.json()["mode"] == "normal"
        assert deps.json()["database"]["reachable"] is False
        assert health.text == "OK"
        assert_cors(status.headers)
        assert adapter.mode is AdapterMode.SERVERLESS


# ---------------------------------------------------------------------------
# Lifespan and listener mode
# ---------------------------------------------------------------------------


async def run_lifespan(adapter):
    queue = asyncio.Queue()
    await queue.put({"type": "lifespan.startup"})
    await queue.put({"type": "lifespan.shutdown"})
    sent = []

    async def send(message):
        sent.append(message["type"])

    await adapter({"type": "lifespan", "asgi": {"version": "3.0"}}, queue.get, send)
    return sent


@pytest.mark.asyncio
class TestLifespan:
    async def test_listener_starts_and_stops_background(self):
        pipeline = MagicMock()
        pipeline.stop_background = AsyncMock()
        adapter = RequestAdapter(make_settings(), mode=AdapterMode.LISTENER, pipeline_factory=factory_for(pipeline))
        sent = await run_lifespan(adapter)
        assert sent == ["lifespan.startup.complete", "lifespan.shutdown.complete"]
        pipeline.start_background.assert_called_once()
        pipeline.stop_background.assert_awaited_once()

    async def test_serverless_does_not_start_background(self):
        pipeline = MagicMock()
        pipeline.stop_background = AsyncMock()
        adapter = RequestAdapter(make_settings(), mode=AdapterMode.SERVERLESS, pipeline_factory=factory_for(pipeline))
        await run_lifespan(adapter)
        pipeline.start_background.assert_not_called()

    async def test_startup_completes_when_build_fails(self):
        factory = AsyncMock(side_effect=RuntimeError("boom"))
        adapter = RequestAdapter(make_settings(), mode=AdapterMode.LISTENER, pipeline_factory=factory)
        sent = await run_lifespan(adapter)
        assert sent == ["lifespan.startup.complete", "lifespan.shutdown.complete"]
        assert adapter.pipeline is None


class TestListen:
    def test_bind_failure_is_unrecoverable(self):
        adapter = RequestAdapter(make_settings(), mode=AdapterMode.LISTENER)
        with patch("empire.api.adapter.uvicorn.run", side_effect=OSError("address already in use")):
            with pytest.raises(UnrecoverableStartupFailure):
                adapter.listen()

    def test_listen_uses_configured_port(self):
        adapter = RequestAdapter(make_settings(), mode=AdapterMode.LISTENER)
        with patch("empire.api.adapter.uvicorn.run") as run:
            adapter.listen()
        _, kwargs = run.call_args
        assert kwargs["port"] == 5000
        assert kwargs["host"] == "0.0.0.0"
        assert kwargs["lifespan"] == "on"
