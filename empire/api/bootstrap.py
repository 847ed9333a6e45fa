"""
Bootstrap orchestrator: cold start to a traffic-serving pipeline.

Sequence: probe database -> register routes (or fallback table) -> asset
layer for the deployment mode -> telemetry, CORS and error handling. Every
step is fail-open: a failure costs capability, never the process.

Usage:
    pipeline = await build_pipeline(Settings())
    pipeline.app    # FastAPI application
    pipeline.state  # ServerState (normal_ready, emergency_ready or degraded)
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence, Set

from fastapi import FastAPI
from loguru import logger
from prometheus_client import make_asgi_app

from empire.api.capabilities import Capability, DevAssetProxy, StaticAssets, attempt_all
from empire.api.config import Settings
from empire.api.errors import RouteRegistrationFailure
from empire.api.hooks import LocalBrainHook, PostReadyHook, run_hook
from empire.api.metrics import BOOTSTRAP_DURATION, STARTUP_OUTCOMES
from empire.api.middleware import CORSHeadersMiddleware
from empire.api.prober import DATABASE, DependencyProber, PostgresLivenessClient
from empire.api.registrar import RouteRegistrar
from empire.api.responses import make_exception_handler
from empire.api.state import ServerPhase, ServerState
from empire.api.telemetry import ResponseTelemetryMiddleware
from empire.utils import Timer


@dataclass
class Pipeline:
    """The finished request handling chain and the state it was built with."""

    app: FastAPI
    state: ServerState
    prober: DependencyProber
    capabilities: List[Capability] = field(default_factory=list)
    hooks: List[PostReadyHook] = field(default_factory=list)
    monitor_interval_seconds: float = 0.0
    _tasks: Set[asyncio.Task] = field(default_factory=set, repr=False)

    async def __call__(self, scope, receive, send) -> None:
        await self.app(scope, receive, send)

    def start_background(self) -> None:
        """Start dependency monitoring and schedule post-ready hooks on the running loop."""
        if self.monitor_interval_seconds > 0:
            self.prober.start_monitoring([DATABASE], self.monitor_interval_seconds)
        for hook in self.hooks:
            task = asyncio.create_task(run_hook(hook, self.state), name=f"post-ready:{hook.name}")
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def stop_background(self) -> None:
        await self.prober.stop_monitoring()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        for capability in self.capabilities:
            await capability.close()


class BootstrapOrchestrator:
    """Builds one Pipeline per call. Collaborators default to what Settings describes."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        prober: Optional[DependencyProber] = None,
        registrar: Optional[RouteRegistrar] = None,
        capabilities: Optional[Sequence[Capability]] = None,
        hooks: Optional[Sequence[PostReadyHook]] = None,
        telemetry_sink: Optional[Callable[[str], None]] = None,
    ):
        self.settings = settings if settings is not None else Settings()
        self.prober = prober
        self.registrar = registrar
        self.capabilities = capabilities
        self.hooks = hooks
        self.telemetry_sink = telemetry_sink

    async def build(self) -> Pipeline:
        server = self.settings.server
        started = time.perf_counter()
        emergency = server.startup_profile == "emergency"

        state = ServerState(environment=server.environment)
        prober = self.prober if self.prober is not None else self._default_prober()
        registrar = self.registrar if self.registrar is not None else self._default_registrar()
        capabilities = self._capabilities()
        state.dependencies = prober.statuses

        app = FastAPI(
            title="Findawise Empire API",
            description="Adaptive bootstrap with fail-open route registration.",
            version=server.version,
        )
        app.state.server_state = state

        logger.info(
            f"Bootstrapping server (environment={server.environment}, profile={server.startup_profile})"
        )
        try:
            await self._run_steps(app, state, prober, registrar, capabilities, emergency)
        except Exception as e:
            logger.opt(exception=e).error("Bootstrap step failed unexpectedly")
            state.mark_degraded(f"bootstrap error: {e}")
            if state.route_table is None:
                state.route_table = registrar.install_fallback(app)

        self._install_middleware(app)

        if not state.degraded:
            state.advance(ServerPhase.EMERGENCY_READY if emergency else ServerPhase.NORMAL_READY)

        STARTUP_OUTCOMES.labels(phase=state.phase.value).inc()
        BOOTSTRAP_DURATION.observe(time.perf_counter() - started)
        if state.degraded:
            logger.warning(f"Server degraded ({state.degraded_reason}); serving fallback routes")
        else:
            logger.info(f"Server ready: {state.phase.value} ({len(state.route_table.entries)} routes)")

        db = self.settings.database
        return Pipeline(
            app=app,
            state=state,
            prober=prober,
            capabilities=capabilities,
            hooks=self._hooks(),
            monitor_interval_seconds=db.monitor_interval_seconds if db.monitor_enabled else 0.0,
        )

    async def _run_steps(self, app, state, prober, registrar, capabilities, emergency) -> None:
        state.advance(ServerPhase.PROBING_DEPENDENCIES)
        with Timer("dependency probe"):
            db_status = await prober.probe(DATABASE)
        if not db_status.reachable:
            logger.warning("Database unreachable; continuing startup without it")

        state.advance(ServerPhase.REGISTERING_ROUTES)
        with Timer("route registration"):
            if emergency:
                logger.warning("Emergency startup profile: skipping business routes")
                state.route_table = registrar.install_fallback(app)
            else:
                try:
                    state.route_table = await registrar.register_all(app)
                except RouteRegistrationFailure as e:
                    logger.error(f"Route registration failed, using fallback routes: {e}")
                    state.route_table = registrar.install_fallback(app)
                    state.mark_degraded(str(e))

        # Mounted before the asset layer so the catch-all never shadows it.
        app.mount("/metrics", make_asgi_app())

        with Timer("asset layer"):
            state.capabilities = await attempt_all(capabilities, app)

    def _install_middleware(self, app: FastAPI) -> None:
        # add_middleware() prepends: CORS ends up outermost, then telemetry.
        telemetry = self.settings.telemetry
        if telemetry.enabled:
            app.add_middleware(
                ResponseTelemetryMiddleware,
                api_prefix=telemetry.api_prefix,
                max_line_length=telemetry.max_line_length,
                sink=self.telemetry_sink,
            )
        app.add_middleware(CORSHeadersMiddleware)
        app.add_exception_handler(Exception, make_exception_handler(self.settings.server.is_development))

    def _default_prober(self) -> DependencyProber:
        db = self.settings.database
        client = PostgresLivenessClient(db.url, connect_timeout=db.probe_timeout_seconds)
        return DependencyProber({DATABASE: client}, timeout_seconds=db.probe_timeout_seconds)

    def _default_registrar(self) -> RouteRegistrar:
        return RouteRegistrar.from_modules(self.settings.routes.modules)

    def _capabilities(self) -> List[Capability]:
        if self.capabilities is not None:
            return list(self.capabilities)
        assets = self.settings.assets
        if self.settings.server.is_development:
            return [
                DevAssetProxy(
                    assets.dev_server_url,
                    timeout_seconds=assets.dev_server_timeout_seconds,
                    api_prefix=self.settings.telemetry.api_prefix,
                )
            ]
        return [
            StaticAssets(
                assets.dist_dir,
                extra_directories=[assets.public_dir],
                api_prefix=self.settings.telemetry.api_prefix,
            )
        ]

    def _hooks(self) -> List[PostReadyHook]:
        if self.hooks is not None:
            return list(self.hooks)
        brain = self.settings.brain
        if not brain.enabled:
            return []
        return [LocalBrainHook(brain.url, delay_seconds=brain.delay_seconds, timeout_seconds=brain.timeout_seconds)]


async def build_pipeline(settings: Optional[Settings] = None) -> Pipeline:
    """Default pipeline factory used by the request adapter."""
    return await BootstrapOrchestrator(settings).build()
