"""
Time-bounded liveness checks for external dependencies.

The prober owns the DependencyStatus table: it is the only writer. probe()
never raises; every failure is reported as reachable=False and the caller
decides what to do about it.
"""

import asyncio
import time
from datetime import datetime, timezone
from typing import Dict, Iterable, Mapping, Optional, Protocol

import asyncpg
from loguru import logger

from empire.api.errors import DependencyUnreachable
from empire.api.metrics import DEPENDENCY_UP
from empire.api.state import DependencyStatus

DATABASE = "database"


class LivenessClient(Protocol):
    async def check_liveness(self) -> None: ...


class PostgresLivenessClient:
    """Opens a short-lived asyncpg connection and runs SELECT 1."""

    def __init__(self, dsn: str, connect_timeout: float = 3.0):
        self.dsn = dsn
        self.connect_timeout = connect_timeout

    async def check_liveness(self) -> None:
        if not self.dsn:
            raise DependencyUnreachable(DATABASE, "DATABASE_URL is not configured")
        conn = await asyncpg.connect(self.dsn, timeout=self.connect_timeout)
        try:
            await conn.fetchval("SELECT 1")
        finally:
            await conn.close()


class DependencyProber:
    """Runs liveness checks and keeps the latest status per dependency."""

    def __init__(
        self,
        clients: Mapping[str, LivenessClient],
        timeout_seconds: float = 5.0,
        statuses: Optional[Dict[str, DependencyStatus]] = None,
    ):
        self.clients = dict(clients)
        self.timeout_seconds = timeout_seconds
        self.statuses: Dict[str, DependencyStatus] = statuses if statuses is not None else {}
        self._monitor_task: Optional[asyncio.Task] = None

    async def probe(self, name: str) -> DependencyStatus:
        """Check one dependency within the timeout and record the outcome."""
        client = self.clients.get(name)
        error: Optional[str] = None
        start = time.perf_counter()

        if client is None:
            error = f"no liveness check registered for '{name}'"
        else:
            try:
                await asyncio.wait_for(client.check_liveness(), timeout=self.timeout_seconds)
            except asyncio.TimeoutError:
                error = f"timed out after {self.timeout_seconds}s"
            except Exception as e:
                error = str(e) or type(e).__name__

        status = DependencyStatus(
            name=name,
            reachable=error is None,
            last_checked_at=datetime.now(timezone.utc),
            latency_ms=round((time.perf_counter() - start) * 1000, 2),
            error=error,
        )
        self.statuses[name] = status
        DEPENDENCY_UP.labels(dependency=name).set(1 if status.reachable else 0)

        if status.reachable:
            logger.info(f"Dependency '{name}' reachable ({status.latency_ms}ms)")
        else:
            logger.warning(f"Dependency '{name}' unreachable: {error}")
        return status

    @property
    def monitoring(self) -> bool:
        return self._monitor_task is not None and not self._monitor_task.done()

    def start_monitoring(self, names: Iterable[str], interval_seconds: float) -> None:
        """Re-probe on a fixed cadence. Only updates the status table."""
        if self.monitoring:
            return
        self._monitor_task = asyncio.create_task(
            self._monitor(tuple(names), interval_seconds), name="dependency-monitor"
        )
        logger.info(f"Dependency monitoring started (every {interval_seconds}s)")

    async def stop_monitoring(self) -> None:
        if self._monitor_task is None:
            return
        self._monitor_task.cancel()
        try:
            await self._monitor_task
        except asyncio.CancelledError:
            pass
        self._monitor_task = None
        logger.info("Dependency monitoring stopped")

    async def _monitor(self, names, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            for name in names:
                await self.probe(name)
