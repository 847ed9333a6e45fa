"""
Tests for DependencyProber and the asyncpg liveness client.
"""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from empire.api.prober import DependencyProber, PostgresLivenessClient


class FakeLiveness:
    def __init__(self, error=None, delay=0.0):
        self.error = error
        self.delay = delay
        self.calls = 0

    async def check_liveness(self):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error


@pytest.mark.asyncio
class TestProbe:
    async def test_reachable(self):
        prober = DependencyProber({"database": FakeLiveness()})
        status = await prober.probe("database")
        assert status.name == "database"
        assert status.reachable is True
        assert status.error is None
        assert status.latency_ms >= 0

    async def test_connection_refused_is_reported_not_raised(self):
        prober = DependencyProber({"database": FakeLiveness(ConnectionRefusedError("connection refused"))})
        status = await prober.probe("database")
        assert status.reachable is False
        assert "connection refused" in status.error

    async def test_auth_error_is_reported(self):
        prober = DependencyProber({"database": FakeLiveness(PermissionError("password authentication failed"))})
        status = await prober.probe("database")
        assert status.reachable is False

    async def test_exception_without_message_uses_type_name(self):
        prober = DependencyProber({"database": FakeLiveness(RuntimeError())})
        status = await prober.probe("database")
        assert status.error == "RuntimeError"

    async def test_timeout_is_bounded(self):
        prober = DependencyProber({"database": FakeLiveness(delay=5.0)}, timeout_seconds=0.05)
        status = await asyncio.wait_for(prober.probe("database"), timeout=2.0)
        assert status.reachable is False
        assert "timed out" in status.error

    async def test_unknown_dependency(self):
        prober = DependencyProber({})
        status = await prober.probe("cache")
        assert status.reachable is False
        assert "no liveness check" in status.error

    async def test_updates_status_table(self):
        client = FakeLiveness(ConnectionRefusedError("down"))
        prober = DependencyProber({"database": client})
        await prober.probe("database")
        assert prober.statuses["database"].reachable is False

        client.error = None
        await prober.probe("database")
        assert prober.statuses["database"].reachable is True

    async def test_shared_status_table(self):
        table = {}
        prober = DependencyProber({"database": FakeLiveness()}, statuses=table)
        await prober.probe("database")
        assert table["database"].reachable is True

    async def test_unconfigured_postgres_is_unreachable(self):
        prober = DependencyProber({"database": PostgresLivenessClient("")})
        status = await prober.probe("database")
        assert status.reachable is False
        assert "not configured" in status.error


@pytest.mark.asyncio
class TestMonitoring:
    async def test_monitor_reprobes_on_interval(self):
        client = FakeLiveness()
        prober = DependencyProber({"database": client})
        prober.start_monitoring(["database"], interval_seconds=0.01)
        assert prober.monitoring is True
        await asyncio.sleep(0.1)
        await prober.stop_monitoring()
        assert client.calls >= 2
        assert prober.monitoring is False
        assert "database" in prober.statuses

    async def test_start_twice_keeps_one_task(self):
        prober = DependencyProber({"database": FakeLiveness()})
        prober.start_monitoring(["database"], interval_seconds=10)
        first = prober._monitor_task
        prober.start_monitoring(["database"], interval_seconds=10)
        assert prober._monitor_task is first
        await prober.stop_monitoring()

    async def test_stop_without_start(self):
        prober = DependencyProber({})
        await prober.stop_monitoring()
        assert prober.monitoring is False


@pytest.mark.asyncio
class TestPostgresLivenessClient:
    async def test_runs_select_one_and_closes(self):
        conn = AsyncMock()
        conn.fetchval.return_value = 1
        connect = AsyncMock(return_value=conn)
        with patch("empire.api.prober.asyncpg.connect", connect):
            await PostgresLivenessClient("postgresql://db/empire", connect_timeout=1.5).check_liveness()
        connect.assert_awaited_once_with("postgresql://db/empire", timeout=1.5)
        conn.fetchval.assert_awaited_once_with("SELECT 1")
        conn.close.assert_awaited_once()

    async def test_closes_connection_when_query_fails(self):
        conn = AsyncMock()
        conn.fetchval.side_effect = RuntimeError("query failed")
        with patch("empire.api.prober.asyncpg.connect", AsyncMock(return_value=conn)):
            with pytest.raises(RuntimeError):
                await PostgresLivenessClient("postgresql://db/empire").check_liveness()
        conn.close.assert_awaited_once()
