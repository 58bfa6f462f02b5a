"""Tests for health check endpoints."""

import asyncio

import pytest
from aiohttp import web
from aiohttp.test_utils import TestClient, TestServer

from drip.observability.health import (
    CheckResult,
    HealthCheck,
    HealthRoutes,
    HealthStatus,
    RPCHealthCheck,
)


class TestCheckResult:
    """Tests for CheckResult summaries."""

    def test_ok_summary(self):
        """Passing checks summarize as ok."""
        assert CheckResult("rpc:KITE", HealthStatus.OK).summary == "ok"

    def test_error_summary(self):
        """Failing checks summarize with their message."""
        result = CheckResult("rpc:KITE", HealthStatus.ERROR, "unreachable")
        assert result.summary == "unreachable"

    def test_error_without_message(self):
        """Failing checks without a message use the status."""
        assert CheckResult("rpc:KITE", HealthStatus.ERROR).summary == "error"


class MockHealthCheck(HealthCheck):
    """Mock health check for testing."""

    def __init__(self, name: str, status: HealthStatus, message: str | None = None):
        self._name = name
        self._status = status
        self._message = message

    @property
    def name(self) -> str:
        return self._name

    async def check(self) -> CheckResult:
        return CheckResult(name=self._name, status=self._status, message=self._message)


class SlowHealthCheck(HealthCheck):
    """Health check that never finishes in time."""

    @property
    def name(self) -> str:
        return "slow"

    async def check(self) -> CheckResult:
        await asyncio.sleep(10)
        return CheckResult(self.name, HealthStatus.OK)


class FailingHealthCheck(HealthCheck):
    """Health check that raises an exception."""

    @property
    def name(self) -> str:
        return "failing"

    async def check(self) -> CheckResult:
        raise RuntimeError("Check failed")


class TestRPCHealthCheck:
    """Tests for RPCHealthCheck."""

    @pytest.mark.asyncio
    async def test_connected(self, kite_client):
        """A connected client is healthy."""
        result = await RPCHealthCheck("KITE", kite_client).check()

        assert result.name == "rpc:KITE"
        assert result.status == HealthStatus.OK

    @pytest.mark.asyncio
    async def test_unreachable(self, kite_client):
        """A disconnected client reports an error."""
        kite_client.is_connected = False

        result = await RPCHealthCheck("KITE", kite_client).check()

        assert result.status == HealthStatus.ERROR
        assert result.message == "unreachable"


class TestHealthRoutes:
    """Tests for HealthRoutes endpoints."""

    @pytest.fixture
    async def app_client(self):
        """Create test client with the health routes mounted."""
        routes = HealthRoutes(check_timeout=0.5)
        app = web.Application()
        routes.register(app)

        client = TestClient(TestServer(app))
        await client.start_server()
        yield client, routes
        await client.close()

    @pytest.mark.asyncio
    async def test_health_endpoint(self, app_client):
        """GET /health answers in plain text."""
        client, _ = app_client
        resp = await client.get("/health")
        assert resp.status == 200
        assert await resp.text() == "Server healthy"

    @pytest.mark.asyncio
    async def test_ready_endpoint_no_checks(self, app_client):
        """GET /ready returns 200 when no checks configured."""
        client, _ = app_client
        resp = await client.get("/ready")
        assert resp.status == 200
        assert await resp.json() == {"status": "ok"}

    @pytest.mark.asyncio
    async def test_ready_endpoint_check_fails(self, app_client, kite_client):
        """GET /ready returns 503 when a chain RPC is unreachable."""
        client, routes = app_client
        kite_client.is_connected = False
        routes.add_check(MockHealthCheck("rpc:GATED", HealthStatus.OK))
        routes.add_check(RPCHealthCheck("KITE", kite_client))

        resp = await client.get("/ready")
        assert resp.status == 503
        data = await resp.json()
        assert data["status"] == "not_ready"
        assert data["checks"] == {"rpc:GATED": "ok", "rpc:KITE": "unreachable"}

    @pytest.mark.asyncio
    async def test_ready_endpoint_check_raises(self, app_client):
        """GET /ready handles check exceptions."""
        client, routes = app_client
        routes.add_check(FailingHealthCheck())

        resp = await client.get("/ready")
        assert resp.status == 503
        data = await resp.json()
        assert "RuntimeError" in data["checks"]["failing"]
        assert "Check failed" in data["checks"]["failing"]

    @pytest.mark.asyncio
    async def test_ready_endpoint_check_times_out(self, app_client):
        """GET /ready does not wait on a hung check."""
        client, routes = app_client
        routes.add_check(SlowHealthCheck())

        resp = await client.get("/ready")
        assert resp.status == 503
        assert (await resp.json())["checks"] == {"slow": "timeout"}

    @pytest.mark.asyncio
    async def test_metrics_endpoint(self, app_client):
        """GET /metrics returns Prometheus metrics."""
        client, _ = app_client
        resp = await client.get("/metrics")
        assert resp.status == 200
        assert "text/plain" in resp.content_type
        assert "drip_requests_total" in await resp.text()
