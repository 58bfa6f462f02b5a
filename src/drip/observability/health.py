"""Liveness, readiness and metrics endpoints.

- /health: "Server healthy" while the process serves
- /ready: 200 when every chain RPC answers, 503 otherwise
- /metrics: Prometheus exposition
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum

from aiohttp import web
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, generate_latest

logger = logging.getLogger(__name__)

DEFAULT_CHECK_TIMEOUT = 5.0


class HealthStatus(Enum):
    """Health check status values."""

    OK = "ok"
    ERROR = "error"
    NOT_READY = "not_ready"


@dataclass(frozen=True)
class CheckResult:
    """Result of a single readiness check."""

    name: str
    status: HealthStatus
    message: str | None = None

    @property
    def summary(self) -> str:
        if self.status == HealthStatus.OK:
            return "ok"
        return self.message or self.status.value


class HealthCheck(ABC):
    """A named readiness check."""

    @property
    @abstractmethod
    def name(self) -> str: ...

    @abstractmethod
    async def check(self) -> CheckResult: ...


class RPCHealthCheck(HealthCheck):
    """Reports whether a chain client reaches its RPC endpoint.

    ``connected`` on the web3-backed client performs a blocking request, so it
    is read in a worker thread.
    """

    def __init__(self, chain_id: str, client):
        self._chain_id = chain_id
        self._client = client

    @property
    def name(self) -> str:
        return f"rpc:{self._chain_id}"

    async def check(self) -> CheckResult:
        if await asyncio.to_thread(lambda: self._client.connected):
            return CheckResult(self.name, HealthStatus.OK)
        return CheckResult(self.name, HealthStatus.ERROR, "unreachable")


class HealthRoutes:
    """Mounts /health, /ready and /metrics on the faucet app.

    Parameters
    ----------
    check_timeout : float
        Seconds a single readiness check may take before it counts as failed.
    """

    def __init__(self, check_timeout: float = DEFAULT_CHECK_TIMEOUT):
        self._checks: list[HealthCheck] = []
        self._check_timeout = check_timeout

    def add_check(self, check: HealthCheck) -> None:
        self._checks.append(check)

    def register(self, app: web.Application) -> None:
        app.router.add_get("/health", self._handle_health)
        app.router.add_get("/ready", self._handle_ready)
        app.router.add_get("/metrics", self._handle_metrics)

    async def _handle_health(self, _request: web.Request) -> web.Response:
        return web.Response(text="Server healthy")

    async def _handle_ready(self, _request: web.Request) -> web.Response:
        results = await asyncio.gather(*(self._run(check) for check in self._checks))
        ready = all(result.status == HealthStatus.OK for result in results)

        body: dict = {"status": (HealthStatus.OK if ready else HealthStatus.NOT_READY).value}
        if results:
            body["checks"] = {result.name: result.summary for result in results}
        return web.json_response(body, status=200 if ready else 503)

    async def _handle_metrics(self, _request: web.Request) -> web.Response:
        response = web.Response(body=generate_latest(REGISTRY))
        response.headers["Content-Type"] = CONTENT_TYPE_LATEST
        return response

    async def _run(self, check: HealthCheck) -> CheckResult:
        """Run one check; timeouts and exceptions count as errors."""
        try:
            return await asyncio.wait_for(check.check(), self._check_timeout)
        except TimeoutError:
            logger.warning("Readiness check timed out", extra={"check": check.name})
            return CheckResult(check.name, HealthStatus.ERROR, "timeout")
        except Exception as e:
            logger.exception("Readiness check failed", extra={"check": check.name})
            return CheckResult(check.name, HealthStatus.ERROR, f"error: {type(e).__name__}: {e}")
