"""Tests for API middlewares and the rate limit gate."""

import pytest
from aiohttp import web
from aiohttp.test_utils import TestClient, TestServer, make_mocked_request

from drip.api.middleware import (
    LimiterScope,
    RateLimitGate,
    body_middleware,
    client_ip,
    request_context_middleware,
)
from drip.config import GlobalRateLimitConfig, RateLimitConfig
from drip.faucet.rate_limiter import RateLimiter
from drip.observability.logging import request_id_var


def _scope(
    config_id=None,
    max_limit=1,
    path="/api/sendToken",
    skip_failed=True,
    family="resource",
):
    config = RateLimitConfig.model_validate(
        {
            "MAX_LIMIT": max_limit,
            "WINDOW_SIZE": 60,
            "PATH": path,
            "SKIP_FAILED_REQUESTS": skip_failed,
        }
    )
    return LimiterScope(
        family=family,
        limiter=RateLimiter(config_id or "GLOBAL", max_limit, 60),
        config=config,
        config_id=config_id,
        key_func=lambda request, body: "k",
    )


class TestClientIp:
    """Tests for client_ip."""

    def test_cloudflare_header_wins(self):
        """cf-connecting-ip is trusted first."""
        request = make_mocked_request(
            "GET", "/", headers={"cf-connecting-ip": "9.9.9.9", "X-Forwarded-For": "1.1.1.1"}
        )

        assert client_ip(request, reverse_proxies=1) == "9.9.9.9"

    def test_forwarded_for_with_proxies(self):
        """The entry appended by the outermost trusted proxy is used."""
        request = make_mocked_request(
            "GET", "/", headers={"X-Forwarded-For": "6.6.6.6, 1.1.1.1, 10.0.0.1"}
        )

        assert client_ip(request, reverse_proxies=1) == "10.0.0.1"
        assert client_ip(request, reverse_proxies=2) == "1.1.1.1"

    def test_forwarded_for_ignored_without_proxies(self):
        """Forwarded headers are ignored when no proxy is trusted."""
        request = make_mocked_request("GET", "/", headers={"X-Forwarded-For": "6.6.6.6"})

        assert client_ip(request) == request.remote


class TestLimiterScope:
    """Tests for LimiterScope.applies_to."""

    def test_path_prefix(self):
        """Scopes only apply under their path."""
        scope = _scope(path="/api/")

        assert scope.applies_to(make_mocked_request("GET", "/api/getBalance"), {}) is True
        assert scope.applies_to(make_mocked_request("GET", "/health"), {}) is False

    def test_config_id_matches_token_first(self):
        """Per-config scopes match the token ID, else the chain ID."""
        kite = _scope(config_id="KITE")
        usdt = _scope(config_id="USDT")
        request = make_mocked_request("POST", "/api/sendToken")

        assert kite.applies_to(request, {"chain": "KITE"}) is True
        assert kite.applies_to(request, {"chain": "KITE", "erc20": "USDT"}) is False
        assert usdt.applies_to(request, {"chain": "KITE", "erc20": "USDT"}) is True
        assert kite.applies_to(request, {"chain": "KITE", "erc20": ""}) is True

    def test_batch_claim_defaults(self):
        """Batch claims without chain or token match the KITE and USDT scopes."""
        usdt = _scope(config_id="USDT", path="/api/batchClaimToken")
        gated = _scope(config_id="GATED", path="/api/batchClaimToken")
        request = make_mocked_request("POST", "/api/batchClaimToken")

        assert usdt.applies_to(request, {"address": "0xabc", "kiteAmount": 1}) is True
        assert gated.applies_to(request, {"address": "0xabc"}) is False
        assert usdt.applies_to(request, {"chain": "KITE", "erc20": "GATED"}) is False

    def test_defaults_only_for_batch_claims(self):
        """Other endpoints never assume a target."""
        usdt = _scope(config_id="USDT", path="/api/")

        assert usdt.applies_to(make_mocked_request("POST", "/api/sendToken"), {}) is False


class TestRateLimitGateFromConfig:
    """Tests for RateLimitGate.from_config."""

    def test_scope_order(self, file_config, registry):
        """Global first, then one resource and one identity scope per config."""
        configs = [registry.resolve("KITE").config, registry.resolve("KITE").tokens["USDT"]]

        gate = RateLimitGate.from_config(file_config.global_rl, configs)

        assert [(s.family, s.config_id) for s in gate.scopes] == [
            ("global", None),
            ("resource", "KITE"),
            ("resource", "USDT"),
            ("identity", "KITE"),
            ("identity", "USDT"),
        ]

    def test_global_scope_uses_global_settings(self):
        """The global limiter uses GLOBAL_RL."""
        global_rl = GlobalRateLimitConfig.model_validate(
            {"ID": "GLOBAL", "RATELIMIT": {"MAX_LIMIT": 40, "WINDOW_SIZE": 1, "PATH": "/api/"}}
        )

        gate = RateLimitGate.from_config(global_rl, [])

        assert gate.scopes[0].limiter.max_limit == 40
        assert gate.scopes[0].config.path == "/api/"


class TestRateLimitGateMiddleware:
    """Tests for the rate limit gate in a running app."""

    @pytest.fixture
    async def make_client(self):
        """Build a test client around a gate and a configurable handler."""
        clients = []

        async def factory(gate, status=200):
            calls = []

            async def handler(request):
                calls.append(request["body"])
                return web.json_response({"ok": status < 400}, status=status)

            app = web.Application(middlewares=[body_middleware, gate.middleware])
            app.router.add_post("/api/sendToken", handler)
            client = TestClient(TestServer(app))
            await client.start_server()
            clients.append(client)
            return client, calls

        yield factory
        for client in clients:
            await client.close()

    @pytest.mark.asyncio
    async def test_rejects_over_limit_before_handler(self, make_client):
        """Over-limit requests get 429 and never reach the handler."""
        client, calls = await make_client(RateLimitGate([_scope(config_id="KITE")]))

        first = await client.post("/api/sendToken", json={"chain": "KITE"})
        second = await client.post("/api/sendToken", json={"chain": "KITE"})

        assert first.status == 200
        assert second.status == 429
        assert second.headers["Retry-After"] != "0"
        assert await second.json() == {
            "message": "Too many requests. Please try again after 60 minutes"
        }
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_other_config_unaffected(self, make_client):
        """Requests for other configs bypass a scope."""
        client, calls = await make_client(RateLimitGate([_scope(config_id="KITE")]))

        await client.post("/api/sendToken", json={"chain": "KITE"})
        resp = await client.post("/api/sendToken", json={"chain": "GATED"})

        assert resp.status == 200

    @pytest.mark.asyncio
    async def test_failed_requests_released(self, make_client):
        """Failed responses do not count when skipping is on."""
        client, calls = await make_client(RateLimitGate([_scope(config_id="KITE")]), status=400)

        for _ in range(3):
            resp = await client.post("/api/sendToken", json={"chain": "KITE"})
            assert resp.status == 400

        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_failed_requests_counted_without_skip(self, make_client):
        """Failed responses count when skipping is off."""
        gate = RateLimitGate([_scope(config_id="KITE", skip_failed=False)])
        client, _ = await make_client(gate, status=400)

        await client.post("/api/sendToken", json={"chain": "KITE"})
        resp = await client.post("/api/sendToken", json={"chain": "KITE"})

        assert resp.status == 429

    @pytest.mark.asyncio
    async def test_rejection_releases_earlier_scopes(self, make_client):
        """A later scope's rejection gives back the earlier scopes' counts."""
        global_scope = _scope(max_limit=2, path="/api/", family="global")
        kite_scope = _scope(config_id="KITE", max_limit=1)
        client, _ = await make_client(RateLimitGate([global_scope, kite_scope]))

        await client.post("/api/sendToken", json={"chain": "KITE"})
        rejected = await client.post("/api/sendToken", json={"chain": "KITE"})

        assert rejected.status == 429
        assert await global_scope.limiter.get_remaining("k") == 1


class TestBodyAndContextMiddleware:
    """Tests for body parsing and request context."""

    @pytest.fixture
    async def app_client(self):
        """App echoing the parsed body and request context."""
        seen = {}

        async def handler(request):
            seen["request_id"] = request_id_var.get()
            return web.json_response({"body": request["body"], "ip": request["client_ip"]})

        app = web.Application(middlewares=[request_context_middleware, body_middleware])
        app.router.add_route("*", "/echo", handler)
        client = TestClient(TestServer(app))
        await client.start_server()
        yield client, seen
        await client.close()

    @pytest.mark.asyncio
    async def test_json_body(self, app_client):
        """POST JSON objects are parsed."""
        client, _ = app_client

        resp = await client.post("/echo", json={"address": "0xabc"})

        assert (await resp.json())["body"] == {"address": "0xabc"}

    @pytest.mark.asyncio
    async def test_malformed_body(self, app_client):
        """Malformed or non-object JSON parses to an empty body."""
        client, _ = app_client

        bad = await client.post(
            "/echo", data="{not json", headers={"Content-Type": "application/json"}
        )
        array = await client.post("/echo", json=[1, 2])

        assert (await bad.json())["body"] == {}
        assert (await array.json())["body"] == {}

    @pytest.mark.asyncio
    async def test_query_body(self, app_client):
        """GET query parameters become the body."""
        client, _ = app_client

        resp = await client.get("/echo", params={"chain": "KITE"})

        assert (await resp.json())["body"] == {"chain": "KITE"}

    @pytest.mark.asyncio
    async def test_request_id_propagated(self, app_client):
        """Incoming request IDs are echoed and bound for logging."""
        client, seen = app_client

        resp = await client.get("/echo", headers={"X-Request-ID": "req-42"})

        assert resp.headers["X-Request-ID"] == "req-42"
        assert seen["request_id"] == "req-42"

    @pytest.mark.asyncio
    async def test_request_id_generated(self, app_client):
        """A request ID is generated when none is sent."""
        client, _ = app_client

        resp = await client.get("/echo")

        assert len(resp.headers["X-Request-ID"]) == 32

    @pytest.mark.asyncio
    async def test_cloudflare_ip(self, app_client):
        """The caller IP honours cf-connecting-ip."""
        client, _ = app_client

        resp = await client.get("/echo", headers={"cf-connecting-ip": "9.9.9.9"})

        assert (await resp.json())["ip"] == "9.9.9.9"
