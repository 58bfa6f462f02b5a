"""aiohttp middlewares for the faucet API.

Order on the way in:
1. Request context (request ID, caller IP)
2. Body parsing (JSON body for POST, query for GET)
3. Rate limiting (global, per-resource, per-identity)
"""

import json
import logging
import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

from aiohttp import web

from drip.api.schemas import BATCH_DEFAULTS
from drip.config import ChainConfig, GlobalRateLimitConfig, RateLimitConfig
from drip.faucet.rate_limiter import GLOBAL_KEY, RateLimiter, identity_key
from drip.observability.logging import clear_request_context, set_request_context
from drip.observability.metrics import RATE_LIMITED

logger = logging.getLogger(__name__)

BATCH_CLAIM_PATH = "/api/batchClaimToken"


def client_ip(request: web.Request, reverse_proxies: int = 0) -> str | None:
    """Best-effort caller IP.

    Parameters
    ----------
    request : web.Request
        Incoming request.
    reverse_proxies : int
        Number of trusted proxies appending to ``X-Forwarded-For``.
    """
    cf_ip = request.headers.get("cf-connecting-ip")
    if cf_ip:
        return cf_ip.strip()

    if reverse_proxies > 0:
        forwarded = [p.strip() for p in request.headers.get("X-Forwarded-For", "").split(",")]
        forwarded = [p for p in forwarded if p]
        if forwarded:
            return forwarded[max(0, len(forwarded) - reverse_proxies)]

    return request.remote


@web.middleware
async def request_context_middleware(request: web.Request, handler) -> web.StreamResponse:
    """Tag the request with an ID for log correlation."""
    request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    request["client_ip"] = client_ip(request)
    set_request_context(request_id, request["client_ip"])
    try:
        response = await handler(request)
        response.headers["X-Request-ID"] = request_id
        return response
    finally:
        clear_request_context()


@web.middleware
async def body_middleware(request: web.Request, handler) -> web.StreamResponse:
    """Parse the JSON body (or query string) into ``request["body"]``.

    Malformed or non-object JSON bodies parse to an empty dict; the handlers
    then reject them as invalid parameters.
    """
    body: dict[str, Any] = {}
    if request.method == "POST" and request.can_read_body:
        try:
            parsed = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            parsed = None
        if isinstance(parsed, dict):
            body = parsed
    elif request.method == "GET":
        body = dict(request.query)
    request["body"] = body
    return await handler(request)


@dataclass(frozen=True)
class LimiterScope:
    """One limiter and the requests it applies to."""

    family: str
    limiter: RateLimiter
    config: RateLimitConfig
    config_id: str | None  # None for the global limiter
    key_func: Callable[[web.Request, dict[str, Any]], str]

    def applies_to(self, request: web.Request, body: dict[str, Any]) -> bool:
        """Whether the request path and target chain or token fall in this scope.

        Batch claims are matched against the chain and token they default to.
        """
        if not request.path.startswith(self.config.path):
            return False
        if self.config_id is None:
            return True
        if request.path == BATCH_CLAIM_PATH:
            body = {**BATCH_DEFAULTS, **body}
        return self.config_id == (body.get("erc20") or body.get("chain"))


class RateLimitGate:
    """Applies all limiter scopes before the handler body runs.

    A rejected request gets 429 and never reaches the handler. When a scope
    skips failed requests, its count is given back after any response with
    status >= 400.

    Parameters
    ----------
    scopes : Iterable[LimiterScope]
        Limiter scopes, checked in order.
    """

    def __init__(self, scopes: Iterable[LimiterScope]):
        self._scopes = list(scopes)

    @property
    def scopes(self) -> list[LimiterScope]:
        """Configured scopes."""
        return self._scopes

    @classmethod
    def from_config(
        cls,
        global_rl: GlobalRateLimitConfig,
        configs: Iterable[ChainConfig],
        redis_url: str | None = None,
    ) -> "RateLimitGate":
        """Build the global, per-resource and per-identity limiters.

        Parameters
        ----------
        global_rl : GlobalRateLimitConfig
            Global limiter settings.
        configs : Iterable[ChainConfig]
            Chain and token configurations, each with its own window.
        redis_url : str | None
            Shared Redis store, in-memory when None.
        """
        global_cfg = global_rl.ratelimit
        scopes = [
            LimiterScope(
                family="global",
                limiter=RateLimiter(
                    global_rl.id, global_cfg.max_limit, global_cfg.window_size, redis_url
                ),
                config=global_cfg,
                config_id=None,
                key_func=lambda _request, _body: GLOBAL_KEY,
            )
        ]

        configs = list(configs)
        for config in configs:
            rl = config.ratelimit
            scopes.append(
                LimiterScope(
                    family="resource",
                    limiter=RateLimiter(
                        f"resource:{config.id}", rl.max_limit, rl.window_size, redis_url
                    ),
                    config=rl,
                    config_id=config.id,
                    key_func=_ip_key(rl.reverse_proxies),
                )
            )
        for config in configs:
            rl = config.ratelimit
            scopes.append(
                LimiterScope(
                    family="identity",
                    limiter=RateLimiter(
                        f"identity:{config.id}", rl.max_limit, rl.window_size, redis_url
                    ),
                    config=rl,
                    config_id=config.id,
                    key_func=_identity_or_ip_key(rl.reverse_proxies),
                )
            )
        return cls(scopes)

    async def _release(self, hits: list[tuple[LimiterScope, str]]) -> None:
        for scope, key in hits:
            if scope.config.skip_failed_requests:
                await scope.limiter.release(key)

    @web.middleware
    async def middleware(self, request: web.Request, handler) -> web.StreamResponse:
        """aiohttp middleware entry point."""
        body = request.get("body", {})
        hits: list[tuple[LimiterScope, str]] = []

        for scope in self._scopes:
            if not scope.applies_to(request, body):
                continue
            key = scope.key_func(request, body)
            result = await scope.limiter.hit(key)
            if not result.allowed:
                RATE_LIMITED.labels(limiter=scope.family).inc()
                logger.info(
                    "Rate limit exceeded",
                    extra={"limiter": scope.limiter.name, "path": request.path},
                )
                await self._release(hits)
                return web.json_response(
                    {"message": result.reason},
                    status=429,
                    headers={"Retry-After": str(result.retry_after_seconds or 0)},
                )
            hits.append((scope, key))

        try:
            response = await handler(request)
        except web.HTTPException as exc:
            if exc.status >= 400:
                await self._release(hits)
            raise
        except Exception:
            await self._release(hits)
            raise

        if response.status >= 400:
            await self._release(hits)
        return response


def _ip_key(reverse_proxies: int) -> Callable[[web.Request, dict[str, Any]], str]:
    def key(request: web.Request, _body: dict[str, Any]) -> str:
        return client_ip(request, reverse_proxies) or "unknown"

    return key


def _identity_or_ip_key(reverse_proxies: int) -> Callable[[web.Request, dict[str, Any]], str]:
    ip_key = _ip_key(reverse_proxies)

    def key(request: web.Request, body: dict[str, Any]) -> str:
        return identity_key(body) or ip_key(request, body)

    return key
