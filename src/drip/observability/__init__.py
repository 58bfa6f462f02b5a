"""Observability module for drip."""

from .health import HealthCheck, HealthRoutes, HealthStatus, RPCHealthCheck
from .logging import (
    clear_request_context,
    configure_logging,
    get_logger,
    set_request_context,
)
from .metrics import (
    COUPON_COMMITS,
    COUPON_RECLAIMS,
    FAUCET_BALANCE,
    PIPELINE_DECISIONS,
    RATE_LIMITED,
    REQUESTS,
    TRANSFER_DURATION,
    TRANSFERS,
)

__all__ = [
    # Health
    "HealthCheck",
    "HealthRoutes",
    "HealthStatus",
    "RPCHealthCheck",
    # Logging
    "clear_request_context",
    "configure_logging",
    "get_logger",
    "set_request_context",
    # Metrics
    "COUPON_COMMITS",
    "COUPON_RECLAIMS",
    "FAUCET_BALANCE",
    "PIPELINE_DECISIONS",
    "RATE_LIMITED",
    "REQUESTS",
    "TRANSFER_DURATION",
    "TRANSFERS",
]
