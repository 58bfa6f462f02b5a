"""Faucet components for drip."""

from .coupons import CouponRedemption, CouponService, InMemoryCouponLedger
from .dispatch import BatchOutcome, DispatchCoordinator
from .mainnet import MainnetBalance, MainnetCheckService
from .pipeline import PipelineCheck, PipelineEngine, PipelineValidity
from .rate_limiter import RateLimiter, RateLimitResult
from .registry import FaucetInstance, Registry, ResolvedTarget
from .service import FaucetResult, FaucetService

__all__ = [
    "BatchOutcome",
    "CouponRedemption",
    "CouponService",
    "DispatchCoordinator",
    "FaucetInstance",
    "FaucetResult",
    "FaucetService",
    "InMemoryCouponLedger",
    "MainnetBalance",
    "MainnetCheckService",
    "PipelineCheck",
    "PipelineEngine",
    "PipelineValidity",
    "RateLimitResult",
    "RateLimiter",
    "Registry",
    "ResolvedTarget",
]
