"""Eligibility pipeline for drip.

A request passes through the enabled checks in order:

1. Coupon check, when the coupon subsystem is on and the asset requires one
2. Mainnet balance check, when enabled for the asset, the coupon check did not
   pass, and the caller supplied no coupon at all

The request is eligible if no check is enabled, or if any enabled check
passes. The drip amount is fixed before the first check runs; a coupon may
only lower it.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from drip.observability.metrics import PIPELINE_DECISIONS

from .coupons import CouponService
from .mainnet import MainnetCheckService
from .registry import ResolvedTarget

logger = logging.getLogger(__name__)


class PipelineCheck(str, Enum):
    """Which check admitted the request."""

    NONE = "none"
    COUPON = "coupon"
    MAINNET_BALANCE = "mainnet_balance"


@dataclass
class PipelineValidity:
    """Eligibility decision for one request."""

    is_valid: bool
    drip_amount: Decimal
    check_passed_type: PipelineCheck = PipelineCheck.NONE
    error_message: str | None = None
    mainnet_balance: Decimal | None = None
    coupon_reservation: str | None = None

    def add_error(self, message: str) -> None:
        """Append a per-check error message."""
        self.error_message = f"{self.error_message} {message}" if self.error_message else message


def pipeline_failure_message(
    coupon_check_enabled: bool,
    mainnet_check_enabled: bool,
    threshold: Decimal,
) -> str:
    """Describe what an ineligible request would have needed.

    Parameters
    ----------
    coupon_check_enabled : bool
        Whether the coupon check applied.
    mainnet_check_enabled : bool
        Whether the mainnet balance check applied.
    threshold : Decimal
        Minimum mainnet balance.
    """
    requirements = []
    if mainnet_check_enabled:
        requirements.append(f"a mainnet balance of at least {threshold}")
    if coupon_check_enabled:
        requirements.append("a valid coupon")
    if not requirements:
        return ""
    return f"This faucet requires {' or '.join(requirements)}."


class PipelineEngine:
    """Runs the eligibility checks for faucet requests.

    Parameters
    ----------
    coupon_service : CouponService
        Coupon ledger.
    mainnet_check_service : MainnetCheckService
        Mainnet balance checker.
    mainnet_rpc : str | None
        Mainnet RPC endpoint for the balance check.
    """

    def __init__(
        self,
        coupon_service: CouponService,
        mainnet_check_service: MainnetCheckService,
        mainnet_rpc: str | None,
    ):
        self._coupons = coupon_service
        self._mainnet = mainnet_check_service
        self._mainnet_rpc = mainnet_rpc

    async def evaluate(
        self,
        target: ResolvedTarget,
        address: str,
        coupon: str | None,
    ) -> PipelineValidity:
        """Decide whether a request may be dispatched.

        Parameters
        ----------
        target : ResolvedTarget
            Resolved chain/token target.
        address : str
            Recipient address.
        coupon : str | None
            Coupon supplied by the caller, if any.

        Returns
        -------
        PipelineValidity
            Decision and the amount to dispatch. On rejection
            ``error_message`` names every unmet check.
        """
        coupon_enabled = target.coupon_check_enabled
        mainnet_enabled = target.mainnet_check_enabled
        validity = PipelineValidity(is_valid=False, drip_amount=target.drip_amount)

        if not coupon_enabled and not mainnet_enabled:
            validity.is_valid = True
            PIPELINE_DECISIONS.labels(check=PipelineCheck.NONE.value, outcome="passed").inc()
            return validity

        if coupon_enabled:
            await self._check_coupon(validity, target.faucet_config_id, coupon)

        # A supplied coupon always decides the request, even an invalid one
        if not validity.is_valid and not coupon and mainnet_enabled:
            await self._check_mainnet_balance(validity, address)

        if not validity.is_valid:
            failure = pipeline_failure_message(
                coupon_enabled, mainnet_enabled, self._mainnet.threshold
            )
            validity.error_message = " ".join(
                part for part in (validity.error_message, failure) if part
            )
            PIPELINE_DECISIONS.labels(check=PipelineCheck.NONE.value, outcome="rejected").inc()
            logger.info(
                "Pipeline rejected request",
                extra={
                    "faucet_config_id": target.faucet_config_id,
                    "address": address,
                    "coupon_check": coupon_enabled,
                    "mainnet_check": mainnet_enabled,
                },
            )
            return validity

        PIPELINE_DECISIONS.labels(check=validity.check_passed_type.value, outcome="passed").inc()
        return validity

    async def _check_coupon(
        self,
        validity: PipelineValidity,
        faucet_config_id: str,
        coupon: str | None,
    ) -> None:
        try:
            redemption = await self._coupons.consume_coupon_amount(
                coupon, faucet_config_id, validity.drip_amount
            )
        except Exception as e:
            logger.error(
                "Coupon check failed",
                extra={"faucet_config_id": faucet_config_id, "error": str(e)},
                exc_info=True,
            )
            validity.add_error("Coupon check failed!")
            return

        if not redemption.is_valid:
            validity.add_error(redemption.reason or "Invalid coupon!")
            return

        validity.is_valid = True
        validity.check_passed_type = PipelineCheck.COUPON
        validity.drip_amount = min(validity.drip_amount, redemption.amount)
        validity.coupon_reservation = redemption.reservation_id

    async def _check_mainnet_balance(self, validity: PipelineValidity, address: str) -> None:
        if not self._mainnet_rpc:
            logger.error("Mainnet balance check enabled but no mainnet RPC configured")
            validity.add_error("Mainnet balance check unavailable!")
            return

        try:
            result = await self._mainnet.check_balance(self._mainnet_rpc, address)
        except Exception as e:
            logger.warning(
                "Mainnet balance check failed",
                extra={"address": address, "error": str(e)},
            )
            validity.add_error("Mainnet balance check failed!")
            return

        validity.mainnet_balance = result.balance
        if not result.sufficient:
            validity.add_error("Mainnet balance check failed!")
            return

        validity.is_valid = True
        validity.check_passed_type = PipelineCheck.MAINNET_BALANCE
