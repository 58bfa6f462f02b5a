"""Dispatch coordination for drip.

Single dispatch:
- Sends the pipeline's drip amount
- Returns coupon funds when a coupon-funded transfer fails

Batch dispatch:
- Native and token legs start together and both run to completion
- A leg that was sent stays sent, even when the batch reports failure
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from decimal import Decimal

from drip.blockchain.client import NATIVE_ASSET, Failed, Sent, TransferOutcome
from drip.observability.metrics import (
    COUPON_COMMITS,
    COUPON_RECLAIMS,
    TRANSFER_DURATION,
    TRANSFERS,
)

from .coupons import CouponService
from .pipeline import PipelineCheck, PipelineValidity
from .registry import FaucetInstance, ResolvedTarget

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BatchOutcome:
    """Aggregated result of a two-leg batch."""

    status: int
    message: str
    native_tx_hash: str | None
    erc20_tx_hash: str | None
    both_failed: bool = False

    def to_dict(self) -> dict:
        """Convert to the JSON response body."""
        if self.both_failed:
            return {"message": self.message}
        return {
            "message": self.message,
            "data": {
                "nativeTxHash": self.native_tx_hash,
                "erc20TxHash": self.erc20_tx_hash,
            },
        }


def aggregate_batch(native: TransferOutcome, erc20: TransferOutcome) -> BatchOutcome:
    """Combine the two legs of a batch.

    Anything short of both legs succeeding is reported as status 400, even
    when one leg was sent.
    """
    native_sent = isinstance(native, Sent)
    erc20_sent = isinstance(erc20, Sent)

    if native_sent and erc20_sent:
        return BatchOutcome(200, "Tokens sent successfully", native.tx_hash, erc20.tx_hash)
    if native_sent:
        return BatchOutcome(400, "Native token sent successfully", native.tx_hash, None)
    if erc20_sent:
        return BatchOutcome(400, "ERC20 token sent successfully", None, erc20.tx_hash)
    return BatchOutcome(400, "Failed to send tokens", None, None, both_failed=True)


class DispatchCoordinator:
    """Executes transfers through chain clients.

    Parameters
    ----------
    coupon_service : CouponService
        Coupon ledger used for compensation.
    """

    def __init__(self, coupon_service: CouponService):
        self._coupons = coupon_service

    async def _send(
        self,
        instance: FaucetInstance,
        address: str,
        asset_id: str | None,
        amount: Decimal,
    ) -> TransferOutcome:
        """Send through the client; any exception becomes ``Failed``."""
        asset = asset_id or NATIVE_ASSET
        start = time.monotonic()
        try:
            outcome = await instance.client.send_token(address, asset_id, amount)
        except Exception as e:
            logger.error(
                "Transfer raised",
                extra={
                    "chain": instance.config.id,
                    "asset": asset,
                    "recipient": address,
                    "amount": str(amount),
                    "error": str(e),
                },
                exc_info=True,
            )
            outcome = Failed(reason=f"Transaction failed: {e}")
        finally:
            TRANSFER_DURATION.labels(asset=asset).observe(time.monotonic() - start)

        TRANSFERS.labels(
            asset=asset, outcome="sent" if isinstance(outcome, Sent) else "failed"
        ).inc()
        return outcome

    async def dispatch(
        self,
        target: ResolvedTarget,
        address: str,
        validity: PipelineValidity,
        coupon: str | None,
    ) -> TransferOutcome:
        """Send an approved request's drip amount.

        Parameters
        ----------
        target : ResolvedTarget
            Resolved chain/token target.
        address : str
            Recipient address.
        validity : PipelineValidity
            Approved pipeline decision.
        coupon : str | None
            Coupon supplied by the caller.

        Returns
        -------
        TransferOutcome
            The transfer outcome. Coupon compensation has completed (or been
            logged as failed) before this returns.
        """
        outcome = await self._send(
            target.instance, address, target.asset_id, validity.drip_amount
        )

        coupon_funded = validity.check_passed_type == PipelineCheck.COUPON and bool(coupon)
        if isinstance(outcome, Failed) and coupon_funded:
            await self._reclaim(coupon, validity)
        elif isinstance(outcome, Sent) and validity.coupon_reservation:
            await self._commit(validity)

        return outcome

    async def _reclaim(self, coupon: str, validity: PipelineValidity) -> None:
        try:
            await self._coupons.reclaim_coupon_amount(
                coupon, validity.drip_amount, validity.coupon_reservation
            )
        except Exception as e:
            COUPON_RECLAIMS.labels(outcome="failed").inc()
            logger.error(
                "Coupon reclaim failed",
                extra={
                    "amount": str(validity.drip_amount),
                    "reservation_id": validity.coupon_reservation,
                    "error": str(e),
                },
                exc_info=True,
            )
            return

        COUPON_RECLAIMS.labels(outcome="reclaimed").inc()

    async def _commit(self, validity: PipelineValidity) -> None:
        """Settle a spent reservation; the transfer already went out either way."""
        try:
            await self._coupons.commit(validity.coupon_reservation)
        except Exception as e:
            COUPON_COMMITS.labels(outcome="failed").inc()
            logger.error(
                "Coupon commit failed",
                extra={"reservation_id": validity.coupon_reservation, "error": str(e)},
                exc_info=True,
            )
            return

        COUPON_COMMITS.labels(outcome="committed").inc()

    async def claim(
        self,
        instance: FaucetInstance,
        address: str,
        asset_id: str | None,
        amount: Decimal,
    ) -> TransferOutcome:
        """Send a caller-chosen amount without eligibility checks."""
        return await self._send(instance, address, asset_id, amount)

    async def batch_dispatch(
        self,
        instance: FaucetInstance,
        address: str,
        asset_id: str,
        native_amount: Decimal,
        token_amount: Decimal,
    ) -> BatchOutcome:
        """Send native coins and a token concurrently.

        Parameters
        ----------
        instance : FaucetInstance
            Chain to send on.
        address : str
            Recipient address.
        asset_id : str
            Token hosted on the chain.
        native_amount : Decimal
            Native amount.
        token_amount : Decimal
            Token amount.

        Returns
        -------
        BatchOutcome
            Aggregated outcome, see :func:`aggregate_batch`.
        """
        native, erc20 = await asyncio.gather(
            self._send(instance, address, None, native_amount),
            self._send(instance, address, asset_id, token_amount),
        )
        result = aggregate_batch(native, erc20)
        if result.status != 200:
            logger.warning(
                "Batch claim incomplete",
                extra={
                    "chain": instance.config.id,
                    "token": asset_id,
                    "recipient": address,
                    "native_tx_hash": result.native_tx_hash,
                    "erc20_tx_hash": result.erc20_tx_hash,
                },
            )
        return result
