"""Coupon ledger for drip.

Coupons let a holder bypass the mainnet balance gate for a bounded amount.
Redemption reserves the amount; a reservation is later committed (transfer
sent) or released back to the coupon (transfer failed). Both steps are
idempotent per reservation.
"""

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum

from drip.config import CouponConfig

logger = logging.getLogger(__name__)

DEFAULT_SETTLED_HISTORY = 1024


@dataclass(frozen=True)
class CouponRedemption:
    """Result of redeeming a coupon."""

    is_valid: bool
    amount: Decimal
    reservation_id: str | None = None
    reason: str | None = None


class CouponService(ABC):
    """Contract the pipeline needs from the coupon subsystem."""

    @abstractmethod
    async def consume_coupon_amount(
        self, coupon_id: str | None, faucet_config_id: str, amount: Decimal
    ) -> CouponRedemption:
        """Validate a coupon and reserve up to ``amount`` from it."""
        ...

    @abstractmethod
    async def reclaim_coupon_amount(
        self, coupon_id: str, amount: Decimal, reservation_id: str | None = None
    ) -> None:
        """Return ``amount`` to a coupon after a failed transfer."""
        ...

    async def commit(self, reservation_id: str) -> None:
        """Finalize a reservation after a successful transfer."""
        return None


class ReservationState(str, Enum):
    """Lifecycle of a coupon reservation."""

    RESERVED = "reserved"
    COMMITTED = "committed"
    RELEASED = "released"


@dataclass
class _Coupon:
    id: str
    faucet_config_ids: frozenset[str]
    amount_left: Decimal
    max_limit_amount: Decimal
    expiry: datetime | None


@dataclass
class _Reservation:
    coupon_id: str
    amount: Decimal
    state: ReservationState


class InMemoryCouponLedger(CouponService):
    """Coupon ledger held in process memory.

    Open reservations are kept until settled. Only the most recent
    ``settled_history`` settled reservations are remembered, so repeated
    releases of those stay no-ops.

    Parameters
    ----------
    coupons : list[CouponConfig]
        Seed coupons from configuration.
    settled_history : int
        Number of settled reservations remembered.
    """

    def __init__(
        self,
        coupons: list[CouponConfig] | tuple[CouponConfig, ...] = (),
        settled_history: int = DEFAULT_SETTLED_HISTORY,
    ):
        self._coupons: dict[str, _Coupon] = {
            c.id: _Coupon(
                id=c.id,
                faucet_config_ids=frozenset(c.faucet_config_ids),
                amount_left=c.amount_left,
                max_limit_amount=c.max_limit_amount,
                expiry=c.expiry,
            )
            for c in coupons
        }
        self._reservations: dict[str, _Reservation] = {}
        self._settled: OrderedDict[str, ReservationState] = OrderedDict()
        self._settled_history = settled_history
        self._lock = asyncio.Lock()

    def amount_left(self, coupon_id: str) -> Decimal | None:
        """Remaining amount on a coupon, or None if unknown."""
        coupon = self._coupons.get(coupon_id)
        return coupon.amount_left if coupon else None

    def reservation_state(self, reservation_id: str) -> ReservationState | None:
        """State of a reservation, or None if unknown."""
        reservation = self._reservations.get(reservation_id)
        if reservation is not None:
            return reservation.state
        return self._settled.get(reservation_id)

    async def consume_coupon_amount(
        self, coupon_id: str | None, faucet_config_id: str, amount: Decimal
    ) -> CouponRedemption:
        """Validate a coupon and reserve the usable amount.

        The usable amount is ``amount`` capped by the coupon's per-request
        limit; it is never larger than requested.

        Parameters
        ----------
        coupon_id : str | None
            Coupon supplied by the caller.
        faucet_config_id : str
            Asset the request targets.
        amount : Decimal
            Configured drip amount.
        """
        if not coupon_id:
            return CouponRedemption(is_valid=False, amount=amount, reason="Coupon not provided!")

        async with self._lock:
            coupon = self._coupons.get(coupon_id)
            if coupon is None or faucet_config_id not in coupon.faucet_config_ids:
                return CouponRedemption(is_valid=False, amount=amount, reason="Invalid coupon!")

            if coupon.expiry is not None and coupon.expiry <= _now(coupon.expiry):
                return CouponRedemption(is_valid=False, amount=amount, reason="Coupon expired!")

            usable = min(amount, coupon.max_limit_amount)
            if coupon.amount_left < usable:
                return CouponRedemption(
                    is_valid=False, amount=amount, reason="Coupon amount exhausted!"
                )

            coupon.amount_left -= usable
            reservation_id = uuid.uuid4().hex
            self._reservations[reservation_id] = _Reservation(
                coupon_id=coupon_id, amount=usable, state=ReservationState.RESERVED
            )

        logger.info(
            "Coupon amount reserved",
            extra={
                "faucet_config_id": faucet_config_id,
                "amount": str(usable),
                "reservation_id": reservation_id,
            },
        )
        return CouponRedemption(is_valid=True, amount=usable, reservation_id=reservation_id)

    async def reclaim_coupon_amount(
        self, coupon_id: str, amount: Decimal, reservation_id: str | None = None
    ) -> None:
        """Return an amount to a coupon.

        With a reservation ID the release happens at most once; repeated calls
        are no-ops.

        Raises
        ------
        KeyError
            If the coupon is unknown.
        """
        async with self._lock:
            coupon = self._coupons.get(coupon_id)
            if coupon is None:
                raise KeyError(f"Unknown coupon: {coupon_id}")

            if reservation_id is not None:
                if reservation_id not in self._reservations:
                    logger.warning(
                        "Coupon reservation already settled",
                        extra={"reservation_id": reservation_id},
                    )
                    return
                self._settle(reservation_id, ReservationState.RELEASED)

            coupon.amount_left += amount

        logger.info(
            "Coupon amount reclaimed",
            extra={"amount": str(amount), "reservation_id": reservation_id},
        )

    async def commit(self, reservation_id: str) -> None:
        """Mark a reservation as spent."""
        async with self._lock:
            if reservation_id in self._reservations:
                self._settle(reservation_id, ReservationState.COMMITTED)

    def _settle(self, reservation_id: str, state: ReservationState) -> None:
        del self._reservations[reservation_id]
        self._settled[reservation_id] = state
        while len(self._settled) > self._settled_history:
            self._settled.popitem(last=False)


def _now(reference: datetime) -> datetime:
    """Current time, naive or aware to match ``reference``."""
    if reference.tzinfo is None:
        return datetime.now(timezone.utc).replace(tzinfo=None)
    return datetime.now(timezone.utc)
