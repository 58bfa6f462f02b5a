"""Faucet Service for drip.

Coordinates all faucet components:
- Registry (target resolution)
- Eligibility pipeline
- Dispatch coordinator
"""

import hmac
from dataclasses import dataclass
from decimal import Decimal

from pydantic import SecretStr

from drip.blockchain.client import INVALID_AMOUNT, Sent, TransferOutcome, to_base_units
from drip.observability.logging import get_logger
from drip.observability.metrics import FAUCET_BALANCE

from .dispatch import BatchOutcome, DispatchCoordinator
from .pipeline import PipelineEngine
from .registry import Registry

request_log = get_logger("drip.requests")

INVALID_PARAMETERS = "Invalid parameters passed!"
INVALID_COUPON = "Invalid coupon passed!"


@dataclass
class FaucetResult:
    """Result of a single-transfer faucet request."""

    success: bool
    status: int
    message: str
    tx_hash: str | None = None

    def to_dict(self) -> dict:
        """Convert to the JSON response body."""
        body = {"message": self.message}
        if self.tx_hash is not None:
            body["txHash"] = self.tx_hash
        return body


def _invalid(message: str = INVALID_PARAMETERS) -> FaucetResult:
    return FaucetResult(success=False, status=400, message=message)


def _exact_amount(amount: Decimal, decimals: int) -> bool:
    try:
        to_base_units(amount, decimals)
    except ValueError:
        return False
    return True


def _from_outcome(outcome: TransferOutcome) -> FaucetResult:
    if isinstance(outcome, Sent):
        return FaucetResult(
            success=True, status=outcome.status, message=outcome.message, tx_hash=outcome.tx_hash
        )
    return FaucetResult(success=False, status=outcome.status, message=outcome.reason)


class FaucetService:
    """Main faucet service orchestrating all components.

    Parameters
    ----------
    registry : Registry
        Chain/token registry.
    pipeline : PipelineEngine
        Eligibility pipeline.
    dispatcher : DispatchCoordinator
        Transfer coordinator.
    coupons_enabled : bool
        Whether the coupon subsystem is switched on.
    claim_coupon_id : SecretStr | None
        Coupon accepted by the claim endpoints; claims are refused when unset.
    mainnet_rpc : str | None
        Mainnet RPC advertised to clients.
    mainnet_chain_id : int | None
        Mainnet chain ID advertised to clients.
    debug : bool
        Log every admitted request.
    """

    def __init__(
        self,
        registry: Registry,
        pipeline: PipelineEngine,
        dispatcher: DispatchCoordinator,
        coupons_enabled: bool = False,
        claim_coupon_id: SecretStr | None = None,
        mainnet_rpc: str | None = None,
        mainnet_chain_id: int | None = None,
        debug: bool = False,
    ):
        self._registry = registry
        self._pipeline = pipeline
        self._dispatcher = dispatcher
        self._coupons_enabled = coupons_enabled
        self._claim_coupon_id = claim_coupon_id
        self._mainnet_rpc = mainnet_rpc
        self._mainnet_chain_id = mainnet_chain_id
        self._debug = debug

    @property
    def registry(self) -> Registry:
        """The chain/token registry."""
        return self._registry

    def _claim_coupon_valid(self, coupon: str | None) -> bool:
        if self._claim_coupon_id is None or not coupon:
            return False
        return hmac.compare_digest(
            coupon.encode(), self._claim_coupon_id.get_secret_value().encode()
        )

    async def handle_send_token(
        self,
        address: str,
        chain: str,
        erc20: str | None = None,
        coupon: str | None = None,
        ip: str | None = None,
    ) -> FaucetResult:
        """Handle a drip request subject to the eligibility pipeline.

        Parameters
        ----------
        address : str
            Recipient address.
        chain : str
            Chain ID.
        erc20 : str | None
            Token ID, or None for the native asset.
        coupon : str | None
            Coupon supplied by the caller.
        ip : str | None
            Caller IP, for request logging.

        Returns
        -------
        FaucetResult
            Result of the request.
        """
        target = self._registry.resolve_target(chain, erc20, self._coupons_enabled)
        if target is None:
            return _invalid()

        validity = await self._pipeline.evaluate(target, address, coupon)
        if not validity.is_valid:
            return _invalid(validity.error_message or INVALID_PARAMETERS)

        if self._debug:
            request_log.info(
                "NewFaucetRequest",
                faucet_config_id=target.faucet_config_id,
                address=address,
                chain=chain,
                erc20=erc20,
                check_passed_type=validity.check_passed_type.value,
                drip_amount=str(validity.drip_amount),
                mainnet_balance=(
                    str(validity.mainnet_balance) if validity.mainnet_balance is not None else None
                ),
                ip=ip,
            )

        outcome = await self._dispatcher.dispatch(target, address, validity, coupon)
        return _from_outcome(outcome)

    async def handle_claim_token(
        self,
        address: str,
        chain: str,
        amount: Decimal,
        erc20: str | None = None,
        coupon: str | None = None,
    ) -> FaucetResult:
        """Handle a claim of a caller-chosen amount authorized by the claim coupon."""
        if not self._claim_coupon_valid(coupon):
            return _invalid(INVALID_COUPON)

        instance = self._registry.resolve(chain)
        if instance is None or (erc20 and self._registry.resolve_token(chain, erc20) is None):
            return _invalid()
        decimals = instance.tokens[erc20].decimals if erc20 else instance.config.decimals
        if not _exact_amount(amount, decimals):
            return _invalid(INVALID_AMOUNT)

        outcome = await self._dispatcher.claim(instance, address, erc20, amount)
        return _from_outcome(outcome)

    async def handle_batch_claim(
        self,
        address: str,
        chain: str,
        native_amount: Decimal,
        erc20: str | None,
        erc20_amount: Decimal,
        coupon: str | None = None,
    ) -> FaucetResult | BatchOutcome:
        """Handle a two-leg claim of native coins and a token."""
        if not self._claim_coupon_valid(coupon):
            return _invalid(INVALID_COUPON)

        resolved = self._registry.resolve_token(chain, erc20)
        if resolved is None:
            return _invalid()
        instance, token = resolved
        if not (
            _exact_amount(native_amount, instance.config.decimals)
            and _exact_amount(erc20_amount, token.decimals)
        ):
            return _invalid(INVALID_AMOUNT)

        return await self._dispatcher.batch_dispatch(
            instance, address, token.id, native_amount, erc20_amount
        )

    def chain_configs(self) -> dict:
        """Client-facing configuration listing."""
        return {
            "configs": self._registry.configs(),
            "MAINNET_BALANCE_CHECK_RPC": self._mainnet_rpc,
            "MAINNET_BALANCE_CHECK_CHAIN_ID": self._mainnet_chain_id,
        }

    def faucet_address(self, chain: str | None) -> str | None:
        """Funding address on a chain, or None if unknown."""
        instance = self._registry.resolve(chain)
        return instance.client.address if instance else None

    async def get_balance(self, chain: str | None, erc20: str | None = None) -> int | None:
        """Faucet balance in base units, or None if the chain or token is unknown."""
        instance = self._registry.resolve(chain)
        if instance is None or (erc20 and erc20 not in instance.tokens):
            return None

        balance = await instance.client.get_balance(erc20 or None)
        FAUCET_BALANCE.labels(chain=instance.config.id, asset=erc20 or "native").set(balance)
        return balance

    def faucet_usage(self, chain: str | None) -> float | None:
        """Dispensed share of the native balance, or None if the chain is unknown."""
        instance = self._registry.resolve(chain)
        return instance.client.get_faucet_usage() if instance else None
