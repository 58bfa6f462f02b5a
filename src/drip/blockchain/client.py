"""EVM chain client for faucet transfers."""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from decimal import Decimal
from types import MappingProxyType

from pydantic import SecretStr
from web3 import Web3

from drip.config import ChainConfig, TokenConfig
from drip.core.wallet import WalletProvider, wallet_for_chain

logger = logging.getLogger(__name__)

NATIVE_ASSET = "native"

# Minimal ERC20 surface used by the faucet
ERC20_ABI = [
    {
        "constant": False,
        "inputs": [
            {"name": "_to", "type": "address"},
            {"name": "_value", "type": "uint256"},
        ],
        "name": "transfer",
        "outputs": [{"name": "", "type": "bool"}],
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [{"name": "_owner", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "balance", "type": "uint256"}],
        "type": "function",
    },
]


@dataclass(frozen=True)
class Sent:
    """Transfer broadcast; the hash is final."""

    tx_hash: str
    message: str
    status: int = 200


@dataclass(frozen=True)
class Failed:
    """Transfer not broadcast."""

    reason: str
    status: int = 400


INVALID_AMOUNT = "Invalid amount passed!"

TransferOutcome = Sent | Failed


def to_base_units(amount: Decimal, decimals: int) -> int:
    """Convert a whole-asset amount to integer base units.

    Raises
    ------
    ValueError
        If the amount is not positive or is finer than ``decimals`` allows.
    """
    scaled = Decimal(amount).scaleb(decimals)
    if scaled <= 0 or scaled != scaled.to_integral_value():
        raise ValueError(f"{amount} is not a positive multiple of 1e-{decimals}")
    return int(scaled)


class ChainClient(ABC):
    """Live handle on one chain used by the dispatch pipeline."""

    @property
    @abstractmethod
    def address(self) -> str:
        """Funding address of the faucet on this chain."""
        ...

    @property
    @abstractmethod
    def tokens(self) -> Mapping[str, TokenConfig]:
        """Tokens hosted on this chain, keyed by token ID."""
        ...

    @abstractmethod
    def add_token(self, token: TokenConfig) -> None:
        """Register a secondary asset hosted on this chain."""
        ...

    @abstractmethod
    async def send_token(
        self, address: str, asset_id: str | None, amount: Decimal
    ) -> TransferOutcome:
        """Send ``amount`` of the native asset (``asset_id=None``) or a token."""
        ...

    @abstractmethod
    async def get_balance(self, asset_id: str | None = None) -> int:
        """Faucet balance in base units."""
        ...

    @abstractmethod
    def get_faucet_usage(self) -> float:
        """Share of the native balance dispensed since startup, in percent."""
        ...

    @property
    def connected(self) -> bool:
        """Whether the RPC endpoint is reachable."""
        return True


class EVMClient(ChainClient):
    """web3-backed client for an EVM chain and its ERC20 tokens.

    Blocking RPC calls run in worker threads so concurrent transfers overlap.
    Nonces are assigned under a lock so two transfers from the same funding
    account never reuse one.

    Parameters
    ----------
    config : ChainConfig
        The chain configuration.
    wallet : WalletProvider
        The funding wallet for signing transactions.
    """

    def __init__(self, config: ChainConfig, wallet: WalletProvider):
        self._config = config
        self._w3 = Web3(Web3.HTTPProvider(config.rpc))
        self._wallet = wallet
        self._tokens: dict[str, TokenConfig] = {}
        self._contracts: dict[str, object] = {}
        self._nonce_lock = asyncio.Lock()
        self._dispensed: dict[str, int] = {}
        self._last_balance: dict[str, int] = {}

    @property
    def config(self) -> ChainConfig:
        """The chain configuration."""
        return self._config

    @property
    def address(self) -> str:
        """The checksummed funding address."""
        return self._wallet.address

    @property
    def tokens(self) -> Mapping[str, TokenConfig]:
        """Read-only view of hosted tokens."""
        return MappingProxyType(self._tokens)

    @property
    def connected(self) -> bool:
        """Check if connected to the RPC endpoint."""
        return self._w3.is_connected()

    def add_token(self, token: TokenConfig) -> None:
        """Register an ERC20 token contract hosted on this chain."""
        self._tokens[token.id] = token
        self._contracts[token.id] = self._w3.eth.contract(
            address=Web3.to_checksum_address(token.contract_address),
            abi=ERC20_ABI,
        )
        logger.info(
            "ERC20 token registered",
            extra={"chain": self._config.id, "token": token.id},
        )

    async def send_token(
        self, address: str, asset_id: str | None, amount: Decimal
    ) -> TransferOutcome:
        """Send native coins or tokens to an address.

        Parameters
        ----------
        address : str
            The recipient address.
        asset_id : str | None
            Token ID, or None for the native asset.
        amount : Decimal
            Whole-asset amount.

        Returns
        -------
        TransferOutcome
            ``Sent`` with the transaction hash, or ``Failed`` with a reason.
        """
        if not Web3.is_address(address):
            return Failed(reason="Invalid address! Please send a valid EVM address.")
        if asset_id is not None and asset_id not in self._tokens:
            return Failed(reason=f"Unknown token {asset_id} on {self._config.id}")
        decimals = self._tokens[asset_id].decimals if asset_id else self._config.decimals
        try:
            value = to_base_units(amount, decimals)
        except ValueError:
            return Failed(reason=INVALID_AMOUNT)

        try:
            async with self._nonce_lock:
                tx_hash = await asyncio.to_thread(self._submit, address, asset_id, value)
        except Exception as e:
            logger.error(
                "Transfer failed",
                extra={
                    "chain": self._config.id,
                    "asset": asset_id or NATIVE_ASSET,
                    "recipient": address,
                    "amount": str(amount),
                    "error": str(e),
                },
                exc_info=True,
            )
            return Failed(reason=f"Transaction failed: {e}")

        key = asset_id or NATIVE_ASSET
        self._dispensed[key] = self._dispensed.get(key, 0) + value
        logger.info(
            "Transfer submitted",
            extra={
                "chain": self._config.id,
                "asset": key,
                "tx_hash": tx_hash,
                "recipient": address,
                "amount": str(amount),
            },
        )
        return Sent(
            tx_hash=tx_hash,
            message=f"Transaction successful on {self._config.name or self._config.id}!",
        )

    def _fee_fields(self) -> dict:
        if self._config.max_fee is not None:
            return {
                "maxFeePerGas": self._w3.to_wei(self._config.max_fee, "gwei"),
                "maxPriorityFeePerGas": self._w3.to_wei(
                    self._config.max_priority_fee or 0, "gwei"
                ),
            }
        return {"gasPrice": self._w3.eth.gas_price}

    def _submit(self, address: str, asset_id: str | None, value: int) -> str:
        """Build, sign and broadcast a transfer. Runs in a worker thread."""
        sender = self._wallet.address
        recipient = Web3.to_checksum_address(address)
        base = {
            "nonce": self._w3.eth.get_transaction_count(sender, "pending"),
            "chainId": self._w3.eth.chain_id,
            **self._fee_fields(),
        }

        if asset_id is None:
            tx = {**base, "to": recipient, "value": value, "gas": 21000}
        else:
            contract = self._contracts[asset_id]
            tx = contract.functions.transfer(recipient, value).build_transaction(
                {**base, "from": sender, "gas": 100000}
            )

        signed = self._wallet.get_account().sign_transaction(tx)
        tx_hash = self._w3.eth.send_raw_transaction(signed.raw_transaction)
        return tx_hash.hex()

    async def get_balance(self, asset_id: str | None = None) -> int:
        """Get the faucet balance in base units.

        Parameters
        ----------
        asset_id : str | None
            Token ID, or None for the native asset.

        Raises
        ------
        KeyError
            If the token is not hosted on this chain.
        """
        if asset_id is None:
            balance = await asyncio.to_thread(self._w3.eth.get_balance, self._wallet.address)
        else:
            contract = self._contracts[asset_id]
            balance = await asyncio.to_thread(
                contract.functions.balanceOf(self._wallet.address).call
            )
        self._last_balance[asset_id or NATIVE_ASSET] = int(balance)
        return int(balance)

    def get_faucet_usage(self) -> float:
        """Percentage of the native balance dispensed since startup.

        Uses the most recently observed balance; 0 until one is known.
        """
        balance = self._last_balance.get(NATIVE_ASSET)
        dispensed = self._dispensed.get(NATIVE_ASSET, 0)
        if balance is None or balance + dispensed == 0:
            return 0.0
        return round(100 * dispensed / (balance + dispensed), 2)


def evm_client_factory(default_key: SecretStr | None) -> Callable[[ChainConfig], ChainClient]:
    """Build EVM clients funded by the per-chain key or ``default_key``."""

    def factory(chain: ChainConfig) -> ChainClient:
        return EVMClient(chain, wallet_for_chain(chain.id, default_key))

    return factory
