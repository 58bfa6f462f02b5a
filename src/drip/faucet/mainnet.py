"""Mainnet balance check for drip.

An address passes when its balance on the configured mainnet is non-zero and
at least the threshold. Results are cached for a short time per (RPC, address).
"""

import asyncio
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from decimal import Decimal

from web3 import Web3

logger = logging.getLogger(__name__)

DEFAULT_CACHE_SIZE = 10_000


@dataclass(frozen=True)
class MainnetBalance:
    """Result of a mainnet balance check."""

    sufficient: bool
    balance: Decimal


class MainnetCheckService:
    """Checks that an address holds funds on mainnet.

    Parameters
    ----------
    threshold : Decimal
        Minimum balance in whole native units.
    cache_seconds : int
        How long a positive result is reused.
    cache_size : int
        Most positive results held at once; the oldest go first.
    """

    def __init__(
        self,
        threshold: Decimal = Decimal("0"),
        cache_seconds: int = 300,
        cache_size: int = DEFAULT_CACHE_SIZE,
    ):
        self._threshold = threshold
        self._cache_seconds = cache_seconds
        self._clients: dict[str, Web3] = {}
        self._cache_size = cache_size
        self._cache: OrderedDict[tuple[str, str], tuple[float, MainnetBalance]] = OrderedDict()

    @property
    def threshold(self) -> Decimal:
        """Minimum balance required."""
        return self._threshold

    def _client(self, rpc_endpoint: str) -> Web3:
        client = self._clients.get(rpc_endpoint)
        if client is None:
            client = Web3(Web3.HTTPProvider(rpc_endpoint))
            self._clients[rpc_endpoint] = client
        return client

    async def check_balance(self, rpc_endpoint: str, address: str) -> MainnetBalance:
        """Check an address's mainnet balance.

        Parameters
        ----------
        rpc_endpoint : str
            Mainnet RPC URL.
        address : str
            Address to check.

        Returns
        -------
        MainnetBalance
            Whether the balance meets the threshold, and the balance.

        Raises
        ------
        ValueError
            If the address is not a valid EVM address.
        """
        if not Web3.is_address(address):
            raise ValueError(f"Invalid address: {address}")

        cache_key = (rpc_endpoint, address.lower())
        cached = self._cache.get(cache_key)
        if cached and time.monotonic() - cached[0] < self._cache_seconds:
            return cached[1]

        w3 = self._client(rpc_endpoint)
        wei = await asyncio.to_thread(w3.eth.get_balance, Web3.to_checksum_address(address))
        balance = Decimal(str(Web3.from_wei(wei, "ether")))
        # An empty account never passes, whatever the threshold
        sufficient = balance > 0 and balance >= self._threshold
        result = MainnetBalance(sufficient=sufficient, balance=balance)

        if result.sufficient:
            self._remember(cache_key, result)

        logger.debug(
            "Mainnet balance checked",
            extra={"address": address, "balance": str(balance), "sufficient": result.sufficient},
        )
        return result

    def _remember(self, cache_key: tuple[str, str], result: MainnetBalance) -> None:
        """Cache a result, dropping expired entries and the oldest beyond the size limit."""
        now = time.monotonic()
        self._cache.pop(cache_key, None)
        # Insertion order is expiry order
        while self._cache:
            stored_at, _ = next(iter(self._cache.values()))
            if now - stored_at < self._cache_seconds and len(self._cache) < self._cache_size:
                break
            self._cache.popitem(last=False)
        self._cache[cache_key] = (now, result)
