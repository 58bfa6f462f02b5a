"""Pytest configuration and fixtures for drip tests."""

import os
from decimal import Decimal
from types import MappingProxyType

import pytest

from drip.blockchain.client import ChainClient, Sent
from drip.config import FaucetFileConfig
from drip.faucet.registry import Registry

FAUCET_ADDRESS = "0x00000000000000000000000000000000000000fa"
RECIPIENT = "0x742d35cc6634c0532925a3b844bc9e7595f8fe00"

SAMPLE_CONFIG = {
    "evmchains": [
        {
            "ID": "KITE",
            "NAME": "Kite Testnet",
            "TOKEN": "KITE",
            "RPC": "http://kite.invalid",
            "CHAINID": 2368,
            "EXPLORER": "https://testnet.kitescan.ai",
            "DRIP_AMOUNT": 0.5,
            "DECIMALS": 18,
            "RATELIMIT": {"MAX_LIMIT": 2, "WINDOW_SIZE": 60},
        },
        {
            "ID": "GATED",
            "NAME": "Gated Testnet",
            "TOKEN": "GTD",
            "RPC": "http://gated.invalid",
            "CHAINID": 43113,
            "DRIP_AMOUNT": 2,
            "COUPON_REQUIRED": True,
            "MAINNET_BALANCE_CHECK_ENABLED": True,
            "RATELIMIT": {"MAX_LIMIT": 5, "WINDOW_SIZE": 1440},
        },
    ],
    "erc20tokens": [
        {
            "ID": "USDT",
            "HOSTID": "KITE",
            "NAME": "Test USDT",
            "TOKEN": "USDT",
            "CONTRACTADDRESS": "0x0ff5393387ad2f9f691fd6fd28e07e3969e27e63",
            "DRIP_AMOUNT": 10,
            "DECIMALS": 6,
        },
        {
            "ID": "GUSD",
            "HOSTID": "GATED",
            "CONTRACTADDRESS": "0x5425890298aed601595a70ab815c96711a31bc65",
            "DRIP_AMOUNT": 5,
        },
    ],
    "couponConfig": {
        "IS_ENABLED": True,
        "coupons": [
            {
                "ID": "WELCOME",
                "FAUCET_CONFIG_IDS": ["GATED"],
                "AMOUNT_LEFT": 10,
                "MAX_LIMIT_AMOUNT": 1,
            }
        ],
    },
    "GLOBAL_RL": {
        "ID": "GLOBAL",
        "RATELIMIT": {"MAX_LIMIT": 100, "WINDOW_SIZE": 1, "PATH": "/api/"},
    },
    "MAINNET_BALANCE_CHECK_RPC": "http://mainnet.invalid",
    "MAINNET_BALANCE_CHECK_CHAIN_ID": 43114,
    "MAINNET_BALANCE_CHECK_THRESHOLD": 0.25,
}


class FakeChainClient(ChainClient):
    """In-memory chain client recording every transfer.

    ``outcomes`` maps an asset ID (None for native) to the outcome to return,
    or to an exception to raise.
    """

    def __init__(self, config):
        self.config = config
        self._tokens = {}
        self.sent: list[tuple[str, str | None, Decimal]] = []
        self.outcomes: dict = {}
        self.balance = 10**18
        self.usage = 0.0
        self.is_connected = True

    @property
    def address(self) -> str:
        return FAUCET_ADDRESS

    @property
    def tokens(self):
        return MappingProxyType(self._tokens)

    @property
    def connected(self) -> bool:
        return self.is_connected

    def add_token(self, token) -> None:
        self._tokens[token.id] = token

    async def send_token(self, address, asset_id, amount):
        self.sent.append((address, asset_id, amount))
        outcome = self.outcomes.get(asset_id)
        if isinstance(outcome, Exception):
            raise outcome
        if outcome is not None:
            return outcome
        return Sent(
            tx_hash=f"0x{len(self.sent):064x}",
            message=f"Transaction successful on {self.config.name}!",
        )

    async def get_balance(self, asset_id=None) -> int:
        return self.balance

    def get_faucet_usage(self) -> float:
        return self.usage


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Clear drip-related environment variables before each test."""
    env_prefixes = ("DRIP_", "CAPTCHA_", "V2_CAPTCHA_", "NEO_", "REDIS_")
    env_keys = {"PK", "PORT", "KITE", "GATED"}
    for key in list(os.environ.keys()):
        if key.startswith(env_prefixes) or key in env_keys:
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def file_config() -> FaucetFileConfig:
    """Validated sample faucet configuration."""
    return FaucetFileConfig.model_validate(SAMPLE_CONFIG)


@pytest.fixture
def registry(file_config) -> Registry:
    """Registry backed by fake chain clients."""
    return Registry.build(file_config.evmchains, file_config.erc20tokens, FakeChainClient)


@pytest.fixture
def kite_client(registry) -> FakeChainClient:
    """Fake client of the KITE chain."""
    return registry.resolve("KITE").client


@pytest.fixture
def gated_client(registry) -> FakeChainClient:
    """Fake client of the GATED chain."""
    return registry.resolve("GATED").client
