"""Chain and token registry for drip.

Built once at startup from the faucet configuration file and never mutated
afterwards. Tokens inherit unset fields from their host chain, except for the
per-token gate switches.
"""

import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from decimal import Decimal
from types import MappingProxyType
from typing import Any

from pydantic import ValidationError

from drip.blockchain.client import ChainClient
from drip.config import ChainConfig, TokenConfig

logger = logging.getLogger(__name__)

# Gate switches are decided per token, never inherited from the host chain
EXEMPT_FIELDS = frozenset({"COUPON_REQUIRED", "MAINNET_BALANCE_CHECK_ENABLED"})


def merge_config(
    child: Mapping[str, Any],
    parent: Mapping[str, Any],
    exempt: Iterable[str] = EXEMPT_FIELDS,
) -> dict[str, Any]:
    """Fill fields missing on ``child`` from ``parent``.

    Parameters
    ----------
    child : Mapping[str, Any]
        Raw token entry.
    parent : Mapping[str, Any]
        Raw host chain entry.
    exempt : Iterable[str]
        Field names never copied from the parent.

    Returns
    -------
    dict[str, Any]
        A new mapping; neither input is modified.
    """
    exempt = frozenset(exempt)
    merged = dict(child)
    for key, value in parent.items():
        if key in exempt:
            continue
        if merged.get(key) is None:
            merged[key] = value
    return merged


@dataclass(frozen=True)
class FaucetInstance:
    """A chain configuration paired with its live client."""

    config: ChainConfig
    client: ChainClient

    @property
    def tokens(self) -> Mapping[str, TokenConfig]:
        """Tokens hosted on this chain."""
        return self.client.tokens


@dataclass(frozen=True)
class ResolvedTarget:
    """Everything the pipeline needs to know about one request's target."""

    instance: FaucetInstance
    token: TokenConfig | None
    coupon_check_enabled: bool

    @property
    def config(self) -> ChainConfig:
        """Token configuration if present, else chain configuration."""
        return self.token if self.token is not None else self.instance.config

    @property
    def faucet_config_id(self) -> str:
        """Unique ID of the asset being dispensed."""
        return self.config.id

    @property
    def asset_id(self) -> str | None:
        """Token ID, or None for the native asset."""
        return self.token.id if self.token is not None else None

    @property
    def drip_amount(self) -> Decimal:
        """Configured drip amount."""
        return self.config.drip_amount

    @property
    def mainnet_check_enabled(self) -> bool:
        """Whether the mainnet balance gate applies."""
        return self.config.mainnet_balance_check_enabled


class Registry:
    """Immutable lookup of faucet instances by chain ID.

    Parameters
    ----------
    instances : Mapping[str, FaucetInstance]
        Faucet instances keyed by chain ID.
    """

    def __init__(self, instances: Mapping[str, FaucetInstance]):
        self._instances = MappingProxyType(dict(instances))

    @classmethod
    def build(
        cls,
        chains: Iterable[ChainConfig],
        tokens: Iterable[Mapping[str, Any]],
        client_factory: Callable[[ChainConfig], ChainClient],
    ) -> "Registry":
        """Build the registry from configuration.

        Tokens whose host chain is missing, or whose merged entry does not
        validate, are logged and left out.

        Parameters
        ----------
        chains : Iterable[ChainConfig]
            Chain configurations.
        tokens : Iterable[Mapping[str, Any]]
            Raw token entries.
        client_factory : Callable[[ChainConfig], ChainClient]
            Creates the live client for a chain.
        """
        instances: dict[str, FaucetInstance] = {}
        for chain in chains:
            instances[chain.id] = FaucetInstance(config=chain, client=client_factory(chain))
            logger.info("Chain registered", extra={"chain": chain.id})

        for raw in tokens:
            token_id = raw.get("ID")
            host = instances.get(raw.get("HOSTID"))
            if host is None:
                logger.error(
                    "Token host chain not found, token disabled",
                    extra={"token": token_id, "host_id": raw.get("HOSTID")},
                )
                continue

            parent = host.config.model_dump(by_alias=True, exclude_none=True)
            try:
                token = TokenConfig.model_validate(merge_config(raw, parent))
            except ValidationError as e:
                logger.error(
                    "Invalid token configuration, token disabled",
                    extra={"token": token_id, "error": str(e)},
                )
                continue

            host.client.add_token(token)

        return cls(instances)

    def __contains__(self, chain_id: object) -> bool:
        return chain_id in self._instances

    @property
    def instances(self) -> Mapping[str, FaucetInstance]:
        """Read-only view of all instances."""
        return self._instances

    def resolve(self, chain_id: str | None) -> FaucetInstance | None:
        """Look up a chain's faucet instance."""
        if chain_id is None:
            return None
        return self._instances.get(chain_id)

    def resolve_token(
        self, chain_id: str | None, token_id: str | None
    ) -> tuple[FaucetInstance, TokenConfig] | None:
        """Look up a token hosted on a chain."""
        instance = self.resolve(chain_id)
        if instance is None or token_id is None:
            return None
        token = instance.tokens.get(token_id)
        if token is None:
            return None
        return instance, token

    def resolve_target(
        self,
        chain_id: str | None,
        token_id: str | None,
        coupons_enabled: bool,
    ) -> ResolvedTarget | None:
        """Resolve a request's target, or None if the chain or token is unknown.

        Parameters
        ----------
        chain_id : str | None
            Requested chain.
        token_id : str | None
            Requested token; falsy means the native asset.
        coupons_enabled : bool
            Whether the coupon subsystem is switched on globally.
        """
        instance = self.resolve(chain_id)
        if instance is None:
            return None

        token = None
        if token_id:
            resolved = self.resolve_token(chain_id, token_id)
            if resolved is None:
                return None
            _, token = resolved

        config = token if token is not None else instance.config
        return ResolvedTarget(
            instance=instance,
            token=token,
            coupon_check_enabled=coupons_enabled and config.coupon_required,
        )

    def configs(self) -> list[dict[str, Any]]:
        """Chain and servable token configurations, JSON-ready."""
        chains = [i.config.model_dump(by_alias=True, mode="json") for i in self._instances.values()]
        tokens = [
            token.model_dump(by_alias=True, mode="json")
            for instance in self._instances.values()
            for token in instance.tokens.values()
        ]
        return chains + tokens
