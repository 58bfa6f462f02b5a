"""Wallet provider abstraction for signing faucet transactions."""

import os
from abc import ABC, abstractmethod
from collections.abc import Mapping

from eth_account import Account
from eth_account.signers.local import LocalAccount
from pydantic import SecretStr


class WalletProvider(ABC):
    """Abstract wallet provider for signing transactions."""

    @abstractmethod
    def get_account(self) -> LocalAccount:
        """Get the wallet account for signing.

        Returns
        -------
        LocalAccount
            The account instance for transaction signing.
        """
        ...

    @property
    def address(self) -> str:
        """Get the checksummed wallet address."""
        return self.get_account().address


class EnvironmentWallet(WalletProvider):
    """Wallet backed by a private key held in memory.

    Parameters
    ----------
    private_key : SecretStr
        The funding account's private key.
    """

    def __init__(self, private_key: SecretStr):
        self._account = Account.from_key(private_key.get_secret_value())

    def get_account(self) -> LocalAccount:
        """Get the wallet account for signing."""
        return self._account


def wallet_for_chain(
    chain_id: str,
    default_key: SecretStr | None,
    environ: Mapping[str, str] | None = None,
) -> EnvironmentWallet:
    """Pick the funding wallet for a chain.

    A variable named after the chain ID (e.g. ``KITE``) takes precedence over
    the default key.

    Parameters
    ----------
    chain_id : str
        Chain configuration ID.
    default_key : SecretStr | None
        Fallback key (``PK``).
    environ : Mapping[str, str] | None
        Environment to read, defaults to ``os.environ``.

    Raises
    ------
    ValueError
        If neither a chain-specific nor a default key is available.
    """
    environ = os.environ if environ is None else environ
    chain_key = environ.get(chain_id)
    if chain_key:
        return EnvironmentWallet(SecretStr(chain_key))
    if default_key is not None:
        return EnvironmentWallet(default_key)
    raise ValueError(f"No private key configured for chain {chain_id}. Set {chain_id} or PK")
