"""Core drip components."""

from .wallet import EnvironmentWallet, WalletProvider, wallet_for_chain

__all__ = [
    "EnvironmentWallet",
    "WalletProvider",
    "wallet_for_chain",
]
