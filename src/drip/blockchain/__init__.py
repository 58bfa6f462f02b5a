"""Blockchain integration for drip."""

from .client import (
    ChainClient,
    EVMClient,
    Failed,
    Sent,
    TransferOutcome,
    evm_client_factory,
)

__all__ = [
    "ChainClient",
    "EVMClient",
    "Failed",
    "Sent",
    "TransferOutcome",
    "evm_client_factory",
]
