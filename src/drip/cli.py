"""CLI subcommands for drip operations.

Provides command-line interface for:
- Service mode (run)
- Configuration listing (configs)
- Faucet inspection (address, balance, usage)
"""

import argparse
import json
import sys
from decimal import Decimal

from drip.blockchain.client import evm_client_factory
from drip.config import DripConfig, FaucetFileConfig, load_faucet_config
from drip.faucet.registry import FaucetInstance, Registry


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser with all subcommands."""
    parser = argparse.ArgumentParser(
        prog="drip",
        description="drip - multi-chain test-network faucet",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--json",
        action="store_true",
        help="Output in JSON format",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("run", help="Start the faucet service")
    subparsers.add_parser("configs", help="List served chains and tokens")

    faucet_parser = subparsers.add_parser("faucet", help="Faucet inspection")
    faucet_sub = faucet_parser.add_subparsers(dest="faucet_command")

    address_parser = faucet_sub.add_parser("address", help="Show funding address on a chain")
    address_parser.add_argument("--chain", required=True, help="Chain ID")

    balance_parser = faucet_sub.add_parser("balance", help="Show faucet balance on a chain")
    balance_parser.add_argument("--chain", required=True, help="Chain ID")
    balance_parser.add_argument("--erc20", default=None, help="Token ID (default: native)")

    usage_parser = faucet_sub.add_parser("usage", help="Show dispensed share of the balance")
    usage_parser.add_argument("--chain", required=True, help="Chain ID")

    return parser


class CLIContext:
    """Shared context for CLI commands."""

    def __init__(self, config: DripConfig, json_output: bool = False):
        self.config = config
        self.json_output = json_output
        self._file_config: FaucetFileConfig | None = None
        self._registry: Registry | None = None

    @property
    def file_config(self) -> FaucetFileConfig:
        """Get faucet configuration (lazy loaded)."""
        if self._file_config is None:
            self._file_config = load_faucet_config(self.config.config_file)
        return self._file_config

    @property
    def registry(self) -> Registry:
        """Get registry (lazy loaded)."""
        if self._registry is None:
            self._registry = Registry.build(
                self.file_config.evmchains,
                self.file_config.erc20tokens,
                evm_client_factory(self.config.private_key),
            )
        return self._registry

    def instance(self, chain: str) -> FaucetInstance:
        """Resolve a chain or fail with a readable error."""
        instance = self.registry.resolve(chain)
        if instance is None:
            raise ValueError(f"Unknown chain: {chain}")
        return instance

    def output(self, data: dict) -> None:
        """Output data in the appropriate format."""
        if self.json_output:

            def decimal_default(obj):
                if isinstance(obj, Decimal):
                    return str(obj)
                raise TypeError(f"Object of type {type(obj)} is not JSON serializable")

            print(json.dumps(data, default=decimal_default, indent=2))
        else:
            self._print_formatted(data)

    def _print_formatted(self, data: dict, indent: int = 0) -> None:
        """Print data in human-readable format."""
        prefix = "  " * indent
        for key, value in data.items():
            if isinstance(value, dict):
                print(f"{prefix}{key}:")
                self._print_formatted(value, indent + 1)
            elif isinstance(value, list):
                print(f"{prefix}{key}:")
                for item in value:
                    if isinstance(item, dict):
                        self._print_formatted(item, indent + 1)
                        print()
                    else:
                        print(f"{prefix}  - {item}")
            else:
                print(f"{prefix}{key}: {value}")


def cmd_configs(ctx: CLIContext) -> int:
    """List served chains and tokens."""
    try:
        ctx.output(
            {
                "configs": ctx.registry.configs(),
                "MAINNET_BALANCE_CHECK_RPC": ctx.file_config.mainnet_balance_check_rpc,
                "MAINNET_BALANCE_CHECK_CHAIN_ID": ctx.file_config.mainnet_balance_check_chain_id,
            }
        )
        return 0
    except Exception as e:
        ctx.output({"error": str(e)})
        return 1


def cmd_faucet_address(ctx: CLIContext, chain: str) -> int:
    """Show the funding address on a chain."""
    try:
        ctx.output({"chain": chain, "address": ctx.instance(chain).client.address})
        return 0
    except Exception as e:
        ctx.output({"error": str(e)})
        return 1


async def cmd_faucet_balance(ctx: CLIContext, chain: str, erc20: str | None) -> int:
    """Show the faucet balance on a chain."""
    try:
        instance = ctx.instance(chain)
        if erc20 and erc20 not in instance.tokens:
            ctx.output({"error": f"Unknown token {erc20} on {chain}"})
            return 1
        if not instance.client.connected:
            ctx.output({"error": "Not connected to RPC endpoint"})
            return 1

        balance = await instance.client.get_balance(erc20)
        ctx.output(
            {
                "chain": chain,
                "asset": erc20 or instance.config.token or "native",
                "address": instance.client.address,
                "balance": str(balance),
                "rpc": instance.config.rpc,
            }
        )
        return 0
    except Exception as e:
        ctx.output({"error": str(e)})
        return 1


async def cmd_faucet_usage(ctx: CLIContext, chain: str) -> int:
    """Show the dispensed share of the native balance on a chain."""
    try:
        instance = ctx.instance(chain)
        await instance.client.get_balance(None)
        ctx.output({"chain": chain, "usage": instance.client.get_faucet_usage()})
        return 0
    except Exception as e:
        ctx.output({"error": str(e)})
        return 1


async def run_cli(args: argparse.Namespace) -> int:
    """Execute CLI command based on parsed arguments.

    Returns
    -------
    int
        Exit code: 0 for success, positive for error, -1 signals caller
        to show help (no CLI command specified).
    """
    try:
        config = DripConfig()
    except Exception as e:
        if args.json:
            print(json.dumps({"error": f"Configuration error: {e}"}))
        else:
            print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    ctx = CLIContext(config, json_output=args.json)

    if args.command == "configs":
        return cmd_configs(ctx)

    elif args.command == "faucet":
        if args.faucet_command == "address":
            return cmd_faucet_address(ctx, args.chain)
        elif args.faucet_command == "balance":
            return await cmd_faucet_balance(ctx, args.chain, args.erc20)
        elif args.faucet_command == "usage":
            return await cmd_faucet_usage(ctx, args.chain)
        else:
            print("Usage: drip faucet [address|balance|usage]", file=sys.stderr)
            return 1

    else:
        return -1
