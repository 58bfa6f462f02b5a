#!/usr/bin/env python3
"""drip - test-network faucet.

Entry point for the drip service.
"""

import asyncio
import logging
import signal
import sys
from collections.abc import Callable

from aiohttp import web

from drip.api import CaptchaVerifier, RateLimitGate, create_app
from drip.blockchain.client import ChainClient, evm_client_factory
from drip.cli import create_parser, run_cli
from drip.config import ChainConfig, DripConfig, FaucetFileConfig, load_faucet_config
from drip.faucet import (
    DispatchCoordinator,
    FaucetService,
    InMemoryCouponLedger,
    MainnetCheckService,
    PipelineEngine,
    Registry,
)
from drip.observability.health import HealthRoutes, RPCHealthCheck
from drip.observability.logging import configure_logging


def build_registry(
    config: DripConfig,
    file_config: FaucetFileConfig,
    client_factory: Callable[[ChainConfig], ChainClient] | None = None,
) -> Registry:
    """Build the chain/token registry from configuration."""
    return Registry.build(
        file_config.evmchains,
        file_config.erc20tokens,
        client_factory or evm_client_factory(config.private_key),
    )


def build_app(
    config: DripConfig,
    file_config: FaucetFileConfig,
    registry: Registry,
) -> web.Application:
    """Wire all components into the web application.

    The registry is complete before the application exists, so no handler
    can observe it half-built.
    """
    coupons = InMemoryCouponLedger(file_config.coupon_config.coupons)
    pipeline = PipelineEngine(
        coupon_service=coupons,
        mainnet_check_service=MainnetCheckService(file_config.mainnet_balance_check_threshold),
        mainnet_rpc=file_config.mainnet_balance_check_rpc,
    )
    service = FaucetService(
        registry=registry,
        pipeline=pipeline,
        dispatcher=DispatchCoordinator(coupons),
        coupons_enabled=file_config.coupon_config.is_enabled,
        claim_coupon_id=config.claim_coupon_id,
        mainnet_rpc=file_config.mainnet_balance_check_rpc,
        mainnet_chain_id=file_config.mainnet_balance_check_chain_id,
        debug=file_config.debug,
    )

    served_configs = [instance.config for instance in registry.instances.values()] + [
        token for instance in registry.instances.values() for token in instance.tokens.values()
    ]
    gate = RateLimitGate.from_config(file_config.global_rl, served_configs, config.redis_url)

    health = HealthRoutes()
    for chain_id, instance in registry.instances.items():
        health.add_check(RPCHealthCheck(chain_id, instance.client))

    captcha = CaptchaVerifier(
        secret=config.captcha_secret,
        v2_secret=config.v2_captcha_secret,
        score_threshold=config.captcha_score_threshold,
    )

    return create_app(
        service=service,
        rate_limit_gate=gate,
        captcha=captcha,
        health=health,
        native_client=file_config.native_client,
        static_dir=config.static_dir,
        redirect_url=config.redirect_url,
    )


def parse_args():
    """Parse command line arguments."""
    return create_parser().parse_args()


async def run_service() -> None:
    """Run the drip service (long-running mode).

    Loads configuration, builds the registry, then serves the faucet API
    until SIGTERM or SIGINT.
    """
    config = DripConfig()
    configure_logging(level=config.log_level, log_format=config.log_format)

    logger = logging.getLogger(__name__)
    logger.info("drip starting")

    file_config = load_faucet_config(config.config_file)
    logger.info(
        "Faucet config loaded: %d chains, %d tokens",
        len(file_config.evmchains),
        len(file_config.erc20tokens),
    )

    try:
        registry = build_registry(config, file_config)
    except ValueError as e:
        logger.error("Failed to build registry: %s", e)
        sys.exit(1)

    app = build_app(config, file_config, registry)

    if not (config.captcha_secret or config.v2_captcha_secret):
        logger.warning("No captcha secrets configured, captcha gate disabled")
    if not config.redis_url:
        logger.info("REDIS_URL not set, rate limiting in memory")

    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    def on_shutdown_signal(sig_name: str) -> None:
        logger.info("Received signal %s, initiating shutdown", sig_name)
        shutdown_event.set()

    loop.add_signal_handler(signal.SIGTERM, lambda: on_shutdown_signal("SIGTERM"))
    loop.add_signal_handler(signal.SIGINT, lambda: on_shutdown_signal("SIGINT"))

    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "0.0.0.0", config.port)  # noqa: S104
    await site.start()
    logger.info("Server started at port %d", config.port)

    await shutdown_event.wait()

    logger.info("drip shutting down...")
    await runner.cleanup()
    logger.info("drip shutdown complete")


async def main() -> None:
    """Main entry point for drip."""
    args = parse_args()

    if args.command and args.command != "run":
        exit_code = await run_cli(args)
        if exit_code >= 0:
            sys.exit(exit_code)
        create_parser().print_help()
        sys.exit(0)

    await run_service()


def run() -> None:
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
