"""Tests for the chain/token registry."""

import logging
from decimal import Decimal

import pytest

from conftest import SAMPLE_CONFIG, FakeChainClient
from drip.faucet.registry import EXEMPT_FIELDS, Registry, merge_config


class TestMergeConfig:
    """Tests for field inheritance."""

    def test_fills_missing_fields(self):
        """Fields absent on the child come from the parent."""
        merged = merge_config({"ID": "T"}, {"ID": "C", "RPC": "http://rpc"})

        assert merged == {"ID": "T", "RPC": "http://rpc"}

    def test_fills_null_fields(self):
        """Explicit nulls on the child are treated as unset."""
        merged = merge_config({"EXPLORER": None}, {"EXPLORER": "https://scan"})

        assert merged["EXPLORER"] == "https://scan"

    def test_child_values_win(self):
        """Set child fields are never overwritten."""
        merged = merge_config({"DECIMALS": 6}, {"DECIMALS": 18})

        assert merged["DECIMALS"] == 6

    def test_exempt_fields_not_inherited(self):
        """Gate switches stay unset on the child."""
        parent = {"COUPON_REQUIRED": True, "MAINNET_BALANCE_CHECK_ENABLED": True}

        merged = merge_config({}, parent)

        assert merged == {}
        assert EXEMPT_FIELDS == {"COUPON_REQUIRED", "MAINNET_BALANCE_CHECK_ENABLED"}

    def test_inputs_not_modified(self):
        """Neither input mapping is changed."""
        child = {"ID": "T"}
        parent = {"RPC": "http://rpc"}

        merge_config(child, parent)

        assert child == {"ID": "T"}
        assert parent == {"RPC": "http://rpc"}


class TestRegistryBuild:
    """Tests for Registry.build."""

    def test_chains_registered(self, registry):
        """Every chain gets an instance."""
        assert "KITE" in registry
        assert "GATED" in registry
        assert "USDT" not in registry

    def test_token_inherits_from_host(self, registry):
        """Token picks up unset fields from its host chain."""
        usdt = registry.resolve("KITE").tokens["USDT"]

        assert usdt.rpc == "http://kite.invalid"
        assert usdt.chain_id == 2368
        assert usdt.explorer == "https://testnet.kitescan.ai"
        assert usdt.ratelimit.max_limit == 2
        assert usdt.decimals == 6
        assert usdt.drip_amount == Decimal("10")

    def test_token_gates_not_inherited(self, registry):
        """A token on a gated chain is ungated unless it says otherwise."""
        gusd = registry.resolve("GATED").tokens["GUSD"]
        gated = registry.resolve("GATED").config

        assert gated.coupon_required is True
        assert gated.mainnet_balance_check_enabled is True
        assert gusd.coupon_required is False
        assert gusd.mainnet_balance_check_enabled is False

    def test_missing_host_skipped(self, file_config, caplog):
        """A token whose host chain is absent is logged and left out."""
        tokens = [{**SAMPLE_CONFIG["erc20tokens"][0], "ID": "ORPHAN", "HOSTID": "NOPE"}]

        with caplog.at_level(logging.ERROR):
            registry = Registry.build(file_config.evmchains, tokens, FakeChainClient)

        assert all("ORPHAN" not in i.tokens for i in registry.instances.values())
        assert "Token host chain not found" in caplog.text

    def test_invalid_token_skipped(self, file_config, caplog):
        """A token that fails validation after merging is left out."""
        tokens = [{**SAMPLE_CONFIG["erc20tokens"][0], "DRIP_AMOUNT": -1}]

        with caplog.at_level(logging.ERROR):
            registry = Registry.build(file_config.evmchains, tokens, FakeChainClient)

        assert "USDT" not in registry.resolve("KITE").tokens
        assert "Invalid token configuration" in caplog.text

    def test_instances_read_only(self, registry):
        """The instance mapping cannot be modified."""
        with pytest.raises(TypeError):
            registry.instances["NEW"] = registry.resolve("KITE")


class TestRegistryResolve:
    """Tests for target resolution."""

    def test_resolve_unknown_chain(self, registry):
        """Unknown or missing chain resolves to None."""
        assert registry.resolve("NOPE") is None
        assert registry.resolve(None) is None
        assert registry.resolve_target("NOPE", None, True) is None

    def test_resolve_unknown_token(self, registry):
        """Unknown token on a known chain resolves to None."""
        assert registry.resolve_token("KITE", "DAI") is None
        assert registry.resolve_target("KITE", "DAI", True) is None

    def test_token_on_wrong_chain(self, registry):
        """Tokens only resolve on their host chain."""
        assert registry.resolve_token("GATED", "USDT") is None

    def test_native_target(self, registry):
        """Empty token ID resolves to the native asset."""
        target = registry.resolve_target("KITE", "", True)

        assert target.token is None
        assert target.asset_id is None
        assert target.faucet_config_id == "KITE"
        assert target.drip_amount == Decimal("0.5")

    def test_token_target(self, registry):
        """Token target uses the token's configuration."""
        target = registry.resolve_target("KITE", "USDT", True)

        assert target.asset_id == "USDT"
        assert target.faucet_config_id == "USDT"
        assert target.drip_amount == Decimal("10")

    def test_coupon_check_needs_global_switch(self, registry):
        """Coupon check applies only when the subsystem is on."""
        assert registry.resolve_target("GATED", None, True).coupon_check_enabled is True
        assert registry.resolve_target("GATED", None, False).coupon_check_enabled is False
        assert registry.resolve_target("KITE", None, True).coupon_check_enabled is False

    def test_mainnet_check_flag(self, registry):
        """Mainnet check follows the asset's own flag."""
        assert registry.resolve_target("GATED", None, False).mainnet_check_enabled is True
        assert registry.resolve_target("GATED", "GUSD", False).mainnet_check_enabled is False


class TestRegistryConfigs:
    """Tests for the client-facing configuration listing."""

    def test_lists_chains_and_tokens(self, registry):
        """Chains come first, then tokens."""
        ids = [c["ID"] for c in registry.configs()]

        assert ids == ["KITE", "GATED", "USDT", "GUSD"]

    def test_json_ready(self, registry):
        """Amounts are plain numbers."""
        usdt = next(c for c in registry.configs() if c["ID"] == "USDT")

        assert usdt["DRIP_AMOUNT"] == 10.0
        assert usdt["HOSTID"] == "KITE"
        assert usdt["CONTRACTADDRESS"] == "0x0ff5393387ad2f9f691fd6fd28e07e3969e27e63"
