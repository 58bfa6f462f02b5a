"""Configuration management for drip.

Process settings come from environment variables via Pydantic Settings.
Chain, token, coupon and rate-limit definitions come from a JSON file and are
parsed into frozen Pydantic models.
"""

import json
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

# Whole-asset amounts are kept as Decimal internally but served as JSON numbers
Amount = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]


class DripConfig(BaseSettings):
    """drip service configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    # Faucet definitions
    config_file: str = Field(default="config.json", alias="DRIP_CONFIG_FILE")

    # Wallet (per-chain keys are looked up by chain ID, see core.wallet)
    private_key: SecretStr | None = Field(default=None, alias="PK")

    # HTTP
    port: int = Field(default=8000, alias="PORT", ge=1, le=65535)
    static_dir: str = Field(default="client", alias="DRIP_STATIC_DIR")
    redirect_url: str = Field(
        default="https://core.app/tools/testnet-faucet", alias="DRIP_REDIRECT_URL"
    )

    # Captcha
    captcha_secret: SecretStr | None = Field(default=None, alias="CAPTCHA_SECRET")
    v2_captcha_secret: SecretStr | None = Field(default=None, alias="V2_CAPTCHA_SECRET")
    captcha_score_threshold: float = Field(
        default=0.3, alias="CAPTCHA_SCORE_THRESHOLD", ge=0, le=1
    )

    # Claim endpoints
    claim_coupon_id: SecretStr | None = Field(default=None, alias="NEO_COUPON_ID")

    # Redis (in-memory rate limiting when unset)
    redis_url: str | None = Field(default=None, alias="REDIS_URL")

    # Observability
    log_level: str = Field(default="INFO", alias="DRIP_LOG_LEVEL")
    log_format: str = Field(default="json", alias="DRIP_LOG_FORMAT")


class RateLimitConfig(BaseModel):
    """Window and threshold for one rate limiter."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="allow")

    max_limit: int = Field(alias="MAX_LIMIT", gt=0)
    window_size: int = Field(alias="WINDOW_SIZE", gt=0)  # minutes
    path: str = Field(default="/api/sendToken", alias="PATH")
    skip_failed_requests: bool = Field(default=True, alias="SKIP_FAILED_REQUESTS")
    reverse_proxies: int = Field(default=0, alias="REVERSE_PROXIES", ge=0)

    @property
    def window_seconds(self) -> int:
        """Window size in seconds."""
        return self.window_size * 60


class GlobalRateLimitConfig(BaseModel):
    """The global limiter entry (`GLOBAL_RL`)."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="allow")

    id: str = Field(default="GLOBAL", alias="ID")
    ratelimit: RateLimitConfig = Field(alias="RATELIMIT")


class ChainConfig(BaseModel):
    """A native-asset faucet target."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="allow")

    id: str = Field(alias="ID")
    name: str | None = Field(default=None, alias="NAME")
    token: str | None = Field(default=None, alias="TOKEN")
    rpc: str = Field(alias="RPC")
    chain_id: int | None = Field(default=None, alias="CHAINID")
    explorer: str | None = Field(default=None, alias="EXPLORER")
    drip_amount: Amount = Field(alias="DRIP_AMOUNT", gt=0)
    decimals: int = Field(default=18, alias="DECIMALS", ge=0)
    max_priority_fee: int | None = Field(default=None, alias="MAX_PRIORITY_FEE")
    max_fee: int | None = Field(default=None, alias="MAX_FEE")
    coupon_required: bool = Field(default=False, alias="COUPON_REQUIRED")
    mainnet_balance_check_enabled: bool = Field(
        default=False, alias="MAINNET_BALANCE_CHECK_ENABLED"
    )
    ratelimit: RateLimitConfig = Field(alias="RATELIMIT")


class TokenConfig(ChainConfig):
    """A secondary (ERC20) asset hosted on a chain.

    Fields missing from the raw token entry are filled in from the host chain
    before validation, see :func:`drip.faucet.registry.merge_config`.
    """

    host_id: str = Field(alias="HOSTID")
    contract_address: str = Field(alias="CONTRACTADDRESS")


class CouponConfig(BaseModel):
    """A single coupon definition."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(alias="ID")
    faucet_config_ids: tuple[str, ...] = Field(alias="FAUCET_CONFIG_IDS")
    amount_left: Amount = Field(alias="AMOUNT_LEFT", ge=0)
    max_limit_amount: Amount = Field(alias="MAX_LIMIT_AMOUNT", gt=0)
    expiry: datetime | None = Field(default=None, alias="EXPIRY")


class CouponSubsystemConfig(BaseModel):
    """Coupon subsystem switch and seed coupons (`couponConfig`)."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    is_enabled: bool = Field(default=False, alias="IS_ENABLED")
    coupons: tuple[CouponConfig, ...] = Field(default=(), alias="coupons")


class FaucetFileConfig(BaseModel):
    """Top-level faucet configuration file."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    evmchains: tuple[ChainConfig, ...]
    # Raw entries: inheritance from the host chain runs before validation
    erc20tokens: tuple[dict[str, Any], ...] = ()
    coupon_config: CouponSubsystemConfig = Field(
        default_factory=CouponSubsystemConfig, alias="couponConfig"
    )
    global_rl: GlobalRateLimitConfig = Field(alias="GLOBAL_RL")
    native_client: bool = Field(default=False, alias="NATIVE_CLIENT")
    debug: bool = Field(default=False, alias="DEBUG")
    mainnet_balance_check_rpc: str | None = Field(
        default=None, alias="MAINNET_BALANCE_CHECK_RPC"
    )
    mainnet_balance_check_chain_id: int | None = Field(
        default=None, alias="MAINNET_BALANCE_CHECK_CHAIN_ID"
    )
    mainnet_balance_check_threshold: Amount = Field(
        default=Decimal("0"), alias="MAINNET_BALANCE_CHECK_THRESHOLD", ge=0
    )


def load_faucet_config(path: str | Path) -> FaucetFileConfig:
    """Load and validate the faucet configuration file.

    Parameters
    ----------
    path : str | Path
        Path to the JSON configuration file.

    Returns
    -------
    FaucetFileConfig
        The validated configuration.

    Raises
    ------
    FileNotFoundError
        If the file does not exist.
    pydantic.ValidationError
        If the file does not match the schema.
    """
    config_path = Path(path).expanduser()
    if not config_path.exists():
        raise FileNotFoundError(f"Faucet config file not found: {path}")
    return FaucetFileConfig.model_validate(json.loads(config_path.read_text()))
