"""Request schemas for the faucet HTTP API."""

from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from drip.blockchain.client import INVALID_AMOUNT
from drip.faucet.service import INVALID_PARAMETERS

AMOUNT_FIELDS = frozenset({"amount", "kiteAmount", "erc20Amount"})

# Targets of a batch claim that leaves them out
BATCH_DEFAULTS = {"chain": "KITE", "erc20": "USDT"}


class _Request(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid", frozen=True)

    address: str = Field(min_length=1)

    @field_validator("erc20", mode="before", check_fields=False)
    @classmethod
    def _empty_erc20_is_native(cls, value):
        return value or None


class SendTokenRequest(_Request):
    """Body of POST /api/sendToken."""

    chain: str = Field(min_length=1)
    erc20: str | None = None
    coupon_id: str | None = Field(default=None, alias="couponId")
    captcha_token: str | None = Field(default=None, alias="token")
    v2_captcha_token: str | None = Field(default=None, alias="v2Token")


class ClaimTokenRequest(_Request):
    """Body of POST /api/claimToken."""

    chain: str = Field(min_length=1)
    amount: Decimal = Field(gt=0)
    erc20: str | None = None
    coupon: str | None = None


class BatchClaimTokenRequest(_Request):
    """Body of POST /api/batchClaimToken."""

    chain: str = Field(default=BATCH_DEFAULTS["chain"], min_length=1)
    kite_amount: Decimal = Field(alias="kiteAmount", gt=0)
    erc20: str | None = BATCH_DEFAULTS["erc20"]
    erc20_amount: Decimal = Field(alias="erc20Amount", gt=0)
    coupon: str | None = None


def validation_message(error: ValidationError) -> str:
    """Pick the user-facing message for a rejected request body."""
    for detail in error.errors():
        if detail["loc"] and detail["loc"][0] in AMOUNT_FIELDS:
            return INVALID_AMOUNT
    return INVALID_PARAMETERS
