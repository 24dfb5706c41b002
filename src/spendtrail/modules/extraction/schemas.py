from __future__ import annotations

import datetime as dt
from decimal import ROUND_HALF_UP, Decimal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from spendtrail.core.currencies import normalize_currency

UNKNOWN_VENDOR = "Unknown Vendor"
DEFAULT_CURRENCY = "USD"

_CENTS = Decimal("0.01")
# Largest value a Numeric(12, 2) amount column holds.
MAX_AMOUNT = Decimal("9999999999.99")


def quantize_amount(value: Decimal) -> Decimal:
    return value.quantize(_CENTS, rounding=ROUND_HALF_UP)


class LineItem(BaseModel):
    # Models sometimes add quantity/unit price; only description and amount are kept.
    model_config = ConfigDict(extra="ignore")

    description: str = Field(min_length=1, max_length=500)
    amount: Decimal = Field(ge=-MAX_AMOUNT, le=MAX_AMOUNT)

    @field_validator("amount")
    @classmethod
    def _cents(cls, value: Decimal) -> Decimal:
        return quantize_amount(value)


class ExtractedReceipt(BaseModel):
    """Validated model output; stored verbatim on ``Expense.extracted_data``."""

    model_config = ConfigDict(extra="forbid")

    vendor: str = Field(min_length=1, max_length=200)
    date: dt.date
    total: Decimal = Field(ge=0, le=MAX_AMOUNT)
    currency: str
    line_items: list[LineItem] = Field(default_factory=list)
    confidence: float = Field(ge=0.0, le=1.0)
    raw_text: str | None = None

    @field_validator("vendor")
    @classmethod
    def _strip_vendor(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("vendor must not be blank")
        return value

    @field_validator("total")
    @classmethod
    def _total_cents(cls, value: Decimal) -> Decimal:
        return quantize_amount(value)

    @field_validator("currency")
    @classmethod
    def _known_currency(cls, value: str) -> str:
        code = normalize_currency(value)
        if not code:
            raise ValueError(f"unsupported currency: {value!r}")
        return code

    @property
    def is_sentinel(self) -> bool:
        return self.confidence == 0 and self.vendor == UNKNOWN_VENDOR

    def to_payload(self) -> dict:
        return self.model_dump(mode="json")


def sentinel_record(reason: str) -> ExtractedReceipt:
    return ExtractedReceipt(
        vendor=UNKNOWN_VENDOR,
        date=dt.datetime.now(dt.UTC).date(),
        total=Decimal("0"),
        currency=DEFAULT_CURRENCY,
        line_items=[],
        confidence=0.0,
        raw_text=reason or "Error extracting data",
    )
