"""Identity and measure value objects.

Every value object normalizes on construction (case, trailing zeros,
defaults) and validates, so downstream code can rely on the invariants.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any

from copytrade_harvester.domain.enums import Exchange
from copytrade_harvester.domain.errors import ValidationError

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)
_ONE_MS = timedelta(milliseconds=1)

DEFAULT_CCY = "USDT"
DEFAULT_UNIT = "COIN"


# ---------------------------------------------------------------------------
# Field helpers
# ---------------------------------------------------------------------------


def require_not_blank(value: str | None, name: str) -> str:
    """Return the value stripped, raising ValidationError if it is blank."""
    if value is None or not str(value).strip():
        raise ValidationError(f"{name} must not be blank")
    return str(value).strip()


def require_not_none(value: Any, name: str) -> Any:
    if value is None:
        raise ValidationError(f"{name} must not be None")
    return value


def is_blank(value: Any) -> bool:
    return value is None or not str(value).strip()


def none_if_blank(value: Any) -> Any:
    return None if is_blank(value) else value


# ---------------------------------------------------------------------------
# Decimal normalization
# ---------------------------------------------------------------------------


def to_decimal(value: Any, name: str = "value") -> Decimal | None:
    """Convert an API value (str/int/float/Decimal) to Decimal; blanks become None.

    Raises:
        ValidationError: If the value is not a number or is NaN or infinite.
    """
    if value is None:
        return None
    if isinstance(value, Decimal):
        number = value
    else:
        text = str(value).strip()
        if not text:
            return None
        try:
            number = Decimal(text)
        except InvalidOperation:
            raise ValidationError(f"{name} is not a number: {value!r}") from None
    if not number.is_finite():
        raise ValidationError(f"{name} must be finite, got {value!r}")
    return number


def strip_trailing_zeros(value: Decimal) -> Decimal:
    """Drop trailing fractional zeros so equal values share one representation."""
    if value == 0:
        return Decimal(0)
    return value.normalize()


def plain_string(value: Decimal | None) -> str:
    """Render a normalized decimal without exponent; None renders as ''."""
    if value is None:
        return ""
    return format(strip_trailing_zeros(value), "f")


# ---------------------------------------------------------------------------
# Time normalization
# ---------------------------------------------------------------------------


def ensure_utc(ts: datetime) -> datetime:
    """Return ts as an aware UTC datetime (naive values are taken as UTC)."""
    if ts.tzinfo is None:
        return ts.replace(tzinfo=UTC)
    return ts.astimezone(UTC)


def truncate_to_millis(ts: datetime) -> datetime:
    ts = ensure_utc(ts)
    return ts.replace(microsecond=(ts.microsecond // 1000) * 1000)


def to_epoch_millis(ts: datetime) -> int:
    return (ensure_utc(ts) - _EPOCH) // _ONE_MS


def from_epoch_millis(ms: int | str) -> datetime:
    return _EPOCH + timedelta(milliseconds=int(ms))


# ---------------------------------------------------------------------------
# Value objects
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ProjectKey:
    """Canonical project identity: exchange plus the exchange's unique code."""

    exchange: Exchange
    external_id: str

    def __post_init__(self) -> None:
        if self.exchange is None:
            raise ValidationError("exchange must not be None")
        object.__setattr__(self, "exchange", Exchange.parse(self.exchange))
        object.__setattr__(self, "external_id", require_not_blank(self.external_id, "external_id"))

    @classmethod
    def of(cls, exchange: Exchange | str, external_id: str) -> ProjectKey:
        return cls(exchange=exchange, external_id=external_id)  # type: ignore[arg-type]

    @classmethod
    def parse(cls, project_id: str) -> ProjectKey:
        """Parse the ``EXCHANGE:externalId`` form produced by :meth:`as_string`."""
        text = require_not_blank(project_id, "project_id")
        exchange, sep, external_id = text.partition(":")
        if not sep:
            raise ValidationError(f"Malformed project id: {project_id!r}")
        return cls.of(exchange, external_id)

    def as_string(self) -> str:
        return f"{self.exchange.value}:{self.external_id}"

    def __str__(self) -> str:
        return self.as_string()


@dataclass(frozen=True)
class ItemId:
    """Traded instrument: item type (SPOT, SWAP, FUTURES, MARGIN) plus symbol."""

    item_type: str
    symbol: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "item_type", require_not_blank(self.item_type, "item_type").upper())
        object.__setattr__(self, "symbol", require_not_blank(self.symbol, "symbol").upper())

    def __str__(self) -> str:
        return f"{self.item_type}:{self.symbol}"


@dataclass(frozen=True)
class Money:
    """Signed amount with currency; used for fees and realized PnL."""

    amount: Decimal = Decimal(0)
    ccy: str = DEFAULT_CCY

    def __post_init__(self) -> None:
        amount = to_decimal(self.amount, "amount")
        object.__setattr__(
            self, "amount", Decimal(0) if amount is None else strip_trailing_zeros(amount)
        )
        object.__setattr__(self, "ccy", DEFAULT_CCY if is_blank(self.ccy) else self.ccy.strip().upper())


@dataclass(frozen=True)
class Quantity:
    """Position size, always strictly positive."""

    amount: Decimal
    unit: str = DEFAULT_UNIT

    def __post_init__(self) -> None:
        amount = to_decimal(self.amount, "qty")
        if amount is None or amount <= 0:
            raise ValidationError(f"qty must be > 0, got {self.amount!r}")
        object.__setattr__(self, "amount", strip_trailing_zeros(amount))
        object.__setattr__(self, "unit", DEFAULT_UNIT if is_blank(self.unit) else self.unit.strip().upper())
