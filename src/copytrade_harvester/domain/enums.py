"""Enumerations shared by the domain aggregates."""

from __future__ import annotations

from enum import Enum

from copytrade_harvester.domain.errors import ValidationError


class _ParsableEnum(str, Enum):
    """String enum with a strict, case-insensitive parser."""

    @classmethod
    def parse(cls, value: str | _ParsableEnum | None) -> _ParsableEnum:
        if isinstance(value, cls):
            return value
        label = cls.__name__.lower()
        if value is None or not str(value).strip():
            raise ValidationError(f"{label} must not be blank")
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            raise ValidationError(f"Unknown {label} value: {value!r}") from None


class Exchange(_ParsableEnum):
    """Exchanges that publish copy-trading lead projects."""

    OKX = "OKX"
    BINANCE = "BINANCE"


class TaskStatus(_ParsableEnum):
    """CrawlTask lifecycle states."""

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    DONE = "DONE"
    FAILED = "FAILED"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"


TERMINAL_STATUSES = frozenset(
    {TaskStatus.DONE, TaskStatus.FAILED, TaskStatus.EXPIRED, TaskStatus.CANCELLED}
)


def is_terminal(status: TaskStatus) -> bool:
    """Return True if the task status is final."""
    return status in TERMINAL_STATUSES


class Visibility(_ParsableEnum):
    """Project visibility as last observed.

    - VISIBLE: present in the latest observation
    - MISSING: absent from a recent rank window
    - HIDDEN: taken down (detail endpoint reports it gone)
    """

    VISIBLE = "VISIBLE"
    MISSING = "MISSING"
    HIDDEN = "HIDDEN"


def is_visible(visibility: Visibility) -> bool:
    """Return True if the project is currently visible."""
    return visibility is Visibility.VISIBLE


class SnapshotSource(_ParsableEnum):
    """Where a project snapshot was captured."""

    OKX_RANK = "OKX_RANK"
    OKX_DETAIL = "OKX_DETAIL"
    COMPUTED = "COMPUTED"


class TradeSide(_ParsableEnum):
    """BUY/SELL for spot, LONG/SHORT for derivatives."""

    BUY = "BUY"
    SELL = "SELL"
    LONG = "LONG"
    SHORT = "SHORT"


class TradeStatus(_ParsableEnum):
    OPEN = "OPEN"
    PARTIALLY_CLOSED = "PARTIALLY_CLOSED"
    CLOSED = "CLOSED"
    CANCELED = "CANCELED"


class OrderType(_ParsableEnum):
    MARKET = "MARKET"
    LIMIT = "LIMIT"
    POST_ONLY = "POST_ONLY"
    FOK = "FOK"
    IOC = "IOC"
