"""ProjectTrade: immutable fact of one position round-trip.

Trades arrive from sources that may or may not carry a stable identifier, so
the id is resolved in order: an explicit id, the exchange's trade id, or a
digest over the trade's identifying fields.
"""

from __future__ import annotations

import hashlib
import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any

from copytrade_harvester.domain.enums import OrderType, TradeSide, TradeStatus
from copytrade_harvester.domain.errors import ValidationError
from copytrade_harvester.domain.values import (
    ItemId,
    Money,
    ProjectKey,
    Quantity,
    none_if_blank,
    plain_string,
    require_not_blank,
    require_not_none,
    to_decimal,
    to_epoch_millis,
    truncate_to_millis,
)

logger = logging.getLogger(__name__)

_HEX64 = re.compile(r"^[0-9a-fA-F]{64}$")


def synthesize_trade_id(
    key: ProjectKey,
    item: ItemId,
    side: TradeSide,
    ts_open: datetime,
    qty: Decimal | None,
    entry_price: Decimal | None,
    source: str,
) -> str:
    """Deterministic SHA-256 id for a trade without an external identifier.

    Decimals are normalized first so "1.50" and "1.5" produce the same id.
    """
    canonical = "|".join(
        [
            key.as_string(),
            str(item),
            TradeSide.parse(side).value,
            str(to_epoch_millis(truncate_to_millis(ts_open))),
            plain_string(qty),
            plain_string(entry_price),
            source,
        ]
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def payload_hash(payload: Any) -> str:
    """SHA-256 over the canonical JSON form of a raw payload."""
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _positive_if_present(value: Decimal | None, name: str) -> None:
    number = to_decimal(value, name)
    if number is not None and number <= 0:
        raise ValidationError(f"{name} must be > 0, got {value}")


@dataclass(frozen=True, kw_only=True)
class ProjectTrade:
    """One position round-trip of a lead project.

    Attributes:
        project_key: Owning project.
        item: Traded instrument.
        side: BUY/SELL or LONG/SHORT.
        status: Round-trip status.
        source: Data source label (e.g. OKX, IMPORT).
        qty: Position size.
        ts_open: Open time, millisecond precision.
        source_payload_hash: SHA-256 of the raw payload, lower-case hex.
        trade_id: Resolved identity; see module docstring.
    """

    project_key: ProjectKey
    item: ItemId
    side: TradeSide
    status: TradeStatus
    source: str
    qty: Quantity
    ts_open: datetime
    source_payload_hash: str
    ord_type: OrderType | None = None
    leverage: Decimal | None = None
    entry_price: Decimal | None = None
    exit_price: Decimal | None = None
    fee: Money | None = None
    pnl: Money | None = None
    ts_filled: datetime | None = None
    ts_close: datetime | None = None
    external_trade_id: str | None = None
    external_order_id: str | None = None
    trade_id: str | None = field(default=None)

    def __post_init__(self) -> None:
        require_not_none(self.project_key, "project_key")
        require_not_none(self.item, "item")
        require_not_none(self.side, "side")
        require_not_none(self.status, "status")
        require_not_none(self.qty, "qty")
        require_not_none(self.ts_open, "ts_open")
        source = require_not_blank(self.source, "source")
        _positive_if_present(self.entry_price, "entry_price")
        _positive_if_present(self.exit_price, "exit_price")

        if self.source_payload_hash is None or not _HEX64.match(self.source_payload_hash):
            raise ValidationError("source_payload_hash must be 64 hex characters")

        set_ = object.__setattr__
        set_(self, "side", TradeSide.parse(self.side))
        set_(self, "status", TradeStatus.parse(self.status))
        if self.ord_type is not None:
            set_(self, "ord_type", OrderType.parse(self.ord_type))
        set_(self, "source", source)
        set_(self, "source_payload_hash", self.source_payload_hash.lower())
        set_(self, "ts_open", truncate_to_millis(self.ts_open))
        if self.ts_filled is not None:
            set_(self, "ts_filled", truncate_to_millis(self.ts_filled))
        if self.ts_close is not None:
            set_(self, "ts_close", truncate_to_millis(self.ts_close))
        set_(self, "external_trade_id", none_if_blank(self.external_trade_id))
        set_(self, "external_order_id", none_if_blank(self.external_order_id))

        if none_if_blank(self.trade_id) is not None:
            return
        if self.external_trade_id is not None:
            set_(self, "trade_id", self.external_trade_id)
            return
        synthesized = synthesize_trade_id(
            self.project_key,
            self.item,
            self.side,
            self.ts_open,
            self.qty.amount,
            self.entry_price,
            self.source,
        )
        logger.debug("Synthesized trade id %s for project %s", synthesized, self.project_key)
        set_(self, "trade_id", synthesized)


@dataclass(frozen=True)
class TradeRow:
    """Flattened read-model row of a trade."""

    symbol: str
    side: str
    ts_open: datetime
    ts_close: datetime | None
    entry_price: Decimal | None
    exit_price: Decimal | None
    qty: Decimal
    leverage: Decimal | None
    pnl: Decimal | None
    fees: Decimal | None
    duration_sec: int | None
    status: str
    source: str


def to_trade_row(trade: ProjectTrade) -> TradeRow:
    duration = None
    if trade.ts_close is not None:
        duration = int((trade.ts_close - trade.ts_open).total_seconds())
    return TradeRow(
        symbol=trade.item.symbol,
        side=trade.side.value,
        ts_open=trade.ts_open,
        ts_close=trade.ts_close,
        entry_price=trade.entry_price,
        exit_price=trade.exit_price,
        qty=trade.qty.amount,
        leverage=trade.leverage,
        pnl=trade.pnl.amount if trade.pnl else None,
        fees=trade.fee.amount if trade.fee else None,
        duration_sec=duration,
        status=trade.status.value,
        source=trade.source,
    )
