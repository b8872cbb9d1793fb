"""Data models and payload parsers for the OKX copy-trading public API."""

import hashlib
import json
import logging
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from copytrade_harvester.domain.enums import Exchange, TradeSide, TradeStatus
from copytrade_harvester.domain.errors import ValidationError
from copytrade_harvester.domain.project import ProjectBrief
from copytrade_harvester.domain.trade import ProjectTrade, payload_hash
from copytrade_harvester.domain.values import (
    ItemId,
    Money,
    ProjectKey,
    Quantity,
    from_epoch_millis,
    none_if_blank,
    to_decimal,
)

logger = logging.getLogger(__name__)

LEAD_TRADERS_PATH = "/api/v5/copytrading/public-lead-traders"
LEAD_TRADER_STATS_PATH = "/api/v5/copytrading/public-stats"
SUBPOSITIONS_HISTORY_PATH = "/api/v5/copytrading/public-subpositions-history"
SERVER_TIME_PATH = "/api/v5/public/time"

LEAD_TRADERS_API = "public-lead-traders"
TRADE_SOURCE = Exchange.OKX.value
GONE_STATUS_CODES = frozenset({404, 410})

_DATA_VER_FORMAT = "%Y%m%d%H%M%S"
_WINDOW_PREFIX = "dataVer="


class OkxApiError(ValidationError):
    """Raised when an OKX envelope reports a non-zero code or is malformed."""

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.code = code


# ---------------------------------------------------------------------------
# Transport outcome
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FetchOutcome:
    """Result of one HTTP exchange, whatever its status code."""

    status_code: int
    body: bytes = b""
    etag: str | None = None
    last_modified: str | None = None
    content_length: int | None = None
    url: str = ""

    @property
    def is_success(self) -> bool:
        return 200 <= self.status_code <= 299

    @property
    def is_not_modified(self) -> bool:
        return self.status_code == 304

    @property
    def is_gone(self) -> bool:
        """True only for statuses saying the resource no longer exists (404, 410)."""
        return self.status_code in GONE_STATUS_CODES

    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LeadTradersQuery:
    """Filters for the lead-trader rank list.

    ``page`` and ``data_ver`` select a slice of one ranking generation and are
    therefore excluded from the normalized parameters that identify a crawl
    target; ``data_ver`` becomes the task's window key instead.
    """

    inst_type: str = "SWAP"
    sort_type: str = "overview"
    state: str = "0"
    min_lead_days: str | None = None
    min_assets: str | None = None
    max_assets: str | None = None
    min_aum: str | None = None
    max_aum: str | None = None
    data_ver: str | None = None
    page: int = 1
    limit: int = 20

    def __post_init__(self) -> None:
        if self.page < 1:
            raise ValidationError(f"page must be >= 1, got {self.page}")
        if not 1 <= self.limit <= 20:
            raise ValidationError(f"limit must be within 1..20, got {self.limit}")

    def with_page(self, page: int, data_ver: str | None = None) -> "LeadTradersQuery":
        return replace(self, page=page, data_ver=data_ver if data_ver is not None else self.data_ver)

    def normalized_params(self) -> dict[str, str]:
        """Target-identifying parameters, blanks dropped, keys sorted."""
        raw = {
            "instType": self.inst_type,
            "sortType": self.sort_type,
            "state": self.state,
            "minLeadDays": self.min_lead_days,
            "minAssets": self.min_assets,
            "maxAssets": self.max_assets,
            "minAum": self.min_aum,
            "maxAum": self.max_aum,
            "limit": str(self.limit),
        }
        return {k: str(v).strip() for k, v in sorted(raw.items()) if none_if_blank(v) is not None}

    def normalized_json(self) -> str:
        return json.dumps(self.normalized_params(), sort_keys=True, separators=(",", ":"))

    def params_hash(self) -> str:
        return hashlib.sha256(self.normalized_json().encode("utf-8")).hexdigest()

    def to_request_params(self) -> dict[str, str]:
        params = self.normalized_params()
        params["page"] = str(self.page)
        if none_if_blank(self.data_ver) is not None:
            params["dataVer"] = self.data_ver  # type: ignore[assignment]
        return params

    def covers_full_ranking(self) -> bool:
        """True if no filter narrows the ranking, so absence from it means invisibility."""
        filters = (self.min_lead_days, self.min_assets, self.max_assets, self.min_aum, self.max_aum)
        return self.state == "0" and all(none_if_blank(f) is None for f in filters)

    @classmethod
    def from_params(cls, params: dict[str, Any]) -> "LeadTradersQuery":
        """Rebuild a query from :meth:`normalized_params` output."""
        return cls(
            inst_type=str(params.get("instType", "SWAP")),
            sort_type=str(params.get("sortType", "overview")),
            state=str(params.get("state", "0")),
            min_lead_days=params.get("minLeadDays"),
            min_assets=params.get("minAssets"),
            max_assets=params.get("maxAssets"),
            min_aum=params.get("minAum"),
            max_aum=params.get("maxAum"),
            limit=int(params.get("limit", 20)),
        )


def stats_params(unique_code: str, inst_type: str = "SWAP", last_days: str = "2") -> dict[str, str]:
    """Query of the lead-trader stats endpoint."""
    return {"instType": inst_type, "uniqueCode": unique_code, "lastDays": last_days}


def subpositions_params(unique_code: str, inst_type: str = "SWAP", limit: int = 100) -> dict[str, str]:
    """Query of the closed sub-position history endpoint."""
    return {"instType": inst_type, "uniqueCode": unique_code, "limit": str(limit)}


def window_key(data_ver: str) -> str:
    """Window key of a rank crawl pinned to one ranking generation."""
    if none_if_blank(data_ver) is None:
        raise ValidationError("data_ver must not be blank")
    return f"{_WINDOW_PREFIX}{data_ver.strip()}"


def data_ver_from_window_key(key: str) -> str:
    if not key.startswith(_WINDOW_PREFIX) or len(key) == len(_WINDOW_PREFIX):
        raise ValidationError(f"Not a dataVer window key: {key!r}")
    return key[len(_WINDOW_PREFIX) :]


def data_ver_timestamp(data_ver: str | None) -> datetime | None:
    """Capture time encoded in an OKX dataVer (``yyyyMMddHHmmss``, UTC)."""
    if none_if_blank(data_ver) is None:
        return None
    try:
        parsed = datetime.strptime(data_ver.strip(), _DATA_VER_FORMAT)  # type: ignore[union-attr]
        return parsed.replace(tzinfo=UTC)
    except ValueError:
        return None


# ---------------------------------------------------------------------------
# Parsed payloads
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LeadTradersPage:
    """One page of the lead-trader rank list."""

    data_ver: str | None
    total_page: int
    ranks: tuple[ProjectBrief, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class LeadTraderStats:
    """Detail statistics of one lead trader."""

    unique_code: str
    win_ratio: Decimal | None = None
    invest_amount: Decimal | None = None
    copy_trader_pnl: Decimal | None = None
    profit_days: int | None = None
    loss_days: int | None = None
    ccy: str | None = None
    raw_json: str = "{}"


def _dumps(data: Any) -> str:
    return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _to_int(value: Any) -> int | None:
    if value is None or str(value).strip() == "":
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        raise ValidationError(f"Not an integer: {value!r}") from None


def unwrap_envelope(body: bytes | str) -> list[Any]:
    """Return the ``data`` array of an OKX response envelope.

    Raises:
        OkxApiError: If the body is not JSON, ``code`` is not ``"0"``, or
            ``data`` is not a list.
    """
    try:
        envelope = json.loads(body)
    except (TypeError, ValueError) as e:
        raise OkxApiError(f"Response is not valid JSON: {e}") from e
    if not isinstance(envelope, dict):
        raise OkxApiError("Unexpected response envelope shape")
    code = str(envelope.get("code", ""))
    if code != "0":
        raise OkxApiError(f"OKX error code={code} msg={envelope.get('msg', '')}", code=code)
    data = envelope.get("data")
    if not isinstance(data, list):
        raise OkxApiError("Response envelope has no data array", code=code)
    return data


def parse_brief(rank: dict[str, Any], data_ver: str | None) -> ProjectBrief:
    external_id = none_if_blank(rank.get("uniqueCode"))
    if external_id is None:
        raise ValidationError("rank row is missing uniqueCode")
    return ProjectBrief(
        external_id=external_id,
        name=none_if_blank(rank.get("nickName")),
        base_currency=none_if_blank(rank.get("ccy")),
        aum=to_decimal(rank.get("aum"), "aum"),
        followers=_to_int(rank.get("copyTraderNum")),
        win_ratio=to_decimal(rank.get("winRatio"), "winRatio"),
        pnl_ratio=to_decimal(rank.get("pnlRatio"), "pnlRatio"),
        pnl=to_decimal(rank.get("pnl"), "pnl"),
        data_ver=data_ver,
        raw_json=_dumps(rank),
    )


def parse_lead_traders_page(body: bytes | str) -> LeadTradersPage:
    """Parse a ``public-lead-traders`` response."""
    data = unwrap_envelope(body)
    if not data:
        return LeadTradersPage(data_ver=None, total_page=0)
    head = data[0]
    if not isinstance(head, dict):
        raise OkxApiError("Unexpected lead-traders data shape")
    data_ver = none_if_blank(head.get("dataVer"))
    total_page = _to_int(head.get("totalPage")) or 0
    ranks = tuple(parse_brief(r, data_ver) for r in head.get("ranks") or [] if isinstance(r, dict))
    return LeadTradersPage(data_ver=data_ver, total_page=total_page, ranks=ranks)


def parse_lead_trader_stats(body: bytes | str, unique_code: str) -> LeadTraderStats:
    """Parse a ``public-stats`` response."""
    data = unwrap_envelope(body)
    if not data or not isinstance(data[0], dict):
        raise OkxApiError(f"No stats returned for {unique_code}")
    row = data[0]
    return LeadTraderStats(
        unique_code=unique_code,
        win_ratio=to_decimal(row.get("winRatio"), "winRatio"),
        invest_amount=to_decimal(row.get("investAmt"), "investAmt"),
        copy_trader_pnl=to_decimal(row.get("curCopyTraderPnl"), "curCopyTraderPnl"),
        profit_days=_to_int(row.get("profitDays")),
        loss_days=_to_int(row.get("lossDays")),
        ccy=none_if_blank(row.get("ccy")),
        raw_json=_dumps(row),
    )


def _side_from_pos_side(pos_side: Any) -> TradeSide:
    text = str(pos_side or "").strip().lower()
    if text == "long":
        return TradeSide.LONG
    if text == "short":
        return TradeSide.SHORT
    raise ValidationError(f"Unsupported posSide: {pos_side!r}")


def parse_subposition(row: dict[str, Any], key: ProjectKey) -> ProjectTrade:
    """Map one closed sub-position to a trade."""
    open_time = row.get("openTime")
    if none_if_blank(open_time) is None:
        raise ValidationError("sub-position is missing openTime")
    close_time = none_if_blank(row.get("closeTime"))
    pnl = to_decimal(row.get("pnl"), "pnl")
    return ProjectTrade(
        project_key=key,
        item=ItemId(row.get("instType"), row.get("instId")),
        side=_side_from_pos_side(row.get("posSide")),
        status=TradeStatus.CLOSED if close_time else TradeStatus.OPEN,
        source=TRADE_SOURCE,
        qty=Quantity(row.get("subPos")),
        ts_open=from_epoch_millis(_to_int(open_time)),  # type: ignore[arg-type]
        ts_close=from_epoch_millis(_to_int(close_time)) if close_time else None,  # type: ignore[arg-type]
        entry_price=to_decimal(row.get("openAvgPx"), "openAvgPx"),
        exit_price=to_decimal(row.get("closeAvgPx"), "closeAvgPx"),
        leverage=to_decimal(row.get("lever"), "lever"),
        pnl=Money(pnl, row.get("ccy")) if pnl is not None else None,
        external_trade_id=none_if_blank(row.get("subPosId")),
        external_order_id=none_if_blank(row.get("openOrdId")),
        source_payload_hash=payload_hash(row),
    )


def parse_subpositions(body: bytes | str, key: ProjectKey) -> list[ProjectTrade]:
    """Parse a ``public-subpositions-history`` response, skipping malformed rows."""
    trades: list[ProjectTrade] = []
    skipped = 0
    for row in unwrap_envelope(body):
        if not isinstance(row, dict):
            skipped += 1
            continue
        try:
            trades.append(parse_subposition(row, key))
        except ValidationError as e:
            skipped += 1
            logger.debug("Skipping sub-position of %s: %s", key, e)
    if skipped:
        logger.warning("Skipped %d malformed sub-positions for %s", skipped, key)
    return trades


def parse_server_time(body: bytes | str) -> int:
    """Server epoch milliseconds from ``/api/v5/public/time``."""
    data = unwrap_envelope(body)
    if not data or not isinstance(data[0], dict):
        raise OkxApiError("Server time response has no data")
    ts = _to_int(data[0].get("ts"))
    if ts is None:
        raise OkxApiError("Server time response has no ts")
    return ts
