"""Domain model: crawl progress, project visibility history and trades.

Everything in this package is pure: no I/O and no clock reads.
"""

from copytrade_harvester.domain.crawl_log import CrawlLog, parse_http_date, sha256_hex
from copytrade_harvester.domain.crawl_task import CrawlTask, CrawlTaskKey, Lease
from copytrade_harvester.domain.enums import (
    Exchange,
    OrderType,
    SnapshotSource,
    TaskStatus,
    TradeSide,
    TradeStatus,
    Visibility,
    is_terminal,
    is_visible,
)
from copytrade_harvester.domain.errors import HarvesterError, StateConflict, ValidationError
from copytrade_harvester.domain.observation import (
    ProjectSnapshot,
    SnapshotPoint,
    Tombstone,
    VisibilityChange,
)
from copytrade_harvester.domain.project import Project, ProjectBrief
from copytrade_harvester.domain.trade import (
    ProjectTrade,
    TradeRow,
    payload_hash,
    synthesize_trade_id,
    to_trade_row,
)
from copytrade_harvester.domain.values import ItemId, Money, ProjectKey, Quantity

__all__ = [
    "CrawlLog",
    "CrawlTask",
    "CrawlTaskKey",
    "Exchange",
    "HarvesterError",
    "ItemId",
    "Lease",
    "Money",
    "OrderType",
    "Project",
    "ProjectBrief",
    "ProjectKey",
    "ProjectSnapshot",
    "ProjectTrade",
    "Quantity",
    "SnapshotPoint",
    "SnapshotSource",
    "StateConflict",
    "TaskStatus",
    "Tombstone",
    "TradeRow",
    "TradeSide",
    "TradeStatus",
    "ValidationError",
    "Visibility",
    "VisibilityChange",
    "is_terminal",
    "is_visible",
    "parse_http_date",
    "payload_hash",
    "sha256_hex",
    "synthesize_trade_id",
    "to_trade_row",
]
