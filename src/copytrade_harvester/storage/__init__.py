"""Storage layer - Database schemas and repositories."""

from copytrade_harvester.storage.database import (
    DatabaseManager,
    create_async_db_engine,
    create_async_session_factory,
    init_async_db,
)
from copytrade_harvester.storage.models import (
    Base,
    CrawlLogModel,
    CrawlTaskModel,
    ProjectModel,
    ProjectSnapshotModel,
    ProjectTombstoneModel,
    ProjectTradeModel,
)
from copytrade_harvester.storage.repos import (
    CrawlLogRepository,
    CrawlTaskRepository,
    ProjectRepository,
    SnapshotRepository,
    StaleTaskError,
    TombstoneRepository,
    TradeRepository,
)

__all__ = [
    "Base",
    "CrawlLogModel",
    "CrawlLogRepository",
    "CrawlTaskModel",
    "CrawlTaskRepository",
    "DatabaseManager",
    "ProjectModel",
    "ProjectRepository",
    "ProjectSnapshotModel",
    "ProjectTombstoneModel",
    "ProjectTradeModel",
    "SnapshotRepository",
    "StaleTaskError",
    "TombstoneRepository",
    "TradeRepository",
    "create_async_db_engine",
    "create_async_session_factory",
    "init_async_db",
]
