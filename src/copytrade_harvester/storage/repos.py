"""Repository pattern implementations for data access.

Repositories map between domain aggregates and ORM rows. They own the
storage-level guarantees the aggregates cannot enforce themselves: the
compare-and-set on crawl task saves, the single open tombstone per project,
and idempotent trade inserts.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import and_, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from copytrade_harvester.domain.crawl_log import CrawlLog
from copytrade_harvester.domain.crawl_task import CrawlTask, CrawlTaskKey, Lease
from copytrade_harvester.domain.enums import (
    Exchange,
    OrderType,
    SnapshotSource,
    TaskStatus,
    TradeSide,
    TradeStatus,
    Visibility,
)
from copytrade_harvester.domain.errors import StateConflict
from copytrade_harvester.domain.observation import ProjectSnapshot, SnapshotPoint, Tombstone
from copytrade_harvester.domain.project import Project
from copytrade_harvester.domain.trade import ProjectTrade, TradeRow, to_trade_row
from copytrade_harvester.domain.values import ItemId, Money, ProjectKey, Quantity, ensure_utc
from copytrade_harvester.storage.models import (
    CrawlLogModel,
    CrawlTaskModel,
    ProjectModel,
    ProjectSnapshotModel,
    ProjectTombstoneModel,
    ProjectTradeModel,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


class StaleTaskError(StateConflict):
    """Raised when a crawl task was modified by another writer since it was loaded."""


def _utc(ts: datetime | None) -> datetime | None:
    return ensure_utc(ts) if ts is not None else None


def _insert_for(session: AsyncSession, model: type[Any]) -> Any:
    """Dialect-specific INSERT supporting ON CONFLICT clauses."""
    if session.get_bind().dialect.name == "postgresql":
        return pg_insert(model)
    return sqlite_insert(model)


# ---------------------------------------------------------------------------
# Crawl tasks
# ---------------------------------------------------------------------------


def _task_from_model(model: CrawlTaskModel) -> CrawlTask:
    lease = None
    if model.lease_holder and model.lease_granted_at is not None and model.lease_ttl_sec:
        lease = Lease(
            holder=model.lease_holder,
            granted_at=model.lease_granted_at,
            ttl_sec=model.lease_ttl_sec,
        )
    return CrawlTask(
        key=CrawlTaskKey(
            exchange=model.exchange,  # type: ignore[arg-type]
            api_name=model.api_name,
            params_hash=model.params_hash,
            window_key=model.window_key,
        ),
        params_json=model.params_json,
        total_page=model.total_page,
        next_page=model.next_page,
        status=TaskStatus.parse(model.status),  # type: ignore[arg-type]
        attempts=model.attempts,
        last_error=model.last_error,
        lease=lease,
        id=model.id,
        version=model.version,
    )


def _task_values(task: CrawlTask) -> dict[str, Any]:
    lease = task.lease
    return {
        "params_json": task.params_json,
        "total_page": task.total_page,
        "next_page": task.next_page,
        "status": task.status.value,
        "attempts": task.attempts,
        "last_error": task.last_error,
        "lease_holder": lease.holder if lease else None,
        "lease_granted_at": lease.granted_at if lease else None,
        "lease_ttl_sec": lease.ttl_sec if lease else None,
        "lease_expires_at": lease.expires_at if lease else None,
    }


class CrawlTaskRepository:
    """Repository for crawl tasks with optimistic compare-and-set saves."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, key: CrawlTaskKey) -> CrawlTask | None:
        result = await self.session.execute(
            select(CrawlTaskModel).execution_options(populate_existing=True).where(
                CrawlTaskModel.exchange == key.exchange.value,
                CrawlTaskModel.api_name == key.api_name,
                CrawlTaskModel.params_hash == key.params_hash,
                CrawlTaskModel.window_key == key.window_key,
            )
        )
        model = result.scalar_one_or_none()
        return _task_from_model(model) if model else None

    async def get_by_id(self, task_id: int) -> CrawlTask | None:
        model = await self.session.get(CrawlTaskModel, task_id, populate_existing=True)
        return _task_from_model(model) if model else None

    async def get_or_create(self, key: CrawlTaskKey, *, params_json: str | None = None) -> CrawlTask:
        """Return the task for ``key``, inserting a PENDING one if absent."""
        now = datetime.now(UTC)
        task = CrawlTask(key=key, params_json=params_json)
        stmt = _insert_for(self.session, CrawlTaskModel).values(
            exchange=key.exchange.value,
            api_name=key.api_name,
            params_hash=key.params_hash,
            window_key=key.window_key,
            version=0,
            created_at=now,
            updated_at=now,
            **_task_values(task),
        )
        stmt = stmt.on_conflict_do_nothing(
            index_elements=["exchange", "api_name", "params_hash", "window_key"]
        )
        result = await self.session.execute(stmt)
        if result.rowcount:
            logger.info("Created crawl task %s", key)
        existing = await self.get(key)
        if existing is None:
            raise StateConflict(f"Crawl task {key} vanished after insert")
        return existing

    async def save(self, task: CrawlTask) -> CrawlTask:
        """Persist ``task`` if nobody else saved it since it was loaded.

        On success ``task.version`` is advanced in place.

        Raises:
            StaleTaskError: If the stored version no longer matches.
        """
        if task.id is None:
            raise StateConflict(f"Crawl task {task.key} has no id; use get_or_create first")
        result = await self.session.execute(
            update(CrawlTaskModel)
            .where(CrawlTaskModel.id == task.id, CrawlTaskModel.version == task.version)
            .values(**_task_values(task), version=task.version + 1, updated_at=datetime.now(UTC))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise StaleTaskError(
                f"Crawl task {task.key} (id={task.id}) was modified concurrently "
                f"(expected version {task.version})"
            )
        task.version += 1
        return task

    async def try_acquire(
        self, key: CrawlTaskKey, worker_id: str, now: datetime, ttl_sec: int
    ) -> CrawlTask | None:
        """Acquire the lease if it is free, expired or already ours.

        Returns None when another worker holds a valid lease, the task is
        terminal or missing, or a concurrent acquire won the race.
        """
        task = await self.get(key)
        if task is None:
            return None
        try:
            task.acquire(worker_id, now, ttl_sec)
            return await self.save(task)
        except StaleTaskError:
            logger.info("Lost lease race on %s to another worker", key)
            return None
        except StateConflict as e:
            logger.debug("Cannot acquire %s: %s", key, e)
            return None

    async def list_runnable(self, exchange: Exchange, now: datetime, limit: int = 50) -> list[CrawlTask]:
        """Tasks that are PENDING or RUNNING with a missing or expired lease."""
        result = await self.session.execute(
            select(CrawlTaskModel).execution_options(populate_existing=True)
            .where(
                CrawlTaskModel.exchange == exchange.value,
                or_(
                    CrawlTaskModel.status == TaskStatus.PENDING.value,
                    and_(
                        CrawlTaskModel.status == TaskStatus.RUNNING.value,
                        or_(
                            CrawlTaskModel.lease_expires_at.is_(None),
                            CrawlTaskModel.lease_expires_at <= now,
                        ),
                    ),
                ),
            )
            .order_by(CrawlTaskModel.id)
            .limit(limit)
        )
        return [_task_from_model(m) for m in result.scalars().all()]

    async def newer_window_done(self, key: CrawlTaskKey) -> bool:
        """True if a later window of the same crawl target is already DONE.

        Window keys embed fixed-width dataVer stamps, so they order as strings.
        """
        result = await self.session.execute(
            select(CrawlTaskModel.id)
            .where(
                CrawlTaskModel.exchange == key.exchange.value,
                CrawlTaskModel.api_name == key.api_name,
                CrawlTaskModel.params_hash == key.params_hash,
                CrawlTaskModel.window_key > key.window_key,
                CrawlTaskModel.status == TaskStatus.DONE.value,
            )
            .limit(1)
        )
        return result.scalar_one_or_none() is not None


# ---------------------------------------------------------------------------
# Crawl logs
# ---------------------------------------------------------------------------


def _log_from_model(model: CrawlLogModel) -> CrawlLog:
    return CrawlLog(
        exchange=Exchange.parse(model.exchange) if model.exchange else None,  # type: ignore[arg-type]
        task_id=model.task_id,
        target=model.target,
        method=model.method,
        request_params_json=model.request_params_json,
        params_hash=model.params_hash,
        started_at=_utc(model.started_at),
        finished_at=_utc(model.finished_at),
        status_code=model.status_code,
        success=model.success,
        not_modified=model.not_modified,
        content_length=model.content_length,
        etag=model.etag,
        last_modified_raw=model.last_modified_raw,
        last_modified_at=_utc(model.last_modified_at),
        content_hash=model.content_hash,
        error_msg=model.error_msg,
        id=model.id,
    )


class CrawlLogRepository:
    """Append-only repository for fetch attempts."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def append(self, log: CrawlLog) -> CrawlLog:
        model = CrawlLogModel(
            exchange=log.exchange.value if log.exchange else None,
            task_id=log.task_id,
            target=log.target,
            method=log.method,
            request_params_json=log.request_params_json,
            params_hash=log.params_hash,
            started_at=log.started_at,
            finished_at=log.finished_at,
            duration_ms=log.duration_ms(),
            status_code=log.status_code,
            success=log.success,
            not_modified=log.not_modified,
            content_length=log.content_length,
            etag=log.etag,
            last_modified_raw=log.last_modified_raw,
            last_modified_at=log.last_modified_at,
            content_hash=log.content_hash,
            error_msg=log.error_msg,
        )
        self.session.add(model)
        await self.session.flush()
        return replace(log, id=model.id)

    async def latest_success(self, target: str, *, before_id: int | None = None) -> CrawlLog | None:
        """Most recent successful attempt for ``target`` (optionally older than ``before_id``)."""
        stmt = select(CrawlLogModel).execution_options(populate_existing=True).where(
            CrawlLogModel.target == target,
            CrawlLogModel.success.is_(True),
        )
        if before_id is not None:
            stmt = stmt.where(CrawlLogModel.id < before_id)
        result = await self.session.execute(stmt.order_by(CrawlLogModel.id.desc()).limit(1))
        model = result.scalar_one_or_none()
        return _log_from_model(model) if model else None

    async def list_for_task(self, task_id: int) -> list[CrawlLog]:
        result = await self.session.execute(
            select(CrawlLogModel)
            .execution_options(populate_existing=True)
            .where(CrawlLogModel.task_id == task_id)
            .order_by(CrawlLogModel.id)
        )
        return [_log_from_model(m) for m in result.scalars().all()]


# ---------------------------------------------------------------------------
# Projects and tombstones
# ---------------------------------------------------------------------------


def _project_from_model(model: ProjectModel) -> Project:
    return Project(
        key=ProjectKey.of(model.exchange, model.external_id),
        name=model.name,
        base_currency=model.base_currency,
        last_visibility=Visibility.parse(model.last_visibility),  # type: ignore[arg-type]
        first_seen=_utc(model.first_seen),
        last_seen=_utc(model.last_seen),
        min_copy_cost=model.min_copy_cost,
        status=model.status,
        extra=model.extra,
    )


class ProjectRepository:
    """Repository for project master records, keyed by ``EXCHANGE:externalId``."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, key: ProjectKey) -> Project | None:
        result = await self.session.execute(
            select(ProjectModel)
            .execution_options(populate_existing=True)
            .where(ProjectModel.project_id == key.as_string())
        )
        model = result.scalar_one_or_none()
        return _project_from_model(model) if model else None

    async def save(self, project: Project) -> Project:
        """Upsert by project id."""
        now = datetime.now(UTC)
        values = {
            "project_id": project.project_id(),
            "exchange": project.key.exchange.value,
            "external_id": project.key.external_id,
            "name": project.name,
            "base_currency": project.base_currency,
            "last_visibility": project.last_visibility.value,
            "first_seen": project.first_seen,
            "last_seen": project.last_seen,
            "min_copy_cost": project.min_copy_cost,
            "status": project.status,
            "extra": project.extra,
        }
        stmt = _insert_for(self.session, ProjectModel).values(**values, created_at=now, updated_at=now)
        stmt = stmt.on_conflict_do_update(
            index_elements=["project_id"],
            set_={
                "name": stmt.excluded.name,
                "base_currency": stmt.excluded.base_currency,
                "last_visibility": stmt.excluded.last_visibility,
                "first_seen": stmt.excluded.first_seen,
                "last_seen": stmt.excluded.last_seen,
                "min_copy_cost": stmt.excluded.min_copy_cost,
                "status": stmt.excluded.status,
                "extra": stmt.excluded.extra,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        await self.session.execute(stmt)
        await self.session.flush()
        return project

    async def list_by_visibility(self, exchange: Exchange, visibility: Visibility) -> list[Project]:
        result = await self.session.execute(
            select(ProjectModel).execution_options(populate_existing=True)
            .where(
                ProjectModel.exchange == exchange.value,
                ProjectModel.last_visibility == visibility.value,
            )
            .order_by(ProjectModel.project_id)
        )
        return [_project_from_model(m) for m in result.scalars().all()]


def _tombstone_from_model(model: ProjectTombstoneModel) -> Tombstone:
    return Tombstone(
        project_key=ProjectKey.parse(model.project_id),
        from_ts=model.from_ts,
        to_ts=model.to_ts,
        reason_code=model.reason_code,
        reason_msg=model.reason_msg,
        detector=model.detector,
        id=model.id,
    )


class TombstoneRepository:
    """Repository for invisibility intervals; at most one open per project."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_open(self, key: ProjectKey) -> Tombstone | None:
        result = await self.session.execute(
            select(ProjectTombstoneModel)
            .execution_options(populate_existing=True)
            .where(ProjectTombstoneModel.open_marker == key.as_string())
        )
        model = result.scalar_one_or_none()
        return _tombstone_from_model(model) if model else None

    async def open(self, tombstone: Tombstone) -> Tombstone:
        """Insert an open tombstone.

        Raises:
            StateConflict: If the tombstone is closed or the project already has an open one.
        """
        if not tombstone.is_open():
            raise StateConflict("Only open tombstones can be inserted with open()")
        project_id = tombstone.project_key.as_string()
        stmt = _insert_for(self.session, ProjectTombstoneModel).values(
            project_id=project_id,
            from_ts=tombstone.from_ts,
            to_ts=None,
            reason_code=tombstone.reason_code,
            reason_msg=tombstone.reason_msg,
            detector=tombstone.detector,
            open_marker=project_id,
            created_at=datetime.now(UTC),
        )
        stmt = stmt.on_conflict_do_nothing(index_elements=["open_marker"])
        result = await self.session.execute(stmt)
        if result.rowcount != 1:
            raise StateConflict(f"Project {project_id} already has an open tombstone")
        stored = await self.get_open(tombstone.project_key)
        tombstone.id = stored.id if stored else None
        logger.info(
            "Opened tombstone for %s at %s (reason=%s)",
            project_id,
            tombstone.from_ts.isoformat(),
            tombstone.reason_code,
        )
        return tombstone

    async def close(self, tombstone: Tombstone) -> Tombstone:
        """Persist a tombstone closed with :meth:`Tombstone.close`.

        Raises:
            StateConflict: If it is still open in memory or already closed in storage.
        """
        if tombstone.is_open() or tombstone.id is None:
            raise StateConflict("close() requires a stored tombstone closed in memory")
        result = await self.session.execute(
            update(ProjectTombstoneModel)
            .where(
                ProjectTombstoneModel.id == tombstone.id,
                ProjectTombstoneModel.open_marker.is_not(None),
            )
            .values(to_ts=tombstone.to_ts, open_marker=None)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise StateConflict(f"Tombstone {tombstone.id} is not open in storage")
        logger.info(
            "Closed tombstone for %s at %s",
            tombstone.project_key,
            tombstone.to_ts.isoformat(),  # type: ignore[union-attr]
        )
        return tombstone

    async def list_for_project(self, key: ProjectKey, *, include_open: bool = True) -> list[Tombstone]:
        stmt = (
            select(ProjectTombstoneModel)
            .execution_options(populate_existing=True)
            .where(ProjectTombstoneModel.project_id == key.as_string())
        )
        if not include_open:
            stmt = stmt.where(ProjectTombstoneModel.to_ts.is_not(None))
        result = await self.session.execute(stmt.order_by(ProjectTombstoneModel.from_ts))
        return [_tombstone_from_model(m) for m in result.scalars().all()]


# ---------------------------------------------------------------------------
# Snapshots
# ---------------------------------------------------------------------------


def _snapshot_from_model(model: ProjectSnapshotModel) -> ProjectSnapshot:
    return ProjectSnapshot(
        project_key=ProjectKey.parse(model.project_id),
        snapshot_ts=model.snapshot_ts,
        source=SnapshotSource.parse(model.source),  # type: ignore[arg-type]
        raw_json=model.raw_json,
        data_ver=model.data_ver,
        visibility=Visibility.parse(model.visibility),  # type: ignore[arg-type]
        aum_usd=model.aum_usd,
        followers=model.followers,
        win_ratio=model.win_ratio,
        pnl_ratio_90d=model.pnl_ratio_90d,
        pnl_90d_usd=model.pnl_90d_usd,
    )


class SnapshotRepository:
    """Repository for metric snapshots keyed by (project, timestamp, source)."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def upsert(self, snapshot: ProjectSnapshot) -> ProjectSnapshot:
        """Insert or overwrite the snapshot with the same identity."""
        values = {
            "project_id": snapshot.project_key.as_string(),
            "snapshot_ts": snapshot.snapshot_ts,
            "source": snapshot.source.value,
            "data_ver": snapshot.data_ver,
            "visibility": snapshot.visibility.value,
            "aum_usd": snapshot.aum_usd,
            "followers": snapshot.followers,
            "win_ratio": snapshot.win_ratio,
            "pnl_ratio_90d": snapshot.pnl_ratio_90d,
            "pnl_90d_usd": snapshot.pnl_90d_usd,
            "raw_json": snapshot.raw_json,
        }
        stmt = _insert_for(self.session, ProjectSnapshotModel).values(**values, created_at=datetime.now(UTC))
        stmt = stmt.on_conflict_do_update(
            index_elements=["project_id", "snapshot_ts", "source"],
            set_={
                "data_ver": stmt.excluded.data_ver,
                "visibility": stmt.excluded.visibility,
                "aum_usd": stmt.excluded.aum_usd,
                "followers": stmt.excluded.followers,
                "win_ratio": stmt.excluded.win_ratio,
                "pnl_ratio_90d": stmt.excluded.pnl_ratio_90d,
                "pnl_90d_usd": stmt.excluded.pnl_90d_usd,
                "raw_json": stmt.excluded.raw_json,
            },
        )
        await self.session.execute(stmt)
        await self.session.flush()
        return snapshot

    async def get(
        self, key: ProjectKey, snapshot_ts: datetime, source: SnapshotSource
    ) -> ProjectSnapshot | None:
        result = await self.session.execute(
            select(ProjectSnapshotModel).execution_options(populate_existing=True).where(
                ProjectSnapshotModel.project_id == key.as_string(),
                ProjectSnapshotModel.snapshot_ts == snapshot_ts,
                ProjectSnapshotModel.source == source.value,
            )
        )
        model = result.scalar_one_or_none()
        return _snapshot_from_model(model) if model else None

    async def series(
        self,
        key: ProjectKey,
        *,
        source: SnapshotSource | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[SnapshotPoint]:
        """Time-ordered metric points of one project."""
        stmt = (
            select(ProjectSnapshotModel)
            .execution_options(populate_existing=True)
            .where(ProjectSnapshotModel.project_id == key.as_string())
        )
        if source is not None:
            stmt = stmt.where(ProjectSnapshotModel.source == source.value)
        if start is not None:
            stmt = stmt.where(ProjectSnapshotModel.snapshot_ts >= start)
        if end is not None:
            stmt = stmt.where(ProjectSnapshotModel.snapshot_ts <= end)
        result = await self.session.execute(stmt.order_by(ProjectSnapshotModel.snapshot_ts))
        return [_snapshot_from_model(m).to_point() for m in result.scalars().all()]

    async def project_ids_at(self, snapshot_ts: datetime, source: SnapshotSource) -> set[str]:
        """Ids of projects captured at exactly ``snapshot_ts`` by ``source``."""
        result = await self.session.execute(
            select(ProjectSnapshotModel.project_id).where(
                ProjectSnapshotModel.snapshot_ts == snapshot_ts,
                ProjectSnapshotModel.source == source.value,
            )
        )
        return set(result.scalars().all())


# ---------------------------------------------------------------------------
# Trades
# ---------------------------------------------------------------------------


def _money(amount: Any, ccy: str | None) -> Money | None:
    return Money(amount, ccy) if amount is not None else None  # type: ignore[arg-type]


def _trade_from_model(model: ProjectTradeModel) -> ProjectTrade:
    return ProjectTrade(
        trade_id=model.trade_id,
        project_key=ProjectKey.parse(model.project_id),
        item=ItemId(model.item_type, model.symbol),
        side=TradeSide.parse(model.side),  # type: ignore[arg-type]
        ord_type=OrderType.parse(model.ord_type) if model.ord_type else None,  # type: ignore[arg-type]
        leverage=model.leverage,
        qty=Quantity(model.qty, model.qty_unit),
        entry_price=model.entry_price,
        exit_price=model.exit_price,
        fee=_money(model.fee_amount, model.fee_ccy),
        pnl=_money(model.pnl_amount, model.pnl_ccy),
        ts_open=model.ts_open,
        ts_filled=model.ts_filled,
        ts_close=model.ts_close,
        status=TradeStatus.parse(model.status),  # type: ignore[arg-type]
        source=model.source,
        external_trade_id=model.external_trade_id,
        external_order_id=model.external_order_id,
        source_payload_hash=model.source_payload_hash,
    )


class TradeRepository:
    """Repository for trades, keyed by resolved trade id."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, trade_id: str) -> ProjectTrade | None:
        result = await self.session.execute(
            select(ProjectTradeModel)
            .execution_options(populate_existing=True)
            .where(ProjectTradeModel.trade_id == trade_id)
        )
        model = result.scalar_one_or_none()
        return _trade_from_model(model) if model else None

    async def insert_if_absent(self, trade: ProjectTrade) -> bool:
        """Insert ``trade``; returns False if the id was already ingested."""
        values = {
            "trade_id": trade.trade_id,
            "project_id": trade.project_key.as_string(),
            "item_type": trade.item.item_type,
            "symbol": trade.item.symbol,
            "side": trade.side.value,
            "ord_type": trade.ord_type.value if trade.ord_type else None,
            "leverage": trade.leverage,
            "qty": trade.qty.amount,
            "qty_unit": trade.qty.unit,
            "entry_price": trade.entry_price,
            "exit_price": trade.exit_price,
            "fee_amount": trade.fee.amount if trade.fee else None,
            "fee_ccy": trade.fee.ccy if trade.fee else None,
            "pnl_amount": trade.pnl.amount if trade.pnl else None,
            "pnl_ccy": trade.pnl.ccy if trade.pnl else None,
            "ts_open": trade.ts_open,
            "ts_filled": trade.ts_filled,
            "ts_close": trade.ts_close,
            "status": trade.status.value,
            "source": trade.source,
            "external_trade_id": trade.external_trade_id,
            "external_order_id": trade.external_order_id,
            "source_payload_hash": trade.source_payload_hash,
        }
        stmt = _insert_for(self.session, ProjectTradeModel).values(**values, created_at=datetime.now(UTC))
        stmt = stmt.on_conflict_do_nothing(index_elements=["trade_id"])
        result = await self.session.execute(stmt)
        inserted = result.rowcount == 1
        if not inserted:
            logger.debug("Trade %s already ingested", trade.trade_id)
        return inserted

    async def list_for_project(self, key: ProjectKey) -> list[ProjectTrade]:
        result = await self.session.execute(
            select(ProjectTradeModel).execution_options(populate_existing=True)
            .where(ProjectTradeModel.project_id == key.as_string())
            .order_by(ProjectTradeModel.ts_open, ProjectTradeModel.trade_id)
        )
        return [_trade_from_model(m) for m in result.scalars().all()]

    async def rows_for_project(self, key: ProjectKey) -> list[TradeRow]:
        return [to_trade_row(t) for t in await self.list_for_project(key)]
