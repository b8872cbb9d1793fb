"""SQLAlchemy models for persistent storage.

This module defines the database schema for crawl progress (tasks and the
fetch ledger), projects with their visibility history, metric snapshots and
trades.
"""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class CrawlTaskModel(Base):
    """Crawl progress and lease of one target within one data window.

    ``version`` is bumped on every save; writers compare-and-set on it.
    """

    __tablename__ = "crawl_tasks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    exchange: Mapped[str] = mapped_column(String(16), nullable=False)
    api_name: Mapped[str] = mapped_column(String(64), nullable=False)
    params_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    window_key: Mapped[str] = mapped_column(String(128), nullable=False)
    params_json: Mapped[str | None] = mapped_column(Text, nullable=True)

    total_page: Mapped[int | None] = mapped_column(Integer, nullable=True)
    next_page: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    lease_holder: Mapped[str | None] = mapped_column(String(128), nullable=True)
    lease_granted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    lease_ttl_sec: Mapped[int | None] = mapped_column(Integer, nullable=True)
    lease_expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        UniqueConstraint(
            "exchange", "api_name", "params_hash", "window_key", name="uq_crawl_tasks_identity"
        ),
        Index("idx_crawl_tasks_status", "status"),
    )


class CrawlLogModel(Base):
    """Append-only ledger of fetch attempts."""

    __tablename__ = "crawl_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    exchange: Mapped[str | None] = mapped_column(String(16), nullable=True)
    task_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    target: Mapped[str | None] = mapped_column(Text, nullable=True)
    method: Mapped[str | None] = mapped_column(String(8), nullable=True)
    request_params_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    params_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)

    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    finished_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    duration_ms: Mapped[int] = mapped_column(Integer, nullable=False)

    status_code: Mapped[int] = mapped_column(Integer, nullable=False)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    not_modified: Mapped[bool] = mapped_column(Boolean, nullable=False)
    content_length: Mapped[int | None] = mapped_column(Integer, nullable=True)
    etag: Mapped[str | None] = mapped_column(String(256), nullable=True)
    last_modified_raw: Mapped[str | None] = mapped_column(String(64), nullable=True)
    last_modified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    content_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    error_msg: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        Index("idx_crawl_logs_task", "task_id"),
        Index("idx_crawl_logs_target_success", "target", "success", "id"),
    )


class ProjectModel(Base):
    """Master record of a lead project."""

    __tablename__ = "projects"

    project_id: Mapped[str] = mapped_column(String(160), primary_key=True)
    exchange: Mapped[str] = mapped_column(String(16), nullable=False)
    external_id: Mapped[str] = mapped_column(String(128), nullable=False)
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    base_currency: Mapped[str] = mapped_column(String(16), nullable=False)
    last_visibility: Mapped[str] = mapped_column(String(16), nullable=False)
    first_seen: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_seen: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    min_copy_cost: Mapped[Decimal | None] = mapped_column(Numeric(38, 18), nullable=True)
    status: Mapped[str | None] = mapped_column(String(32), nullable=True)
    extra: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        UniqueConstraint("exchange", "external_id", name="uq_projects_exchange_external_id"),
        Index("idx_projects_exchange_visibility", "exchange", "last_visibility"),
    )


class ProjectTombstoneModel(Base):
    """Invisibility interval of a project.

    ``open_marker`` holds the project id while the interval is open and is
    NULL once closed; its unique constraint allows one open interval per project.
    """

    __tablename__ = "project_tombstones"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[str] = mapped_column(String(160), nullable=False)
    from_ts: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    to_ts: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reason_code: Mapped[str] = mapped_column(String(32), nullable=False)
    reason_msg: Mapped[str | None] = mapped_column(Text, nullable=True)
    detector: Mapped[str] = mapped_column(String(32), nullable=False)
    open_marker: Mapped[str | None] = mapped_column(String(160), nullable=True, unique=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (Index("idx_project_tombstones_project_from", "project_id", "from_ts"),)


class ProjectSnapshotModel(Base):
    """Point-in-time metrics of a project."""

    __tablename__ = "project_snapshots"

    project_id: Mapped[str] = mapped_column(String(160), primary_key=True)
    snapshot_ts: Mapped[datetime] = mapped_column(DateTime(timezone=True), primary_key=True)
    source: Mapped[str] = mapped_column(String(16), primary_key=True)

    data_ver: Mapped[str | None] = mapped_column(String(32), nullable=True)
    visibility: Mapped[str] = mapped_column(String(16), nullable=False)
    aum_usd: Mapped[Decimal | None] = mapped_column(Numeric(38, 8), nullable=True)
    followers: Mapped[int | None] = mapped_column(Integer, nullable=True)
    win_ratio: Mapped[Decimal | None] = mapped_column(Numeric(20, 8), nullable=True)
    pnl_ratio_90d: Mapped[Decimal | None] = mapped_column(Numeric(20, 8), nullable=True)
    pnl_90d_usd: Mapped[Decimal | None] = mapped_column(Numeric(38, 8), nullable=True)
    raw_json: Mapped[str] = mapped_column(Text, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (Index("idx_project_snapshots_ts_source", "snapshot_ts", "source"),)


class ProjectTradeModel(Base):
    """One position round-trip of a project."""

    __tablename__ = "project_trades"

    trade_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    project_id: Mapped[str] = mapped_column(String(160), nullable=False)
    item_type: Mapped[str] = mapped_column(String(16), nullable=False)
    symbol: Mapped[str] = mapped_column(String(64), nullable=False)
    side: Mapped[str] = mapped_column(String(8), nullable=False)
    ord_type: Mapped[str | None] = mapped_column(String(16), nullable=True)
    leverage: Mapped[Decimal | None] = mapped_column(Numeric(20, 8), nullable=True)
    qty: Mapped[Decimal] = mapped_column(Numeric(38, 18), nullable=False)
    qty_unit: Mapped[str] = mapped_column(String(16), nullable=False)
    entry_price: Mapped[Decimal | None] = mapped_column(Numeric(38, 18), nullable=True)
    exit_price: Mapped[Decimal | None] = mapped_column(Numeric(38, 18), nullable=True)
    fee_amount: Mapped[Decimal | None] = mapped_column(Numeric(38, 18), nullable=True)
    fee_ccy: Mapped[str | None] = mapped_column(String(16), nullable=True)
    pnl_amount: Mapped[Decimal | None] = mapped_column(Numeric(38, 18), nullable=True)
    pnl_ccy: Mapped[str | None] = mapped_column(String(16), nullable=True)
    ts_open: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    ts_filled: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    ts_close: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    status: Mapped[str] = mapped_column(String(24), nullable=False)
    source: Mapped[str] = mapped_column(String(32), nullable=False)
    external_trade_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    external_order_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    source_payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        Index("idx_project_trades_project_open", "project_id", "ts_open"),
        Index("idx_project_trades_payload_hash", "source_payload_hash"),
    )
