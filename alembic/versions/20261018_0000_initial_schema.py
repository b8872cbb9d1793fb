"""Initial schema for crawl progress, projects, snapshots and trades.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-18 00:00:00.000000+00:00
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Crawl tasks table
    op.create_table(
        "crawl_tasks",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("exchange", sa.String(16), nullable=False),
        sa.Column("api_name", sa.String(64), nullable=False),
        sa.Column("params_hash", sa.String(64), nullable=False),
        sa.Column("window_key", sa.String(128), nullable=False),
        sa.Column("params_json", sa.Text(), nullable=True),
        sa.Column("total_page", sa.Integer(), nullable=True),
        sa.Column("next_page", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("lease_holder", sa.String(128), nullable=True),
        sa.Column("lease_granted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("lease_ttl_sec", sa.Integer(), nullable=True),
        sa.Column("lease_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "exchange", "api_name", "params_hash", "window_key", name="uq_crawl_tasks_identity"
        ),
    )
    op.create_index("idx_crawl_tasks_status", "crawl_tasks", ["status"])

    # Crawl logs table (append-only)
    op.create_table(
        "crawl_logs",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("exchange", sa.String(16), nullable=True),
        sa.Column("task_id", sa.Integer(), nullable=True),
        sa.Column("target", sa.Text(), nullable=True),
        sa.Column("method", sa.String(8), nullable=True),
        sa.Column("request_params_json", sa.Text(), nullable=True),
        sa.Column("params_hash", sa.String(64), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("duration_ms", sa.Integer(), nullable=False),
        sa.Column("status_code", sa.Integer(), nullable=False),
        sa.Column("success", sa.Boolean(), nullable=False),
        sa.Column("not_modified", sa.Boolean(), nullable=False),
        sa.Column("content_length", sa.Integer(), nullable=True),
        sa.Column("etag", sa.String(256), nullable=True),
        sa.Column("last_modified_raw", sa.String(64), nullable=True),
        sa.Column("last_modified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("content_hash", sa.String(64), nullable=True),
        sa.Column("error_msg", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_crawl_logs_task", "crawl_logs", ["task_id"])
    op.create_index("idx_crawl_logs_target_success", "crawl_logs", ["target", "success", "id"])

    # Projects table
    op.create_table(
        "projects",
        sa.Column("project_id", sa.String(160), nullable=False),
        sa.Column("exchange", sa.String(16), nullable=False),
        sa.Column("external_id", sa.String(128), nullable=False),
        sa.Column("name", sa.String(256), nullable=False),
        sa.Column("base_currency", sa.String(16), nullable=False),
        sa.Column("last_visibility", sa.String(16), nullable=False),
        sa.Column("first_seen", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_seen", sa.DateTime(timezone=True), nullable=True),
        sa.Column("min_copy_cost", sa.Numeric(38, 18), nullable=True),
        sa.Column("status", sa.String(32), nullable=True),
        sa.Column("extra", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("project_id"),
        sa.UniqueConstraint("exchange", "external_id", name="uq_projects_exchange_external_id"),
    )
    op.create_index(
        "idx_projects_exchange_visibility", "projects", ["exchange", "last_visibility"]
    )

    # Project tombstones table; open_marker is unique while an interval is open
    op.create_table(
        "project_tombstones",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("project_id", sa.String(160), nullable=False),
        sa.Column("from_ts", sa.DateTime(timezone=True), nullable=False),
        sa.Column("to_ts", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reason_code", sa.String(32), nullable=False),
        sa.Column("reason_msg", sa.Text(), nullable=True),
        sa.Column("detector", sa.String(32), nullable=False),
        sa.Column("open_marker", sa.String(160), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("open_marker"),
    )
    op.create_index(
        "idx_project_tombstones_project_from", "project_tombstones", ["project_id", "from_ts"]
    )

    # Project snapshots table
    op.create_table(
        "project_snapshots",
        sa.Column("project_id", sa.String(160), nullable=False),
        sa.Column("snapshot_ts", sa.DateTime(timezone=True), nullable=False),
        sa.Column("source", sa.String(16), nullable=False),
        sa.Column("data_ver", sa.String(32), nullable=True),
        sa.Column("visibility", sa.String(16), nullable=False),
        sa.Column("aum_usd", sa.Numeric(38, 8), nullable=True),
        sa.Column("followers", sa.Integer(), nullable=True),
        sa.Column("win_ratio", sa.Numeric(20, 8), nullable=True),
        sa.Column("pnl_ratio_90d", sa.Numeric(20, 8), nullable=True),
        sa.Column("pnl_90d_usd", sa.Numeric(38, 8), nullable=True),
        sa.Column("raw_json", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("project_id", "snapshot_ts", "source"),
    )
    op.create_index(
        "idx_project_snapshots_ts_source", "project_snapshots", ["snapshot_ts", "source"]
    )

    # Project trades table
    op.create_table(
        "project_trades",
        sa.Column("trade_id", sa.String(128), nullable=False),
        sa.Column("project_id", sa.String(160), nullable=False),
        sa.Column("item_type", sa.String(16), nullable=False),
        sa.Column("symbol", sa.String(64), nullable=False),
        sa.Column("side", sa.String(8), nullable=False),
        sa.Column("ord_type", sa.String(16), nullable=True),
        sa.Column("leverage", sa.Numeric(20, 8), nullable=True),
        sa.Column("qty", sa.Numeric(38, 18), nullable=False),
        sa.Column("qty_unit", sa.String(16), nullable=False),
        sa.Column("entry_price", sa.Numeric(38, 18), nullable=True),
        sa.Column("exit_price", sa.Numeric(38, 18), nullable=True),
        sa.Column("fee_amount", sa.Numeric(38, 18), nullable=True),
        sa.Column("fee_ccy", sa.String(16), nullable=True),
        sa.Column("pnl_amount", sa.Numeric(38, 18), nullable=True),
        sa.Column("pnl_ccy", sa.String(16), nullable=True),
        sa.Column("ts_open", sa.DateTime(timezone=True), nullable=False),
        sa.Column("ts_filled", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ts_close", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.String(24), nullable=False),
        sa.Column("source", sa.String(32), nullable=False),
        sa.Column("external_trade_id", sa.String(128), nullable=True),
        sa.Column("external_order_id", sa.String(128), nullable=True),
        sa.Column("source_payload_hash", sa.String(64), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("trade_id"),
    )
    op.create_index("idx_project_trades_project_open", "project_trades", ["project_id", "ts_open"])
    op.create_index("idx_project_trades_payload_hash", "project_trades", ["source_payload_hash"])


def downgrade() -> None:
    op.drop_table("project_trades")
    op.drop_table("project_snapshots")
    op.drop_table("project_tombstones")
    op.drop_table("projects")
    op.drop_table("crawl_logs")
    op.drop_table("crawl_tasks")
