"""
Command-line interface for the copy-trading harvester.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from collections.abc import Sequence

from copytrade_harvester.config import Settings, get_settings
from copytrade_harvester.domain.errors import StateConflict, ValidationError
from copytrade_harvester.domain.values import ProjectKey
from copytrade_harvester.harvester import Harvester
from copytrade_harvester.ingestor.models import LeadTradersQuery
from copytrade_harvester.ingestor.okx_client import OkxClient
from copytrade_harvester.storage.database import DatabaseManager

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_INVALID = 2

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _build_client(settings: Settings) -> OkxClient:
    okx = settings.okx
    return OkxClient(
        base_url=okx.base_url,
        access_key=okx.access_key.get_secret_value() if okx.access_key else None,
        secret_key=okx.secret_key.get_secret_value() if okx.secret_key else None,
        passphrase=okx.passphrase.get_secret_value() if okx.passphrase else None,
        clock_offset_ms=okx.clock_offset_ms,
        requests_per_second=okx.requests_per_second,
        timeout_seconds=okx.timeout_seconds,
    )


def _project_key(raw: str) -> ProjectKey:
    """Accept either ``OKX:uniqueCode`` or a bare OKX unique code."""
    if ":" in raw:
        return ProjectKey.parse(raw)
    return ProjectKey.of("OKX", raw)


async def init_db_command(args: argparse.Namespace, settings: Settings) -> int:
    """Create all tables (development; use alembic in production)."""
    db = DatabaseManager(settings.database.url)
    try:
        await db.init_schema_async()
    finally:
        await db.dispose_async()
    print("Database schema initialized.")
    return EXIT_OK


async def _with_harvester(settings: Settings, action):  # type: ignore[no-untyped-def]
    db = DatabaseManager(settings.database.url)
    try:
        async with _build_client(settings) as client:
            if settings.okx.enable_time_sync:
                await client.sync_time()
            return await action(Harvester.from_settings(settings, db, client))
    finally:
        await db.dispose_async()


async def run_rank_command(args: argparse.Namespace, settings: Settings) -> int:
    """Discover the current rank window and crawl it."""
    query = LeadTradersQuery(
        inst_type=settings.crawl.inst_type,
        min_lead_days=args.min_lead_days,
        min_aum=args.min_aum,
        max_aum=args.max_aum,
        limit=settings.crawl.page_limit,
    )

    async def action(harvester: Harvester) -> int:
        task = await harvester.discover_rank_task(query)
        result = await harvester.run_task(task.key)
        if not result.acquired:
            print(f"Task {task.key} is held by another worker or already {task.status.value}.")
            return EXIT_OK
        print(
            f"Task {task.key}: status={result.status.value if result.status else '-'} "
            f"pages={result.stats.pages_processed} unchanged={result.stats.pages_unchanged} "
            f"projects={result.stats.projects_seen} visibility_changes={len(result.visibility_changes)}"
        )
        return EXIT_ERROR if result.lease_lost or result.last_error else EXIT_OK

    return await _with_harvester(settings, action)


async def run_pending_command(args: argparse.Namespace, settings: Settings) -> int:
    """Resume tasks that are pending or whose lease expired."""

    async def action(harvester: Harvester) -> int:
        results = await harvester.run_pending(limit=args.limit)
        for result in results:
            status = result.status.value if result.status else "-"
            print(f"Task {result.key}: acquired={result.acquired} status={status}")
        return EXIT_OK

    return await _with_harvester(settings, action)


async def refresh_detail_command(args: argparse.Namespace, settings: Settings) -> int:
    """Refresh one project's detail stats."""
    key = _project_key(args.project_id)

    async def action(harvester: Harvester) -> int:
        change = await harvester.refresh_detail(key)
        if change is None:
            print(f"Project {key}: refreshed, visibility unchanged.")
        else:
            print(
                f"Project {key}: {change.from_visibility.value} -> {change.to_visibility.value} "
                f"({change.reason_code})"
            )
        return EXIT_OK

    return await _with_harvester(settings, action)


async def harvest_trades_command(args: argparse.Namespace, settings: Settings) -> int:
    """Ingest one project's closed sub-positions."""
    key = _project_key(args.project_id)

    async def action(harvester: Harvester) -> int:
        result = await harvester.harvest_trades(key)
        print(
            f"Project {key}: fetched={result.fetched} inserted={result.inserted} "
            f"duplicates={result.duplicates}"
        )
        return EXIT_OK

    return await _with_harvester(settings, action)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="copytrade-harvester",
        description="OKX copy-trading lead project harvester",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  copytrade-harvester init-db
  copytrade-harvester run-rank --min-lead-days 7
  copytrade-harvester run-pending --limit 10
  copytrade-harvester refresh-detail OKX:ABCDEF0123456789
  copytrade-harvester harvest-trades ABCDEF0123456789
        """,
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    init_parser = subparsers.add_parser("init-db", help="Create the database schema")
    init_parser.set_defaults(func=init_db_command)

    rank_parser = subparsers.add_parser("run-rank", help="Crawl the current lead-trader rank window")
    rank_parser.add_argument("--min-lead-days", default=None, help="Only traders leading for N+ days")
    rank_parser.add_argument("--min-aum", default=None, help="Minimum assets under management")
    rank_parser.add_argument("--max-aum", default=None, help="Maximum assets under management")
    rank_parser.set_defaults(func=run_rank_command)

    pending_parser = subparsers.add_parser("run-pending", help="Resume pending or expired tasks")
    pending_parser.add_argument("--limit", type=int, default=50, help="Maximum tasks to run")
    pending_parser.set_defaults(func=run_pending_command)

    detail_parser = subparsers.add_parser("refresh-detail", help="Refresh one project's detail stats")
    detail_parser.add_argument("project_id", help="OKX:uniqueCode or bare uniqueCode")
    detail_parser.set_defaults(func=refresh_detail_command)

    trades_parser = subparsers.add_parser("harvest-trades", help="Ingest one project's closed trades")
    trades_parser.add_argument("project_id", help="OKX:uniqueCode or bare uniqueCode")
    trades_parser.set_defaults(func=harvest_trades_command)

    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return EXIT_ERROR

    try:
        settings = get_settings()
        settings.validate_requirements()
    except ValueError as e:
        logging.basicConfig(level=logging.ERROR, format=LOG_FORMAT)
        logger.error("Invalid configuration: %s", e)
        return EXIT_INVALID

    logging.basicConfig(level=settings.get_logging_level(), format=LOG_FORMAT)
    logger.debug("Settings: %s", settings.redacted_summary())

    try:
        return asyncio.run(args.func(args, settings))
    except KeyboardInterrupt:
        print("\nOperation cancelled by user.")
        return 130
    except ValidationError as e:
        logger.error("%s failed: invalid input: %s", args.command, e)
        logger.debug("Validation failure detail", exc_info=True)
        return EXIT_INVALID
    except StateConflict as e:
        logger.error("%s failed: state conflict: %s", args.command, e)
        logger.debug("State conflict detail", exc_info=True)
        return EXIT_ERROR
    except Exception as e:
        logger.error("%s failed: %s", args.command, e)
        logger.debug("Failure detail", exc_info=True)
        return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
