"""Crawl orchestrator for OKX copy-trading lead projects.

This module drives the domain aggregates against the fetcher and the
repositories:

    discover rank window -> lease task -> fetch page -> log attempt
        -> (content changed?) ingest projects/snapshots -> advance cursor
        -> complete window -> reconcile visibility

Every page is committed in its own transaction together with the task's
cursor, so a crashed worker resumes at the first unprocessed page once its
lease expires.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any, Protocol

from copytrade_harvester.domain.crawl_log import CrawlLog, parse_http_date, sha256_hex
from copytrade_harvester.domain.crawl_task import CrawlTask, CrawlTaskKey
from copytrade_harvester.domain.enums import Exchange, SnapshotSource, TaskStatus, Visibility
from copytrade_harvester.domain.errors import HarvesterError, StateConflict, ValidationError
from copytrade_harvester.domain.observation import (
    REASON_DETAIL_4XX,
    REASON_RANK_GAP,
    ProjectSnapshot,
    Tombstone,
    VisibilityChange,
)
from copytrade_harvester.domain.project import Project, ProjectBrief
from copytrade_harvester.domain.values import ProjectKey, ensure_utc, truncate_to_millis
from copytrade_harvester.ingestor.models import (
    LEAD_TRADER_STATS_PATH,
    LEAD_TRADERS_API,
    LEAD_TRADERS_PATH,
    SUBPOSITIONS_HISTORY_PATH,
    FetchOutcome,
    LeadTradersPage,
    LeadTradersQuery,
    data_ver_from_window_key,
    data_ver_timestamp,
    parse_lead_trader_stats,
    parse_lead_traders_page,
    parse_subpositions,
    stats_params,
    subpositions_params,
    window_key,
)
from copytrade_harvester.ingestor.okx_client import TransportError
from copytrade_harvester.storage.repos import (
    CrawlLogRepository,
    CrawlTaskRepository,
    ProjectRepository,
    SnapshotRepository,
    StaleTaskError,
    TombstoneRepository,
    TradeRepository,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from copytrade_harvester.config import Settings
    from copytrade_harvester.storage.database import DatabaseManager

logger = logging.getLogger(__name__)

GET = "GET"
RANK_DETECTOR = "RANK_WINDOW"
DETAIL_DETECTOR = "DETAIL_FETCH"
_ONE_MS = timedelta(milliseconds=1)


class Fetcher(Protocol):
    """Performs one HTTP exchange; raises TransportError when no response arrives."""

    async def fetch(
        self, method: str, path: str, params: dict[str, Any] | None = None, body: str | None = None
    ) -> FetchOutcome: ...


class LeaseLostError(StateConflict):
    """Raised when this worker no longer holds the lease on the task it is running."""


class FetchError(HarvesterError):
    """Raised when a fetch returned an unusable HTTP status."""

    def __init__(self, message: str, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass
class HarvestStats:
    """Counters for one harvester operation."""

    pages_processed: int = 0
    pages_unchanged: int = 0
    page_errors: int = 0
    projects_seen: int = 0
    projects_created: int = 0
    snapshots_written: int = 0
    tombstones_opened: int = 0
    tombstones_closed: int = 0
    trades_inserted: int = 0
    trades_duplicate: int = 0


@dataclass
class RunResult:
    """Outcome of :meth:`Harvester.run_task`."""

    key: CrawlTaskKey
    acquired: bool
    status: TaskStatus | None = None
    lease_lost: bool = False
    last_error: str | None = None
    stats: HarvestStats = field(default_factory=HarvestStats)
    visibility_changes: list[VisibilityChange] = field(default_factory=list)


@dataclass(frozen=True)
class TradeHarvestResult:
    """Outcome of :meth:`Harvester.harvest_trades`."""

    project_key: ProjectKey
    fetched: int
    inserted: int
    duplicates: int


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Harvester:
    """Runs rank, detail and trade crawls for one worker.

    Example:
        ```python
        async with OkxClient() as client:
            harvester = Harvester.from_settings(settings, db, client)
            task = await harvester.discover_rank_task(LeadTradersQuery())
            result = await harvester.run_task(task.key)
        ```
    """

    def __init__(
        self,
        db: DatabaseManager,
        fetcher: Fetcher,
        *,
        worker_id: str,
        lease_ttl_seconds: int = 120,
        max_attempts: int = 5,
        page_retries: int = 2,
        retry_base_delay: float = 1.0,
        inst_type: str = "SWAP",
        clock: Callable[[], datetime] = _utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._db = db
        self._fetcher = fetcher
        self._worker_id = worker_id
        self._lease_ttl = lease_ttl_seconds
        self._max_attempts = max_attempts
        self._page_retries = page_retries
        self._retry_base_delay = retry_base_delay
        self._inst_type = inst_type
        self._clock = clock
        self._sleep = sleep

    @classmethod
    def from_settings(cls, settings: Settings, db: DatabaseManager, fetcher: Fetcher) -> Harvester:
        crawl = settings.crawl
        return cls(
            db,
            fetcher,
            worker_id=crawl.worker_id,
            lease_ttl_seconds=crawl.lease_ttl_seconds,
            max_attempts=crawl.max_attempts,
            page_retries=crawl.page_retries,
            retry_base_delay=crawl.retry_base_delay_seconds,
            inst_type=crawl.inst_type,
        )

    # ------------------------------------------------------------------
    # Fetch + ledger
    # ------------------------------------------------------------------

    async def _fetch_logged(
        self,
        path: str,
        params: dict[str, Any],
        *,
        task_id: int | None = None,
        params_hash: str | None = None,
    ) -> tuple[FetchOutcome, CrawlLog]:
        """Fetch and build the ledger entry; transport failures are logged and re-raised.

        Returns the outcome and an *unsaved* log: success for 2xx/304,
        failure otherwise.
        """
        params_json = json.dumps(params, sort_keys=True, separators=(",", ":"))
        started = self._clock()
        try:
            outcome = await self._fetcher.fetch(GET, path, params)
        except TransportError as e:
            failure = CrawlLog.from_failure(
                exchange=Exchange.OKX,
                task_id=task_id,
                target=e.url or path,
                method=GET,
                request_params_json=params_json,
                params_hash=params_hash,
                started_at=started,
                finished_at=self._clock(),
                status_code=0,
                error_msg=str(e),
            )
            await self._append_log(failure)
            raise
        finished = self._clock()
        if outcome.is_success or outcome.is_not_modified:
            log = CrawlLog.from_success(
                exchange=Exchange.OKX,
                task_id=task_id,
                target=outcome.url or path,
                method=GET,
                request_params_json=params_json,
                params_hash=params_hash,
                started_at=started,
                finished_at=finished,
                status_code=outcome.status_code,
                content_length=outcome.content_length,
                etag=outcome.etag,
                last_modified_raw=outcome.last_modified,
                last_modified_at=parse_http_date(outcome.last_modified),
                content_hash=sha256_hex(outcome.body) if outcome.body else None,
            )
        else:
            log = CrawlLog.from_failure(
                exchange=Exchange.OKX,
                task_id=task_id,
                target=outcome.url or path,
                method=GET,
                request_params_json=params_json,
                params_hash=params_hash,
                started_at=started,
                finished_at=finished,
                status_code=outcome.status_code,
                error_msg=f"HTTP {outcome.status_code}: {outcome.text()[:500]}",
            )
        return outcome, log

    async def _append_log(self, log: CrawlLog) -> CrawlLog:
        async with self._db.get_async_session() as session:
            return await CrawlLogRepository(session).append(log)

    async def _reject(self, log: CrawlLog, error: Exception) -> None:
        """Record a usable-status response whose payload could not be used."""
        await self._append_log(
            CrawlLog.from_failure(
                exchange=log.exchange,
                task_id=log.task_id,
                target=log.target,
                method=log.method,
                request_params_json=log.request_params_json,
                params_hash=log.params_hash,
                started_at=log.started_at,
                finished_at=log.finished_at,
                status_code=log.status_code,
                error_msg=str(error),
            )
        )

    # ------------------------------------------------------------------
    # Rank windows
    # ------------------------------------------------------------------

    async def discover_rank_task(self, query: LeadTradersQuery) -> CrawlTask:
        """Learn the current ranking generation and get or create its task.

        Fetches page 1 without a pinned dataVer, then raises the task's
        total page count to what the exchange reports.

        Raises:
            TransportError: If page 1 could not be fetched.
            FetchError: If page 1 returned an unusable status.
            ValidationError: If the payload is malformed or carries no dataVer.
        """
        # page 1 with the query's filters but no pinned dataVer
        unpinned = LeadTradersQuery.from_params(query.normalized_params())
        outcome, log = await self._fetch_logged(
            LEAD_TRADERS_PATH, unpinned.to_request_params(), params_hash=query.params_hash()
        )
        if not log.success:
            await self._append_log(log)
            raise FetchError(f"Rank discovery failed with HTTP {log.status_code}", log.status_code)
        try:
            page = parse_lead_traders_page(outcome.body)
            if page.data_ver is None:
                raise ValidationError("Rank page carries no dataVer")
        except ValidationError as e:
            await self._reject(log, e)
            raise
        await self._append_log(log)

        key = CrawlTaskKey(
            exchange=Exchange.OKX,
            api_name=LEAD_TRADERS_API,
            params_hash=query.params_hash(),
            window_key=window_key(page.data_ver),
        )
        async with self._db.get_async_session() as session:
            tasks = CrawlTaskRepository(session)
            task = await tasks.get_or_create(key, params_json=query.normalized_json())
            if not task.is_terminal and (task.total_page is None or page.total_page > task.total_page):
                task.set_total_page(page.total_page)
                try:
                    await tasks.save(task)
                except StaleTaskError:
                    logger.info("Task %s changed concurrently during discovery; reloading", key)
                    task = await tasks.get(key)  # type: ignore[assignment]
        logger.info(
            "Discovered rank window %s (dataVer=%s, total_page=%s, status=%s)",
            key,
            page.data_ver,
            task.total_page,
            task.status.value,
        )
        return task

    async def run_task(self, key: CrawlTaskKey) -> RunResult:
        """Lease ``key`` and process its remaining pages in order.

        Losing the acquire race is not an error: the result reports
        ``acquired=False``. Losing the lease mid-run stops the run.
        """
        result = RunResult(key=key, acquired=False)
        run_started = self._clock()

        async with self._db.get_async_session() as session:
            task = await CrawlTaskRepository(session).try_acquire(
                key, self._worker_id, run_started, self._lease_ttl
            )
        if task is None:
            logger.info("Task %s not acquired by %s", key, self._worker_id)
            return result
        result.acquired = True
        result.status = task.status

        query = LeadTradersQuery.from_params(json.loads(task.params_json or "{}"))
        data_ver = data_ver_from_window_key(key.window_key)
        pinned_ts = data_ver_timestamp(data_ver)
        snapshot_ts = pinned_ts or truncate_to_millis(run_started)

        try:
            while task.total_page is None or not task.is_finished():
                page = task.next_page
                processed = await self._process_page_with_retry(
                    task, query, page, data_ver, snapshot_ts, result
                )
                if not processed:
                    result.status = task.status
                    result.last_error = task.last_error
                    return result

            reconcile = pinned_ts is not None and query.covers_full_ranking()
            await self._complete(task, data_ver, snapshot_ts, run_started, reconcile, result)
        except (StaleTaskError, LeaseLostError) as e:
            logger.warning("Lease on %s lost by %s, stopping: %s", key, self._worker_id, e)
            result.lease_lost = True
            result.last_error = str(e)
            return result

        result.status = task.status
        logger.info(
            "Task %s finished: status=%s pages=%d unchanged=%d changes=%d",
            key,
            task.status.value,
            result.stats.pages_processed,
            result.stats.pages_unchanged,
            len(result.visibility_changes),
        )
        return result

    async def _process_page_with_retry(
        self,
        task: CrawlTask,
        query: LeadTradersQuery,
        page: int,
        data_ver: str,
        snapshot_ts: datetime,
        result: RunResult,
    ) -> bool:
        """Process one page with backoff; False once the run must stop on errors."""
        last_error = ""
        for attempt in range(self._page_retries + 1):
            try:
                await self._process_page(task, query, page, data_ver, snapshot_ts, result)
                return True
            except (TransportError, FetchError, ValidationError) as e:
                last_error = f"page {page}: {e}"
                result.stats.page_errors += 1
                logger.warning(
                    "Task %s page %d attempt %d/%d failed: %s",
                    task.key,
                    page,
                    attempt + 1,
                    self._page_retries + 1,
                    e,
                )
                task.record_error(last_error)
                async with self._db.get_async_session() as session:
                    await CrawlTaskRepository(session).save(task)
                if task.attempts >= self._max_attempts:
                    break
                if attempt < self._page_retries:
                    await self._sleep(self._retry_base_delay * (2**attempt))

        async with self._db.get_async_session() as session:
            if task.attempts >= self._max_attempts:
                task.mark_failed(last_error)
                logger.error("Task %s failed after %d attempts: %s", task.key, task.attempts, last_error)
            else:
                task.release(self._worker_id)
                logger.info("Task %s released by %s after page %d errors", task.key, self._worker_id, page)
            await CrawlTaskRepository(session).save(task)
        return False

    async def _process_page(
        self,
        task: CrawlTask,
        query: LeadTradersQuery,
        page: int,
        data_ver: str,
        snapshot_ts: datetime,
        result: RunResult,
    ) -> None:
        now = self._clock()
        try:
            task.renew(self._worker_id, now, self._lease_ttl)
        except StateConflict as e:
            raise LeaseLostError(str(e)) from e
        async with self._db.get_async_session() as session:
            await CrawlTaskRepository(session).save(task)

        outcome, log = await self._fetch_logged(
            LEAD_TRADERS_PATH,
            query.with_page(page, data_ver).to_request_params(),
            task_id=task.id,
            params_hash=task.key.params_hash,
        )
        if not log.success:
            await self._append_log(log)
            raise FetchError(f"HTTP {log.status_code}", log.status_code)

        async with self._db.get_async_session() as session:
            previous = await CrawlLogRepository(session).latest_success(log.target or "")
        unchanged = log.not_modified or (previous is not None and log.same_content_as(previous))

        parsed: LeadTradersPage | None = None
        if not unchanged:
            try:
                parsed = parse_lead_traders_page(outcome.body)
            except ValidationError as e:
                await self._reject(log, e)
                raise

        try:
            async with self._db.get_async_session() as session:
                await CrawlLogRepository(session).append(log)
                if parsed is not None:
                    await self._ingest_ranks(session, parsed.ranks, data_ver, snapshot_ts, result)
                    if parsed.total_page > (task.total_page or 0):
                        task.set_total_page(parsed.total_page)
                else:
                    result.stats.pages_unchanged += 1
                    logger.debug("Task %s page %d unchanged, skipping ingest", task.key, page)
                if task.total_page is None:
                    task.set_total_page(page)
                task.on_page_processed(page)
                await CrawlTaskRepository(session).save(task)
        except ValidationError as e:
            # the rollback dropped the success entry
            await self._reject(log, e)
            raise
        result.stats.pages_processed += 1

    async def _ingest_ranks(
        self,
        session: AsyncSession,
        ranks: tuple[ProjectBrief, ...],
        data_ver: str,
        snapshot_ts: datetime,
        result: RunResult,
    ) -> None:
        projects = ProjectRepository(session)
        tombstones = TombstoneRepository(session)
        snapshots = SnapshotRepository(session)
        now = self._clock()

        for brief in ranks:
            key = ProjectKey.of(Exchange.OKX, brief.external_id)
            project = await projects.get(key)
            if project is None:
                project = Project.new_from_brief(key, brief, now)
                result.stats.projects_created += 1
            else:
                previous = project.last_visibility
                project.apply_brief(brief, now)
                if previous is not Visibility.VISIBLE:
                    await self._close_open_tombstone(tombstones, key, now, result)
                    change = VisibilityChange(key, previous, Visibility.VISIBLE, now, "RANK_SEEN")
                    result.visibility_changes.append(self._log_change(change))
            await projects.save(project)
            result.stats.projects_seen += 1

            await snapshots.upsert(
                ProjectSnapshot(
                    project_key=key,
                    snapshot_ts=snapshot_ts,
                    source=SnapshotSource.OKX_RANK,
                    raw_json=brief.raw_json or "{}",
                    data_ver=brief.data_ver or data_ver,
                    visibility=Visibility.VISIBLE,
                    aum_usd=brief.aum,
                    followers=brief.followers,
                    win_ratio=brief.win_ratio,
                    pnl_ratio_90d=brief.pnl_ratio,
                    pnl_90d_usd=brief.pnl,
                )
            )
            result.stats.snapshots_written += 1

    async def _close_open_tombstone(
        self,
        tombstones: TombstoneRepository,
        key: ProjectKey,
        now: datetime,
        result: RunResult | None = None,
    ) -> None:
        tombstone = await tombstones.get_open(key)
        if tombstone is None:
            return
        close_ts = ensure_utc(now)
        if close_ts <= tombstone.from_ts:
            # opened by a clock running ahead of ours
            close_ts = tombstone.from_ts + _ONE_MS
            logger.warning(
                "Tombstone for %s opened at %s, not before %s; closing at %s",
                key,
                tombstone.from_ts.isoformat(),
                now.isoformat(),
                close_ts.isoformat(),
            )
        tombstone.close(close_ts)
        await tombstones.close(tombstone)
        if result is not None:
            result.stats.tombstones_closed += 1

    @staticmethod
    def _log_change(change: VisibilityChange) -> VisibilityChange:
        logger.info(
            "Project %s visibility %s -> %s (%s)",
            change.project_key,
            change.from_visibility.value,
            change.to_visibility.value,
            change.reason_code,
        )
        return change

    async def _complete(
        self,
        task: CrawlTask,
        data_ver: str,
        snapshot_ts: datetime,
        run_started: datetime,
        reconcile: bool,
        result: RunResult,
    ) -> None:
        async with self._db.get_async_session() as session:
            tasks = CrawlTaskRepository(session)
            task.mark_done()
            await tasks.save(task)
            if reconcile and await tasks.newer_window_done(task.key):
                logger.info("Task %s completed after a newer window; skipping reconciliation", task.key)
            elif reconcile:
                await self._reconcile_window(session, data_ver, snapshot_ts, run_started, result)
            else:
                logger.debug("Skipping visibility reconciliation for %s", task.key)

    async def _reconcile_window(
        self,
        session: AsyncSession,
        data_ver: str,
        snapshot_ts: datetime,
        run_started: datetime,
        result: RunResult,
    ) -> None:
        """Mark visible projects absent from a completed window as MISSING."""
        present = await SnapshotRepository(session).project_ids_at(snapshot_ts, SnapshotSource.OKX_RANK)
        if not present:
            logger.warning("Rank window dataVer=%s is empty; skipping reconciliation", data_ver)
            return
        projects = ProjectRepository(session)
        tombstones = TombstoneRepository(session)
        now = self._clock()
        for project in await projects.list_by_visibility(Exchange.OKX, Visibility.VISIBLE):
            if project.project_id() in present:
                continue
            # seen by a newer window after this run started
            if project.last_seen is not None and project.last_seen > run_started:
                continue
            reason = f"absent from rank window dataVer={data_ver}"
            project.mark_missing()
            await projects.save(project)
            try:
                await tombstones.open(
                    Tombstone.open(
                        project.key,
                        now,
                        reason_code=REASON_RANK_GAP,
                        reason_msg=reason,
                        detector=RANK_DETECTOR,
                    )
                )
                result.stats.tombstones_opened += 1
            except StateConflict:
                logger.debug("Project %s already has an open tombstone", project.key)
            change = VisibilityChange(
                project.key, Visibility.VISIBLE, Visibility.MISSING, now, REASON_RANK_GAP, reason
            )
            result.visibility_changes.append(self._log_change(change))

    async def run_pending(self, now: datetime | None = None, limit: int = 50) -> list[RunResult]:
        """Run every task that is pending or whose lease has expired."""
        now = now or self._clock()
        async with self._db.get_async_session() as session:
            tasks = await CrawlTaskRepository(session).list_runnable(Exchange.OKX, now, limit=limit)
        return [await self.run_task(task.key) for task in tasks]

    # ------------------------------------------------------------------
    # Detail and trades
    # ------------------------------------------------------------------

    async def refresh_detail(self, key: ProjectKey, now: datetime | None = None) -> VisibilityChange | None:
        """Fetch a project's detail stats and apply them.

        A 404 or 410 means the exchange no longer serves the project: it is
        marked HIDDEN and a DETAIL_4XX tombstone is opened. Any other error
        status, rate limiting included, leaves visibility untouched.

        Raises:
            TransportError: If the request produced no response.
            FetchError: For unusable statuses other than 404 and 410.
            ValidationError: If a 2xx payload is malformed.
        """
        now = now or self._clock()
        outcome, log = await self._fetch_logged(
            LEAD_TRADER_STATS_PATH, stats_params(key.external_id, self._inst_type)
        )
        if outcome.is_gone:
            async with self._db.get_async_session() as session:
                await CrawlLogRepository(session).append(log)
                return await self._hide_project(session, key, now, outcome.status_code)

        if not log.success or outcome.is_not_modified:
            await self._append_log(log)
            if outcome.is_not_modified:
                return None
            raise FetchError(f"Detail fetch for {key} failed with HTTP {log.status_code}", log.status_code)

        try:
            stats = parse_lead_trader_stats(outcome.body, key.external_id)
        except ValidationError as e:
            await self._reject(log, e)
            raise

        async with self._db.get_async_session() as session:
            await CrawlLogRepository(session).append(log)
            projects = ProjectRepository(session)
            project = await projects.get(key)
            if project is None:
                logger.warning("Detail for unknown project %s ignored", key)
                return None
            previous = project.last_visibility
            project.apply_detail(None, None, stats.raw_json, now)
            await projects.save(project)
            await SnapshotRepository(session).upsert(
                ProjectSnapshot(
                    project_key=key,
                    snapshot_ts=now,
                    source=SnapshotSource.OKX_DETAIL,
                    raw_json=stats.raw_json,
                    visibility=Visibility.VISIBLE,
                    win_ratio=stats.win_ratio,
                )
            )
            if previous is Visibility.VISIBLE:
                return None
            await self._close_open_tombstone(TombstoneRepository(session), key, now)
            return self._log_change(VisibilityChange(key, previous, Visibility.VISIBLE, now, "DETAIL_OK"))

    async def _hide_project(
        self, session: AsyncSession, key: ProjectKey, now: datetime, status_code: int
    ) -> VisibilityChange | None:
        projects = ProjectRepository(session)
        project = await projects.get(key)
        if project is None:
            logger.warning("Detail %d for unknown project %s ignored", status_code, key)
            return None
        previous = project.last_visibility
        if previous is Visibility.HIDDEN:
            return None
        project.mark_hidden()
        await projects.save(project)
        reason = f"detail endpoint returned HTTP {status_code}"
        try:
            await TombstoneRepository(session).open(
                Tombstone.open(
                    key, now, reason_code=REASON_DETAIL_4XX, reason_msg=reason, detector=DETAIL_DETECTOR
                )
            )
        except StateConflict:
            logger.debug("Project %s already has an open tombstone", key)
        change = VisibilityChange(key, previous, Visibility.HIDDEN, now, REASON_DETAIL_4XX, reason)
        return self._log_change(change)

    async def harvest_trades(self, key: ProjectKey) -> TradeHarvestResult:
        """Fetch closed sub-positions and insert the ones not yet ingested.

        Raises:
            TransportError: If the request produced no response.
            FetchError: If the response status is unusable.
            ValidationError: If the payload envelope is malformed.
        """
        outcome, log = await self._fetch_logged(
            SUBPOSITIONS_HISTORY_PATH, subpositions_params(key.external_id, self._inst_type)
        )
        if not log.success:
            await self._append_log(log)
            raise FetchError(f"Trade fetch for {key} failed with HTTP {log.status_code}", log.status_code)
        if outcome.is_not_modified:
            await self._append_log(log)
            return TradeHarvestResult(key, 0, 0, 0)
        try:
            trades = parse_subpositions(outcome.body, key)
        except ValidationError as e:
            await self._reject(log, e)
            raise

        inserted = 0
        async with self._db.get_async_session() as session:
            await CrawlLogRepository(session).append(log)
            repo = TradeRepository(session)
            for trade in trades:
                if await repo.insert_if_absent(trade):
                    inserted += 1
        result = TradeHarvestResult(key, len(trades), inserted, len(trades) - inserted)
        logger.info(
            "Harvested trades for %s: fetched=%d inserted=%d duplicates=%d",
            key,
            result.fetched,
            result.inserted,
            result.duplicates,
        )
        return result
