"""Tests for the crawl orchestrator against a simulated OKX API."""

from __future__ import annotations

import json
from collections.abc import Awaitable, Callable
from dataclasses import replace
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any
from urllib.parse import urlencode

import pytest
from sqlalchemy import select

from copytrade_harvester.domain.crawl_log import CrawlLog
from copytrade_harvester.domain.crawl_task import CrawlTaskKey
from copytrade_harvester.domain.enums import Exchange, SnapshotSource, TaskStatus, Visibility
from copytrade_harvester.domain.errors import ValidationError
from copytrade_harvester.domain.project import Project, ProjectBrief
from copytrade_harvester.domain.values import ProjectKey
from copytrade_harvester.harvester import DETAIL_DETECTOR, RANK_DETECTOR, FetchError, Harvester
from copytrade_harvester.ingestor.models import (
    LEAD_TRADER_STATS_PATH,
    LEAD_TRADERS_API,
    LEAD_TRADERS_PATH,
    SUBPOSITIONS_HISTORY_PATH,
    FetchOutcome,
    LeadTradersQuery,
)
from copytrade_harvester.ingestor.okx_client import TransportError
from copytrade_harvester.storage.database import DatabaseManager
from copytrade_harvester.storage.models import CrawlLogModel
from copytrade_harvester.storage.repos import (
    CrawlLogRepository,
    CrawlTaskRepository,
    ProjectRepository,
    SnapshotRepository,
    TombstoneRepository,
    TradeRepository,
)

if TYPE_CHECKING:
    from conftest import FakeClock

BASE_URL = "https://okx.test"
DV1 = "20240101000000"
DV2 = "20240101010000"
DV3 = "20240101020000"

Override = FetchOutcome | Exception | Callable[[dict[str, str], str], Awaitable[FetchOutcome]]


def _envelope(data: list) -> bytes:
    return json.dumps({"code": "0", "msg": "", "data": data}).encode()


def _rank(code: str) -> dict:
    return {
        "uniqueCode": code,
        "nickName": f"trader-{code}",
        "ccy": "USDT",
        "aum": "1000.5",
        "copyTraderNum": "7",
        "winRatio": "0.6",
        "pnlRatio": "0.2",
        "pnl": "200",
    }


def _subposition(sub_pos_id: str) -> dict:
    return {
        "instType": "SWAP",
        "instId": "ETH-USDT-SWAP",
        "subPosId": sub_pos_id,
        "posSide": "short",
        "subPos": "1.5",
        "openAvgPx": "2000",
        "closeAvgPx": "1900",
        "lever": "5",
        "pnl": "150",
        "ccy": "USDT",
        "openTime": "1700000000000",
        "closeTime": "1700000600000",
    }


class FakeOkx:
    """In-memory OKX copy-trading API.

    Rank generations are published by dataVer; a request without dataVer
    sees the most recently published one. Individual routes can be
    overridden with a fixed outcome, an exception to raise, or a coroutine.
    """

    def __init__(self) -> None:
        self.generations: dict[str, list[list[str]]] = {}
        self.current: str | None = None
        self.overrides: dict[tuple[str, ...], Override] = {}
        self.calls: list[tuple[str, dict[str, str]]] = []

    def publish(self, data_ver: str, pages: list[list[str]]) -> None:
        self.generations[data_ver] = pages
        self.current = data_ver

    @staticmethod
    def url(path: str, params: dict[str, str]) -> str:
        return f"{BASE_URL}{path}?{urlencode(sorted(params.items()))}"

    @staticmethod
    def route(path: str, params: dict[str, str]) -> tuple[str, ...]:
        if path == LEAD_TRADERS_PATH:
            return ("rank", params.get("page", "1"), params.get("dataVer", ""))
        return (path, params.get("uniqueCode", ""))

    def rank_page(self, params: dict[str, str], url: str) -> FetchOutcome:
        data_ver = params.get("dataVer") or self.current
        pages = self.generations[data_ver]  # type: ignore[index]
        page = int(params.get("page", "1"))
        codes = pages[page - 1] if page <= len(pages) else []
        body = _envelope(
            [{"dataVer": data_ver, "totalPage": str(len(pages)), "ranks": [_rank(c) for c in codes]}]
        )
        return FetchOutcome(200, body, etag=f'"{data_ver}-{page}"', content_length=len(body), url=url)

    async def fetch(
        self, method: str, path: str, params: dict[str, Any] | None = None, body: str | None = None
    ) -> FetchOutcome:
        params = {k: str(v) for k, v in (params or {}).items()}
        self.calls.append((path, params))
        url = self.url(path, params)
        override = self.overrides.get(self.route(path, params))
        if isinstance(override, Exception):
            raise override
        if isinstance(override, FetchOutcome):
            return replace(override, url=url)
        if override is not None:
            return await override(params, url)
        if path == LEAD_TRADERS_PATH:
            return self.rank_page(params, url)
        return FetchOutcome(404, b'{"code":"51001","msg":"not found"}', url=url)

    def pinned_pages(self, data_ver: str) -> list[str]:
        return [
            p["page"] for path, p in self.calls if path == LEAD_TRADERS_PATH and p.get("dataVer") == data_ver
        ]


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def okx() -> FakeOkx:
    return FakeOkx()


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def harvester(db_manager: DatabaseManager, okx: FakeOkx, clock: FakeClock, sleeps: list[float]) -> Harvester:
    async def fake_sleep(delay: float) -> None:
        sleeps.append(delay)

    return Harvester(
        db_manager,
        okx,
        worker_id="worker-1",
        lease_ttl_seconds=120,
        max_attempts=5,
        page_retries=2,
        retry_base_delay=1.0,
        clock=clock,
        sleep=fake_sleep,
    )


def _pk(code: str) -> ProjectKey:
    return ProjectKey.of("OKX", code)


async def _project(db: DatabaseManager, code: str) -> Project | None:
    async with db.get_async_session() as session:
        return await ProjectRepository(session).get(_pk(code))


async def _all_logs(db: DatabaseManager) -> list[CrawlLogModel]:
    async with db.get_async_session() as session:
        result = await session.execute(select(CrawlLogModel).order_by(CrawlLogModel.id))
        return list(result.scalars().all())


async def _crawl(harvester: Harvester, query: LeadTradersQuery | None = None):
    task = await harvester.discover_rank_task(query or LeadTradersQuery())
    return await harvester.run_task(task.key)


# ============================================================================
# Discovery Tests
# ============================================================================


class TestDiscoverRankTask:
    """Tests for Harvester.discover_rank_task."""

    async def test_creates_task_for_current_window(self, harvester: Harvester, okx: FakeOkx) -> None:
        okx.publish(DV1, [["A", "B"], ["C"]])

        task = await harvester.discover_rank_task(LeadTradersQuery())

        assert task.key.api_name == LEAD_TRADERS_API
        assert task.key.window_key == f"dataVer={DV1}"
        assert task.key.params_hash == LeadTradersQuery().params_hash()
        assert task.total_page == 2
        assert task.status is TaskStatus.PENDING
        path, params = okx.calls[0]
        assert path == LEAD_TRADERS_PATH
        assert params["page"] == "1"
        assert "dataVer" not in params

    async def test_is_idempotent(self, harvester: Harvester, okx: FakeOkx) -> None:
        okx.publish(DV1, [["A"]])

        first = await harvester.discover_rank_task(LeadTradersQuery())
        second = await harvester.discover_rank_task(LeadTradersQuery(page=3))

        assert first.id == second.id

    async def test_total_page_only_grows(self, harvester: Harvester, okx: FakeOkx) -> None:
        okx.publish(DV1, [["A"], ["B"]])
        await harvester.discover_rank_task(LeadTradersQuery())

        okx.publish(DV1, [["A"], ["B"], ["C"]])
        grown = await harvester.discover_rank_task(LeadTradersQuery())
        okx.publish(DV1, [["A"]])
        kept = await harvester.discover_rank_task(LeadTradersQuery())

        assert grown.total_page == 3
        assert kept.total_page == 3

    async def test_new_generation_is_new_task(self, harvester: Harvester, okx: FakeOkx) -> None:
        okx.publish(DV1, [["A"]])
        first = await harvester.discover_rank_task(LeadTradersQuery())
        okx.publish(DV2, [["A"]])
        second = await harvester.discover_rank_task(LeadTradersQuery())

        assert first.id != second.id
        assert second.key.window_key == f"dataVer={DV2}"

    async def test_http_error(self, harvester: Harvester, okx: FakeOkx, db_manager: DatabaseManager) -> None:
        okx.overrides[("rank", "1", "")] = FetchOutcome(503, b"busy")

        with pytest.raises(FetchError) as exc_info:
            await harvester.discover_rank_task(LeadTradersQuery())

        assert exc_info.value.status_code == 503
        logs = await _all_logs(db_manager)
        assert len(logs) == 1
        assert logs[0].success is False
        assert logs[0].error_msg == "HTTP 503: busy"

    async def test_missing_data_ver(
        self, harvester: Harvester, okx: FakeOkx, db_manager: DatabaseManager
    ) -> None:
        okx.overrides[("rank", "1", "")] = FetchOutcome(200, _envelope([]))

        with pytest.raises(ValidationError):
            await harvester.discover_rank_task(LeadTradersQuery())

        logs = await _all_logs(db_manager)
        assert [(log.success, log.status_code) for log in logs] == [(False, 200)]
        assert "dataVer" in (logs[0].error_msg or "")


# ============================================================================
# Run Tests
# ============================================================================


class TestRunTask:
    """Tests for Harvester.run_task."""

    async def test_full_run(
        self, harvester: Harvester, okx: FakeOkx, db_manager: DatabaseManager, t0: datetime
    ) -> None:
        okx.publish(DV1, [["A", "B"], ["C"]])

        result = await _crawl(harvester)

        assert result.acquired
        assert result.status is TaskStatus.DONE
        assert not result.lease_lost
        assert result.stats.pages_processed == 2
        assert result.stats.projects_created == 3
        assert result.stats.snapshots_written == 3
        assert result.visibility_changes == []
        assert okx.pinned_pages(DV1) == ["1", "2"]

        async with db_manager.get_async_session() as session:
            task = await CrawlTaskRepository(session).get(result.key)
            snapshot = await SnapshotRepository(session).get(_pk("A"), t0, SnapshotSource.OKX_RANK)
            logs = await CrawlLogRepository(session).list_for_task(task.id)  # type: ignore[union-attr]
        assert task is not None
        assert task.lease is None
        assert task.next_page == 3
        assert snapshot is not None
        assert snapshot.data_ver == DV1
        assert snapshot.followers == 7
        assert [log.success for log in logs] == [True, True]

        project = await _project(db_manager, "C")
        assert project is not None
        assert project.name == "trader-C"
        assert project.is_visible

    async def test_done_task_not_reacquired(self, harvester: Harvester, okx: FakeOkx) -> None:
        okx.publish(DV1, [["A"]])
        first = await _crawl(harvester)

        again = await harvester.run_task(first.key)

        assert not again.acquired
        assert okx.pinned_pages(DV1) == ["1"]

    async def test_not_modified_page_skips_ingest(
        self, harvester: Harvester, okx: FakeOkx, db_manager: DatabaseManager
    ) -> None:
        okx.publish(DV1, [["A", "B"], ["C"]])
        okx.overrides[("rank", "1", DV1)] = FetchOutcome(304)

        result = await _crawl(harvester)

        assert result.status is TaskStatus.DONE
        assert result.stats.pages_processed == 2
        assert result.stats.pages_unchanged == 1
        assert result.stats.projects_created == 1
        assert await _project(db_manager, "A") is None

    async def test_same_etag_skips_ingest(
        self, harvester: Harvester, okx: FakeOkx, db_manager: DatabaseManager, t0: datetime
    ) -> None:
        okx.publish(DV1, [["A"]])
        task = await harvester.discover_rank_task(LeadTradersQuery())
        params = LeadTradersQuery().with_page(1, DV1).to_request_params()
        async with db_manager.get_async_session() as session:
            await CrawlLogRepository(session).append(
                CrawlLog.from_success(
                    exchange=Exchange.OKX,
                    task_id=task.id,
                    target=okx.url(LEAD_TRADERS_PATH, params),
                    method="GET",
                    request_params_json=None,
                    params_hash=None,
                    started_at=t0,
                    finished_at=t0,
                    status_code=200,
                    etag=f'"{DV1}-1"',
                )
            )

        result = await harvester.run_task(task.key)

        assert result.status is TaskStatus.DONE
        assert result.stats.pages_unchanged == 1
        assert await _project(db_manager, "A") is None

    async def test_lost_acquire(
        self, harvester: Harvester, okx: FakeOkx, db_manager: DatabaseManager, clock: FakeClock
    ) -> None:
        okx.publish(DV1, [["A"]])
        task = await harvester.discover_rank_task(LeadTradersQuery())
        async with db_manager.get_async_session() as session:
            await CrawlTaskRepository(session).try_acquire(task.key, "worker-2", clock.now, 600)

        result = await harvester.run_task(task.key)

        assert not result.acquired
        assert result.status is None
        assert okx.pinned_pages(DV1) == []

    async def test_takes_over_expired_lease(
        self, harvester: Harvester, okx: FakeOkx, db_manager: DatabaseManager, clock: FakeClock
    ) -> None:
        okx.publish(DV1, [["A"]])
        task = await harvester.discover_rank_task(LeadTradersQuery())
        async with db_manager.get_async_session() as session:
            await CrawlTaskRepository(session).try_acquire(task.key, "worker-2", clock.now, 60)
        clock.advance(timedelta(minutes=5))

        result = await harvester.run_task(task.key)

        assert result.acquired
        assert result.status is TaskStatus.DONE

    async def test_page_errors_release_then_fail(
        self, harvester: Harvester, okx: FakeOkx, db_manager: DatabaseManager, sleeps: list[float]
    ) -> None:
        okx.publish(DV1, [["A"]])
        okx.overrides[("rank", "1", DV1)] = FetchOutcome(503, b"busy")

        first = await _crawl(harvester)

        assert first.acquired
        assert first.status is TaskStatus.RUNNING
        assert first.last_error == "page 1: HTTP 503"
        assert first.stats.page_errors == 3
        assert sleeps == [1.0, 2.0]
        async with db_manager.get_async_session() as session:
            released = await CrawlTaskRepository(session).get(first.key)
        assert released is not None
        assert released.lease is None
        assert released.attempts == 3

        second = await harvester.run_task(first.key)

        assert second.status is TaskStatus.FAILED
        assert second.stats.page_errors == 2
        assert sleeps == [1.0, 2.0, 1.0]
        async with db_manager.get_async_session() as session:
            failed = await CrawlTaskRepository(session).get(first.key)
            logs = await CrawlLogRepository(session).list_for_task(failed.id)  # type: ignore[union-attr]
        assert failed is not None
        assert failed.status is TaskStatus.FAILED
        assert failed.attempts == 5
        assert [log.status_code for log in logs] == [503] * 5

    async def test_recovers_from_transport_error(
        self, harvester: Harvester, okx: FakeOkx, db_manager: DatabaseManager, sleeps: list[float]
    ) -> None:
        okx.publish(DV1, [["A"]])
        failures = [TransportError("connection reset", url="https://okx.test/reset")]

        async def flaky(params: dict[str, str], url: str) -> FetchOutcome:
            if failures:
                raise failures.pop()
            return okx.rank_page(params, url)

        okx.overrides[("rank", "1", DV1)] = flaky

        result = await _crawl(harvester)

        assert result.status is TaskStatus.DONE
        assert result.stats.page_errors == 1
        assert sleeps == [1.0]
        async with db_manager.get_async_session() as session:
            task = await CrawlTaskRepository(session).get(result.key)
            logs = await CrawlLogRepository(session).list_for_task(task.id)  # type: ignore[union-attr]
        assert task is not None and task.attempts == 1
        assert [(log.success, log.status_code) for log in logs] == [(False, 0), (True, 200)]
        assert logs[0].error_msg == "connection reset"

    async def test_transport_error_exhausts_attempts(
        self, db_manager: DatabaseManager, okx: FakeOkx, clock: FakeClock
    ) -> None:
        harvester = Harvester(db_manager, okx, worker_id="worker-1", max_attempts=1, clock=clock)
        okx.publish(DV1, [["A"]])
        okx.overrides[("rank", "1", DV1)] = TransportError("timed out")

        result = await _crawl(harvester)

        assert result.status is TaskStatus.FAILED
        assert result.last_error == "page 1: timed out"

    async def test_lease_lost_rolls_back_page(
        self, harvester: Harvester, okx: FakeOkx, db_manager: DatabaseManager
    ) -> None:
        okx.publish(DV1, [["A"]])
        task = await harvester.discover_rank_task(LeadTradersQuery())

        async def cancel_meanwhile(params: dict[str, str], url: str) -> FetchOutcome:
            async with db_manager.get_async_session() as session:
                repo = CrawlTaskRepository(session)
                current = await repo.get(task.key)
                current.cancel()  # type: ignore[union-attr]
                await repo.save(current)  # type: ignore[arg-type]
            return okx.rank_page(params, url)

        okx.overrides[("rank", "1", DV1)] = cancel_meanwhile

        result = await harvester.run_task(task.key)

        assert result.lease_lost
        assert await _project(db_manager, "A") is None
        async with db_manager.get_async_session() as session:
            stored = await CrawlTaskRepository(session).get(task.key)
        assert stored is not None
        assert stored.status is TaskStatus.CANCELLED
        assert stored.next_page == 1

    async def test_ingest_failure_is_logged(
        self,
        harvester: Harvester,
        okx: FakeOkx,
        db_manager: DatabaseManager,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        okx.publish(DV1, [["A"]])
        ingest = harvester._ingest_ranks
        failures = [ValidationError("win_ratio out of range")]

        async def failing_once(*args: Any, **kwargs: Any) -> None:
            if failures:
                raise failures.pop()
            await ingest(*args, **kwargs)

        monkeypatch.setattr(harvester, "_ingest_ranks", failing_once)

        result = await _crawl(harvester)

        assert result.status is TaskStatus.DONE
        assert result.stats.page_errors == 1
        async with db_manager.get_async_session() as session:
            task = await CrawlTaskRepository(session).get(result.key)
            logs = await CrawlLogRepository(session).list_for_task(task.id)  # type: ignore[union-attr]
        assert [(log.success, log.status_code) for log in logs] == [(False, 200), (True, 200)]
        assert logs[0].error_msg == "win_ratio out of range"

    async def test_tombstone_from_clock_ahead_does_not_abort(
        self, harvester: Harvester, okx: FakeOkx, db_manager: DatabaseManager, clock: FakeClock
    ) -> None:
        okx.publish(DV1, [["A"]])
        await _crawl(harvester)
        okx.overrides[(LEAD_TRADER_STATS_PATH, "A")] = FetchOutcome(404, b"gone")
        hidden_at = clock.now + timedelta(minutes=5)
        await harvester.refresh_detail(_pk("A"), now=hidden_at)

        okx.publish(DV2, [["A"]])
        result = await _crawl(harvester)

        assert not result.lease_lost
        assert result.status is TaskStatus.DONE
        assert result.stats.tombstones_closed == 1
        project = await _project(db_manager, "A")
        assert project is not None and project.is_visible
        async with db_manager.get_async_session() as session:
            [tombstone] = await TombstoneRepository(session).list_for_project(_pk("A"))
        assert tombstone.from_ts == hidden_at
        assert tombstone.to_ts == hidden_at + timedelta(milliseconds=1)

    async def test_run_pending(self, harvester: Harvester, okx: FakeOkx) -> None:
        okx.publish(DV1, [["A"]])
        await harvester.discover_rank_task(LeadTradersQuery())
        await harvester.discover_rank_task(LeadTradersQuery(min_lead_days="7"))

        results = await harvester.run_pending()

        assert len(results) == 2
        assert all(r.status is TaskStatus.DONE for r in results)
        assert await harvester.run_pending() == []


# ============================================================================
# Reconciliation Tests
# ============================================================================


class TestReconciliation:
    """Tests for visibility reconciliation after a completed window."""

    async def test_absent_project_marked_missing(
        self, harvester: Harvester, okx: FakeOkx, db_manager: DatabaseManager
    ) -> None:
        okx.publish(DV1, [["A", "B"], ["C"]])
        await _crawl(harvester)

        okx.publish(DV2, [["A", "B"]])
        result = await _crawl(harvester)

        assert result.status is TaskStatus.DONE
        assert result.stats.tombstones_opened == 1
        [change] = result.visibility_changes
        assert change.project_key == _pk("C")
        assert change.from_visibility is Visibility.VISIBLE
        assert change.to_visibility is Visibility.MISSING
        assert change.reason_code == "RANK_GAP"

        project = await _project(db_manager, "C")
        assert project is not None
        assert project.last_visibility is Visibility.MISSING
        async with db_manager.get_async_session() as session:
            tombstone = await TombstoneRepository(session).get_open(_pk("C"))
        assert tombstone is not None
        assert tombstone.reason_code == "RANK_GAP"
        assert tombstone.detector == RANK_DETECTOR
        assert DV2 in (tombstone.reason_msg or "")

    async def test_reappearance_closes_tombstone(
        self, harvester: Harvester, okx: FakeOkx, db_manager: DatabaseManager
    ) -> None:
        okx.publish(DV1, [["A", "B", "C"]])
        await _crawl(harvester)
        okx.publish(DV2, [["A", "B"]])
        await _crawl(harvester)

        okx.publish(DV3, [["A", "C"]])
        result = await _crawl(harvester)

        assert result.stats.tombstones_closed == 1
        assert [(c.project_key.external_id, c.reason_code) for c in result.visibility_changes] == [
            ("C", "RANK_SEEN"),
            ("B", "RANK_GAP"),
        ]
        project = await _project(db_manager, "C")
        assert project is not None and project.is_visible
        async with db_manager.get_async_session() as session:
            tombstones = await TombstoneRepository(session).list_for_project(_pk("C"))
        assert len(tombstones) == 1
        assert not tombstones[0].is_open()

    async def test_filtered_query_never_marks_missing(
        self, harvester: Harvester, okx: FakeOkx, db_manager: DatabaseManager
    ) -> None:
        okx.publish(DV1, [["A", "B"]])
        await _crawl(harvester)

        okx.publish(DV2, [["A"]])
        result = await _crawl(harvester, LeadTradersQuery(min_aum="100"))

        assert result.status is TaskStatus.DONE
        assert result.visibility_changes == []
        project = await _project(db_manager, "B")
        assert project is not None and project.is_visible

    async def test_empty_window_skips_reconciliation(
        self, harvester: Harvester, okx: FakeOkx, db_manager: DatabaseManager
    ) -> None:
        okx.publish(DV1, [["A"]])
        await _crawl(harvester)

        okx.publish(DV2, [])
        result = await _crawl(harvester)

        assert result.status is TaskStatus.DONE
        assert result.visibility_changes == []
        project = await _project(db_manager, "A")
        assert project is not None and project.is_visible

    async def test_window_older_than_completed_one_skips_reconciliation(
        self, harvester: Harvester, okx: FakeOkx, db_manager: DatabaseManager
    ) -> None:
        okx.publish(DV1, [["A", "B"]])
        stale = await harvester.discover_rank_task(LeadTradersQuery())
        okx.publish(DV2, [["A", "C"]])
        await _crawl(harvester)

        result = await harvester.run_task(stale.key)

        assert result.status is TaskStatus.DONE
        assert result.visibility_changes == []
        assert result.stats.tombstones_opened == 0
        project = await _project(db_manager, "C")
        assert project is not None and project.is_visible
        async with db_manager.get_async_session() as session:
            assert await TombstoneRepository(session).get_open(_pk("C")) is None


# ============================================================================
# Detail Tests
# ============================================================================


class TestRefreshDetail:
    """Tests for Harvester.refresh_detail."""

    @pytest.fixture
    async def known_project(self, db_manager: DatabaseManager, t0: datetime) -> ProjectKey:
        async with db_manager.get_async_session() as session:
            await ProjectRepository(session).save(
                Project.new_from_brief(_pk("A"), ProjectBrief(external_id="A", name="Alpha"), t0)
            )
        return _pk("A")

    async def test_client_error_hides_project(
        self, harvester: Harvester, okx: FakeOkx, db_manager: DatabaseManager, known_project: ProjectKey
    ) -> None:
        okx.overrides[(LEAD_TRADER_STATS_PATH, "A")] = FetchOutcome(404, b"gone")

        change = await harvester.refresh_detail(known_project)

        assert change is not None
        assert change.from_visibility is Visibility.VISIBLE
        assert change.to_visibility is Visibility.HIDDEN
        assert change.reason_code == "DETAIL_4XX"
        project = await _project(db_manager, "A")
        assert project is not None and project.last_visibility is Visibility.HIDDEN
        async with db_manager.get_async_session() as session:
            tombstone = await TombstoneRepository(session).get_open(known_project)
        assert tombstone is not None
        assert tombstone.detector == DETAIL_DETECTOR
        assert tombstone.reason_msg == "detail endpoint returned HTTP 404"

        assert await harvester.refresh_detail(known_project) is None

    async def test_success_restores_visibility(
        self, harvester: Harvester, okx: FakeOkx, db_manager: DatabaseManager, known_project: ProjectKey
    ) -> None:
        okx.overrides[(LEAD_TRADER_STATS_PATH, "A")] = FetchOutcome(404, b"gone")
        await harvester.refresh_detail(known_project)
        stats = {"winRatio": "0.5", "investAmt": "1000", "ccy": "USDT"}
        okx.overrides[(LEAD_TRADER_STATS_PATH, "A")] = FetchOutcome(200, _envelope([stats]))

        change = await harvester.refresh_detail(known_project)

        assert change is not None
        assert change.from_visibility is Visibility.HIDDEN
        assert change.to_visibility is Visibility.VISIBLE
        assert change.reason_code == "DETAIL_OK"
        project = await _project(db_manager, "A")
        assert project is not None and project.is_visible
        assert json.loads(project.extra or "{}")["investAmt"] == "1000"
        async with db_manager.get_async_session() as session:
            assert await TombstoneRepository(session).get_open(known_project) is None
            points = await SnapshotRepository(session).series(known_project, source=SnapshotSource.OKX_DETAIL)
        assert len(points) == 1

    async def test_visible_project_refreshed_without_change(
        self, harvester: Harvester, okx: FakeOkx, known_project: ProjectKey
    ) -> None:
        okx.overrides[(LEAD_TRADER_STATS_PATH, "A")] = FetchOutcome(200, _envelope([{"winRatio": "0.4"}]))

        assert await harvester.refresh_detail(known_project) is None

    async def test_not_modified(self, harvester: Harvester, okx: FakeOkx, known_project: ProjectKey) -> None:
        okx.overrides[(LEAD_TRADER_STATS_PATH, "A")] = FetchOutcome(304)

        assert await harvester.refresh_detail(known_project) is None

    async def test_server_error_raises(
        self, harvester: Harvester, okx: FakeOkx, known_project: ProjectKey
    ) -> None:
        okx.overrides[(LEAD_TRADER_STATS_PATH, "A")] = FetchOutcome(500, b"oops")

        with pytest.raises(FetchError):
            await harvester.refresh_detail(known_project)

    @pytest.mark.parametrize("status", [429, 401, 403])
    async def test_other_client_errors_keep_visibility(
        self,
        harvester: Harvester,
        okx: FakeOkx,
        db_manager: DatabaseManager,
        known_project: ProjectKey,
        status: int,
    ) -> None:
        okx.overrides[(LEAD_TRADER_STATS_PATH, "A")] = FetchOutcome(status, b"slow down")

        with pytest.raises(FetchError) as exc_info:
            await harvester.refresh_detail(known_project)

        assert exc_info.value.status_code == status
        project = await _project(db_manager, "A")
        assert project is not None and project.is_visible
        async with db_manager.get_async_session() as session:
            assert await TombstoneRepository(session).get_open(known_project) is None
        [log] = await _all_logs(db_manager)
        assert not log.success
        assert log.status_code == status

    async def test_gone_status_hides_project(
        self, harvester: Harvester, okx: FakeOkx, db_manager: DatabaseManager, known_project: ProjectKey
    ) -> None:
        okx.overrides[(LEAD_TRADER_STATS_PATH, "A")] = FetchOutcome(410, b"gone")

        change = await harvester.refresh_detail(known_project)

        assert change is not None
        assert change.to_visibility is Visibility.HIDDEN
        project = await _project(db_manager, "A")
        assert project is not None and project.last_visibility is Visibility.HIDDEN

    async def test_unknown_project_ignored(self, harvester: Harvester) -> None:
        assert await harvester.refresh_detail(_pk("nobody")) is None


# ============================================================================
# Trade Tests
# ============================================================================


class TestHarvestTrades:
    """Tests for Harvester.harvest_trades."""

    async def test_inserts_once(
        self, harvester: Harvester, okx: FakeOkx, db_manager: DatabaseManager
    ) -> None:
        body = _envelope([_subposition("1001"), _subposition("1002")])
        okx.overrides[(SUBPOSITIONS_HISTORY_PATH, "A")] = FetchOutcome(200, body)

        first = await harvester.harvest_trades(_pk("A"))
        second = await harvester.harvest_trades(_pk("A"))

        assert (first.fetched, first.inserted, first.duplicates) == (2, 2, 0)
        assert (second.fetched, second.inserted, second.duplicates) == (2, 0, 2)
        async with db_manager.get_async_session() as session:
            rows = await TradeRepository(session).rows_for_project(_pk("A"))
        assert len(rows) == 2
        assert {row.side for row in rows} == {"SHORT"}
        assert rows[0].duration_sec == 600

    async def test_http_error(self, harvester: Harvester, okx: FakeOkx) -> None:
        okx.overrides[(SUBPOSITIONS_HISTORY_PATH, "A")] = FetchOutcome(429, b"slow down")

        with pytest.raises(FetchError) as exc_info:
            await harvester.harvest_trades(_pk("A"))

        assert exc_info.value.status_code == 429

    async def test_not_modified(self, harvester: Harvester, okx: FakeOkx) -> None:
        okx.overrides[(SUBPOSITIONS_HISTORY_PATH, "A")] = FetchOutcome(304)

        result = await harvester.harvest_trades(_pk("A"))

        assert (result.fetched, result.inserted) == (0, 0)


def test_task_key_of_discovered_window() -> None:
    key = CrawlTaskKey(
        exchange=Exchange.OKX,
        api_name=LEAD_TRADERS_API,
        params_hash=LeadTradersQuery().params_hash(),
        window_key=f"dataVer={DV1}",
    )
    assert str(key).endswith(f"/dataVer={DV1}")
