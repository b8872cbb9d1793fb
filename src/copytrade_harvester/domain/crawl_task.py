"""CrawlTask aggregate: lease and pagination state machine.

One task exists per (exchange, api name, normalized params hash, window key).
It records pagination progress and carries a time-bounded lease so that at
most one worker paginates a target at a time.

All time-dependent operations take ``now`` explicitly; the aggregate never
reads a clock. It is not thread-safe: cross-worker exclusion comes from the
repository's compare-and-set on save.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from copytrade_harvester.domain.enums import Exchange, TaskStatus, is_terminal
from copytrade_harvester.domain.errors import StateConflict, ValidationError
from copytrade_harvester.domain.values import ensure_utc, require_not_blank


@dataclass(frozen=True)
class CrawlTaskKey:
    """Business identity of a CrawlTask."""

    exchange: Exchange
    api_name: str
    params_hash: str
    window_key: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "exchange", Exchange.parse(self.exchange))
        object.__setattr__(self, "api_name", require_not_blank(self.api_name, "api_name"))
        object.__setattr__(self, "params_hash", require_not_blank(self.params_hash, "params_hash"))
        object.__setattr__(self, "window_key", require_not_blank(self.window_key, "window_key"))

    def __str__(self) -> str:
        return f"{self.exchange.value}/{self.api_name}/{self.params_hash[:12]}/{self.window_key}"


@dataclass(frozen=True)
class Lease:
    """Time-bounded ownership claim: holder, grant time and TTL in seconds."""

    holder: str
    granted_at: datetime
    ttl_sec: int

    def __post_init__(self) -> None:
        object.__setattr__(self, "holder", require_not_blank(self.holder, "holder"))
        object.__setattr__(self, "granted_at", ensure_utc(self.granted_at))
        _ensure_ttl(self.ttl_sec)

    @property
    def expires_at(self) -> datetime:
        return self.granted_at + timedelta(seconds=self.ttl_sec)

    def is_valid(self, now: datetime) -> bool:
        return self.expires_at > ensure_utc(now)


def _ensure_ttl(ttl_sec: int) -> None:
    if ttl_sec <= 0:
        raise ValidationError(f"ttl_sec must be positive, got {ttl_sec}")


@dataclass
class CrawlTask:
    """Crawl progress for one target within one data window.

    Attributes:
        key: Business identity (exchange, api_name, params_hash, window_key).
        params_json: Normalized query parameters the task was created from.
        total_page: Known page count; never decreases once set.
        next_page: Next page to process (1-based), advanced strictly by one.
        status: Lifecycle state; DONE/FAILED/EXPIRED/CANCELLED are final.
        attempts: Number of recorded (non-terminal) errors.
        last_error: Most recent error message, cleared on successful progress.
        lease: Current lease, or None.
        id: Storage identifier, assigned by the repository.
        version: Storage revision used for compare-and-set saves.
    """

    key: CrawlTaskKey
    params_json: str | None = None
    total_page: int | None = None
    next_page: int = 1
    status: TaskStatus = TaskStatus.PENDING
    attempts: int = 0
    last_error: str | None = None
    lease: Lease | None = None
    id: int | None = None
    version: int = 0

    def __post_init__(self) -> None:
        if self.key is None:
            raise ValidationError("key must not be None")
        self.status = TaskStatus.parse(self.status)  # type: ignore[assignment]
        if self.next_page < 1:
            raise ValidationError(f"next_page must be >= 1, got {self.next_page}")
        if self.total_page is not None and self.total_page < 0:
            raise ValidationError(f"total_page must be >= 0, got {self.total_page}")
        if self.attempts < 0:
            raise ValidationError(f"attempts must be >= 0, got {self.attempts}")
        if self.is_terminal and self.lease is not None:
            raise ValidationError(f"terminal task ({self.status.value}) cannot carry a lease")

    @classmethod
    def create(
        cls,
        exchange: Exchange | str,
        api_name: str,
        params_hash: str,
        window_key: str,
        *,
        params_json: str | None = None,
    ) -> CrawlTask:
        """Create a new PENDING task starting at page 1."""
        key = CrawlTaskKey(
            exchange=exchange,  # type: ignore[arg-type]
            api_name=api_name,
            params_hash=params_hash,
            window_key=window_key,
        )
        return cls(key=key, params_json=params_json)

    # ------------------------------------------------------------------
    # Guards
    # ------------------------------------------------------------------

    @property
    def is_terminal(self) -> bool:
        return is_terminal(self.status)

    def has_valid_lock(self, now: datetime) -> bool:
        """True while a lease is set and has not expired at ``now``."""
        return self.lease is not None and self.lease.is_valid(now)

    def ensure_runnable(self, now: datetime) -> None:
        if self.status is not TaskStatus.RUNNING:
            raise StateConflict(f"Task {self.key} is not RUNNING (status={self.status.value})")
        if not self.has_valid_lock(now):
            raise StateConflict(f"Task {self.key} has no valid lease")

    def should_skip_page(self, page: int) -> bool:
        """True if ``page`` was already processed."""
        return page < self.next_page

    def is_finished(self) -> bool:
        """True once every known page has been processed."""
        return self.total_page is not None and self.next_page > self.total_page

    # ------------------------------------------------------------------
    # Lease
    # ------------------------------------------------------------------

    def acquire(self, worker_id: str, now: datetime, ttl_sec: int) -> None:
        """Take (or re-take) the lease; PENDING becomes RUNNING.

        Raises:
            StateConflict: If the task is terminal or another holder's lease is valid.
            ValidationError: If ``worker_id`` is blank or ``ttl_sec`` is not positive.
        """
        self._ensure_not_terminal()
        self._ensure_status(TaskStatus.PENDING, TaskStatus.RUNNING)
        lease = Lease(holder=worker_id, granted_at=now, ttl_sec=ttl_sec)
        current = self.lease
        if current is not None and current.is_valid(now) and current.holder != lease.holder:
            raise StateConflict(
                f"Task {self.key} is leased by {current.holder} until {current.expires_at.isoformat()}"
            )
        self.lease = lease
        if self.status is TaskStatus.PENDING:
            self.status = TaskStatus.RUNNING

    def renew(self, worker_id: str, now: datetime, ttl_sec: int) -> None:
        """Extend the lease; only the current holder may renew an unexpired lease.

        Fails closed: a worker whose lease expired must stop instead of
        continuing under a stale ownership assumption.
        """
        self._ensure_not_terminal()
        _ensure_ttl(ttl_sec)
        if self.lease is None or self.lease.holder != worker_id:
            holder = self.lease.holder if self.lease else None
            raise StateConflict(f"{worker_id} does not hold the lease on {self.key} (holder={holder})")
        if not self.lease.is_valid(now):
            raise StateConflict(
                f"Lease on {self.key} expired at {self.lease.expires_at.isoformat()}, cannot renew"
            )
        self.lease = Lease(holder=worker_id, granted_at=now, ttl_sec=ttl_sec)

    def release(self, worker_id: str) -> None:
        """Give up the lease without changing status."""
        self._ensure_not_terminal()
        if self.lease is None or self.lease.holder != worker_id:
            raise StateConflict(f"{worker_id} does not hold the lease on {self.key}")
        self.lease = None

    # ------------------------------------------------------------------
    # Pagination and completion
    # ------------------------------------------------------------------

    def on_page_processed(self, page: int) -> None:
        """Advance past ``page``, which must be exactly ``next_page``."""
        self._ensure_status(TaskStatus.RUNNING)
        if page != self.next_page:
            raise StateConflict(f"Processed page {page} but next page is {self.next_page}")
        if self.total_page is not None and not 1 <= page <= self.total_page:
            raise StateConflict(f"Page {page} out of range (total_page={self.total_page})")
        self.next_page = page + 1
        self.last_error = None

    def set_total_page(self, total: int) -> None:
        """Raise the known page count; shrinking is rejected to avoid early completion."""
        self._ensure_not_terminal()
        if total < 0:
            raise ValidationError(f"total_page must be >= 0, got {total}")
        if self.total_page is not None and total < self.total_page:
            raise StateConflict(f"total_page cannot decrease (current={self.total_page}, new={total})")
        self.total_page = total

    def mark_done(self) -> None:
        self._ensure_not_terminal()
        if not self.is_finished():
            raise StateConflict(
                f"Task {self.key} has unprocessed pages "
                f"(next_page={self.next_page}, total_page={self.total_page})"
            )
        self.status = TaskStatus.DONE
        self.lease = None

    def mark_expired(self) -> None:
        self._ensure_not_terminal()
        self.status = TaskStatus.EXPIRED
        self.lease = None

    def cancel(self) -> None:
        self._ensure_not_terminal()
        self.status = TaskStatus.CANCELLED
        self.lease = None

    # ------------------------------------------------------------------
    # Errors
    # ------------------------------------------------------------------

    def record_error(self, err: str) -> None:
        """Count a failed attempt but keep RUNNING; the caller decides whether to retry."""
        self._ensure_status(TaskStatus.RUNNING)
        self.attempts += 1
        self.last_error = err

    def mark_failed(self, err: str) -> None:
        self._ensure_not_terminal()
        self.status = TaskStatus.FAILED
        self.last_error = err
        self.lease = None

    # ------------------------------------------------------------------

    def _ensure_not_terminal(self) -> None:
        if self.is_terminal:
            raise StateConflict(f"Task {self.key} is already {self.status.value}")

    def _ensure_status(self, *allowed: TaskStatus) -> None:
        if self.status not in allowed:
            names = "/".join(s.value for s in allowed)
            raise StateConflict(f"Operation requires {names}, task {self.key} is {self.status.value}")
