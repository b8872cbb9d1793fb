"""CrawlLog: append-only ledger entry for one fetch attempt.

A log separates "was this attempt usable" (``success``) from "is the content
identical to what we already have" (:meth:`CrawlLog.same_content_as`), so
callers can skip re-parsing unchanged pages while still auditing every attempt.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from datetime import datetime
from email.utils import parsedate_to_datetime

from copytrade_harvester.domain.enums import Exchange
from copytrade_harvester.domain.errors import ValidationError
from copytrade_harvester.domain.values import ensure_utc, require_not_none, to_epoch_millis

NOT_MODIFIED = 304


def sha256_hex(body: bytes | str) -> str:
    """SHA-256 hex digest of a response body."""
    if isinstance(body, str):
        body = body.encode("utf-8")
    return hashlib.sha256(body).hexdigest()


def parse_http_date(raw: str | None) -> datetime | None:
    """Parse an HTTP-date header value (e.g. Last-Modified); None if unparsable."""
    if raw is None or not raw.strip():
        return None
    try:
        return ensure_utc(parsedate_to_datetime(raw))
    except (TypeError, ValueError):
        return None


def _is_success_status(status_code: int) -> bool:
    return 200 <= status_code <= 299 or status_code == NOT_MODIFIED


@dataclass(frozen=True)
class CrawlLog:
    """Immutable record of one fetch attempt.

    Build instances through :meth:`from_success` or :meth:`from_failure`,
    which derive ``success`` and ``not_modified`` from the status code.
    """

    exchange: Exchange | None
    task_id: int | None
    target: str | None
    method: str | None
    request_params_json: str | None
    params_hash: str | None
    started_at: datetime | None
    finished_at: datetime | None
    status_code: int
    success: bool
    not_modified: bool
    content_length: int | None = None
    etag: str | None = None
    last_modified_raw: str | None = None
    last_modified_at: datetime | None = None
    content_hash: str | None = None
    error_msg: str | None = None
    id: int | None = None

    @classmethod
    def from_success(
        cls,
        *,
        exchange: Exchange | None,
        task_id: int | None,
        target: str | None,
        method: str | None,
        request_params_json: str | None,
        params_hash: str | None,
        started_at: datetime | None,
        finished_at: datetime | None,
        status_code: int | None,
        content_length: int | None = None,
        etag: str | None = None,
        last_modified_raw: str | None = None,
        last_modified_at: datetime | None = None,
        content_hash: str | None = None,
    ) -> CrawlLog:
        """Log a usable response (2xx, or 304 Not Modified)."""
        require_not_none(started_at, "started_at")
        require_not_none(finished_at, "finished_at")
        require_not_none(status_code, "status_code")
        if content_length is not None and content_length < 0:
            raise ValidationError(f"content_length must be >= 0, got {content_length}")
        if not _is_success_status(status_code):  # type: ignore[arg-type]
            raise ValidationError(f"status {status_code} is not a success; use from_failure")
        return cls(
            exchange=exchange,
            task_id=task_id,
            target=target,
            method=method,
            request_params_json=request_params_json,
            params_hash=params_hash,
            started_at=ensure_utc(started_at),  # type: ignore[arg-type]
            finished_at=ensure_utc(finished_at),  # type: ignore[arg-type]
            status_code=status_code,  # type: ignore[arg-type]
            success=True,
            not_modified=status_code == NOT_MODIFIED,
            content_length=content_length,
            etag=etag,
            last_modified_raw=last_modified_raw,
            last_modified_at=ensure_utc(last_modified_at) if last_modified_at else None,
            content_hash=content_hash,
        )

    @classmethod
    def from_failure(
        cls,
        *,
        exchange: Exchange | None,
        task_id: int | None,
        target: str | None,
        method: str | None,
        request_params_json: str | None,
        params_hash: str | None,
        started_at: datetime | None,
        finished_at: datetime | None,
        status_code: int | None,
        error_msg: str | None,
    ) -> CrawlLog:
        """Log an unusable attempt; never counts as success or not-modified."""
        require_not_none(started_at, "started_at")
        require_not_none(finished_at, "finished_at")
        require_not_none(status_code, "status_code")
        return cls(
            exchange=exchange,
            task_id=task_id,
            target=target,
            method=method,
            request_params_json=request_params_json,
            params_hash=params_hash,
            started_at=ensure_utc(started_at),  # type: ignore[arg-type]
            finished_at=ensure_utc(finished_at),  # type: ignore[arg-type]
            status_code=status_code,  # type: ignore[arg-type]
            success=False,
            not_modified=False,
            error_msg=error_msg,
        )

    def duration_ms(self) -> int:
        """Elapsed milliseconds, floored at 0; -1 if a timestamp is missing."""
        if self.started_at is None or self.finished_at is None:
            return -1
        return max(0, to_epoch_millis(self.finished_at) - to_epoch_millis(self.started_at))

    def not_modified_by(self, new_etag: str | None, new_last_modified_at: datetime | None) -> bool:
        """True if the etag or the parsed Last-Modified matches (both sides present)."""
        etag_same = self.etag is not None and new_etag is not None and self.etag == new_etag
        lm_same = (
            self.last_modified_at is not None
            and new_last_modified_at is not None
            and self.last_modified_at == ensure_utc(new_last_modified_at)
        )
        return etag_same or lm_same

    def same_content_as(self, prev: CrawlLog) -> bool:
        """True if both attempts succeeded on the same target with identical content.

        Conditional headers take precedence; the body hash is the fallback.
        """
        if not (self.success and prev.success and self.target == prev.target):
            return False
        if self.etag is not None and self.etag == prev.etag:
            return True
        if self.last_modified_at is not None and self.last_modified_at == prev.last_modified_at:
            return True
        return self.content_hash is not None and self.content_hash == prev.content_hash
