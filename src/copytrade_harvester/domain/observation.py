"""Observation history: invisibility intervals and metric snapshots."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal

from copytrade_harvester.domain.enums import SnapshotSource, Visibility
from copytrade_harvester.domain.errors import StateConflict, ValidationError
from copytrade_harvester.domain.values import (
    ProjectKey,
    ensure_utc,
    is_blank,
    require_not_blank,
    require_not_none,
    to_epoch_millis,
    truncate_to_millis,
)

DEFAULT_REASON_CODE = "UNKNOWN"
DEFAULT_DETECTOR = "OBSERVATION"

# Reason codes / detectors emitted by the harvester
REASON_RANK_GAP = "RANK_GAP"
REASON_DETAIL_4XX = "DETAIL_4XX"

# Storable snapshot range: 1970-01-01T00:00:01.000Z .. 2038-01-19T03:14:07.999Z
SNAPSHOT_TS_MIN_MS = 1_000
SNAPSHOT_TS_MAX_MS = 2_147_483_647_999


@dataclass
class Tombstone:
    """A span during which a project was not visible.

    At most one open tombstone may exist per project; the repository enforces
    that, the aggregate only guards its own interval.
    """

    project_key: ProjectKey
    from_ts: datetime
    to_ts: datetime | None = None
    reason_code: str = DEFAULT_REASON_CODE
    reason_msg: str | None = None
    detector: str = DEFAULT_DETECTOR
    id: int | None = None

    def __post_init__(self) -> None:
        require_not_none(self.project_key, "project_key")
        require_not_none(self.from_ts, "from_ts")
        self.from_ts = ensure_utc(self.from_ts)
        if self.to_ts is not None:
            self.to_ts = ensure_utc(self.to_ts)
            if self.to_ts <= self.from_ts:
                raise ValidationError("to_ts must be later than from_ts")
        if is_blank(self.reason_code):
            self.reason_code = DEFAULT_REASON_CODE
        if self.detector is None:
            self.detector = DEFAULT_DETECTOR

    @classmethod
    def open(
        cls,
        key: ProjectKey,
        from_ts: datetime,
        reason_code: str | None = None,
        reason_msg: str | None = None,
        detector: str | None = None,
    ) -> Tombstone:
        """Start an invisibility interval at ``from_ts``."""
        return cls(
            project_key=key,
            from_ts=from_ts,
            reason_code=reason_code,  # type: ignore[arg-type]
            reason_msg=reason_msg,
            detector=detector,  # type: ignore[arg-type]
        )

    def is_open(self) -> bool:
        return self.to_ts is None

    def close(self, to_ts: datetime) -> None:
        """End the interval; the project became visible again at ``to_ts``."""
        require_not_none(to_ts, "to_ts")
        if not self.is_open():
            raise StateConflict(f"Tombstone for {self.project_key} is already closed")
        to_ts = ensure_utc(to_ts)
        if to_ts <= self.from_ts:
            raise StateConflict(
                f"to_ts {to_ts.isoformat()} must be later than from_ts {self.from_ts.isoformat()}"
            )
        self.to_ts = to_ts

    def duration(self) -> timedelta | None:
        if self.to_ts is None:
            return None
        return self.to_ts - self.from_ts


def _ensure_storable_millis(ts: datetime) -> datetime:
    ts = truncate_to_millis(ts)
    ms = to_epoch_millis(ts)
    if ms < SNAPSHOT_TS_MIN_MS or ms > SNAPSHOT_TS_MAX_MS:
        raise ValidationError(f"snapshot_ts out of storable range: {ts.isoformat()} ({ms} ms)")
    return ts


@dataclass(frozen=True)
class ProjectSnapshot:
    """Immutable point-in-time capture of a project's public metrics.

    Identity is (project_key, snapshot_ts, source). ``raw_json`` is the
    authoritative payload; the metric fields are a convenience projection.
    """

    project_key: ProjectKey
    snapshot_ts: datetime
    source: SnapshotSource
    raw_json: str
    data_ver: str | None = None
    visibility: Visibility = Visibility.VISIBLE
    aum_usd: Decimal | None = None
    followers: int | None = None
    win_ratio: Decimal | None = None
    pnl_ratio_90d: Decimal | None = None
    pnl_90d_usd: Decimal | None = None

    def __post_init__(self) -> None:
        require_not_none(self.project_key, "project_key")
        require_not_none(self.snapshot_ts, "snapshot_ts")
        require_not_none(self.source, "source")
        require_not_blank(self.raw_json, "raw_json")
        object.__setattr__(self, "source", SnapshotSource.parse(self.source))
        object.__setattr__(self, "visibility", Visibility.parse(self.visibility))
        object.__setattr__(self, "snapshot_ts", _ensure_storable_millis(self.snapshot_ts))

    def snapshot_id(self) -> str:
        """Log-friendly identity: ``projectKey@epochMillis#SOURCE``."""
        return f"{self.project_key.as_string()}@{to_epoch_millis(self.snapshot_ts)}#{self.source.value}"

    def to_point(self) -> SnapshotPoint:
        return SnapshotPoint(
            ts=self.snapshot_ts,
            aum_usd=self.aum_usd,
            followers=self.followers,
            win_ratio=self.win_ratio,
            pnl_ratio_90d=self.pnl_ratio_90d,
            pnl_90d_usd=self.pnl_90d_usd,
            visibility=self.visibility,
            source=self.source.value,
        )


@dataclass(frozen=True)
class SnapshotPoint:
    """One point of a project's metric time series."""

    ts: datetime
    aum_usd: Decimal | None
    followers: int | None
    win_ratio: Decimal | None
    pnl_ratio_90d: Decimal | None
    pnl_90d_usd: Decimal | None
    visibility: Visibility
    source: str


@dataclass(frozen=True)
class VisibilityChange:
    """A visibility transition applied to a project."""

    project_key: ProjectKey
    from_visibility: Visibility
    to_visibility: Visibility
    at_ts: datetime
    reason_code: str | None = None
    reason_msg: str | None = None
