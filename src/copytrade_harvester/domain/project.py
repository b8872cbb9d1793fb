"""Project aggregate: the master record of a copy-trading lead project.

Visibility transitions are driven by the harvester's observations; the only
internal rule is that ``last_seen`` never moves backwards.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from copytrade_harvester.domain.enums import Visibility
from copytrade_harvester.domain.errors import ValidationError
from copytrade_harvester.domain.values import (
    DEFAULT_CCY,
    ProjectKey,
    ensure_utc,
    is_blank,
    require_not_blank,
    require_not_none,
)


@dataclass(frozen=True)
class ProjectBrief:
    """One row of a lead-trader rank page."""

    external_id: str
    name: str | None = None
    base_currency: str | None = None
    aum: Decimal | None = None
    followers: int | None = None
    win_ratio: Decimal | None = None
    pnl_ratio: Decimal | None = None
    pnl: Decimal | None = None
    data_ver: str | None = None
    raw_json: str | None = None


def _latest(old: datetime | None, now: datetime) -> datetime:
    now = ensure_utc(now)
    if old is None:
        return now
    return max(ensure_utc(old), now)


@dataclass
class Project:
    """Mutable project record with its visibility lifecycle.

    Attributes:
        key: Project identity.
        name: Display name (nickname on the exchange).
        base_currency: Settlement currency, upper-cased.
        last_visibility: Visibility as of the latest observation.
        first_seen: First time the project was observed.
        last_seen: Last time the project was confirmed visible; monotonic.
        min_copy_cost: Minimum copy amount, if known (>= 0).
        status: Exchange-side project status, if known.
        extra: Raw payload of the latest observation.
    """

    key: ProjectKey
    name: str
    base_currency: str = DEFAULT_CCY
    last_visibility: Visibility = Visibility.VISIBLE
    first_seen: datetime | None = None
    last_seen: datetime | None = None
    min_copy_cost: Decimal | None = None
    status: str | None = None
    extra: str | None = None

    def __post_init__(self) -> None:
        require_not_none(self.key, "key")
        self.name = require_not_blank(self.name, "name")
        self.base_currency = require_not_blank(self.base_currency, "base_currency").upper()
        self.last_visibility = Visibility.parse(self.last_visibility)  # type: ignore[assignment]
        if self.min_copy_cost is not None and self.min_copy_cost < 0:
            raise ValidationError(f"min_copy_cost must be >= 0, got {self.min_copy_cost}")

    @classmethod
    def new_from_brief(cls, key: ProjectKey, brief: ProjectBrief, now: datetime) -> Project:
        """Create a project on first sighting in a rank page."""
        require_not_none(key, "key")
        require_not_none(brief, "brief")
        require_not_blank(brief.external_id, "external_id")
        now = ensure_utc(now)
        ccy = DEFAULT_CCY if is_blank(brief.base_currency) else brief.base_currency
        return cls(
            key=key,
            name=key.external_id if is_blank(brief.name) else brief.name,  # type: ignore[arg-type]
            base_currency=ccy,  # type: ignore[arg-type]
            last_visibility=Visibility.VISIBLE,
            first_seen=now,
            last_seen=now,
            extra=brief.raw_json,
        )

    def project_id(self) -> str:
        return self.key.as_string()

    @property
    def is_visible(self) -> bool:
        return self.last_visibility is Visibility.VISIBLE

    def apply_brief(self, brief: ProjectBrief, now: datetime) -> None:
        """Merge a later rank observation; blank fields never overwrite."""
        require_not_none(brief, "brief")
        if not is_blank(brief.name):
            self.name = brief.name  # type: ignore[assignment]
        if not is_blank(brief.base_currency):
            self.base_currency = brief.base_currency.upper()  # type: ignore[union-attr]
        if not is_blank(brief.raw_json):
            self.extra = brief.raw_json
        self.last_visibility = Visibility.VISIBLE
        self.last_seen = _latest(self.last_seen, now)

    def apply_detail(
        self,
        min_copy_cost: Decimal | None,
        status: str | None,
        extra_json: str | None,
        now: datetime,
    ) -> None:
        """Merge a detail observation; blank fields never overwrite."""
        if min_copy_cost is not None and min_copy_cost < 0:
            raise ValidationError(f"min_copy_cost must be >= 0, got {min_copy_cost}")
        if min_copy_cost is not None:
            self.min_copy_cost = min_copy_cost
        if not is_blank(status):
            self.status = status
        if not is_blank(extra_json):
            self.extra = extra_json
        self.last_visibility = Visibility.VISIBLE
        self.last_seen = _latest(self.last_seen, now)

    def mark_missing(self) -> None:
        # last_seen keeps the last confirmed-visible time
        self.last_visibility = Visibility.MISSING

    def mark_hidden(self) -> None:
        self.last_visibility = Visibility.HIDDEN

    def restore_visible(self, now: datetime) -> None:
        self.last_visibility = Visibility.VISIBLE
        self.last_seen = _latest(self.last_seen, now)

    def rename(self, new_name: str) -> None:
        self.name = require_not_blank(new_name, "name")

    def change_base_currency(self, new_ccy: str) -> None:
        self.base_currency = require_not_blank(new_ccy, "base_currency").upper()
