"""
Eligibility evaluation: may an owner's operation run right now?

Ineligibility is never a failure. It produces the next instant worth trying
again, so work outside business hours sleeps until the window reopens instead
of spinning on short retries.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import Iterable, Protocol
from uuid import UUID
from zoneinfo import ZoneInfo

from frontdesk.shared.clock import (
    local_instant,
    next_local_midnight,
    parse_hhmm,
    resolve_zone,
    to_local,
)
from frontdesk.shared.logging import get_logger

logger = get_logger(__name__)


class IneligibleReason(str, Enum):
    """Why an operation may not run now."""

    WEEKDAY_NOT_ALLOWED = "weekday_not_allowed"
    OUTSIDE_HOURS = "outside_hours"
    DAILY_QUOTA_EXHAUSTED = "daily_quota_exhausted"
    DISABLED_BY_OWNER = "disabled_by_owner"


@dataclass(frozen=True)
class EligibilityWindow:
    """Per-owner calling envelope.

    Weekdays follow `date.weekday()`: 0 is Monday, 6 is Sunday. The window is
    [window_start, window_end) in local wall-clock time and may not cross
    midnight. `daily_limit=None` means unlimited.
    """

    timezone: str
    window_start: time
    window_end: time
    allowed_weekdays: frozenset[int] = field(default_factory=lambda: frozenset(range(5)))
    daily_limit: int | None = None
    enabled: bool = True

    def __post_init__(self) -> None:
        resolve_zone(self.timezone)
        if self.window_start >= self.window_end:
            raise ValueError("window_start must be before window_end")
        if not self.allowed_weekdays:
            raise ValueError("allowed_weekdays must not be empty")
        if any(day < 0 or day > 6 for day in self.allowed_weekdays):
            raise ValueError("allowed_weekdays must hold values 0-6")
        if self.daily_limit is not None and self.daily_limit < 0:
            raise ValueError("daily_limit must be >= 0")

    @property
    def zone(self) -> ZoneInfo:
        return resolve_zone(self.timezone)

    @classmethod
    def build(
        cls,
        timezone: str,
        start: str,
        end: str,
        weekdays: Iterable[int],
        daily_limit: int | None = None,
        enabled: bool = True,
    ) -> EligibilityWindow:
        """Build a window from "HH:MM" strings."""
        return cls(
            timezone=timezone,
            window_start=parse_hhmm(start),
            window_end=parse_hhmm(end),
            allowed_weekdays=frozenset(weekdays),
            daily_limit=daily_limit,
            enabled=enabled,
        )

    def local_date(self, instant: datetime) -> date:
        """Owner-local calendar date of an instant (the quota bucket)."""
        return to_local(instant, self.zone).date()


@dataclass(frozen=True)
class EligibilityDecision:
    """Result of an eligibility check."""

    allowed: bool
    reason: IneligibleReason | None = None
    retry_after: datetime | None = None

    @property
    def blocked(self) -> bool:
        """True when the owner disabled the work; not retried later."""
        return self.reason is IneligibleReason.DISABLED_BY_OWNER


ALLOWED = EligibilityDecision(allowed=True)


def next_window_open(window: EligibilityWindow, now: datetime) -> datetime:
    """Next instant (UTC) at which the window opens, strictly after `now`'s day start.

    Returns today's opening if today is allowed and the window has not
    opened yet, otherwise the opening on the next allowed day.
    """
    zone = window.zone
    local = to_local(now, zone)
    today = local.date()
    if local.weekday() in window.allowed_weekdays and local.time() < window.window_start:
        return local_instant(today, window.window_start, zone)
    for offset in range(1, 8):
        day = today + timedelta(days=offset)
        if day.weekday() in window.allowed_weekdays:
            return local_instant(day, window.window_start, zone)
    # unreachable: allowed_weekdays is validated non-empty
    raise RuntimeError("no allowed weekday in window")


def evaluate(window: EligibilityWindow, now: datetime, used_today: int) -> EligibilityDecision:
    """Pure eligibility check against one window and today's usage."""
    if not window.enabled:
        return EligibilityDecision(allowed=False, reason=IneligibleReason.DISABLED_BY_OWNER)

    zone = window.zone
    local = to_local(now, zone)
    misses: list[tuple[IneligibleReason, datetime]] = []

    if local.weekday() not in window.allowed_weekdays:
        misses.append((IneligibleReason.WEEKDAY_NOT_ALLOWED, next_window_open(window, now)))
    elif not (window.window_start <= local.time() < window.window_end):
        misses.append((IneligibleReason.OUTSIDE_HOURS, next_window_open(window, now)))

    if window.daily_limit is not None and used_today >= window.daily_limit:
        misses.append((IneligibleReason.DAILY_QUOTA_EXHAUSTED, next_local_midnight(now, zone)))

    if not misses:
        return ALLOWED

    # Every constraint must hold at retry time: wait for the latest reopening.
    return EligibilityDecision(
        allowed=False,
        reason=misses[0][0],
        retry_after=max(instant for _, instant in misses),
    )


class OwnerConfigSource(Protocol):
    """Read-only access to an owner's calling window."""

    async def get_window(self, owner_id: UUID) -> EligibilityWindow | None:
        ...


class QuotaReader(Protocol):
    """Read access to the per-owner daily counter."""

    async def used_on(self, owner_id: UUID, day: date) -> int:
        ...


class EligibilityEvaluator:
    """Decides whether an owner's gated operation may run at a given instant.

    Never mutates the quota: the counter only moves on successful dispatch.
    """

    def __init__(
        self,
        config_source: OwnerConfigSource,
        quota_reader: QuotaReader,
        default_window: EligibilityWindow | None = None,
    ) -> None:
        self._config_source = config_source
        self._quota_reader = quota_reader
        self._default_window = default_window

    async def window_for(self, owner_id: UUID) -> EligibilityWindow | None:
        window = await self._config_source.get_window(owner_id)
        return window or self._default_window

    async def is_eligible(self, owner_id: UUID, now: datetime) -> EligibilityDecision:
        window = await self.window_for(owner_id)
        if window is None:
            # No envelope configured at all: nothing to enforce.
            return ALLOWED

        used = 0
        if window.daily_limit is not None:
            used = await self._quota_reader.used_on(owner_id, window.local_date(now))

        decision = evaluate(window, now, used)
        if not decision.allowed:
            logger.debug(
                "Owner not eligible",
                extra={
                    "owner_id": str(owner_id),
                    "reason": decision.reason.value if decision.reason else None,
                    "retry_after": decision.retry_after.isoformat() if decision.retry_after else None,
                    "used_today": used,
                },
            )
        return decision
