"""Period windows: half-open ``[start, end)`` UTC intervals per period kind."""

from collections.abc import Iterator
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum

from feedback_analytics.core.exceptions import InvalidPeriodError

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class PeriodKind(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"
    ALL_TIME = "all_time"


PERIOD_KINDS: tuple[str, ...] = tuple(kind.value for kind in PeriodKind)


@dataclass(frozen=True)
class PeriodWindow:
    kind: PeriodKind
    start: datetime
    end: datetime

    def contains(self, instant: datetime) -> bool:
        return self.start <= to_utc(instant) < self.end


def to_utc(value: datetime) -> datetime:
    """Normalize a datetime to aware UTC. Naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_period(period: "PeriodKind | str") -> PeriodKind:
    if isinstance(period, PeriodKind):
        return period
    try:
        return PeriodKind(period)
    except ValueError:
        raise InvalidPeriodError(period) from None


def _add_months(year: int, month: int, months: int) -> tuple[int, int]:
    index = year * 12 + (month - 1) + months
    return index // 12, index % 12 + 1


def calculate_period_window(period: "PeriodKind | str", reference: datetime) -> PeriodWindow:
    """Compute the window of ``period`` kind containing ``reference``.

    Weeks start on Sunday. Month, quarter and year windows use calendar
    boundaries. ``all_time`` spans the Unix epoch up to ``reference``.

    Raises:
        InvalidPeriodError: If ``period`` is not a known period kind.
    """
    kind = parse_period(period)
    ref = to_utc(reference)
    midnight = ref.replace(hour=0, minute=0, second=0, microsecond=0)

    if kind is PeriodKind.DAILY:
        return PeriodWindow(kind, midnight, midnight + timedelta(days=1))

    if kind is PeriodKind.WEEKLY:
        # weekday(): Monday=0 .. Sunday=6
        start = midnight - timedelta(days=(ref.weekday() + 1) % 7)
        return PeriodWindow(kind, start, start + timedelta(days=7))

    if kind is PeriodKind.MONTHLY:
        start = midnight.replace(day=1)
        year, month = _add_months(start.year, start.month, 1)
        return PeriodWindow(kind, start, start.replace(year=year, month=month))

    if kind is PeriodKind.QUARTERLY:
        first_month = 3 * ((ref.month - 1) // 3) + 1
        start = midnight.replace(month=first_month, day=1)
        year, month = _add_months(start.year, start.month, 3)
        return PeriodWindow(kind, start, start.replace(year=year, month=month))

    if kind is PeriodKind.YEARLY:
        start = midnight.replace(month=1, day=1)
        return PeriodWindow(kind, start, start.replace(year=start.year + 1))

    return PeriodWindow(kind, EPOCH, ref)


def previous_period_window(window: PeriodWindow) -> PeriodWindow | None:
    """Return the window immediately before ``window``; ``None`` for all_time."""
    if window.kind is PeriodKind.ALL_TIME:
        return None
    return calculate_period_window(window.kind, window.start - timedelta(microseconds=1))


def iter_period_windows(
    period: "PeriodKind | str", start: datetime, end: datetime
) -> Iterator[PeriodWindow]:
    """Yield consecutive windows from the one containing ``start`` until ``end``.

    Used for backfills over an explicit date range. ``all_time`` yields a
    single window ending at ``end``.
    """
    kind = parse_period(period)
    end = to_utc(end)
    if kind is PeriodKind.ALL_TIME:
        yield calculate_period_window(kind, end)
        return

    window = calculate_period_window(kind, start)
    while True:
        yield window
        if window.end >= end:
            return
        window = calculate_period_window(kind, window.end)
