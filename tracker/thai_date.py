"""
Thai locale expiry dates.

Expiry dates arrive as ``DD/MM/YYYY HH:MM[:SS]`` strings with the year written in
the Buddhist Era (Gregorian + 543), e.g. ``"31/12/2568 23:59"``.  The time part
is optional and defaults to midnight.  Years above 2500 are treated as BE and
converted; anything else is taken to be Gregorian already.

All instants are naive local wall-clock datetimes, matching how the rest of
the engine compares against ``datetime.now()``.
"""

from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional, Union

from config.settings import BUDDHIST_ERA_OFFSET, BUDDHIST_YEAR_THRESHOLD
from tracker.errors import DateParseError

DateInput = Union[str, date, datetime, None]


@dataclass(frozen=True)
class ResolvedDate:
    """Outcome of normalizing an expiry value: an instant or a parse failure."""

    instant: Optional[datetime] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.instant is not None


def to_gregorian_year(year: int) -> int:
    """Convert a Buddhist Era year to Gregorian; leave plausible Gregorian years alone."""
    if year > BUDDHIST_YEAR_THRESHOLD:
        return year - BUDDHIST_ERA_OFFSET
    return year


def parse_buddhist_datetime(value: DateInput) -> datetime:
    """Parse an expiry value into a Gregorian datetime.

    Raises DateParseError for empty input, non-integer components or
    impossible calendar dates.
    """
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if value is None or not str(value).strip():
        raise DateParseError(value, "empty value")

    parts = str(value).strip().split()
    if len(parts) > 2:
        raise DateParseError(value, "unexpected trailing text")

    date_fields = parts[0].split("/")
    if len(date_fields) != 3:
        raise DateParseError(value, "expected DD/MM/YYYY")
    try:
        day, month, year = (int(f) for f in date_fields)
    except ValueError:
        raise DateParseError(value, "day, month and year must be integers") from None

    hour = minute = second = 0
    if len(parts) == 2:
        time_fields = parts[1].split(":")
        if len(time_fields) not in (2, 3):
            raise DateParseError(value, "expected HH:MM or HH:MM:SS")
        try:
            hour, minute = int(time_fields[0]), int(time_fields[1])
            if len(time_fields) == 3:
                second = int(time_fields[2])
        except ValueError:
            raise DateParseError(value, "hour, minute and second must be integers") from None

    try:
        return datetime(to_gregorian_year(year), month, day, hour, minute, second)
    except ValueError as exc:
        raise DateParseError(value, str(exc)) from None


def resolve_expire_date(value: DateInput) -> ResolvedDate:
    """Tolerant wrapper around parse_buddhist_datetime for batch callers."""
    try:
        return ResolvedDate(instant=parse_buddhist_datetime(value))
    except DateParseError as exc:
        return ResolvedDate(error=exc.reason)


def format_buddhist_datetime(dt: datetime) -> str:
    """Render a Gregorian datetime as ``DD/MM/YYYY HH:MM`` in the Buddhist Era."""
    return (
        f"{dt.day:02d}/{dt.month:02d}/{dt.year + BUDDHIST_ERA_OFFSET:04d} "
        f"{dt.hour:02d}:{dt.minute:02d}"
    )
