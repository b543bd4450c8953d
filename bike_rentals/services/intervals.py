"""
Rental interval model.

Intervals are half-open [start, end) ranges expressed in the shop's operating
timezone. They are persisted as naive UTC timestamps; ``to_storage`` and
``Interval.from_storage`` convert at that boundary.
"""
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from bike_rentals.config import settings
from bike_rentals.errors import ValidationError

HOURLY = {"2h": 2, "4h": 4}
FULL_DAY = "8h"
MULTI_DAY = "multi-day"
DURATION_TYPES = ("2h", "4h", FULL_DAY, MULTI_DAY)

DURATION_LABELS = {
    "2h": "2 Hours",
    "4h": "4 Hours",
    "8h": "Full Day",
    "multi-day": "Multi-Day",
}


def local_tz() -> ZoneInfo:
    return ZoneInfo(settings.timezone)


def utcnow() -> datetime:
    """Current time as naive UTC, the representation used in storage"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_utc_naive(value: datetime) -> datetime:
    if value.tzinfo is None:
        value = value.replace(tzinfo=local_tz())
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def from_utc_naive(value: datetime) -> datetime:
    return value.replace(tzinfo=timezone.utc).astimezone(local_tz())


def iso_utc(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.replace(tzinfo=timezone.utc).isoformat()


@dataclass(frozen=True)
class Interval:
    start: datetime
    end: datetime

    def overlaps(self, other: "Interval") -> bool:
        # Inclusive on both ends: back-to-back rentals sharing an instant conflict
        return self.start <= other.end and other.start <= self.end

    def to_storage(self) -> tuple[datetime, datetime]:
        return to_utc_naive(self.start), to_utc_naive(self.end)

    @classmethod
    def from_storage(cls, start: datetime, end: datetime) -> "Interval":
        return cls(from_utc_naive(start), from_utc_naive(end))


def parse_date(value, field: str = "date") -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        raise ValidationError(f"{field} must be YYYY-MM-DD")


def parse_time(value, field: str = "start_time") -> time:
    if isinstance(value, time):
        return value
    try:
        return datetime.strptime(str(value), "%H:%M").time()
    except ValueError:
        raise ValidationError(f"{field} must be HH:MM")


def _localize(day: date, at: time) -> datetime:
    return datetime.combine(day, at).replace(tzinfo=local_tz())


def _check_duration(duration: str):
    if duration not in DURATION_TYPES:
        raise ValidationError(f"Unknown duration '{duration}'. Expected one of: {', '.join(DURATION_TYPES)}")


def _checked(interval: Interval) -> Interval:
    if interval.end <= interval.start:
        raise ValidationError("Rental end must be after rental start")
    return interval


def resolve_interval(day, duration: str, start_time=None, end_date=None) -> Interval:
    """
    Resolve booking parameters into a rental interval.

    - multi-day: [day 00:00, end_date + 1 day 00:00), end date inclusive
    - 8h (full day): the fixed shop-hours window, start_time ignored
    - 2h/4h: start_time + hours, rolling over midnight if needed

    Wall-clock arithmetic is used throughout, so a range crossing a DST change
    keeps its shop-hours boundaries rather than its elapsed length.
    """
    _check_duration(duration)
    day = parse_date(day)

    if duration == MULTI_DAY:
        if end_date is None:
            raise ValidationError("multi-day rentals require end_date")
        last_day = parse_date(end_date, "end_date")
        if last_day < day:
            raise ValidationError("end_date must not be before date")
        if (last_day - day).days > settings.max_rental_days:
            raise ValidationError(f"Rentals are limited to {settings.max_rental_days} days")
        return _checked(Interval(_localize(day, time(0, 0)), _localize(last_day + timedelta(days=1), time(0, 0))))

    if duration == FULL_DAY:
        opens = parse_time(settings.full_day_start, "full_day_start")
        closes = parse_time(settings.full_day_end, "full_day_end")
        return _checked(Interval(_localize(day, opens), _localize(day, closes)))

    if start_time is None:
        raise ValidationError(f"{duration} rentals require start_time")
    starts = datetime.combine(day, parse_time(start_time))
    ends = starts + timedelta(hours=HOURLY[duration])
    return _checked(Interval(starts.replace(tzinfo=local_tz()), ends.replace(tzinfo=local_tz())))


def resolve_walk_in_interval(duration: str, now: datetime, end_date=None) -> Interval:
    """Walk-ins start immediately; ``now`` is naive UTC"""
    _check_duration(duration)
    start = from_utc_naive(now)

    if duration == MULTI_DAY:
        if end_date is None:
            raise ValidationError("Multi-day walk-ins require an end_date")
        last_day = parse_date(end_date, "end_date")
        if last_day < start.date():
            raise ValidationError("end_date must not be in the past")
        if (last_day - start.date()).days > settings.max_rental_days:
            raise ValidationError(f"Rentals are limited to {settings.max_rental_days} days")
        return _checked(Interval(start, _localize(last_day + timedelta(days=1), time(0, 0))))

    if duration == FULL_DAY:
        closes = parse_time(settings.full_day_end, "full_day_end")
        end = _localize(start.date(), closes)
        if end <= start:
            end = _localize(start.date() + timedelta(days=1), closes)
        return _checked(Interval(start, end))

    return _checked(Interval(start, start + timedelta(hours=HOURLY[duration])))
