"""
Rate lookup per duration category
"""
from decimal import Decimal, ROUND_HALF_UP

from bike_rentals.errors import ValidationError
from bike_rentals.services.intervals import MULTI_DAY, Interval

CENT = Decimal("0.01")

PRICE_COLUMN = {
    "2h": "price_2h",
    "4h": "price_4h",
    "8h": "price_8h",
    "multi-day": "price_per_day",
}


def round_cents(value) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def base_rate(bike, duration: str) -> Decimal:
    """The listed rate for a duration category (per day for multi-day)"""
    try:
        return round_cents(getattr(bike, PRICE_COLUMN[duration]))
    except KeyError:
        raise ValidationError(f"Unknown duration '{duration}'")


def rental_days(interval: Interval) -> int:
    return max(1, (interval.end.date() - interval.start.date()).days)


def rental_price(bike, duration: str, interval: Interval) -> Decimal:
    """
    Price one bike for the interval.

    Multi-day rentals charge the full-day rate for the first day and the
    per-day rate for every additional day.
    """
    if duration != MULTI_DAY:
        return base_rate(bike, duration)
    days = rental_days(interval)
    return round_cents(Decimal(bike.price_8h) + Decimal(bike.price_per_day) * (days - 1))
