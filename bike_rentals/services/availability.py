"""
Availability resolver.

The overlap predicate here is the single source of truth for conflicts: the
read path (list/check availability) and every write path (hold, walk-in,
extend) call ``conflicting_bike_ids``.
"""
import logging
from datetime import datetime
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from bike_rentals.errors import ok, service_operation
from bike_rentals.models import Bike, Reservation, ReservationItem
from bike_rentals.models.bike import BIKE_AVAILABLE
from bike_rentals.models.reservation import CANCELLED
from bike_rentals.schemas import BikeRecord, decode
from bike_rentals.services.intervals import Interval, resolve_interval
from bike_rentals.services.pricing import base_rate, rental_price, round_cents

logger = logging.getLogger(__name__)


def _overlapping_items(db: Session, start: datetime, end: datetime):
    """Items of non-cancelled reservations whose period touches [start, end]"""
    return (
        db.query(ReservationItem.bike_id)
        .join(Reservation, Reservation.id == ReservationItem.reservation_id)
        .filter(
            Reservation.status != CANCELLED,
            ReservationItem.starts_at <= end,
            start <= ReservationItem.ends_at,
        )
    )


def conflicting_bike_ids(
    db: Session,
    bike_ids: Iterable[int],
    start: datetime,
    end: datetime,
    exclude_reservation_id: str | None = None,
) -> set[int]:
    """Bikes among ``bike_ids`` already booked for any instant of [start, end] (naive UTC)"""
    query = _overlapping_items(db, start, end).filter(ReservationItem.bike_id.in_(list(bike_ids)))
    if exclude_reservation_id is not None:
        query = query.filter(ReservationItem.reservation_id != exclude_reservation_id)
    return {row.bike_id for row in query.all()}


def list_available(db: Session, interval: Interval) -> list[Bike]:
    """Bikes in service with no overlapping non-cancelled booking"""
    start, end = interval.to_storage()
    booked = _overlapping_items(db, start, end).subquery()
    return (
        db.query(Bike)
        .filter(Bike.status == BIKE_AVAILABLE, Bike.id.not_in(select(booked.c.bike_id)))
        .order_by(Bike.type, Bike.name, Bike.id)
        .all()
    )


@service_operation("checking availability")
def check_availability(db: Session, date, duration: str, start_time=None, end_date=None) -> dict:
    """
    Count free bikes per type for the requested window.

    Returns units_by_type (one group per bike type with the ids that are
    free, a representative bike and its price for this window) and pricing
    (lowest listed rates per type).
    """
    interval = resolve_interval(date, duration, start_time, end_date)
    bikes = [decode(BikeRecord, bike) for bike in list_available(db, interval)]

    groups: dict[str, dict] = {}
    pricing: dict[str, dict] = {}
    for bike in bikes:
        group = groups.get(bike.type)
        if group is None:
            group = groups[bike.type] = {
                "type": bike.type,
                "available_count": 0,
                "bike_ids": [],
                "representative": {
                    "id": bike.id,
                    "name": bike.name,
                    "size": bike.size,
                    "photo_url": bike.photo_url,
                    "features": bike.features,
                },
                "rental_price": rental_price(bike, duration, interval),
            }
        group["available_count"] += 1
        group["bike_ids"].append(bike.id)
        group["rental_price"] = min(group["rental_price"], rental_price(bike, duration, interval))

        rates = pricing.setdefault(bike.type, {})
        for label, key in (("2h", "2h"), ("4h", "4h"), ("8h", "8h"), ("per_day", "multi-day")):
            rate = base_rate(bike, key)
            if label not in rates or rate < rates[label]:
                rates[label] = rate
        if "deposit" not in rates or bike.deposit_amount < rates["deposit"]:
            rates["deposit"] = round_cents(bike.deposit_amount)

    start, end = interval.to_storage()
    logger.debug("Availability %s..%s: %d bike(s) free", start, end, len(bikes))
    return ok(
        interval={"start": interval.start.isoformat(), "end": interval.end.isoformat()},
        units_by_type=[{**group, "rental_price": str(group["rental_price"])} for group in groups.values()],
        pricing={t: {k: str(v) for k, v in rates.items()} for t, rates in pricing.items()},
    )
