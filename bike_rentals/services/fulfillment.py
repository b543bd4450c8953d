"""
Checkout / check-in coordinator for multi-bike reservations.

Items are handed over and returned independently; the reservation moves to
``active`` on its first checkout and to ``completed`` once every item is back.
"""
import logging
from datetime import datetime

from sqlalchemy.orm import Session

from bike_rentals.config import settings
from bike_rentals.errors import ConflictError, NotFoundError, ValidationError, ok, service_operation
from bike_rentals.models import Note, Reservation, ReservationItem
from bike_rentals.models.reservation import ACTIVE, COMPLETED, PAID
from bike_rentals.schemas import ReservationItemRecord, dump
from bike_rentals.services.availability import conflicting_bike_ids
from bike_rentals.services.intervals import iso_utc, to_utc_naive, utcnow
from bike_rentals.services.reservations import lock_bikes, activate_reservation
from bike_rentals.services.transitions import get_reservation_or_404, transition

logger = logging.getLogger(__name__)


def _select_items(reservation: Reservation, item_ids) -> list[ReservationItem]:
    if not item_ids:
        return list(reservation.items)
    by_id = {item.id: item for item in reservation.items}
    unknown = [item_id for item_id in item_ids if item_id not in by_id]
    if unknown:
        raise NotFoundError(f"Reservation item(s) {', '.join(unknown)}")
    return [by_id[item_id] for item_id in dict.fromkeys(item_ids)]


def _item_states(db: Session, reservation_id: str) -> list[dict]:
    items = (
        db.query(ReservationItem)
        .filter(ReservationItem.reservation_id == reservation_id)
        .order_by(ReservationItem.created_at, ReservationItem.id)
        .all()
    )
    return [dump(ReservationItemRecord, item) for item in items]


@service_operation("checking out")
def check_out(db: Session, reservation_id: str, item_ids=None, now: datetime | None = None) -> dict:
    """Hand over the named bikes (all if omitted). Re-checkout is a no-op."""
    now = now or utcnow()
    reservation = get_reservation_or_404(db, reservation_id)
    if reservation.status not in (PAID, ACTIVE):
        raise ConflictError(
            f"Cannot check out from '{reservation.status}' status. Booking must be 'paid' or 'active'."
        )

    targets = [item.id for item in _select_items(reservation, item_ids)]
    checked_out = (
        db.query(ReservationItem)
        .filter(
            ReservationItem.reservation_id == reservation_id,
            ReservationItem.id.in_(targets),
            ReservationItem.checked_out_at.is_(None),
        )
        .update({ReservationItem.checked_out_at: now}, synchronize_session="fetch")
    )

    if reservation.status == PAID and not activate_reservation(db, reservation_id, now):
        current = db.query(Reservation.status).filter(Reservation.id == reservation_id).scalar()
        if current != ACTIVE:
            db.rollback()
            raise ConflictError(f"Booking changed to '{current}' during checkout")

    db.commit()
    logger.info("Checked out %d item(s) on reservation %s", checked_out, reservation_id)
    return ok(
        reservation_id=reservation_id,
        booking_status=ACTIVE,
        checked_out=checked_out,
        items=_item_states(db, reservation_id),
    )


@service_operation("checking in")
def check_in(
    db: Session,
    reservation_id: str,
    item_ids=None,
    notes: str | None = None,
    now: datetime | None = None,
) -> dict:
    """
    Record the named bikes (all if omitted) as returned.

    An item that was never handed over is recorded as returned unused. Once
    every item is checked in the reservation completes.
    """
    now = now or utcnow()
    reservation = get_reservation_or_404(db, reservation_id)
    if reservation.status != ACTIVE:
        raise ConflictError(f"Cannot check in from '{reservation.status}' status. Booking must be 'active'.")
    if notes is not None and len(notes) > settings.max_note_length:
        raise ValidationError(f"Notes must be at most {settings.max_note_length} characters")

    targets = [item.id for item in _select_items(reservation, item_ids)]
    checked_in = (
        db.query(ReservationItem)
        .filter(
            ReservationItem.reservation_id == reservation_id,
            ReservationItem.id.in_(targets),
            ReservationItem.checked_in_at.is_(None),
        )
        .update({ReservationItem.checked_in_at: now}, synchronize_session="fetch")
    )

    if notes and notes.strip():
        db.add(Note(reservation_id=reservation_id, text=notes.strip(), created_at=now))

    outstanding = (
        db.query(ReservationItem)
        .filter(ReservationItem.reservation_id == reservation_id, ReservationItem.checked_in_at.is_(None))
        .count()
    )
    status = ACTIVE
    if outstanding == 0:
        if transition(db, reservation_id, COMPLETED, now, criteria=(Reservation.status == ACTIVE,)) == 0:
            db.rollback()
            raise ConflictError("Booking changed concurrently during check-in")
        status = COMPLETED

    db.commit()
    logger.info("Checked in %d item(s) on reservation %s; status %s", checked_in, reservation_id, status)
    return ok(
        reservation_id=reservation_id,
        booking_status=status,
        checked_in=checked_in,
        all_returned=outstanding == 0,
    )


def _parse_return_time(value) -> datetime:
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value)
        except ValueError:
            raise ValidationError("new_return_time must be an ISO 8601 timestamp")
    if not isinstance(value, datetime):
        raise ValidationError("new_return_time must be a timestamp")
    return to_utc_naive(value)


@service_operation("extending booking")
def extend(db: Session, reservation_id: str, new_return_time, now: datetime | None = None) -> dict:
    """Push the return time out, provided the bikes are free for the longer window"""
    now = now or utcnow()
    new_end = _parse_return_time(new_return_time)
    reservation = get_reservation_or_404(db, reservation_id)
    if reservation.status not in (PAID, ACTIVE):
        raise ConflictError(f"Cannot extend from '{reservation.status}' status. Booking must be 'paid' or 'active'.")
    if new_end <= reservation.ends_at:
        raise ValidationError("New return time must be after the current return time")

    out_items = [item for item in reservation.items if item.checked_in_at is None]
    bike_ids = sorted(item.bike_id for item in out_items)
    lock_bikes(db, bike_ids)
    taken = conflicting_bike_ids(db, bike_ids, reservation.starts_at, new_end, exclude_reservation_id=reservation_id)
    if taken:
        raise ConflictError(
            "Cannot extend: a bike in this booking conflicts with another reservation in the requested time range"
        )

    rows = (
        db.query(Reservation)
        .filter(Reservation.id == reservation_id, Reservation.status.in_((PAID, ACTIVE)))
        .update({Reservation.ends_at: new_end, Reservation.updated_at: now}, synchronize_session="fetch")
    )
    if rows == 0:
        db.rollback()
        raise ConflictError("Booking changed concurrently; reload and retry")

    db.query(ReservationItem).filter(
        ReservationItem.reservation_id == reservation_id,
        ReservationItem.checked_in_at.is_(None),
    ).update({ReservationItem.ends_at: new_end}, synchronize_session="fetch")
    db.add(Note(reservation_id=reservation_id, text=f"Rental extended to {iso_utc(new_end)}", created_at=now))
    db.commit()

    logger.info("Reservation %s extended to %s", reservation_id, new_end)
    return ok(reservation_id=reservation_id, booking_status=reservation.status, new_return_time=iso_utc(new_end))
