"""
Reservation state machine.

    hold ──> paid ──> active ──> completed
      │        │        │
      └────────┴────────┴──> cancelled

Creation (hold and walk-in) locks the requested bike rows, re-checks the
overlap predicate and inserts in the same transaction, so two customers
racing for the last bike get exactly one success and one ConflictError.
Every later transition is a status-guarded conditional update.
"""
import logging
from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy.orm import Session

from bike_rentals.config import settings
from bike_rentals.errors import ConflictError, NotFoundError, ValidationError, ok, service_operation
from bike_rentals.models import Bike, Note, Reservation, ReservationItem, Waiver
from bike_rentals.models.bike import BIKE_AVAILABLE
from bike_rentals.models.reservation import (
    ACTIVE,
    CANCELLED,
    COMPLETED,
    HOLD,
    ONLINE,
    PAID,
    TERMINAL_STATUSES,
    WALK_IN,
    generate_booking_ref,
)
from bike_rentals.schemas import NoteRecord, dump
from bike_rentals.services.availability import conflicting_bike_ids
from bike_rentals.services.customers import upsert_from_draft
from bike_rentals.services.intervals import Interval, iso_utc, resolve_interval, resolve_walk_in_interval, utcnow
from bike_rentals.services.payment_gateway import PaymentGateway, get_payment_gateway
from bike_rentals.services.payments import void_transaction
from bike_rentals.services.pricing import rental_price, round_cents
from bike_rentals.services.tokens import generate_booking_token
from bike_rentals.services.transitions import get_reservation_or_404, transition

logger = logging.getLogger(__name__)


def _bike_ids(items) -> list[int]:
    """Accept [3, 5] or [{"bike_id": 3}, {"bike_id": 5}]"""
    ids = []
    for item in items or []:
        value = item.get("bike_id") if isinstance(item, dict) else item
        try:
            ids.append(int(value))
        except (TypeError, ValueError):
            raise ValidationError(f"Invalid bike id: {value!r}")
    if not ids:
        raise ValidationError("At least one bike is required")
    if len(ids) > settings.max_items_per_booking:
        raise ValidationError(f"At most {settings.max_items_per_booking} bikes per booking")
    if len(set(ids)) != len(ids):
        raise ValidationError("Duplicate bike IDs in request")
    return ids


def lock_bikes(db: Session, bike_ids: list[int]) -> dict[int, Bike]:
    # Ascending id order so concurrent bookings of overlapping sets can't deadlock
    bikes = db.query(Bike).filter(Bike.id.in_(bike_ids)).order_by(Bike.id).with_for_update().all()
    return {bike.id: bike for bike in bikes}


def _reserve_units(
    db: Session,
    bike_ids: list[int],
    interval: Interval,
    duration: str,
    exclude_reservation_id: str | None = None,
) -> list[tuple[Bike, Decimal]]:
    """Lock, validate and price the requested bikes for the interval"""
    bikes = lock_bikes(db, bike_ids)

    missing = [bike_id for bike_id in bike_ids if bike_id not in bikes]
    unavailable = [bike_id for bike_id in bike_ids if bike_id in bikes and bikes[bike_id].status != BIKE_AVAILABLE]
    if missing or unavailable:
        raise NotFoundError(f"Bike(s) {', '.join(str(i) for i in missing + unavailable)}")

    start, end = interval.to_storage()
    taken = conflicting_bike_ids(db, bike_ids, start, end, exclude_reservation_id)
    if taken:
        logger.info("Bikes %s already booked for %s..%s", sorted(taken), start, end)
        raise ConflictError("unit already booked")

    return [(bikes[bike_id], rental_price(bikes[bike_id], duration, interval)) for bike_id in bike_ids]


def _insert_reservation(
    db: Session,
    priced: list[tuple[Bike, Decimal]],
    interval: Interval,
    duration: str,
    customer_id: str | None,
    status: str,
    source: str,
    now: datetime,
    hold_expires_at: datetime | None = None,
    checked_out_at: datetime | None = None,
) -> Reservation:
    start, end = interval.to_storage()
    total_rental = round_cents(sum((price for _, price in priced), Decimal("0")))
    total_deposit = round_cents(sum((Decimal(bike.deposit_amount) for bike, _ in priced), Decimal("0")))

    reservation = Reservation(
        booking_ref=generate_booking_ref(),
        customer_id=customer_id,
        starts_at=start,
        ends_at=end,
        duration_type=duration,
        status=status,
        source=source,
        hold_expires_at=hold_expires_at,
        total_amount=round_cents(total_rental + total_deposit),
        deposit_amount=total_deposit,
        created_at=now,
        updated_at=now,
    )
    db.add(reservation)
    db.flush()

    for bike, price in priced:
        db.add(
            ReservationItem(
                reservation_id=reservation.id,
                bike_id=bike.id,
                starts_at=start,
                ends_at=end,
                rental_price=price,
                deposit_amount=round_cents(bike.deposit_amount),
                checked_out_at=checked_out_at,
                created_at=now,
            )
        )
    db.flush()
    return reservation


@service_operation("creating hold")
def create_hold(
    db: Session,
    customer: dict | None,
    items,
    date,
    duration: str,
    start_time=None,
    end_date=None,
    now: datetime | None = None,
) -> dict:
    """
    Reserve bikes for a window pending payment.

    The hold expires ``settings.hold_minutes`` after creation; the sweeper
    cancels it if it hasn't been paid by then.
    """
    now = now or utcnow()
    interval = resolve_interval(date, duration, start_time, end_date)
    bike_ids = _bike_ids(items)

    priced = _reserve_units(db, bike_ids, interval, duration)
    customer_row = upsert_from_draft(db, customer)
    reservation = _insert_reservation(
        db,
        priced,
        interval,
        duration,
        customer_id=customer_row.id if customer_row else None,
        status=HOLD,
        source=ONLINE,
        now=now,
        hold_expires_at=now + timedelta(minutes=settings.hold_minutes),
    )
    db.commit()

    logger.info("Hold %s (%s) created for bikes %s", reservation.id, reservation.booking_ref, bike_ids)
    return ok(
        reservation_id=reservation.id,
        booking_ref=reservation.booking_ref,
        booking_token=generate_booking_token(reservation.booking_ref),
        hold_expires_at=iso_utc(reservation.hold_expires_at),
        total_amount=str(round_cents(reservation.total_amount)),
        deposit_amount=str(round_cents(reservation.deposit_amount)),
    )


@service_operation("creating walk-in booking")
def create_walk_in(
    db: Session,
    customer: dict,
    items,
    duration: str,
    end_date=None,
    now: datetime | None = None,
) -> dict:
    """
    Book bikes for a customer standing at the counter.

    Skips the hold stage: the reservation starts ``active`` and every bike is
    handed over (checked out) immediately.
    """
    now = now or utcnow()
    if not customer or not customer.get("full_name"):
        raise ValidationError("Walk-in bookings require a customer name")
    interval = resolve_walk_in_interval(duration, now, end_date)
    bike_ids = _bike_ids(items)

    priced = _reserve_units(db, bike_ids, interval, duration)
    customer_row = upsert_from_draft(db, customer, walk_in=True)
    reservation = _insert_reservation(
        db,
        priced,
        interval,
        duration,
        customer_id=customer_row.id,
        status=ACTIVE,
        source=WALK_IN,
        now=now,
        checked_out_at=now,
    )
    db.commit()

    logger.info("Walk-in %s (%s) created for bikes %s", reservation.id, reservation.booking_ref, bike_ids)
    return ok(
        reservation_id=reservation.id,
        booking_ref=reservation.booking_ref,
        booking_token=generate_booking_token(reservation.booking_ref),
        booking_status=reservation.status,
        total_amount=str(round_cents(reservation.total_amount)),
        return_time=iso_utc(reservation.ends_at),
    )


@service_operation("recording payment")
def mark_paid(db: Session, reservation_id: str, payment_token: str, now: datetime | None = None) -> dict:
    now = now or utcnow()
    if not payment_token or not payment_token.strip():
        raise ValidationError("A payment token is required")

    reservation = get_reservation_or_404(db, reservation_id)
    if settings.require_signed_waiver:
        has_waiver = db.query(Waiver.id).filter(Waiver.reservation_id == reservation_id).first()
        if has_waiver is None:
            raise ValidationError("Waiver must be signed before payment")

    rows = transition(
        db,
        reservation_id,
        PAID,
        now,
        values={Reservation.hold_expires_at: None, Reservation.payment_token: payment_token.strip()},
        criteria=(Reservation.status == HOLD, Reservation.hold_expires_at > now),
    )
    if rows == 0:
        db.rollback()
        db.refresh(reservation)
        if reservation.status == HOLD:
            raise ConflictError("Hold has expired")
        raise ConflictError(f"Cannot mark paid from '{reservation.status}' status")

    db.commit()
    logger.info("Reservation %s marked paid", reservation_id)
    return ok(
        reservation_id=reservation.id,
        booking_ref=reservation.booking_ref,
        booking_token=generate_booking_token(reservation.booking_ref),
        booking_status=PAID,
    )


def activate_reservation(db: Session, reservation_id: str, now: datetime) -> bool:
    """paid -> active; False if the reservation was not ``paid``. Does not commit."""
    return transition(db, reservation_id, ACTIVE, now, criteria=(Reservation.status == PAID,)) == 1


@service_operation("activating booking")
def activate(db: Session, reservation_id: str, now: datetime | None = None) -> dict:
    now = now or utcnow()
    reservation = get_reservation_or_404(db, reservation_id)
    if not activate_reservation(db, reservation_id, now):
        db.rollback()
        db.refresh(reservation)
        raise ConflictError(f"Cannot activate from '{reservation.status}' status. Booking must be 'paid'.")
    db.commit()
    return ok(reservation_id=reservation_id, booking_status=ACTIVE)


@service_operation("cancelling booking")
def cancel(
    db: Session,
    reservation_id: str,
    reason: str | None = None,
    gateway: PaymentGateway | None = None,
    now: datetime | None = None,
) -> dict:
    """
    Cancel from hold, paid or active (early return).

    A captured payment is voided first; if the gateway refuses, the booking
    is left untouched and the GatewayError is returned.
    """
    now = now or utcnow()
    reservation = get_reservation_or_404(db, reservation_id)
    if reservation.status in TERMINAL_STATUSES:
        raise ConflictError(f"Booking is already {reservation.status}")
    if reason is not None and len(reason) > settings.max_note_length:
        raise ValidationError(f"Reason must be at most {settings.max_note_length} characters")

    voided = False
    if reservation.gateway_txn_id and reservation.payment_voided_at is None:
        void_transaction(db, reservation_id, reservation.gateway_txn_id, gateway or get_payment_gateway(), now)
        voided = True

    rows = transition(db, reservation_id, CANCELLED, now)
    if rows == 0:
        # Keep the void marker; the money is already released at the gateway
        db.commit()
        db.refresh(reservation)
        raise ConflictError(f"Booking is already {reservation.status}")

    if reason and reason.strip():
        db.add(Note(reservation_id=reservation_id, text=f"Cancelled: {reason.strip()}", created_at=now))
    db.commit()

    logger.info("Reservation %s cancelled%s", reservation_id, " (payment voided)" if voided else "")
    return ok(reservation_id=reservation_id, booking_status=CANCELLED, payment_voided=voided)


@service_operation("completing booking")
def complete(db: Session, reservation_id: str, now: datetime | None = None) -> dict:
    now = now or utcnow()
    reservation = get_reservation_or_404(db, reservation_id)
    if reservation.status != ACTIVE:
        raise ConflictError(f"Cannot complete from '{reservation.status}' status. Booking must be 'active'.")
    if any(item.checked_in_at is None for item in reservation.items):
        raise ConflictError("All bikes must be checked in before the booking can be completed")

    if transition(db, reservation_id, COMPLETED, now) == 0:
        db.rollback()
        raise ConflictError("Booking changed concurrently; reload and retry")
    db.commit()
    return ok(reservation_id=reservation_id, booking_status=COMPLETED)


def validate_note_text(text: str | None) -> str:
    if text is None or not text.strip():
        raise ValidationError("Note text is required")
    if len(text) > settings.max_note_length:
        raise ValidationError(f"Note text must be at most {settings.max_note_length} characters")
    return text.strip()


@service_operation("adding note")
def add_note(db: Session, reservation_id: str, text: str, created_by: str = "admin", now: datetime | None = None) -> dict:
    text = validate_note_text(text)
    get_reservation_or_404(db, reservation_id)

    note = Note(reservation_id=reservation_id, text=text, created_by=created_by, created_at=now or utcnow())
    db.add(note)
    db.commit()
    return ok(note=dump(NoteRecord, note))


def is_overdue(reservation: Reservation, now: datetime | None = None) -> bool:
    """Active and holding at least one bike past its return time"""
    now = now or utcnow()
    if reservation.status != ACTIVE:
        return False
    return any(
        item.checked_out_at is not None and item.checked_in_at is None and item.ends_at < now
        for item in reservation.items
    )
