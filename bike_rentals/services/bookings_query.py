"""
Read-side queries for the admin console and the public booking page.
"""
import logging
import math
from datetime import datetime, time, timedelta

from sqlalchemy import and_, exists, func, or_
from sqlalchemy.orm import Session

from bike_rentals.errors import NotFoundError, ValidationError, ok, service_operation
from bike_rentals.models import Bike, Customer, Reservation, ReservationItem, Waiver
from bike_rentals.models.bike import BIKE_AVAILABLE, BIKE_IN_REPAIR
from bike_rentals.models.reservation import ACTIVE, CANCELLED, HOLD, PAID, STATUSES
from bike_rentals.schemas import (
    CustomerRecord,
    NoteRecord,
    ReservationItemRecord,
    ReservationRecord,
    WaiverRecord,
    dump,
)
from bike_rentals.services.intervals import from_utc_naive, iso_utc, to_utc_naive, utcnow
from bike_rentals.services.pricing import round_cents
from bike_rentals.services.reservations import is_overdue
from bike_rentals.services.tokens import verify_booking_token
from bike_rentals.services.transitions import get_reservation_or_404

logger = logging.getLogger(__name__)

OVERDUE = "overdue"
DATE_BUCKETS = ("all", "today", "upcoming", "past")
MAX_PAGE_SIZE = 100


def _late_items(now: datetime):
    """Items handed over, not back, and past their return time"""
    return and_(
        ReservationItem.checked_out_at.isnot(None),
        ReservationItem.checked_in_at.is_(None),
        ReservationItem.ends_at < now,
    )


def _overdue_clause(now: datetime):
    return exists().where(ReservationItem.reservation_id == Reservation.id, _late_items(now))


def _today_bounds(now: datetime) -> tuple[datetime, datetime]:
    """Naive UTC bounds of the current calendar day in the operating timezone"""
    local_day = from_utc_naive(now).date()
    start = datetime.combine(local_day, time(0, 0))
    end = datetime.combine(local_day + timedelta(days=1), time(0, 0))
    return to_utc_naive(start), to_utc_naive(end)


def _item_view(item: ReservationItem) -> dict:
    view = dump(ReservationItemRecord, item)
    view["bike_name"] = item.bike.name if item.bike else None
    view["bike_type"] = item.bike.type if item.bike else None
    view["bike_size"] = item.bike.size if item.bike else None
    return view


def _summary(reservation: Reservation, overdue: bool) -> dict:
    view = dump(ReservationRecord, reservation)
    customer = reservation.customer
    view["customer_name"] = customer.full_name if customer else None
    view["customer_email"] = customer.email if customer else None
    view["customer_phone"] = customer.phone if customer else None
    view["item_count"] = len(reservation.items)
    view["waiver_count"] = len(reservation.waivers)
    view["items"] = [_item_view(item) for item in reservation.items]
    view["waivers"] = [dump(WaiverRecord, waiver) for waiver in reservation.waivers]
    view["is_overdue"] = bool(overdue)
    return view


@service_operation("listing bookings")
def list_reservations(
    db: Session,
    status: str = "all",
    date_bucket: str = "all",
    search: str | None = None,
    page: int = 1,
    limit: int = 25,
    now: datetime | None = None,
) -> dict:
    """
    Filtered, paginated booking list for the admin console.

    Overdue bookings sort first, then newest first.
    """
    now = now or utcnow()
    if status not in ("all", OVERDUE, *STATUSES):
        raise ValidationError(f"Unknown status filter '{status}'")
    if date_bucket not in DATE_BUCKETS:
        raise ValidationError(f"Unknown date filter '{date_bucket}'")
    if page < 1 or not 1 <= limit <= MAX_PAGE_SIZE:
        raise ValidationError(f"page must be >= 1 and limit between 1 and {MAX_PAGE_SIZE}")

    conditions = []
    if status == OVERDUE:
        conditions += [Reservation.status == ACTIVE, _overdue_clause(now)]
    elif status != "all":
        conditions.append(Reservation.status == status)

    if date_bucket == "today":
        day_start, day_end = _today_bounds(now)
        conditions += [Reservation.starts_at >= day_start, Reservation.starts_at < day_end]
    elif date_bucket == "upcoming":
        conditions.append(Reservation.starts_at > now)
    elif date_bucket == "past":
        conditions.append(Reservation.ends_at < now)

    if search and search.strip():
        term = f"%{search.strip()}%"
        conditions.append(
            or_(
                Customer.full_name.ilike(term),
                Customer.email.ilike(term),
                Customer.phone.ilike(term),
                Reservation.booking_ref.ilike(term),
                Reservation.id.ilike(term),
            )
        )

    base = db.query(Reservation).outerjoin(Customer, Reservation.customer_id == Customer.id).filter(*conditions)
    total = base.count()
    pages = math.ceil(total / limit) or 1

    overdue = _overdue_clause(now).label("is_overdue")
    rows = (
        base.add_columns(overdue)
        .order_by(overdue.desc(), Reservation.created_at.desc(), Reservation.id)
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return ok(
        reservations=[_summary(reservation, flag) for reservation, flag in rows],
        total=total,
        page=page,
        pages=pages,
    )


@service_operation("fetching booking")
def get_reservation_detail(db: Session, reservation_id: str, now: datetime | None = None) -> dict:
    reservation = get_reservation_or_404(db, reservation_id)
    detail = _summary(reservation, is_overdue(reservation, now))
    detail["customer"] = dump(CustomerRecord, reservation.customer) if reservation.customer else None
    detail["notes"] = [dump(NoteRecord, note) for note in reservation.notes]
    return ok(reservation=detail)


@service_operation("fetching booking")
def get_public_booking(db: Session, booking_ref: str, token: str | None) -> dict:
    """
    Customer-facing lookup by booking ref.

    A wrong token looks exactly like an unknown ref so refs can't be probed.
    """
    if not booking_ref or not verify_booking_token(booking_ref, token):
        raise NotFoundError("Booking")
    reservation = (
        db.query(Reservation)
        .filter(func.upper(Reservation.booking_ref) == booking_ref.upper(), Reservation.status != CANCELLED)
        .first()
    )
    if reservation is None:
        raise NotFoundError("Booking")

    customer = reservation.customer
    return ok(
        booking={
            "id": reservation.id,
            "booking_ref": reservation.booking_ref,
            "status": reservation.status,
            "duration_type": reservation.duration_type,
            "starts_at": iso_utc(reservation.starts_at),
            "ends_at": iso_utc(reservation.ends_at),
            "total_amount": str(round_cents(reservation.total_amount)),
            "deposit_amount": str(round_cents(reservation.deposit_amount)),
            "rental_amount": str(round_cents(reservation.total_amount - reservation.deposit_amount)),
            "full_name": customer.full_name if customer else None,
            "email": customer.email if customer else None,
            "items": [
                {
                    "bike_id": item.bike_id,
                    "bike_name": item.bike.name if item.bike else None,
                    "bike_type": item.bike.type if item.bike else None,
                    "rental_price": str(round_cents(item.rental_price)),
                    "deposit_amount": str(round_cents(item.deposit_amount)),
                }
                for item in reservation.items
            ],
            "waivers": [dump(WaiverRecord, waiver) for waiver in reservation.waivers],
        }
    )


@service_operation("loading dashboard")
def get_dashboard(db: Session, now: datetime | None = None) -> dict:
    now = now or utcnow()
    day_start, day_end = _today_bounds(now)

    out_items = (
        db.query(ReservationItem)
        .join(Reservation, Reservation.id == ReservationItem.reservation_id)
        .filter(
            Reservation.status == ACTIVE,
            ReservationItem.checked_out_at.isnot(None),
            ReservationItem.checked_in_at.is_(None),
        )
    )
    late = out_items.filter(ReservationItem.ends_at < now).order_by(ReservationItem.ends_at).all()

    # Upcoming in the next 24h with fewer waivers than bikes
    unsigned = []
    upcoming = (
        db.query(Reservation)
        .filter(
            Reservation.status.in_((HOLD, PAID)),
            Reservation.starts_at >= now,
            Reservation.starts_at <= now + timedelta(hours=24),
        )
        .order_by(Reservation.starts_at)
        .all()
    )
    for reservation in upcoming:
        if len(reservation.waivers) < len(reservation.items):
            unsigned.append(
                {
                    "reservation_id": reservation.id,
                    "customer_name": reservation.customer.full_name if reservation.customer else None,
                    "item_count": len(reservation.items),
                    "waiver_count": len(reservation.waivers),
                }
            )

    waivers_ready = (
        db.query(Waiver)
        .filter(Waiver.reservation_id.is_(None), Waiver.signed_at >= day_start, Waiver.signed_at < day_end)
        .count()
    )

    return ok(
        stats={
            "active_rentals": out_items.count(),
            "returns_due_today": out_items.filter(
                ReservationItem.ends_at >= day_start, ReservationItem.ends_at < day_end
            ).count(),
            "overdue_count": len(late),
            "available_fleet": db.query(Bike).filter(Bike.status == BIKE_AVAILABLE).count(),
            "total_fleet": db.query(Bike).count(),
            "waivers_ready": waivers_ready,
        },
        alerts={
            "overdue": [
                {
                    "reservation_id": item.reservation_id,
                    "customer_name": item.reservation.customer.full_name if item.reservation.customer else None,
                    "bike_name": item.bike.name if item.bike else None,
                    "due_at": iso_utc(item.ends_at),
                }
                for item in late
            ],
            "unsigned_waivers": unsigned,
        },
    )


def _bike_ids_where(db: Session, *criteria) -> set[int]:
    rows = (
        db.query(ReservationItem.bike_id)
        .join(Reservation, Reservation.id == ReservationItem.reservation_id)
        .filter(*criteria)
        .distinct()
        .all()
    )
    return {bike_id for (bike_id,) in rows}


@service_operation("loading fleet status")
def get_fleet_status(db: Session, now: datetime | None = None) -> dict:
    """
    Per-type fleet counts for the admin console.

    ``rented_out`` bikes are out with a customer right now; ``reserved`` bikes
    belong to a paid booking that hasn't been picked up and hasn't ended yet.
    A bike can be both reserved and out (booked again for later).
    """
    now = now or utcnow()
    out_ids = _bike_ids_where(
        db,
        Reservation.status == ACTIVE,
        ReservationItem.checked_out_at.isnot(None),
        ReservationItem.checked_in_at.is_(None),
    )
    reserved_ids = _bike_ids_where(
        db,
        Reservation.status == PAID,
        ReservationItem.checked_out_at.is_(None),
        ReservationItem.ends_at > now,
    )

    groups: dict[str, dict] = {}
    for bike in db.query(Bike).order_by(Bike.type, Bike.id).all():
        group = groups.setdefault(
            bike.type,
            {"type": bike.type, "total": 0, "available": 0, "rented_out": 0, "reserved": 0, "maintenance": 0},
        )
        group["total"] += 1
        if bike.id in out_ids:
            group["rented_out"] += 1
        elif bike.status == BIKE_AVAILABLE:
            group["available"] += 1
        if bike.id in reserved_ids:
            group["reserved"] += 1
        if bike.status == BIKE_IN_REPAIR:
            group["maintenance"] += 1

    return ok(fleet=list(groups.values()))
