"""
Reservation status transitions.

Transitions are compare-and-swap updates guarded by the current status
(``UPDATE ... WHERE id = :id AND status IN (...)``), so concurrent writers
(sweeper, payment, admin actions) serialize at the row without application
locks: whichever commits first wins and the loser matches zero rows.
"""
from datetime import datetime

from sqlalchemy.orm import Session

from bike_rentals.errors import NotFoundError
from bike_rentals.models import Reservation
from bike_rentals.models.reservation import ACTIVE, CANCELLED, COMPLETED, HOLD, PAID

ALLOWED_TRANSITIONS = {
    HOLD: {PAID, CANCELLED},
    PAID: {ACTIVE, CANCELLED},
    ACTIVE: {COMPLETED, CANCELLED},
    COMPLETED: set(),
    CANCELLED: set(),
}


def sources_for(to_status: str) -> list[str]:
    return [status for status, targets in ALLOWED_TRANSITIONS.items() if to_status in targets]


def can_transition(from_status: str, to_status: str) -> bool:
    return to_status in ALLOWED_TRANSITIONS.get(from_status, set())


def get_reservation_or_404(db: Session, reservation_id: str) -> Reservation:
    reservation = db.get(Reservation, reservation_id) if reservation_id else None
    if reservation is None:
        raise NotFoundError("Booking")
    return reservation


def transition(
    db: Session,
    reservation_id: str,
    to_status: str,
    now: datetime,
    values: dict | None = None,
    criteria: tuple = (),
) -> int:
    """
    Move a reservation to ``to_status`` if its current status allows it.

    Returns the number of rows changed (0 or 1). Does not commit.
    """
    changes = {Reservation.status: to_status, Reservation.updated_at: now}
    if values:
        changes.update(values)
    return (
        db.query(Reservation)
        .filter(
            Reservation.id == reservation_id,
            Reservation.status.in_(sources_for(to_status)),
            *criteria,
        )
        .update(changes, synchronize_session="fetch")
    )
