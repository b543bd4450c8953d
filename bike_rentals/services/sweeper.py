"""
Hold expiry sweeper.

Cancels every hold whose expiry has passed in one conditional UPDATE. The
``status = 'hold'`` guard makes a tick mutually exclusive with a concurrent
``mark_paid``: whichever commits first wins and the other matches zero rows.
"""
import logging
from datetime import datetime

from sqlalchemy.orm import Session

from bike_rentals.database import SessionLocal
from bike_rentals.models import Reservation
from bike_rentals.models.reservation import CANCELLED, HOLD
from bike_rentals.services.intervals import utcnow

logger = logging.getLogger(__name__)


def sweep_expired_holds(db: Session, now: datetime | None = None) -> int:
    """Cancel holds with ``hold_expires_at <= now``. Returns the number reclaimed."""
    now = now or utcnow()
    reclaimed = (
        db.query(Reservation)
        .filter(Reservation.status == HOLD, Reservation.hold_expires_at <= now)
        .update(
            {Reservation.status: CANCELLED, Reservation.updated_at: now},
            synchronize_session=False,
        )
    )
    db.commit()
    return reclaimed


def run_sweep() -> int:
    """Scheduler entry point. Failures are logged and retried on the next tick."""
    db = SessionLocal()
    try:
        reclaimed = sweep_expired_holds(db)
        if reclaimed:
            logger.info("Reclaimed %d expired hold(s)", reclaimed)
        return reclaimed
    except Exception:
        db.rollback()
        logger.exception("Hold expiry sweep failed")
        return 0
    finally:
        db.close()
