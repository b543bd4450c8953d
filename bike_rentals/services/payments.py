"""
Payment coordinator: capture and void against the external gateway, then
reconcile the reservation row with the outcome.

Each operation makes exactly one gateway call (plus a compensating void if a
concurrent capture won the race). There is no local retry loop; GatewayError
is returned to the caller as retryable.
"""
import logging
from datetime import datetime

from sqlalchemy.orm import Session

from bike_rentals.errors import ConflictError, GatewayError, ok, service_operation
from bike_rentals.models import Reservation
from bike_rentals.models.reservation import ACTIVE, PAID
from bike_rentals.services.intervals import iso_utc, utcnow
from bike_rentals.services.payment_gateway import GatewayResponse, PaymentGateway, get_payment_gateway
from bike_rentals.services.pricing import round_cents
from bike_rentals.services.transitions import get_reservation_or_404

logger = logging.getLogger(__name__)

CAPTURABLE_STATUSES = (PAID, ACTIVE)


def void_transaction(
    db: Session,
    reservation_id: str,
    transaction_id: str,
    gateway: PaymentGateway,
    now: datetime,
) -> GatewayResponse:
    """Void at the gateway and mark the row voided. Does not commit."""
    response = gateway.void(transaction_id)
    db.query(Reservation).filter(
        Reservation.id == reservation_id,
        Reservation.gateway_txn_id == transaction_id,
        Reservation.payment_voided_at.is_(None),
    ).update(
        {Reservation.payment_voided_at: now, Reservation.updated_at: now},
        synchronize_session="fetch",
    )
    logger.info("Voided transaction %s for reservation %s", transaction_id, reservation_id)
    return response


@service_operation("capturing payment")
def capture_payment(db: Session, reservation_id: str, gateway: PaymentGateway | None = None, now=None) -> dict:
    gateway = gateway or get_payment_gateway()
    now = now or utcnow()

    reservation = get_reservation_or_404(db, reservation_id)
    if reservation.status not in CAPTURABLE_STATUSES:
        raise ConflictError(f"Cannot capture payment from '{reservation.status}' status")
    if not reservation.payment_token:
        raise ConflictError("No payment token on file for this booking")
    if reservation.gateway_txn_id:
        raise ConflictError("Payment has already been captured")

    token = reservation.payment_token
    amount = round_cents(reservation.total_amount)
    # Nothing written yet; don't hold the transaction open across the gateway call
    db.commit()

    response = gateway.capture(token, amount)

    rows = (
        db.query(Reservation)
        .filter(
            Reservation.id == reservation_id,
            Reservation.gateway_txn_id.is_(None),
            Reservation.status.in_(CAPTURABLE_STATUSES),
        )
        .update(
            {
                Reservation.gateway_txn_id: response.transaction_id,
                Reservation.payment_captured_at: now,
                Reservation.updated_at: now,
            },
            synchronize_session="fetch",
        )
    )
    if rows == 0:
        db.rollback()
        logger.error(
            "Capture %s for reservation %s lost a race; voiding the duplicate",
            response.transaction_id,
            reservation_id,
        )
        try:
            gateway.void(response.transaction_id)
        except GatewayError:
            logger.exception(
                "Could not void duplicate capture %s for reservation %s; manual reconciliation required",
                response.transaction_id,
                reservation_id,
            )
        raise ConflictError("Payment was captured or the booking changed concurrently")

    db.commit()
    logger.info("Captured %s for reservation %s (txn %s)", amount, reservation_id, response.transaction_id)
    return ok(
        reservation_id=reservation_id,
        transaction_id=response.transaction_id,
        amount=str(amount),
        captured_at=iso_utc(now),
    )


@service_operation("voiding payment")
def void_payment(db: Session, reservation_id: str, gateway: PaymentGateway | None = None, now=None) -> dict:
    gateway = gateway or get_payment_gateway()
    now = now or utcnow()

    reservation = get_reservation_or_404(db, reservation_id)
    if not reservation.gateway_txn_id:
        raise ConflictError("No captured payment to void")
    if reservation.payment_voided_at is not None:
        return ok(
            reservation_id=reservation_id,
            transaction_id=reservation.gateway_txn_id,
            voided_at=iso_utc(reservation.payment_voided_at),
            already_voided=True,
        )

    transaction_id = reservation.gateway_txn_id
    db.commit()

    void_transaction(db, reservation_id, transaction_id, gateway, now)
    db.commit()
    return ok(
        reservation_id=reservation_id,
        transaction_id=transaction_id,
        voided_at=iso_utc(now),
        already_voided=False,
    )
