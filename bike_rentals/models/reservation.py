import secrets
import uuid
from sqlalchemy import Column, Integer, String, DateTime, Numeric, ForeignKey, Text, func
from sqlalchemy.orm import relationship
from bike_rentals.database import Base

# Statuses
HOLD = "hold"
PAID = "paid"
ACTIVE = "active"
COMPLETED = "completed"
CANCELLED = "cancelled"

STATUSES = (HOLD, PAID, ACTIVE, COMPLETED, CANCELLED)
TERMINAL_STATUSES = (COMPLETED, CANCELLED)

# Sources
ONLINE = "online"
WALK_IN = "walk-in"

# No 0/O/1/I/L so refs can be read out over the phone
BOOKING_REF_ALPHABET = "23456789ABCDEFGHJKMNPQRSTUVWXYZ"
BOOKING_REF_LENGTH = 6


def generate_booking_ref() -> str:
    return "".join(secrets.choice(BOOKING_REF_ALPHABET) for _ in range(BOOKING_REF_LENGTH))


class Reservation(Base):
    """A booking of one or more bikes for one rental period"""
    __tablename__ = "reservations"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    booking_ref = Column(String(10), unique=True, nullable=False, index=True, default=generate_booking_ref)
    customer_id = Column(String(36), ForeignKey("customers.id"), nullable=True, index=True)
    starts_at = Column(DateTime, nullable=False, index=True)  # naive UTC
    ends_at = Column(DateTime, nullable=False, index=True)  # naive UTC, exclusive
    duration_type = Column(String(20), nullable=False)
    status = Column(String(20), nullable=False, default=HOLD, index=True)
    source = Column(String(20), nullable=False, default=ONLINE)
    hold_expires_at = Column(DateTime, nullable=True)
    total_amount = Column(Numeric(10, 2), nullable=False, default=0)
    deposit_amount = Column(Numeric(10, 2), nullable=False, default=0)
    payment_token = Column(String(500), nullable=True)
    gateway_txn_id = Column(String(100), nullable=True)
    payment_captured_at = Column(DateTime, nullable=True)
    payment_voided_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    # Relationships
    customer = relationship("Customer", back_populates="reservations")
    items = relationship(
        "ReservationItem",
        back_populates="reservation",
        cascade="all, delete-orphan",
        order_by="ReservationItem.created_at",
    )
    notes = relationship("Note", back_populates="reservation", order_by="Note.created_at.desc()")
    waivers = relationship("Waiver", back_populates="reservation")


class ReservationItem(Base):
    """One bike within a reservation; checked out and in on its own"""
    __tablename__ = "reservation_items"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    reservation_id = Column(String(36), ForeignKey("reservations.id", ondelete="CASCADE"), nullable=False, index=True)
    bike_id = Column(Integer, ForeignKey("bikes.id"), nullable=False, index=True)
    starts_at = Column(DateTime, nullable=False)
    ends_at = Column(DateTime, nullable=False)
    rental_price = Column(Numeric(10, 2), nullable=False)
    deposit_amount = Column(Numeric(10, 2), nullable=False, default=0)
    checked_out_at = Column(DateTime, nullable=True)
    checked_in_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=func.now())

    # Relationships
    reservation = relationship("Reservation", back_populates="items")
    bike = relationship("Bike")


class Note(Base):
    """Append-only admin annotation on a reservation"""
    __tablename__ = "notes"

    id = Column(Integer, primary_key=True, index=True)
    reservation_id = Column(String(36), ForeignKey("reservations.id"), nullable=False, index=True)
    text = Column(Text, nullable=False)
    created_by = Column(String(100), nullable=False, default="admin")
    created_at = Column(DateTime, default=func.now())

    # Relationships
    reservation = relationship("Reservation", back_populates="notes")
