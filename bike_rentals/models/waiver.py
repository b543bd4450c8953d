import uuid
from sqlalchemy import Column, String, DateTime, Boolean, ForeignKey, event, func
from sqlalchemy.orm import relationship
from bike_rentals.database import Base
from bike_rentals.errors import ConflictError


class Waiver(Base):
    """Signed consent record; never modified after creation"""
    __tablename__ = "waivers"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    customer_id = Column(String(36), ForeignKey("customers.id"), nullable=False, index=True)
    reservation_id = Column(String(36), ForeignKey("reservations.id"), nullable=True, index=True)
    storage_key = Column(String(500), nullable=False)  # PDF lives in external storage
    sha256 = Column(String(64), nullable=False)
    is_minor = Column(Boolean, default=False)
    signed_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, default=func.now())

    # Relationships
    reservation = relationship("Reservation", back_populates="waivers")
    customer = relationship("Customer")


@event.listens_for(Waiver, "before_update")
def _refuse_waiver_update(mapper, connection, target):
    raise ConflictError("Waivers are immutable once signed")
