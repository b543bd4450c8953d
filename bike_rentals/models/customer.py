import uuid
from sqlalchemy import Column, String, Date, DateTime, func
from sqlalchemy.orm import relationship
from bike_rentals.database import Base


class Customer(Base):
    """Renter identity, keyed by email"""
    __tablename__ = "customers"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    full_name = Column(String(200), nullable=False)
    email = Column(String(254), unique=True, nullable=False, index=True)
    phone = Column(String(30), nullable=False)
    date_of_birth = Column(Date, nullable=True)
    created_at = Column(DateTime, default=func.now())

    # Relationships
    reservations = relationship("Reservation", back_populates="customer")
