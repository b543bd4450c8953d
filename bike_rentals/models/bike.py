from sqlalchemy import Column, Integer, String, Numeric, JSON, DateTime, func
from bike_rentals.database import Base

BIKE_AVAILABLE = "available"
BIKE_IN_REPAIR = "in-repair"


class Bike(Base):
    """A rentable inventory unit"""
    __tablename__ = "bikes"

    id = Column(Integer, primary_key=True)
    name = Column(String(200), nullable=False)
    type = Column(String(50), nullable=False, index=True)
    size = Column(String(20), nullable=False, default="M")
    status = Column(String(20), nullable=False, default=BIKE_AVAILABLE)  # available / in-repair / retired
    price_2h = Column(Numeric(10, 2), nullable=False)
    price_4h = Column(Numeric(10, 2), nullable=False)
    price_8h = Column(Numeric(10, 2), nullable=False)
    price_per_day = Column(Numeric(10, 2), nullable=False)
    deposit_amount = Column(Numeric(10, 2), nullable=False, default=0)
    photo_url = Column(String(500), nullable=True)
    features = Column(JSON, default=list)
    created_at = Column(DateTime, default=func.now())
