"""
Typed records decoded from storage rows.

Every row leaving the engine goes through ``decode`` so a shape mismatch is
reported as a ValidationError instead of leaking a half-populated dict.
"""
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic import ValidationError as PydanticValidationError

from bike_rentals.errors import ValidationError


class Record(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    @field_validator("*", mode="after")
    @classmethod
    def _mark_utc(cls, value):
        # Storage keeps naive UTC
        if isinstance(value, datetime) and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class CustomerRecord(Record):
    id: str
    full_name: str
    email: str
    phone: str
    date_of_birth: Optional[date] = None


class BikeRecord(Record):
    id: int
    name: str
    type: str
    size: str
    status: str
    price_2h: Decimal
    price_4h: Decimal
    price_8h: Decimal
    price_per_day: Decimal
    deposit_amount: Decimal
    photo_url: Optional[str] = None
    features: List[str] = []

    @field_validator("features", mode="before")
    @classmethod
    def _features_default(cls, value):
        return value or []


class ReservationItemRecord(Record):
    id: str
    bike_id: int
    starts_at: datetime
    ends_at: datetime
    rental_price: Decimal
    deposit_amount: Decimal
    checked_out_at: Optional[datetime] = None
    checked_in_at: Optional[datetime] = None


class NoteRecord(Record):
    id: int
    text: str
    created_by: str
    created_at: datetime


class WaiverRecord(Record):
    id: str
    customer_id: str
    signed_at: datetime
    is_minor: bool = False


class ReservationRecord(Record):
    id: str
    booking_ref: str
    customer_id: Optional[str] = None
    starts_at: datetime
    ends_at: datetime
    duration_type: str
    status: str
    source: str
    hold_expires_at: Optional[datetime] = None
    total_amount: Decimal
    deposit_amount: Decimal
    gateway_txn_id: Optional[str] = None
    payment_captured_at: Optional[datetime] = None
    payment_voided_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


def decode(record_cls, row):
    """Decode an ORM row into ``record_cls``"""
    try:
        return record_cls.model_validate(row)
    except PydanticValidationError as e:
        raise ValidationError(f"Malformed {record_cls.__name__} row: {e.error_count()} field error(s)")


def dump(record_cls, row) -> dict:
    return decode(record_cls, row).model_dump(mode="json")
