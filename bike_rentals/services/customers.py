"""
Customer upsert by email
"""
import logging
import uuid
from sqlalchemy.orm import Session

from bike_rentals.errors import ValidationError
from bike_rentals.models import Customer
from bike_rentals.services.intervals import parse_date

logger = logging.getLogger(__name__)


def placeholder_email() -> str:
    return f"walkin-{uuid.uuid4()}@placeholder.local"


def upsert_customer(
    db: Session,
    full_name: str,
    email: str,
    phone: str,
    date_of_birth=None,
) -> Customer:
    """
    Insert a customer or merge into the existing row with the same email.

    Name and phone are overwritten; an existing date of birth is kept when
    no new one is supplied. Does not commit.
    """
    if not full_name or not full_name.strip():
        raise ValidationError("Customer full name is required")
    if not email or "@" not in email:
        raise ValidationError("A valid customer email is required")

    email = email.strip().lower()
    dob = parse_date(date_of_birth, "date_of_birth") if date_of_birth else None

    customer = db.query(Customer).filter(Customer.email == email).first()
    if customer is None:
        customer = Customer(full_name=full_name.strip(), email=email, phone=phone or "", date_of_birth=dob)
        db.add(customer)
        db.flush()
        logger.info("Created customer %s", customer.id)
        return customer

    customer.full_name = full_name.strip()
    customer.phone = phone or customer.phone
    if dob is not None:
        customer.date_of_birth = dob
    db.flush()
    return customer


def upsert_from_draft(db: Session, draft: dict | None, walk_in: bool = False) -> Customer | None:
    """Upsert from a {full_name, email, phone, date_of_birth} mapping"""
    if not draft:
        return None
    email = draft.get("email")
    if not email and walk_in:
        email = placeholder_email()
    return upsert_customer(
        db,
        full_name=draft.get("full_name", ""),
        email=email or "",
        phone=draft.get("phone", ""),
        date_of_birth=draft.get("date_of_birth"),
    )
