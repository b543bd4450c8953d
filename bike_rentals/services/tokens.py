"""
Booking tokens: short HMACs over the booking ref that let an unauthenticated
customer reference their own reservation without exposing enumerable ids.
"""
import hashlib
import hmac

from bike_rentals.config import settings

TOKEN_LENGTH = 12


def generate_booking_token(booking_ref: str) -> str:
    digest = hmac.new(
        settings.booking_token_secret.encode("utf-8"),
        booking_ref.upper().encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()
    return digest[:TOKEN_LENGTH]


def verify_booking_token(booking_ref: str, token: str | None) -> bool:
    if not token:
        return False
    return hmac.compare_digest(generate_booking_token(booking_ref), token)
