import os
from dotenv import load_dotenv
from pydantic_settings import BaseSettings

# Load environment variables from .env file
load_dotenv()


class Settings(BaseSettings):
    """Application configuration from environment variables"""

    # App
    app_name: str = "Bike Rentals"
    debug: bool = os.getenv("DEBUG", "False").lower() == "true"
    log_level: str = "INFO"

    # Database
    database_url: str = "sqlite:///./bike_rentals.db"

    # Shop operating rules
    timezone: str = "America/Edmonton"
    hold_minutes: int = 15
    sweep_interval_seconds: int = 60
    full_day_start: str = "09:30"
    full_day_end: str = "18:00"
    max_rental_days: int = 30
    max_items_per_booking: int = 20
    max_note_length: int = 2000
    require_signed_waiver: bool = False

    # Booking links
    booking_token_secret: str = "dev-booking-token-secret"

    # Payment gateway
    payment_gateway_url: str = "https://gateway.example-payments.com/api/v1"
    payment_store_id: str = ""
    payment_api_token: str = ""
    payment_timeout_seconds: float = 10.0

    # CMS
    cms_url: str = "http://localhost:3003"
    cms_timeout_seconds: float = 5.0
    cms_cache_ttl_seconds: int = 300

    class Config:
        env_file = ".env"
        case_sensitive = False


settings = Settings()
