import os
from pathlib import Path

from dotenv import load_dotenv

# Load environment variables from the .env next to this file
load_dotenv(dotenv_path=Path(__file__).resolve().parent / ".env")

DATABASE_URL = os.environ.get("DATABASE_URL")

if not DATABASE_URL:
    raise ValueError("DATABASE_URL is not set. Please check your .env file.")

# Google Calendar mirror. Mirroring is disabled when no calendar is configured.
BOOKING_CALENDAR_ID = os.getenv("BOOKING_CALENDAR_ID", "")
GOOGLE_SERVICE_ACCOUNT_FILE = os.getenv("GOOGLE_SERVICE_ACCOUNT_FILE")
MIRROR_MAX_ATTEMPTS = int(os.getenv("MIRROR_MAX_ATTEMPTS", "3"))
MIRROR_RETRY_DELAY = float(os.getenv("MIRROR_RETRY_DELAY", "2.0"))

# All human-facing times are rendered in this zone
TIMEZONE = os.getenv("TIMEZONE", "Australia/Sydney")

# Shared secret for DELETE /api/bookings/{id}
ADMIN_KEY = os.getenv("ADMIN_KEY", "")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
