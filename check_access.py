"""
Quick existence and permission check for the booking calendar.

    python check_access.py

Reads BOOKING_CALENDAR_ID and GOOGLE_SERVICE_ACCOUNT_FILE from .env.
"""

import logging
import sys

import config
from calendar_mirror import GoogleCalendarMirror
from errors import MirrorError

logging.basicConfig(level=config.LOG_LEVEL, format="%(levelname)s %(message)s")
logger = logging.getLogger("check_access")


def main() -> int:
    if not config.BOOKING_CALENDAR_ID:
        logger.error("Missing BOOKING_CALENDAR_ID environment variable.")
        return 1

    mirror = GoogleCalendarMirror(config.BOOKING_CALENDAR_ID, config.GOOGLE_SERVICE_ACCOUNT_FILE)
    try:
        meta = mirror.describe()
        logger.info("Calendar OK: %s - %s", meta["summary"], meta["id"])
        upcoming = mirror.upcoming_events(max_results=3)
    except MirrorError as exc:
        logger.error("Access check failed: %s", exc.message)
        return 1

    logger.info("Upcoming: %s", [event.get("summary") for event in upcoming])
    return 0


if __name__ == "__main__":
    sys.exit(main())
