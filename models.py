from typing import Optional
from datetime import datetime, timezone
from sqlmodel import SQLModel, Field
from sqlalchemy import UniqueConstraint


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Booking(SQLModel, table=True):
    __tablename__ = "bookings"
    __table_args__ = (
        # Two sessions can never start at the same instant at one location
        UniqueConstraint("location", "start_utc", name="unique_location_start"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    person_name: str
    person_contact: Optional[str] = None
    location: str = Field(index=True)
    # Aware UTC on the way in; read back through timewindow.as_utc
    start_utc: datetime = Field(index=True)
    end_utc: datetime = Field(index=True)
    external_event_id: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
