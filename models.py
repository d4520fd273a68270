from typing import Optional
from datetime import datetime, timezone
from sqlmodel import SQLModel, Field
from sqlalchemy import DDL, CheckConstraint, Column, DateTime, Index, TypeDecorator, event

OVERLAP_CONSTRAINT = "no_overlapping_bookings"

# Ids are SERIAL / INTEGER columns; anything outside this range cannot exist
MAX_ID = 2**31 - 1


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """Timezone-aware timestamp that always comes back in UTC.

    SQLite keeps no offset, so values are written as UTC and tagged
    with UTC again on the way out.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class Room(SQLModel, table=True):
    __tablename__ = "rooms"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True, unique=True)


class User(SQLModel, table=True):
    __tablename__ = "users"

    id: str = Field(primary_key=True)  # profile id from the OAuth provider
    email: Optional[str] = None
    name: Optional[str] = None
    api_token: Optional[str] = Field(default=None, index=True, unique=True)


class Booking(SQLModel, table=True):
    __tablename__ = "bookings"
    __table_args__ = (
        CheckConstraint("start_time < end_time", name="booking_interval_not_empty"),
        Index("ix_bookings_room_start", "room_id", "start_time"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    room_id: int = Field(foreign_key="rooms.id")
    # No FK: bookings outlive their users and keep the id for ownership checks
    user_id: Optional[str] = Field(default=None, index=True)
    start_time: datetime = Field(sa_column=Column(UTCDateTime(), nullable=False))
    end_time: datetime = Field(sa_column=Column(UTCDateTime(), nullable=False))
    notes: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow, sa_column=Column(UTCDateTime(), nullable=False))


# Database-level protection against overlapping bookings (PostgreSQL only).
# Half-open '[)' ranges, so back-to-back bookings are accepted.
event.listen(
    SQLModel.metadata,
    "before_create",
    DDL("CREATE EXTENSION IF NOT EXISTS btree_gist").execute_if(dialect="postgresql"),
)
event.listen(
    Booking.__table__,
    "after_create",
    DDL(
        f"ALTER TABLE bookings ADD CONSTRAINT {OVERLAP_CONSTRAINT} "
        "EXCLUDE USING gist (room_id WITH =, tstzrange(start_time, end_time, '[)') WITH &&)"
    ).execute_if(dialect="postgresql"),
)
