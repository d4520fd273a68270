"""Booking admission: validation, overlap checks and the atomic commit."""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional, Union

from models import MAX_ID, Booking, Room
from permissions import Principal
from store import BookingDetail, BookingStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BookingCreated:
    booking: Booking


@dataclass(frozen=True)
class BookingConflict:
    message: str = "This time slot is already booked"


@dataclass(frozen=True)
class InvalidBooking:
    message: str


CreateResult = Union[BookingCreated, BookingConflict, InvalidBooking]


def to_utc(value: datetime) -> datetime:
    """Normalise to aware UTC; naive input is taken to be UTC already."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class AdmissionController:
    def __init__(self, store: BookingStore):
        self.store = store

    async def _room_exists(self, room_id: int) -> bool:
        if not 1 <= room_id <= MAX_ID:
            return False
        return await self.store.find_room(room_id) is not None

    async def overlaps(self, room_id: int, start: datetime, end: datetime) -> int:
        """Count bookings on the room sharing any instant with [start, end)."""
        return await self.store.find_overlapping(room_id, to_utc(start), to_utc(end))

    async def create_booking(
        self,
        room_id: int,
        principal: Optional[Principal],
        start: datetime,
        end: datetime,
        notes: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> CreateResult:
        start, end = to_utc(start), to_utc(end)
        if start >= end:
            return InvalidBooking("start_time must be before end_time")

        if not await self._room_exists(room_id):
            return InvalidBooking(f"Room {room_id} does not exist")

        # Authenticated identity always wins over the payload
        if principal is not None:
            owner = principal.user_id
        else:
            owner = user_id
            if owner is not None and await self.store.find_user(owner) is None:
                return InvalidBooking(f"User {owner} does not exist")

        candidate = Booking(room_id=room_id, user_id=owner, start_time=start, end_time=end, notes=notes)
        booking = await self.store.insert_if_free(candidate)
        if booking is None:
            logger.warning("Booking conflict on room %s for %s - %s", room_id, start, end)
            return BookingConflict()

        logger.info("Booking %s created on room %s", booking.id, room_id)
        return BookingCreated(booking)

    async def list_bookings(self) -> List[BookingDetail]:
        return await self.store.list_all()

    async def check_availability(
        self, room_id: int, start: datetime, end: datetime
    ) -> Union[bool, InvalidBooking]:
        # Advisory only: nothing is reserved
        if to_utc(start) >= to_utc(end):
            return InvalidBooking("start_time must be before end_time")
        if not await self._room_exists(room_id):
            return InvalidBooking(f"Room {room_id} does not exist")
        return await self.overlaps(room_id, start, end) == 0

    async def list_rooms(self) -> List[Room]:
        return await self.store.list_rooms()
