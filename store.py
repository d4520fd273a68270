import asyncio
import logging
from collections import defaultdict
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from sqlalchemy import delete, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker
from sqlmodel import select

from models import OVERLAP_CONSTRAINT, Booking, Room, User

logger = logging.getLogger(__name__)


class StoreFailure(Exception):
    """A persistence operation failed for reasons other than the overlap rule."""


@dataclass(frozen=True)
class BookingDetail:
    booking: Booking
    room_name: str
    user_email: Optional[str] = None
    user_name: Optional[str] = None


def is_overlap_violation(error: IntegrityError) -> bool:
    return OVERLAP_CONSTRAINT in str(error.orig)


def _overlapping(room_id: int, start: datetime, end: datetime):
    # Half-open intervals: touching ends do not count
    return (
        Booking.room_id == room_id,
        Booking.start_time < end,
        Booking.end_time > start,
    )


class BookingStore:
    """Canonical set of rooms and bookings, one session per operation.

    Creates for the same room are serialised twice over: an in-process
    lock per room and a row lock on the room inside the insert transaction,
    so a second process on the same database waits as well. On PostgreSQL
    the exclusion constraint on ``bookings`` catches anything that slips by.
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory
        self._room_locks: Dict[int, asyncio.Lock] = defaultdict(asyncio.Lock)

    @asynccontextmanager
    async def _session(self, operation: str):
        try:
            async with self._session_factory() as session:
                yield session
        except SQLAlchemyError as exc:
            logger.exception("Store operation '%s' failed", operation)
            raise StoreFailure(f"{operation} failed") from exc

    # --- Rooms ---

    async def list_rooms(self) -> List[Room]:
        async with self._session("list_rooms") as session:
            result = await session.execute(select(Room).order_by(Room.name))
            return list(result.scalars().all())

    async def find_room(self, room_id: int) -> Optional[Room]:
        async with self._session("find_room") as session:
            return await session.get(Room, room_id)

    async def ensure_rooms(self, names: Iterable[str]) -> List[Room]:
        wanted = list(dict.fromkeys(names))
        if not wanted:
            return []
        async with self._session("ensure_rooms") as session:
            async with session.begin():
                result = await session.execute(select(Room).where(Room.name.in_(wanted)))
                existing = {room.name: room for room in result.scalars().all()}
                for name in wanted:
                    if name not in existing:
                        existing[name] = Room(name=name)
                        session.add(existing[name])
            return [existing[name] for name in wanted]

    # --- Users ---

    async def find_user(self, user_id: str) -> Optional[User]:
        async with self._session("find_user") as session:
            return await session.get(User, user_id)

    async def find_user_by_token(self, token: str) -> Optional[User]:
        async with self._session("find_user_by_token") as session:
            result = await session.execute(select(User).where(User.api_token == token))
            return result.scalars().first()

    async def save_user(self, user: User) -> User:
        """Insert or refresh a user profile.

        Write side of the login flow: after the OAuth exchange the profile
        and its freshly issued api_token are stored here.
        """
        async with self._session("save_user") as session:
            async with session.begin():
                merged = await session.merge(user)
            return merged

    # --- Bookings ---

    async def find_overlapping(self, room_id: int, start: datetime, end: datetime) -> int:
        async with self._session("find_overlapping") as session:
            statement = select(func.count()).select_from(Booking).where(*_overlapping(room_id, start, end))
            result = await session.execute(statement)
            return result.scalar_one()

    async def insert_if_free(self, booking: Booking) -> Optional[Booking]:
        """Insert ``booking`` unless it overlaps another booking on its room.

        Returns the persisted booking, or None on conflict (store unchanged).
        """
        async with self._room_locks[booking.room_id]:
            async with self._session("insert") as session:
                try:
                    async with session.begin():
                        # Serialises creates on this room across processes (no-op on SQLite)
                        await session.execute(
                            select(Room.id).where(Room.id == booking.room_id).with_for_update()
                        )
                        statement = select(func.count()).select_from(Booking).where(
                            *_overlapping(booking.room_id, booking.start_time, booking.end_time)
                        )
                        conflicts = (await session.execute(statement)).scalar_one()
                        if conflicts:
                            return None
                        session.add(booking)
                except IntegrityError as exc:
                    if not is_overlap_violation(exc):
                        raise
                    logger.warning("Overlap constraint rejected booking on room %s", booking.room_id)
                    return None
        return booking

    async def find_by_id(self, booking_id: int) -> Optional[Booking]:
        async with self._session("find_by_id") as session:
            return await session.get(Booking, booking_id)

    async def delete_by_id(self, booking_id: int) -> bool:
        async with self._session("delete") as session:
            async with session.begin():
                result = await session.execute(delete(Booking).where(Booking.id == booking_id))
            return result.rowcount > 0

    async def list_all(self) -> List[BookingDetail]:
        statement = (
            select(Booking, Room.name, User.email, User.name)
            .join(Room, Booking.room_id == Room.id)
            .join(User, Booking.user_id == User.id, isouter=True)
            .order_by(Booking.start_time, Booking.id)
        )
        async with self._session("list_all") as session:
            result = await session.execute(statement)
            return [
                BookingDetail(booking=booking, room_name=room_name, user_email=email, user_name=name)
                for booking, room_name, email, name in result.all()
            ]
