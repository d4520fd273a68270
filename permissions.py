import logging
from dataclasses import dataclass
from typing import Optional, Union

from models import MAX_ID, Booking
from store import BookingStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Principal:
    user_id: str
    is_admin: bool = False


@dataclass(frozen=True)
class DeleteAllowed:
    booking: Booking


@dataclass(frozen=True)
class BookingDeleted:
    booking_id: int


@dataclass(frozen=True)
class BookingNotFound:
    booking_id: int


@dataclass(frozen=True)
class PermissionDenied:
    reason: str
    requires_login: bool = False


class AuthorizationGate:
    """Decides who may remove a booking.

    Owners and administrators may delete. Bookings created without an owner
    (the old anonymous path) stay deletable by anyone, including anonymous
    callers; that carve-out covers ownerless bookings only.
    """

    def __init__(self, store: BookingStore):
        self.store = store

    async def can_delete(
        self, principal: Optional[Principal], booking_id: int
    ) -> Union[DeleteAllowed, PermissionDenied, BookingNotFound]:
        if not 1 <= booking_id <= MAX_ID:
            return BookingNotFound(booking_id)

        booking = await self.store.find_by_id(booking_id)
        if booking is None:
            return BookingNotFound(booking_id)

        if booking.user_id is None:
            return DeleteAllowed(booking)

        if principal is None:
            return PermissionDenied("Authentication required to delete this booking", requires_login=True)

        if principal.is_admin or principal.user_id == booking.user_id:
            return DeleteAllowed(booking)

        return PermissionDenied("You can only delete your own bookings")

    async def delete_booking(
        self, principal: Optional[Principal], booking_id: int
    ) -> Union[BookingDeleted, PermissionDenied, BookingNotFound]:
        decision = await self.can_delete(principal, booking_id)
        if not isinstance(decision, DeleteAllowed):
            if isinstance(decision, PermissionDenied):
                logger.warning(
                    "Delete of booking %s denied for %s",
                    booking_id,
                    principal.user_id if principal else "anonymous",
                )
            return decision

        # Another caller may have removed it since the check
        if not await self.store.delete_by_id(booking_id):
            return BookingNotFound(booking_id)

        logger.info("Booking %s deleted", booking_id)
        return BookingDeleted(booking_id)
