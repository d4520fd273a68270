import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Optional

from fastapi import FastAPI, Depends, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, field_serializer

from bookings import AdmissionController, BookingConflict, InvalidBooking, to_utc
from config import Settings
from database import build_engine, build_session_factory, init_db
from dependencies import get_controller, get_gate, get_principal
from permissions import AuthorizationGate, BookingNotFound, PermissionDenied, Principal
from store import BookingStore, StoreFailure

logger = logging.getLogger(__name__)


# Pydantic Schemas for Request/Response
class RoomRead(BaseModel):
    id: int
    name: str


class BookingCreate(BaseModel):
    room_id: int
    start_time: datetime
    end_time: datetime
    notes: Optional[str] = None
    # Only honoured for anonymous requests
    user_id: Optional[str] = None


class BookingRead(BaseModel):
    id: int
    room_id: int
    user_id: Optional[str]
    start_time: datetime
    end_time: datetime
    notes: Optional[str]
    created_at: datetime

    @field_serializer("start_time", "end_time", "created_at")
    def _as_utc(self, value: datetime) -> str:
        return to_utc(value).isoformat().replace("+00:00", "Z")


class BookingListItem(BookingRead):
    room_name: str
    user_email: Optional[str]
    user_name: Optional[str]


class Availability(BaseModel):
    available: bool


class DeleteResponse(BaseModel):
    success: bool
    message: str


def _booking_read(booking) -> BookingRead:
    return BookingRead(**booking.model_dump())


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    logging.basicConfig(level=settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        engine = build_engine(settings)
        await init_db(engine)
        app.state.store = BookingStore(build_session_factory(engine))
        if settings.seed_rooms:
            await app.state.store.ensure_rooms(settings.seed_rooms)
        logger.info("Room booking API ready")
        yield
        await engine.dispose()

    app = FastAPI(title="Room Booking API", lifespan=lifespan)
    app.state.settings = settings

    @app.exception_handler(StoreFailure)
    async def store_failure_handler(request: Request, exc: StoreFailure):
        # Already logged with traceback by the store
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Internal storage error"},
        )

    @app.get("/api/health")
    async def health():
        return {"status": "ok"}

    # --- GET /api/rooms ---
    @app.get("/api/rooms", response_model=List[RoomRead])
    async def list_rooms(controller: AdmissionController = Depends(get_controller)):
        rooms = await controller.list_rooms()
        return [RoomRead(id=room.id, name=room.name) for room in rooms]

    # --- GET /api/bookings ---
    @app.get("/api/bookings", response_model=List[BookingListItem])
    async def list_bookings(controller: AdmissionController = Depends(get_controller)):
        details = await controller.list_bookings()
        return [
            BookingListItem(
                **detail.booking.model_dump(),
                room_name=detail.room_name,
                user_email=detail.user_email,
                user_name=detail.user_name,
            )
            for detail in details
        ]

    # --- POST /api/bookings ---
    @app.post("/api/bookings", response_model=BookingRead, status_code=status.HTTP_201_CREATED)
    async def create_booking(
        booking_data: BookingCreate,
        principal: Optional[Principal] = Depends(get_principal),
        controller: AdmissionController = Depends(get_controller),
    ):
        result = await controller.create_booking(
            room_id=booking_data.room_id,
            principal=principal,
            start=booking_data.start_time,
            end=booking_data.end_time,
            notes=booking_data.notes,
            user_id=booking_data.user_id,
        )
        if isinstance(result, InvalidBooking):
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=result.message)
        if isinstance(result, BookingConflict):
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=result.message)
        return _booking_read(result.booking)

    # --- GET /api/bookings/check-availability ---
    @app.get("/api/bookings/check-availability", response_model=Availability)
    async def check_availability(
        room_id: int,
        start_time: datetime,
        end_time: datetime,
        controller: AdmissionController = Depends(get_controller),
    ):
        result = await controller.check_availability(room_id, start_time, end_time)
        if isinstance(result, InvalidBooking):
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=result.message)
        return Availability(available=result)

    # --- DELETE /api/bookings/{booking_id} ---
    @app.delete("/api/bookings/{booking_id}", response_model=DeleteResponse)
    async def delete_booking(
        booking_id: int,
        principal: Optional[Principal] = Depends(get_principal),
        gate: AuthorizationGate = Depends(get_gate),
    ):
        result = await gate.delete_booking(principal, booking_id)
        if isinstance(result, BookingNotFound):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Booking not found")
        if isinstance(result, PermissionDenied):
            if result.requires_login:
                raise HTTPException(
                    status_code=status.HTTP_401_UNAUTHORIZED,
                    detail=result.reason,
                    headers={"WWW-Authenticate": "Bearer"},
                )
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=result.reason)
        return DeleteResponse(success=True, message="Booking deleted successfully")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    return app


app = create_app()
