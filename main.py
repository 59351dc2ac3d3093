from contextlib import asynccontextmanager
from decimal import Decimal
from fastapi import FastAPI, HTTPException, Depends, Query
from uuid import UUID
from datetime import date, timedelta
from typing import List, Optional
from fastapi.security import OAuth2PasswordRequestForm
import logging

from api.schemas import (
    CreateReservationRequest, ChangeStatusRequest, ReservationResponse, StatsResponse,
    RoomResponse, AvailabilityResponse, DateRangeResponse,
    Token, UserResponse
)
from api.dependencies import get_current_active_user, require_admin, fake_users_db, authenticate_user
from api.errors import register_exception_handlers
from infrastructure.config import get_settings
from infrastructure.logging_config import configure_logging
from infrastructure.security import create_access_token, ACCESS_TOKEN_EXPIRE_MINUTES
from domain.auth import User

from application.locks import RoomLockRegistry
from application.services import ReservationService
from infrastructure.repositories.in_memory_repositories import (
    InMemoryReservationRepository, InMemoryRoomInventory
)
from domain.availability_index import AvailabilityIndex
from domain.entities import Room
from domain.enums import ReservationStatus
from domain.repositories import ReservationFilter
from domain.state_machine import parse_status
from domain.value_objects import DateRange

settings = get_settings()
configure_logging(settings.log_level)
logger = logging.getLogger(__name__)

# Room records are owned by the inventory admin; these seed the demo store
DEFAULT_ROOMS = [
    Room(room_id="R1", name="Standard Double", nightly_rate=Decimal("1000"), capacity=2),
    Room(room_id="R2", name="Forest View Suite", nightly_rate=Decimal("5500"), capacity=2),
    Room(room_id="R3", name="Family Room", nightly_rate=Decimal("2000"), capacity=4),
]

# Initialize repositories
reservation_repo = InMemoryReservationRepository()
room_inventory = InMemoryRoomInventory(DEFAULT_ROOMS)

# The index and the locks are process-wide, so one service instance is shared
reservation_service = ReservationService(
    reservation_repo,
    room_inventory,
    index=AvailabilityIndex(reservation_repo),
    locks=RoomLockRegistry(timeout=settings.lock_timeout_seconds),
    timeout=settings.repository_timeout_seconds,
    retry_attempts=settings.create_retry_attempts,
)

# Dependency injection
def get_reservation_service() -> ReservationService:
    return reservation_service


@asynccontextmanager
async def lifespan(app: FastAPI):
    counts = await reservation_service.rebuild_index()
    logger.info("Availability index loaded", extra={"rooms": len(counts)})
    yield


app = FastAPI(
    title="Hotel Reservation API",
    description="Reservation and availability engine for the hotel booking site",
    version="1.0.0",
    lifespan=lifespan,
)
register_exception_handlers(app)

# ============================================================================
# HEALTH & ENUM REFERENCE ENDPOINTS
# ============================================================================

@app.get("/api/health", tags=["Health"])
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "message": "API is running"}

@app.get("/api/enums/reservation-status", tags=["Enum Reference"])
async def get_reservation_statuses():
    """Get all ReservationStatus enum values"""
    return {
        "values": [item.value for item in ReservationStatus],
        "description": "Reservation status values: pending, confirmed, cancelled, completed"
    }

# ============================================================================
# AUTH ENDPOINTS
# ============================================================================

@app.post("/token", response_model=Token, tags=["Auth"])
async def login_for_access_token(form_data: OAuth2PasswordRequestForm = Depends()):
    user = authenticate_user(fake_users_db, form_data.username, form_data.password)
    if not user:
        raise HTTPException(
            status_code=401,
            detail="Incorrect username or password",
            headers={"WWW-Authenticate": "Bearer"},
        )
    access_token_expires = timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    access_token = create_access_token(
        data={"sub": user.username}, expires_delta=access_token_expires
    )
    return {"access_token": access_token, "token_type": "bearer"}

@app.get("/users/me", response_model=UserResponse, tags=["Auth"])
async def read_users_me(current_user: User = Depends(get_current_active_user)):
    return current_user

# ============================================================================
# ROOM ENDPOINTS
# ============================================================================

@app.get("/api/rooms", response_model=List[RoomResponse], tags=["Rooms"])
async def list_rooms(
    active_only: bool = True,
    service: ReservationService = Depends(get_reservation_service)
):
    """List rooms open for booking"""
    rooms = await service.rooms.list_rooms(active_only=active_only)
    return [RoomResponse(**room.model_dump()) for room in rooms]

@app.get("/api/rooms/{room_id}/availability", response_model=AvailabilityResponse, tags=["Rooms"])
async def get_room_availability(
    room_id: str,
    check_in: date,
    check_out: date,
    service: ReservationService = Depends(get_reservation_service)
):
    """Whether the room is free for the whole range, plus its free sub-ranges"""
    date_range = DateRange.of(check_in, check_out)
    available, free = await service.room_availability(room_id, date_range)
    return AvailabilityResponse(
        room_id=room_id,
        check_in=check_in,
        check_out=check_out,
        available=available,
        free_ranges=[DateRangeResponse(check_in=r.check_in, check_out=r.check_out) for r in free],
    )

@app.get("/api/rooms/{room_id}/reservations", response_model=List[ReservationResponse], tags=["Rooms"])
async def get_room_reservations(
    room_id: str,
    start: Optional[date] = None,
    end: Optional[date] = None,
    service: ReservationService = Depends(get_reservation_service),
    current_user: User = Depends(require_admin)
):
    """Reservations of any status on a room, optionally limited to a window"""
    reservations = await service.list_for_room(room_id, _window(start, end))
    return [_reservation_to_response(r) for r in reservations]

# ============================================================================
# RESERVATION ENDPOINTS
# ============================================================================

@app.post("/api/reservations", response_model=ReservationResponse, status_code=201, tags=["Reservations"])
async def create_reservation(
    request: CreateReservationRequest,
    service: ReservationService = Depends(get_reservation_service),
    current_user: User = Depends(get_current_active_user)
):
    """Create new reservation"""
    guest_id = current_user.user_id
    if request.guest_id is not None and current_user.is_admin:
        guest_id = request.guest_id

    reservation = await service.create(
        room_id=request.room_id,
        guest_id=guest_id,
        date_range=DateRange.of(request.check_in, request.check_out),
        guest_count=request.guest_count,
        notes=request.notes,
        guest_name=request.guest_name or current_user.full_name,
    )
    return _reservation_to_response(reservation)

@app.get("/api/reservations", response_model=List[ReservationResponse], tags=["Reservations"])
async def search_reservations(
    status: Optional[str] = None,
    room_id: Optional[str] = None,
    guest_id: Optional[UUID] = None,
    start: Optional[date] = None,
    end: Optional[date] = None,
    q: Optional[str] = Query(None, description="Free-text match on guest name and notes"),
    service: ReservationService = Depends(get_reservation_service),
    current_user: User = Depends(require_admin)
):
    """Search reservations for the bookings dashboard"""
    criteria = ReservationFilter(
        status=parse_status(status) if status else None,
        room_id=room_id,
        guest_id=guest_id,
        window=_window(start, end),
        text=q,
    )
    reservations = await service.search(criteria)
    return [_reservation_to_response(r) for r in reservations]

@app.get("/api/reservations/stats", response_model=StatsResponse, tags=["Reservations"])
async def get_reservation_stats(
    service: ReservationService = Depends(get_reservation_service),
    current_user: User = Depends(require_admin)
):
    """Counts per status, revenue and most booked rooms"""
    return await service.stats()

@app.get("/api/reservations/guest/{guest_id}", response_model=List[ReservationResponse], tags=["Reservations"])
async def get_guest_reservations(
    guest_id: UUID,
    service: ReservationService = Depends(get_reservation_service),
    current_user: User = Depends(get_current_active_user)
):
    """Get all reservations for a guest"""
    _ensure_owner_or_admin(current_user, guest_id)
    reservations = await service.list_for_guest(guest_id)
    return [_reservation_to_response(r) for r in reservations]

@app.get("/api/reservations/{reservation_id}", response_model=ReservationResponse, tags=["Reservations"])
async def get_reservation(
    reservation_id: UUID,
    service: ReservationService = Depends(get_reservation_service),
    current_user: User = Depends(get_current_active_user)
):
    """Get reservation by ID"""
    reservation = await service.get_reservation(reservation_id)
    _ensure_owner_or_admin(current_user, reservation.guest_id)
    return _reservation_to_response(reservation)

@app.patch("/api/reservations/{reservation_id}/status", response_model=ReservationResponse, tags=["Reservations"])
async def change_reservation_status(
    reservation_id: UUID,
    request: ChangeStatusRequest,
    service: ReservationService = Depends(get_reservation_service),
    current_user: User = Depends(get_current_active_user)
):
    """Move a reservation through its lifecycle; guests may only cancel their own, before check-in day"""
    target = parse_status(request.status)
    if not current_user.is_admin:
        reservation = await service.get_reservation(reservation_id)
        _ensure_owner_or_admin(current_user, reservation.guest_id)
        if target != ReservationStatus.CANCELLED:
            raise HTTPException(status_code=403, detail="Only cancellation is allowed for guests")
        service.state_machine.validate_guest_cancel(reservation, service.clock())

    reservation = await service.transition(reservation_id, target)
    return _reservation_to_response(reservation)

# ============================================================================
# HELPERS
# ============================================================================

def _window(start: Optional[date], end: Optional[date]) -> Optional[DateRange]:
    if start is None and end is None:
        return None
    if start is None or end is None:
        raise HTTPException(status_code=400, detail="Both start and end are required for a date window")
    return DateRange.of(start, end)

def _ensure_owner_or_admin(current_user: User, guest_id: UUID) -> None:
    if not current_user.can_access(guest_id):
        raise HTTPException(status_code=404, detail="Reservation not found")

def _reservation_to_response(reservation) -> ReservationResponse:
    """Convert Reservation entity to ReservationResponse"""
    return ReservationResponse(
        reservation_id=reservation.reservation_id,
        room_id=reservation.room_id,
        guest_id=reservation.guest_id,
        guest_name=reservation.guest_name,
        check_in=reservation.check_in,
        check_out=reservation.check_out,
        nights=reservation.get_nights(),
        guest_count=reservation.guest_count,
        total_price=reservation.total_price,
        status=reservation.status.value,
        notes=reservation.notes,
        created_at=reservation.created_at,
        modified_at=reservation.modified_at,
        version=reservation.version
    )

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
