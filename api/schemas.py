"""API Schemas - Request and Response DTOs"""
from pydantic import BaseModel, Field
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID
from typing import Dict, List, Optional


# ============================================================================
# RESERVATION SCHEMAS
# ============================================================================

class CreateReservationRequest(BaseModel):
    """Create reservation request DTO"""
    room_id: str
    check_in: date
    check_out: date
    guest_count: int = Field(ge=1)
    notes: Optional[str] = None
    guest_name: Optional[str] = None
    # Only honoured for admins booking on behalf of a guest
    guest_id: Optional[UUID] = None


class ChangeStatusRequest(BaseModel):
    """Status change request DTO; the value is checked against the lifecycle, not here"""
    status: str


class ReservationResponse(BaseModel):
    """Reservation response DTO"""
    reservation_id: UUID
    room_id: str
    guest_id: UUID
    guest_name: Optional[str] = None
    check_in: date
    check_out: date
    nights: int
    guest_count: int
    total_price: Decimal
    status: str
    notes: Optional[str] = None
    created_at: datetime
    modified_at: datetime
    version: int


class PopularRoomResponse(BaseModel):
    room_id: str
    reservations: int


class MonthlyStatsResponse(BaseModel):
    month: str
    count: int
    revenue: Decimal


class StatsResponse(BaseModel):
    """Booking statistics response DTO"""
    total: int
    statuses: Dict[str, int]
    revenue: Decimal
    monthly: List[MonthlyStatsResponse]
    popular_rooms: List[PopularRoomResponse]


# ============================================================================
# ROOM & AVAILABILITY SCHEMAS
# ============================================================================

class RoomResponse(BaseModel):
    """Room response DTO"""
    room_id: str
    name: str
    nightly_rate: Decimal
    capacity: int
    active: bool


class DateRangeResponse(BaseModel):
    check_in: date
    check_out: date


class AvailabilityResponse(BaseModel):
    """Availability response DTO"""
    room_id: str
    check_in: date
    check_out: date
    available: bool
    free_ranges: List[DateRangeResponse]


# ============================================================================
# AUTH SCHEMAS
# ============================================================================

class Token(BaseModel):
    """Token response DTO"""
    access_token: str
    token_type: str

class UserResponse(BaseModel):
    """User response DTO"""
    user_id: UUID
    username: str
    email: Optional[str] = None
    full_name: Optional[str] = None
    is_admin: bool = False
    disabled: bool
