"""Domain Entities - Aggregates"""
from pydantic import BaseModel, Field
from uuid import UUID, uuid4
from datetime import datetime, timezone
from typing import Optional
from decimal import Decimal

from domain.enums import ReservationStatus
from domain.exceptions import InvalidGuestCountError, CapacityExceededError
from domain.value_objects import DateRange


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Room(BaseModel):
    """Bookable room as managed by the inventory admin"""

    room_id: str
    name: str = ""
    nightly_rate: Decimal = Field(ge=0)
    capacity: int = Field(ge=1)
    active: bool = True

    class Config:
        from_attributes = True


class Reservation(BaseModel):
    """Reservation Aggregate Root Entity"""

    # Identity
    reservation_id: UUID = Field(default_factory=uuid4)

    # References to other contexts
    room_id: str
    guest_id: UUID
    guest_name: Optional[str] = None

    # Stay
    date_range: DateRange
    guest_count: int = Field(ge=1)
    total_price: Decimal = Field(ge=0)

    status: ReservationStatus = ReservationStatus.PENDING
    notes: Optional[str] = None

    # Metadata
    created_at: datetime = Field(default_factory=utcnow)
    modified_at: datetime = Field(default_factory=utcnow)
    version: int = 1

    class Config:
        from_attributes = True

    # ==================== FACTORY METHOD ====================
    @staticmethod
    def create(
        room: Room,
        guest_id: UUID,
        date_range: DateRange,
        guest_count: int,
        total_price: Decimal,
        notes: Optional[str] = None,
        guest_name: Optional[str] = None,
    ) -> "Reservation":
        """Create a new pending reservation, checking the guest count against the room"""
        Reservation._validate_guest_count(room, guest_count)

        now = utcnow()
        return Reservation(
            room_id=room.room_id,
            guest_id=guest_id,
            guest_name=guest_name,
            date_range=date_range,
            guest_count=guest_count,
            total_price=total_price,
            status=ReservationStatus.PENDING,
            notes=notes,
            created_at=now,
            modified_at=now,
        )

    # ==================== STATE CHANGES ====================
    def with_status(self, status: ReservationStatus) -> "Reservation":
        """Return a copy in the new status with the version bumped; self is untouched"""
        return self.model_copy(
            update={
                "status": status,
                "modified_at": utcnow(),
                "version": self.version + 1,
            }
        )

    # ==================== QUERY METHODS ====================
    @property
    def check_in(self):
        return self.date_range.check_in

    @property
    def check_out(self):
        return self.date_range.check_out

    @property
    def is_occupying(self) -> bool:
        """Pending and confirmed reservations hold the room"""
        return self.status.occupies

    def get_nights(self) -> int:
        """Get number of nights"""
        return self.date_range.nights()

    # ==================== PRIVATE VALIDATION METHODS ====================
    @staticmethod
    def _validate_guest_count(room: Room, guest_count: int) -> None:
        if guest_count < 1:
            raise InvalidGuestCountError(guest_count)
        if guest_count > room.capacity:
            raise CapacityExceededError(room.room_id, guest_count, room.capacity)
