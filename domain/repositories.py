"""Domain Repository Interfaces"""
from abc import ABC, abstractmethod
from typing import Optional, List
from uuid import UUID

from pydantic import BaseModel

from domain.entities import Reservation, Room
from domain.enums import ReservationStatus
from domain.value_objects import DateRange


class ReservationFilter(BaseModel):
    """Search criteria for the bookings dashboard; unset fields match everything"""
    status: Optional[ReservationStatus] = None
    room_id: Optional[str] = None
    guest_id: Optional[UUID] = None
    window: Optional[DateRange] = None
    text: Optional[str] = None

    def matches(self, reservation: Reservation) -> bool:
        if self.status is not None and reservation.status != self.status:
            return False
        if self.room_id is not None and reservation.room_id != self.room_id:
            return False
        if self.guest_id is not None and reservation.guest_id != self.guest_id:
            return False
        if self.window is not None and not reservation.date_range.overlaps(self.window):
            return False
        if self.text:
            needle = self.text.strip().lower()
            haystack = " ".join(filter(None, [reservation.guest_name, reservation.notes])).lower()
            if needle not in haystack:
                return False
        return True


class RoomInventory(ABC):
    """Room inventory as seen by the engine; only the admin side writes"""

    @abstractmethod
    async def get(self, room_id: str, timeout: Optional[float] = None) -> Optional[Room]:
        """Find room by ID"""
        pass

    @abstractmethod
    async def list_rooms(self, active_only: bool = False, timeout: Optional[float] = None) -> List[Room]:
        """List rooms ordered by ID"""
        pass

    @abstractmethod
    async def add(self, room: Room, timeout: Optional[float] = None) -> Room:
        """Register a new room"""
        pass

    @abstractmethod
    async def update(self, room: Room, timeout: Optional[float] = None) -> Room:
        """Replace an existing room's rate, capacity or name"""
        pass

    @abstractmethod
    async def deactivate(self, room_id: str, timeout: Optional[float] = None) -> Room:
        """Close a room for new bookings"""
        pass


class ReservationRepository(ABC):
    """
    Repository interface for the Reservation Aggregate.

    The repository is the system of record. ``insert_if_available`` must
    check for overlapping pending/confirmed reservations on the same room and
    insert in one atomic step, raising StorageConflictError on overlap.
    ``update_status`` must raise StorageConflictError when the stored version
    differs from ``expected_version``. Every call accepts a timeout in seconds
    and raises RepositoryTimeoutError when it expires without side effects.
    """

    @abstractmethod
    async def insert_if_available(self, reservation: Reservation, timeout: Optional[float] = None) -> Reservation:
        """Insert unless the range overlaps an occupying reservation on the same room"""
        pass

    @abstractmethod
    async def update_status(
        self,
        reservation_id: UUID,
        new_status: ReservationStatus,
        expected_version: int,
        timeout: Optional[float] = None,
    ) -> Reservation:
        """Set a new status if the stored version still matches"""
        pass

    @abstractmethod
    async def find_by_id(self, reservation_id: UUID, timeout: Optional[float] = None) -> Optional[Reservation]:
        """Find reservation by ID"""
        pass

    @abstractmethod
    async def find_by_room_and_window(
        self, room_id: str, window: Optional[DateRange] = None, timeout: Optional[float] = None
    ) -> List[Reservation]:
        """Reservations of any status on a room whose range overlaps window"""
        pass

    @abstractmethod
    async def find_occupying(self, room_id: str, timeout: Optional[float] = None) -> List[Reservation]:
        """Pending and confirmed reservations on a room"""
        pass

    @abstractmethod
    async def find_by_filter(self, criteria: ReservationFilter, timeout: Optional[float] = None) -> List[Reservation]:
        """Reservations matching criteria, newest first"""
        pass

    @abstractmethod
    async def find_all(self, timeout: Optional[float] = None) -> List[Reservation]:
        """Find all reservations"""
        pass

    @abstractmethod
    async def room_ids(self, timeout: Optional[float] = None) -> List[str]:
        """Rooms that have at least one reservation"""
        pass
