"""In-Memory Repository Implementations"""
import asyncio
import logging
from typing import Awaitable, Optional, List, Dict, TypeVar
from uuid import UUID

from domain.repositories import ReservationRepository, RoomInventory, ReservationFilter
from domain.entities import Reservation, Room
from domain.enums import ReservationStatus
from domain.exceptions import (
    ReservationNotFoundError,
    RepositoryTimeoutError,
    RoomNotFoundError,
    StorageConflictError,
)
from domain.value_objects import DateRange

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def _bounded(awaitable: Awaitable[T], timeout: Optional[float], operation: str) -> T:
    """Await a storage call, turning an expired timeout into RepositoryTimeoutError"""
    if timeout is None:
        return await awaitable
    try:
        return await asyncio.wait_for(awaitable, timeout)
    except asyncio.TimeoutError:
        logger.warning("repository_timeout", extra={"operation": operation, "timeout": timeout})
        raise RepositoryTimeoutError(
            f"{operation} timed out after {timeout}s",
            details={"operation": operation, "timeout": timeout},
        ) from None


class InMemoryRoomInventory(RoomInventory):
    """In-memory implementation of RoomInventory"""

    def __init__(self, rooms: Optional[List[Room]] = None):
        self._storage: Dict[str, Room] = {}
        for room in rooms or []:
            self._storage[room.room_id] = room.model_copy()

    async def _get(self, room_id: str) -> Optional[Room]:
        room = self._storage.get(room_id)
        return room.model_copy() if room else None

    async def get(self, room_id: str, timeout: Optional[float] = None) -> Optional[Room]:
        """Find room by ID"""
        return await _bounded(self._get(room_id), timeout, "room.get")

    async def _list(self, active_only: bool) -> List[Room]:
        rooms = sorted(self._storage.values(), key=lambda r: r.room_id)
        return [r.model_copy() for r in rooms if r.active or not active_only]

    async def list_rooms(self, active_only: bool = False, timeout: Optional[float] = None) -> List[Room]:
        """List rooms ordered by ID"""
        return await _bounded(self._list(active_only), timeout, "room.list")

    async def _add(self, room: Room) -> Room:
        if room.room_id in self._storage:
            raise StorageConflictError(
                f"Room {room.room_id} already exists",
                details={"room_id": room.room_id},
            )
        self._storage[room.room_id] = room.model_copy()
        return room.model_copy()

    async def add(self, room: Room, timeout: Optional[float] = None) -> Room:
        """Register a new room"""
        return await _bounded(self._add(room), timeout, "room.add")

    async def _update(self, room: Room) -> Room:
        if room.room_id not in self._storage:
            raise RoomNotFoundError(room.room_id)
        self._storage[room.room_id] = room.model_copy()
        return room.model_copy()

    async def update(self, room: Room, timeout: Optional[float] = None) -> Room:
        """Replace an existing room's rate, capacity or name"""
        return await _bounded(self._update(room), timeout, "room.update")

    async def _deactivate(self, room_id: str) -> Room:
        room = self._storage.get(room_id)
        if room is None:
            raise RoomNotFoundError(room_id)
        room = room.model_copy(update={"active": False})
        self._storage[room_id] = room
        return room.model_copy()

    async def deactivate(self, room_id: str, timeout: Optional[float] = None) -> Room:
        """Close a room for new bookings"""
        return await _bounded(self._deactivate(room_id), timeout, "room.deactivate")


class InMemoryReservationRepository(ReservationRepository):
    """
    In-memory implementation of ReservationRepository.

    Writes on one room are serialized by a per-room lock, which plays the
    part of a range-exclusion constraint: the overlap check and the insert
    happen under the same lock. ``latency`` simulates the storage round trip
    inside that transaction; a write that times out or is cancelled during
    it leaves nothing behind.
    """

    def __init__(self, latency: float = 0.0):
        self._storage: Dict[UUID, Reservation] = {}
        self._room_locks: Dict[str, asyncio.Lock] = {}
        self.latency = latency

    def _room_lock(self, room_id: str) -> asyncio.Lock:
        lock = self._room_locks.get(room_id)
        if lock is None:
            lock = self._room_locks[room_id] = asyncio.Lock()
        return lock

    async def _round_trip(self) -> None:
        if self.latency:
            await asyncio.sleep(self.latency)

    def _overlapping(self, room_id: str, date_range: DateRange) -> List[Reservation]:
        return [
            r for r in self._storage.values()
            if r.room_id == room_id and r.is_occupying and r.date_range.overlaps(date_range)
        ]

    # ==================== WRITES ====================
    async def _insert(self, reservation: Reservation) -> Reservation:
        async with self._room_lock(reservation.room_id):
            await self._round_trip()
            if reservation.reservation_id in self._storage:
                raise StorageConflictError(
                    f"Reservation {reservation.reservation_id} already exists",
                    code="DUPLICATE_ID",
                    details={"reservation_id": str(reservation.reservation_id)},
                )
            if reservation.is_occupying:
                clashes = self._overlapping(reservation.room_id, reservation.date_range)
                if clashes:
                    raise StorageConflictError(
                        f"Room {reservation.room_id} already booked for {reservation.date_range}",
                        code="OVERLAP",
                        details={
                            "room_id": reservation.room_id,
                            "conflicting_reservation_id": str(clashes[0].reservation_id),
                        },
                    )
            self._storage[reservation.reservation_id] = reservation.model_copy()
            return reservation.model_copy()

    async def insert_if_available(self, reservation: Reservation, timeout: Optional[float] = None) -> Reservation:
        """Insert unless the range overlaps an occupying reservation on the same room"""
        return await _bounded(self._insert(reservation), timeout, "reservation.insert")

    async def _update_status(
        self, reservation_id: UUID, new_status: ReservationStatus, expected_version: int
    ) -> Reservation:
        current = self._storage.get(reservation_id)
        if current is None:
            raise ReservationNotFoundError(reservation_id)

        async with self._room_lock(current.room_id):
            await self._round_trip()
            current = self._storage[reservation_id]
            if current.version != expected_version:
                raise StorageConflictError(
                    f"Reservation {reservation_id} was modified concurrently",
                    code="VERSION_MISMATCH",
                    details={
                        "reservation_id": str(reservation_id),
                        "expected_version": expected_version,
                        "actual_version": current.version,
                    },
                )
            if new_status.occupies and not current.is_occupying:
                clashes = self._overlapping(current.room_id, current.date_range)
                if clashes:
                    raise StorageConflictError(
                        f"Room {current.room_id} already booked for {current.date_range}",
                        code="OVERLAP",
                        details={"conflicting_reservation_id": str(clashes[0].reservation_id)},
                    )
            updated = current.with_status(new_status)
            self._storage[reservation_id] = updated
            return updated.model_copy()

    async def update_status(
        self,
        reservation_id: UUID,
        new_status: ReservationStatus,
        expected_version: int,
        timeout: Optional[float] = None,
    ) -> Reservation:
        """Set a new status if the stored version still matches"""
        return await _bounded(
            self._update_status(reservation_id, new_status, expected_version),
            timeout,
            "reservation.update_status",
        )

    # ==================== READS ====================
    async def _select(self, criteria: ReservationFilter) -> List[Reservation]:
        return [r.model_copy() for r in self._storage.values() if criteria.matches(r)]

    async def find_by_id(self, reservation_id: UUID, timeout: Optional[float] = None) -> Optional[Reservation]:
        """Find reservation by ID"""
        async def _find():
            reservation = self._storage.get(reservation_id)
            return reservation.model_copy() if reservation else None
        return await _bounded(_find(), timeout, "reservation.find_by_id")

    async def find_by_room_and_window(
        self, room_id: str, window: Optional[DateRange] = None, timeout: Optional[float] = None
    ) -> List[Reservation]:
        """Reservations of any status on a room whose range overlaps window"""
        results = await _bounded(
            self._select(ReservationFilter(room_id=room_id, window=window)),
            timeout,
            "reservation.find_by_room_and_window",
        )
        return sorted(results, key=lambda r: r.check_in)

    async def find_occupying(self, room_id: str, timeout: Optional[float] = None) -> List[Reservation]:
        """Pending and confirmed reservations on a room"""
        results = await _bounded(
            self._select(ReservationFilter(room_id=room_id)), timeout, "reservation.find_occupying"
        )
        return sorted((r for r in results if r.is_occupying), key=lambda r: r.check_in)

    async def find_by_filter(self, criteria: ReservationFilter, timeout: Optional[float] = None) -> List[Reservation]:
        """Reservations matching criteria, newest first"""
        results = await _bounded(self._select(criteria), timeout, "reservation.find_by_filter")
        return sorted(results, key=lambda r: r.created_at, reverse=True)

    async def find_all(self, timeout: Optional[float] = None) -> List[Reservation]:
        """Find all reservations"""
        return await _bounded(self._select(ReservationFilter()), timeout, "reservation.find_all")

    async def room_ids(self, timeout: Optional[float] = None) -> List[str]:
        """Rooms that have at least one reservation"""
        async def _rooms():
            return sorted({r.room_id for r in self._storage.values()})
        return await _bounded(_rooms(), timeout, "reservation.room_ids")
