"""Application Services - Business use cases"""
import logging
from collections import Counter
from datetime import date
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Set, Tuple, Union
from uuid import UUID

from application.locks import RoomLockRegistry
from domain.availability_index import AvailabilityIndex
from domain.entities import Reservation, Room
from domain.enums import ReservationStatus
from domain.exceptions import (
    InfrastructureError,
    InvalidGuestCountError,
    InvalidRangeError,
    ReservationNotFoundError,
    RoomInactiveError,
    RoomNotFoundError,
    RoomUnavailableError,
    StorageConflictError,
)
from domain.pricing import PricingCalculator
from domain.repositories import ReservationFilter, ReservationRepository, RoomInventory
from domain.state_machine import ReservationStateMachine, parse_status
from domain.value_objects import DateRange

logger = logging.getLogger(__name__)

REVENUE_STATUSES = (ReservationStatus.CONFIRMED, ReservationStatus.COMPLETED)


class ReservationService:
    """
    Orchestrates reservation creation and status changes.

    ``create`` runs the availability check, the insert and the index update
    while holding the room's lock, and the repository re-checks overlap in
    the same transaction as the insert. Rooms whose index may have drifted
    from the store (after a timeout, a cancellation or a storage conflict)
    are marked stale and rebuilt before their next availability check.
    """

    def __init__(self,
                 repository: ReservationRepository,
                 rooms: RoomInventory,
                 index: Optional[AvailabilityIndex] = None,
                 pricing: Optional[PricingCalculator] = None,
                 state_machine: Optional[ReservationStateMachine] = None,
                 locks: Optional[RoomLockRegistry] = None,
                 clock: Callable[[], date] = date.today,
                 timeout: Optional[float] = None,
                 retry_attempts: int = 1):
        self.repository = repository
        self.rooms = rooms
        self.index = index or AvailabilityIndex(repository)
        if self.index.repository is None:
            self.index.repository = repository
        self.pricing = pricing or PricingCalculator()
        self.state_machine = state_machine or ReservationStateMachine()
        self.locks = locks or RoomLockRegistry()
        self.clock = clock
        self.timeout = timeout
        self.retry_attempts = retry_attempts
        self._loaded_rooms: Set[str] = set()
        self._stale_rooms: Set[str] = set()

    def _timeout(self, timeout: Optional[float]) -> Optional[float]:
        return self.timeout if timeout is None else timeout

    # ==================== INDEX MAINTENANCE ====================
    # Every index mutation and every rebuild happens under the room's lock,
    # so a rebuild's snapshot can never be swapped in over a newer commit.
    def _is_current(self, room_id: str) -> bool:
        return room_id in self._loaded_rooms and room_id not in self._stale_rooms

    async def _ensure_index(self, room_id: str, timeout: Optional[float]) -> None:
        """Rebuild the room if stale; the caller holds the room's lock"""
        if self._is_current(room_id):
            return
        await self.index.rebuild(room_id, timeout=self._timeout(timeout))
        self._loaded_rooms.add(room_id)
        self._stale_rooms.discard(room_id)

    async def _refresh_index(self, room_id: str, timeout: Optional[float]) -> None:
        """Bring a room up to date for a reader that does not hold the lock"""
        if self._is_current(room_id):
            return
        async with self.locks.hold(room_id, timeout=timeout):
            await self._ensure_index(room_id, timeout)

    def _mark_stale(self, room_id: str) -> None:
        self._stale_rooms.add(room_id)

    async def rebuild_index(self, room_id: Optional[str] = None, timeout: Optional[float] = None) -> Dict[str, int]:
        """Rebuild one room, or every room known to inventory or the store"""
        timeout = self._timeout(timeout)
        if room_id is not None:
            room_ids = [room_id]
        else:
            known = {room.room_id for room in await self.rooms.list_rooms(timeout=timeout)}
            known.update(await self.repository.room_ids(timeout=timeout))
            room_ids = sorted(known)

        counts = {}
        for rid in room_ids:
            async with self.locks.hold(rid):
                counts[rid] = await self.index.rebuild(rid, timeout=timeout)
                self._loaded_rooms.add(rid)
                self._stale_rooms.discard(rid)
        return counts

    # ==================== CREATE ====================
    async def _get_bookable_room(self, room_id: str, timeout: Optional[float]) -> Room:
        room = await self.rooms.get(room_id, timeout=self._timeout(timeout))
        if room is None:
            raise RoomNotFoundError(room_id)
        if not room.active:
            raise RoomInactiveError(room_id)
        return room

    def _validate_request(self, date_range: DateRange, guest_count: int) -> None:
        if date_range.check_out <= date_range.check_in:
            raise InvalidRangeError(check_in=date_range.check_in, check_out=date_range.check_out)
        today = self.clock()
        if date_range.check_in < today:
            raise InvalidRangeError(
                "Check-in date must be today or later",
                check_in=date_range.check_in,
                today=today,
            )
        if guest_count < 1:
            raise InvalidGuestCountError(guest_count)

    async def create(
        self,
        room_id: str,
        guest_id: UUID,
        date_range: DateRange,
        guest_count: int,
        notes: Optional[str] = None,
        guest_name: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Reservation:
        """Create a pending reservation or fail without side effects"""
        self._validate_request(date_range, guest_count)

        room = await self._get_bookable_room(room_id, timeout)
        reservation = Reservation.create(
            room=room,
            guest_id=guest_id,
            date_range=date_range,
            guest_count=guest_count,
            total_price=self.pricing.price(room, date_range, guest_count),
            notes=notes,
            guest_name=guest_name,
        )

        async with self.locks.hold(room_id, timeout=timeout):
            stored = await self._insert_locked(reservation, timeout)

        logger.info(
            "Reservation created",
            extra={
                "reservation_id": str(stored.reservation_id),
                "room_id": room_id,
                "check_in": date_range.check_in.isoformat(),
                "check_out": date_range.check_out.isoformat(),
            },
        )
        return stored

    async def _insert_locked(self, reservation: Reservation, timeout: Optional[float]) -> Reservation:
        room_id = reservation.room_id
        date_range = reservation.date_range
        attempt = 0
        while True:
            await self._ensure_index(room_id, timeout)
            if not self.index.is_available(room_id, date_range):
                logger.info(
                    "Reservation rejected, room unavailable",
                    extra={"room_id": room_id, "check_in": date_range.check_in.isoformat()},
                )
                raise RoomUnavailableError(room_id, date_range.check_in, date_range.check_out)

            self._mark_stale(room_id)
            try:
                stored = await self.repository.insert_if_available(reservation, timeout=self._timeout(timeout))
            except StorageConflictError as exc:
                # The store knows something the index does not
                logger.warning(
                    "Storage rejected insert, rebuilding index",
                    extra={"room_id": room_id, "code": exc.code, "attempt": attempt},
                )
                if attempt >= self.retry_attempts:
                    raise RoomUnavailableError(room_id, date_range.check_in, date_range.check_out) from exc
                attempt += 1
                continue
            except InfrastructureError:
                logger.exception("Reservation insert failed", extra={"room_id": room_id})
                raise

            self.index.occupy(room_id, stored.date_range, stored.reservation_id)
            self._stale_rooms.discard(room_id)
            return stored

    # ==================== TRANSITIONS ====================
    async def _load(self, reservation_id: UUID, timeout: Optional[float]) -> Reservation:
        reservation = await self.repository.find_by_id(reservation_id, timeout=self._timeout(timeout))
        if reservation is None:
            raise ReservationNotFoundError(reservation_id)
        return reservation

    async def transition(
        self,
        reservation_id: UUID,
        target_status: Union[ReservationStatus, str],
        timeout: Optional[float] = None,
    ) -> Reservation:
        """Move a reservation to target_status, releasing its dates on cancel or completion"""
        target = parse_status(target_status)
        reservation = await self._load(reservation_id, timeout)
        self.state_machine.validate(reservation, target, self.clock())

        async with self.locks.hold(reservation.room_id, timeout=timeout):
            updated = await self._update_status(reservation, target, timeout)

        logger.info(
            "Reservation status changed",
            extra={
                "reservation_id": str(reservation_id),
                "from": reservation.status.value,
                "to": updated.status.value,
            },
        )
        return updated

    async def _update_status(
        self, reservation: Reservation, target: ReservationStatus, timeout: Optional[float]
    ) -> Reservation:
        attempt = 0
        while True:
            self.state_machine.validate(reservation, target, self.clock())
            try:
                updated = await self.repository.update_status(
                    reservation.reservation_id, target, reservation.version, timeout=self._timeout(timeout)
                )
            except StorageConflictError:
                if attempt >= self.retry_attempts:
                    raise
                attempt += 1
                logger.warning(
                    "Version conflict on status change, reloading",
                    extra={"reservation_id": str(reservation.reservation_id)},
                )
                reservation = await self._load(reservation.reservation_id, timeout)
                continue
            except InfrastructureError:
                if not target.occupies:
                    self._mark_stale(reservation.room_id)
                raise

            if not updated.is_occupying:
                self.index.release(updated.room_id, updated.date_range, updated.reservation_id)
            return updated

    async def confirm(self, reservation_id: UUID, timeout: Optional[float] = None) -> Reservation:
        return await self.transition(reservation_id, ReservationStatus.CONFIRMED, timeout=timeout)

    async def cancel(self, reservation_id: UUID, timeout: Optional[float] = None) -> Reservation:
        return await self.transition(reservation_id, ReservationStatus.CANCELLED, timeout=timeout)

    async def complete(self, reservation_id: UUID, timeout: Optional[float] = None) -> Reservation:
        return await self.transition(reservation_id, ReservationStatus.COMPLETED, timeout=timeout)

    # ==================== QUERIES ====================
    async def get_reservation(self, reservation_id: UUID, timeout: Optional[float] = None) -> Reservation:
        """Get reservation by ID"""
        return await self._load(reservation_id, timeout)

    async def list_for_room(
        self, room_id: str, window: Optional[DateRange] = None, timeout: Optional[float] = None
    ) -> List[Reservation]:
        """All reservations on a room overlapping window, by check-in"""
        return await self.repository.find_by_room_and_window(room_id, window, timeout=self._timeout(timeout))

    async def list_for_guest(self, guest_id: UUID, timeout: Optional[float] = None) -> List[Reservation]:
        """Get all reservations for a guest, newest first"""
        return await self.search(ReservationFilter(guest_id=guest_id), timeout=timeout)

    async def search(self, criteria: Optional[ReservationFilter] = None, timeout: Optional[float] = None) -> List[Reservation]:
        return await self.repository.find_by_filter(criteria or ReservationFilter(), timeout=self._timeout(timeout))

    async def _bookable_index(self, room_id: str, timeout: Optional[float]) -> bool:
        """Refresh the room's index; False if the room is closed for booking"""
        room = await self.rooms.get(room_id, timeout=self._timeout(timeout))
        if room is None:
            raise RoomNotFoundError(room_id)
        if not room.active:
            return False
        await self._refresh_index(room_id, timeout)
        return True

    async def check_availability(self, room_id: str, date_range: DateRange, timeout: Optional[float] = None) -> bool:
        """True when the room exists, is active and has no occupying overlap"""
        if not await self._bookable_index(room_id, timeout):
            return False
        return self.index.is_available(room_id, date_range)

    async def free_ranges(self, room_id: str, window: DateRange, timeout: Optional[float] = None) -> List[DateRange]:
        if not await self._bookable_index(room_id, timeout):
            return []
        return self.index.free_ranges(room_id, window)

    async def room_availability(
        self, room_id: str, window: DateRange, timeout: Optional[float] = None
    ) -> Tuple[bool, List[DateRange]]:
        """Whether the whole window is free, plus its free sub-ranges, from one lookup"""
        if not await self._bookable_index(room_id, timeout):
            return False, []
        free = self.index.free_ranges(room_id, window)
        return free == [window], free

    async def stats(self, timeout: Optional[float] = None) -> dict:
        """Counts per status, revenue, this year's monthly figures and the most booked rooms"""
        reservations = await self.repository.find_all(timeout=self._timeout(timeout))
        counts = Counter(r.status for r in reservations)
        earning = [r for r in reservations if r.status in REVENUE_STATUSES]
        revenue = sum((r.total_price for r in earning), Decimal("0"))
        popular = Counter(r.room_id for r in earning).most_common(5)
        return {
            "total": len(reservations),
            "statuses": {status.value: counts.get(status, 0) for status in ReservationStatus},
            "revenue": revenue,
            "monthly": self._monthly(earning, self.clock().year),
            "popular_rooms": [{"room_id": room_id, "reservations": n} for room_id, n in popular],
        }

    @staticmethod
    def _monthly(reservations: List[Reservation], year: int) -> List[dict]:
        # Grouped by the month the booking was made, not the stay
        months: Dict[str, dict] = {}
        for r in reservations:
            if r.created_at.year != year:
                continue
            key = f"{year}-{r.created_at.month:02d}"
            bucket = months.setdefault(key, {"month": key, "count": 0, "revenue": Decimal("0")})
            bucket["count"] += 1
            bucket["revenue"] += r.total_price
        return [months[key] for key in sorted(months)]
