"""
Per-room index of occupied date ranges.

The index is a projection of the reservation store: for every room it keeps
the ranges of its pending and confirmed reservations sorted by check-in.
Those ranges never overlap each other, so their check-out dates are sorted
as well and an overlap query needs one binary search plus a single
neighbour comparison.

The index is never the system of record. ``rebuild`` throws a room's
entries away and reloads them from the repository it was given.
"""
import logging
from bisect import bisect_left, bisect_right
from dataclasses import dataclass, field
from datetime import date
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional, Tuple
from uuid import UUID

from domain.exceptions import RoomUnavailableError
from domain.value_objects import DateRange

if TYPE_CHECKING:
    from domain.entities import Reservation
    from domain.repositories import ReservationRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OccupiedInterval:
    check_in: date
    check_out: date
    reservation_id: UUID

    @property
    def date_range(self) -> DateRange:
        return DateRange(check_in=self.check_in, check_out=self.check_out)


@dataclass
class _RoomIntervals:
    starts: List[date] = field(default_factory=list)
    ends: List[date] = field(default_factory=list)
    entries: List[OccupiedInterval] = field(default_factory=list)
    by_id: Dict[UUID, OccupiedInterval] = field(default_factory=dict)

    def conflict(self, check_in: date, check_out: date) -> Optional[OccupiedInterval]:
        # Last interval starting before check_out; it has the latest end among them
        i = bisect_left(self.starts, check_out)
        if i == 0:
            return None
        candidate = self.entries[i - 1]
        if candidate.check_out > check_in:
            return candidate
        return None

    def insert(self, interval: OccupiedInterval) -> None:
        i = bisect_right(self.starts, interval.check_in)
        self.starts.insert(i, interval.check_in)
        self.ends.insert(i, interval.check_out)
        self.entries.insert(i, interval)
        self.by_id[interval.reservation_id] = interval

    def remove(self, interval: OccupiedInterval) -> None:
        i = bisect_left(self.starts, interval.check_in)
        while i < len(self.entries) and self.entries[i].check_in == interval.check_in:
            if self.entries[i] == interval:
                del self.starts[i]
                del self.ends[i]
                del self.entries[i]
                self.by_id.pop(interval.reservation_id, None)
                return
            i += 1

    def within(self, window: DateRange) -> List[OccupiedInterval]:
        i = bisect_right(self.ends, window.check_in)
        result = []
        while i < len(self.entries) and self.entries[i].check_in < window.check_out:
            result.append(self.entries[i])
            i += 1
        return result


class AvailabilityIndex:
    """Answers overlap and free-range queries without scanning the reservation store"""

    def __init__(self, repository: Optional["ReservationRepository"] = None):
        self.repository = repository
        self._rooms: Dict[str, _RoomIntervals] = {}

    def _room(self, room_id: str) -> _RoomIntervals:
        intervals = self._rooms.get(room_id)
        if intervals is None:
            intervals = self._rooms[room_id] = _RoomIntervals()
        return intervals

    # ==================== QUERIES ====================
    def is_available(self, room_id: str, date_range: DateRange) -> bool:
        return self.find_conflict(room_id, date_range) is None

    def find_conflict(self, room_id: str, date_range: DateRange) -> Optional[OccupiedInterval]:
        intervals = self._rooms.get(room_id)
        if intervals is None:
            return None
        return intervals.conflict(date_range.check_in, date_range.check_out)

    def occupied(self, room_id: str, window: Optional[DateRange] = None) -> List[OccupiedInterval]:
        intervals = self._rooms.get(room_id)
        if intervals is None:
            return []
        if window is None:
            return list(intervals.entries)
        return intervals.within(window)

    def free_ranges(self, room_id: str, window: DateRange) -> List[DateRange]:
        """Maximal unoccupied sub-ranges of window, in date order"""
        free = []
        cursor = window.check_in
        for interval in self.occupied(room_id, window):
            if interval.check_in > cursor:
                free.append(DateRange(check_in=cursor, check_out=interval.check_in))
            cursor = max(cursor, interval.check_out)
        if cursor < window.check_out:
            free.append(DateRange(check_in=cursor, check_out=window.check_out))
        return free

    def contains(self, room_id: str, reservation_id: UUID) -> bool:
        intervals = self._rooms.get(room_id)
        return intervals is not None and reservation_id in intervals.by_id

    def rooms(self) -> List[str]:
        return list(self._rooms)

    # ==================== MUTATIONS ====================
    def occupy(self, room_id: str, date_range: DateRange, reservation_id: UUID) -> None:
        """
        Record reservation_id as holding date_range.

        Re-occupying with the same id and range is a no-op. A range that
        collides with a different reservation raises RoomUnavailableError and
        leaves the index unchanged.
        """
        intervals = self._room(room_id)
        interval = OccupiedInterval(date_range.check_in, date_range.check_out, reservation_id)

        existing = intervals.by_id.get(reservation_id)
        if existing == interval:
            return
        if existing is not None:
            intervals.remove(existing)

        conflict = intervals.conflict(interval.check_in, interval.check_out)
        if conflict is not None:
            if existing is not None:
                intervals.insert(existing)
            raise RoomUnavailableError(room_id, date_range.check_in, date_range.check_out)

        intervals.insert(interval)

    def release(self, room_id: str, date_range: DateRange, reservation_id: Optional[UUID] = None) -> bool:
        """Drop the matching interval; returns False if nothing matched"""
        intervals = self._rooms.get(room_id)
        if intervals is None:
            return False

        if reservation_id is not None:
            interval = intervals.by_id.get(reservation_id)
            if interval is None or interval.check_in != date_range.check_in or interval.check_out != date_range.check_out:
                return False
        else:
            interval = next(
                (
                    e for e in intervals.within(date_range)
                    if e.check_in == date_range.check_in and e.check_out == date_range.check_out
                ),
                None,
            )
            if interval is None:
                return False

        intervals.remove(interval)
        return True

    def load(self, room_id: str, reservations: Iterable["Reservation"]) -> int:
        """Replace a room's entries with the occupying reservations given"""
        fresh = _RoomIntervals()
        for reservation in sorted(reservations, key=lambda r: (r.check_in, r.created_at)):
            if reservation.room_id != room_id or not reservation.is_occupying:
                continue
            if fresh.conflict(reservation.check_in, reservation.check_out) is not None:
                logger.error(
                    "Overlapping reservations found in store while rebuilding index",
                    extra={"room_id": room_id, "reservation_id": str(reservation.reservation_id)},
                )
                continue
            fresh.insert(OccupiedInterval(reservation.check_in, reservation.check_out, reservation.reservation_id))
        self._rooms[room_id] = fresh
        return len(fresh.entries)

    async def rebuild(self, room_id: str, timeout: Optional[float] = None) -> int:
        """Reload one room from the repository; returns the number of intervals"""
        if self.repository is None:
            raise RuntimeError("AvailabilityIndex has no repository to rebuild from")
        reservations = await self.repository.find_occupying(room_id, timeout=timeout)
        count = self.load(room_id, reservations)
        logger.info("Availability index rebuilt", extra={"room_id": room_id, "intervals": count})
        return count

    def discard(self, room_id: Optional[str] = None) -> None:
        if room_id is None:
            self._rooms.clear()
        else:
            self._rooms.pop(room_id, None)

    def snapshot(self, room_id: str) -> List[Tuple[date, date, UUID]]:
        return [(e.check_in, e.check_out, e.reservation_id) for e in self.occupied(room_id)]
