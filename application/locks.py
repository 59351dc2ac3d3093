"""Per-room mutual exclusion for the booking critical section"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional

from domain.exceptions import LockTimeoutError

logger = logging.getLogger(__name__)


class RoomLockRegistry:
    """
    One asyncio.Lock per room, created on first use.

    Holding a room's lock never blocks bookings on other rooms. Waiting is
    bounded by ``timeout`` and ends in LockTimeoutError.
    """

    def __init__(self, timeout: Optional[float] = 5.0):
        self.timeout = timeout
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock(self, room_id: str) -> asyncio.Lock:
        lock = self._locks.get(room_id)
        if lock is None:
            lock = self._locks[room_id] = asyncio.Lock()
        return lock

    def is_locked(self, room_id: str) -> bool:
        lock = self._locks.get(room_id)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, room_id: str, timeout: Optional[float] = None) -> AsyncIterator[None]:
        lock = self._lock(room_id)
        wait = self.timeout if timeout is None else timeout
        try:
            if wait is None:
                await lock.acquire()
            else:
                await asyncio.wait_for(lock.acquire(), wait)
        except asyncio.TimeoutError:
            logger.warning("room_lock_timeout", extra={"room_id": room_id, "timeout": wait})
            raise LockTimeoutError(room_id, wait) from None
        try:
            yield
        finally:
            lock.release()
