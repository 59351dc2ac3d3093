#!/usr/bin/env python3
"""
Concurrency Testing for the Hotel Reservation Engine
Concurrent creates, cancellation, timeouts and the no-double-booking invariant
"""

import asyncio
import random
import pytest
from datetime import date, timedelta
from decimal import Decimal
from itertools import combinations
from uuid import uuid4

from application.locks import RoomLockRegistry
from application.services import ReservationService
from domain.entities import Reservation, Room
from domain.enums import ReservationStatus
from domain.exceptions import (
    InvalidTransitionError, LockTimeoutError, RepositoryTimeoutError, RoomUnavailableError
)
from domain.value_objects import DateRange
from infrastructure.repositories.in_memory_repositories import (
    InMemoryReservationRepository, InMemoryRoomInventory
)


TODAY = date(2024, 5, 15)


def stay(offset: int, nights: int) -> DateRange:
    check_in = TODAY + timedelta(days=offset)
    return DateRange.of(check_in, check_in + timedelta(days=nights))


class SlowReadRepository(InMemoryReservationRepository):
    """Takes its occupancy snapshot, then stalls before returning it"""

    async def find_occupying(self, room_id, timeout=None):
        snapshot = await super().find_occupying(room_id, timeout=timeout)
        await asyncio.sleep(0.05)
        return snapshot


async def assert_no_double_booking(service: ReservationService, room_ids):
    """Occupying reservations never overlap, and the index mirrors the store"""
    for room_id in room_ids:
        occupying = await service.repository.find_occupying(room_id)
        for a, b in combinations(occupying, 2):
            assert not a.date_range.overlaps(b.date_range), f"{a.reservation_id} overlaps {b.reservation_id}"
        assert {entry[2] for entry in service.index.snapshot(room_id)} == {r.reservation_id for r in occupying}


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def rooms():
    return [
        Room(room_id="R1", name="Standard Double", nightly_rate=Decimal("1000"), capacity=2),
        Room(room_id="R2", name="Family Room", nightly_rate=Decimal("2000"), capacity=4),
    ]


@pytest.fixture
def slow_repository():
    return InMemoryReservationRepository(latency=0.01)


@pytest.fixture
def service(slow_repository, rooms):
    return ReservationService(slow_repository, InMemoryRoomInventory(rooms), clock=lambda: TODAY)


# ============================================================================
# CONCURRENT CREATES
# ============================================================================

class TestConcurrentCreates:
    """Test that at most one of several overlapping requests wins"""

    @pytest.mark.concurrency
    async def test_ten_overlapping_requests(self, service):
        requests = [
            service.create("R1", uuid4(), stay(10, 3 + i % 3), 1)
            for i in range(10)
        ]
        results = await asyncio.gather(*requests, return_exceptions=True)

        created = [r for r in results if isinstance(r, Reservation)]
        rejected = [r for r in results if isinstance(r, RoomUnavailableError)]
        assert len(created) == 1
        assert len(rejected) == 9
        assert len(await service.repository.find_all()) == 1
        await assert_no_double_booking(service, ["R1"])

    @pytest.mark.concurrency
    async def test_two_instances_share_storage(self, slow_repository, rooms):
        """Test the store rejects the loser when each instance has its own locks and index"""
        first = ReservationService(slow_repository, InMemoryRoomInventory(rooms), clock=lambda: TODAY)
        second = ReservationService(slow_repository, InMemoryRoomInventory(rooms), clock=lambda: TODAY)

        results = await asyncio.gather(
            first.create("R1", uuid4(), stay(10, 3), 1),
            second.create("R1", uuid4(), stay(11, 3), 1),
            return_exceptions=True,
        )
        assert sum(isinstance(r, Reservation) for r in results) == 1
        assert sum(isinstance(r, RoomUnavailableError) for r in results) == 1
        assert len(await slow_repository.find_all()) == 1
        assert not first.index.is_available("R1", stay(11, 1))
        assert not second.index.is_available("R1", stay(11, 1))

    @pytest.mark.concurrency
    async def test_disjoint_requests_all_succeed(self, service):
        results = await asyncio.gather(*[
            service.create("R1", uuid4(), stay(10 + 2 * i, 2), 1) for i in range(5)
        ])
        assert all(r.status == ReservationStatus.PENDING for r in results)
        assert len(service.index.snapshot("R1")) == 5

    @pytest.mark.concurrency
    async def test_other_room_not_blocked(self, service):
        async with service.locks.hold("R1"):
            reservation = await asyncio.wait_for(
                service.create("R2", uuid4(), stay(10, 2), 1), timeout=1.0
            )
        assert reservation.room_id == "R2"


# ============================================================================
# CANCELLATION & TIMEOUTS
# ============================================================================

class TestCancellationAndTimeouts:
    """Test that abandoned creates leave no trace"""

    @pytest.mark.concurrency
    @pytest.mark.edge_case
    async def test_cancelled_create_leaves_nothing(self, rooms):
        repository = InMemoryReservationRepository(latency=0.5)
        service = ReservationService(repository, InMemoryRoomInventory(rooms), clock=lambda: TODAY)

        task = asyncio.create_task(service.create("R1", uuid4(), stay(10, 3), 1))
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert await repository.find_all() == []
        assert service.index.snapshot("R1") == []
        assert not service.locks.is_locked("R1")

        repository.latency = 0
        again = await service.create("R1", uuid4(), stay(10, 3), 1)
        assert again.status == ReservationStatus.PENDING

    @pytest.mark.concurrency
    @pytest.mark.edge_case
    async def test_lock_timeout(self, rooms):
        repository = InMemoryReservationRepository()
        service = ReservationService(
            repository,
            InMemoryRoomInventory(rooms),
            locks=RoomLockRegistry(timeout=0.05),
            clock=lambda: TODAY,
        )
        async with service.locks.hold("R1"):
            with pytest.raises(LockTimeoutError):
                await service.create("R1", uuid4(), stay(10, 3), 1)
        assert await repository.find_all() == []

    @pytest.mark.concurrency
    @pytest.mark.edge_case
    async def test_repository_timeout(self, rooms):
        repository = InMemoryReservationRepository(latency=0.5)
        service = ReservationService(
            repository, InMemoryRoomInventory(rooms), clock=lambda: TODAY, timeout=0.05
        )
        with pytest.raises(RepositoryTimeoutError):
            await service.create("R1", uuid4(), stay(10, 3), 1)

        assert await repository.find_all() == []
        assert service.index.snapshot("R1") == []

        repository.latency = 0
        again = await service.create("R1", uuid4(), stay(10, 3), 1)
        assert service.index.contains("R1", again.reservation_id)


# ============================================================================
# CONCURRENT TRANSITIONS
# ============================================================================

class TestConcurrentTransitions:
    """Test status changes racing each other and racing creates"""

    @pytest.mark.concurrency
    async def test_confirm_races_cancel(self, service):
        reservation = await service.create("R1", uuid4(), stay(10, 3), 1)

        results = await asyncio.gather(
            service.confirm(reservation.reservation_id),
            service.cancel(reservation.reservation_id),
            return_exceptions=True,
        )
        failures = [r for r in results if isinstance(r, Exception)]
        assert all(isinstance(f, InvalidTransitionError) for f in failures)
        assert len(failures) <= 1

        stored = await service.get_reservation(reservation.reservation_id)
        assert stored.status == ReservationStatus.CANCELLED
        assert not service.index.contains("R1", reservation.reservation_id)

    @pytest.mark.concurrency
    async def test_cancel_races_rebooking(self, service):
        reservation = await service.create("R1", uuid4(), stay(10, 3), 1)

        results = await asyncio.gather(
            service.cancel(reservation.reservation_id),
            service.create("R1", uuid4(), stay(10, 3), 1),
            return_exceptions=True,
        )
        assert results[0].status == ReservationStatus.CANCELLED
        assert isinstance(results[1], (Reservation, RoomUnavailableError))
        await assert_no_double_booking(service, ["R1"])

    @pytest.mark.concurrency
    @pytest.mark.integration
    async def test_mixed_workload_keeps_invariant(self, service):
        rng = random.Random(7)
        created = await asyncio.gather(*[
            service.create(rng.choice(["R1", "R2"]), uuid4(), stay(rng.randint(1, 40), rng.randint(1, 5)), 1)
            for _ in range(40)
        ], return_exceptions=True)
        booked = [r for r in created if isinstance(r, Reservation)]
        assert booked
        assert all(isinstance(r, (Reservation, RoomUnavailableError)) for r in created)

        operations = []
        for reservation in booked:
            if rng.random() < 0.5:
                operations.append(service.cancel(reservation.reservation_id))
            operations.append(
                service.create(reservation.room_id, uuid4(), stay(rng.randint(1, 40), rng.randint(1, 5)), 1)
            )
        results = await asyncio.gather(*operations, return_exceptions=True)
        assert all(isinstance(r, (Reservation, RoomUnavailableError)) for r in results)

        await assert_no_double_booking(service, ["R1", "R2"])


# ============================================================================
# INDEX REBUILDS
# ============================================================================

class TestIndexRebuilds:
    """Test that reads which rebuild a stale room never undo a concurrent commit"""

    @pytest.mark.concurrency
    async def test_reader_during_insert_and_cancel(self, rooms):
        repository = SlowReadRepository(latency=0.02)
        service = ReservationService(repository, InMemoryRoomInventory(rooms), clock=lambda: TODAY)
        first = await service.create("R1", uuid4(), stay(17, 4), 1)

        booking = asyncio.create_task(service.create("R1", uuid4(), stay(47, 2), 1))
        await asyncio.sleep(0.005)
        reader = asyncio.create_task(service.check_availability("R1", stay(80, 2)))
        cancelled = await service.cancel(first.reservation_id)
        second = await booking

        assert await reader
        assert cancelled.status == ReservationStatus.CANCELLED
        assert service.index.contains("R1", second.reservation_id)
        assert not service.index.contains("R1", first.reservation_id)
        await assert_no_double_booking(service, ["R1"])

        again = await service.create("R1", uuid4(), stay(17, 4), 1)
        assert again.status == ReservationStatus.PENDING

    @pytest.mark.concurrency
    @pytest.mark.edge_case
    async def test_slow_rebuild_races_cancel_and_create(self, rooms):
        repository = SlowReadRepository()
        service = ReservationService(repository, InMemoryRoomInventory(rooms), clock=lambda: TODAY)
        first = await service.create("R1", uuid4(), stay(17, 4), 1)

        # An abandoned insert leaves the room stale
        repository.latency = 0.2
        abandoned = asyncio.create_task(service.create("R1", uuid4(), stay(30, 2), 1))
        await asyncio.sleep(0.01)
        abandoned.cancel()
        with pytest.raises(asyncio.CancelledError):
            await abandoned
        repository.latency = 0.01

        free, cancelled, created = await asyncio.gather(
            service.free_ranges("R1", stay(10, 30)),
            service.cancel(first.reservation_id),
            service.create("R1", uuid4(), stay(40, 2), 1),
        )
        assert free
        assert cancelled.status == ReservationStatus.CANCELLED
        assert created.status == ReservationStatus.PENDING
        assert service.index.contains("R1", created.reservation_id)
        assert not service.index.contains("R1", first.reservation_id)
        await assert_no_double_booking(service, ["R1"])
        assert await service.check_availability("R1", stay(17, 4))


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
