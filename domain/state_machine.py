"""Reservation status lifecycle"""
from datetime import date
from typing import Dict, FrozenSet, Union

from domain.entities import Reservation
from domain.enums import ReservationStatus
from domain.exceptions import (
    CancellationClosedError, InvalidStatusError, InvalidTransitionError, PrematureCompletionError
)


TRANSITIONS: Dict[ReservationStatus, FrozenSet[ReservationStatus]] = {
    ReservationStatus.PENDING: frozenset({ReservationStatus.CONFIRMED, ReservationStatus.CANCELLED}),
    ReservationStatus.CONFIRMED: frozenset({ReservationStatus.COMPLETED, ReservationStatus.CANCELLED}),
    ReservationStatus.CANCELLED: frozenset(),
    ReservationStatus.COMPLETED: frozenset(),
}

INITIAL_STATUS = ReservationStatus.PENDING


def parse_status(value: Union[str, ReservationStatus]) -> ReservationStatus:
    """Turn a boundary value into a status, rejecting anything outside the closed set"""
    if isinstance(value, ReservationStatus):
        return value
    try:
        return ReservationStatus(value)
    except ValueError:
        raise InvalidStatusError(value) from None


class ReservationStateMachine:
    """Enforces legal status transitions for a single reservation"""

    def __init__(self, transitions: Dict[ReservationStatus, FrozenSet[ReservationStatus]] = TRANSITIONS):
        self._transitions = transitions

    def can_transition(self, current: ReservationStatus, target: ReservationStatus) -> bool:
        return target in self._transitions.get(current, frozenset())

    def allowed_targets(self, current: ReservationStatus) -> FrozenSet[ReservationStatus]:
        return self._transitions.get(current, frozenset())

    def validate(self, reservation: Reservation, target: ReservationStatus, today: date) -> None:
        """Raise if the reservation may not move to target as of today"""
        if not self.can_transition(reservation.status, target):
            raise InvalidTransitionError(reservation.status, target)
        if target == ReservationStatus.COMPLETED and today < reservation.check_out:
            raise PrematureCompletionError(reservation.check_out, today)

    def apply(self, reservation: Reservation, target: ReservationStatus, today: date) -> Reservation:
        """Validate and return the transitioned copy; the input is never modified"""
        self.validate(reservation, target, today)
        return reservation.with_status(target)

    def validate_guest_cancel(self, reservation: Reservation, today: date) -> None:
        """Guests may cancel only before the day of arrival; staff are not bound by this"""
        self.validate(reservation, ReservationStatus.CANCELLED, today)
        if today >= reservation.check_in:
            raise CancellationClosedError(reservation.check_in, today)
