"""Domain Enums"""
from enum import Enum


class ReservationStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"

    @classmethod
    def _missing_(cls, value):
        # Accept different casing and the legacy "canceled" spelling only
        if isinstance(value, str):
            normalized = value.strip().lower()
            if normalized == "canceled":
                normalized = "cancelled"
            for member in cls:
                if member.value == normalized:
                    return member
        return None

    @property
    def is_terminal(self) -> bool:
        return self in (ReservationStatus.CANCELLED, ReservationStatus.COMPLETED)

    @property
    def occupies(self) -> bool:
        """Whether a reservation in this status blocks the room for future bookings"""
        return self in (ReservationStatus.PENDING, ReservationStatus.CONFIRMED)


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    INFRASTRUCTURE = "infrastructure"
