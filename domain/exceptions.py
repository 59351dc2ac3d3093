"""
Domain exceptions for the reservation engine.

Every error carries a machine-readable ``code`` and an ``ErrorKind`` so the
API layer can map it to a response without knowing the concrete type.
"""
from datetime import date
from typing import Any, Dict, Optional

from domain.enums import ErrorKind


class DomainException(Exception):
    """Base exception for all reservation engine errors."""

    kind: ErrorKind = ErrorKind.CONFLICT
    default_code: str = "DOMAIN_ERROR"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}
        super().__init__(self.message)


# ============================================================================
# VALIDATION
# ============================================================================

class ReservationValidationError(DomainException, ValueError):
    """Input rejected before any I/O; the caller can fix and retry."""

    kind = ErrorKind.VALIDATION
    default_code = "VALIDATION_ERROR"


class InvalidRangeError(ReservationValidationError):
    default_code = "INVALID_RANGE"

    def __init__(self, message: str = "Check-out must be after check-in", **details: Any) -> None:
        super().__init__(message, details={k: str(v) for k, v in details.items()})


class InvalidGuestCountError(ReservationValidationError):
    default_code = "INVALID_GUEST_COUNT"

    def __init__(self, guest_count: int) -> None:
        super().__init__(
            "At least 1 guest is required",
            details={"guest_count": guest_count},
        )


class CapacityExceededError(ReservationValidationError):
    default_code = "CAPACITY_EXCEEDED"

    def __init__(self, room_id: str, guest_count: int, capacity: int) -> None:
        super().__init__(
            f"Room {room_id} holds at most {capacity} guests, {guest_count} requested",
            details={"room_id": room_id, "guest_count": guest_count, "capacity": capacity},
        )


class InvalidStatusError(ReservationValidationError):
    default_code = "INVALID_STATUS"

    def __init__(self, value: Any) -> None:
        super().__init__(f"Unknown reservation status: {value!r}", details={"status": str(value)})


# ============================================================================
# NOT FOUND
# ============================================================================

class NotFoundError(DomainException):
    kind = ErrorKind.NOT_FOUND
    default_code = "NOT_FOUND"


class RoomNotFoundError(NotFoundError):
    default_code = "ROOM_NOT_FOUND"

    def __init__(self, room_id: str) -> None:
        super().__init__(f"Room {room_id} not found", details={"room_id": room_id})


class ReservationNotFoundError(NotFoundError):
    default_code = "RESERVATION_NOT_FOUND"

    def __init__(self, reservation_id: Any) -> None:
        super().__init__(
            f"Reservation {reservation_id} not found",
            details={"reservation_id": str(reservation_id)},
        )


# ============================================================================
# CONFLICT
# ============================================================================

class ConflictError(DomainException):
    kind = ErrorKind.CONFLICT
    default_code = "CONFLICT"


class RoomInactiveError(ConflictError):
    default_code = "ROOM_INACTIVE"

    def __init__(self, room_id: str) -> None:
        super().__init__(f"Room {room_id} is not open for booking", details={"room_id": room_id})


class RoomUnavailableError(ConflictError):
    default_code = "ROOM_UNAVAILABLE"

    def __init__(self, room_id: str, check_in: date, check_out: date) -> None:
        super().__init__(
            f"Room {room_id} is not available from {check_in} to {check_out}",
            details={
                "room_id": room_id,
                "check_in": check_in.isoformat(),
                "check_out": check_out.isoformat(),
            },
        )


class InvalidTransitionError(ConflictError):
    default_code = "INVALID_TRANSITION"

    def __init__(self, current: Any, target: Any) -> None:
        current_value = getattr(current, "value", current)
        target_value = getattr(target, "value", target)
        super().__init__(
            f"Cannot move reservation from {current_value} to {target_value}",
            details={"from": current_value, "to": target_value},
        )


class PrematureCompletionError(ConflictError):
    default_code = "PREMATURE_COMPLETION"

    def __init__(self, check_out: date, today: date) -> None:
        super().__init__(
            f"Reservation cannot be completed before check-out on {check_out}",
            details={"check_out": check_out.isoformat(), "today": today.isoformat()},
        )


class CancellationClosedError(ConflictError):
    default_code = "CANCELLATION_CLOSED"

    def __init__(self, check_in: date, today: date) -> None:
        super().__init__(
            f"Guests cannot cancel on or after the check-in date {check_in}",
            details={"check_in": check_in.isoformat(), "today": today.isoformat()},
        )


class StorageConflictError(ConflictError):
    """Raised by a repository when its own exclusion or version check fails."""

    default_code = "STORAGE_CONFLICT"


# ============================================================================
# INFRASTRUCTURE
# ============================================================================

class InfrastructureError(DomainException):
    kind = ErrorKind.INFRASTRUCTURE
    default_code = "INFRASTRUCTURE_ERROR"


class RepositoryUnavailableError(InfrastructureError):
    default_code = "REPOSITORY_UNAVAILABLE"


class RepositoryTimeoutError(InfrastructureError, TimeoutError):
    default_code = "REPOSITORY_TIMEOUT"


class LockTimeoutError(InfrastructureError, TimeoutError):
    default_code = "LOCK_TIMEOUT"

    def __init__(self, room_id: str, timeout: float) -> None:
        super().__init__(
            f"Timed out after {timeout}s waiting for room {room_id}",
            details={"room_id": room_id, "timeout": timeout},
        )
