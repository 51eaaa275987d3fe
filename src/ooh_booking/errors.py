"""Exception taxonomy shared by the booking engines.

- ValidationError: a face request is missing commercial terms or has invalid ones
- NotFoundError: a proposal, face, slot, space, period or reservation is unknown
- ConflictError: a space is already booked for an overlapping period
- StateError: a decision or status change is not allowed in the current state
"""

from typing import Optional


class BookingError(Exception):
    """Base exception for booking engine operations."""

    pass


class ValidationError(BookingError):
    """Raised when required commercial fields are missing or invalid."""

    pass


class NotFoundError(BookingError):
    """Raised when a referenced record does not exist."""

    def __init__(self, kind: str, ref: object) -> None:
        self.kind = kind
        self.ref = ref
        super().__init__(f"{kind} {ref} not found")


class ConflictError(BookingError):
    """Raised when a space cannot be reserved for the requested period."""

    def __init__(self, message: str, space_id: Optional[int] = None) -> None:
        self.space_id = space_id
        super().__init__(message)


class StateError(BookingError):
    """Raised when an operation is not allowed in the current authorization state."""

    def __init__(
        self,
        message: str,
        pending_dg: int = 0,
        pending_dcm: int = 0,
    ) -> None:
        self.pending_dg = pending_dg
        self.pending_dcm = pending_dcm
        super().__init__(message)
