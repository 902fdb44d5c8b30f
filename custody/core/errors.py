# custody/core/errors.py
from typing import Iterable, List


class CustodyError(Exception):
    """Base class for every failure raised by the reservation lifecycle."""
    category = "custody_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(CustodyError):
    """Malformed input: inverted date window, damage reported without notes."""
    category = "validation_error"


class ConflictError(CustodyError):
    """The requested window overlaps an approved reservation for the same asset."""
    category = "conflict"

    def __init__(self, message: str, conflicting_ids: Iterable[str] = ()):
        super().__init__(message)
        self.conflicting_ids: List[str] = list(conflicting_ids)


class StateError(CustodyError):
    """Transition attempted from an incompatible current state."""
    category = "state_error"


class NotFoundError(CustodyError):
    category = "not_found"


class AuthorizationError(CustodyError):
    """Actor lacks the capability for the requested transition."""
    category = "authorization_error"
