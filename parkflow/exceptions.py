"""
ParkFlow - Domain Exceptions
Error taxonomy shared by services and translated to HTTP responses in main.py.
"""

from typing import Optional


class ParkFlowError(Exception):
    """Base class for expected, user-facing failures."""

    status_code = 500
    code = "internal"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.__class__.__doc__ or self.code
        super().__init__(self.message)


class NotFound(ParkFlowError):
    """Entity not found"""
    status_code = 404
    code = "not_found"


class SpotNotFound(NotFound):
    """Parking spot not found"""
    code = "spot_not_found"


class LotNotFound(NotFound):
    """Parking lot not found"""
    code = "lot_not_found"


class SessionNotFound(NotFound):
    """Parking session not found"""
    code = "session_not_found"


class UserNotFound(NotFound):
    """User not found"""
    code = "user_not_found"


class InvalidTransition(ParkFlowError):
    """Status transition not allowed"""
    status_code = 409
    code = "invalid_transition"

    def __init__(self, current=None, target=None, message: Optional[str] = None):
        self.current = current
        self.target = target
        if message is None and current is not None and target is not None:
            message = f"Cannot change status from {_value(current)} to {_value(target)}"
        super().__init__(message)


class UnknownStatus(ParkFlowError):
    """Unknown spot status"""
    status_code = 422
    code = "unknown_status"


class SpotUnavailable(ParkFlowError):
    """Parking spot is not available"""
    status_code = 409
    code = "spot_unavailable"


class SessionAlreadyActive(ParkFlowError):
    """User already has an active parking session"""
    status_code = 409
    code = "session_already_active"


class SessionAlreadyEnded(ParkFlowError):
    """Parking session has already ended"""
    status_code = 409
    code = "session_already_ended"


class Forbidden(ParkFlowError):
    """Not allowed to perform this action"""
    status_code = 403
    code = "forbidden"


class Conflict(ParkFlowError):
    """Request conflicts with existing data"""
    status_code = 409
    code = "conflict"


class Internal(ParkFlowError):
    """An unexpected error occurred"""
    status_code = 500
    code = "internal"


def _value(status) -> str:
    return getattr(status, "value", str(status))
