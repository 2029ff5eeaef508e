"""
shared/exceptions.py
Domain error taxonomy for the reservation workflow.

Every error is a tagged, recoverable failure: main.py renders it as
{"success": false, "error": <code>, "detail": <message>} and the caller
decides whether to retry. Nothing here is retried server-side.
"""

from typing import Any, Dict, Optional


class ReservationError(Exception):
    """Base domain error"""

    code = "reservation_error"
    status_code = 409
    default_message = "Reservation workflow error"

    def __init__(self, message: Optional[str] = None, **extra: Any):
        self.message = message or self.default_message
        self.extra: Dict[str, Any] = extra
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"success": False, "error": self.code, "detail": self.message, **self.extra}


class SessionNotAvailable(ReservationError):
    code = "session_not_available"
    default_message = "This session is not open for reservations"


class SessionFull(ReservationError):
    code = "session_full"
    default_message = "This session has no places left"


class SessionHasEnrollments(ReservationError):
    code = "session_has_enrollments"
    default_message = "Session has confirmed enrollments and cannot be deleted"


class PackageNotActive(ReservationError):
    code = "package_not_active"
    default_message = "Package is not active"


class PackageExpired(ReservationError):
    code = "package_expired"
    default_message = "Package has expired"


class PackageExhausted(ReservationError):
    code = "package_exhausted"
    default_message = "Package has no remaining sessions"


class InvalidPackage(ReservationError):
    code = "invalid_package"
    status_code = 422
    default_message = "Invalid package request"


class AlreadyTerminal(ReservationError):
    code = "already_terminal"
    default_message = "Reservation has already been processed"


class Unauthorized(ReservationError):
    code = "unauthorized"
    status_code = 403
    default_message = "Not allowed to perform this action"
