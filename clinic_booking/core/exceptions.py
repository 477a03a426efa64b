"""
Domain errors raised by the booking, directory and staff services.

Every error carries a stable ``code`` in its JSON detail so clients can tell
a lost race apart from a stale selection or a store outage.
"""
from typing import Optional
from fastapi import HTTPException, status


class ServiceError(HTTPException):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "error"
    default_message = "Request could not be completed"

    def __init__(self, message: Optional[str] = None, **extra):
        self.message = message or self.default_message
        detail = {"code": self.code, "message": self.message}
        detail.update(extra)
        super().__init__(status_code=self.status_code, detail=detail)


class NotFound(ServiceError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"
    default_message = "The requested resource was not found"


class ConflictError(ServiceError):
    status_code = status.HTTP_409_CONFLICT
    code = "conflict"
    default_message = "The request conflicts with the current state"


class StaleSelection(ServiceError):
    status_code = status.HTTP_409_CONFLICT
    code = "stale_selection"
    default_message = "This time slot was just taken. Please choose another one."


class LostRace(ServiceError):
    status_code = status.HTTP_409_CONFLICT
    code = "lost_race"
    default_message = "This time slot was just booked by someone else. Please choose another one."


class BookingValidationError(ServiceError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    code = "validation_error"
    default_message = "Some required fields are missing or invalid"


class InvalidTransition(ServiceError):
    status_code = status.HTTP_409_CONFLICT
    code = "invalid_transition"
    default_message = "This status change is not allowed"


class StoreUnavailable(ServiceError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "store_unavailable"
    default_message = "The booking store is temporarily unavailable. Please try again."


class NotificationFailure(Exception):
    """Raised by notifier backends; logged by the dispatcher, never surfaced."""
