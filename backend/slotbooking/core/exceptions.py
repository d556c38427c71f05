"""
Typed errors raised by the booking core.

Every business failure is a BookingError with a stable machine code, an
HTTP status for the API layer and a human-readable message. The API layer
renders them through a single exception handler (see main.py).

CapacityLeak is intentionally outside that hierarchy: it signals that a
reserved unit of slot capacity could not be given back and needs an
operator, so it must never be rendered as an ordinary business error.
"""

from typing import Optional

from fastapi import status


class BookingError(Exception):
    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "booking_error"
    message: str = "Booking request could not be processed"

    def __init__(self, message: Optional[str] = None, **context):
        self.message = message or self.message
        self.context = context
        super().__init__(self.message)


class NotFound(BookingError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"
    message = "Resource not found"


class SlotNotFound(NotFound):
    code = "slot_not_found"
    message = "Slot not found"


class BookingNotFound(NotFound):
    code = "booking_not_found"
    message = "Booking not found"


class Forbidden(BookingError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "forbidden"
    message = "Not authorized to perform this action"


class ValidationError(BookingError):
    code = "validation_error"
    message = "Validation failed"


class SlotFull(BookingError):
    status_code = status.HTTP_409_CONFLICT
    code = "slot_full"
    message = "Slot is fully booked"


class SlotUnavailable(BookingError):
    status_code = status.HTTP_409_CONFLICT
    code = "slot_unavailable"
    message = "Slot is not available for booking"


class ResourceNotOffered(BookingError):
    code = "resource_not_offered"
    message = "Raising court is not available for this slot"


class ReservationConflict(BookingError):
    status_code = status.HTTP_409_CONFLICT
    code = "reservation_conflict"
    message = "Booking failed due to high demand. Please try again."


class DuplicateBooking(BookingError):
    status_code = status.HTTP_409_CONFLICT
    code = "duplicate_booking"
    message = "You already have a booking for this slot"


class SlotInUse(BookingError):
    status_code = status.HTTP_409_CONFLICT
    code = "slot_in_use"
    message = "Slot has existing bookings. Please deactivate instead."


class CancellationWindowClosed(BookingError):
    """Raised when the cancellation policy refuses: the slot starts too soon,
    or the booking is no longer confirmed."""

    code = "cancellation_window_closed"
    message = "Cancellation is only allowed up to 2 hours before the slot"


class CheckInWindowViolation(BookingError):
    code = "check_in_window"
    message = "Check-in is only allowed within 30 minutes of slot start time"


class TooEarly(CheckInWindowViolation):
    code = "check_in_too_early"
    message = "Too early to check in for this slot"


class TooLate(CheckInWindowViolation):
    code = "check_in_too_late"
    message = "Check-in window for this slot has closed"


class InvalidTransition(BookingError):
    status_code = status.HTTP_409_CONFLICT
    code = "invalid_transition"
    message = "Booking cannot move to the requested status"


class NotConfirmed(InvalidTransition):
    code = "not_confirmed"
    message = "Only confirmed bookings can be checked in or out"


class AlreadyCheckedIn(InvalidTransition):
    code = "already_checked_in"
    message = "Already checked in"


class NotCheckedIn(InvalidTransition):
    code = "not_checked_in"
    message = "Must check in before checking out"


class AlreadyCheckedOut(InvalidTransition):
    code = "already_checked_out"
    message = "Already checked out"


class CapacityLeak(RuntimeError):
    """A reservation succeeded, the ledger write failed and the
    compensating release could not be completed."""

    def __init__(self, slot_id: int, resource: str, cause: Optional[BaseException] = None):
        self.slot_id = slot_id
        self.resource = resource
        self.cause = cause
        super().__init__(
            f"Capacity leaked on slot {slot_id} ({resource}): compensation failed"
        )
