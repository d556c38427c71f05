"""
Booking notification interface.
Lets the booking service announce new bookings without knowing how
(or whether) the message is delivered.
"""

from abc import ABC, abstractmethod

from slotbooking.schemas.principal import Principal


class BookingNotifier(ABC):
    """
    Interface for booking notifications.

    Implementations:
    - LoggingNotifier: writes the summary to the structured log
    - SmtpNotifier: sends a confirmation email
    """

    @abstractmethod
    async def notify_booking_created(self, principal: Principal, summary: dict) -> bool:
        """
        Announce a newly created booking.

        Args:
            principal: Member who booked
            summary: Slot date/time, gender, resource and booking id

        Returns:
            True if the notification was handed off, False otherwise.
            Callers ignore the result.
        """
        pass
