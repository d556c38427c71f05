"""
Booking notifications.

Notifications are fire-and-forget: the booking is already committed when
one is dispatched, and nothing a notifier does (slow SMTP, exceptions) can
change the booking result. dispatch_booking_created() schedules the send
as a background task and returns immediately.
"""

import asyncio
import smtplib
from email.message import EmailMessage
from typing import Optional

from slotbooking.core.config import get_settings
from slotbooking.core.logging import get_logger
from slotbooking.core.metrics import record_notification
from slotbooking.schemas.principal import Principal
from slotbooking.services.interfaces.notifier import BookingNotifier

logger = get_logger(__name__)
settings = get_settings()

# Strong references to in-flight sends so they aren't garbage collected
_pending: set[asyncio.Task] = set()


class LoggingNotifier(BookingNotifier):
    """Default notifier: records the confirmation in the log only."""

    async def notify_booking_created(self, principal: Principal, summary: dict) -> bool:
        logger.info("booking_notification", user_id=principal.id, **summary)
        return True


class SmtpNotifier(BookingNotifier):
    """Sends a plain-text confirmation through the configured SMTP relay."""

    def __init__(self):
        self.host = settings.SMTP_HOST
        self.port = settings.SMTP_PORT
        self.username = settings.SMTP_USERNAME
        self.password = settings.SMTP_PASSWORD
        self.from_email = settings.SMTP_FROM_EMAIL or settings.SMTP_USERNAME
        self.use_tls = settings.SMTP_USE_TLS

    def _build_message(self, to_email: str, summary: dict) -> EmailMessage:
        court = " (raising court)" if summary.get("is_raising_court") else ""
        msg = EmailMessage()
        msg["From"] = self.from_email
        msg["To"] = to_email
        msg["Subject"] = "Swimming Pool - Booking Confirmation"
        msg.set_content(
            f"Your booking #{summary['booking_id']} is confirmed{court}.\n\n"
            f"Date: {summary['booking_date']}\n"
            f"Time: {summary['start_time']} - {summary['end_time']}\n"
            f"Session: {summary['gender']}\n\n"
            "Please arrive 10 minutes before your scheduled time.\n"
            "You can cancel your booking up to 2 hours before the slot.\n"
        )
        return msg

    def _send(self, msg: EmailMessage) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=10) as server:
            if self.use_tls:
                server.starttls()
            if self.username and self.password:
                server.login(self.username, self.password)
            server.send_message(msg)

    async def notify_booking_created(self, principal: Principal, summary: dict) -> bool:
        if not self.host or not self.from_email:
            logger.warning("smtp_not_configured", booking_id=summary.get("booking_id"))
            return False
        if not principal.email:
            logger.info("notification_skipped_no_email", user_id=principal.id)
            return False

        msg = self._build_message(principal.email, summary)
        await asyncio.to_thread(self._send, msg)
        return True


_notifier: Optional[BookingNotifier] = None


def get_notifier() -> BookingNotifier:
    """Configured notifier singleton (NOTIFIER=log|smtp)."""
    global _notifier
    if _notifier is None:
        _notifier = SmtpNotifier() if settings.NOTIFIER == "smtp" else LoggingNotifier()
    return _notifier


async def _deliver(notifier: BookingNotifier, principal: Principal, summary: dict) -> None:
    try:
        sent = await notifier.notify_booking_created(principal, summary)
    except Exception as e:
        sent = False
        logger.error(
            "booking_notification_failed",
            booking_id=summary.get("booking_id"),
            error=str(e),
        )
    record_notification(bool(sent))


def dispatch_booking_created(notifier: Optional[BookingNotifier], principal: Principal, summary: dict) -> None:
    if notifier is None:
        return
    task = asyncio.get_running_loop().create_task(_deliver(notifier, principal, summary))
    _pending.add(task)
    task.add_done_callback(_pending.discard)


async def drain_notifications() -> None:
    """Wait for in-flight notifications (shutdown and tests)."""
    if _pending:
        await asyncio.gather(*list(_pending), return_exceptions=True)
