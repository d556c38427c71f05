"""
Time-window policy for booking actions.

Pure functions over (now, slot start instant, booking status). Nothing here
reads a clock: callers pass `now` explicitly, which keeps every boundary
testable to the second.

The slot start instant is the booked calendar date combined with the slot's
local start time in the facility timezone. Slots are templates that may be
reused across dates, so the slot's own `date` is never used here.
"""

from datetime import date, datetime, time, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from slotbooking.models.booking import BookingStatus

DEFAULT_CANCELLATION_LEAD = timedelta(hours=2)
DEFAULT_CHECK_IN_WINDOW = timedelta(minutes=30)

TOO_EARLY = "too_early"
TOO_LATE = "too_late"


def slot_start_instant(booking_date: date, start_time: time, tz: str) -> datetime:
    """Timezone-aware start of the booked slot."""
    return datetime.combine(booking_date, start_time, tzinfo=ZoneInfo(tz))


def can_create(slot_start: datetime, now: datetime) -> bool:
    return slot_start > now


def can_cancel(
    slot_start: datetime,
    now: datetime,
    status: BookingStatus,
    lead_time: timedelta = DEFAULT_CANCELLATION_LEAD,
) -> bool:
    # Strict: cancelling exactly `lead_time` before start is refused
    return status == BookingStatus.CONFIRMED and slot_start - now > lead_time


def can_check_in(
    slot_start: datetime,
    now: datetime,
    window: timedelta = DEFAULT_CHECK_IN_WINDOW,
) -> bool:
    return abs(slot_start - now) <= window


def check_in_violation(
    slot_start: datetime,
    now: datetime,
    window: timedelta = DEFAULT_CHECK_IN_WINDOW,
) -> Optional[str]:
    """Which side of the check-in window `now` falls on, or None if inside."""
    if slot_start - now > window:
        return TOO_EARLY
    if now - slot_start > window:
        return TOO_LATE
    return None
