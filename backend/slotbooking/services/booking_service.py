"""
Booking service: the coordinator between time policy, slot registry and
booking ledger.

CONSISTENCY STRATEGY: Reserve, record, compensate
=================================================

Creating a booking touches two rows: the slot counter and the new booking.
They are written as two units of work:

  1. Reserve one unit of capacity (atomic conditional UPDATE) and commit.
  2. Insert the booking and commit.

If step 2 fails for any reason (most often a lost race on the
uq_confirmed_booking index), step 1 is undone by releasing the unit again,
retried up to RELEASE_RETRY_ATTEMPTS times. If even that fails the reserved
place is leaked: we raise CapacityLeak, log it at critical and count it,
so an operator can repair the counter.

Cancellation, check-out and admin overrides are single units of work: the
compare-and-set status change and the matching counter change commit
together or roll back together.

Capacity pairing:
  A booking holds one unit of its resource in every status except
  `cancelled`. Every transition into `cancelled` releases exactly once and
  every transition out of it reserves exactly once. The compare-and-set in
  the ledger guarantees only one of two racing transitions applies.

"now" is injectable everywhere so the time windows can be tested exactly.
"""

import time
from datetime import date, datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from slotbooking.core.config import get_settings
from slotbooking.core.exceptions import (
    AlreadyCheckedIn,
    AlreadyCheckedOut,
    BookingError,
    BookingNotFound,
    CancellationWindowClosed,
    CapacityLeak,
    DuplicateBooking,
    Forbidden,
    InvalidTransition,
    NotCheckedIn,
    NotConfirmed,
    TooEarly,
    TooLate,
    ValidationError,
)
from slotbooking.core.logging import get_logger
from slotbooking.core.metrics import booking_latency, capacity_leaks, record_booking_attempt
from slotbooking.models.booking import Booking, BookingStatus, HOLDING_STATUSES, Resource
from slotbooking.models.slot import Slot
from slotbooking.schemas.principal import Principal
from slotbooking.services import booking_ledger, slot_registry, time_policy
from slotbooking.services.interfaces.notifier import BookingNotifier
from slotbooking.services.notification_service import dispatch_booking_created
from slotbooking.services.slot_service import get_slot

logger = get_logger(__name__)
settings = get_settings()

NOTES_MAX_LENGTH = 200


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _slot_start(booking_date: date, slot: Slot) -> datetime:
    return time_policy.slot_start_instant(booking_date, slot.start_time, settings.FACILITY_TIMEZONE)


def _authorize(booking: Booking, actor: Principal, action: str) -> None:
    if booking.user_id != actor.id and not actor.is_admin:
        logger.warning("booking_access_denied", booking_id=booking.id, actor_id=actor.id, action=action)
        raise Forbidden(f"Not authorized to {action} this booking")


async def _load_booking(db: AsyncSession, booking_id: int) -> Booking:
    booking = await booking_ledger.get_by_id(db, booking_id)
    if not booking:
        raise BookingNotFound()
    return booking


def booking_summary(booking: Booking, slot: Slot) -> dict:
    return {
        "booking_id": booking.id,
        "booking_date": str(booking.booking_date),
        "start_time": slot.start_time.strftime("%H:%M"),
        "end_time": slot.end_time.strftime("%H:%M"),
        "gender": slot.gender,
        "is_raising_court": booking.is_raising_court,
    }


async def _compensate(db: AsyncSession, slot_id: int, resource: Resource, cause: BaseException) -> None:
    """Undo a reservation whose booking could not be written."""
    last_error: Optional[BaseException] = None
    for attempt in range(1, settings.RELEASE_RETRY_ATTEMPTS + 1):
        try:
            await slot_registry.release_capacity(db, slot_id, resource)
            await db.commit()
            logger.info(
                "reservation_compensated",
                slot_id=slot_id,
                resource=resource.value,
                attempt=attempt,
                cause=type(cause).__name__,
            )
            return
        except Exception as e:
            await db.rollback()
            last_error = e
            logger.warning(
                "compensation_retry",
                slot_id=slot_id,
                resource=resource.value,
                attempt=attempt,
                error=str(e),
            )

    capacity_leaks.inc()
    logger.critical(
        "capacity_leak",
        slot_id=slot_id,
        resource=resource.value,
        cause=str(cause),
        error=str(last_error),
    )
    raise CapacityLeak(slot_id, resource.value, cause=last_error) from cause


async def create_booking(
    db: AsyncSession,
    principal: Principal,
    slot_id: int,
    booking_date: date,
    resource: Resource = Resource.PRIMARY,
    notes: Optional[str] = None,
    *,
    notifier: Optional[BookingNotifier] = None,
    now: Optional[datetime] = None,
) -> Booking:
    """
    Book one unit of `resource` on a slot for `booking_date`.

    Order of checks: verified email, notes length, slot exists, slot start
    still in the future, gender, existing confirmed booking. Only then is
    capacity reserved.
    """
    now = now or _utcnow()
    resource = Resource(resource)
    started = time.perf_counter()

    try:
        if not principal.email_verified:
            raise Forbidden("Please verify your email address before booking")
        if notes and len(notes) > NOTES_MAX_LENGTH:
            raise ValidationError(f"Notes cannot be more than {NOTES_MAX_LENGTH} characters")

        slot = await get_slot(db, slot_id)

        if not time_policy.can_create(_slot_start(booking_date, slot), now):
            raise ValidationError("Cannot book slots in the past")

        if principal.gender and principal.gender.value != slot.gender:
            raise ValidationError(f"This slot is for {slot.gender} only")

        # Friendly pre-check; the partial unique index is the real guard
        if await booking_ledger.has_confirmed_booking(db, principal.id, slot_id, booking_date, resource):
            raise DuplicateBooking()

        await slot_registry.reserve_capacity(db, slot_id, resource)
        await db.commit()
    except BookingError as e:
        await db.rollback()
        record_booking_attempt("conflict" if e.status_code == 409 else "rejected")
        logger.info(
            "booking_rejected",
            user_id=principal.id,
            slot_id=slot_id,
            booking_date=str(booking_date),
            resource=resource.value,
            reason=e.code,
        )
        raise

    try:
        booking = await booking_ledger.create_booking(
            db, principal, slot, booking_date, resource, notes, now
        )
        await db.commit()
    except Exception as e:
        await db.rollback()
        record_booking_attempt("conflict" if isinstance(e, DuplicateBooking) else "error")
        await _compensate(db, slot_id, resource, e)
        raise

    await db.refresh(booking)
    booking_latency.observe(time.perf_counter() - started)
    record_booking_attempt("success")
    logger.info(
        "booking_created",
        booking_id=booking.id,
        user_id=principal.id,
        slot_id=slot_id,
        booking_date=str(booking_date),
        resource=resource.value,
    )

    dispatch_booking_created(notifier, principal, booking_summary(booking, slot))
    return booking


async def cancel_booking(
    db: AsyncSession,
    booking_id: int,
    actor: Principal,
    reason: Optional[str] = None,
    *,
    now: Optional[datetime] = None,
) -> Booking:
    """Cancel a confirmed booking and give its place back to the slot."""
    now = now or _utcnow()
    booking = await _load_booking(db, booking_id)
    _authorize(booking, actor, "cancel")

    status = BookingStatus(booking.status)
    lead_time = timedelta(minutes=settings.CANCELLATION_LEAD_MINUTES)
    slot_start = _slot_start(booking.booking_date, booking.slot)
    if not time_policy.can_cancel(slot_start, now, status, lead_time):
        if status != BookingStatus.CONFIRMED:
            raise CancellationWindowClosed(f"Booking is already {status.value}")
        raise CancellationWindowClosed(
            f"Cancellation is only allowed up to {settings.CANCELLATION_LEAD_MINUTES // 60} "
            f"hours before the slot"
        )

    try:
        await booking_ledger.set_status(
            db,
            booking,
            BookingStatus.CANCELLED,
            cancelled_at=now,
            cancellation_reason=reason,
        )
        await slot_registry.release_capacity(db, booking.slot_id, Resource(booking.resource))
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info(
        "booking_cancelled",
        booking_id=booking.id,
        user_id=booking.user_id,
        actor_id=actor.id,
        slot_id=booking.slot_id,
        resource=booking.resource,
    )
    return booking


async def check_in(
    db: AsyncSession,
    booking_id: int,
    actor: Principal,
    *,
    now: Optional[datetime] = None,
) -> Booking:
    now = now or _utcnow()
    booking = await _load_booking(db, booking_id)
    _authorize(booking, actor, "check in for")

    if booking.status != BookingStatus.CONFIRMED.value:
        raise NotConfirmed("Only confirmed bookings can be checked in")
    if booking.checked_in:
        raise AlreadyCheckedIn()

    window = timedelta(minutes=settings.CHECK_IN_WINDOW_MINUTES)
    violation = time_policy.check_in_violation(_slot_start(booking.booking_date, booking.slot), now, window)
    if violation == time_policy.TOO_EARLY:
        raise TooEarly(f"Check-in opens {settings.CHECK_IN_WINDOW_MINUTES} minutes before the slot")
    if violation == time_policy.TOO_LATE:
        raise TooLate(f"Check-in closed {settings.CHECK_IN_WINDOW_MINUTES} minutes after the slot start")

    try:
        await booking_ledger.set_status(
            db,
            booking,
            BookingStatus.CONFIRMED,
            guards=[Booking.checked_in.is_(False)],
            checked_in=True,
            checked_in_at=now,
        )
        await db.commit()
    except InvalidTransition:
        await db.rollback()
        raise AlreadyCheckedIn()
    except Exception:
        await db.rollback()
        raise

    logger.info("booking_checked_in", booking_id=booking.id, user_id=booking.user_id)
    return booking


async def check_out(
    db: AsyncSession,
    booking_id: int,
    actor: Principal,
    *,
    now: Optional[datetime] = None,
) -> Booking:
    now = now or _utcnow()
    booking = await _load_booking(db, booking_id)
    _authorize(booking, actor, "check out for")

    if not booking.checked_in:
        raise NotCheckedIn()
    if booking.checked_out_at is not None:
        raise AlreadyCheckedOut()
    if booking.status != BookingStatus.CONFIRMED.value:
        raise NotConfirmed("Only confirmed bookings can be checked out")

    try:
        await booking_ledger.set_status(
            db,
            booking,
            BookingStatus.COMPLETED,
            guards=[Booking.checked_out_at.is_(None)],
            checked_out_at=now,
        )
        await db.commit()
    except InvalidTransition:
        await db.rollback()
        raise AlreadyCheckedOut()
    except Exception:
        await db.rollback()
        raise

    logger.info("booking_checked_out", booking_id=booking.id, user_id=booking.user_id)
    return booking


async def admin_set_status(
    db: AsyncSession,
    booking_id: int,
    actor: Principal,
    new_status: BookingStatus,
    notes: Optional[str] = None,
    *,
    now: Optional[datetime] = None,
) -> Booking:
    """
    Force a booking into any status.

    Leaving `cancelled` re-reserves the place (SlotFull if it's gone);
    entering `cancelled` releases it. Both happen in the same transaction
    as the status change.
    """
    if not actor.is_admin:
        raise Forbidden("Admin access required")

    now = now or _utcnow()
    new_status = BookingStatus(new_status)
    booking = await _load_booking(db, booking_id)
    current = BookingStatus(booking.status)
    resource = Resource(booking.resource)

    fields = {}
    if notes is not None:
        fields["notes"] = notes
    if new_status == BookingStatus.CANCELLED and booking.cancelled_at is None:
        fields["cancelled_at"] = now
    if new_status == BookingStatus.COMPLETED and booking.checked_out_at is None:
        fields["checked_out_at"] = now
    if current == BookingStatus.CANCELLED and new_status != BookingStatus.CANCELLED:
        fields["cancelled_at"] = None
        fields["cancellation_reason"] = None

    reserves = current not in HOLDING_STATUSES and new_status in HOLDING_STATUSES
    releases = current in HOLDING_STATUSES and new_status not in HOLDING_STATUSES

    try:
        if reserves:
            await slot_registry.reserve_capacity(db, booking.slot_id, resource)
        await booking_ledger.set_status(db, booking, new_status, admin=True, **fields)
        if releases:
            await slot_registry.release_capacity(db, booking.slot_id, resource)
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        raise DuplicateBooking("Member already holds a confirmed booking for this slot") from e
    except Exception:
        await db.rollback()
        raise

    logger.info(
        "booking_status_overridden",
        booking_id=booking.id,
        actor_id=actor.id,
        from_status=current.value,
        to_status=new_status.value,
        reserved=reserves,
        released=releases,
    )
    return booking


async def get_booking(db: AsyncSession, booking_id: int, actor: Principal) -> Booking:
    booking = await _load_booking(db, booking_id)
    _authorize(booking, actor, "access")
    return booking


async def get_booking_by_token(db: AsyncSession, token: str, actor: Principal) -> Booking:
    """Front-desk lookup of a booking from its scanned check-in code."""
    if not actor.is_admin:
        raise Forbidden("Admin access required")
    booking = await booking_ledger.get_by_token(db, token)
    if not booking:
        raise BookingNotFound()
    return booking


async def list_bookings(
    db: AsyncSession,
    actor: Principal,
    status: Optional[BookingStatus] = None,
    booking_date: Optional[date] = None,
    slot_id: Optional[int] = None,
    user_id: Optional[int] = None,
    page: int = 1,
    page_size: int = 10,
) -> tuple[list[Booking], int]:
    """Admins see every booking (filterable); members only their own."""
    if actor.is_admin:
        return await booking_ledger.find_all(
            db,
            status=status,
            booking_date=booking_date,
            slot_id=slot_id,
            user_id=user_id,
            page=page,
            page_size=page_size,
        )
    return await booking_ledger.find_by_principal(db, actor.id, status, page, page_size)


async def booking_stats(db: AsyncSession, actor: Principal, *, now: Optional[datetime] = None) -> dict:
    """
    The caller's own booking overview: total, upcoming confirmed bookings
    (from today in the facility timezone) and a count per status.
    """
    now = now or _utcnow()
    today = now.astimezone(ZoneInfo(settings.FACILITY_TIMEZONE)).date()

    by_status = await booking_ledger.count_by_status(db, actor.id)
    upcoming = await booking_ledger.count_upcoming(db, actor.id, today)
    return {
        "total_bookings": sum(by_status.values()),
        "upcoming_bookings": upcoming,
        "status_breakdown": {status.value: by_status.get(status.value, 0) for status in BookingStatus},
    }
