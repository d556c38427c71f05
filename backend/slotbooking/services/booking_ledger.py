"""
Booking ledger: persistence of booking records and their status changes.

Uniqueness ("one confirmed booking per member, slot, date and resource")
is enforced by the uq_confirmed_booking partial index, so a lost race on
insert surfaces here as DuplicateBooking. Status changes are compare-and-set
on the current status: two concurrent cancellations of the same booking
cannot both win, which is what keeps capacity releases paired with
reservations.

Like the slot registry, the ledger never commits.
"""

from datetime import date, datetime
from typing import Any, Optional, Sequence

import jwt
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from slotbooking.core.config import get_settings
from slotbooking.core.exceptions import DuplicateBooking, InvalidTransition
from slotbooking.core.logging import get_logger
from slotbooking.core.metrics import record_transition
from slotbooking.models.booking import Booking, BookingStatus, Resource, is_transition_allowed
from slotbooking.models.slot import Slot
from slotbooking.schemas.principal import Principal

logger = get_logger(__name__)
settings = get_settings()


def generate_check_in_token(booking_id: int, user_id: int, slot_id: int, issued_at: datetime) -> str:
    """Signed, unique per booking (the id is part of the claims)."""
    claims = {
        "bid": booking_id,
        "uid": user_id,
        "sid": slot_id,
        "iat": int(issued_at.timestamp()),
    }
    return jwt.encode(claims, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


async def get_by_id(db: AsyncSession, booking_id: int) -> Optional[Booking]:
    result = await db.execute(
        select(Booking)
        .where(Booking.id == booking_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_by_token(db: AsyncSession, token: str) -> Optional[Booking]:
    result = await db.execute(select(Booking).where(Booking.qr_code == token))
    return result.scalar_one_or_none()


async def has_confirmed_booking(
    db: AsyncSession,
    user_id: int,
    slot_id: int,
    booking_date: date,
    resource: Resource,
) -> bool:
    result = await db.execute(
        select(Booking.id).where(
            Booking.user_id == user_id,
            Booking.slot_id == slot_id,
            Booking.booking_date == booking_date,
            Booking.resource == Resource(resource).value,
            Booking.status == BookingStatus.CONFIRMED.value,
        )
    )
    return result.first() is not None


async def create_booking(
    db: AsyncSession,
    principal: Principal,
    slot: Slot,
    booking_date: date,
    resource: Resource,
    notes: Optional[str],
    now: datetime,
) -> Booking:
    """Insert a confirmed booking and stamp its check-in token."""
    # A failed flush expires `slot`; keep plain ids for the log record.
    user_id, slot_id = principal.id, slot.id
    booking = Booking(
        user_id=principal.id,
        slot=slot,
        booking_date=booking_date,
        resource=Resource(resource).value,
        status=BookingStatus.CONFIRMED.value,
        checked_in=False,
        notes=notes,
    )
    db.add(booking)
    try:
        await db.flush()
    except IntegrityError as e:
        logger.warning(
            "booking_insert_rejected",
            user_id=user_id,
            slot_id=slot_id,
            booking_date=str(booking_date),
            error=str(e.orig),
        )
        raise DuplicateBooking() from e

    booking.qr_code = generate_check_in_token(booking.id, user_id, slot_id, now)
    await db.flush()
    return booking


async def set_status(
    db: AsyncSession,
    booking: Booking,
    new_status: BookingStatus,
    *,
    admin: bool = False,
    guards: Sequence[Any] = (),
    **fields,
) -> Booking:
    """
    Apply one state-machine transition and stamp the given fields.

    `guards` are extra WHERE conditions the row must still satisfy (e.g. not
    yet checked in). If the row changed underneath us the update matches
    nothing and InvalidTransition is raised.
    """
    current = BookingStatus(booking.status)
    new_status = BookingStatus(new_status)

    if not is_transition_allowed(current, new_status, admin=admin):
        raise InvalidTransition(
            f"Booking cannot move from {current.value} to {new_status.value}"
        )

    result = await db.execute(
        update(Booking)
        .where(Booking.id == booking.id, Booking.status == current.value, *guards)
        .values(status=new_status.value, **fields)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        logger.info("booking_transition_lost", booking_id=booking.id, expected=current.value)
        raise InvalidTransition("Booking was modified by another request")

    await db.refresh(booking)
    record_transition(current.value, new_status.value)
    logger.info(
        "booking_transition",
        booking_id=booking.id,
        from_status=current.value,
        to_status=new_status.value,
        admin=admin,
    )
    return booking


async def _paginate(db: AsyncSession, conditions: list, page: int, page_size: int) -> tuple[list[Booking], int]:
    total = (
        await db.execute(select(func.count(Booking.id)).where(*conditions))
    ).scalar()

    result = await db.execute(
        select(Booking)
        .where(*conditions)
        .order_by(Booking.booking_date.desc(), Booking.created_at.desc(), Booking.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return list(result.scalars().all()), total


async def find_by_principal(
    db: AsyncSession,
    user_id: int,
    status: Optional[BookingStatus] = None,
    page: int = 1,
    page_size: int = 10,
) -> tuple[list[Booking], int]:
    conditions = [Booking.user_id == user_id]
    if status:
        conditions.append(Booking.status == BookingStatus(status).value)
    return await _paginate(db, conditions, page, page_size)


async def find_all(
    db: AsyncSession,
    status: Optional[BookingStatus] = None,
    booking_date: Optional[date] = None,
    slot_id: Optional[int] = None,
    user_id: Optional[int] = None,
    page: int = 1,
    page_size: int = 10,
) -> tuple[list[Booking], int]:
    conditions = []
    if status:
        conditions.append(Booking.status == BookingStatus(status).value)
    if booking_date:
        conditions.append(Booking.booking_date == booking_date)
    if slot_id:
        conditions.append(Booking.slot_id == slot_id)
    if user_id:
        conditions.append(Booking.user_id == user_id)
    return await _paginate(db, conditions, page, page_size)


async def count_by_status(db: AsyncSession, user_id: int) -> dict[str, int]:
    result = await db.execute(
        select(Booking.status, func.count(Booking.id))
        .where(Booking.user_id == user_id)
        .group_by(Booking.status)
    )
    return {status: count for status, count in result.all()}


async def count_upcoming(db: AsyncSession, user_id: int, from_date: date) -> int:
    result = await db.execute(
        select(func.count(Booking.id)).where(
            Booking.user_id == user_id,
            Booking.status == BookingStatus.CONFIRMED.value,
            Booking.booking_date >= from_date,
        )
    )
    return result.scalar()
