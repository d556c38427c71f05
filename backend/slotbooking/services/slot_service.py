"""
Slot administration: creation, edits, deactivation and listing.

None of these touch the capacity counters. Edits that would leave a
counter above its (new) capacity are refused rather than clamped.
"""

from datetime import date, time
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from slotbooking.core.config import get_settings
from slotbooking.core.exceptions import SlotInUse, SlotNotFound, ValidationError
from slotbooking.core.logging import get_logger
from slotbooking.models.booking import Booking
from slotbooking.models.slot import Slot
from slotbooking.schemas.slot import SlotCreate, SlotUpdate

logger = get_logger(__name__)
settings = get_settings()

# Fields an admin may clear by sending null
NULLABLE_SLOT_FIELDS = {"description"}

# The facility's standard day: (start, end, gender)
DEFAULT_SLOT_TEMPLATE = [
    (time(5, 0), time(6, 0), "male"),
    (time(6, 0), time(7, 0), "female"),
    (time(7, 0), time(8, 0), "male"),
    (time(8, 0), time(9, 0), "female"),
    (time(16, 0), time(17, 0), "male"),
    (time(17, 0), time(19, 0), "female"),
    (time(19, 0), time(20, 0), "male"),
]


async def _find_duplicate(
    db: AsyncSession,
    slot_date: date,
    start_time: time,
    end_time: time,
    gender: str,
    exclude_id: Optional[int] = None,
) -> Optional[Slot]:
    query = select(Slot).where(
        Slot.date == slot_date,
        Slot.start_time == start_time,
        Slot.end_time == end_time,
        Slot.gender == gender,
    )
    if exclude_id is not None:
        query = query.where(Slot.id != exclude_id)
    result = await db.execute(query)
    return result.scalar_one_or_none()


async def create_slot(db: AsyncSession, slot_data: SlotCreate) -> Slot:
    """Create a slot with empty counters."""
    gender = slot_data.gender.value
    if await _find_duplicate(db, slot_data.date, slot_data.start_time, slot_data.end_time, gender):
        raise ValidationError("A slot already exists for this date, time, and gender")

    slot = Slot(
        date=slot_data.date,
        start_time=slot_data.start_time,
        end_time=slot_data.end_time,
        gender=gender,
        max_capacity=slot_data.max_capacity,
        description=slot_data.description,
        is_raising_court=slot_data.is_raising_court,
        raising_court_capacity=slot_data.raising_court_capacity,
        current_bookings=0,
        raising_court_bookings=0,
        is_active=True,
    )
    db.add(slot)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ValidationError("A slot already exists for this date, time, and gender")
    await db.refresh(slot)

    logger.info(
        "slot_created",
        slot_id=slot.id,
        date=str(slot.date),
        start=str(slot.start_time),
        gender=slot.gender,
        capacity=slot.max_capacity,
    )
    return slot


async def get_slot(db: AsyncSession, slot_id: int) -> Slot:
    result = await db.execute(
        select(Slot)
        .where(Slot.id == slot_id)
        .execution_options(populate_existing=True)
    )
    slot = result.scalar_one_or_none()
    if not slot:
        raise SlotNotFound(f"Slot {slot_id} not found")
    return slot


async def update_slot(db: AsyncSession, slot_id: int, slot_data: SlotUpdate) -> Slot:
    """Apply an admin edit to the non-counter fields of a slot."""
    slot = await get_slot(db, slot_id)
    changes = {
        k: v
        for k, v in slot_data.model_dump(exclude_unset=True).items()
        if v is not None or k in NULLABLE_SLOT_FIELDS
    }
    if "gender" in changes:
        changes["gender"] = slot_data.gender.value

    start_time = changes.get("start_time", slot.start_time)
    end_time = changes.get("end_time", slot.end_time)
    if end_time <= start_time:
        raise ValidationError("end_time must be after start_time")

    max_capacity = changes.get("max_capacity", slot.max_capacity)
    if max_capacity < slot.current_bookings:
        raise ValidationError(
            f"max_capacity cannot be below current bookings ({slot.current_bookings})"
        )

    rc_capacity = changes.get("raising_court_capacity", slot.raising_court_capacity)
    if rc_capacity < slot.raising_court_bookings:
        raise ValidationError(
            f"raising_court_capacity cannot be below current raising court bookings "
            f"({slot.raising_court_bookings})"
        )
    if changes.get("is_raising_court") is False and slot.raising_court_bookings > 0:
        raise ValidationError("Raising court has active bookings and cannot be disabled")

    if await _find_duplicate(
        db,
        changes.get("date", slot.date),
        start_time,
        end_time,
        changes.get("gender", slot.gender),
        exclude_id=slot.id,
    ):
        raise ValidationError("A slot already exists for this date, time, and gender")

    for field, value in changes.items():
        setattr(slot, field, value)

    try:
        await db.commit()
    except IntegrityError:
        # A concurrent reservation raced the capacity check
        await db.rollback()
        raise ValidationError("Slot update conflicts with its current bookings")
    await db.refresh(slot)

    logger.info("slot_updated", slot_id=slot.id, fields=sorted(changes))
    return slot


async def deactivate_slot(db: AsyncSession, slot_id: int) -> Slot:
    """Stop new reservations. Existing bookings are untouched."""
    slot = await get_slot(db, slot_id)
    slot.is_active = False
    await db.commit()
    await db.refresh(slot)
    logger.info("slot_deactivated", slot_id=slot.id, current_bookings=slot.current_bookings)
    return slot


async def delete_slot(db: AsyncSession, slot_id: int) -> None:
    """Hard-delete a slot that holds no capacity and was never booked."""
    slot = await get_slot(db, slot_id)
    if slot.current_bookings > 0 or slot.raising_court_bookings > 0:
        raise SlotInUse()

    history = (
        await db.execute(select(func.count(Booking.id)).where(Booking.slot_id == slot_id))
    ).scalar()
    if history:
        raise SlotInUse("Slot has booking history. Please deactivate instead.")

    await db.delete(slot)
    try:
        await db.commit()
    except IntegrityError:
        # Historical bookings still reference the slot
        await db.rollback()
        raise SlotInUse("Slot has booking history. Please deactivate instead.")
    logger.info("slot_deleted", slot_id=slot_id)


async def list_slots(
    db: AsyncSession,
    slot_date: Optional[date] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    gender: Optional[str] = None,
    available_only: bool = False,
    include_inactive: bool = False,
    page: int = 1,
    page_size: int = 10,
) -> tuple[list[Slot], int]:
    """
    List slots ordered by date then start time.
    Uses ix_slots_date_start / ix_slots_date_gender for the date filters.
    """
    query = select(Slot)

    if not include_inactive:
        query = query.where(Slot.is_active.is_(True))
    if slot_date:
        query = query.where(Slot.date == slot_date)
    if start_date:
        query = query.where(Slot.date >= start_date)
    if end_date:
        query = query.where(Slot.date <= end_date)
    if gender:
        query = query.where(Slot.gender == gender)
    if available_only:
        query = query.where(Slot.current_bookings < Slot.max_capacity)

    count_query = select(func.count()).select_from(query.subquery())
    total = (await db.execute(count_query)).scalar()

    result = await db.execute(
        query
        .order_by(Slot.date.asc(), Slot.start_time.asc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all()), total


async def create_default_slots(db: AsyncSession, slot_date: date) -> list[Slot]:
    """
    Generate the standard day of slots for `slot_date`.
    Combinations that already exist are skipped, so this is safe to re-run.
    """
    created = []
    for start_time, end_time, gender in DEFAULT_SLOT_TEMPLATE:
        if await _find_duplicate(db, slot_date, start_time, end_time, gender):
            continue
        slot = Slot(
            date=slot_date,
            start_time=start_time,
            end_time=end_time,
            gender=gender,
            max_capacity=settings.DEFAULT_SLOT_CAPACITY,
            current_bookings=0,
            is_active=True,
            is_raising_court=True,
            raising_court_capacity=settings.DEFAULT_RAISING_COURT_CAPACITY,
            raising_court_bookings=0,
            description="Regular swimming pool slot",
        )
        db.add(slot)
        created.append(slot)

    await db.commit()
    for slot in created:
        await db.refresh(slot)

    logger.info("default_slots_created", date=str(slot_date), created=len(created))
    return created
