"""
Slot registry: the only code allowed to move a slot's capacity counters.

CONCURRENCY STRATEGY: Atomic conditional UPDATE
===============================================

Problem:
  Two members try to take the last place in a slot simultaneously.
  Both read current_bookings=39 of 40, both write 40. One place, two bookings.

Solution:
  The read-check-increment happens inside a single statement:

    UPDATE slots SET current_bookings = current_bookings + 1
    WHERE id = :slot_id AND is_active AND current_bookings < max_capacity

  The database serializes writers on the row, so of two concurrent requests
  for the last place exactly one sees rowcount == 1. The loser re-reads the
  slot only to explain *why* it lost (missing, inactive, full, no raising
  court). If the re-read shows free capacity again (a release slipped in
  between), the update is retried a bounded number of times.

  Release is the mirror image, floored at zero by `counter > 0` in the WHERE
  clause. The floor is a backstop only: callers pair every release with a
  prior reservation through the booking state machine.

This module never commits. The booking service decides where each unit of
work ends.
"""

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from slotbooking.core.exceptions import (
    ReservationConflict,
    ResourceNotOffered,
    SlotFull,
    SlotNotFound,
    SlotUnavailable,
)
from slotbooking.core.logging import get_logger
from slotbooking.core.metrics import record_capacity_operation, reservation_retries
from slotbooking.models.booking import Resource
from slotbooking.models.slot import Slot

logger = get_logger(__name__)

MAX_RETRY_ATTEMPTS = 3

# resource -> (counter column, capacity column)
_COUNTERS = {
    Resource.PRIMARY: ("current_bookings", "max_capacity"),
    Resource.SECONDARY: ("raising_court_bookings", "raising_court_capacity"),
}


def _columns(resource: Resource):
    counter_name, capacity_name = _COUNTERS[resource]
    return counter_name, getattr(Slot, counter_name), getattr(Slot, capacity_name)


async def _load_fresh(db: AsyncSession, slot_id: int):
    result = await db.execute(
        select(Slot)
        .where(Slot.id == slot_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def reserve_capacity(db: AsyncSession, slot_id: int, resource: Resource) -> None:
    """
    Take one unit of `resource` on the slot.

    Raises SlotNotFound, SlotUnavailable, ResourceNotOffered, SlotFull, or
    ReservationConflict after MAX_RETRY_ATTEMPTS lost races.
    """
    resource = Resource(resource)
    counter_name, counter, capacity = _columns(resource)

    for attempt in range(1, MAX_RETRY_ATTEMPTS + 1):
        conditions = [Slot.id == slot_id, Slot.is_active.is_(True), counter < capacity]
        if resource is Resource.SECONDARY:
            conditions.append(Slot.is_raising_court.is_(True))

        result = await db.execute(
            update(Slot)
            .where(*conditions)
            .values({counter_name: counter + 1})
            .execution_options(synchronize_session=False)
        )

        if result.rowcount == 1:
            record_capacity_operation("reserve", resource.value, "ok")
            logger.info(
                "capacity_reserved",
                slot_id=slot_id,
                resource=resource.value,
                attempt=attempt,
            )
            return

        # Lost: find out why
        slot = await _load_fresh(db, slot_id)
        if slot is None:
            record_capacity_operation("reserve", resource.value, "not_found")
            raise SlotNotFound(f"Slot {slot_id} not found")
        if not slot.is_active:
            record_capacity_operation("reserve", resource.value, "unavailable")
            raise SlotUnavailable()
        if resource is Resource.SECONDARY and not slot.is_raising_court:
            record_capacity_operation("reserve", resource.value, "not_offered")
            raise ResourceNotOffered()
        if getattr(slot, counter_name) >= getattr(slot, _COUNTERS[resource][1]):
            record_capacity_operation("reserve", resource.value, "full")
            logger.warning(
                "reservation_failed_full",
                slot_id=slot_id,
                resource=resource.value,
                booked=getattr(slot, counter_name),
            )
            raise SlotFull()

        reservation_retries.inc()
        logger.info(
            "reservation_retry",
            slot_id=slot_id,
            resource=resource.value,
            attempt=attempt,
            reason="concurrent_update",
        )

    record_capacity_operation("reserve", resource.value, "conflict")
    raise ReservationConflict()


async def release_capacity(db: AsyncSession, slot_id: int, resource: Resource) -> None:
    """Give back one unit of `resource`. Never drives a counter below zero."""
    resource = Resource(resource)
    counter_name, counter, _ = _columns(resource)

    result = await db.execute(
        update(Slot)
        .where(Slot.id == slot_id, counter > 0)
        .values({counter_name: counter - 1})
        .execution_options(synchronize_session=False)
    )

    if result.rowcount == 0:
        # Either the slot vanished or a release had no matching reservation
        record_capacity_operation("release", resource.value, "floored")
        logger.warning("capacity_release_floored", slot_id=slot_id, resource=resource.value)
        return

    record_capacity_operation("release", resource.value, "ok")
    logger.info("capacity_released", slot_id=slot_id, resource=resource.value)


async def is_available(db: AsyncSession, slot_id: int, resource: Resource = Resource.PRIMARY) -> bool:
    """Read-only availability check for listings; not a reservation."""
    resource = Resource(resource)
    slot = await _load_fresh(db, slot_id)
    if slot is None or not slot.is_active:
        return False
    if resource is Resource.SECONDARY:
        return slot.is_raising_court and slot.raising_court_bookings < slot.raising_court_capacity
    return slot.current_bookings < slot.max_capacity
