"""
Tests for the booking ledger: uniqueness, check-in tokens, compare-and-set
status changes and listings.
"""

from datetime import datetime, timedelta, timezone

import jwt
import pytest
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from slotbooking.core.config import get_settings
from slotbooking.core.exceptions import DuplicateBooking, InvalidTransition
from slotbooking.models.booking import Booking, BookingStatus, Resource, is_transition_allowed
from slotbooking.models.slot import Slot
from slotbooking.services import booking_ledger

settings = get_settings()
NOW = datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)


async def _book(db: AsyncSession, principal, slot: Slot, resource=Resource.PRIMARY, booking_date=None) -> Booking:
    booking = await booking_ledger.create_booking(
        db, principal, slot, booking_date or slot.date, resource, None, NOW
    )
    await db.commit()
    await db.refresh(booking)
    return booking


@pytest.mark.asyncio
async def test_create_booking_is_confirmed_with_token(db_session: AsyncSession, member, test_slot: Slot):
    booking = await _book(db_session, member, test_slot)

    assert booking.status == BookingStatus.CONFIRMED.value
    assert booking.resource == Resource.PRIMARY.value
    assert booking.checked_in is False
    assert booking.booking_type == "swimming"

    claims = jwt.decode(booking.qr_code, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    assert claims["bid"] == booking.id
    assert claims["uid"] == member.id
    assert claims["sid"] == test_slot.id


@pytest.mark.asyncio
async def test_tokens_are_unique_per_booking(db_session: AsyncSession, member, other_member, test_slot: Slot):
    first = await _book(db_session, member, test_slot)
    second = await _book(db_session, other_member, test_slot)
    assert first.qr_code != second.qr_code

    found = await booking_ledger.get_by_token(db_session, second.qr_code)
    assert found.id == second.id
    assert await booking_ledger.get_by_token(db_session, "not-a-token") is None


@pytest.mark.asyncio
async def test_second_confirmed_booking_rejected(db_session: AsyncSession, member, test_slot: Slot):
    slot_id, booking_date = test_slot.id, test_slot.date
    await _book(db_session, member, test_slot)

    with pytest.raises(DuplicateBooking):
        await booking_ledger.create_booking(
            db_session, member, test_slot, booking_date, Resource.PRIMARY, None, NOW
        )
    await db_session.rollback()

    _, total = await booking_ledger.find_all(db_session, slot_id=slot_id)
    assert total == 1
    assert await booking_ledger.has_confirmed_booking(db_session, member.id, slot_id, booking_date, Resource.PRIMARY)


@pytest.mark.asyncio
async def test_same_slot_other_resource_or_date_allowed(db_session: AsyncSession, member, test_slot: Slot):
    await _book(db_session, member, test_slot)
    court = await _book(db_session, member, test_slot, Resource.SECONDARY)
    next_week = await _book(db_session, member, test_slot, booking_date=test_slot.date + timedelta(days=7))

    assert court.is_raising_court
    assert court.booking_type == "raising-court"
    assert next_week.booking_date == test_slot.date + timedelta(days=7)


@pytest.mark.asyncio
async def test_cancelled_booking_does_not_block_rebooking(db_session: AsyncSession, member, test_slot: Slot):
    booking = await _book(db_session, member, test_slot)
    await booking_ledger.set_status(db_session, booking, BookingStatus.CANCELLED, cancelled_at=NOW)
    await db_session.commit()

    assert not await booking_ledger.has_confirmed_booking(
        db_session, member.id, test_slot.id, test_slot.date, Resource.PRIMARY
    )
    rebooked = await _book(db_session, member, test_slot)
    assert rebooked.id != booking.id
    assert await booking_ledger.has_confirmed_booking(
        db_session, member.id, test_slot.id, test_slot.date, Resource.PRIMARY
    )


@pytest.mark.asyncio
async def test_set_status_stamps_fields(db_session: AsyncSession, member, test_slot: Slot):
    booking = await _book(db_session, member, test_slot)

    await booking_ledger.set_status(
        db_session,
        booking,
        BookingStatus.CANCELLED,
        cancelled_at=NOW,
        cancellation_reason="Feeling unwell",
    )
    await db_session.commit()

    assert booking.status == BookingStatus.CANCELLED.value
    assert booking.cancellation_reason == "Feeling unwell"
    assert booking.cancelled_at is not None


@pytest.mark.asyncio
async def test_terminal_status_rejects_member_transitions(db_session: AsyncSession, member, test_slot: Slot):
    booking = await _book(db_session, member, test_slot)
    await booking_ledger.set_status(db_session, booking, BookingStatus.COMPLETED)
    await db_session.commit()

    for target in (BookingStatus.CONFIRMED, BookingStatus.CANCELLED, BookingStatus.NO_SHOW):
        with pytest.raises(InvalidTransition):
            await booking_ledger.set_status(db_session, booking, target)


@pytest.mark.asyncio
async def test_admin_may_leave_terminal_status(db_session: AsyncSession, member, test_slot: Slot):
    booking = await _book(db_session, member, test_slot)
    await booking_ledger.set_status(db_session, booking, BookingStatus.NO_SHOW)
    await booking_ledger.set_status(db_session, booking, BookingStatus.CONFIRMED, admin=True)
    await db_session.commit()
    assert booking.status == BookingStatus.CONFIRMED.value


@pytest.mark.asyncio
async def test_set_status_is_compare_and_set(db_session: AsyncSession, member, test_slot: Slot):
    """A transition based on a stale read matches no row."""
    booking = await _book(db_session, member, test_slot)

    # Another request cancels the booking behind this session's back
    await db_session.execute(
        update(Booking)
        .where(Booking.id == booking.id)
        .values(status=BookingStatus.CANCELLED.value)
        .execution_options(synchronize_session=False)
    )
    await db_session.commit()
    assert booking.status == BookingStatus.CONFIRMED.value  # stale

    with pytest.raises(InvalidTransition):
        await booking_ledger.set_status(db_session, booking, BookingStatus.CANCELLED)


def test_slot_bookings_never_lazy_load():
    assert Slot.bookings.property.lazy == "raise"


def test_transition_table():
    assert is_transition_allowed(BookingStatus.CONFIRMED, BookingStatus.CANCELLED)
    assert is_transition_allowed(BookingStatus.CONFIRMED, BookingStatus.NO_SHOW)
    assert not is_transition_allowed(BookingStatus.CANCELLED, BookingStatus.CONFIRMED)
    assert not is_transition_allowed(BookingStatus.NO_SHOW, BookingStatus.COMPLETED)
    assert is_transition_allowed(BookingStatus.CANCELLED, BookingStatus.CONFIRMED, admin=True)


@pytest.mark.asyncio
async def test_find_by_principal_paginates_newest_date_first(
    db_session: AsyncSession, member, other_member, test_slot: Slot
):
    for week in range(3):
        await _book(db_session, member, test_slot, booking_date=test_slot.date + timedelta(days=7 * week))
    await _book(db_session, other_member, test_slot)

    page1, total = await booking_ledger.find_by_principal(db_session, member.id, page=1, page_size=2)
    page2, _ = await booking_ledger.find_by_principal(db_session, member.id, page=2, page_size=2)

    assert total == 3
    assert [b.booking_date for b in page1] == [
        test_slot.date + timedelta(days=14),
        test_slot.date + timedelta(days=7),
    ]
    assert [b.booking_date for b in page2] == [test_slot.date]
    assert all(b.user_id == member.id for b in page1 + page2)


@pytest.mark.asyncio
async def test_find_all_filters(db_session: AsyncSession, member, other_member, test_slot: Slot):
    first = await _book(db_session, member, test_slot)
    await _book(db_session, other_member, test_slot)
    await booking_ledger.set_status(db_session, first, BookingStatus.CANCELLED)
    await db_session.commit()

    everything, total = await booking_ledger.find_all(db_session)
    assert total == 2 and len(everything) == 2

    cancelled, total = await booking_ledger.find_all(db_session, status=BookingStatus.CANCELLED)
    assert total == 1 and cancelled[0].id == first.id

    theirs, total = await booking_ledger.find_all(db_session, user_id=other_member.id, slot_id=test_slot.id)
    assert total == 1 and theirs[0].user_id == other_member.id

    _, total = await booking_ledger.find_all(db_session, booking_date=test_slot.date + timedelta(days=1))
    assert total == 0
