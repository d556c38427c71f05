"""
Booking endpoints with concurrency-safe slot reservation.
"""

import math
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from slotbooking.core.logging import get_logger
from slotbooking.core.security import get_current_principal
from slotbooking.db.session import get_db
from slotbooking.models.booking import BookingStatus
from slotbooking.schemas.booking import (
    BookingCancel,
    BookingCreate,
    BookingListResponse,
    BookingResponse,
    BookingStatsResponse,
)
from slotbooking.schemas.principal import Principal
from slotbooking.services import booking_service
from slotbooking.services.cache_service import invalidate_slot_cache
from slotbooking.services.interfaces.notifier import BookingNotifier
from slotbooking.services.notification_service import get_notifier

logger = get_logger(__name__)
router = APIRouter(prefix="/bookings", tags=["Bookings"])


@router.post("/", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking_endpoint(
    booking_data: BookingCreate,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
    notifier: BookingNotifier = Depends(get_notifier),
):
    """
    Book a place in a slot (or its raising court) for a date.

    The slot counter is reserved with an atomic conditional update, so two
    members racing for the last place get exactly one success and one 409.
    """
    booking = await booking_service.create_booking(
        db,
        principal,
        booking_data.slot_id,
        booking_data.booking_date,
        booking_data.resource,
        booking_data.notes,
        notifier=notifier,
    )
    # Counters changed: cached slot listings are stale
    await invalidate_slot_cache()
    return booking


@router.get("/", response_model=BookingListResponse)
async def list_my_bookings(
    status_filter: Optional[BookingStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """The caller's bookings, newest booking date first."""
    bookings, total = await booking_service.list_bookings(
        db,
        principal,
        status=status_filter,
        user_id=principal.id,
        page=page,
        page_size=page_size,
    )
    return BookingListResponse(
        bookings=bookings,
        total=total,
        page=page,
        page_size=page_size,
        pages=math.ceil(total / page_size),
    )


@router.get("/stats/overview", response_model=BookingStatsResponse)
async def booking_stats_endpoint(
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """Totals for the caller: all bookings, upcoming confirmed, per status."""
    return await booking_service.booking_stats(db, principal)


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking_endpoint(
    booking_id: int,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    return await booking_service.get_booking(db, booking_id, principal)


@router.put("/{booking_id}/cancel", response_model=BookingResponse)
async def cancel_booking_endpoint(
    booking_id: int,
    cancel_data: Optional[BookingCancel] = None,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """Cancel a booking (up to 2 hours before the slot) and free its place."""
    reason = cancel_data.reason if cancel_data else None
    booking = await booking_service.cancel_booking(db, booking_id, principal, reason)
    await invalidate_slot_cache()
    return booking


@router.put("/{booking_id}/checkin", response_model=BookingResponse)
async def check_in_endpoint(
    booking_id: int,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """Check in within 30 minutes either side of the slot start."""
    return await booking_service.check_in(db, booking_id, principal)


@router.put("/{booking_id}/checkout", response_model=BookingResponse)
async def check_out_endpoint(
    booking_id: int,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    return await booking_service.check_out(db, booking_id, principal)
