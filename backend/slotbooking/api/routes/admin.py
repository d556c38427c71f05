"""
Admin endpoints: ledger-wide booking views, status overrides and the
default slot generator. Every route requires an admin principal.
"""

import math
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from slotbooking.core.security import require_admin
from slotbooking.db.session import get_db
from slotbooking.models.booking import BookingStatus
from slotbooking.schemas.booking import BookingListResponse, BookingResponse, BookingStatusUpdate
from slotbooking.schemas.principal import Principal
from slotbooking.schemas.slot import DefaultSlotsCreate, DefaultSlotsResponse
from slotbooking.services import booking_service, slot_service
from slotbooking.services.cache_service import invalidate_slot_cache

router = APIRouter(prefix="/admin", tags=["Admin"])


@router.get("/bookings", response_model=BookingListResponse)
async def list_all_bookings(
    status_filter: Optional[BookingStatus] = Query(None, alias="status"),
    booking_date: Optional[date] = Query(None, alias="date"),
    slot_id: Optional[int] = Query(None, ge=1),
    user_id: Optional[int] = Query(None, ge=1),
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    admin: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    bookings, total = await booking_service.list_bookings(
        db,
        admin,
        status=status_filter,
        booking_date=booking_date,
        slot_id=slot_id,
        user_id=user_id,
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


@router.get("/bookings/token/{qr_code}", response_model=BookingResponse)
async def get_booking_by_token_endpoint(
    qr_code: str,
    admin: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Resolve a scanned check-in code to its booking."""
    return await booking_service.get_booking_by_token(db, qr_code, admin)


@router.put("/bookings/{booking_id}/status", response_model=BookingResponse)
async def set_booking_status(
    booking_id: int,
    update: BookingStatusUpdate,
    admin: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """
    Override a booking's status. Cancelling frees the place; restoring a
    cancelled booking takes a place again and fails with 409 if none is left.
    """
    booking = await booking_service.admin_set_status(
        db, booking_id, admin, update.status, update.notes
    )
    await invalidate_slot_cache()
    return booking


@router.post(
    "/slots/create-default",
    response_model=DefaultSlotsResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_default_slots_endpoint(
    payload: DefaultSlotsCreate,
    admin: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    slots = await slot_service.create_default_slots(db, payload.date)
    await invalidate_slot_cache()
    return DefaultSlotsResponse(
        message=f"Created {len(slots)} slots for {payload.date.isoformat()}",
        slots=slots,
    )
