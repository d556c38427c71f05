"""
Slot endpoints. Listing is public and cached in Redis; everything that
changes a slot requires an admin principal.
"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from slotbooking.core.logging import get_logger
from slotbooking.core.security import require_admin
from slotbooking.db.session import get_db
from slotbooking.schemas.principal import Gender, Principal
from slotbooking.schemas.slot import SlotCreate, SlotListResponse, SlotResponse, SlotUpdate
from slotbooking.services import slot_service
from slotbooking.services.cache_service import get_cached_slots, invalidate_slot_cache, set_cached_slots

logger = get_logger(__name__)
router = APIRouter(prefix="/slots", tags=["Slots"])


@router.get("/", response_model=SlotListResponse)
async def list_slots_endpoint(
    slot_date: Optional[date] = Query(None, alias="date"),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    gender: Optional[Gender] = Query(None),
    available_only: bool = Query(False),
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    """
    List active slots, ordered by date and start time.
    Results are cached in Redis and invalidated whenever a counter moves.
    """
    filters = {
        "date": slot_date,
        "start": start_date,
        "end": end_date,
        "gender": gender.value if gender else None,
        "available": available_only,
        "page": page,
        "size": page_size,
    }
    cached = await get_cached_slots(filters)
    if cached:
        logger.info("slots_list_cache_hit", page=page)
        cached["cached"] = True
        return SlotListResponse(**cached)

    slots, total = await slot_service.list_slots(
        db,
        slot_date=slot_date,
        start_date=start_date,
        end_date=end_date,
        gender=filters["gender"],
        available_only=available_only,
        page=page,
        page_size=page_size,
    )
    response_data = {
        "slots": [SlotResponse.model_validate(s).model_dump(mode="json") for s in slots],
        "total": total,
        "page": page,
        "page_size": page_size,
        "cached": False,
    }
    await set_cached_slots(filters, response_data)
    return SlotListResponse(**response_data)


@router.get("/{slot_id}", response_model=SlotResponse)
async def get_slot_endpoint(slot_id: int, db: AsyncSession = Depends(get_db)):
    """Get a single slot with live counters (never cached)."""
    return await slot_service.get_slot(db, slot_id)


@router.post("/", response_model=SlotResponse, status_code=status.HTTP_201_CREATED)
async def create_slot_endpoint(
    slot_data: SlotCreate,
    admin: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    slot = await slot_service.create_slot(db, slot_data)
    await invalidate_slot_cache()
    return slot


@router.put("/{slot_id}", response_model=SlotResponse)
async def update_slot_endpoint(
    slot_id: int,
    slot_data: SlotUpdate,
    admin: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Edit a slot's schedule, gender or capacities. Counters are not editable."""
    slot = await slot_service.update_slot(db, slot_id, slot_data)
    await invalidate_slot_cache()
    return slot


@router.post("/{slot_id}/deactivate", response_model=SlotResponse)
async def deactivate_slot_endpoint(
    slot_id: int,
    admin: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    slot = await slot_service.deactivate_slot(db, slot_id)
    await invalidate_slot_cache()
    return slot


@router.delete("/{slot_id}")
async def delete_slot_endpoint(
    slot_id: int,
    admin: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Delete an unused slot. Slots with bookings must be deactivated instead."""
    await slot_service.delete_slot(db, slot_id)
    await invalidate_slot_cache()
    return {"message": "Slot deleted successfully", "slot_id": slot_id}
