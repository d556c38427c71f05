"""
Pydantic schemas for booking-related request/response validation.
"""

from datetime import date, datetime, time
from typing import Optional
from pydantic import BaseModel, Field, field_serializer

from slotbooking.models.booking import BookingStatus, Resource


class BookingCreate(BaseModel):
    slot_id: int = Field(..., gt=0)
    booking_date: date
    is_raising_court: bool = False
    notes: Optional[str] = Field(None, max_length=200)

    @property
    def resource(self) -> Resource:
        return Resource.SECONDARY if self.is_raising_court else Resource.PRIMARY


class BookingCancel(BaseModel):
    reason: Optional[str] = Field(None, max_length=200)


class BookingStatusUpdate(BaseModel):
    status: BookingStatus
    notes: Optional[str] = Field(None, max_length=200)


class SlotSummary(BaseModel):
    id: int
    date: date
    start_time: time
    end_time: time
    gender: str
    is_raising_court: bool

    model_config = {"from_attributes": True}

    @field_serializer("start_time", "end_time")
    def _hhmm(self, value: time) -> str:
        return value.strftime("%H:%M")


class BookingResponse(BaseModel):
    id: int
    user_id: int
    slot_id: int
    booking_date: date
    status: str
    resource: str
    booking_type: str
    is_raising_court: bool
    notes: Optional[str]
    checked_in: bool
    checked_in_at: Optional[datetime]
    checked_out_at: Optional[datetime]
    cancelled_at: Optional[datetime]
    cancellation_reason: Optional[str]
    qr_code: Optional[str]
    duration_minutes: Optional[float]
    created_at: datetime
    slot: Optional[SlotSummary] = None

    model_config = {"from_attributes": True}


class BookingListResponse(BaseModel):
    bookings: list[BookingResponse]
    total: int
    page: int
    page_size: int
    pages: int


class BookingStatsResponse(BaseModel):
    total_bookings: int
    upcoming_bookings: int
    status_breakdown: dict[str, int]
