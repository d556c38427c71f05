"""
Pydantic schemas for slot-related request/response validation.
Counters are read-only here: no request schema accepts them.
"""

import datetime as dt
from typing import Optional
from pydantic import BaseModel, Field, field_serializer, model_validator

from slotbooking.schemas.principal import Gender


class SlotCreate(BaseModel):
    date: dt.date
    start_time: dt.time
    end_time: dt.time
    gender: Gender
    max_capacity: int = Field(default=40, ge=1, le=100)
    description: Optional[str] = Field(None, max_length=200)
    is_raising_court: bool = False
    raising_court_capacity: int = Field(default=10, ge=1, le=50)

    @model_validator(mode="after")
    def check_time_order(self):
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self


class SlotUpdate(BaseModel):
    date: Optional[dt.date] = None
    start_time: Optional[dt.time] = None
    end_time: Optional[dt.time] = None
    gender: Optional[Gender] = None
    max_capacity: Optional[int] = Field(None, ge=1, le=100)
    description: Optional[str] = Field(None, max_length=200)
    is_active: Optional[bool] = None
    is_raising_court: Optional[bool] = None
    raising_court_capacity: Optional[int] = Field(None, ge=1, le=50)

    @model_validator(mode="after")
    def check_time_order(self):
        if self.start_time and self.end_time and self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self


class SlotResponse(BaseModel):
    id: int
    date: dt.date
    start_time: dt.time
    end_time: dt.time
    gender: str
    description: Optional[str]
    max_capacity: int
    current_bookings: int
    available_spots: int
    is_active: bool
    is_raising_court: bool
    raising_court_capacity: int
    raising_court_bookings: int
    raising_court_available_spots: int
    created_at: dt.datetime

    model_config = {"from_attributes": True}

    @field_serializer("start_time", "end_time")
    def _hhmm(self, value: dt.time) -> str:
        return value.strftime("%H:%M")


class SlotListResponse(BaseModel):
    slots: list[SlotResponse]
    total: int
    page: int
    page_size: int
    cached: bool = False


class DefaultSlotsCreate(BaseModel):
    date: dt.date


class DefaultSlotsResponse(BaseModel):
    message: str
    slots: list[SlotResponse]
