from slotbooking.schemas.principal import Principal, Gender, Role
from slotbooking.schemas.slot import (
    SlotCreate, SlotUpdate, SlotResponse, SlotListResponse,
    DefaultSlotsCreate, DefaultSlotsResponse,
)
from slotbooking.schemas.booking import (
    BookingCreate, BookingCancel, BookingStatusUpdate,
    BookingResponse, BookingListResponse,
)

__all__ = [
    "Principal", "Gender", "Role",
    "SlotCreate", "SlotUpdate", "SlotResponse", "SlotListResponse",
    "DefaultSlotsCreate", "DefaultSlotsResponse",
    "BookingCreate", "BookingCancel", "BookingStatusUpdate",
    "BookingResponse", "BookingListResponse",
]
