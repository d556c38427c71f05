from slotbooking.models.slot import Slot
from slotbooking.models.booking import Booking, BookingStatus, Resource

__all__ = ["Slot", "Booking", "BookingStatus", "Resource"]
