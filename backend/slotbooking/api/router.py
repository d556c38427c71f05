"""
Central API router that aggregates all route modules.
"""

from fastapi import APIRouter
from slotbooking.api.routes import slots, bookings, admin

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(slots.router)
api_router.include_router(bookings.router)
api_router.include_router(admin.router)
