"""
Pool Slot Booking API - Main Application Entry Point

A swimming pool slot booking system demonstrating:
- Concurrency-safe capacity reservation with atomic conditional updates
- Compensation when a reserved place cannot be recorded
- Redis caching of slot listings with prefix invalidation
- Structured logging with request correlation and Prometheus metrics
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from slotbooking.api.middleware import RequestLoggingMiddleware
from slotbooking.api.router import api_router
from slotbooking.core.config import get_settings
from slotbooking.core.exceptions import BookingError, CapacityLeak
from slotbooking.core.logging import get_logger, setup_logging
from slotbooking.core.metrics import metrics_endpoint
from slotbooking.services.cache_service import close_redis, get_cache_stats, get_redis
from slotbooking.services.notification_service import drain_notifications

settings = get_settings()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle: startup and shutdown hooks."""
    setup_logging()

    logger.info(
        "application_starting",
        app=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
        timezone=settings.FACILITY_TIMEZONE,
    )

    redis_client = await get_redis()
    if redis_client:
        logger.info("redis_ready")
    else:
        logger.warning("redis_unavailable", message="Running without cache")

    yield

    await drain_notifications()
    await close_redis()
    logger.info("application_shutdown")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Swimming pool slot booking API with concurrency-safe capacity",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestLoggingMiddleware)

app.include_router(api_router)


@app.exception_handler(BookingError)
async def booking_error_handler(request: Request, exc: BookingError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code},
    )


@app.exception_handler(CapacityLeak)
async def capacity_leak_handler(request: Request, exc: CapacityLeak):
    logger.critical(
        "capacity_leak_unhandled",
        slot_id=exc.slot_id,
        resource=exc.resource,
        path=request.url.path,
    )
    return JSONResponse(
        status_code=500,
        content={"detail": "Booking could not be completed. Please try again.", "code": "internal_error"},
    )


@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint for Docker and load balancers."""
    cache_stats = await get_cache_stats()
    return {
        "status": "healthy",
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "cache": cache_stats,
    }


@app.get("/metrics", tags=["Health"], include_in_schema=False)
async def metrics():
    return metrics_endpoint()


@app.get("/", tags=["Root"])
async def root():
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.APP_VERSION,
        "docs": "/docs",
    }
