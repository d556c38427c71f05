"""
Pytest fixtures for test database, client, and principals.

Each test gets its own SQLite database file so committed state (the booking
core commits at every unit-of-work boundary) never leaks between tests.
Set TEST_DATABASE_URL to run against PostgreSQL instead.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./slotbooking-import.db")
os.environ.setdefault("REDIS_ENABLED", "false")
os.environ.setdefault("FACILITY_TIMEZONE", "UTC")
os.environ.setdefault("NOTIFIER", "log")

from datetime import date, datetime, time, timedelta, timezone  # noqa: E402
from typing import AsyncGenerator  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402

from slotbooking.core.security import create_access_token  # noqa: E402
from slotbooking.db.base import Base  # noqa: E402
from slotbooking.db.session import get_db  # noqa: E402
from slotbooking.main import app  # noqa: E402
from slotbooking.models.slot import Slot  # noqa: E402
from slotbooking.schemas.principal import Gender, Principal, Role  # noqa: E402
from slotbooking.services.interfaces.notifier import BookingNotifier  # noqa: E402
from slotbooking.services.notification_service import drain_notifications, get_notifier  # noqa: E402

SLOT_START = time(19, 0)
SLOT_END = time(20, 0)


class RecordingNotifier(BookingNotifier):
    """Captures confirmations instead of sending them."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent = []

    async def notify_booking_created(self, principal: Principal, summary: dict) -> bool:
        if self.fail:
            raise ConnectionError("SMTP relay unreachable")
        self.sent.append((principal.id, summary))
        return True


@pytest.fixture
def database_url(tmp_path) -> str:
    return os.environ.get("TEST_DATABASE_URL") or f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"


@pytest_asyncio.fixture
async def engine(database_url: str):
    connect_args = {"timeout": 30} if database_url.startswith("sqlite") else {}
    test_engine = create_async_engine(database_url, echo=False, connect_args=connect_args)
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine

    await drain_notifications()
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker:
    """Independent sessions for simulating concurrent requests."""
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest_asyncio.fixture
async def client(session_factory, notifier) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client with one fresh session per request, like get_db."""

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notifier] = lambda: notifier

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# --- principals -------------------------------------------------------------

@pytest.fixture
def member() -> Principal:
    return Principal(id=101, gender=Gender.MALE, email_verified=True, email="arjun@example.com")


@pytest.fixture
def other_member() -> Principal:
    return Principal(id=102, gender=Gender.MALE, email_verified=True, email="dev@example.com")


@pytest.fixture
def female_member() -> Principal:
    return Principal(id=103, gender=Gender.FEMALE, email_verified=True)


@pytest.fixture
def unverified_member() -> Principal:
    return Principal(id=104, gender=Gender.MALE, email_verified=False)


@pytest.fixture
def admin() -> Principal:
    return Principal(id=1, role=Role.ADMIN, email_verified=True)


def bearer(principal: Principal) -> dict:
    return {"Authorization": f"Bearer {create_access_token(principal)}"}


@pytest.fixture
def member_headers(member) -> dict:
    return bearer(member)


@pytest.fixture
def other_member_headers(other_member) -> dict:
    return bearer(other_member)


@pytest.fixture
def female_headers(female_member) -> dict:
    return bearer(female_member)


@pytest.fixture
def admin_headers(admin) -> dict:
    return bearer(admin)


# --- slots ------------------------------------------------------------------

@pytest.fixture
def slot_date() -> date:
    return date.today() + timedelta(days=7)


@pytest.fixture
def slot_start(slot_date) -> datetime:
    """Start instant of the test slots (FACILITY_TIMEZONE is UTC here)."""
    return datetime.combine(slot_date, SLOT_START, tzinfo=timezone.utc)


async def _make_slot(session: AsyncSession, slot_date: date, **overrides) -> Slot:
    values = dict(
        date=slot_date,
        start_time=SLOT_START,
        end_time=SLOT_END,
        gender="male",
        max_capacity=40,
        current_bookings=0,
        is_active=True,
        is_raising_court=True,
        raising_court_capacity=10,
        raising_court_bookings=0,
        description="Evening lane swim",
    )
    values.update(overrides)
    slot = Slot(**values)
    session.add(slot)
    await session.commit()
    await session.refresh(slot)
    return slot


@pytest_asyncio.fixture
async def test_slot(db_session: AsyncSession, slot_date: date) -> Slot:
    """Evening male slot: 40 lane places and a 10-place raising court."""
    return await _make_slot(db_session, slot_date)


@pytest_asyncio.fixture
async def single_place_slot(db_session: AsyncSession, slot_date: date) -> Slot:
    return await _make_slot(
        db_session, slot_date + timedelta(days=1), max_capacity=1, is_raising_court=False,
    )


@pytest_asyncio.fixture
async def full_slot(db_session: AsyncSession, slot_date: date) -> Slot:
    return await _make_slot(db_session, slot_date + timedelta(days=2), current_bookings=40)


@pytest_asyncio.fixture
async def female_slot(db_session: AsyncSession, slot_date: date) -> Slot:
    return await _make_slot(db_session, slot_date, gender="female")


def start_of(slot: Slot) -> datetime:
    return datetime.combine(slot.date, slot.start_time, tzinfo=timezone.utc)


@pytest.fixture
def slot_start_of():
    """Start instant of a slot booked on its own date."""
    return start_of
