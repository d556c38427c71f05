"""
Booking model representing a member's reservation of one unit of a slot
resource on a given date.

Key design decisions:
- Partial unique index: one *confirmed* booking per
  (user, slot, booking_date, resource); cancelled rows don't block rebooking
- Status field plus an explicit transition table; rows are never deleted
- `qr_code` is the signed check-in token, unique across the ledger
"""

from enum import Enum

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    text,
)
from sqlalchemy.orm import relationship

from slotbooking.db.base import Base, TimestampMixin


class BookingStatus(str, Enum):
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    NO_SHOW = "no-show"


class Resource(str, Enum):
    PRIMARY = "primary"  # the pool itself
    SECONDARY = "secondary"  # the raising court

    @property
    def booking_type(self) -> str:
        return "raising-court" if self is Resource.SECONDARY else "swimming"


# Transitions a member-facing operation may perform. Check-in keeps the
# booking confirmed; everything else leaves confirmed for a terminal state.
ALLOWED_TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.CONFIRMED: frozenset({
        BookingStatus.CONFIRMED,
        BookingStatus.CANCELLED,
        BookingStatus.COMPLETED,
        BookingStatus.NO_SHOW,
    }),
    BookingStatus.CANCELLED: frozenset(),
    BookingStatus.COMPLETED: frozenset(),
    BookingStatus.NO_SHOW: frozenset(),
}

# A booking in one of these statuses occupies one unit of its resource.
HOLDING_STATUSES = frozenset({
    BookingStatus.CONFIRMED,
    BookingStatus.COMPLETED,
    BookingStatus.NO_SHOW,
})


def is_transition_allowed(current: BookingStatus, new: BookingStatus, admin: bool = False) -> bool:
    if admin:
        return True
    return new in ALLOWED_TRANSITIONS[current]


class Booking(Base, TimestampMixin):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    slot_id = Column(Integer, ForeignKey("slots.id"), nullable=False, index=True)
    booking_date = Column(Date, nullable=False)
    status = Column(String(20), nullable=False, default=BookingStatus.CONFIRMED.value)
    resource = Column(String(20), nullable=False, default=Resource.PRIMARY.value)
    notes = Column(String(200), nullable=True)

    # Check-in/out tracking
    checked_in = Column(Boolean, nullable=False, default=False)
    checked_in_at = Column(DateTime(timezone=True), nullable=True)
    checked_out_at = Column(DateTime(timezone=True), nullable=True)

    # Cancellation details
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    cancellation_reason = Column(String(200), nullable=True)

    qr_code = Column(String(512), nullable=True, unique=True)

    slot = relationship("Slot", back_populates="bookings", lazy="joined")

    __table_args__ = (
        CheckConstraint(
            "status IN ('confirmed', 'cancelled', 'completed', 'no-show')",
            name="check_booking_status",
        ),
        CheckConstraint("resource IN ('primary', 'secondary')", name="check_booking_resource"),
        Index(
            "uq_confirmed_booking",
            "user_id",
            "slot_id",
            "booking_date",
            "resource",
            unique=True,
            postgresql_where=text("status = 'confirmed'"),
            sqlite_where=text("status = 'confirmed'"),
        ),
        Index("ix_bookings_user_date", "user_id", "booking_date"),
        Index("ix_bookings_slot_date", "slot_id", "booking_date"),
        Index("ix_bookings_status", "status"),
    )

    @property
    def booking_type(self) -> str:
        return Resource(self.resource).booking_type

    @property
    def is_raising_court(self) -> bool:
        return self.resource == Resource.SECONDARY.value

    @property
    def duration_minutes(self):
        if self.checked_in_at and self.checked_out_at:
            return round((self.checked_out_at - self.checked_in_at).total_seconds() / 60, 1)
        return None

    def __repr__(self) -> str:
        return (
            f"<Booking(id={self.id}, user={self.user_id}, slot={self.slot_id}, "
            f"date={self.booking_date}, status={self.status})>"
        )
