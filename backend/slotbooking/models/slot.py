"""
Slot model: a dated time window with a gender restriction and up to two
independently capacitated resources.

Key design decisions:
- `current_bookings` / `raising_court_bookings` are denormalized counters
  (avoids a COUNT over bookings on every availability check)
- Counters change only through the slot registry's conditional UPDATEs;
  the CHECK constraints below are the final safety net
- Unique (date, start_time, end_time, gender) rejects duplicate slots
"""

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    Index,
    Integer,
    String,
    Time,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from slotbooking.db.base import Base, TimestampMixin


class Slot(Base, TimestampMixin):
    __tablename__ = "slots"

    id = Column(Integer, primary_key=True, index=True)
    date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    gender = Column(String(10), nullable=False)  # male, female
    description = Column(String(200), nullable=True)

    max_capacity = Column(Integer, nullable=False, default=40)
    current_bookings = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)

    # Raising court: optional secondary resource with its own counter
    is_raising_court = Column(Boolean, nullable=False, default=False)
    raising_court_capacity = Column(Integer, nullable=False, default=10)
    raising_court_bookings = Column(Integer, nullable=False, default=0)

    bookings = relationship("Booking", back_populates="slot", lazy="raise")

    __table_args__ = (
        CheckConstraint("max_capacity > 0", name="check_slot_capacity_positive"),
        CheckConstraint("current_bookings >= 0", name="check_slot_bookings_non_negative"),
        CheckConstraint("current_bookings <= max_capacity", name="check_slot_bookings_lte_capacity"),
        CheckConstraint("raising_court_capacity >= 0", name="check_rc_capacity_non_negative"),
        CheckConstraint("raising_court_bookings >= 0", name="check_rc_bookings_non_negative"),
        CheckConstraint(
            "raising_court_bookings <= raising_court_capacity",
            name="check_rc_bookings_lte_capacity",
        ),
        CheckConstraint("end_time > start_time", name="check_slot_time_order"),
        CheckConstraint("gender IN ('male', 'female')", name="check_slot_gender"),
        UniqueConstraint("date", "start_time", "end_time", "gender", name="uq_slot_date_time_gender"),
        Index("ix_slots_date_start", "date", "start_time"),
        Index("ix_slots_date_gender", "date", "gender"),
    )

    @property
    def available_spots(self) -> int:
        return self.max_capacity - self.current_bookings

    @property
    def raising_court_available_spots(self) -> int:
        if not self.is_raising_court:
            return 0
        return self.raising_court_capacity - self.raising_court_bookings

    def __repr__(self) -> str:
        return (
            f"<Slot(id={self.id}, date={self.date}, {self.start_time}-{self.end_time}, "
            f"gender={self.gender}, booked={self.current_bookings}/{self.max_capacity})>"
        )
