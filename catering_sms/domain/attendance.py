"""
Attendance domain models: the append-only ledger and its schemas.
"""

from datetime import date, datetime
from enum import Enum
from typing import Dict, List, Optional

from sqlalchemy import Column, String, DateTime, Date, Integer, Boolean, Index
from pydantic import BaseModel, Field, model_validator

from catering_sms.domain.roster import Base, new_id
from catering_sms.utils.time import utcnow


class AttendanceEntry(Base):
    """
    SQLAlchemy model for one attendance ledger row.

    Rows are only ever inserted. The latest row for a (target, day, meal)
    decides the target's own status.
    """

    __tablename__ = "attendance"
    __table_args__ = (
        Index("ix_attendance_target_day_meal", "target", "day", "meal_id"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    cause_id = Column(String(36), nullable=False, index=True)
    target = Column(String(36), nullable=False)
    day = Column(Date, nullable=False)
    meal_id = Column(String(36), nullable=False)
    value = Column(Boolean, nullable=False)
    originated_at = Column(DateTime, nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return (
            f"<AttendanceEntry(target={self.target}, day={self.day}, "
            f"meal_id={self.meal_id}, value={self.value})>"
        )


class AttendanceOverride(Base):
    """Cause record for attendance changed manually by staff."""

    __tablename__ = "attendance_overrides"

    id = Column(String(36), primary_key=True, default=new_id)
    note = Column(String(1000), nullable=False, default="")
    created_at = Column(DateTime, default=utcnow)


class EffectiveAttendance(str, Enum):
    """Resolved attendance of a target for one day and meal."""
    PRESENT = "present"
    CANCELLED = "cancelled"  # by the target's own SMS
    ABSENT = "absent"  # by a staff override on the target itself
    BLOCKED = "blocked"  # by a cancellation on an ancestor group


class CauseKind(str, Enum):
    """What produced a ledger row."""
    MESSAGE = "message"
    OVERRIDE = "override"
    INITIAL = "initial"


# Pydantic Schemas

class EffectiveMonthAttendance(BaseModel):
    """Resolved attendance of a target for every catering day of a month."""
    target: str
    is_student: bool
    attendance: Dict[date, Dict[str, EffectiveAttendance]] = {}


class MealCounts(BaseModel):
    """Resolved statuses of the students under a target for one day, per meal."""
    target: str
    day: date
    served: bool
    meals: Dict[str, Dict[EffectiveAttendance, int]] = {}


class AttendanceOverrideCreate(BaseModel):
    """Schema for a manual attendance override."""
    days: List[date] = Field(..., min_length=1)
    active_meals: List[str] = []
    inactive_meals: List[str] = []
    note: str = Field("", max_length=1000)

    @model_validator(mode="after")
    def _validate_meals(self) -> "AttendanceOverrideCreate":
        both = set(self.active_meals) & set(self.inactive_meals)
        if both:
            raise ValueError(f"meals cannot be both active and inactive: {', '.join(sorted(both))}")
        return self


class AttendanceHistoryItem(BaseModel):
    """One ledger event for a (target, day, meal)."""
    time: datetime
    value: bool
    kind: CauseKind
    cause_id: str
    note: Optional[str] = None
    message_id: Optional[str] = None


class AttendanceHistory(BaseModel):
    """Ledger history together with the currently resolved status."""
    status: EffectiveAttendance
    blocked_by: Optional[str] = None
    events: List[AttendanceHistoryItem] = []
