"""
Roster domain models: guardians, students, groups and caterings.

These tables are owned by the staff-facing roster subsystem. The message
pipeline only reads them and works on immutable snapshots.
"""

import uuid
from datetime import date, time
from typing import List

from sqlalchemy import Column, String, Date, Time, Integer, ForeignKey
from sqlalchemy.orm import declarative_base
from pydantic import BaseModel, ConfigDict

Base = declarative_base()


def new_id() -> str:
    """Generate a new string UUID primary key."""
    return str(uuid.uuid4())


class Guardian(Base):
    """SQLAlchemy model for guardians (SMS senders)."""

    __tablename__ = "guardians"

    id = Column(String(36), primary_key=True, default=new_id)
    fullname = Column(String(255), nullable=False)
    phone = Column(String(32), nullable=True, index=True)

    def __repr__(self) -> str:
        return f"<Guardian(id={self.id}, phone={self.phone})>"


class Student(Base):
    """SQLAlchemy model for students."""

    __tablename__ = "students"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(255), nullable=False)
    surname = Column(String(255), nullable=False)

    def __repr__(self) -> str:
        return f"<Student(id={self.id}, name={self.name} {self.surname})>"


class StudentGuardian(Base):
    """Association between students and their guardians."""

    __tablename__ = "student_guardians"

    student_id = Column(String(36), ForeignKey("students.id"), primary_key=True)
    guardian_id = Column(String(36), ForeignKey("guardians.id"), primary_key=True)


class Group(Base):
    """SQLAlchemy model for groups (classes and catering groups)."""

    __tablename__ = "groups"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(255), nullable=False)


class GroupRelation(Base):
    """
    Closure table of the group hierarchy.

    Every entity has a ``(self, self, 0)`` row; ``level`` grows with the
    distance between ``child`` and the ancestor ``parent``.
    """

    __tablename__ = "group_relations"

    child = Column(String(36), primary_key=True)
    parent = Column(String(36), primary_key=True)
    level = Column(Integer, nullable=False)


class Meal(Base):
    """SQLAlchemy model for meals."""

    __tablename__ = "meals"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(255), nullable=False)


class Catering(Base):
    """
    Meal schedule attached to a root group.

    ``dow`` is a bitmask of active weekdays, bit 0 being Monday.
    """

    __tablename__ = "caterings"

    id = Column(String(36), primary_key=True, default=new_id)
    group_id = Column(String(36), ForeignKey("groups.id"), nullable=False)
    since = Column(Date, nullable=False)
    until = Column(Date, nullable=False)
    dow = Column(Integer, nullable=False, default=0b0011111)
    grace_period = Column(Time, nullable=False)

    def is_active_on(self, day: date) -> bool:
        """Whether meals are served on the given day."""
        return self.since <= day <= self.until and (self.dow >> day.weekday()) & 1 == 1


class CateringMeal(Base):
    """Meals served by a catering, in display order."""

    __tablename__ = "catering_meals"

    catering_id = Column(String(36), ForeignKey("caterings.id"), primary_key=True)
    meal_id = Column(String(36), ForeignKey("meals.id"), primary_key=True)
    meal_order = Column(Integer, nullable=False, default=0)


# Pydantic Snapshots

class MealSnapshot(BaseModel):
    """Immutable view of a meal."""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str


class StudentSnapshot(BaseModel):
    """Immutable view of a student as seen by the message pipeline."""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    surname: str
    grace_period: time
    starts: date
    ends: date
    meals: List[MealSnapshot] = []
