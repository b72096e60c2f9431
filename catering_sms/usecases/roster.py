"""
Roster snapshot queries: which students a phone number may manage.
"""

import logging
from typing import List, Optional, Tuple

from sqlalchemy import select, or_
from sqlalchemy.ext.asyncio import AsyncSession

from catering_sms.domain.roster import (
    Catering,
    CateringMeal,
    Guardian,
    GroupRelation,
    Meal,
    MealSnapshot,
    Student,
    StudentGuardian,
    StudentSnapshot,
)

logger = logging.getLogger(__name__)


async def find_guardian_id(session: AsyncSession, phone: str, country_prefix: str) -> Optional[str]:
    """
    Find the guardian a phone number belongs to.

    Numbers are stored without the country prefix, while the gateway
    reports them with it; both forms are accepted.
    """
    candidates = [phone]
    if country_prefix and phone.startswith(country_prefix):
        candidates.append(phone[len(country_prefix):])

    result = await session.execute(
        select(Guardian.id)
        .where(or_(*(Guardian.phone == candidate for candidate in candidates)))
        .limit(1)
    )
    return result.scalar_one_or_none()


async def get_catering_for(session: AsyncSession, target_id: str) -> Optional[Catering]:
    """Get the catering of the root group a student or group belongs to."""
    result = await session.execute(
        select(Catering)
        .join(GroupRelation, GroupRelation.parent == Catering.group_id)
        .where(GroupRelation.child == target_id)
        .order_by(Catering.since)
        .limit(1)
    )
    return result.scalar_one_or_none()


async def get_catering_meals(session: AsyncSession, catering_id: str) -> List[MealSnapshot]:
    """Get the meals of a catering in display order."""
    result = await session.execute(
        select(Meal.id, Meal.name)
        .join(CateringMeal, CateringMeal.meal_id == Meal.id)
        .where(CateringMeal.catering_id == catering_id)
        .order_by(CateringMeal.meal_order, Meal.name)
    )
    return [MealSnapshot(id=row.id, name=row.name) for row in result.all()]


async def fetch_roster(
    session: AsyncSession,
    phone: str,
    country_prefix: str = "",
) -> Tuple[Optional[str], List[StudentSnapshot]]:
    """
    Load the snapshot of students a sender is the guardian of.

    Args:
        session: Database session
        phone: Sender phone number as reported by the gateway
        country_prefix: Prefix stripped before matching stored numbers

    Returns:
        (guardian id or None if the number is unknown, students with a catering)
    """
    guardian_id = await find_guardian_id(session, phone, country_prefix)
    if guardian_id is None:
        return None, []

    result = await session.execute(
        select(Student)
        .join(StudentGuardian, StudentGuardian.student_id == Student.id)
        .where(StudentGuardian.guardian_id == guardian_id)
        .order_by(Student.name, Student.surname)
    )

    students = []
    for student in result.scalars().all():
        catering = await get_catering_for(session, student.id)
        if catering is None:
            logger.info(f"Student {student.id} has no catering, leaving out of roster")
            continue
        students.append(
            StudentSnapshot(
                id=student.id,
                name=student.name,
                surname=student.surname,
                grace_period=catering.grace_period,
                starts=catering.since,
                ends=catering.until,
                meals=await get_catering_meals(session, catering.id),
            )
        )

    return guardian_id, students
