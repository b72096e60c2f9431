"""
Writes resolved cancellations to the append-only attendance ledger.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from catering_sms.domain.attendance import AttendanceEntry
from catering_sms.domain.processing import AttendanceCancellation
from catering_sms.usecases.roster import get_catering_for, get_catering_meals
from catering_sms.utils.time import iter_days, utcnow

logger = logging.getLogger(__name__)


async def write_cancellations(
    session: AsyncSession,
    cancellation: AttendanceCancellation,
    cause_id: str,
    originated_at: Optional[datetime] = None,
) -> int:
    """
    Insert one ``value=false`` row per cancelled (student, day, meal).

    Only days the student's catering is active on, and meals it serves,
    produce rows. Nothing is committed here.

    Args:
        session: Database session of the running transaction
        cancellation: Resolved per-student cancellations
        cause_id: Pipeline run the rows belong to
        originated_at: Timestamp of the rows (defaults to now, UTC)

    Returns:
        Number of rows inserted
    """
    originated_at = originated_at or utcnow()
    inserted = 0

    for student in cancellation.students:
        catering = await get_catering_for(session, student.id)
        if catering is None:
            logger.warning(f"No catering for student {student.id}, nothing to cancel")
            continue

        served = {meal.id for meal in await get_catering_meals(session, catering.id)}
        meals = [meal_id for meal_id in student.meals if meal_id in served]
        since = max(student.since, catering.since)
        until = min(student.until, catering.until)

        for day in iter_days(since, until):
            if not catering.is_active_on(day):
                continue
            for meal_id in meals:
                session.add(
                    AttendanceEntry(
                        cause_id=cause_id,
                        target=student.id,
                        day=day,
                        meal_id=meal_id,
                        value=False,
                        originated_at=originated_at,
                    )
                )
                inserted += 1

    await session.flush()
    logger.info(f"Wrote {inserted} attendance cancellations for cause {cause_id}")
    return inserted
