"""
Attendance endpoints consumed by the staff calendar.
"""

import logging
from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from catering_sms.domain.attendance import (
    AttendanceHistory,
    AttendanceOverrideCreate,
    EffectiveMonthAttendance,
    MealCounts,
)
from catering_sms.infrastructure.database import get_session
from catering_sms.usecases.effective_attendance import (
    get_attendance_history,
    get_effective_month,
    get_meal_counts,
    record_override,
)

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/attendance/{target_id}/effective", response_model=EffectiveMonthAttendance)
async def effective_attendance(
    target_id: str,
    year: int = Query(...),
    month: int = Query(...),
    session: AsyncSession = Depends(get_session),
):
    """Get the resolved attendance of a student or group for one month."""
    try:
        result = await get_effective_month(session, target_id, year, month)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=f"Invalid month: {e}")

    if result is None:
        raise HTTPException(status_code=404, detail="No catering found for given id")
    return result


@router.get("/attendance/{target_id}/history", response_model=AttendanceHistory)
async def attendance_history(
    target_id: str,
    day: date = Query(...),
    meal_id: str = Query(...),
    session: AsyncSession = Depends(get_session),
):
    """Get the ledger events and resolved status of one day and meal."""
    return await get_attendance_history(session, target_id, day, meal_id)


@router.get("/attendance/{target_id}/counts", response_model=MealCounts)
async def meal_counts(
    target_id: str,
    day: date = Query(...),
    session: AsyncSession = Depends(get_session),
):
    """Get per-meal status counts of the students under a group for one day."""
    result = await get_meal_counts(session, target_id, day)
    if result is None:
        raise HTTPException(status_code=404, detail="No catering found for given id")
    return result


@router.post("/attendance/{target_id}/override")
async def override_attendance(
    target_id: str,
    override: AttendanceOverrideCreate,
    session: AsyncSession = Depends(get_session),
):
    """Record a manual attendance change."""
    async with session.begin():
        cause_id = await record_override(session, target_id, override)
    return {"cause_id": cause_id}
