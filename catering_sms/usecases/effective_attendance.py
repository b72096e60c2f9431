"""
Effective attendance: resolving ledger overrides across the group hierarchy.

A target's status for a (day, meal) is decided by the ledger rows of the
target itself and of all its ancestors. The root-most ancestor carrying a
blocking (``false``) row wins and blocks the target; without one, the
target's own latest row decides. No row at all means present.
"""

import logging
from collections import defaultdict
from datetime import date, timedelta
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from catering_sms.domain.attendance import (
    AttendanceEntry,
    AttendanceHistory,
    AttendanceHistoryItem,
    AttendanceOverride,
    AttendanceOverrideCreate,
    CauseKind,
    EffectiveAttendance,
    EffectiveMonthAttendance,
    MealCounts,
)
from catering_sms.domain.message import ProcessingTrigger
from catering_sms.domain.processing import CancellationResult
from catering_sms.domain.roster import GroupRelation, Meal, Student
from catering_sms.usecases.roster import get_catering_for, get_catering_meals
from catering_sms.utils.time import iter_days, month_bounds, utcnow

logger = logging.getLogger(__name__)

LedgerKey = Tuple[str, date, str]


def resolve_status(
    relations: Sequence[Tuple[str, int]],
    latest: Mapping[LedgerKey, AttendanceEntry],
    day: date,
    meal_id: str,
    message_causes: Set[str],
) -> Tuple[EffectiveAttendance, Optional[str]]:
    """
    Resolve the status of one (target, day, meal).

    Args:
        relations: (ancestor, level) pairs of the target, including itself
            at level 0
        latest: Latest ledger row per (target, day, meal)
        day: Day to resolve
        meal_id: Meal to resolve
        message_causes: Cause ids that belong to SMS pipeline runs

    Returns:
        (status, id of the blocking ancestor when blocked)
    """
    for parent, level in sorted(relations, key=lambda relation: relation[1], reverse=True):
        row = latest.get((parent, day, meal_id))
        if row is None:
            continue
        if level > 0:
            if not row.value:
                return EffectiveAttendance.BLOCKED, parent
            continue
        if row.value:
            return EffectiveAttendance.PRESENT, None
        if row.cause_id in message_causes:
            return EffectiveAttendance.CANCELLED, None
        return EffectiveAttendance.ABSENT, None

    return EffectiveAttendance.PRESENT, None


async def get_relations(session: AsyncSession, targets: Iterable[str]) -> Dict[str, List[Tuple[str, int]]]:
    """Get the (ancestor, level) pairs of every target, itself included."""
    targets = list(targets)
    relations: Dict[str, List[Tuple[str, int]]] = {target: [] for target in targets}
    result = await session.execute(
        select(GroupRelation.child, GroupRelation.parent, GroupRelation.level)
        .where(GroupRelation.child.in_(targets))
    )
    for child, parent, level in result.all():
        relations[child].append((parent, level))

    # An entity missing its self row still resolves against its own ledger.
    for target, pairs in relations.items():
        if not any(level == 0 for _, level in pairs):
            pairs.append((target, 0))
    return relations


async def latest_rows(
    session: AsyncSession,
    targets: Iterable[str],
    since: date,
    until: date,
    exclude_cause: Optional[str] = None,
) -> Dict[LedgerKey, AttendanceEntry]:
    """
    Get the authoritative ledger row per (target, day, meal) in a day range.

    Args:
        exclude_cause: Ignore rows of this cause, giving the state before it
    """
    query = (
        select(AttendanceEntry)
        .where(
            AttendanceEntry.target.in_(list(targets)),
            AttendanceEntry.day >= since,
            AttendanceEntry.day <= until,
        )
        .order_by(AttendanceEntry.originated_at, AttendanceEntry.id)
    )
    if exclude_cause is not None:
        query = query.where(AttendanceEntry.cause_id != exclude_cause)

    result = await session.execute(query)
    latest: Dict[LedgerKey, AttendanceEntry] = {}
    for row in result.scalars().all():
        latest[(row.target, row.day, row.meal_id)] = row
    return latest


async def get_message_causes(session: AsyncSession, cause_ids: Iterable[str]) -> Set[str]:
    """Filter cause ids down to those produced by SMS pipeline runs."""
    cause_ids = set(cause_ids)
    if not cause_ids:
        return set()
    result = await session.execute(
        select(ProcessingTrigger.cause_id).where(ProcessingTrigger.cause_id.in_(list(cause_ids)))
    )
    return set(result.scalars().all())


async def count_effective_cancellations(session: AsyncSession, cause_id: str) -> List[CancellationResult]:
    """
    Count the cancellations of one run that changed a present attendance.

    A row counts when its (student, day, meal) resolved to present in the
    ledger without the run's own rows.

    Returns:
        Per-student meal counts, students and meals with no effect omitted
    """
    result = await session.execute(
        select(AttendanceEntry)
        .where(AttendanceEntry.cause_id == cause_id)
        .order_by(AttendanceEntry.id)
    )
    written = result.scalars().all()
    if not written:
        return []

    relations = await get_relations(session, {row.target for row in written})
    ancestors = {parent for pairs in relations.values() for parent, _ in pairs}
    prior = await latest_rows(
        session,
        ancestors,
        min(row.day for row in written),
        max(row.day for row in written),
        exclude_cause=cause_id,
    )
    message_causes = await get_message_causes(session, {row.cause_id for row in prior.values()})

    counts: Dict[str, Dict[str, int]] = defaultdict(lambda: defaultdict(int))
    seen = set()
    for row in written:
        key = (row.target, row.day, row.meal_id)
        if key in seen:
            continue
        seen.add(key)
        status, _ = resolve_status(relations[row.target], prior, row.day, row.meal_id, message_causes)
        if status == EffectiveAttendance.PRESENT:
            counts[row.target][row.meal_id] += 1

    if not counts:
        return []

    student_names = dict(
        (await session.execute(
            select(Student.id, Student.name).where(Student.id.in_(list(counts)))
        )).all()
    )
    meal_names = dict(
        (await session.execute(
            select(Meal.id, Meal.name).where(Meal.id.in_(list({m for c in counts.values() for m in c})))
        )).all()
    )

    return [
        CancellationResult(
            name=student_names.get(target, target),
            meals={meal_names.get(meal_id, meal_id): count for meal_id, count in meals.items()},
        )
        for target, meals in counts.items()
    ]


async def get_effective_month(
    session: AsyncSession,
    target_id: str,
    year: int,
    month: int,
) -> Optional[EffectiveMonthAttendance]:
    """
    Resolve the attendance of a student or group for every catering day of a month.

    Raises:
        ValueError: If year/month is not a valid month

    Returns:
        The resolved month, or None if the target has no catering
    """
    start, end = month_bounds(year, month)
    catering = await get_catering_for(session, target_id)
    if catering is None:
        return None

    is_student = (
        await session.execute(select(Student.id).where(Student.id == target_id))
    ).scalar_one_or_none() is not None

    meals = await get_catering_meals(session, catering.id)
    relations = (await get_relations(session, [target_id]))[target_id]
    last_day = end - timedelta(days=1)
    latest = await latest_rows(session, [parent for parent, _ in relations], start, last_day)
    message_causes = await get_message_causes(session, {row.cause_id for row in latest.values()})

    attendance = {}
    for day in iter_days(max(start, catering.since), min(last_day, catering.until)):
        if not catering.is_active_on(day):
            continue
        attendance[day] = {
            meal.id: resolve_status(relations, latest, day, meal.id, message_causes)[0]
            for meal in meals
        }

    return EffectiveMonthAttendance(target=target_id, is_student=is_student, attendance=attendance)


async def get_meal_counts(session: AsyncSession, target_id: str, day: date) -> Optional[MealCounts]:
    """
    Count how many students under a group are in each status, per meal.

    This is what the kitchen prepares for: ``present`` students get a meal.

    Returns:
        The counts, or None if the target has no catering
    """
    catering = await get_catering_for(session, target_id)
    if catering is None:
        return None
    if not catering.is_active_on(day):
        return MealCounts(target=target_id, day=day, served=False)

    meals = await get_catering_meals(session, catering.id)
    result = await session.execute(
        select(Student.id)
        .join(GroupRelation, GroupRelation.child == Student.id)
        .where(GroupRelation.parent == target_id)
    )
    students = result.scalars().all()

    relations = await get_relations(session, students)
    ancestors = {parent for pairs in relations.values() for parent, _ in pairs}
    latest = await latest_rows(session, ancestors, day, day)
    message_causes = await get_message_causes(session, {row.cause_id for row in latest.values()})

    counts = {meal.id: {status: 0 for status in EffectiveAttendance} for meal in meals}
    for student_id in students:
        for meal in meals:
            status, _ = resolve_status(relations[student_id], latest, day, meal.id, message_causes)
            counts[meal.id][status] += 1

    return MealCounts(target=target_id, day=day, served=True, meals=counts)


async def record_override(
    session: AsyncSession,
    target_id: str,
    override: AttendanceOverrideCreate,
) -> str:
    """
    Record a manual attendance override made by staff.

    Inactive meals get ``false`` rows, active meals ``true`` rows, all under
    one new override cause. Nothing is committed here.

    Returns:
        The override's cause id
    """
    cause = AttendanceOverride(note=override.note)
    session.add(cause)
    await session.flush()

    now = utcnow()
    for value, meal_ids in ((False, override.inactive_meals), (True, override.active_meals)):
        for day in override.days:
            for meal_id in meal_ids:
                session.add(
                    AttendanceEntry(
                        cause_id=cause.id,
                        target=target_id,
                        day=day,
                        meal_id=meal_id,
                        value=value,
                        originated_at=now,
                    )
                )
    await session.flush()

    logger.info(f"Recorded override {cause.id} for {target_id} on {len(override.days)} day(s)")
    return cause.id


async def get_attendance_history(
    session: AsyncSession,
    target_id: str,
    day: date,
    meal_id: str,
) -> AttendanceHistory:
    """Get the own ledger events of a (target, day, meal) and its resolved status."""
    result = await session.execute(
        select(AttendanceEntry, ProcessingTrigger.message_id, AttendanceOverride.note)
        .outerjoin(ProcessingTrigger, ProcessingTrigger.cause_id == AttendanceEntry.cause_id)
        .outerjoin(AttendanceOverride, AttendanceOverride.id == AttendanceEntry.cause_id)
        .where(
            AttendanceEntry.target == target_id,
            AttendanceEntry.day == day,
            AttendanceEntry.meal_id == meal_id,
        )
        .order_by(AttendanceEntry.originated_at, AttendanceEntry.id)
    )

    events = []
    for entry, message_id, note in result.all():
        if message_id is not None:
            kind = CauseKind.MESSAGE
        elif note is not None:
            kind = CauseKind.OVERRIDE
        else:
            kind = CauseKind.INITIAL
        events.append(
            AttendanceHistoryItem(
                time=entry.originated_at,
                value=entry.value,
                kind=kind,
                cause_id=entry.cause_id,
                note=note,
                message_id=message_id,
            )
        )

    relations = (await get_relations(session, [target_id]))[target_id]
    latest = await latest_rows(session, [parent for parent, _ in relations], day, day)
    message_causes = await get_message_causes(session, {row.cause_id for row in latest.values()})
    status, blocked_by = resolve_status(relations, latest, day, meal_id, message_causes)

    return AttendanceHistory(status=status, blocked_by=blocked_by, events=events)
