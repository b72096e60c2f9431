"""
Expands a cancellation request into per-student cancellation ranges.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional, Sequence

from catering_sms.domain.processing import (
    AttendanceCancellation,
    CancellationRequest,
    NoStudentSpecified,
    StudentCancellation,
)
from catering_sms.domain.roster import StudentSnapshot
from catering_sms.utils.time import subtract_time_of_day

logger = logging.getLogger(__name__)


def check_student_policy(
    request: CancellationRequest,
    students: Sequence[StudentSnapshot],
    require_explicit_student: bool,
) -> Optional[NoStudentSpecified]:
    """
    Reject requests that name no student when the sender has several.

    Only enforced with ``require_explicit_student``; otherwise such a
    request applies to every student of the sender.
    """
    if require_explicit_student and not request.students and len(students) > 1:
        return NoStudentSpecified()
    return None


def resolve_student(
    request: CancellationRequest,
    student: StudentSnapshot,
    arrived_at: datetime,
) -> Optional[StudentCancellation]:
    """
    Clamp a request to what one student may still cancel.

    The earliest cancellable day is the day after ``arrived_at - grace_period``,
    and never before the enrollment start; the latest is the enrollment end.
    Returns None if nothing is left.
    """
    enrolled = [meal.id for meal in student.meals]
    if request.meals:
        wanted = set(request.meals)
        meals = [meal_id for meal_id in enrolled if meal_id in wanted]
    else:
        meals = enrolled

    grace_floor = subtract_time_of_day(arrived_at, student.grace_period).date() + timedelta(days=1)
    floor = max(grace_floor, student.starts)

    # Intersect with [floor, ends]; a request entirely outside is dropped
    # rather than moved onto the boundary day.
    since = max(floor, request.since)
    until = min(student.ends, request.until)

    if since > until:
        return None

    return StudentCancellation(id=student.id, meals=meals, since=since, until=until)


def resolve_cancellations(
    request: CancellationRequest,
    students: Sequence[StudentSnapshot],
    arrived_at: datetime,
) -> AttendanceCancellation:
    """
    Resolve a request against the sender's students.

    Args:
        request: Parsed cancellation request
        students: Roster snapshot of the sender
        arrived_at: Arrival time of the message (local)

    Returns:
        One StudentCancellation per student the request still applies to
    """
    if request.students:
        named = set(request.students)
        candidates = [s for s in students if s.id in named]
    else:
        candidates = list(students)

    resolved = []
    for student in candidates:
        cancellation = resolve_student(request, student, arrived_at)
        if cancellation is None:
            logger.info(
                f"Dropping student {student.id}: {request.since}..{request.until} "
                f"is outside the cancellable window"
            )
            continue
        resolved.append(cancellation)

    return AttendanceCancellation(students=resolved)
