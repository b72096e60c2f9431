"""
Folds a token sequence into a cancellation request or a request error.
"""

from datetime import date
from typing import List, Sequence, Union

from catering_sms.domain.processing import (
    AmbiguousTerm,
    AmbiguousToken,
    CancellationRequest,
    DateToken,
    InvalidTimeRange,
    MealToken,
    NoDateSpecified,
    RequestError,
    StudentToken,
    Token,
    TooManyDates,
    UnknownTerm,
    UnknownToken,
)


def _unique(values: list) -> list:
    return list(dict.fromkeys(values))


def build_request(tokens: Sequence[Token]) -> Union[CancellationRequest, RequestError]:
    """
    Build a cancellation request from tokens.

    Unknown terms are reported before ambiguous ones, and both before any
    date-count problem.
    """
    unknown = next((t for t in tokens if isinstance(t, UnknownToken)), None)
    if unknown is not None:
        return UnknownTerm(term=unknown.word)

    ambiguous = next((t for t in tokens if isinstance(t, AmbiguousToken)), None)
    if ambiguous is not None:
        return AmbiguousTerm(term=ambiguous.word)

    dates: List[date] = _unique([t.value for t in tokens if isinstance(t, DateToken)])
    students = _unique([t.id for t in tokens if isinstance(t, StudentToken)])
    meals = _unique([t.id for t in tokens if isinstance(t, MealToken)])

    if not dates:
        return NoDateSpecified()
    if len(dates) > 2:
        return TooManyDates()

    since, until = dates[0], dates[-1]
    if until < since:
        return InvalidTimeRange()

    return CancellationRequest(since=since, until=until, students=students, meals=meals)
