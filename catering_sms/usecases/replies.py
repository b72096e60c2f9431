"""
Reply texts sent back to guardians.
"""

from typing import Dict, Sequence

from catering_sms.domain.processing import (
    AmbiguousTerm,
    CancellationResult,
    InvalidTimeRange,
    NoDateSpecified,
    NoStudentSpecified,
    RequestError,
    TooManyDates,
    UnknownTerm,
)

DEFAULT_LOCALE = "en"

MESSAGES: Dict[str, Dict[str, str]] = {
    "en": {
        "nothing_cancelled": "No attendance was cancelled",
        "cancelled": "Cancelled:",
        "invalid_time_range": "The given date range is invalid",
        "too_many_dates": (
            "Too many dates given - send a single date of absence, "
            "or a period between 2 dates separated by a space"
        ),
        "no_date_specified": (
            "No date given - send a single date of absence, "
            "or a period between 2 dates separated by a space"
        ),
        "no_student_specified": "Please name the student the absence applies to",
        "unknown_term": "The term '{term}' is not a valid meal or student name",
        "ambiguous_term": "The term '{term}' may refer to more than one meal or student",
    },
    "pl": {
        "nothing_cancelled": "Nie odwołano żadnej obecności",
        "cancelled": "Odwołano:",
        "invalid_time_range": "Podano nieprawidłowy zakres dat",
        "too_many_dates": (
            "Podano zbyt wiele dat - należy podać pojedynczą datę nieobecności, "
            "lub okres pomiędzy 2 datami odseparowanymi spacją"
        ),
        "no_date_specified": (
            "Nie podano żadnej daty - należy podać pojedynczą datę nieobecności, "
            "lub okres pomiędzy 2 datami odseparowanymi spacją"
        ),
        "no_student_specified": "Należy podać imię ucznia, którego dotyczy nieobecność",
        "unknown_term": "Termin '{term}' nie jest prawidłowym określeniem na posiłek / ucznia",
        "ambiguous_term": "Termin '{term}' może odnosić się do więcej niż jednego posiłku / ucznia",
    },
}


def _catalog(locale: str) -> Dict[str, str]:
    return MESSAGES.get(locale, MESSAGES[DEFAULT_LOCALE])


def compose_reply(results: Sequence[CancellationResult], locale: str = DEFAULT_LOCALE) -> str:
    """
    Describe the effective cancellations of a run.

    Args:
        results: Per-student cancelled meal counts
        locale: Reply language

    Returns:
        One line per affected student listing meal counts, or a notice that
        nothing was cancelled
    """
    texts = _catalog(locale)
    lines = []
    for result in results:
        meals = [f"{name} {count}" for name, count in result.meals.items() if count]
        if meals:
            lines.append(f"{result.name}: {', '.join(meals)}")

    if not lines:
        return texts["nothing_cancelled"]
    return "\n".join([texts["cancelled"], *lines])


def compose_error_reply(error: RequestError, locale: str = DEFAULT_LOCALE) -> str:
    """Describe a request error, naming the offending term where there is one."""
    texts = _catalog(locale)
    if isinstance(error, InvalidTimeRange):
        return texts["invalid_time_range"]
    if isinstance(error, TooManyDates):
        return texts["too_many_dates"]
    if isinstance(error, NoDateSpecified):
        return texts["no_date_specified"]
    if isinstance(error, NoStudentSpecified):
        return texts["no_student_specified"]
    if isinstance(error, UnknownTerm):
        return texts["unknown_term"].format(term=error.term)
    if isinstance(error, AmbiguousTerm):
        return texts["ambiguous_term"].format(term=error.term)
    raise TypeError(f"Unhandled request error: {error!r}")
