"""
Tokenizer turning an SMS into dates, student and meal references.
"""

import re
from datetime import date, datetime
from typing import List, Optional, Sequence, Tuple

from catering_sms.domain.processing import (
    AmbiguousToken,
    DateToken,
    MealToken,
    StudentToken,
    Token,
    UnknownToken,
)
from catering_sms.domain.roster import StudentSnapshot
from catering_sms.parsing.fuzzy import DEFAULT_MAX_DISTANCE, closest
from catering_sms.utils.time import expand_two_digit_year, next_occurrence

# Day and month may use "-", "." or "/" as separators, in any mix.
LONG_DATE = re.compile(r"^(\d{1,2})[-./](\d{1,2})[-./](\d{4})$")
MIDDLE_DATE = re.compile(r"^(\d{1,2})[-./](\d{1,2})[-./](\d{2})$")
SHORT_DATE = re.compile(r"^(\d{1,2})[-./](\d{1,2})$")


def parse_date(word: str, arrived_at: datetime) -> Tuple[bool, Optional[date]]:
    """
    Interpret a word as a date.

    Args:
        word: A single lower-cased word
        arrived_at: Arrival time of the message, anchors partial dates

    Returns:
        (matched, date). ``matched`` tells whether the word looks like a date
        at all; ``date`` is None when it does but is not a valid calendar date.
    """
    match = LONG_DATE.match(word)
    if match:
        day, month, year = (int(part) for part in match.groups())
        return True, _safe_date(year, month, day)

    match = MIDDLE_DATE.match(word)
    if match:
        day, month, year = (int(part) for part in match.groups())
        year = expand_two_digit_year(year, arrived_at.year)
        return True, _safe_date(year, month, day)

    match = SHORT_DATE.match(word)
    if match:
        day, month = (int(part) for part in match.groups())
        return True, next_occurrence(day, month, arrived_at.date())

    return False, None


def _safe_date(year: int, month: int, day: int) -> Optional[date]:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def build_vocabulary(students: Sequence[StudentSnapshot]) -> List[Tuple[str, Token]]:
    """Lower-cased meal and student names mapped to the token they stand for."""
    vocabulary: List[Tuple[str, Token]] = []
    for student in students:
        for meal in student.meals:
            vocabulary.append((meal.name.lower(), MealToken(id=meal.id)))
    for student in students:
        vocabulary.append((student.name.lower(), StudentToken(id=student.id)))
    return vocabulary


def classify_word(
    word: str,
    arrived_at: datetime,
    vocabulary: Sequence[Tuple[str, Token]],
    max_distance: int = DEFAULT_MAX_DISTANCE,
) -> Token:
    """Classify one word as a date, a known entity, or an unknown/ambiguous term."""
    is_date, value = parse_date(word, arrived_at)
    if is_date:
        return DateToken(value=value) if value else UnknownToken(word=word)

    matches = closest(word, vocabulary, max_distance)
    if not matches:
        return UnknownToken(word=word)
    if len(matches) == 1:
        return matches[0]
    return AmbiguousToken(word=word)


def tokenize(
    content: str,
    arrived_at: datetime,
    students: Sequence[StudentSnapshot],
    max_distance: int = DEFAULT_MAX_DISTANCE,
) -> List[Token]:
    """
    Split a message into classified tokens.

    Args:
        content: Raw message text
        arrived_at: Arrival time of the message
        students: Roster snapshot of the sender, provides the vocabulary
        max_distance: Maximal edit distance for name matches

    Returns:
        One token per whitespace-separated word
    """
    vocabulary = build_vocabulary(students)
    return [
        classify_word(word, arrived_at, vocabulary, max_distance)
        for word in content.lower().split()
    ]
