"""
Value types flowing through the message pipeline.

Every variant carries a literal discriminator so the states can be
persisted as JSON and read back into the same types for the audit trail.
"""

from datetime import date
from typing import Annotated, Dict, List, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from catering_sms.domain.roster import StudentSnapshot


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


# Tokens

class DateToken(_Frozen):
    kind: Literal["date"] = "date"
    value: date


class StudentToken(_Frozen):
    kind: Literal["student"] = "student"
    id: str


class MealToken(_Frozen):
    kind: Literal["meal"] = "meal"
    id: str


class UnknownToken(_Frozen):
    kind: Literal["unknown"] = "unknown"
    word: str


class AmbiguousToken(_Frozen):
    kind: Literal["ambiguous"] = "ambiguous"
    word: str


Token = Annotated[
    Union[DateToken, StudentToken, MealToken, UnknownToken, AmbiguousToken],
    Field(discriminator="kind"),
]


# Request errors

class InvalidTimeRange(_Frozen):
    code: Literal["invalid_time_range"] = "invalid_time_range"


class TooManyDates(_Frozen):
    code: Literal["too_many_dates"] = "too_many_dates"


class NoDateSpecified(_Frozen):
    code: Literal["no_date_specified"] = "no_date_specified"


class NoStudentSpecified(_Frozen):
    code: Literal["no_student_specified"] = "no_student_specified"


class UnknownTerm(_Frozen):
    code: Literal["unknown_term"] = "unknown_term"
    term: str


class AmbiguousTerm(_Frozen):
    code: Literal["ambiguous_term"] = "ambiguous_term"
    term: str


RequestError = Annotated[
    Union[
        InvalidTimeRange,
        TooManyDates,
        NoDateSpecified,
        NoStudentSpecified,
        UnknownTerm,
        AmbiguousTerm,
    ],
    Field(discriminator="code"),
]

REQUEST_ERROR_TYPES = (
    InvalidTimeRange,
    TooManyDates,
    NoDateSpecified,
    NoStudentSpecified,
    UnknownTerm,
    AmbiguousTerm,
)


# Cancellation payloads

class CancellationRequest(_Frozen):
    """Parsed request; empty ``students``/``meals`` mean all applicable."""
    since: date
    until: date
    students: List[str] = []
    meals: List[str] = []


class StudentCancellation(_Frozen):
    id: str
    meals: List[str]
    since: date
    until: date


class AttendanceCancellation(_Frozen):
    students: List[StudentCancellation] = []


class CancellationResult(_Frozen):
    """Effectively cancelled meal counts of one student, keyed by meal name."""
    name: str
    meals: Dict[str, int] = {}


# Pipeline states

class InitState(_Frozen):
    stage: Literal["init"] = "init"
    students: List[StudentSnapshot] = []


class TokensState(_Frozen):
    stage: Literal["tokens"] = "tokens"
    tokens: List[Token]


class CancellationState(_Frozen):
    stage: Literal["cancellation"] = "cancellation"
    request: CancellationRequest


class StudentCancellationState(_Frozen):
    stage: Literal["student_cancellation"] = "student_cancellation"
    students: List[StudentCancellation]


class CancellationResultState(_Frozen):
    stage: Literal["cancellation_result"] = "cancellation_result"
    results: List[CancellationResult]


class RequestErrorState(_Frozen):
    stage: Literal["request_error"] = "request_error"
    error: RequestError


ProcessingState = Annotated[
    Union[
        InitState,
        TokensState,
        CancellationState,
        StudentCancellationState,
        CancellationResultState,
        RequestErrorState,
    ],
    Field(discriminator="stage"),
]

TERMINAL_STATES = (CancellationResultState, RequestErrorState)

processing_state_adapter = TypeAdapter(ProcessingState)
