"""
Message pipeline: a persisted state machine driving one inbound SMS from
raw text to attendance changes and a reply.

    init -> tokens -> cancellation -> student_cancellation -> cancellation_result
                   \\-> request_error

Every state is stored under the run's cause id before the next stage runs.
Nothing is committed here; the caller owns the transaction.
"""

import logging
from dataclasses import dataclass
from typing import List, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from catering_sms.domain.message import InboundMessage, OutboundMessage, ProcessingRecord, ProcessingTrigger
from catering_sms.domain.processing import (
    AttendanceCancellation,
    CancellationRequest,
    CancellationResultState,
    CancellationState,
    InitState,
    ProcessingState,
    RequestErrorState,
    StudentCancellationState,
    TERMINAL_STATES,
    TokensState,
    processing_state_adapter,
)
from catering_sms.domain.roster import StudentSnapshot, new_id
from catering_sms.parsing.fuzzy import DEFAULT_MAX_DISTANCE
from catering_sms.parsing.request_builder import build_request
from catering_sms.parsing.tokenizer import tokenize
from catering_sms.usecases.cancellation import check_student_policy, resolve_cancellations
from catering_sms.usecases.effective_attendance import count_effective_cancellations
from catering_sms.usecases.ledger import write_cancellations
from catering_sms.usecases.replies import DEFAULT_LOCALE, compose_error_reply, compose_reply

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RunContext:
    """What every stage of one run may read."""
    cause_id: str
    message: InboundMessage
    students: List[StudentSnapshot]


class MessagePipeline:
    """Runs inbound messages through the cancellation state machine."""

    def __init__(
        self,
        session: AsyncSession,
        locale: str = DEFAULT_LOCALE,
        max_distance: int = DEFAULT_MAX_DISTANCE,
        require_explicit_student: bool = False,
    ):
        self.session = session
        self.locale = locale
        self.max_distance = max_distance
        self.require_explicit_student = require_explicit_student

    async def run(self, message: InboundMessage, students: Sequence[StudentSnapshot]) -> OutboundMessage:
        """
        Process one message to a terminal state and enqueue the reply.

        Args:
            message: The claimed inbound message
            students: Roster snapshot of the sender

        Returns:
            The queued reply
        """
        context = RunContext(cause_id=new_id(), message=message, students=list(students))
        self.session.add(ProcessingTrigger(cause_id=context.cause_id, message_id=message.id))

        state: ProcessingState = InitState(students=context.students)
        while True:
            await self._save_state(context.cause_id, state)
            if isinstance(state, TERMINAL_STATES):
                break
            state = await self.advance(state, context)

        reply = OutboundMessage(
            phone=message.phone,
            content=self.compose(state),
            cause_id=context.cause_id,
        )
        self.session.add(reply)
        await self.session.flush()

        logger.info(f"Message {message.id} reached {state.stage} (cause {context.cause_id})")
        return reply

    async def advance(self, state: ProcessingState, context: RunContext) -> ProcessingState:
        """Compute the state following a non-terminal one."""
        transitions = {
            InitState: self._tokenize,
            TokensState: self._build_request,
            CancellationState: self._resolve,
            StudentCancellationState: self._apply,
        }

        handler = transitions.get(type(state))
        if handler is None:
            raise TypeError(f"No transition from state {state!r}")
        return await handler(state, context)

    def compose(self, state: ProcessingState) -> str:
        """Reply text for a terminal state."""
        if isinstance(state, CancellationResultState):
            return compose_reply(state.results, self.locale)
        if isinstance(state, RequestErrorState):
            return compose_error_reply(state.error, self.locale)
        raise TypeError(f"State {state!r} is not terminal")

    async def _tokenize(self, state: InitState, context: RunContext) -> ProcessingState:
        tokens = tokenize(
            context.message.content,
            context.message.arrived_at,
            state.students,
            self.max_distance,
        )
        return TokensState(tokens=tokens)

    async def _build_request(self, state: TokensState, context: RunContext) -> ProcessingState:
        request = build_request(state.tokens)
        if not isinstance(request, CancellationRequest):
            return RequestErrorState(error=request)

        error = check_student_policy(request, context.students, self.require_explicit_student)
        if error is not None:
            return RequestErrorState(error=error)
        return CancellationState(request=request)

    async def _resolve(self, state: CancellationState, context: RunContext) -> ProcessingState:
        cancellation = resolve_cancellations(
            state.request,
            context.students,
            context.message.arrived_at,
        )
        return StudentCancellationState(students=cancellation.students)

    async def _apply(self, state: StudentCancellationState, context: RunContext) -> ProcessingState:
        await write_cancellations(
            self.session,
            AttendanceCancellation(students=state.students),
            context.cause_id,
        )
        results = await count_effective_cancellations(self.session, context.cause_id)
        return CancellationResultState(results=results)

    async def _save_state(self, cause_id: str, state: ProcessingState) -> None:
        self.session.add(
            ProcessingRecord(
                cause_id=cause_id,
                value=processing_state_adapter.dump_python(state, mode="json"),
            )
        )
        await self.session.flush()
