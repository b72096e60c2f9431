"""
Inbox, outbox and audit-trail queries shared with the SMS gateway and the
staff UI.
"""

import logging
from datetime import datetime
from typing import Collection, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from pydantic import BaseModel

from catering_sms.domain.message import InboundMessage, ProcessingRecord, ProcessingTrigger
from catering_sms.domain.processing import ProcessingState, processing_state_adapter

logger = logging.getLogger(__name__)


class ProcessingRun(BaseModel):
    """Persisted states of one pipeline run, in the order they were reached."""
    cause_id: str
    created_at: Optional[datetime]
    states: List[ProcessingState]


async def claim_next_message(
    session: AsyncSession,
    exclude: Collection[str] = (),
) -> Optional[InboundMessage]:
    """
    Lock the oldest unprocessed inbound message.

    Rows locked by other workers are skipped, so concurrent dispatchers never
    claim the same message. The lock lasts until the session's transaction ends.

    Args:
        exclude: Ids of messages not to claim
    """
    query = (
        select(InboundMessage)
        .where(InboundMessage.processed == False)  # noqa: E712
        .order_by(InboundMessage.arrived_at, InboundMessage.id)
        .limit(1)
        .with_for_update(skip_locked=True)
    )
    if exclude:
        query = query.where(InboundMessage.id.not_in(list(exclude)))

    result = await session.execute(query)
    return result.scalar_one_or_none()


async def mark_processed(session: AsyncSession, message: InboundMessage) -> None:
    """Flag a claimed message as processed within the running transaction."""
    message.processed = True
    await session.flush()


async def requeue_message(session: AsyncSession, message_id: str) -> bool:
    """
    Clear the processed flag so the dispatcher runs the message again.

    Returns:
        False if no such message exists
    """
    result = await session.execute(
        update(InboundMessage)
        .where(InboundMessage.id == message_id)
        .values(processed=False)
    )
    await session.commit()

    if result.rowcount == 0:
        return False
    logger.info(f"Requeued message {message_id}")
    return True


async def enqueue_inbound(session: AsyncSession, phone: str, content: str, arrived_at: datetime) -> InboundMessage:
    """Append an inbound message as if the gateway had received it."""
    message = InboundMessage(phone=phone, content=content, arrived_at=arrived_at, processed=False)
    session.add(message)
    await session.commit()
    logger.info(f"Enqueued inbound message {message.id} from {phone}")
    return message


async def get_processing_history(session: AsyncSession, message_id: str) -> Optional[List[ProcessingRun]]:
    """
    Get the audit trail of every pipeline run of a message.

    Returns:
        Runs oldest first, or None if the message does not exist
    """
    message = await session.get(InboundMessage, message_id)
    if message is None:
        return None

    result = await session.execute(
        select(ProcessingTrigger.cause_id, ProcessingTrigger.created_at, ProcessingRecord.value)
        .join(ProcessingRecord, ProcessingRecord.cause_id == ProcessingTrigger.cause_id)
        .where(ProcessingTrigger.message_id == message_id)
        .order_by(ProcessingRecord.id)
    )

    runs: dict = {}
    for cause_id, created_at, value in result.all():
        run = runs.setdefault(cause_id, ProcessingRun(cause_id=cause_id, created_at=created_at, states=[]))
        run.states.append(processing_state_adapter.validate_python(value))

    return list(runs.values())
