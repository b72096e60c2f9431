"""
Operator endpoints for inbound messages: audit trail, requeue, simulation.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from catering_sms.config.settings import get_settings
from catering_sms.infrastructure.database import get_session
from catering_sms.infrastructure.inbox import (
    ProcessingRun,
    enqueue_inbound,
    get_processing_history,
    requeue_message,
)
from catering_sms.utils.time import get_local_now

logger = logging.getLogger(__name__)
router = APIRouter()
settings = get_settings()


class SimulatedMessage(BaseModel):
    """Schema for a simulated inbound SMS."""
    phone: str = Field(..., min_length=1, max_length=32)
    content: str = Field(..., min_length=1, max_length=1000)


def wake_dispatcher(request: Request) -> None:
    """Wake the in-process dispatcher, if one is running."""
    dispatcher = getattr(request.app.state, "dispatcher", None)
    if dispatcher is not None:
        dispatcher.wake()


@router.get("/messages/{message_id}/processing", response_model=List[ProcessingRun])
async def message_processing(message_id: str, session: AsyncSession = Depends(get_session)):
    """Get every pipeline run of a message with its persisted states."""
    runs = await get_processing_history(session, message_id)
    if runs is None:
        raise HTTPException(status_code=404, detail="Message not found")
    return runs


@router.post("/messages/{message_id}/requeue")
async def requeue(message_id: str, request: Request, session: AsyncSession = Depends(get_session)):
    """Mark a message unprocessed so the dispatcher runs it again."""
    if not await requeue_message(session, message_id):
        raise HTTPException(status_code=404, detail="Message not found")
    wake_dispatcher(request)
    return {"id": message_id, "requeued": True}


@router.post("/messages/simulate")
async def simulate(
    message: SimulatedMessage,
    request: Request,
    session: AsyncSession = Depends(get_session),
):
    """Append an inbound message as if the SMS gateway had received it."""
    inbound = await enqueue_inbound(
        session,
        phone=message.phone,
        content=message.content,
        arrived_at=get_local_now(settings.timezone),
    )

    if session.get_bind().dialect.name == "postgresql":
        await session.execute(text(f"NOTIFY {settings.notify_channel}"))
        await session.commit()
    wake_dispatcher(request)

    return {"id": inbound.id}


@router.get("/health")
async def health_check(request: Request):
    """Health check endpoint."""
    dispatcher: Optional[object] = getattr(request.app.state, "dispatcher", None)
    return {
        "status": "healthy",
        "service": "catering-sms",
        "dispatcher": dispatcher is not None,
    }
