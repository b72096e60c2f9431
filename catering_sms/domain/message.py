"""
Message domain models: the inbox/outbox shared with the SMS gateway and
the persisted processing audit trail.
"""

from sqlalchemy import Column, String, DateTime, Integer, Boolean, JSON

from catering_sms.domain.roster import Base, new_id
from catering_sms.utils.time import utcnow


class InboundMessage(Base):
    """SQLAlchemy model for SMS received by the gateway."""

    __tablename__ = "inbound_messages"

    id = Column(String(36), primary_key=True, default=new_id)
    phone = Column(String(32), nullable=False)
    content = Column(String(1000), nullable=False)
    arrived_at = Column(DateTime, nullable=False)
    processed = Column(Boolean, nullable=False, default=False, index=True)

    def __repr__(self) -> str:
        return f"<InboundMessage(id={self.id}, phone={self.phone}, processed={self.processed})>"


class OutboundMessage(Base):
    """SQLAlchemy model for replies waiting to be sent by the gateway."""

    __tablename__ = "outbound_messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    phone = Column(String(32), nullable=False)
    content = Column(String(1000), nullable=False)
    cause_id = Column(String(36), nullable=True, index=True)
    created_at = Column(DateTime, default=utcnow)
    sent = Column(Boolean, nullable=False, default=False)

    def __repr__(self) -> str:
        return f"<OutboundMessage(id={self.id}, phone={self.phone}, cause_id={self.cause_id})>"


class ProcessingTrigger(Base):
    """Links one pipeline run (cause) to the inbound message that started it."""

    __tablename__ = "processing_triggers"

    cause_id = Column(String(36), primary_key=True)
    message_id = Column(String(36), nullable=False, index=True)
    created_at = Column(DateTime, default=utcnow)


class ProcessingRecord(Base):
    """One persisted state of a pipeline run, in insertion order."""

    __tablename__ = "processing_states"

    id = Column(Integer, primary_key=True, autoincrement=True)
    cause_id = Column(String(36), nullable=False, index=True)
    value = Column(JSON, nullable=False)
    created_at = Column(DateTime, default=utcnow)

    def __repr__(self) -> str:
        return f"<ProcessingRecord(id={self.id}, cause_id={self.cause_id}, stage={self.value.get('stage')})>"
