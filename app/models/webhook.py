"""
Webhook Models
Audit trail of inbound deliveries and the idempotency key table.
"""

from datetime import datetime
from sqlalchemy import Column, String, Text, DateTime, Integer, Boolean

from app.core.database import Base


class WebhookProvider:
    """Webhook sources."""
    GENERATION = "generation"
    PAYMENT = "payment"

    ALL = (GENERATION, PAYMENT)


class ProcessingOutcome:
    """How a delivery was disposed of."""
    APPLIED = "applied"
    DUPLICATE_IGNORED = "duplicate_ignored"
    REJECTED = "rejected"
    DEFERRED = "deferred"


class WebhookEvent(Base):
    """
    One row per delivery, including rejected and duplicate ones.

    `event_id` is not unique here: forged deliveries may reuse a real id,
    and every redelivery is kept for audit. Uniqueness lives in
    ProcessedEvent.
    """

    __tablename__ = "webhook_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_id = Column(String, nullable=True, index=True)
    provider = Column(String, nullable=False, index=True)
    event_type = Column(String, nullable=True)

    received_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    verified = Column(Boolean, default=False, nullable=False)
    raw_payload = Column(Text, nullable=False)

    processing_outcome = Column(String, nullable=True, index=True)
    outcome_detail = Column(Text, nullable=True)
    entity_id = Column(String, nullable=True)
    replay_of = Column(Integer, nullable=True, index=True)  # id of the deferred delivery replayed


class ProcessedEvent(Base):
    """Idempotency key: `<provider>:<event_id>`."""

    __tablename__ = "processed_events"

    key = Column(String, primary_key=True)
    recorded_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
