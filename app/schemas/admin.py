"""
Admin Schemas
Operator-facing alert and replay payloads.
"""

from datetime import datetime
from typing import Optional, Dict, Any
from pydantic import BaseModel


class AlertResponse(BaseModel):
    id: int
    kind: str
    entity_type: str
    entity_id: Optional[str]
    event_id: Optional[str]
    message: str
    details: Dict[str, Any] = {}
    acknowledged: bool
    created_at: datetime

    class Config:
        from_attributes = True


class WebhookEventResponse(BaseModel):
    """Audit row for one delivery (raw payload omitted)."""
    id: int
    event_id: Optional[str]
    provider: str
    event_type: Optional[str]
    received_at: datetime
    verified: bool
    processing_outcome: Optional[str]
    outcome_detail: Optional[str]
    entity_id: Optional[str]
    replay_of: Optional[int]

    class Config:
        from_attributes = True


class ReplayResponse(BaseModel):
    webhook_event_id: int
    outcome: str
    detail: Optional[str]
