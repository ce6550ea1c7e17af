"""
Payment Schemas
Pydantic models for payment registration and reconciliation queries.
"""

from datetime import datetime
from typing import Optional, List
from pydantic import BaseModel, Field


class PaymentCreateRequest(BaseModel):
    """Registers a checkout before the gateway reports anything."""
    order_id: str
    amount_minor_units: int = Field(..., gt=0)
    currency: str = Field(..., min_length=3, max_length=3)
    provider_order_id: Optional[str] = None
    provider_payment_id: Optional[str] = None


class PaymentResponse(BaseModel):
    id: str
    order_id: str
    provider_order_id: Optional[str]
    provider_payment_id: Optional[str]
    amount_minor_units: int
    amount_refunded_minor_units: int
    currency: str
    status: str
    failure_reason: Optional[str]
    last_event_id: Optional[str]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class ReconciliationRecordResponse(BaseModel):
    id: int
    payment_id: str
    event_id: str
    from_status: str
    to_status: str
    captured_delta_minor_units: int
    refunded_delta_minor_units: int
    amount_refunded_minor_units: int
    currency: str
    created_at: datetime

    class Config:
        from_attributes = True


class ReconciliationResponse(BaseModel):
    payment: PaymentResponse
    records: List[ReconciliationRecordResponse]
