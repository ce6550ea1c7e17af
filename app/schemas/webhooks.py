"""
Webhook Schemas
Versioned payload shapes for each provider. Unknown fields are ignored;
missing required fields fail validation.
"""

from typing import List, Optional
from pydantic import BaseModel


# Generation provider (v1)

class GenerationDownload(BaseModel):
    url: str
    expires_at: Optional[str] = None


class GenerationError(BaseModel):
    code: Optional[str] = None
    message: Optional[str] = None


class GenerationJobPayload(BaseModel):
    id: str
    status: Optional[str] = None
    downloads: List[GenerationDownload] = []
    error: Optional[GenerationError] = None


class GenerationWebhook(BaseModel):
    """`{"id"?, "type": "image.completed", "payload": {...}}`"""
    id: Optional[str] = None
    type: str
    payload: GenerationJobPayload


# Payment provider (v1)

class PaymentEntity(BaseModel):
    id: str
    amount: int
    currency: str
    status: Optional[str] = None
    order_id: Optional[str] = None
    amount_refunded: Optional[int] = None
    error_code: Optional[str] = None
    error_description: Optional[str] = None


class RefundEntity(BaseModel):
    id: str
    payment_id: str
    amount: int
    currency: Optional[str] = None


class PaymentEntityWrapper(BaseModel):
    entity: PaymentEntity


class RefundEntityWrapper(BaseModel):
    entity: RefundEntity


class PaymentWebhookPayload(BaseModel):
    payment: Optional[PaymentEntityWrapper] = None
    refund: Optional[RefundEntityWrapper] = None


class PaymentWebhook(BaseModel):
    """`{"event": "payment.captured", "payload": {"payment": {"entity": {...}}}}`"""
    event: str
    payload: PaymentWebhookPayload = PaymentWebhookPayload()
    created_at: Optional[int] = None


class WebhookAck(BaseModel):
    """Body returned to the provider."""
    outcome: str
    event_id: Optional[str] = None
    detail: Optional[str] = None
