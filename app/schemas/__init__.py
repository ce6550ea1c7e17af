# Pydantic schemas package
from app.schemas.job import JobResponse, JobStatus, JobCreateRequest, AdminFailRequest
from app.schemas.payment import (
    PaymentCreateRequest, PaymentResponse, ReconciliationRecordResponse, ReconciliationResponse
)
from app.schemas.admin import AlertResponse, ReplayResponse, WebhookEventResponse
from app.schemas.webhooks import GenerationWebhook, PaymentWebhook, WebhookAck

__all__ = [
    "JobResponse", "JobStatus", "JobCreateRequest", "AdminFailRequest",
    "PaymentCreateRequest", "PaymentResponse", "ReconciliationRecordResponse", "ReconciliationResponse",
    "AlertResponse", "ReplayResponse", "WebhookEventResponse",
    "GenerationWebhook", "PaymentWebhook", "WebhookAck",
]
