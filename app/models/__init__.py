# Database models package
from app.models.job import Job, JobStatus
from app.models.payment import Payment, PaymentStatus, ReconciliationRecord
from app.models.webhook import WebhookEvent, WebhookProvider, ProcessingOutcome, ProcessedEvent
from app.models.alert import OperatorAlert, AlertKind

__all__ = [
    "Job",
    "JobStatus",
    "Payment",
    "PaymentStatus",
    "ReconciliationRecord",
    "WebhookEvent",
    "WebhookProvider",
    "ProcessingOutcome",
    "ProcessedEvent",
    "OperatorAlert",
    "AlertKind",
]
