"""
Provider Adapters
Translate each provider's signed webhook body into an InboundEvent.

The adapters are the only code that knows provider payload shapes; if a
provider changes its contract, this module changes and nothing else does.
"""

import hashlib
import json
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from pydantic import ValidationError

from app.models.webhook import WebhookProvider
from app.schemas.webhooks import GenerationWebhook, PaymentWebhook
from app.services.errors import MalformedPayloadError


class EventKind:
    """Internal event kinds the state machines understand."""
    JOB_ACKNOWLEDGED = "job.acknowledged"
    JOB_COMPLETED = "job.completed"
    JOB_FAILED = "job.failed"
    PAYMENT_AUTHORIZED = "payment.authorized"
    PAYMENT_CAPTURED = "payment.captured"
    PAYMENT_FAILED = "payment.failed"
    PAYMENT_REFUNDED = "payment.refunded"
    UNKNOWN = "unknown"

    JOB_KINDS = (JOB_ACKNOWLEDGED, JOB_COMPLETED, JOB_FAILED)
    PAYMENT_KINDS = (PAYMENT_AUTHORIZED, PAYMENT_CAPTURED, PAYMENT_FAILED, PAYMENT_REFUNDED)


GENERATION_EVENT_KINDS = {
    "image.queued": EventKind.JOB_ACKNOWLEDGED,
    "image.started": EventKind.JOB_ACKNOWLEDGED,
    "image.processing": EventKind.JOB_ACKNOWLEDGED,
    "image.completed": EventKind.JOB_COMPLETED,
    "image.failed": EventKind.JOB_FAILED,
    "image.error": EventKind.JOB_FAILED,
}

PAYMENT_EVENT_KINDS = {
    "payment.authorized": EventKind.PAYMENT_AUTHORIZED,
    "payment.captured": EventKind.PAYMENT_CAPTURED,
    "payment.failed": EventKind.PAYMENT_FAILED,
    # Sent alongside payment.captured; carries the same captured payment entity
    "order.paid": EventKind.PAYMENT_CAPTURED,
    "refund.created": EventKind.PAYMENT_REFUNDED,
    "refund.processed": EventKind.PAYMENT_REFUNDED,
}

# Header names (lower-case)
GENERATION_SIGNATURE_HEADER = "x-webhook-signature"
GENERATION_EVENT_ID_HEADER = "x-webhook-id"
PAYMENT_SIGNATURE_HEADER = "x-razorpay-signature"
PAYMENT_EVENT_ID_HEADER = "x-razorpay-event-id"

SIGNATURE_HEADERS = {
    WebhookProvider.GENERATION: GENERATION_SIGNATURE_HEADER,
    WebhookProvider.PAYMENT: PAYMENT_SIGNATURE_HEADER,
}


@dataclass
class InboundEvent:
    """Provider-neutral view of a webhook event."""
    provider: str
    event_id: str
    event_type: str
    kind: str

    # Generation
    provider_job_id: Optional[str] = None
    result_asset_url: Optional[str] = None
    provider_error: Optional[str] = None

    # Payment
    provider_payment_id: Optional[str] = None
    provider_order_id: Optional[str] = None
    amount_minor_units: Optional[int] = None
    currency: Optional[str] = None
    amount_refunded_minor_units: Optional[int] = None
    refund_id: Optional[str] = None
    refund_amount_minor_units: Optional[int] = None
    failure_reason: Optional[str] = None

    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_known(self) -> bool:
        return self.kind != EventKind.UNKNOWN


def normalize_headers(headers: Mapping[str, str]) -> Dict[str, str]:
    return {k.lower(): v for k, v in headers.items()}


def derive_event_id(body: Any) -> str:
    """Stable id for payloads without one: hash of the canonical JSON."""
    canonical = json.dumps(body, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return "derived_" + hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:40]


def _load_json(raw_body: bytes) -> Any:
    try:
        body = json.loads(raw_body)
    except (ValueError, UnicodeDecodeError) as e:
        raise MalformedPayloadError(f"Body is not valid JSON: {e}") from e
    if not isinstance(body, dict):
        raise MalformedPayloadError("Body must be a JSON object")
    return body


def parse_generation_event(raw_body: bytes, headers: Mapping[str, str]) -> InboundEvent:
    """Generation provider: `{"type": "image.completed", "payload": {...}}`."""
    body = _load_json(raw_body)
    try:
        webhook = GenerationWebhook.model_validate(body)
    except ValidationError as e:
        raise MalformedPayloadError(f"Invalid generation webhook: {e.error_count()} error(s)",
                                    details={"errors": e.errors(include_url=False)}) from e

    lowered = normalize_headers(headers)
    event_id = webhook.id or lowered.get(GENERATION_EVENT_ID_HEADER) or derive_event_id(body)
    kind = GENERATION_EVENT_KINDS.get(webhook.type, EventKind.UNKNOWN)

    event = InboundEvent(
        provider=WebhookProvider.GENERATION,
        event_id=event_id,
        event_type=webhook.type,
        kind=kind,
        provider_job_id=webhook.payload.id,
    )

    if kind == EventKind.JOB_COMPLETED:
        if not webhook.payload.downloads:
            raise MalformedPayloadError("Completion event without a download URL")
        event.result_asset_url = webhook.payload.downloads[0].url

    elif kind == EventKind.JOB_FAILED:
        error = webhook.payload.error
        if error is not None:
            event.provider_error = error.message or error.code
        event.provider_error = event.provider_error or "provider reported failure"

    return event


def parse_payment_event(raw_body: bytes, headers: Mapping[str, str]) -> InboundEvent:
    """Payment gateway: `{"event": "payment.captured", "payload": {"payment": {"entity": {...}}}}`."""
    body = _load_json(raw_body)
    try:
        webhook = PaymentWebhook.model_validate(body)
    except ValidationError as e:
        raise MalformedPayloadError(f"Invalid payment webhook: {e.error_count()} error(s)",
                                    details={"errors": e.errors(include_url=False)}) from e

    lowered = normalize_headers(headers)
    event_id = lowered.get(PAYMENT_EVENT_ID_HEADER) or derive_event_id(body)
    kind = PAYMENT_EVENT_KINDS.get(webhook.event, EventKind.UNKNOWN)

    event = InboundEvent(
        provider=WebhookProvider.PAYMENT,
        event_id=event_id,
        event_type=webhook.event,
        kind=kind,
    )
    if kind == EventKind.UNKNOWN:
        return event

    payment = webhook.payload.payment.entity if webhook.payload.payment else None
    refund = webhook.payload.refund.entity if webhook.payload.refund else None

    if kind == EventKind.PAYMENT_REFUNDED:
        if refund is None:
            raise MalformedPayloadError(f"{webhook.event} without a refund entity")
        event.refund_id = refund.id
        event.refund_amount_minor_units = refund.amount
        event.provider_payment_id = refund.payment_id
        event.currency = refund.currency
        if payment is not None:
            # Gateway's cumulative figure wins over summing refunds ourselves
            event.amount_refunded_minor_units = payment.amount_refunded
            event.provider_order_id = payment.order_id
            event.amount_minor_units = payment.amount
            event.currency = payment.currency
        return event

    if payment is None:
        raise MalformedPayloadError(f"{webhook.event} without a payment entity")

    event.provider_payment_id = payment.id
    event.provider_order_id = payment.order_id
    event.amount_minor_units = payment.amount
    event.currency = payment.currency
    if kind == EventKind.PAYMENT_FAILED:
        event.failure_reason = payment.error_description or payment.error_code or "payment failed"
    return event


PARSERS = {
    WebhookProvider.GENERATION: parse_generation_event,
    WebhookProvider.PAYMENT: parse_payment_event,
}


def parse_event(provider: str, raw_body: bytes, headers: Mapping[str, str]) -> InboundEvent:
    try:
        parser = PARSERS[provider]
    except KeyError:
        raise MalformedPayloadError(f"Unknown provider: {provider}")
    return parser(raw_body, headers)


__all__ = [
    "EventKind",
    "InboundEvent",
    "SIGNATURE_HEADERS",
    "GENERATION_SIGNATURE_HEADER",
    "GENERATION_EVENT_ID_HEADER",
    "PAYMENT_SIGNATURE_HEADER",
    "PAYMENT_EVENT_ID_HEADER",
    "derive_event_id",
    "normalize_headers",
    "parse_event",
    "parse_generation_event",
    "parse_payment_event",
]
