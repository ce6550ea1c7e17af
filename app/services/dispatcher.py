r"""
Webhook Dispatcher
Front door for provider callbacks.

    Received -> Verifying -> Deduplicating -> Routing -> Applied
                    \-> Rejected

Every delivery leaves a WebhookEvent row. The idempotency key, the state
change and the WebhookEvent row commit in one transaction, so a 2xx is only
returned once the delivery is durable; if anything fails before commit the
provider gets a 5xx and redelivers. Asset downloads are never done here:
jobs entering `persisting` are handed to the worker queue after commit.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional

from redis.exceptions import RedisError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app.core.config import Settings
from app.models.webhook import WebhookEvent, WebhookProvider, ProcessingOutcome
from app.services.alerts import AlertService
from app.services.errors import (
    InvalidTransitionError,
    MalformedPayloadError,
    StateIntegrityViolation,
    UnknownEntityError,
)
from app.services.idempotency import IdempotencyStore, get_idempotency_store, idempotency_key
from app.services.job_machine import JobStateMachine
from app.services.payment_machine import PaymentStateMachine
from app.services.provider_adapters import (
    SIGNATURE_HEADERS,
    EventKind,
    InboundEvent,
    normalize_headers,
    parse_event,
)
from app.services.signatures import verify

logger = logging.getLogger(__name__)

# Outcome stays `applied` for no-op deliveries (terminal job, same-state
# redelivery); the detail carries this prefix so they can be told apart.
IGNORED_PREFIX = "ignored:"


@dataclass
class DispatchResult:
    """What the endpoint tells the provider."""
    outcome: str
    http_status: int
    event_id: Optional[str] = None
    detail: Optional[str] = None
    entity_id: Optional[str] = None
    webhook_event_id: Optional[int] = None


class WebhookDispatcher:
    """Verifies, deduplicates and routes webhook deliveries."""

    def __init__(
        self,
        db: Session,
        settings: Settings,
        idempotency: Optional[IdempotencyStore] = None,
        handoff: Optional[Callable[[str], Any]] = None,
    ):
        self.db = db
        self.settings = settings
        self.idempotency = idempotency or get_idempotency_store(db, settings)
        self.alerts = AlertService(db)
        self.jobs = JobStateMachine(db, self.alerts)
        self.payments = PaymentStateMachine(db, self.alerts)
        self._handoff = handoff

    def secret_for(self, provider: str) -> str:
        if provider == WebhookProvider.GENERATION:
            return self.settings.GENERATION_WEBHOOK_SECRET
        return self.settings.PAYMENT_WEBHOOK_SECRET

    def handle(self, provider: str, raw_body: bytes, headers: Mapping[str, str]) -> DispatchResult:
        """Process one delivery end to end."""
        if provider not in WebhookProvider.ALL:
            raise ValueError(f"Unknown webhook provider: {provider}")

        lowered = normalize_headers(headers)

        # Verifying
        signature = lowered.get(SIGNATURE_HEADERS[provider])
        if not verify(raw_body, signature, self.secret_for(provider)):
            logger.warning(f"[Dispatcher] {provider} signature verification failed "
                           f"({len(raw_body)} bytes, header {'present' if signature else 'missing'})")
            return self._reject(provider, raw_body, 401, "signature verification failed")

        try:
            event = parse_event(provider, raw_body, lowered)
        except MalformedPayloadError as e:
            logger.warning(f"[Dispatcher] Malformed {provider} payload: {e}")
            return self._reject(provider, raw_body, 400, f"malformed payload: {e}", verified=True)

        return self._process_with_retries(event, raw_body)

    def replay(self, webhook_event_id: int) -> DispatchResult:
        """Re-route a stored deferred delivery (e.g. the payment is now registered)."""
        original = self.db.get(WebhookEvent, webhook_event_id)
        if original is None:
            raise UnknownEntityError(f"Webhook event not found: {webhook_event_id}")
        if original.processing_outcome != ProcessingOutcome.DEFERRED or not original.verified:
            raise InvalidTransitionError(
                f"Only verified deferred events can be replayed (#{webhook_event_id} is "
                f"{original.processing_outcome})"
            )
        already = (
            self.db.query(WebhookEvent)
            .filter(WebhookEvent.replay_of == webhook_event_id)
            .first()
        )
        if already is not None:
            raise InvalidTransitionError(f"Webhook event #{webhook_event_id} was already replayed")

        event = parse_event(original.provider, original.raw_payload.encode("utf-8"), {})
        event.event_id = original.event_id

        logger.info(f"[Dispatcher] Replaying deferred event #{webhook_event_id} ({event.event_id})")
        return self._process_with_retries(event, original.raw_payload.encode("utf-8"),
                                          replay_of=webhook_event_id)

    # Internals

    def _process_with_retries(
        self,
        event: InboundEvent,
        raw_body: bytes,
        replay_of: Optional[int] = None,
    ) -> DispatchResult:
        attempts = max(1, self.settings.DISPATCH_CONFLICT_RETRIES)
        for attempt in range(1, attempts + 1):
            try:
                return self._process(event, raw_body, replay_of)
            except StaleDataError as e:
                # Another delivery changed the same entity first; re-read and retry
                self.db.rollback()
                logger.warning(f"[Dispatcher] Concurrent update on {event.event_id} "
                               f"(attempt {attempt}/{attempts}): {e}")
                if attempt == attempts:
                    raise

    def _process(self, event: InboundEvent, raw_body: bytes, replay_of: Optional[int]) -> DispatchResult:
        key = idempotency_key(event.provider, event.event_id)
        recorded = False

        try:
            # Deduplicating
            if replay_of is None:
                if not self.idempotency.record_if_new(key).is_new:
                    logger.info(f"[Dispatcher] Duplicate {event.event_type} ({event.event_id}) ignored")
                    row = self._record(event, raw_body, ProcessingOutcome.DUPLICATE_IGNORED,
                                       "duplicate delivery")
                    self.db.commit()
                    return self._result(row, 200)
                recorded = True

            # Routing
            outcome, detail, entity_id, handoff_job = self._route(event)
            row = self._record(event, raw_body, outcome, detail, entity_id, replay_of)
            self.db.commit()

        except Exception:
            self.db.rollback()
            if recorded:
                self.idempotency.forget(key)
            raise

        logger.info(f"[Dispatcher] {event.provider} {event.event_type} ({event.event_id}) -> "
                    f"{outcome}: {detail}")
        if handoff_job:
            self._enqueue(handoff_job)
        return self._result(row, 200)

    def _route(self, event: InboundEvent):
        """Returns (outcome, detail, entity_id, job id to hand off or None)."""
        if not event.is_known:
            return ProcessingOutcome.DEFERRED, f"unrecognized event type {event.event_type}", None, None

        try:
            if event.kind in EventKind.JOB_KINDS:
                t = self.jobs.apply_event(event)
                return ProcessingOutcome.APPLIED, self._describe(t), t.job.id, (t.job.id if t.handoff else None)

            t = self.payments.apply_event(event)
            return ProcessingOutcome.APPLIED, self._describe(t), t.payment.id, None

        except UnknownEntityError as e:
            return ProcessingOutcome.DEFERRED, str(e), None, None
        except StateIntegrityViolation as e:
            # Alert already added to the session by the state machine
            return ProcessingOutcome.REJECTED, f"integrity violation: {e}", e.entity_id, None

    @staticmethod
    def _describe(transition) -> str:
        if transition.applied:
            return f"{transition.from_status} -> {transition.to_status}"
        detail = transition.detail or f"no change ({transition.to_status})"
        if detail.startswith(IGNORED_PREFIX):
            return detail
        return f"{IGNORED_PREFIX} {detail}"

    def _enqueue(self, job_id: str) -> None:
        handoff = self._handoff
        if handoff is None:
            from app.workers.queue import enqueue_persist
            handoff = enqueue_persist
        try:
            handoff(job_id)
        except RedisError as e:
            # Job stays in `persisting`; the stalled-job sweep re-enqueues it
            logger.error(f"[Dispatcher] Could not enqueue persistence for {job_id}: {e}")

    def _reject(self, provider: str, raw_body: bytes, status: int, detail: str,
                verified: bool = False) -> DispatchResult:
        row = WebhookEvent(
            event_id=None,
            provider=provider,
            verified=verified,
            raw_payload=raw_body.decode("utf-8", errors="replace"),
            processing_outcome=ProcessingOutcome.REJECTED,
            outcome_detail=detail,
        )
        self.db.add(row)
        self.db.commit()
        return self._result(row, status)

    def _record(
        self,
        event: InboundEvent,
        raw_body: bytes,
        outcome: str,
        detail: Optional[str],
        entity_id: Optional[str] = None,
        replay_of: Optional[int] = None,
    ) -> WebhookEvent:
        row = WebhookEvent(
            event_id=event.event_id,
            provider=event.provider,
            event_type=event.event_type,
            verified=True,
            raw_payload=raw_body.decode("utf-8", errors="replace"),
            processing_outcome=outcome,
            outcome_detail=detail,
            entity_id=entity_id,
            replay_of=replay_of,
        )
        self.db.add(row)
        self.db.flush()
        return row

    @staticmethod
    def _result(row: WebhookEvent, status: int) -> DispatchResult:
        return DispatchResult(
            outcome=row.processing_outcome,
            http_status=status,
            event_id=row.event_id,
            detail=row.outcome_detail,
            entity_id=row.entity_id,
            webhook_event_id=row.id,
        )
