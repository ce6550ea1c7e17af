r"""
Payment State Machine
The only writer of Payment rows and ReconciliationRecord rows.

    created -> authorized -> captured -> partially_refunded -> refunded
        \__________\-> failed

Payments only move forward. Anything that would move one backward, refund
more than was captured, shrink the refunded total, or refund a payment that
was never captured is a StateIntegrityViolation: nothing is applied and an
operator alert is raised. This is what stops a misrouted or stale webhook
from quietly turning a captured sale into a refund.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from app.models.alert import AlertKind
from app.models.payment import Payment, PaymentStatus, ReconciliationRecord
from app.services.alerts import AlertService
from app.services.errors import StateIntegrityViolation, UnknownEntityError
from app.services.provider_adapters import EventKind, InboundEvent

logger = logging.getLogger(__name__)


@dataclass
class PaymentTransition:
    payment: Payment
    from_status: str
    to_status: str
    applied: bool
    detail: str = ""
    record: Optional[ReconciliationRecord] = None


_TARGETS = {
    EventKind.PAYMENT_AUTHORIZED: PaymentStatus.AUTHORIZED,
    EventKind.PAYMENT_CAPTURED: PaymentStatus.CAPTURED,
    EventKind.PAYMENT_FAILED: PaymentStatus.FAILED,
}


class PaymentStateMachine:
    """Applies gateway-reported truth to Payment rows."""

    def __init__(self, db: Session, alerts: Optional[AlertService] = None):
        self.db = db
        self.alerts = alerts or AlertService(db)

    def register(
        self,
        order_id: str,
        amount_minor_units: int,
        currency: str,
        provider_order_id: Optional[str] = None,
        provider_payment_id: Optional[str] = None,
    ) -> Payment:
        """Record a checkout before the gateway has said anything."""
        if amount_minor_units <= 0:
            raise ValueError("amount_minor_units must be positive")

        payment = Payment(
            id=f"pay_{uuid.uuid4().hex[:12]}",
            order_id=order_id,
            provider_order_id=provider_order_id,
            provider_payment_id=provider_payment_id,
            amount_minor_units=amount_minor_units,
            currency=currency.upper(),
            amount_refunded_minor_units=0,
            refund_ids=[],
            status=PaymentStatus.CREATED,
        )
        self.db.add(payment)
        self.db.flush()
        logger.info(f"[Payment] {payment.id} registered for order {order_id}: "
                    f"{amount_minor_units} {payment.currency}")
        return payment

    def get(self, payment_id: str) -> Optional[Payment]:
        return self.db.query(Payment).filter(Payment.id == payment_id).first()

    def records_for(self, payment_id: str) -> List[ReconciliationRecord]:
        return (
            self.db.query(ReconciliationRecord)
            .filter(ReconciliationRecord.payment_id == payment_id)
            .order_by(ReconciliationRecord.id)
            .all()
        )

    def find_for_event(self, event: InboundEvent) -> Optional[Payment]:
        """Match by gateway payment id, falling back to gateway order id."""
        if event.provider_payment_id:
            payment = (
                self.db.query(Payment)
                .filter(Payment.provider_payment_id == event.provider_payment_id)
                .with_for_update()
                .first()
            )
            if payment is not None:
                return payment
        if event.provider_order_id:
            return (
                self.db.query(Payment)
                .filter(Payment.provider_order_id == event.provider_order_id)
                .order_by(Payment.created_at.desc())
                .with_for_update()
                .first()
            )
        return None

    def apply_event(self, event: InboundEvent) -> PaymentTransition:
        """Apply a verified, deduplicated gateway event."""
        payment = self.find_for_event(event)
        if payment is None:
            raise UnknownEntityError(
                f"No payment for gateway payment {event.provider_payment_id} / "
                f"order {event.provider_order_id}"
            )

        self._check_identity(payment, event)

        if event.kind == EventKind.PAYMENT_REFUNDED:
            return self._apply_refund(payment, event)

        target = _TARGETS.get(event.kind)
        if target is None:
            return PaymentTransition(payment, payment.status, payment.status, applied=False,
                                     detail=f"ignored: unsupported kind {event.kind}")
        return self._advance(payment, event, target)

    # Internals

    def _check_identity(self, payment: Payment, event: InboundEvent) -> None:
        if (
            payment.provider_payment_id
            and event.provider_payment_id
            and payment.provider_payment_id != event.provider_payment_id
        ):
            raise self._violation(
                payment, event,
                f"Event names gateway payment {event.provider_payment_id} but "
                f"{payment.id} is bound to {payment.provider_payment_id}",
            )
        if event.currency and event.currency.upper() != payment.currency:
            raise self._violation(
                payment, event,
                f"Currency mismatch: payment is {payment.currency}, event says {event.currency}",
            )

    def _advance(self, payment: Payment, event: InboundEvent, target: str) -> PaymentTransition:
        current = payment.status

        if current == target:
            return PaymentTransition(payment, current, current, applied=False,
                                     detail=f"ignored: already {current}")

        if target == PaymentStatus.FAILED:
            if current not in (PaymentStatus.CREATED, PaymentStatus.AUTHORIZED):
                raise self._violation(
                    payment, event, f"Failure reported for a payment that is {current}",
                )
        elif current == PaymentStatus.FAILED:
            raise self._violation(payment, event, f"Failed payment reported as {target}")
        elif PaymentStatus.RANK[target] < PaymentStatus.RANK[current]:
            raise self._violation(payment, event, f"Backward transition {current} -> {target}")

        captured_delta = 0
        if target == PaymentStatus.CAPTURED:
            if event.amount_minor_units is not None and event.amount_minor_units != payment.amount_minor_units:
                raise self._violation(
                    payment, event,
                    f"Captured amount {event.amount_minor_units} differs from "
                    f"expected {payment.amount_minor_units}",
                )
            captured_delta = payment.amount_minor_units

        if target == PaymentStatus.FAILED:
            payment.failure_reason = event.failure_reason

        self._bind(payment, event)
        record = self._transition(payment, event, target, captured_delta=captured_delta)
        return PaymentTransition(payment, current, target, applied=True, record=record)

    def _apply_refund(self, payment: Payment, event: InboundEvent) -> PaymentTransition:
        current = payment.status
        already = payment.amount_refunded_minor_units or 0
        refund_ids = list(payment.refund_ids or [])

        if current not in PaymentStatus.REFUNDABLE and current != PaymentStatus.REFUNDED:
            raise self._violation(payment, event, f"Refund reported for a payment that is {current}")

        if event.amount_refunded_minor_units is not None:
            new_total = event.amount_refunded_minor_units
        elif event.refund_id and event.refund_id in refund_ids:
            return PaymentTransition(payment, current, current, applied=False,
                                     detail=f"ignored: refund {event.refund_id} already counted")
        else:
            new_total = already + (event.refund_amount_minor_units or 0)

        if new_total > payment.amount_minor_units:
            raise self._violation(
                payment, event,
                f"Refunded total {new_total} exceeds payment amount {payment.amount_minor_units}",
            )
        if new_total < already:
            raise self._violation(
                payment, event, f"Refunded total regressed from {already} to {new_total}",
            )
        if new_total == already:
            if event.refund_id and event.refund_id not in refund_ids:
                payment.refund_ids = refund_ids + [event.refund_id]
                self.db.flush()
            return PaymentTransition(payment, current, current, applied=False,
                                     detail=f"ignored: refunded total unchanged at {already}")

        target = (
            PaymentStatus.REFUNDED
            if new_total == payment.amount_minor_units
            else PaymentStatus.PARTIALLY_REFUNDED
        )
        payment.amount_refunded_minor_units = new_total
        if event.refund_id and event.refund_id not in refund_ids:
            payment.refund_ids = refund_ids + [event.refund_id]

        self._bind(payment, event)
        record = self._transition(payment, event, target, refunded_delta=new_total - already)
        return PaymentTransition(payment, current, target, applied=True, record=record)

    def _bind(self, payment: Payment, event: InboundEvent) -> None:
        if not payment.provider_payment_id and event.provider_payment_id:
            payment.provider_payment_id = event.provider_payment_id
            logger.info(f"[Payment] {payment.id} bound to gateway payment {event.provider_payment_id}")

    def _transition(
        self,
        payment: Payment,
        event: InboundEvent,
        target: str,
        captured_delta: int = 0,
        refunded_delta: int = 0,
    ) -> ReconciliationRecord:
        previous = payment.status
        payment.status = target
        payment.last_event_id = event.event_id
        payment.updated_at = datetime.utcnow()

        record = ReconciliationRecord(
            payment_id=payment.id,
            event_id=event.event_id,
            from_status=previous,
            to_status=target,
            captured_delta_minor_units=captured_delta,
            refunded_delta_minor_units=refunded_delta,
            amount_refunded_minor_units=payment.amount_refunded_minor_units or 0,
            currency=payment.currency,
        )
        self.db.add(record)
        self.db.flush()
        logger.info(f"[Payment] {payment.id}: {previous} -> {target} (event {event.event_id}, "
                    f"refunded {payment.amount_refunded_minor_units}/{payment.amount_minor_units})")
        return record

    def _violation(self, payment: Payment, event: InboundEvent, message: str) -> StateIntegrityViolation:
        self.alerts.raise_alert(
            AlertKind.INTEGRITY_VIOLATION, "payment", payment.id, message,
            event_id=event.event_id,
            details={
                "event_type": event.event_type,
                "status": payment.status,
                "amount_minor_units": payment.amount_minor_units,
                "amount_refunded_minor_units": payment.amount_refunded_minor_units,
            },
        )
        return StateIntegrityViolation(message, entity_type="payment", entity_id=payment.id)
