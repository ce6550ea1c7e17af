import pytest

from app.models.alert import AlertKind, OperatorAlert
from app.models.payment import PaymentStatus
from app.models.webhook import WebhookProvider
from app.services.errors import StateIntegrityViolation, UnknownEntityError
from app.services.payment_machine import PaymentStateMachine
from app.services.provider_adapters import EventKind, InboundEvent


def payment_event(kind, event_id, payment_id="pay_gw_1", order_id="order_gw_1", **fields):
    fields.setdefault("currency", "INR")
    return InboundEvent(
        provider=WebhookProvider.PAYMENT,
        event_id=event_id,
        event_type=kind,
        kind=kind,
        provider_payment_id=payment_id,
        provider_order_id=order_id,
        **fields,
    )


def refund(event_id, total=None, refund_id=None, amount=None):
    return payment_event(
        EventKind.PAYMENT_REFUNDED, event_id,
        amount_refunded_minor_units=total, refund_id=refund_id, refund_amount_minor_units=amount,
    )


@pytest.fixture
def machine(db):
    return PaymentStateMachine(db)


@pytest.fixture
def payment(db, machine):
    payment = machine.register("order_1", 19900, "inr", provider_order_id="order_gw_1")
    db.commit()
    return payment


@pytest.fixture
def captured(db, machine, payment):
    machine.apply_event(payment_event(EventKind.PAYMENT_CAPTURED, "evt_cap", amount_minor_units=19900))
    db.commit()
    return payment


def open_alerts(db):
    db.flush()
    return db.query(OperatorAlert).filter(OperatorAlert.kind == AlertKind.INTEGRITY_VIOLATION).all()


def test_register_normalizes_currency(payment):
    assert payment.currency == "INR"
    assert payment.status == PaymentStatus.CREATED
    assert payment.amount_refunded_minor_units == 0


def test_register_rejects_non_positive_amount(machine):
    with pytest.raises(ValueError):
        machine.register("order_x", 0, "INR")


def test_authorize_then_capture_binds_gateway_payment(db, machine, payment):
    machine.apply_event(payment_event(EventKind.PAYMENT_AUTHORIZED, "evt_auth"))
    transition = machine.apply_event(payment_event(EventKind.PAYMENT_CAPTURED, "evt_cap",
                                                   amount_minor_units=19900))
    db.commit()

    assert transition.applied
    assert payment.status == PaymentStatus.CAPTURED
    assert payment.provider_payment_id == "pay_gw_1"
    records = machine.records_for(payment.id)
    assert [(r.from_status, r.to_status) for r in records] == [
        (PaymentStatus.CREATED, PaymentStatus.AUTHORIZED),
        (PaymentStatus.AUTHORIZED, PaymentStatus.CAPTURED),
    ]
    assert records[1].captured_delta_minor_units == 19900


def test_full_refund_then_over_refund_rejected(db, machine, captured):
    transition = machine.apply_event(refund("evt_r1", total=19900, refund_id="rfnd_1", amount=19900))
    db.commit()
    assert transition.to_status == PaymentStatus.REFUNDED
    assert captured.amount_refunded_minor_units == 19900

    with pytest.raises(StateIntegrityViolation):
        machine.apply_event(refund("evt_r2", total=25000, refund_id="rfnd_2", amount=5100))
    db.commit()

    assert captured.status == PaymentStatus.REFUNDED
    assert captured.amount_refunded_minor_units == 19900
    assert len(open_alerts(db)) == 1


def test_partial_refunds_accumulate_by_refund_id(db, machine, captured):
    first = machine.apply_event(refund("evt_r1", refund_id="rfnd_1", amount=5000))
    assert first.to_status == PaymentStatus.PARTIALLY_REFUNDED

    repeat = machine.apply_event(refund("evt_r1b", refund_id="rfnd_1", amount=5000))
    assert not repeat.applied

    final = machine.apply_event(refund("evt_r2", refund_id="rfnd_2", amount=14900))
    db.commit()

    assert final.to_status == PaymentStatus.REFUNDED
    assert captured.amount_refunded_minor_units == 19900
    assert captured.refund_ids == ["rfnd_1", "rfnd_2"]


def test_refund_total_never_regresses(db, machine, captured):
    machine.apply_event(refund("evt_r1", total=10000, refund_id="rfnd_1"))

    with pytest.raises(StateIntegrityViolation):
        machine.apply_event(refund("evt_stale", total=5000, refund_id="rfnd_0"))

    assert captured.amount_refunded_minor_units == 10000
    assert captured.status == PaymentStatus.PARTIALLY_REFUNDED


def test_refund_of_uncaptured_payment_rejected(machine, payment):
    with pytest.raises(StateIntegrityViolation):
        machine.apply_event(refund("evt_r", total=100, refund_id="rfnd_1"))
    assert payment.status == PaymentStatus.CREATED


def test_backward_transition_rejected(db, machine, captured):
    with pytest.raises(StateIntegrityViolation):
        machine.apply_event(payment_event(EventKind.PAYMENT_AUTHORIZED, "evt_stale_auth"))
    assert captured.status == PaymentStatus.CAPTURED
    assert len(open_alerts(db)) == 1


def test_failure_after_capture_rejected(machine, captured):
    with pytest.raises(StateIntegrityViolation):
        machine.apply_event(payment_event(EventKind.PAYMENT_FAILED, "evt_fail", failure_reason="late"))
    assert captured.status == PaymentStatus.CAPTURED


def test_failure_before_capture_recorded(db, machine, payment):
    transition = machine.apply_event(payment_event(EventKind.PAYMENT_FAILED, "evt_fail",
                                                   failure_reason="card declined"))
    assert transition.applied
    assert payment.status == PaymentStatus.FAILED
    assert payment.failure_reason == "card declined"

    with pytest.raises(StateIntegrityViolation):
        machine.apply_event(payment_event(EventKind.PAYMENT_CAPTURED, "evt_cap", amount_minor_units=19900))


def test_capture_amount_must_match(machine, payment):
    with pytest.raises(StateIntegrityViolation):
        machine.apply_event(payment_event(EventKind.PAYMENT_CAPTURED, "evt_cap", amount_minor_units=100))


def test_currency_mismatch_rejected(machine, payment):
    with pytest.raises(StateIntegrityViolation):
        machine.apply_event(payment_event(EventKind.PAYMENT_CAPTURED, "evt_cap",
                                          amount_minor_units=19900, currency="USD"))


def test_repeat_status_is_a_no_op(db, machine, captured):
    transition = machine.apply_event(payment_event(EventKind.PAYMENT_CAPTURED, "evt_cap_2",
                                                   amount_minor_units=19900))
    assert not transition.applied
    assert len(machine.records_for(captured.id)) == 1


def test_unmatched_event_raises_unknown_entity(machine):
    with pytest.raises(UnknownEntityError):
        machine.apply_event(payment_event(EventKind.PAYMENT_CAPTURED, "evt_x",
                                          payment_id="pay_gw_zz", order_id="order_gw_zz"))
