import json

import pytest

from app.services.errors import MalformedPayloadError
from app.services.provider_adapters import (
    EventKind,
    derive_event_id,
    parse_generation_event,
    parse_payment_event,
)


def test_generation_completion_maps_download_url(generation_delivery):
    raw, headers = generation_delivery("image.completed", "mh_1", event_id="evt_c",
                                       url="https://cdn.example.com/a.png")
    event = parse_generation_event(raw, headers)

    assert event.kind == EventKind.JOB_COMPLETED
    assert event.event_id == "evt_c"
    assert event.provider_job_id == "mh_1"
    assert event.result_asset_url == "https://cdn.example.com/a.png"


def test_generation_event_id_falls_back_to_header_then_hash():
    body = {"type": "image.queued", "payload": {"id": "mh_2"}}
    raw = json.dumps(body).encode()

    assert parse_generation_event(raw, {"X-Webhook-Id": "hdr_1"}).event_id == "hdr_1"

    derived = parse_generation_event(raw, {}).event_id
    assert derived == derive_event_id(body)
    assert derived == parse_generation_event(raw, {}).event_id


def test_completion_without_download_is_malformed(generation_delivery):
    raw, headers = generation_delivery("image.completed", "mh_1")
    with pytest.raises(MalformedPayloadError):
        parse_generation_event(raw, headers)


def test_unknown_generation_type_is_unknown_kind(generation_delivery):
    raw, headers = generation_delivery("image.upscaled", "mh_1")
    event = parse_generation_event(raw, headers)
    assert not event.is_known


@pytest.mark.parametrize("raw", [b"not json", b"[1, 2]", b'{"type": "image.completed"}'])
def test_bad_bodies_are_malformed(raw):
    with pytest.raises(MalformedPayloadError):
        parse_generation_event(raw, {})


def test_refund_prefers_gateway_cumulative_total(payment_delivery):
    raw, headers = payment_delivery("refund.created", "pay_gw_1", "evt_r",
                                    amount_refunded=5000, refund=("rfnd_1", 3000))
    event = parse_payment_event(raw, headers)

    assert event.kind == EventKind.PAYMENT_REFUNDED
    assert event.event_id == "evt_r"
    assert event.amount_refunded_minor_units == 5000
    assert event.refund_id == "rfnd_1"
    assert event.refund_amount_minor_units == 3000


def test_refund_event_without_refund_entity_is_malformed(payment_delivery):
    raw, headers = payment_delivery("refund.processed", "pay_gw_1", "evt_r")
    with pytest.raises(MalformedPayloadError):
        parse_payment_event(raw, headers)


def test_failed_payment_carries_reason():
    body = {"event": "payment.failed", "payload": {"payment": {"entity": {
        "id": "pay_gw_9", "amount": 100, "currency": "INR", "error_description": "card declined",
    }}}}
    event = parse_payment_event(json.dumps(body).encode(), {"x-razorpay-event-id": "evt_f"})
    assert event.kind == EventKind.PAYMENT_FAILED
    assert event.failure_reason == "card declined"


def test_order_paid_is_a_capture_signal():
    body = {"event": "order.paid", "payload": {
        "payment": {"entity": {"id": "pay_gw_3", "amount": 19900, "currency": "INR",
                               "order_id": "order_gw_3", "status": "captured"}},
        "order": {"entity": {"id": "order_gw_3", "amount_paid": 19900, "status": "paid"}},
    }}
    event = parse_payment_event(json.dumps(body).encode(), {"x-razorpay-event-id": "evt_paid"})

    assert event.kind == EventKind.PAYMENT_CAPTURED
    assert event.provider_payment_id == "pay_gw_3"
    assert event.provider_order_id == "order_gw_3"
