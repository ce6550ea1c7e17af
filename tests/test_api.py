import pytest
from fastapi import Depends
from httpx import ASGITransport, AsyncClient
from sqlalchemy.orm import Session

from app.api.deps import get_app_settings, get_db, get_dispatcher, get_generation_client
from app.main import app
from app.models.job import JobStatus
from app.models.payment import PaymentStatus
from app.services.dispatcher import WebhookDispatcher
from app.services.generation_client import GenerationProviderError


class FakeGenerationClient:
    def __init__(self, provider_job_id=None, error=None):
        self.provider_job_id = provider_job_id
        self.error = error
        self.calls = []

    async def submit_job(self, source_asset_url, parameters=None):
        self.calls.append((source_asset_url, parameters))
        if self.error:
            raise self.error
        return self.provider_job_id


@pytest.fixture
def handoffs():
    return []


@pytest.fixture
def generation_client():
    return FakeGenerationClient(provider_job_id="mh_77")


@pytest.fixture
async def client(session_factory, settings, handoffs, generation_client):
    def _get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    def _get_dispatcher(db: Session = Depends(get_db)):
        return WebhookDispatcher(db, settings, handoff=handoffs.append)

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_app_settings] = lambda: settings
    app.dependency_overrides[get_dispatcher] = _get_dispatcher
    app.dependency_overrides[get_generation_client] = lambda: generation_client
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


ADMIN = {"X-Admin-Token": "admin-test-token"}


@pytest.mark.anyio
async def test_job_lifecycle_over_http(client, handoffs, generation_delivery):
    response = await client.post("/api/v1/jobs", json={
        "source_asset_ref": "s3://uploads/selfie.jpg",
        "parameters": {"prompt": "studio portrait"},
        "submit": True,
    })
    assert response.status_code == 201
    job = response.json()
    assert job["status"] == JobStatus.AWAITING_RESULT
    assert job["provider_job_id"] == "mh_77"

    raw, headers = generation_delivery("image.completed", "mh_77", event_id="evt_77",
                                       url="https://cdn.provider.test/77.png")
    response = await client.post("/api/v1/webhooks/generation", content=raw, headers=headers)
    assert response.status_code == 200
    assert response.json() == {"outcome": "applied", "event_id": "evt_77",
                               "detail": "awaiting_result -> persisting"}
    assert handoffs == [job["id"]]

    response = await client.get(f"/api/v1/jobs/{job['id']}")
    assert response.json()["status"] == JobStatus.PERSISTING
    assert response.json()["result_asset_url"] == "https://cdn.provider.test/77.png"


@pytest.mark.anyio
async def test_submission_failure_leaves_job_submitted(client, generation_client):
    generation_client.error = GenerationProviderError("provider down", status_code=502)

    response = await client.post("/api/v1/jobs", json={
        "source_asset_ref": "s3://uploads/selfie.jpg", "submit": True,
    })
    assert response.status_code == 201
    assert response.json()["status"] == JobStatus.SUBMITTED
    assert response.json()["provider_job_id"] is None


@pytest.mark.anyio
async def test_tampered_webhook_gets_401(client, generation_delivery):
    raw, headers = generation_delivery("image.completed", "mh_1", url="https://cdn.provider.test/a.png")
    response = await client.post("/api/v1/webhooks/generation", content=raw + b" ", headers=headers)

    assert response.status_code == 401
    assert response.json()["outcome"] == "rejected"


@pytest.mark.anyio
async def test_payment_capture_and_reconciliation(client, payment_delivery):
    response = await client.post("/api/v1/payments", json={
        "order_id": "order_1", "amount_minor_units": 19900, "currency": "INR",
        "provider_order_id": "order_gw_1",
    })
    assert response.status_code == 201
    payment_id = response.json()["id"]

    raw, headers = payment_delivery("payment.captured", "pay_gw_1", "evt_cap")
    response = await client.post("/api/v1/webhooks/payments", content=raw, headers=headers)
    assert response.json()["outcome"] == "applied"

    raw, headers = payment_delivery("refund.processed", "pay_gw_1", "evt_ref", amount_refunded=19900,
                                    refund=("rfnd_1", 19900))
    await client.post("/api/v1/webhooks/payments", content=raw, headers=headers)

    response = await client.get(f"/api/v1/payments/{payment_id}/reconciliation")
    body = response.json()
    assert body["payment"]["status"] == PaymentStatus.REFUNDED
    assert [r["to_status"] for r in body["records"]] == [PaymentStatus.CAPTURED, PaymentStatus.REFUNDED]


@pytest.mark.anyio
async def test_admin_routes_require_token(client):
    assert (await client.get("/api/v1/admin/alerts")).status_code == 401
    assert (await client.get("/api/v1/admin/alerts", headers={"X-Admin-Token": "nope"})).status_code == 401
    assert (await client.get("/api/v1/admin/alerts", headers=ADMIN)).status_code == 200


@pytest.mark.anyio
async def test_admin_fail_and_alert_ack(client):
    response = await client.post("/api/v1/jobs", json={"source_asset_ref": "s3://uploads/a.jpg"})
    job_id = response.json()["id"]

    response = await client.post(f"/api/v1/jobs/{job_id}/fail",
                                 json={"reason": "provider lost it", "operator": "ops"}, headers=ADMIN)
    assert response.status_code == 200
    assert response.json()["status"] == JobStatus.FAILED

    again = await client.post(f"/api/v1/jobs/{job_id}/fail",
                              json={"reason": "provider lost it", "operator": "ops"}, headers=ADMIN)
    assert again.status_code == 409

    missing = await client.post("/api/v1/jobs/job_missing/fail",
                                json={"reason": "whatever", "operator": "ops"}, headers=ADMIN)
    assert missing.status_code == 404

    alerts = (await client.get("/api/v1/admin/alerts", headers=ADMIN)).json()
    assert [a["kind"] for a in alerts] == ["admin_override"]

    acked = await client.post(f"/api/v1/admin/alerts/{alerts[0]['id']}/ack", headers=ADMIN)
    assert acked.json()["acknowledged"] is True
    assert (await client.get("/api/v1/admin/alerts", headers=ADMIN)).json() == []


@pytest.mark.anyio
async def test_deferred_event_replayed_through_admin_api(client, payment_delivery):
    raw, headers = payment_delivery("payment.authorized", "pay_gw_5", "evt_early", order_id="order_gw_5")
    response = await client.post("/api/v1/webhooks/payments", content=raw, headers=headers)
    assert response.json()["outcome"] == "deferred"

    events = (await client.get("/api/v1/admin/webhook-events?outcome=deferred", headers=ADMIN)).json()
    assert len(events) == 1

    await client.post("/api/v1/payments", json={
        "order_id": "order_5", "amount_minor_units": 19900, "currency": "INR", "provider_order_id": "order_gw_5",
    })
    response = await client.post(f"/api/v1/admin/webhook-events/{events[0]['id']}/replay", headers=ADMIN)
    assert response.status_code == 200
    assert response.json()["outcome"] == "applied"

    response = await client.post(f"/api/v1/admin/webhook-events/{events[0]['id']}/replay", headers=ADMIN)
    assert response.status_code == 409


@pytest.mark.anyio
async def test_ignored_deliveries_can_be_listed_separately(client, generation_delivery):
    response = await client.post("/api/v1/jobs", json={
        "source_asset_ref": "s3://uploads/selfie.jpg", "submit": True,
    })
    assert response.json()["provider_job_id"] == "mh_77"

    for event_id in ("evt_a", "evt_b"):
        raw, headers = generation_delivery("image.completed", "mh_77", event_id=event_id,
                                           url="https://cdn.provider.test/77.png")
        await client.post("/api/v1/webhooks/generation", content=raw, headers=headers)

    ignored = (await client.get("/api/v1/admin/webhook-events?ignored=true", headers=ADMIN)).json()
    assert [e["event_id"] for e in ignored] == ["evt_b"]

    changed = (await client.get("/api/v1/admin/webhook-events?ignored=false", headers=ADMIN)).json()
    assert [e["event_id"] for e in changed] == ["evt_a"]


@pytest.mark.anyio
async def test_unknown_job_is_404(client):
    response = await client.get("/api/v1/jobs/job_nope")
    assert response.status_code == 404

