"""Shared fixtures: isolated SQLite database, test settings, signed payloads."""

import json
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("USE_LOCAL_STORAGE", "true")

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from app.core.config import Settings  # noqa: E402
from app.core.database import Base, enable_sqlite_savepoints  # noqa: E402
from app.models import (  # noqa: E402,F401
    Job, Payment, ReconciliationRecord, WebhookEvent, ProcessedEvent, OperatorAlert
)
from app.services.signatures import sign  # noqa: E402

GENERATION_SECRET = "gen-test-secret"
PAYMENT_SECRET = "pay-test-secret"
ADMIN_TOKEN = "admin-test-token"


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'test.db'}",
        connect_args={"check_same_thread": False},
    )
    enable_sqlite_savepoints(engine)
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        DATABASE_URL="sqlite://",
        GENERATION_WEBHOOK_SECRET=GENERATION_SECRET,
        PAYMENT_WEBHOOK_SECRET=PAYMENT_SECRET,
        ADMIN_API_TOKEN=ADMIN_TOKEN,
        USE_GCS=False,
        USE_LOCAL_STORAGE=True,
        LOCAL_STORAGE_PATH=str(tmp_path / "storage"),
        ASSET_MAX_BYTES=1024 * 1024,
        ASSET_FETCH_TIMEOUT_SECONDS=5.0,
    )


@pytest.fixture
def generation_delivery():
    """Build (raw_body, headers) for a signed generation-provider webhook."""

    def _build(event_type, provider_job_id, event_id="evt_1", url=None, error=None,
               secret=GENERATION_SECRET):
        payload = {"id": provider_job_id, "status": event_type.split(".")[-1]}
        if url is not None:
            payload["downloads"] = [{"url": url, "expires_at": "2030-01-01T00:00:00Z"}]
        if error is not None:
            payload["error"] = {"code": "generation_failed", "message": error}
        body = {"id": event_id, "type": event_type, "payload": payload}
        raw = json.dumps(body).encode("utf-8")
        return raw, {"X-Webhook-Signature": sign(raw, secret), "Content-Type": "application/json"}

    return _build


@pytest.fixture
def payment_delivery():
    """Build (raw_body, headers) for a signed payment-gateway webhook."""

    def _build(event, payment_id, event_id, amount=19900, currency="INR", order_id="order_gw_1",
               amount_refunded=None, refund=None, secret=PAYMENT_SECRET):
        entity = {
            "id": payment_id,
            "amount": amount,
            "currency": currency,
            "order_id": order_id,
            "status": event.split(".")[-1],
        }
        if amount_refunded is not None:
            entity["amount_refunded"] = amount_refunded
        payload = {"payment": {"entity": entity}}
        if refund is not None:
            refund_id, refund_amount = refund
            payload["refund"] = {"entity": {
                "id": refund_id, "payment_id": payment_id, "amount": refund_amount, "currency": currency,
            }}
        raw = json.dumps({"event": event, "payload": payload}).encode("utf-8")
        return raw, {"X-Razorpay-Signature": sign(raw, secret), "X-Razorpay-Event-Id": event_id}

    return _build
