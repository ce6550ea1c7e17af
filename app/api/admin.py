"""
Admin API Routes
Operator alerts, the webhook audit trail and replay of deferred deliveries.
Every route requires X-Admin-Token.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import and_, func, not_
from sqlalchemy.orm import Session

from app.api.deps import get_db, get_dispatcher, require_admin
from app.models.webhook import ProcessingOutcome, WebhookEvent
from app.schemas.admin import AlertResponse, ReplayResponse, WebhookEventResponse
from app.services.alerts import AlertService
from app.services.dispatcher import IGNORED_PREFIX, WebhookDispatcher
from app.services.errors import InvalidTransitionError, MalformedPayloadError, UnknownEntityError

router = APIRouter(dependencies=[Depends(require_admin)])


@router.get("/alerts", response_model=List[AlertResponse])
async def list_alerts(
    limit: int = 50,
    db: Session = Depends(get_db),
):
    """Unacknowledged alerts, newest first."""
    return AlertService(db).list_open(limit=limit)


@router.post("/alerts/{alert_id}/ack", response_model=AlertResponse)
async def acknowledge_alert(
    alert_id: int,
    db: Session = Depends(get_db),
):
    alert = AlertService(db).acknowledge(alert_id)
    if alert is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Alert not found")
    return alert


@router.get("/webhook-events", response_model=List[WebhookEventResponse])
async def list_webhook_events(
    outcome: Optional[str] = None,
    provider: Optional[str] = None,
    ignored: Optional[bool] = None,
    limit: int = 50,
    offset: int = 0,
    db: Session = Depends(get_db),
):
    """`ignored=true` lists applied deliveries that changed nothing; `false` excludes them."""
    query = db.query(WebhookEvent)
    if outcome:
        query = query.filter(WebhookEvent.processing_outcome == outcome)
    if ignored is not None:
        no_op = and_(
            WebhookEvent.processing_outcome == ProcessingOutcome.APPLIED,
            func.coalesce(WebhookEvent.outcome_detail, "").like(f"{IGNORED_PREFIX}%"),
        )
        query = query.filter(no_op if ignored else not_(no_op))
    if provider:
        query = query.filter(WebhookEvent.provider == provider)
    return query.order_by(WebhookEvent.id.desc()).offset(offset).limit(limit).all()


@router.post("/webhook-events/{webhook_event_id}/replay", response_model=ReplayResponse)
async def replay_webhook_event(
    webhook_event_id: int,
    dispatcher: WebhookDispatcher = Depends(get_dispatcher),
):
    """Re-route a deferred delivery once its entity exists."""
    try:
        result = dispatcher.replay(webhook_event_id)
    except UnknownEntityError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except (InvalidTransitionError, MalformedPayloadError) as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    return ReplayResponse(
        webhook_event_id=result.webhook_event_id,
        outcome=result.outcome,
        detail=result.detail,
    )
