"""
Webhook API Routes
Inbound callbacks from the generation provider and the payment gateway.

The raw request body is handed to the dispatcher untouched: signatures are
computed over the exact bytes the provider sent.
"""

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from app.api.deps import get_dispatcher
from app.models.webhook import WebhookProvider
from app.schemas.webhooks import WebhookAck
from app.services.dispatcher import DispatchResult, WebhookDispatcher

router = APIRouter()


def _respond(result: DispatchResult) -> JSONResponse:
    ack = WebhookAck(outcome=result.outcome, event_id=result.event_id, detail=result.detail)
    return JSONResponse(status_code=result.http_status, content=ack.model_dump())


async def _dispatch(provider: str, request: Request, dispatcher: WebhookDispatcher) -> JSONResponse:
    raw_body = await request.body()
    result = await run_in_threadpool(dispatcher.handle, provider, raw_body, dict(request.headers))
    return _respond(result)


@router.post("/generation", response_model=WebhookAck)
async def generation_webhook(
    request: Request,
    dispatcher: WebhookDispatcher = Depends(get_dispatcher),
):
    """Generation provider job callbacks (queued / completed / failed)."""
    return await _dispatch(WebhookProvider.GENERATION, request, dispatcher)


@router.post("/payments", response_model=WebhookAck)
async def payment_webhook(
    request: Request,
    dispatcher: WebhookDispatcher = Depends(get_dispatcher),
):
    """Payment gateway callbacks (authorized / captured / failed / refund)."""
    return await _dispatch(WebhookProvider.PAYMENT, request, dispatcher)
