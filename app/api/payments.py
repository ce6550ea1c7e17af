"""
Payments API Routes
Checkout registration and reconciliation queries. Payment status itself
only ever changes through the gateway webhook.
"""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.api.deps import get_db
from app.schemas.payment import PaymentCreateRequest, PaymentResponse, ReconciliationResponse
from app.services.payment_machine import PaymentStateMachine

router = APIRouter()


@router.post("", response_model=PaymentResponse, status_code=status.HTTP_201_CREATED)
async def create_payment(
    request: PaymentCreateRequest,
    db: Session = Depends(get_db),
):
    """Register a checkout so gateway events can be matched to it."""
    machine = PaymentStateMachine(db)
    try:
        payment = machine.register(
            request.order_id,
            request.amount_minor_units,
            request.currency,
            provider_order_id=request.provider_order_id,
            provider_payment_id=request.provider_payment_id,
        )
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Gateway payment id already registered",
        )

    db.refresh(payment)
    return payment


@router.get("/{payment_id}", response_model=PaymentResponse)
async def get_payment(
    payment_id: str,
    db: Session = Depends(get_db),
):
    payment = PaymentStateMachine(db).get(payment_id)
    if not payment:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Payment not found")
    return payment


@router.get("/{payment_id}/reconciliation", response_model=ReconciliationResponse)
async def get_reconciliation(
    payment_id: str,
    db: Session = Depends(get_db),
):
    """Payment plus every accepted transition, oldest first."""
    machine = PaymentStateMachine(db)
    payment = machine.get(payment_id)
    if not payment:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Payment not found")
    return {"payment": payment, "records": machine.records_for(payment_id)}
