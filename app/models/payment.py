"""
Payment Models
Payment records driven by gateway webhooks, plus the reconciliation
ledger emitted for every accepted transition.
"""

from datetime import datetime
from sqlalchemy import Column, String, Text, DateTime, Integer, BigInteger, ForeignKey, JSON

from app.core.database import Base


class PaymentStatus:
    """Payment status constants."""
    CREATED = "created"
    AUTHORIZED = "authorized"
    CAPTURED = "captured"
    FAILED = "failed"
    PARTIALLY_REFUNDED = "partially_refunded"
    REFUNDED = "refunded"

    # Forward order; FAILED sits outside it
    RANK = {
        CREATED: 0,
        AUTHORIZED: 1,
        CAPTURED: 2,
        PARTIALLY_REFUNDED: 3,
        REFUNDED: 4,
    }
    REFUNDABLE = (CAPTURED, PARTIALLY_REFUNDED)
    TERMINAL = (FAILED, REFUNDED)


class Payment(Base):
    """Payment tracked from creation through capture and refunds."""

    __tablename__ = "payments"

    id = Column(String, primary_key=True)  # pay_xxxx format
    provider_payment_id = Column(String, unique=True, nullable=True, index=True)
    provider_order_id = Column(String, nullable=True, index=True)
    order_id = Column(String, nullable=False, index=True)

    amount_minor_units = Column(BigInteger, nullable=False)
    currency = Column(String(3), nullable=False)
    amount_refunded_minor_units = Column(BigInteger, default=0, nullable=False)

    status = Column(String, default=PaymentStatus.CREATED, nullable=False, index=True)
    refund_ids = Column(JSON, default=list)  # gateway refund ids already counted
    failure_reason = Column(Text, nullable=True)
    last_event_id = Column(String, nullable=True)

    version = Column(Integer, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __mapper_args__ = {"version_id_col": version}


class ReconciliationRecord(Base):
    """
    Accounting feed row. One per accepted payment transition; deltas are in
    minor units and only reflect what the gateway reported.
    """

    __tablename__ = "reconciliation_records"

    id = Column(Integer, primary_key=True, autoincrement=True)
    payment_id = Column(String, ForeignKey("payments.id"), nullable=False, index=True)
    event_id = Column(String, nullable=False)
    from_status = Column(String, nullable=False)
    to_status = Column(String, nullable=False)
    captured_delta_minor_units = Column(BigInteger, default=0, nullable=False)
    refunded_delta_minor_units = Column(BigInteger, default=0, nullable=False)
    amount_refunded_minor_units = Column(BigInteger, default=0, nullable=False)
    currency = Column(String(3), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
