"""
Operator Alert Model
Integrity violations and terminal failures kept for manual review.
"""

from datetime import datetime
from sqlalchemy import Column, String, Text, DateTime, Integer, Boolean, JSON

from app.core.database import Base


class AlertKind:
    """Alert categories."""
    INTEGRITY_VIOLATION = "integrity_violation"
    CONTRADICTION = "contradiction"
    TERMINAL_FAILURE = "terminal_failure"
    ADMIN_OVERRIDE = "admin_override"


class OperatorAlert(Base):
    """Alert raised for an operator."""

    __tablename__ = "operator_alerts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    kind = Column(String, nullable=False, index=True)
    entity_type = Column(String, nullable=False)  # job | payment
    entity_id = Column(String, nullable=True, index=True)
    event_id = Column(String, nullable=True)
    message = Column(Text, nullable=False)
    details = Column(JSON, default={})
    acknowledged = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
