"""
Operator Alerts
Records anything that needs a human: integrity violations, contradictory
provider events, exhausted persistence, administrative overrides.

Alerts are added to the caller's session so they commit with the
transaction that observed the problem, and are logged at ERROR/WARNING
for log-based alerting.
"""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from app.models.alert import OperatorAlert, AlertKind

logger = logging.getLogger(__name__)


class AlertService:
    """Writes OperatorAlert rows."""

    def __init__(self, db: Session):
        self.db = db

    def raise_alert(
        self,
        kind: str,
        entity_type: str,
        entity_id: Optional[str],
        message: str,
        event_id: Optional[str] = None,
        details: Optional[dict] = None,
    ) -> OperatorAlert:
        alert = OperatorAlert(
            kind=kind,
            entity_type=entity_type,
            entity_id=entity_id,
            event_id=event_id,
            message=message,
            details=details or {},
        )
        self.db.add(alert)

        log = logger.warning if kind == AlertKind.ADMIN_OVERRIDE else logger.error
        log(f"[ALERT:{kind}] {entity_type}={entity_id} event={event_id} | {message}")
        return alert

    def list_open(self, limit: int = 50):
        return (
            self.db.query(OperatorAlert)
            .filter(OperatorAlert.acknowledged.is_(False))
            .order_by(OperatorAlert.created_at.desc())
            .limit(limit)
            .all()
        )

    def acknowledge(self, alert_id: int) -> Optional[OperatorAlert]:
        alert = self.db.get(OperatorAlert, alert_id)
        if alert is None:
            return None
        alert.acknowledged = True
        self.db.commit()
        return alert
