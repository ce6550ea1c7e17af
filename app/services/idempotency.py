"""
Idempotency Store
Remembers which webhook events were already processed so redeliveries
become no-ops.

Two backends:
- SQL (default): the key is inserted in a SAVEPOINT on the caller's session
  and commits or rolls back together with the state change it guards.
- Redis: SET NX with a TTL; keys must be released with forget() when the
  guarded work fails before commit.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from redis import Redis
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.config import Settings
from app.models.webhook import ProcessedEvent

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IdempotencyResult:
    """Outcome of a check-and-insert."""
    key: str
    is_new: bool


def idempotency_key(provider: str, event_id: str) -> str:
    """Event ids are only unique per provider."""
    return f"{provider}:{event_id}"


class IdempotencyStore(ABC):
    """Atomic check-and-insert of event keys."""

    # True when record_if_new joins the caller's database transaction
    transactional: bool = False

    @abstractmethod
    def record_if_new(self, key: str) -> IdempotencyResult:
        """Insert `key`; exactly one concurrent caller gets is_new=True."""

    def forget(self, key: str) -> None:
        """Release a key whose processing did not complete."""


class SqlIdempotencyStore(IdempotencyStore):
    """Keys in the processed_events table, primary-key enforced."""

    transactional = True

    def __init__(self, db: Session):
        self.db = db

    def record_if_new(self, key: str) -> IdempotencyResult:
        if self.db.get(ProcessedEvent, key) is not None:
            return IdempotencyResult(key=key, is_new=False)

        savepoint = self.db.begin_nested()
        try:
            self.db.add(ProcessedEvent(key=key, recorded_at=datetime.utcnow()))
            self.db.flush()
        except IntegrityError:
            # Lost the race to a concurrent delivery of the same event
            savepoint.rollback()
            logger.info(f"[Idempotency] Concurrent insert lost for {key}")
            return IdempotencyResult(key=key, is_new=False)

        savepoint.commit()
        return IdempotencyResult(key=key, is_new=True)

    def forget(self, key: str) -> None:
        # Rolled back with the surrounding transaction
        pass

    def prune(self, older_than: timedelta) -> int:
        """Delete keys recorded before now - older_than. Returns rows removed."""
        cutoff = datetime.utcnow() - older_than
        removed = (
            self.db.query(ProcessedEvent)
            .filter(ProcessedEvent.recorded_at < cutoff)
            .delete(synchronize_session=False)
        )
        logger.info(f"[Idempotency] Pruned {removed} keys older than {cutoff.isoformat()}")
        return removed


class RedisIdempotencyStore(IdempotencyStore):
    """Keys as Redis strings that expire after the retention window."""

    PREFIX = "idempotency:"

    def __init__(self, redis: Redis, retention: timedelta):
        self.redis = redis
        self.ttl_seconds = int(retention.total_seconds())

    def record_if_new(self, key: str) -> IdempotencyResult:
        created = self.redis.set(self.PREFIX + key, b"1", nx=True, ex=self.ttl_seconds)
        return IdempotencyResult(key=key, is_new=bool(created))

    def forget(self, key: str) -> None:
        self.redis.delete(self.PREFIX + key)
        logger.info(f"[Idempotency] Released {key}")


def get_idempotency_store(
    db: Session,
    settings: Settings,
    redis: Optional[Redis] = None,
) -> IdempotencyStore:
    """Build the configured backend."""
    if settings.IDEMPOTENCY_BACKEND == "redis":
        if redis is None:
            from app.core.redis import get_redis
            redis = get_redis()
        return RedisIdempotencyStore(redis, timedelta(days=settings.IDEMPOTENCY_RETENTION_DAYS))
    return SqlIdempotencyStore(db)


__all__ = [
    "IdempotencyResult",
    "IdempotencyStore",
    "SqlIdempotencyStore",
    "RedisIdempotencyStore",
    "idempotency_key",
    "get_idempotency_store",
]
