"""
RQ Task Definitions
Defines the actual task functions that are executed by workers.
"""

import asyncio
import logging
from datetime import timedelta
from typing import Any, Dict, List

from app.core.config import settings

logger = logging.getLogger(__name__)

SWEEP_INTERVAL = timedelta(minutes=5)
PRUNE_INTERVAL = timedelta(hours=24)


def _run_async(coro):
    """Helper to run async code in sync context (for RQ)."""
    return asyncio.run(coro)


def run_asset_persist_task(job_id: str) -> Dict[str, Any]:
    """
    RQ task: copy a job's result asset into durable storage.

    Fetches with bounded retries and exponential backoff, uploads under a
    content-addressed key, then completes the job. A terminal fetch error
    or an exhausted retry budget fails the job and raises an alert.

    Args:
        job_id: Pipeline job id

    Returns:
        Dict with job results
    """
    from app.workers.persister import PersistWorker

    logger.info(f"[Task] Starting asset persistence: {job_id}")
    return _run_async(PersistWorker().execute(job_id))


def run_stalled_job_sweep(reschedule: bool = True) -> List[str]:
    """
    RQ task: re-enqueue jobs stuck in result_ready/persisting.

    Covers a lost handoff (enqueue failed after commit) and workers that died
    mid-task. Reschedules itself on the maintenance queue.
    """
    from app.core.database import SessionLocal
    from app.services.job_machine import JobStateMachine
    from app.workers.queue import get_queue_manager

    db = SessionLocal()
    try:
        job_ids = JobStateMachine(db).requeue_stalled(
            timedelta(minutes=settings.STALLED_JOB_MINUTES)
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()

    manager = get_queue_manager()
    for job_id in job_ids:
        manager.enqueue_persist(job_id)

    if reschedule:
        manager.enqueue_stalled_sweep(delay=SWEEP_INTERVAL)

    logger.info(f"[Task] Stalled-job sweep re-enqueued {len(job_ids)} job(s)")
    return job_ids


def run_idempotency_prune(reschedule: bool = True) -> int:
    """
    RQ task: drop SQL idempotency keys older than the retention window.
    Reschedules itself daily on the maintenance queue.
    """
    from app.core.database import SessionLocal
    from app.services.idempotency import SqlIdempotencyStore
    from app.workers.queue import get_queue_manager

    db = SessionLocal()
    try:
        removed = SqlIdempotencyStore(db).prune(
            timedelta(days=settings.IDEMPOTENCY_RETENTION_DAYS)
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()

    if reschedule:
        get_queue_manager().enqueue_idempotency_prune(delay=PRUNE_INTERVAL)

    logger.info(f"[Task] Pruned {removed} idempotency key(s)")
    return removed
