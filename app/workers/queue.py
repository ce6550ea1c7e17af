"""
Queue Management Utilities
Provides RQ queue wrappers for persistence and maintenance jobs.
"""

import logging
from datetime import datetime, timedelta
from typing import Dict, Optional

from rq import Queue
from rq.job import Job

from app.core.config import settings
from app.core.redis import get_redis, Queues

logger = logging.getLogger(__name__)


class QueueManager:
    """
    Manages the RQ queues used by the pipeline.

    - persistence: one RQ job per pipeline job entering `persisting`
    - maintenance: periodic sweeps (stalled jobs, idempotency pruning)

    Retries of the asset fetch happen inside the task with backoff, so no
    RQ-level Retry is configured for persistence jobs.
    """

    def __init__(self, redis=None):
        self._queues: Dict[str, Queue] = {}
        self._redis = redis

    @property
    def redis(self):
        """Lazy Redis connection."""
        if self._redis is None:
            self._redis = get_redis()
        return self._redis

    def get_queue(self, queue_name: str = Queues.PERSISTENCE) -> Queue:
        if queue_name not in self._queues:
            self._queues[queue_name] = Queue(
                name=queue_name,
                connection=self.redis,
                default_timeout=settings.JOB_TIMEOUT_PERSIST,
            )
            logger.debug(f"Created queue: {queue_name}")

        return self._queues[queue_name]

    def enqueue_persist(self, job_id: str) -> Job:
        """
        Enqueue durable persistence of a job's result asset.

        Args:
            job_id: Pipeline job id (status `persisting`)

        Returns:
            RQ Job instance
        """
        from app.workers.tasks import run_asset_persist_task

        queue = self.get_queue(Queues.PERSISTENCE)
        rq_job = queue.enqueue(
            run_asset_persist_task,
            args=(job_id,),
            job_timeout=settings.JOB_TIMEOUT_PERSIST,
            description=f"persist asset for {job_id}",
            meta={
                "type": "asset_persist",
                "job_id": job_id,
                "created_at": datetime.utcnow().isoformat(),
            },
        )

        logger.info(f"Enqueued persistence for {job_id} (rq job {rq_job.id})")
        return rq_job

    def enqueue_stalled_sweep(self, delay: Optional[timedelta] = None) -> Job:
        """Run the stalled-job sweep now, or after `delay`."""
        from app.workers.tasks import run_stalled_job_sweep

        queue = self.get_queue(Queues.MAINTENANCE)
        meta = {"type": "stalled_sweep", "created_at": datetime.utcnow().isoformat()}
        if delay is not None:
            rq_job = queue.enqueue_in(delay, run_stalled_job_sweep, meta=meta)
        else:
            rq_job = queue.enqueue(run_stalled_job_sweep, meta=meta)

        logger.info(f"Scheduled stalled-job sweep (rq job {rq_job.id}, delay {delay or 0})")
        return rq_job

    def enqueue_idempotency_prune(self, delay: Optional[timedelta] = None) -> Job:
        """Prune expired idempotency keys now, or after `delay`."""
        from app.workers.tasks import run_idempotency_prune

        queue = self.get_queue(Queues.MAINTENANCE)
        meta = {"type": "idempotency_prune", "created_at": datetime.utcnow().isoformat()}
        if delay is not None:
            rq_job = queue.enqueue_in(delay, run_idempotency_prune, meta=meta)
        else:
            rq_job = queue.enqueue(run_idempotency_prune, meta=meta)

        logger.info(f"Scheduled idempotency prune (rq job {rq_job.id}, delay {delay or 0})")
        return rq_job

    def get_queue_stats(self) -> Dict[str, Dict[str, int]]:
        stats = {}

        for name in (Queues.PERSISTENCE, Queues.MAINTENANCE):
            try:
                queue = self.get_queue(name)
                stats[name] = {
                    "queued": len(queue),
                    "started": queue.started_job_registry.count,
                    "finished": queue.finished_job_registry.count,
                    "failed": queue.failed_job_registry.count,
                    "scheduled": queue.scheduled_job_registry.count,
                }
            except Exception as e:
                stats[name] = {"error": str(e)}

        return stats


# Singleton instance
_queue_manager: Optional[QueueManager] = None


def get_queue_manager() -> QueueManager:
    """Get singleton QueueManager instance."""
    global _queue_manager
    if _queue_manager is None:
        _queue_manager = QueueManager()
    return _queue_manager


# Convenience functions
def enqueue_persist(job_id: str) -> Job:
    """Enqueue asset persistence for a job (convenience function)."""
    return get_queue_manager().enqueue_persist(job_id)

