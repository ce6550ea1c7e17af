# Workers package - async job processing with RQ

from app.workers.base import (
    WorkerException,
    NonRetryableError,
    RetryableError,
    RetriesExhaustedError,
    RetryPolicy,
    retry_async,
    BaseWorker
)
from app.workers.queue import (
    QueueManager,
    get_queue_manager,
    enqueue_persist
)
from app.workers.tasks import (
    run_asset_persist_task,
    run_stalled_job_sweep,
    run_idempotency_prune
)

__all__ = [
    # Base
    "WorkerException",
    "NonRetryableError",
    "RetryableError",
    "RetriesExhaustedError",
    "RetryPolicy",
    "retry_async",
    "BaseWorker",
    # Queue
    "QueueManager",
    "get_queue_manager",
    "enqueue_persist",
    # Tasks
    "run_asset_persist_task",
    "run_stalled_job_sweep",
    "run_idempotency_prune"
]
