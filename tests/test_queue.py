from datetime import datetime, timedelta
from unittest.mock import MagicMock, patch

from app.core.redis import Queues
from app.models.webhook import ProcessedEvent
from app.workers.queue import QueueManager
from app.workers.tasks import (
    PRUNE_INTERVAL,
    run_asset_persist_task,
    run_idempotency_prune,
    run_stalled_job_sweep,
)


@patch("app.workers.queue.Queue")
def test_enqueue_persist_targets_persistence_queue(queue_cls):
    manager = QueueManager(redis=MagicMock())
    manager.enqueue_persist("job_abc")

    assert queue_cls.call_args.kwargs["name"] == Queues.PERSISTENCE
    queue = queue_cls.return_value
    args, kwargs = queue.enqueue.call_args
    assert args == (run_asset_persist_task,)
    assert kwargs["args"] == ("job_abc",)
    assert kwargs["meta"]["job_id"] == "job_abc"


@patch("app.workers.queue.Queue")
def test_sweep_can_be_scheduled(queue_cls):
    manager = QueueManager(redis=MagicMock())
    manager.enqueue_stalled_sweep(delay=timedelta(minutes=5))

    queue = queue_cls.return_value
    args, _ = queue.enqueue_in.call_args
    assert args == (timedelta(minutes=5), run_stalled_job_sweep)
    assert queue_cls.call_args.kwargs["name"] == Queues.MAINTENANCE


@patch("app.workers.queue.Queue")
def test_prune_runs_now_or_later(queue_cls):
    manager = QueueManager(redis=MagicMock())
    queue = queue_cls.return_value

    manager.enqueue_idempotency_prune()
    assert queue.enqueue.call_args.args == (run_idempotency_prune,)

    manager.enqueue_idempotency_prune(delay=PRUNE_INTERVAL)
    assert queue.enqueue_in.call_args.args == (PRUNE_INTERVAL, run_idempotency_prune)


@patch("app.workers.queue.Queue")
def test_queues_are_cached(queue_cls):
    manager = QueueManager(redis=MagicMock())
    manager.get_queue(Queues.PERSISTENCE)
    manager.get_queue(Queues.PERSISTENCE)
    assert queue_cls.call_count == 1


@patch("app.workers.queue.Queue")
def test_queue_stats_cover_both_queues(queue_cls):
    queue = queue_cls.return_value
    queue.__len__.return_value = 3
    queue.failed_job_registry.count = 1

    stats = QueueManager(redis=MagicMock()).get_queue_stats()

    assert set(stats) == {Queues.PERSISTENCE, Queues.MAINTENANCE}
    assert stats[Queues.PERSISTENCE]["queued"] == 3
    assert stats[Queues.PERSISTENCE]["failed"] == 1


def test_prune_task_drops_old_keys_and_reschedules(session_factory):
    db = session_factory()
    try:
        db.add(ProcessedEvent(key="generation:old", recorded_at=datetime.utcnow() - timedelta(days=90)))
        db.add(ProcessedEvent(key="generation:new", recorded_at=datetime.utcnow()))
        db.commit()
    finally:
        db.close()

    manager = MagicMock()
    with patch("app.core.database.SessionLocal", session_factory), \
            patch("app.workers.queue.get_queue_manager", return_value=manager):
        removed = run_idempotency_prune()

    assert removed == 1
    manager.enqueue_idempotency_prune.assert_called_once_with(delay=PRUNE_INTERVAL)
