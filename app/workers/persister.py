"""
Persist Worker
Moves a job from `persisting` to `completed` (or `failed`) by copying the
provider's transient result URL into durable storage.
"""

import logging
from typing import Any, Callable, Dict, Optional

from sqlalchemy.orm import Session

from app.core.config import Settings, settings as default_settings
from app.workers.base import BaseWorker, WorkerException

logger = logging.getLogger(__name__)


class PersistWorker(BaseWorker):
    """One job per execute(); runs inside an RQ worker process."""

    TASK_NAME = "asset_persist"

    def __init__(
        self,
        session_factory: Optional[Callable[[], Session]] = None,
        settings: Optional[Settings] = None,
        persist_service=None,
    ):
        super().__init__()
        if session_factory is None:
            from app.core.database import SessionLocal
            session_factory = SessionLocal
        self.session_factory = session_factory
        self.settings = settings or default_settings
        self._persist_service = persist_service

    @property
    def persist_service(self):
        if self._persist_service is None:
            from app.services.asset_persist import AssetPersistService
            from app.services.storage import StorageService
            self._persist_service = AssetPersistService(StorageService(self.settings), self.settings)
        return self._persist_service

    async def execute(self, job_id: str, **kwargs) -> Dict[str, Any]:
        from app.services.job_machine import JobStateMachine

        self._log_start(self.TASK_NAME, job_id=job_id)
        db = self.session_factory()

        try:
            machine = JobStateMachine(db)
            job = machine.start_persist(job_id)
            db.commit()
            if job is None:
                return {"job_id": job_id, "status": "skipped"}

            source_url = job.result_asset_url
            max_attempts = self.settings.PERSIST_MAX_ATTEMPTS
            used = job.attempts or 0

            # Budget is per job, not per run: a re-enqueued job continues where it stopped
            if used >= max_attempts:
                reason = f"Retry budget exhausted ({used}/{max_attempts} attempts) before this run"
                machine.fail(job_id, reason)
                db.commit()
                logger.error(f"[Worker] {job_id}: {reason}")
                return {"job_id": job_id, "status": "failed", "error": reason}

            def on_attempt(attempt: int):
                current = machine.record_attempt(job_id).attempts
                db.commit()
                self._update_progress((current - 1) / max_attempts, f"Attempt {current}/{max_attempts}")

            try:
                ref = await self.persist_service.persist(
                    source_url,
                    self.settings.ASSET_NAMESPACE,
                    on_attempt=on_attempt,
                    max_attempts=max_attempts - used,
                )
            except WorkerException as e:
                machine.fail(job_id, str(e))
                db.commit()
                self._log_error(self.TASK_NAME, e)
                return {"job_id": job_id, "status": "failed", "error": str(e)}

            transition = machine.complete(job_id, ref)
            db.commit()
            self._log_complete(self.TASK_NAME, f"Job {job_id} -> {transition.to_status} ({ref.key})")
            return {
                "job_id": job_id,
                "status": transition.to_status,
                "persisted_asset_ref": ref.url,
                "digest": ref.digest,
            }

        except Exception as e:
            db.rollback()
            self._log_error(self.TASK_NAME, e)
            raise
        finally:
            db.close()
