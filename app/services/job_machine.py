r"""
Job State Machine
The only writer of Job rows.

    submitted -> awaiting_result -> result_ready -> persisting -> completed
         \______________\___________________________\-> failed

completed and failed are terminal. Methods flush but never commit; the
caller owns the transaction. Rows are read with SELECT ... FOR UPDATE where
the database supports it, and the `version` column turns any remaining
concurrent write into a StaleDataError at flush time.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from app.models.alert import AlertKind
from app.models.job import Job, JobStatus
from app.services.alerts import AlertService
from app.services.asset_persist import PersistedRef
from app.services.errors import (
    InvalidTransitionError,
    StateIntegrityViolation,
    UnknownEntityError,
)
from app.services.provider_adapters import EventKind, InboundEvent

logger = logging.getLogger(__name__)


@dataclass
class JobTransition:
    """Result of feeding one event or command into the machine."""
    job: Job
    from_status: str
    to_status: str
    applied: bool
    detail: str = ""
    handoff: bool = False  # caller must enqueue persistence after commit


class JobStateMachine:
    """Drives Job rows from provider events and persistence results."""

    def __init__(self, db: Session, alerts: Optional[AlertService] = None):
        self.db = db
        self.alerts = alerts or AlertService(db)

    # Lookups

    def get(self, job_id: str, for_update: bool = False) -> Optional[Job]:
        query = self.db.query(Job).filter(Job.id == job_id)
        if for_update:
            query = query.with_for_update()
        return query.first()

    def get_by_provider_job_id(self, provider_job_id: str, for_update: bool = False) -> Optional[Job]:
        query = self.db.query(Job).filter(Job.provider_job_id == provider_job_id)
        if for_update:
            query = query.with_for_update()
        return query.first()

    def _require(self, job_id: str) -> Job:
        job = self.get(job_id, for_update=True)
        if job is None:
            raise UnknownEntityError(f"Job not found: {job_id}")
        return job

    # Commands

    def submit(
        self,
        source_asset_ref: str,
        parameters: Optional[Dict[str, Any]] = None,
        provider_job_id: Optional[str] = None,
    ) -> Job:
        """Create a job. Already-acknowledged submissions start in awaiting_result."""
        if provider_job_id and self.get_by_provider_job_id(provider_job_id) is not None:
            raise InvalidTransitionError(f"Provider job id already in use: {provider_job_id}")

        job = Job(
            id=f"job_{uuid.uuid4().hex[:12]}",
            source_asset_ref=source_asset_ref,
            parameters=parameters or {},
            provider_job_id=provider_job_id,
            status=JobStatus.AWAITING_RESULT if provider_job_id else JobStatus.SUBMITTED,
            attempts=0,
        )
        self.db.add(job)
        self.db.flush()
        logger.info(f"[Job] {job.id} created ({job.status}) for {source_asset_ref}")
        return job

    def acknowledge(self, job_id: str, provider_job_id: str) -> JobTransition:
        """Provider accepted the job and told us its id."""
        job = self._require(job_id)
        previous = job.status

        if job.provider_job_id and job.provider_job_id != provider_job_id:
            raise self._violation(
                job,
                f"Provider job id is immutable: have {job.provider_job_id}, got {provider_job_id}",
            )
        other = self.get_by_provider_job_id(provider_job_id)
        if other is not None and other.id != job.id:
            raise self._violation(job, f"Provider job id {provider_job_id} belongs to {other.id}")

        job.provider_job_id = provider_job_id
        if job.status == JobStatus.SUBMITTED:
            self._move(job, JobStatus.AWAITING_RESULT)
            self.db.flush()
            return JobTransition(job, previous, job.status, applied=True)

        self.db.flush()
        return JobTransition(job, previous, job.status, applied=False,
                             detail=f"already {job.status}")

    def apply_event(self, event: InboundEvent) -> JobTransition:
        """Apply a verified, deduplicated generation-provider event."""
        if not event.provider_job_id:
            raise UnknownEntityError("Event carries no provider job id")
        job = self.get_by_provider_job_id(event.provider_job_id, for_update=True)
        if job is None:
            raise UnknownEntityError(f"No job for provider job id {event.provider_job_id}")

        previous = job.status

        if job.is_terminal:
            return self._ignore_after_terminal(job, event)

        if event.kind == EventKind.JOB_ACKNOWLEDGED:
            if job.status == JobStatus.SUBMITTED:
                self._move(job, JobStatus.AWAITING_RESULT, event.event_id)
                self.db.flush()
                return JobTransition(job, previous, job.status, applied=True)
            return JobTransition(job, previous, job.status, applied=False,
                                 detail=f"ignored: already {job.status}")

        if event.kind == EventKind.JOB_COMPLETED:
            if job.status in (JobStatus.SUBMITTED, JobStatus.AWAITING_RESULT):
                job.result_asset_url = event.result_asset_url
                self._move(job, JobStatus.RESULT_READY, event.event_id)
                # Handoff happens on entry to result_ready
                self._move(job, JobStatus.PERSISTING, event.event_id)
                self.db.flush()
                return JobTransition(job, previous, job.status, applied=True, handoff=True)
            return JobTransition(job, previous, job.status, applied=False,
                                 detail=f"ignored: result already received ({job.status})")

        if event.kind == EventKind.JOB_FAILED:
            if job.status in (JobStatus.SUBMITTED, JobStatus.AWAITING_RESULT):
                job.provider_error = event.provider_error
                job.error_message = f"Provider reported failure: {event.provider_error}"
                self._move(job, JobStatus.FAILED, event.event_id)
                job.completed_at = datetime.utcnow()
                self.db.flush()
                return JobTransition(job, previous, job.status, applied=True)

            # A result was already delivered; the failure contradicts it
            self.alerts.raise_alert(
                AlertKind.CONTRADICTION, "job", job.id,
                f"Provider failure arrived after a result was delivered (status {job.status})",
                event_id=event.event_id,
                details={"provider_error": event.provider_error},
            )
            return JobTransition(job, previous, job.status, applied=False,
                                 detail="ignored: failure after result delivered")

        return JobTransition(job, previous, job.status, applied=False,
                             detail=f"ignored: unsupported kind {event.kind}")

    def start_persist(self, job_id: str) -> Optional[Job]:
        """Worker entry point. None when the job no longer needs persisting."""
        job = self._require(job_id)
        if job.status == JobStatus.RESULT_READY:
            self._move(job, JobStatus.PERSISTING)
            self.db.flush()
        if job.status != JobStatus.PERSISTING:
            logger.info(f"[Job] {job_id} is {job.status}; nothing to persist")
            return None
        return job

    def record_attempt(self, job_id: str) -> Job:
        job = self._require(job_id)
        job.attempts = (job.attempts or 0) + 1
        self.db.flush()
        return job

    def complete(self, job_id: str, ref: PersistedRef) -> JobTransition:
        """Asset is durable: persisting -> completed."""
        job = self._require(job_id)
        previous = job.status

        if job.status != JobStatus.PERSISTING:
            logger.warning(f"[Job] {job_id} persisted but status is {job.status}; leaving as is")
            return JobTransition(job, previous, job.status, applied=False,
                                 detail=f"ignored: job is {job.status}")

        job.persisted_asset_ref = ref.url
        job.asset_digest = ref.digest
        job.asset_size_bytes = ref.size_bytes
        job.asset_content_type = ref.content_type
        job.error_message = None
        job.completed_at = datetime.utcnow()
        self._move(job, JobStatus.COMPLETED)
        self.db.flush()
        return JobTransition(job, previous, job.status, applied=True)

    def fail(self, job_id: str, reason: str) -> JobTransition:
        """Persistence gave up (terminal fetch error or retries exhausted)."""
        job = self._require(job_id)
        previous = job.status

        if job.is_terminal:
            return JobTransition(job, previous, job.status, applied=False,
                                 detail=f"ignored: job is {job.status}")

        job.error_message = reason
        job.completed_at = datetime.utcnow()
        self._move(job, JobStatus.FAILED)
        self.alerts.raise_alert(
            AlertKind.TERMINAL_FAILURE, "job", job.id,
            f"Asset persistence failed after {job.attempts} attempt(s): {reason}",
            details={"result_asset_url": job.result_asset_url, "attempts": job.attempts},
        )
        self.db.flush()
        return JobTransition(job, previous, job.status, applied=True)

    def mark_failed_administratively(self, job_id: str, reason: str, operator: str) -> JobTransition:
        """Privileged override for a stuck job. Not reachable from webhooks."""
        job = self._require(job_id)
        previous = job.status

        if job.is_terminal:
            raise InvalidTransitionError(f"Job {job_id} is already {job.status}")

        job.error_message = f"Administratively failed by {operator}: {reason}"
        job.completed_at = datetime.utcnow()
        self._move(job, JobStatus.FAILED)
        self.alerts.raise_alert(
            AlertKind.ADMIN_OVERRIDE, "job", job.id,
            f"{operator} marked job failed from {previous}: {reason}",
            details={"operator": operator, "previous_status": previous},
        )
        self.db.flush()
        return JobTransition(job, previous, job.status, applied=True)

    def requeue_stalled(self, older_than: timedelta) -> List[str]:
        """
        Jobs holding a result but not progressing since `older_than` ago.
        Returns their ids; the caller commits and re-enqueues them.
        """
        cutoff = datetime.utcnow() - older_than
        stalled = (
            self.db.query(Job)
            .filter(Job.status.in_([JobStatus.RESULT_READY, JobStatus.PERSISTING]))
            .filter(Job.updated_at < cutoff)
            .with_for_update(skip_locked=True)
            .all()
        )
        for job in stalled:
            if job.status == JobStatus.RESULT_READY:
                self._move(job, JobStatus.PERSISTING)
            job.updated_at = datetime.utcnow()
        self.db.flush()
        if stalled:
            logger.warning(f"[Job] Re-enqueueing {len(stalled)} stalled job(s)")
        return [job.id for job in stalled]

    # Internals

    def _ignore_after_terminal(self, job: Job, event: InboundEvent) -> JobTransition:
        if job.status == JobStatus.COMPLETED and event.kind == EventKind.JOB_FAILED:
            self.alerts.raise_alert(
                AlertKind.CONTRADICTION, "job", job.id,
                "Provider failure arrived after the job completed; completion kept",
                event_id=event.event_id,
                details={"provider_error": event.provider_error},
            )
        logger.info(f"[Job] {job.id} is {job.status}; ignoring {event.event_type} ({event.event_id})")
        return JobTransition(job, job.status, job.status, applied=False,
                             detail=f"ignored: job already {job.status}")

    def _violation(self, job: Job, message: str, event_id: Optional[str] = None) -> StateIntegrityViolation:
        self.alerts.raise_alert(AlertKind.INTEGRITY_VIOLATION, "job", job.id, message, event_id=event_id)
        return StateIntegrityViolation(message, entity_type="job", entity_id=job.id)

    def _move(self, job: Job, new_status: str, event_id: Optional[str] = None) -> None:
        logger.info(f"[Job] {job.id}: {job.status} -> {new_status}"
                    + (f" (event {event_id})" if event_id else ""))
        job.status = new_status
        job.updated_at = datetime.utcnow()
