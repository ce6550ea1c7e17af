"""
Base Worker Classes
Retry policy, worker exceptions and the base class for RQ workers.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Iterator, Optional, TypeVar

from rq import get_current_job
from rq.job import Job

from app.core.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar('T')


class WorkerException(Exception):
    """Base exception for worker errors."""

    def __init__(self, message: str, retryable: bool = True, details: Optional[dict] = None):
        super().__init__(message)
        self.retryable = retryable
        self.details = details or {}


class NonRetryableError(WorkerException):
    """Error that should NOT be retried (e.g., asset gone)."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message, retryable=False, details=details)


class RetryableError(WorkerException):
    """Error that SHOULD be retried (e.g., timeout)."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message, retryable=True, details=details)


class RetriesExhaustedError(NonRetryableError):
    """Every attempt in the retry budget failed."""

    def __init__(self, message: str, attempts: int, last_error: Optional[Exception] = None):
        super().__init__(message, details={"attempts": attempts, "last_error": str(last_error)})
        self.attempts = attempts
        self.last_error = last_error


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff: base * multiplier**n, capped."""
    max_attempts: int = 5
    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 30.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.PERSIST_MAX_ATTEMPTS,
            base_delay=settings.PERSIST_BACKOFF_BASE_SECONDS,
            multiplier=settings.PERSIST_BACKOFF_MULTIPLIER,
            max_delay=settings.PERSIST_BACKOFF_MAX_SECONDS,
        )

    def delays(self) -> Iterator[float]:
        """Sleep before attempt 2, 3, ... max_attempts."""
        for n in range(self.max_attempts - 1):
            yield min(self.base_delay * (self.multiplier ** n), self.max_delay)


async def retry_async(
    func: Callable[[int], Awaitable[T]],
    policy: RetryPolicy,
    on_attempt: Optional[Callable[[int], None]] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    label: str = "task",
) -> T:
    """
    Call `func(attempt)` until it succeeds, raises a non-retryable error, or
    the budget runs out. Only WorkerException(retryable=True) is retried;
    anything else propagates immediately.
    """
    delays = policy.delays()
    last_error: Optional[Exception] = None

    for attempt in range(1, policy.max_attempts + 1):
        if on_attempt is not None:
            on_attempt(attempt)
        try:
            return await func(attempt)

        except WorkerException as e:
            if not e.retryable:
                logger.error(f"[Non-Retryable] {label} attempt {attempt}: {e}")
                raise
            last_error = e

            delay = next(delays, None)
            if delay is None:
                break
            logger.warning(
                f"[Retry {attempt}/{policy.max_attempts}] {label} failed: {e}. "
                f"Retrying in {delay:.1f}s..."
            )
            await sleep(delay)

    logger.error(f"[Failed] {label} exhausted all {policy.max_attempts} attempts: {last_error}")
    raise RetriesExhaustedError(
        f"{label} failed after {policy.max_attempts} attempts: {last_error}",
        attempts=policy.max_attempts,
        last_error=last_error,
    )


class BaseWorker(ABC):
    """
    Abstract base class for RQ workers.

    Provides progress/status bookkeeping in the RQ job meta and timed
    start/complete/error logging.
    """

    def __init__(self):
        self.start_time: Optional[datetime] = None

    def _get_current_job(self) -> Optional[Job]:
        """Get the current RQ job context (None outside a worker)."""
        try:
            return get_current_job()
        except Exception:
            return None

    def _update_progress(self, progress: float, message: str = ""):
        job = self._get_current_job()
        if job:
            job.meta["progress"] = min(max(progress, 0), 1)
            job.meta["progress_message"] = message
            job.meta["updated_at"] = datetime.utcnow().isoformat()
            job.save_meta()

        logger.debug(f"Progress: {progress:.0%} - {message}")

    def _set_status(self, status: str, details: Optional[dict] = None):
        job = self._get_current_job()
        if job:
            job.meta["worker_status"] = status
            job.meta["status_details"] = details or {}
            job.meta["updated_at"] = datetime.utcnow().isoformat()
            job.save_meta()

    def _log_start(self, task_name: str, **context):
        self.start_time = datetime.utcnow()
        self._set_status("running")
        logger.info(f"[START] {task_name} | Context: {context}")

    def _log_complete(self, task_name: str, result_summary: str = ""):
        duration = (datetime.utcnow() - self.start_time).total_seconds() if self.start_time else 0
        self._set_status("success")
        self._update_progress(1.0, "Complete")
        logger.info(f"[COMPLETE] {task_name} | Duration: {duration:.2f}s | {result_summary}")

    def _log_error(self, task_name: str, error: Exception):
        duration = (datetime.utcnow() - self.start_time).total_seconds() if self.start_time else 0
        self._set_status("failed", {"error": str(error)})
        logger.error(f"[ERROR] {task_name} | Duration: {duration:.2f}s | Error: {error}")

    @abstractmethod
    async def execute(self, *args, **kwargs) -> Any:
        """Execute the worker task."""


__all__ = [
    "WorkerException",
    "NonRetryableError",
    "RetryableError",
    "RetriesExhaustedError",
    "RetryPolicy",
    "retry_async",
    "BaseWorker",
]
