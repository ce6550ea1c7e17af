"""
Job Model
Database model for generation jobs whose results arrive by webhook.
"""

from datetime import datetime
from sqlalchemy import Column, String, Text, DateTime, Integer, JSON

from app.core.database import Base


class JobStatus:
    """Job status constants."""
    SUBMITTED = "submitted"                # Created, provider has not acknowledged
    AWAITING_RESULT = "awaiting_result"    # Provider accepted the work
    RESULT_READY = "result_ready"          # Provider delivered a transient asset URL
    PERSISTING = "persisting"              # Handed to the persistence worker pool
    COMPLETED = "completed"                # Asset stored durably (terminal)
    FAILED = "failed"                      # Provider or persistence failure (terminal)

    TERMINAL = (COMPLETED, FAILED)
    ALL = (SUBMITTED, AWAITING_RESULT, RESULT_READY, PERSISTING, COMPLETED, FAILED)


class Job(Base):
    """
    Generation job.

    `persisted_asset_ref` is only ever written together with the COMPLETED
    status, and `provider_job_id` never changes once assigned.
    """

    __tablename__ = "jobs"

    id = Column(String, primary_key=True)  # job_xxxx format
    provider_job_id = Column(String, unique=True, nullable=True, index=True)

    # Request
    source_asset_ref = Column(String, nullable=False)
    parameters = Column(JSON, default={})

    status = Column(String, default=JobStatus.SUBMITTED, nullable=False, index=True)
    error_message = Column(Text, nullable=True)
    provider_error = Column(Text, nullable=True)

    # Result
    result_asset_url = Column(Text, nullable=True)
    persisted_asset_ref = Column(String, nullable=True)
    asset_digest = Column(String(64), nullable=True)
    asset_size_bytes = Column(Integer, nullable=True)
    asset_content_type = Column(String, nullable=True)
    attempts = Column(Integer, default=0, nullable=False)

    # Optimistic concurrency
    version = Column(Integer, nullable=False)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    completed_at = Column(DateTime, nullable=True)

    __mapper_args__ = {"version_id_col": version}

    @property
    def is_terminal(self) -> bool:
        return self.status in JobStatus.TERMINAL
