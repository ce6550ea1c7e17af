"""
Jobs API Routes
Job creation, status queries and the operator fail override.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from app.api.deps import get_db, get_generation_client, require_admin
from app.models.job import Job
from app.schemas.job import AdminFailRequest, JobCreateRequest, JobResponse, JobStatus
from app.services.errors import InvalidTransitionError, StateIntegrityViolation, UnknownEntityError
from app.services.generation_client import GenerationProviderClient, GenerationProviderError
from app.services.job_machine import JobStateMachine

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("", response_model=JobResponse, status_code=status.HTTP_201_CREATED)
async def create_job(
    request: JobCreateRequest,
    db: Session = Depends(get_db),
    client: GenerationProviderClient = Depends(get_generation_client),
):
    """
    Create a job. With `submit=true` the job is also sent to the generation
    provider; if that fails the job stays `submitted` and can be retried.
    """
    machine = JobStateMachine(db)
    try:
        job = machine.submit(
            request.source_asset_ref,
            parameters=request.parameters,
            provider_job_id=request.provider_job_id,
        )
    except InvalidTransitionError as e:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    db.commit()

    if request.submit and not request.provider_job_id:
        try:
            provider_job_id = await client.submit_job(request.source_asset_ref, request.parameters)
            machine.acknowledge(job.id, provider_job_id)
            db.commit()
        except GenerationProviderError as e:
            logger.warning(f"[Jobs] Submission of {job.id} failed: {e}")
        except StateIntegrityViolation as e:
            # Alert is pending in the session; keep it
            db.commit()
            logger.error(f"[Jobs] Provider returned a conflicting job id for {job.id}: {e}")

    db.refresh(job)
    return job


@router.get("/{job_id}", response_model=JobResponse)
async def get_job_status(
    job_id: str,
    db: Session = Depends(get_db),
):
    """Get job status and result."""
    job = db.query(Job).filter(Job.id == job_id).first()

    if not job:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Job not found"
        )

    return job


@router.get("", response_model=List[JobResponse])
async def list_jobs(
    job_status: Optional[JobStatus] = None,
    limit: int = 20,
    offset: int = 0,
    db: Session = Depends(get_db),
):
    """List jobs with optional status filter."""
    query = db.query(Job)

    if job_status:
        query = query.filter(Job.status == job_status.value)

    jobs = query.order_by(Job.created_at.desc()).offset(offset).limit(limit).all()

    return jobs


@router.post("/{job_id}/fail", response_model=JobResponse, dependencies=[Depends(require_admin)])
async def fail_job(
    job_id: str,
    request: AdminFailRequest,
    db: Session = Depends(get_db),
):
    """Operator override: mark a non-terminal job failed."""
    machine = JobStateMachine(db)
    try:
        transition = machine.mark_failed_administratively(job_id, request.reason, request.operator)
    except UnknownEntityError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
    except InvalidTransitionError as e:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    db.commit()
    return transition.job
