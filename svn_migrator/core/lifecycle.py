from __future__ import annotations
import logging
from sqlalchemy.orm import Session
from svn_migrator.core.workflow import JobPhase, JobStatus, JobType
from svn_migrator.db.models import Job, Repository
from svn_migrator.db.queries import has_active_job

log = logging.getLogger(__name__)


class LifecycleError(Exception):
    """An operator action that is not allowed in the job's current state."""


def create_migration_job(db: Session, repository: Repository, parameters: dict | None = None) -> Job:
    if has_active_job(db, repository.id):
        raise LifecycleError(f"Repository {repository.id} already has an active job")
    job = Job(
        repository_id=repository.id,
        job_type=JobType.MIGRATION,
        parameters=parameters or {"migration_method": str(repository.migration_method)},
    )
    db.add(job)
    db.commit()
    db.refresh(job)
    log.info("Created migration job", extra={"job_id": job.id, "phase": str(job.phase)})
    return job


def request_cancel(db: Session, job: Job) -> Job:
    """Mark an active job cancelled; the worker stops at its next checkpoint boundary."""
    if not job.is_active:
        raise LifecycleError(f"Job {job.id} is {job.status} and cannot be cancelled")
    job.mark_cancelled()
    job.append_output("Cancellation requested")
    db.commit()
    return job


def request_resume(db: Session, job: Job) -> Job:
    """Continue the same job record from its checkpoint."""
    if not job.can_resume():
        raise LifecycleError(f"Job {job.id} cannot be resumed")
    job.retry_count = (job.retry_count or 0) + 1
    job.status = JobStatus.PENDING
    job.completed_at = None
    db.commit()
    return job


def create_retry(db: Session, job: Job) -> Job:
    """Start over in a new job record that reuses the old parameters."""
    if job.is_active:
        raise LifecycleError(f"Job {job.id} is still {job.status}")
    if has_active_job(db, job.repository_id):
        raise LifecycleError(f"Repository {job.repository_id} already has an active job")
    retry = Job(
        repository_id=job.repository_id,
        job_type=job.job_type,
        parameters=dict(job.parameters or {}),
        parent_job_id=job.id,
        phase=JobPhase.PENDING,
    )
    db.add(retry)
    db.commit()
    db.refresh(retry)
    log.info(f"Created retry of job {job.id}", extra={"job_id": retry.id, "phase": str(retry.phase)})
    return retry
