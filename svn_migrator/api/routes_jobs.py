from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from svn_migrator.db.session import get_db
from svn_migrator.db.models import Job
from svn_migrator.core.lifecycle import create_retry, request_cancel, request_resume
from svn_migrator.schemas.jobs import JobLogsResponse, JobResponse, JobStartRequest
from svn_migrator.tasks.jobs import enqueue_job

router = APIRouter(prefix="/jobs")


def _get_job(db: Session, job_id: str) -> Job:
    job = db.get(Job, job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    return job


def _dispatch(job: Job, req: JobStartRequest) -> None:
    enqueue_job(job, gitlab_token=req.gitlab_token, gitlab_endpoint=req.gitlab_endpoint)


@router.get("/{job_id}", response_model=JobResponse)
def get_job(job_id: str, db: Session = Depends(get_db)):
    return JobResponse.model_validate(_get_job(db, job_id))


@router.get("/{job_id}/logs", response_model=JobLogsResponse)
def get_job_logs(job_id: str, db: Session = Depends(get_db)):
    job = _get_job(db, job_id)
    return JobLogsResponse(job_id=job.id, output_log=job.output_log or "", error_log=job.error_log or "")


@router.post("/{job_id}/cancel", response_model=JobResponse)
def cancel_job(job_id: str, db: Session = Depends(get_db)):
    job = _get_job(db, job_id)
    request_cancel(db, job)
    return JobResponse.model_validate(job)


@router.post("/{job_id}/resume", response_model=JobResponse)
def resume_job(job_id: str, req: JobStartRequest | None = None, db: Session = Depends(get_db)):
    job = _get_job(db, job_id)
    request_resume(db, job)
    _dispatch(job, req or JobStartRequest())
    return JobResponse.model_validate(job)


@router.post("/{job_id}/retry", response_model=JobResponse)
def retry_job(job_id: str, req: JobStartRequest | None = None, db: Session = Depends(get_db)):
    job = _get_job(db, job_id)
    retry = create_retry(db, job)
    _dispatch(retry, req or JobStartRequest())
    return JobResponse.model_validate(retry)
