from __future__ import annotations
from typing import Optional
from sqlalchemy import select, func
from sqlalchemy.orm import Session
from svn_migrator.core.workflow import ACTIVE_STATUSES, JobStatus, JobType
from svn_migrator.db.models import Job


def active_jobs(db: Session, repository_id: str, job_type: JobType | None = None,
                exclude_job_id: str | None = None) -> list[Job]:
    stmt = select(Job).where(Job.repository_id == repository_id, Job.status.in_(ACTIVE_STATUSES))
    if job_type is not None:
        stmt = stmt.where(Job.job_type == job_type)
    if exclude_job_id is not None:
        stmt = stmt.where(Job.id != exclude_job_id)
    return list(db.scalars(stmt))


def has_active_job(db: Session, repository_id: str, job_type: JobType | None = None,
                   exclude_job_id: str | None = None) -> bool:
    return bool(active_jobs(db, repository_id, job_type=job_type, exclude_job_id=exclude_job_id))


def last_completed_migration(db: Session, repository_id: str) -> Optional[Job]:
    stmt = (
        select(Job)
        .where(Job.repository_id == repository_id,
               Job.job_type == JobType.MIGRATION,
               Job.status == JobStatus.COMPLETED)
        .order_by(Job.completed_at.desc())
        .limit(1)
    )
    return db.scalars(stmt).first()


def count_jobs(db: Session, repository_id: str) -> int:
    return db.scalar(select(func.count()).select_from(Job).where(Job.repository_id == repository_id)) or 0
