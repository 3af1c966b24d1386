from __future__ import annotations
import logging
from datetime import datetime, timedelta
from typing import Type
from sqlalchemy import or_, select
from sqlalchemy.orm import Session
from svn_migrator.tasks.celery_app import celery_app
from svn_migrator.db.session import SessionLocal
from svn_migrator.db.models import Job, Repository
from svn_migrator.db.checkpoint import CheckpointStore
from svn_migrator.core.config import settings
from svn_migrator.core.engine import MigrationEngine
from svn_migrator.core.errors import MigrationError
from svn_migrator.core.lifecycle import request_resume
from svn_migrator.core.logging import job_context
from svn_migrator.core.progress import ProgressTracker, RedisProgressChannel
from svn_migrator.core.sync import IncrementalSyncEngine, start_incremental_sync
from svn_migrator.core.token_vault import TokenVault
from svn_migrator.core.workflow import FETCH_BAND, JobType, MigrationMethod
from svn_migrator.agents.base import MigrationContext
from svn_migrator.gitsvn.fetcher import FetchLimits
from svn_migrator.gitsvn.process_health import default_process_health
from svn_migrator.gitsvn.supervisor import ProcessSupervisor, SupervisorLimits
from svn_migrator.workspace.manager import WorkspaceManager

log = logging.getLogger(__name__)

RETRY_COUNTDOWNS = (60, 300, 600)
SYNC_INTERVAL = timedelta(hours=1)


def build_context(db: Session, job: Job, gitlab_token: str | None = None,
                  gitlab_endpoint: str | None = None) -> MigrationContext:
    repository = job.repository
    health = default_process_health()

    def on_event(level: str, message: str) -> None:
        if level in ("warning", "error"):
            job.append_error(message)
        else:
            job.append_output(message)

    channel = RedisProgressChannel(settings.redis_url)
    return MigrationContext(
        db=db,
        job=job,
        repository=repository,
        workspace=WorkspaceManager(repository_id=repository.id),
        store=CheckpointStore(db, job),
        supervisor=ProcessSupervisor(SupervisorLimits.from_settings(settings), health, on_event),
        health=health,
        tracker=ProgressTracker.from_settings(job, channel, settings, band=FETCH_BAND),
        channel=channel,
        limits=FetchLimits.from_settings(settings),
        gitlab_token=gitlab_token or settings.gitlab_token,
        gitlab_endpoint=gitlab_endpoint,
    )


def _run_job(task, engine_cls: Type[MigrationEngine], job_id: str,
             token_ref: str | None, gitlab_endpoint: str | None) -> None:
    db: Session = SessionLocal()
    vault = TokenVault() if token_ref else None
    job = None
    retrying = False
    try:
        job = db.get(Job, job_id)
        if not job:
            log.error("Job not found", extra=job_context(job_id))
            return
        if job.is_finished:
            log.warning(f"Job is {job.status}, nothing to run", extra=job_context(job_id, job.phase))
            return

        job.task_id = task.request.id
        db.commit()

        log.info("Starting workflow", extra=job_context(job_id, job.phase))
        gitlab_token = vault.resolve(token_ref) if vault else None
        engine = engine_cls(build_context(db, job, gitlab_token, gitlab_endpoint))
        engine.run()

    except MigrationError as e:
        phase = job.phase if job else None
        if e.resumable and task.request.retries < task.max_retries and job.can_resume():
            countdown = RETRY_COUNTDOWNS[min(task.request.retries, len(RETRY_COUNTDOWNS) - 1)]
            log.warning(f"Resumable failure, retrying in {countdown}s: {e}", extra=job_context(job_id, phase))
            request_resume(db, job)
            retrying = True
            raise task.retry(exc=e, countdown=countdown)
        log.error(f"Workflow failed: {e}", extra=job_context(job_id, phase))
    except Exception:
        log.exception("Workflow failed", extra=job_context(job_id, job.phase if job else None))
    finally:
        if vault and not retrying:
            vault.discard(token_ref)
        db.close()


@celery_app.task(name="run_migration_job", bind=True, max_retries=len(RETRY_COUNTDOWNS))
def run_migration_job(self, job_id: str, token_ref: str | None = None, gitlab_endpoint: str | None = None) -> None:
    _run_job(self, MigrationEngine, job_id, token_ref, gitlab_endpoint)


@celery_app.task(name="run_incremental_sync", bind=True, max_retries=len(RETRY_COUNTDOWNS))
def run_incremental_sync(self, job_id: str, token_ref: str | None = None, gitlab_endpoint: str | None = None) -> None:
    _run_job(self, IncrementalSyncEngine, job_id, token_ref, gitlab_endpoint)


@celery_app.task(name="schedule_incremental_syncs")
def schedule_incremental_syncs() -> int:
    """Start a sync for every opted-in repository not synced within the last hour."""
    db: Session = SessionLocal()
    try:
        cutoff = datetime.utcnow() - SYNC_INTERVAL
        stmt = select(Repository).where(
            Repository.enable_incremental_sync.is_(True),
            Repository.migration_method == MigrationMethod.FULL_HISTORY,
            or_(Repository.last_synced_at.is_(None), Repository.last_synced_at < cutoff),
        )
        started = 0
        for repository in db.scalars(stmt).all():
            job = start_incremental_sync(db, repository)
            if job is None:
                continue
            run_incremental_sync.delay(job.id)
            started += 1
        log.info(f"Scheduled {started} incremental syncs")
        return started
    finally:
        db.close()


def enqueue_job(job: Job, gitlab_token: str | None = None, gitlab_endpoint: str | None = None) -> None:
    """Queue ``job`` on the task matching its type; a token travels only as a vault reference."""
    task = run_incremental_sync if job.job_type is JobType.INCREMENTAL_SYNC else run_migration_job
    token_ref = TokenVault().stash(gitlab_token) if gitlab_token else None
    task.delay(job.id, token_ref=token_ref, gitlab_endpoint=gitlab_endpoint)
