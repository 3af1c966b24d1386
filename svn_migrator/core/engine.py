from __future__ import annotations
import asyncio
import logging
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional
from sqlalchemy.exc import SQLAlchemyError
from svn_migrator.agents.base import MigrationContext
from svn_migrator.agents.registry import PhaseRegistry
from svn_migrator.core.config import settings
from svn_migrator.core.errors import (
    Classification, ErrorKind, JobCancelled, MigrationError, PreconditionError, classify_exception, classify_text,
    redact,
)
from svn_migrator.core.gitlab import GitLabClient
from svn_migrator.core.logging import job_context
from svn_migrator.core.workflow import (
    JobPhase, JobStatus, PhaseResult, WORK_PHASES, PHASE_LABELS, FETCH_BAND, PUSH_PROGRESS, STRATEGY_PROGRESS,
    VALIDATED_PROGRESS,
)
from svn_migrator.db.checkpoint import Checkpoint
from svn_migrator.db.queries import has_active_job
from svn_migrator.services.validator import ValidationResult, ValidatorService

log = logging.getLogger(__name__)

# Overall progress recorded on entering each phase.
PHASE_ENTRY_PROGRESS = {
    JobPhase.CLONING: FETCH_BAND[0],
    JobPhase.APPLYING_STRATEGY: STRATEGY_PROGRESS,
    JobPhase.PUSHING: PUSH_PROGRESS,
}


class MigrationEngine:
    """
    Phase state machine for one job.

    A run either starts fresh (validation, then every phase from ``cloning``) or
    resumes the phase recorded in the checkpoint. Every failure is classified
    here and nowhere above: the job's ``resumable`` flag and terminal status are
    set from the classification, then the error propagates to the caller.
    """

    def __init__(self, ctx: MigrationContext, registry: PhaseRegistry | None = None,
                 validator_factory: Callable[..., ValidatorService] = ValidatorService):
        self.ctx = ctx
        self.db = ctx.db
        self.job = ctx.job
        self.repository = ctx.repository
        self.registry = registry or PhaseRegistry.default()
        self.validator_factory = validator_factory
        ctx.is_cancelled = self.is_cancelled

    def _extra(self) -> dict:
        return job_context(self.job.id, self.job.phase)

    def should_resume(self, checkpoint: Optional[Checkpoint]) -> bool:
        if self.job.phase is JobPhase.PENDING or checkpoint is None:
            return False
        working_directory = checkpoint.working_directory or self.repository.local_git_path
        return bool(working_directory) and Path(working_directory).is_dir()

    def run(self) -> Optional[PhaseResult]:
        checkpoint = self.ctx.store.load()
        try:
            if self.should_resume(checkpoint):
                self._resume(checkpoint)
                result = self._execute(checkpoint)
            else:
                self._start_fresh()
                result = self._execute(None)
            self._complete(result)
            return result
        except JobCancelled:
            self._cancelled()
            return None
        except Exception as e:
            self._fail(e)
            raise

    def is_cancelled(self) -> bool:
        # Cancellation is written by another session; re-read the status column only.
        self.db.commit()
        self.db.refresh(self.job, attribute_names=["status"])
        return self.job.status is JobStatus.CANCELLED

    def _check_cancelled(self) -> None:
        if self.is_cancelled():
            raise JobCancelled(f"Job {self.job.id} was cancelled")

    def _preconditions(self) -> None:
        if has_active_job(self.db, self.repository.id, exclude_job_id=self.job.id):
            raise PreconditionError(f"Another job is already active for repository {self.repository.name}")

    def _start_fresh(self) -> None:
        log.info("Starting job", extra=self._extra())
        self.job.mark_running()
        self.job.checkpoint_data = {}
        self.job.append_output(f"Starting {self.job.job_type} for {self.repository.svn_url}")
        self.db.commit()
        self._preconditions()
        self._validate()

    def _resume(self, checkpoint: Checkpoint) -> None:
        log.info("Resuming job from checkpoint", extra=self._extra())
        self.job.mark_resumed()
        self.job.append_output(
            f"Resuming from phase '{checkpoint.phase}' (last fetched r{checkpoint.last_fetched_revision})"
        )
        self.ctx.store.clear_error()
        self.db.commit()
        self._preconditions()

    def _validate(self) -> ValidationResult:
        self.job.append_output("Validating SVN repository access...")
        result = self.validator_factory(self.repository).call()
        if not result.success:
            message = redact("; ".join(result.errors), *self.ctx.secrets)
            classification = result.classification or classify_text(message).resolve(made_progress=False)
            raise MigrationError(f"Repository validation failed: {message}", classification)

        head = result.head_revision
        self.job.total_revisions = head
        self.repository.latest_revision = head
        self.job.append_output(f"SVN repository is reachable (HEAD r{head})")

        if self.ctx.gitlab_token:
            client = GitLabClient(token=self.ctx.gitlab_token,
                                  api_base=self.ctx.gitlab_endpoint or settings.gitlab_api_base)
            connection = asyncio.run(client.validate_connection())
            if not connection["success"]:
                message = ", ".join(connection["errors"])
                raise MigrationError(f"GitLab connection failed: {message}",
                                     classify_text(message).resolve(made_progress=False))
            self.job.append_output(f"Connected to GitLab as {connection['user']['username']}")

        self.ctx.tracker.advance_to(VALIDATED_PROGRESS)
        self.db.commit()
        self.ctx.tracker.publish()
        return result

    def _first_phase(self, checkpoint: Optional[Checkpoint]) -> JobPhase:
        if checkpoint is None:
            return WORK_PHASES[0]
        for candidate in (checkpoint.phase, self.job.phase):
            if candidate in [str(p) for p in WORK_PHASES]:
                return JobPhase(str(candidate))
        return WORK_PHASES[0]

    def _enter(self, phase: JobPhase) -> None:
        """Persist the phase and its checkpoint before any of its work starts."""
        self.job.set_phase(phase)
        self.ctx.store.save(phase=phase, working_directory=str(self.ctx.git_dir))
        if phase in PHASE_ENTRY_PROGRESS:
            self.ctx.tracker.advance_to(PHASE_ENTRY_PROGRESS[phase])
        self.db.commit()
        self.ctx.tracker.publish()
        log.info("Entered phase", extra=self._extra())

    def _execute(self, checkpoint: Optional[Checkpoint]) -> Optional[PhaseResult]:
        first = self._first_phase(checkpoint)
        result = None
        for phase in WORK_PHASES[WORK_PHASES.index(first):]:
            self._check_cancelled()
            self._enter(phase)
            handler = self.registry.get(phase)
            if checkpoint is not None and phase is first:
                result = handler.resume(self.ctx, checkpoint)
            else:
                result = handler.run(self.ctx)
            if not result.ok:
                raise MigrationError(result.message, Classification(ErrorKind.FATAL, result.message))
            self.job.append_output(result.message)
            self.db.commit()
        return result

    def _complete(self, result: Optional[PhaseResult]) -> None:
        self._check_cancelled()
        checkpoint = self.ctx.store.load()
        self.job.mark_completed(result.result_url if result else None)
        self.job.resumable = False
        self.repository.local_git_path = str(self.ctx.git_dir)
        if not self.repository.shallow and checkpoint is not None:
            self.repository.last_synced_revision = checkpoint.resume_revision - 1
            self.repository.last_synced_at = datetime.utcnow()
        self.job.append_output("Migration completed successfully")
        self.ctx.store.save(phase=JobPhase.COMPLETED)
        self.ctx.tracker.publish()
        log.info("Job completed", extra=self._extra())

    def _cancelled(self) -> None:
        log.info("Job cancelled", extra=self._extra())
        self.job.mark_cancelled()
        self.job.resumable = True
        self.job.append_output("Job cancelled; work up to the last checkpoint is kept")
        self.db.commit()

    def _fail(self, exc: Exception) -> None:
        if isinstance(exc, SQLAlchemyError):
            self.db.rollback()
        classification = classify_exception(exc)
        message = redact(str(exc), *self.ctx.secrets)
        log.error(f"Job failed ({classification.kind}): {message}", extra=self._extra())
        try:
            self.job.resumable = classification.resumable
            self.ctx.store.record_error(classification, message)
            if self.job.status is not JobStatus.CANCELLED:
                label = PHASE_LABELS.get(self.job.phase, str(self.job.phase))
                self.job.mark_failed(f"{label} failed ({classification.kind}): {message}")
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            log.exception("Could not record job failure", extra=self._extra())
