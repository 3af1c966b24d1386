from __future__ import annotations
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional
from sqlalchemy.orm import Session
from svn_migrator.core.errors import MigrationError, classify_failure
from svn_migrator.core.progress import ProgressChannel, ProgressTracker
from svn_migrator.core.workflow import JobPhase, PhaseResult
from svn_migrator.db.checkpoint import Checkpoint, CheckpointStore
from svn_migrator.db.models import Job, Repository
from svn_migrator.gitsvn import metadata
from svn_migrator.gitsvn.fetcher import BatchFetcher, FetchLimits, RevisionProbe
from svn_migrator.gitsvn.process_health import ProcessHealth
from svn_migrator.gitsvn.supervisor import ProcessSupervisor
from svn_migrator.workspace.manager import WorkspaceManager

log = logging.getLogger(__name__)


@dataclass
class MigrationContext:
    """Everything a phase needs, passed explicitly instead of read from globals."""
    db: Session
    job: Job
    repository: Repository
    workspace: WorkspaceManager
    store: CheckpointStore
    supervisor: ProcessSupervisor
    health: ProcessHealth
    tracker: ProgressTracker
    channel: ProgressChannel
    limits: FetchLimits = field(default_factory=FetchLimits)
    gitlab_token: Optional[str] = None
    gitlab_endpoint: Optional[str] = None
    revision_probe: Optional[RevisionProbe] = metadata.last_fetched_revision
    is_cancelled: Callable[[], bool] = lambda: False

    @property
    def git_dir(self) -> Path:
        if self.repository.local_git_path:
            return Path(self.repository.local_git_path)
        return self.workspace.git_dir

    @property
    def secrets(self) -> tuple:
        return (self.gitlab_token, self.repository.password)

    def note(self, message: str) -> None:
        log.info(message)
        self.job.append_output(message)

    def fetcher(self, authors_file: Path | None = None) -> BatchFetcher:
        return BatchFetcher(
            db=self.db,
            job=self.job,
            store=self.store,
            supervisor=self.supervisor,
            tracker=self.tracker,
            health=self.health,
            limits=self.limits,
            authors_file=authors_file,
            revision_probe=self.revision_probe,
            is_cancelled=self.is_cancelled,
        )

    def run_tool(self, cmd: list, cwd: Path, what: str) -> None:
        """Run a short supervised command, raising a classified error on failure."""
        result = self.supervisor.run(cmd, cwd=cwd, on_stdout=lambda l: self.job.append_output(f"{what}: {l}"),
                                     on_stderr=lambda l: self.job.append_output(f"{what} stderr: {l}"))
        if not result.ok:
            classification = classify_failure(result.stderr_text, result.returncode).resolve(made_progress=False)
            raise MigrationError(f"{what} failed: {classification.reason}", classification)


class BasePhase:
    phase: JobPhase

    def run(self, ctx: MigrationContext) -> PhaseResult:
        raise NotImplementedError

    def resume(self, ctx: MigrationContext, checkpoint: Checkpoint) -> PhaseResult:
        """Re-enter this phase from a checkpoint; phases are idempotent by default."""
        return self.run(ctx)
