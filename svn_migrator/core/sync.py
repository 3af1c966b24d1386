"""
Incremental sync of an already migrated repository.

Only full-history migrations can be extended: they keep git-svn metadata, so a
plain ``git svn fetch`` picks up where the last run stopped. Sync jobs are
single-flight per repository.
"""

from __future__ import annotations
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional
from git import Repo
from sqlalchemy.orm import Session
from svn_migrator.agents.impl_clone import init_working_copy
from svn_migrator.agents.impl_push import ensure_remote, push_refs, resolve_push_target
from svn_migrator.agents.impl_strategy import create_main_branch
from svn_migrator.core.engine import MigrationEngine
from svn_migrator.core.errors import Classification, ErrorKind, MigrationError, PreconditionError, classify_failure
from svn_migrator.core.workflow import JobPhase, JobType, PhaseResult
from svn_migrator.db.checkpoint import Checkpoint
from svn_migrator.db.models import Job, Repository
from svn_migrator.db.queries import has_active_job, last_completed_migration
from svn_migrator.gitsvn import metadata
from svn_migrator.gitsvn.commands import write_authors_file

log = logging.getLogger(__name__)


def start_incremental_sync(db: Session, repository: Repository) -> Optional[Job]:
    """Create a pending sync job, or return None when one is already active."""
    if has_active_job(db, repository.id, job_type=JobType.INCREMENTAL_SYNC):
        log.info(f"Sync already active for repository {repository.id}, skipping")
        return None
    parent = last_completed_migration(db, repository.id)
    job = Job(
        repository_id=repository.id,
        job_type=JobType.INCREMENTAL_SYNC,
        parent_job_id=parent.id if parent else None,
        parameters={"repository_id": repository.id, "last_synced_revision": repository.last_synced_revision},
    )
    db.add(job)
    db.commit()
    db.refresh(job)
    return job


class IncrementalSyncEngine(MigrationEngine):
    def _preconditions(self) -> None:
        if self.repository.shallow:
            raise PreconditionError(
                "Incremental sync requires a full-history migration; this repository was migrated as a snapshot"
            )
        super()._preconditions()

    def _execute(self, checkpoint: Optional[Checkpoint]) -> PhaseResult:
        git_dir = self.ctx.git_dir
        previous = self.repository.last_synced_revision or 0
        self.job.start_revision = previous + 1

        self._check_cancelled()
        self._enter(JobPhase.CLONING)
        if metadata.has_svn_metadata(git_dir):
            reached = self._fetch(git_dir, previous + 1, None)
            if reached > previous:
                self.ctx.note(f"Fetched new revisions up to r{reached}")
                self._check_cancelled()
                self._enter(JobPhase.APPLYING_STRATEGY)
                self._rebase(git_dir)
            else:
                self.ctx.note("No new revisions found")
        else:
            reached = self._reclone(git_dir)

        self._check_cancelled()
        self._enter(JobPhase.PUSHING)
        url = self._push(git_dir)

        high_water = max(reached, previous)
        self.repository.last_synced_revision = high_water
        self.repository.last_synced_at = datetime.utcnow()
        self.job.end_revision = high_water
        self.ctx.note(f"Sync completed. Latest revision: r{high_water}")
        return PhaseResult(JobPhase.PUSHING, True, f"Synced up to r{high_water}",
                           {"previous_revision": previous, "revision": high_water}, result_url=url)

    def _fetch(self, git_dir: Path, start: int, end: Optional[int]) -> int:
        authors_file = write_authors_file(self.repository, self.ctx.workspace.authors_file)
        outcome = self.ctx.fetcher(authors_file).fetch(git_dir, start, end)
        return outcome.last_revision

    def _reclone(self, git_dir: Path) -> int:
        """Rebuild a lost working copy from a bounded look-back window."""
        base = self.repository.last_synced_revision or self.repository.latest_revision
        if not base:
            raise PreconditionError("No synced revision recorded; run a full migration first")
        start = max(1, base - self.ctx.limits.sync_lookback_revisions + 1)
        self.ctx.note(f"git-svn metadata missing, re-cloning from r{start}")
        init_working_copy(self.ctx, git_dir)
        # Revisions before the look-back window are skipped, not fetched.
        self.ctx.store.record_revision(0, scanned_through=start - 1)
        reached = self._fetch(git_dir, start, self.job.total_revisions or base)
        create_main_branch(Repo(git_dir))
        return reached

    def _rebase(self, git_dir: Path) -> None:
        self.ctx.note("Rebasing local branch...")
        result = self.ctx.supervisor.run(
            ["git", "svn", "rebase"], cwd=git_dir,
            on_stdout=lambda l: self.job.append_output(f"git-svn: {l}"),
            on_stderr=lambda l: self.job.append_output(f"git-svn stderr: {l}"),
        )
        if result.ok:
            self.ctx.note("Rebase completed successfully")
            return

        self.ctx.supervisor.run(["git", "rebase", "--abort"], cwd=git_dir)
        classification = classify_failure(result.stderr_text, result.returncode)
        if classification.kind is not ErrorKind.TRANSIENT:
            classification = Classification(ErrorKind.FATAL, "rebase could not complete automatically")
        raise MigrationError("git svn rebase failed - manual intervention required", classification)

    def _push(self, git_dir: Path) -> str:
        self.ctx.note("Pushing to GitLab...")
        target = resolve_push_target(self.ctx)
        repo = Repo(git_dir)
        ensure_remote(repo, target["http_url"])
        branch = repo.active_branch.name
        self.ctx.note(f"Current branch: {branch}, commit: {repo.head.commit.hexsha[:8]}")
        push_refs(repo, target["push_url"], [branch], self.ctx.note, self.ctx.secrets)
        if repo.tags:
            push_refs(repo, target["push_url"], ["--tags"], self.ctx.note, self.ctx.secrets)
        return target["web_url"]

    def _complete(self, result: Optional[PhaseResult]) -> None:
        self._check_cancelled()
        self.job.mark_completed(result.result_url if result else None)
        self.job.resumable = False
        self.job.append_output("Incremental sync completed successfully")
        self.ctx.store.save(phase=JobPhase.COMPLETED)
        self.ctx.tracker.publish()
        log.info("Sync completed", extra=self._extra())
