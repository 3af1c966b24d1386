import logging
from pathlib import Path
from svn_migrator.agents.base import BasePhase, MigrationContext
from svn_migrator.core.errors import PreconditionError
from svn_migrator.core.workflow import JobPhase, PhaseResult
from svn_migrator.db.checkpoint import Checkpoint
from svn_migrator.db.queries import has_active_job
from svn_migrator.gitsvn.commands import build_init_command, write_authors_file

log = logging.getLogger(__name__)


def init_working_copy(ctx: MigrationContext, git_dir: Path) -> None:
    """Start from an empty directory: drop leftovers and run ``git svn init``."""
    ctx.workspace.ensure()
    # Re-check ownership right before deleting anything.
    if has_active_job(ctx.db, ctx.repository.id, exclude_job_id=ctx.job.id):
        raise PreconditionError("Another job is active for this repository; refusing to reset its working directory")
    if ctx.workspace.remove_git_dir(git_dir):
        ctx.note("Removed existing git repository directory")

    ctx.repository.local_git_path = str(git_dir)
    ctx.store.start_fresh(JobPhase.CLONING, str(git_dir))
    ctx.run_tool(build_init_command(ctx.repository, git_dir), cwd=ctx.workspace.root, what="git svn init")


class CloneSourcePhase(BasePhase):
    phase = JobPhase.CLONING

    def run(self, ctx: MigrationContext) -> PhaseResult:
        git_dir = ctx.workspace.git_dir
        ctx.note("Cloning SVN repository with git-svn...")
        init_working_copy(ctx, git_dir)
        return self._fetch(ctx, git_dir, start=1)

    def resume(self, ctx: MigrationContext, checkpoint: Checkpoint) -> PhaseResult:
        git_dir = Path(checkpoint.working_directory or ctx.git_dir)
        if not (git_dir / ".git").is_dir():
            ctx.note("Working directory has no git metadata, starting the clone over")
            return self.run(ctx)
        start = checkpoint.resume_revision
        ctx.note(f"Resuming fetch from r{start} (last fetched r{checkpoint.last_fetched_revision})")
        return self._fetch(ctx, git_dir, start=start)

    def _fetch(self, ctx: MigrationContext, git_dir: Path, start: int) -> PhaseResult:
        authors_file = write_authors_file(ctx.repository, ctx.workspace.authors_file)
        fetcher = ctx.fetcher(authors_file)
        total = ctx.job.total_revisions
        if ctx.repository.shallow:
            outcome = fetcher.fetch_shallow(git_dir, total, resume_from=start)
        else:
            outcome = fetcher.fetch(git_dir, start, total)
        return PhaseResult(self.phase, True, f"Fetched up to r{outcome.last_revision}", {
            "git_dir": str(git_dir),
            "last_revision": outcome.last_revision,
            "windows": outcome.windows,
            "failed_windows": outcome.failures,
        })
