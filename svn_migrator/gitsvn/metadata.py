"""
Local git-svn metadata checks: pre-flight health, best-effort repair, and
reading the highest SVN revision present in a working directory.
"""

from __future__ import annotations
import logging
import time
from pathlib import Path
from typing import Callable, List, Optional
from git import Repo
from git.exc import GitCommandError, InvalidGitRepositoryError, NoSuchPathError
from svn_migrator.gitsvn.output import revision_from_commit_message, revision_from_svn_info
from svn_migrator.gitsvn.process_health import ProcessHealth
from svn_migrator.gitsvn.supervisor import ProcessSupervisor

log = logging.getLogger(__name__)

Notify = Callable[[str], None]


def _open(git_dir: Path) -> Optional[Repo]:
    try:
        return Repo(git_dir)
    except (InvalidGitRepositoryError, NoSuchPathError):
        return None


def has_svn_metadata(git_dir: Path) -> bool:
    return (Path(git_dir) / ".git" / "svn").is_dir()


def check_health(git_dir: Path, stale_lock_seconds: float = 600) -> bool:
    """Cheap structural check: metadata dir, svn-remote config, no abandoned locks."""
    if not has_svn_metadata(git_dir):
        return False
    repo = _open(git_dir)
    if repo is None:
        return False
    try:
        if not repo.git.config("--get", "svn-remote.svn.url").strip():
            return False
    except GitCommandError as e:
        log.warning("git-svn health check failed in %s: %s", git_dir, e.stderr or e)
        return False
    return not stale_lock_files(git_dir, stale_lock_seconds)


def stale_lock_files(git_dir: Path, older_than: float, now: float | None = None) -> List[Path]:
    now = time.time() if now is None else now
    git_meta = Path(git_dir) / ".git"
    if not git_meta.is_dir():
        return []
    candidates = list(git_meta.glob("*.lock"))
    for sub in ("refs", "svn"):
        candidates += (git_meta / sub).rglob("*.lock")
    return [p for p in candidates if now - p.stat().st_mtime > older_than]


def clean_stale_locks(git_dir: Path, health: ProcessHealth, older_than: float, notify: Notify) -> List[Path]:
    """Remove old lock files, unless a git process is still working in ``git_dir``."""
    removed = []
    for lock in stale_lock_files(git_dir, older_than):
        owners = health.git_processes_in(git_dir)
        if owners:
            notify(f"Lock {lock.name} is held by PID {owners[0]}")
            continue
        try:
            lock.unlink()
        except OSError as e:
            notify(f"Error removing lock file {lock.name}: {e}")
            continue
        removed.append(lock)
        notify(f"Removed stale lock: {lock.name}")
    return removed


def repair(git_dir: Path, supervisor: ProcessSupervisor, health: ProcessHealth, stale_lock_seconds: float,
           notify: Notify, last_revision: int = 0) -> bool:
    """
    Best-effort repair before a fetch; returns the health status afterwards.

    Every git command goes through ``supervisor`` so that its silence and
    wall-clock limits apply. The rev-map rebuild re-reads only ``last_revision``.
    """
    notify("Attempting to repair git-svn state...")
    clean_stale_locks(git_dir, health, stale_lock_seconds, notify)

    if _open(git_dir) is None:
        notify("Working directory is not a git repository, skipping repair")
        return False

    steps = [
        ("refresh index", ["git", "update-index", "-q", "--refresh"]),
        ("connectivity check", ["git", "fsck", "--connectivity-only", "--no-dangling"]),
    ]
    if last_revision > 0:
        steps.append(("rebuild git-svn rev map", ["git", "svn", "fetch", "-r", f"{last_revision}:{last_revision}"]))

    for name, cmd in steps:
        try:
            result = supervisor.run(cmd, cwd=git_dir)
        except OSError as e:
            notify(f"Repair step '{name}' could not start: {e}")
            return False
        if not result.ok:
            detail = result.terminated_reason or result.stderr_text.strip()[:200]
            notify(f"Repair step '{name}' reported: {detail}")
    return check_health(git_dir, stale_lock_seconds=stale_lock_seconds)


def last_fetched_revision(git_dir: Path) -> int:
    """Highest SVN revision committed in ``git_dir``, 0 when none can be read."""
    repo = _open(git_dir)
    if repo is None:
        return 0
    try:
        message = repo.git.log("--all", "-1", "--format=%B", "--grep=^git-svn-id:")
        revision = revision_from_commit_message(message)
        if revision is not None:
            return revision
        revision = revision_from_svn_info(repo.git.svn("info"))
        return revision or 0
    except GitCommandError as e:
        log.warning("Could not read last fetched revision in %s: %s", git_dir, (e.stderr or str(e)).strip())
        return 0
