"""
Windowed git-svn fetching.

Fetching a whole SVN history in one ``git svn fetch`` is fragile (timeouts,
memory spikes, flaky servers), so the range is walked in windows. After every
window the confirmed revision is checkpointed. A failed window keeps whatever
it replayed, the window is halved (down to a floor) and the fetch continues
from the first revision not yet present. Fatal errors stop immediately,
because a smaller window cannot fix credentials or a wrong URL.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional
from sqlalchemy.orm import Session
from svn_migrator.core.errors import (
    Classification, ErrorKind, JobCancelled, MigrationError, PreconditionError, classify_failure, classify_text,
)
from svn_migrator.core.progress import ProgressTracker
from svn_migrator.db.checkpoint import CheckpointStore
from svn_migrator.db.models import Job
from svn_migrator.gitsvn import metadata
from svn_migrator.gitsvn.commands import build_fetch_command
from svn_migrator.gitsvn.output import parse_revision_line
from svn_migrator.gitsvn.process_health import ProcessHealth
from svn_migrator.gitsvn.supervisor import ProcessResult, ProcessSupervisor

log = logging.getLogger(__name__)

RevisionProbe = Callable[[Path], int]


@dataclass(frozen=True)
class FetchLimits:
    batch_size: int = 100
    min_batch_size: int = 1
    checkpoint_every: int = 20
    low_memory_mb: int = 500
    critical_memory_mb: int = 200
    low_memory_batch: int = 5
    critical_memory_batch: int = 1
    shallow_revisions: int = 10
    sync_lookback_revisions: int = 100
    log_window_size: int = 100
    stale_lock_seconds: int = 600

    @classmethod
    def from_settings(cls, settings) -> "FetchLimits":
        return cls(
            batch_size=settings.gitsvn_batch_size,
            min_batch_size=settings.gitsvn_min_batch_size,
            checkpoint_every=settings.gitsvn_checkpoint_every,
            low_memory_mb=settings.gitsvn_low_memory_mb,
            critical_memory_mb=settings.gitsvn_critical_memory_mb,
            shallow_revisions=settings.shallow_revisions,
            sync_lookback_revisions=settings.sync_lookback_revisions,
            log_window_size=settings.gitsvn_log_window_size,
            stale_lock_seconds=settings.gitsvn_stale_lock_seconds,
        )


@dataclass(frozen=True)
class Window:
    start: int
    end: Optional[int]  # None: up to the repository HEAD

    def __str__(self) -> str:
        return f"r{self.start}:{self.end if self.end is not None else 'HEAD'}"


@dataclass
class WindowRun:
    window: Window
    result: ProcessResult
    reached: int
    classification: Optional[Classification] = None

    @property
    def ok(self) -> bool:
        return self.result.ok

    @property
    def made_progress(self) -> bool:
        return self.reached >= self.window.start


@dataclass
class FetchOutcome:
    last_revision: int
    batch_size: int
    windows: int = 0
    failures: int = 0


class BatchFetcher:
    def __init__(self, db: Session, job: Job, store: CheckpointStore, supervisor: ProcessSupervisor,
                 tracker: ProgressTracker, health: ProcessHealth, limits: FetchLimits | None = None,
                 authors_file: Path | None = None,
                 revision_probe: RevisionProbe | None = metadata.last_fetched_revision,
                 is_cancelled: Callable[[], bool] | None = None):
        self.db = db
        self.job = job
        self.store = store
        self.supervisor = supervisor
        self.tracker = tracker
        self.health = health
        self.limits = limits or FetchLimits()
        self.authors_file = authors_file
        self.revision_probe = revision_probe
        self.is_cancelled = is_cancelled or (lambda: False)

    def _note(self, message: str) -> None:
        log.info(message)
        self.job.append_output(message)

    def _warn(self, message: str) -> None:
        log.warning(message)
        self.job.append_error(message)

    def fetch(self, git_dir: Path, start_revision: int, total_revisions: Optional[int]) -> FetchOutcome:
        """Advance ``git_dir`` from ``start_revision`` to ``total_revisions`` (HEAD when None)."""
        floor = max(1, self.limits.min_batch_size)
        size = max(floor, self.limits.batch_size)
        current = max(1, start_revision)
        outcome = FetchOutcome(last_revision=self.store.last_fetched_revision, batch_size=size)
        self.tracker.start(current, total_revisions)
        self._note(f"Fetching from r{current} to {total_revisions or 'HEAD'} in windows of {size}")

        while total_revisions is None or current <= total_revisions:
            self._check_cancelled()
            self._preflight(git_dir)
            size = self._apply_memory_pressure(size, floor)

            end = None if total_revisions is None else min(current + size - 1, total_revisions)
            window = Window(current, end)
            run = self._run_window(git_dir, window)
            outcome.windows += 1

            if run.ok:
                scanned = window.end if window.end is not None else run.reached
                self.store.record_revision(run.reached, scanned_through=scanned)
                outcome.last_revision = max(outcome.last_revision, run.reached)
                if window.end is None:
                    break
                current = max(run.reached, window.end) + 1
                continue

            outcome.failures += 1
            classification = run.classification.resolve(run.made_progress)
            self._warn(f"Fetch of {window} failed ({classification.kind}: {classification.reason})")
            if classification.kind is ErrorKind.FATAL:
                raise MigrationError(f"git svn fetch failed for {window}: {classification.reason}", classification)

            if run.made_progress:
                self.store.record_revision(run.reached)
                outcome.last_revision = max(outcome.last_revision, run.reached)
                current = run.reached + 1
            elif size <= floor:
                reason = f"no progress at minimum batch size {size} ({classification.reason})"
                raise MigrationError(f"git svn fetch failed for {window}: {reason}",
                                     Classification(ErrorKind.FATAL, reason))

            size = self._shrink(size, floor, classification)
            outcome.batch_size = size
            self._note(f"Retrying from r{current} with batch size {size}")

        self.tracker.finish_band()
        self.db.commit()
        return outcome

    def fetch_shallow(self, git_dir: Path, total_revisions: Optional[int], resume_from: int = 0) -> FetchOutcome:
        """Fetch only the most recent tail of revisions, in exactly one window."""
        if not total_revisions:
            raise PreconditionError("Latest SVN revision unknown; a shallow fetch needs the head revision")
        start = max(1, total_revisions - self.limits.shallow_revisions + 1, resume_from)
        if start > total_revisions:
            self._note(f"Shallow tail already fetched through r{total_revisions}")
            self.tracker.finish_band()
            self.db.commit()
            return FetchOutcome(last_revision=self.store.last_fetched_revision, batch_size=0)
        window = Window(start, total_revisions)
        self.tracker.start(start, total_revisions)
        self._note(f"Shallow fetch of the latest {self.limits.shallow_revisions} revisions ({window})")

        run = self._run_window(git_dir, window)
        if not run.ok:
            classification = run.classification.resolve(run.made_progress)
            if run.made_progress:
                self.store.record_revision(run.reached)
            raise MigrationError(f"git svn fetch failed for {window}: {classification.reason}", classification)

        self.store.record_revision(run.reached, scanned_through=total_revisions)
        self.tracker.finish_band()
        self.db.commit()
        return FetchOutcome(last_revision=run.reached, batch_size=total_revisions - start + 1, windows=1)

    @staticmethod
    def _shrink(size: int, floor: int, classification: Classification) -> int:
        new_size = size // 2
        if classification.suggested_batch_size is not None:
            new_size = min(new_size, classification.suggested_batch_size)
        return max(floor, new_size)

    def _check_cancelled(self) -> None:
        if self.is_cancelled():
            self._note("Cancellation requested, stopping at checkpoint boundary")
            raise JobCancelled(f"Job {self.job.id} was cancelled")

    def _preflight(self, git_dir: Path) -> None:
        if not (metadata.has_svn_metadata(git_dir) or self.store.last_fetched_revision > 0):
            return
        if metadata.check_health(git_dir, stale_lock_seconds=self.limits.stale_lock_seconds):
            return
        self._warn("git-svn is not healthy, attempting repair...")
        healthy = metadata.repair(git_dir, self.supervisor, self.health, self.limits.stale_lock_seconds,
                                  self._note, last_revision=self.store.last_fetched_revision)
        if not healthy:
            self._warn("git-svn repair did not restore a healthy state, continuing anyway")

    def _apply_memory_pressure(self, size: int, floor: int) -> int:
        available = self.health.available_memory_mb()
        if available is None:
            return size
        if available < self.limits.critical_memory_mb:
            reduced = max(floor, min(size, self.limits.critical_memory_batch))
            self._warn(f"Critical memory: {available}MB available, using batch size {reduced}")
            return reduced
        if available < self.limits.low_memory_mb:
            reduced = max(floor, min(size, self.limits.low_memory_batch))
            self._note(f"Low memory: {available}MB available, using batch size {reduced}")
            return reduced
        return size

    def _run_window(self, git_dir: Path, window: Window) -> WindowRun:
        cmd = build_fetch_command(window.start, window.end, self.authors_file, self.limits.log_window_size)
        self._note(f"Executing: {' '.join(cmd)}")
        highest = 0
        checkpointed = self.store.last_fetched_revision

        def on_stdout(line: str) -> None:
            nonlocal highest, checkpointed
            self.job.append_output(f"git-svn: {line}")
            event = parse_revision_line(line)
            if event is None or event.revision <= highest:
                return
            highest = event.revision
            published = self.tracker.observe(event.revision)
            if highest - checkpointed >= self.limits.checkpoint_every:
                self.store.record_revision(highest)
                checkpointed = highest
            elif published is not None:
                self.db.commit()

        def on_stderr(line: str) -> None:
            self.job.append_output(f"git-svn stderr: {line}")
            hit = classify_text(line)
            if hit.kind is ErrorKind.FATAL:
                self.job.append_error(f"Fatal error: {line}")
            elif hit.kind is ErrorKind.TRANSIENT:
                self.job.append_error(f"Network error detected: {line}")

        try:
            result = self.supervisor.run(cmd, cwd=git_dir, on_stdout=on_stdout, on_stderr=on_stderr)
        except OSError as e:
            raise MigrationError(f"Could not start git-svn: {e}", Classification(ErrorKind.FATAL, str(e)))

        reached = highest
        if self.revision_probe is not None:
            reached = max(reached, self.revision_probe(git_dir))

        classification = None
        if not result.ok:
            classification = classify_failure(result.stderr_text, result.returncode)
            if result.terminated_reason and classification.kind is ErrorKind.UNKNOWN:
                classification = Classification(ErrorKind.TRANSIENT, f"terminated by supervisor ({result.terminated_reason})")
        return WindowRun(window=window, result=result, reached=reached, classification=classification)
