"""
Checkpoint persistence for migration jobs.

The checkpoint lives inside ``Job.checkpoint_data`` and is the single record of
how much work is durably done. ``last_fetched_revision`` only ever moves forward
and is only written for revisions git-svn has already committed locally, so it
may under-report the working directory but never over-report it.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Any, Dict, Optional
from sqlalchemy.orm import Session
from svn_migrator.core.errors import Classification
from svn_migrator.core.workflow import JobPhase
from svn_migrator.db.models import Job

log = logging.getLogger(__name__)


@dataclass
class Checkpoint:
    phase: str
    working_directory: Optional[str] = None
    last_fetched_revision: int = 0
    scanned_through_revision: int = 0
    timestamp: Optional[str] = None
    repository_snapshot: Optional[Dict[str, Any]] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    error: Optional[Dict[str, Any]] = None

    @property
    def resume_revision(self) -> int:
        """First revision not yet covered by a finished fetch."""
        return max(self.last_fetched_revision, self.scanned_through_revision) + 1

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Checkpoint":
        return cls(
            phase=data.get("phase") or str(JobPhase.PENDING),
            working_directory=data.get("working_directory"),
            last_fetched_revision=int(data.get("last_fetched_revision") or 0),
            scanned_through_revision=int(data.get("scanned_through_revision") or 0),
            timestamp=data.get("timestamp"),
            repository_snapshot=data.get("repository_snapshot"),
            metadata=dict(data.get("metadata") or {}),
            error=data.get("error"),
        )


class CheckpointStore:
    def __init__(self, db: Session, job: Job):
        self.db = db
        self.job = job

    def load(self) -> Optional[Checkpoint]:
        data = self.job.checkpoint_data or {}
        if not data.get("timestamp"):
            return None
        return Checkpoint.from_dict(data)

    def _write(self, checkpoint: Checkpoint) -> Checkpoint:
        checkpoint.timestamp = datetime.utcnow().isoformat()
        # JSON columns only detect reassignment, never in-place mutation.
        self.job.checkpoint_data = checkpoint.to_dict()
        self.db.commit()
        return checkpoint

    def _current(self) -> Checkpoint:
        return self.load() or Checkpoint(
            phase=str(self.job.phase),
            repository_snapshot=self.job.repository.config_snapshot(),
        )

    def save(self, phase: JobPhase | None = None, working_directory: str | None = None,
             **metadata: Any) -> Checkpoint:
        checkpoint = self._current()
        if phase is not None:
            checkpoint.phase = str(phase)
        if working_directory is not None:
            checkpoint.working_directory = working_directory
        checkpoint.repository_snapshot = self.job.repository.config_snapshot()
        checkpoint.metadata.update(metadata)
        return self._write(checkpoint)

    def start_fresh(self, phase: JobPhase, working_directory: str) -> Checkpoint:
        checkpoint = Checkpoint(
            phase=str(phase),
            working_directory=working_directory,
            repository_snapshot=self.job.repository.config_snapshot(),
        )
        return self._write(checkpoint)

    def record_revision(self, revision: int, scanned_through: int | None = None) -> Checkpoint:
        """Record a revision confirmed present in the working directory."""
        checkpoint = self._current()
        if revision > checkpoint.last_fetched_revision:
            checkpoint.last_fetched_revision = revision
        if scanned_through is not None and scanned_through > checkpoint.scanned_through_revision:
            checkpoint.scanned_through_revision = scanned_through
        return self._write(checkpoint)

    def record_error(self, classification: Classification, message: str) -> Checkpoint:
        checkpoint = self._current()
        checkpoint.error = {
            "type": str(classification.kind),
            "reason": classification.reason,
            "message": message,
            "time": datetime.utcnow().isoformat(),
        }
        return self._write(checkpoint)

    def clear_error(self) -> None:
        checkpoint = self.load()
        if checkpoint is not None and checkpoint.error is not None:
            checkpoint.error = None
            self._write(checkpoint)

    @property
    def last_fetched_revision(self) -> int:
        checkpoint = self.load()
        return checkpoint.last_fetched_revision if checkpoint else 0
