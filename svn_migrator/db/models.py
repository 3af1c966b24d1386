from __future__ import annotations
import uuid
from datetime import datetime
from typing import Optional
from sqlalchemy import String, DateTime, Enum, JSON, Text, Integer, Float, Boolean, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship
from svn_migrator.db.session import Base
from svn_migrator.core.workflow import JobStatus, JobPhase, JobType, MigrationMethod, ACTIVE_STATUSES, PHASE_LABELS

LOG_SEPARATOR = "=" * 60


def _enum(enum_cls):
    return Enum(enum_cls, native_enum=False, length=30, values_callable=lambda e: [m.value for m in e])


def _stamp() -> str:
    return datetime.utcnow().strftime("%Y-%m-%d %H:%M:%S")


class Repository(Base):
    __tablename__ = "repositories"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    svn_url: Mapped[str] = mapped_column(Text, nullable=False)
    auth_type: Mapped[str] = mapped_column(String(20), default="none", nullable=False)
    username: Mapped[str | None] = mapped_column(String(255), nullable=True)
    password: Mapped[str | None] = mapped_column(Text, nullable=True)

    migration_method: Mapped[MigrationMethod] = mapped_column(_enum(MigrationMethod), default=MigrationMethod.SIMPLE, nullable=False)
    svn_structure: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    authors_mapping: Mapped[list | None] = mapped_column(JSON, nullable=True)
    ignore_patterns: Mapped[str | None] = mapped_column(Text, nullable=True)
    large_file_handling: Mapped[str] = mapped_column(String(20), default="none", nullable=False)

    gitlab_project_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    local_git_path: Mapped[str | None] = mapped_column(Text, nullable=True)
    latest_revision: Mapped[int | None] = mapped_column(Integer, nullable=True)
    last_synced_revision: Mapped[int | None] = mapped_column(Integer, nullable=True)
    last_synced_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    enable_incremental_sync: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    jobs: Mapped[list["Job"]] = relationship(back_populates="repository", cascade="all, delete-orphan")

    def _layout_path(self, key: str) -> Optional[str]:
        return (self.svn_structure or {}).get(key) or None

    @property
    def trunk_path(self) -> Optional[str]:
        return self._layout_path("trunk")

    @property
    def branches_path(self) -> Optional[str]:
        return self._layout_path("branches")

    @property
    def tags_path(self) -> Optional[str]:
        return self._layout_path("tags")

    @property
    def standard_layout(self) -> bool:
        structure = self.svn_structure or {}
        if structure.get("layout") == "standard":
            return True
        return (self.trunk_path, self.branches_path, self.tags_path) == ("trunk", "branches", "tags")

    @property
    def shallow(self) -> bool:
        return self.migration_method is MigrationMethod.SIMPLE

    def config_snapshot(self) -> dict:
        """Settings that shape git-svn invocations; a change invalidates a checkpoint."""
        return {
            "authors_mapping": self.authors_mapping,
            "svn_structure": self.svn_structure,
            "migration_method": str(self.migration_method),
            "svn_url": self.svn_url,
        }


class Job(Base):
    __tablename__ = "jobs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    repository_id: Mapped[str] = mapped_column(ForeignKey("repositories.id"), nullable=False, index=True)
    repository: Mapped[Repository] = relationship(back_populates="jobs")
    parent_job_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    job_type: Mapped[JobType] = mapped_column(_enum(JobType), default=JobType.MIGRATION, nullable=False)
    parameters: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    task_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    status: Mapped[JobStatus] = mapped_column(_enum(JobStatus), default=JobStatus.PENDING, nullable=False, index=True)
    phase: Mapped[JobPhase] = mapped_column(_enum(JobPhase), default=JobPhase.PENDING, nullable=False)
    phase_details: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    resumable: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    retry_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    start_revision: Mapped[int | None] = mapped_column(Integer, nullable=True)
    end_revision: Mapped[int | None] = mapped_column(Integer, nullable=True)
    current_revision: Mapped[int | None] = mapped_column(Integer, nullable=True)
    total_revisions: Mapped[int | None] = mapped_column(Integer, nullable=True)
    progress: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    processing_speed: Mapped[float | None] = mapped_column(Float, nullable=True)
    eta_seconds: Mapped[int | None] = mapped_column(Integer, nullable=True)

    checkpoint_data: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    output_log: Mapped[str] = mapped_column(Text, default="", nullable=False)
    error_log: Mapped[str] = mapped_column(Text, default="", nullable=False)
    result_url: Mapped[str | None] = mapped_column(Text, nullable=True)

    started_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def is_finished(self) -> bool:
        return not self.is_active

    def append_output(self, message: str) -> None:
        self.output_log = (self.output_log or "") + f"[{_stamp()}] {message}\n"

    def append_error(self, message: str) -> None:
        self.error_log = (self.error_log or "") + f"[{_stamp()}] {message}\n"

    def set_phase(self, phase: JobPhase, **details) -> None:
        self.phase = phase
        self.phase_details = {"start_time": datetime.utcnow().isoformat(), **details}
        self.append_output(f"Phase changed: {PHASE_LABELS[phase]}")

    def mark_running(self) -> None:
        self.status = JobStatus.RUNNING
        self.started_at = datetime.utcnow()
        self.completed_at = None

    def mark_resumed(self) -> None:
        """Separate the previous attempt's logs from this one and start running again."""
        if self.error_log:
            self.error_log += f"\n{LOG_SEPARATOR}\n[Resume at {_stamp()}]\n{LOG_SEPARATOR}\n"
        if self.output_log:
            self.output_log += f"\n{LOG_SEPARATOR}\n"
        self.mark_running()
        self.append_output(f"Resuming previous work (attempt {self.retry_count})")

    def mark_completed(self, result_url: str | None = None) -> None:
        self.status = JobStatus.COMPLETED
        self.phase = JobPhase.COMPLETED
        self.progress = 100
        self.eta_seconds = 0
        self.completed_at = datetime.utcnow()
        self.result_url = result_url

    def mark_failed(self, error_message: str | None = None) -> None:
        if error_message:
            self.append_error(error_message)
        self.status = JobStatus.FAILED
        self.completed_at = datetime.utcnow()

    def mark_cancelled(self) -> None:
        self.status = JobStatus.CANCELLED
        self.completed_at = datetime.utcnow()

    def can_resume(self) -> bool:
        if not self.resumable or self.status not in (JobStatus.FAILED, JobStatus.CANCELLED):
            return False
        snapshot = (self.checkpoint_data or {}).get("repository_snapshot")
        if snapshot is not None and snapshot != self.repository.config_snapshot():
            return False
        return True
