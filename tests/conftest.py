"""Pytest configuration and shared fixtures."""

import os
import tempfile
from unittest.mock import MagicMock
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Set test environment variables before importing the package
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["REDIS_URL"] = "redis://localhost:6379/15"
os.environ["GIT_REPOS_DIR"] = tempfile.mkdtemp(prefix="svn_migrator_tests_")
os.environ.pop("GITLAB_TOKEN", None)

from svn_migrator.db.session import Base
from svn_migrator.db.models import Job, Repository
from svn_migrator.db.checkpoint import CheckpointStore
from svn_migrator.core.progress import ProgressTracker, RecordingProgressChannel
from svn_migrator.core.workflow import JobStatus, MigrationMethod
from svn_migrator.agents.base import MigrationContext
from svn_migrator.gitsvn.fetcher import FetchLimits
from svn_migrator.workspace.manager import WorkspaceManager


@pytest.fixture
def db_engine():
    """In-memory database shared by every connection of one test."""
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)


@pytest.fixture
def db_session(db_engine):
    SessionLocal = sessionmaker(bind=db_engine, autoflush=False, autocommit=False, expire_on_commit=False)
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture
def make_repository(db_session):
    def _make(**overrides):
        values = dict(
            name="billing",
            svn_url="https://svn.example.com/repos/billing",
            migration_method=MigrationMethod.FULL_HISTORY,
            svn_structure={"layout": "standard", "trunk": "trunk", "branches": "branches", "tags": "tags"},
            authors_mapping=[{"svn_name": "jdoe", "git_name": "Jane Doe", "git_email": "jane@example.com"}],
            gitlab_project_id=42,
        )
        values.update(overrides)
        repository = Repository(**values)
        db_session.add(repository)
        db_session.commit()
        db_session.refresh(repository)
        return repository
    return _make


@pytest.fixture
def repository(make_repository):
    return make_repository()


@pytest.fixture
def make_job(db_session):
    def _make(repository, **overrides):
        job = Job(repository_id=repository.id, **overrides)
        db_session.add(job)
        db_session.commit()
        db_session.refresh(job)
        return job
    return _make


@pytest.fixture
def job(make_job, repository):
    return make_job(repository)


@pytest.fixture
def failed_job(make_job, repository):
    return make_job(repository, status=JobStatus.FAILED, resumable=True)


@pytest.fixture
def channel():
    return RecordingProgressChannel()


@pytest.fixture
def healthy_host():
    """Process health reporting plenty of memory and no foreign git processes."""
    health = MagicMock()
    health.available_memory_mb.return_value = 8192
    health.cpu_percent.return_value = 0.0
    health.git_processes_in.return_value = []
    return health


@pytest.fixture
def make_context(db_session, channel, healthy_host, tmp_path):
    def _make(job, supervisor=None, limits=None, probe=None, **overrides):
        tracker = ProgressTracker(job, channel, band=(20, 70), publish_every=5, speed_interval=0)
        values = dict(
            db=db_session,
            job=job,
            repository=job.repository,
            workspace=WorkspaceManager(job.repository.id, base_dir=tmp_path),
            store=CheckpointStore(db_session, job),
            supervisor=supervisor or MagicMock(),
            health=healthy_host,
            tracker=tracker,
            channel=channel,
            limits=limits or FetchLimits(),
            revision_probe=probe,
        )
        values.update(overrides)
        return MigrationContext(**values)
    return _make
