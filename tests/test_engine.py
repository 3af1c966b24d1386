"""Tests for the job phase state machine."""
from unittest.mock import MagicMock
import pytest
from sqlalchemy import update
from svn_migrator.agents.base import BasePhase
from svn_migrator.agents.impl_clone import CloneSourcePhase
from svn_migrator.agents.registry import PhaseRegistry
from svn_migrator.core.engine import MigrationEngine
from svn_migrator.core.errors import Classification, ErrorKind, MigrationError, PreconditionError
from svn_migrator.core.workflow import JobPhase, JobStatus, PhaseResult
from svn_migrator.db.models import Job
from svn_migrator.gitsvn import fetcher as fetcher_module
from svn_migrator.gitsvn.fetcher import FetchLimits
from svn_migrator.services.validator import ValidationResult
from gitsvn_fakes import ScriptedGitSvn, fail, ok


class RecordingPhase(BasePhase):
    def __init__(self, phase, calls, action=None, result_url=None):
        self.phase = phase
        self.calls = calls
        self.action = action
        self.result_url = result_url

    def _record(self, ctx, mode):
        checkpoint = ctx.store.load()
        self.calls.append((self.phase, mode, checkpoint.phase if checkpoint else None))
        if self.action:
            self.action(ctx)
        return PhaseResult(self.phase, True, f"{self.phase} done", result_url=self.result_url)

    def run(self, ctx):
        return self._record(ctx, "run")

    def resume(self, ctx, checkpoint):
        return self._record(ctx, "resume")


def validator_returning(head=250, errors=None):
    result = ValidationResult(not errors, info={"head_revision": head} if not errors else {}, errors=errors or [])
    factory = MagicMock()
    factory.return_value.call.return_value = result
    return factory


def fetched_through(revision):
    def action(ctx):
        ctx.store.record_revision(revision, scanned_through=revision)
    return action


@pytest.fixture
def calls():
    return []


@pytest.fixture
def registry(calls):
    return PhaseRegistry(mapping={
        JobPhase.CLONING: RecordingPhase(JobPhase.CLONING, calls, action=fetched_through(250)),
        JobPhase.APPLYING_STRATEGY: RecordingPhase(JobPhase.APPLYING_STRATEGY, calls),
        JobPhase.PUSHING: RecordingPhase(JobPhase.PUSHING, calls, result_url="https://gitlab.com/acme/billing"),
    })


def test_fresh_run_validates_then_runs_every_phase(make_context, job, registry, calls, repository):
    validator = validator_returning(head=250)
    engine = MigrationEngine(make_context(job), registry=registry, validator_factory=validator)

    result = engine.run()

    validator.assert_called_once_with(repository)
    assert [(phase, mode) for phase, mode, _ in calls] == [
        (JobPhase.CLONING, "run"), (JobPhase.APPLYING_STRATEGY, "run"), (JobPhase.PUSHING, "run"),
    ]
    assert result.result_url == "https://gitlab.com/acme/billing"
    assert job.status is JobStatus.COMPLETED
    assert job.phase is JobPhase.COMPLETED
    assert job.progress == 100
    assert job.result_url == "https://gitlab.com/acme/billing"
    assert job.total_revisions == 250
    assert repository.latest_revision == 250
    assert repository.last_synced_revision == 250
    assert job.resumable is False


def test_checkpoint_is_written_before_phase_work(make_context, job, registry, calls):
    MigrationEngine(make_context(job), registry=registry, validator_factory=validator_returning()).run()

    assert [(phase, checkpoint_phase) for phase, _, checkpoint_phase in calls] == [
        (JobPhase.CLONING, "cloning"),
        (JobPhase.APPLYING_STRATEGY, "applying_strategy"),
        (JobPhase.PUSHING, "pushing"),
    ]


def test_progress_never_decreases(make_context, job, registry, channel):
    MigrationEngine(make_context(job), registry=registry, validator_factory=validator_returning()).run()

    published = [s.progress_percentage for s in channel.snapshots]
    assert published == sorted(published)
    assert published[-1] == 100


def test_resume_enters_checkpointed_phase(make_context, make_job, repository, registry, calls, tmp_path):
    working_directory = tmp_path / "git_repo"
    working_directory.mkdir()
    job = make_job(repository, status=JobStatus.PENDING, phase=JobPhase.APPLYING_STRATEGY, resumable=True,
                   retry_count=1, progress=70,
                   checkpoint_data={"phase": "applying_strategy", "working_directory": str(working_directory),
                                    "last_fetched_revision": 250, "timestamp": "2026-10-19T10:00:00"})
    validator = validator_returning()

    MigrationEngine(make_context(job), registry=registry, validator_factory=validator).run()

    validator.assert_not_called()
    assert [(phase, mode) for phase, mode, _ in calls] == [
        (JobPhase.APPLYING_STRATEGY, "resume"), (JobPhase.PUSHING, "run"),
    ]
    assert job.status is JobStatus.COMPLETED
    assert "Resuming previous work (attempt 1)" in job.output_log


def test_missing_working_directory_forces_fresh_start(make_context, make_job, repository, registry, calls, tmp_path):
    job = make_job(repository, phase=JobPhase.PUSHING,
                   checkpoint_data={"phase": "pushing", "working_directory": str(tmp_path / "gone"),
                                    "last_fetched_revision": 250, "timestamp": "2026-10-19T10:00:00"})
    engine = MigrationEngine(make_context(job), registry=registry, validator_factory=validator_returning())

    assert not engine.should_resume(engine.ctx.store.load())
    engine.run()
    assert calls[0][:2] == (JobPhase.CLONING, "run")


def test_transient_failure_is_resumable(make_context, job, calls):
    def network_down(ctx):
        raise MigrationError("git svn fetch failed for r1:100: Connection reset",
                             Classification(ErrorKind.TRANSIENT, "Connection reset"))

    registry = PhaseRegistry(mapping={JobPhase.CLONING: RecordingPhase(JobPhase.CLONING, calls, network_down)})
    engine = MigrationEngine(make_context(job), registry=registry, validator_factory=validator_returning())

    with pytest.raises(MigrationError):
        engine.run()

    assert job.status is JobStatus.FAILED
    assert job.resumable is True
    assert job.phase is JobPhase.CLONING
    assert "Connection reset" in job.error_log
    assert job.checkpoint_data["error"]["type"] == "transient"
    assert job.can_resume()


def test_unexpected_exception_is_not_resumable(make_context, job, calls):
    def broken(ctx):
        raise RuntimeError("unexpected state")

    registry = PhaseRegistry(mapping={JobPhase.CLONING: RecordingPhase(JobPhase.CLONING, calls, broken)})
    engine = MigrationEngine(make_context(job), registry=registry, validator_factory=validator_returning())

    with pytest.raises(RuntimeError):
        engine.run()

    assert job.status is JobStatus.FAILED
    assert job.resumable is False


def test_validation_failure_is_fatal(make_context, job, registry, calls):
    validator = validator_returning(errors=["Authorization failed: check the username and password"])
    engine = MigrationEngine(make_context(job), registry=registry, validator_factory=validator)

    with pytest.raises(MigrationError):
        engine.run()

    assert calls == []
    assert job.status is JobStatus.FAILED
    assert job.resumable is False


def test_another_active_job_blocks_start(make_context, make_job, repository, registry, calls):
    make_job(repository, status=JobStatus.RUNNING)
    job = make_job(repository)
    engine = MigrationEngine(make_context(job), registry=registry, validator_factory=validator_returning())

    with pytest.raises(PreconditionError):
        engine.run()

    assert calls == []
    assert job.status is JobStatus.FAILED
    assert not job.resumable


def test_cancellation_is_honored_at_phase_boundary(make_context, job, db_session, calls):
    def cancel_from_elsewhere(ctx):
        db_session.execute(update(Job).where(Job.id == ctx.job.id).values(status=JobStatus.CANCELLED))

    registry = PhaseRegistry(mapping={
        JobPhase.CLONING: RecordingPhase(JobPhase.CLONING, calls, cancel_from_elsewhere),
        JobPhase.APPLYING_STRATEGY: RecordingPhase(JobPhase.APPLYING_STRATEGY, calls),
    })
    engine = MigrationEngine(make_context(job), registry=registry, validator_factory=validator_returning())

    assert engine.run() is None

    assert [phase for phase, _, _ in calls] == [JobPhase.CLONING]
    assert job.status is JobStatus.CANCELLED
    assert job.resumable is True


def test_partial_fetch_failure_recovers_and_reaches_strategy(make_context, job, calls, channel, monkeypatch):
    monkeypatch.setattr(fetcher_module.metadata, "check_health", lambda git_dir, **kwargs: True)
    ctx = make_context(job, limits=FetchLimits(batch_size=100))
    fake = ScriptedGitSvn(ctx.store, [ok(), fail(140, "Connection reset by peer"), ok(), ok(), ok()])
    ctx.supervisor = fake
    ctx.revision_probe = fake.probe
    registry = PhaseRegistry(mapping={
        JobPhase.CLONING: CloneSourcePhase(),
        JobPhase.APPLYING_STRATEGY: RecordingPhase(JobPhase.APPLYING_STRATEGY, calls),
        JobPhase.PUSHING: RecordingPhase(JobPhase.PUSHING, calls),
    })

    MigrationEngine(ctx, registry=registry, validator_factory=validator_returning(head=250)).run()

    assert fake.commands[0][:3] == ["git", "svn", "init"]
    assert fake.calls == ["1:100", "101:200", "141:190", "191:240", "241:250"]
    assert 70 in [s.progress_percentage for s in channel.snapshots]
    assert calls[0][:2] == (JobPhase.APPLYING_STRATEGY, "run")
    assert ctx.store.load().last_fetched_revision == 250
    assert job.status is JobStatus.COMPLETED


def test_unreachable_server_during_validation_is_resumable(make_context, job, registry, calls):
    validator = MagicMock()
    validator.return_value.call.return_value = ValidationResult(
        False, errors=["Connection refused"], classification=Classification(ErrorKind.TRANSIENT, "Connection refused"))
    engine = MigrationEngine(make_context(job), registry=registry, validator_factory=validator)

    with pytest.raises(MigrationError) as info:
        engine.run()

    assert info.value.resumable
    assert calls == []
    assert job.status is JobStatus.FAILED
    assert job.resumable is True


def test_cancellation_during_last_phase_prevents_completion(make_context, job, db_session, calls, repository):
    def cancel_from_elsewhere(ctx):
        db_session.execute(update(Job).where(Job.id == ctx.job.id).values(status=JobStatus.CANCELLED))

    registry = PhaseRegistry(mapping={
        JobPhase.CLONING: RecordingPhase(JobPhase.CLONING, calls, action=fetched_through(250)),
        JobPhase.APPLYING_STRATEGY: RecordingPhase(JobPhase.APPLYING_STRATEGY, calls),
        JobPhase.PUSHING: RecordingPhase(JobPhase.PUSHING, calls, cancel_from_elsewhere,
                                         result_url="https://gitlab.com/acme/billing"),
    })
    engine = MigrationEngine(make_context(job), registry=registry, validator_factory=validator_returning())

    assert engine.run() is None

    assert [phase for phase, _, _ in calls][-1] is JobPhase.PUSHING
    assert job.status is JobStatus.CANCELLED
    assert job.result_url is None
    assert job.resumable is True
    assert repository.last_synced_revision != 250
