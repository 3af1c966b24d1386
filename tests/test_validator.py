import subprocess
from unittest.mock import patch
from svn_migrator.core.errors import ErrorKind
from svn_migrator.services.validator import ValidatorService

SVN_INFO = """Path: billing
URL: https://svn.example.com/repos/billing
Repository Root: https://svn.example.com/repos/billing
Repository UUID: 6b2c1f3e-0000-4000-8000-000000000001
Revision: 250
Last Changed Rev: 249
"""


def _completed(returncode=0, stdout="", stderr=""):
    return subprocess.CompletedProcess(["svn", "info"], returncode, stdout=stdout, stderr=stderr)


def test_reports_head_revision(repository):
    with patch("svn_migrator.services.validator.subprocess.run", return_value=_completed(stdout=SVN_INFO)) as run:
        result = ValidatorService(repository).call()

    assert result.success
    assert result.head_revision == 250
    assert run.call_args.args[0][:3] == ["svn", "info", "https://svn.example.com/repos/billing"]


def test_auth_failure_hides_password(make_repository):
    repository = make_repository(auth_type="basic", username="jdoe", password="s3cret")
    stderr = "svn: E170001: Authorization failed for jdoe:s3cret"
    with patch("svn_migrator.services.validator.subprocess.run", return_value=_completed(1, stderr=stderr)):
        result = ValidatorService(repository).call()

    assert not result.success
    assert result.errors[0].startswith("Authorization failed")
    assert "s3cret" not in result.errors[0]


def test_timeout_is_a_failure(repository):
    with patch("svn_migrator.services.validator.subprocess.run",
               side_effect=subprocess.TimeoutExpired(["svn", "info"], 5)):
        result = ValidatorService(repository, timeout=5).call()

    assert result.errors == ["svn info timed out after 5s"]


def test_network_error_after_first_line_is_transient(repository):
    stderr = ("svn: E170013: Unable to connect to a repository at URL 'https://svn.example.com/repos/billing'\n"
              "svn: E000111: Connection refused\n")
    with patch("svn_migrator.services.validator.subprocess.run", return_value=_completed(1, stderr=stderr)):
        result = ValidatorService(repository).call()

    assert not result.success
    assert result.classification.kind is ErrorKind.TRANSIENT
    assert "Connection refused" in result.errors[0]


def test_timeout_is_transient(repository):
    with patch("svn_migrator.services.validator.subprocess.run",
               side_effect=subprocess.TimeoutExpired(["svn", "info"], 5)):
        result = ValidatorService(repository, timeout=5).call()

    assert result.classification.kind is ErrorKind.TRANSIENT
