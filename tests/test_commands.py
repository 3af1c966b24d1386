"""Tests for git-svn / svn argument vectors and svn info parsing."""
from pathlib import Path
from svn_migrator.core.workflow import MigrationMethod
from svn_migrator.gitsvn.commands import (
    authors_lines, build_fetch_command, build_init_command, build_svn_info_command, write_authors_file,
)
from svn_migrator.services.validator import describe_error, parse_svn_info


def test_init_full_history_standard_layout(make_repository):
    repository = make_repository(auth_type="basic", username="jdoe")
    cmd = build_init_command(repository, Path("/data/git_repo"))
    assert cmd[:4] == ["git", "svn", "init", "--stdlayout"]
    assert "--no-metadata" not in cmd
    assert cmd[cmd.index("--prefix") + 1] == "origin/"
    assert cmd[cmd.index("--username") + 1] == "jdoe"
    assert cmd[-2:] == [repository.svn_url, "/data/git_repo"]


def test_init_shallow_custom_layout(make_repository):
    repository = make_repository(migration_method=MigrationMethod.SIMPLE,
                                 svn_structure={"layout": "non_standard", "trunk": "main", "tags": "releases"})
    cmd = build_init_command(repository, Path("/data/git_repo"))
    assert "--stdlayout" not in cmd
    assert cmd[cmd.index("--trunk") + 1] == "main"
    assert cmd[cmd.index("--tags") + 1] == "releases"
    assert "--branches" not in cmd
    assert "--no-metadata" in cmd


def test_fetch_command_with_range(tmp_path):
    authors = tmp_path / "authors.txt"
    authors.write_text("jdoe = Jane Doe <jane@example.com>\n")
    cmd = build_fetch_command(141, 190, authors, log_window_size=50)
    assert cmd == ["git", "svn", "fetch", "-r", "141:190", "--authors-file", str(authors), "--log-window-size=50"]


def test_fetch_command_unbounded_skips_missing_authors_file(tmp_path):
    cmd = build_fetch_command(301, None, tmp_path / "missing.txt")
    assert cmd == ["git", "svn", "fetch", "--log-window-size=100"]


def test_svn_info_command_is_non_interactive(make_repository):
    repository = make_repository(auth_type="basic", username="jdoe", password="s3cret")
    cmd = build_svn_info_command(repository)
    assert cmd[:4] == ["svn", "info", repository.svn_url, "--non-interactive"]
    assert cmd[cmd.index("--password") + 1] == "s3cret"


def test_authors_file(make_repository, tmp_path):
    repository = make_repository(authors_mapping=[
        {"svn_name": "jdoe", "git_name": "Jane Doe", "git_email": "jane@example.com"},
        {"svn_name": "ghost", "git_name": "", "git_email": "x@example.com"},
    ])
    assert authors_lines(repository.authors_mapping) == ["jdoe = Jane Doe <jane@example.com>"]
    path = write_authors_file(repository, tmp_path / "authors.txt")
    assert path.read_text() == "jdoe = Jane Doe <jane@example.com>\n"


def test_no_authors_file_without_mapping(make_repository, tmp_path):
    assert write_authors_file(make_repository(authors_mapping=[]), tmp_path / "authors.txt") is None


def test_parse_svn_info():
    output = """Path: billing
URL: https://svn.example.com/repos/billing
Repository Root: https://svn.example.com/repos/billing
Repository UUID: 0f2b0c7e-1111-2222-3333-444455556666
Revision: 250
Node Kind: directory
Last Changed Rev: 249
Last Changed Date: 2026-10-01 12:00:00 +0000 (Thu, 01 Oct 2026)
"""
    info = parse_svn_info(output)
    assert info["head_revision"] == 250
    assert info["last_changed_rev"] == 249
    assert info["uuid"] == "0f2b0c7e-1111-2222-3333-444455556666"


def test_describe_error():
    message = describe_error("svn: E170001: Authorization failed\nsvn: E215004: No more credentials")
    assert message.startswith("Authorization failed")
    assert "No more credentials" in message
    assert describe_error("") == "Unknown error"
