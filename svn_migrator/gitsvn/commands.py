"""Argument vectors for git-svn invocations and the authors file they read."""

from __future__ import annotations
import logging
from pathlib import Path
from typing import List, Optional
from svn_migrator.db.models import Repository

log = logging.getLogger(__name__)

SVN_PREFIX = "origin/"


def layout_args(repository: Repository) -> List[str]:
    if repository.standard_layout:
        return ["--stdlayout"]
    args: List[str] = []
    if repository.trunk_path:
        args += ["--trunk", repository.trunk_path]
    if repository.branches_path:
        args += ["--branches", repository.branches_path]
    if repository.tags_path:
        args += ["--tags", repository.tags_path]
    return args


def build_init_command(repository: Repository, git_dir: Path) -> List[str]:
    cmd = ["git", "svn", "init"]
    cmd += layout_args(repository)
    cmd += ["--prefix", SVN_PREFIX]
    if repository.shallow:
        # One-shot snapshot; no metadata needed for later incremental fetches.
        cmd.append("--no-metadata")
    if repository.auth_type in ("basic", "token") and repository.username:
        cmd += ["--username", repository.username]
    cmd += [repository.svn_url, str(git_dir)]
    return cmd


def build_fetch_command(start_revision: int, end_revision: Optional[int],
                        authors_file: Optional[Path] = None, log_window_size: int = 100) -> List[str]:
    cmd = ["git", "svn", "fetch"]
    if end_revision is not None:
        cmd += ["-r", f"{start_revision}:{end_revision}"]
    # Without a range git-svn continues from its own rev_map up to HEAD.
    if authors_file is not None and Path(authors_file).exists():
        cmd += ["--authors-file", str(authors_file)]
    cmd.append(f"--log-window-size={log_window_size}")
    return cmd


def build_svn_info_command(repository: Repository) -> List[str]:
    cmd = ["svn", "info", repository.svn_url, "--non-interactive"]
    if repository.auth_type in ("basic", "token") and repository.username:
        cmd += ["--username", repository.username]
        if repository.password:
            cmd += ["--password", repository.password]
    return cmd


def authors_lines(mapping: list | None) -> List[str]:
    lines = []
    for author in mapping or []:
        svn_name = author.get("svn_name")
        git_name = author.get("git_name")
        git_email = author.get("git_email")
        if svn_name and git_name and git_email:
            lines.append(f"{svn_name} = {git_name} <{git_email}>")
    return lines


def write_authors_file(repository: Repository, path: Path) -> Optional[Path]:
    lines = authors_lines(repository.authors_mapping)
    if not lines:
        return None
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    log.info(f"Wrote authors file with {len(lines)} mappings to {path}")
    return path
