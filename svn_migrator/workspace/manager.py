from __future__ import annotations
import logging
import shutil
from pathlib import Path
from svn_migrator.core.config import settings

log = logging.getLogger(__name__)

class WorkspaceManager:
    """Per-repository directories under ``settings.git_repos_dir``."""

    def __init__(self, repository_id: str, base_dir: str | Path | None = None):
        self.repository_id = repository_id
        self.root = Path(base_dir or settings.git_repos_dir) / f"repository_{repository_id}"

    @property
    def git_dir(self) -> Path:
        return self.root / "git_repo"

    @property
    def authors_file(self) -> Path:
        return self.root / "authors.txt"

    def ensure(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)

    def git_dir_exists(self) -> bool:
        return self.git_dir.is_dir()

    def remove_git_dir(self, git_dir: Path | None = None) -> bool:
        target = git_dir or self.git_dir
        if not target.exists():
            return False
        log.info(f"Removing existing git directory {target}")
        shutil.rmtree(target)
        return True
