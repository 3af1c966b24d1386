import logging
from pathlib import Path
from typing import List
from git import Repo
from git.exc import GitCommandError
from svn_migrator.agents.base import BasePhase, MigrationContext
from svn_migrator.core.errors import Classification, ErrorKind, MigrationError
from svn_migrator.core.workflow import JobPhase, PhaseResult
from svn_migrator.gitsvn.commands import SVN_PREFIX

log = logging.getLogger(__name__)

REMOTE_ROOT = f"refs/remotes/{SVN_PREFIX}"
TAGS_ROOT = f"{REMOTE_ROOT}tags/"
TRUNK_CANDIDATES = ("trunk", "git-svn")
LFS_EXTENSIONS = ["zip", "tar", "gz", "bz2", "7z", "rar", "exe", "dmg", "iso", "jar", "war", "ear"]
IGNORE_HEADER = "# Patterns from migration configuration"
MAIN_BRANCH = "main"


def remote_refs(repo: Repo) -> dict:
    return {ref.path: ref for ref in repo.refs if ref.path.startswith(REMOTE_ROOT)}


def trunk_ref(repo: Repo) -> str:
    refs = remote_refs(repo)
    for name in TRUNK_CANDIDATES:
        if f"{REMOTE_ROOT}{name}" in refs:
            return f"{SVN_PREFIX}{name}"
    raise MigrationError("No trunk found in fetched history",
                         Classification(ErrorKind.FATAL, "fetched history has no trunk ref"))


def create_main_branch(repo: Repo) -> str:
    source = trunk_ref(repo)
    repo.git.checkout("-B", MAIN_BRANCH, source)
    return source


def parse_ignore_patterns(text: str | None) -> List[str]:
    patterns = []
    for line in (text or "").splitlines():
        line = line.strip()
        if line and not line.startswith("#"):
            patterns.append(line)
    return patterns


class ApplyStrategyPhase(BasePhase):
    phase = JobPhase.APPLYING_STRATEGY

    def run(self, ctx: MigrationContext) -> PhaseResult:
        ctx.note("Applying migration strategy...")
        repo = Repo(ctx.git_dir)
        try:
            source = create_main_branch(repo)
            ctx.note(f"Created branch '{MAIN_BRANCH}' from {source}")
            tags = self._convert_tags(repo)
            branches = self._convert_branches(repo)
            if ctx.repository.large_file_handling == "git-lfs":
                self._setup_lfs(ctx, repo)
            ignored = self._apply_ignore_patterns(ctx, repo)
        except GitCommandError as e:
            raise MigrationError(f"Applying migration strategy failed: {(e.stderr or str(e)).strip()}",
                                 Classification(ErrorKind.FATAL, "git command failed while applying strategy"))
        ctx.note(f"Migration strategy applied ({len(tags)} tags, {len(branches)} branches)")
        return PhaseResult(self.phase, True, "Migration strategy applied", {
            "tags": tags,
            "branches": branches,
            "ignore_patterns": ignored,
        })

    @staticmethod
    def _convert_tags(repo: Repo) -> List[str]:
        existing = {t.name for t in repo.tags}
        created = []
        for path, ref in remote_refs(repo).items():
            if not path.startswith(TAGS_ROOT):
                continue
            name = path[len(TAGS_ROOT):]
            # "name@123" refs are git-svn's copies of deleted/replaced paths.
            if "@" in name or name in existing:
                continue
            repo.create_tag(name, ref=ref.commit)
            created.append(name)
        return created

    @staticmethod
    def _convert_branches(repo: Repo) -> List[str]:
        existing = {h.name for h in repo.heads}
        created = []
        for path, ref in remote_refs(repo).items():
            name = path[len(REMOTE_ROOT):]
            if path.startswith(TAGS_ROOT) or name in TRUNK_CANDIDATES or "@" in name or name in existing:
                continue
            repo.create_head(name, ref.commit)
            created.append(name)
        return created

    @staticmethod
    def _commit_if_staged(repo: Repo, message: str) -> bool:
        if not repo.is_dirty(index=True, working_tree=False, untracked_files=False):
            return False
        repo.index.commit(message)
        return True

    def _setup_lfs(self, ctx: MigrationContext, repo: Repo) -> None:
        ctx.note("Setting up Git LFS...")
        repo.git.lfs("install", "--local")
        for ext in LFS_EXTENSIONS:
            repo.git.lfs("track", f"*.{ext}")
        repo.git.add(".gitattributes")
        if self._commit_if_staged(repo, "Configure Git LFS"):
            ctx.note("Committed Git LFS configuration")

    def _apply_ignore_patterns(self, ctx: MigrationContext, repo: Repo) -> List[str]:
        patterns = parse_ignore_patterns(ctx.repository.ignore_patterns)
        if not patterns:
            return []
        gitignore = Path(repo.working_tree_dir) / ".gitignore"
        current = gitignore.read_text(encoding="utf-8") if gitignore.exists() else ""
        missing = [p for p in patterns if p not in current.splitlines()]
        if missing:
            block = "\n".join([IGNORE_HEADER, *missing])
            gitignore.write_text(f"{current.rstrip()}\n\n{block}\n".lstrip(), encoding="utf-8")
            repo.git.add(".gitignore")
            if self._commit_if_staged(repo, "Add .gitignore from migration configuration"):
                ctx.note(f"Committed .gitignore with {len(missing)} patterns")
        return patterns
