import asyncio
import logging
from typing import Callable, List
from git import Repo
from git.exc import GitCommandError
from svn_migrator.agents.base import BasePhase, MigrationContext
from svn_migrator.core.config import settings
from svn_migrator.core.errors import MigrationError, PreconditionError, classify_text, redact
from svn_migrator.core.gitlab import GitLabClient, authenticated_url
from svn_migrator.core.workflow import JobPhase, PhaseResult

log = logging.getLogger(__name__)

GITLAB_REMOTE = "gitlab"


def resolve_push_target(ctx: MigrationContext) -> dict:
    """Look up the GitLab project; returns its clean http URL, push URL and web URL."""
    if not ctx.gitlab_token:
        raise PreconditionError("A GitLab token is required to push")
    if not ctx.repository.gitlab_project_id:
        raise PreconditionError("No GitLab target project selected for this repository")

    client = GitLabClient(token=ctx.gitlab_token, api_base=ctx.gitlab_endpoint or settings.gitlab_api_base)
    result = asyncio.run(client.fetch_project(ctx.repository.gitlab_project_id))
    if not result["success"]:
        message = f"Failed to fetch GitLab project: {', '.join(result['errors'])}"
        raise MigrationError(message, classify_text(message).resolve(made_progress=False))

    project = result["project"]
    return {
        "http_url": project["http_url"],
        "push_url": authenticated_url(project["http_url"], ctx.gitlab_token),
        "web_url": project["web_url"],
    }


def ensure_remote(repo: Repo, url: str) -> None:
    """Point the ``gitlab`` remote at the token-free URL."""
    names = [r.name for r in repo.remotes]
    if GITLAB_REMOTE in names:
        repo.remote(GITLAB_REMOTE).set_url(url)
    else:
        repo.create_remote(GITLAB_REMOTE, url)


def push_refs(repo: Repo, push_url: str, refspecs: List[str], note: Callable[[str], None],
              secrets: tuple = ()) -> None:
    """Push, falling back to a force push when the normal push is rejected."""
    try:
        output = repo.git.push(push_url, *refspecs)
    except GitCommandError as e:
        note(f"Normal push failed ({redact((e.stderr or '').strip(), *secrets)}), trying force push...")
        try:
            output = repo.git.push("--force", push_url, *refspecs)
        except GitCommandError as forced:
            stderr = redact((forced.stderr or str(forced)).strip(), *secrets)
            raise MigrationError(f"Failed to push to GitLab: {stderr}",
                                 classify_text(stderr).resolve(made_progress=False))
    for line in (output or "").splitlines():
        note(f"Push: {redact(line, *secrets)}")


class PushPhase(BasePhase):
    phase = JobPhase.PUSHING

    def run(self, ctx: MigrationContext) -> PhaseResult:
        ctx.note("Pushing to GitLab...")
        target = resolve_push_target(ctx)
        repo = Repo(ctx.git_dir)
        ensure_remote(repo, target["http_url"])

        push_refs(repo, target["push_url"], ["--all"], ctx.note, ctx.secrets)
        pushed_tags = False
        if ctx.repository.tags_path or repo.tags:
            ctx.note("Pushing tags...")
            push_refs(repo, target["push_url"], ["--tags"], ctx.note, ctx.secrets)
            pushed_tags = True

        return PhaseResult(self.phase, True, f"Pushed to {target['web_url']}", {
            "remote": target["http_url"],
            "tags_pushed": pushed_tags,
        }, result_url=target["web_url"])
