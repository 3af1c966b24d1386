"""Scripted stand-ins for the git-svn boundary."""
from svn_migrator.gitsvn.supervisor import ProcessResult


def ok(upto=None):
    return lambda start, end: (upto if upto is not None else end, 0, "")


def fail(reached, stderr="", returncode=1):
    return lambda start, end: (reached, returncode, stderr)


class ScriptedGitSvn:
    """Replays one scripted outcome per ``git svn fetch`` call and tracks what is 'on disk'."""

    def __init__(self, store, script, failing=None):
        self.store = store
        self.failing = failing or {}
        self.script = list(script)
        self.commands = []
        self.calls = []
        self.checkpoint_at_call = []
        self.head = 0

    def probe(self, git_dir):
        return self.head

    def run(self, cmd, cwd=None, on_stdout=None, on_stderr=None, env=None):
        self.commands.append(list(cmd))
        if list(cmd[:3]) != ["git", "svn", "fetch"]:
            stderr = self.failing.get(" ".join(cmd))
            if stderr is not None:
                return ProcessResult(args=list(cmd), returncode=1, stderr=stderr.splitlines())
            return ProcessResult(args=list(cmd), returncode=0)

        window = cmd[cmd.index("-r") + 1] if "-r" in cmd else None
        self.calls.append(window)
        self.checkpoint_at_call.append(self.store.last_fetched_revision)
        # A checkpoint may lag the working directory but never run ahead of it.
        assert self.store.last_fetched_revision <= self.head

        start, end = (int(x) for x in window.split(":")) if window else (self.head + 1, None)
        reached, returncode, stderr = self.script.pop(0)(start, end)
        stdout = []
        for revision in range(start, reached + 1):
            self.head = revision
            line = f"r{revision} = {revision:040x} (refs/remotes/origin/trunk)"
            stdout.append(line)
            if on_stdout:
                on_stdout(line)
        for line in stderr.splitlines():
            if on_stderr:
                on_stderr(line)
        return ProcessResult(args=list(cmd), returncode=returncode, stdout=stdout, stderr=stderr.splitlines())
