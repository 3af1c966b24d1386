"""Parsing of git-svn / svn text output into structured events."""

from __future__ import annotations
import re
from dataclasses import dataclass
from typing import Optional

# git-svn prints one line per imported revision: "r1234 = <commit sha>"
REVISION_MARKER = re.compile(r"^r(\d+) = ([0-9a-f]{7,40})\b")
GIT_SVN_ID = re.compile(r"git-svn-id:\s*\S+@(\d+)")
LAST_CHANGED_REV = re.compile(r"^Last Changed Rev:\s*(\d+)", re.MULTILINE)


@dataclass(frozen=True)
class RevisionEvent:
    revision: int
    commit: str


def parse_revision_line(line: str) -> Optional[RevisionEvent]:
    match = REVISION_MARKER.match(line.strip())
    if not match:
        return None
    return RevisionEvent(revision=int(match.group(1)), commit=match.group(2))


def revision_from_commit_message(message: str) -> Optional[int]:
    match = GIT_SVN_ID.search(message or "")
    return int(match.group(1)) if match else None


def revision_from_svn_info(output: str) -> Optional[int]:
    match = LAST_CHANGED_REV.search(output or "")
    return int(match.group(1)) if match else None
