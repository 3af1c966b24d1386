"""
Failure classification for git-svn / svn invocations.

Maps stderr text and the child's termination status onto transient, fatal or
unknown. Fatal patterns are checked before transient ones, so text that matches
both (e.g. a proxy that resets the connection after a 403) is fatal.
"""

from __future__ import annotations
import re
import signal
from dataclasses import dataclass, replace
from enum import Enum
from typing import List, Optional, Pattern


class ErrorKind(str, Enum):
    TRANSIENT = "transient"
    FATAL = "fatal"
    UNKNOWN = "unknown"

    def __str__(self) -> str:
        return self.value


FATAL_PATTERNS: List[Pattern[str]] = [re.compile(p, re.IGNORECASE) for p in (
    r"Authorization failed",
    r"Authentication failed",
    r"Bad credentials",
    r"Access denied",
    r"Permission denied",
    r"401 Unauthorized",
    r"\bUnauthorized\b",
    r"403 Forbidden",
    r"\bForbidden\b",
    r"404 Not Found",
    r"Repository.*not found",
    r"No repository found",
    r"Invalid repository",
    r"Malformed repository",
    r"Corrupted repository",
    r"Checksum mismatch",
    r"Invalid URL",
)]

TRANSIENT_PATTERNS: List[Pattern[str]] = [re.compile(p, re.IGNORECASE) for p in (
    r"Connection reset",
    r"Connection closed",
    r"Connection refused",
    r"Connection timed out",
    r"truncated HTTP response",
    r"ra_serf.*connection",
    r"Network is unreachable",
    r"Could not resolve host",
    r"Temporary failure",
    r"Name or service not known",
    r"502 Bad Gateway",
    r"503 Service Unavailable",
    r"504 Gateway Time-?out",
    r"429 Too Many Requests",
    r"No space left on device",
    r"Disk quota exceeded",
    r"Operation timed out",
    r"\btimed out\b",
)]

# git exits with 128 for "fatal:" errors; the working copy is likely inconsistent.
GIT_FATAL_EXIT_CODE = 128


@dataclass(frozen=True)
class Classification:
    kind: ErrorKind
    reason: str
    suggested_batch_size: Optional[int] = None

    @property
    def resumable(self) -> bool:
        return self.kind is ErrorKind.TRANSIENT

    def resolve(self, made_progress: bool) -> "Classification":
        """Settle an unknown classification: transient only when work advanced."""
        if self.kind is not ErrorKind.UNKNOWN:
            return self
        if made_progress:
            return replace(self, kind=ErrorKind.TRANSIENT)
        return replace(self, kind=ErrorKind.FATAL)


def _first_match(patterns: List[Pattern[str]], text: str) -> Optional[str]:
    for pattern in patterns:
        match = pattern.search(text)
        if match:
            return match.group(0)
    return None


def classify_text(text: str) -> Classification:
    """Classify free-form error text (stderr, exception message)."""
    if not text or not text.strip():
        return Classification(ErrorKind.UNKNOWN, "no error output")
    hit = _first_match(FATAL_PATTERNS, text)
    if hit:
        return Classification(ErrorKind.FATAL, hit)
    hit = _first_match(TRANSIENT_PATTERNS, text)
    if hit:
        return Classification(ErrorKind.TRANSIENT, hit)
    return Classification(ErrorKind.UNKNOWN, text.strip().splitlines()[-1][:200])


def classify_signal(signum: int) -> Optional[Classification]:
    if signum == signal.SIGKILL:
        return Classification(ErrorKind.TRANSIENT, "killed by SIGKILL (possibly out of memory)", suggested_batch_size=1)
    if signum == signal.SIGABRT:
        return Classification(ErrorKind.TRANSIENT, "aborted by SIGABRT (internal assertion)", suggested_batch_size=5)
    if signum == signal.SIGTERM:
        return Classification(ErrorKind.TRANSIENT, "terminated by SIGTERM (timeout or external kill)")
    return None


def classify_failure(stderr: str, returncode: Optional[int]) -> Classification:
    """
    Classify a finished child process.

    Precedence: fatal text, termination signal, transient text, git exit 128,
    otherwise unknown. ``returncode`` follows ``subprocess`` conventions, so a
    negative value is the signal that killed the child.
    """
    text = classify_text(stderr)
    if text.kind is ErrorKind.FATAL:
        return text

    if returncode is not None and returncode < 0:
        by_signal = classify_signal(-returncode)
        if by_signal is not None:
            return by_signal

    if text.kind is ErrorKind.TRANSIENT:
        return text

    if returncode == GIT_FATAL_EXIT_CODE:
        return Classification(ErrorKind.FATAL, "git error (exit code 128), repository state may be inconsistent")

    return text


class MigrationError(Exception):
    """A failure whose classification decides whether the job may resume."""

    def __init__(self, message: str, classification: Classification):
        super().__init__(message)
        self.classification = classification

    @property
    def resumable(self) -> bool:
        return self.classification.resumable


class PreconditionError(MigrationError):
    def __init__(self, message: str):
        super().__init__(message, Classification(ErrorKind.FATAL, message))


class JobCancelled(Exception):
    pass


def classify_exception(exc: BaseException) -> Classification:
    if isinstance(exc, MigrationError):
        return exc.classification
    return classify_text(str(exc)).resolve(made_progress=False)


def redact(text: str, *secrets: Optional[str]) -> str:
    for secret in secrets:
        if secret:
            text = text.replace(secret, "****")
    return text
