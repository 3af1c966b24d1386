"""Repository access validation through ``svn info``."""

from __future__ import annotations
import logging
import re
import subprocess
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from svn_migrator.core.errors import Classification, ErrorKind, classify_failure, redact
from svn_migrator.db.models import Repository
from svn_migrator.gitsvn.commands import build_svn_info_command

log = logging.getLogger(__name__)

INFO_FIELDS = {
    "url": re.compile(r"^URL:\s+(.+)$"),
    "root": re.compile(r"^Repository Root:\s+(.+)$"),
    "uuid": re.compile(r"^Repository UUID:\s+(.+)$"),
    "head_revision": re.compile(r"^Revision:\s+(\d+)$"),
    "last_changed_rev": re.compile(r"^Last Changed Rev:\s+(\d+)$"),
    "last_changed_date": re.compile(r"^Last Changed Date:\s+(.+)$"),
}

ERROR_MESSAGES = [
    (re.compile(r"authorization failed", re.IGNORECASE), "Authorization failed: check the username and password"),
    (re.compile(r"could not connect to server", re.IGNORECASE), "Could not connect to server: check the SVN URL"),
    (re.compile(r"no repository found", re.IGNORECASE), "Repository not found: check the SVN URL"),
    (re.compile(r"certificate verification failed", re.IGNORECASE), "SSL certificate verification failed"),
]


@dataclass
class ValidationResult:
    success: bool
    info: Dict[str, Any] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)
    classification: Optional[Classification] = None

    @property
    def head_revision(self) -> int | None:
        return self.info.get("head_revision")


def parse_svn_info(output: str) -> Dict[str, Any]:
    info: Dict[str, Any] = {}
    for line in output.splitlines():
        for key, pattern in INFO_FIELDS.items():
            match = pattern.match(line.strip())
            if match:
                value = match.group(1).strip()
                info[key] = int(value) if key in ("head_revision", "last_changed_rev") else value
    return info


def describe_error(stderr: str) -> str:
    """Operator hint followed by every non-empty svn error line."""
    lines = [line.strip() for line in stderr.strip().splitlines() if line.strip()]
    if not lines:
        return "Unknown error"
    detail = " | ".join(lines)
    for pattern, message in ERROR_MESSAGES:
        if pattern.search(stderr):
            return f"{message} ({detail})"
    return detail


class ValidatorService:
    def __init__(self, repository: Repository, timeout: int = 120):
        self.repository = repository
        self.timeout = timeout

    def call(self) -> ValidationResult:
        cmd = build_svn_info_command(self.repository)
        try:
            completed = subprocess.run(cmd, capture_output=True, text=True, timeout=self.timeout)
        except subprocess.TimeoutExpired:
            message = f"svn info timed out after {self.timeout}s"
            return ValidationResult(False, errors=[message],
                                    classification=Classification(ErrorKind.TRANSIENT, message))
        except OSError as e:
            message = f"Could not run svn: {e}"
            return ValidationResult(False, errors=[message], classification=Classification(ErrorKind.FATAL, message))

        if completed.returncode != 0:
            message = redact(describe_error(completed.stderr), self.repository.password)
            classification = classify_failure(completed.stderr, completed.returncode).resolve(made_progress=False)
            log.warning(f"svn info failed for {self.repository.svn_url} ({classification.kind}): {message}")
            return ValidationResult(False, errors=[message], classification=classification)

        return ValidationResult(True, info=parse_svn_info(completed.stdout))
