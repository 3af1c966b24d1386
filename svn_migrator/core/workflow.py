from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    def __str__(self) -> str:
        return self.value

ACTIVE_STATUSES = (JobStatus.PENDING, JobStatus.RUNNING)

class JobPhase(str, Enum):
    PENDING = "pending"
    CLONING = "cloning"
    APPLYING_STRATEGY = "applying_strategy"
    PUSHING = "pushing"
    COMPLETED = "completed"

    def __str__(self) -> str:
        return self.value

# Forward order of the phases that do work.
WORK_PHASES = (JobPhase.CLONING, JobPhase.APPLYING_STRATEGY, JobPhase.PUSHING)

PHASE_LABELS = {
    JobPhase.PENDING: "Waiting",
    JobPhase.CLONING: "Fetching SVN history with git-svn",
    JobPhase.APPLYING_STRATEGY: "Applying migration strategy",
    JobPhase.PUSHING: "Pushing to GitLab",
    JobPhase.COMPLETED: "Completed",
}

# Overall progress bands (percent) owned by each step.
VALIDATED_PROGRESS = 10
FETCH_BAND = (20, 70)
STRATEGY_PROGRESS = 75
PUSH_PROGRESS = 80

class JobType(str, Enum):
    MIGRATION = "migration"
    INCREMENTAL_SYNC = "incremental_sync"

    def __str__(self) -> str:
        return self.value

class MigrationMethod(str, Enum):
    SIMPLE = "simple"              # shallow: latest snapshot only
    FULL_HISTORY = "full_history"

    def __str__(self) -> str:
        return self.value

@dataclass(frozen=True)
class PhaseResult:
    phase: JobPhase
    ok: bool
    message: str
    artifacts: Dict[str, Any] = field(default_factory=dict)
    result_url: Optional[str] = None
