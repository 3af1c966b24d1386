from pydantic import BaseModel, ConfigDict
from typing import Optional, Dict, Any
from datetime import datetime
from svn_migrator.core.workflow import JobPhase, JobStatus, JobType

class JobStartRequest(BaseModel):
    gitlab_token: Optional[str] = None
    gitlab_endpoint: Optional[str] = None

class JobResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    repository_id: str
    parent_job_id: Optional[str] = None
    job_type: JobType
    status: JobStatus
    phase: JobPhase
    resumable: bool
    retry_count: int
    current_revision: Optional[int] = None
    total_revisions: Optional[int] = None
    progress: int
    processing_speed: Optional[float] = None
    eta_seconds: Optional[int] = None
    checkpoint_data: Dict[str, Any] = {}
    result_url: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class JobLogsResponse(BaseModel):
    job_id: str
    output_log: str
    error_log: str
