from pydantic import BaseModel, ConfigDict, Field
from typing import Literal, Optional, Dict, List
from datetime import datetime
from svn_migrator.core.workflow import MigrationMethod

class AuthorMapping(BaseModel):
    svn_name: str
    git_name: str
    git_email: str

class SvnStructure(BaseModel):
    layout: Literal["standard", "partial_standard", "non_standard"] = "standard"
    trunk: Optional[str] = "trunk"
    branches: Optional[str] = "branches"
    tags: Optional[str] = "tags"

class RepositoryCreateRequest(BaseModel):
    name: str = Field(..., examples=["legacy-billing"])
    svn_url: str = Field(..., examples=["https://svn.example.com/repos/billing"])
    auth_type: Literal["none", "basic", "token"] = "none"
    username: Optional[str] = None
    password: Optional[str] = None
    migration_method: MigrationMethod = MigrationMethod.SIMPLE
    svn_structure: SvnStructure = Field(default_factory=SvnStructure)
    authors_mapping: List[AuthorMapping] = []
    ignore_patterns: Optional[str] = None
    large_file_handling: Literal["none", "git-lfs"] = "none"
    gitlab_project_id: Optional[int] = None
    enable_incremental_sync: bool = False

class RepositoryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    svn_url: str
    auth_type: str
    username: Optional[str] = None
    migration_method: MigrationMethod
    svn_structure: Optional[Dict[str, Optional[str]]] = None
    gitlab_project_id: Optional[int] = None
    local_git_path: Optional[str] = None
    latest_revision: Optional[int] = None
    last_synced_revision: Optional[int] = None
    last_synced_at: Optional[datetime] = None
    enable_incremental_sync: bool
