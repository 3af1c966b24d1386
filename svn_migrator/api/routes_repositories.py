from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from svn_migrator.db.session import get_db
from svn_migrator.db.models import Repository
from svn_migrator.core.lifecycle import create_migration_job
from svn_migrator.core.sync import start_incremental_sync
from svn_migrator.core.workflow import MigrationMethod
from svn_migrator.schemas.jobs import JobResponse, JobStartRequest
from svn_migrator.schemas.repositories import RepositoryCreateRequest, RepositoryResponse
from svn_migrator.tasks.jobs import enqueue_job

router = APIRouter(prefix="/repositories")


def _get_repository(db: Session, repository_id: str) -> Repository:
    repository = db.get(Repository, repository_id)
    if not repository:
        raise HTTPException(status_code=404, detail="Repository not found")
    return repository


@router.post("", response_model=RepositoryResponse)
def create_repository(req: RepositoryCreateRequest, db: Session = Depends(get_db)):
    repository = Repository(
        name=req.name,
        svn_url=req.svn_url,
        auth_type=req.auth_type,
        username=req.username,
        password=req.password,
        migration_method=req.migration_method,
        svn_structure=req.svn_structure.model_dump(),
        authors_mapping=[a.model_dump() for a in req.authors_mapping],
        ignore_patterns=req.ignore_patterns,
        large_file_handling=req.large_file_handling,
        gitlab_project_id=req.gitlab_project_id,
        enable_incremental_sync=req.enable_incremental_sync,
    )
    db.add(repository)
    db.commit()
    db.refresh(repository)
    return RepositoryResponse.model_validate(repository)


@router.get("/{repository_id}", response_model=RepositoryResponse)
def get_repository(repository_id: str, db: Session = Depends(get_db)):
    return RepositoryResponse.model_validate(_get_repository(db, repository_id))


@router.post("/{repository_id}/jobs", response_model=JobResponse)
def start_migration(repository_id: str, req: JobStartRequest | None = None, db: Session = Depends(get_db)):
    repository = _get_repository(db, repository_id)
    req = req or JobStartRequest()
    job = create_migration_job(db, repository)

    enqueue_job(job, gitlab_token=req.gitlab_token, gitlab_endpoint=req.gitlab_endpoint)
    return JobResponse.model_validate(job)


@router.post("/{repository_id}/sync", response_model=JobResponse | None)
def start_sync(repository_id: str, req: JobStartRequest | None = None, db: Session = Depends(get_db)):
    repository = _get_repository(db, repository_id)
    if repository.migration_method is not MigrationMethod.FULL_HISTORY:
        raise HTTPException(status_code=409, detail="Incremental sync requires a full-history migration")
    req = req or JobStartRequest()

    job = start_incremental_sync(db, repository)
    if job is None:
        return None

    enqueue_job(job, gitlab_token=req.gitlab_token, gitlab_endpoint=req.gitlab_endpoint)
    return JobResponse.model_validate(job)
