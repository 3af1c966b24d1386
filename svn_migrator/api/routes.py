from fastapi import APIRouter
from svn_migrator.api.routes_health import router as health_router
from svn_migrator.api.routes_jobs import router as jobs_router
from svn_migrator.api.routes_repositories import router as repositories_router

router = APIRouter()
router.include_router(health_router, tags=["health"])
router.include_router(repositories_router, tags=["repositories"])
router.include_router(jobs_router, tags=["jobs"])
