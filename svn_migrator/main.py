import logging
import time
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from alembic.config import Config
from alembic import command
from svn_migrator.core.config import settings
from svn_migrator.core.lifecycle import LifecycleError
from svn_migrator.core.logging import configure_logging, job_context
from svn_migrator.api.routes import router as api_router
from svn_migrator.db.session import engine

configure_logging()
log = logging.getLogger(__name__)

SERVICE = job_context(None, "startup")


def wait_for_database(max_retries: int = 30, retry_delay: float = 1.0) -> None:
    """Block until the database answers ``SELECT 1``."""
    for attempt in range(1, max_retries + 1):
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            log.info("Database connection successful", extra=SERVICE)
            return
        except OperationalError as e:
            if attempt == max_retries:
                log.error("Database unreachable after %d attempts", max_retries, extra=SERVICE)
                raise
            log.warning("Database not ready (attempt %d/%d): %s", attempt, max_retries, e, extra=SERVICE)
            time.sleep(retry_delay)


def run_migrations(config_path: str = "alembic.ini") -> None:
    log.info("Upgrading schema to head", extra=SERVICE)
    command.upgrade(Config(config_path), "head")
    log.info("Schema is current", extra=SERVICE)


@asynccontextmanager
async def lifespan(app: FastAPI):
    log.info(f"Starting {settings.app_name} ({settings.app_env})", extra=SERVICE)
    try:
        wait_for_database()
        run_migrations()
    except Exception as e:
        log.error("API startup failed: %s", e, exc_info=True, extra=SERVICE)
        raise
    yield
    log.info("Shutting down API server", extra=job_context(None, "shutdown"))


async def lifecycle_conflict(request: Request, exc: LifecycleError) -> JSONResponse:
    return JSONResponse(status_code=409, content={"detail": str(exc)})


def create_app(with_lifespan: bool = True) -> FastAPI:
    app = FastAPI(title=settings.app_name, version="0.1.0", lifespan=lifespan if with_lifespan else None)
    app.add_exception_handler(LifecycleError, lifecycle_conflict)
    app.include_router(api_router, prefix="/v1")
    return app


app = create_app()
