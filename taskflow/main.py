"""FastAPI application for the task service."""
from contextlib import asynccontextmanager
from typing import Optional
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from taskflow import __version__
from taskflow.db.config import create_db_engine
from taskflow.db.init import init_db
from taskflow.routers import projects, series, tasks
from taskflow.services.async_repository import AsyncRepository
from taskflow.services.errors import CoreError, create_error_response
from taskflow.services.repository import Repository
from taskflow.settings import Settings
from taskflow.utils.logger import configure_logging

logger = logging.getLogger(__name__)

STATUS_BY_CODE = {
    "NOT_FOUND": 404,
    "SERIES_NOT_FOUND": 404,
    "AMBIGUOUS_ID": 409,
    "TASK_BLOCKED": 409,
    "CIRCULAR_DEPENDENCY": 409,
    "SERIES_NOT_COMPLETED": 409,
    "INVALID_INPUT": 422,
    "INVALID_TIMEZONE": 422,
    "INVALID_RRULE": 422,
    "INVALID_EXCEPTION": 422,
    "MATERIALIZATION_FAILED": 500,
    "STORAGE_ERROR": 500,
}


def create_app(repository: Optional[Repository] = None, settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the application.

    Without a repository one is created at startup from the settings
    (or the environment) and the schema is initialized.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        nonlocal repository
        if repository is None:
            config = settings or Settings.from_env()
            configure_logging(config.log_level)
            engine = create_db_engine(config.database_url, config.pool_size)
            init_db(engine)
            repository = Repository.from_settings(engine, config)
        app.state.repository = AsyncRepository(repository)
        logger.info("Application startup complete")
        yield

    app = FastAPI(
        title="Taskflow API",
        description="Task management with recurring series",
        version=__version__,
        lifespan=lifespan,
    )

    @app.exception_handler(CoreError)
    async def core_error_handler(request: Request, exc: CoreError):
        return JSONResponse(status_code=STATUS_BY_CODE.get(exc.code, 400), content=create_error_response(exc))

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy", "version": __version__}

    app.include_router(tasks.router, prefix="/api")
    app.include_router(projects.router, prefix="/api")
    app.include_router(series.router, prefix="/api")
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("taskflow.main:app", host="0.0.0.0", port=8000)
