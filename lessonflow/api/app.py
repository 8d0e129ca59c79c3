"""FastAPI application exposing the workflow engine."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional, Type

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .. import __version__
from ..auth import TokenVerifier
from ..config import LessonflowConfig, load_config
from ..engine import WorkflowEngine, build_engine
from ..errors import (
    ConfigurationError,
    Forbidden,
    InvalidWorkflowDefinition,
    JobNotFound,
    LessonflowError,
    StateError,
    StepNotFound,
    Unauthorized,
    UnknownWorkflowType,
    WorkflowNotFound,
)
from .routes import health, workflows

logger = logging.getLogger(__name__)

ERROR_STATUS_CODES: Dict[Type[LessonflowError], int] = {
    UnknownWorkflowType: 400,
    InvalidWorkflowDefinition: 422,
    ConfigurationError: 500,
    StateError: 409,
    WorkflowNotFound: 404,
    StepNotFound: 404,
    JobNotFound: 404,
    Unauthorized: 401,
    Forbidden: 403,
}


def status_code_for(exc: LessonflowError) -> int:
    for cls in type(exc).__mro__:
        if cls in ERROR_STATUS_CODES:
            return ERROR_STATUS_CODES[cls]
    return 500


async def lessonflow_error_handler(request: Request, exc: LessonflowError) -> JSONResponse:
    status_code = status_code_for(exc)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(
        status_code=status_code,
        content={"error": type(exc).__name__, "detail": str(exc)},
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Validate workflow definitions and resume in-flight workflows."""
    engine: WorkflowEngine = app.state.engine
    engine.registry.validate_all()
    await engine.connect()
    await engine.recover()
    try:
        yield
    finally:
        await engine.close()


def create_app(
    config: Optional[LessonflowConfig] = None,
    engine: Optional[WorkflowEngine] = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    config = config or load_config()
    app = FastAPI(
        title="lessonflow",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.engine = engine or build_engine(config)
    app.state.verifier = TokenVerifier.from_config(config.auth)

    app.add_exception_handler(LessonflowError, lessonflow_error_handler)
    app.include_router(health.router)
    app.include_router(workflows.router)
    return app
