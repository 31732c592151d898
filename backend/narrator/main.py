"""
FastAPI application for the narration orchestrator.

Provides the HTTP job contract and WebSocket progress updates.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from narrator.api import routes, websocket
from narrator.config import get_settings
from narrator.errors import ErrorCode, ErrorInfo, NarratorError
from narrator.logging_config import setup_logging
from narrator.models.schemas import SystemHealth
from narrator.services.job_manager import get_job_manager

# Configured at import time, before the app object exists
settings = get_settings()
setup_logging(settings)
logger = logging.getLogger(__name__)

# HTTP status per error code (anything else: 500)
ERROR_STATUS = {
    ErrorCode.INVALID_INPUT: 422,
    ErrorCode.UNSUPPORTED_FORMAT: 422,
    ErrorCode.INPUT_TOO_LARGE: 422,
    ErrorCode.JOB_NOT_FOUND: 404,
    ErrorCode.BATCH_NOT_FOUND: 404,
    ErrorCode.RESULT_NOT_READY: 409,
    ErrorCode.ALREADY_TERMINAL: 409,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the job manager on startup; cancel its jobs and close clients on exit."""
    logger.info("Starting Narration Orchestrator API")
    logger.info(f"Log level: {settings.log_level}")
    logger.info(f"Storage directory: {settings.storage_dir}")
    logger.info(f"Pipelines: {settings.config_dir / settings.pipelines_file}")

    manager = get_job_manager()
    logger.info(f"Variants: {[v['name'] for v in manager.selector.describe()]}")

    yield

    logger.info("Shutting down Narration Orchestrator API")
    await manager.shutdown()


app = FastAPI(
    title="Narration Orchestrator API",
    description="API for accessibility narration of video and image media",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(routes.router)
app.include_router(websocket.router)


def _error_response(info: ErrorInfo) -> JSONResponse:
    return JSONResponse(
        status_code=ERROR_STATUS.get(info.code, 500),
        content=info.model_dump(mode="json"),
    )


@app.exception_handler(NarratorError)
async def narrator_error_handler(request: Request, exc: NarratorError) -> JSONResponse:
    """Render NarratorError as {code, message, suggestion}; detail is logged only."""
    logger.info(f"{request.method} {request.url.path} -> {exc.code.value}: {exc}")
    return _error_response(exc.to_info())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Render malformed request bodies as INVALID_INPUT."""
    logger.info(f"{request.method} {request.url.path} -> invalid request: {exc.errors()}")
    return _error_response(ErrorInfo.from_code(ErrorCode.INVALID_INPUT))


@app.get("/health", response_model=SystemHealth)
async def health_check() -> SystemHealth:
    """Job counts and permit pool usage."""
    return get_job_manager().health()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "narrator.main:app",
        host="0.0.0.0",
        port=8801,
        reload=True,
    )
