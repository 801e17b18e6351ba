import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from varirender.api import local_render, progress, render, variations
from varirender.config import get_settings
from varirender.constants.error_codes import get_error_spec
from varirender.exceptions import VarirenderError
from varirender.render.local_worker import LocalRenderWorker
from varirender.render.remote_queue import RemoteRenderQueue
from varirender.schemas.envelope import ErrorInfo, ErrorResponse
from varirender.services.event_manager import JobEventManager
from varirender.services.storage_service import get_storage_service

settings = get_settings()
logger = logging.getLogger(__name__)

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # Startup
    events = JobEventManager()
    app.state.job_events = events
    app.state.render_queue = RemoteRenderQueue(get_storage_service(settings), settings, events=events)
    app.state.local_worker = LocalRenderWorker(settings, events=events)
    logger.info(f"{settings.app_name} {settings.app_version} started ({settings.environment})")
    yield
    # Shutdown
    await app.state.render_queue.shutdown()
    await app.state.local_worker.shutdown()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error_response(status_code: int, error: ErrorInfo) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder(ErrorResponse(error=error).model_dump(exclude_none=True)),
    )


@app.exception_handler(VarirenderError)
async def varirender_exception_handler(request: Request, exc: VarirenderError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"[{exc.code}] {request.method} {request.url.path}: {exc.message}")
    return _error_response(exc.status_code, exc.to_error_info())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handle request body validation errors (422) in the error format."""
    spec = get_error_spec("VALIDATION_ERROR")

    # Build a human-readable message from validation errors
    errors = exc.errors()
    if errors:
        first_error = errors[0]
        loc = " -> ".join(str(x) for x in first_error.get("loc", []))
        msg = first_error.get("msg", "Validation error")
        message = f"{loc}: {msg}" if loc else msg
    else:
        message = "Request validation failed"

    error = ErrorInfo(
        code="VALIDATION_ERROR",
        message=message,
        retryable=spec.get("retryable", False),
        suggested_fix=spec.get("suggested_fix"),
    )
    return _error_response(422, error)


# Global exception handler to ensure errors return proper JSON
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled exception: {exc}")
    spec = get_error_spec("INTERNAL_ERROR")
    error = ErrorInfo(
        code="INTERNAL_ERROR",
        message="Internal server error",
        retryable=spec.get("retryable", False),
    )
    return _error_response(500, error)


# Routers
app.include_router(render.router, prefix="/api/render", tags=["render"])
app.include_router(local_render.router, prefix="/api/render-local", tags=["render-local"])
app.include_router(variations.router, prefix="/api/variations", tags=["variations"])
app.include_router(progress.router, prefix="/api/progress-bar", tags=["progress-bar"])


@app.get("/health")
async def health_check() -> dict[str, str]:
    return {"status": "healthy", "version": settings.app_version, "git_hash": settings.git_hash}
