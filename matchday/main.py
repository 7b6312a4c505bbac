"""Matchday FastAPI application.

Match scheduling with confirmations, a FIFO waitlist and idempotent,
revision-checked participation changes.
"""

import logging
import sys
import time
import uuid
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from matchday import __version__
from matchday.api.routes import health, matches, users
from matchday.config import get_settings
from matchday.services.matches.errors import MatchDomainError


def configure_logging(level: str) -> None:
    """Send structlog output through stdlib logging at the given level."""
    logging.basicConfig(format="%(message)s", stream=sys.stdout)
    logging.getLogger().setLevel(level.upper())

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


settings = get_settings()
configure_logging(settings.log_level)
logger = structlog.get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-Id"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("starting_matchday", version=__version__)
    yield
    logger.info("shutting_down_matchday")


# Create FastAPI application
app = FastAPI(
    title="Matchday",
    description="Match scheduling with confirmations, waitlist and idempotent participation",
    version=__version__,
    lifespan=lifespan,
)

# Include API routers
app.include_router(health.router)
app.include_router(matches.router)
app.include_router(users.router)


def problem(request: Request, status: int, code: str, title: str, detail: str) -> JSONResponse:
    """Render an error as a problem JSON body."""
    request_id = getattr(request.state, "request_id", None)
    return JSONResponse(
        status_code=status,
        content={
            "type": f"urn:matchday:error:{code.lower()}",
            "title": title,
            "status": status,
            "code": code,
            "detail": detail,
            "requestId": request_id,
        },
        headers={REQUEST_ID_HEADER: request_id} if request_id else None,
    )


@app.middleware("http")
async def request_context(request: Request, call_next):
    """Assign or echo X-Request-Id and log every request."""
    request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
    request.state.request_id = request_id
    structlog.contextvars.bind_contextvars(request_id=request_id)
    started = time.perf_counter()
    try:
        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        logger.info(
            "http_request",
            method=request.method,
            path=request.url.path,
            status=response.status_code,
            duration_ms=round((time.perf_counter() - started) * 1000, 1),
        )
        return response
    finally:
        structlog.contextvars.unbind_contextvars("request_id")


# Error handlers
@app.exception_handler(MatchDomainError)
async def domain_error_handler(request: Request, exc: MatchDomainError):
    """Render domain errors with their stable code."""
    logger.info(
        "request_failed",
        path=request.url.path,
        code=exc.code,
        status=exc.status_code,
        detail=exc.detail,
    )
    return problem(
        request,
        exc.status_code,
        exc.code,
        type(exc).__name__,
        exc.detail,
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Malformed request bodies and parameters."""
    errors = exc.errors()
    detail = "; ".join(
        f"{'.'.join(str(p) for p in e.get('loc', ()))}: {e.get('msg')}" for e in errors
    )
    logger.info("request_invalid", path=request.url.path, errors=len(errors))
    return problem(request, 422, "VALIDATION_ERROR", "ValidationFailed", detail)


@app.exception_handler(Exception)
async def server_error_handler(request: Request, exc: Exception):
    """Custom 500 handler."""
    logger.error("server_error", path=request.url.path, error=str(exc), exc_info=exc)
    return problem(request, 500, "INTERNAL", "InternalServerError", "Internal server error")
