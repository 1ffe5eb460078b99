"""SaaSKit API - FastAPI Application Entry Point."""

import logging
import time
import uuid

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from saaskit_api.config.env import get_cors_allowed_origins, get_log_level, json_logs_enabled
from saaskit_api.context import request_id_var, team_id_var, user_id_var
from saaskit_api.routers import actions, api, health, webhooks
from saaskit_api.schemas import ProblemDetail
from saaskit_api.utils import configure_json_logging

PROBLEM_BASE = "https://saaskit.dev/problems"

app = FastAPI(
    title="SaaSKit API",
    description="Teams, invitations, activity log and Stripe subscriptions on Supabase.",
    version="0.1.0",
    docs_url="/api-docs",
    redoc_url="/redoc",
)

# Set SAASKIT_JSON_LOGS=false to disable (defaults to true)
if json_logs_enabled():
    configure_json_logging(log_level=get_log_level())
    logging.getLogger(__name__).info("Structured JSON logging enabled")

logger = logging.getLogger(__name__)

# Credentials mode CANNOT use wildcard origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_allowed_origins(),
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
    expose_headers=["X-Request-ID"],
)


@app.middleware("http")
async def http_completion_logging_middleware(request: Request, call_next):
    """Log every HTTP request completion.

    Every request emits "http.request.completed" with method, path,
    status_code and duration_ms, even when the handler raised (status 500).
    Per-request contextvars are cleared on both sides so nothing leaks
    between requests that reuse an async task.
    """
    user_id_var.set("")
    team_id_var.set("")

    start_time = time.perf_counter()
    status_code = 500

    try:
        response = await call_next(request)
        status_code = response.status_code
        return response
    finally:
        duration_ms = (time.perf_counter() - start_time) * 1000
        logger.info(
            "http.request.completed",
            extra={
                "method": request.method,
                "path": request.url.path,
                "status_code": status_code,
                "duration_ms": round(duration_ms, 2),
            },
        )
        user_id_var.set("")
        team_id_var.set("")


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    """Accept or generate X-Request-ID and echo it back.

    Registered last so it is the outermost middleware and the contextvar is
    set before any inner middleware runs.
    """
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request_id_var.set(request_id)

    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


# ============================================================================
# RFC 9457 Global Exception Handlers
# ============================================================================


def _trace_instance() -> str:
    request_id = request_id_var.get()
    return f"urn:saaskit:trace:{request_id or uuid.uuid4()}"


def _problem_response(problem: ProblemDetail, headers: dict | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=problem.status,
        content=problem.model_dump(exclude_none=True),
        media_type="application/problem+json",
        headers=headers,
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """HTTP exceptions as application/problem+json (dict detail preserved)."""
    detail_value = exc.detail if exc.detail is not None else _get_title_for_status(exc.status_code)

    problem = ProblemDetail(
        type=f"{PROBLEM_BASE}/http-{exc.status_code}",
        title=_get_title_for_status(exc.status_code),
        status=exc.status_code,
        detail=detail_value,
        instance=_trace_instance(),
    )
    return _problem_response(problem, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """422 with the first failing field named in detail."""
    first_error = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(loc) for loc in first_error.get("loc", []))
    msg = first_error.get("msg", "Validation error")

    problem = ProblemDetail(
        type=f"{PROBLEM_BASE}/validation-error",
        title="Request Validation Failed",
        status=status.HTTP_422_UNPROCESSABLE_ENTITY,
        detail=f"Invalid field '{field}': {msg}",
        instance=_trace_instance(),
    )
    return _problem_response(problem)


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Uncaught exceptions: logged with traceback, generic 500 to the client."""
    logger.error(
        "http.unhandled_exception",
        extra={"path": request.url.path, "error_type": type(exc).__name__},
        exc_info=True,
    )

    problem = ProblemDetail(
        type=f"{PROBLEM_BASE}/internal-error",
        title="Internal Server Error",
        status=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="An unexpected error occurred. Please try again later.",
        instance=_trace_instance(),
    )
    return _problem_response(problem)


def _get_title_for_status(status_code: int) -> str:
    """Get human-readable title for HTTP status code."""
    titles = {
        400: "Bad Request",
        401: "Unauthorized",
        403: "Forbidden",
        404: "Not Found",
        405: "Method Not Allowed",
        409: "Conflict",
        422: "Unprocessable Entity",
        500: "Internal Server Error",
        502: "Bad Gateway",
        503: "Service Unavailable",
    }
    return titles.get(status_code, f"HTTP {status_code}")


# Include routers
app.include_router(health.router, tags=["health"])
app.include_router(actions.router)
app.include_router(api.router)
app.include_router(webhooks.router)


@app.get("/")
async def root() -> dict[str, str]:
    return {"name": "SaaSKit API", "docs": "/api-docs"}
