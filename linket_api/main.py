"""Linket API - FastAPI Application Entry Point."""

import logging
import time
import uuid
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from linket_api import __version__
from linket_api.config.settings import get_settings
from linket_api.context import request_id_var, tag_id_var, user_id_var
from linket_api.errors import LinketError
from linket_api.routers import account, admin, health, linkets, profile_links, redirects
from linket_api.schemas import ProblemDetail
from linket_api.tasks import DetachedTaskRunner
from linket_api.utils import configure_json_logging

PROBLEM_BASE = "https://linketconnect.com/problems"

# Claim and dashboard edits report body validation failures as 400
_BAD_REQUEST_PREFIXES = ("/api/linkets", "/api/dashboard")

settings = get_settings()

logger = logging.getLogger(__name__)

# Set LINKET_JSON_LOGS=false to disable (defaults to true)
if settings.json_logs:
    configure_json_logging(log_level=settings.log_level)
    logger.info("Structured JSON logging enabled")


# ============================================================================
# HTTP Request Completion Logging Middleware (MUST BE REGISTERED FIRST)
# ============================================================================


async def http_completion_logging_middleware(request: Request, call_next):
    """Log every HTTP request completion.

    - Every HTTP request emits "http.request.completed"
    - Fields: method, path, status_code, duration_ms
    - Logs even on exceptions (status_code=500)
    - Clears per-request contextvars at start and end
    - Records http.server.request.duration when telemetry is enabled
    """
    user_id_var.set("")
    tag_id_var.set("")

    start_time = time.perf_counter()
    status_code = 500

    try:
        response = await call_next(request)
        status_code = response.status_code
        return response
    finally:
        duration_seconds = time.perf_counter() - start_time
        logging.getLogger(__name__).info(
            "http.request.completed",
            extra={
                "event": "http.request.completed",
                "method": request.method,
                "path": request.url.path,
                "status_code": status_code,
                "duration_ms": round(duration_seconds * 1000, 2),
            },
        )
        if getattr(request.app.state, "otel_enabled", False):
            from linket_api.otel import record_request_duration

            record_request_duration(
                duration_seconds, request.method, status_code, request.url.scheme
            )
        user_id_var.set("")
        tag_id_var.set("")


# ============================================================================
# Request ID Middleware (MUST BE OUTERMOST)
# ============================================================================


async def request_id_middleware(request: Request, call_next):
    """Accept X-Request-ID or generate one; echo it on the response.

    Registered last so it is the outermost middleware and request_id is set
    before inner middlewares run.
    """
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request_id_var.set(request_id)

    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


# ============================================================================
# RFC 9457 Global Exception Handlers
# ============================================================================


def _instance() -> str:
    """Opaque instance identifier (urn:linket:trace:{request_id})."""
    request_id = request_id_var.get()
    return f"urn:linket:trace:{request_id or uuid.uuid4()}"


def _problem_response(
    status_code: int,
    type_slug: str,
    title: str,
    detail,
    error: Optional[str] = None,
    headers: Optional[dict[str, str]] = None,
) -> JSONResponse:
    problem = ProblemDetail(
        type=f"{PROBLEM_BASE}/{type_slug}",
        title=title,
        status=status_code,
        detail=detail,
        instance=_instance(),
        error=error,
    )
    return JSONResponse(
        status_code=status_code,
        content=problem.model_dump(exclude_none=True),
        media_type="application/problem+json",
        headers=headers or {},
    )


async def linket_error_handler(request: Request, exc: LinketError) -> JSONResponse:
    """Domain errors: status from the error class, message as detail and error."""
    if exc.status_code >= 500:
        logger.error(
            f"{type(exc).__name__}: {exc.message}",
            extra={"event": "request.failed", "error_type": exc.slug},
        )
    return _problem_response(
        exc.status_code,
        exc.slug,
        exc.title,
        exc.message,
        error=exc.message,
        headers=exc.headers,
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Handle HTTP exceptions with RFC 9457 Problem Details format."""
    title = _get_title_for_status(exc.status_code)
    detail_value = exc.detail if exc.detail is not None else title
    return _problem_response(
        exc.status_code,
        f"http-{exc.status_code}",
        title,
        detail_value,
        error=detail_value if isinstance(detail_value, str) else title,
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Request validation errors.

    400 on the claim/dashboard surface, 422 elsewhere.
    """
    first_error = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(loc) for loc in first_error.get("loc", []))
    msg = first_error.get("msg", "Validation error")

    status_code = (
        status.HTTP_400_BAD_REQUEST
        if request.url.path.startswith(_BAD_REQUEST_PREFIXES)
        else status.HTTP_422_UNPROCESSABLE_ENTITY
    )
    return _problem_response(
        status_code,
        "validation-error",
        "Request Validation Failed",
        f"Invalid field '{field}': {msg}",
        error="bad_input",
    )


async def store_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """Data-store failures that escaped the service layer."""
    logger.error(
        f"Data store error: {type(exc).__name__}",
        extra={"event": "store.failed"},
        exc_info=True,
    )
    message = "The data store is unavailable. Please try again."
    return _problem_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "upstream",
        "Upstream Failure",
        message,
        error=message,
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle uncaught exceptions with RFC 9457 Problem Details format."""
    logger.error(f"Unhandled exception: {type(exc).__name__}", exc_info=True)
    message = "An unexpected error occurred. Please try again later."
    return _problem_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "internal-error",
        "Internal Server Error",
        message,
        error=message,
    )


def _get_title_for_status(status_code: int) -> str:
    """Get human-readable title for HTTP status code."""
    titles = {
        400: "Bad Request",
        401: "Unauthorized",
        403: "Forbidden",
        404: "Not Found",
        405: "Method Not Allowed",
        409: "Conflict",
        429: "Too Many Requests",
        500: "Internal Server Error",
        503: "Service Unavailable",
    }
    return titles.get(status_code, f"HTTP {status_code}")


# ============================================================================
# Application Factory
# ============================================================================


def create_app(
    *,
    otel_enabled: Optional[bool] = None,
    otel_service_name: Optional[str] = None,
    otel_span_exporter=None,
    otel_metric_reader=None,
    otel_log_correlation: bool = True,
) -> FastAPI:
    """Create the FastAPI application.

    Args:
        otel_enabled: Enable OpenTelemetry tracing/metrics (default: settings)
        otel_service_name: Service name for the OTel resource (default: settings)
        otel_span_exporter: Custom span exporter (testing)
        otel_metric_reader: Custom metric reader (testing)
        otel_log_correlation: Inject trace/span ids into logs

    Returns:
        Configured FastAPI application instance
    """
    if otel_enabled is None:
        otel_enabled = settings.otel_enabled

    # Initialize OTel before the app exists so instrumentation sees the providers
    if otel_enabled:
        from linket_api.otel import init_otel

        init_otel(
            service_name=otel_service_name or settings.otel_service_name,
            span_exporter=otel_span_exporter,
            metric_reader=otel_metric_reader,
            log_correlation=otel_log_correlation,
        )

    new_app = FastAPI(
        title="Linket API",
        description="Tag resolution, claim state machine and batch minting for Linket NFC/QR tags.",
        version=__version__,
    )

    new_app.include_router(health.router, tags=["health"])
    new_app.include_router(redirects.router)
    new_app.include_router(linkets.router)
    new_app.include_router(account.router)
    new_app.include_router(profile_links.router)
    new_app.include_router(admin.router)
    new_app.include_router(admin.tags_router)

    # Instrument first so the server span wraps every middleware
    if otel_enabled:
        from opentelemetry import metrics, trace
        from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

        FastAPIInstrumentor.instrument_app(
            new_app,
            tracer_provider=trace.get_tracer_provider(),
            meter_provider=metrics.get_meter_provider(),
        )

    new_app.state.otel_enabled = otel_enabled
    new_app.state.task_runner = DetachedTaskRunner(
        timeout_seconds=settings.side_effect_timeout_seconds
    )

    new_app.middleware("http")(http_completion_logging_middleware)
    new_app.middleware("http")(request_id_middleware)

    new_app.add_exception_handler(LinketError, linket_error_handler)
    new_app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    new_app.add_exception_handler(RequestValidationError, validation_exception_handler)
    new_app.add_exception_handler(SQLAlchemyError, store_exception_handler)
    new_app.add_exception_handler(Exception, general_exception_handler)

    return new_app


app = create_app()
