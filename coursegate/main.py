"""coursegate API - Main Application."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from coursegate.config import get_settings
from coursegate.core.context import get_request_id
from coursegate.core.exceptions import EntitlementError
from coursegate.core.logging import configure_structlog, get_logger
from coursegate.core.middleware import RequestContextMiddleware
from coursegate.health import router as health_router
from coursegate.runtime import Runtime, build_runtime
from coursegate.session.dependencies import error_status_code
from coursegate.session.router import router as sessions_router
from coursegate.session.router import ws_router as sessions_ws_router


# Configure logging early (before creating logger)
settings = get_settings()
configure_structlog(settings, log_dir=Path(settings.log_dir))

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager.

    A runtime already placed on ``app.state.runtime`` is used as is; otherwise
    one is built for the configured mode.
    """
    settings = get_settings()
    logger.info(
        "starting_application",
        app_name=settings.app_name,
        version=settings.app_version,
        environment=settings.environment,
        mode=settings.mode,
    )

    runtime: Runtime | None = getattr(app.state, "runtime", None)
    if runtime is None:
        runtime = build_runtime(settings)
        app.state.runtime = runtime
    app.state.session_registry = runtime.registry
    logger.info("session_registry_initialized", mode=runtime.mode)

    yield

    # Shutdown
    logger.info("shutting_down_application", open_sessions=len(runtime.registry))
    runtime.registry.close_all()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    # Always debug=False so Starlette never renders stack traces; the handlers
    # below log details and answer with safe messages.
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Course entitlement and content access API",
        debug=False,
        lifespan=lifespan,
        default_response_class=ORJSONResponse,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        openapi_url="/openapi.json" if settings.is_development else None,
    )

    # Request context middleware (must be added first - outermost)
    app.add_middleware(
        RequestContextMiddleware,
        log_requests=settings.log_requests,
        exclude_paths=settings.log_exclude_paths,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=settings.cors_allow_methods,
        allow_headers=settings.cors_allow_headers,
        max_age=settings.cors_max_age,
    )

    def _get_request_id_safe(request: Request) -> str | None:
        """Get request_id from request state or context."""
        if hasattr(request.state, "request_id"):
            return request.state.request_id
        return get_request_id()

    def _error_body(
        request: Request, status_code: int, message: str, **extra: object
    ) -> dict:
        return {
            "error": True,
            "message": message,
            "status_code": status_code,
            "request_id": _get_request_id_safe(request),
            **extra,
        }

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> ORJSONResponse:
        """Handle HTTP exceptions with safe error messages."""
        logger.warning(
            "http_exception",
            status_code=exc.status_code,
            detail=str(exc.detail),
            path=request.url.path,
            method=request.method,
        )

        # 502 carries the upstream failure, which is safe to show
        message = (
            str(exc.detail)
            if exc.status_code < status.HTTP_500_INTERNAL_SERVER_ERROR
            or exc.status_code == status.HTTP_502_BAD_GATEWAY
            else "Internal server error"
        )
        return ORJSONResponse(
            status_code=exc.status_code,
            content=_error_body(request, exc.status_code, message),
        )

    @app.exception_handler(EntitlementError)
    async def entitlement_exception_handler(
        request: Request, exc: EntitlementError
    ) -> ORJSONResponse:
        """Map entitlement errors to a status, keeping code and retryable."""
        status_code = error_status_code(exc)
        logger.warning(
            "entitlement_error",
            code=exc.code,
            status_code=status_code,
            path=request.url.path,
            method=request.method,
        )
        return ORJSONResponse(
            status_code=status_code,
            content=_error_body(
                request,
                status_code,
                exc.message,
                code=exc.code,
                retryable=exc.retryable,
            ),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> ORJSONResponse:
        """Handle validation errors with safe error messages."""
        logger.warning(
            "validation_error",
            errors=exc.errors(),
            path=request.url.path,
            method=request.method,
        )

        return ORJSONResponse(
            status_code=422,
            content=_error_body(
                request,
                422,
                "Validation error",
                details=[
                    {
                        "field": ".".join(str(loc) for loc in err.get("loc", [])),
                        "message": err.get("msg", "Invalid value"),
                    }
                    for err in exc.errors()
                ],
            ),
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(
        request: Request, exc: Exception
    ) -> ORJSONResponse:
        """Catch-all handler for unhandled exceptions.

        Full details are logged; the response carries a generic message only.
        """
        logger.exception(
            "unhandled_exception",
            error_type=type(exc).__name__,
            error_message=str(exc),
            path=request.url.path,
            method=request.method,
        )

        return ORJSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=_error_body(
                request,
                500,
                "An unexpected error occurred. Please try again later.",
            ),
        )

    # Include routers
    app.include_router(health_router)
    app.include_router(sessions_router)
    app.include_router(sessions_ws_router)

    @app.get("/", include_in_schema=False)
    async def root(request: Request) -> dict[str, str]:
        """Root endpoint."""
        return {
            "message": "coursegate API",
            "version": settings.app_version,
            "mode": settings.mode,
            "docs": f"{request.url}docs",
        }

    return app


app = create_app()
