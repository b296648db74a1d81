"""
FastAPI application entry point.

create_app() wires settings, services, middleware and routers. Services are
built once into a ServiceContainer on app.state; tests pass their own.
"""
import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from core.auth_middleware import EdgeAuthorizationMiddleware
from core.cache import get_redis_client
from core.config import Settings, settings
from core.container import ServiceContainer, build_container
from core.exceptions import APIException, ErrorCode, error_body
from core.logging import (
    REQUEST_ID_HEADER,
    bind_request_context,
    clear_request_context,
    current_request_id,
    setup_logging,
)
from core.rate_limit import RateLimitMiddleware
from routers import admin, analytics, content, forms, profile, public, setup_admin
from services.document_store import DocumentNotFound, StoreUnavailable
from services.sql_store import SqlDocumentStore

logger = logging.getLogger(__name__)


def _filter_sensitive_data(event, hint=None):
    """Filter sensitive data before sending to Sentry."""
    if "request" in event and "headers" in event["request"]:
        headers = event["request"]["headers"]
        if isinstance(headers, dict):
            headers.pop("authorization", None)
            headers.pop("cookie", None)
            headers.pop("x-admin-setup-secret", None)
    return event


def _init_sentry(app_settings: Settings) -> None:
    if not app_settings.SENTRY_DSN:
        return
    try:
        import sentry_sdk
        from sentry_sdk.integrations.fastapi import FastApiIntegration
        from sentry_sdk.integrations.redis import RedisIntegration

        sentry_sdk.init(
            dsn=app_settings.SENTRY_DSN,
            environment=app_settings.ENVIRONMENT,
            traces_sample_rate=app_settings.SENTRY_TRACES_SAMPLE_RATE,
            integrations=[
                FastApiIntegration(transaction_style="endpoint"),
                RedisIntegration(),
            ],
            # Don't send PII
            send_default_pii=False,
            before_send=_filter_sensitive_data,
        )
        logger.info(f"Sentry initialized for environment: {app_settings.ENVIRONMENT}")
    except Exception as e:
        logger.error(f"Failed to initialize Sentry: {e}")


def _cors_options(app_settings: Settings) -> dict:
    # Production: set CORS_ORIGINS env var (comma-separated)
    # Development: DEBUG=True allows all origins
    if app_settings.DEBUG:
        return {"allow_origins": ["*"], "allow_origin_regex": None}
    if app_settings.CORS_ORIGINS:
        return {
            "allow_origins": [origin.strip() for origin in app_settings.CORS_ORIGINS.split(",")],
            "allow_origin_regex": None,
        }
    regex = None
    if app_settings.ENVIRONMENT != "production":
        regex = r"^http://(localhost|127\.0\.0\.1|10\.\d+\.\d+\.\d+|192\.168\.\d+\.\d+)(:\d+)?$"
    return {
        "allow_origins": ["http://localhost:3000", "http://127.0.0.1:3000"],
        "allow_origin_regex": regex,
    }


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(APIException)
    async def api_exception_handler(request: Request, exc: APIException):
        return JSONResponse(status_code=exc.status_code, content=exc.to_body(), headers=exc.headers)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        if any(e.get("type") == "json_invalid" for e in errors):
            return JSONResponse(
                status_code=status.HTTP_400_BAD_REQUEST,
                content=error_body(ErrorCode.MALFORMED_REQUEST_BODY, "Invalid JSON in request body"),
            )
        body = error_body(ErrorCode.VALIDATION_FAILED, "Request validation failed")
        body["error"]["details"] = [
            {"loc": list(e.get("loc", ())), "msg": e.get("msg"), "type": e.get("type")} for e in errors
        ]
        return JSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content=body)

    @app.exception_handler(DocumentNotFound)
    async def document_not_found_handler(request: Request, exc: DocumentNotFound):
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content=error_body(ErrorCode.RESOURCE_NOT_FOUND, str(exc)),
        )

    @app.exception_handler(StoreUnavailable)
    async def store_unavailable_handler(request: Request, exc: StoreUnavailable):
        logger.error(f"Document store unavailable for {request.method} {request.url.path}: {exc}")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=error_body(ErrorCode.PROVIDER_UNAVAILABLE, "Data store is temporarily unavailable"),
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Global exception handler for unhandled errors."""
        logger.error(
            f"Unhandled exception: {exc}",
            exc_info=True,
            extra={
                "extra_fields": {
                    "method": request.method,
                    "path": request.url.path,
                }
            }
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Internal server error"},
        )


def create_app(container: Optional[ServiceContainer] = None, app_settings: Optional[Settings] = None) -> FastAPI:
    app_settings = app_settings or settings
    setup_logging(app_settings)
    _init_sentry(app_settings)

    container = container or build_container(app_settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if isinstance(container.store, SqlDocumentStore):
            container.store.create_schema()
        yield

    app = FastAPI(
        lifespan=lifespan,
        title="Sports Learning Platform API",
        description="Role-based access control and dynamic form analytics",
        version="3.0.0",
        docs_url="/docs" if (app_settings.DEBUG or app_settings.EXPOSE_API_DOCS) else None,
        redoc_url="/redoc" if (app_settings.DEBUG or app_settings.EXPOSE_API_DOCS) else None,
    )
    app.state.container = container

    # Middleware: the last added runs first. Request order is
    # CORS -> request logging -> edge authorization -> rate limiting -> routes
    if app_settings.RATE_LIMIT_ENABLED:
        app.add_middleware(
            RateLimitMiddleware,
            redis_client=lambda: get_redis_client(app_settings.REDIS_URL),
            default_limit=app_settings.RATE_LIMIT_PER_MINUTE,
            window=60  # 1 minute window
        )

    app.add_middleware(
        EdgeAuthorizationMiddleware,
        verifier=container.verifier,
        rules=container.rules,
        self_authenticated_paths=container.rules.self_authenticated_paths,
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log all requests with timing information."""
        start_time = time.time()
        request_id = request.headers.get(REQUEST_ID_HEADER) or None
        context_token = bind_request_context(request_id, method=request.method, path=request.url.path)

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                f"Request failed: {request.method} {request.url.path}",
                exc_info=True,
                extra={
                    "extra_fields": {
                        "method": request.method,
                        "path": request.url.path,
                        "error": str(e),
                    }
                }
            )
            clear_request_context(context_token)
            raise

        process_time = time.time() - start_time
        logger.info(
            f"Response: {request.method} {request.url.path} - {response.status_code}",
            extra={
                "extra_fields": {
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": response.status_code,
                    "process_time_ms": round(process_time * 1000, 2),
                    "client_ip": request.client.host if request.client else None,
                }
            }
        )
        response.headers["X-Process-Time"] = str(process_time)
        response.headers[REQUEST_ID_HEADER] = current_request_id()
        clear_request_context(context_token)
        return response

    app.add_middleware(
        CORSMiddleware,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
        **_cors_options(app_settings),
    )

    _register_exception_handlers(app)

    @app.get("/health")
    async def health():
        """Simple health check for load balancers and uptime monitors."""
        return {
            "status": "healthy",
            "timestamp": time.time(),
        }

    @app.get("/ping")
    async def ping():
        """
        Minimal ping endpoint for uptime monitors.
        No dependencies checked - just confirms the API is responding.
        """
        return {"pong": True}

    app.include_router(public.router)
    app.include_router(profile.router)
    app.include_router(forms.router)
    app.include_router(analytics.router)
    app.include_router(content.router)
    app.include_router(setup_admin.router)
    app.include_router(admin.router)

    return app


app = create_app()
