"""FastAPI application entry point."""
import logging
import logging.handlers
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from lmproxy.api import health, openai_compat
from lmproxy.core.config import Settings, get_settings
from lmproxy.core.errors import NOT_FOUND_BODY, ApiError, error_body
from lmproxy.core.request_context import REQUEST_ID_HEADER, RequestIdFilter, get_request_id, set_request_id
from lmproxy.services.gateway.backend import BackendGateway
from lmproxy.services.gateway.controller import TranslationController
from lmproxy.services.gateway.model_resolver import ModelResolver
from lmproxy.services.gateway.translators.request import RequestTransformer
from lmproxy.services.gateway.translators.response import transform_error
from lmproxy.services.health import HealthService
from lmproxy.services.metrics import MetricsCollector
from lmproxy.services.sessions import SessionRegistry

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s] %(message)s"
LOG_MAX_BYTES = 10 * 1024 * 1024  # 10MB
LOG_BACKUP_COUNT = 5  # Keep 5 backup files

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    """Console logging plus an optional rotating log file, with request-id correlation."""
    formatter = logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    request_id_filter = RequestIdFilter()

    handlers = [logging.StreamHandler()]
    if settings.LOG_FILE:
        log_file = Path(settings.LOG_FILE)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(
            logging.handlers.RotatingFileHandler(
                log_file,
                maxBytes=LOG_MAX_BYTES,
                backupCount=LOG_BACKUP_COUNT,
                encoding="utf-8",
            )
        )

    root_logger = logging.getLogger()
    # Replace handlers installed by an earlier call (app factory runs once per test app)
    for existing in [h for h in root_logger.handlers if getattr(h, "lmproxy_handler", False)]:
        root_logger.removeHandler(existing)
        existing.close()

    for handler in handlers:
        handler.lmproxy_handler = True
        handler.setLevel(settings.log_level_value)
        handler.setFormatter(formatter)
        handler.addFilter(request_id_filter)
        root_logger.addHandler(handler)
    root_logger.setLevel(settings.log_level_value)

    # Quiet chatty third-party loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)

    logger.info(f"Logging configured: level={settings.LOG_LEVEL}, file={settings.LOG_FILE}")
    if settings.LOG_FILE:
        logger.info(f"Log rotation: max {LOG_MAX_BYTES / 1024 / 1024:.1f}MB, {LOG_BACKUP_COUNT} backups")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize the backend gateway on startup."""
    try:
        await app.state.gateway.initialize()
    except Exception as e:
        # Keep serving; /health reports the backend as down
        logger.error(f"Backend gateway initialization failed: {e}", exc_info=True)
    logger.info(f"{app.title} v{app.version} ready (environment={app.state.settings.ENVIRONMENT})")
    yield
    logger.info("Shutting down")


def _is_health_path(path: str) -> bool:
    return path == "/health" or path.startswith("/health/")


def create_app(settings: Optional[Settings] = None, gateway: Optional[BackendGateway] = None) -> FastAPI:
    """Build the application and wire its services."""
    settings = settings or get_settings()
    configure_logging(settings)

    gateway = gateway or BackendGateway(
        timeout_seconds=settings.claude_timeout_seconds,
        workspace=settings.workspace_dir,
    )
    resolver = ModelResolver(override_model=settings.CLAUDE_MODEL, mapping=settings.custom_model_mapping)
    sessions = SessionRegistry(workspace=settings.workspace_dir, ttl_seconds=settings.SESSION_TTL_SECONDS)
    metrics = MetricsCollector()

    app = FastAPI(
        title=settings.APP_NAME,
        description="OpenAI / LM Studio compatible API in front of Claude Code",
        version=settings.VERSION,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.gateway = gateway
    app.state.sessions = sessions
    app.state.metrics = metrics
    app.state.health = HealthService(gateway, settings.VERSION)
    app.state.controller = TranslationController(
        sessions=sessions,
        request_transformer=RequestTransformer(resolver, workspace=settings.workspace_dir),
        gateway=gateway,
    )

    @app.exception_handler(ApiError)
    async def api_error_handler(request: Request, exc: ApiError):
        """API errors become {"error": {...}} bodies with their own status."""
        if exc.status_code >= 500:
            logger.error(f"API error on {request.url.path}: {exc.code}: {exc.message}", exc_info=True)
        else:
            logger.warning(f"API error on {request.url.path}: {exc.code}: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=transform_error(exc))

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        """Unknown routes (and unsupported methods) answer 404 not_found."""
        if exc.status_code in (status.HTTP_404_NOT_FOUND, status.HTTP_405_METHOD_NOT_ALLOWED):
            logger.warning(f"No route for {request.method} {request.url.path}")
            return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content=NOT_FOUND_BODY)
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(str(exc.detail), "api_error", "http_error"),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Unhandled errors: log with traceback, never expose details."""
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=transform_error(exc),
            headers={REQUEST_ID_HEADER: get_request_id()},
        )

    # Middleware: the last one added runs first
    @app.middleware("http")
    async def record_metrics(request: Request, call_next):
        """Count requests, response times and errors (health checks excluded)."""
        path = request.url.path
        if _is_health_path(path):
            return await call_next(request)

        metrics.record_request(path, request.method)
        start_time = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            metrics.record_error("server_error")
            raise

        elapsed_ms = (time.perf_counter() - start_time) * 1000
        if response.status_code >= 500:
            metrics.record_error("server_error")
        elif response.status_code >= 400:
            metrics.record_error("client_error")
        else:
            metrics.record_success(elapsed_ms)
        return response

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log all incoming requests except health checks."""
        if _is_health_path(request.url.path):
            return await call_next(request)

        start_time = time.time()
        logger.info(f"Request: {request.method} {request.url.path}")

        response = await call_next(request)

        process_time = time.time() - start_time
        logger.info(
            f"Response: {request.method} {request.url.path} - "
            f"Status: {response.status_code} - Time: {process_time:.3f}s"
        )
        return response

    @app.middleware("http")
    async def assign_request_id(request: Request, call_next):
        """Propagate or generate X-Request-ID and bind it to the logging context."""
        request_id = set_request_id(request.headers.get(REQUEST_ID_HEADER))
        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response

    if settings.CORS_ENABLED:
        cors_origins = settings.cors_origins_list
        logger.info(f"CORS origins configured: {cors_origins}")
        app.add_middleware(
            CORSMiddleware,
            allow_origins=cors_origins,
            allow_credentials=cors_origins != ["*"],
            allow_methods=["*"],
            allow_headers=["*"],
            expose_headers=[REQUEST_ID_HEADER, "X-Session-ID"],
            max_age=3600,
        )

    app.include_router(health.router)
    app.include_router(openai_compat.router)

    return app


app = create_app()


def run() -> None:
    """Start the server with uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "lmproxy.main:app",
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.log_level_value,
    )
