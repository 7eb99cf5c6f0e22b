"""Cursos scheduling core - Main Application."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from cursos.agenda import AgendaService, CalendarEntryRepository
from cursos.auth.repository import UserRepository
from cursos.cohorts.repository import CohortRepository, EnrollmentRepository
from cursos.conferencing import (
    ConferencingService,
    CredentialRepository,
    GoogleOAuthClient,
)
from cursos.config import get_settings
from cursos.core.context import get_request_id
from cursos.core.crypto import get_token_cipher
from cursos.core.database import init_async_cassandra, shutdown_async_cassandra
from cursos.core.errors import DomainError
from cursos.core.logging import configure_structlog, get_logger
from cursos.core.middleware import RequestContextMiddleware
from cursos.core.redis import init_redis, shutdown_redis
from cursos.email import EmailService
from cursos.exams.repository import ExamRepository
from cursos.health import router as health_router
from cursos.lessons.repository import LessonRepository
from cursos.lessons.service import LessonService
from cursos.notifications import NotificationRepository, NotificationService
from cursos.scanners import (
    ExamReminderScanner,
    LessonReminderScanner,
    ScannerScheduler,
)


# Configure logging early (before creating logger)
settings = get_settings()
configure_structlog(settings, log_dir=Path(settings.log_dir))

logger = get_logger(__name__)


class AppState:
    """Application state container."""

    cassandra_session: Any = None
    email_service: EmailService | None = None
    notification_service: NotificationService | None = None
    conferencing_service: ConferencingService | None = None
    lesson_service: LessonService | None = None
    agenda_service: AgendaService | None = None
    scanner_scheduler: ScannerScheduler | None = None


app_state = AppState()


def _build_services(session: Any, redis_client: Any) -> None:
    """Wire repositories and services over an open Cassandra session."""
    settings = get_settings()
    keyspace = settings.cassandra_keyspace

    lessons = LessonRepository(session, keyspace)
    cohorts = CohortRepository(session, keyspace)
    enrollments = EnrollmentRepository(session, keyspace)
    users = UserRepository(session, keyspace)
    exams = ExamRepository(session, keyspace)
    calendar_entries = CalendarEntryRepository(session, keyspace)

    app_state.notification_service = NotificationService(
        NotificationRepository(session, keyspace),
        enrollments,
        users,
        email_service=app_state.email_service,
        redis=redis_client,
        settings=settings,
    )
    logger.info(
        "notification_service_initialized",
        redis_enabled=redis_client is not None,
        email_enabled=app_state.email_service is not None,
    )

    app_state.conferencing_service = ConferencingService(
        CredentialRepository(session, keyspace),
        GoogleOAuthClient(
            client_id=settings.google_client_id or "",
            client_secret=settings.google_client_secret or "",
            redirect_uri=settings.google_redirect_uri,
            timeout_seconds=settings.google_api_timeout_seconds,
        ),
        get_token_cipher(),
        lessons,
        enrollments,
        users,
        settings=settings,
    )
    logger.info(
        "conferencing_service_initialized", google_configured=settings.google_configured
    )

    app_state.lesson_service = LessonService(
        lessons,
        cohorts,
        enrollments,
        calendar_entries,
        app_state.conferencing_service,
        app_state.notification_service,
        settings=settings,
    )
    app_state.agenda_service = AgendaService(
        lessons, exams, cohorts, enrollments, users, settings=settings
    )
    logger.info("lesson_services_initialized")

    if settings.scheduler_enabled:
        app_state.scanner_scheduler = ScannerScheduler(
            LessonReminderScanner(lessons, app_state.notification_service, settings),
            ExamReminderScanner(exams, app_state.notification_service, settings),
            redis=redis_client,
            settings=settings,
        )
        app_state.scanner_scheduler.start()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    settings = get_settings()
    logger.info(
        "starting_application",
        app_name=settings.app_name,
        version=settings.app_version,
        environment=settings.environment,
    )

    # Initialize Redis (non-critical - app works without it)
    redis_client = None
    try:
        redis_client = await init_redis()
        logger.info("redis_initialized")
    except Exception as e:
        logger.warning(
            "redis_init_skipped",
            error=str(e),
            message="Running without Redis - real-time notifications disabled",
        )

    # Initialize Email Service (independent of database)
    if settings.email_configured:
        try:
            app_state.email_service = EmailService(
                credentials_path=settings.email_credentials_path,
                sender_address=settings.email_sender_address,
                sender_name=settings.email_sender_name,
                timeout_seconds=settings.google_api_timeout_seconds,
            )
            logger.info("email_service_initialized", sender=settings.email_sender_address)
        except Exception as e:
            logger.warning(
                "email_service_init_skipped",
                error=str(e),
                message="Running without email service",
            )

    # Initialize Cassandra (async) and the services on top of it
    try:
        app_state.cassandra_session = await init_async_cassandra()
        logger.info("cassandra_initialized")
        _build_services(app_state.cassandra_session, redis_client)
    except Exception as e:
        logger.warning(
            "database_init_skipped",
            error=str(e),
            message="Running without database connection",
        )

    yield

    # Shutdown
    logger.info("shutting_down_application")
    if app_state.scanner_scheduler is not None:
        app_state.scanner_scheduler.shutdown()
    await shutdown_redis()
    await shutdown_async_cassandra()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Cursos - Agenda de aulas e notificacoes",
        debug=False,  # Never expose stack traces in responses
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

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=settings.cors_allow_methods,
        allow_headers=settings.cors_allow_headers,
    )

    def _get_request_id_safe(request: Request) -> str | None:
        if hasattr(request.state, "request_id"):
            return request.state.request_id
        return get_request_id()

    @app.exception_handler(DomainError)
    async def domain_exception_handler(
        request: Request, exc: DomainError
    ) -> ORJSONResponse:
        """Map domain errors to their status code with a machine-readable code."""
        logger.warning(
            "domain_error",
            code=exc.code,
            status_code=exc.status_code,
            path=request.url.path,
            method=request.method,
        )
        return ORJSONResponse(
            status_code=exc.status_code,
            content={
                "error": True,
                **exc.to_dict(),
                "status_code": exc.status_code,
                "request_id": _get_request_id_safe(request),
            },
        )

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
        return ORJSONResponse(
            status_code=exc.status_code,
            content={
                "error": True,
                "message": str(exc.detail)
                if exc.status_code < status.HTTP_500_INTERNAL_SERVER_ERROR
                else "Internal server error",
                "status_code": exc.status_code,
                "request_id": _get_request_id_safe(request),
            },
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
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                "error": True,
                "message": "Validation error",
                "status_code": 422,
                "request_id": _get_request_id_safe(request),
                "details": [
                    {
                        "field": ".".join(str(loc) for loc in err.get("loc", [])),
                        "message": err.get("msg", "Invalid value"),
                    }
                    for err in exc.errors()
                ],
            },
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(
        request: Request, exc: Exception
    ) -> ORJSONResponse:
        """Catch-all handler. Details are logged, never returned."""
        logger.exception(
            "unhandled_exception",
            error_type=type(exc).__name__,
            error_message=str(exc),
            path=request.url.path,
            method=request.method,
        )
        return ORJSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": True,
                "message": "An unexpected error occurred. Please try again later.",
                "status_code": 500,
                "request_id": _get_request_id_safe(request),
            },
        )

    app.include_router(health_router)

    @app.get("/", include_in_schema=False)
    async def root() -> dict[str, str]:
        return {"message": "Cursos API", "version": settings.app_version}

    return app


app = create_app()
