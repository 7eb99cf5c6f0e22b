"""Application settings using Pydantic Settings."""

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="cursos", description="Application name")
    app_version: str = Field(default="0.1.0", description="Application version")
    environment: Literal["development", "staging", "production", "testing"] = Field(
        default="development", description="Environment name"
    )
    debug: bool = Field(default=True, description="Debug mode")
    frontend_url: str = Field(
        default="http://localhost:3000",
        description="Public URL of the web platform (used in email links)",
    )

    # Redis
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL",
    )
    redis_max_connections: int = Field(default=10, description="Max Redis connections")
    redis_socket_timeout: float = Field(default=5.0, description="Redis socket timeout")
    redis_socket_connect_timeout: float = Field(
        default=5.0, description="Redis connect timeout"
    )
    redis_retry_on_timeout: bool = Field(default=True, description="Retry on timeout")
    redis_health_check_interval: int = Field(
        default=30, description="Health check interval"
    )

    # Cassandra
    cassandra_hosts: list[str] = Field(
        default=["localhost"], description="Cassandra hosts"
    )
    cassandra_port: int = Field(default=9042, description="Cassandra port")
    cassandra_keyspace: str = Field(default="cursos", description="Cassandra keyspace")
    cassandra_username: str | None = Field(default=None, description="Cassandra user")
    cassandra_password: str | None = Field(
        default=None, description="Cassandra password"
    )
    cassandra_protocol_version: int = Field(default=4, description="Protocol version")
    cassandra_connect_timeout: float = Field(
        default=10.0, description="Connect timeout"
    )

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="DEBUG", description="Log level"
    )
    log_format: Literal["json", "console"] = Field(
        default="console", description="Log format"
    )
    log_include_caller_info: bool = Field(
        default=True, description="Include caller info"
    )
    log_dir: str = Field(default="logs", description="Directory for log files")
    log_file_max_bytes: int = Field(
        default=10 * 1024 * 1024, description="Max size per log file (10MB default)"
    )
    log_file_backup_count: int = Field(
        default=5, description="Number of backup log files to keep"
    )
    log_requests: bool = Field(
        default=True, description="Log HTTP request start/finish"
    )
    log_exclude_paths: list[str] = Field(
        default=["/health", "/health/live", "/health/ready"],
        description="Paths to exclude from request logging",
    )

    # CORS
    cors_origins: list[str] = Field(default=["*"], description="CORS origins")
    cors_allow_credentials: bool = Field(default=True, description="Allow credentials")
    cors_allow_methods: list[str] = Field(default=["*"], description="Allowed methods")
    cors_allow_headers: list[str] = Field(default=["*"], description="Allowed headers")

    # Google OAuth / Calendar
    google_client_id: str | None = Field(
        default=None, description="Google OAuth client ID"
    )
    google_client_secret: str | None = Field(
        default=None, description="Google OAuth client secret (KEEP SECRET!)"
    )
    google_redirect_uri: str = Field(
        default="http://localhost:8000/google-calendar/callback",
        description="OAuth redirect URI registered in Google Cloud Console",
    )
    google_api_timeout_seconds: float = Field(
        default=15.0, description="Timeout applied to every Google API call"
    )

    # Token encryption
    token_encryption_secret: str = Field(
        default="dev-token-secret-change-in-production-32chars!",
        description="Server secret used to derive the OAuth token encryption key",
    )
    token_encryption_salt: str = Field(
        default="cursos-calendar-tokens",
        description="Salt for the token encryption key derivation",
    )

    # Scheduling
    schedule_timezone: str = Field(
        default="America/Sao_Paulo",
        description="Timezone used to interpret lesson dates and times of day",
    )
    delete_notice_days: int = Field(
        default=5, description="Minimum notice (days) to cancel a scheduled lesson"
    )
    attendance_lookback_hours: int = Field(
        default=24, description="Window to match an attendance exit with its entry"
    )
    lesson_reminder_lead_minutes: int = Field(
        default=120, description="How long before a lesson the reminder is sent"
    )
    exam_reminder_offsets_hours: list[int] = Field(
        default=[24, 8, 2], description="Exam reminder tiers (hours before start)"
    )
    exam_urgent_offset_hours: int = Field(
        default=2, description="Exam reminder tier escalated to email"
    )
    reminder_tolerance_minutes: int = Field(
        default=10, description="Half-width of the reminder matching window"
    )
    scheduler_enabled: bool = Field(
        default=True, description="Run the periodic reminder scanners"
    )
    scanner_lock_ttl_seconds: int = Field(
        default=25 * 60, description="Redis lock TTL guarding scanner runs"
    )

    # Notifications
    notification_email_types: list[str] = Field(
        default=[
            "PROVA_EM_2H",
            "AULA_CANCELADA",
            "INSTRUTOR_VINCULADO",
            "TURMA_INICIOU",
            "TURMA_FINALIZADA",
        ],
        description="Notification types that escalate to a critical email",
    )

    # Email (Gmail API)
    email_enabled: bool = Field(
        default=False, description="Enable email sending via Gmail API"
    )
    email_credentials_path: str = Field(
        default="credentials/google-service-account.json",
        description="Path to Google service account JSON file",
    )
    email_sender_address: str = Field(
        default="contato@cursos.com.br",
        description="Sender email address (must be in Google Workspace domain)",
    )
    email_sender_name: str = Field(default="Cursos", description="Sender display name")

    @field_validator("exam_reminder_offsets_hours")
    @classmethod
    def check_exam_reminder_tiers(cls, value: list[int]) -> list[int]:
        """Only tiers with a matching notification type can be delivered."""
        from cursos.notifications.models import NotificationType

        unknown = []
        for hours in value:
            try:
                NotificationType.exam_reminder(hours)
            except ValueError:
                unknown.append(hours)
        if unknown:
            msg = f"Unsupported exam reminder tiers: {unknown}"
            raise ValueError(msg)
        return value

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment == "production"

    @property
    def google_configured(self) -> bool:
        """Check if Google OAuth credentials are configured."""
        return bool(self.google_client_id and self.google_client_secret)

    @property
    def email_configured(self) -> bool:
        """Check if Gmail API email is configured."""
        return bool(self.email_enabled and self.email_sender_address)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
