# Core infrastructure
from cursos.core.context import (
    OperationContext,
    clear_context,
    get_context,
    get_correlation_id,
    get_request_id,
    get_user_id,
    set_correlation_id,
    set_request_id,
    set_user_id,
)
from cursos.core.errors import (
    ConflictError,
    DomainError,
    ExternalServiceError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from cursos.core.logging import configure_structlog, get_logger
from cursos.core.side_effects import PostCommitAction, run_post_commit


__all__ = [
    "ConflictError",
    "DomainError",
    "ExternalServiceError",
    "ForbiddenError",
    "NotFoundError",
    "OperationContext",
    "PostCommitAction",
    "ValidationError",
    "clear_context",
    "configure_structlog",
    "get_context",
    "get_correlation_id",
    "get_logger",
    "get_request_id",
    "get_user_id",
    "run_post_commit",
    "set_correlation_id",
    "set_request_id",
    "set_user_id",
]
