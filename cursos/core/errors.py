"""Domain error taxonomy.

Only the lesson lifecycle engine surfaces ValidationError, NotFoundError,
ForbiddenError and ConflictError to its callers, always before any write.
ExternalServiceError is raised by the conferencing and email layers and is
caught at the call site of best-effort side effects.
"""

from typing import Any


class DomainError(Exception):
    """Base domain error with a machine-readable code."""

    status_code = 400

    def __init__(self, message: str, code: str = "domain_error", **details: Any):
        self.message = message
        self.code = code
        self.details = details
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for API responses."""
        return {"code": self.code, "message": self.message, **self.details}


class ValidationError(DomainError):
    """Missing or invalid fields, modality rule violations."""

    status_code = 422

    def __init__(
        self,
        message: str = "Dados invalidos",
        code: str = "validation_error",
        missing_fields: list[str] | None = None,
        **details: Any,
    ):
        self.missing_fields = list(missing_fields or [])
        if self.missing_fields:
            details["missing_fields"] = self.missing_fields
        super().__init__(message, code, **details)


class NotFoundError(DomainError):
    """Referenced entity does not exist."""

    status_code = 404

    def __init__(self, message: str = "Registro nao encontrado", code: str = "not_found"):
        super().__init__(message, code)


class ForbiddenError(DomainError):
    """Role or ownership check failed."""

    status_code = 403

    def __init__(self, message: str = "Acesso negado", code: str = "forbidden"):
        super().__init__(message, code)


class ConflictError(DomainError):
    """Transition not allowed in the current state."""

    status_code = 409

    def __init__(
        self, message: str = "Operacao em conflito", code: str = "conflict", **details: Any
    ):
        super().__init__(message, code, **details)


class ExternalServiceError(DomainError):
    """Failure talking to Google, email or another external collaborator."""

    status_code = 502

    def __init__(
        self,
        message: str = "Falha em servico externo",
        code: str = "external_service_error",
        **details: Any,
    ):
        super().__init__(message, code, **details)
