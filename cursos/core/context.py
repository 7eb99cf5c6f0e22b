"""Execution context tracking using contextvars.

Every HTTP request and every scanner run gets its own context, so log
entries emitted deep inside services (post-commit actions, fan-out loops)
can still be correlated with the operation that triggered them.
"""

from contextvars import ContextVar, Token
from typing import Any
from uuid import UUID, uuid4


request_id_var: ContextVar[str] = ContextVar("request_id", default="")
user_id_var: ContextVar[str | None] = ContextVar("user_id", default=None)
correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)


def generate_request_id() -> str:
    """Generate a new unique request ID."""
    return str(uuid4())


def get_request_id() -> str:
    """Get the current request ID."""
    return request_id_var.get()


def set_request_id(request_id: str | None = None) -> str:
    """Set the request ID for the current context, generating one if needed."""
    rid = request_id or generate_request_id()
    request_id_var.set(rid)
    return rid


def get_user_id() -> str | None:
    return user_id_var.get()


def set_user_id(user_id: str | UUID | None) -> None:
    user_id_var.set(str(user_id) if user_id is not None else None)


def get_correlation_id() -> str | None:
    return correlation_id_var.get()


def set_correlation_id(correlation_id: str | None) -> None:
    correlation_id_var.set(correlation_id)


def get_context() -> dict[str, Any]:
    """Get the non-empty context variables as a dictionary."""
    context: dict[str, Any] = {}
    if request_id := get_request_id():
        context["request_id"] = request_id
    if user_id := get_user_id():
        context["user_id"] = user_id
    if correlation_id := get_correlation_id():
        context["correlation_id"] = correlation_id
    return context


def clear_context() -> None:
    """Clear all context variables (end of request)."""
    request_id_var.set("")
    user_id_var.set(None)
    correlation_id_var.set(None)


class OperationContext:
    """Context manager scoping a background operation.

    Usage:
        with OperationContext(correlation_id="scanner:lesson_reminder"):
            await scanner.run()
    """

    def __init__(
        self,
        correlation_id: str | None = None,
        user_id: str | UUID | None = None,
    ) -> None:
        self.correlation_id = correlation_id
        self.user_id = user_id
        self._tokens: list[tuple[ContextVar, Token]] = []

    def __enter__(self) -> "OperationContext":
        self._tokens.append((request_id_var, request_id_var.set(generate_request_id())))
        if self.correlation_id is not None:
            self._tokens.append(
                (correlation_id_var, correlation_id_var.set(self.correlation_id))
            )
        if self.user_id is not None:
            self._tokens.append((user_id_var, user_id_var.set(str(self.user_id))))
        return self

    def __exit__(self, *_: object) -> None:
        for var, token in reversed(self._tokens):
            var.reset(token)
        self._tokens.clear()
