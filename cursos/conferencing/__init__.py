"""Google Calendar / Meet conferencing."""

from .client import CalendarApiError, GoogleCalendarClient
from .models import (
    CONFERENCING_TABLES_CQL,
    BackfillResult,
    ConferencingCredential,
    ConferencingEvent,
    ConnectionStatus,
    EventPatch,
)
from .oauth import GoogleOAuthClient, OAuthError, OAuthTokens
from .repository import CredentialRepository
from .service import ConferencingService, NotConnectedError


__all__ = [
    "CONFERENCING_TABLES_CQL",
    "BackfillResult",
    "CalendarApiError",
    "ConferencingCredential",
    "ConferencingEvent",
    "ConferencingService",
    "ConnectionStatus",
    "CredentialRepository",
    "EventPatch",
    "GoogleCalendarClient",
    "GoogleOAuthClient",
    "NotConnectedError",
    "OAuthError",
    "OAuthTokens",
]
