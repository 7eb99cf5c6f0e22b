"""Google Calendar API client bound to one organizer's access token.

The discovery-based client is synchronous; calls run in a worker thread
under a bounded timeout so a slow Google response never stalls the loop.
"""

import asyncio
from http import HTTPStatus
from typing import Any

from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from cursos.core.errors import ExternalServiceError
from cursos.core.logging import get_logger


logger = get_logger(__name__)


class CalendarApiError(ExternalServiceError):
    """Google Calendar call failed or timed out."""

    def __init__(self, message: str = "Falha ao acessar o Google Calendar", **details: Any):
        super().__init__(message, "calendar_api_error", **details)


class GoogleCalendarClient:
    """Events API of a single calendar."""

    def __init__(
        self,
        access_token: str,
        calendar_id: str = "primary",
        timeout_seconds: float = 15.0,
        service: Any = None,
    ):
        self.calendar_id = calendar_id
        self.timeout_seconds = timeout_seconds
        self._service = service or build(
            "calendar",
            "v3",
            credentials=Credentials(token=access_token),
            cache_discovery=False,
        )

    async def _execute(self, request: Any, operation: str) -> Any:
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(request.execute), timeout=self.timeout_seconds
            )
        except TimeoutError as e:
            logger.warning(
                "calendar_api_timeout", operation=operation, timeout=self.timeout_seconds
            )
            msg = f"Google Calendar {operation} timed out"
            raise CalendarApiError(msg, operation=operation) from e
        except HttpError as e:
            logger.warning(
                "calendar_api_error",
                operation=operation,
                status_code=e.resp.status,
                error=str(e),
            )
            raise CalendarApiError(
                f"Google Calendar {operation} failed",
                operation=operation,
                status_code=e.resp.status,
            ) from e

    async def insert_event(self, body: dict[str, Any]) -> dict[str, Any]:
        request = self._service.events().insert(
            calendarId=self.calendar_id,
            body=body,
            conferenceDataVersion=1,
            sendUpdates="all",
        )
        return await self._execute(request, "insert")

    async def patch_event(self, event_id: str, body: dict[str, Any]) -> dict[str, Any]:
        request = self._service.events().patch(
            calendarId=self.calendar_id,
            eventId=event_id,
            body=body,
            sendUpdates="all",
        )
        return await self._execute(request, "patch")

    async def delete_event(self, event_id: str) -> None:
        request = self._service.events().delete(
            calendarId=self.calendar_id, eventId=event_id, sendUpdates="all"
        )
        try:
            await self._execute(request, "delete")
        except CalendarApiError as e:
            # Already removed on Google's side
            if e.details.get("status_code") in (HTTPStatus.NOT_FOUND, HTTPStatus.GONE):
                logger.info("calendar_event_already_deleted", event_id=event_id)
                return
            raise
