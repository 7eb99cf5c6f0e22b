"""Conferencing orchestrator.

Business logic for:
- Connecting an organizer's Google Calendar (OAuth grant, status, disconnect)
- Transparent access-token refresh before each calendar call
- Creating, patching and deleting Calendar events with a Google Meet link
- Backfilling Meet events for lessons published before the organizer connected

Every call is attributed to the organizer whose credential is used. Callers
in the lesson engine treat every failure here as best-effort.
"""

import uuid
from collections.abc import Callable
from datetime import UTC, datetime
from typing import TYPE_CHECKING
from uuid import UUID

from cursos.config.settings import Settings, get_settings
from cursos.core.crypto import TokenCipher, TokenDecryptionError
from cursos.core.errors import ExternalServiceError, ValidationError
from cursos.core.logging import get_logger
from cursos.lessons.models import Lesson, LessonStatus

from .client import GoogleCalendarClient
from .models import (
    BackfillResult,
    ConferencingCredential,
    ConferencingEvent,
    ConnectionStatus,
    EventPatch,
)


if TYPE_CHECKING:
    from cursos.auth.repository import UserRepository
    from cursos.cohorts.repository import EnrollmentRepository
    from cursos.lessons.repository import LessonRepository

    from .oauth import GoogleOAuthClient
    from .repository import CredentialRepository


logger = get_logger(__name__)

# Builds a calendar client from (access_token, calendar_id)
CalendarClientFactory = Callable[[str, str], GoogleCalendarClient]

EMAIL_REMINDER_MINUTES = 120
POPUP_REMINDER_MINUTES = 30


# ==============================================================================
# Custom Exceptions
# ==============================================================================


class NotConnectedError(ExternalServiceError):
    """Organizer has not connected a Google Calendar."""

    def __init__(self, message: str = "Google Calendar nao conectado"):
        super().__init__(message, "calendar_not_connected")


# ==============================================================================
# Conferencing Service
# ==============================================================================


class ConferencingService:
    """Google Calendar + Meet orchestration per organizer."""

    def __init__(
        self,
        credentials: "CredentialRepository",
        oauth_client: "GoogleOAuthClient",
        cipher: TokenCipher,
        lessons: "LessonRepository",
        enrollments: "EnrollmentRepository",
        users: "UserRepository",
        client_factory: CalendarClientFactory | None = None,
        settings: Settings | None = None,
    ):
        self.credentials = credentials
        self.oauth_client = oauth_client
        self.cipher = cipher
        self.lessons = lessons
        self.enrollments = enrollments
        self.users = users
        self.settings = settings or get_settings()
        self.client_factory = client_factory or self._default_client_factory

    def _default_client_factory(
        self, access_token: str, calendar_id: str
    ) -> GoogleCalendarClient:
        return GoogleCalendarClient(
            access_token,
            calendar_id=calendar_id,
            timeout_seconds=self.settings.google_api_timeout_seconds,
        )

    # ==========================================================================
    # Authorization
    # ==========================================================================

    def authorization_url(self, organizer_id: UUID) -> str:
        return self.oauth_client.authorization_url(state=str(organizer_id))

    async def complete_authorization(self, code: str, state: str) -> ConnectionStatus:
        """Store the granted tokens and backfill events for published lessons.

        Raises:
            ValidationError: If the code or state is missing or malformed.
            OAuthError: If Google rejects the code.
        """
        if not code or not state:
            raise ValidationError(
                "Parametros de autorizacao ausentes",
                "invalid_oauth_callback",
                missing_fields=[name for name, v in (("code", code), ("state", state)) if not v],
            )
        try:
            organizer_id = UUID(state)
        except ValueError as e:
            raise ValidationError("Estado de autorizacao invalido", "invalid_oauth_state") from e

        tokens = await self.oauth_client.exchange_code(code)
        now = datetime.now(UTC)
        existing = await self.credentials.get(organizer_id)
        refresh_token = tokens.refresh_token or (existing.refresh_token if existing else None)
        credential = ConferencingCredential(
            organizer_id=organizer_id,
            access_token=self.cipher.encrypt(tokens.access_token),
            refresh_token=self.cipher.encrypt(refresh_token) if refresh_token else None,
            calendar_id="primary",
            expires_at=tokens.expires_at,
            connected_at=existing.connected_at if existing else now,
            updated_at=now,
        )
        await self.credentials.save(credential)
        logger.info("calendar_connected", organizer_id=str(organizer_id))

        try:
            await self.backfill_existing_lessons(organizer_id)
        except Exception as e:
            logger.warning(
                "calendar_backfill_failed", organizer_id=str(organizer_id), error=str(e)
            )

        return self._status_of(credential)

    async def disconnect(self, organizer_id: UUID) -> None:
        await self.credentials.delete(organizer_id)
        logger.info("calendar_disconnected", organizer_id=str(organizer_id))

    async def get_status(self, organizer_id: UUID) -> ConnectionStatus:
        credential = await self.credentials.get(organizer_id)
        if credential is None:
            return ConnectionStatus(connected=False)
        return self._status_of(credential)

    def _status_of(self, credential: ConferencingCredential) -> ConnectionStatus:
        return ConnectionStatus(
            connected=True,
            expired=credential.is_expired(),
            calendar_id=credential.calendar_id,
            expires_at=credential.expires_at,
        )

    async def get_authorized_client(self, organizer_id: UUID) -> GoogleCalendarClient:
        """Client for the organizer's calendar, refreshing an expired token.

        Raises:
            NotConnectedError: If the organizer has no usable credential.
            OAuthError: If refreshing the token fails.
        """
        credential = await self.credentials.get(organizer_id)
        if credential is None:
            raise NotConnectedError

        try:
            access_token = self.cipher.decrypt(credential.access_token)
            refresh_token = (
                self.cipher.decrypt(credential.refresh_token)
                if credential.refresh_token
                else None
            )
        except TokenDecryptionError as e:
            logger.error("calendar_credential_unreadable", organizer_id=str(organizer_id))
            raise NotConnectedError("Credencial do Google Calendar invalida") from e

        if credential.is_expired():
            if refresh_token is None:
                raise NotConnectedError("Credencial do Google Calendar expirada")
            tokens = await self.oauth_client.refresh(refresh_token)
            access_token = tokens.access_token
            credential.access_token = self.cipher.encrypt(access_token)
            if tokens.refresh_token and tokens.refresh_token != refresh_token:
                credential.refresh_token = self.cipher.encrypt(tokens.refresh_token)
            credential.expires_at = tokens.expires_at
            credential.updated_at = datetime.now(UTC)
            await self.credentials.save(credential)
            logger.info("calendar_token_refreshed", organizer_id=str(organizer_id))

        return self.client_factory(access_token, credential.calendar_id)

    # ==========================================================================
    # Events
    # ==========================================================================

    def _event_time(self, instant: datetime) -> dict[str, str]:
        return {
            "dateTime": instant.astimezone(UTC).isoformat(),
            "timeZone": self.settings.schedule_timezone,
        }

    async def create_event(
        self,
        title: str,
        description: str | None,
        start: datetime,
        end: datetime,
        organizer_id: UUID,
        attendee_emails: list[str],
    ) -> ConferencingEvent:
        """Create a calendar event with a generated Meet link."""
        if end <= start:
            msg = "Event end must be after its start"
            raise ValueError(msg)

        client = await self.get_authorized_client(organizer_id)
        body = {
            "summary": title,
            "description": description or "",
            "start": self._event_time(start),
            "end": self._event_time(end),
            "attendees": [{"email": email} for email in attendee_emails],
            "conferenceData": {
                "createRequest": {
                    "requestId": str(uuid.uuid4()),
                    "conferenceSolutionKey": {"type": "hangoutsMeet"},
                }
            },
            "reminders": {
                "useDefault": False,
                "overrides": [
                    {"method": "email", "minutes": EMAIL_REMINDER_MINUTES},
                    {"method": "popup", "minutes": POPUP_REMINDER_MINUTES},
                ],
            },
            "guestsCanModify": False,
            "guestsCanInviteOthers": False,
            "guestsCanSeeOtherGuests": True,
        }
        created = await client.insert_event(body)
        event = ConferencingEvent(event_id=created["id"], join_url=_join_url(created))
        logger.info(
            "calendar_event_created",
            organizer_id=str(organizer_id),
            event_id=event.event_id,
            attendees=len(attendee_emails),
        )
        return event

    async def update_event(
        self, event_id: str, organizer_id: UUID, patch: EventPatch
    ) -> None:
        body: dict = {}
        if patch.title is not None:
            body["summary"] = patch.title
        if patch.description is not None:
            body["description"] = patch.description
        if patch.start is not None:
            body["start"] = self._event_time(patch.start)
        if patch.end is not None:
            body["end"] = self._event_time(patch.end)
        if patch.attendee_emails is not None:
            body["attendees"] = [{"email": email} for email in patch.attendee_emails]
        if not body:
            return

        client = await self.get_authorized_client(organizer_id)
        await client.patch_event(event_id, body)
        logger.info(
            "calendar_event_updated",
            organizer_id=str(organizer_id),
            event_id=event_id,
            fields=sorted(body),
        )

    async def delete_event(self, event_id: str, organizer_id: UUID) -> None:
        client = await self.get_authorized_client(organizer_id)
        await client.delete_event(event_id)
        logger.info(
            "calendar_event_deleted", organizer_id=str(organizer_id), event_id=event_id
        )

    async def resolve_attendees(self, class_id: UUID | None) -> list[str]:
        """Emails of the active enrollments of a class."""
        if class_id is None:
            return []
        enrollments = await self.enrollments.list_active_for_class(class_id)
        users = await self.users.get_many([e.student_id for e in enrollments])
        return sorted({user.email for user in users.values() if user.email})

    # ==========================================================================
    # Backfill
    # ==========================================================================

    async def backfill_existing_lessons(self, organizer_id: UUID) -> BackfillResult:
        """Create Meet events for this organizer's future published lessons.

        Each lesson is handled independently: a failure is logged and the
        batch continues.
        """
        now = datetime.now(UTC)
        candidates = [
            lesson
            for lesson in await self.lessons.list_for_instructor(organizer_id)
            if _needs_backfill(lesson, now)
        ]
        result = BackfillResult(total=len(candidates))

        for lesson in candidates:
            try:
                event = await self.create_event(
                    title=lesson.title,
                    description=lesson.description,
                    start=lesson.starts_at,
                    end=lesson.ends_at,
                    organizer_id=organizer_id,
                    attendee_emails=await self.resolve_attendees(lesson.class_id),
                )
                await self.lessons.set_conferencing(
                    lesson.lesson_id, event.join_url, event.event_id, datetime.now(UTC)
                )
                result.synced += 1
            except Exception as e:
                result.failed += 1
                logger.warning(
                    "calendar_backfill_lesson_failed",
                    organizer_id=str(organizer_id),
                    lesson_id=str(lesson.lesson_id),
                    error=str(e),
                )

        logger.info(
            "calendar_backfill_completed",
            organizer_id=str(organizer_id),
            total=result.total,
            synced=result.synced,
            failed=result.failed,
        )
        return result


def _needs_backfill(lesson: Lesson, now: datetime) -> bool:
    return (
        not lesson.is_deleted
        and lesson.status == LessonStatus.PUBLISHED
        and lesson.is_conferencing_eligible
        and lesson.calendar_event_id is None
        and lesson.starts_at is not None
        and lesson.starts_at > now
    )


def _join_url(event: dict) -> str | None:
    if event.get("hangoutLink"):
        return event["hangoutLink"]
    for entry in event.get("conferenceData", {}).get("entryPoints", []):
        if entry.get("entryPointType") == "video":
            return entry.get("uri")
    return None
