"""Google Calendar adapter."""

import asyncio
import logging
from typing import Any, Callable, Optional

from google.auth.exceptions import RefreshError
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from calendar_sync_worker.models.calendar import CalendarEventDraft, CalendarProvider
from calendar_sync_worker.services.event_mapping import get_color_for_service
from calendar_sync_worker.services.providers.base import (
    CalendarProviderAdapter,
    ProviderEventPayload,
)
from calendar_sync_worker.utils.errors import (
    EventNotFoundError,
    ExternalAPIError,
    TokenRefreshError,
)

logger = logging.getLogger(__name__)

GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"

# Google Calendar API scopes
GOOGLE_CALENDAR_SCOPES = [
    "https://www.googleapis.com/auth/calendar.events",
]

# Statuses meaning the stored event id is gone
_MISSING_EVENT_STATUSES = (404, 410)


class GoogleCalendarAdapter(CalendarProviderAdapter):
    """
    Google Calendar v3 adapter.

    Google tokens are stored without an expiry: the client library refreshes
    the access token itself when a refresh token (and client secret) is
    available, so the worker never refreshes them explicitly.
    """

    provider = CalendarProvider.GOOGLE
    calendar_api_version = "v3"

    def _get_credentials(self, access_token: str, refresh_token: Optional[str]) -> Credentials:
        return Credentials(
            token=access_token,
            refresh_token=refresh_token,
            token_uri=GOOGLE_TOKEN_URI,
            client_id=self.settings.google_client_id,
            client_secret=self.settings.google_client_secret,
            scopes=GOOGLE_CALENDAR_SCOPES,
        )

    def _build_service(self, access_token: str, refresh_token: Optional[str]) -> Any:
        credentials = self._get_credentials(access_token, refresh_token)
        return build(
            "calendar",
            self.calendar_api_version,
            credentials=credentials,
            cache_discovery=False,
        )

    async def _execute(
        self,
        access_token: str,
        refresh_token: Optional[str],
        make_request: Callable[[Any], Any],
        operation: str,
    ) -> Any:
        """
        Build the client and run one API request in a worker thread.

        Discovery and ``execute()`` (including any implicit token refresh)
        are blocking, so both stay off the event loop.

        Raises:
            TokenRefreshError: If Google rejected the stored refresh token
            EventNotFoundError: If the event no longer exists
            ExternalAPIError: For any other API error
        """

        def _run() -> Any:
            service = self._build_service(access_token, refresh_token)
            return make_request(service).execute()

        try:
            return await asyncio.to_thread(_run)
        except RefreshError as e:
            raise TokenRefreshError(
                f"Google token refresh rejected during {operation}: {str(e)}"
            ) from e
        except HttpError as e:
            status = getattr(e.resp, "status", None)
            status_code = int(status) if status is not None else None
            if status_code in _MISSING_EVENT_STATUSES:
                raise EventNotFoundError(
                    f"Google Calendar event not found during {operation}",
                    status_code=status_code,
                ) from e
            raise ExternalAPIError(
                f"Google Calendar API error during {operation}: {str(e)}",
                status_code=status_code,
            ) from e

    def render_event(self, draft: CalendarEventDraft) -> ProviderEventPayload:
        event: ProviderEventPayload = {
            "summary": draft.summary,
            "description": draft.description,
            "start": {"dateTime": draft.start.isoformat(), "timeZone": draft.timezone},
            "end": {"dateTime": draft.end.isoformat(), "timeZone": draft.timezone},
            "reminders": {
                "useDefault": False,
                "overrides": [
                    {"method": reminder.method, "minutes": reminder.minutes}
                    for reminder in draft.reminders
                ],
            },
            "colorId": get_color_for_service(draft.primary_service_name),
        }
        if draft.location:
            event["location"] = draft.location
        if draft.attendees:
            event["attendees"] = [
                {"email": attendee.email, "displayName": attendee.name}
                for attendee in draft.attendees
            ]
        return event

    async def create_event(
        self,
        access_token: str,
        calendar_id: str,
        event: ProviderEventPayload,
        refresh_token: Optional[str] = None,
    ) -> str:
        created = await self._execute(
            access_token,
            refresh_token,
            lambda service: service.events().insert(calendarId=calendar_id, body=event),
            "create",
        )
        event_id = (created or {}).get("id")
        if not event_id:
            raise ExternalAPIError("Google Calendar returned no event id")
        logger.debug(f"Created Google event {event_id} in calendar {calendar_id}")
        return event_id

    async def update_event(
        self,
        access_token: str,
        calendar_id: str,
        event_id: str,
        event: ProviderEventPayload,
        refresh_token: Optional[str] = None,
    ) -> None:
        await self._execute(
            access_token,
            refresh_token,
            lambda service: service.events().update(
                calendarId=calendar_id, eventId=event_id, body=event
            ),
            "update",
        )

    async def delete_event(
        self,
        access_token: str,
        calendar_id: str,
        event_id: str,
        refresh_token: Optional[str] = None,
    ) -> None:
        await self._execute(
            access_token,
            refresh_token,
            lambda service: service.events().delete(calendarId=calendar_id, eventId=event_id),
            "delete",
        )
