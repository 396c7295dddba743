"""Outlook Calendar adapter (Microsoft Graph)."""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

import httpx
import requests
from msal import ConfidentialClientApplication

from calendar_sync_worker.config import Settings
from calendar_sync_worker.models.calendar import (
    CalendarEventDraft,
    CalendarProvider,
    RefreshedTokens,
)
from calendar_sync_worker.services.providers.base import (
    CalendarProviderAdapter,
    ProviderEventPayload,
)
from calendar_sync_worker.utils.errors import (
    EventNotFoundError,
    ExternalAPIError,
    TokenRefreshError,
)
from calendar_sync_worker.utils.time import normalize_to_utc, utcnow

logger = logging.getLogger(__name__)

GRAPH_API_URL = "https://graph.microsoft.com/v1.0"
OUTLOOK_CALENDAR_SCOPES = ["Calendars.ReadWrite", "User.Read"]
DEFAULT_TOKEN_LIFETIME_SECONDS = 3600


def _graph_datetime(value: datetime) -> str:
    """UTC wall-clock time without offset, paired with timeZone "UTC"."""
    return normalize_to_utc(value).replace(tzinfo=None).isoformat()


class OutlookCalendarAdapter(CalendarProviderAdapter):
    """Microsoft Graph calendar adapter with MSAL token refresh."""

    provider = CalendarProvider.OUTLOOK
    supports_token_refresh = True

    def __init__(self, settings: Optional[Settings] = None, graph_api_url: str = GRAPH_API_URL):
        super().__init__(settings)
        self.graph_api_url = graph_api_url

    def _events_url(self, calendar_id: str, event_id: Optional[str] = None) -> str:
        if not calendar_id or calendar_id == self.settings.default_calendar_id:
            url = f"{self.graph_api_url}/me/calendar/events"
        else:
            url = f"{self.graph_api_url}/me/calendars/{calendar_id}/events"
        if event_id:
            url = f"{url}/{event_id}"
        return url

    async def _request(
        self,
        method: str,
        url: str,
        access_token: str,
        json: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        async with httpx.AsyncClient(timeout=self.settings.provider_timeout_seconds) as client:
            response = await client.request(
                method,
                url,
                headers={
                    "Authorization": f"Bearer {access_token}",
                    "Content-Type": "application/json",
                },
                json=json,
            )

        if response.status_code == 404:
            raise EventNotFoundError(
                f"Outlook event not found ({method} {url})", status_code=404
            )
        if response.status_code >= 400:
            raise ExternalAPIError(
                f"Microsoft Graph API error: {response.status_code} - {response.text}",
                status_code=response.status_code,
            )
        return response

    def render_event(self, draft: CalendarEventDraft) -> ProviderEventPayload:
        event: ProviderEventPayload = {
            "subject": draft.summary,
            "body": {"contentType": "text", "content": draft.description},
            "start": {"dateTime": _graph_datetime(draft.start), "timeZone": "UTC"},
            "end": {"dateTime": _graph_datetime(draft.end), "timeZone": "UTC"},
            "isReminderOn": True,
            "reminderMinutesBeforeStart": min(
                (r.minutes for r in draft.reminders if r.method == "popup"),
                default=self.settings.event_reminder_minutes,
            ),
        }
        if draft.location:
            event["location"] = {"displayName": draft.location}
        if draft.attendees:
            event["attendees"] = [
                {
                    "emailAddress": {"address": attendee.email, "name": attendee.name},
                    "type": "required",
                }
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
        response = await self._request("POST", self._events_url(calendar_id), access_token, json=event)
        event_id = response.json().get("id")
        if not event_id:
            raise ExternalAPIError("Microsoft Graph returned no event id")
        logger.debug(f"Created Outlook event {event_id} in calendar {calendar_id}")
        return event_id

    async def update_event(
        self,
        access_token: str,
        calendar_id: str,
        event_id: str,
        event: ProviderEventPayload,
        refresh_token: Optional[str] = None,
    ) -> None:
        await self._request(
            "PATCH", self._events_url(calendar_id, event_id), access_token, json=event
        )

    async def delete_event(
        self,
        access_token: str,
        calendar_id: str,
        event_id: str,
        refresh_token: Optional[str] = None,
    ) -> None:
        await self._request("DELETE", self._events_url(calendar_id, event_id), access_token)

    def _acquire_token_by_refresh_token(self, refresh_token: str) -> Dict[str, Any]:
        app = ConfidentialClientApplication(
            client_id=self.settings.azure_ad_client_id,
            client_credential=self.settings.azure_ad_client_secret,
            authority=f"https://login.microsoftonline.com/{self.settings.azure_ad_tenant_id}",
        )
        return app.acquire_token_by_refresh_token(
            refresh_token=refresh_token,
            scopes=OUTLOOK_CALENDAR_SCOPES,
        )

    async def refresh_token(self, refresh_token: str) -> RefreshedTokens:
        """
        Exchange an Outlook refresh token for a new access token.

        Args:
            refresh_token: Stored refresh token

        Returns:
            RefreshedTokens; ``refresh_token`` is None when Microsoft did not
            rotate it, in which case the stored one stays valid

        Raises:
            TokenRefreshError: If Microsoft rejects the refresh token
            ExternalAPIError: If the token endpoint could not be reached
        """
        # MSAL is synchronous and talks to the token endpoint through requests
        try:
            token_result = await asyncio.to_thread(
                self._acquire_token_by_refresh_token, refresh_token
            )
        except requests.exceptions.RequestException as e:
            raise ExternalAPIError(f"Outlook token endpoint unreachable: {str(e)}") from e

        token_result = token_result or {}
        if "error" in token_result or "access_token" not in token_result:
            error_desc = token_result.get("error_description") or token_result.get(
                "error", "Unknown error"
            )
            raise TokenRefreshError(f"Token refresh error: {error_desc}")

        expires_in = int(token_result.get("expires_in", DEFAULT_TOKEN_LIFETIME_SECONDS))
        return RefreshedTokens(
            access_token=token_result["access_token"],
            refresh_token=token_result.get("refresh_token"),
            expires_at=utcnow() + timedelta(seconds=expires_in),
        )
