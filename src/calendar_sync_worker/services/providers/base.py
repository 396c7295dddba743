"""Calendar provider adapter contract."""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from calendar_sync_worker.config import Settings, get_settings
from calendar_sync_worker.models.calendar import (
    AppointmentSnapshot,
    CalendarEventDraft,
    CalendarProvider,
    CredentialOwner,
    RefreshedTokens,
)
from calendar_sync_worker.services.event_mapping import build_event_draft

ProviderEventPayload = Dict[str, Any]


class CalendarProviderAdapter(ABC):
    """
    Create, update and delete events in one provider's calendars.

    The sync service only depends on this interface; request and response
    shapes stay inside the concrete adapters.
    """

    provider: CalendarProvider
    # Providers that store a token expiry must be able to refresh it
    supports_token_refresh: bool = False

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    def to_provider_event(
        self,
        appointment: AppointmentSnapshot,
        owner: CredentialOwner = CredentialOwner.STAFF,
    ) -> ProviderEventPayload:
        """Convert an appointment into this provider's event payload."""
        draft = build_event_draft(
            appointment,
            owner,
            business_name=self.settings.business_name,
            timezone=self.settings.default_timezone,
            reminder_minutes=self.settings.event_reminder_minutes,
            email_reminder_minutes=self.settings.event_email_reminder_minutes,
        )
        return self.render_event(draft)

    @abstractmethod
    def render_event(self, draft: CalendarEventDraft) -> ProviderEventPayload:
        """Render a provider-neutral draft into the provider's schema."""

    @abstractmethod
    async def create_event(
        self,
        access_token: str,
        calendar_id: str,
        event: ProviderEventPayload,
        refresh_token: Optional[str] = None,
    ) -> str:
        """Create an event and return the provider event id."""

    @abstractmethod
    async def update_event(
        self,
        access_token: str,
        calendar_id: str,
        event_id: str,
        event: ProviderEventPayload,
        refresh_token: Optional[str] = None,
    ) -> None:
        """Update an existing event. Raises EventNotFoundError if it is gone."""

    @abstractmethod
    async def delete_event(
        self,
        access_token: str,
        calendar_id: str,
        event_id: str,
        refresh_token: Optional[str] = None,
    ) -> None:
        """Delete an event. Raises EventNotFoundError if it is already gone."""

    async def refresh_token(self, refresh_token: str) -> RefreshedTokens:
        """Exchange a refresh token for a new access token."""
        raise NotImplementedError(f"{self.provider.value} does not refresh tokens explicitly")
