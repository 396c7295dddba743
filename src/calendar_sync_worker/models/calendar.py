"""Pydantic models describing appointments, calendar connections and events."""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class SyncAction(str, Enum):
    """Appointment lifecycle event that triggers a sync pass."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class CalendarProvider(str, Enum):
    """External calendar provider."""

    GOOGLE = "google"
    OUTLOOK = "outlook"


class CredentialOwner(str, Enum):
    """Who a stored calendar connection belongs to."""

    STAFF = "staff"
    CLIENT = "client"


class CalendarCredentials(BaseModel):
    """Stored OAuth credentials for one (owner, provider) pair."""

    access_token: Optional[str] = Field(default=None, description="OAuth access token")
    refresh_token: Optional[str] = Field(default=None, description="OAuth refresh token")
    calendar_id: Optional[str] = Field(default=None, description="Target calendar, None means primary")
    token_expiry: Optional[datetime] = Field(
        default=None,
        description="Access token expiry; None when the provider client refreshes on its own",
    )

    @property
    def is_configured(self) -> bool:
        """A connection exists only when an access token is stored."""
        return bool(self.access_token)


class CalendarConnection(BaseModel):
    """Credentials together with the record that owns them."""

    owner: CredentialOwner
    owner_id: str
    provider: CalendarProvider
    credentials: CalendarCredentials = Field(default_factory=CalendarCredentials)

    @property
    def label(self) -> str:
        return f"{self.owner.value}:{self.provider.value}"


class SyncTarget(CalendarConnection):
    """A configured connection plus the appointment column holding its event id."""

    event_id_field: str = Field(..., description="Appointment column storing the provider event id")
    event_id: Optional[str] = Field(default=None, description="Currently stored provider event id")

    def calendar_id_or(self, default: str) -> str:
        return self.credentials.calendar_id or default


class AppointmentSnapshot(BaseModel):
    """Appointment fields needed to render provider events."""

    id: str
    staff_id: str
    client_id: Optional[str] = None
    scheduled_start: datetime
    scheduled_end: datetime
    notes: Optional[str] = None
    service_names: List[str] = Field(default_factory=list)
    staff_name: str
    client_name: Optional[str] = None
    client_email: Optional[str] = None

    @property
    def primary_service_name(self) -> str:
        return self.service_names[0] if self.service_names else "Appointment"


class ResolvedAppointment(BaseModel):
    """An appointment and the sync targets configured for it, in sync order."""

    appointment: AppointmentSnapshot
    targets: List[SyncTarget] = Field(default_factory=list)


class RefreshedTokens(BaseModel):
    """Tokens returned by a provider refresh call."""

    access_token: str
    refresh_token: Optional[str] = None
    expires_at: datetime


class EventAttendee(BaseModel):
    email: str
    name: Optional[str] = None


class EventReminder(BaseModel):
    method: str = Field(..., description="'email' or 'popup'")
    minutes: int


class CalendarEventDraft(BaseModel):
    """Provider-neutral event, rendered by each adapter into its own schema."""

    summary: str
    description: str
    location: Optional[str] = None
    start: datetime
    end: datetime
    timezone: str = "UTC"
    primary_service_name: str = "Appointment"
    attendees: List[EventAttendee] = Field(default_factory=list)
    reminders: List[EventReminder] = Field(default_factory=list)


class ProviderConnectionStatus(BaseModel):
    connected: bool
    calendar_id: Optional[str] = None
    token_expires_at: Optional[datetime] = None


class ConnectionStatus(BaseModel):
    """Which calendars an owner has connected."""

    owner: CredentialOwner
    owner_id: str
    name: str
    email: Optional[str] = None
    google: ProviderConnectionStatus
    outlook: ProviderConnectionStatus
