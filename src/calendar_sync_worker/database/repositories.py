"""Database repositories for the calendar sync worker."""

import logging
from datetime import datetime
from typing import Dict, List, NamedTuple, Optional, Type, Union

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from calendar_sync_worker.database.models import (
    Appointment,
    AppointmentService,
    Client,
    Staff,
)
from calendar_sync_worker.models.calendar import (
    CalendarConnection,
    CalendarCredentials,
    CalendarProvider,
    CredentialOwner,
    RefreshedTokens,
)
from calendar_sync_worker.utils.errors import NotFoundError
from calendar_sync_worker.utils.time import normalize_to_utc

logger = logging.getLogger(__name__)

CredentialOwnerRecord = Union[Staff, Client]


class CredentialColumns(NamedTuple):
    """Column names holding one provider's credentials on an owner record."""

    access_token: str
    refresh_token: str
    calendar_id: str
    token_expiry: Optional[str]


CREDENTIAL_COLUMNS: Dict[CalendarProvider, CredentialColumns] = {
    CalendarProvider.GOOGLE: CredentialColumns(
        access_token="google_calendar_token",
        refresh_token="google_refresh_token",
        calendar_id="google_calendar_id",
        token_expiry=None,
    ),
    CalendarProvider.OUTLOOK: CredentialColumns(
        access_token="outlook_calendar_token",
        refresh_token="outlook_refresh_token",
        calendar_id="outlook_calendar_id",
        token_expiry="outlook_token_expiry",
    ),
}

OWNER_MODELS: Dict[CredentialOwner, Type[CredentialOwnerRecord]] = {
    CredentialOwner.STAFF: Staff,
    CredentialOwner.CLIENT: Client,
}

EVENT_ID_FIELDS = (
    "staff_google_event_id",
    "staff_outlook_event_id",
    "client_google_event_id",
    "client_outlook_event_id",
)

ACTIVE_APPOINTMENT_STATUSES = ("booked", "confirmed")


class AppointmentsRepository:
    """Repository for appointment operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_with_services(self, appointment_id: str) -> Optional[Appointment]:
        """Get appointment with its ordered services loaded."""
        result = await self.session.execute(
            select(Appointment)
            .options(selectinload(Appointment.services).selectinload(AppointmentService.service))
            .where(Appointment.id == appointment_id)
        )
        return result.scalar_one_or_none()

    async def set_event_id(
        self, appointment_id: str, field: str, event_id: Optional[str]
    ) -> None:
        """Persist (or clear) the provider event id for one sync target."""
        if field not in EVENT_ID_FIELDS:
            raise ValueError(f"Unknown event id field: {field}")

        appointment = await self.session.get(Appointment, appointment_id)
        if appointment is None:
            raise NotFoundError(resource="Appointment", resource_id=appointment_id)

        setattr(appointment, field, event_id)
        await self.session.flush()

    async def list_backfill_candidates(
        self,
        now: datetime,
        staff_id: Optional[str] = None,
        limit: int = 100,
    ) -> List[str]:
        """
        Get upcoming active appointments with a connected calendar but no event.

        Args:
            now: Only appointments starting at or after this time
            staff_id: Optional staff filter
            limit: Maximum number of appointment ids

        Returns:
            Appointment ids ordered by start time
        """
        stmt = (
            select(Appointment.id)
            .join(Staff, Staff.id == Appointment.staff_id)
            .outerjoin(Client, Client.id == Appointment.client_id)
            .where(Appointment.scheduled_start >= now)
            .where(Appointment.status.in_(ACTIVE_APPOINTMENT_STATUSES))
            .where(
                or_(
                    and_(
                        Staff.google_calendar_token.is_not(None),
                        Appointment.staff_google_event_id.is_(None),
                    ),
                    and_(
                        Staff.outlook_calendar_token.is_not(None),
                        Appointment.staff_outlook_event_id.is_(None),
                    ),
                    and_(
                        Client.google_calendar_token.is_not(None),
                        Appointment.client_google_event_id.is_(None),
                    ),
                    and_(
                        Client.outlook_calendar_token.is_not(None),
                        Appointment.client_outlook_event_id.is_(None),
                    ),
                )
            )
            .order_by(Appointment.scheduled_start)
            .limit(limit)
        )
        if staff_id:
            stmt = stmt.where(Appointment.staff_id == staff_id)

        result = await self.session.execute(stmt)
        return list(result.scalars().all())


class CalendarCredentialsRepository:
    """
    Read and write calendar credentials on staff and client records.

    Staff and clients store identical credential columns, so every operation
    is parametrized by owner kind and provider instead of being written per
    owner type.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_owner(
        self, owner: CredentialOwner, owner_id: str
    ) -> Optional[CredentialOwnerRecord]:
        """Get the staff or client record owning a connection."""
        return await self.session.get(OWNER_MODELS[owner], owner_id)

    @staticmethod
    def read_credentials(
        record: CredentialOwnerRecord, provider: CalendarProvider
    ) -> CalendarCredentials:
        """Extract one provider's credentials from an owner record."""
        columns = CREDENTIAL_COLUMNS[provider]
        expiry = getattr(record, columns.token_expiry) if columns.token_expiry else None
        return CalendarCredentials(
            access_token=getattr(record, columns.access_token),
            refresh_token=getattr(record, columns.refresh_token),
            calendar_id=getattr(record, columns.calendar_id),
            token_expiry=normalize_to_utc(expiry),
        )

    async def save_tokens(self, connection: CalendarConnection, tokens: RefreshedTokens) -> None:
        """Persist refreshed tokens for a connection."""
        record = await self._require_owner(connection.owner, connection.owner_id)
        columns = CREDENTIAL_COLUMNS[connection.provider]

        setattr(record, columns.access_token, tokens.access_token)
        if tokens.refresh_token:
            setattr(record, columns.refresh_token, tokens.refresh_token)
        if columns.token_expiry:
            setattr(record, columns.token_expiry, tokens.expires_at)
        await self.session.flush()

    async def clear_credentials(
        self, owner: CredentialOwner, owner_id: str, provider: CalendarProvider
    ) -> None:
        """Reset every credential column of a connection (disconnects it)."""
        record = await self._require_owner(owner, owner_id)
        for column in CREDENTIAL_COLUMNS[provider]:
            if column:
                setattr(record, column, None)
        await self.session.flush()

    async def list_expiring(
        self,
        owner: CredentialOwner,
        provider: CalendarProvider,
        threshold: datetime,
    ) -> List[CredentialOwnerRecord]:
        """
        Get connected owners whose tokens expire before ``threshold``.

        Only providers that store a token expiry can be listed.
        """
        columns = CREDENTIAL_COLUMNS[provider]
        if not columns.token_expiry:
            return []

        model = OWNER_MODELS[owner]
        expiry_column = getattr(model, columns.token_expiry)
        result = await self.session.execute(
            select(model)
            .where(getattr(model, columns.access_token).is_not(None))
            .where(getattr(model, columns.refresh_token).is_not(None))
            .where(expiry_column.is_not(None))
            .where(expiry_column <= threshold)
        )
        return list(result.scalars().all())

    async def _require_owner(
        self, owner: CredentialOwner, owner_id: str
    ) -> CredentialOwnerRecord:
        record = await self.get_owner(owner, owner_id)
        if record is None:
            raise NotFoundError(resource=owner.value.capitalize(), resource_id=owner_id)
        return record
