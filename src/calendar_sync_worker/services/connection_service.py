"""Calendar connection status and disconnect."""

import logging
from typing import List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from calendar_sync_worker.database.models import Staff
from calendar_sync_worker.database.repositories import (
    CalendarCredentialsRepository,
    CredentialOwnerRecord,
)
from calendar_sync_worker.models.calendar import (
    CalendarProvider,
    ConnectionStatus,
    CredentialOwner,
    ProviderConnectionStatus,
)
from calendar_sync_worker.utils.errors import NotFoundError

logger = logging.getLogger(__name__)


class CalendarConnectionService:
    """Report and reset the calendar connections of staff and clients."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.credentials_repo = CalendarCredentialsRepository(session)

    def _provider_status(
        self, record: CredentialOwnerRecord, provider: CalendarProvider
    ) -> ProviderConnectionStatus:
        credentials = self.credentials_repo.read_credentials(record, provider)
        return ProviderConnectionStatus(
            connected=credentials.is_configured,
            calendar_id=credentials.calendar_id,
            token_expires_at=credentials.token_expiry,
        )

    def _status(self, owner: CredentialOwner, record: CredentialOwnerRecord) -> ConnectionStatus:
        return ConnectionStatus(
            owner=owner,
            owner_id=record.id,
            name=record.full_name,
            email=record.email,
            google=self._provider_status(record, CalendarProvider.GOOGLE),
            outlook=self._provider_status(record, CalendarProvider.OUTLOOK),
        )

    async def get_status(self, owner: CredentialOwner, owner_id: str) -> ConnectionStatus:
        """
        Get which calendars a staff member or client has connected.

        Raises:
            NotFoundError: If the owner does not exist
        """
        record = await self.credentials_repo.get_owner(owner, owner_id)
        if record is None:
            raise NotFoundError(resource=owner.value.capitalize(), resource_id=owner_id)
        return self._status(owner, record)

    async def list_staff_statuses(self) -> List[ConnectionStatus]:
        """Get calendar connections of all active staff, ordered by first name."""
        result = await self.session.execute(
            select(Staff).where(Staff.is_active.is_(True)).order_by(Staff.first_name)
        )
        return [self._status(CredentialOwner.STAFF, staff) for staff in result.scalars().all()]

    async def disconnect(
        self, owner: CredentialOwner, owner_id: str, provider: CalendarProvider
    ) -> None:
        """
        Remove a calendar connection.

        Events already created stay in the external calendar; their ids stay
        on the appointments so a reconnect can keep updating them.
        """
        await self.credentials_repo.clear_credentials(owner, owner_id, provider)
        logger.info(f"Disconnected {owner.value}:{provider.value} calendar for {owner_id}")
