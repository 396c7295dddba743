"""Resolve the configured sync targets of an appointment."""

import logging
from typing import List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from calendar_sync_worker.database.models import Appointment, Client, Staff
from calendar_sync_worker.database.repositories import (
    AppointmentsRepository,
    CalendarCredentialsRepository,
    CredentialOwnerRecord,
)
from calendar_sync_worker.models.calendar import (
    AppointmentSnapshot,
    CalendarProvider,
    CredentialOwner,
    ResolvedAppointment,
    SyncTarget,
)
from calendar_sync_worker.utils.errors import NotFoundError

logger = logging.getLogger(__name__)

# Sync order; each slot maps to one event id column on the appointment
TARGET_SLOTS: List[Tuple[CredentialOwner, CalendarProvider, str]] = [
    (CredentialOwner.STAFF, CalendarProvider.GOOGLE, "staff_google_event_id"),
    (CredentialOwner.STAFF, CalendarProvider.OUTLOOK, "staff_outlook_event_id"),
    (CredentialOwner.CLIENT, CalendarProvider.GOOGLE, "client_google_event_id"),
    (CredentialOwner.CLIENT, CalendarProvider.OUTLOOK, "client_outlook_event_id"),
]


class SyncTargetResolver:
    """Load an appointment with its owners and build its sync targets."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.appointments_repo = AppointmentsRepository(session)
        self.credentials_repo = CalendarCredentialsRepository(session)

    async def resolve(self, appointment_id: str) -> ResolvedAppointment:
        """
        Resolve an appointment into its configured sync targets.

        Args:
            appointment_id: Appointment ID

        Returns:
            ResolvedAppointment with targets in sync order; only targets with
            a stored access token are included

        Raises:
            NotFoundError: If the appointment or its staff member does not exist
        """
        appointment = await self.appointments_repo.get_with_services(appointment_id)
        if appointment is None:
            raise NotFoundError(resource="Appointment", resource_id=appointment_id)

        staff = await self.credentials_repo.get_owner(CredentialOwner.STAFF, appointment.staff_id)
        if staff is None:
            raise NotFoundError(resource="Staff", resource_id=appointment.staff_id)

        client: Optional[Client] = None
        if appointment.client_id:
            client = await self.credentials_repo.get_owner(
                CredentialOwner.CLIENT, appointment.client_id
            )
            if client is None:
                logger.warning(
                    f"Client {appointment.client_id} of appointment {appointment_id} not found, "
                    "skipping client calendars"
                )

        owners = {CredentialOwner.STAFF: staff, CredentialOwner.CLIENT: client}
        targets: List[SyncTarget] = []
        for owner, provider, event_id_field in TARGET_SLOTS:
            record: Optional[CredentialOwnerRecord] = owners[owner]
            if record is None:
                continue
            credentials = self.credentials_repo.read_credentials(record, provider)
            if not credentials.is_configured:
                continue
            targets.append(
                SyncTarget(
                    owner=owner,
                    owner_id=record.id,
                    provider=provider,
                    credentials=credentials,
                    event_id_field=event_id_field,
                    event_id=getattr(appointment, event_id_field),
                )
            )

        return ResolvedAppointment(
            appointment=self._snapshot(appointment, staff, client),
            targets=targets,
        )

    @staticmethod
    def _snapshot(
        appointment: Appointment, staff: Staff, client: Optional[Client]
    ) -> AppointmentSnapshot:
        return AppointmentSnapshot(
            id=appointment.id,
            staff_id=appointment.staff_id,
            client_id=appointment.client_id,
            scheduled_start=appointment.scheduled_start,
            scheduled_end=appointment.scheduled_end,
            notes=appointment.notes,
            service_names=[item.service.name for item in appointment.services if item.service],
            staff_name=staff.full_name,
            client_name=client.full_name if client else None,
            client_email=client.email if client else None,
        )
