"""Propagate appointment changes to every connected calendar."""

import asyncio
import contextlib
import logging
from typing import Awaitable, Callable, Dict, List, Optional, TypeVar, Union

from sqlalchemy.ext.asyncio import AsyncSession

from calendar_sync_worker.config import Settings, get_settings
from calendar_sync_worker.database.repositories import AppointmentsRepository
from calendar_sync_worker.models.calendar import (
    AppointmentSnapshot,
    ResolvedAppointment,
    SyncAction,
    SyncTarget,
)
from calendar_sync_worker.models.sync_result import SyncResult
from calendar_sync_worker.services.providers.base import CalendarProviderAdapter
from calendar_sync_worker.services.providers.registry import (
    ProviderAdapters,
    get_default_adapters,
)
from calendar_sync_worker.services.target_resolver import SyncTargetResolver
from calendar_sync_worker.services.token_manager import TokenLifecycleManager
from calendar_sync_worker.utils.errors import EventNotFoundError, TokenRefreshError

logger = logging.getLogger(__name__)

INVALID_TOKEN_ERROR = "Invalid or expired token"

T = TypeVar("T")
TargetHandler = Callable[[AppointmentSnapshot, SyncTarget, str], Awaitable[SyncResult]]


class CalendarSyncService:
    """
    Sync one appointment to its staff and client calendars.

    Every configured target is an independent unit of work: a failing target
    yields a failed ``SyncResult`` and never stops the others. Only a missing
    appointment or staff record raises.
    """

    def __init__(
        self,
        session: AsyncSession,
        adapters: Optional[ProviderAdapters] = None,
        settings: Optional[Settings] = None,
    ):
        self.session = session
        self.settings = settings or get_settings()
        self.adapters = adapters if adapters is not None else get_default_adapters(self.settings)
        self.appointments_repo = AppointmentsRepository(session)
        self.resolver = SyncTargetResolver(session)
        self.timeout = self.settings.provider_timeout_seconds
        self.concurrent = self.settings.sync_targets_concurrently

        # One AsyncSession is shared by all targets; concurrent writes must not interleave
        self._write_lock: Optional[asyncio.Lock] = asyncio.Lock() if self.concurrent else None
        self.token_manager = TokenLifecycleManager(
            session, self.adapters, self.settings, write_lock=self._write_lock
        )

        self._handlers: Dict[SyncAction, TargetHandler] = {
            SyncAction.CREATE: self._create,
            SyncAction.UPDATE: self._update,
            SyncAction.DELETE: self._delete,
        }

    async def sync(
        self, appointment_id: str, action: Union[SyncAction, str]
    ) -> List[SyncResult]:
        """
        Sync an appointment change to every configured calendar.

        Args:
            appointment_id: Appointment ID
            action: create, update or delete

        Returns:
            One SyncResult per configured target, in sync order

        Raises:
            NotFoundError: If the appointment or its staff member does not exist
            ValueError: If action is not a known sync action
        """
        action = SyncAction(action)
        resolved = await self.resolver.resolve(appointment_id)
        handler = self._handlers[action]

        logger.info(
            f"Syncing appointment {appointment_id} ({action.value}) "
            f"to {len(resolved.targets)} calendar(s)"
        )
        results = await self._run(resolved, resolved.targets, handler)
        self._log_summary(appointment_id, action.value, results)
        return results

    async def backfill(self, appointment_id: str) -> List[SyncResult]:
        """
        Create events for connected calendars that have none yet.

        Targets already holding an event id are left alone, so running this
        repeatedly never duplicates events.
        """
        resolved = await self.resolver.resolve(appointment_id)
        pending = [target for target in resolved.targets if not target.event_id]
        results = await self._run(resolved, pending, self._create)
        self._log_summary(appointment_id, "backfill", results)
        return results

    async def _run(
        self,
        resolved: ResolvedAppointment,
        targets: List[SyncTarget],
        handler: TargetHandler,
    ) -> List[SyncResult]:
        if self.concurrent:
            return list(
                await asyncio.gather(
                    *(self._sync_target(resolved.appointment, t, handler) for t in targets)
                )
            )

        results = []
        for target in targets:
            results.append(await self._sync_target(resolved.appointment, target, handler))
        return results

    async def _sync_target(
        self,
        appointment: AppointmentSnapshot,
        target: SyncTarget,
        handler: TargetHandler,
    ) -> SyncResult:
        try:
            access_token = await self.token_manager.ensure_valid_token(target)
            if not access_token:
                logger.warning(
                    f"Skipping {target.label} for appointment {appointment.id}: {INVALID_TOKEN_ERROR}"
                )
                return SyncResult.failed(target, INVALID_TOKEN_ERROR, retryable=False)

            result = await handler(appointment, target, access_token)
            logger.info(
                f"Synced appointment {appointment.id} to {target.label} "
                f"(event: {result.event_id})"
            )
            return result
        except asyncio.TimeoutError:
            error_msg = f"{target.label} call timed out after {self.timeout}s"
            logger.error(f"Appointment {appointment.id}: {error_msg}")
            return SyncResult.failed(target, error_msg)
        except TokenRefreshError as e:
            # The user has to reconnect this calendar
            logger.warning(
                f"Credentials rejected for {target.label} on appointment {appointment.id}: {str(e)}"
            )
            return SyncResult.failed(target, str(e), retryable=False)
        except Exception as e:
            logger.error(
                f"Failed to sync appointment {appointment.id} to {target.label}: {str(e)}",
                exc_info=True,
            )
            return SyncResult.failed(target, str(e))

    async def _create(
        self, appointment: AppointmentSnapshot, target: SyncTarget, access_token: str
    ) -> SyncResult:
        adapter = self._adapter(target)
        event_id = await self._call(
            adapter.create_event(
                access_token,
                self._calendar_id(target),
                adapter.to_provider_event(appointment, target.owner),
                refresh_token=target.credentials.refresh_token,
            )
        )
        await self._store_event_id(appointment.id, target, event_id)
        return SyncResult.ok(target, event_id)

    async def _update(
        self, appointment: AppointmentSnapshot, target: SyncTarget, access_token: str
    ) -> SyncResult:
        if not target.event_id:
            # Never synced (or the id was lost): create instead
            return await self._create(appointment, target, access_token)

        adapter = self._adapter(target)
        try:
            await self._call(
                adapter.update_event(
                    access_token,
                    self._calendar_id(target),
                    target.event_id,
                    adapter.to_provider_event(appointment, target.owner),
                    refresh_token=target.credentials.refresh_token,
                )
            )
        except EventNotFoundError:
            logger.warning(
                f"{target.label} event {target.event_id} no longer exists, recreating it"
            )
            return await self._create(appointment, target, access_token)

        return SyncResult.ok(target, target.event_id)

    async def _delete(
        self, appointment: AppointmentSnapshot, target: SyncTarget, access_token: str
    ) -> SyncResult:
        if not target.event_id:
            return SyncResult.ok(target)

        adapter = self._adapter(target)
        try:
            await self._call(
                adapter.delete_event(
                    access_token,
                    self._calendar_id(target),
                    target.event_id,
                    refresh_token=target.credentials.refresh_token,
                )
            )
        except EventNotFoundError:
            logger.info(f"{target.label} event {target.event_id} was already deleted")

        await self._store_event_id(appointment.id, target, None)
        return SyncResult.ok(target)

    def _adapter(self, target: SyncTarget) -> CalendarProviderAdapter:
        return self.adapters[target.provider]

    def _calendar_id(self, target: SyncTarget) -> str:
        return target.calendar_id_or(self.settings.default_calendar_id)

    async def _call(self, coro: Awaitable[T]) -> T:
        return await asyncio.wait_for(coro, timeout=self.timeout)

    async def _store_event_id(
        self, appointment_id: str, target: SyncTarget, event_id: Optional[str]
    ) -> None:
        lock = self._write_lock if self._write_lock is not None else contextlib.nullcontext()
        async with lock:
            await self.appointments_repo.set_event_id(
                appointment_id, target.event_id_field, event_id
            )
        target.event_id = event_id

    @staticmethod
    def _log_summary(appointment_id: str, action: str, results: List[SyncResult]) -> None:
        failed = [r for r in results if not r.success]
        if failed:
            logger.warning(
                f"Appointment {appointment_id} {action}: {len(results) - len(failed)} synced, "
                f"{len(failed)} failed"
            )
        else:
            logger.info(f"Appointment {appointment_id} {action}: {len(results)} synced")
