"""Calendar sync Celery tasks."""

import logging
from typing import Optional

from celery import shared_task

from calendar_sync_worker.config import get_settings
from calendar_sync_worker.database.repositories import AppointmentsRepository
from calendar_sync_worker.database.session import get_session
from calendar_sync_worker.models.calendar import SyncAction
from calendar_sync_worker.models.sync_result import SyncRunSummary
from calendar_sync_worker.services.calendar_sync_service import CalendarSyncService
from calendar_sync_worker.utils.async_helpers import run_async
from calendar_sync_worker.utils.errors import NotFoundError
from calendar_sync_worker.utils.time import utcnow

logger = logging.getLogger(__name__)
settings = get_settings()


def _summary_dict(summary: SyncRunSummary) -> dict:
    data = summary.model_dump(mode="json")
    data["synced"] = summary.synced
    data["failed"] = summary.failed
    return data


@shared_task(
    bind=True,
    name="calendar_sync_worker.tasks.calendar_sync.sync_appointment_calendars",
    max_retries=settings.max_retries,
    default_retry_delay=settings.retry_backoff_seconds,
)
def sync_appointment_calendars(self, appointment_id: str, action: str = "create") -> dict:
    """
    Sync an appointment change to all connected calendars.

    Queued by the booking flow after an appointment is created, edited or
    cancelled; the booking itself never waits on this task.

    Args:
        appointment_id: Appointment ID
        action: create, update or delete

    Returns:
        Sync summary dict with one result per connected calendar
    """
    sync_action = SyncAction(action)

    async def _run_sync():
        async with get_session() as session:
            service = CalendarSyncService(session)
            return await service.sync(appointment_id, sync_action)

    try:
        results = run_async(_run_sync())
    except NotFoundError as exc:
        # Nothing to sync, retrying will not help
        logger.error(f"Cannot sync appointment {appointment_id}: {exc}")
        return _summary_dict(
            SyncRunSummary(appointment_id=appointment_id, action=sync_action, error=str(exc))
        )

    summary = SyncRunSummary(appointment_id=appointment_id, action=sync_action, results=results)
    logger.info(
        f"Calendar sync for appointment {appointment_id} ({sync_action.value}): "
        f"{summary.synced} synced, {summary.failed} failed"
    )

    if summary.has_retryable_failures and self.request.retries < self.max_retries:
        # A replayed create must not duplicate events that did get created
        retry_action = SyncAction.UPDATE if sync_action is SyncAction.CREATE else sync_action
        countdown = settings.retry_backoff_seconds * (2 ** self.request.retries)
        logger.warning(
            f"Retrying calendar sync for appointment {appointment_id} in {countdown}s"
        )
        raise self.retry(
            args=(),
            kwargs={"appointment_id": appointment_id, "action": retry_action.value},
            countdown=countdown,
        )

    return _summary_dict(summary)


@shared_task(
    name="calendar_sync_worker.tasks.calendar_sync.backfill_unsynced_appointments",
)
def backfill_unsynced_appointments(staff_id: Optional[str] = None) -> dict:
    """
    Create missing events for upcoming appointments (scheduled task).

    Picks up appointments booked before a calendar was connected, and syncs
    that ran out of retries. Each appointment uses its own session so one bad
    appointment cannot roll back the others.
    """

    async def _run_backfill():
        async with get_session() as session:
            repo = AppointmentsRepository(session)
            appointment_ids = await repo.list_backfill_candidates(
                utcnow(), staff_id=staff_id, limit=settings.backfill_batch_size
            )

        logger.info(f"Found {len(appointment_ids)} appointments missing calendar events")

        synced = 0
        failed = 0
        for appointment_id in appointment_ids:
            try:
                async with get_session() as session:
                    results = await CalendarSyncService(session).backfill(appointment_id)
            except Exception as e:
                logger.error(
                    f"Unexpected error backfilling appointment {appointment_id}: {e}",
                    exc_info=True,
                )
                failed += 1
                continue

            if all(result.success for result in results):
                synced += 1
            else:
                failed += 1

        return {"total": len(appointment_ids), "synced": synced, "failed": failed}

    result = run_async(_run_backfill())

    logger.info(
        f"Backfilled {result['synced']} of {result['total']} appointments "
        f"({result['failed']} failed)"
    )

    return result
