"""FastAPI server for the calendar sync endpoints.

Internal API used by the booking application:
- trigger an appointment sync (inline or queued)
- queue a backfill of missing events
- report and remove staff/client calendar connections
"""

import logging
from typing import AsyncGenerator, List, Optional

from fastapi import Depends, FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from calendar_sync_worker.celery_app import app as celery_app  # noqa: F401  binds shared tasks
from calendar_sync_worker.config import get_settings
from calendar_sync_worker.database.session import get_session
from calendar_sync_worker.models.api import (
    BackfillRequest,
    SyncRequest,
    SyncResponse,
    TaskQueuedResponse,
)
from calendar_sync_worker.models.calendar import (
    CalendarProvider,
    ConnectionStatus,
    CredentialOwner,
)
from calendar_sync_worker.services.calendar_sync_service import CalendarSyncService
from calendar_sync_worker.services.connection_service import CalendarConnectionService
from calendar_sync_worker.tasks.calendar_sync import (
    backfill_unsynced_appointments,
    sync_appointment_calendars,
)
from calendar_sync_worker.utils.errors import NotFoundError
from calendar_sync_worker.utils.logging import setup_logging

# Setup logging
setup_logging()
logger = logging.getLogger(__name__)

# Get settings
settings = get_settings()

# Create FastAPI app
app = FastAPI(
    title="Calendar Sync Worker",
    description="Syncs appointments to staff and client Google and Outlook calendars",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped database session."""
    async with get_session() as session:
        yield session


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})


@app.get("/health", status_code=status.HTTP_200_OK)
async def health_check():
    """
    Health check endpoint.

    Returns service health status.
    """
    return {
        "status": "healthy",
        "service": settings.service_name,
        "version": "1.0.0",
    }


@app.post(
    "/calendar/sync",
    response_model=SyncResponse,
    summary="Sync an appointment change to connected calendars",
)
async def sync_appointment(
    body: SyncRequest,
    session: AsyncSession = Depends(get_db_session),
):
    """
    Sync an appointment to every connected calendar.

    With ``background=true`` the sync is queued and retried by the worker;
    otherwise it runs inline and the per-calendar results are returned.
    """
    if body.background:
        task = sync_appointment_calendars.delay(body.appointment_id, body.action.value)
        logger.info(f"Queued calendar sync for appointment {body.appointment_id} (task {task.id})")
        return SyncResponse(
            appointment_id=body.appointment_id,
            action=body.action,
            queued=True,
            task_id=task.id,
        )

    service = CalendarSyncService(session)
    results = await service.sync(body.appointment_id, body.action)
    return SyncResponse(appointment_id=body.appointment_id, action=body.action, results=results)


@app.post(
    "/calendar/backfill",
    response_model=TaskQueuedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Create missing events for upcoming appointments",
)
async def backfill_appointments(body: Optional[BackfillRequest] = None):
    staff_id = body.staff_id if body else None
    task = backfill_unsynced_appointments.delay(staff_id)
    logger.info(f"Queued calendar backfill (staff: {staff_id or 'all'}, task {task.id})")
    return TaskQueuedResponse(task_id=task.id)


@app.get(
    "/calendar/status",
    response_model=List[ConnectionStatus],
    summary="Calendar connections of staff",
)
async def list_connection_statuses(
    staff_id: Optional[str] = None,
    session: AsyncSession = Depends(get_db_session),
):
    service = CalendarConnectionService(session)
    if staff_id:
        return [await service.get_status(CredentialOwner.STAFF, staff_id)]
    return await service.list_staff_statuses()


@app.get(
    "/calendar/status/{owner}/{owner_id}",
    response_model=ConnectionStatus,
    summary="Calendar connections of one staff member or client",
)
async def get_connection_status(
    owner: CredentialOwner,
    owner_id: str,
    session: AsyncSession = Depends(get_db_session),
):
    return await CalendarConnectionService(session).get_status(owner, owner_id)


@app.delete(
    "/calendar/connections/{owner}/{owner_id}/{provider}",
    status_code=status.HTTP_200_OK,
    summary="Disconnect a calendar",
)
async def disconnect_calendar(
    owner: CredentialOwner,
    owner_id: str,
    provider: CalendarProvider,
    session: AsyncSession = Depends(get_db_session),
):
    await CalendarConnectionService(session).disconnect(owner, owner_id, provider)
    return {"success": True, "owner": owner.value, "owner_id": owner_id, "provider": provider.value}
