"""Request and response models for the internal HTTP API."""

from typing import List, Optional

from pydantic import BaseModel, Field

from calendar_sync_worker.models.calendar import SyncAction
from calendar_sync_worker.models.sync_result import SyncResult


class SyncRequest(BaseModel):
    """Sync one appointment change."""

    appointment_id: str = Field(..., description="Appointment ID")
    action: SyncAction = Field(default=SyncAction.CREATE, description="create, update or delete")
    background: bool = Field(
        default=False, description="Queue the sync as a Celery task instead of running it inline"
    )


class SyncResponse(BaseModel):
    appointment_id: str
    action: SyncAction
    queued: bool = False
    task_id: Optional[str] = None
    results: List[SyncResult] = Field(default_factory=list)


class BackfillRequest(BaseModel):
    staff_id: Optional[str] = Field(default=None, description="Only backfill this staff member")


class TaskQueuedResponse(BaseModel):
    queued: bool = True
    task_id: str
