"""Pydantic models for sync results."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from calendar_sync_worker.models.calendar import (
    CalendarConnection,
    CalendarProvider,
    CredentialOwner,
    SyncAction,
)


class SyncResult(BaseModel):
    """Outcome of syncing one appointment to one configured calendar."""

    provider: CalendarProvider = Field(..., description="Calendar provider")
    owner: CredentialOwner = Field(..., description="Whose calendar was targeted")
    success: bool = Field(..., description="Whether the sync was successful")
    event_id: Optional[str] = Field(default=None, description="Provider event id after the sync")
    error: Optional[str] = Field(default=None, description="Error message if failed")
    retryable: bool = Field(
        default=False,
        description="Whether re-running the sync later could succeed without user action",
    )

    @classmethod
    def ok(cls, target: CalendarConnection, event_id: Optional[str] = None) -> "SyncResult":
        return cls(provider=target.provider, owner=target.owner, success=True, event_id=event_id)

    @classmethod
    def failed(
        cls, target: CalendarConnection, error: str, retryable: bool = True
    ) -> "SyncResult":
        return cls(
            provider=target.provider,
            owner=target.owner,
            success=False,
            error=error,
            retryable=retryable,
        )


class SyncRunSummary(BaseModel):
    """Result of one sync pass over every configured target of an appointment."""

    appointment_id: str = Field(..., description="Appointment ID")
    action: SyncAction = Field(..., description="Action that was synced")
    results: List[SyncResult] = Field(default_factory=list, description="One entry per configured target")
    error: Optional[str] = Field(default=None, description="Fatal error that prevented the pass")

    @property
    def synced(self) -> int:
        return sum(1 for result in self.results if result.success)

    @property
    def failed(self) -> int:
        return sum(1 for result in self.results if not result.success)

    @property
    def has_retryable_failures(self) -> bool:
        return any(not r.success and r.retryable for r in self.results)


class TokenRefreshResult(BaseModel):
    """Result of a token refresh operation."""

    success: bool = Field(..., description="Whether the refresh was successful")
    owner: CredentialOwner = Field(..., description="Credential owner kind")
    owner_id: str = Field(..., description="Staff or client ID")
    provider: CalendarProvider = Field(..., description="Calendar provider")
    error: Optional[str] = Field(default=None, description="Error message if failed")
    expires_at: Optional[datetime] = Field(default=None, description="New token expiration time")
    credentials_cleared: bool = Field(
        default=False, description="Whether the connection was reset after a rejected refresh"
    )
