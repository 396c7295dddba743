"""Custom exceptions for the calendar sync worker."""

from typing import Optional


class CalendarSyncError(Exception):
    """Base exception for calendar sync errors."""
    pass


class NotFoundError(CalendarSyncError):
    """A record the sync depends on does not exist."""

    def __init__(self, resource: str = "Resource", resource_id: Optional[str] = None):
        self.resource = resource
        self.resource_id = resource_id
        message = f"{resource} not found"
        if resource_id:
            message += f" with id: {resource_id}"
        super().__init__(message)


class SyncError(CalendarSyncError):
    """Error during calendar sync operation."""
    pass


class TokenRefreshError(CalendarSyncError):
    """Provider rejected an OAuth token refresh."""
    pass


class ConfigurationError(CalendarSyncError):
    """Error in service configuration."""
    pass


class ExternalAPIError(CalendarSyncError):
    """Error calling external API (Microsoft Graph, Google Calendar)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class EventNotFoundError(ExternalAPIError):
    """The provider no longer knows the event id we stored."""
    pass
