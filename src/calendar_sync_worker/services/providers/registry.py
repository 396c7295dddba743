"""Default provider adapter set."""

from typing import Dict, Optional

from calendar_sync_worker.config import Settings, get_settings
from calendar_sync_worker.models.calendar import CalendarProvider
from calendar_sync_worker.services.providers.base import CalendarProviderAdapter
from calendar_sync_worker.services.providers.google import GoogleCalendarAdapter
from calendar_sync_worker.services.providers.outlook import OutlookCalendarAdapter

ProviderAdapters = Dict[CalendarProvider, CalendarProviderAdapter]


def get_default_adapters(settings: Optional[Settings] = None) -> ProviderAdapters:
    """Get one adapter per supported provider."""
    settings = settings or get_settings()
    return {
        CalendarProvider.GOOGLE: GoogleCalendarAdapter(settings),
        CalendarProvider.OUTLOOK: OutlookCalendarAdapter(settings),
    }
