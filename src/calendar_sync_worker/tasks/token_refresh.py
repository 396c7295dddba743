"""Token refresh Celery tasks."""

import logging
from datetime import timedelta

from celery import shared_task

from calendar_sync_worker.config import get_settings
from calendar_sync_worker.database.repositories import CalendarCredentialsRepository
from calendar_sync_worker.database.session import get_session
from calendar_sync_worker.models.calendar import (
    CalendarConnection,
    CalendarProvider,
    CredentialOwner,
)
from calendar_sync_worker.services.providers.registry import get_default_adapters
from calendar_sync_worker.services.token_manager import TokenLifecycleManager
from calendar_sync_worker.utils.async_helpers import run_async
from calendar_sync_worker.utils.errors import ExternalAPIError
from calendar_sync_worker.utils.time import utcnow

logger = logging.getLogger(__name__)

# Providers whose tokens are stored with an expiry
REFRESHABLE_PROVIDERS = (CalendarProvider.OUTLOOK,)


@shared_task(
    name="calendar_sync_worker.tasks.token_refresh.refresh_expiring_tokens",
)
def refresh_expiring_tokens() -> dict:
    """
    Refresh staff and client tokens that expire within the lookahead window.

    This task is triggered by Celery Beat every hour, so syncs rarely have to
    refresh inline.
    """
    settings = get_settings()

    async def _run_refresh():
        async with get_session() as session:
            repo = CalendarCredentialsRepository(session)
            manager = TokenLifecycleManager(session, get_default_adapters(settings), settings)
            threshold = utcnow() + timedelta(minutes=settings.token_refresh_lookahead_minutes)

            refreshed = 0
            cleared = 0
            errors = 0

            for owner in CredentialOwner:
                for provider in REFRESHABLE_PROVIDERS:
                    records = await repo.list_expiring(owner, provider, threshold)
                    logger.info(
                        f"Found {len(records)} {owner.value}:{provider.value} tokens expiring "
                        f"before {threshold.isoformat()}"
                    )

                    for record in records:
                        connection = CalendarConnection(
                            owner=owner,
                            owner_id=record.id,
                            provider=provider,
                            credentials=repo.read_credentials(record, provider),
                        )
                        try:
                            result = await manager.refresh(connection)
                        except ExternalAPIError as e:
                            logger.error(f"Token refresh error for {connection.label} {record.id}: {e}")
                            errors += 1
                            continue
                        except Exception as e:
                            logger.error(
                                f"Unexpected error refreshing {connection.label} token for "
                                f"{record.id}: {e}",
                                exc_info=True,
                            )
                            errors += 1
                            continue

                        if result.success:
                            refreshed += 1
                        else:
                            cleared += 1
                            logger.error(
                                f"Failed to refresh token for {connection.label} {record.id}: "
                                f"{result.error}"
                            )

            return {"refreshed": refreshed, "cleared": cleared, "errors": errors}

    result = run_async(_run_refresh())

    logger.info(
        f"Refreshed {result['refreshed']} tokens "
        f"({result['cleared']} disconnected, {result['errors']} errors)"
    )

    return result
