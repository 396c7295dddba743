"""Access token lifecycle for calendar connections."""

import asyncio
import contextlib
import logging
from datetime import timedelta
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from calendar_sync_worker.config import Settings, get_settings
from calendar_sync_worker.database.repositories import CalendarCredentialsRepository
from calendar_sync_worker.models.calendar import CalendarConnection, CalendarCredentials
from calendar_sync_worker.models.sync_result import TokenRefreshResult
from calendar_sync_worker.services.providers.registry import ProviderAdapters
from calendar_sync_worker.utils.errors import ExternalAPIError, TokenRefreshError
from calendar_sync_worker.utils.time import utcnow

logger = logging.getLogger(__name__)


class TokenLifecycleManager:
    """
    Guarantee a usable access token before any provider call.

    Works on any ``CalendarConnection``, so staff and client credentials go
    through the same code path. A refresh the provider rejects disconnects the
    calendar (all stored credentials are cleared) instead of being retried;
    timeouts and network errors leave the credentials untouched.
    """

    def __init__(
        self,
        session: AsyncSession,
        adapters: ProviderAdapters,
        settings: Optional[Settings] = None,
        write_lock: Optional[asyncio.Lock] = None,
    ):
        self.session = session
        self.adapters = adapters
        self.settings = settings or get_settings()
        self.credentials_repo = CalendarCredentialsRepository(session)
        self.buffer = timedelta(seconds=self.settings.token_expiry_buffer_seconds)
        self._write_lock = write_lock

    def _writing(self):
        return self._write_lock if self._write_lock is not None else contextlib.nullcontext()

    async def ensure_valid_token(self, connection: CalendarConnection) -> Optional[str]:
        """
        Get an access token that is safe to use right now.

        Args:
            connection: Connection whose credentials should be checked

        Returns:
            Access token, or None when the connection is unusable this cycle

        Raises:
            ExternalAPIError: If the refresh call timed out or hit a network error
        """
        credentials = connection.credentials
        if not credentials.access_token:
            return None

        adapter = self.adapters[connection.provider]
        if credentials.token_expiry is None or not adapter.supports_token_refresh:
            # The provider client refreshes on its own
            return credentials.access_token

        if credentials.token_expiry - utcnow() > self.buffer:
            return credentials.access_token

        if not credentials.refresh_token:
            logger.warning(
                f"Token for {connection.label} {connection.owner_id} expires at "
                f"{credentials.token_expiry.isoformat()} and no refresh token is stored"
            )
            return None

        result = await self.refresh(connection)
        if not result.success:
            return None
        return connection.credentials.access_token

    async def refresh(self, connection: CalendarConnection) -> TokenRefreshResult:
        """
        Refresh a connection's access token and persist the outcome.

        On success the new tokens are saved and ``connection.credentials`` is
        updated in place. When the provider rejects the refresh token every
        credential field is cleared, both in storage and on ``connection``.
        Any other error leaves the credentials as they are.

        Raises:
            ExternalAPIError: If the refresh call timed out or hit a network error
        """
        result = TokenRefreshResult(
            success=False,
            owner=connection.owner,
            owner_id=connection.owner_id,
            provider=connection.provider,
        )
        adapter = self.adapters[connection.provider]
        timeout = self.settings.provider_timeout_seconds

        try:
            tokens = await asyncio.wait_for(
                adapter.refresh_token(connection.credentials.refresh_token),
                timeout=timeout,
            )
        except asyncio.TimeoutError as e:
            raise ExternalAPIError(
                f"Token refresh for {connection.label} timed out after {timeout}s"
            ) from e
        except TokenRefreshError as e:
            error_msg = f"Failed to refresh token: {str(e)}"
            logger.warning(
                f"{error_msg}; clearing {connection.label} credentials for {connection.owner_id}"
            )
            async with self._writing():
                await self.credentials_repo.clear_credentials(
                    connection.owner, connection.owner_id, connection.provider
                )
            connection.credentials = CalendarCredentials()
            result.error = error_msg
            result.credentials_cleared = True
            return result

        async with self._writing():
            await self.credentials_repo.save_tokens(connection, tokens)

        connection.credentials = connection.credentials.model_copy(
            update={
                "access_token": tokens.access_token,
                "refresh_token": tokens.refresh_token or connection.credentials.refresh_token,
                "token_expiry": tokens.expires_at,
            }
        )
        result.success = True
        result.expires_at = tokens.expires_at
        logger.info(
            f"Refreshed {connection.label} token for {connection.owner_id}, "
            f"expires at {tokens.expires_at.isoformat()}"
        )
        return result
