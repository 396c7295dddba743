"""Tests for CalendarSyncService."""

import pytest
from datetime import datetime, timedelta, timezone

from calendar_sync_worker.database.models import Appointment, Staff
from calendar_sync_worker.models.calendar import (
    CalendarProvider,
    CredentialOwner,
    RefreshedTokens,
    SyncAction,
)
from calendar_sync_worker.services.calendar_sync_service import CalendarSyncService
from calendar_sync_worker.utils.errors import (
    EventNotFoundError,
    ExternalAPIError,
    NotFoundError,
    TokenRefreshError,
)

GOOGLE = CalendarProvider.GOOGLE
OUTLOOK = CalendarProvider.OUTLOOK


@pytest.fixture
def service(session, fake_adapters, test_settings):
    return CalendarSyncService(session, fake_adapters, test_settings)


@pytest.fixture
def concurrent_service(session, fake_adapters, test_settings):
    settings = test_settings.model_copy(update={"sync_targets_concurrently": True})
    return CalendarSyncService(session, fake_adapters, settings)


async def _reload(session, appointment_id) -> Appointment:
    return await session.get(Appointment, appointment_id)


class TestSyncTargets:
    """One result per configured target."""

    @pytest.mark.asyncio
    async def test_staff_google_only_create(self, session, service, make_staff, make_client,
                                            make_appointment, fake_adapters):
        """Test a single configured staff Google calendar."""
        staff = await make_staff(google_calendar_token="sg")
        client = await make_client()
        appointment = await make_appointment(staff, client=client)

        results = await service.sync(appointment.id, SyncAction.CREATE)

        assert len(results) == 1
        assert results[0].provider == GOOGLE
        assert results[0].success is True
        assert results[0].event_id == "google-event-1"
        assert (await _reload(session, appointment.id)).staff_google_event_id == "google-event-1"
        assert fake_adapters[OUTLOOK].calls == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("configured", [0, 1, 2, 3, 4])
    async def test_result_count_matches_configured_targets(
        self, configured, service, make_staff, make_client, make_appointment
    ):
        """Test N configured credentials give exactly N results."""
        tokens = {
            "staff_google": "sg", "staff_outlook": "so", "client_google": "cg", "client_outlook": "co"
        }
        enabled = dict(list(tokens.items())[:configured])
        staff = await make_staff(
            google_calendar_token=enabled.get("staff_google"),
            outlook_calendar_token=enabled.get("staff_outlook"),
        )
        client = await make_client(
            google_calendar_token=enabled.get("client_google"),
            outlook_calendar_token=enabled.get("client_outlook"),
        )
        appointment = await make_appointment(staff, client=client)

        results = await service.sync(appointment.id, SyncAction.CREATE)

        assert len(results) == configured
        assert all(result.success for result in results)
        expected = [
            (CredentialOwner.STAFF, GOOGLE),
            (CredentialOwner.STAFF, OUTLOOK),
            (CredentialOwner.CLIENT, GOOGLE),
            (CredentialOwner.CLIENT, OUTLOOK),
        ][:configured]
        assert [(r.owner, r.provider) for r in results] == expected

    @pytest.mark.asyncio
    async def test_payloads_use_owner_view_and_calendar(
        self, service, make_staff, make_client, make_appointment, fake_adapters
    ):
        """Test staff and client get their own event and calendar."""
        staff = await make_staff(google_calendar_token="sg", google_calendar_id="salon-cal")
        client = await make_client(google_calendar_token="cg")
        appointment = await make_appointment(staff, client=client, services=["Facial"])

        await service.sync(appointment.id, SyncAction.CREATE)

        staff_call, client_call = fake_adapters[GOOGLE].calls
        assert staff_call[1:3] == ("sg", "salon-cal")
        assert staff_call[3]["summary"] == "Facial - Jane Doe"
        assert client_call[1:3] == ("cg", "primary")
        assert client_call[3]["summary"] == "Facial at Beauty & Wellness"

    @pytest.mark.asyncio
    async def test_string_action(self, service, make_staff, make_appointment):
        """Test actions given by value."""
        staff = await make_staff(google_calendar_token="sg")
        appointment = await make_appointment(staff)

        results = await service.sync(appointment.id, "create")

        assert results[0].success is True

    @pytest.mark.asyncio
    async def test_unknown_action(self, service, make_staff, make_appointment):
        staff = await make_staff(google_calendar_token="sg")
        appointment = await make_appointment(staff)

        with pytest.raises(ValueError):
            await service.sync(appointment.id, "reschedule")

    @pytest.mark.asyncio
    async def test_missing_appointment_raises(self, service):
        """Test precondition failures propagate."""
        with pytest.raises(NotFoundError):
            await service.sync("missing", SyncAction.CREATE)

    @pytest.mark.asyncio
    async def test_missing_staff_raises(self, session, service, make_staff, make_appointment):
        staff = await make_staff(google_calendar_token="sg")
        appointment = await make_appointment(staff)
        await session.delete(await session.get(Staff, staff.id))
        await session.flush()

        with pytest.raises(NotFoundError, match="Staff"):
            await service.sync(appointment.id, SyncAction.UPDATE)


class TestUpdate:
    """Update semantics."""

    @pytest.mark.asyncio
    async def test_update_without_event_id_creates(
        self, session, service, make_staff, make_appointment, fake_adapters
    ):
        """Test update falls back to create when nothing was synced yet."""
        staff = await make_staff(outlook_calendar_token="so")
        appointment = await make_appointment(staff)

        results = await service.sync(appointment.id, SyncAction.UPDATE)

        assert results[0].success is True
        assert results[0].event_id == "outlook-event-1"
        assert fake_adapters[OUTLOOK].operations() == ["create"]
        assert (await _reload(session, appointment.id)).staff_outlook_event_id == "outlook-event-1"

    @pytest.mark.asyncio
    async def test_update_matches_create_outcome(
        self, session, make_staff, make_appointment, fake_adapters, test_settings
    ):
        """Test update on an unsynced appointment behaves like create."""
        staff = await make_staff(google_calendar_token="sg")
        created = await make_appointment(staff)
        updated = await make_appointment(staff)

        create_results = await CalendarSyncService(session, fake_adapters, test_settings).sync(
            created.id, SyncAction.CREATE
        )
        update_results = await CalendarSyncService(session, fake_adapters, test_settings).sync(
            updated.id, SyncAction.UPDATE
        )

        assert [(r.provider, r.success) for r in create_results] == \
            [(r.provider, r.success) for r in update_results]
        assert (await _reload(session, created.id)).staff_google_event_id is not None
        assert (await _reload(session, updated.id)).staff_google_event_id is not None

    @pytest.mark.asyncio
    async def test_update_existing_event(
        self, session, service, make_staff, make_appointment, fake_adapters
    ):
        """Test update keeps the stored event id."""
        staff = await make_staff(google_calendar_token="sg")
        appointment = await make_appointment(staff, staff_google_event_id="evt-1")

        results = await service.sync(appointment.id, SyncAction.UPDATE)

        assert results[0].event_id == "evt-1"
        assert fake_adapters[GOOGLE].operations() == ["update"]
        assert fake_adapters[GOOGLE].calls[0][3] == "evt-1"
        assert (await _reload(session, appointment.id)).staff_google_event_id == "evt-1"

    @pytest.mark.asyncio
    async def test_update_recreates_event_deleted_at_provider(
        self, session, service, make_staff, make_appointment, fake_adapters
    ):
        """Test a provider-side 404 on update recreates the event."""
        staff = await make_staff(google_calendar_token="sg")
        appointment = await make_appointment(staff, staff_google_event_id="evt-gone")
        fake_adapters[GOOGLE].fail_on["update"] = EventNotFoundError("gone", status_code=404)

        results = await service.sync(appointment.id, SyncAction.UPDATE)

        assert results[0].success is True
        assert results[0].event_id == "google-event-1"
        assert fake_adapters[GOOGLE].operations() == ["update", "create"]
        assert (await _reload(session, appointment.id)).staff_google_event_id == "google-event-1"


class TestDelete:
    """Delete semantics."""

    @pytest.mark.asyncio
    async def test_delete_clears_event_id(
        self, session, service, make_staff, make_appointment, fake_adapters
    ):
        staff = await make_staff(outlook_calendar_token="so")
        appointment = await make_appointment(staff, staff_outlook_event_id="evt-1")

        results = await service.sync(appointment.id, SyncAction.DELETE)

        assert results[0].success is True
        assert results[0].event_id is None
        assert fake_adapters[OUTLOOK].operations() == ["delete"]
        assert (await _reload(session, appointment.id)).staff_outlook_event_id is None

    @pytest.mark.asyncio
    async def test_delete_is_idempotent(
        self, session, make_staff, make_appointment, fake_adapters, test_settings
    ):
        """Test deleting twice succeeds both times."""
        staff = await make_staff(outlook_calendar_token="so")
        appointment = await make_appointment(staff, staff_outlook_event_id="evt-1")

        first = await CalendarSyncService(session, fake_adapters, test_settings).sync(
            appointment.id, SyncAction.DELETE
        )
        second = await CalendarSyncService(session, fake_adapters, test_settings).sync(
            appointment.id, SyncAction.DELETE
        )

        assert [r.success for r in first] == [True]
        assert [r.success for r in second] == [True]
        assert fake_adapters[OUTLOOK].operations() == ["delete"]
        assert (await _reload(session, appointment.id)).staff_outlook_event_id is None

    @pytest.mark.asyncio
    async def test_delete_of_event_gone_at_provider(
        self, session, service, make_staff, make_appointment, fake_adapters
    ):
        """Test a provider-side 404 on delete still succeeds."""
        staff = await make_staff(google_calendar_token="sg")
        appointment = await make_appointment(staff, staff_google_event_id="evt-gone")
        fake_adapters[GOOGLE].fail_on["delete"] = EventNotFoundError("gone", status_code=410)

        results = await service.sync(appointment.id, SyncAction.DELETE)

        assert results[0].success is True
        assert (await _reload(session, appointment.id)).staff_google_event_id is None

    @pytest.mark.asyncio
    async def test_failed_delete_keeps_event_id(
        self, session, service, make_staff, make_appointment, fake_adapters
    ):
        staff = await make_staff(google_calendar_token="sg")
        appointment = await make_appointment(staff, staff_google_event_id="evt-1")
        fake_adapters[GOOGLE].fail_on["delete"] = ExternalAPIError("503", status_code=503)

        results = await service.sync(appointment.id, SyncAction.DELETE)

        assert results[0].success is False
        assert (await _reload(session, appointment.id)).staff_google_event_id == "evt-1"


class TestErrorIsolation:
    """Failures stay with their target."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("concurrent", [False, True])
    async def test_one_failure_does_not_block_others(
        self, concurrent, session, service, concurrent_service, make_staff, make_appointment,
        fake_adapters
    ):
        """Test a failing target next to a succeeding one."""
        sync_service = concurrent_service if concurrent else service
        staff = await make_staff(google_calendar_token="sg", outlook_calendar_token="so")
        appointment = await make_appointment(staff)
        fake_adapters[GOOGLE].fail_on["create"] = ExternalAPIError("Google is down", status_code=503)

        results = await sync_service.sync(appointment.id, SyncAction.CREATE)

        google_result, outlook_result = results
        assert google_result.provider == GOOGLE
        assert google_result.success is False
        assert google_result.error == "Google is down"
        assert google_result.retryable is True
        assert outlook_result.success is True

        reloaded = await _reload(session, appointment.id)
        assert reloaded.staff_google_event_id is None
        assert reloaded.staff_outlook_event_id == "outlook-event-1"

    @pytest.mark.asyncio
    async def test_rejected_provider_credentials_are_not_retryable(
        self, session, service, make_staff, make_appointment, fake_adapters
    ):
        """Test a revoked Google grant fails only its target and is not retried."""
        staff = await make_staff(
            google_calendar_token="sg", google_refresh_token="revoked", outlook_calendar_token="so"
        )
        appointment = await make_appointment(staff)
        fake_adapters[GOOGLE].fail_on["create"] = TokenRefreshError(
            "Google token refresh rejected during create: invalid_grant"
        )

        google_result, outlook_result = await service.sync(appointment.id, SyncAction.CREATE)

        assert google_result.success is False
        assert google_result.retryable is False
        assert "invalid_grant" in google_result.error
        assert outlook_result.success is True

    @pytest.mark.asyncio
    async def test_timeout_is_a_target_failure(
        self, session, make_staff, make_appointment, fake_adapters, test_settings
    ):
        """Test a slow provider call is bounded and isolated."""
        settings = test_settings.model_copy(update={"provider_timeout_seconds": 0.01})
        service = CalendarSyncService(session, fake_adapters, settings)
        staff = await make_staff(google_calendar_token="sg", outlook_calendar_token="so")
        appointment = await make_appointment(staff)
        fake_adapters[GOOGLE].delay = 0.5

        results = await service.sync(appointment.id, SyncAction.CREATE)

        assert results[0].success is False
        assert "timed out" in results[0].error
        assert results[1].success is True
        reloaded = await _reload(session, appointment.id)
        assert reloaded.staff_google_event_id is None
        assert reloaded.staff_outlook_event_id == "outlook-event-1"


class TestTokens:
    """Token handling inside a sync pass."""

    @pytest.mark.asyncio
    async def test_refresh_is_transparent(
        self, session, service, make_staff, make_appointment, fake_adapters
    ):
        """Test sync refreshes a token inside the buffer and uses the new one."""
        staff = await make_staff(
            outlook_calendar_token="old-access",
            outlook_refresh_token="refresh",
            outlook_token_expiry=datetime.now(timezone.utc) + timedelta(minutes=2),
        )
        appointment = await make_appointment(staff)
        new_expiry = datetime.now(timezone.utc) + timedelta(hours=1)
        fake_adapters[OUTLOOK].refreshed_tokens = RefreshedTokens(
            access_token="new-access", refresh_token="new-refresh", expires_at=new_expiry
        )

        results = await service.sync(appointment.id, SyncAction.CREATE)

        assert results[0].success is True
        assert fake_adapters[OUTLOOK].operations() == ["refresh", "create"]
        assert fake_adapters[OUTLOOK].calls[1][1] == "new-access"
        reloaded = await session.get(Staff, staff.id)
        assert reloaded.outlook_calendar_token == "new-access"
        assert reloaded.outlook_refresh_token == "new-refresh"
        assert reloaded.outlook_token_expiry == new_expiry

    @pytest.mark.asyncio
    async def test_failed_refresh_clears_credentials(
        self, session, service, make_staff, make_appointment, fake_adapters
    ):
        """Test a rejected refresh disconnects the calendar and fails the target."""
        staff = await make_staff(
            google_calendar_token="sg",
            outlook_calendar_token="old-access",
            outlook_refresh_token="revoked",
            outlook_calendar_id="cal",
            outlook_token_expiry=datetime.now(timezone.utc) - timedelta(minutes=10),
        )
        appointment = await make_appointment(staff)
        fake_adapters[OUTLOOK].fail_on["refresh"] = TokenRefreshError("invalid_grant")

        results = await service.sync(appointment.id, SyncAction.CREATE)

        google_result, outlook_result = results
        assert google_result.success is True
        assert outlook_result.success is False
        assert outlook_result.error == "Invalid or expired token"
        assert outlook_result.retryable is False
        assert fake_adapters[OUTLOOK].operations() == ["refresh"]

        reloaded = await session.get(Staff, staff.id)
        assert reloaded.outlook_calendar_token is None
        assert reloaded.outlook_refresh_token is None
        assert reloaded.outlook_calendar_id is None
        assert reloaded.outlook_token_expiry is None
        assert reloaded.google_calendar_token == "sg"

    @pytest.mark.asyncio
    async def test_expired_token_without_refresh_token(
        self, session, service, make_staff, make_appointment, fake_adapters
    ):
        """Test an unrefreshable token fails the target without clearing it."""
        staff = await make_staff(
            outlook_calendar_token="old-access",
            outlook_token_expiry=datetime.now(timezone.utc) - timedelta(minutes=10),
        )
        appointment = await make_appointment(staff)

        results = await service.sync(appointment.id, SyncAction.CREATE)

        assert results[0].success is False
        assert results[0].error == "Invalid or expired token"
        assert fake_adapters[OUTLOOK].calls == []
        assert (await session.get(Staff, staff.id)).outlook_calendar_token == "old-access"

    @pytest.mark.asyncio
    async def test_refresh_network_error_is_retryable(
        self, session, service, make_staff, make_appointment, fake_adapters
    ):
        staff = await make_staff(
            outlook_calendar_token="old-access",
            outlook_refresh_token="refresh",
            outlook_token_expiry=datetime.now(timezone.utc) - timedelta(minutes=10),
        )
        appointment = await make_appointment(staff)
        fake_adapters[OUTLOOK].fail_on["refresh"] = ExternalAPIError(
            "Outlook token endpoint unreachable: offline"
        )

        results = await service.sync(appointment.id, SyncAction.CREATE)

        assert results[0].success is False
        assert results[0].retryable is True
        assert (await session.get(Staff, staff.id)).outlook_refresh_token == "refresh"


class TestBackfill:
    """Backfill of targets without events."""

    @pytest.mark.asyncio
    async def test_backfill_only_creates_missing_events(
        self, session, service, make_staff, make_client, make_appointment, fake_adapters
    ):
        staff = await make_staff(google_calendar_token="sg", outlook_calendar_token="so")
        client = await make_client(google_calendar_token="cg")
        appointment = await make_appointment(
            staff, client=client, staff_google_event_id="existing"
        )

        results = await service.backfill(appointment.id)

        assert [(r.owner, r.provider) for r in results] == [
            (CredentialOwner.STAFF, OUTLOOK),
            (CredentialOwner.CLIENT, GOOGLE),
        ]
        reloaded = await _reload(session, appointment.id)
        assert reloaded.staff_google_event_id == "existing"
        assert reloaded.staff_outlook_event_id == "outlook-event-1"
        assert reloaded.client_google_event_id == "google-event-1"

        assert await service.backfill(appointment.id) == []
