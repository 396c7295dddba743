"""Pytest configuration and fixtures for calendar sync worker tests."""

import os

# Required settings must exist before any module calls get_settings() at import
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("AZURE_AD_CLIENT_ID", "test-client-id")
os.environ.setdefault("AZURE_AD_CLIENT_SECRET", "test-client-secret")

import asyncio  # noqa: E402
import pytest  # noqa: E402
from datetime import datetime, timedelta, timezone  # noqa: E402
from typing import Dict, List, Optional  # noqa: E402
from unittest.mock import AsyncMock  # noqa: E402

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from calendar_sync_worker.config import Settings  # noqa: E402
from calendar_sync_worker.database.models import (  # noqa: E402
    Appointment,
    AppointmentService,
    Base,
    Client,
    Service,
    Staff,
)
from calendar_sync_worker.models.calendar import (  # noqa: E402
    CalendarEventDraft,
    CalendarProvider,
    RefreshedTokens,
)
from calendar_sync_worker.services.providers.base import CalendarProviderAdapter  # noqa: E402

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture(autouse=True)
def reset_settings_singleton():
    """Each test starts without a cached Settings instance."""
    import calendar_sync_worker.config

    calendar_sync_worker.config._settings = None
    yield
    calendar_sync_worker.config._settings = None


@pytest.fixture
def test_settings():
    """Settings for testing."""
    return Settings(
        service_name="calendar-sync-worker-test",
        environment="test",
        database_url=TEST_DATABASE_URL,
        redis_url="redis://localhost:6379/1",  # Use DB 1 for testing
        azure_ad_client_id="test-client-id",
        azure_ad_client_secret="test-client-secret",
        google_client_id="test-google-client-id",
        google_client_secret="test-google-client-secret",
        log_level="DEBUG",
    )


@pytest.fixture
async def engine():
    """Create test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
async def session(engine):
    """Create test database session."""
    async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with async_session() as session:
        yield session
        await session.rollback()


@pytest.fixture
def mock_db_session():
    """Mock async database session."""
    session = AsyncMock()
    session.execute = AsyncMock()
    session.flush = AsyncMock()
    session.get = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    return session


@pytest.fixture
def appointment_start():
    """An upcoming appointment start time."""
    return (datetime.now(timezone.utc) + timedelta(days=2)).replace(
        hour=10, minute=0, second=0, microsecond=0
    )


@pytest.fixture
def make_staff(session):
    """Factory for persisted staff members."""

    async def _make_staff(**kwargs) -> Staff:
        values = {"first_name": "Anna", "last_name": "Stylist", "email": "anna@salon.test"}
        values.update(kwargs)
        staff = Staff(**values)
        session.add(staff)
        await session.flush()
        return staff

    return _make_staff


@pytest.fixture
def make_client(session):
    """Factory for persisted clients."""

    async def _make_client(**kwargs) -> Client:
        values = {"first_name": "Jane", "last_name": "Doe", "email": "jane@example.com"}
        values.update(kwargs)
        client = Client(**values)
        session.add(client)
        await session.flush()
        return client

    return _make_client


@pytest.fixture
def make_appointment(session, appointment_start):
    """Factory for persisted appointments with ordered services."""

    async def _make_appointment(
        staff: Staff,
        client: Optional[Client] = None,
        services: Optional[List[str]] = None,
        **kwargs,
    ) -> Appointment:
        values = {
            "staff_id": staff.id,
            "client_id": client.id if client else None,
            "scheduled_start": appointment_start,
            "scheduled_end": appointment_start + timedelta(hours=1),
            "notes": "First visit",
        }
        values.update(kwargs)
        appointment = Appointment(**values)
        session.add(appointment)
        await session.flush()

        service_names = ["Haircut"] if services is None else services
        for position, name in enumerate(service_names):
            service = Service(name=name)
            session.add(service)
            await session.flush()
            session.add(
                AppointmentService(
                    appointment_id=appointment.id, service_id=service.id, position=position
                )
            )
        await session.flush()
        return appointment

    return _make_appointment


class FakeCalendarAdapter(CalendarProviderAdapter):
    """In-memory adapter recording every call; failures are injected per operation."""

    def __init__(self, provider: CalendarProvider, settings: Settings, supports_token_refresh=False):
        super().__init__(settings)
        self.provider = provider
        self.supports_token_refresh = supports_token_refresh
        self.calls: List[tuple] = []
        self.fail_on: Dict[str, Exception] = {}
        self.delay: Optional[float] = None
        self.refreshed_tokens: Optional[RefreshedTokens] = None
        self._counter = 0

    async def _maybe_fail(self, operation: str) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if operation in self.fail_on:
            raise self.fail_on[operation]

    def render_event(self, draft: CalendarEventDraft) -> dict:
        return {"summary": draft.summary, "description": draft.description}

    async def create_event(self, access_token, calendar_id, event, refresh_token=None) -> str:
        self.calls.append(("create", access_token, calendar_id, event))
        await self._maybe_fail("create")
        self._counter += 1
        return f"{self.provider.value}-event-{self._counter}"

    async def update_event(self, access_token, calendar_id, event_id, event, refresh_token=None):
        self.calls.append(("update", access_token, calendar_id, event_id, event))
        await self._maybe_fail("update")

    async def delete_event(self, access_token, calendar_id, event_id, refresh_token=None):
        self.calls.append(("delete", access_token, calendar_id, event_id))
        await self._maybe_fail("delete")

    async def refresh_token(self, refresh_token: str) -> RefreshedTokens:
        self.calls.append(("refresh", refresh_token))
        await self._maybe_fail("refresh")
        return self.refreshed_tokens or RefreshedTokens(
            access_token="refreshed-access-token",
            refresh_token="refreshed-refresh-token",
            expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
        )

    def operations(self) -> List[str]:
        return [call[0] for call in self.calls]


@pytest.fixture
def fake_adapters(test_settings):
    """Recording adapters for both providers (Outlook refreshes tokens)."""
    return {
        CalendarProvider.GOOGLE: FakeCalendarAdapter(CalendarProvider.GOOGLE, test_settings),
        CalendarProvider.OUTLOOK: FakeCalendarAdapter(
            CalendarProvider.OUTLOOK, test_settings, supports_token_refresh=True
        ),
    }
