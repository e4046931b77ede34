from datetime import UTC, datetime

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from support import API_KEY, API_SECRET, FakeCaptureProvider

from shiftcam.api import create_app
from shiftcam.config import Settings
from shiftcam.database import InMemoryRegistry
from shiftcam.models import Profile, Role, Shift, ShiftStatus


@pytest.fixture
def settings() -> Settings:
    return Settings(
        livekit_api_key=API_KEY,
        livekit_api_secret=API_SECRET,
        livekit_api_url="https://livekit.example.test",
        spaces_endpoint="https://recordings.sgp1.digitaloceanspaces.com",
        spaces_bucket="recordings",
        spaces_key="spaces-key",
        spaces_secret="spaces-secret",
    )


@pytest.fixture
def registry() -> InMemoryRegistry:
    registry = InMemoryRegistry()
    registry.add_shift(
        Shift(
            id="S1",
            manager_id="manager-1",
            status=ShiftStatus.ACTIVE,
            started_at=datetime(2025, 7, 2, 8, 0, 0, tzinfo=UTC),
        )
    )
    registry.add_shift(
        Shift(
            id="S0",
            manager_id="manager-1",
            status=ShiftStatus.ENDED,
            started_at=datetime(2025, 7, 1, 8, 0, 0, tzinfo=UTC),
            ended_at=datetime(2025, 7, 1, 16, 0, 0, tzinfo=UTC),
        )
    )
    registry.add_profile(
        Profile(
            id="manager-1",
            email="mara@example.com",
            name="Mara Lindqvist",
            role=Role.MANAGER,
        )
    )
    registry.add_profile(
        Profile(
            id="E1",
            email="eli@example.com",
            name="Eli Okafor",
            role=Role.EMPLOYEE,
        )
    )
    return registry


@pytest.fixture
def provider() -> FakeCaptureProvider:
    return FakeCaptureProvider()


@pytest.fixture
def app(settings, registry, provider):
    return create_app(settings, registry=registry, provider=provider)


@pytest_asyncio.fixture
async def client(app):
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as async_client:
        yield async_client
