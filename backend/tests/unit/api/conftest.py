"""Fixtures for endpoint tests.

Requests go through ``httpx.ASGITransport`` so the app shares the test's event
loop and SQLite engine.
"""

import httpx
import pytest

from seatsync.api import deps
from seatsync.core.config import settings
from seatsync.main import app
from seatsync.platform.billing.occupancy import StaticSeatOccupancy
from tests.fixtures.common import MONTHLY_VARIANT_ID, YEARLY_VARIANT_ID

CRON_SECRET = "cron-test-secret"


@pytest.fixture
def billing_settings(monkeypatch, webhook_secret):
    """Configure webhook, variant and cron settings for the duration of a test."""
    monkeypatch.setattr(settings, "LEMONSQUEEZY_WEBHOOK_SECRET", webhook_secret)
    monkeypatch.setattr(settings, "LEMONSQUEEZY_MONTHLY_VARIANT_ID", MONTHLY_VARIANT_ID)
    monkeypatch.setattr(settings, "LEMONSQUEEZY_YEARLY_VARIANT_ID", YEARLY_VARIANT_ID)
    monkeypatch.setattr(settings, "CRON_SECRET", CRON_SECRET)
    return settings


@pytest.fixture
def seat_occupancy():
    """Occupancy source registered on the app; tests fill in counts."""
    return StaticSeatOccupancy({})


@pytest.fixture
async def api_client(session_factory, mock_billing_client, seat_occupancy, billing_settings):
    """HTTP client for the app with the test database and provider double."""

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[deps.get_db] = override_get_db
    app.dependency_overrides[deps.get_billing_client] = lambda: mock_billing_client
    app.state.seat_occupancy = seat_occupancy

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client

    app.dependency_overrides.clear()
    del app.state.seat_occupancy


@pytest.fixture
def org_headers(organization_id):
    """Headers identifying the organization the request acts on."""
    return {"X-Organization-ID": str(organization_id)}


@pytest.fixture
def cron_headers():
    """Scheduler authorization header."""
    return {"Authorization": f"Bearer {CRON_SECRET}"}
