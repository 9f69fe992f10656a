"""
Pytest configuration and shared fixtures for backend tests.

WHAT: Centralized test configuration with markers and engine fixtures
WHY: Enable test organization, filtering, and deterministic time control
HOW: Define pytest markers, a mutable clock, store and API client fixtures
"""

import pytest
from datetime import datetime, timedelta, timezone
from fastapi.testclient import TestClient

from offer_engine.core.config import settings
from offer_engine.core.negotiation_store import NegotiationStore


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "unit: Unit tests (isolated component tests)"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests (multiple components)"
    )
    config.addinivalue_line(
        "markers", "slow: Tests that take significant time to run"
    )


class FakeClock:
    """Mutable clock injected into NegotiationStore."""

    def __init__(self, start: datetime):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs):
        self.current += timedelta(**kwargs)


@pytest.fixture
def clock():
    """
    Deterministic clock.

    WHAT: Fixed start time that tests advance explicitly
    WHY: Expiry rules depend on wall time
    HOW: FakeClock callable passed as NegotiationStore(clock=...)
    """
    return FakeClock(datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def store(clock):
    """Fresh negotiation store with default TTL and strike limit."""
    return NegotiationStore(clock=clock, offer_ttl_hours=24, default_max_counters=2)


@pytest.fixture
def offer_data():
    """Valid initial offer payload."""
    return {
        "unit_price": 100.0,
        "quantity": 10,
        "product": {"id": "prod_1", "name": "Handwoven Basket"},
        "vendor_id": "vendor_1",
        "vendor_name": "Basket Co",
        "chat_id": "chat_1",
        "created_by": "buyer_1",
    }


@pytest.fixture
def client(store, monkeypatch):
    """
    FastAPI test client bound to the fixture store.

    WHAT: Run the app lifespan, then swap in the clock-controlled store
    WHY: Endpoint tests need deterministic time and no background sweeper
    HOW: Disable the sweeper via settings, replace app.state.store
    """
    from offer_engine.main import app

    monkeypatch.setattr(settings, "EXPIRY_SWEEP_ENABLED", False)
    monkeypatch.setattr(settings, "BACKEND_SYNC_ENABLED", False)
    with TestClient(app) as test_client:
        app.state.store = store
        yield test_client
