"""
Pytest configuration and shared fixtures.

Provides a deterministic clock, an in-memory store, an aggregate service and
sample incident payloads for unit and integration tests.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict

import pytest

from postmortem.incident.context import Identity, RequestContext
from postmortem.incident.service import IncidentAggregateService
from postmortem.store.memory import InMemoryIncidentStore


class FakeClock:
    """
    Strictly increasing clock: each call returns the current time and then
    advances by step.
    """

    def __init__(self, start: datetime, step: timedelta = timedelta(seconds=1)):
        self.now = start
        self.step = step

    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now + self.step
        return current


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 1, 9, 13, 0, tzinfo=timezone.utc))


@pytest.fixture
def store() -> InMemoryIncidentStore:
    return InMemoryIncidentStore()


@pytest.fixture
def service(store, clock) -> IncidentAggregateService:
    return IncidentAggregateService(store=store, clock=clock)


@pytest.fixture
def ctx() -> RequestContext:
    """Authenticated caller in the shared default tenant."""
    identity = Identity(
        user_id="user123",
        display_name="alice@example.com",
        provider="aad",
        roles=("authenticated",),
    )
    return RequestContext(identity=identity, tenant_id="default")


@pytest.fixture
def incident_payload() -> Dict[str, Any]:
    """
    Create payload as the web client sends it (camelCase, ISO timestamps).
    """
    return {
        "title": "API Outage",
        "severity": "SEV2",
        "status": "investigating",
        "startedAt": "2026-01-09T12:00:00Z",
        "servicesImpacted": ["api"],
    }


def pytest_configure(config):
    """
    Pytest hook for custom configuration.

    Registers custom markers used throughout tests.
    """
    config.addinivalue_line(
        "markers", "unit: mark test as a unit test"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as an integration test"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running (deferred CI)"
    )
