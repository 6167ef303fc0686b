"""Shared fixtures for the alerting pipeline tests."""

import asyncio
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Literal

import pytest

from carealert.clock import ManualClock
from carealert.domain.errors import ChannelDeliveryError
from carealert.domain.models import MealRecord, MonitoredSubject, NotificationIntent, SubjectSettings
from carealert.services.registry import InMemoryFamilyRegistry
from carealert.services.result import Result
from carealert.services.store import InMemorySubjectStore

# Monday 09:00 in Asia/Seoul
T0 = datetime(2024, 3, 4, 0, 0, tzinfo=UTC)

Outcome = Literal["ok", "error", "raise"]


class RecordingChannel:
    """Notification channel double that records every intent it is given."""

    def __init__(
        self,
        name: str,
        outcome: Outcome = "ok",
        delay_seconds: float = 0.0,
        enabled: bool = True,
    ) -> None:
        self.name = name
        self.outcome = outcome
        self.delay_seconds = delay_seconds
        self._enabled = enabled
        self.sent: list[NotificationIntent] = []

    @property
    def enabled(self) -> bool:
        return self._enabled

    async def send(self, intent: NotificationIntent) -> Result[str, Exception]:
        self.sent.append(intent)
        if self.delay_seconds:
            await asyncio.sleep(self.delay_seconds)
        if self.outcome == "raise":
            raise RuntimeError("connection reset")
        if self.outcome == "error":
            return Result.err(ChannelDeliveryError(self.name, "HTTP 404"))
        return Result.ok(f"{self.name}-{len(self.sent)}")


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(T0)


@pytest.fixture
def store() -> InMemorySubjectStore:
    return InMemorySubjectStore()


@pytest.fixture
def registry(store: InMemorySubjectStore) -> InMemoryFamilyRegistry:
    return InMemoryFamilyRegistry(store)


@pytest.fixture
def make_subject() -> Callable[..., MonitoredSubject]:
    """Factory for the family used throughout the tests."""

    def _make(**overrides: object) -> MonitoredSubject:
        fields: dict[str, object] = {
            "id": "12345",
            "elderly_name": "할머니",
            "settings": SubjectSettings(
                survival_signal_enabled=True, alert_hours=(3, 6, 12, 24)
            ),
            "approved": True,
        }
        fields.update(overrides)
        return MonitoredSubject.model_validate(fields)

    return _make


class OutageAfterMealStore(InMemorySubjectStore):
    """Store that goes down right after a meal is written."""

    async def write_last_meal(self, subject_id: str, meal: MealRecord) -> None:
        await super().write_last_meal(subject_id, meal)
        self.available = False
