"""
Family/session registry.

The registry owns subject identity, settings, meal records and the pairing
approval state. The alert engine consumes it through ``FamilyRegistry`` and
never performs pairing itself. ``InMemoryFamilyRegistry`` is backed by an
``InMemorySubjectStore`` so both views share one set of documents.
"""

import asyncio
from collections import defaultdict
from collections.abc import AsyncIterator
from datetime import datetime, tzinfo
from typing import Protocol

import structlog

from carealert.domain.errors import MealLimitReachedError, StoreUnavailableError
from carealert.domain.models import MAX_MEALS_PER_DAY, AlertKind, MealRecord, MonitoredSubject
from carealert.services.store import InMemorySubjectStore

logger = structlog.get_logger(__name__)

# Concurrent evaluations may move alerts.food while a meal clears it
_CLEAR_ATTEMPTS = 3


class FamilyRegistry(Protocol):
    """Collaborator that provides subjects and records meals."""

    async def get_subject(self, subject_id: str) -> MonitoredSubject: ...

    async def record_meal_event(
        self, subject_id: str, meal_number: int, at: datetime
    ) -> MealRecord:
        """
        Record a meal and clear ``alerts.food``.

        Once the meal is written it is returned even if clearing the alert
        fails; the next evaluation re-arms a stale food alert.
        """
        ...

    def subscribe_approval(self, subject_id: str) -> AsyncIterator[bool | None]:
        """Current approval state followed by every change."""
        ...


def next_meal_record(
    previous: MealRecord | None, meal_number: int, at: datetime, tz: tzinfo
) -> MealRecord:
    """Daily meal record after one more meal at ``at``."""
    if not 1 <= meal_number <= MAX_MEALS_PER_DAY:
        raise ValueError(f"meal_number must be between 1 and {MAX_MEALS_PER_DAY}")

    same_day = (
        previous is not None
        and previous.timestamp.astimezone(tz).date() == at.astimezone(tz).date()
    )
    count = previous.count + 1 if same_day and previous is not None else 1
    if count > MAX_MEALS_PER_DAY:
        raise MealLimitReachedError(f"{MAX_MEALS_PER_DAY} meals already recorded today")

    return MealRecord(count=count, number=meal_number, timestamp=at)


class InMemoryFamilyRegistry:
    """Registry over the in-memory subject store."""

    def __init__(self, store: InMemorySubjectStore) -> None:
        self._store = store
        self._subscribers: defaultdict[str, list[asyncio.Queue[bool | None]]] = defaultdict(list)
        self.logger = logger.bind(component="family_registry")

    def add_subject(self, subject: MonitoredSubject) -> None:
        self._store.put_subject(subject)
        self.logger.info("subject_registered", subject_id=subject.id)

    async def get_subject(self, subject_id: str) -> MonitoredSubject:
        return await self._store.get_subject(subject_id)

    async def record_meal_event(
        self, subject_id: str, meal_number: int, at: datetime
    ) -> MealRecord:
        subject = await self._store.get_subject(subject_id)
        meal = next_meal_record(subject.last_meal, meal_number, at, subject.settings.tzinfo)

        await self._store.write_last_meal(subject_id, meal)
        try:
            await self._clear_alert(subject_id, AlertKind.FOOD)
        except StoreUnavailableError as e:
            self.logger.warning(
                "alert_state_clear_failed", subject_id=subject_id, kind="food", error=str(e)
            )

        self.logger.info(
            "meal_recorded",
            subject_id=subject_id,
            meal_number=meal_number,
            count=meal.count,
        )
        return meal

    async def set_approval(self, subject_id: str, approved: bool | None) -> None:
        await self._store.write_approval(subject_id, approved)
        for queue in list(self._subscribers[subject_id]):
            queue.put_nowait(approved)
        self.logger.info("approval_changed", subject_id=subject_id, approved=approved)

    async def subscribe_approval(self, subject_id: str) -> AsyncIterator[bool | None]:
        queue: asyncio.Queue[bool | None] = asyncio.Queue()
        self._subscribers[subject_id].append(queue)
        try:
            subject = await self._store.get_subject(subject_id)
            yield subject.approved
            while True:
                yield await queue.get()
        finally:
            self._subscribers[subject_id].remove(queue)

    async def _clear_alert(self, subject_id: str, kind: AlertKind) -> None:
        for _ in range(_CLEAR_ATTEMPTS):
            current = (await self._store.get_subject(subject_id)).alerts.get(kind)
            if current is None:
                return
            if await self._store.compare_and_set_alert_state(subject_id, kind, current, None):
                self.logger.info("alert_state_cleared", subject_id=subject_id, kind=kind.value)
                return

        self.logger.warning("alert_state_clear_gave_up", subject_id=subject_id, kind=kind.value)
