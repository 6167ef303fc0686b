"""Tests for the in-memory subject store and its compare-and-set."""

import asyncio
from collections.abc import Callable
from datetime import timedelta

import pytest

from carealert.domain.errors import StoreUnavailableError, SubjectNotFoundError
from carealert.domain.models import AlertKind, MealRecord, MonitoredSubject
from carealert.services.store import InMemorySubjectStore
from carealert.services.threshold_evaluator import ThresholdEvaluator

from conftest import T0

SubjectFactory = Callable[..., MonitoredSubject]


class TestCompareAndSet:
    async def test_write_succeeds_when_expected_matches(
        self, store: InMemorySubjectStore, make_subject: SubjectFactory
    ) -> None:
        store.put_subject(make_subject())

        assert await store.compare_and_set_alert_state("12345", AlertKind.SURVIVAL, None, T0)
        assert store.snapshot("12345").alerts.survival == T0

    async def test_write_fails_when_value_moved(
        self, store: InMemorySubjectStore, make_subject: SubjectFactory
    ) -> None:
        store.put_subject(make_subject())
        await store.compare_and_set_alert_state("12345", AlertKind.SURVIVAL, None, T0)

        later = T0 + timedelta(hours=1)
        assert not await store.compare_and_set_alert_state(
            "12345", AlertKind.SURVIVAL, None, later
        )
        assert store.snapshot("12345").alerts.survival == T0

    async def test_kinds_are_independent(
        self, store: InMemorySubjectStore, make_subject: SubjectFactory
    ) -> None:
        store.put_subject(make_subject())
        await store.compare_and_set_alert_state("12345", AlertKind.SURVIVAL, None, T0)

        assert await store.compare_and_set_alert_state("12345", AlertKind.FOOD, None, T0)
        alerts = store.snapshot("12345").alerts
        assert alerts.survival == T0
        assert alerts.food == T0

    async def test_concurrent_evaluations_fire_once(self, make_subject: SubjectFactory) -> None:
        store = InMemorySubjectStore(latency_seconds=0.01)
        store.put_subject(make_subject(last_activity_at=T0))
        snapshot = store.snapshot("12345")
        now = T0 + timedelta(hours=13)

        # A batch flush and a periodic tick racing on the same crossing
        results = await asyncio.gather(
            ThresholdEvaluator(store).evaluate(snapshot, now),
            ThresholdEvaluator(store).evaluate(snapshot, now),
        )

        assert sum(len(intents) for intents in results) == 1
        assert store.snapshot("12345").alerts.survival == now

    async def test_concurrent_writes_to_different_fields_are_kept(
        self, make_subject: SubjectFactory
    ) -> None:
        store = InMemorySubjectStore(latency_seconds=0.01)
        store.put_subject(make_subject())
        meal = MealRecord(count=1, number=1, timestamp=T0)

        await asyncio.gather(
            store.write_last_meal("12345", meal),
            store.compare_and_set_alert_state("12345", AlertKind.SURVIVAL, None, T0),
            store.write_last_activity("12345", T0),
        )

        subject = store.snapshot("12345")
        assert subject.last_meal == meal
        assert subject.alerts.survival == T0
        assert subject.last_activity_at == T0


class TestLastActivity:
    async def test_activity_only_moves_forward(
        self, store: InMemorySubjectStore, make_subject: SubjectFactory
    ) -> None:
        store.put_subject(make_subject())

        assert await store.write_last_activity("12345", T0 + timedelta(hours=1))
        assert not await store.write_last_activity("12345", T0)
        assert store.snapshot("12345").last_activity_at == T0 + timedelta(hours=1)
        assert store.activity_writes == 1


class TestFailures:
    async def test_unknown_subject(self, store: InMemorySubjectStore) -> None:
        with pytest.raises(SubjectNotFoundError) as exc_info:
            await store.get_subject("missing")
        assert exc_info.value.subject_id == "missing"

    async def test_unavailable_store_rejects_every_operation(
        self, store: InMemorySubjectStore, make_subject: SubjectFactory
    ) -> None:
        store.put_subject(make_subject())
        store.available = False

        with pytest.raises(StoreUnavailableError):
            await store.get_subject("12345")
        with pytest.raises(StoreUnavailableError):
            await store.write_last_activity("12345", T0)
        with pytest.raises(StoreUnavailableError):
            await store.compare_and_set_alert_state("12345", AlertKind.FOOD, None, T0)

    def test_subject_ids_are_sorted(
        self, store: InMemorySubjectStore, make_subject: SubjectFactory
    ) -> None:
        store.put_subject(make_subject(id="b"))
        store.put_subject(make_subject(id="a"))
        assert store.subject_ids() == ["a", "b"]
