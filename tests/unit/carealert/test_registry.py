"""Tests for meal recording and approval subscriptions in the family registry."""

from collections.abc import Callable
from datetime import timedelta
from zoneinfo import ZoneInfo

import pytest

from carealert.domain.errors import MealLimitReachedError, SubjectNotFoundError
from carealert.domain.models import AlertState, MealRecord, MonitoredSubject
from carealert.services.registry import InMemoryFamilyRegistry, next_meal_record
from carealert.services.store import InMemorySubjectStore

from conftest import T0, OutageAfterMealStore

SubjectFactory = Callable[..., MonitoredSubject]
SEOUL = ZoneInfo("Asia/Seoul")


class TestNextMealRecord:
    def test_first_meal(self) -> None:
        meal = next_meal_record(None, 1, T0, SEOUL)
        assert meal == MealRecord(count=1, number=1, timestamp=T0)

    def test_same_local_day_increments(self) -> None:
        first = next_meal_record(None, 1, T0, SEOUL)
        second = next_meal_record(first, 2, T0 + timedelta(hours=4), SEOUL)
        assert second.count == 2
        assert second.number == 2

    def test_count_resets_at_local_midnight(self) -> None:
        # 23:00 and 01:00 in Seoul fall on the same UTC date
        late = T0 + timedelta(hours=14)
        previous = MealRecord(count=3, number=3, timestamp=late)

        meal = next_meal_record(previous, 1, late + timedelta(hours=2), SEOUL)

        assert meal.count == 1

    def test_fourth_meal_is_rejected(self) -> None:
        previous = MealRecord(count=3, number=3, timestamp=T0)
        with pytest.raises(MealLimitReachedError):
            next_meal_record(previous, 1, T0 + timedelta(hours=1), SEOUL)

    @pytest.mark.parametrize("meal_number", [0, 4])
    def test_meal_number_out_of_range(self, meal_number: int) -> None:
        with pytest.raises(ValueError, match="meal_number"):
            next_meal_record(None, meal_number, T0, SEOUL)


class TestInMemoryFamilyRegistry:
    async def test_recording_a_meal_clears_the_food_alert(
        self,
        store: InMemorySubjectStore,
        registry: InMemoryFamilyRegistry,
        make_subject: SubjectFactory,
    ) -> None:
        registry.add_subject(
            make_subject(alerts=AlertState(food=T0 - timedelta(hours=1), survival=T0))
        )

        meal = await registry.record_meal_event("12345", 1, T0)

        subject = store.snapshot("12345")
        assert subject.last_meal == meal
        assert subject.alerts.food is None
        assert subject.alerts.survival == T0

    async def test_unknown_subject(self, registry: InMemoryFamilyRegistry) -> None:
        with pytest.raises(SubjectNotFoundError):
            await registry.record_meal_event("missing", 1, T0)

    async def test_approval_subscription_yields_current_state_then_changes(
        self, registry: InMemoryFamilyRegistry, make_subject: SubjectFactory
    ) -> None:
        registry.add_subject(make_subject(approved=None))
        stream = registry.subscribe_approval("12345")

        assert await anext(stream) is None
        await registry.set_approval("12345", True)
        assert await anext(stream) is True

        await stream.aclose()

    async def test_meal_is_kept_when_clearing_the_alert_fails(
        self, make_subject: SubjectFactory
    ) -> None:
        store = OutageAfterMealStore()
        registry = InMemoryFamilyRegistry(store)
        registry.add_subject(make_subject(alerts=AlertState(food=T0 - timedelta(hours=1))))

        meal = await registry.record_meal_event("12345", 1, T0)

        subject = store.snapshot("12345")
        assert subject.last_meal == meal
        assert subject.alerts.food == T0 - timedelta(hours=1)
