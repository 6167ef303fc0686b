"""
Threshold evaluation for survival and food alerts.

An inactivity episode starts at the last qualifying signal (activity for
survival, a meal for food). Within an episode each evaluation fires at most
one alert, for the highest threshold crossed so far, and only if that
threshold is above the one already alerted. The threshold already alerted is
recovered from ``alerts.<kind>`` itself: it is the highest threshold the
elapsed time had crossed when that alert fired.

A fired timestamp older than the episode start belongs to a previous episode.
It is cleared so the new episode can fire again from the lowest threshold.

Planning is a pure function of the subject and the current time. Committing
a plan goes through the store's compare-and-set; a lost race drops the
intent because another evaluation already handled that crossing.
"""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

import structlog

from carealert.domain.models import AlertKind, MonitoredSubject, NotificationIntent
from carealert.services.sleep import awake_time_between
from carealert.services.store import SubjectStore

logger = structlog.get_logger(__name__)

ElapsedFn = Callable[[datetime, datetime], timedelta]


@dataclass(frozen=True)
class AlertTransition:
    """A planned conditional write of ``alerts.<kind>``."""

    kind: AlertKind
    expected_previous: datetime | None
    fire_hours: int | None

    @property
    def fires(self) -> bool:
        return self.fire_hours is not None


def highest_crossed(thresholds: tuple[int, ...], elapsed: timedelta) -> int | None:
    crossed = [h for h in thresholds if elapsed >= timedelta(hours=h)]
    return max(crossed) if crossed else None


def plan_kind(
    kind: AlertKind,
    reference: datetime | None,
    fired: datetime | None,
    thresholds: tuple[int, ...],
    now: datetime,
    elapsed_fn: ElapsedFn,
) -> AlertTransition | None:
    """Transition for one alert kind, or None when nothing changes."""
    if reference is None or not thresholds:
        return None

    crossed = highest_crossed(thresholds, elapsed_fn(reference, now))
    if fired is not None and fired >= reference:
        already = highest_crossed(thresholds, elapsed_fn(reference, fired))
        if crossed is None or (already is not None and crossed <= already):
            return None
        return AlertTransition(kind, expected_previous=fired, fire_hours=crossed)

    if crossed is None:
        # Re-arm: a newer signal ended the episode this timestamp belongs to
        if fired is not None:
            return AlertTransition(kind, expected_previous=fired, fire_hours=None)
        return None

    return AlertTransition(kind, expected_previous=fired, fire_hours=crossed)


def plan(subject: MonitoredSubject, now: datetime) -> list[AlertTransition]:
    """All alert transitions for ``subject`` at ``now``."""
    settings = subject.settings
    transitions: list[AlertTransition] = []

    if settings.survival_signal_enabled:

        def survival_elapsed(start: datetime, end: datetime) -> timedelta:
            return awake_time_between(start, end, settings.sleep, settings.tzinfo)

        survival = plan_kind(
            AlertKind.SURVIVAL,
            subject.reference_time(AlertKind.SURVIVAL),
            subject.alerts.survival,
            settings.survival_thresholds(),
            now,
            survival_elapsed,
        )
        if survival:
            transitions.append(survival)

    food = plan_kind(
        AlertKind.FOOD,
        subject.reference_time(AlertKind.FOOD),
        subject.alerts.food,
        settings.food_thresholds(),
        now,
        lambda start, end: end - start,
    )
    if food:
        transitions.append(food)

    return transitions


class ThresholdEvaluator:
    """Turns crossed thresholds into notification intents, at most once per crossing."""

    def __init__(self, store: SubjectStore) -> None:
        self._store = store
        self.logger = logger.bind(component="threshold_evaluator")

    async def evaluate(self, subject: MonitoredSubject, now: datetime) -> list[NotificationIntent]:
        """
        Evaluate ``subject`` at ``now`` and commit the resulting alert state.

        Store failures propagate; the caller decides how to report them.
        """
        intents: list[NotificationIntent] = []

        for transition in plan(subject, now):
            new_value = now if transition.fires else None
            won = await self._store.compare_and_set_alert_state(
                subject.id, transition.kind, transition.expected_previous, new_value
            )
            if not won:
                self.logger.info(
                    "alert_transition_lost",
                    subject_id=subject.id,
                    kind=transition.kind.value,
                    fire_hours=transition.fire_hours,
                )
                continue

            if transition.fire_hours is None:
                self.logger.info("alert_rearmed", subject_id=subject.id, kind=transition.kind.value)
                continue

            if transition.kind is AlertKind.SURVIVAL:
                intent = NotificationIntent.survival_alert(subject, transition.fire_hours, now)
            else:
                intent = NotificationIntent.food_alert(subject, transition.fire_hours, now)

            self.logger.warning(
                f"{transition.kind.value}_alert_fired",
                subject_id=subject.id,
                threshold_hours=transition.fire_hours,
            )
            intents.append(intent)

        return intents
