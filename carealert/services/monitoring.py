"""
Family monitoring service.

Wires the pipeline together:
1. Activity signals go through the batcher into throttled store writes
2. Every durable write, meal record and periodic tick re-evaluates thresholds
3. Fired intents are delivered through the channel fallback chain

Monitoring of a subject only produces notifications once the family pairing
is approved. Delivery failures never undo recorded activity or meals.
"""

import asyncio
from collections.abc import AsyncIterator
from datetime import datetime

import structlog

from carealert.clock import Clock, SystemClock
from carealert.config import AppConfig, get_config
from carealert.domain.errors import StoreUnavailableError, SubjectNotFoundError
from carealert.domain.models import (
    DeliveryResult,
    MealRecord,
    MonitoredSubject,
    NotificationIntent,
    TickReport,
)
from carealert.observability import configure_logging
from carealert.services.activity_batcher import ActivityBatcher
from carealert.services.dispatcher import NotificationDispatcher
from carealert.services.registry import FamilyRegistry
from carealert.services.store import SubjectStore
from carealert.services.threshold_evaluator import ThresholdEvaluator

logger = structlog.get_logger(__name__)


class FamilyMonitoringService:
    """Alert engine for a set of watched families."""

    def __init__(
        self,
        registry: FamilyRegistry,
        store: SubjectStore,
        dispatcher: NotificationDispatcher,
        config: AppConfig | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.config = config or get_config()
        self.clock = clock or SystemClock()
        self.registry = registry
        self.dispatcher = dispatcher
        self.logger = logger.bind(component="family_monitoring")

        self.evaluator = ThresholdEvaluator(store)
        self.batcher = ActivityBatcher(store, self.config.batching, on_flush=self.evaluate_subject)

        self._watched: set[str] = set()
        self._approval_tasks: dict[str, asyncio.Task[None]] = {}
        self._is_running = False

    @property
    def watched(self) -> frozenset[str]:
        return frozenset(self._watched)

    async def watch(self, subject_id: str) -> None:
        """Include a subject in periodic evaluation and follow its approval state."""
        if subject_id in self._watched:
            return
        self._watched.add(subject_id)
        self._approval_tasks[subject_id] = asyncio.create_task(
            self._follow_approval(subject_id), name=f"approval-{subject_id}"
        )
        self.logger.info("subject_watched", subject_id=subject_id)

    async def record_activity(self, subject_id: str, observed_at: datetime | None = None) -> bool:
        """Feed one activity signal. Returns True when it was written through."""
        return await self.batcher.record_activity(subject_id, observed_at or self.clock.now())

    async def record_meal(
        self, subject_id: str, meal_number: int, at: datetime | None = None
    ) -> MealRecord:
        """
        Record a meal, notify the family and re-evaluate.

        Registry errors (unknown subject, daily limit) propagate. Notification
        failures do not.
        """
        at = at or self.clock.now()
        meal = await self.registry.record_meal_event(subject_id, meal_number, at)

        try:
            subject = await self.registry.get_subject(subject_id)
        except StoreUnavailableError as e:
            self.logger.warning("meal_notification_skipped", subject_id=subject_id, error=str(e))
            return meal

        if self._is_approved(subject):
            await self.dispatcher.dispatch(NotificationIntent.meal_recorded(subject, at))

        await self.evaluate_subject(subject_id)
        return meal

    async def evaluate_subject(self, subject_id: str) -> list[DeliveryResult]:
        """Evaluate one subject now and deliver anything that fired. Never raises."""
        try:
            return await self._evaluate(subject_id)
        except (StoreUnavailableError, SubjectNotFoundError) as e:
            self.logger.warning("evaluation_skipped", subject_id=subject_id, error=str(e))
        except Exception as e:
            self.logger.exception("evaluation_failed", subject_id=subject_id, error=str(e))
        return []

    async def tick(self) -> TickReport:
        """Flush due batches, then evaluate every watched subject."""
        now = self.clock.now()
        report = TickReport(started_at=now)
        report.batches_flushed = await self.batcher.flush_due(now)

        async with asyncio.TaskGroup() as task_group:
            tasks = [
                task_group.create_task(self._evaluate_for_tick(subject_id))
                for subject_id in sorted(self._watched)
            ]

        for task in tasks:
            results, failed = task.result()
            report.subjects_evaluated += 1
            report.intents_fired += len(results)
            report.deliveries_failed += sum(1 for r in results if not r.success)
            report.errors += int(failed)

        self.logger.info(
            "tick_completed",
            subjects_evaluated=report.subjects_evaluated,
            batches_flushed=report.batches_flushed,
            intents_fired=report.intents_fired,
            deliveries_failed=report.deliveries_failed,
            errors=report.errors,
        )
        return report

    async def run_periodic(self) -> AsyncIterator[TickReport]:
        """
        Run ticks on the configured interval.

        Yields a report after every tick.
        """
        interval = self.config.evaluation.tick_interval_seconds
        self.logger.info("periodic_evaluation_starting", interval=interval)
        self._is_running = True

        try:
            while self._is_running:
                started = self.clock.monotonic()
                yield await self.tick()

                sleep_time = max(0.0, interval - (self.clock.monotonic() - started))
                if sleep_time > 0:
                    await asyncio.sleep(sleep_time)

        except asyncio.CancelledError:
            self.logger.info("periodic_evaluation_cancelled")
            raise
        finally:
            self._is_running = False

    async def stop(self) -> None:
        """Stop periodic evaluation and approval subscriptions."""
        self.logger.info("stopping_monitoring_service")
        self._is_running = False

        tasks = list(self._approval_tasks.values())
        self._approval_tasks.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def _evaluate(self, subject_id: str) -> list[DeliveryResult]:
        now = self.clock.now()
        subject = await self.registry.get_subject(subject_id)

        if not self._is_approved(subject):
            self.logger.debug("evaluation_pending_approval", subject_id=subject_id)
            return []

        intents = await self.evaluator.evaluate(subject, now)
        return [await self.dispatcher.dispatch(intent) for intent in intents]

    async def _evaluate_for_tick(self, subject_id: str) -> tuple[list[DeliveryResult], bool]:
        try:
            return await self._evaluate(subject_id), False
        except (StoreUnavailableError, SubjectNotFoundError) as e:
            self.logger.warning("evaluation_skipped", subject_id=subject_id, error=str(e))
        except Exception as e:
            self.logger.exception("evaluation_failed", subject_id=subject_id, error=str(e))
        return [], True

    def _is_approved(self, subject: MonitoredSubject) -> bool:
        return subject.approved is True

    async def _follow_approval(self, subject_id: str) -> None:
        initial = True
        try:
            async for approved in self.registry.subscribe_approval(subject_id):
                self.logger.info("approval_state_received", subject_id=subject_id, approved=approved)
                # Newly approved families are evaluated without waiting for the next tick
                if approved is True and not initial:
                    await self.evaluate_subject(subject_id)
                initial = False
        except (StoreUnavailableError, SubjectNotFoundError) as e:
            self.logger.warning("approval_subscription_failed", subject_id=subject_id, error=str(e))


# Example usage and demonstration
async def main() -> None:
    """Walk one family through an inactivity episode with in-memory components."""

    from datetime import timedelta

    from carealert.adapters import build_channels
    from carealert.adapters.direct_push import initialize_firebase_app
    from carealert.adapters.remote_function import RemoteFunctionChannel
    from carealert.clock import ManualClock
    from carealert.domain.models import SubjectSettings
    from carealert.services.registry import InMemoryFamilyRegistry
    from carealert.services.store import InMemorySubjectStore

    config = get_config()
    configure_logging(config.logging)

    clock = ManualClock()
    store = InMemorySubjectStore()
    registry = InMemoryFamilyRegistry(store)
    channels = build_channels(config, firebase_app=initialize_firebase_app(config.firebase))
    dispatcher = NotificationDispatcher(channels, config.dispatch, clock)
    service = FamilyMonitoringService(registry, store, dispatcher, config, clock)

    registry.add_subject(
        MonitoredSubject(
            id="12345",
            elderly_name="할머니",
            settings=SubjectSettings(survival_signal_enabled=True, alert_hours=(3, 6, 12, 24)),
            approved=True,
        )
    )
    await service.watch("12345")

    print("Starting family monitoring demo")
    await service.record_activity("12345")
    await service.record_meal("12345", 1)

    try:
        for _ in range(4):
            clock.advance(timedelta(hours=4))
            report = await service.tick()
            print(
                f"{clock.now():%Y-%m-%d %H:%M} UTC: "
                f"{report.intents_fired} fired, {report.deliveries_failed} undelivered"
            )
    finally:
        await service.stop()
        for channel in channels:
            if isinstance(channel, RemoteFunctionChannel):
                await channel.aclose()
        print("Monitoring service stopped")


if __name__ == "__main__":
    asyncio.run(main())
