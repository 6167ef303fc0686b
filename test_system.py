"""
Complete system walkthrough demonstrating the full alerting pipeline.

This script exercises:
1. Configuration loading and validation
2. Activity batching into throttled store writes
3. Survival alert escalation across thresholds
4. Channel fallback when the remote function fails
5. Meal recording and food alert reset

Everything runs in memory against a manual clock. No Firebase project or
remote function is contacted.

Run with: uv run python test_system.py
"""

import asyncio
from datetime import timedelta

import httpx
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from carealert.adapters.remote_function import RemoteFunctionChannel
from carealert.clock import ManualClock
from carealert.config import AppConfig, get_config, print_config_summary, validate_config
from carealert.domain.models import MonitoredSubject, NotificationIntent, SubjectSettings
from carealert.observability import configure_logging
from carealert.services.dispatcher import NotificationDispatcher
from carealert.services.monitoring import FamilyMonitoringService
from carealert.services.registry import InMemoryFamilyRegistry
from carealert.services.result import Result
from carealert.services.store import InMemorySubjectStore

console = Console()


class ConsoleChannel:
    """Channel that prints notifications instead of delivering them."""

    name = "direct_push"
    enabled = True

    def __init__(self) -> None:
        self.delivered: list[NotificationIntent] = []

    async def send(self, intent: NotificationIntent) -> Result[str, Exception]:
        self.delivered.append(intent)
        console.print(f"  📨 {intent.kind.value} -> {intent.recipient_topic} {intent.payload}")
        return Result.ok(f"console-{len(self.delivered)}")


def build_service(
    config: AppConfig, *channels: object
) -> tuple[FamilyMonitoringService, InMemoryFamilyRegistry, InMemorySubjectStore, ManualClock]:
    clock = ManualClock()
    store = InMemorySubjectStore()
    registry = InMemoryFamilyRegistry(store)
    dispatcher = NotificationDispatcher(list(channels), config.dispatch, clock)  # type: ignore[arg-type]
    service = FamilyMonitoringService(registry, store, dispatcher, config, clock)
    registry.add_subject(
        MonitoredSubject(
            id="12345",
            elderly_name="할머니",
            settings=SubjectSettings(survival_signal_enabled=True, alert_hours=(3, 6, 12, 24)),
            approved=True,
        )
    )
    return service, registry, store, clock


async def run_configuration_check() -> bool:
    """Check configuration loading."""

    console.print(Panel("🔧 Checking Configuration", style="blue"))

    try:
        validate_config()
        print_config_summary()
        console.print("✅ Configuration loaded successfully", style="green")
        return True

    except Exception as e:
        console.print(f"❌ Configuration check failed: {e}", style="red")
        return False


async def run_batching_scenario() -> bool:
    """Sixty unlocks in one hour should cost far fewer writes."""

    console.print(Panel("📱 Activity Batching", style="blue"))

    service, _, store, clock = build_service(AppConfig(), ConsoleChannel())
    try:
        for _ in range(60):
            await service.record_activity("12345")
            clock.advance(timedelta(minutes=1))
        await service.tick()

        console.print(f"Signals: 60, store writes: {store.activity_writes}")
        return 0 < store.activity_writes <= 13
    finally:
        await service.stop()


async def run_escalation_scenario() -> bool:
    """Hourly ticks over a day of silence escalate through each threshold."""

    console.print(Panel("⏰ Survival Alert Escalation", style="blue"))

    channel = ConsoleChannel()
    service, _, _, clock = build_service(AppConfig(), channel)
    try:
        await service.watch("12345")
        await service.record_activity("12345")

        table = Table(title="Ticks with alerts")
        table.add_column("Hours inactive", style="cyan")
        table.add_column("Alerts fired", style="white")

        for hour in range(1, 26):
            clock.advance(timedelta(hours=1))
            report = await service.tick()
            if report.intents_fired:
                table.add_row(str(hour), str(report.intents_fired))

        console.print(table)
        fired = [i.payload["hoursInactive"] for i in channel.delivered]
        return fired == ["3", "6", "12", "24"]
    finally:
        await service.stop()


async def run_fallback_scenario() -> bool:
    """A failing remote function hands the alert to direct push."""

    console.print(Panel("🛡️ Channel Fallback", style="blue"))

    transport = httpx.MockTransport(lambda request: httpx.Response(404))
    client = httpx.AsyncClient(transport=transport)
    remote = RemoteFunctionChannel("https://example.test/sendNotification", client=client)
    push = ConsoleChannel()
    service, _, _, clock = build_service(AppConfig(), remote, push)
    try:
        await service.watch("12345")
        await service.record_activity("12345")
        clock.advance(timedelta(hours=13))
        results = await service.evaluate_subject("12345")

        for result in results:
            for attempt in result.attempts:
                console.print(f"  {attempt.channel}: success={attempt.success} {attempt.detail}")

        return len(results) == 1 and results[0].channel == "direct_push"
    finally:
        await client.aclose()
        await service.stop()


async def run_meal_scenario() -> bool:
    """A meal notifies the family and restarts the food clock."""

    console.print(Panel("🍚 Meal Recording", style="blue"))

    channel = ConsoleChannel()
    service, _, store, clock = build_service(AppConfig(), channel)
    try:
        await service.record_meal("12345", 1)
        clock.advance(timedelta(hours=9))
        await service.evaluate_subject("12345")
        fired_before = store.snapshot("12345").alerts.food is not None

        await service.record_meal("12345", 2)
        cleared = store.snapshot("12345").alerts.food is None

        kinds = [i.kind.value for i in channel.delivered]
        console.print(f"Delivered: {kinds}")
        return fired_before and cleared and kinds == ["meal_recorded", "food_alert", "meal_recorded"]
    finally:
        await service.stop()


async def run_all_scenarios() -> None:
    """Run every scenario and print a summary."""

    console.print(Panel("🧪 Care Alert Engine - System Walkthrough", style="bold blue"))

    configure_logging(get_config().logging)
    scenarios = [
        ("Configuration", run_configuration_check),
        ("Activity Batching", run_batching_scenario),
        ("Survival Escalation", run_escalation_scenario),
        ("Channel Fallback", run_fallback_scenario),
        ("Meal Recording", run_meal_scenario),
    ]

    results = []

    for name, scenario in scenarios:
        console.print(f"\n{'=' * 60}")
        try:
            result = await scenario()
            results.append((name, result))
        except KeyboardInterrupt:
            console.print("\n⏹️  Walkthrough interrupted by user", style="yellow")
            break
        except Exception as e:
            console.print(f"❌ {name} failed with exception: {e}", style="red")
            results.append((name, False))

    # Summary
    console.print(f"\n{'=' * 60}")
    console.print(Panel("📋 Results Summary", style="bold"))

    summary_table = Table()
    summary_table.add_column("Scenario", style="cyan")
    summary_table.add_column("Result", style="white")

    passed = 0
    for name, result in results:
        if result:
            summary_table.add_row(name, "✅ PASSED")
            passed += 1
        else:
            summary_table.add_row(name, "❌ FAILED")

    console.print(summary_table)
    console.print(f"\n🎯 Results: {passed}/{len(results)} scenarios passed")


if __name__ == "__main__":
    try:
        asyncio.run(run_all_scenarios())
    except KeyboardInterrupt:
        console.print("\n👋 Walkthrough stopped by user", style="yellow")
    except Exception as e:
        console.print(f"\n💥 Walkthrough failed: {e}", style="red")
