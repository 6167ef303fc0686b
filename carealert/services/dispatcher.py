"""
Notification dispatch through an ordered channel fallback chain.

Channels are tried one at a time, each bounded by a timeout, until one
succeeds. A failed, timed-out, disabled or circuit-open channel hands over to
the next. Exhausting the chain is reported in the returned ``DeliveryResult``
and logged. It never raises into the code that produced the intent: alert and
meal recording must not depend on delivery.

There are no retries beyond the chain itself. The next activity flush, meal
record or periodic tick is the retry mechanism.
"""

import asyncio
import time
from collections.abc import Sequence
from typing import Literal, Protocol

import structlog

from carealert.clock import Clock, SystemClock
from carealert.config import DispatchConfig
from carealert.domain.models import ChannelAttempt, DeliveryResult, NotificationIntent
from carealert.services.result import Result

logger = structlog.get_logger(__name__)

BreakerState = Literal["closed", "open", "half-open"]


class NotificationChannel(Protocol):
    """
    One concrete delivery mechanism.

    Each channel maps the generic intent to its own wire format. ``send``
    returns the provider's message id, or the error for an expected failure.
    """

    name: str

    @property
    def enabled(self) -> bool: ...

    async def send(self, intent: NotificationIntent) -> Result[str, Exception]: ...


class CircuitBreakerState:
    """Simple circuit breaker for a notification channel."""

    def __init__(
        self,
        clock: Clock,
        failure_threshold: int = 5,
        recovery_timeout_seconds: float = 60.0,
    ) -> None:
        self.clock = clock
        self.failure_threshold = failure_threshold
        self.recovery_timeout_seconds = recovery_timeout_seconds
        self.failure_count = 0
        self.last_failure_time: float | None = None
        self.state: BreakerState = "closed"

    def can_execute(self) -> bool:
        """Check if operation can execute based on circuit breaker state."""

        if self.state == "closed":
            return True

        if self.state == "open":
            if self.last_failure_time is not None:
                time_since_failure = self.clock.monotonic() - self.last_failure_time
                if time_since_failure >= self.recovery_timeout_seconds:
                    self.state = "half-open"
                    return True
            return False

        return True

    def record_success(self) -> None:
        """Record successful operation."""
        self.failure_count = 0
        self.state = "closed"

    def record_failure(self) -> None:
        """Record failed operation."""
        self.failure_count += 1
        self.last_failure_time = self.clock.monotonic()

        if self.state == "half-open" or self.failure_count >= self.failure_threshold:
            self.state = "open"


class NotificationDispatcher:
    """Delivers intents through the first channel that accepts them."""

    def __init__(
        self,
        channels: Sequence[NotificationChannel],
        config: DispatchConfig | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.config = config or DispatchConfig()
        self.clock = clock or SystemClock()
        self.channels = list(channels)
        self.breakers = {
            channel.name: CircuitBreakerState(
                self.clock,
                failure_threshold=self.config.breaker_failure_threshold,
                recovery_timeout_seconds=self.config.breaker_recovery_seconds,
            )
            for channel in self.channels
        }
        self.logger = logger.bind(component="notification_dispatcher")

    async def dispatch(self, intent: NotificationIntent) -> DeliveryResult:
        attempts: list[ChannelAttempt] = []

        for channel in self.channels:
            attempt = await self._attempt(channel, intent)
            attempts.append(attempt)

            if attempt.success:
                self.logger.info(
                    "notification_delivered",
                    kind=intent.kind.value,
                    subject_id=intent.subject_id,
                    channel=channel.name,
                    attempts=len(attempts),
                )
                return DeliveryResult(
                    kind=intent.kind,
                    subject_id=intent.subject_id,
                    success=True,
                    channel=channel.name,
                    attempts=attempts,
                )

        self.logger.error(
            "notification_delivery_exhausted",
            kind=intent.kind.value,
            subject_id=intent.subject_id,
            channels=[a.channel for a in attempts],
        )
        return DeliveryResult(
            kind=intent.kind, subject_id=intent.subject_id, success=False, attempts=attempts
        )

    async def _attempt(
        self, channel: NotificationChannel, intent: NotificationIntent
    ) -> ChannelAttempt:
        log = self.logger.bind(channel=channel.name, subject_id=intent.subject_id)

        if not channel.enabled:
            log.debug("channel_disabled")
            return ChannelAttempt(channel=channel.name, success=False, detail="channel disabled")

        breaker = self.breakers[channel.name]
        if not breaker.can_execute():
            log.warning("channel_circuit_open")
            return ChannelAttempt(channel=channel.name, success=False, detail="circuit open")

        timeout = self.config.channel_timeout_seconds
        start_time = time.perf_counter()
        try:
            result = await asyncio.wait_for(channel.send(intent), timeout=timeout)
        except TimeoutError:
            error = f"timed out after {timeout}s"
        except Exception as e:
            log.exception("unexpected_channel_error", error=str(e))
            error = str(e) or type(e).__name__
        else:
            if result.is_ok():
                breaker.record_success()
                return ChannelAttempt(
                    channel=channel.name,
                    success=True,
                    detail=result.unwrap(),
                    duration_seconds=round(time.perf_counter() - start_time, 3),
                )
            error = str(result.unwrap_err())

        breaker.record_failure()
        log.warning("channel_delivery_failed", error=error, breaker_state=breaker.state)
        return ChannelAttempt(
            channel=channel.name,
            success=False,
            detail=error,
            duration_seconds=round(time.perf_counter() - start_time, 3),
        )
