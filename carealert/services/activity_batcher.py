"""
Activity batching.

Phones report "user is active" on every unlock and app foreground. Writing
each signal to the family document would be wasteful, so signals are folded
into a per-subject batch and written at most once per flush window:

- the first signal seen for a subject is flushed immediately
- a signal arriving ``reactivation_hours`` or more after the last write is
  flushed immediately, so a return from long inactivity re-arms alerts promptly
- otherwise the batch is flushed once ``min_flush_interval_seconds`` have
  passed since the last write, either by the next signal or by a periodic tick
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Literal

import structlog

from carealert.config import BatchingConfig
from carealert.domain.errors import StoreUnavailableError, SubjectNotFoundError
from carealert.services.store import SubjectStore

logger = structlog.get_logger(__name__)

FlushReason = Literal["first_activity", "reactivation", "interval", "batch_full"]
FlushCallback = Callable[[str], Awaitable[object]]


@dataclass
class ActivityBatch:
    """Un-flushed activity for one subject. Lives in memory only."""

    pending_since: datetime | None = None
    pending_count: int = 0
    latest_observed: datetime | None = None
    last_flushed_at: datetime | None = None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    @property
    def has_pending(self) -> bool:
        return self.pending_since is not None

    def add(self, observed_at: datetime) -> None:
        if self.pending_since is None:
            self.pending_since = observed_at
        self.pending_count += 1
        self.latest_observed = observed_at

    def mark_flushed(self, at: datetime) -> None:
        self.last_flushed_at = at
        self.pending_since = None
        self.pending_count = 0


class FlushPolicy:
    """Pure flush decisions, kept apart from I/O for property testing."""

    def __init__(self, config: BatchingConfig) -> None:
        self.interval = timedelta(seconds=config.min_flush_interval_seconds)
        self.reactivation = timedelta(hours=config.reactivation_hours)
        self.max_batch_signals = config.max_batch_signals

    def flush_reason(self, batch: ActivityBatch, observed_at: datetime) -> FlushReason | None:
        if batch.last_flushed_at is None:
            return "first_activity"

        gap = observed_at - batch.last_flushed_at
        if gap >= self.reactivation:
            return "reactivation"
        if gap >= self.interval:
            return "interval"
        if self.max_batch_signals is not None and batch.pending_count >= self.max_batch_signals:
            return "batch_full"
        return None

    def is_due(self, batch: ActivityBatch, now: datetime) -> bool:
        """Pending batch whose flush window has elapsed without a new signal."""
        if not batch.has_pending:
            return False
        if batch.last_flushed_at is None:
            return True
        return now - batch.last_flushed_at >= self.interval


class ActivityBatcher:
    """
    Coalesces raw activity signals into throttled durable writes.

    Writes are serialized per subject. A transient store failure keeps the
    batch pending so the next signal or tick retries it; the caller that
    reported activity never sees it. Activity for an unknown subject is
    dropped along with its batch.
    """

    def __init__(
        self,
        store: SubjectStore,
        config: BatchingConfig,
        on_flush: FlushCallback | None = None,
    ) -> None:
        self._store = store
        self._batches: dict[str, ActivityBatch] = {}
        self._on_flush = on_flush
        self.policy = FlushPolicy(config)
        self.logger = logger.bind(component="activity_batcher")

    def batch_for(self, subject_id: str) -> ActivityBatch:
        return self._batches.setdefault(subject_id, ActivityBatch())

    async def record_activity(self, subject_id: str, observed_at: datetime) -> bool:
        """Record one activity signal. Returns True when it caused a durable write."""
        batch = self.batch_for(subject_id)

        async with batch.lock:
            if batch.latest_observed is not None and observed_at <= batch.latest_observed:
                self.logger.debug(
                    "late_activity_dropped",
                    subject_id=subject_id,
                    observed_at=observed_at.isoformat(),
                )
                return False

            batch.add(observed_at)
            reason = self.policy.flush_reason(batch, observed_at)
            if reason is None:
                self.logger.debug(
                    "activity_batched", subject_id=subject_id, pending=batch.pending_count
                )
                return False

            flushed = await self._flush_locked(subject_id, batch, reason)

        if flushed:
            await self._notify(subject_id)
        return flushed

    async def flush_due(self, now: datetime) -> int:
        """Flush every pending batch whose window has elapsed. Returns the count."""
        flushed_ids: list[str] = []

        for subject_id, batch in list(self._batches.items()):
            try:
                async with batch.lock:
                    if not self.policy.is_due(batch, now):
                        continue
                    if await self._flush_locked(subject_id, batch, "interval"):
                        flushed_ids.append(subject_id)
            except Exception as e:
                self.logger.exception("activity_flush_error", subject_id=subject_id, error=str(e))

        for subject_id in flushed_ids:
            await self._notify(subject_id)
        return len(flushed_ids)

    async def _flush_locked(self, subject_id: str, batch: ActivityBatch, reason: FlushReason) -> bool:
        at = batch.latest_observed
        if at is None:
            return False

        try:
            written = await self._store.write_last_activity(subject_id, at)
        except StoreUnavailableError as e:
            self.logger.warning(
                "activity_flush_failed",
                subject_id=subject_id,
                pending=batch.pending_count,
                error=str(e),
            )
            return False
        except SubjectNotFoundError as e:
            self._batches.pop(subject_id, None)
            self.logger.warning(
                "activity_for_unknown_subject_dropped",
                subject_id=subject_id,
                pending=batch.pending_count,
                error=str(e),
            )
            return False

        batch.mark_flushed(at)
        if not written:
            self.logger.info("activity_flush_superseded", subject_id=subject_id)
            return False

        self.logger.info(
            "activity_flushed",
            subject_id=subject_id,
            reason=reason,
            last_activity_at=at.isoformat(),
        )
        return True

    async def _notify(self, subject_id: str) -> None:
        if self._on_flush is None:
            return
        try:
            await self._on_flush(subject_id)
        except Exception as e:
            self.logger.exception("post_flush_evaluation_failed", subject_id=subject_id, error=str(e))
