"""
Subject document store and alert state compare-and-set.

The alert engine only needs a key-value view of each family document. The
``SubjectStore`` protocol captures the writes the engine performs:

- ``write_last_activity``: monotonic update of the activity timestamp
- ``write_last_meal``: replace the daily meal record
- ``compare_and_set_alert_state``: conditional write of ``alerts.<kind>``

The conditional write is the only concurrency-control point in the engine.
It is atomic per (subject, alert kind) pair, so a batch flush and a periodic
tick racing on the same crossing cannot both fire it.
"""

import asyncio
from collections import defaultdict
from datetime import datetime
from typing import Protocol

import structlog

from carealert.domain.errors import StoreUnavailableError, SubjectNotFoundError
from carealert.domain.models import AlertKind, MealRecord, MonitoredSubject

logger = structlog.get_logger(__name__)


class SubjectStore(Protocol):
    """
    Durable storage of monitored subjects.

    Implementations raise ``StoreUnavailableError`` for transient I/O failures
    and ``SubjectNotFoundError`` for unknown family ids.
    """

    async def get_subject(self, subject_id: str) -> MonitoredSubject: ...

    async def write_last_activity(self, subject_id: str, at: datetime) -> bool:
        """Store ``at`` unless an equal or newer value is already stored."""
        ...

    async def write_last_meal(self, subject_id: str, meal: MealRecord) -> None: ...

    async def compare_and_set_alert_state(
        self,
        subject_id: str,
        kind: AlertKind,
        expected_previous: datetime | None,
        new_value: datetime | None,
    ) -> bool:
        """Write ``new_value`` only if the stored value equals ``expected_previous``."""
        ...


class InMemorySubjectStore:
    """
    Process-local subject store.

    Each field family is guarded by its own per-subject lock. Writes re-read
    the latest document before replacing it so updates to different fields
    never clobber each other. ``latency_seconds`` simulates I/O between the
    read and the write, which widens race windows in tests.
    """

    def __init__(self, latency_seconds: float = 0.0) -> None:
        self._subjects: dict[str, MonitoredSubject] = {}
        self._locks: defaultdict[tuple[str, str], asyncio.Lock] = defaultdict(asyncio.Lock)
        self.latency_seconds = latency_seconds
        self.available = True
        self.activity_writes = 0
        self.logger = logger.bind(component="subject_store")

    def put_subject(self, subject: MonitoredSubject) -> None:
        self._subjects[subject.id] = subject

    def snapshot(self, subject_id: str) -> MonitoredSubject:
        """Synchronous read for inspection, bypassing availability checks."""
        return self._require(subject_id)

    def subject_ids(self) -> list[str]:
        return sorted(self._subjects)

    async def get_subject(self, subject_id: str) -> MonitoredSubject:
        self._check_available()
        await self._simulate_latency()
        return self._require(subject_id)

    async def write_last_activity(self, subject_id: str, at: datetime) -> bool:
        self._check_available()
        async with self._locks[(subject_id, "last_activity_at")]:
            current = self._require(subject_id).last_activity_at
            await self._simulate_latency()

            if current is not None and at <= current:
                self.logger.debug(
                    "stale_activity_write_dropped",
                    subject_id=subject_id,
                    stored=current.isoformat(),
                    offered=at.isoformat(),
                )
                return False

            self._update(subject_id, last_activity_at=at)
            self.activity_writes += 1
            return True

    async def write_last_meal(self, subject_id: str, meal: MealRecord) -> None:
        self._check_available()
        async with self._locks[(subject_id, "last_meal")]:
            self._require(subject_id)
            await self._simulate_latency()
            self._update(subject_id, last_meal=meal)

    async def write_approval(self, subject_id: str, approved: bool | None) -> None:
        self._check_available()
        async with self._locks[(subject_id, "approved")]:
            self._require(subject_id)
            await self._simulate_latency()
            self._update(subject_id, approved=approved)

    async def compare_and_set_alert_state(
        self,
        subject_id: str,
        kind: AlertKind,
        expected_previous: datetime | None,
        new_value: datetime | None,
    ) -> bool:
        self._check_available()
        async with self._locks[(subject_id, f"alerts.{kind.value}")]:
            current = self._require(subject_id).alerts.get(kind)
            await self._simulate_latency()

            if current != expected_previous:
                self.logger.info(
                    "alert_state_conflict",
                    subject_id=subject_id,
                    kind=kind.value,
                    expected=expected_previous.isoformat() if expected_previous else None,
                    actual=current.isoformat() if current else None,
                )
                return False

            latest = self._require(subject_id)
            self._update(subject_id, alerts=latest.alerts.with_value(kind, new_value))
            return True

    def _update(self, subject_id: str, **fields: object) -> None:
        latest = self._require(subject_id)
        self._subjects[subject_id] = latest.model_copy(update=fields)

    def _require(self, subject_id: str) -> MonitoredSubject:
        try:
            return self._subjects[subject_id]
        except KeyError:
            raise SubjectNotFoundError(subject_id) from None

    def _check_available(self) -> None:
        if not self.available:
            raise StoreUnavailableError("subject store unavailable")

    async def _simulate_latency(self) -> None:
        if self.latency_seconds > 0:
            await asyncio.sleep(self.latency_seconds)
