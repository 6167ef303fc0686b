"""
Domain models for family care monitoring.

These models represent the core business concepts and are framework-agnostic.
They use Pydantic for validation but could be swapped to dataclasses if needed.
"""

from datetime import UTC, datetime, time
from enum import Enum
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

MAX_MEALS_PER_DAY = 3


class AlertKind(str, Enum):
    """Alert kinds with a deduplication record on the subject."""

    SURVIVAL = "survival"
    FOOD = "food"


class NotificationKind(str, Enum):
    """Notifications delivered to family members."""

    MEAL_RECORDED = "meal_recorded"
    SURVIVAL_ALERT = "survival_alert"
    FOOD_ALERT = "food_alert"


class MealRecord(BaseModel):
    """Most recent meal of the day, reset daily."""

    model_config = ConfigDict(frozen=True)

    count: int = Field(ge=0, le=MAX_MEALS_PER_DAY, description="Meals recorded today")
    number: int | None = Field(default=None, ge=1, le=MAX_MEALS_PER_DAY)
    timestamp: datetime


class SleepSettings(BaseModel):
    """Nightly window excluded from survival inactivity time."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = False
    sleep_start: time = time(22, 0)
    sleep_end: time = time(6, 0)
    active_days: frozenset[int] = Field(
        default_factory=lambda: frozenset(range(1, 8)),
        description="ISO weekdays (1=Monday) on which the window starts",
    )

    @field_validator("active_days")
    @classmethod
    def validate_active_days(cls, v: frozenset[int]) -> frozenset[int]:
        if any(day < 1 or day > 7 for day in v):
            raise ValueError("active_days must be ISO weekdays between 1 and 7")
        return v

    @model_validator(mode="after")
    def window_not_empty(self) -> "SleepSettings":
        if self.sleep_start == self.sleep_end:
            raise ValueError("sleep_start and sleep_end must differ")
        return self

    @property
    def is_overnight(self) -> bool:
        return self.sleep_end <= self.sleep_start


class SubjectSettings(BaseModel):
    """
    Alerting settings owned by the family registry.

    Thresholds are stored as given. Malformed values disable the matching
    alert kind during evaluation instead of failing the whole subject.
    """

    model_config = ConfigDict(frozen=True)

    survival_signal_enabled: bool = False
    alert_hours: tuple[int, ...] = (12,)
    food_alert_hours: int | None = 8
    sleep: SleepSettings = Field(default_factory=SleepSettings)
    timezone: str = Field(default="Asia/Seoul", description="IANA zone of the subject")

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {v}") from e
        return v

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    def survival_thresholds(self) -> tuple[int, ...]:
        """Ascending unique thresholds, or () when any value is not positive."""
        if not self.alert_hours or any(h <= 0 for h in self.alert_hours):
            return ()
        return tuple(sorted(set(self.alert_hours)))

    def food_thresholds(self) -> tuple[int, ...]:
        if self.food_alert_hours is None or self.food_alert_hours <= 0:
            return ()
        return (self.food_alert_hours,)


class AlertState(BaseModel):
    """Last time each alert kind fired. The sole deduplication record."""

    model_config = ConfigDict(frozen=True)

    survival: datetime | None = None
    food: datetime | None = None

    def get(self, kind: AlertKind) -> datetime | None:
        return getattr(self, kind.value)

    def with_value(self, kind: AlertKind, value: datetime | None) -> "AlertState":
        return self.model_copy(update={kind.value: value})


def topic_for(family_id: str) -> str:
    """Broadcast topic that family devices subscribe to."""
    return f"family_{family_id}"


class MonitoredSubject(BaseModel):
    """One monitored family unit, identified by its family id."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1, description="Stable family identifier")
    elderly_name: str = Field(default="Unknown")
    last_activity_at: datetime | None = None
    last_meal: MealRecord | None = None
    settings: SubjectSettings = Field(default_factory=SubjectSettings)
    alerts: AlertState = Field(default_factory=AlertState)
    approved: bool | None = Field(default=None, description="None while pairing is pending")

    @property
    def recipient_topic(self) -> str:
        return topic_for(self.id)

    def reference_time(self, kind: AlertKind) -> datetime | None:
        """Timestamp of the last signal that resets the given alert kind."""
        if kind is AlertKind.SURVIVAL:
            return self.last_activity_at
        return self.last_meal.timestamp if self.last_meal else None


class NotificationIntent(BaseModel):
    """
    A notification to deliver, consumed once by the dispatcher.

    The payload holds the kind-specific string fields; ``data()`` adds the
    ``type`` discriminator shared by every channel format.
    """

    model_config = ConfigDict(frozen=True)

    kind: NotificationKind
    subject_id: str
    recipient_topic: str
    payload: dict[str, str]
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    def data(self) -> dict[str, str]:
        return {"type": self.kind.value, **self.payload}

    @property
    def dedup_key(self) -> tuple[str, str, str]:
        """Receivers drop repeats of the same (kind, subject, timestamp)."""
        return (self.kind.value, self.subject_id, self.payload["timestamp"])

    @classmethod
    def meal_recorded(cls, subject: MonitoredSubject, at: datetime) -> "NotificationIntent":
        return cls(
            kind=NotificationKind.MEAL_RECORDED,
            subject_id=subject.id,
            recipient_topic=subject.recipient_topic,
            payload={
                "elderlyName": subject.elderly_name,
                "timestamp": at.isoformat(),
                "familyId": subject.id,
            },
            created_at=at,
        )

    @classmethod
    def survival_alert(
        cls, subject: MonitoredSubject, hours: int, at: datetime
    ) -> "NotificationIntent":
        return cls(
            kind=NotificationKind.SURVIVAL_ALERT,
            subject_id=subject.id,
            recipient_topic=subject.recipient_topic,
            payload={
                "elderlyName": subject.elderly_name,
                "hoursInactive": str(hours),
                "familyId": subject.id,
                "timestamp": at.isoformat(),
            },
            created_at=at,
        )

    @classmethod
    def food_alert(cls, subject: MonitoredSubject, hours: int, at: datetime) -> "NotificationIntent":
        return cls(
            kind=NotificationKind.FOOD_ALERT,
            subject_id=subject.id,
            recipient_topic=subject.recipient_topic,
            payload={
                "elderlyName": subject.elderly_name,
                "hoursWithoutFood": str(hours),
                "familyId": subject.id,
                "timestamp": at.isoformat(),
            },
            created_at=at,
        )


class ChannelAttempt(BaseModel):
    """Outcome of one channel in the fallback chain."""

    channel: str
    success: bool
    detail: str = Field(default="", description="Message id on success, error text otherwise")
    duration_seconds: float = Field(default=0.0, ge=0.0)


class DeliveryResult(BaseModel):
    """Overall outcome of dispatching one intent."""

    kind: NotificationKind
    subject_id: str
    success: bool
    channel: str | None = None
    attempts: list[ChannelAttempt] = Field(default_factory=list)


class TickReport(BaseModel):
    """Summary of one periodic monitoring pass."""

    started_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    subjects_evaluated: int = 0
    batches_flushed: int = 0
    intents_fired: int = 0
    deliveries_failed: int = 0
    errors: int = 0
