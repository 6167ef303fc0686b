"""
Alerting services.

This package contains the activity batcher, threshold evaluator, alert state
store, notification dispatcher and the monitoring service that ties them
together.
"""

from .activity_batcher import ActivityBatcher, FlushPolicy
from .dispatcher import CircuitBreakerState, NotificationChannel, NotificationDispatcher
from .monitoring import FamilyMonitoringService
from .registry import FamilyRegistry, InMemoryFamilyRegistry
from .result import Result
from .store import InMemorySubjectStore, SubjectStore
from .threshold_evaluator import ThresholdEvaluator

__all__ = [
    "ActivityBatcher",
    "FlushPolicy",
    "ThresholdEvaluator",
    "SubjectStore",
    "InMemorySubjectStore",
    "NotificationChannel",
    "NotificationDispatcher",
    "CircuitBreakerState",
    "FamilyRegistry",
    "InMemoryFamilyRegistry",
    "FamilyMonitoringService",
    "Result",
]
