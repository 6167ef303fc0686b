"""Exceptions raised across the alerting pipeline."""


class StoreUnavailableError(ConnectionError):
    """Transient subject store failure. Retried on the next tick."""


class SubjectNotFoundError(LookupError):
    """No monitored subject with the requested family id."""

    def __init__(self, subject_id: str) -> None:
        super().__init__(f"Subject not found: {subject_id}")
        self.subject_id = subject_id


class MealLimitReachedError(ValueError):
    """All meals for the local day have already been recorded."""


class ChannelDeliveryError(RuntimeError):
    """A notification channel rejected or could not deliver a message."""

    def __init__(self, channel: str, message: str) -> None:
        super().__init__(f"{channel}: {message}")
        self.channel = channel
