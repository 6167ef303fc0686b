"""
Configuration management with environment variable support and validation.

Design principles:
- Environment-specific configs (dev, staging, prod)
- Validation at startup (fail fast)
- Type safety with Pydantic
- Secure defaults (no service account keys in code)
"""

import os
from functools import lru_cache
from typing import Literal, cast

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator, model_validator

# Load environment variables from .env file
load_dotenv()

ChannelName = Literal["remote_function", "direct_push"]


class BatchingConfig(BaseModel):
    """Activity batching policy."""

    min_flush_interval_seconds: float = Field(
        default=300.0, gt=0.0, description="Minimum time between durable activity writes"
    )
    reactivation_hours: float = Field(
        default=3.0,
        gt=0.0,
        description="Gap since the last write after which activity is flushed immediately",
    )
    max_batch_signals: int | None = Field(
        default=None, gt=0, description="Flush once this many signals are pending"
    )


class EvaluationConfig(BaseModel):
    """Threshold evaluation scheduling."""

    tick_interval_seconds: float = Field(
        default=900.0, gt=0.0, description="Interval between periodic evaluations"
    )


class DispatchConfig(BaseModel):
    """Notification channel chain."""

    channels: list[ChannelName] = Field(
        default_factory=lambda: cast(list[ChannelName], ["remote_function", "direct_push"]),
        description="Channels tried in order until one succeeds",
    )
    channel_timeout_seconds: float = Field(
        default=8.0, gt=0.0, le=60.0, description="Per-channel delivery timeout"
    )
    remote_function_url: str | None = Field(
        default=None, description="HTTPS endpoint of the notification function"
    )
    android_channel_id: str = Field(
        default="high_importance_channel", description="Android notification channel"
    )
    breaker_failure_threshold: int = Field(
        default=5, gt=0, description="Consecutive failures before a channel is skipped"
    )
    breaker_recovery_seconds: float = Field(
        default=60.0, gt=0.0, description="Time before a skipped channel is retried"
    )

    @field_validator("channels")
    @classmethod
    def validate_channels(cls, v: list[ChannelName]) -> list[ChannelName]:
        if len(set(v)) != len(v):
            raise ValueError("channels must not repeat")
        return v


class FirebaseConfig(BaseModel):
    """Firebase Admin credentials for direct push delivery."""

    service_account_json: str | None = Field(
        default=None, description="Service account key JSON (FCM_SERVICE_ACCOUNT_KEY)"
    )
    project_id: str | None = Field(default=None, description="Firebase project id")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    format: Literal["json", "console"] = Field(default="json", description="Logging format")


class AppConfig(BaseModel):
    """Main application configuration combining all subsystems."""

    # Environment
    environment: Literal["development", "staging", "production"] = Field(
        default="development", description="Environment"
    )
    debug: bool = Field(default=False, description="Enable debug mode")

    # Component configs
    batching: BatchingConfig = Field(default_factory=BatchingConfig)
    evaluation: EvaluationConfig = Field(default_factory=EvaluationConfig)
    dispatch: DispatchConfig = Field(default_factory=DispatchConfig)
    firebase: FirebaseConfig = Field(default_factory=FirebaseConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @model_validator(mode="after")
    def debug_only_in_dev(self) -> "AppConfig":
        """Ensure debug mode is only allowed in development environment."""
        if self.debug and self.environment != "development":
            raise ValueError("debug mode is only allowed in development environment")
        return self


def load_config_from_env() -> AppConfig:
    """Load configuration from environment variables with validation."""

    def _env_to_literal(val: str) -> Literal["development", "staging", "production"]:
        v = val.strip().lower()
        if v in {"dev", "development"}:
            return "development"
        if v in {"stage", "staging"}:
            return "staging"
        return "production"

    def _level_to_literal(val: str) -> Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
        v = val.strip().upper()
        return cast(
            Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
            v if v in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"} else "INFO",
        )

    def _parse_channels(val: str) -> list[ChannelName]:
        return cast(list[ChannelName], [p.strip() for p in val.split(",") if p.strip()])

    def _optional(name: str) -> str | None:
        val = os.getenv(name)
        return val if val else None

    # Detect environment
    environment = _env_to_literal(os.getenv("ENVIRONMENT", "development"))
    debug = environment == "development"

    max_batch_signals = os.getenv("MAX_BATCH_SIGNALS")
    batching_config = BatchingConfig(
        min_flush_interval_seconds=float(os.getenv("MIN_FLUSH_INTERVAL_SECONDS", "300")),
        reactivation_hours=float(os.getenv("REACTIVATION_HOURS", "3")),
        max_batch_signals=int(max_batch_signals) if max_batch_signals else None,
    )

    evaluation_config = EvaluationConfig(
        tick_interval_seconds=float(os.getenv("TICK_INTERVAL_SECONDS", "900")),
    )

    dispatch_config = DispatchConfig(
        channels=_parse_channels(os.getenv("NOTIFICATION_CHANNELS", "remote_function,direct_push")),
        channel_timeout_seconds=float(os.getenv("CHANNEL_TIMEOUT_SECONDS", "8")),
        remote_function_url=_optional("REMOTE_FUNCTION_URL"),
        android_channel_id=os.getenv("ANDROID_CHANNEL_ID", "high_importance_channel"),
    )

    firebase_config = FirebaseConfig(
        service_account_json=_optional("FCM_SERVICE_ACCOUNT_KEY"),
        project_id=_optional("FIREBASE_PROJECT_ID"),
    )

    logging_config = LoggingConfig(
        level=_level_to_literal(os.getenv("LOG_LEVEL", "INFO")),
        format="console" if debug else "json",
    )

    return AppConfig(
        environment=environment,
        debug=debug,
        batching=batching_config,
        evaluation=evaluation_config,
        dispatch=dispatch_config,
        firebase=firebase_config,
        logging=logging_config,
    )


@lru_cache
def get_config() -> AppConfig:
    """Get cached application configuration."""
    return load_config_from_env()


def reset_config_cache() -> None:
    """Drop the cached configuration so the next call re-reads the environment."""
    get_config.cache_clear()


def validate_config() -> None:
    """Validate configuration at startup."""
    try:
        config = get_config()
        print(f"Configuration loaded for {config.environment} environment")

        if "remote_function" in config.dispatch.channels and not config.dispatch.remote_function_url:
            print("REMOTE_FUNCTION_URL not set, remote function channel disabled")

        if "direct_push" in config.dispatch.channels and not config.firebase.service_account_json:
            print("FCM_SERVICE_ACCOUNT_KEY not set, direct push channel disabled")

    except Exception as e:
        print(f"Configuration validation failed: {e}")
        raise


def print_config_summary() -> None:
    """Print configuration summary for debugging."""
    config = get_config()

    print("\nCONFIGURATION SUMMARY")
    print(f"Environment: {config.environment}")
    print(f"Debug Mode: {config.debug}")
    print(f"Log Level: {config.logging.level}")

    print("\nACTIVITY BATCHING")
    print(f"Min Flush Interval: {config.batching.min_flush_interval_seconds}s")
    print(f"Reactivation Gap: {config.batching.reactivation_hours}h")

    print("\nEVALUATION")
    print(f"Tick Interval: {config.evaluation.tick_interval_seconds}s")

    print("\nDISPATCH")
    print(f"Channels: {' -> '.join(config.dispatch.channels) or '(none)'}")
    print(f"Channel Timeout: {config.dispatch.channel_timeout_seconds}s")


if __name__ == "__main__":
    # Test configuration loading
    validate_config()
    print_config_summary()
