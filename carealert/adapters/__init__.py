"""Notification channel adapters and their assembly from configuration."""

import firebase_admin
import httpx

from carealert.adapters.direct_push import DirectPushChannel
from carealert.adapters.remote_function import RemoteFunctionChannel
from carealert.config import AppConfig
from carealert.services.dispatcher import NotificationChannel


def build_channels(
    config: AppConfig,
    firebase_app: firebase_admin.App | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> list[NotificationChannel]:
    """Channels in the configured fallback order."""
    channels: list[NotificationChannel] = []
    for name in config.dispatch.channels:
        if name == "remote_function":
            channels.append(
                RemoteFunctionChannel(
                    config.dispatch.remote_function_url,
                    client=http_client,
                    timeout_seconds=config.dispatch.channel_timeout_seconds,
                )
            )
        elif name == "direct_push":
            channels.append(DirectPushChannel(firebase_app, config.dispatch.android_channel_id))
    return channels


__all__ = ["DirectPushChannel", "RemoteFunctionChannel", "build_channels"]
