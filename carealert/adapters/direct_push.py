"""
Direct push channel.

Sends a topic-addressed Firebase Cloud Messaging message with the Firebase
Admin SDK. The message carries the same ``data`` map as the remote function
plus a human-readable title and body derived from the notification kind.
"""

import asyncio
import json
from datetime import datetime
from zoneinfo import ZoneInfo

import firebase_admin
import structlog
from firebase_admin import credentials, exceptions, messaging

from carealert.config import FirebaseConfig
from carealert.domain.errors import ChannelDeliveryError
from carealert.domain.models import NotificationIntent, NotificationKind
from carealert.services.result import Result

logger = structlog.get_logger(__name__)

DISPLAY_TIMEZONE = ZoneInfo("Asia/Seoul")
FIREBASE_APP_NAME = "carealert"


def initialize_firebase_app(config: FirebaseConfig) -> firebase_admin.App | None:
    """Initialize (or reuse) the Firebase app. Returns None when not configured."""
    if not config.service_account_json:
        logger.warning("firebase_not_configured", reason="FCM_SERVICE_ACCOUNT_KEY not set")
        return None

    try:
        return firebase_admin.get_app(FIREBASE_APP_NAME)
    except ValueError:
        pass

    try:
        cred = credentials.Certificate(json.loads(config.service_account_json))
        options = {"projectId": config.project_id} if config.project_id else None
        app = firebase_admin.initialize_app(cred, options, name=FIREBASE_APP_NAME)
    except (ValueError, OSError) as e:
        logger.error("firebase_initialization_failed", error=str(e))
        return None

    logger.info("firebase_initialized", project_id=app.project_id)
    return app


def render_notification_text(intent: NotificationIntent) -> tuple[str, str]:
    """Korean title and body for an intent."""
    name = intent.payload["elderlyName"]

    if intent.kind is NotificationKind.MEAL_RECORDED:
        at = datetime.fromisoformat(intent.payload["timestamp"]).astimezone(DISPLAY_TIMEZONE)
        return f"{name}님이 식사하셨어요", f"오늘 {at:%H:%M}에 식사했습니다"

    if intent.kind is NotificationKind.SURVIVAL_ALERT:
        hours = intent.payload["hoursInactive"]
        return (
            f"⚠️ {name} 안전 알림",
            f"{hours}시간 이상 휴대폰 사용이 없습니다. 안부를 확인해주세요.",
        )

    hours = intent.payload["hoursWithoutFood"]
    return f"🍽️ {name} 식사 알림", f"{hours}시간 이상 식사하지 않았습니다. 확인해주세요."


class DirectPushChannel:
    """FCM topic message sent straight from this process."""

    name = "direct_push"

    def __init__(
        self,
        app: firebase_admin.App | None,
        android_channel_id: str = "high_importance_channel",
    ) -> None:
        self._app = app
        self.android_channel_id = android_channel_id
        self.logger = logger.bind(component="direct_push_channel")

    @property
    def enabled(self) -> bool:
        return self._app is not None

    def build_message(self, intent: NotificationIntent) -> messaging.Message:
        title, body = render_notification_text(intent)
        return messaging.Message(
            topic=intent.recipient_topic,
            data=intent.data(),
            notification=messaging.Notification(title=title, body=body),
            android=messaging.AndroidConfig(
                priority="high",
                notification=messaging.AndroidNotification(
                    sound="default", channel_id=self.android_channel_id
                ),
            ),
        )

    async def send(self, intent: NotificationIntent) -> Result[str, Exception]:
        if self._app is None:
            return Result.err(ChannelDeliveryError(self.name, "firebase app not initialized"))

        message = self.build_message(intent)
        try:
            # The Admin SDK is blocking
            message_id = await asyncio.to_thread(messaging.send, message, app=self._app)
        except (exceptions.FirebaseError, ValueError) as e:
            return Result.err(ChannelDeliveryError(self.name, str(e)))

        self.logger.debug(
            "direct_push_sent", subject_id=intent.subject_id, topic=intent.recipient_topic
        )
        return Result.ok(message_id)
