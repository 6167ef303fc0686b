"""
Remote function channel.

Posts the notification to an HTTPS function that fans it out to the family's
devices. The body is the flat string map
``{type, familyId, elderlyName, timestamp, hoursInactive?, hoursWithoutFood?}``.
Any 4xx/5xx, transport error or ``"success": false`` body is a failure.
"""

import httpx
import structlog

from carealert.domain.errors import ChannelDeliveryError
from carealert.domain.models import NotificationIntent
from carealert.services.result import Result

logger = structlog.get_logger(__name__)


class RemoteFunctionChannel:
    """
    HTTP call to the managed notification function.

    An injected client belongs to the caller. Without one the channel opens
    its own and closes it in ``aclose``.
    """

    name = "remote_function"

    def __init__(
        self,
        url: str | None,
        client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 8.0,
    ) -> None:
        self.url = url
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)
        self.logger = logger.bind(component="remote_function_channel")

    @property
    def enabled(self) -> bool:
        return bool(self.url)

    @staticmethod
    def build_body(intent: NotificationIntent) -> dict[str, str]:
        return intent.data()

    async def send(self, intent: NotificationIntent) -> Result[str, Exception]:
        if not self.url:
            return Result.err(ChannelDeliveryError(self.name, "no endpoint configured"))

        body = self.build_body(intent)
        try:
            response = await self._client.post(self.url, json=body)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            return Result.err(
                ChannelDeliveryError(self.name, f"HTTP {e.response.status_code}")
            )
        except httpx.HTTPError as e:
            return Result.err(ChannelDeliveryError(self.name, str(e) or type(e).__name__))

        try:
            reply = response.json()
        except ValueError:
            reply = {}

        if isinstance(reply, dict) and reply.get("success") is False:
            return Result.err(
                ChannelDeliveryError(self.name, str(reply.get("error", "function reported failure")))
            )

        self.logger.debug(
            "remote_function_accepted",
            subject_id=intent.subject_id,
            status=response.status_code,
            sent_to=reply.get("sentTo") if isinstance(reply, dict) else None,
        )
        return Result.ok(f"HTTP {response.status_code}")

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
