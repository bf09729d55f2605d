"""
Real-time Channel Publisher

Publishes derived events to pub/sub channels (`user:<id>`, `location:<id>`,
`project:<id>`). The production adapter posts to the Ably REST API; the
log-only adapter is used when no API key is configured.
"""

import httpx
from typing import Any, Dict, Optional, Protocol
from urllib.parse import quote

from pydantic_core import to_jsonable_python

from src.config import get_settings
from src.errors import NotificationError
from src.utils.observability import logger


def user_channel(user_id: str) -> str:
    return f"user:{user_id}"


def location_channel(location_id: str) -> str:
    return f"location:{location_id}"


def project_channel(project_id: str) -> str:
    return f"project:{project_id}"


class RealtimePublisher(Protocol):
    """
    Protocol for real-time channel publishers.

    Implementations raise NotificationError on transport failure.
    """

    async def publish(self, channel: str, event_name: str, data: Dict[str, Any]) -> None:
        ...


class AblyRestPublisher:
    """
    Ably REST implementation.

    POSTs `{name, data}` to `/channels/{channel}/messages` with HTTP basic auth
    built from the `keyName:keySecret` API key.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        rest_url: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        settings = get_settings()
        self._api_key = api_key or settings.ably_api_key
        self._rest_url = (rest_url or settings.ably_rest_url).rstrip("/")
        self._timeout = timeout or settings.notification_timeout_seconds
        self._client = client

    @property
    def is_configured(self) -> bool:
        return bool(self._api_key) and ":" in self._api_key

    async def publish(self, channel: str, event_name: str, data: Dict[str, Any]) -> None:
        if not self.is_configured:
            raise NotificationError("Ably API key not configured")

        key_name, key_secret = self._api_key.split(":", 1)
        url = f"{self._rest_url}/channels/{quote(channel, safe='')}/messages"
        body = {"name": event_name, "data": to_jsonable_python(data)}

        try:
            if self._client is not None:
                response = await self._client.post(url, json=body, auth=(key_name, key_secret), timeout=self._timeout)
                response.raise_for_status()
            else:
                async with httpx.AsyncClient() as client:
                    response = await client.post(url, json=body, auth=(key_name, key_secret), timeout=self._timeout)
                    response.raise_for_status()
        except httpx.HTTPError as e:
            raise NotificationError(f"Ably publish to {channel} failed: {e}") from e

        logger.debug(f"Published {event_name} to {channel}")


class LogOnlyPublisher:
    """
    Fallback publisher that only logs events.

    Used when no real-time provider is configured.
    """

    async def publish(self, channel: str, event_name: str, data: Dict[str, Any]) -> None:
        logger.info(
            f"Realtime event (no publisher configured): {event_name} -> {channel}",
            extra={"channel": channel, "event_name": event_name}
        )


def build_publisher() -> RealtimePublisher:
    publisher = AblyRestPublisher()
    if publisher.is_configured:
        return publisher
    logger.warning("ABLY_API_KEY not set, real-time events will only be logged")
    return LogOnlyPublisher()
