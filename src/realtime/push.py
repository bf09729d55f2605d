"""
Mobile Push Notifications

Sends push notifications to a user's registered device. The production
adapter resolves the user's Expo push token and posts to the Expo push API.
"""

import httpx
from typing import Any, Dict, Optional, Protocol

from pydantic_core import to_jsonable_python

from src.config import get_settings
from src.errors import NotificationError
from src.repositories.locations import UserRepository
from src.utils.observability import logger


class PushClient(Protocol):
    """
    Protocol for push notification channels.

    Returns True if a notification was handed to the provider.
    """

    async def send_to_user(
        self,
        user_id: str,
        title: str,
        body: str,
        data: Optional[Dict[str, Any]] = None
    ) -> bool:
        ...


class ExpoPushClient:
    """Expo push API implementation."""

    def __init__(
        self,
        users: UserRepository,
        push_url: Optional[str] = None,
        access_token: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        settings = get_settings()
        self._users = users
        self._push_url = push_url or settings.expo_push_url
        self._access_token = access_token or settings.expo_access_token
        self._timeout = timeout or settings.notification_timeout_seconds
        self._client = client

    async def send_to_user(
        self,
        user_id: str,
        title: str,
        body: str,
        data: Optional[Dict[str, Any]] = None
    ) -> bool:
        user = await self._users.find_by_any_id(user_id)
        if user is None or not user.expo_push_token:
            logger.debug(f"No push token for user {user_id}, skipping push")
            return False

        message = {
            "to": user.expo_push_token,
            "title": title,
            "body": body,
            "data": to_jsonable_python(data or {}),
            "sound": "default",
        }
        headers = {"Accept": "application/json"}
        if self._access_token:
            headers["Authorization"] = f"Bearer {self._access_token}"

        try:
            if self._client is not None:
                response = await self._client.post(self._push_url, json=[message], headers=headers, timeout=self._timeout)
            else:
                async with httpx.AsyncClient() as client:
                    response = await client.post(self._push_url, json=[message], headers=headers, timeout=self._timeout)
            response.raise_for_status()
            tickets = response.json().get("data", [])
        except httpx.HTTPError as e:
            raise NotificationError(f"Expo push to user {user_id} failed: {e}") from e

        errors = [t for t in tickets if t.get("status") == "error"]
        if errors:
            raise NotificationError(f"Expo rejected push to user {user_id}: {errors[0].get('message')}")

        logger.info(f"Push sent to user {user_id}: {title}", extra={"user_id": user_id})
        return True


class LogOnlyPushClient:
    """
    Fallback push client that only logs notifications.

    Used when no push provider is configured.
    """

    async def send_to_user(
        self,
        user_id: str,
        title: str,
        body: str,
        data: Optional[Dict[str, Any]] = None
    ) -> bool:
        logger.info(
            f"Push notification (no push client configured): {title}",
            extra={"user_id": user_id, "title": title, "body": body}
        )
        return True


def build_push_client(users: UserRepository) -> PushClient:
    settings = get_settings()
    if settings.expo_access_token:
        return ExpoPushClient(users)
    logger.warning("EXPO_ACCESS_TOKEN not set, push notifications will only be logged")
    return LogOnlyPushClient()
