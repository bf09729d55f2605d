"""
Notification Fan-out

Best-effort side effects that run after an entity write has been applied.
Every failure here is logged and swallowed: a notification problem must never
fail or retry the work item whose write already succeeded.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from src.errors import NotificationError
from src.realtime.automation import AutomationQueue
from src.realtime.dedup import DedupGate
from src.realtime.publisher import RealtimePublisher
from src.realtime.push import PushClient
from src.utils.observability import logger


@dataclass(frozen=True)
class DedupKey:
    entity_id: str
    event_type: str


class Notifier:
    """
    Coordinates real-time publishes and push notifications.

    Usage:
        notifier = Notifier(publisher, push, dedup)
        await notifier.publish(
            location_channel(location_id), "contact-created", {...},
            dedup=DedupKey(contact_id, "contact-created")
        )
    """

    def __init__(
        self,
        publisher: RealtimePublisher,
        push: PushClient,
        dedup: Optional[DedupGate] = None,
        automation: Optional[AutomationQueue] = None,
    ):
        self.publisher = publisher
        self.push_client = push
        self.dedup = dedup
        self.automation = automation

    async def publish(
        self,
        channel: str,
        event_name: str,
        data: Dict[str, Any],
        dedup: Optional[DedupKey] = None,
    ) -> bool:
        """
        Publish one event, optionally behind the dedup gate.

        Returns:
            True if the event was handed to the publisher
        """
        if dedup is not None and self.dedup is not None:
            if not await self.dedup.should_publish(dedup.entity_id, dedup.event_type):
                return False

        try:
            await self.publisher.publish(channel, event_name, data)
            return True
        except NotificationError as e:
            logger.warning(
                f"Realtime publish failed: {e}",
                extra={"channel": channel, "event_name": event_name}
            )
        except Exception as e:
            logger.error(
                f"Unexpected realtime publish error: {e}",
                extra={"channel": channel, "event_name": event_name}
            )
        return False

    async def push(
        self,
        user_id: Optional[str],
        title: str,
        body: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> bool:
        if not user_id:
            return False

        try:
            return await self.push_client.send_to_user(user_id, title, body, data)
        except NotificationError as e:
            logger.warning(f"Push notification failed: {e}", extra={"user_id": user_id})
        except Exception as e:
            logger.error(f"Unexpected push error: {e}", extra={"user_id": user_id})
        return False

    async def trigger(
        self,
        webhook_id: str,
        trigger_type: str,
        entity_type: str,
        location_id: str,
        data: Dict[str, Any],
    ) -> bool:
        """
        Queue an automation trigger such as `contact-created` or `payment-received`.

        Returns:
            True if a new trigger row was written
        """
        if self.automation is None:
            return False

        try:
            return await self.automation.enqueue(webhook_id, trigger_type, entity_type, location_id, data)
        except Exception as e:
            logger.error(
                f"Could not queue {trigger_type} automation: {e}",
                extra={"trigger_type": trigger_type, "location_id": location_id}
            )
        return False
