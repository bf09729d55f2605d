"""
Real-time Deduplication Gate

Suppresses repeated notifications for the same (entity, event type) inside a
short window. Markers live in `realtime_markers` behind a unique index on
(entityId, eventType), so the check-and-set is a single insert; a TTL index on
`expiresAt` cleans them up.
"""
import datetime as dt
from typing import Callable, Optional

from loguru import logger
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError

from src.config import get_settings
from src.models.base import utcnow


class DedupGate:
    """
    Window-based check-and-set over `realtime_markers`.

    Usage:
        gate = DedupGate(database)
        if await gate.should_publish(contact_id, "contact-created"):
            await publisher.publish(...)

    Attributes:
        window_ms: Default suppression window for repeated (entity, event) pairs
        marker_ttl_seconds: How long a marker lives before the TTL index removes it
    """

    def __init__(
        self,
        database: AsyncIOMotorDatabase,
        window_ms: Optional[int] = None,
        marker_ttl_seconds: Optional[int] = None,
        clock: Callable[[], dt.datetime] = utcnow,
    ):
        settings = get_settings()
        self.collection = database["realtime_markers"]
        self.window_ms = window_ms if window_ms is not None else settings.dedup_window_ms
        self.marker_ttl_seconds = (
            marker_ttl_seconds if marker_ttl_seconds is not None else settings.dedup_marker_ttl_seconds
        )
        self._clock = clock

    async def should_publish(self, entity_id: str, event_type: str, window_ms: Optional[int] = None) -> bool:
        """
        Claim the right to publish `event_type` for `entity_id`.

        Returns:
            False if a marker newer than the window exists, True otherwise.
            Store errors other than the duplicate key fail open (True).
        """
        now = self._clock()
        window = dt.timedelta(milliseconds=window_ms if window_ms is not None else self.window_ms)
        key = {"entityId": entity_id, "eventType": event_type}

        try:
            # Markers older than the window no longer block
            await self.collection.delete_many({**key, "createdAt": {"$lt": now - window}})
            await self.collection.insert_one({
                **key,
                "createdAt": now,
                "expiresAt": now + dt.timedelta(seconds=self.marker_ttl_seconds),
            })
            return True
        except DuplicateKeyError:
            logger.debug(f"Suppressed duplicate {event_type} for {entity_id}")
            return False
        except Exception as e:
            logger.warning(
                f"Dedup check failed for {event_type}/{entity_id}, publishing anyway: {e}",
                extra={"entity_id": entity_id, "event_type": event_type}
            )
            return True
