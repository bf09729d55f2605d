"""
MongoDB Work Queue

Durable queue backed by the `work_items` collection. Claiming is a single
conditional find_one_and_update per item, so any number of processor
processes can share a queue type without double-processing.
"""

import datetime as dt
import uuid
from typing import Any, Callable, Dict, List, Optional

from loguru import logger
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from src.config import get_settings
from src.errors import DuplicateWebhookError
from src.message_queue.base import MAX_ERROR_LENGTH, WorkQueue, retry_delay_seconds
from src.models.base import utcnow
from src.models.work_item import (
    IncomingWebhook,
    QueueDepth,
    QueueType,
    WorkItem,
    WorkItemStatus,
)


class MongoQueueManager(WorkQueue):
    """
    Work queue over MongoDB.

    Attributes:
        collection: The `work_items` collection
        lease_seconds: How long a claim is held before it may be reclaimed
        processor_id: Identifier stamped on every item this manager claims
    """

    def __init__(
        self,
        database: AsyncIOMotorDatabase,
        lease_seconds: Optional[int] = None,
        processor_id: Optional[str] = None,
        clock: Callable[[], dt.datetime] = utcnow,
    ):
        settings = get_settings()
        self.collection = database["work_items"]
        self.lease_seconds = lease_seconds if lease_seconds is not None else settings.lease_seconds
        self.ttl_days = settings.work_item_ttl_days
        self.critical_max_attempts = settings.critical_max_attempts
        self.default_max_attempts = settings.default_max_attempts
        self.processor_id = processor_id or f"processor-{uuid.uuid4().hex[:12]}"
        self._clock = clock

    def max_attempts_for(self, queue_type: QueueType) -> int:
        if queue_type == QueueType.CRITICAL:
            return self.critical_max_attempts
        return self.default_max_attempts

    async def enqueue(self, webhook: IncomingWebhook, queue_type: QueueType, priority: int) -> WorkItem:
        now = self._clock()
        item = WorkItem(
            webhook_id=webhook.webhook_id,
            type=webhook.type,
            queue_type=queue_type,
            priority=priority,
            payload=webhook.payload,
            location_id=webhook.location_id or "",
            company_id=webhook.company_id,
            max_attempts=self.max_attempts_for(queue_type),
            received_at=webhook.received_at or now,
            queued_at=now,
            process_after=now,
            created_at=now,
            updated_at=now,
            ttl=now + dt.timedelta(days=self.ttl_days),
        )

        doc = item.model_dump(by_alias=True, exclude={"id"})

        try:
            result = await self.collection.insert_one(doc)
        except DuplicateKeyError:
            logger.info(
                f"Webhook {webhook.webhook_id} already queued",
                extra={"webhook_id": webhook.webhook_id, "queue_type": str(queue_type)}
            )
            raise DuplicateWebhookError(webhook.webhook_id)

        item.id = str(result.inserted_id)

        logger.debug(
            f"Enqueued {webhook.type} on {queue_type}",
            extra={"webhook_id": webhook.webhook_id, "priority": priority}
        )
        return item

    async def get_next_batch(
        self,
        queue_type: QueueType,
        batch_size: int,
        processor_id: Optional[str] = None,
    ) -> List[WorkItem]:
        claimed: List[WorkItem] = []

        for _ in range(batch_size):
            now = self._clock()
            doc = await self.collection.find_one_and_update(
                {
                    "queueType": str(queue_type),
                    "$or": [
                        {"status": WorkItemStatus.PENDING.value, "processAfter": {"$lte": now}},
                        {"status": WorkItemStatus.PROCESSING.value, "leaseExpiry": {"$lte": now}},
                    ],
                },
                {
                    "$set": {
                        "status": WorkItemStatus.PROCESSING.value,
                        "leaseExpiry": now + dt.timedelta(seconds=self.lease_seconds),
                        "processorId": processor_id or self.processor_id,
                        "processingStarted": now,
                        "updatedAt": now,
                    },
                    "$inc": {"attempts": 1},
                },
                sort=[("priority", ASCENDING), ("queuedAt", ASCENDING)],
                return_document=ReturnDocument.AFTER,
            )

            if doc is None:
                break

            claimed.append(self._to_item(doc))

        if claimed:
            logger.debug(
                f"Claimed {len(claimed)} {queue_type} items",
                extra={"queue_type": str(queue_type), "processor_id": processor_id or self.processor_id}
            )

        return claimed

    def _lease_filter(self, webhook_id: str, processor_id: Optional[str]) -> Dict[str, Any]:
        """Match the item only while the given processor still holds its claim."""
        return {
            "webhookId": webhook_id,
            "status": WorkItemStatus.PROCESSING.value,
            "processorId": processor_id or self.processor_id,
        }

    async def mark_complete(self, webhook_id: str, processor_id: Optional[str] = None) -> bool:
        now = self._clock()
        result = await self.collection.update_one(
            self._lease_filter(webhook_id, processor_id),
            {
                "$set": {
                    "status": WorkItemStatus.COMPLETED.value,
                    "processingCompleted": now,
                    "updatedAt": now,
                },
                "$unset": {"leaseExpiry": "", "processorId": ""},
            }
        )
        if result.matched_count == 0:
            logger.warning(
                f"mark_complete: {webhook_id} is no longer held by this processor",
                extra={"webhook_id": webhook_id, "processor_id": processor_id or self.processor_id}
            )
            return False
        return True

    async def mark_failed(self, webhook_id: str, reason: str, processor_id: Optional[str] = None) -> bool:
        lease = self._lease_filter(webhook_id, processor_id)
        doc = await self.collection.find_one(lease, {"attempts": 1, "maxAttempts": 1})
        if doc is None:
            logger.warning(
                f"mark_failed: {webhook_id} is not held by this processor",
                extra={"webhook_id": webhook_id, "processor_id": processor_id or self.processor_id}
            )
            return False

        now = self._clock()
        attempts = doc.get("attempts", 0)
        max_attempts = doc.get("maxAttempts", self.default_max_attempts)
        error_text = (reason or "")[:MAX_ERROR_LENGTH]

        update: Dict[str, Any] = {
            "$set": {"lastError": error_text, "updatedAt": now},
            "$push": {"errors": {"attempt": attempts, "error": error_text, "timestamp": now}},
            "$unset": {"leaseExpiry": "", "processorId": ""},
        }

        dead = attempts >= max_attempts
        if dead:
            update["$set"]["status"] = WorkItemStatus.DEAD.value
            update["$set"]["deadAt"] = now
        else:
            delay = retry_delay_seconds(attempts)
            update["$set"]["status"] = WorkItemStatus.PENDING.value
            update["$set"]["processAfter"] = now + dt.timedelta(seconds=delay)

        # Every claim bumps attempts, so pinning it rejects a write from a superseded claim
        result = await self.collection.update_one({**lease, "attempts": attempts}, update)
        if result.matched_count == 0:
            logger.warning(
                f"mark_failed: {webhook_id} was reclaimed before its failure was recorded",
                extra={"webhook_id": webhook_id}
            )
            return False

        if dead:
            logger.error(
                f"Work item {webhook_id} dead-lettered after {attempts} attempts",
                extra={"webhook_id": webhook_id, "error": error_text}
            )
        else:
            logger.warning(
                f"Work item {webhook_id} will retry in {delay}s (attempt {attempts}/{max_attempts})",
                extra={"webhook_id": webhook_id, "error": error_text}
            )
        return True

    async def get_item(self, webhook_id: str) -> Optional[WorkItem]:
        doc = await self.collection.find_one({"webhookId": webhook_id})
        return self._to_item(doc) if doc else None

    async def get_queue_depth(self, queue_type: Optional[QueueType] = None) -> List[QueueDepth]:
        queue_types = [queue_type] if queue_type else list(QueueType)
        depths = []

        for qt in queue_types:
            base = {"queueType": str(qt)}
            oldest = await self.collection.find_one(
                {**base, "status": WorkItemStatus.PENDING.value},
                {"queuedAt": 1},
                sort=[("queuedAt", ASCENDING)],
            )
            depths.append(QueueDepth(
                queue_type=str(qt),
                pending=await self.collection.count_documents({**base, "status": WorkItemStatus.PENDING.value}),
                processing=await self.collection.count_documents({**base, "status": WorkItemStatus.PROCESSING.value}),
                dead=await self.collection.count_documents({**base, "status": WorkItemStatus.DEAD.value}),
                oldest_pending_at=oldest["queuedAt"] if oldest else None,
            ))

        return depths

    async def get_dead_letter_items(self, limit: int = 100) -> List[WorkItem]:
        cursor = self.collection.find({"status": WorkItemStatus.DEAD.value}).sort("updatedAt", -1).limit(limit)
        docs = await cursor.to_list(length=limit)
        return [self._to_item(doc) for doc in docs]

    async def retry_dead_letter(self, webhook_id: str) -> bool:
        now = self._clock()
        result = await self.collection.update_one(
            {"webhookId": webhook_id, "status": WorkItemStatus.DEAD.value},
            {
                "$set": {
                    "status": WorkItemStatus.PENDING.value,
                    "attempts": 0,
                    "processAfter": now,
                    "updatedAt": now,
                },
                "$unset": {"deadAt": ""},
            }
        )

        if result.matched_count:
            logger.info(f"Dead-letter item {webhook_id} re-queued", extra={"webhook_id": webhook_id})
            return True

        return False

    @staticmethod
    def _to_item(doc: Dict[str, Any]) -> WorkItem:
        doc = dict(doc)
        doc["_id"] = str(doc["_id"])
        return WorkItem.model_validate(doc)
