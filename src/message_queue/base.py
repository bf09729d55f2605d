"""
Base Queue Interface

Abstract interface for the durable work queue with lease-based claiming,
retry backoff and dead-lettering.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from src.models.work_item import IncomingWebhook, QueueDepth, QueueType, WorkItem

# Retry delay schedule (in seconds), indexed by attempt
RETRY_DELAYS = [
    60,        # 1 minute
    300,       # 5 minutes
    900,       # 15 minutes
    3600,      # 1 hour
    86400,     # 24 hours
]

MAX_ERROR_LENGTH = 1000


def retry_delay_seconds(attempts: int) -> int:
    """Backoff before the next attempt, given how many attempts have been made."""
    index = min(max(attempts - 1, 0), len(RETRY_DELAYS) - 1)
    return RETRY_DELAYS[index]


class WorkQueue(ABC):
    """
    Abstract work queue interface.

    Implementations must provide:
    - Enqueue: Persist a pending work item per webhook
    - Claim: Atomically lease the next batch for one queue type
    - Complete / Fail: Acknowledge an item or schedule its retry
    - Ops: Depth, dead-letter listing and manual retry
    """

    @abstractmethod
    async def enqueue(self, webhook: IncomingWebhook, queue_type: QueueType, priority: int) -> WorkItem:
        """
        Persist a pending work item.

        Raises:
            DuplicateWebhookError: If the webhook id is already queued
        """
        pass

    @abstractmethod
    async def get_next_batch(self, queue_type: QueueType, batch_size: int) -> List[WorkItem]:
        """
        Claim up to `batch_size` due items, ordered by priority then age.

        Claimed items are PROCESSING with a fresh lease; two callers never
        receive the same item.
        """
        pass

    @abstractmethod
    async def mark_complete(self, webhook_id: str, processor_id: Optional[str] = None) -> bool:
        """
        Complete an item still held by `processor_id`.

        Returns False when the lease was lost and another claim owns the item.
        """
        pass

    @abstractmethod
    async def mark_failed(self, webhook_id: str, reason: str, processor_id: Optional[str] = None) -> bool:
        """
        Record a failed attempt of an item still held by `processor_id`.

        Re-queues with backoff while attempts < max attempts, otherwise
        dead-letters the item.
        """
        pass

    @abstractmethod
    async def get_queue_depth(self, queue_type: Optional[QueueType] = None) -> List[QueueDepth]:
        pass

    @abstractmethod
    async def get_dead_letter_items(self, limit: int = 100) -> List[WorkItem]:
        pass

    @abstractmethod
    async def retry_dead_letter(self, webhook_id: str) -> bool:
        """
        Move a dead item back to pending with attempts reset.

        Returns:
            True if a dead item was found
        """
        pass
