"""
Message Queue System

Durable webhook work queue with:
- Abstract queue interface
- MongoDB implementation with atomic lease-based claiming
- Retry logic with backoff (1 min, 5 min, 15 min, 1 h, 24 h)
- Dead letter handling for exhausted items
- Priority routing of webhook types to queue types
"""

from src.message_queue.base import WorkQueue, RETRY_DELAYS, retry_delay_seconds
from src.message_queue.mongo import MongoQueueManager
from src.message_queue.router import WebhookRouter, classify, types_for_queue

__all__ = [
    "WorkQueue",
    "RETRY_DELAYS",
    "retry_delay_seconds",
    "MongoQueueManager",
    "WebhookRouter",
    "classify",
    "types_for_queue",
]
