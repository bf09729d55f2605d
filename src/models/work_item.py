"""
Work Item Models

Queue-side documents: the unit of work representing one external webhook,
the ingestion request that creates it, and queue depth snapshots.
"""
import datetime as dt
from enum import StrEnum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field, ConfigDict
from pydantic.alias_generators import to_camel

from src.models.base import MongoBaseModel, UtcDatetime, utcnow


class QueueType(StrEnum):
    CRITICAL = "critical"
    MESSAGES = "messages"
    CONTACTS = "contacts"
    APPOINTMENTS = "appointments"
    PROJECTS = "projects"
    FINANCIAL = "financial"
    GENERAL = "general"


class WorkItemStatus(StrEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    DEAD = "dead"


class ItemError(BaseModel):
    """One failed attempt, appended to WorkItem.errors."""
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    attempt: int
    error: str
    timestamp: UtcDatetime = Field(default_factory=utcnow)


class WorkItem(MongoBaseModel):
    """
    A queued unit of work representing one external event.

    Invariant: an item in PROCESSING holds a lease (lease_expiry in the future);
    once the lease expires the item may be claimed again.
    """
    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    webhook_id: str
    type: str
    queue_type: QueueType
    priority: int = 5
    payload: Dict[str, Any] = Field(default_factory=dict)
    location_id: str = ""
    company_id: Optional[str] = None

    status: WorkItemStatus = WorkItemStatus.PENDING
    attempts: int = 0
    max_attempts: int = 3

    received_at: UtcDatetime = Field(default_factory=utcnow)
    queued_at: UtcDatetime = Field(default_factory=utcnow)
    process_after: UtcDatetime = Field(default_factory=utcnow)
    processing_started: Optional[UtcDatetime] = None
    processing_completed: Optional[UtcDatetime] = None

    lease_expiry: Optional[UtcDatetime] = None
    processor_id: Optional[str] = None

    last_error: Optional[str] = None
    errors: List[ItemError] = Field(default_factory=list)

    ttl: Optional[UtcDatetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (WorkItemStatus.COMPLETED, WorkItemStatus.DEAD)


class IncomingWebhook(BaseModel):
    """
    Ingestion request handed over by the HTTP edge.

    `payload` may be a nested `{webhookPayload: {...}, locationId}` envelope or
    a flattened direct-field object; processors normalize both.
    """
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    webhook_id: str
    type: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    location_id: Optional[str] = None
    company_id: Optional[str] = None
    priority: Optional[int] = None
    received_at: Optional[UtcDatetime] = None


class QueueDepth(BaseModel):
    """Pending items per queue type."""
    queue_type: str
    pending: int = 0
    processing: int = 0
    dead: int = 0
    oldest_pending_at: Optional[dt.datetime] = None
