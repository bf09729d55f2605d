"""
Webhook Analytics Models

One WebhookMetric per webhook id tracks arrival, dequeue and completion
timestamps; durations are milliseconds.
"""
import datetime as dt
from enum import StrEnum
from typing import Dict, List, Optional
from pydantic import BaseModel, Field, ConfigDict

from src.models.base import MongoBaseModel, UtcDatetime


# Per-queue-type SLA targets in milliseconds
SLA_TARGETS_MS: Dict[str, int] = {
    "critical": 5_000,
    "messages": 2_000,
    "appointments": 30_000,
    "contacts": 60_000,
    "financial": 30_000,
    "projects": 60_000,
    "general": 120_000,
}
DEFAULT_SLA_TARGET_MS = 60_000


def get_sla_target(queue_type: str) -> int:
    return SLA_TARGETS_MS.get(queue_type, DEFAULT_SLA_TARGET_MS)


class MetricStatus(StrEnum):
    RECEIVED = "received"
    PROCESSING = "processing"
    SUCCESS = "success"
    FAILED = "failed"


class WebhookMetric(MongoBaseModel):
    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    webhook_id: str
    type: str
    queue_type: str
    location_id: Optional[str] = None

    webhook_received_at: Optional[UtcDatetime] = None
    queue_added_at: Optional[UtcDatetime] = None
    processing_started_at: Optional[UtcDatetime] = None
    processing_completed_at: Optional[UtcDatetime] = None

    queue_wait_duration: Optional[float] = None
    processing_duration: Optional[float] = None
    total_duration: Optional[float] = None

    status: MetricStatus = MetricStatus.RECEIVED
    attempts: int = 0
    error: Optional[str] = None

    sla_target: int = DEFAULT_SLA_TARGET_MS
    exceeds_sla: bool = Field(False, alias="exceedsSLA")


class QueueTypeStats(BaseModel):
    queue_type: str
    count: int = 0
    success: int = 0
    failed: int = 0
    avg_queue_wait_ms: Optional[float] = None
    avg_processing_ms: Optional[float] = None
    avg_total_ms: Optional[float] = None
    min_total_ms: Optional[float] = None
    max_total_ms: Optional[float] = None
    sla_target_ms: int = DEFAULT_SLA_TARGET_MS
    sla_violations: int = 0


class ErrorReasonCount(BaseModel):
    error: str
    count: int


class SlowWebhook(BaseModel):
    webhook_id: str
    type: str
    queue_type: str
    total_duration: float


class AnalyticsReport(BaseModel):
    start: dt.datetime
    end: dt.datetime
    total: int = 0
    by_queue_type: List[QueueTypeStats] = Field(default_factory=list)
    top_errors: List[ErrorReasonCount] = Field(default_factory=list)
    slowest: List[SlowWebhook] = Field(default_factory=list)
