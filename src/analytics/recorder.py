"""
Webhook Analytics Recorder

Timestamps every webhook at arrival, dequeue and completion in
`webhook_metrics` and derives queue-wait, processing and total durations
against the per-queue-type SLA table.
"""
import datetime as dt
from collections import Counter, defaultdict
from typing import Any, Callable, Dict, List, Optional

from loguru import logger
from motor.motor_asyncio import AsyncIOMotorDatabase

from src.models.base import utcnow
from src.models.webhook_metric import (
    AnalyticsReport,
    ErrorReasonCount,
    MetricStatus,
    QueueTypeStats,
    SlowWebhook,
    WebhookMetric,
    get_sla_target,
)


def _ms_between(start: Optional[dt.datetime], end: dt.datetime) -> Optional[float]:
    if start is None:
        return None
    return (end - start).total_seconds() * 1000


def _mean(values: List[float]) -> Optional[float]:
    return round(sum(values) / len(values), 2) if values else None


class AnalyticsRecorder:
    """
    Writes one WebhookMetric document per webhook id.

    Recorder failures never affect processing; callers log and continue.
    """

    def __init__(self, database: AsyncIOMotorDatabase, clock: Callable[[], dt.datetime] = utcnow):
        self.collection = database["webhook_metrics"]
        self._clock = clock

    async def record_received(
        self,
        webhook_id: str,
        webhook_type: str,
        queue_type: str,
        location_id: Optional[str] = None,
        received_at: Optional[dt.datetime] = None,
    ) -> None:
        now = self._clock()
        queue_type = str(queue_type)

        await self.collection.update_one(
            {"webhookId": webhook_id},
            {
                "$setOnInsert": {
                    "type": webhook_type,
                    "queueType": queue_type,
                    "locationId": location_id,
                    "webhookReceivedAt": received_at or now,
                    "queueAddedAt": now,
                    "status": MetricStatus.RECEIVED.value,
                    "attempts": 0,
                    "slaTarget": get_sla_target(queue_type),
                    "exceedsSLA": False,
                    "createdAt": now,
                },
                "$set": {"updatedAt": now},
            },
            upsert=True,
        )

    async def record_processing_started(self, webhook_id: str) -> None:
        now = self._clock()
        doc = await self.collection.find_one({"webhookId": webhook_id}, {"webhookReceivedAt": 1})
        if doc is None:
            logger.debug(f"No arrival metric for {webhook_id}, skipping start timestamp")
            return

        await self.collection.update_one(
            {"webhookId": webhook_id},
            {
                "$set": {
                    "processingStartedAt": now,
                    "queueWaitDuration": _ms_between(doc.get("webhookReceivedAt"), now),
                    "status": MetricStatus.PROCESSING.value,
                    "updatedAt": now,
                },
                "$inc": {"attempts": 1},
            }
        )

    async def record_processing_completed(
        self,
        webhook_id: str,
        success: bool,
        error: Optional[str] = None,
    ) -> None:
        now = self._clock()
        doc = await self.collection.find_one({"webhookId": webhook_id})
        if doc is None:
            logger.debug(f"No arrival metric for {webhook_id}, skipping completion timestamp")
            return

        total_duration = _ms_between(doc.get("webhookReceivedAt"), now)
        sla_target = doc.get("slaTarget") or get_sla_target(doc.get("queueType", ""))

        update: Dict[str, Any] = {
            "processingCompletedAt": now,
            "processingDuration": _ms_between(doc.get("processingStartedAt"), now),
            "totalDuration": total_duration,
            "status": (MetricStatus.SUCCESS if success else MetricStatus.FAILED).value,
            "exceedsSLA": total_duration is not None and total_duration > sla_target,
            "updatedAt": now,
        }
        if error:
            update["error"] = error[:1000]

        await self.collection.update_one({"webhookId": webhook_id}, {"$set": update})

        if update["exceedsSLA"]:
            logger.warning(
                f"Webhook {webhook_id} exceeded SLA: {total_duration:.0f}ms > {sla_target}ms",
                extra={"webhook_id": webhook_id, "queue_type": doc.get("queueType")}
            )

    async def get_metric(self, webhook_id: str) -> Optional[WebhookMetric]:
        doc = await self.collection.find_one({"webhookId": webhook_id})
        if doc is None:
            return None
        doc["_id"] = str(doc["_id"])
        return WebhookMetric.model_validate(doc)

    async def get_analytics(self, start: dt.datetime, end: dt.datetime) -> AnalyticsReport:
        """
        Summarize metrics for webhooks received in [start, end].

        Returns:
            Per-queue-type counts, averages, extremes and SLA violations,
            the top 10 error reasons and the 10 slowest webhooks.
        """
        cursor = self.collection.find({"webhookReceivedAt": {"$gte": start, "$lte": end}})
        docs = await cursor.to_list(length=None)

        by_queue: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
        errors: Counter = Counter()
        for doc in docs:
            by_queue[doc.get("queueType", "unknown")].append(doc)
            if doc.get("status") == MetricStatus.FAILED.value and doc.get("error"):
                errors[doc["error"]] += 1

        stats = []
        for queue_type, items in sorted(by_queue.items()):
            totals = [d["totalDuration"] for d in items if d.get("totalDuration") is not None]
            stats.append(QueueTypeStats(
                queue_type=queue_type,
                count=len(items),
                success=sum(1 for d in items if d.get("status") == MetricStatus.SUCCESS.value),
                failed=sum(1 for d in items if d.get("status") == MetricStatus.FAILED.value),
                avg_queue_wait_ms=_mean([d["queueWaitDuration"] for d in items if d.get("queueWaitDuration") is not None]),
                avg_processing_ms=_mean([d["processingDuration"] for d in items if d.get("processingDuration") is not None]),
                avg_total_ms=_mean(totals),
                min_total_ms=min(totals) if totals else None,
                max_total_ms=max(totals) if totals else None,
                sla_target_ms=get_sla_target(queue_type),
                sla_violations=sum(1 for d in items if d.get("exceedsSLA")),
            ))

        completed = [d for d in docs if d.get("totalDuration") is not None]
        slowest = sorted(completed, key=lambda d: d["totalDuration"], reverse=True)[:10]

        return AnalyticsReport(
            start=start,
            end=end,
            total=len(docs),
            by_queue_type=stats,
            top_errors=[ErrorReasonCount(error=e, count=c) for e, c in errors.most_common(10)],
            slowest=[
                SlowWebhook(
                    webhook_id=d["webhookId"],
                    type=d.get("type", ""),
                    queue_type=d.get("queueType", ""),
                    total_duration=d["totalDuration"],
                )
                for d in slowest
            ],
        )
