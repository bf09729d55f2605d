"""
Metrics Endpoints

Prometheus exposition, queue depth, webhook analytics and dead-letter
operations.
"""
import datetime as dt
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse, Response
from loguru import logger

from src.models.base import to_naive_utc, utcnow
from src.processors import ProcessorContext
from src.utils.metrics import metrics

router = APIRouter(prefix="/metrics", tags=["Metrics"])

DEFAULT_WINDOW = dt.timedelta(hours=24)


def _ctx(request: Request) -> ProcessorContext:
    ctx = getattr(request.app.state, "ctx", None)
    if ctx is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Processor context not initialized")
    return ctx


@router.get("")
async def prometheus_metrics(request: Request):
    """
    Prometheus metrics endpoint.

    Queue gauges are refreshed from MongoDB on every scrape; item and
    processor counters cover processors running in this process.

    Content-Type: text/plain; version=0.0.4; charset=utf-8
    """
    ctx = _ctx(request)
    try:
        metrics.record_depths(await ctx.queue.get_queue_depth())
    except Exception as e:
        logger.error(f"Failed to refresh queue gauges: {e}")
        return Response(
            content=f"# Error exporting metrics: {e}\n",
            media_type="text/plain",
            status_code=500
        )

    return Response(
        content=metrics.export(),
        media_type="text/plain; version=0.0.4; charset=utf-8"
    )


@router.get("/queues")
async def queue_metrics(request: Request):
    """
    Depth of every queue type.

    Returns pending, processing and dead counts plus the oldest pending
    timestamp per queue type, and the total dead-letter count.
    """
    ctx = _ctx(request)
    try:
        depths = await ctx.queue.get_queue_depth()
    except Exception as e:
        logger.error(f"Failed to get queue depth: {e}")
        return JSONResponse(
            status_code=500,
            content={"status": "error", "error": str(e)}
        )

    return {
        "status": "ok",
        "queues": [d.model_dump(mode="json") for d in depths],
        "dead_letter_total": sum(d.dead for d in depths),
    }


@router.get("/webhooks")
async def webhook_analytics(
    request: Request,
    start: Optional[dt.datetime] = Query(None, description="Window start (UTC); defaults to 24h before end"),
    end: Optional[dt.datetime] = Query(None, description="Window end (UTC); defaults to now"),
):
    """Per-queue-type latency, SLA and error summary for webhooks received in the window."""
    ctx = _ctx(request)
    end = to_naive_utc(end) or utcnow()
    start = to_naive_utc(start) or end - DEFAULT_WINDOW
    if start > end:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="start must not be after end")

    report = await ctx.analytics.get_analytics(start, end)
    return report.model_dump(mode="json")


@router.get("/dead-letter")
async def dead_letter_items(request: Request, limit: int = Query(100, ge=1, le=1000)):
    """Most recently dead-lettered items, newest first."""
    ctx = _ctx(request)
    items = await ctx.queue.get_dead_letter_items(limit)
    return {
        "count": len(items),
        "items": [
            {
                "webhookId": item.webhook_id,
                "type": item.type,
                "queueType": item.queue_type,
                "locationId": item.location_id,
                "attempts": item.attempts,
                "lastError": item.last_error,
                "updatedAt": item.updated_at.isoformat(),
            }
            for item in items
        ],
    }


@router.post("/dead-letter/{webhook_id}/retry")
async def retry_dead_letter(request: Request, webhook_id: str):
    """Re-queue a dead-lettered item with a fresh attempt budget."""
    ctx = _ctx(request)
    if not await ctx.queue.retry_dead_letter(webhook_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No dead-lettered item with webhookId {webhook_id}"
        )
    return {"status": "requeued", "webhookId": webhook_id}
