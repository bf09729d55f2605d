"""
Tests for the shared processor run loop and per-item safety wrapper.
"""
import datetime as dt
from typing import ClassVar

import pytest

from src.message_queue import MongoQueueManager
from src.models.base import utcnow
from src.models.work_item import IncomingWebhook, QueueType, WorkItemStatus
from src.processors.base import BaseProcessor, ProcessorRunStats, ProcessorState
from src.utils.metrics import metrics
from tests.helpers import make_item


class RecordingProcessor(BaseProcessor):
    """Handles `Ok` and fails on `Boom`."""

    queue_type: ClassVar[QueueType] = QueueType.GENERAL
    batch_size = 10

    def __init__(self, ctx, **kwargs):
        super().__init__(ctx, **kwargs)
        self.seen = []
        self.handlers = {"Ok": self.ok, "Boom": self.boom}

    async def ok(self, item):
        self.seen.append(item.webhook_id)

    async def boom(self, item):
        raise RuntimeError("handler exploded")


@pytest.fixture
def processor(ctx):
    return RecordingProcessor(ctx, max_runtime=0.2)


async def enqueue(ctx, webhook_id: str, webhook_type: str):
    await ctx.queue.enqueue(
        IncomingWebhook(webhook_id=webhook_id, type=webhook_type, location_id="loc1"),
        QueueType.GENERAL,
        5,
    )
    await ctx.analytics.record_received(webhook_id, webhook_type, QueueType.GENERAL, "loc1")


class TestProcessSafely:

    async def test_success_acknowledges_item(self, ctx, processor):
        await enqueue(ctx, "wh-ok", "Ok")
        [item] = await ctx.queue.get_next_batch(QueueType.GENERAL, 1)

        assert await processor.process_safely(item) is True

        stored = await ctx.queue.get_item("wh-ok")
        assert stored.status == WorkItemStatus.COMPLETED
        assert processor.processed == 1

        metric = await ctx.analytics.get_metric("wh-ok")
        assert metric.status == "success"

    async def test_failure_schedules_retry_and_logs_error(self, ctx, processor):
        await enqueue(ctx, "wh-boom", "Boom")
        [item] = await ctx.queue.get_next_batch(QueueType.GENERAL, 1)
        failed_before = metrics.items_failed.value(queue_type="general", error_type="RuntimeError")

        assert await processor.process_safely(item) is False

        stored = await ctx.queue.get_item("wh-boom")
        assert stored.status == WorkItemStatus.PENDING
        assert stored.last_error == "handler exploded"
        assert processor.errors == 1

        error_row = await ctx.database.webhook_errors.find_one({"webhookId": "wh-boom"})
        assert error_row["errorType"] == "RuntimeError"
        assert error_row["processor"] == "RecordingProcessor"
        assert "handler exploded" in error_row["stack"]

        metric = await ctx.analytics.get_metric("wh-boom")
        assert metric.status == "failed"
        assert metrics.items_failed.value(queue_type="general", error_type="RuntimeError") == failed_before + 1

    async def test_unsupported_type_fails_item(self, ctx, processor):
        await enqueue(ctx, "wh-odd", "Unknown")
        [item] = await ctx.queue.get_next_batch(QueueType.GENERAL, 1)

        assert await processor.process_safely(item) is False

        stored = await ctx.queue.get_item("wh-odd")
        assert "Unsupported RecordingProcessor webhook type: Unknown" in stored.last_error

    async def test_lost_lease_leaves_new_claim_alone(self, ctx, processor):
        await enqueue(ctx, "wh-slow", "Ok")
        [item] = await ctx.queue.get_next_batch(QueueType.GENERAL, 1)
        await ctx.queue.collection.update_one(
            {"webhookId": "wh-slow"},
            {"$set": {"leaseExpiry": utcnow() - dt.timedelta(seconds=1)}},
        )
        other = MongoQueueManager(ctx.database, processor_id="proc-other")
        await other.get_next_batch(QueueType.GENERAL, 1)

        await processor.process_safely(item)

        stored = await ctx.queue.get_item("wh-slow")
        assert stored.status == WorkItemStatus.PROCESSING
        assert stored.processor_id == "proc-other"
        assert stored.attempts == 2

    async def test_one_failure_does_not_abort_batch(self, processor):
        batch = [
            make_item("Ok", {}, webhook_id="a"),
            make_item("Boom", {}, webhook_id="b"),
            make_item("Ok", {}, webhook_id="c"),
        ]

        await processor.process_batch(batch)

        assert processor.seen == ["a", "c"]
        assert processor.processed == 2
        assert processor.errors == 1


class TestRun:

    async def test_run_drains_queue_and_reports_stats(self, ctx, processor):
        await enqueue(ctx, "wh-1", "Ok")
        await enqueue(ctx, "wh-2", "Ok")
        await enqueue(ctx, "wh-3", "Boom")
        runs_before = metrics.processor_runs.value(processor="RecordingProcessor", outcome="completed")

        stats = await processor.run()

        assert isinstance(stats, ProcessorRunStats)
        assert stats.processor == "RecordingProcessor"
        assert stats.queue_type == "general"
        assert stats.processed == 2
        assert stats.errors == 1
        assert stats.runtime_seconds >= 0.2
        assert processor.state == ProcessorState.STOPPED
        assert sorted(processor.seen) == ["wh-1", "wh-2"]

        rows = await ctx.database.processor_logs.find({"processor": "RecordingProcessor"}).to_list(length=None)
        events = [row["event"] for row in rows]
        assert events == ["start", "end"]
        assert metrics.processor_runs.value(processor="RecordingProcessor", outcome="completed") == runs_before + 1

    async def test_stop_ends_run_early(self, ctx):
        processor = RecordingProcessor(ctx, max_runtime=30)

        async def stop_after_first_fetch(*args, **kwargs):
            processor.stop()
            return []

        ctx.queue.get_next_batch = stop_after_first_fetch

        stats = await processor.run()

        assert stats.runtime_seconds < 30
        assert processor.state == ProcessorState.STOPPED

    async def test_fetch_failure_ends_run_with_error_log(self, ctx, processor):
        async def broken_fetch(*args, **kwargs):
            raise ConnectionError("store unreachable")

        ctx.queue.get_next_batch = broken_fetch

        with pytest.raises(ConnectionError):
            await processor.run()

        assert processor.state == ProcessorState.STOPPED
        error_log = await ctx.database.processor_logs.find_one({"event": "error"})
        assert error_log["error"] == "store unreachable"

    def test_throughput(self):
        stats = ProcessorRunStats("p", "general", processed=8, errors=2, runtime_seconds=5.0)

        assert stats.throughput == 2.0
        assert ProcessorRunStats("p", "general", 0, 0, 0.0).throughput == 0.0
