"""
Processor Base

Time-boxed run loop shared by every typed processor:

    created -> initializing -> running -> (fetch <-> process) -> draining -> stopped

Each pass claims batches from one queue type, processes them in concurrency
windows and acknowledges or fails every item individually. One item's failure
never aborts the batch or the loop; only initialization and batch-fetch errors
end a run.
"""

import asyncio
import time
import traceback
from abc import ABC
from dataclasses import dataclass
from enum import StrEnum
from typing import Awaitable, Callable, ClassVar, Dict, List, Optional

from loguru import logger

from src.errors import UnsupportedEventError
from src.models.base import utcnow
from src.models.work_item import QueueType, WorkItem
from src.processors.context import ProcessorContext
from src.utils.metrics import metrics
from src.utils.observability import log_processor_event, log_webhook_event

Handler = Callable[[WorkItem], Awaitable[None]]


class ProcessorState(StrEnum):
    CREATED = "created"
    INITIALIZING = "initializing"
    RUNNING = "running"
    DRAINING = "draining"
    STOPPED = "stopped"


@dataclass
class ProcessorRunStats:
    processor: str
    queue_type: str
    processed: int
    errors: int
    runtime_seconds: float

    @property
    def throughput(self) -> float:
        """Items handled per second."""
        if self.runtime_seconds <= 0:
            return 0.0
        return round((self.processed + self.errors) / self.runtime_seconds, 2)


class BaseProcessor(ABC):
    """
    Base class for typed queue processors.

    Subclasses set `queue_type` and `batch_size` and register one handler per
    event type in `self.handlers`.

    Attributes:
        ctx: Shared collaborators
        max_runtime: Seconds after which no new batches are claimed
        concurrency: Items processed together per window
    """

    queue_type: ClassVar[QueueType]
    batch_size: ClassVar[int] = 50

    def __init__(
        self,
        ctx: ProcessorContext,
        max_runtime: Optional[float] = None,
        concurrency: Optional[int] = None,
    ):
        settings = ctx.settings
        self.ctx = ctx
        self.max_runtime = max_runtime if max_runtime is not None else settings.processor_max_runtime_seconds
        self.concurrency = concurrency or settings.processor_concurrency
        self.empty_queue_sleep = settings.empty_queue_sleep_seconds
        self.yield_every = settings.yield_every
        self.yield_sleep = settings.yield_sleep_seconds

        self.state = ProcessorState.CREATED
        self.processed = 0
        self.errors = 0
        self._stop_requested = False
        self.handlers: Dict[str, Handler] = {}

    @property
    def name(self) -> str:
        return type(self).__name__

    def stop(self) -> None:
        """Stop claiming new batches; the in-flight batch still completes."""
        self._stop_requested = True

    async def initialize(self) -> None:
        """Hook for subclasses that need setup before the first fetch."""
        pass

    async def run(self) -> ProcessorRunStats:
        """
        Run one time-boxed pass over this processor's queue.

        Raises:
            Exception: Initialization or batch-fetch failures, after logging
        """
        started = time.monotonic()
        self.processed = 0
        self.errors = 0
        self._stop_requested = False
        self.state = ProcessorState.INITIALIZING

        try:
            await self.initialize()
        except Exception as e:
            await self._fail_run(started, e)
            raise

        await self._write_run_log("start")
        log_processor_event(self.name, "start", queue_type=str(self.queue_type), max_runtime_s=self.max_runtime)

        self.state = ProcessorState.RUNNING
        last_yield_at = 0

        while not self._stop_requested and time.monotonic() - started < self.max_runtime:
            try:
                batch = await self.ctx.queue.get_next_batch(self.queue_type, self.batch_size)
            except Exception as e:
                await self._fail_run(started, e)
                raise

            if not batch:
                await asyncio.sleep(self.empty_queue_sleep)
                continue

            await self.process_batch(batch)

            handled = self.processed + self.errors
            if handled - last_yield_at >= self.yield_every:
                last_yield_at = handled
                await asyncio.sleep(self.yield_sleep)

        self.state = ProcessorState.DRAINING
        stats = self._stats(started)
        await self._write_run_log("end", stats)
        log_processor_event(
            self.name, "end",
            queue_type=str(self.queue_type),
            processed=stats.processed,
            errors=stats.errors,
            runtime_s=round(stats.runtime_seconds, 2),
            throughput=stats.throughput,
        )
        metrics.processor_runs.inc(processor=self.name, outcome="completed")
        self.state = ProcessorState.STOPPED
        return stats

    async def process_batch(self, batch: List[WorkItem]) -> None:
        """Process a claimed batch in sequential windows of `concurrency` items."""
        for start in range(0, len(batch), self.concurrency):
            window = batch[start:start + self.concurrency]
            await asyncio.gather(*(self.process_safely(item) for item in window))

    async def process_safely(self, item: WorkItem) -> bool:
        """
        Safety wrapper around `process_item`.

        Returns:
            True if the item was applied and acknowledged
        """
        started = time.monotonic()
        await self._record_analytics(self.ctx.analytics.record_processing_started, item.webhook_id)

        try:
            await self.process_item(item)
            await self.ctx.queue.mark_complete(item.webhook_id, item.processor_id)
        except Exception as e:
            self.errors += 1
            reason = str(e) or type(e).__name__
            duration_ms = (time.monotonic() - started) * 1000
            metrics.items_failed.inc(queue_type=str(self.queue_type), error_type=type(e).__name__)

            await self._record_analytics(
                self.ctx.analytics.record_processing_completed, item.webhook_id, False, reason
            )
            try:
                await self.ctx.queue.mark_failed(item.webhook_id, reason, item.processor_id)
            except Exception as mark_error:
                logger.error(f"Could not record failure of {item.webhook_id}: {mark_error}")

            log_webhook_event(
                item.webhook_id, item.type, "failed",
                duration_ms=duration_ms,
                error=reason,
                queue_type=str(self.queue_type),
                attempt=item.attempts,
                location_id=item.location_id,
                error_type=type(e).__name__,
            )
            await self._write_webhook_error(item, e)
            return False

        self.processed += 1
        elapsed = time.monotonic() - started
        metrics.items_completed.inc(queue_type=str(self.queue_type))
        metrics.item_duration.observe(elapsed, queue_type=str(self.queue_type))
        await self._record_analytics(
            self.ctx.analytics.record_processing_completed, item.webhook_id, True
        )
        log_webhook_event(
            item.webhook_id, item.type, "completed",
            duration_ms=elapsed * 1000,
            queue_type=str(self.queue_type),
            attempt=item.attempts,
        )
        return True

    async def process_item(self, item: WorkItem) -> None:
        """
        Dispatch an item to its registered handler.

        Raises:
            UnsupportedEventError: No handler for the item's type
        """
        handler = self.handlers.get(item.type)
        if handler is None:
            raise UnsupportedEventError(self.name, item.type)
        await handler(item)

    def _stats(self, started: float) -> ProcessorRunStats:
        return ProcessorRunStats(
            processor=self.name,
            queue_type=str(self.queue_type),
            processed=self.processed,
            errors=self.errors,
            runtime_seconds=time.monotonic() - started,
        )

    async def _fail_run(self, started: float, error: Exception) -> None:
        self.state = ProcessorState.STOPPED
        metrics.processor_runs.inc(processor=self.name, outcome="error")
        stats = self._stats(started)
        log_processor_event(
            self.name, "error",
            queue_type=str(self.queue_type),
            error=str(error),
            processed=stats.processed,
            errors=stats.errors,
        )
        try:
            await self._write_run_log("error", stats, error=str(error))
        except Exception as log_error:
            logger.error(f"Could not write processor log for {self.name}: {log_error}")

    async def _write_run_log(
        self,
        event: str,
        stats: Optional[ProcessorRunStats] = None,
        error: Optional[str] = None,
    ) -> None:
        row = {
            "processor": self.name,
            "queueType": str(self.queue_type),
            "processorId": self.ctx.queue.processor_id,
            "event": event,
            "timestamp": utcnow(),
        }
        if stats is not None:
            row.update({
                "processed": stats.processed,
                "errors": stats.errors,
                "runtimeSeconds": round(stats.runtime_seconds, 3),
                "throughput": stats.throughput,
            })
        if error:
            row["error"] = error

        await self.ctx.database["processor_logs"].insert_one(row)

    async def _write_webhook_error(self, item: WorkItem, error: Exception) -> None:
        try:
            await self.ctx.database["webhook_errors"].insert_one({
                "webhookId": item.webhook_id,
                "type": item.type,
                "queueType": str(self.queue_type),
                "locationId": item.location_id,
                "processor": self.name,
                "attempt": item.attempts,
                "errorType": type(error).__name__,
                "error": (str(error) or type(error).__name__)[:1000],
                "stack": "".join(traceback.format_exception(error))[-4000:],
                "timestamp": utcnow(),
            })
        except Exception as e:
            logger.error(f"Could not write webhook error row for {item.webhook_id}: {e}")

    @staticmethod
    async def _record_analytics(fn, *args) -> None:
        try:
            await fn(*args)
        except Exception as e:
            logger.warning(f"Analytics write failed: {e}")
