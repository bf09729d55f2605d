"""
Processor Runner
Command-line entry point for cron-style processor passes.

    python -m src.core.runner contacts
    python -m src.core.runner all --max-runtime 50
"""
import argparse
import asyncio
from typing import List, Optional, Sequence

from loguru import logger

from src.models.work_item import QueueType
from src.processors import BaseProcessor, ProcessorContext, ProcessorRunStats, build_processor
from src.repositories import db_manager
from src.utils.observability import configure_logging

ALL = "all"


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="python -m src.core.runner",
        description="Run one time-boxed pass of the webhook processors",
    )
    parser.add_argument(
        "queue_type",
        choices=[qt.value for qt in QueueType] + [ALL],
        help="Queue to drain, or 'all' to run every processor side by side",
    )
    parser.add_argument(
        "--max-runtime",
        type=float,
        default=None,
        help="Seconds after which no new batches are claimed (default from settings)",
    )
    parser.add_argument(
        "--skip-indexes",
        action="store_true",
        help="Do not (re)create MongoDB indexes before running",
    )
    return parser.parse_args(argv)


def selected_queue_types(choice: str) -> List[QueueType]:
    if choice == ALL:
        return list(QueueType)
    return [QueueType(choice)]


async def run_processors(ctx: ProcessorContext, queue_types: List[QueueType], max_runtime: Optional[float] = None) -> List[ProcessorRunStats]:
    """
    Run one pass of each processor concurrently.

    A processor whose run fails is logged and left out of the results; the
    others still complete.
    """
    processors: List[BaseProcessor] = [build_processor(qt, ctx, max_runtime=max_runtime) for qt in queue_types]
    results = await asyncio.gather(*(p.run() for p in processors), return_exceptions=True)

    stats = []
    for processor, result in zip(processors, results):
        if isinstance(result, BaseException):
            logger.error(f"{processor.name} run failed: {result}")
            continue
        stats.append(result)
    return stats


async def run_continuously(processor: BaseProcessor, pause_seconds: float = 1.0) -> None:
    """Repeat time-boxed passes until cancelled. Used by the API process."""
    logger.info(f"{processor.name} loop started")
    try:
        while True:
            try:
                await processor.run()
            except Exception as e:
                logger.error(f"{processor.name} pass failed: {e}")
            await asyncio.sleep(pause_seconds)
    except asyncio.CancelledError:
        processor.stop()
        logger.info(f"{processor.name} loop cancelled")
        raise


async def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging()

    await db_manager.connect()
    try:
        if not args.skip_indexes:
            await db_manager.create_indexes()

        ctx = ProcessorContext.build(db_manager.database, db_manager.client)
        stats = await run_processors(ctx, selected_queue_types(args.queue_type), args.max_runtime)
    finally:
        await db_manager.disconnect()

    for s in stats:
        logger.info(
            f"{s.processor}: processed={s.processed} errors={s.errors} "
            f"runtime={s.runtime_seconds:.1f}s throughput={s.throughput}/s"
        )

    expected = len(selected_queue_types(args.queue_type))
    return 0 if len(stats) == expected else 1


if __name__ == "__main__":
    raise SystemExit(asyncio.run(main()))
