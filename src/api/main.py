"""
FastAPI Application

Operations API for the webhook pipeline: health probes, queue and analytics
metrics, dead-letter retry. Optionally hosts one continuous loop per
processor.
"""
import asyncio
from contextlib import asynccontextmanager
from fastapi import FastAPI
from loguru import logger

from src.api.routes import health_router, metrics_router
from src.api.routes.health import API_VERSION
from src.config import settings
from src.core.runner import run_continuously
from src.models.work_item import QueueType
from src.processors import ProcessorContext, build_processor
from src.repositories import db_manager
from src.utils.observability import configure_logging


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application lifecycle: startup and shutdown events.

    Startup:
    - Connect to MongoDB and create indexes
    - Build the shared processor context
    - Start processor loops when `run_processors_in_api` is set

    Shutdown:
    - Cancel processor loops
    - Disconnect from MongoDB
    """
    configure_logging()
    logger.info("Starting webhook pipeline API...")

    await db_manager.connect()
    await db_manager.create_indexes()

    ctx = ProcessorContext.build(db_manager.database, db_manager.client)
    app.state.ctx = ctx

    tasks = {}
    if settings.run_processors_in_api:
        for queue_type in QueueType:
            processor = build_processor(queue_type, ctx)
            tasks[processor.name] = asyncio.create_task(run_continuously(processor))
        logger.info(f"Started {len(tasks)} processor loops")
    app.state.processor_tasks = tasks

    logger.info("API server ready")

    yield

    logger.info("Shutting down API server...")

    for name, task in tasks.items():
        if not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                logger.info(f"Stopped {name}")

    await db_manager.disconnect()
    logger.info("Shutdown complete")


app = FastAPI(
    title="CRM Webhook Pipeline",
    description="Operations API for the CRM webhook queue and processors",
    version=API_VERSION,
    lifespan=lifespan
)

app.include_router(health_router)
app.include_router(metrics_router)
