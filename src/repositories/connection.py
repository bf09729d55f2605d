"""
MongoDB Connection Management
Singleton Motor client with connection pooling, lifecycle management,
index creation and the transaction runner shared by all processors.
"""
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorClientSession, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING
from typing import Awaitable, Callable, Optional, TypeVar
from ..config import settings
from ..utils.observability import logger

T = TypeVar("T")

# Entity collections keyed by (external id, locationId)
ENTITY_KEYS = {
    "contacts": "ghlContactId",
    "appointments": "ghlAppointmentId",
    "invoices": "ghlInvoiceId",
    "orders": "ghlOrderId",
    "projects": "ghlOpportunityId",
    "tasks": "ghlTaskId",
    "notes": "ghlNoteId",
    "messages": "ghlMessageId",
    "conversations": "ghlConversationId",
    "users": "ghlUserId",
}


class TransactionRunner:
    """
    Runs a callback inside a multi-document transaction.

    Standalone MongoDB deployments reject transactions; with `enabled=False`
    the callback runs directly with `session=None`.
    """

    def __init__(self, client: Optional[AsyncIOMotorClient], enabled: bool = True):
        self.client = client
        self.enabled = enabled and client is not None

    async def run(self, fn: Callable[[Optional[AsyncIOMotorClientSession]], Awaitable[T]]) -> T:
        if not self.enabled:
            return await fn(None)

        async with await self.client.start_session() as session:
            return await session.with_transaction(fn)


class DatabaseManager:
    """
    Singleton MongoDB client manager with async Motor.
    Handles connection lifecycle, pooling, and graceful shutdown.
    """

    _instance: Optional["DatabaseManager"] = None
    _client: Optional[AsyncIOMotorClient] = None
    _database: Optional[AsyncIOMotorDatabase] = None

    def __new__(cls) -> "DatabaseManager":
        """Enforce singleton pattern."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    async def connect(self) -> None:
        """
        Initialize MongoDB connection with configured pool settings.
        Idempotent - safe to call multiple times.
        """
        if self._client:
            try:
                await self._client.admin.command("ping")
                logger.debug("Reusing healthy MongoDB connection")
                return
            except Exception:
                logger.warning("MongoDB connection lost. Rebuilding client...")
                self._client = None
                self._database = None

        logger.info(
            f"Connecting to MongoDB at {settings.mongodb_uri}",
            extra={
                "database": settings.mongodb_database,
                "max_pool_size": settings.mongodb_max_pool_size,
                "environment": settings.environment
            }
        )
        self._client = AsyncIOMotorClient(
            settings.mongodb_uri,
            maxPoolSize=settings.mongodb_max_pool_size,
            minPoolSize=settings.mongodb_min_pool_size,
            serverSelectionTimeoutMS=settings.mongodb_server_selection_timeout_ms,
        )

        self._database = self._client[settings.mongodb_database]

    async def disconnect(self) -> None:
        """
        Close MongoDB connection and cleanup resources.
        Idempotent - safe to call multiple times.
        """
        if self._client is None:
            logger.debug("MongoDB client already disconnected")
            return

        logger.info("Closing MongoDB connection")
        self._client.close()
        self._client = None
        self._database = None
        logger.info("MongoDB connection closed")

    async def ping(self) -> bool:
        if self._client is None:
            return False
        try:
            await self._client.admin.command("ping")
            return True
        except Exception as e:
            logger.warning(f"MongoDB ping failed: {e}")
            return False

    @property
    def database(self) -> AsyncIOMotorDatabase:
        """
        Get the database instance.
        Raises RuntimeError if not connected.
        """
        if self._database is None:
            raise RuntimeError(
                "Database not connected. Call await db_manager.connect() first."
            )
        return self._database

    @property
    def client(self) -> AsyncIOMotorClient:
        """
        Get the Motor client instance.
        Raises RuntimeError if not connected.
        """
        if self._client is None:
            raise RuntimeError(
                "Database client not connected. Call await db_manager.connect() first."
            )
        return self._client

    def transaction_runner(self) -> TransactionRunner:
        return TransactionRunner(self.client, enabled=settings.mongodb_use_transactions)

    async def create_indexes(self) -> None:
        await create_indexes(self.database)


async def create_indexes(db: AsyncIOMotorDatabase) -> None:
    """
    Create all required indexes.
    Should be called during application startup; safe to re-run.
    """
    logger.info("Creating MongoDB indexes")

    # Work items: unique webhook id, claim path, TTL cleanup
    await db.work_items.create_index("webhookId", unique=True, name="idx_webhook_id_unique")
    await db.work_items.create_index(
        [("queueType", ASCENDING), ("status", ASCENDING), ("priority", ASCENDING), ("queuedAt", ASCENDING)],
        name="idx_claim_order"
    )
    await db.work_items.create_index(
        [("queueType", ASCENDING), ("status", ASCENDING), ("processAfter", ASCENDING)],
        name="idx_due_pending"
    )
    await db.work_items.create_index(
        [("status", ASCENDING), ("leaseExpiry", ASCENDING)],
        name="idx_lease_expiry",
        sparse=True
    )
    await db.work_items.create_index("ttl", name="idx_work_item_ttl", expireAfterSeconds=0)

    # Entity collections: one document per (external id, tenant)
    for collection_name, key in ENTITY_KEYS.items():
        await db[collection_name].create_index(
            [(key, ASCENDING), ("locationId", ASCENDING)],
            unique=True,
            name=f"idx_{key}_location_unique"
        )

    await db.projects.create_index(
        [("contactId", ASCENDING), ("locationId", ASCENDING), ("status", ASCENDING)],
        name="idx_project_contact_status"
    )
    await db.messages.create_index("emailMessageId", name="idx_email_message_id", sparse=True)
    await db.locations.create_index("locationId", unique=True, name="idx_location_id_unique")

    # Dedup markers expire on their own
    await db.realtime_markers.create_index(
        [("entityId", ASCENDING), ("eventType", ASCENDING)],
        unique=True,
        name="idx_marker_key_unique"
    )
    await db.realtime_markers.create_index("expiresAt", name="idx_marker_ttl", expireAfterSeconds=0)

    # Automation triggers, one per (webhook, entity type)
    await db.automation_queue.create_index(
        [("webhookId", ASCENDING), ("entityType", ASCENDING)],
        unique=True,
        name="idx_automation_webhook_entity_unique"
    )
    await db.automation_queue.create_index("trigger.locationId", name="idx_automation_location")

    # Analytics
    await db.webhook_metrics.create_index("webhookId", unique=True, name="idx_metric_webhook_unique")
    await db.webhook_metrics.create_index(
        [("queueType", ASCENDING), ("webhookReceivedAt", DESCENDING)],
        name="idx_metric_queue_received"
    )
    await db.processor_logs.create_index(
        [("processor", ASCENDING), ("timestamp", DESCENDING)],
        name="idx_processor_logs"
    )
    await db.webhook_errors.create_index(
        [("queueType", ASCENDING), ("timestamp", DESCENDING)],
        name="idx_webhook_errors"
    )

    logger.info("MongoDB indexes created successfully")


# Singleton instance
db_manager = DatabaseManager()


async def get_database() -> AsyncIOMotorDatabase:
    """
    Dependency injection helper for repositories.
    Returns the connected database instance.
    """
    return db_manager.database
