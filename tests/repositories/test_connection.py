"""
Database Connection Tests
Client lifecycle, index creation and the transaction runner.
"""
import pytest
from unittest.mock import AsyncMock, MagicMock
from motor.motor_asyncio import AsyncIOMotorDatabase, AsyncIOMotorClient

from src.repositories.connection import DatabaseManager, TransactionRunner, create_indexes, db_manager
from src.config import settings


class TestDatabaseManager:
    """Test suite for DatabaseManager singleton."""

    async def test_singleton_pattern(self):
        """DatabaseManager should return same instance."""
        assert DatabaseManager() is DatabaseManager()
        assert DatabaseManager() is db_manager

    async def test_connect_initializes_client(self):
        """Connect builds the Motor client lazily, without a round trip."""
        manager = DatabaseManager()
        await manager.disconnect()

        await manager.connect()

        assert isinstance(manager.client, AsyncIOMotorClient)
        assert isinstance(manager.database, AsyncIOMotorDatabase)
        assert manager.database.name == settings.mongodb_database

    async def test_disconnect_is_idempotent(self):
        manager = DatabaseManager()

        await manager.connect()
        await manager.disconnect()
        await manager.disconnect()

        assert manager._client is None
        assert manager._database is None

    async def test_properties_raise_when_not_connected(self):
        manager = DatabaseManager()
        await manager.disconnect()

        with pytest.raises(RuntimeError, match="Database not connected"):
            _ = manager.database
        with pytest.raises(RuntimeError, match="Database client not connected"):
            _ = manager.client

    async def test_ping_false_when_not_connected(self):
        manager = DatabaseManager()
        await manager.disconnect()

        assert await manager.ping() is False


class TestCreateIndexes:

    async def test_creates_queue_and_entity_indexes(self, db):
        await create_indexes(db)  # second run must not fail

        work_item_indexes = await db.work_items.index_information()
        assert "idx_webhook_id_unique" in work_item_indexes
        assert "idx_claim_order" in work_item_indexes
        assert "idx_work_item_ttl" in work_item_indexes

        contact_indexes = await db.contacts.index_information()
        assert "idx_ghlContactId_location_unique" in contact_indexes

        marker_indexes = await db.realtime_markers.index_information()
        assert "idx_marker_key_unique" in marker_indexes
        assert "idx_marker_ttl" in marker_indexes

        automation_indexes = await db.automation_queue.index_information()
        assert "idx_automation_webhook_entity_unique" in automation_indexes


class TestTransactionRunner:

    async def test_disabled_runs_without_session(self):
        runner = TransactionRunner(None)
        fn = AsyncMock(return_value="applied")

        assert runner.enabled is False
        assert await runner.run(fn) == "applied"
        fn.assert_awaited_once_with(None)

    async def test_disabled_by_flag_even_with_client(self):
        runner = TransactionRunner(MagicMock(), enabled=False)
        fn = AsyncMock(return_value=1)

        await runner.run(fn)

        fn.assert_awaited_once_with(None)

    async def test_enabled_uses_with_transaction(self):
        session = MagicMock()
        session.with_transaction = AsyncMock(return_value="committed")
        session.__aenter__ = AsyncMock(return_value=session)
        session.__aexit__ = AsyncMock(return_value=False)

        client = MagicMock()
        client.start_session = AsyncMock(return_value=session)
        fn = AsyncMock()

        result = await TransactionRunner(client).run(fn)

        assert result == "committed"
        session.with_transaction.assert_awaited_once_with(fn)


@pytest.fixture(scope="function", autouse=True)
async def cleanup_db_manager():
    """Ensure db_manager is in clean state after each test."""
    yield
    await db_manager.disconnect()
