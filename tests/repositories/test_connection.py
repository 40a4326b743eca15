"""
Database Connection Tests
Tests for MongoDB client lifecycle and index management.
"""
import pytest
from unittest.mock import AsyncMock, MagicMock, patch
from mongomock_motor import AsyncMongoMockClient

from posting_queue.repositories.connection import (
    CONNECTIONS_COLLECTION,
    POSTING_QUEUE_COLLECTION,
    DatabaseManager,
    db_manager,
    ensure_indexes,
    get_database,
)
from posting_queue.config import settings


pytestmark = pytest.mark.asyncio


@pytest.fixture
async def manager():
    manager = DatabaseManager()
    await manager.disconnect()
    yield manager
    await manager.disconnect()


class TestDatabaseManager:
    """Test suite for DatabaseManager singleton."""

    async def test_singleton_pattern(self):
        assert DatabaseManager() is DatabaseManager()
        assert DatabaseManager() is db_manager

    async def test_database_requires_connect(self, manager):
        with pytest.raises(RuntimeError):
            manager.database
        with pytest.raises(RuntimeError):
            manager.client

    async def test_connect_uses_configured_pool(self, manager):
        with patch("posting_queue.repositories.connection.AsyncIOMotorClient") as mock_client_class:
            mock_client = MagicMock()
            mock_client_class.return_value = mock_client

            await manager.connect()

        mock_client_class.assert_called_once_with(
            settings.mongodb_uri,
            maxPoolSize=settings.mongodb_max_pool_size,
            minPoolSize=settings.mongodb_min_pool_size,
            serverSelectionTimeoutMS=settings.mongodb_server_selection_timeout_ms,
        )
        mock_client.__getitem__.assert_called_once_with(settings.mongodb_database)
        assert await get_database() is manager.database

    async def test_connect_reuses_healthy_client(self, manager):
        with patch("posting_queue.repositories.connection.AsyncIOMotorClient") as mock_client_class:
            mock_client = MagicMock()
            mock_client.admin.command = AsyncMock(return_value={"ok": 1})
            mock_client_class.return_value = mock_client

            await manager.connect()
            await manager.connect()

        assert mock_client_class.call_count == 1

    async def test_disconnect_is_idempotent(self, manager):
        with patch("posting_queue.repositories.connection.AsyncIOMotorClient") as mock_client_class:
            mock_client = MagicMock()
            mock_client_class.return_value = mock_client
            await manager.connect()

        await manager.disconnect()
        await manager.disconnect()

        mock_client.close.assert_called_once()
        assert manager._client is None


class TestIndexes:
    """ensure_indexes against an in-process MongoDB double."""

    async def test_creates_queue_and_connection_indexes(self):
        database = AsyncMongoMockClient()["posting_queue_test"]

        await ensure_indexes(database)

        queue_indexes = await database[POSTING_QUEUE_COLLECTION].index_information()
        connection_indexes = await database[CONNECTIONS_COLLECTION].index_information()
        assert {
            "idx_posting_idempotency_unique",
            "idx_posting_due",
            "idx_posting_tenant_listing",
            "idx_posting_stale",
        } <= set(queue_indexes)
        assert {"idx_connection_tenant", "idx_connection_status"} <= set(connection_indexes)

    async def test_create_indexes_is_repeatable(self):
        database = AsyncMongoMockClient()["posting_queue_test"]

        await ensure_indexes(database)
        await ensure_indexes(database)

    async def test_stale_index_is_keyed_on_claim_time(self):
        database = AsyncMongoMockClient()["posting_queue_test"]

        await ensure_indexes(database)

        info = await database[POSTING_QUEUE_COLLECTION].index_information()
        assert list(info["idx_posting_stale"]["key"]) == [("status", 1), ("claimed_at", 1)]

    async def test_stale_index_keyed_on_updated_at_is_rebuilt(self):
        database = AsyncMongoMockClient()["posting_queue_test"]
        await database[POSTING_QUEUE_COLLECTION].create_index(
            [("status", 1), ("updated_at", 1)],
            name="idx_posting_stale"
        )

        await ensure_indexes(database)

        info = await database[POSTING_QUEUE_COLLECTION].index_information()
        assert list(info["idx_posting_stale"]["key"]) == [("status", 1), ("claimed_at", 1)]
