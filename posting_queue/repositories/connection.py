"""
MongoDB Connection Management
Singleton Motor client with connection pooling and lifecycle management.
"""
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING
from typing import Optional
from ..config import settings
from ..utils.observability import logger

POSTING_QUEUE_COLLECTION = "posting_queue"
CONNECTIONS_COLLECTION = "integration_connections"


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
                logger.warning("Event loop closed or connection lost. Rebuilding client...")
                self._client = None
                self._database = None

        logger.info(
            "Connecting to MongoDB",
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

    async def create_indexes(self) -> None:
        """
        Create all required indexes.
        Should be called during application startup.
        """
        await ensure_indexes(self.database)


async def ensure_indexes(db: AsyncIOMotorDatabase) -> None:
    """Create the posting queue and connection registry indexes on `db`."""
    logger.info("Creating MongoDB indexes")

    queue = db[POSTING_QUEUE_COLLECTION]

    # One row per document per integration; the enqueue upsert relies on it
    await queue.create_index(
        [("tenant_id", ASCENDING), ("integration_id", ASCENDING), ("idempotency_key", ASCENDING)],
        unique=True,
        name="idx_posting_idempotency_unique"
    )
    await queue.create_index(
        [("integration_id", ASCENDING), ("status", ASCENDING), ("created_at", ASCENDING)],
        name="idx_posting_due"
    )
    await queue.create_index(
        [("tenant_id", ASCENDING), ("status", ASCENDING), ("created_at", DESCENDING)],
        name="idx_posting_tenant_listing"
    )
    stale_keys = [("status", ASCENDING), ("claimed_at", ASCENDING)]
    existing = await queue.index_information()
    if "idx_posting_stale" in existing and list(existing["idx_posting_stale"]["key"]) != stale_keys:
        # Earlier deployments keyed stale claims on updated_at
        logger.info("Rebuilding idx_posting_stale on claimed_at")
        await queue.drop_index("idx_posting_stale")
    await queue.create_index(stale_keys, name="idx_posting_stale")

    connections = db[CONNECTIONS_COLLECTION]
    await connections.create_index(
        [("tenant_id", ASCENDING), ("name", ASCENDING)],
        name="idx_connection_tenant"
    )
    await connections.create_index("status", name="idx_connection_status")

    logger.info("MongoDB indexes created successfully")


# Singleton instance
db_manager = DatabaseManager()


async def get_database() -> AsyncIOMotorDatabase:
    """
    Dependency injection helper for repositories.
    Returns the connected database instance.
    """
    return db_manager.database
