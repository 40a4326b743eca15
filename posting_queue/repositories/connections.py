"""
Connection Registry
Per-tenant integration connections: the read contract the posting queue
depends on, plus the lifecycle updates used by IntegrationService.
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument

from .base import BaseRepository, bson_now, to_object_id
from .connection import CONNECTIONS_COLLECTION
from ..models.connection import IntegrationConnection
from ..utils.observability import logger


class ConnectionStore(ABC):
    """
    Abstract connection registry.

    The posting queue only reads from it (`find_by_id`, `find_by_status`);
    the remaining operations back the integration management endpoints.
    """

    @abstractmethod
    async def create(self, connection: IntegrationConnection) -> IntegrationConnection:
        """Persist a new connection and return it with `id` populated."""
        pass

    @abstractmethod
    async def find_by_id(self, connection_id: str) -> Optional[IntegrationConnection]:
        """Point lookup; None when absent."""
        pass

    @abstractmethod
    async def find_by_tenant(self, tenant_id: str) -> List[IntegrationConnection]:
        """All connections of a tenant, ordered by name."""
        pass

    @abstractmethod
    async def find_by_status(self, status: str) -> List[IntegrationConnection]:
        """All connections in `status`, across tenants."""
        pass

    @abstractmethod
    async def update_status(
        self,
        connection_id: str,
        status: str,
        error_message: Optional[str] = None
    ) -> Optional[IntegrationConnection]:
        """Set status and error message, stamping `last_sync_at`."""
        pass

    @abstractmethod
    async def update_config(
        self,
        connection_id: str,
        config_json: Dict[str, Any]
    ) -> Optional[IntegrationConnection]:
        """Replace the stored configuration blob."""
        pass


class MongoConnectionRepository(BaseRepository[IntegrationConnection], ConnectionStore):
    """MongoDB-backed connection registry."""

    def __init__(self, database: AsyncIOMotorDatabase):
        super().__init__(database, CONNECTIONS_COLLECTION, IntegrationConnection)

    async def find_by_tenant(self, tenant_id: str) -> List[IntegrationConnection]:
        return await self.find_many(
            {"tenant_id": tenant_id},
            limit=1000,
            sort=[("name", 1)]
        )

    async def find_by_status(self, status: str) -> List[IntegrationConnection]:
        return await self.find_many({"status": status}, limit=1000, sort=[("created_at", 1)])

    async def update_status(
        self,
        connection_id: str,
        status: str,
        error_message: Optional[str] = None
    ) -> Optional[IntegrationConnection]:
        now = bson_now()
        connection = await self._update(connection_id, {
            "status": status,
            "error_message": error_message,
            "last_sync_at": now,
            "updated_at": now,
        })
        if connection:
            logger.info(
                f"Connection {connection_id} -> {status}",
                extra={"connection_id": connection_id, "status": status}
            )
        return connection

    async def update_config(
        self,
        connection_id: str,
        config_json: Dict[str, Any]
    ) -> Optional[IntegrationConnection]:
        return await self._update(connection_id, {
            "config_json": config_json,
            "updated_at": bson_now(),
        })

    async def _update(self, connection_id: str, fields: Dict[str, Any]) -> Optional[IntegrationConnection]:
        object_id = to_object_id(connection_id)
        if object_id is None:
            return None

        doc = await self.collection.find_one_and_update(
            {"_id": object_id},
            {"$set": fields},
            return_document=ReturnDocument.AFTER
        )
        return self._to_model(doc)
