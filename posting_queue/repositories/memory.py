"""
In-Memory Connection Registry

Dict-backed registry for tests and single-process deployments.
Data is lost on restart.
"""
import asyncio
import uuid
from typing import Any, Dict, List, Optional

from ..models.base import utcnow
from ..models.connection import IntegrationConnection
from .connections import ConnectionStore


class InMemoryConnectionStore(ConnectionStore):
    """In-memory implementation of the connection registry."""

    def __init__(self):
        self._connections: dict[str, IntegrationConnection] = {}
        self._lock = asyncio.Lock()

    async def create(self, connection: IntegrationConnection) -> IntegrationConnection:
        async with self._lock:
            now = utcnow()
            stored = connection.model_copy(deep=True, update={
                "id": connection.id or str(uuid.uuid4()),
                "created_at": now,
                "updated_at": now,
            })
            self._connections[stored.id] = stored
            return stored.model_copy(deep=True)

    async def find_by_id(self, connection_id: str) -> Optional[IntegrationConnection]:
        async with self._lock:
            connection = self._connections.get(connection_id)
            return connection.model_copy(deep=True) if connection else None

    async def find_by_tenant(self, tenant_id: str) -> List[IntegrationConnection]:
        async with self._lock:
            found = [c for c in self._connections.values() if c.tenant_id == tenant_id]
            return [c.model_copy(deep=True) for c in sorted(found, key=lambda c: c.name)]

    async def find_by_status(self, status: str) -> List[IntegrationConnection]:
        async with self._lock:
            found = [c for c in self._connections.values() if c.status == status]
            return [c.model_copy(deep=True) for c in sorted(found, key=lambda c: c.created_at)]

    async def update_status(
        self,
        connection_id: str,
        status: str,
        error_message: Optional[str] = None
    ) -> Optional[IntegrationConnection]:
        now = utcnow()
        return await self._update(connection_id, {
            "status": status,
            "error_message": error_message,
            "last_sync_at": now,
            "updated_at": now,
        })

    async def update_config(
        self,
        connection_id: str,
        config_json: Dict[str, Any]
    ) -> Optional[IntegrationConnection]:
        return await self._update(connection_id, {
            "config_json": dict(config_json),
            "updated_at": utcnow(),
        })

    async def _update(self, connection_id: str, fields: Dict[str, Any]) -> Optional[IntegrationConnection]:
        async with self._lock:
            connection = self._connections.get(connection_id)
            if not connection:
                return None
            updated = connection.model_copy(update=fields)
            self._connections[connection_id] = updated
            return updated.model_copy(deep=True)
