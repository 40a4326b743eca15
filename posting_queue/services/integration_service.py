"""
Integration Service
Lifecycle of per-tenant integration connections.
"""
from typing import Any, Dict, List, Optional

from posting_queue.exceptions import ConnectionNotFound
from posting_queue.models.connection import ConnectionStatus, IntegrationConnection
from posting_queue.repositories.connections import ConnectionStore
from posting_queue.utils.observability import logger


class IntegrationService:
    """
    Creates, connects and disconnects integration connections.

    Connecting does not perform an OAuth exchange: the caller supplies the
    credentials, which are merged into `config_json`.
    """

    def __init__(self, connections: ConnectionStore):
        self.connections = connections

    async def create_connection(
        self,
        tenant_id: str,
        integration_type: str,
        name: Optional[str] = None,
        config_json: Optional[Dict[str, Any]] = None
    ) -> IntegrationConnection:
        connection = await self.connections.create(IntegrationConnection(
            tenant_id=tenant_id,
            type=integration_type,
            name=name or integration_type.capitalize(),
            config_json=config_json or {},
        ))
        logger.info(
            f"Created {integration_type} connection {connection.id}",
            extra={"tenant_id": tenant_id, "connection_id": connection.id}
        )
        return connection

    async def get_connection(self, connection_id: str) -> IntegrationConnection:
        connection = await self.connections.find_by_id(connection_id)
        if not connection:
            raise ConnectionNotFound(connection_id)
        return connection

    async def list_connections(self, tenant_id: str) -> List[IntegrationConnection]:
        return await self.connections.find_by_tenant(tenant_id)

    async def update_connection_status(
        self,
        connection_id: str,
        status: str,
        error_message: Optional[str] = None
    ) -> IntegrationConnection:
        """
        Raises:
            ValueError: If `status` is not a connection status
            ConnectionNotFound: If the connection does not exist
        """
        status = ConnectionStatus(status).value
        connection = await self.connections.update_status(connection_id, status, error_message)
        if not connection:
            raise ConnectionNotFound(connection_id)
        return connection

    async def update_connection_config(
        self,
        connection_id: str,
        config_json: Dict[str, Any]
    ) -> IntegrationConnection:
        connection = await self.connections.update_config(connection_id, config_json)
        if not connection:
            raise ConnectionNotFound(connection_id)
        return connection

    async def ensure_connection(
        self,
        tenant_id: str,
        integration_type: str,
        name: Optional[str] = None
    ) -> IntegrationConnection:
        """Return the tenant's connection of this type, creating it when absent."""
        for connection in await self.connections.find_by_tenant(tenant_id):
            if connection.type == integration_type:
                return connection
        return await self.create_connection(tenant_id, integration_type, name)

    async def connect(self, connection_id: str, auth_data: Dict[str, Any]) -> IntegrationConnection:
        """
        Mark a connection CONNECTED.

        `auth_data` is merged over the stored configuration; keys it does
        not mention are kept.
        """
        connection = await self.get_connection(connection_id)
        await self.update_connection_config(connection_id, {**connection.config_json, **auth_data})
        connection = await self.update_connection_status(connection_id, ConnectionStatus.CONNECTED)

        logger.info(
            f"Connected {connection.type} connection {connection_id}",
            extra={"tenant_id": connection.tenant_id, "connection_id": connection_id}
        )
        return connection

    async def disconnect(self, connection_id: str) -> IntegrationConnection:
        connection = await self.update_connection_status(connection_id, ConnectionStatus.DISCONNECTED)
        logger.info(
            f"Disconnected connection {connection_id}",
            extra={"tenant_id": connection.tenant_id, "connection_id": connection_id}
        )
        return connection
