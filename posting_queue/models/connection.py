from enum import StrEnum
from typing import Any, Dict, Optional
from pydantic import Field
from posting_queue.models.base import MongoBaseModel, UTCDateTime


class ConnectionStatus(StrEnum):
    CONNECTED = "CONNECTED"
    DISCONNECTED = "DISCONNECTED"
    ERROR = "ERROR"


class IntegrationType(StrEnum):
    """Integration kinds that ship with a poster. The set is open-ended."""
    XERO = "xero"
    SAGE = "sage"


class IntegrationConnection(MongoBaseModel):
    """
    A tenant's link to an external accounting system.

    `type` is a plain string: unknown kinds are stored as-is and rejected
    at dispatch time.
    """
    tenant_id: str
    type: str
    name: str
    status: str = ConnectionStatus.DISCONNECTED.value
    config_json: Dict[str, Any] = Field(default_factory=dict)
    last_sync_at: Optional[UTCDateTime] = None
    error_message: Optional[str] = None

    @property
    def is_connected(self) -> bool:
        return self.status == ConnectionStatus.CONNECTED
