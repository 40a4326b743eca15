"""
Pydantic models for integration API request and response bodies.
"""
from pydantic import BaseModel, Field
from typing import Any, Dict, Optional


class ConnectRequest(BaseModel):
    """
    Body of POST /integrations/{type}/connect.

    When `auth_data` is given the connection is marked CONNECTED with the
    credentials merged into its configuration.
    """
    name: Optional[str] = Field(None, description="Display name, defaults to the integration type")
    auth_data: Optional[Dict[str, Any]] = Field(
        None,
        description="Credentials and endpoint settings (access_token, base_url, ...)"
    )


class PostDocumentRequest(BaseModel):
    """Body of POST /integrations/post/{doc_type}/{doc_id}."""
    integration_id: str = Field(..., description="Target integration connection")
    payload: Dict[str, Any] = Field(default_factory=dict, description="Document body to deliver")


class PostDocumentResponse(BaseModel):
    """Outcome of an immediate post attempt."""
    success: bool
    external_ref: Optional[str] = None
    error: Optional[str] = None
    queue_item_id: str
    skipped: bool = False
