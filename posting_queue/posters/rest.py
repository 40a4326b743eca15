"""
HTTP Ledger Poster

Shared httpx-based delivery for REST accounting APIs. Subclasses provide
the endpoint per document type and how to read the remote reference.
"""

from typing import Any, Dict, Optional

import httpx

from posting_queue.config import get_settings
from posting_queue.models.connection import IntegrationConnection
from posting_queue.models.posting import PostResult
from posting_queue.posters.base import Poster
from posting_queue.utils.observability import logger


class HttpLedgerPoster(Poster):
    """
    POSTs the document as JSON to `config_json["base_url"] + endpoint`.

    Connection config keys:
        base_url: API root of the tenant's ledger
        access_token: Bearer token stored on connect
    """

    integration_type = "http"
    endpoints: Dict[str, str] = {}

    def __init__(
        self,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self._timeout = timeout if timeout is not None else get_settings().poster_timeout_seconds
        self._transport = transport

    async def post(
        self,
        connection: IntegrationConnection,
        doc_type: str,
        payload: Dict[str, Any]
    ) -> PostResult:
        path = self.endpoints.get(doc_type)
        if not path:
            return PostResult.failure(
                f"Document type {doc_type} is not supported by {self.integration_type}"
            )

        base_url = connection.config_json.get("base_url")
        if not base_url:
            return PostResult.failure(f"{self.integration_type} connection has no base_url configured")

        try:
            async with httpx.AsyncClient(
                base_url=base_url,
                timeout=self._timeout,
                transport=self._transport
            ) as client:
                response = await client.post(
                    path,
                    json=self.build_body(doc_type, payload),
                    headers=self.build_headers(connection)
                )
                response.raise_for_status()
                body = response.json()

        except httpx.HTTPStatusError as e:
            logger.bind(
                integration_id=connection.id,
                status_code=e.response.status_code,
                response=e.response.text[:500],
            ).warning(f"{self.integration_type} rejected {doc_type}")
            return PostResult.failure(
                f"{self.integration_type} rejected {doc_type}: HTTP {e.response.status_code}"
            )
        except httpx.HTTPError as e:
            return PostResult.failure(f"{self.integration_type} request failed: {e}")
        except ValueError:
            return PostResult.failure(f"{self.integration_type} returned a non-JSON response")

        external_ref = self.extract_reference(doc_type, body)
        if not external_ref:
            return PostResult.failure(f"{self.integration_type} response did not include a document reference")

        return PostResult.ok(external_ref)

    def build_headers(self, connection: IntegrationConnection) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        token = connection.config_json.get("access_token")
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    def build_body(self, doc_type: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        return payload

    def extract_reference(self, doc_type: str, body: Any) -> Optional[str]:
        if isinstance(body, dict) and body.get("id") is not None:
            return str(body["id"])
        return None
