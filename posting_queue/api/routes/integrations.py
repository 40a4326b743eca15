"""
Integration Endpoints

Connection management and the posting queue, scoped to the tenant in the
X-Tenant-ID header. Rows that belong to another tenant answer 404.
"""
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from loguru import logger

from posting_queue.api.dependencies import (
    get_integration_service,
    get_posting_service,
    get_tenant_id,
)
from posting_queue.api.models import ConnectRequest, PostDocumentRequest, PostDocumentResponse
from posting_queue.exceptions import ConnectionNotFound, QueueItemNotFound
from posting_queue.models import IntegrationConnection, PostingQueueItem, PostingStatus
from posting_queue.services import IntegrationService, PostingQueueService

router = APIRouter(prefix="/integrations", tags=["Integrations"])


def _connection_view(connection: IntegrationConnection) -> Dict[str, Any]:
    # Credentials stay server-side
    view = connection.model_dump(mode="json", exclude={"config_json"})
    view["config_keys"] = sorted(connection.config_json)
    return view


def _item_view(item: PostingQueueItem) -> Dict[str, Any]:
    return item.model_dump(mode="json")


async def _tenant_connection(
    service: IntegrationService,
    connection_id: str,
    tenant_id: str
) -> IntegrationConnection:
    connection = await service.get_connection(connection_id)
    if connection.tenant_id != tenant_id:
        raise ConnectionNotFound(connection_id)
    return connection


async def _tenant_item(service: PostingQueueService, item_id: str, tenant_id: str) -> PostingQueueItem:
    item = await service.get_queue_item(item_id)
    if item.tenant_id != tenant_id:
        raise QueueItemNotFound(item_id)
    return item


@router.get("")
async def list_integrations(
    tenant_id: str = Depends(get_tenant_id),
    service: IntegrationService = Depends(get_integration_service)
):
    """List the tenant's integration connections."""
    connections = await service.list_connections(tenant_id)
    return {"data": [_connection_view(c) for c in connections]}


@router.post("/{integration_type}/connect")
async def connect_integration(
    integration_type: str,
    body: Optional[ConnectRequest] = None,
    tenant_id: str = Depends(get_tenant_id),
    service: IntegrationService = Depends(get_integration_service)
):
    """
    Create (or reuse) the tenant's connection for an integration type.

    With `auth_data` the connection is also connected; without it the
    connection is left as it is, ready for a later connect call.
    """
    body = body or ConnectRequest()
    connection = await service.ensure_connection(tenant_id, integration_type, body.name)

    if body.auth_data:
        connection = await service.connect(connection.id, body.auth_data)

    return _connection_view(connection)


# ============================================
# POSTING QUEUE
# Declared before /{connection_id} so the literal paths win
# ============================================

@router.get("/posting-queue")
async def list_posting_queue(
    status: Optional[PostingStatus] = Query(None),
    page: int = Query(1),
    limit: Optional[int] = Query(None),
    tenant_id: str = Depends(get_tenant_id),
    service: PostingQueueService = Depends(get_posting_service)
):
    """
    Paginated view of the tenant's posting queue, newest first.

    `page` is clamped to >= 1 and `limit` to the configured maximum.
    """
    result = await service.list_queue(
        tenant_id,
        status=status.value if status else None,
        page=page,
        limit=limit
    )
    return result.model_dump(mode="json")


@router.get("/posting-queue/{item_id}")
async def get_posting_queue_item(
    item_id: str,
    tenant_id: str = Depends(get_tenant_id),
    service: PostingQueueService = Depends(get_posting_service)
):
    item = await _tenant_item(service, item_id, tenant_id)
    return _item_view(item)


@router.post("/posting-queue/{item_id}/retry")
async def retry_posting_queue_item(
    item_id: str,
    tenant_id: str = Depends(get_tenant_id),
    service: PostingQueueService = Depends(get_posting_service)
):
    """
    Reset a RETRYING or FAILED item to PENDING for the next sweep.

    SUCCESS and PROCESSING items answer 409.
    """
    await _tenant_item(service, item_id, tenant_id)
    item = await service.retry(item_id)
    return _item_view(item)


@router.post("/post/{doc_type}/{doc_id}", response_model=PostDocumentResponse)
async def post_document(
    doc_type: str,
    doc_id: str,
    body: PostDocumentRequest,
    tenant_id: str = Depends(get_tenant_id),
    posting_service: PostingQueueService = Depends(get_posting_service),
    integration_service: IntegrationService = Depends(get_integration_service)
):
    """
    Enqueue a document and attempt delivery now.

    Posting the same document again returns the existing row's outcome;
    a document that already succeeded is never sent twice.
    """
    await _tenant_connection(integration_service, body.integration_id, tenant_id)

    delivery = await posting_service.submit_document(
        tenant_id,
        body.integration_id,
        doc_type,
        doc_id,
        body.payload
    )
    item = delivery.item

    if delivery.result is not None:
        response = PostDocumentResponse(
            success=delivery.result.success,
            external_ref=delivery.result.external_ref,
            error=delivery.result.error,
            queue_item_id=item.id,
            skipped=delivery.skipped,
        )
    else:
        # Claim not granted: report the row as it stands
        response = PostDocumentResponse(
            success=item.status == PostingStatus.SUCCESS,
            external_ref=item.external_ref,
            error=item.last_error,
            queue_item_id=item.id,
            skipped=True,
        )

    logger.bind(
        tenant_id=tenant_id,
        queue_item_id=item.id,
        status=item.status,
        skipped=response.skipped,
    ).info(f"Post request for {doc_type} {doc_id} finished")
    return response


# ============================================
# CONNECTIONS BY ID
# ============================================

@router.get("/{connection_id}")
async def get_integration(
    connection_id: str,
    tenant_id: str = Depends(get_tenant_id),
    service: IntegrationService = Depends(get_integration_service)
):
    connection = await _tenant_connection(service, connection_id, tenant_id)
    return _connection_view(connection)


@router.post("/{connection_id}/disconnect")
async def disconnect_integration(
    connection_id: str,
    tenant_id: str = Depends(get_tenant_id),
    service: IntegrationService = Depends(get_integration_service)
):
    """Disconnect a connection; its queued items wait until it reconnects."""
    await _tenant_connection(service, connection_id, tenant_id)
    connection = await service.disconnect(connection_id)
    return _connection_view(connection)
