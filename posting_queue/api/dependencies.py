"""
FastAPI Dependencies

Reusable dependencies for tenant resolution and service access.
"""

from fastapi import Request, HTTPException, status, Header
from typing import Optional
from loguru import logger

from posting_queue.services import IntegrationService, PostingQueueService


async def get_tenant_id(x_tenant_id: Optional[str] = Header(None)) -> str:
    """
    Resolve the calling tenant from the X-Tenant-ID header.

    Authentication happens upstream; this only requires the header to be
    present and non-blank.

    Raises:
        HTTPException: 400 if the header is missing
    """
    if not x_tenant_id or not x_tenant_id.strip():
        logger.warning("🚫 Missing X-Tenant-ID header")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing X-Tenant-ID header"
        )
    return x_tenant_id.strip()


def get_posting_service(request: Request) -> PostingQueueService:
    return request.app.state.posting_service


def get_integration_service(request: Request) -> IntegrationService:
    return request.app.state.integration_service
