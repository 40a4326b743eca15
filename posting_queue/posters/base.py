"""
Poster Interface

A poster performs the remote call that delivers one finance document to
one kind of external accounting system.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict

from posting_queue.models.connection import IntegrationConnection
from posting_queue.models.posting import PostResult


class Poster(ABC):
    """
    Delivery implementation for one integration type.

    Implementations report business failures as PostResult(success=False)
    rather than raising. The dispatcher still converts any exception that
    escapes into a failure result.
    """

    integration_type: str

    @abstractmethod
    async def post(
        self,
        connection: IntegrationConnection,
        doc_type: str,
        payload: Dict[str, Any]
    ) -> PostResult:
        """
        Deliver a document.

        Args:
            connection: The CONNECTED integration, including its config blob
            doc_type: Source document type (e.g. "INVOICE")
            payload: Document data, opaque to the queue

        Returns:
            PostResult with the remote reference on success
        """
        pass
