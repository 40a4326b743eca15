"""Request and response bodies for the integrations API."""
from posting_queue.api.models.requests import ConnectRequest, PostDocumentRequest, PostDocumentResponse

__all__ = ["ConnectRequest", "PostDocumentRequest", "PostDocumentResponse"]
