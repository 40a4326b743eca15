"""
Bundled ledger posters for Xero and Sage Business Cloud Accounting.
"""

from typing import Any, Dict, Optional

from posting_queue.models.connection import IntegrationConnection, IntegrationType
from posting_queue.models.posting import DocumentType
from posting_queue.posters.dispatcher import PosterDispatcher
from posting_queue.posters.rest import HttpLedgerPoster


class XeroPoster(HttpLedgerPoster):
    """Xero Accounting API: documents are wrapped in plural collections."""

    integration_type = IntegrationType.XERO.value
    endpoints = {
        DocumentType.INVOICE: "/api.xro/2.0/Invoices",
        DocumentType.CREDIT_NOTE: "/api.xro/2.0/CreditNotes",
    }
    _collections = {
        DocumentType.INVOICE: ("Invoices", "InvoiceID"),
        DocumentType.CREDIT_NOTE: ("CreditNotes", "CreditNoteID"),
    }

    def build_headers(self, connection: IntegrationConnection) -> Dict[str, str]:
        headers = super().build_headers(connection)
        xero_tenant = connection.config_json.get("xero_tenant_id")
        if xero_tenant:
            headers["Xero-tenant-id"] = str(xero_tenant)
        return headers

    def build_body(self, doc_type: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        collection, _ = self._collections[doc_type]
        return {collection: [payload]}

    def extract_reference(self, doc_type: str, body: Any) -> Optional[str]:
        collection, id_field = self._collections[doc_type]
        documents = body.get(collection) if isinstance(body, dict) else None
        if not documents:
            return None
        reference = documents[0].get(id_field)
        return str(reference) if reference else None


class SagePoster(HttpLedgerPoster):
    """Sage Accounting v3.1: documents are wrapped in a singular key."""

    integration_type = IntegrationType.SAGE.value
    endpoints = {
        DocumentType.INVOICE: "/accounts/v3.1/sales_invoices",
        DocumentType.CREDIT_NOTE: "/accounts/v3.1/sales_credit_notes",
    }
    _wrappers = {
        DocumentType.INVOICE: "sales_invoice",
        DocumentType.CREDIT_NOTE: "sales_credit_note",
    }

    def build_body(self, doc_type: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        return {self._wrappers[doc_type]: payload}


def build_default_dispatcher() -> PosterDispatcher:
    """Dispatcher with every bundled poster registered."""
    return PosterDispatcher([XeroPoster(), SagePoster()])
