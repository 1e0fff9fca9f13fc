"""Read-only query selectors."""

from billing_kernel.selectors.document_selector import DocumentSelector
from billing_kernel.selectors.payload import document_payload, line_item_payload

__all__ = ["DocumentSelector", "document_payload", "line_item_payload"]
