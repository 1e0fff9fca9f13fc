"""
JSON payloads for documents.

``document_payload`` renders a Document as the camelCase dict returned to
API callers.  The number field is named per type (``estimateNumber``,
``invoiceNumber`` ...) and every monetary value is a decimal string so no
precision is lost in transit.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any

from billing_kernel.db.types import decimal_to_str
from billing_kernel.models.document import Document, DocumentLineItem


def _date(value: date | datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _money(value: Decimal | None) -> str:
    return decimal_to_str(value if value is not None else Decimal("0"))


def line_item_payload(item: DocumentLineItem) -> dict[str, Any]:
    return {
        "id": str(item.id),
        "name": item.name,
        "quantity": decimal_to_str(item.quantity),
        "unit": item.unit,
        "unitPrice": decimal_to_str(item.unit_price),
        "taxType": item.tax_type.value,
        "taxRate": decimal_to_str(item.tax_rate),
        "amount": decimal_to_str(item.amount),
        "remarks": item.remarks,
        "displayOrder": item.display_order,
    }


def document_payload(document: Document) -> dict[str, Any]:
    """The API representation of ``document`` and its items."""
    document_type = document.document_type
    payload: dict[str, Any] = {
        "id": str(document.id),
        "documentType": document_type.value,
        document_type.number_field: document.document_number,
        "status": document.status,
        document_type.counterparty_field: document.counterparty_id,
        "honorific": document.honorific,
        "subject": document.subject,
        "issueDate": _date(document.issue_date),
        "validUntil": _date(document.valid_until),
        "dueDate": _date(document.due_date),
        "deliveryDate": _date(document.delivery_date),
        "paidDate": _date(document.paid_date),
        "deliveryLocation": document.delivery_location,
        "paymentTerms": document.payment_terms,
        "taxType": document.tax_type.value,
        "taxRate": decimal_to_str(document.tax_rate),
        "roundingType": document.rounding_type.value,
        "subtotal": _money(document.subtotal),
        "taxAmount": _money(document.tax_amount),
        "taxAmount8": _money(document.tax_amount_8),
        "taxAmount10": _money(document.tax_amount_10),
        "totalAmount": _money(document.total_amount),
        "remarks": document.remarks,
        "sourceDocumentId": (
            str(document.source_document_id) if document.source_document_id else None
        ),
        "items": [
            line_item_payload(item)
            for item in sorted(document.items, key=lambda i: i.display_order)
        ],
    }
    return payload
