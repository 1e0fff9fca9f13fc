"""
Tests for DocumentOrchestrator (billing_kernel/services/document_orchestrator.py).

Every operation runs in one transaction: success commits, any failure rolls
back and comes back as a DocumentResult rather than an exception.
"""

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from billing_kernel.domain.tax import UnsupportedRatePolicy
from billing_kernel.domain.values import DocumentType
from billing_kernel.models.document import Document
from billing_kernel.services.document_orchestrator import (
    DocumentOperationStatus,
    DocumentOrchestrator,
)
from tests.conftest import make_item, make_payload

JST = timezone(timedelta(hours=9))


class TestCreate:
    """create_document"""

    def test_create_estimate(self, orchestrator, test_actor_id):
        result = orchestrator.create_document(
            "estimate",
            make_payload(
                items=[
                    make_item(quantity="2", unit_price="5000"),
                    make_item(name="交通費", unit_price="3000"),
                ]
            ),
            test_actor_id,
        )

        assert result.is_success
        assert result.status is DocumentOperationStatus.CREATED
        assert result.document_number == "2024-03-001"
        payload = result.payload
        assert payload["estimateNumber"] == "2024-03-001"
        assert payload["subtotal"] == "13000"
        assert payload["taxAmount"] == "1300"
        assert payload["totalAmount"] == "14300"
        assert payload["issueDate"] == "2024-03-15"
        assert payload["validUntil"] == "2024-04-14"

    def test_numbers_increment_per_type(self, create_document):
        assert create_document().document_number == "2024-03-001"
        assert create_document().document_number == "2024-03-002"
        assert create_document("invoice").document_number == "INV-202403-0001"

    def test_invoice_defaults(self, create_document):
        payload = create_document("invoice").payload
        assert payload["honorific"] == "御中"
        assert payload["dueDate"] == "2024-04-30"
        assert payload["status"] == "draft"

    def test_validation_failure_reports_every_field(self, orchestrator, session, test_actor_id):
        result = orchestrator.create_document(
            "estimate",
            make_payload(items=[make_item(quantity="abc"), make_item(unit_price="")]),
            test_actor_id,
        )

        assert not result.is_success
        assert result.status is DocumentOperationStatus.VALIDATION_FAILED
        assert result.error_code == "VALIDATION_ERROR"
        assert {(e.index, e.field) for e in result.errors} == {(0, "quantity"), (1, "unitPrice")}
        assert session.query(Document).count() == 0

    def test_unknown_document_type(self, orchestrator, test_actor_id):
        result = orchestrator.create_document("quote", make_payload(), test_actor_id)
        assert result.status is DocumentOperationStatus.VALIDATION_FAILED
        assert result.errors[0].field == "documentType"

    def test_failed_create_consumes_no_number(self, orchestrator, create_document, test_actor_id):
        create_document()
        failed = orchestrator.create_document(
            "estimate", make_payload(subject=""), test_actor_id
        )
        assert not failed.is_success
        assert create_document().document_number == "2024-03-002"

    def test_reject_policy(self, session, billing_config, deterministic_clock, test_actor_id):
        orchestrator = DocumentOrchestrator(
            session,
            replace(billing_config, unsupported_rate_policy=UnsupportedRatePolicy.REJECT),
            deterministic_clock,
        )
        result = orchestrator.create_document(
            "estimate", make_payload(items=[make_item(tax_rate="5")]), test_actor_id
        )

        assert result.status is DocumentOperationStatus.UNSUPPORTED_TAX_RATE
        assert result.errors[0].index == 0
        assert result.errors[0].field == "taxRate"
        assert session.query(Document).count() == 0

    def test_exclude_policy_keeps_item_in_subtotal(self, create_document):
        payload = create_document(
            items=[make_item(tax_rate="5"), make_item(unit_price="500")]
        ).payload
        assert payload["subtotal"] == "1500"
        assert payload["taxAmount"] == "50"
        assert payload["totalAmount"] == "1550"

    def test_rate_finer_than_stored_precision_rejected(self, orchestrator, session, test_actor_id):
        result = orchestrator.create_document(
            "estimate",
            make_payload(items=[make_item(unit_price="10000", tax_rate="8.001")]),
            test_actor_id,
        )

        assert result.status is DocumentOperationStatus.VALIDATION_FAILED
        assert {(e.index, e.field) for e in result.errors} == {(0, "taxRate")}
        assert session.query(Document).count() == 0

    def test_total_beyond_amount_column_rejected(self, orchestrator, session, test_actor_id):
        largest = "9" * 29
        result = orchestrator.create_document(
            "estimate",
            make_payload(items=[make_item(unit_price=largest), make_item(unit_price=largest)]),
            test_actor_id,
        )

        assert result.status is DocumentOperationStatus.VALIDATION_FAILED
        assert result.errors[0].field == "totalAmount"
        assert session.query(Document).count() == 0


class TestDuplicate:
    """duplicate_document"""

    def test_copy_has_new_number_and_same_totals(self, orchestrator, create_document, test_actor_id):
        source = create_document(
            items=[make_item(unit_price="105", tax_rate="8"), make_item(unit_price="1005")]
        )

        copy = orchestrator.duplicate_document(source.document_id, test_actor_id)

        assert copy.is_success
        assert copy.document_number == "2024-03-002"
        assert copy.document_id != source.document_id
        for key in ("subtotal", "taxAmount", "taxAmount8", "taxAmount10", "totalAmount"):
            assert copy.payload[key] == source.payload[key]
        assert [i["name"] for i in copy.payload["items"]] == [
            i["name"] for i in source.payload["items"]
        ]

    def test_duplicate_invoice_subject_suffix(self, orchestrator, create_document, test_actor_id):
        source = create_document("invoice")
        copy = orchestrator.duplicate_document(source.document_id, test_actor_id)
        assert copy.payload["subject"] == "Webサイト制作 (複製)"

    def test_duplicate_invoice_uses_monthly_layout(
        self, orchestrator, create_document, test_actor_id
    ):
        source = create_document("invoice")
        copy = orchestrator.duplicate_document(source.document_id, test_actor_id)
        assert source.document_number == "INV-202403-0001"
        assert copy.document_number == "2024-03-001"

    def test_missing_source(self, orchestrator, test_actor_id):
        result = orchestrator.duplicate_document(uuid4(), test_actor_id)
        assert result.status is DocumentOperationStatus.NOT_FOUND
        assert result.error_code == "DOCUMENT_NOT_FOUND"


class TestDerive:
    """derive_document"""

    def test_invoice_from_estimate(self, orchestrator, create_document, test_actor_id):
        estimate = create_document(items=[make_item(quantity="2", unit_price="5000")])

        result = orchestrator.derive_document(estimate.document_id, "invoice", test_actor_id)

        assert result.is_success
        assert result.document_number == "INV-202403-0001"
        assert result.payload["invoiceNumber"] == "INV-202403-0001"
        assert result.payload["sourceDocumentId"] == str(estimate.document_id)
        assert result.payload["totalAmount"] == estimate.payload["totalAmount"]

    def test_invoice_retaxes_eight_percent_items(self, orchestrator, create_document, test_actor_id):
        estimate = create_document(items=[make_item(unit_price="1000", tax_rate="8")])
        assert estimate.payload["taxAmount8"] == "80"

        invoice = orchestrator.derive_document(estimate.document_id, "invoice", test_actor_id)

        assert invoice.payload["taxAmount8"] == "0"
        assert invoice.payload["taxAmount10"] == "100"
        assert invoice.payload["items"][0]["taxRate"] == "10"

    def test_second_invoice_is_a_conflict_and_rolls_back(
        self, orchestrator, create_document, test_actor_id
    ):
        first_estimate = create_document()
        second_estimate = create_document()
        orchestrator.derive_document(first_estimate.document_id, "invoice", test_actor_id)

        conflict = orchestrator.derive_document(
            first_estimate.document_id, "invoice", test_actor_id
        )

        assert conflict.status is DocumentOperationStatus.DERIVATION_CONFLICT
        assert conflict.to_dict()["error"] == "DERIVATION_CONFLICT"
        other = orchestrator.derive_document(second_estimate.document_id, "invoice", test_actor_id)
        assert other.document_number == "INV-202403-0002"

    def test_purchase_order_uses_supplier_and_prefix(
        self, orchestrator, create_document, test_actor_id
    ):
        estimate = create_document()
        result = orchestrator.derive_document(
            estimate.document_id, DocumentType.PURCHASE_ORDER, test_actor_id
        )
        assert result.payload["orderNumber"] == "PO-202403-0001"
        assert result.payload["supplierId"] == "cust-001"
        assert result.payload["deliveryLocation"] == "貴社指定場所"

    def test_delivery_note_uses_monthly_number(self, orchestrator, create_document, test_actor_id):
        estimate = create_document()
        result = orchestrator.derive_document(estimate.document_id, "delivery_note", test_actor_id)
        assert result.payload["deliveryNoteNumber"] == "2024-03-001"
        assert result.payload["deliveryDate"] == "2024-03-15"

    def test_source_must_be_estimate(self, orchestrator, create_document, test_actor_id):
        invoice = create_document("invoice")
        result = orchestrator.derive_document(invoice.document_id, "delivery_note", test_actor_id)
        assert result.status is DocumentOperationStatus.INVALID_DERIVATION


class TestReplaceItems:
    def test_totals_recomputed(self, orchestrator, create_document, test_actor_id):
        created = create_document()

        result = orchestrator.replace_items(
            created.document_id,
            [make_item(unit_price="3333")],
            test_actor_id,
            {"taxType": "exclusive", "taxRate": "10", "roundingType": "ceil"},
        )

        assert result.status is DocumentOperationStatus.UPDATED
        assert result.document_number == created.document_number
        assert result.payload["taxAmount"] == "334"
        assert result.payload["roundingType"] == "ceil"

    def test_invalid_items_leave_document_unchanged(
        self, orchestrator, create_document, test_actor_id
    ):
        created = create_document()

        result = orchestrator.replace_items(
            created.document_id, [make_item(quantity="-1")], test_actor_id
        )

        assert result.status is DocumentOperationStatus.VALIDATION_FAILED
        current = orchestrator.get_document(created.document_id)
        assert current.payload["totalAmount"] == created.payload["totalAmount"]
        assert len(current.payload["items"]) == 1


class TestStatusAndDelete:
    def test_paid_sets_paid_date(self, orchestrator, create_document, test_actor_id):
        invoice = create_document("invoice")
        result = orchestrator.change_status(invoice.document_id, "paid", test_actor_id)
        assert result.payload["status"] == "paid"
        assert result.payload["paidDate"] == "2024-03-15"

    def test_invalid_status(self, orchestrator, create_document, test_actor_id):
        estimate = create_document()
        result = orchestrator.change_status(estimate.document_id, "paid", test_actor_id)
        assert result.status is DocumentOperationStatus.INVALID_STATUS
        assert orchestrator.get_document(estimate.document_id).payload["status"] == "draft"

    def test_deleted_number_never_reissued(self, orchestrator, create_document, test_actor_id):
        create_document()
        latest = create_document()

        deleted = orchestrator.delete_document(latest.document_id, test_actor_id)

        assert deleted.status is DocumentOperationStatus.DELETED
        assert orchestrator.get_document(latest.document_id).status is DocumentOperationStatus.NOT_FOUND
        assert create_document().document_number == "2024-03-003"

    def test_get_document(self, orchestrator, create_document):
        created = create_document()
        found = orchestrator.get_document(created.document_id)
        assert found.status is DocumentOperationStatus.FOUND
        assert found.payload == created.payload


class TestResultAndLogging:
    def test_failure_body(self, orchestrator, test_actor_id):
        body = orchestrator.delete_document(uuid4(), test_actor_id).to_dict()
        assert body["success"] is False
        assert body["status"] == "not_found"
        assert body["error"] == "DOCUMENT_NOT_FOUND"
        assert body["details"] == []

    def test_success_body(self, create_document):
        body = create_document().to_dict()
        assert body["success"] is True
        assert body["document"]["estimateNumber"] == "2024-03-001"

    def test_operation_lifecycle_logged(self, orchestrator, test_actor_id, captured_logs):
        orchestrator.create_document("estimate", make_payload(), test_actor_id)

        logs = captured_logs()
        messages = [r["message"] for r in logs]
        for event in (
            "document_operation_started",
            "sequence_allocated",
            "document_inserted",
            "transaction_committed",
            "document_operation_completed",
        ):
            assert event in messages

        started = next(r for r in logs if r["message"] == "document_operation_started")
        completed = next(r for r in logs if r["message"] == "document_operation_completed")
        assert started["correlation_id"] == completed["correlation_id"]
        assert started["operation"] == "create"
        assert started["actor_id"] == str(test_actor_id)
        assert completed["document_number"] == "2024-03-001"

    def test_failure_logged_with_code(self, orchestrator, test_actor_id, captured_logs):
        orchestrator.change_status(uuid4(), "sent", test_actor_id)

        messages = [r["message"] for r in captured_logs()]
        assert "transaction_rolled_back" in messages
        failed = next(r for r in captured_logs() if r["message"] == "document_operation_failed")
        assert failed["error_code"] == "DOCUMENT_NOT_FOUND"
        assert failed["level"] == "WARNING"


class TestMonthRollover:
    """The month in a number is the local month at request time."""

    def test_new_month_restarts_sequence(
        self, create_document, deterministic_clock
    ):
        create_document()
        create_document()

        deterministic_clock.set_time(datetime(2024, 3, 31, 23, 59, 0, tzinfo=JST))
        assert create_document().document_number == "2024-03-003"

        deterministic_clock.advance(60)
        created = create_document()
        assert created.document_number == "2024-04-001"
        assert created.payload["issueDate"] == "2024-04-01"


class TestReloadedDocuments:
    """A document read back in a later request computes the same totals."""

    def test_duplicate_in_new_session_keeps_totals(
        self, session_factory, billing_config, deterministic_clock, test_actor_id
    ):
        payload = make_payload(
            items=[
                make_item(unit_price="10000", tax_rate="8.5"),
                make_item(name="保守", quantity="2", unit_price="1000.123456789", tax_rate="8"),
            ]
        )
        source = DocumentOrchestrator(
            session_factory(), billing_config, deterministic_clock
        ).create_document("estimate", payload, test_actor_id)
        assert source.is_success, source.to_dict()

        copy = DocumentOrchestrator(
            session_factory(), billing_config, deterministic_clock
        ).duplicate_document(source.document_id, test_actor_id)

        assert copy.is_success, copy.to_dict()
        assert source.payload["subtotal"] == "12000.246913578"
        assert source.payload["taxAmount8"] == "160"
        for key in ("subtotal", "taxAmount", "taxAmount8", "taxAmount10", "totalAmount"):
            assert copy.payload[key] == source.payload[key]
        assert [i["taxRate"] for i in copy.payload["items"]] == ["8.5", "8"]
        assert [i["amount"] for i in copy.payload["items"]] == ["10000", "2000.246913578"]


class TestCommitFailure:
    def test_failed_commit_rolls_back_and_logs(
        self, orchestrator, session, create_document, test_actor_id, captured_logs, monkeypatch
    ):
        def lost_connection():
            raise RuntimeError("connection lost")

        monkeypatch.setattr(session, "commit", lost_connection)

        with pytest.raises(RuntimeError):
            orchestrator.create_document("estimate", make_payload(), test_actor_id)

        logs = captured_logs()
        messages = [r["message"] for r in logs]
        assert "transaction_committed" not in messages
        assert "document_operation_completed" not in messages
        rolled_back = next(r for r in logs if r["message"] == "transaction_rolled_back")
        assert rolled_back["reason"] == "unexpected_error"
        failed = next(r for r in logs if r["message"] == "document_operation_failed")
        assert failed["level"] == "ERROR"
        assert failed["exc_type"] == "RuntimeError"

        monkeypatch.undo()
        assert create_document().document_number == "2024-03-001"
