"""Tests for the structured logging system (billing_kernel/logging_config.py)."""

import json
import logging
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from billing_kernel.exceptions import AllocationConflictError, FieldError, ValidationError
from billing_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Reset logging state between tests, then restore the suite's setup."""
    reset_logging()
    yield
    reset_logging()
    configure_logging(level=logging.DEBUG)


@pytest.fixture
def log_stream() -> StringIO:
    stream = StringIO()
    configure_logging(handler=logging.StreamHandler(stream), level=logging.DEBUG)
    return stream


def _records(stream: StringIO) -> list[dict]:
    return [json.loads(line) for line in stream.getvalue().splitlines() if line]


def _structured_handlers() -> list[logging.Handler]:
    return [
        h for h in logging.getLogger("billing_kernel").handlers
        if isinstance(h.formatter, StructuredFormatter)
    ]


class TestStructuredFormatter:
    def test_one_json_object_per_record(self, log_stream):
        get_logger("services.sequence_allocator").info(
            "sequence_allocated", extra={"sequence": 42, "document_number": "2024-03-042"}
        )

        (record,) = _records(log_stream)
        assert record["level"] == "INFO"
        assert record["message"] == "sequence_allocated"
        assert record["logger"] == "billing_kernel.services.sequence_allocator"
        assert record["sequence"] == 42
        assert record["document_number"] == "2024-03-042"
        assert "ts" in record

    def test_decimal_and_uuid_rendered_as_strings(self, log_stream):
        document_id = uuid4()
        get_logger("test").info(
            "document_inserted",
            extra={"result_document_id": document_id, "total_amount": Decimal("14300")},
        )

        (record,) = _records(log_stream)
        assert record["result_document_id"] == str(document_id)
        assert record["total_amount"] == "14300"

    def test_bound_context_stamped_on_records(self, log_stream):
        with LogContext.bind(correlation_id="abc-123", operation="derive", document_type="invoice"):
            get_logger("test").info("document_operation_started")
        get_logger("test").info("after")

        inside, after = _records(log_stream)
        assert inside["correlation_id"] == "abc-123"
        assert inside["operation"] == "derive"
        assert inside["document_type"] == "invoice"
        assert "correlation_id" not in after

    def test_context_wins_over_extra(self, log_stream):
        with LogContext.bind(document_type="estimate"):
            get_logger("test").info("x", extra={"document_type": "invoice"})

        (record,) = _records(log_stream)
        assert record["document_type"] == "estimate"

    def test_billing_error_fields_extracted(self, log_stream):
        try:
            raise AllocationConflictError("invoice", "INV-202403", 3)
        except AllocationConflictError:
            get_logger("test").error("allocation_failed", exc_info=True)

        (record,) = _records(log_stream)
        assert record["exc_code"] == "ALLOCATION_CONFLICT"
        assert record["exc_type"] == "AllocationConflictError"
        assert record["exc_period_key"] == "INV-202403"
        assert record["exc_attempts"] == 3
        assert "traceback" in record

    def test_field_errors_rendered_as_objects(self, log_stream):
        try:
            raise ValidationError([FieldError(field="taxRate", message="must be between 0 and 100", index=2)])
        except ValidationError:
            get_logger("test").warning("rejected", exc_info=True)

        (record,) = _records(log_stream)
        assert record["exc_field_errors"] == [
            {"index": 2, "field": "taxRate", "message": "must be between 0 and 100"}
        ]

    def test_plain_exception_has_no_code(self, log_stream):
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            get_logger("test").error("failed", exc_info=True)

        (record,) = _records(log_stream)
        assert record["exc_type"] == "RuntimeError"
        assert "exc_code" not in record


class TestLogContext:
    def test_bind_restores_outer_values(self):
        with LogContext.bind(correlation_id="outer", actor_id="a"):
            with LogContext.bind(correlation_id="inner", document_type="invoice"):
                assert LogContext.get_all() == {
                    "correlation_id": "inner",
                    "actor_id": "a",
                    "document_type": "invoice",
                }
            assert LogContext.get_all() == {"correlation_id": "outer", "actor_id": "a"}
        assert LogContext.get_all() == {}

    def test_bind_skips_none(self):
        with LogContext.bind(operation="create", document_id=None):
            assert LogContext.get_all() == {"operation": "create"}

    def test_bind_restores_on_error(self):
        with pytest.raises(RuntimeError):
            with LogContext.bind(operation="delete"):
                raise RuntimeError
        assert LogContext.get_all() == {}

    def test_unknown_field_rejected(self):
        with pytest.raises(TypeError):
            with LogContext.bind(invoice_number="INV-202403-0001"):
                pass


class TestConfigureLogging:
    def test_idempotent(self):
        first = logging.StreamHandler(StringIO())
        configure_logging(handler=first)
        configure_logging(handler=logging.StreamHandler(StringIO()))

        assert _structured_handlers() == [first]

    def test_reset_leaves_foreign_handlers(self):
        foreign = logging.NullHandler()
        logger = logging.getLogger("billing_kernel")
        logger.addHandler(foreign)
        try:
            configure_logging()
            reset_logging()
            assert foreign in logger.handlers
            assert _structured_handlers() == []
        finally:
            logger.removeHandler(foreign)

    def test_debug_filtered_at_info(self):
        stream = StringIO()
        configure_logging(handler=logging.StreamHandler(stream))
        logger = get_logger("test")
        logger.info("first")
        logger.debug("second")

        assert [r["message"] for r in _records(stream)] == ["first"]
