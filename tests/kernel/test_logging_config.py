"""
Tests for billing_kernel.logging_config -- JSON lines and bound context.
"""

from uuid import UUID

import pytest

from billing_kernel.exceptions import StateConflictError
from billing_kernel.logging_config import LogContext, get_logger

logger = get_logger("tests.logging")

PASS_ID = UUID("00000000-0000-0000-0000-0000000000aa")


class TestLogContext:

    def test_nested_bindings_merge_and_unwind(self, captured_logs):
        with LogContext.bind(pass_id=PASS_ID, trigger="manual"):
            with LogContext.bind(invoice_id=42):
                logger.info("inner")
            logger.info("outer")
        logger.info("after")

        inner, outer, after = captured_logs()
        assert (inner["pass_id"], inner["trigger"], inner["invoice_id"]) == (str(PASS_ID), "manual", "42")
        assert "invoice_id" not in outer
        assert outer["pass_id"] == str(PASS_ID)
        assert not {"pass_id", "trigger", "invoice_id"} & after.keys()

    def test_none_values_ignored(self):
        with LogContext.bind(actor_id=None, invoice_id=3):
            assert LogContext.get_all() == {"invoice_id": "3"}

    def test_unknown_field_rejected(self):
        with pytest.raises(KeyError):
            LogContext.bind(customer="acme")


class TestStructuredFormatter:

    def test_extra_fields_serialised(self, captured_logs):
        logger.info("billing_pass_completed", extra={"pass": PASS_ID, "pages": 3})

        record = captured_logs()[0]
        assert record["message"] == "billing_pass_completed"
        assert record["logger"] == "billing_kernel.tests.logging"
        assert record["pass"] == str(PASS_ID)
        assert record["pages"] == 3

    def test_kernel_error_fields(self, captured_logs):
        try:
            raise StateConflictError(9, "PENDING", "STARTED_PAYMENT", "PAID")
        except StateConflictError:
            logger.exception("transition_lost")

        record = captured_logs()[0]
        assert record["exc_type"] == "StateConflictError"
        assert record["exc_code"] == "STATE_CONFLICT"
        assert record["exc_invoice_id"] == 9
        assert record["exc_actual_status"] == "PAID"
        assert "Traceback" in record["traceback"]
