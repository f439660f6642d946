"""Tests for the structured logging system (sourcing_kernel/logging_config.py)."""

import json
import logging
from datetime import datetime, timezone
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from sourcing_kernel.domain.values import PartStatus
from sourcing_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Reset logging state between tests, then restore the suite's DEBUG setup."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()
    configure_logging(level=logging.DEBUG)


def _make_handler() -> tuple[logging.Handler, StringIO]:
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    return handler, stream


def _parse_log(stream: StringIO) -> dict:
    """Parse the first JSON log line from a stream."""
    line = stream.getvalue().strip().split("\n")[0]
    return json.loads(line)


def _parse_all_logs(stream: StringIO) -> list[dict]:
    lines = stream.getvalue().strip().split("\n")
    return [json.loads(line) for line in lines if line]


# ---------------------------------------------------------------------------
# StructuredFormatter tests
# ---------------------------------------------------------------------------


class TestStructuredFormatter:
    """Tests for JSON log output format."""

    def test_basic_json_output(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        logger.info("hello")

        record = _parse_log(stream)
        assert record["level"] == "INFO"
        assert record["message"] == "hello"
        assert record["logger"] == "sourcing_kernel.test"
        assert "ts" in record

    def test_extra_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("quote_ingested", extra={"sequence": 3, "disposition": "accepted"})

        record = _parse_log(stream)
        assert record["sequence"] == 3
        assert record["disposition"] == "accepted"

    def test_domain_values_serialized(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        uid = uuid4()
        get_logger("test").info(
            "mixed",
            extra={
                "entry_id": uid,
                "total_amount": Decimal("221.50"),
                "deadline": datetime(2024, 10, 15, 12, 5, tzinfo=timezone.utc),
                "to_status": PartStatus.ORDERED,
                "requirement_ids": frozenset({"R2", "R1"}),
            },
        )

        record = _parse_log(stream)
        assert record["entry_id"] == str(uid)
        assert record["total_amount"] == "221.50"
        assert record["deadline"] == "2024-10-15T12:05:00+00:00"
        assert record["to_status"] == "ordered"
        assert record["requirement_ids"] == ["R1", "R2"]

    def test_context_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        LogContext.set(request_id="REQ-1", vendor_id="A")
        get_logger("test").info("test_msg")

        record = _parse_log(stream)
        assert record["request_id"] == "REQ-1"
        assert record["vendor_id"] == "A"

    def test_exception_fields(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        try:
            raise ValueError("boom")
        except ValueError:
            logger.error("failed", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_type"] == "ValueError"
        assert record["exc_message"] == "boom"
        assert "traceback" in record

    def test_sourcing_exception_code_extracted(self):
        """Sourcing kernel exceptions carry a .code attribute."""
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        from sourcing_kernel.exceptions import SequenceConflict

        try:
            raise SequenceConflict("po:RO-1001:2410:ACME", "RO-1001-2410-ACME-001")
        except SequenceConflict:
            logger.error("po_number_conflict", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_code"] == "SEQUENCE_CONFLICT"
        assert record["exc_type"] == "SequenceConflict"
        assert record["exc_sequence_name"] == "po:RO-1001:2410:ACME"
        assert record["exc_po_number"] == "RO-1001-2410-ACME-001"

    def test_no_context_fields_when_empty(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("bare_message")

        record = _parse_log(stream)
        assert "request_id" not in record
        assert "vendor_id" not in record

    def test_valid_json_every_line(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        logger.info("first")
        logger.warning("second", extra={"k": "v"})
        logger.debug("third")

        logs = _parse_all_logs(stream)
        # Default level is INFO, so the debug line is dropped
        assert len(logs) == 2
        for record in logs:
            assert {"ts", "level", "logger", "message"} <= set(record)


# ---------------------------------------------------------------------------
# LogContext tests
# ---------------------------------------------------------------------------


class TestLogContext:
    """Tests for context propagation."""

    def test_set_and_get(self):
        LogContext.set(request_id="x", requirement_id="y")
        assert LogContext.get_all() == {"request_id": "x", "requirement_id": "y"}

    def test_clear(self):
        LogContext.set(request_id="x")
        LogContext.clear()
        assert LogContext.get_all() == {}

    def test_bind_context_manager(self):
        LogContext.set(vendor_id="outer")
        with LogContext.bind(vendor_id="inner"):
            assert LogContext.get_all()["vendor_id"] == "inner"
        assert LogContext.get_all()["vendor_id"] == "outer"

    def test_bind_restores_none(self):
        assert "request_id" not in LogContext.get_all()
        with LogContext.bind(request_id="temp"):
            assert LogContext.get_all()["request_id"] == "temp"
        assert "request_id" not in LogContext.get_all()

    def test_bind_ignores_unknown_fields(self):
        with LogContext.bind(request_id="REQ-1", shoe_size="9"):
            assert LogContext.get_all() == {"request_id": "REQ-1"}

    def test_set_rejects_unknown_fields(self):
        with pytest.raises(TypeError, match="shoe_size"):
            LogContext.set(shoe_size="9")

    def test_bind_restores_after_exception(self):
        with pytest.raises(RuntimeError):
            with LogContext.bind(vendor_id="A"):
                raise RuntimeError("vendor down")
        assert LogContext.get_all() == {}

    def test_all_fields(self):
        LogContext.set(
            correlation_id="c",
            request_id="q",
            repair_order_id="ro",
            requirement_id="r",
            vendor_id="v",
        )
        ctx = LogContext.get_all()
        assert len(ctx) == 5
        assert ctx["repair_order_id"] == "ro"


# ---------------------------------------------------------------------------
# configure_logging tests
# ---------------------------------------------------------------------------


class TestConfigureLogging:
    """Tests for initialization."""

    def test_idempotent(self):
        h1, _ = _make_handler()
        configure_logging(handler=h1)
        h2, _ = _make_handler()
        configure_logging(handler=h2)  # second call is no-op
        assert len(logging.getLogger("sourcing_kernel").handlers) == 1

    def test_get_logger_returns_child(self):
        logger = get_logger("services.quote_book")
        assert logger.name == "sourcing_kernel.services.quote_book"

    def test_logger_hierarchy(self):
        """Child loggers inherit the sourcing_kernel root config."""
        handler, stream = _make_handler()
        configure_logging(handler=handler, level=logging.DEBUG)
        get_logger("deep.nested.module").debug("hierarchy_test")

        record = _parse_log(stream)
        assert record["message"] == "hierarchy_test"
        assert record["logger"] == "sourcing_kernel.deep.nested.module"
