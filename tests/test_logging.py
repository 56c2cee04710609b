"""Tests for the structured logging system (contract_ledger/logging_config.py)."""

import json
import logging
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from contract_ledger.domain.values import StateEventType
from contract_ledger.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Reset logging state between tests."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()


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
    """Parse all JSON log lines from a stream."""
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
        assert record["logger"] == "contract_ledger.test"
        assert "ts" in record

    def test_extra_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        logger.info("state_event_created", extra={"seq": 42, "event_type": "amended"})

        record = _parse_log(stream)
        assert record["seq"] == 42
        assert record["event_type"] == "amended"

    def test_context_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        LogContext.set(correlation_id="abc-123", contract_id="c-1")
        logger.info("test_msg")

        record = _parse_log(stream)
        assert record["correlation_id"] == "abc-123"
        assert record["contract_id"] == "c-1"

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

    def test_ledger_exception_code_extracted(self):
        """Ledger exceptions carry .code and structured attributes."""
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        from contract_ledger.exceptions import EventAlreadySupersededError

        try:
            raise EventAlreadySupersededError("evt-1", "evt-2")
        except EventAlreadySupersededError:
            logger.error("supersession_failed", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_code"] == "ALREADY_SUPERSEDED"
        assert record["exc_type"] == "EventAlreadySupersededError"
        assert record["exc_event_id"] == "evt-1"
        assert record["exc_superseded_by_id"] == "evt-2"

    def test_no_context_fields_when_empty(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        logger.info("bare_message")

        record = _parse_log(stream)
        assert "correlation_id" not in record
        assert "contract_id" not in record

    def test_uuid_decimal_and_enum_serialized(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        uid = uuid4()
        logger.info(
            "typed_values",
            extra={
                "event_id": uid,
                "amount": Decimal("10.50"),
                "kind": StateEventType.SUPERSEDED,
            },
        )

        record = _parse_log(stream)
        assert record["event_id"] == str(uid)
        assert record["amount"] == "10.50"
        assert record["kind"] == "superseded"

    def test_valid_json_every_line(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        logger.info("first")
        logger.warning("second", extra={"k": "v"})
        logger.debug("third")

        logs = _parse_all_logs(stream)
        # default level is INFO, so the debug line is dropped
        assert len(logs) == 2
        for record in logs:
            assert "ts" in record
            assert "level" in record
            assert "logger" in record
            assert "message" in record


# ---------------------------------------------------------------------------
# LogContext tests
# ---------------------------------------------------------------------------


class TestLogContext:
    """Tests for context propagation."""

    def test_set_and_get(self):
        LogContext.set(correlation_id="x", event_id="y")
        ctx = LogContext.get_all()
        assert ctx == {"correlation_id": "x", "event_id": "y"}

    def test_clear(self):
        LogContext.set(correlation_id="x")
        LogContext.clear()
        assert LogContext.get_all() == {}

    def test_bind_context_manager(self):
        LogContext.set(contract_id="outer")
        with LogContext.bind(contract_id="inner"):
            assert LogContext.get_all()["contract_id"] == "inner"
        assert LogContext.get_all()["contract_id"] == "outer"

    def test_bind_restores_none(self):
        """bind() restores to None if there was no previous value."""
        assert "contract_id" not in LogContext.get_all()
        with LogContext.bind(contract_id="temp"):
            assert LogContext.get_all()["contract_id"] == "temp"
        assert "contract_id" not in LogContext.get_all()

    def test_bind_ignores_unknown_fields(self):
        with LogContext.bind(contract_id="c", unknown="u"):
            assert LogContext.get_all() == {"contract_id": "c"}

    def test_values_stored_as_strings(self):
        contract_id, actor_id = uuid4(), uuid4()
        LogContext.set(
            correlation_id="c",
            contract_id=contract_id,
            actor_id=actor_id,
            event_id="e",
        )
        ctx = LogContext.get_all()
        assert set(ctx) == set(LogContext.FIELDS)
        assert ctx["contract_id"] == str(contract_id)
        assert ctx["actor_id"] == str(actor_id)

    def test_bind_restores_after_error(self):
        with pytest.raises(RuntimeError):
            with LogContext.bind(contract_id="c"):
                raise RuntimeError("boom")
        assert LogContext.get_all() == {}


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
        ledger_logger = logging.getLogger("contract_ledger")
        assert h1 in ledger_logger.handlers
        assert h2 not in ledger_logger.handlers

    def test_get_logger_returns_child(self):
        logger = get_logger("services.state_event")
        assert logger.name == "contract_ledger.services.state_event"

    def test_logger_hierarchy(self):
        """Child loggers inherit the contract_ledger root config."""
        handler, stream = _make_handler()
        configure_logging(handler=handler, level=logging.DEBUG)
        child = get_logger("deep.nested.module")
        child.debug("hierarchy_test")

        record = _parse_log(stream)
        assert record["message"] == "hierarchy_test"
        assert record["logger"] == "contract_ledger.deep.nested.module"
