"""
Tests for structured logging and correlation ids.
"""

import json
import logging
from collections.abc import Iterator
from uuid import UUID

import pytest

from frontdesk.runtime import Runtime
from frontdesk.shared.logging import (
    CorrelationIdFilter,
    StructuredFormatter,
    bind_correlation_id,
    correlation_id_var,
    get_logger,
    setup_logging,
)

from conftest import FakeClock


class CollectingHandler(logging.Handler):
    def __init__(self) -> None:
        super().__init__(level=logging.DEBUG)
        self.records: list[logging.LogRecord] = []
        self.addFilter(CorrelationIdFilter())

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(record)


@pytest.fixture
def restore_root_logger() -> Iterator[None]:
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers = handlers
    root.setLevel(level)


def make_record(**extra: object) -> logging.LogRecord:
    record = logging.LogRecord("frontdesk.test", logging.INFO, __file__, 1, "hello %s", ("world",), None)
    record.__dict__.update(extra)
    return record


class TestStructuredFormatter:
    """Tests for the JSON formatter."""

    def test_extra_fields_become_top_level_keys(self) -> None:
        line = StructuredFormatter().format(make_record(operation_id="op-1", kind="outbound_call"))
        data = json.loads(line)

        assert data["message"] == "hello world"
        assert data["level"] == "INFO"
        assert data["logger"] == "frontdesk.test"
        assert data["operation_id"] == "op-1"
        assert data["kind"] == "outbound_call"
        assert "correlation_id" not in data
        assert "args" not in data

    def test_bound_correlation_id_is_included(self) -> None:
        with bind_correlation_id("op-42"):
            data = json.loads(StructuredFormatter().format(make_record()))
        assert data["correlation_id"] == "op-42"

    def test_colliding_extra_is_prefixed(self) -> None:
        data = json.loads(StructuredFormatter().format(make_record(level="custom")))
        assert data["level"] == "INFO"
        assert data["extra_level"] == "custom"


class TestCorrelationId:
    def test_binding_is_reset_after_the_block(self) -> None:
        with bind_correlation_id("outer"):
            with bind_correlation_id("inner"):
                assert correlation_id_var.get() == "inner"
            assert correlation_id_var.get() == "outer"
        assert correlation_id_var.get() is None

    def test_filter_stamps_the_record_at_emit_time(self) -> None:
        record = make_record()
        with bind_correlation_id("op-7"):
            CorrelationIdFilter().filter(record)
        assert record.correlation_id == "op-7"

    @pytest.mark.asyncio
    async def test_run_binds_operation_id(
        self,
        runtime: Runtime,
        owner_id: UUID,
        clock: FakeClock,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        caplog.set_level(logging.INFO, logger="frontdesk")
        handler = CollectingHandler()
        logging.getLogger("frontdesk").addHandler(handler)
        try:
            op, _ = await runtime.outbound.enqueue_call(owner_id, "+14155551234", "reminder")
            await runtime.sweeper.sweep("outbound_call")
        finally:
            logging.getLogger("frontdesk").removeHandler(handler)

        released = [r for r in handler.records if r.getMessage() == "Operation released"]
        assert released
        assert all(r.correlation_id == str(op.id) for r in released)
        assert correlation_id_var.get() is None


class TestSetup:
    def test_get_logger_attaches_no_handlers(self) -> None:
        logger = get_logger("frontdesk.test.handlers")
        assert logger.handlers == []
        assert logger.propagate

    def test_setup_is_idempotent(self, restore_root_logger: None) -> None:
        setup_logging("DEBUG")
        setup_logging("INFO")

        root = logging.getLogger()
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, StructuredFormatter)
        assert root.level == logging.INFO
        assert logging.getLogger("httpx").level == logging.WARNING
