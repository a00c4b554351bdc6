"""
Tests for posting_kernel.logging_config.

Only what the posting kernel relies on: context fields stamped on records,
posting values (UUID, Decimal, enums) rendered as JSON, and kernel errors
flattened into exc_* fields.  Orchestrator correlation ids are covered in
tests/services/test_posting_orchestrator.py.
"""

import json
import logging
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from posting_kernel.domain.dtos import LocationCategory
from posting_kernel.exceptions import SlotConflictError, SupervisorNotFoundError
from posting_kernel.logging_config import (
    LogContext,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture
def json_log():
    """Fresh posting_kernel logging into a buffer; returns a reader of parsed lines."""
    reset_logging()
    stream = StringIO()
    configure_logging(stream=stream)
    yield lambda: [json.loads(line) for line in stream.getvalue().splitlines() if line]
    reset_logging()
    configure_logging(level=logging.DEBUG)


class TestRecords:

    def test_context_and_extra_on_record(self, json_log):
        institution_id = uuid4()
        with LogContext.bind(institution_id=institution_id, batch_id="b-1"):
            get_logger("services.posting").info("posting_created", extra={"visit_number": 2})

        [record] = json_log()
        assert record["logger"] == "posting_kernel.services.posting"
        assert record["level"] == "INFO"
        assert record["institution_id"] == str(institution_id)
        assert record["batch_id"] == "b-1"
        assert record["visit_number"] == 2
        assert "correlation_id" not in record

    def test_posting_values_serialized(self, json_log):
        school_id = uuid4()
        get_logger("test").info(
            "allowance_priced",
            extra={
                "school_id": school_id,
                "total": Decimal("1800.50"),
                "location": LocationCategory.OUTSIDE,
            },
        )

        [record] = json_log()
        assert record["school_id"] == str(school_id)
        assert record["total"] == "1800.50"
        assert record["location"] == "outside"

    def test_kernel_error_flattened(self, json_log):
        supervisor_id = uuid4()
        try:
            raise SupervisorNotFoundError(supervisor_id)
        except SupervisorNotFoundError:
            get_logger("test").error("lookup_failed", exc_info=True)

        [record] = json_log()
        assert record["exc_type"] == "SupervisorNotFoundError"
        assert record["exc_code"] == "SUPERVISOR_NOT_FOUND"
        assert record["exc_supervisor_id"] == str(supervisor_id)
        assert "traceback" in record

    def test_slot_conflict_carries_slot(self, json_log):
        try:
            raise SlotConflictError(uuid4(), 1, 2, uuid4())
        except SlotConflictError:
            get_logger("test").warning("posting_slot_conflict", exc_info=True)

        [record] = json_log()
        assert record["exc_code"] == "SLOT_CONFLICT"
        assert record["exc_visit_number"] == 2

    def test_debug_dropped_at_default_level(self, json_log):
        logger = get_logger("test")
        logger.debug("noise")
        logger.info("kept")

        assert [r["message"] for r in json_log()] == ["kept"]


class TestLogContext:

    def test_bind_restores_previous_values(self):
        LogContext.set(correlation_id="outer")
        with LogContext.bind(correlation_id="inner", posting_id="p"):
            assert LogContext.get_all() == {"correlation_id": "inner", "posting_id": "p"}
        assert LogContext.get_all() == {"correlation_id": "outer"}

    def test_bind_skips_none_and_unknown(self):
        with LogContext.bind(correlation_id="c", session_id=None, rank="r"):
            assert LogContext.get_all() == {"correlation_id": "c"}

    def test_set_rejects_unknown_field(self):
        with pytest.raises(TypeError, match="rank"):
            LogContext.set(rank="professor")


def test_configure_is_idempotent(json_log):
    configure_logging(stream=StringIO())

    assert len(logging.getLogger("posting_kernel").handlers) == 1
