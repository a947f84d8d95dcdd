"""
Tests for structured logging (grant_kernel/logging_config.py).

Covers:
- JSON record shape, context fields and extra fields
- Exception fields, including the structured attributes of kernel errors
- LogContext set/bind/clear semantics
- configure_logging idempotency and the grant_kernel hierarchy
"""

import json
import logging
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from grant_kernel.domain.types import GrantType, Severity
from grant_kernel.exceptions import PhaseLockedError, UnknownInstituteError
from grant_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _fresh_logging():
    """Each test configures logging itself; the suite setup is restored afterwards."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()
    configure_logging(level=logging.DEBUG, handler=logging.NullHandler())


@pytest.fixture
def log_stream():
    """Configure logging into a buffer and return a reader of parsed records."""
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())

    def _records():
        return [json.loads(line) for line in stream.getvalue().splitlines() if line]

    configure_logging(handler=handler)
    return _records


class TestRecordShape:

    def test_base_keys(self, log_stream):
        get_logger("services.project").info("project_created")

        (record,) = log_stream()

        assert record["level"] == "INFO"
        assert record["message"] == "project_created"
        assert record["logger"] == "grant_kernel.services.project"
        assert record["ts"].endswith("+00:00")

    def test_extra_fields_at_top_level(self, log_stream):
        get_logger("services.audit").info(
            "compliance_audit_recorded",
            extra={"compliance_score": 92, "passed": True, "section_types": ["specific_aims"]},
        )

        (record,) = log_stream()

        assert record["compliance_score"] == 92
        assert record["passed"] is True
        assert record["section_types"] == ["specific_aims"]

    def test_domain_values_serialized(self, log_stream):
        run = uuid4()
        get_logger("engines").info(
            "budget_checked",
            extra={
                "run": run,
                "cap": Decimal("275000"),
                "grant_type": GrantType.PHASE_I,
                "severities": (Severity.WARNING,),
            },
        )

        (record,) = log_stream()

        assert record["run"] == str(run)
        assert record["cap"] == "275000"
        assert record["grant_type"] == "Phase I"
        assert record["severities"] == ["warning"]

    def test_level_filtering(self, log_stream):
        logger = get_logger("services.budget")
        logger.debug("budget_inputs")
        logger.info("budget_recalculated")
        logger.warning("budget_near_cap")

        assert [r["message"] for r in log_stream()] == ["budget_recalculated", "budget_near_cap"]


class TestContextFields:

    def test_context_stamped_on_records(self, log_stream):
        LogContext.set(project_id="proj_abc", audit_run_id="run-1")
        get_logger("services.audit").info("export_blocked")

        (record,) = log_stream()

        assert record["project_id"] == "proj_abc"
        assert record["audit_run_id"] == "run-1"

    def test_absent_when_unset(self, log_stream):
        get_logger("services.audit").info("export_blocked")

        (record,) = log_stream()

        assert not {"project_id", "actor_id", "correlation_id", "audit_run_id"} & set(record)

    def test_extra_does_not_override_context(self, log_stream):
        with LogContext.bind(project_id="proj_ctx"):
            get_logger("x").info("evt", extra={"project_id": "proj_extra"})

        assert log_stream()[0]["project_id"] == "proj_ctx"


class TestExceptionFields:

    def test_plain_exception(self, log_stream):
        try:
            raise ConnectionError("scoring service unreachable")
        except ConnectionError:
            get_logger("services.audit").error("compliance_scoring_failed", exc_info=True)

        (record,) = log_stream()

        assert record["exc_type"] == "ConnectionError"
        assert record["exc_message"] == "scoring service unreachable"
        assert "exc_code" not in record
        assert "Traceback" in record["traceback"]

    def test_kernel_error_attributes(self, log_stream):
        try:
            raise PhaseLockedError("proj_abc", 3, "phase2")
        except PhaseLockedError:
            get_logger("services.project").warning("edit_rejected", exc_info=True)

        (record,) = log_stream()

        assert record["exc_code"] == "PHASE_LOCKED"
        assert record["exc_module_id"] == 3
        assert record["exc_block"] == "phase2"

    def test_tuple_attributes_become_lists(self, log_stream):
        try:
            raise UnknownInstituteError("NIXX", ("NCI", "Standard NIH"))
        except UnknownInstituteError:
            get_logger("config").error("institute_lookup_failed", exc_info=True)

        (record,) = log_stream()

        assert record["exc_institute"] == "NIXX"
        assert record["exc_known"] == ["NCI", "Standard NIH"]


class TestLogContext:

    def test_set_ignores_none(self):
        LogContext.set(project_id="p1")
        LogContext.set(project_id=None, actor_id="a1")
        assert LogContext.get_all() == {"project_id": "p1", "actor_id": "a1"}

    def test_set_rejects_unknown_field(self):
        with pytest.raises(ValueError):
            LogContext.set(event_id="e1")

    def test_clear(self):
        LogContext.set(project_id="p1", correlation_id="c1")
        LogContext.clear()
        assert LogContext.get_all() == {}

    def test_bind_nests_and_restores(self):
        LogContext.set(project_id="outer")
        with LogContext.bind(project_id="inner", audit_run_id="run-2"):
            assert LogContext.get_all() == {"project_id": "inner", "audit_run_id": "run-2"}
        assert LogContext.get_all() == {"project_id": "outer"}

    def test_bind_restores_on_error(self):
        with pytest.raises(RuntimeError):
            with LogContext.bind(audit_run_id="run-3"):
                raise RuntimeError("audit aborted")
        assert LogContext.get_all() == {}

    def test_bind_rejects_unknown_field_eagerly(self):
        with pytest.raises(ValueError):
            LogContext.bind(event_id="e1")


class TestConfigureLogging:

    def test_second_call_is_noop(self, log_stream):
        configure_logging(handler=logging.NullHandler())
        assert len(logging.getLogger("grant_kernel").handlers) == 1

    def test_child_logger_name(self):
        assert get_logger("services.audit").name == "grant_kernel.services.audit"

    def test_nested_loggers_share_handler(self):
        stream = StringIO()
        configure_logging(stream=stream, level=logging.DEBUG)

        get_logger("engines.budget.calculate").debug("GRANT_ENGINE_TRACE")

        record = json.loads(stream.getvalue())
        assert record["logger"] == "grant_kernel.engines.budget.calculate"

    def test_reset_allows_reconfiguration(self, log_stream):
        reset_logging()
        stream = StringIO()
        configure_logging(stream=stream)

        get_logger("x").info("after_reset")

        assert json.loads(stream.getvalue())["message"] == "after_reset"
        assert log_stream() == []
