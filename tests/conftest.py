"""
Pytest fixtures for the grant compliance test suite.

Provides:
- JSON logging for the whole run, and a fixture collecting parsed records
- The bundled policy pack and a deterministic clock
- Wired services (orchestrator, project, budget, audit)
- An in-memory SQLite session for repository tests
"""

import json
import logging

import pytest

from grant_config import get_active_policy
from grant_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session,
    init_engine_from_url,
    reset_engine,
)
from grant_kernel.domain.clock import DeterministicClock
from grant_kernel.domain.types import GrantType, ProgramType
from grant_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from grant_services import GrantOrchestrator
from tests.builders import FixedScorer


class _RecordCollector(logging.Handler):
    """Keeps each emitted record as the parsed JSON the formatter produced."""

    def __init__(self):
        super().__init__(level=logging.DEBUG)
        self.setFormatter(StructuredFormatter())
        self.records = []

    def emit(self, record):
        self.records.append(json.loads(self.format(record)))


@pytest.fixture(autouse=True, scope="session")
def _suite_logging():
    reset_logging()
    configure_logging(level=logging.DEBUG, handler=logging.NullHandler())
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _no_leaked_context():
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Collect ``grant_kernel`` records emitted during the test.

    Returns a callable giving the records seen so far, already parsed::

        events = [r["message"] for r in captured_logs()]
    """
    collector = _RecordCollector()
    kernel_logger = logging.getLogger("grant_kernel")
    kernel_logger.addHandler(collector)
    saved_level = kernel_logger.level
    kernel_logger.setLevel(logging.DEBUG)
    yield lambda: list(collector.records)
    kernel_logger.setLevel(saved_level)
    kernel_logger.removeHandler(collector)


# =============================================================================
# Policy, clock and services
# =============================================================================


@pytest.fixture(scope="session")
def policy():
    return get_active_policy()


@pytest.fixture
def clock():
    return DeterministicClock()


@pytest.fixture
def scorer():
    return FixedScorer()


@pytest.fixture
def grants(policy, clock, scorer):
    return GrantOrchestrator(policy, clock, scorer)


@pytest.fixture
def project_service(grants):
    return grants.projects


@pytest.fixture
def budget_service(grants):
    return grants.budget


@pytest.fixture
def audit_service(grants):
    return grants.audit


@pytest.fixture
def make_project(project_service):
    """
    Factory for fresh projects.

    Usage::

        project = make_project(GrantType.PHASE_II, institute="NCI")
    """

    def _make(
        grant_type=GrantType.PHASE_I,
        program_type=ProgramType.SBIR,
        institute=None,
        **kwargs,
    ):
        return project_service.create_project(
            grant_type, program_type, institute, **kwargs
        )

    return _make


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
def session():
    """In-memory SQLite session; tables are created and dropped per test."""
    init_engine_from_url("sqlite:///:memory:")
    create_tables()
    db_session = get_session()
    yield db_session
    db_session.close()
    drop_tables()
    reset_engine()
