"""
grant_services -- Package init and public API.

Responsibility:
    Orchestration services that compose the pure engines with policy,
    clock, the compliance-scoring collaborator and database sessions.
    This is the **only** layer that may hold sessions or read wall-clock
    time.

Architecture position:
    Services -- orchestration over engines + kernel + config.

    Dependency direction:
        grant_services/ -> grant_config/, grant_engines/, grant_kernel/ (allowed)
        grant_engines/  -> grant_services/, grant_config/ (FORBIDDEN)
        grant_kernel/   -> anything else (FORBIDDEN)

Invariants enforced:
    - DI transparency: service wiring is centralised in
      ``GrantOrchestrator``.

Audit relevance:
    - This package is the canonical import surface for external consumers.
"""

from grant_services.audit_service import (
    AuditOutcome,
    AuditService,
    ExportDecision,
    ExportOutcome,
    PolicyScorer,
)
from grant_services.budget_service import BudgetService, BudgetUpdate
from grant_services.grant_orchestrator import GrantOrchestrator
from grant_services.project_repository import ProjectRepository, StoredProject
from grant_services.project_service import ProjectService
from grant_services.schema_upgrade import load_project, upgrade_payload
from grant_services.validation_orchestrator import (
    OverallStatus,
    ValidationOrchestrator,
    ValidationResult,
)

__all__ = [
    "AuditOutcome",
    "AuditService",
    "BudgetService",
    "BudgetUpdate",
    "ExportDecision",
    "ExportOutcome",
    "GrantOrchestrator",
    "OverallStatus",
    "PolicyScorer",
    "ProjectRepository",
    "ProjectService",
    "StoredProject",
    "ValidationOrchestrator",
    "ValidationResult",
    "load_project",
    "upgrade_payload",
]
