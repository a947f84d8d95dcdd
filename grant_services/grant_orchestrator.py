"""
grant_services.grant_orchestrator -- Central wiring for the compliance core.

Responsibility:
    Build every service from one policy pack, clock and scorer, and expose
    the operations the UI / export collaborator calls:
    ``get_module_states``, ``run_full_validation``, ``calculate_budget``,
    ``run_compliance_audit``, ``can_export_project`` and ``run_export``.

Architecture position:
    Services -- composition root.  No service constructs its own
    dependencies; they are all wired here.

Invariants enforced:
    - Every service shares the same policy pack and clock, so timestamps
      and thresholds are consistent within one orchestrator.
"""

from __future__ import annotations

from collections.abc import Sequence
from decimal import Decimal

from grant_config.schema import GrantPolicy
from grant_kernel.domain.budget_types import (
    BudgetCalculation,
    BudgetInputs,
    BudgetRates,
    LineItems,
    SubAward,
    Vendor,
)
from grant_kernel.domain.clock import Clock, SystemClock
from grant_kernel.domain.project import ModuleState, Project
from grant_kernel.domain.types import ProjectPhase
from grant_services.audit_service import (
    AuditOutcome,
    AuditService,
    ComplianceScorer,
    ExportDecision,
    ExportOutcome,
)
from grant_services.budget_service import BudgetService
from grant_services.project_service import ProjectService
from grant_services.validation_orchestrator import ValidationOrchestrator, ValidationResult


class GrantOrchestrator:
    """
    Owns the service graph for one policy pack.

    Usage:
        policy = get_active_policy()
        grants = GrantOrchestrator(policy)
        project = grants.projects.create_project(GrantType.PHASE_I)
        result = grants.run_full_validation(project)
    """

    def __init__(
        self,
        policy: GrantPolicy,
        clock: Clock | None = None,
        scorer: ComplianceScorer | None = None,
    ):
        self.policy = policy
        self.clock = clock or SystemClock()
        self.validation = ValidationOrchestrator(policy)
        self.projects = ProjectService(policy, self.clock)
        self.budget = BudgetService(policy, self.clock)
        self.audit = AuditService(policy, self.clock, scorer)

    def get_module_states(self, project: Project) -> tuple[ModuleState, ...]:
        return self.validation.module_states(project)

    def run_full_validation(self, project: Project) -> ValidationResult:
        return self.validation.run_full_validation(project)

    def calculate_budget(
        self,
        line_items: LineItems,
        sub_awards: Sequence[SubAward] = (),
        vendors: Sequence[Vendor] = (),
        rates: BudgetRates | None = None,
        budget_cap: Decimal | None = None,
        *,
        project: Project | None = None,
        phase: ProjectPhase | None = None,
    ) -> BudgetCalculation:
        """
        Pure budget calculation.

        The cap is ``budget_cap`` when given, otherwise the one that applies
        to ``project`` (and, for Fast Track, ``phase``).

        Raises:
            ValueError: neither ``budget_cap`` nor ``project`` was given.
            MissingBudgetCapError: the project's institute has no cap for
                its grant type.
        """
        if budget_cap is None:
            if project is None:
                raise ValueError("calculate_budget needs a budget_cap or a project to resolve one from")
            budget_cap = self.budget.budget_cap_for(project, phase)
        inputs = BudgetInputs(
            line_items=line_items,
            sub_awards=tuple(sub_awards),
            vendors=tuple(vendors),
            rates=rates or BudgetRates(),
        )
        return self.budget.calculate(inputs, budget_cap)

    def run_compliance_audit(
        self,
        project: Project,
        module_id: int | None = None,
        section_type: str | None = None,
    ) -> AuditOutcome:
        return self.audit.run_audit(project, module_id=module_id, section_type=section_type)

    def can_export_project(self, project: Project) -> ExportDecision:
        return self.audit.can_export_project(project)

    def run_export(self, project: Project) -> ExportOutcome:
        return self.audit.run_export(project, self.run_full_validation(project))
