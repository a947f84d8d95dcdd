"""
grant_services.budget_service -- Budget edits with atomic write-back.

Responsibility:
    Apply applicant edits to budget inputs (line items, rates, allocation,
    justification, sub-awards, vendors), run the budget calculation
    engine, and write the derived module-6 block and the flattened legacy
    snapshot back into the project in a single replace.

Architecture position:
    Services -- stateless orchestration over ``grant_engines.budget``.

Invariants enforced:
    - Every edit re-derives the whole budget from inputs; stored derived
      figures are never patched individually.
    - The phase-appropriate block and the legacy snapshot come from the
      same calculation pass and are installed in one new ``Project``.
    - Sub-award indirect costs and totals are recomputed on every edit
      (``SubAward.revise``).
    - Combined-phase projects edit the ``phase1`` or ``phase2`` block and
      must name one; ``phase2`` is refused while ``phase1`` is incomplete.

Failure modes:
    - SubAwardNotFoundError / VendorNotFoundError for unknown ids.
    - PhaseLockedError when editing a locked phase-2 budget.
    - MissingBudgetCapError when the institute defines no cap for the
      project's grant type.
    - ValueError for negative amounts or rates, a phase given for a
      single-phase project, or no phase given for a combined-phase one.

Audit relevance:
    Every write-back logs ``budget_recalculated`` with the new direct
    costs, cap and utilization.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Any
from uuid import uuid4

from grant_config.bridges import build_budget_rules, build_institute_limits
from grant_config.schema import GrantPolicy
from grant_engines.budget import (
    BUDGET_MODULE_ID,
    budget_block_fields,
    budget_inputs_from_block,
    calculate_budget,
    effective_budget_cap,
    snapshot_from_calculation,
)
from grant_engines.phase_overlay import evaluate_phase_block, is_phase_block_editable
from grant_kernel.domain.budget_types import (
    BudgetCalculation,
    BudgetInputs,
    BudgetRates,
    LineItems,
    SubAward,
    Vendor,
)
from grant_kernel.domain.clock import Clock, SystemClock
from grant_kernel.domain.project import Project, apply_patch
from grant_kernel.domain.types import ProjectPhase
from grant_kernel.exceptions import (
    PhaseLockedError,
    SubAwardNotFoundError,
    VendorNotFoundError,
)
from grant_kernel.logging_config import LogContext, get_logger
from grant_services.validation_orchestrator import ValidationOrchestrator

logger = get_logger("services.budget")


@dataclass(frozen=True)
class BudgetUpdate:
    """A project after a budget write-back, with the calculation it stored."""

    project: Project
    calculation: BudgetCalculation
    phase: ProjectPhase | None = None


class BudgetService:
    """
    Budget calculator and editor for one policy pack.

    Contract:
        Receives a ``GrantPolicy`` and an optional ``Clock`` via
        constructor injection.
    Guarantees:
        - ``calculate`` is pure.
        - Every edit method returns a ``BudgetUpdate`` whose project holds
          consistent block and snapshot views.
    """

    def __init__(self, policy: GrantPolicy, clock: Clock | None = None):
        self._policy = policy
        self._clock = clock or SystemClock()
        self._rules = build_budget_rules(policy)
        self._orchestrator = ValidationOrchestrator(policy)

    # =========================================================================
    # Calculation
    # =========================================================================

    def calculate(self, inputs: BudgetInputs, budget_cap: Decimal) -> BudgetCalculation:
        return calculate_budget(inputs, budget_cap, self._rules)

    def budget_cap_for(self, project: Project, phase: ProjectPhase | None = None) -> Decimal:
        """Cap that applies to ``project`` (and, for Fast Track, ``phase``)."""
        limits = build_institute_limits(self._policy, project.institute)
        return effective_budget_cap(limits, project.grant_type, project.foa.overrides, phase)

    def _block_data(self, project: Project, phase: ProjectPhase | None) -> dict[str, Any]:
        if phase is None:
            return dict(project.module_data(BUDGET_MODULE_ID))
        return dict(project.phase_block(BUDGET_MODULE_ID, phase.value).data)

    def _check_phase(self, project: Project, phase: ProjectPhase | None) -> None:
        if phase is not None and not project.is_split_phase:
            raise ValueError(
                f"Project {project.project_id} is not a combined-phase application; "
                f"budget phase {phase.value!r} does not apply"
            )
        if phase is None and project.is_split_phase:
            raise ValueError(
                f"Project {project.project_id} budgets each phase separately; "
                "pass phase=ProjectPhase.PHASE1 or ProjectPhase.PHASE2"
            )

    def current_inputs(self, project: Project, phase: ProjectPhase | None = None) -> BudgetInputs:
        self._check_phase(project, phase)
        return budget_inputs_from_block(self._block_data(project, phase))

    def current_calculation(
        self,
        project: Project,
        phase: ProjectPhase | None = None,
    ) -> BudgetCalculation:
        return self.calculate(self.current_inputs(project, phase), self.budget_cap_for(project, phase))

    # =========================================================================
    # Write-back
    # =========================================================================

    def apply_inputs(
        self,
        project: Project,
        inputs: BudgetInputs,
        phase: ProjectPhase | None = None,
    ) -> BudgetUpdate:
        """
        Recalculate from ``inputs`` and install block and snapshot together.

        Raises:
            PhaseLockedError: ``phase`` is phase 2 and phase 1 is incomplete.
        """
        self._check_phase(project, phase)
        if phase is not None and not is_phase_block_editable(project, BUDGET_MODULE_ID, phase.value):
            raise PhaseLockedError(project.project_id, BUDGET_MODULE_ID, phase.value)

        cap = self.budget_cap_for(project, phase)
        calculation = self.calculate(inputs, cap)
        fields = budget_block_fields(inputs, calculation)

        if phase is None:
            updated = project.with_module_patch(BUDGET_MODULE_ID, fields)
        else:
            current = project.phase_block(BUDGET_MODULE_ID, phase.value)
            block = evaluate_phase_block(
                BUDGET_MODULE_ID, phase.value, apply_patch(current.data, fields)
            )
            updated = project.with_phase_block(BUDGET_MODULE_ID, block)
        updated = updated.with_legacy_budget(snapshot_from_calculation(inputs, calculation))
        updated = self._orchestrator.refresh_module_states(updated.touched(self._clock.now()))

        with LogContext.bind(project_id=project.project_id):
            logger.info(
                "budget_recalculated",
                extra={
                    "phase": phase.value if phase else None,
                    "total_direct_costs": calculation.total_direct_costs,
                    "total_project_costs": calculation.total_project_costs,
                    "budget_cap": calculation.budget_cap,
                    "budget_utilization": calculation.budget_utilization,
                },
            )
        return BudgetUpdate(updated, calculation, phase)

    def _edit(
        self,
        project: Project,
        phase: ProjectPhase | None,
        change: Callable[[BudgetInputs], BudgetInputs],
    ) -> BudgetUpdate:
        return self.apply_inputs(project, change(self.current_inputs(project, phase)), phase)

    # =========================================================================
    # Line items, rates, allocation
    # =========================================================================

    def update_line_items(
        self,
        project: Project,
        phase: ProjectPhase | None = None,
        **amounts: Decimal,
    ) -> BudgetUpdate:
        """Set one or more line items, e.g. ``personnel=Decimal("100000")``."""
        return self._edit(
            project,
            phase,
            lambda i: i.with_changes(line_items=replace(i.line_items, **amounts)),
        )

    def set_line_items(
        self,
        project: Project,
        line_items: LineItems,
        phase: ProjectPhase | None = None,
    ) -> BudgetUpdate:
        return self._edit(project, phase, lambda i: i.with_changes(line_items=line_items))

    def set_rates(
        self,
        project: Project,
        fa_rate: Decimal | None = None,
        fee_percent: Decimal | None = None,
        phase: ProjectPhase | None = None,
    ) -> BudgetUpdate:
        def change(inputs: BudgetInputs) -> BudgetInputs:
            rates = BudgetRates(
                fa_rate=inputs.rates.fa_rate if fa_rate is None else fa_rate,
                fee_percent=inputs.rates.fee_percent if fee_percent is None else fee_percent,
            )
            return inputs.with_changes(rates=rates)

        return self._edit(project, phase, change)

    def set_allocation(
        self,
        project: Project,
        small_business_percent: Decimal,
        research_institution_percent: Decimal | None = None,
        phase: ProjectPhase | None = None,
    ) -> BudgetUpdate:
        def change(inputs: BudgetInputs) -> BudgetInputs:
            return inputs.with_changes(
                small_business_percent=small_business_percent,
                research_institution_percent=(
                    inputs.research_institution_percent
                    if research_institution_percent is None
                    else research_institution_percent
                ),
            )

        return self._edit(project, phase, change)

    def set_justification(
        self,
        project: Project,
        justification: str,
        phase: ProjectPhase | None = None,
    ) -> BudgetUpdate:
        return self._edit(project, phase, lambda i: i.with_changes(justification=justification))

    # =========================================================================
    # Sub-awards
    # =========================================================================

    def add_sub_award(
        self,
        project: Project,
        institution_name: str,
        direct_costs: Decimal,
        fa_rate: Decimal,
        contact: str = "",
        phase: ProjectPhase | None = None,
        sub_award_id: str | None = None,
    ) -> BudgetUpdate:
        sub_award = SubAward.create(
            id=sub_award_id or f"sa_{uuid4().hex[:12]}",
            institution_name=institution_name,
            contact=contact,
            direct_costs=direct_costs,
            fa_rate=fa_rate,
        )
        return self._edit(
            project,
            phase,
            lambda i: i.with_changes(sub_awards=i.sub_awards + (sub_award,)),
        )

    def update_sub_award(
        self,
        project: Project,
        sub_award_id: str,
        phase: ProjectPhase | None = None,
        **changes: Any,
    ) -> BudgetUpdate:
        """
        Revise a sub-award; indirect costs and total are recomputed.

        Raises:
            SubAwardNotFoundError: no sub-award has ``sub_award_id``.
        """

        def change(inputs: BudgetInputs) -> BudgetInputs:
            if not any(sa.id == sub_award_id for sa in inputs.sub_awards):
                raise SubAwardNotFoundError(sub_award_id)
            return inputs.with_changes(sub_awards=tuple(
                sa.revise(**changes) if sa.id == sub_award_id else sa
                for sa in inputs.sub_awards
            ))

        return self._edit(project, phase, change)

    def remove_sub_award(
        self,
        project: Project,
        sub_award_id: str,
        phase: ProjectPhase | None = None,
    ) -> BudgetUpdate:
        def change(inputs: BudgetInputs) -> BudgetInputs:
            remaining = tuple(sa for sa in inputs.sub_awards if sa.id != sub_award_id)
            if len(remaining) == len(inputs.sub_awards):
                raise SubAwardNotFoundError(sub_award_id)
            return inputs.with_changes(sub_awards=remaining)

        return self._edit(project, phase, change)

    # =========================================================================
    # Vendors
    # =========================================================================

    def add_vendor(
        self,
        project: Project,
        name: str,
        amount: Decimal,
        description: str = "",
        phase: ProjectPhase | None = None,
        vendor_id: str | None = None,
    ) -> BudgetUpdate:
        vendor = Vendor(
            id=vendor_id or f"v_{uuid4().hex[:12]}",
            name=name,
            description=description,
            amount=amount,
        )
        return self._edit(project, phase, lambda i: i.with_changes(vendors=i.vendors + (vendor,)))

    def update_vendor(
        self,
        project: Project,
        vendor_id: str,
        phase: ProjectPhase | None = None,
        **changes: Any,
    ) -> BudgetUpdate:
        unknown = set(changes) - {"name", "description", "amount"}
        if unknown:
            raise ValueError(f"Cannot revise vendor fields: {sorted(unknown)}")

        def change(inputs: BudgetInputs) -> BudgetInputs:
            if not any(v.id == vendor_id for v in inputs.vendors):
                raise VendorNotFoundError(vendor_id)
            return inputs.with_changes(vendors=tuple(
                replace(v, **changes) if v.id == vendor_id else v for v in inputs.vendors
            ))

        return self._edit(project, phase, change)

    def remove_vendor(
        self,
        project: Project,
        vendor_id: str,
        phase: ProjectPhase | None = None,
    ) -> BudgetUpdate:
        def change(inputs: BudgetInputs) -> BudgetInputs:
            remaining = tuple(v for v in inputs.vendors if v.id != vendor_id)
            if len(remaining) == len(inputs.vendors):
                raise VendorNotFoundError(vendor_id)
            return inputs.with_changes(vendors=remaining)

        return self._edit(project, phase, change)
