"""
grant_services.project_service -- Project creation and content edits.

Responsibility:
    Create projects with eager configuration checks, select the grant type
    once, and apply module, phase-block, prior-phase and feasibility edits
    as explicit patch operations that return a new ``Project`` with fresh
    module states.

Architecture position:
    Services -- stateless orchestration over engines + kernel.  Persistence
    is the caller's concern (see ``grant_services.project_repository``).

Invariants enforced:
    - Institute, funding-opportunity and Phase IIB cap problems are raised
      at creation (or grant-type selection), never deferred to validation.
    - The grant type leaves the unselected state exactly once.
    - A secondary phase block cannot be edited while its primary block is
      incomplete; each edited phase block has its completeness flag
      re-derived.
    - Every returned project carries recomputed module states and an
      ``updated_at`` stamped from the injected clock.

Failure modes:
    - UnknownInstituteError, GrantTypeNotAllowedError,
      MissingBudgetCapError at creation / selection.
    - GrantTypeAlreadySelectedError on a second selection.
    - PhaseLockedError when editing a locked secondary phase block.
    - ValueError for unknown module ids or block names.

Audit relevance:
    Creation and every edit log a snake_case event under the project's
    log context.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any
from uuid import uuid4

from grant_config.bridges import build_institute_limits
from grant_config.schema import GrantPolicy
from grant_engines.budget import resolve_budget_cap
from grant_engines.phase_overlay import evaluate_phase_block, is_phase_block_editable
from grant_kernel.domain.clock import Clock, SystemClock
from grant_kernel.domain.project import (
    FOAConfig,
    PriorPhaseRecord,
    Project,
    apply_patch,
)
from grant_kernel.domain.types import GrantType, ProgramType
from grant_kernel.exceptions import GrantTypeNotAllowedError, PhaseLockedError
from grant_kernel.logging_config import LogContext, get_logger
from grant_services.validation_orchestrator import ValidationOrchestrator

logger = get_logger("services.project")


def new_project_id() -> str:
    return f"proj_{uuid4().hex[:16]}"


class ProjectService:
    """
    Creates and edits projects.

    Contract:
        Receives a ``GrantPolicy`` and an optional ``Clock`` via
        constructor injection.
    Guarantees:
        - Every method returns a new ``Project``; inputs are never mutated.
    Non-goals:
        - Budget line items, sub-awards and vendors are edited through
          ``BudgetService`` so the derived budget views stay consistent.
    """

    def __init__(self, policy: GrantPolicy, clock: Clock | None = None):
        self._policy = policy
        self._clock = clock or SystemClock()
        self._orchestrator = ValidationOrchestrator(policy)

    # =========================================================================
    # Creation and grant-type selection
    # =========================================================================

    def _check_grant_type(self, institute: str, foa: FOAConfig, grant_type: GrantType) -> None:
        if not foa.allows(grant_type):
            raise GrantTypeNotAllowedError(grant_type.value, foa.foa_number)
        # Raises MissingBudgetCapError, e.g. Phase IIB at an institute with no IIB cap.
        resolve_budget_cap(build_institute_limits(self._policy, institute), grant_type)

    def create_project(
        self,
        grant_type: GrantType | None,
        program_type: ProgramType = ProgramType.SBIR,
        institute: str | None = None,
        *,
        project_id: str | None = None,
        foa: FOAConfig | None = None,
        clinical_trial_included: bool = False,
    ) -> Project:
        """
        Create a project, validating its configuration eagerly.

        Raises:
            UnknownInstituteError: ``institute`` is not in the policy pack.
            GrantTypeNotAllowedError: the funding opportunity forbids
                ``grant_type``.
            MissingBudgetCapError: the institute defines no cap for
                ``grant_type``.
        """
        institute = institute or self._policy.metadata.default_institute
        foa = foa or FOAConfig()
        build_institute_limits(self._policy, institute)
        if grant_type is not None:
            self._check_grant_type(institute, foa, grant_type)

        now = self._clock.now()
        project = Project(
            project_id=project_id or new_project_id(),
            grant_type=grant_type,
            program_type=program_type,
            institute=institute,
            created_at=now,
            updated_at=now,
            foa=foa,
            clinical_trial_included=clinical_trial_included,
        )
        project = self._orchestrator.refresh_module_states(project)

        with LogContext.bind(project_id=project.project_id):
            logger.info(
                "project_created",
                extra={
                    "grant_type": grant_type.value if grant_type else None,
                    "program_type": program_type.value,
                    "institute": institute,
                    "policy_version": self._policy.version,
                },
            )
        return project

    def select_grant_type(self, project: Project, grant_type: GrantType) -> Project:
        """
        Leave the unselected state.

        Raises:
            GrantTypeAlreadySelectedError: a grant type is already set.
            GrantTypeNotAllowedError / MissingBudgetCapError: as for creation.
        """
        if project.grant_type is None:
            self._check_grant_type(project.institute, project.foa, grant_type)
        updated = project.with_selected_grant_type(grant_type)
        with LogContext.bind(project_id=project.project_id):
            logger.info("grant_type_selected", extra={"grant_type": grant_type.value})
        return self._finish(updated)

    # =========================================================================
    # Content edits
    # =========================================================================

    def _finish(self, project: Project) -> Project:
        return self._orchestrator.refresh_module_states(project.touched(self._clock.now()))

    def patch_module(
        self,
        project: Project,
        module_id: int,
        changes: Mapping[str, Any],
    ) -> Project:
        """Apply ``changes`` to a module's single-phase block (None removes a key)."""
        updated = project.with_module_patch(module_id, changes)
        with LogContext.bind(project_id=project.project_id):
            logger.info(
                "module_patched",
                extra={"module_id": module_id, "fields": sorted(changes)},
            )
        return self._finish(updated)

    def patch_phase_block(
        self,
        project: Project,
        module_id: int,
        block_name: str,
        changes: Mapping[str, Any],
    ) -> Project:
        """
        Apply ``changes`` to one phase block and re-derive its completeness.

        Raises:
            PhaseLockedError: ``block_name`` is the secondary block and the
                primary block is not complete.
        """
        if not is_phase_block_editable(project, module_id, block_name):
            raise PhaseLockedError(project.project_id, module_id, block_name)
        current = project.phase_block(module_id, block_name)
        block = evaluate_phase_block(module_id, block_name, apply_patch(current.data, changes))
        updated = project.with_phase_block(module_id, block)
        with LogContext.bind(project_id=project.project_id):
            logger.info(
                "phase_block_patched",
                extra={
                    "module_id": module_id,
                    "block": block_name,
                    "fields": sorted(changes),
                    "block_complete": block.complete,
                },
            )
        return self._finish(updated)

    def update_prior_phase(self, project: Project, **changes: Any) -> Project:
        """Edit prior-phase documentation (attribute names, not persisted keys)."""
        unknown = set(changes) - set(PriorPhaseRecord.WIRE_NAMES)
        if unknown:
            raise ValueError(f"Unknown prior-phase fields: {sorted(unknown)}")
        updated = project.with_prior_phase(**changes)
        with LogContext.bind(project_id=project.project_id):
            logger.info("prior_phase_updated", extra={"fields": sorted(changes)})
        return self._finish(updated)

    def patch_feasibility(self, project: Project, changes: Mapping[str, Any]) -> Project:
        """Edit the Direct to Phase II feasibility evidence."""
        updated = project.with_feasibility_patch(changes)
        with LogContext.bind(project_id=project.project_id):
            logger.info("feasibility_patched", extra={"fields": sorted(changes)})
        return self._finish(updated)

    def set_clinical_trial(self, project: Project, included: bool) -> Project:
        return self._finish(project.with_clinical_trial(included))

    def set_funding_opportunity(self, project: Project, foa: FOAConfig) -> Project:
        """
        Replace the funding-opportunity configuration.

        Raises:
            GrantTypeNotAllowedError: the new opportunity forbids the
                project's selected grant type.
        """
        if project.grant_type is not None and not foa.allows(project.grant_type):
            raise GrantTypeNotAllowedError(project.grant_type.value, foa.foa_number)
        updated = project.with_foa(foa)
        with LogContext.bind(project_id=project.project_id):
            logger.info("funding_opportunity_set", extra={"foa_number": foa.foa_number})
        return self._finish(updated)
