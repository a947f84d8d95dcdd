"""
grant_services.validation_orchestrator -- Full validation of a project.

Responsibility:
    Compose the completion evaluator, AI gate, lifecycle checker and budget
    validator into one ``ValidationResult``; derive the overall status; and
    write recomputed module states back into the project.

Architecture position:
    Services -- stateless orchestration over engines + kernel.  Policy
    values arrive through ``grant_config.bridges``; this module never reads
    YAML.

Invariants enforced:
    - Overall status is ``structurally_ready`` iff no merged issue is
      ERROR or CRITICAL.  Warnings never block.  ERROR blocks on purpose:
      gating on CRITICAL alone would let missing required fields
      (``MODULE_<n>_MISSING``) or an STTR split over 100% read as ready.
    - Deterministic and idempotent: the result carries no timestamps and
      two runs on an unmodified project are equal.
    - Module states are recomputed on every run and never read back from
      the stored project.
    - An unknown institute on a stored project becomes a critical issue
      rather than an exception, so old records remain inspectable.

Failure modes:
    - None for expected domain conditions; every violation is a
      ``ValidationIssue`` in the result.

Audit relevance:
    Each run logs ``validation_completed`` with status and issue counts
    under the project's log context.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from grant_config.bridges import (
    build_budget_rules,
    build_institute_limits,
    legacy_aims_fallback,
)
from grant_config.schema import GrantPolicy
from grant_engines.budget import validate_budget
from grant_engines.completion import (
    AIGatingResult,
    ModuleValidationResult,
    check_ai_gating,
    compute_module_states,
    evaluate_all,
    validate_modules,
)
from grant_engines.lifecycle import LifecycleValidationResult, validate_lifecycle
from grant_kernel.domain.project import ModuleState, Project
from grant_kernel.domain.serialization import module_state_to_dict
from grant_kernel.domain.types import Severity, ValidationIssue
from grant_kernel.exceptions import UnknownInstituteError
from grant_kernel.logging_config import LogContext, get_logger

logger = get_logger("services.validation")


class OverallStatus(str, Enum):
    STRUCTURALLY_READY = "structurally_ready"
    NOT_READY = "not_ready"


@dataclass(frozen=True)
class ValidationResult:
    """Everything the UI and the export gate need from one validation run."""

    status: OverallStatus
    phase: str
    errors: tuple[ValidationIssue, ...]
    warnings: tuple[ValidationIssue, ...]
    module_results: tuple[ModuleValidationResult, ...]
    ai_gating: AIGatingResult
    lifecycle: LifecycleValidationResult
    module_states: tuple[ModuleState, ...]
    policy_version: str

    @property
    def is_ready(self) -> bool:
        return self.status is OverallStatus.STRUCTURALLY_READY

    @property
    def critical_issues(self) -> tuple[ValidationIssue, ...]:
        return tuple(i for i in self.errors if i.severity is Severity.CRITICAL)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "phase": self.phase,
            "errors": [i.to_dict() for i in self.errors],
            "warnings": [i.to_dict() for i in self.warnings],
            "module_results": [r.to_dict() for r in self.module_results],
            "ai_gating": self.ai_gating.to_dict(),
            "lifecycle": self.lifecycle.to_dict(),
            "module_states": [module_state_to_dict(s) for s in self.module_states],
            "policy_version": self.policy_version,
        }


def _legacy_aims_warning() -> ValidationIssue:
    return ValidationIssue(
        code="AIMS_LEGACY_IGNORED",
        message=(
            "Single-phase Specific Aims are present but phase-specific aims are "
            "empty; the single-phase aims do not count for this grant type"
        ),
        field="m3",
        severity=Severity.WARNING,
    )


def _unknown_institute_issue(error: UnknownInstituteError) -> ValidationIssue:
    return ValidationIssue(
        code="INSTITUTE_UNKNOWN",
        message=str(error),
        field="institute",
        severity=Severity.CRITICAL,
    )


class ValidationOrchestrator:
    """
    Runs full validation against one policy pack.

    Contract:
        Receives a ``GrantPolicy`` via constructor injection; holds no
        per-project state.
    Guarantees:
        - ``run_full_validation`` is pure with respect to the project.
        - ``refresh_module_states`` returns a new project whose
          ``module_states`` reflect its current content.
    """

    def __init__(self, policy: GrantPolicy):
        self._policy = policy
        self._budget_rules = build_budget_rules(policy)
        self._aims_fallback = legacy_aims_fallback(policy)

    @property
    def policy(self) -> GrantPolicy:
        return self._policy

    def module_states(self, project: Project) -> tuple[ModuleState, ...]:
        return compute_module_states(project, self._aims_fallback)

    def refresh_module_states(self, project: Project) -> Project:
        return project.with_module_states(self.module_states(project))

    def _budget_issues(self, project: Project) -> tuple[ValidationIssue, ...]:
        try:
            limits = build_institute_limits(self._policy, project.institute)
        except UnknownInstituteError as exc:
            return (_unknown_institute_issue(exc),)
        return validate_budget(project, limits, self._budget_rules)

    def run_full_validation(self, project: Project) -> ValidationResult:
        """Recompute module states, then merge module, lifecycle and budget issues."""
        with LogContext.bind(project_id=project.project_id):
            evaluations = evaluate_all(project, self._aims_fallback)
            states = self.module_states(project)
            module_results = validate_modules(evaluations, project)
            gating = check_ai_gating(module_results)
            lifecycle = validate_lifecycle(project)

            issues: list[ValidationIssue] = []
            for result in module_results:
                issues.extend(result.issues)
            issues.extend(lifecycle.issues)
            issues.extend(self._budget_issues(project))
            if any(e.legacy_ignored for e in evaluations):
                issues.append(_legacy_aims_warning())

            errors = tuple(i for i in issues if i.severity.is_blocking)
            warnings = tuple(i for i in issues if not i.severity.is_blocking)
            status = OverallStatus.NOT_READY if errors else OverallStatus.STRUCTURALLY_READY

            logger.info(
                "validation_completed",
                extra={
                    "status": status.value,
                    "error_count": len(errors),
                    "warning_count": len(warnings),
                    "critical_count": sum(1 for i in errors if i.severity is Severity.CRITICAL),
                },
            )
            return ValidationResult(
                status=status,
                phase=lifecycle.target_state,
                errors=errors,
                warnings=warnings,
                module_results=module_results,
                ai_gating=gating,
                lifecycle=lifecycle,
                module_states=states,
                policy_version=self._policy.version,
            )
