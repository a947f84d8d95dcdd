"""
Lifecycle State Machine (``grant_engines.lifecycle``).

Responsibility
--------------
Checks the documentation preconditions of the selected grant type.  The
grant type is a one-time selection out of the initial "unselected" state;
this engine reports which preconditions are still unmet.

Architecture position
---------------------
**Engines layer** -- pure functional core.  ZERO I/O, ZERO clock reads.

Invariants enforced
-------------------
* Phase I and Fast Track have no preconditions.
* Direct to Phase II needs all six feasibility-evidence fields; each
  missing one is its own critical issue naming the field.
* Phase II needs documented Phase I success, the award number and the
  completion date; each is an independent critical issue.
* Phase IIB needs documented Phase II success and the award number.
* Issue fields use the persisted key names (``prior_phase.awardNumber``).

Eager institute checks (Phase IIB without an IIB cap) are NOT done here;
they belong to project creation and raise ``MissingBudgetCapError``.
"""

from __future__ import annotations

from dataclasses import dataclass

from grant_engines.fields import is_field_populated
from grant_engines.tracer import traced_engine
from grant_kernel.domain.project import PriorPhaseRecord, Project
from grant_kernel.domain.types import GrantType, Severity, ValidationIssue

DIRECT_PHASE2_REQUIRED_FIELDS: tuple[str, ...] = (
    "preliminary_data_summary",
    "proof_of_feasibility_results",
    "technical_feasibility_evidence",
    "risk_reduction_data",
    "rationale_for_skipping_phase1",
    "commercialization_readiness_statement",
)

INITIAL_STATE = "Zero"


@dataclass(frozen=True)
class LifecycleValidationResult:
    valid: bool
    current_state: str
    target_state: str
    missing_fields: tuple[str, ...]
    issues: tuple[ValidationIssue, ...]

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "current_state": self.current_state,
            "target_state": self.target_state,
            "required_documentation": list(self.missing_fields),
            "issues": [i.to_dict() for i in self.issues],
        }


# (attribute, message) per prior-phase requirement
_PHASE_II_REQUIREMENTS = (
    ("phase1_success_documented", "Phase II requires documented Phase I success"),
    ("award_number", "Phase II requires Phase I award number"),
    ("completion_date", "Phase II requires Phase I completion date"),
)

_PHASE_IIB_REQUIREMENTS = (
    ("phase2_success_documented", "Phase IIB requires documented Phase II success"),
    ("award_number", "Phase IIB requires Phase II award number"),
)


def _prior_phase_issues(
    prior: PriorPhaseRecord,
    requirements: tuple[tuple[str, str], ...],
    code: str,
) -> list[tuple[str, ValidationIssue]]:
    missing = []
    for attr, message in requirements:
        value = getattr(prior, attr)
        satisfied = value is True if isinstance(value, bool) else is_field_populated(value)
        if not satisfied:
            wire = PriorPhaseRecord.WIRE_NAMES[attr]
            missing.append((wire, ValidationIssue(
                code=code,
                message=message,
                field=f"prior_phase.{wire}",
                severity=Severity.CRITICAL,
            )))
    return missing


@traced_engine("lifecycle.validate", "1.0", fingerprint_fields=("project",))
def validate_lifecycle(project: Project) -> LifecycleValidationResult:
    grant_type = project.grant_type
    if grant_type is None:
        return LifecycleValidationResult(
            valid=False,
            current_state="Unknown",
            target_state="Unknown",
            missing_fields=("grant_type",),
            issues=(ValidationIssue(
                code="LIFECYCLE_000",
                message="Grant type not selected",
                field="grant_type",
                severity=Severity.CRITICAL,
            ),),
        )

    missing: list[tuple[str, ValidationIssue]] = []
    if grant_type is GrantType.DIRECT_TO_PHASE_II:
        feasibility = project.direct_phase2_feasibility
        for name in DIRECT_PHASE2_REQUIRED_FIELDS:
            if not is_field_populated(feasibility.get(name)):
                missing.append((name, ValidationIssue(
                    code="LIFECYCLE_D2P_MISSING",
                    message=f"Direct to Phase II requires: {name.replace('_', ' ')}",
                    field=f"direct_phase2_feasibility.{name}",
                    severity=Severity.CRITICAL,
                )))
    elif grant_type is GrantType.PHASE_II:
        missing = _prior_phase_issues(project.prior_phase, _PHASE_II_REQUIREMENTS, "LIFECYCLE_002")
    elif grant_type is GrantType.PHASE_IIB:
        missing = _prior_phase_issues(project.prior_phase, _PHASE_IIB_REQUIREMENTS, "LIFECYCLE_003")

    return LifecycleValidationResult(
        valid=not missing,
        current_state=INITIAL_STATE,
        target_state=grant_type.value,
        missing_fields=tuple(name for name, _ in missing),
        issues=tuple(issue for _, issue in missing),
    )
