"""
Module Completion Evaluator (``grant_engines.completion``).

Responsibility
--------------
Derives each module's completion status from its (resolved) data, builds
the module-state array with the compilation-module lock, turns missing
fields into blocking validation issues, and answers the AI-refinement gate.

Architecture position
---------------------
**Engines layer** -- pure functional core.  ZERO I/O, ZERO clock reads.

Invariants enforced
-------------------
* ``incomplete`` when no required field is populated, ``complete`` when all
  are, ``partial`` otherwise.
* Module 8 is locked iff any of modules 1-7 is not ``complete``.
* Module 9 produces no blocking issues when commercialization is not
  required: feasibility-only grants, no grant type selected, or a funding
  opportunity that waives it.
* Module states are derived on every call and never read back from the
  stored project.
"""

from __future__ import annotations

from dataclasses import dataclass

from grant_engines.fields import is_field_populated
from grant_engines.phase_overlay import DataSource, resolve_module_data
from grant_engines.tracer import traced_engine
from grant_kernel.domain.modules import (
    COMMERCIALIZATION_MODULE_ID,
    COMPILATION_MODULE_ID,
    GATING_MODULE_IDS,
    all_modules,
    get_module,
)
from grant_kernel.domain.project import ModuleState, Project
from grant_kernel.domain.types import GrantType, ModuleStatus, Severity, ValidationIssue


@dataclass(frozen=True)
class ModuleEvaluation:
    module_id: int
    status: ModuleStatus
    completed_fields: tuple[str, ...]
    missing_fields: tuple[str, ...]
    source: DataSource = DataSource.MODULE
    legacy_ignored: bool = False


@dataclass(frozen=True)
class ModuleValidationResult:
    module_id: int
    status: ModuleStatus
    missing_fields: tuple[str, ...]
    populated_fields: tuple[str, ...]
    issues: tuple[ValidationIssue, ...]
    exempt: bool = False

    def to_dict(self) -> dict:
        return {
            "module_id": self.module_id,
            "status": self.status.value,
            "missing_fields": list(self.missing_fields),
            "populated_fields": list(self.populated_fields),
            "issues": [i.to_dict() for i in self.issues],
            "exempt": self.exempt,
        }


@dataclass(frozen=True)
class AIGatingResult:
    """Whether AI refinement may run, and what blocks it if not."""

    allowed: bool
    blocking_reason: str | None
    missing_modules: tuple[int, ...]
    missing_fields: tuple[tuple[int, tuple[str, ...]], ...]

    def to_dict(self) -> dict:
        return {
            "allowed": self.allowed,
            "blocking_reason": self.blocking_reason,
            "missing_modules": list(self.missing_modules),
            "missing_fields": [
                {"module_id": m, "fields": list(f)} for m, f in self.missing_fields
            ],
        }


def status_for(populated: int, required: int) -> ModuleStatus:
    if populated == 0:
        return ModuleStatus.INCOMPLETE
    if populated == required:
        return ModuleStatus.COMPLETE
    return ModuleStatus.PARTIAL


def evaluate_module(
    project: Project,
    module_id: int,
    legacy_aims_fallback: frozenset[GrantType] = frozenset(),
) -> ModuleEvaluation:
    definition = get_module(module_id)
    resolved = resolve_module_data(project, module_id, legacy_aims_fallback)
    completed = tuple(f for f in definition.required_fields if is_field_populated(resolved.data.get(f)))
    missing = tuple(f for f in definition.required_fields if f not in completed)
    return ModuleEvaluation(
        module_id=module_id,
        status=status_for(len(completed), len(definition.required_fields)),
        completed_fields=completed,
        missing_fields=missing,
        source=resolved.source,
        legacy_ignored=resolved.legacy_ignored,
    )


def evaluate_all(
    project: Project,
    legacy_aims_fallback: frozenset[GrantType] = frozenset(),
) -> tuple[ModuleEvaluation, ...]:
    return tuple(evaluate_module(project, d.id, legacy_aims_fallback) for d in all_modules())


@traced_engine("completion.module_states", "1.0", fingerprint_fields=("project",))
def compute_module_states(
    project: Project,
    legacy_aims_fallback: frozenset[GrantType] = frozenset(),
) -> tuple[ModuleState, ...]:
    """Full module-state array, including the compilation-module lock."""
    evaluations = evaluate_all(project, legacy_aims_fallback)
    gating_complete = all(
        e.status is ModuleStatus.COMPLETE for e in evaluations if e.module_id in GATING_MODULE_IDS
    )
    states = []
    for evaluation in evaluations:
        definition = get_module(evaluation.module_id)
        states.append(ModuleState(
            module_id=definition.id,
            name=definition.name,
            required_fields=definition.required_fields,
            completed_fields=evaluation.completed_fields,
            status=evaluation.status,
            locked=definition.id == COMPILATION_MODULE_ID and not gating_complete,
        ))
    return tuple(states)


def commercialization_required(project: Project) -> bool:
    if project.grant_type is None or project.grant_type is GrantType.PHASE_I:
        return False
    return project.foa.commercialization_required


def validate_modules(
    evaluations: tuple[ModuleEvaluation, ...],
    project: Project,
) -> tuple[ModuleValidationResult, ...]:
    """One result per module; missing fields become error-level issues."""
    exempt_commercialization = not commercialization_required(project)
    results = []
    for evaluation in evaluations:
        if evaluation.module_id == COMMERCIALIZATION_MODULE_ID and exempt_commercialization:
            results.append(ModuleValidationResult(
                module_id=evaluation.module_id,
                status=ModuleStatus.COMPLETE,
                missing_fields=(),
                populated_fields=(),
                issues=(),
                exempt=True,
            ))
            continue
        issues = tuple(
            ValidationIssue(
                code=f"MODULE_{evaluation.module_id}_MISSING",
                message=f"Missing required field: {field.replace('_', ' ')}",
                field=f"m{evaluation.module_id}.{field}",
                severity=Severity.ERROR,
            )
            for field in evaluation.missing_fields
        )
        results.append(ModuleValidationResult(
            module_id=evaluation.module_id,
            status=evaluation.status,
            missing_fields=evaluation.missing_fields,
            populated_fields=evaluation.completed_fields,
            issues=issues,
        ))
    return tuple(results)


def check_ai_gating(results: tuple[ModuleValidationResult, ...]) -> AIGatingResult:
    """AI refinement requires modules 1-7 to be complete."""
    blocking = [
        r for r in results
        if r.module_id in GATING_MODULE_IDS and r.status is not ModuleStatus.COMPLETE
    ]
    if not blocking:
        return AIGatingResult(True, None, (), ())
    return AIGatingResult(
        allowed=False,
        blocking_reason=(
            f"AI refinement requires Modules 1-7 to be complete. "
            f"{len(blocking)} module(s) incomplete."
        ),
        missing_modules=tuple(r.module_id for r in blocking),
        missing_fields=tuple((r.module_id, r.missing_fields) for r in blocking),
    )
