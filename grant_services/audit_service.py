"""
grant_services.audit_service -- Compliance audit, export gate and export.

Responsibility:
    Compile a project's narrative, call the compliance-scoring
    collaborator, record the result on the append-only audit trail, decide
    whether the project may be exported, and produce the export artifact.

Architecture position:
    Services -- orchestration over ``grant_engines.compliance`` and the
    kernel aggregate.  The scorer is injected; by default it is
    ``PolicyScorer``, which runs the rule-based engine against the active
    policy pack.

Invariants enforced:
    - Fail-closed: if scoring raises, nothing is recorded and the caller's
      project is unchanged; the failure surfaces as
      ``ComplianceScoringError``.
    - The export gate reads the most recent ``check`` entry and requires
      compliance >= threshold, alignment >= threshold, zero blocking
      issues, AND that the entry's content fingerprint matches the
      project's current content.  A post-audit edit closes the gate.
    - The artifact is produced only when the gate is open; every export
      attempt appends ``export_success`` or ``export_blocked``.
    - Audit entries are stamped from the injected clock.

Failure modes:
    - ComplianceScoringError when the scorer raises.
    - ExportNotAllowedError from ``ExportOutcome.require_artifact`` when
      the gate was closed.

Audit relevance:
    Logs ``compliance_audit_recorded``, ``export_blocked``,
    ``export_succeeded`` and ``revision_recorded`` with the scores and a
    per-run ``audit_run_id`` in the log context.
"""

from __future__ import annotations

import json
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any
from uuid import uuid4

from grant_config.bridges import build_institute_limits, build_scoring_rules, legacy_aims_fallback
from grant_config.schema import GrantPolicy
from grant_engines.budget import combined_direct_costs, fast_track_budgets
from grant_engines.compliance import (
    AuditContext,
    ComplianceAuditResult,
    PhaseAllocation,
    score_compliance,
)
from grant_engines.phase_overlay import resolve_module_data
from grant_kernel.domain.clock import Clock, SystemClock
from grant_kernel.domain.modules import COMMERCIALIZATION_MODULE_ID, get_module
from grant_kernel.domain.project import ComplianceAuditEntry, Project
from grant_kernel.domain.serialization import content_fingerprint, project_to_dict
from grant_kernel.domain.types import AuditAction, GrantType
from grant_kernel.exceptions import (
    ComplianceScoringError,
    ExportNotAllowedError,
    GrantKernelError,
)
from grant_kernel.logging_config import LogContext, get_logger
from grant_services.validation_orchestrator import ValidationOrchestrator, ValidationResult

logger = get_logger("services.audit")

# (content, context, section_types) -> result
ComplianceScorer = Callable[[str, AuditContext, Sequence[str]], ComplianceAuditResult]

NARRATIVE_MODULE_IDS: tuple[int, ...] = (1, 2, 3, 5, 7)
ALWAYS_AUDITED_SECTIONS: tuple[str, ...] = ("specific_aims", "rigor_reproducibility")


class PolicyScorer:
    """Rule-based scorer backed by a policy pack."""

    def __init__(self, policy: GrantPolicy):
        self._policy = policy
        self._rules = build_scoring_rules(policy)

    def __call__(
        self,
        content: str,
        context: AuditContext,
        section_types: Sequence[str],
    ) -> ComplianceAuditResult:
        limits = build_institute_limits(self._policy, context.institute)
        return score_compliance(content, context, section_types, limits, self._rules)


# =============================================================================
# Results
# =============================================================================


@dataclass(frozen=True)
class AuditOutcome:
    project: Project
    result: ComplianceAuditResult
    entry: ComplianceAuditEntry


@dataclass(frozen=True)
class ExportDecision:
    allowed: bool
    reason: str | None
    compliance_score: int | None
    agency_alignment_score: int | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "allowed": self.allowed,
            "reason": self.reason,
            "compliance_score": self.compliance_score,
            "agency_alignment_score": self.agency_alignment_score,
        }


@dataclass(frozen=True)
class ExportOutcome:
    project: Project
    decision: ExportDecision
    artifact: str | None = None

    def require_artifact(self) -> str:
        """
        Raises:
            ExportNotAllowedError: the gate was closed for this attempt.
        """
        if self.artifact is None:
            raise ExportNotAllowedError(
                self.project.project_id, self.decision.reason or "export gate closed"
            )
        return self.artifact


# =============================================================================
# Content compilation
# =============================================================================


def _collect_text(value: Any, out: list[str]) -> None:
    if isinstance(value, str):
        if value.strip():
            out.append(value.strip())
    elif isinstance(value, Mapping):
        for key in sorted(value):
            _collect_text(value[key], out)
    elif isinstance(value, (list, tuple)):
        for item in value:
            _collect_text(item, out)


def _needs_commercialization(project: Project) -> bool:
    return project.grant_type is not None and project.grant_type is not GrantType.PHASE_I


def compile_content(
    project: Project,
    legacy_aims_fallback_types: frozenset[GrantType] = frozenset(),
) -> str:
    """Narrative text of the audited modules, in module order."""
    parts: list[str] = []
    module_ids = NARRATIVE_MODULE_IDS
    if _needs_commercialization(project):
        module_ids = module_ids + (COMMERCIALIZATION_MODULE_ID,)
    for module_id in module_ids:
        data = resolve_module_data(project, module_id, legacy_aims_fallback_types).data
        definition = get_module(module_id)
        # Required fields first, in declared order, then the rest sorted.
        ordered = [f for f in definition.required_fields if f in data]
        ordered += sorted(k for k in data if k not in definition.required_fields)
        for key in ordered:
            _collect_text(data[key], parts)
    return "\n\n".join(parts)


def audited_section_types(project: Project) -> tuple[str, ...]:
    regulatory = resolve_module_data(project, 7).data
    sections = list(ALWAYS_AUDITED_SECTIONS)
    if regulatory.get("human_subjects_involved"):
        sections.append("human_subjects")
    if regulatory.get("vertebrate_animals_involved"):
        sections.append("vertebrate_animals")
    if _needs_commercialization(project):
        sections.append("commercialization_plan")
    return tuple(sections)


def build_audit_context(project: Project) -> AuditContext:
    snapshot = project.legacy_budget
    phase_allocations: tuple[PhaseAllocation, ...] = ()
    if project.grant_type is GrantType.FAST_TRACK:
        phase_allocations = tuple(
            PhaseAllocation(phase, s.small_business_percent, s.research_institution_percent)
            for phase, s in fast_track_budgets(project)
        )
    return AuditContext(
        institute=project.institute,
        grant_type=project.grant_type,
        program_type=project.program_type,
        direct_costs=combined_direct_costs(project),
        small_business_percent=snapshot.small_business_percent,
        research_institution_percent=snapshot.research_institution_percent,
        clinical_trial_included=project.clinical_trial_included,
        foa_number=project.foa.foa_number,
        foa_overrides=project.foa.overrides,
        phase_allocations=phase_allocations,
    )


# =============================================================================
# Service
# =============================================================================


class AuditService:
    """
    Records compliance audits and gates export.

    Contract:
        Receives a ``GrantPolicy``, an optional ``Clock`` and an optional
        scorer via constructor injection.
    Guarantees:
        - ``run_audit`` either returns a project with exactly one new
          ``check`` entry or raises without side effects.
        - ``can_export_project`` is pure.
    Non-goals:
        - Does not persist projects; callers save the returned project.
    """

    def __init__(
        self,
        policy: GrantPolicy,
        clock: Clock | None = None,
        scorer: ComplianceScorer | None = None,
    ):
        self._policy = policy
        self._clock = clock or SystemClock()
        self._scorer = scorer or PolicyScorer(policy)
        self._aims_fallback = legacy_aims_fallback(policy)
        self._orchestrator = ValidationOrchestrator(policy)

    # =========================================================================
    # Audit
    # =========================================================================

    def run_audit(
        self,
        project: Project,
        *,
        module_id: int | None = None,
        section_type: str | None = None,
    ) -> AuditOutcome:
        """
        Score the project and append a ``check`` entry.

        ``section_type`` restricts section-element checks to one section;
        otherwise the sections are derived from the project.

        Raises:
            ComplianceScoringError: the scorer raised.  ``project`` is
                unchanged and nothing was recorded.
        """
        content = compile_content(project, self._aims_fallback)
        context = build_audit_context(project)
        sections = (section_type,) if section_type else audited_section_types(project)

        with LogContext.bind(project_id=project.project_id, audit_run_id=uuid4().hex):
            try:
                result = self._scorer(content, context, sections)
            except ComplianceScoringError:
                raise
            except GrantKernelError as exc:
                raise ComplianceScoringError(project.project_id, f"{exc.code}: {exc}") from exc
            except Exception as exc:
                logger.error("compliance_scoring_failed", exc_info=True)
                raise ComplianceScoringError(project.project_id, str(exc) or type(exc).__name__) from exc

            entry = ComplianceAuditEntry(
                timestamp=self._clock.now(),
                action=AuditAction.CHECK,
                compliance_score=result.compliance_score.total,
                agency_alignment_score=result.agency_alignment_score.total,
                passed=result.passed,
                module_id=module_id,
                section_type=section_type,
                issues=tuple(i.message for i in result.issues),
                blocking_issue_count=len(result.blocking_issues),
                content_fingerprint=content_fingerprint(project),
            )
            updated = (
                project.with_audit_entry(entry)
                .with_last_scores(entry.compliance_score, entry.agency_alignment_score)
                .touched(entry.timestamp)
            )
            logger.info(
                "compliance_audit_recorded",
                extra={
                    "compliance_score": entry.compliance_score,
                    "agency_alignment_score": entry.agency_alignment_score,
                    "passed": entry.passed,
                    "issue_count": len(result.issues),
                    "blocking_issue_count": entry.blocking_issue_count,
                    "section_types": list(sections),
                    "auditor_version": result.auditor_version,
                },
            )
        return AuditOutcome(updated, result, entry)

    def record_revision(
        self,
        project: Project,
        module_id: int,
        changes: Mapping[str, Any],
        section_type: str | None = None,
    ) -> Project:
        """Accept an externally drafted revision of a module and record it."""
        revised = project.with_module_patch(module_id, changes)
        entry = ComplianceAuditEntry(
            timestamp=self._clock.now(),
            action=AuditAction.REVISION,
            compliance_score=project.last_compliance_score or 0,
            agency_alignment_score=project.last_agency_alignment_score or 0,
            passed=False,
            module_id=module_id,
            section_type=section_type,
            content_fingerprint=content_fingerprint(revised),
        )
        updated = self._orchestrator.refresh_module_states(
            revised.with_audit_entry(entry).touched(entry.timestamp)
        )
        with LogContext.bind(project_id=project.project_id):
            logger.info(
                "revision_recorded",
                extra={"module_id": module_id, "fields": sorted(changes)},
            )
        return updated

    # =========================================================================
    # Export gate
    # =========================================================================

    def can_export_project(self, project: Project) -> ExportDecision:
        """Export permission derived from the latest check and current content."""
        latest = project.latest_audit_entry(AuditAction.CHECK)
        if latest is None:
            return ExportDecision(False, "No compliance audit has been run", None, None)

        thresholds = self._policy.export
        compliance = latest.compliance_score
        alignment = latest.agency_alignment_score

        reason = None
        if latest.content_fingerprint != content_fingerprint(project):
            reason = "Content changed since the last compliance audit; re-run the audit"
        elif compliance < thresholds.compliance_threshold:
            reason = (
                f"Compliance score {compliance} is below the required "
                f"{thresholds.compliance_threshold}"
            )
        elif alignment < thresholds.alignment_threshold:
            reason = (
                f"Agency alignment score {alignment} is below the required "
                f"{thresholds.alignment_threshold}"
            )
        elif latest.blocking_issue_count > 0:
            reason = f"{latest.blocking_issue_count} blocking issue(s) must be resolved"

        return ExportDecision(reason is None, reason, compliance, alignment)

    def run_export(
        self,
        project: Project,
        validation: ValidationResult | None = None,
    ) -> ExportOutcome:
        """
        Attempt an export and record the attempt on the audit trail.

        The artifact is JSON text holding the project, the validation
        result, the export timestamp and the content fingerprint.
        """
        decision = self.can_export_project(project)
        now = self._clock.now()
        latest = project.latest_audit_entry(AuditAction.CHECK)
        fingerprint = content_fingerprint(project)

        def entry(action: AuditAction) -> ComplianceAuditEntry:
            return ComplianceAuditEntry(
                timestamp=now,
                action=action,
                compliance_score=latest.compliance_score if latest else 0,
                agency_alignment_score=latest.agency_alignment_score if latest else 0,
                passed=decision.allowed,
                blocking_issue_count=latest.blocking_issue_count if latest else 0,
                content_fingerprint=fingerprint,
            )

        with LogContext.bind(project_id=project.project_id):
            if not decision.allowed:
                updated = project.with_audit_entry(entry(AuditAction.EXPORT_BLOCKED)).touched(now)
                logger.warning("export_blocked", extra={"reason": decision.reason})
                return ExportOutcome(updated, decision)

            validation = validation or self._orchestrator.run_full_validation(project)
            artifact = json.dumps(
                {
                    "project": project_to_dict(project),
                    "validation": validation.to_dict(),
                    "exported_at": now.isoformat(),
                    "content_fingerprint": fingerprint,
                    "policy_version": self._policy.version,
                },
                indent=2,
                sort_keys=True,
            )
            updated = project.with_audit_entry(entry(AuditAction.EXPORT_SUCCESS)).touched(now)
            logger.info(
                "export_succeeded",
                extra={
                    "compliance_score": decision.compliance_score,
                    "agency_alignment_score": decision.agency_alignment_score,
                    "artifact_bytes": len(artifact),
                },
            )
        return ExportOutcome(updated, decision, artifact)
