"""
Compliance Audit Scorer (``grant_engines.compliance``).

Responsibility
--------------
Scores compiled application text and project context on two independent
0-100 scorecards and decides whether the result permits export:

* **Compliance score** = structure (30) + statistical (20) + regulatory (20)
  + commercial (20) + tone (10).  Each detected issue deducts from its
  category by severity; categories floor at zero.
* **Agency alignment score** = budget (25) + allocation (25) + funding
  opportunity (25) + clinical trial (25).

Detectors: promotional language, placeholder text, missing statistical
elements, missing Go/No-Go criteria, and the required elements of each
requested section type.

Architecture position
---------------------
**Engines layer** -- pure functional core.  ZERO I/O, ZERO clock reads.
Term lists, patterns, section rules and thresholds arrive as a
``ScoringRules`` value built from the policy pack.

Invariants enforced
-------------------
* ``export_allowed`` iff compliance total >= ``compliance_threshold``,
  alignment total >= ``alignment_threshold`` and no CRITICAL issue.
* Grant types in ``full_commercial_grant_types`` (feasibility-only work)
  always receive full commercial points.
* Same content, context and section types always produce the same result.
"""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from functools import lru_cache
from types import MappingProxyType
from typing import Any

from grant_engines.budget import (
    AllocationMinimums,
    InstituteLimits,
    allocation_minimums,
    effective_budget_cap,
)
from grant_engines.tracer import traced_engine
from grant_kernel.domain.project import FOAOverrides
from grant_kernel.domain.types import GrantType, ProgramType, ProjectPhase, Severity
from grant_kernel.exceptions import MissingBudgetCapError

AUDITOR_VERSION = "1.0.0"


class ScoreCategory(str, Enum):
    STRUCTURE = "structure"
    STATISTICAL = "statistical"
    REGULATORY = "regulatory"
    COMMERCIAL = "commercial"
    TONE = "tone"


CATEGORY_MAXIMUMS: Mapping[ScoreCategory, int] = MappingProxyType({
    ScoreCategory.STRUCTURE: 30,
    ScoreCategory.STATISTICAL: 20,
    ScoreCategory.REGULATORY: 20,
    ScoreCategory.COMMERCIAL: 20,
    ScoreCategory.TONE: 10,
})

ALIGNMENT_COMPONENT_MAX = 25


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PatternRule:
    pattern: str
    ignore_case: bool = True


@dataclass(frozen=True)
class ElementRule:
    """A required section element; any matching pattern satisfies it."""

    name: str
    patterns: tuple[str, ...]


@dataclass(frozen=True)
class SectionRule:
    section_type: str
    category: ScoreCategory
    description: str
    elements: tuple[ElementRule, ...]


@dataclass(frozen=True)
class ScoringRules:
    promotional_terms: tuple[str, ...] = ()
    placeholder_patterns: tuple[PatternRule, ...] = ()
    statistical_tests: tuple[str, ...] = ()
    go_no_go_markers: tuple[str, ...] = ()
    section_rules: Mapping[str, SectionRule] = field(default_factory=dict)
    go_no_go_grant_types: frozenset[GrantType] = frozenset(
        {GrantType.PHASE_I, GrantType.FAST_TRACK}
    )
    full_commercial_grant_types: frozenset[GrantType] = frozenset({GrantType.PHASE_I})
    deductions: Mapping[Severity, int] = field(default_factory=lambda: {
        Severity.CRITICAL: 10,
        Severity.ERROR: 5,
        Severity.WARNING: 2,
    })
    compliance_threshold: int = 90
    alignment_threshold: int = 100
    near_cap_ratio: Decimal = Decimal("0.95")


# ---------------------------------------------------------------------------
# Inputs and results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PhaseAllocation:
    """Effort split of one Fast Track phase budget; ``phase`` is None for an unsplit block."""

    phase: ProjectPhase | None
    small_business_percent: Decimal
    research_institution_percent: Decimal


@dataclass(frozen=True)
class AuditContext:
    """Project facts the scorer needs besides the narrative text.

    Fast Track carries one ``PhaseAllocation`` per populated phase budget,
    each scored against its own minimum; the flat percentages are used
    when ``phase_allocations`` is empty.
    """

    institute: str
    grant_type: GrantType | None
    program_type: ProgramType
    direct_costs: Decimal
    small_business_percent: Decimal
    research_institution_percent: Decimal
    clinical_trial_included: bool = False
    foa_number: str | None = None
    foa_overrides: FOAOverrides | None = None
    phase_allocations: tuple[PhaseAllocation, ...] = ()


@dataclass(frozen=True)
class ComplianceIssue:
    code: str
    severity: Severity
    section: str
    message: str
    category: ScoreCategory | None = None
    element: str | None = None
    suggestion: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "severity": self.severity.value,
            "section": self.section,
            "category": self.category.value if self.category else None,
            "message": self.message,
            "element": self.element,
            "suggestion": self.suggestion,
        }


@dataclass(frozen=True)
class ComplianceScore:
    total: int
    structure: int
    statistical: int
    regulatory: int
    commercial: int
    tone: int
    breakdown: Mapping[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "structure": self.structure,
            "statistical": self.statistical,
            "regulatory": self.regulatory,
            "commercial": self.commercial,
            "tone": self.tone,
            "breakdown": dict(self.breakdown),
        }


@dataclass(frozen=True)
class AgencyAlignmentScore:
    total: int
    budget_compliance: int
    allocation_compliance: int
    foa_compliance: int
    clinical_trial_compliance: int
    breakdown: Mapping[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "budget_compliance": self.budget_compliance,
            "allocation_compliance": self.allocation_compliance,
            "foa_compliance": self.foa_compliance,
            "clinical_trial_compliance": self.clinical_trial_compliance,
            "breakdown": dict(self.breakdown),
        }


@dataclass(frozen=True)
class ComplianceAuditResult:
    passed: bool
    compliance_score: ComplianceScore
    agency_alignment_score: AgencyAlignmentScore
    issues: tuple[ComplianceIssue, ...]
    export_allowed: bool
    auditor_version: str = AUDITOR_VERSION

    @property
    def blocking_issues(self) -> tuple[ComplianceIssue, ...]:
        return tuple(i for i in self.issues if i.severity is Severity.CRITICAL)

    def to_dict(self) -> dict[str, Any]:
        return {
            "passed": self.passed,
            "compliance_score": self.compliance_score.to_dict(),
            "agency_alignment_score": self.agency_alignment_score.to_dict(),
            "issues": [i.to_dict() for i in self.issues],
            "blocking_issues": [i.to_dict() for i in self.blocking_issues],
            "export_allowed": self.export_allowed,
            "auditor_version": self.auditor_version,
        }


def is_export_allowed(
    compliance_total: int,
    alignment_total: int,
    critical_count: int,
    rules: ScoringRules,
) -> bool:
    return (
        compliance_total >= rules.compliance_threshold
        and alignment_total >= rules.alignment_threshold
        and critical_count == 0
    )


# ---------------------------------------------------------------------------
# Detectors
# ---------------------------------------------------------------------------


@lru_cache(maxsize=512)
def _compile(pattern: str, ignore_case: bool = True) -> re.Pattern[str]:
    return re.compile(pattern, re.IGNORECASE if ignore_case else 0)


def detect_promotional_language(text: str, rules: ScoringRules) -> list[ComplianceIssue]:
    issues = []
    for term in rules.promotional_terms:
        if _compile(rf"\b{re.escape(term)}\b").search(text):
            issues.append(ComplianceIssue(
                code="CLAIM_PROMOTIONAL",
                severity=Severity.ERROR,
                section="content",
                category=ScoreCategory.TONE,
                message=f'Promotional language detected: "{term}"',
                element=term,
                suggestion=f'Remove or replace "{term}" with neutral scientific language',
            ))
    return issues


def detect_placeholders(text: str, rules: ScoringRules) -> list[ComplianceIssue]:
    """One critical issue per placeholder occurrence."""
    issues = []
    for rule in rules.placeholder_patterns:
        for match in _compile(rule.pattern, rule.ignore_case).finditer(text):
            issues.append(ComplianceIssue(
                code="PLACEHOLDER_DETECTED",
                severity=Severity.CRITICAL,
                section="content",
                category=ScoreCategory.TONE,
                message=f'Placeholder text found: "{match.group(0)}"',
                element=match.group(0),
                suggestion="Replace placeholder with actual content",
            ))
    return issues


_SAMPLE_SIZE_PATTERNS = (r"n\s*[=:]\s*\d+", r"\d+\s*samples?", r"\d+\s*subjects?")


def detect_missing_statistics(text: str, rules: ScoringRules) -> list[ComplianceIssue]:
    issues = []
    lower = text.lower()

    if any(w in lower for w in ("experiment", "study", "aim")):
        if not any(w in lower for w in ("power", "80%", "sample size")):
            issues.append(ComplianceIssue(
                code="STATS_MISSING_POWER",
                severity=Severity.ERROR,
                section="statistical",
                category=ScoreCategory.STATISTICAL,
                message="Missing power calculation or sample size justification",
                suggestion="Include power analysis with >= 80% power and effect size assumptions",
            ))

    has_test = any(t in lower for t in rules.statistical_tests)
    if not has_test and any(w in lower for w in ("compare", "analysis", "significant")):
        issues.append(ComplianceIssue(
            code="STATS_MISSING_TEST",
            severity=Severity.WARNING,
            section="statistical",
            category=ScoreCategory.STATISTICAL,
            message="Statistical test not specified",
            suggestion="Specify the statistical test to be used (e.g., t-test, ANOVA)",
        ))

    has_n = any(_compile(p).search(text) for p in _SAMPLE_SIZE_PATTERNS)
    if not has_n and any(w in lower for w in ("experiment", "group", "cohort")):
        issues.append(ComplianceIssue(
            code="STATS_MISSING_N",
            severity=Severity.WARNING,
            section="statistical",
            category=ScoreCategory.STATISTICAL,
            message="Sample size (n=) not specified",
            suggestion="Include sample size for experiments (e.g., n=6 per group)",
        ))
    return issues


def check_go_no_go_criteria(
    text: str,
    grant_type: GrantType | None,
    rules: ScoringRules,
) -> list[ComplianceIssue]:
    if grant_type not in rules.go_no_go_grant_types:
        return []
    lower = text.lower()
    found = any(m in lower for m in rules.go_no_go_markers) or (
        "proceed" in lower and "if" in lower
    )
    if found:
        return []
    return [ComplianceIssue(
        code="MISSING_GO_NO_GO",
        severity=Severity.CRITICAL,
        section="structure",
        category=ScoreCategory.STRUCTURE,
        message=f"Missing Go/No-Go criteria (required for {grant_type.value})",
        suggestion="Add explicit Go/No-Go decision criteria with quantitative thresholds",
    )]


def validate_section(section_type: str, text: str, rules: ScoringRules) -> list[ComplianceIssue]:
    """Required-element check for one section type; unknown types yield nothing."""
    rule = rules.section_rules.get(section_type)
    if rule is None:
        return []
    issues = []
    for element in rule.elements:
        if any(_compile(p).search(text) for p in element.patterns):
            continue
        label = element.name.replace("_", " ")
        issues.append(ComplianceIssue(
            code=f"MISSING_{element.name.upper()}",
            severity=Severity.ERROR,
            section=section_type,
            category=rule.category,
            message=f"Missing required element: {label}",
            element=element.name,
            suggestion=f"Add {label} to meet NIH requirements",
        ))
    return issues


# ---------------------------------------------------------------------------
# Scores
# ---------------------------------------------------------------------------


def calculate_compliance_score(
    issues: Sequence[ComplianceIssue],
    grant_type: GrantType | None,
    rules: ScoringRules,
) -> ComplianceScore:
    scores = dict(CATEGORY_MAXIMUMS)
    breakdown: dict[str, int] = {}
    for issue in issues:
        deduction = rules.deductions.get(issue.severity, 0)
        if issue.category is not None:
            scores[issue.category] = max(0, scores[issue.category] - deduction)
        breakdown[issue.code] = breakdown.get(issue.code, 0) + deduction

    if grant_type in rules.full_commercial_grant_types:
        scores[ScoreCategory.COMMERCIAL] = CATEGORY_MAXIMUMS[ScoreCategory.COMMERCIAL]

    return ComplianceScore(
        total=sum(scores.values()),
        structure=scores[ScoreCategory.STRUCTURE],
        statistical=scores[ScoreCategory.STATISTICAL],
        regulatory=scores[ScoreCategory.REGULATORY],
        commercial=scores[ScoreCategory.COMMERCIAL],
        tone=scores[ScoreCategory.TONE],
        breakdown=breakdown,
    )


def _allocation_failures(
    program_type: ProgramType,
    split: PhaseAllocation,
    minimums: AllocationMinimums,
) -> dict[str, int]:
    """Alignment points lost by one effort split, keyed by breakdown code."""
    if program_type is ProgramType.SBIR:
        if split.small_business_percent < minimums.small_business:
            return {"sbir_allocation_failed": ALIGNMENT_COMPONENT_MAX}
        return {}
    failures: dict[str, int] = {}
    if split.small_business_percent < minimums.small_business:
        failures["sttr_sb_allocation_failed"] = 15
    if (
        minimums.research_institution is not None
        and split.research_institution_percent < minimums.research_institution
    ):
        failures["sttr_ri_allocation_failed"] = 10
    return failures


def calculate_agency_alignment_score(
    context: AuditContext,
    limits: InstituteLimits,
    rules: ScoringRules,
) -> AgencyAlignmentScore:
    breakdown: dict[str, int] = {}
    full = ALIGNMENT_COMPONENT_MAX

    budget = full
    try:
        cap = effective_budget_cap(limits, context.grant_type, context.foa_overrides)
    except MissingBudgetCapError:
        cap = None
    if cap is None:
        budget = 0
        breakdown["budget_cap_missing"] = full
    elif context.direct_costs > cap:
        budget = 0
        breakdown["budget_exceeded"] = full
    elif context.direct_costs > cap * rules.near_cap_ratio:
        budget = 20
        breakdown["budget_near_cap"] = full - budget

    allocations = context.phase_allocations or (
        PhaseAllocation(None, context.small_business_percent, context.research_institution_percent),
    )
    failed: dict[str, int] = {}
    for split in allocations:
        minimums = allocation_minimums(
            limits, context.program_type, context.grant_type, context.foa_overrides, split.phase
        )
        failed.update(_allocation_failures(context.program_type, split, minimums))
    breakdown.update(failed)
    allocation = max(0, full - sum(failed.values()))

    foa = full
    if not context.foa_number and context.grant_type is not GrantType.PHASE_I:
        foa = 15
        breakdown["foa_not_specified"] = full - foa

    clinical = full
    overrides = context.foa_overrides
    trial_allowed = (
        overrides.clinical_trial_allowed
        if overrides is not None and overrides.clinical_trial_allowed is not None
        else limits.clinical_trial_allowed
    )
    if context.clinical_trial_included and not trial_allowed:
        clinical = 0
        breakdown["clinical_trial_not_allowed"] = full

    return AgencyAlignmentScore(
        total=budget + allocation + foa + clinical,
        budget_compliance=budget,
        allocation_compliance=allocation,
        foa_compliance=foa,
        clinical_trial_compliance=clinical,
        breakdown=breakdown,
    )


@traced_engine(
    "compliance.audit",
    AUDITOR_VERSION,
    fingerprint_fields=("content", "context", "section_types"),
)
def score_compliance(
    content: str,
    context: AuditContext,
    section_types: Sequence[str],
    limits: InstituteLimits,
    rules: ScoringRules,
) -> ComplianceAuditResult:
    """Run every detector, score both cards and decide export."""
    issues: list[ComplianceIssue] = []
    issues += detect_promotional_language(content, rules)
    issues += detect_placeholders(content, rules)
    issues += detect_missing_statistics(content, rules)
    issues += check_go_no_go_criteria(content, context.grant_type, rules)
    for section_type in section_types:
        issues += validate_section(section_type, content, rules)

    compliance = calculate_compliance_score(issues, context.grant_type, rules)
    alignment = calculate_agency_alignment_score(context, limits, rules)
    critical = sum(1 for i in issues if i.severity is Severity.CRITICAL)
    allowed = is_export_allowed(compliance.total, alignment.total, critical, rules)

    return ComplianceAuditResult(
        passed=allowed,
        compliance_score=compliance,
        agency_alignment_score=alignment,
        issues=tuple(issues),
        export_allowed=allowed,
    )
