"""
GrantPolicy schema.

Defines the human-authored, reviewable policy pack for NIH SBIR/STTR
compliance checking.  YAML is parsed into these types by the loader and
translated into engine inputs by ``grant_config.bridges``.

Key distinction:
  GrantPolicy     = source artifact (human-authored, versioned, checksummed)
  InstituteLimits / BudgetRules / ScoringRules = engine inputs built from it
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal

# ---------------------------------------------------------------------------
# Metadata
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PolicyMetadata:
    """Identity and freshness of a policy pack."""

    policy_id: str
    version: str
    last_updated: date
    expiry_months: int
    default_institute: str


# ---------------------------------------------------------------------------
# Institutes and budget
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class InstituteConfig:
    """Budget caps and allocation minima of one funding institute."""

    code: str
    name: str
    phase1_cap: Decimal
    phase2_cap: Decimal
    phase2b_cap: Decimal | None
    sbir_phase1_small_business_min: Decimal
    sbir_phase2_small_business_min: Decimal
    sttr_small_business_min: Decimal
    sttr_research_institution_min: Decimal
    clinical_trial_allowed: bool = True
    notes: str = ""


@dataclass(frozen=True)
class BudgetPolicy:
    mtdc_subaward_threshold: Decimal
    fee_percent_min: Decimal
    fee_percent_max: Decimal
    near_cap_ratio: Decimal


@dataclass(frozen=True)
class ExportPolicy:
    compliance_threshold: int
    alignment_threshold: int


# ---------------------------------------------------------------------------
# Phase constraints
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PhaseConstraintDef:
    """What a grant type is for and which narrative elements it needs."""

    grant_type: str
    budget_cap_key: str  # phase1, phase2, phase2b
    focus: str
    required_elements: tuple[str, ...] = ()
    commercialization_plan_required: bool = False
    commercialization_plan_pages: int | None = None
    go_no_go_required: bool = False


# ---------------------------------------------------------------------------
# Compliance scoring
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PlaceholderPatternDef:
    pattern: str
    ignore_case: bool = True


@dataclass(frozen=True)
class SectionElementDef:
    name: str
    patterns: tuple[str, ...]


@dataclass(frozen=True)
class SectionRuleDef:
    """Required elements of one narrative section type."""

    section_type: str
    category: str  # structure, statistical, regulatory, commercial, tone
    description: str
    elements: tuple[SectionElementDef, ...]


@dataclass(frozen=True)
class ScoringPolicy:
    deductions: tuple[tuple[str, int], ...]  # (severity, points)
    go_no_go_markers: tuple[str, ...]
    statistical_tests: tuple[str, ...]
    promotional_terms: tuple[str, ...]
    placeholder_patterns: tuple[PlaceholderPatternDef, ...]


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GrantPolicy:
    """Root of a loaded policy pack."""

    metadata: PolicyMetadata
    institutes: tuple[InstituteConfig, ...]
    budget: BudgetPolicy
    export: ExportPolicy
    phase_constraints: tuple[PhaseConstraintDef, ...]
    scoring: ScoringPolicy
    sections: tuple[SectionRuleDef, ...]
    legacy_aims_fallback_grant_types: tuple[str, ...] = ()
    checksum: str = ""

    @property
    def version(self) -> str:
        return self.metadata.version

    @property
    def institute_codes(self) -> tuple[str, ...]:
        return tuple(i.code for i in self.institutes)

    def find_institute(self, code: str) -> InstituteConfig | None:
        for institute in self.institutes:
            if institute.code == code:
                return institute
        return None

    def phase_constraint(self, grant_type: str) -> PhaseConstraintDef | None:
        for constraint in self.phase_constraints:
            if constraint.grant_type == grant_type:
                return constraint
        return None
