"""
Config -> Engine Bridges.

Functions that convert a loaded ``GrantPolicy`` into the plain value
inputs the pure engines take.  These live in grant_config (the producer)
because neither the kernel nor the engines may import grant_config.

Usage:
    from grant_config.bridges import build_institute_limits, build_scoring_rules

    policy = get_active_policy()
    limits = build_institute_limits(policy, project.institute)
    rules = build_scoring_rules(policy)
"""

from __future__ import annotations

from types import MappingProxyType

from grant_config.schema import GrantPolicy, InstituteConfig
from grant_engines.budget import BudgetRules, InstituteLimits
from grant_engines.compliance import (
    ElementRule,
    PatternRule,
    ScoreCategory,
    ScoringRules,
    SectionRule,
)
from grant_kernel.domain.types import GrantType, Severity
from grant_kernel.exceptions import UnknownInstituteError


def institute_config(policy: GrantPolicy, code: str) -> InstituteConfig:
    """Look up an institute by code.

    Raises:
        UnknownInstituteError: if the policy does not define ``code``.
    """
    institute = policy.find_institute(code)
    if institute is None:
        raise UnknownInstituteError(code, policy.institute_codes)
    return institute


def build_institute_limits(policy: GrantPolicy, code: str) -> InstituteLimits:
    institute = institute_config(policy, code)
    return InstituteLimits(
        code=institute.code,
        name=institute.name,
        phase1_cap=institute.phase1_cap,
        phase2_cap=institute.phase2_cap,
        phase2b_cap=institute.phase2b_cap,
        sbir_phase1_small_business_min=institute.sbir_phase1_small_business_min,
        sbir_phase2_small_business_min=institute.sbir_phase2_small_business_min,
        sttr_small_business_min=institute.sttr_small_business_min,
        sttr_research_institution_min=institute.sttr_research_institution_min,
        clinical_trial_allowed=institute.clinical_trial_allowed,
    )


def build_budget_rules(policy: GrantPolicy) -> BudgetRules:
    budget = policy.budget
    return BudgetRules(
        mtdc_threshold=budget.mtdc_subaward_threshold,
        fee_min=budget.fee_percent_min,
        fee_max=budget.fee_percent_max,
        near_cap_ratio=budget.near_cap_ratio,
    )


def build_scoring_rules(policy: GrantPolicy) -> ScoringRules:
    """Build the compliance scorer's rules.

    Go/No-Go and full-commercial grant types come from the phase
    constraints table: a grant type needs Go/No-Go criteria when its
    constraint says so, and receives full commercial points when it needs
    no commercialization plan.

    Raises:
        ValueError: if a section names an unknown score category.
    """
    section_rules = {
        section.section_type: SectionRule(
            section_type=section.section_type,
            category=ScoreCategory(section.category),
            description=section.description,
            elements=tuple(ElementRule(e.name, e.patterns) for e in section.elements),
        )
        for section in policy.sections
    }
    constraints = policy.phase_constraints
    return ScoringRules(
        promotional_terms=policy.scoring.promotional_terms,
        placeholder_patterns=tuple(
            PatternRule(p.pattern, p.ignore_case) for p in policy.scoring.placeholder_patterns
        ),
        statistical_tests=policy.scoring.statistical_tests,
        go_no_go_markers=policy.scoring.go_no_go_markers,
        section_rules=MappingProxyType(section_rules),
        go_no_go_grant_types=frozenset(
            GrantType(c.grant_type) for c in constraints if c.go_no_go_required
        ),
        full_commercial_grant_types=frozenset(
            GrantType(c.grant_type) for c in constraints if not c.commercialization_plan_required
        ),
        deductions=MappingProxyType({
            Severity(severity): points for severity, points in policy.scoring.deductions
        }),
        compliance_threshold=policy.export.compliance_threshold,
        alignment_threshold=policy.export.alignment_threshold,
        near_cap_ratio=policy.budget.near_cap_ratio,
    )


def legacy_aims_fallback(policy: GrantPolicy) -> frozenset[GrantType]:
    """Grant types allowed to satisfy empty phase aims from the legacy block."""
    return frozenset(GrantType(gt) for gt in policy.legacy_aims_fallback_grant_types)
