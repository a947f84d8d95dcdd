"""
Test data builders shared across the grant test suite.

Provides:
- Complete narrative content for every module
- A fixed-result compliance scorer for export-gate tests
- Small helpers to fill modules and phase blocks on a project
"""

from decimal import Decimal

from grant_engines.compliance import (
    AgencyAlignmentScore,
    ComplianceAuditResult,
    ComplianceIssue,
    ComplianceScore,
    ScoringRules,
    is_export_allowed,
)
from grant_kernel.domain.modules import get_module
from grant_kernel.domain.project import Project
from grant_kernel.domain.types import Severity

COMPLETE_MODULES: dict[int, dict] = {
    1: {
        "project_title": "Point-of-care assay for early sepsis detection",
        "lay_summary": "A bedside test that flags sepsis hours earlier.",
        "scientific_abstract": "We will develop a microfluidic immunoassay for procalcitonin.",
        "problem_statement": "Sepsis is detected late in most emergency departments.",
        "proposed_solution": "A cartridge-based assay read by a handheld reader.",
        "target_population": "Adult emergency department patients",
        "therapeutic_area": "Infectious disease",
        "technology_type": "Diagnostic device",
    },
    2: {
        "central_hypothesis": "We hypothesize the assay matches laboratory sensitivity.",
        "supporting_rationale": "Procalcitonin rises within hours of bacterial infection.",
        "preliminary_data_summary": "Bench prototypes detected 0.1 ng/mL in spiked plasma.",
        "expected_outcomes": "Sensitivity above 90% against the reference assay.",
        "success_criteria": "Go/No-Go: sensitivity > 90% with n = 120 samples.",
    },
    3: {
        "aim1_statement": "Optimize the capture chemistry.",
        "aim1_milestones": "Limit of detection below 0.1 ng/mL.",
        "aim2_statement": "Validate against the laboratory reference.",
        "aim2_milestones": "Concordance above 90% in 120 banked samples.",
        "timeline_summary": "Aim 1 months 1-6, Aim 2 months 4-12.",
        "interdependencies": "Aim 2 uses the chemistry fixed in Aim 1.",
    },
    4: {
        "pi_name": "Dr. A. Rivera",
        "pi_qualifications": "Fifteen years of point-of-care assay development.",
        "key_personnel": ["Engineer: J. Okafor", "Statistician: M. Chen"],
    },
    5: {
        "methodology_overview": "Iterative design of capture chemistry, then blinded validation.",
        "experimental_design": "Randomized order of samples with blinded readers.",
        "data_collection_methods": "Reader output exported to a locked database.",
        "analysis_plan": "Concordance analysis against the reference assay.",
        "statistical_approach": "Power analysis gives 80% power with n = 120; alpha 0.05.",
        "expected_results": "Concordance above 90%.",
        "potential_pitfalls": "Matrix effects in hemolyzed samples.",
        "alternative_approaches": "Switch to a sandwich format if matrix effects persist.",
    },
    6: {
        "direct_costs_total": "200000",
        "personnel_costs": "120000",
        "small_business_percent": "70",
        "budget_justification": "Personnel and supplies for two aims over twelve months.",
    },
    7: {"facilities_description": "BSL-2 laboratory with assay development benches."},
    8: {
        "final_review_checklist": {"page_limits": True, "fonts": True},
        "page_limit_compliance": True,
        "format_compliance": True,
        "submission_readiness": "Ready",
    },
    9: {
        "section1_value": "Earlier sepsis treatment saves lives and cost.",
        "section2_company": "A twelve-person diagnostics company.",
        "section3_market": "US emergency departments, TAM $1.2B.",
        "section4_ip": "Two provisional patents filed.",
        "section5_finance": "Seed round closed; Phase II bridge planned.",
        "section6_revenue": "Revenue forecast reaches $20M by year five.",
    },
}

COMPLETE_PHASE_BLOCKS: dict[tuple[int, str], dict] = {
    (3, "phase1"): {
        "aim1_statement": "Prototype the cartridge.",
        "aim1_milestones": "Detection limit below 0.1 ng/mL.",
        "aim2_statement": "Bench validation.",
        "timeline_summary": "Months 1-12.",
    },
    (3, "phase2"): {
        "aim1_statement": "Clinical validation study.",
        "aim1_milestones": "Sensitivity above 90% in 600 patients.",
        "timeline_summary": "Months 13-36.",
    },
    (5, "phase1"): {
        "methodology_overview": "Design iterations.",
        "experimental_design": "Randomized blinded reads.",
        "data_collection_methods": "Locked database.",
        "analysis_plan": "Concordance.",
    },
    (7, "shared"): {"facilities_description": "BSL-2 laboratory."},
}

FEASIBILITY_EVIDENCE = {
    "preliminary_data_summary": "Pilot data in 40 patients.",
    "proof_of_feasibility_results": "Detection limit met.",
    "technical_feasibility_evidence": "Reader prototype built.",
    "risk_reduction_data": "Stability over 6 months.",
    "rationale_for_skipping_phase1": "Feasibility funded privately.",
    "commercialization_readiness_statement": "Distributor agreement in place.",
}


def fill_modules(project: Project, module_ids=range(1, 10), overrides=None) -> Project:
    """Patch complete content into the given modules' single-phase blocks."""
    overrides = overrides or {}
    for module_id in module_ids:
        data = dict(COMPLETE_MODULES[module_id])
        data.update(overrides.get(module_id, {}))
        project = project.with_module_patch(module_id, data)
    return project


def half_fill(module_id: int) -> dict:
    """Content populating only the first required field of a module."""
    first = get_module(module_id).required_fields[0]
    return {first: COMPLETE_MODULES[module_id][first]}


class FixedScorer:
    """Compliance scorer that returns a fixed result and counts calls."""

    def __init__(self, compliance: int = 95, alignment: int = 100, critical: int = 0):
        self.compliance = compliance
        self.alignment = alignment
        self.critical = critical
        self.calls = []

    def __call__(self, content, context, section_types):
        self.calls.append((content, context, tuple(section_types)))
        issues = tuple(
            ComplianceIssue(
                code="PLACEHOLDER_DETECTED",
                severity=Severity.CRITICAL,
                section="content",
                message=f"Placeholder text found: TBD #{n}",
            )
            for n in range(self.critical)
        )
        allowed = is_export_allowed(self.compliance, self.alignment, self.critical, ScoringRules())
        return ComplianceAuditResult(
            passed=allowed,
            compliance_score=ComplianceScore(
                total=self.compliance,
                structure=30,
                statistical=20,
                regulatory=20,
                commercial=20,
                tone=self.compliance - 90,
            ),
            agency_alignment_score=AgencyAlignmentScore(
                total=self.alignment,
                budget_compliance=25,
                allocation_compliance=25,
                foa_compliance=25,
                clinical_trial_compliance=self.alignment - 75,
            ),
            issues=issues,
            export_allowed=allowed,
        )


class FailingScorer:
    """Compliance scorer standing in for an unreachable scoring service."""

    def __init__(self, error: Exception | None = None):
        self.error = error or ConnectionError("scoring service unreachable")

    def __call__(self, content, context, section_types):
        raise self.error


def money(value) -> Decimal:
    return Decimal(str(value))
