"""
Module: grant_engines
Responsibility:
    Package entrypoint that re-exports the public symbols of the pure
    calculation engines.  This is the import surface for grant_services.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import grant_kernel (domain, exceptions, logging) and sibling
    engine modules.  MUST NOT import grant_config or grant_services.

Invariants enforced:
    - Purity: engines NEVER read the clock.  Audit timestamps are stamped
      by services from an injected ``Clock``.
    - Decimal-only arithmetic for every amount and percentage.
    - Determinism: identical inputs always produce identical outputs.
    - Expected rule violations are returned as values, never raised.

Audit relevance:
    Engine entry points are wrapped by ``@traced_engine`` and emit
    GRANT_ENGINE_TRACE records with an input fingerprint.

Usage:
    from grant_engines import calculate_budget, compute_module_states
    from grant_engines.compliance import score_compliance
"""

from grant_engines.budget import (
    AllocationMinimums,
    BudgetRules,
    DEFAULT_BUDGET_RULES,
    InstituteLimits,
    allocation_minimums,
    budget_block_fields,
    budget_inputs_from_block,
    calculate_budget,
    combined_direct_costs,
    effective_budget_cap,
    fast_track_budgets,
    resolve_budget_cap,
    snapshot_from_block,
    snapshot_from_calculation,
    validate_budget,
)
from grant_engines.completion import (
    AIGatingResult,
    ModuleEvaluation,
    ModuleValidationResult,
    check_ai_gating,
    compute_module_states,
    evaluate_all,
    evaluate_module,
    validate_modules,
)
from grant_engines.compliance import (
    AgencyAlignmentScore,
    AuditContext,
    ComplianceAuditResult,
    ComplianceIssue,
    ComplianceScore,
    ElementRule,
    PatternRule,
    PhaseAllocation,
    ScoreCategory,
    ScoringRules,
    SectionRule,
    calculate_agency_alignment_score,
    calculate_compliance_score,
    is_export_allowed,
    score_compliance,
)
from grant_engines.fields import is_field_populated
from grant_engines.lifecycle import (
    DIRECT_PHASE2_REQUIRED_FIELDS,
    LifecycleValidationResult,
    validate_lifecycle,
)
from grant_engines.phase_overlay import (
    DataSource,
    ResolvedModule,
    evaluate_phase_block,
    is_phase_block_complete,
    is_phase_block_editable,
    resolve_module_data,
)

__all__ = [
    # Budget
    "AllocationMinimums",
    "BudgetRules",
    "DEFAULT_BUDGET_RULES",
    "InstituteLimits",
    "allocation_minimums",
    "budget_block_fields",
    "budget_inputs_from_block",
    "calculate_budget",
    "combined_direct_costs",
    "effective_budget_cap",
    "fast_track_budgets",
    "resolve_budget_cap",
    "snapshot_from_block",
    "snapshot_from_calculation",
    "validate_budget",
    # Completion
    "AIGatingResult",
    "ModuleEvaluation",
    "ModuleValidationResult",
    "check_ai_gating",
    "compute_module_states",
    "evaluate_all",
    "evaluate_module",
    "is_field_populated",
    "validate_modules",
    # Compliance
    "AgencyAlignmentScore",
    "AuditContext",
    "ComplianceAuditResult",
    "ComplianceIssue",
    "ComplianceScore",
    "ElementRule",
    "PatternRule",
    "PhaseAllocation",
    "ScoreCategory",
    "ScoringRules",
    "SectionRule",
    "calculate_agency_alignment_score",
    "calculate_compliance_score",
    "is_export_allowed",
    "score_compliance",
    # Lifecycle
    "DIRECT_PHASE2_REQUIRED_FIELDS",
    "LifecycleValidationResult",
    "validate_lifecycle",
    # Phase overlay
    "DataSource",
    "ResolvedModule",
    "evaluate_phase_block",
    "is_phase_block_complete",
    "is_phase_block_editable",
    "resolve_module_data",
]
