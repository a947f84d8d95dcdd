"""
Grant kernel domain -- pure value objects and the application aggregate.

Nothing in this package performs I/O or reads the clock.
"""

from grant_kernel.domain.budget_types import (
    BudgetCalculation,
    BudgetInputs,
    BudgetRates,
    BudgetSnapshot,
    LineItems,
    SubAward,
    Vendor,
)
from grant_kernel.domain.modules import (
    COMMERCIALIZATION_MODULE_ID,
    COMPILATION_MODULE_ID,
    GATING_MODULE_IDS,
    MODULE_REGISTRY,
    SPLIT_MODULE_IDS,
    ModuleDefinition,
    ModuleKind,
    all_modules,
    get_module,
)
from grant_kernel.domain.project import (
    CURRENT_SCHEMA_VERSION,
    DEFAULT_INSTITUTE,
    ComplianceAuditEntry,
    FOAConfig,
    FOAOverrides,
    ModuleState,
    PhaseBlock,
    PhaseOverlay,
    PriorPhaseRecord,
    Project,
)
from grant_kernel.domain.types import (
    AuditAction,
    GrantType,
    ModuleStatus,
    ProgramType,
    ProjectPhase,
    Severity,
    ValidationIssue,
)

__all__ = [
    "AuditAction",
    "BudgetCalculation",
    "BudgetInputs",
    "BudgetRates",
    "BudgetSnapshot",
    "COMMERCIALIZATION_MODULE_ID",
    "COMPILATION_MODULE_ID",
    "CURRENT_SCHEMA_VERSION",
    "ComplianceAuditEntry",
    "DEFAULT_INSTITUTE",
    "FOAConfig",
    "FOAOverrides",
    "GATING_MODULE_IDS",
    "GrantType",
    "LineItems",
    "MODULE_REGISTRY",
    "ModuleDefinition",
    "ModuleKind",
    "ModuleState",
    "ModuleStatus",
    "PhaseBlock",
    "PhaseOverlay",
    "PriorPhaseRecord",
    "ProgramType",
    "Project",
    "ProjectPhase",
    "SPLIT_MODULE_IDS",
    "Severity",
    "SubAward",
    "ValidationIssue",
    "Vendor",
    "all_modules",
    "get_module",
]
