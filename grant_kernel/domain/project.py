"""
Project aggregate (``grant_kernel.domain.project``).

Responsibility
--------------
The application aggregate root and the value objects it owns: phase
blocks and overlays for split modules, prior-phase documentation, the
funding-opportunity configuration, derived module states and the
append-only compliance audit trail.

Architecture position
---------------------
**Kernel > Domain** -- pure data with ZERO I/O.  Engines read it; services
produce new versions of it.

Invariants enforced
-------------------
* ``Project`` is frozen.  Every change goes through an explicit ``with_*``
  operation that returns a new aggregate, so a reader never observes a
  half-applied edit.  Nested block dicts are copied on write and must not
  be mutated in place.
* Each split module exposes its phase blocks through ``phase_block()``;
  callers never reach into nested dicts to find a phase's data.
* The audit trail only grows: ``with_audit_entry`` appends and there is no
  operation that removes or rewrites an entry.
* The grant type is selected exactly once, out of the unselected state
  (``None``); ``with_selected_grant_type`` refuses to change it afterwards.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from typing import Any, Mapping

from grant_kernel.domain.budget_types import BudgetSnapshot
from grant_kernel.domain.modules import all_modules, get_module
from grant_kernel.domain.types import (
    AuditAction,
    GrantType,
    ModuleStatus,
    ProgramType,
)
from grant_kernel.exceptions import GrantTypeAlreadySelectedError

CURRENT_SCHEMA_VERSION = 3
DEFAULT_INSTITUTE = "Standard NIH"


def apply_patch(data: Mapping[str, Any], changes: Mapping[str, Any]) -> dict[str, Any]:
    """Return a copy of ``data`` with ``changes`` applied.

    A value of ``None`` removes the key.
    """
    patched = dict(data)
    for key, value in changes.items():
        if value is None:
            patched.pop(key, None)
        else:
            patched[key] = value
    return patched


# ---------------------------------------------------------------------------
# Phase overlays
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PhaseBlock:
    """Content of one phase of a split module plus its completeness flag."""

    name: str
    data: Mapping[str, Any] = field(default_factory=dict)
    complete: bool = False


@dataclass(frozen=True)
class PhaseOverlay:
    """The two phase blocks of a split module.

    ``primary`` is ``phase1`` (or ``shared`` for the regulatory module);
    ``secondary`` is ``phase2`` (or ``phase2_additional``).
    """

    module_id: int
    primary: PhaseBlock
    secondary: PhaseBlock

    @classmethod
    def empty(cls, module_id: int) -> PhaseOverlay:
        definition = get_module(module_id)
        if definition.phase_blocks is None:
            raise ValueError(f"Module {module_id} does not split by phase")
        primary, secondary = definition.phase_blocks
        return cls(module_id, PhaseBlock(primary), PhaseBlock(secondary))

    @property
    def block_names(self) -> tuple[str, str]:
        return (self.primary.name, self.secondary.name)

    def block(self, name: str) -> PhaseBlock:
        if name == self.primary.name:
            return self.primary
        if name == self.secondary.name:
            return self.secondary
        raise ValueError(
            f"Module {self.module_id} has no phase block {name!r} "
            f"(expected one of {self.block_names})"
        )

    def with_block(self, block: PhaseBlock) -> PhaseOverlay:
        if block.name == self.primary.name:
            return replace(self, primary=block)
        if block.name == self.secondary.name:
            return replace(self, secondary=block)
        raise ValueError(f"Module {self.module_id} has no phase block {block.name!r}")


# ---------------------------------------------------------------------------
# Lifecycle documentation and funding opportunity
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PriorPhaseRecord:
    """Documentation of a prior award, required by follow-on grant types."""

    award_number: str = ""
    completion_date: str = ""
    funding_source: str = ""
    findings: str = ""
    phase1_success_documented: bool = False
    phase2_success_documented: bool = False

    # attribute -> persisted key; validation issues name the persisted key
    WIRE_NAMES = {
        "award_number": "awardNumber",
        "completion_date": "completionDate",
        "funding_source": "fundingSource",
        "findings": "findings",
        "phase1_success_documented": "phase1_success_documented",
        "phase2_success_documented": "phase2_success_documented",
    }

    def to_dict(self) -> dict[str, Any]:
        return {wire: getattr(self, attr) for attr, wire in self.WIRE_NAMES.items()}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> PriorPhaseRecord:
        data = data or {}
        return cls(**{
            attr: data[wire]
            for attr, wire in cls.WIRE_NAMES.items()
            if data.get(wire) is not None
        })


@dataclass(frozen=True)
class FOAOverrides:
    """Values parsed from a funding opportunity that supersede institute policy."""

    budget_cap: Decimal | None = None
    small_business_min: Decimal | None = None
    research_institution_min: Decimal | None = None
    clinical_trial_allowed: bool | None = None


@dataclass(frozen=True)
class FOAConfig:
    direct_phase2_allowed: bool = True
    fast_track_allowed: bool = True
    phase2b_allowed: bool = True
    commercialization_required: bool = True
    foa_number: str | None = None
    overrides: FOAOverrides | None = None

    def allows(self, grant_type: GrantType) -> bool:
        if grant_type is GrantType.DIRECT_TO_PHASE_II:
            return self.direct_phase2_allowed
        if grant_type is GrantType.FAST_TRACK:
            return self.fast_track_allowed
        if grant_type is GrantType.PHASE_IIB:
            return self.phase2b_allowed
        return True


# ---------------------------------------------------------------------------
# Derived state and audit trail
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ModuleState:
    """Derived completion state of one module (recomputed, never authoritative)."""

    module_id: int
    name: str
    required_fields: tuple[str, ...]
    completed_fields: tuple[str, ...]
    status: ModuleStatus
    locked: bool


@dataclass(frozen=True)
class ComplianceAuditEntry:
    """One immutable element of the compliance audit trail."""

    timestamp: datetime
    action: AuditAction
    compliance_score: int
    agency_alignment_score: int
    passed: bool
    module_id: int | None = None
    section_type: str | None = None
    issues: tuple[str, ...] = ()
    blocking_issue_count: int = 0
    content_fingerprint: str | None = None


# ---------------------------------------------------------------------------
# Aggregate root
# ---------------------------------------------------------------------------


def _empty_modules() -> dict[int, dict[str, Any]]:
    return {d.id: {} for d in all_modules()}


def _empty_overlays() -> dict[int, PhaseOverlay]:
    return {d.id: PhaseOverlay.empty(d.id) for d in all_modules() if d.splits_by_phase}


@dataclass(frozen=True)
class Project:
    """A grant application.

    ``modules`` holds the single-phase (legacy) block of every module;
    ``overlays`` holds the phase blocks of the split modules.  Both always
    contain an entry for every applicable module id.
    """

    project_id: str
    grant_type: GrantType | None
    program_type: ProgramType
    institute: str
    created_at: datetime
    updated_at: datetime
    modules: Mapping[int, Mapping[str, Any]] = field(default_factory=_empty_modules)
    overlays: Mapping[int, PhaseOverlay] = field(default_factory=_empty_overlays)
    prior_phase: PriorPhaseRecord = field(default_factory=PriorPhaseRecord)
    direct_phase2_feasibility: Mapping[str, Any] = field(default_factory=dict)
    foa: FOAConfig = field(default_factory=FOAConfig)
    clinical_trial_included: bool = False
    legacy_budget: BudgetSnapshot = field(default_factory=BudgetSnapshot)
    module_states: tuple[ModuleState, ...] = ()
    audit_trail: tuple[ComplianceAuditEntry, ...] = ()
    last_compliance_score: int | None = None
    last_agency_alignment_score: int | None = None
    schema_version: int = CURRENT_SCHEMA_VERSION

    @property
    def is_split_phase(self) -> bool:
        return self.grant_type is GrantType.FAST_TRACK

    # -- accessors ---------------------------------------------------------

    def module_data(self, module_id: int) -> Mapping[str, Any]:
        get_module(module_id)
        return self.modules.get(module_id, {})

    def overlay(self, module_id: int) -> PhaseOverlay:
        if not get_module(module_id).splits_by_phase:
            raise ValueError(f"Module {module_id} does not split by phase")
        return self.overlays.get(module_id) or PhaseOverlay.empty(module_id)

    def phase_block(self, module_id: int, name: str) -> PhaseBlock:
        return self.overlay(module_id).block(name)

    # -- explicit patch operations ----------------------------------------

    def with_module_patch(self, module_id: int, changes: Mapping[str, Any]) -> Project:
        """Apply ``changes`` to a module's single-phase block."""
        modules = dict(self.modules)
        modules[module_id] = apply_patch(self.module_data(module_id), changes)
        return replace(self, modules=modules)

    def with_phase_block(self, module_id: int, block: PhaseBlock) -> Project:
        """Replace one phase block of a split module."""
        overlays = dict(self.overlays)
        overlays[module_id] = self.overlay(module_id).with_block(block)
        return replace(self, overlays=overlays)

    def with_selected_grant_type(self, grant_type: GrantType) -> Project:
        """Leave the unselected state.

        Raises:
            GrantTypeAlreadySelectedError: if a grant type is already set.
        """
        if self.grant_type is not None:
            raise GrantTypeAlreadySelectedError(self.project_id, self.grant_type.value)
        return replace(self, grant_type=grant_type)

    def with_clinical_trial(self, included: bool) -> Project:
        return replace(self, clinical_trial_included=included)

    def with_foa(self, foa: FOAConfig) -> Project:
        return replace(self, foa=foa)

    def with_legacy_budget(self, snapshot: BudgetSnapshot) -> Project:
        return replace(self, legacy_budget=snapshot)

    def with_module_states(self, states: tuple[ModuleState, ...]) -> Project:
        return replace(self, module_states=states)

    def with_last_scores(self, compliance: int, alignment: int) -> Project:
        return replace(
            self,
            last_compliance_score=compliance,
            last_agency_alignment_score=alignment,
        )

    def with_prior_phase(self, **changes: Any) -> Project:
        return replace(self, prior_phase=replace(self.prior_phase, **changes))

    def with_feasibility_patch(self, changes: Mapping[str, Any]) -> Project:
        return replace(
            self,
            direct_phase2_feasibility=apply_patch(self.direct_phase2_feasibility, changes),
        )

    def with_audit_entry(self, entry: ComplianceAuditEntry) -> Project:
        return replace(self, audit_trail=self.audit_trail + (entry,))

    def touched(self, at: datetime) -> Project:
        return replace(self, updated_at=at)

    # -- audit trail queries ----------------------------------------------

    def latest_audit_entry(self, action: AuditAction | None = None) -> ComplianceAuditEntry | None:
        for entry in reversed(self.audit_trail):
            if action is None or entry.action is action:
                return entry
        return None
