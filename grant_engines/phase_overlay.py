"""
Phase Overlay Resolver (``grant_engines.phase_overlay``).

Responsibility
--------------
Combined-phase (Fast Track) applications keep two phase blocks for each
module that splits across phases.  This engine:

* resolves the single canonical view of such a module that the completion
  evaluator reads, and
* evaluates the module-specific completeness predicate of one phase block,
  which is what unlocks the second phase for editing.

Architecture position
---------------------
**Engines layer** -- pure functional core.  ZERO I/O, ZERO clock reads.
Imports only ``grant_kernel.domain`` types.

Invariants enforced
-------------------
* Predicates are selected by the module's ``ModuleKind`` tag; there is no
  branching on numeric module ids.
* The aims module concatenates phase-1 then phase-2 aims, renumbered from 1.
  The legacy single-phase aims block stands in for empty phase aims ONLY for
  grant types passed in ``legacy_aims_fallback``.  When a legacy block is
  present but not eligible, the resolution says so (``legacy_ignored``) so
  callers can surface it.
* Other split modules take the first populated value per field from the
  primary (phase-1 or shared) block, then the legacy block.
* A secondary phase block is editable only while the primary block is
  complete.

Failure modes
-------------
* ``ValueError`` for unknown module ids or block names (programming errors).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any

from grant_engines.fields import is_field_populated, positive_amount
from grant_kernel.domain.modules import ModuleDefinition, ModuleKind, get_module
from grant_kernel.domain.project import PhaseBlock, Project
from grant_kernel.domain.types import GrantType

MAX_AIMS_PER_PHASE = 3


class DataSource(str, Enum):
    """Where the resolved view of a module came from."""

    MODULE = "module"
    PHASE_OVERLAY = "phase_overlay"
    LEGACY_FALLBACK = "legacy_fallback"


@dataclass(frozen=True)
class ResolvedModule:
    module_id: int
    data: Mapping[str, Any]
    source: DataSource
    # a populated legacy aims block exists but this grant type may not use it
    legacy_ignored: bool = False


# ---------------------------------------------------------------------------
# Phase completeness predicates (one per module kind)
# ---------------------------------------------------------------------------


class PhasePredicate(ABC):
    """Completeness rule for the phase blocks of one kind of module."""

    kind: ModuleKind

    @abstractmethod
    def is_complete(self, block_name: str, data: Mapping[str, Any]) -> bool:
        ...


def _all_populated(data: Mapping[str, Any], names: Iterable[str]) -> bool:
    return all(is_field_populated(data.get(n)) for n in names)


class SpecificAimsPredicate(PhasePredicate):
    kind = ModuleKind.SPECIFIC_AIMS
    fields = ("aim1_statement", "aim1_milestones", "aim2_statement", "timeline_summary")

    def is_complete(self, block_name: str, data: Mapping[str, Any]) -> bool:
        return _all_populated(data, self.fields)


class ExperimentalApproachPredicate(PhasePredicate):
    kind = ModuleKind.EXPERIMENTAL_APPROACH
    fields = (
        "methodology_overview",
        "experimental_design",
        "data_collection_methods",
        "analysis_plan",
    )

    def is_complete(self, block_name: str, data: Mapping[str, Any]) -> bool:
        return _all_populated(data, self.fields)


class BudgetPredicate(PhasePredicate):
    kind = ModuleKind.BUDGET

    def is_complete(self, block_name: str, data: Mapping[str, Any]) -> bool:
        return positive_amount(data.get("direct_costs_total")) and is_field_populated(
            data.get("budget_justification")
        )


class RegulatoryPredicate(PhasePredicate):
    """Shared block: facilities plus every approval its own flags call for.

    The phase-2 additional block needs the commercialization material.
    """

    kind = ModuleKind.REGULATORY
    # involvement flag -> approval status field it requires
    conditional_approvals = (
        ("human_subjects_involved", "irb_approval_status"),
        ("vertebrate_animals_involved", "iacuc_approval_status"),
        ("biohazards_involved", "ibc_approval_status"),
    )
    phase2_fields = ("commercialization_plan", "market_analysis", "manufacturing_plan")

    def is_complete(self, block_name: str, data: Mapping[str, Any]) -> bool:
        if block_name == "phase2_additional":
            return _all_populated(data, self.phase2_fields)
        if not is_field_populated(data.get("facilities_description")):
            return False
        return all(
            is_field_populated(data.get(status))
            for flag, status in self.conditional_approvals
            if data.get(flag) is True
        )


PHASE_PREDICATES: Mapping[ModuleKind, PhasePredicate] = MappingProxyType({
    p.kind: p
    for p in (
        SpecificAimsPredicate(),
        ExperimentalApproachPredicate(),
        BudgetPredicate(),
        RegulatoryPredicate(),
    )
})


def _split_definition(module_id: int) -> ModuleDefinition:
    definition = get_module(module_id)
    if not definition.splits_by_phase:
        raise ValueError(f"Module {module_id} does not split by phase")
    return definition


def is_phase_block_complete(module_id: int, block_name: str, data: Mapping[str, Any]) -> bool:
    """Evaluate the module-specific predicate for one phase block."""
    definition = _split_definition(module_id)
    if block_name not in definition.phase_blocks:
        raise ValueError(
            f"Module {module_id} has no phase block {block_name!r} "
            f"(expected one of {definition.phase_blocks})"
        )
    return PHASE_PREDICATES[definition.kind].is_complete(block_name, data)


def evaluate_phase_block(module_id: int, block_name: str, data: Mapping[str, Any]) -> PhaseBlock:
    """Build a phase block with its completeness flag freshly derived."""
    return PhaseBlock(
        name=block_name,
        data=dict(data),
        complete=is_phase_block_complete(module_id, block_name, data),
    )


def is_phase_block_editable(project: Project, module_id: int, block_name: str) -> bool:
    """Primary blocks are always editable; the secondary waits on the primary."""
    overlay = project.overlay(module_id)
    if block_name == overlay.primary.name:
        return True
    overlay.block(block_name)
    return overlay.primary.complete


# ---------------------------------------------------------------------------
# Canonical view resolution
# ---------------------------------------------------------------------------


def _aims_of(data: Mapping[str, Any]) -> list[tuple[Any, Any]]:
    return [
        (data.get(f"aim{i}_statement"), data.get(f"aim{i}_milestones"))
        for i in range(1, MAX_AIMS_PER_PHASE + 1)
        if is_field_populated(data.get(f"aim{i}_statement"))
    ]


def _joined_text(values: Iterable[Any]) -> str | None:
    parts = [v.strip() for v in values if isinstance(v, str) and v.strip()]
    return "\n\n".join(parts) if parts else None


def concatenate_aims(phase1: Mapping[str, Any], phase2: Mapping[str, Any]) -> dict[str, Any]:
    """Phase-1 aims followed by phase-2 aims, renumbered aim1..aimN."""
    combined: dict[str, Any] = {}
    for number, (statement, milestones) in enumerate(_aims_of(phase1) + _aims_of(phase2), start=1):
        combined[f"aim{number}_statement"] = statement
        if is_field_populated(milestones):
            combined[f"aim{number}_milestones"] = milestones
    for name in ("timeline_summary", "interdependencies"):
        text = _joined_text((phase1.get(name), phase2.get(name)))
        if text is not None:
            combined[name] = text
    return combined


def first_populated_merge(*blocks: Mapping[str, Any]) -> dict[str, Any]:
    """Per field, the first populated value across ``blocks`` in order."""
    merged: dict[str, Any] = {}
    for block in blocks:
        for key, value in block.items():
            if key not in merged and is_field_populated(value):
                merged[key] = value
    return merged


def resolve_module_data(
    project: Project,
    module_id: int,
    legacy_aims_fallback: frozenset[GrantType] = frozenset(),
) -> ResolvedModule:
    """Resolve the data the completion evaluator should read for a module."""
    definition = get_module(module_id)
    legacy = project.module_data(module_id)

    if not (project.is_split_phase and definition.splits_by_phase):
        return ResolvedModule(module_id, legacy, DataSource.MODULE)

    overlay = project.overlay(module_id)

    if definition.kind is ModuleKind.SPECIFIC_AIMS:
        combined = concatenate_aims(overlay.primary.data, overlay.secondary.data)
        has_phase_aims = any(k.endswith("_statement") for k in combined)
        legacy_populated = any(is_field_populated(v) for v in legacy.values())
        if has_phase_aims or not legacy_populated:
            return ResolvedModule(module_id, combined, DataSource.PHASE_OVERLAY)
        if project.grant_type in legacy_aims_fallback:
            return ResolvedModule(module_id, legacy, DataSource.LEGACY_FALLBACK)
        return ResolvedModule(module_id, combined, DataSource.PHASE_OVERLAY, legacy_ignored=True)

    return ResolvedModule(
        module_id,
        first_populated_merge(overlay.primary.data, legacy),
        DataSource.PHASE_OVERLAY,
    )
