"""
Module registry -- the static table of the nine application modules.

Responsibility:
    Declares each content module once: its numeric id, display name, type
    tag, ordered required-field list, persisted block key and, for modules
    that split across phases, the names of its two phase blocks.

Architecture position:
    Kernel > Domain -- immutable table built at import time, zero I/O.

Invariants enforced:
    - Module ids are 1..9 and unique.
    - Module 8 (compilation) is the lock-gated module; modules 1-7 gate it.
    - Module 9 (commercialization) is the module excluded from blocking
      checks for feasibility-only applications.
    - The table is never mutated after import.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Mapping


class ModuleKind(str, Enum):
    """Type tag of a module; dispatch keys off this, never the numeric id."""

    TITLE_CONCEPT = "title_concept"
    HYPOTHESIS = "hypothesis"
    SPECIFIC_AIMS = "specific_aims"
    TEAM_MAPPING = "team_mapping"
    EXPERIMENTAL_APPROACH = "experimental_approach"
    BUDGET = "budget"
    REGULATORY = "regulatory"
    COMPILATION = "compilation"
    COMMERCIALIZATION = "commercialization"


@dataclass(frozen=True)
class ModuleDefinition:
    id: int
    name: str
    kind: ModuleKind
    required_fields: tuple[str, ...]
    block_key: str
    # (primary, secondary) phase block names when the module splits by phase
    phase_blocks: tuple[str, str] | None = None

    @property
    def splits_by_phase(self) -> bool:
        return self.phase_blocks is not None


COMPILATION_MODULE_ID = 8
COMMERCIALIZATION_MODULE_ID = 9
GATING_MODULE_IDS: tuple[int, ...] = (1, 2, 3, 4, 5, 6, 7)

_DEFINITIONS: tuple[ModuleDefinition, ...] = (
    ModuleDefinition(
        id=1,
        name="Title & Concept Clarity",
        kind=ModuleKind.TITLE_CONCEPT,
        required_fields=(
            "project_title",
            "lay_summary",
            "scientific_abstract",
            "problem_statement",
            "proposed_solution",
            "target_population",
            "therapeutic_area",
            "technology_type",
        ),
        block_key="m1_title_concept",
    ),
    ModuleDefinition(
        id=2,
        name="Hypothesis Development",
        kind=ModuleKind.HYPOTHESIS,
        required_fields=(
            "central_hypothesis",
            "supporting_rationale",
            "preliminary_data_summary",
            "expected_outcomes",
            "success_criteria",
        ),
        block_key="m2_hypothesis",
    ),
    ModuleDefinition(
        id=3,
        name="Specific Aims",
        kind=ModuleKind.SPECIFIC_AIMS,
        required_fields=(
            "aim1_statement",
            "aim1_milestones",
            "aim2_statement",
            "aim2_milestones",
            "timeline_summary",
            "interdependencies",
        ),
        block_key="m3_specific_aims",
        phase_blocks=("phase1", "phase2"),
    ),
    ModuleDefinition(
        id=4,
        name="Team Mapping",
        kind=ModuleKind.TEAM_MAPPING,
        required_fields=("pi_name", "pi_qualifications", "key_personnel"),
        block_key="m4_team_mapping",
    ),
    ModuleDefinition(
        id=5,
        name="Experimental Approach",
        kind=ModuleKind.EXPERIMENTAL_APPROACH,
        required_fields=(
            "methodology_overview",
            "experimental_design",
            "data_collection_methods",
            "analysis_plan",
            "statistical_approach",
            "expected_results",
            "potential_pitfalls",
            "alternative_approaches",
        ),
        block_key="m5_experimental_approach",
        phase_blocks=("phase1", "phase2"),
    ),
    ModuleDefinition(
        id=6,
        name="Budget & Justification",
        kind=ModuleKind.BUDGET,
        required_fields=(
            "direct_costs_total",
            "personnel_costs",
            "small_business_percent",
            "budget_justification",
        ),
        block_key="m6_budget",
        phase_blocks=("phase1", "phase2"),
    ),
    ModuleDefinition(
        id=7,
        name="Regulatory & Supporting",
        kind=ModuleKind.REGULATORY,
        required_fields=("facilities_description",),
        block_key="m7_regulatory",
        phase_blocks=("shared", "phase2_additional"),
    ),
    ModuleDefinition(
        id=8,
        name="Compilation & Review",
        kind=ModuleKind.COMPILATION,
        required_fields=(
            "final_review_checklist",
            "page_limit_compliance",
            "format_compliance",
            "submission_readiness",
        ),
        block_key="m8_compilation",
    ),
    ModuleDefinition(
        id=9,
        name="Commercialization Plan",
        kind=ModuleKind.COMMERCIALIZATION,
        required_fields=(
            "section1_value",
            "section2_company",
            "section3_market",
            "section4_ip",
            "section5_finance",
            "section6_revenue",
        ),
        block_key="m9_commercialization",
    ),
)

MODULE_REGISTRY: Mapping[int, ModuleDefinition] = MappingProxyType(
    {d.id: d for d in _DEFINITIONS}
)

SPLIT_MODULE_IDS: tuple[int, ...] = tuple(d.id for d in _DEFINITIONS if d.splits_by_phase)


def all_modules() -> tuple[ModuleDefinition, ...]:
    """Module definitions in id order."""
    return _DEFINITIONS


def get_module(module_id: int) -> ModuleDefinition:
    """Look up a module definition.

    Raises:
        ValueError: if ``module_id`` is not a registered module.
    """
    try:
        return MODULE_REGISTRY[module_id]
    except KeyError:
        raise ValueError(f"Unknown module id: {module_id}") from None
