"""
Budget Calculation Engine (``grant_engines.budget``).

Responsibility
--------------
* ``calculate_budget`` -- the numeric pipeline from line items, sub-awards,
  vendors and rates to direct costs, MTDC, indirect costs, fee, totals and
  cap utilization.
* ``resolve_budget_cap`` / ``allocation_minimums`` -- the institute (and
  funding-opportunity) limits that apply to a grant type and phase.
* ``validate_budget`` -- typed issues for cap overruns, unmet effort
  allocation and structurally impossible figures.
* Conversions between the inputs/results and the persisted module-6 block
  and flattened legacy snapshot.

Architecture position
---------------------
**Engines layer** -- pure functional core.  ZERO I/O, ZERO clock reads.
Institute limits arrive as ``InstituteLimits`` values built from the policy
pack by ``grant_config.bridges``; this module never reads configuration.

Invariants enforced
-------------------
* All arithmetic uses ``Decimal``; rounding is half-up to whole units.
* Each sub-award contributes at most ``mtdc_threshold`` to the MTDC base;
  the remainder is excluded.
* The fee percentage is clamped to ``[fee_min, fee_max]`` before use.
* Budget cap and allocation violations are CRITICAL; a personnel plus
  sub-award total above direct costs is an ERROR.

Failure modes
-------------
* ``resolve_budget_cap`` raises ``MissingBudgetCapError`` when the
  institute defines no cap for the grant type.  ``validate_budget`` turns
  the same condition into a critical issue, since a stored project can
  predate the institute table it is validated against.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from grant_engines.fields import is_field_populated
from grant_engines.tracer import traced_engine
from grant_kernel.domain.budget_types import (
    HUNDRED,
    ZERO,
    BudgetCalculation,
    BudgetInputs,
    BudgetRates,
    BudgetSnapshot,
    LineItems,
    SubAward,
    Vendor,
    percent_of,
    round_currency,
    to_decimal,
)
from grant_kernel.domain.project import FOAOverrides, Project
from grant_kernel.domain.types import (
    GrantType,
    ProgramType,
    ProjectPhase,
    Severity,
    ValidationIssue,
)
from grant_kernel.exceptions import MissingBudgetCapError

BUDGET_MODULE_ID = 6


@dataclass(frozen=True)
class InstituteLimits:
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


@dataclass(frozen=True)
class BudgetRules:
    mtdc_threshold: Decimal = Decimal("25000")
    fee_min: Decimal = Decimal("1")
    fee_max: Decimal = Decimal("7")
    near_cap_ratio: Decimal = Decimal("0.95")


DEFAULT_BUDGET_RULES = BudgetRules()


@dataclass(frozen=True)
class AllocationMinimums:
    small_business: Decimal
    research_institution: Decimal | None = None


# ---------------------------------------------------------------------------
# Calculation
# ---------------------------------------------------------------------------


def clamp_fee(fee_percent: Decimal, rules: BudgetRules = DEFAULT_BUDGET_RULES) -> Decimal:
    return max(rules.fee_min, min(rules.fee_max, fee_percent))


@traced_engine("budget.calculate", "1.0", fingerprint_fields=("inputs", "budget_cap"))
def calculate_budget(
    inputs: BudgetInputs,
    budget_cap: Decimal,
    rules: BudgetRules = DEFAULT_BUDGET_RULES,
) -> BudgetCalculation:
    """Run the budget pipeline for one block of budget inputs."""
    line_item_total = inputs.line_items.total
    sub_award_direct = sum((sa.direct_costs for sa in inputs.sub_awards), ZERO)
    sub_award_indirect = sum((sa.indirect_costs for sa in inputs.sub_awards), ZERO)
    vendor_total = sum((v.amount for v in inputs.vendors), ZERO)

    total_direct_costs = line_item_total + sub_award_direct + vendor_total

    mtdc_included = sum(
        (min(sa.direct_costs, rules.mtdc_threshold) for sa in inputs.sub_awards), ZERO
    )
    mtdc_excluded = sub_award_direct - mtdc_included

    items = inputs.line_items
    mtdc = total_direct_costs - items.equipment - mtdc_excluded - items.patient_care - items.tuition

    indirect_costs = percent_of(mtdc, inputs.rates.fa_rate)
    subtotal = total_direct_costs + indirect_costs + sub_award_indirect

    fee_percent = clamp_fee(inputs.rates.fee_percent, rules)
    fee_profit = percent_of(subtotal, fee_percent)
    total_project_costs = subtotal + fee_profit

    utilization = (
        (total_direct_costs / budget_cap * HUNDRED).quantize(Decimal("0.01"))
        if budget_cap > ZERO
        else ZERO
    )

    return BudgetCalculation(
        line_item_total=line_item_total,
        sub_award_direct=sub_award_direct,
        sub_award_indirect=sub_award_indirect,
        vendor_total=vendor_total,
        total_direct_costs=total_direct_costs,
        sub_award_mtdc_included=mtdc_included,
        sub_award_mtdc_excluded=mtdc_excluded,
        mtdc=mtdc,
        indirect_costs=indirect_costs,
        subtotal=subtotal,
        fee_percent=fee_percent,
        fee_profit=fee_profit,
        total_project_costs=total_project_costs,
        budget_cap=budget_cap,
        remaining_budget=budget_cap - total_direct_costs,
        budget_utilization=utilization,
    )


# ---------------------------------------------------------------------------
# Limits
# ---------------------------------------------------------------------------


def resolve_budget_cap(
    limits: InstituteLimits,
    grant_type: GrantType | None,
    phase: ProjectPhase | None = None,
) -> Decimal:
    """Direct-cost cap for a grant type (and, for Fast Track, a phase).

    Fast Track uses the phase-1 cap for phase 1, the phase-2 cap for
    phase 2, and their sum when no phase is given.

    Raises:
        MissingBudgetCapError: Phase IIB at an institute with no IIB cap.
    """
    if grant_type in (GrantType.PHASE_II, GrantType.DIRECT_TO_PHASE_II):
        return limits.phase2_cap
    if grant_type is GrantType.PHASE_IIB:
        if limits.phase2b_cap is None:
            raise MissingBudgetCapError(limits.code, grant_type.value)
        return limits.phase2b_cap
    if grant_type is GrantType.FAST_TRACK:
        if phase is ProjectPhase.PHASE1:
            return limits.phase1_cap
        if phase is ProjectPhase.PHASE2:
            return limits.phase2_cap
        return limits.phase1_cap + limits.phase2_cap
    return limits.phase1_cap


def effective_budget_cap(
    limits: InstituteLimits,
    grant_type: GrantType | None,
    overrides: FOAOverrides | None,
    phase: ProjectPhase | None = None,
) -> Decimal:
    """Cap after funding-opportunity overrides (which apply to the whole award)."""
    if phase is None and overrides is not None and overrides.budget_cap:
        return overrides.budget_cap
    return resolve_budget_cap(limits, grant_type, phase)


def allocation_minimums(
    limits: InstituteLimits,
    program_type: ProgramType,
    grant_type: GrantType | None,
    overrides: FOAOverrides | None = None,
    phase: ProjectPhase | None = None,
) -> AllocationMinimums:
    """Minimum effort percentages for the program type.

    SBIR feasibility work (Phase I, or the first phase of Fast Track) uses
    the phase-1 small-business minimum; everything else uses phase 2.
    """
    sb_override = overrides.small_business_min if overrides else None
    ri_override = overrides.research_institution_min if overrides else None

    if program_type is ProgramType.STTR:
        return AllocationMinimums(
            small_business=sb_override or limits.sttr_small_business_min,
            research_institution=ri_override or limits.sttr_research_institution_min,
        )

    feasibility = grant_type is GrantType.PHASE_I or (
        grant_type is GrantType.FAST_TRACK and phase is not ProjectPhase.PHASE2
    )
    base = (
        limits.sbir_phase1_small_business_min
        if feasibility
        else limits.sbir_phase2_small_business_min
    )
    return AllocationMinimums(small_business=sb_override or base)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def _money(amount: Decimal) -> str:
    return f"${round_currency(amount):,}"


def _scoped(scope: str | None, name: str) -> str:
    return f"budget.{scope}.{name}" if scope else f"budget.{name}"


def _allocation_issues(
    snapshot: BudgetSnapshot,
    program_type: ProgramType,
    minimums: AllocationMinimums,
    label: str,
    scope: str | None,
) -> list[ValidationIssue]:
    issues = []
    if snapshot.small_business_percent < minimums.small_business:
        issues.append(ValidationIssue(
            code="BUDGET_002",
            message=(
                f"{program_type.value} {label} requires minimum "
                f"{minimums.small_business}% small business effort"
            ),
            field=_scoped(scope, "smallBusinessPercent"),
            severity=Severity.CRITICAL,
        ))
    if program_type is ProgramType.STTR:
        if (
            minimums.research_institution is not None
            and snapshot.research_institution_percent < minimums.research_institution
        ):
            issues.append(ValidationIssue(
                code="BUDGET_002",
                message=(
                    f"STTR requires minimum {minimums.research_institution}% "
                    f"research institution effort"
                ),
                field=_scoped(scope, "researchInstitutionPercent"),
                severity=Severity.CRITICAL,
            ))
        if snapshot.small_business_percent + snapshot.research_institution_percent > HUNDRED:
            issues.append(ValidationIssue(
                code="BUDGET_004",
                message="STTR effort allocation exceeds 100%",
                field=_scoped(scope, "allocation"),
                severity=Severity.ERROR,
            ))
    return issues


def _structure_issues(snapshot: BudgetSnapshot, scope: str | None) -> list[ValidationIssue]:
    if snapshot.personnel_costs + snapshot.subaward_costs > snapshot.direct_costs:
        return [ValidationIssue(
            code="BUDGET_003",
            message="Personnel + Subaward costs exceed total direct costs",
            field=f"budget.{scope}" if scope else "budget",
            severity=Severity.ERROR,
        )]
    return []


def _cap_issues(
    direct_costs: Decimal,
    cap: Decimal,
    rules: BudgetRules,
    description: str,
    field: str,
) -> list[ValidationIssue]:
    if direct_costs > cap:
        return [ValidationIssue(
            code="BUDGET_001",
            message=f"{description} exceed cap of {_money(cap)}",
            field=field,
            severity=Severity.CRITICAL,
        )]
    if direct_costs > cap * rules.near_cap_ratio:
        return [ValidationIssue(
            code="BUDGET_WARN",
            message=f"{description} are within {(1 - rules.near_cap_ratio) * HUNDRED:.0f}% of the {_money(cap)} cap",
            field=field,
            severity=Severity.WARNING,
        )]
    return []


def _missing_cap_issue(error: MissingBudgetCapError) -> ValidationIssue:
    return ValidationIssue(
        code="BUDGET_000",
        message=str(error),
        field="institute",
        severity=Severity.CRITICAL,
    )


def fast_track_budgets(project: Project) -> tuple[tuple[ProjectPhase | None, BudgetSnapshot], ...]:
    """Populated budgets of a Fast Track project, one per phase block.

    When neither phase block holds figures, a populated single-phase
    block (records written before the split, or upgraded from v1) is the
    whole request and is returned with phase ``None``.
    """
    overlay = project.overlay(BUDGET_MODULE_ID)
    found = [
        (phase, snapshot_from_block(block.data))
        for phase, block in zip((ProjectPhase.PHASE1, ProjectPhase.PHASE2), (overlay.primary, overlay.secondary))
        if is_field_populated(block.data.get("direct_costs_total"))
    ]
    if not found:
        single = project.module_data(BUDGET_MODULE_ID)
        if is_field_populated(single.get("direct_costs_total")):
            found.append((None, snapshot_from_block(single)))
    return tuple(found)


def _validate_fast_track(
    project: Project,
    limits: InstituteLimits,
    rules: BudgetRules,
) -> list[ValidationIssue]:
    issues: list[ValidationIssue] = []
    combined = ZERO
    for phase, snapshot in fast_track_budgets(project):
        combined += snapshot.direct_costs
        if phase is None:
            # Unsplit request; its cap is the combined cap checked below.
            minimums = allocation_minimums(
                limits, project.program_type, GrantType.FAST_TRACK, project.foa.overrides
            )
            issues += _allocation_issues(snapshot, project.program_type, minimums, "Fast Track", None)
            issues += _structure_issues(snapshot, None)
            continue
        scope = phase.value
        issues += _cap_issues(
            snapshot.direct_costs,
            resolve_budget_cap(limits, GrantType.FAST_TRACK, phase),
            rules,
            f"Fast Track {scope} direct costs",
            _scoped(scope, "directCosts"),
        )
        minimums = allocation_minimums(
            limits, project.program_type, GrantType.FAST_TRACK, project.foa.overrides, phase
        )
        issues += _allocation_issues(snapshot, project.program_type, minimums, f"Fast Track {scope}", scope)
        issues += _structure_issues(snapshot, scope)

    combined_cap = effective_budget_cap(limits, GrantType.FAST_TRACK, project.foa.overrides)
    issues += _cap_issues(
        combined, combined_cap, rules, "Fast Track combined direct costs", "budget.directCosts"
    )
    return issues


@traced_engine("budget.validate", "1.0", fingerprint_fields=("project", "limits"))
def validate_budget(
    project: Project,
    limits: InstituteLimits,
    rules: BudgetRules = DEFAULT_BUDGET_RULES,
) -> tuple[ValidationIssue, ...]:
    """Budget issues for a project.

    Fast Track validates each phase block against its own cap and minimum,
    then the combined direct costs against the summed cap.  Other grant
    types validate the flattened legacy snapshot.
    """
    if project.grant_type is GrantType.FAST_TRACK:
        return tuple(_validate_fast_track(project, limits, rules))

    try:
        cap = effective_budget_cap(limits, project.grant_type, project.foa.overrides)
    except MissingBudgetCapError as exc:
        return (_missing_cap_issue(exc),)

    snapshot = project.legacy_budget
    label = project.grant_type.value if project.grant_type else "application"
    issues = _cap_issues(
        snapshot.direct_costs,
        cap,
        rules,
        f"Direct costs for {limits.code} {label}",
        "budget.directCosts",
    )
    minimums = allocation_minimums(
        limits, project.program_type, project.grant_type, project.foa.overrides
    )
    issues += _allocation_issues(snapshot, project.program_type, minimums, label, None)
    issues += _structure_issues(snapshot, None)
    return tuple(issues)


def combined_direct_costs(project: Project) -> Decimal:
    """Direct costs the whole application requests.

    Fast Track sums its phase budgets; the legacy snapshot only holds
    the most recently edited phase.
    """
    if project.grant_type is GrantType.FAST_TRACK:
        return sum((s.direct_costs for _, s in fast_track_budgets(project)), ZERO)
    return project.legacy_budget.direct_costs


# ---------------------------------------------------------------------------
# Persisted block conversions
# ---------------------------------------------------------------------------

# LineItems attribute -> module-6 block key
LINE_ITEM_KEYS: Mapping[str, str] = {
    "personnel": "personnel_costs",
    "equipment": "equipment_costs",
    "supplies": "supplies_costs",
    "travel": "travel_costs",
    "consultants": "consultant_costs",
    "patient_care": "patient_care_costs",
    "tuition": "tuition_costs",
    "other_direct": "other_costs",
}


def budget_block_fields(inputs: BudgetInputs, calc: BudgetCalculation) -> dict[str, Any]:
    """Module-6 block content for one budget pass (amounts as strings)."""
    block: dict[str, Any] = {
        key: str(getattr(inputs.line_items, attr)) for attr, key in LINE_ITEM_KEYS.items()
    }
    block.update({
        "direct_costs_total": str(calc.total_direct_costs),
        "subaward_costs": str(calc.sub_award_direct),
        "vendor_costs": str(calc.vendor_total),
        "f_and_a_rate": str(inputs.rates.fa_rate),
        "fee_percent": str(calc.fee_percent),
        "mtdc": str(calc.mtdc),
        "indirect_costs": str(calc.indirect_costs),
        "total_project_costs": str(calc.total_project_costs),
        "small_business_percent": str(inputs.small_business_percent),
        "research_institution_percent": str(inputs.research_institution_percent),
        "budget_justification": inputs.justification,
        "sub_awards": [sa.to_dict() for sa in inputs.sub_awards],
        "vendors": [v.to_dict() for v in inputs.vendors],
    })
    return block


def budget_inputs_from_block(block: Mapping[str, Any]) -> BudgetInputs:
    """Rebuild editable inputs from a stored module-6 block."""
    return BudgetInputs(
        line_items=LineItems(**{
            attr: to_decimal(block.get(key)) for attr, key in LINE_ITEM_KEYS.items()
        }),
        sub_awards=tuple(SubAward.from_dict(d) for d in block.get("sub_awards") or ()),
        vendors=tuple(Vendor.from_dict(d) for d in block.get("vendors") or ()),
        rates=BudgetRates(
            fa_rate=to_decimal(block.get("f_and_a_rate")),
            fee_percent=to_decimal(block.get("fee_percent", "7")),
        ),
        small_business_percent=to_decimal(block.get("small_business_percent", "67")),
        research_institution_percent=to_decimal(block.get("research_institution_percent")),
        justification=block.get("budget_justification") or "",
    )


def snapshot_from_calculation(inputs: BudgetInputs, calc: BudgetCalculation) -> BudgetSnapshot:
    return BudgetSnapshot(
        direct_costs=calc.total_direct_costs,
        personnel_costs=inputs.line_items.personnel,
        subaward_costs=calc.sub_award_direct,
        small_business_percent=inputs.small_business_percent,
        research_institution_percent=inputs.research_institution_percent,
    )


def snapshot_from_block(block: Mapping[str, Any]) -> BudgetSnapshot:
    return BudgetSnapshot(
        direct_costs=to_decimal(block.get("direct_costs_total")),
        personnel_costs=to_decimal(block.get("personnel_costs")),
        subaward_costs=to_decimal(block.get("subaward_costs")),
        small_business_percent=to_decimal(block.get("small_business_percent", "67")),
        research_institution_percent=to_decimal(block.get("research_institution_percent")),
    )
