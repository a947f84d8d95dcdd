"""
Budget Value Objects (``grant_kernel.domain.budget_types``).

Responsibility
--------------
Frozen dataclass value objects consumed and produced by the budget
calculation engine: line items, sub-awards, vendors, rates, the
calculation result and the flattened legacy budget snapshot.

Architecture position
---------------------
**Kernel > Domain** -- pure data definitions with ZERO I/O.

Invariants enforced
-------------------
* All monetary fields use ``Decimal`` -- NEVER ``float``.
* ``SubAward.indirect_costs == round(direct_costs * fa_rate / 100)`` and
  ``SubAward.total == direct_costs + indirect_costs``.  The derived fields
  are computed by ``SubAward.create`` / ``SubAward.revise``; constructing a
  sub-award with stale derived fields raises ``ValueError``.
* Amounts and rates are non-negative.

Failure modes
-------------
* Negative amounts or stale derived fields raise ``ValueError``.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

ZERO = Decimal("0")
HUNDRED = Decimal("100")


def to_decimal(value: Any) -> Decimal:
    """Coerce a persisted scalar (int, str, Decimal) to ``Decimal``."""
    if value is None or value == "":
        return ZERO
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def round_currency(value: Decimal) -> Decimal:
    """Round half-up to whole currency units."""
    return value.quantize(Decimal("1"), rounding=ROUND_HALF_UP)


def percent_of(amount: Decimal, rate: Decimal) -> Decimal:
    """``round(amount * rate / 100)``."""
    return round_currency(amount * rate / HUNDRED)


def _require_non_negative(name: str, value: Decimal) -> None:
    if value < ZERO:
        raise ValueError(f"{name} cannot be negative: {value}")


# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LineItems:
    """Direct-cost categories entered by the applicant.

    Sub-awards and vendors are itemized separately and are NOT line items.
    """

    personnel: Decimal = ZERO
    equipment: Decimal = ZERO
    supplies: Decimal = ZERO
    travel: Decimal = ZERO
    consultants: Decimal = ZERO
    patient_care: Decimal = ZERO
    tuition: Decimal = ZERO
    other_direct: Decimal = ZERO

    def __post_init__(self) -> None:
        for f in fields(self):
            _require_non_negative(f.name, getattr(self, f.name))

    @property
    def total(self) -> Decimal:
        return sum((getattr(self, f.name) for f in fields(self)), ZERO)

    def to_dict(self) -> dict[str, str]:
        return {f.name: str(getattr(self, f.name)) for f in fields(self)}

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> LineItems:
        data = data or {}
        return cls(**{
            f.name: to_decimal(data.get(f.name)) for f in fields(cls)
        })


@dataclass(frozen=True)
class SubAward:
    """A sub-award to a partner institution.

    Use ``create`` / ``revise``; they derive ``indirect_costs`` and
    ``total`` so the stored values are never stale.
    """

    id: str
    institution_name: str
    contact: str
    direct_costs: Decimal
    fa_rate: Decimal
    indirect_costs: Decimal
    total: Decimal

    def __post_init__(self) -> None:
        _require_non_negative("direct_costs", self.direct_costs)
        _require_non_negative("fa_rate", self.fa_rate)
        expected_indirect = percent_of(self.direct_costs, self.fa_rate)
        if self.indirect_costs != expected_indirect:
            raise ValueError(
                f"Sub-award {self.id}: indirect_costs {self.indirect_costs} "
                f"!= round({self.direct_costs} x {self.fa_rate}/100) "
                f"= {expected_indirect}"
            )
        if self.total != self.direct_costs + self.indirect_costs:
            raise ValueError(
                f"Sub-award {self.id}: total {self.total} != "
                f"{self.direct_costs} + {self.indirect_costs}"
            )

    @classmethod
    def create(
        cls,
        id: str,
        institution_name: str = "",
        contact: str = "",
        direct_costs: Decimal = ZERO,
        fa_rate: Decimal = ZERO,
    ) -> SubAward:
        indirect = percent_of(direct_costs, fa_rate)
        return cls(
            id=id,
            institution_name=institution_name,
            contact=contact,
            direct_costs=direct_costs,
            fa_rate=fa_rate,
            indirect_costs=indirect,
            total=direct_costs + indirect,
        )

    def revise(self, **changes: Any) -> SubAward:
        """Return a copy with ``changes`` applied and derived fields recomputed."""
        unknown = set(changes) - {"institution_name", "contact", "direct_costs", "fa_rate"}
        if unknown:
            raise ValueError(f"Cannot revise sub-award fields: {sorted(unknown)}")
        base = {
            "institution_name": self.institution_name,
            "contact": self.contact,
            "direct_costs": self.direct_costs,
            "fa_rate": self.fa_rate,
        }
        base.update(changes)
        return SubAward.create(id=self.id, **base)

    def to_dict(self) -> dict[str, str]:
        return {
            "id": self.id,
            "institution_name": self.institution_name,
            "contact": self.contact,
            "direct_costs": str(self.direct_costs),
            "fa_rate": str(self.fa_rate),
            "indirect_costs": str(self.indirect_costs),
            "total": str(self.total),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SubAward:
        # Derived fields are recomputed on load, never trusted from storage.
        return cls.create(
            id=str(data["id"]),
            institution_name=data.get("institution_name", ""),
            contact=data.get("contact", ""),
            direct_costs=to_decimal(data.get("direct_costs")),
            fa_rate=to_decimal(data.get("fa_rate")),
        )


@dataclass(frozen=True)
class Vendor:
    """A contracted vendor; no derived fields."""

    id: str
    name: str
    description: str = ""
    amount: Decimal = ZERO

    def __post_init__(self) -> None:
        _require_non_negative("amount", self.amount)

    def to_dict(self) -> dict[str, str]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "amount": str(self.amount),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Vendor:
        return cls(
            id=str(data["id"]),
            name=data.get("name", ""),
            description=data.get("description", ""),
            amount=to_decimal(data.get("amount")),
        )


@dataclass(frozen=True)
class BudgetRates:
    """Institutional F&A rate and requested fee percentage."""

    fa_rate: Decimal = ZERO
    fee_percent: Decimal = Decimal("7")

    def __post_init__(self) -> None:
        _require_non_negative("fa_rate", self.fa_rate)
        _require_non_negative("fee_percent", self.fee_percent)


@dataclass(frozen=True)
class BudgetInputs:
    """Everything the applicant edits on the budget screen for one block."""

    line_items: LineItems = field(default_factory=LineItems)
    sub_awards: tuple[SubAward, ...] = ()
    vendors: tuple[Vendor, ...] = ()
    rates: BudgetRates = field(default_factory=BudgetRates)
    small_business_percent: Decimal = Decimal("67")
    research_institution_percent: Decimal = ZERO
    justification: str = ""

    def with_changes(self, **changes: Any) -> BudgetInputs:
        return replace(self, **changes)


# ---------------------------------------------------------------------------
# Outputs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BudgetCalculation:
    """Result of one pass of the budget calculation pipeline."""

    line_item_total: Decimal
    sub_award_direct: Decimal
    sub_award_indirect: Decimal
    vendor_total: Decimal
    total_direct_costs: Decimal
    sub_award_mtdc_included: Decimal
    sub_award_mtdc_excluded: Decimal
    mtdc: Decimal
    indirect_costs: Decimal
    subtotal: Decimal
    fee_percent: Decimal
    fee_profit: Decimal
    total_project_costs: Decimal
    budget_cap: Decimal
    remaining_budget: Decimal
    budget_utilization: Decimal

    def to_dict(self) -> dict[str, str]:
        return {f.name: str(getattr(self, f.name)) for f in fields(self)}


@dataclass(frozen=True)
class BudgetSnapshot:
    """Flattened legacy budget view read by validation and alignment scoring."""

    direct_costs: Decimal = ZERO
    personnel_costs: Decimal = ZERO
    subaward_costs: Decimal = ZERO
    small_business_percent: Decimal = Decimal("67")
    research_institution_percent: Decimal = ZERO

    def to_dict(self) -> dict[str, str]:
        return {
            "directCosts": str(self.direct_costs),
            "personnelCosts": str(self.personnel_costs),
            "subawardCosts": str(self.subaward_costs),
            "smallBusinessPercent": str(self.small_business_percent),
            "researchInstitutionPercent": str(self.research_institution_percent),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> BudgetSnapshot:
        data = data or {}
        return cls(
            direct_costs=to_decimal(data.get("directCosts")),
            personnel_costs=to_decimal(data.get("personnelCosts")),
            subaward_costs=to_decimal(data.get("subawardCosts")),
            small_business_percent=to_decimal(data.get("smallBusinessPercent", 67)),
            research_institution_percent=to_decimal(data.get("researchInstitutionPercent")),
        )
