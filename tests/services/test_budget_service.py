"""
Tests for BudgetService.

Covers:
- Write-back installs the module-6 block, the legacy snapshot and the
  module states together
- Sub-award and vendor editing with derived-field recomputation
- Fast Track phase budgets and the phase 2 lock
- Cap resolution for the orchestrator calculate_budget entry point
"""

from decimal import Decimal

import pytest

from grant_kernel.domain.budget_types import LineItems
from grant_kernel.domain.types import GrantType, ModuleStatus, ProjectPhase
from grant_kernel.exceptions import PhaseLockedError, SubAwardNotFoundError, VendorNotFoundError


@pytest.fixture
def reference_update(make_project, budget_service):
    """Personnel 100,000 and equipment 20,000 at 40% F&A."""
    project = make_project()
    update = budget_service.update_line_items(
        project, personnel=Decimal("100000"), equipment=Decimal("20000")
    )
    return budget_service.set_rates(update.project, fa_rate=Decimal("40"), fee_percent=Decimal("7"))


class TestWriteBack:

    def test_reference_budget(self, reference_update):
        calc = reference_update.calculation

        assert calc.total_direct_costs == Decimal("120000")
        assert calc.indirect_costs == Decimal("40000")
        assert calc.total_project_costs == Decimal("171200")
        assert calc.budget_cap == Decimal("275000")

    def test_block_and_snapshot_agree(self, reference_update):
        project = reference_update.project
        block = project.module_data(6)

        assert block["direct_costs_total"] == "120000"
        assert block["personnel_costs"] == "100000"
        assert block["total_project_costs"] == "171200"
        assert project.legacy_budget.direct_costs == Decimal("120000")
        assert project.legacy_budget.personnel_costs == Decimal("100000")

    def test_module_states_refreshed(self, reference_update, budget_service):
        update = budget_service.set_justification(reference_update.project, "Effort and equipment.")

        state = next(s for s in update.project.module_states if s.module_id == 6)

        assert state.status is ModuleStatus.COMPLETE

    def test_inputs_round_trip_through_block(self, reference_update, budget_service):
        inputs = budget_service.current_inputs(reference_update.project)
        assert inputs.line_items.personnel == Decimal("100000")
        assert inputs.rates.fa_rate == Decimal("40")

    def test_fee_clamped_on_write(self, reference_update, budget_service):
        update = budget_service.set_rates(reference_update.project, fee_percent=Decimal("12"))
        assert update.project.module_data(6)["fee_percent"] == "7"

    def test_original_project_unchanged(self, make_project, budget_service):
        project = make_project()
        budget_service.update_line_items(project, personnel=Decimal("1000"))
        assert project.module_data(6) == {}

    def test_logs_recalculation(self, make_project, budget_service, captured_logs):
        project = make_project()
        budget_service.update_line_items(project, supplies=Decimal("5000"))

        records = [r for r in captured_logs() if r["message"] == "budget_recalculated"]

        assert records[0]["project_id"] == project.project_id
        assert records[0]["total_direct_costs"] == "5000"

    def test_allocation(self, make_project, budget_service):
        update = budget_service.set_allocation(make_project(), Decimal("55"), Decimal("45"))
        assert update.project.legacy_budget.small_business_percent == Decimal("55")
        assert update.project.legacy_budget.research_institution_percent == Decimal("45")


class TestSubAwards:

    def test_add_update_remove(self, make_project, budget_service):
        update = budget_service.add_sub_award(
            make_project(), "State University", Decimal("40000"), Decimal("50"), sub_award_id="sa-1"
        )
        stored = update.project.module_data(6)["sub_awards"][0]
        assert (stored["indirect_costs"], stored["total"]) == ("20000", "60000")
        assert update.calculation.sub_award_mtdc_included == Decimal("25000")

        update = budget_service.update_sub_award(update.project, "sa-1", direct_costs=Decimal("10000"))
        stored = update.project.module_data(6)["sub_awards"][0]
        assert (stored["indirect_costs"], stored["total"]) == ("5000", "15000")
        assert update.project.legacy_budget.subaward_costs == Decimal("10000")

        update = budget_service.remove_sub_award(update.project, "sa-1")
        assert update.project.module_data(6)["sub_awards"] == []

    def test_update_unknown(self, make_project, budget_service):
        with pytest.raises(SubAwardNotFoundError) as exc_info:
            budget_service.update_sub_award(make_project(), "sa-x", fa_rate=Decimal("10"))
        assert exc_info.value.sub_award_id == "sa-x"

    def test_remove_unknown(self, make_project, budget_service):
        with pytest.raises(SubAwardNotFoundError):
            budget_service.remove_sub_award(make_project(), "sa-x")

    def test_generated_ids_are_distinct(self, make_project, budget_service):
        update = budget_service.add_sub_award(make_project(), "A", Decimal("1000"), Decimal("0"))
        update = budget_service.add_sub_award(update.project, "B", Decimal("1000"), Decimal("0"))
        ids = [sa["id"] for sa in update.project.module_data(6)["sub_awards"]]
        assert len(set(ids)) == 2


class TestVendors:

    def test_add_update_remove(self, make_project, budget_service):
        update = budget_service.add_vendor(make_project(), "CRO", Decimal("5000"), vendor_id="v-1")
        assert update.project.module_data(6)["vendor_costs"] == "5000"

        update = budget_service.update_vendor(update.project, "v-1", amount=Decimal("7500"))
        assert update.calculation.vendor_total == Decimal("7500")

        update = budget_service.remove_vendor(update.project, "v-1")
        assert update.project.module_data(6)["vendors"] == []

    def test_unknown_vendor(self, make_project, budget_service):
        with pytest.raises(VendorNotFoundError):
            budget_service.remove_vendor(make_project(), "v-x")

    def test_unknown_vendor_field(self, make_project, budget_service):
        update = budget_service.add_vendor(make_project(), "CRO", Decimal("5000"), vendor_id="v-1")
        with pytest.raises(ValueError):
            budget_service.update_vendor(update.project, "v-1", id="v-2")


class TestPhaseBudgets:
    """Fast Track projects budget each phase separately."""

    def test_phase_only_for_fast_track(self, make_project, budget_service):
        with pytest.raises(ValueError):
            budget_service.update_line_items(make_project(), ProjectPhase.PHASE1, personnel=Decimal("1"))

    def test_fast_track_edit_requires_phase(self, make_project, budget_service):
        project = make_project(GrantType.FAST_TRACK)

        with pytest.raises(ValueError, match="budgets each phase separately"):
            budget_service.update_line_items(project, personnel=Decimal("9000000"))
        with pytest.raises(ValueError):
            budget_service.set_allocation(project, Decimal("40"))

    def test_caps_per_phase(self, make_project, budget_service):
        project = make_project(GrantType.FAST_TRACK)

        assert budget_service.budget_cap_for(project, ProjectPhase.PHASE1) == Decimal("275000")
        assert budget_service.budget_cap_for(project, ProjectPhase.PHASE2) == Decimal("1750000")
        assert budget_service.budget_cap_for(project) == Decimal("2025000")

    def test_phase2_locked(self, make_project, budget_service):
        with pytest.raises(PhaseLockedError):
            budget_service.update_line_items(
                make_project(GrantType.FAST_TRACK), ProjectPhase.PHASE2, personnel=Decimal("1")
            )

    def test_phase1_then_phase2(self, make_project, budget_service):
        project = make_project(GrantType.FAST_TRACK)
        update = budget_service.update_line_items(project, ProjectPhase.PHASE1, personnel=Decimal("150000"))
        update = budget_service.set_justification(update.project, "Phase 1 effort.", ProjectPhase.PHASE1)
        assert update.project.phase_block(6, "phase1").complete

        update = budget_service.update_line_items(update.project, ProjectPhase.PHASE2, personnel=Decimal("900000"))

        assert update.calculation.budget_cap == Decimal("1750000")
        assert update.project.phase_block(6, "phase2").data["direct_costs_total"] == "900000"
        assert update.project.module_data(6) == {}
        assert update.project.legacy_budget.direct_costs == Decimal("900000")


class TestCalculateBudget:
    """GrantOrchestrator.calculate_budget resolves or requires a cap."""

    def test_explicit_cap(self, grants):
        calc = grants.calculate_budget(LineItems(personnel=Decimal("100000")), budget_cap=Decimal("200000"))

        assert calc.budget_cap == Decimal("200000")
        assert calc.remaining_budget == Decimal("100000")

    def test_cap_from_project(self, grants, make_project):
        calc = grants.calculate_budget(LineItems(personnel=Decimal("100000")), project=make_project())
        assert calc.budget_cap == Decimal("275000")

    def test_cap_from_fast_track_phase(self, grants, make_project):
        calc = grants.calculate_budget(
            LineItems(personnel=Decimal("100000")),
            project=make_project(GrantType.FAST_TRACK),
            phase=ProjectPhase.PHASE2,
        )
        assert calc.budget_cap == Decimal("1750000")

    def test_cap_required(self, grants):
        with pytest.raises(ValueError):
            grants.calculate_budget(LineItems(personnel=Decimal("100000")))
