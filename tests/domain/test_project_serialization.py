"""
Tests for project persistence payloads (``grant_kernel.domain.serialization``).

Covers:
- Current-version payload round trip
- Persisted key names for overlays, FOA overrides and the legacy budget
- Content fingerprint stability: derived state, audit trail and timestamps
  do not change it; application content does
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from grant_kernel.domain.budget_types import BudgetSnapshot
from grant_kernel.domain.project import (
    ComplianceAuditEntry,
    FOAConfig,
    FOAOverrides,
    ModuleState,
    PhaseBlock,
    Project,
)
from grant_kernel.domain.serialization import (
    canonical_json,
    content_fingerprint,
    project_from_dict,
    project_to_dict,
)
from grant_kernel.domain.types import AuditAction, GrantType, ModuleStatus, ProgramType
from tests.builders import COMPLETE_PHASE_BLOCKS, fill_modules

NOW = datetime(2026, 1, 15, 9, 0, tzinfo=timezone.utc)


def _project():
    project = Project(
        project_id="proj_serial",
        grant_type=GrantType.FAST_TRACK,
        program_type=ProgramType.STTR,
        institute="NCI",
        created_at=NOW,
        updated_at=NOW,
    )
    project = fill_modules(project, (1, 2, 4, 8, 9))
    project = project.with_phase_block(
        3, PhaseBlock("phase1", COMPLETE_PHASE_BLOCKS[(3, "phase1")], True)
    ).with_phase_block(7, PhaseBlock("phase2_additional", {"market_analysis": "Hospitals"}))
    project = project.with_prior_phase(award_number="R41CA000001", phase1_success_documented=True)
    project = project.with_foa(
        FOAConfig(
            fast_track_allowed=True,
            foa_number="PAR-26-100",
            overrides=FOAOverrides(budget_cap=Decimal("500000"), clinical_trial_allowed=True),
        )
    )
    return project.with_legacy_budget(
        BudgetSnapshot(
            direct_costs=Decimal("250000"),
            personnel_costs=Decimal("100000"),
            subaward_costs=Decimal("75000"),
            small_business_percent=Decimal("45"),
            research_institution_percent=Decimal("35"),
        )
    )


def _audit_entry():
    return ComplianceAuditEntry(
        timestamp=NOW,
        action=AuditAction.CHECK,
        compliance_score=92,
        agency_alignment_score=100,
        passed=True,
        issues=("Placeholder text found: TBD",),
        content_fingerprint="abc",
    )


class TestRoundTrip:

    def test_project_round_trips(self):
        project = _project().with_audit_entry(_audit_entry()).with_last_scores(92, 100)
        assert project_from_dict(project_to_dict(project)) == project

    def test_module_states_round_trip(self):
        state = ModuleState(1, "Title & Concept", ("project_title",), ("project_title",), ModuleStatus.COMPLETE, False)
        project = _project().with_module_states((state,))
        assert project_from_dict(project_to_dict(project)).module_states == (state,)

    def test_payload_is_json_safe(self):
        payload = project_to_dict(_project())
        assert payload["legacy_budget"]["directCosts"] == "250000"
        assert payload["foa_config"]["parsed_foa"]["budgetCapOverride"] == "500000"

    def test_persisted_keys(self):
        payload = project_to_dict(_project())

        assert payload["schema_version"] == 3
        assert payload["grant_type"] == "Fast Track"
        assert payload["m1_title_concept"]["project_title"].startswith("Point-of-care")
        assert payload["m3_fast_track"]["phase1_complete"] is True
        assert payload["m7_fast_track"]["phase2_additional"] == {"market_analysis": "Hospitals"}
        assert payload["m7_fast_track"]["phase2_complete"] is False
        assert payload["prior_phase"]["awardNumber"] == "R41CA000001"

    def test_non_current_payload_rejected(self):
        payload = project_to_dict(_project())
        payload["schema_version"] = 2
        with pytest.raises(ValueError):
            project_from_dict(payload)

    def test_canonical_json_sorts_keys(self):
        assert canonical_json({"b": Decimal("1.50"), "a": (1, 2)}) == '{"a":[1,2],"b":"1.50"}'


class TestContentFingerprint:
    """The fingerprint covers application content only."""

    def test_stable_across_derived_state(self):
        project = _project()
        base = content_fingerprint(project)

        changed = (
            project.with_audit_entry(_audit_entry())
            .with_last_scores(10, 20)
            .touched(NOW + timedelta(days=3))
            .with_module_states(())
        )

        assert content_fingerprint(changed) == base

    def test_content_edit_changes_fingerprint(self):
        project = _project()
        edited = project.with_module_patch(1, {"project_title": "A different title"})
        assert content_fingerprint(edited) != content_fingerprint(project)

    def test_budget_edit_changes_fingerprint(self):
        project = _project()
        edited = project.with_legacy_budget(BudgetSnapshot(direct_costs=Decimal("250001")))
        assert content_fingerprint(edited) != content_fingerprint(project)

    def test_fingerprint_format(self):
        fp = content_fingerprint(_project())
        assert len(fp) == 64
        int(fp, 16)
