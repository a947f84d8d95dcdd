"""
Tests for stored payload upgrades (grant_services/schema_upgrade.py).

Covers:
- Version detection and rejection of unknown versions
- v1 flat records upgraded through v2 to current
- v2 documents: id rename, string amounts, checklist move, audit issues
- Upgrades never mutate their input
"""

import copy
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from grant_kernel.domain.project import CURRENT_SCHEMA_VERSION
from grant_kernel.domain.serialization import project_to_dict
from grant_kernel.domain.types import AuditAction, GrantType, ProgramType
from grant_kernel.exceptions import UnsupportedSchemaVersionError
from grant_services.schema_upgrade import (
    detect_schema_version,
    load_project,
    upgrade_payload,
    upgrade_v2_to_v3,
)

NOW = datetime(2026, 1, 15, 9, 0, tzinfo=timezone.utc)

V1_RECORD = {
    "grantType": "Phase II",
    "programType": "STTR",
    "priorPhase": {"awardNumber": "R41CA000123", "completionDate": "2024-12-31"},
    "checklist": {"page_limits": True, "biosketches": False},
    "budget": {
        "directCosts": 900000,
        "personnelCosts": 400000,
        "subawardCosts": 100000,
        "smallBusinessPercent": 45,
        "researchInstitutionPercent": 35,
    },
}


def _v2_document():
    return {
        "schema_version": 2,
        "id": "proj_legacy01",
        "created_at": "2025-03-01T12:00:00+00:00",
        "updated_at": "2025-03-02T12:00:00+00:00",
        "grant_type": "Phase I",
        "program_type": "SBIR",
        "institute": "NCI",
        "m1_title_concept": {"project_title": "Legacy assay"},
        "m6_budget": {"direct_costs_total": 150000, "f_and_a_rate": 40.5},
        "m8_compilation": {},
        "legacy_budget": {"directCosts": 150000, "smallBusinessPercent": 70},
        "legacy_checklist": {"fonts": True},
        "audit_trail": [
            {
                "timestamp": "2025-03-02T10:00:00+00:00",
                "action": "check",
                "complianceScore": 92,
                "agencyAlignmentScore": 100,
                "passed": True,
                "issues": [{"code": "TONE", "message": "Promotional language"}],
            }
        ],
        "compliance_export_allowed": True,
    }


class TestDetectVersion:

    def test_missing_tag_is_v1(self):
        assert detect_schema_version(V1_RECORD) == 1

    def test_current(self):
        assert detect_schema_version({"schema_version": CURRENT_SCHEMA_VERSION}) == 3

    @pytest.mark.parametrize("version", [0, 4, "x", True])
    def test_unsupported(self, version):
        with pytest.raises(UnsupportedSchemaVersionError) as exc_info:
            detect_schema_version({"schema_version": version})

        assert exc_info.value.code == "UNSUPPORTED_SCHEMA_VERSION"
        assert exc_info.value.schema_version == version


class TestUpgradeV1:

    def test_loads_as_current_project(self):
        project = load_project(V1_RECORD, NOW, project_id="proj_v1")

        assert project.project_id == "proj_v1"
        assert project.grant_type is GrantType.PHASE_II
        assert project.program_type is ProgramType.STTR
        assert project.institute == "Standard NIH"
        assert project.created_at == NOW

    def test_award_number_implies_phase1_success(self):
        project = load_project(V1_RECORD, NOW)

        assert project.prior_phase.award_number == "R41CA000123"
        assert project.prior_phase.phase1_success_documented

    def test_budget_carried_forward(self):
        project = load_project(V1_RECORD, NOW)

        assert project.legacy_budget.direct_costs == Decimal("900000")
        assert project.module_data(6)["direct_costs_total"] == "900000"
        assert project.module_data(6)["research_institution_percent"] == "35"

    def test_checklist_moves_to_compilation(self):
        project = load_project(V1_RECORD, NOW)
        assert project.module_data(8)["final_review_checklist"] == V1_RECORD["checklist"]

    def test_generated_id(self):
        assert upgrade_payload(V1_RECORD, NOW)["project_id"].startswith("proj_")


class TestUpgradeV2:

    def test_id_renamed(self):
        payload = upgrade_v2_to_v3(_v2_document())
        assert payload["project_id"] == "proj_legacy01"
        assert "id" not in payload

    def test_export_flag_dropped(self):
        assert "compliance_export_allowed" not in upgrade_v2_to_v3(_v2_document())

    def test_amounts_become_strings(self):
        block = upgrade_v2_to_v3(_v2_document())["m6_budget"]

        assert block["direct_costs_total"] == "150000"
        assert block["f_and_a_rate"] == "40.5"
        assert block["sub_awards"] == []
        assert block["vendors"] == []

    def test_audit_entries_have_no_fingerprint(self):
        project = load_project(_v2_document(), NOW)

        entry = project.audit_trail[0]
        assert entry.action is AuditAction.CHECK
        assert entry.issues == ("Promotional language",)
        assert entry.content_fingerprint is None

    def test_upgraded_audit_does_not_open_export_gate(self, grants):
        project = load_project(_v2_document(), NOW)

        decision = grants.can_export_project(project)

        assert not decision.allowed
        assert decision.compliance_score == 92

    def test_existing_checklist_wins(self):
        document = _v2_document()
        document["m8_compilation"] = {"final_review_checklist": {"fonts": False}}

        payload = upgrade_v2_to_v3(document)

        assert payload["m8_compilation"]["final_review_checklist"] == {"fonts": False}


class TestUpgradePayload:

    def test_input_not_mutated(self):
        document = _v2_document()
        before = copy.deepcopy(document)

        upgrade_payload(document, NOW)

        assert document == before

    def test_current_payload_unchanged(self, make_project, captured_logs):
        payload = project_to_dict(make_project())

        assert upgrade_payload(payload, NOW) == payload
        assert not [r for r in captured_logs() if r["message"] == "schema_upgraded"]

    def test_logs_upgrade(self, captured_logs):
        upgrade_payload(V1_RECORD, NOW, project_id="proj_v1")

        record = next(r for r in captured_logs() if r["message"] == "schema_upgraded")

        assert (record["from_version"], record["to_version"]) == (1, 3)
        assert record["project_id"] == "proj_v1"
