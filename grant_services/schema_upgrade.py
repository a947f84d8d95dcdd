"""
grant_services.schema_upgrade -- One-way upgrade of stored project payloads.

Responsibility:
    Bring a persisted project document of any supported schema version up
    to the current version before it is deserialized:

    * v1 -- flat ``grantType`` / ``programType`` / ``priorPhase`` /
      ``checklist`` / ``budget`` record.
    * v2 -- module blocks, phase overlays, legacy budget and checklist,
      an audit trail without content fingerprints and a standalone
      ``compliance_export_allowed`` flag.
    * v3 -- current.  Budget amounts are strings, module-6 blocks carry
      sub-award and vendor lists, the legacy checklist lives in the
      compilation module and the standalone export flag is gone.

Architecture position:
    Services -- pure payload transformation, no I/O.  Called by the
    repository and the CLI before ``project_from_dict``.

Invariants enforced:
    - Upgrades are one-way and applied in order (1 -> 2 -> 3).
    - The input mapping is never mutated.
    - Pre-v3 audit entries carry no content fingerprint, so they can never
      open the export gate; a fresh audit is required after upgrade.

Failure modes:
    - UnsupportedSchemaVersionError for versions this build does not know
      (including anything newer than current).
"""

from __future__ import annotations

import copy
from collections.abc import Mapping
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from grant_kernel.domain.budget_types import to_decimal
from grant_kernel.domain.project import CURRENT_SCHEMA_VERSION, DEFAULT_INSTITUTE, Project
from grant_kernel.domain.serialization import overlay_key, project_from_dict
from grant_kernel.exceptions import UnsupportedSchemaVersionError
from grant_kernel.logging_config import LogContext, get_logger
from grant_services.project_service import new_project_id

logger = get_logger("services.schema_upgrade")

_BUDGET_AMOUNT_KEYS = (
    "direct_costs_total",
    "personnel_costs",
    "equipment_costs",
    "supplies_costs",
    "travel_costs",
    "consultant_costs",
    "patient_care_costs",
    "tuition_costs",
    "other_costs",
    "subaward_costs",
    "vendor_costs",
    "f_and_a_rate",
    "fee_percent",
    "small_business_percent",
    "research_institution_percent",
)


def detect_schema_version(data: Mapping[str, Any]) -> int:
    """Version of a stored payload; a missing tag means v1.

    Raises:
        UnsupportedSchemaVersionError: the tag is not a known version.
    """
    version = data.get("schema_version", 1)
    if isinstance(version, bool) or not isinstance(version, int):
        raise UnsupportedSchemaVersionError(version, CURRENT_SCHEMA_VERSION)
    if version < 1 or version > CURRENT_SCHEMA_VERSION:
        raise UnsupportedSchemaVersionError(version, CURRENT_SCHEMA_VERSION)
    return version


# ---------------------------------------------------------------------------
# v1 -> v2
# ---------------------------------------------------------------------------


def _empty_overlays_v2() -> dict[str, Any]:
    split = {
        overlay_key(3): ("phase1", "phase2"),
        overlay_key(5): ("phase1", "phase2"),
        overlay_key(6): ("phase1", "phase2"),
        overlay_key(7): ("shared", "phase2_additional"),
    }
    return {
        key: {primary: {}, secondary: {}, f"{primary}_complete": False, "phase2_complete": False}
        for key, (primary, secondary) in split.items()
    }


def upgrade_v1_to_v2(
    data: Mapping[str, Any],
    now: datetime,
    project_id: str | None = None,
) -> dict[str, Any]:
    prior = dict(data.get("priorPhase") or {})
    budget = dict(data.get("budget") or {})
    timestamp = now.isoformat()
    upgraded: dict[str, Any] = {
        "schema_version": 2,
        "project_id": project_id or data.get("project_id") or new_project_id(),
        "created_at": timestamp,
        "updated_at": timestamp,
        "grant_type": data.get("grantType"),
        "program_type": data.get("programType") or "SBIR",
        "institute": DEFAULT_INSTITUTE,
        "foa_config": {
            "direct_phase2_allowed": True,
            "fast_track_allowed": True,
            "phase2b_allowed": True,
            "commercialization_required": True,
        },
        "module_states": [],
        "m1_title_concept": {},
        "m2_hypothesis": {},
        "m3_specific_aims": {},
        "m4_team_mapping": {},
        "m5_experimental_approach": {},
        "m6_budget": {
            "direct_costs_total": budget.get("directCosts"),
            "personnel_costs": budget.get("personnelCosts"),
            "subaward_costs": budget.get("subawardCosts"),
            "small_business_percent": budget.get("smallBusinessPercent"),
            "research_institution_percent": budget.get("researchInstitutionPercent"),
        },
        "m7_regulatory": {},
        "m8_compilation": {},
        "m9_commercialization": {},
        "prior_phase": {
            **prior,
            # v1 never recorded success explicitly; an award number implied it
            "phase1_success_documented": bool(prior.get("awardNumber")),
            "phase2_success_documented": False,
        },
        "direct_phase2_feasibility": {},
        "legacy_budget": budget,
        "legacy_checklist": dict(data.get("checklist") or {}),
        "audit_trail": [],
    }
    upgraded["m6_budget"] = {k: v for k, v in upgraded["m6_budget"].items() if v is not None}
    upgraded.update(_empty_overlays_v2())
    return upgraded


# ---------------------------------------------------------------------------
# v2 -> v3
# ---------------------------------------------------------------------------


def _amount_str(value: Any) -> Any:
    if value is None or value == "" or isinstance(value, bool):
        return value
    if isinstance(value, (int, float, Decimal, str)):
        try:
            return str(to_decimal(value))
        except InvalidOperation:
            return value
    return value


def _upgrade_budget_block(block: Mapping[str, Any] | None) -> dict[str, Any]:
    upgraded = dict(block or {})
    for key in _BUDGET_AMOUNT_KEYS:
        if key in upgraded:
            upgraded[key] = _amount_str(upgraded[key])
    upgraded.setdefault("sub_awards", [])
    upgraded.setdefault("vendors", [])
    return upgraded


def _upgrade_audit_entry(entry: Mapping[str, Any]) -> dict[str, Any]:
    upgraded = dict(entry)
    upgraded["issues"] = [
        i.get("message", "") if isinstance(i, Mapping) else str(i)
        for i in upgraded.get("issues") or ()
    ]
    upgraded.setdefault("blockingIssueCount", 0)
    upgraded.setdefault("contentFingerprint", None)
    return upgraded


def upgrade_v2_to_v3(data: Mapping[str, Any]) -> dict[str, Any]:
    upgraded = copy.deepcopy(dict(data))
    upgraded["schema_version"] = 3
    if not upgraded.get("project_id"):
        upgraded["project_id"] = upgraded.get("id") or new_project_id()
    upgraded.pop("id", None)
    upgraded.setdefault("institute", DEFAULT_INSTITUTE)

    upgraded["m6_budget"] = _upgrade_budget_block(upgraded.get("m6_budget"))
    budget_overlay = dict(upgraded.get(overlay_key(6)) or {})
    for phase in ("phase1", "phase2"):
        if budget_overlay.get(phase):
            budget_overlay[phase] = _upgrade_budget_block(budget_overlay[phase])
    upgraded[overlay_key(6)] = budget_overlay

    legacy_budget = dict(upgraded.get("legacy_budget") or {})
    upgraded["legacy_budget"] = {k: _amount_str(v) for k, v in legacy_budget.items()}

    checklist = upgraded.pop("legacy_checklist", None) or {}
    compilation = dict(upgraded.get("m8_compilation") or {})
    if checklist and not compilation.get("final_review_checklist"):
        compilation["final_review_checklist"] = checklist
    upgraded["m8_compilation"] = compilation

    upgraded["audit_trail"] = [_upgrade_audit_entry(e) for e in upgraded.get("audit_trail") or ()]
    upgraded.pop("compliance_export_allowed", None)
    return upgraded


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------


def upgrade_payload(
    data: Mapping[str, Any],
    now: datetime,
    project_id: str | None = None,
) -> dict[str, Any]:
    """Upgrade ``data`` to the current schema version.

    ``now`` stamps the timestamps v1 payloads never had; ``project_id``
    names a v1 payload (otherwise one is generated).
    """
    version = detect_schema_version(data)
    payload: dict[str, Any] = copy.deepcopy(dict(data))
    start = version
    if version == 1:
        payload = upgrade_v1_to_v2(payload, now, project_id)
        version = 2
    if version == 2:
        payload = upgrade_v2_to_v3(payload)
        version = 3
    if start != version:
        with LogContext.bind(project_id=payload.get("project_id")):
            logger.info(
                "schema_upgraded",
                extra={"from_version": start, "to_version": version},
            )
    return payload


def load_project(
    data: Mapping[str, Any],
    now: datetime,
    project_id: str | None = None,
) -> Project:
    """Upgrade and deserialize a stored payload."""
    return project_from_dict(upgrade_payload(data, now, project_id))
