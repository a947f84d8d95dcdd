"""
Project serialization and content fingerprinting.

Responsibility:
    Converts the ``Project`` aggregate to and from the current-version
    persisted payload (plain JSON-compatible dicts), and computes the
    content fingerprint the export gate compares against the fingerprint
    recorded at audit time.

Architecture position:
    Kernel > Domain -- pure functions, zero I/O.  Upgrading older payload
    versions is NOT done here (see ``grant_services.schema_upgrade``);
    ``project_from_dict`` only accepts the current schema version.

Invariants enforced:
    - ``project_from_dict(project_to_dict(p)) == p`` whenever the module
      blocks hold JSON-native values (budget write-back stores amounts as
      strings for this reason).
    - The content fingerprint covers application content only.  Audit
      trail, derived module states, last scores and timestamps are
      excluded, so recording an audit never changes the fingerprint.
    - Fingerprints are SHA-256 over canonical JSON (sorted keys), hence
      deterministic across processes.
"""

from __future__ import annotations

import hashlib
import json
from datetime import datetime
from decimal import Decimal
from typing import Any, Mapping

from grant_kernel.domain.budget_types import BudgetSnapshot, to_decimal
from grant_kernel.domain.modules import SPLIT_MODULE_IDS, all_modules, get_module
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
from grant_kernel.domain.types import AuditAction, GrantType, ModuleStatus, ProgramType


def _json_default(obj: Any) -> Any:
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, (tuple, set, frozenset)):
        return list(obj)
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def canonical_json(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=_json_default)


# ---------------------------------------------------------------------------
# Overlays
# ---------------------------------------------------------------------------


def _overlay_to_dict(overlay: PhaseOverlay) -> dict[str, Any]:
    return {
        overlay.primary.name: dict(overlay.primary.data),
        overlay.secondary.name: dict(overlay.secondary.data),
        f"{overlay.primary.name}_complete": overlay.primary.complete,
        f"{overlay.secondary.name.split('_')[0]}_complete": overlay.secondary.complete,
    }


def _overlay_from_dict(module_id: int, data: Mapping[str, Any] | None) -> PhaseOverlay:
    overlay = PhaseOverlay.empty(module_id)
    if not data:
        return overlay
    primary, secondary = overlay.block_names
    return PhaseOverlay(
        module_id=module_id,
        primary=PhaseBlock(
            primary,
            dict(data.get(primary) or {}),
            bool(data.get(f"{primary}_complete", False)),
        ),
        secondary=PhaseBlock(
            secondary,
            dict(data.get(secondary) or {}),
            # "phase2_additional" carries its flag as "phase2_complete"
            bool(data.get(f"{secondary.split('_')[0]}_complete", False)),
        ),
    )


def overlay_key(module_id: int) -> str:
    """Persisted key of a module's phase overlay, e.g. ``m3_fast_track``."""
    return f"m{module_id}_fast_track"


# ---------------------------------------------------------------------------
# Audit trail and module states
# ---------------------------------------------------------------------------


def audit_entry_to_dict(entry: ComplianceAuditEntry) -> dict[str, Any]:
    return {
        "timestamp": entry.timestamp.isoformat(),
        "moduleId": entry.module_id,
        "sectionType": entry.section_type,
        "action": entry.action.value,
        "complianceScore": entry.compliance_score,
        "agencyAlignmentScore": entry.agency_alignment_score,
        "issues": list(entry.issues),
        "passed": entry.passed,
        "blockingIssueCount": entry.blocking_issue_count,
        "contentFingerprint": entry.content_fingerprint,
    }


def audit_entry_from_dict(data: Mapping[str, Any]) -> ComplianceAuditEntry:
    return ComplianceAuditEntry(
        timestamp=datetime.fromisoformat(data["timestamp"]),
        action=AuditAction(data["action"]),
        compliance_score=int(data.get("complianceScore", 0)),
        agency_alignment_score=int(data.get("agencyAlignmentScore", 0)),
        passed=bool(data.get("passed", False)),
        module_id=data.get("moduleId"),
        section_type=data.get("sectionType"),
        issues=tuple(data.get("issues") or ()),
        blocking_issue_count=int(data.get("blockingIssueCount", 0)),
        content_fingerprint=data.get("contentFingerprint"),
    )


def module_state_to_dict(state: ModuleState) -> dict[str, Any]:
    return {
        "module_id": state.module_id,
        "name": state.name,
        "required_fields": list(state.required_fields),
        "completed_fields": list(state.completed_fields),
        "status": state.status.value,
        "locked": state.locked,
    }


def _module_state_from_dict(data: Mapping[str, Any]) -> ModuleState:
    return ModuleState(
        module_id=int(data["module_id"]),
        name=data["name"],
        required_fields=tuple(data.get("required_fields") or ()),
        completed_fields=tuple(data.get("completed_fields") or ()),
        status=ModuleStatus(data["status"]),
        locked=bool(data.get("locked", False)),
    )


# ---------------------------------------------------------------------------
# FOA
# ---------------------------------------------------------------------------


def _foa_to_dict(foa: FOAConfig) -> dict[str, Any]:
    overrides = None
    if foa.overrides is not None:
        o = foa.overrides
        overrides = {
            "budgetCapOverride": None if o.budget_cap is None else str(o.budget_cap),
            "smallBusinessMinOverride": None if o.small_business_min is None else str(o.small_business_min),
            "researchInstitutionMinOverride": (
                None if o.research_institution_min is None else str(o.research_institution_min)
            ),
            "clinicalTrialAllowed": o.clinical_trial_allowed,
        }
    return {
        "direct_phase2_allowed": foa.direct_phase2_allowed,
        "fast_track_allowed": foa.fast_track_allowed,
        "phase2b_allowed": foa.phase2b_allowed,
        "commercialization_required": foa.commercialization_required,
        "foa_number": foa.foa_number,
        "parsed_foa": overrides,
    }


def _optional_decimal(value: Any) -> Decimal | None:
    return None if value in (None, "") else to_decimal(value)


def foa_from_dict(data: Mapping[str, Any] | None) -> FOAConfig:
    data = data or {}
    parsed = data.get("parsed_foa")
    overrides = None
    if parsed:
        overrides = FOAOverrides(
            budget_cap=_optional_decimal(parsed.get("budgetCapOverride")),
            small_business_min=_optional_decimal(parsed.get("smallBusinessMinOverride")),
            research_institution_min=_optional_decimal(parsed.get("researchInstitutionMinOverride")),
            clinical_trial_allowed=parsed.get("clinicalTrialAllowed"),
        )
    return FOAConfig(
        direct_phase2_allowed=bool(data.get("direct_phase2_allowed", True)),
        fast_track_allowed=bool(data.get("fast_track_allowed", True)),
        phase2b_allowed=bool(data.get("phase2b_allowed", True)),
        commercialization_required=bool(data.get("commercialization_required", True)),
        foa_number=data.get("foa_number") or None,
        overrides=overrides,
    )


# ---------------------------------------------------------------------------
# Project
# ---------------------------------------------------------------------------


def _content_dict(project: Project) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "grant_type": project.grant_type.value if project.grant_type else None,
        "program_type": project.program_type.value,
        "institute": project.institute,
        "prior_phase": project.prior_phase.to_dict(),
        "direct_phase2_feasibility": dict(project.direct_phase2_feasibility),
        "foa_config": _foa_to_dict(project.foa),
        "clinical_trial_included": project.clinical_trial_included,
        "legacy_budget": project.legacy_budget.to_dict(),
    }
    for module_id, data in sorted(project.modules.items()):
        payload[get_module(module_id).block_key] = dict(data)
    for module_id in SPLIT_MODULE_IDS:
        payload[overlay_key(module_id)] = _overlay_to_dict(project.overlay(module_id))
    return payload


def project_to_dict(project: Project) -> dict[str, Any]:
    """Serialize a project to the current-version persisted payload."""
    payload = _content_dict(project)
    payload.update({
        "schema_version": CURRENT_SCHEMA_VERSION,
        "project_id": project.project_id,
        "created_at": project.created_at.isoformat(),
        "updated_at": project.updated_at.isoformat(),
        "module_states": [module_state_to_dict(s) for s in project.module_states],
        "audit_trail": [audit_entry_to_dict(e) for e in project.audit_trail],
        "last_compliance_score": project.last_compliance_score,
        "last_agency_alignment_score": project.last_agency_alignment_score,
    })
    # Round-trip through canonical JSON so Decimals in blocks become strings.
    return json.loads(canonical_json(payload))


def project_from_dict(data: Mapping[str, Any]) -> Project:
    """Build a project from a current-version payload.

    Raises:
        ValueError: if the payload is not at the current schema version.
    """
    version = data.get("schema_version")
    if version != CURRENT_SCHEMA_VERSION:
        raise ValueError(
            f"Payload schema_version {version!r} is not current "
            f"({CURRENT_SCHEMA_VERSION}); upgrade it first"
        )
    modules = {d.id: dict(data.get(d.block_key) or {}) for d in all_modules()}
    overlays = {
        module_id: _overlay_from_dict(module_id, data.get(overlay_key(module_id)))
        for module_id in SPLIT_MODULE_IDS
    }
    grant_type = data.get("grant_type")
    return Project(
        project_id=data["project_id"],
        grant_type=GrantType(grant_type) if grant_type else None,
        program_type=ProgramType(data.get("program_type", ProgramType.SBIR.value)),
        institute=data.get("institute") or DEFAULT_INSTITUTE,
        created_at=datetime.fromisoformat(data["created_at"]),
        updated_at=datetime.fromisoformat(data["updated_at"]),
        modules=modules,
        overlays=overlays,
        prior_phase=PriorPhaseRecord.from_dict(data.get("prior_phase")),
        direct_phase2_feasibility=dict(data.get("direct_phase2_feasibility") or {}),
        foa=foa_from_dict(data.get("foa_config")),
        clinical_trial_included=bool(data.get("clinical_trial_included", False)),
        legacy_budget=BudgetSnapshot.from_dict(data.get("legacy_budget")),
        module_states=tuple(_module_state_from_dict(s) for s in data.get("module_states") or ()),
        audit_trail=tuple(audit_entry_from_dict(e) for e in data.get("audit_trail") or ()),
        last_compliance_score=data.get("last_compliance_score"),
        last_agency_alignment_score=data.get("last_agency_alignment_score"),
    )


def content_fingerprint(project: Project) -> str:
    """SHA-256 of the project's application content (hex, 64 chars)."""
    return hashlib.sha256(canonical_json(_content_dict(project)).encode("utf-8")).hexdigest()
