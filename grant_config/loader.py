"""
Policy Loader (``grant_config.loader``).

Responsibility
--------------
Loads the YAML policy pack and parses it into typed
``grant_config.schema`` dataclass instances.  Runtime callers use
``grant_config.get_active_policy()``; this module is its implementation
and test tooling.

Architecture position
---------------------
**Config layer** -- infrastructure tooling.  Depends on the kernel only for
the closed vocabularies (grant types, severities) it validates against.

Invariants enforced
-------------------
* Parse errors surface as ``PolicyLoadError`` naming the file and the
  cause; there are no silent defaults for required keys.
* Every regex in the pack compiles, every grant type and severity named in
  the pack is a known value, and every institute defines phase-1 and
  phase-2 caps.
* ``compute_checksum`` produces a deterministic SHA-256 hash for policy
  identity and change detection.

Failure modes
-------------
* Missing file, malformed YAML, missing keys, bad dates, bad numbers or
  invalid patterns  -> ``PolicyLoadError``.

Audit relevance
---------------
The checksum is logged with every load so an audit result can be tied to
the exact policy text that produced it.
"""

from __future__ import annotations

import hashlib
import json
import re
from datetime import date
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from grant_config.schema import (
    BudgetPolicy,
    ExportPolicy,
    GrantPolicy,
    InstituteConfig,
    PhaseConstraintDef,
    PlaceholderPatternDef,
    PolicyMetadata,
    ScoringPolicy,
    SectionElementDef,
    SectionRuleDef,
)
from grant_kernel.domain.types import GrantType, Severity
from grant_kernel.exceptions import PolicyLoadError

DEFAULT_POLICY_PATH = Path(__file__).parent / "policies" / "nih_sbir.yaml"


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_date(value: Any) -> date:
    """Parse a date from YAML (string or date object)."""
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        return date.fromisoformat(value)
    raise ValueError(f"Cannot parse date from {value!r}")


def parse_decimal(value: Any) -> Decimal:
    if isinstance(value, bool) or value is None:
        raise ValueError(f"Expected a number, got {value!r}")
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"Expected a number, got {value!r}") from None


def _optional_decimal(value: Any) -> Decimal | None:
    return None if value is None else parse_decimal(value)


def _check_pattern(pattern: str) -> str:
    try:
        re.compile(pattern)
    except re.error as exc:
        raise ValueError(f"Invalid pattern {pattern!r}: {exc}") from None
    return pattern


def _check_grant_type(value: str) -> str:
    GrantType(value)
    return value


def parse_metadata(data: dict[str, Any]) -> PolicyMetadata:
    return PolicyMetadata(
        policy_id=data["id"],
        version=str(data["version"]),
        last_updated=parse_date(data["last_updated"]),
        expiry_months=int(data["expiry_months"]),
        default_institute=data["default_institute"],
    )


def parse_institute(code: str, data: dict[str, Any]) -> InstituteConfig:
    """
    Parse one institute entry.

    Raises:
        KeyError: if caps or allocation minima are missing.
        ValueError: if an amount is not a number.
    """
    caps = data["caps"]
    sbir = data["sbir"]
    sttr = data["sttr"]
    return InstituteConfig(
        code=code,
        name=data["name"],
        phase1_cap=parse_decimal(caps["phase1"]),
        phase2_cap=parse_decimal(caps["phase2"]),
        phase2b_cap=_optional_decimal(caps.get("phase2b")),
        sbir_phase1_small_business_min=parse_decimal(sbir["phase1_small_business_min"]),
        sbir_phase2_small_business_min=parse_decimal(sbir["phase2_small_business_min"]),
        sttr_small_business_min=parse_decimal(sttr["small_business_min"]),
        sttr_research_institution_min=parse_decimal(sttr["research_institution_min"]),
        clinical_trial_allowed=bool(data.get("clinical_trial_allowed", True)),
        notes=data.get("notes", ""),
    )


def parse_budget(data: dict[str, Any]) -> BudgetPolicy:
    policy = BudgetPolicy(
        mtdc_subaward_threshold=parse_decimal(data["mtdc_subaward_threshold"]),
        fee_percent_min=parse_decimal(data["fee_percent_min"]),
        fee_percent_max=parse_decimal(data["fee_percent_max"]),
        near_cap_ratio=parse_decimal(data["near_cap_ratio"]),
    )
    if policy.fee_percent_min > policy.fee_percent_max:
        raise ValueError(
            f"fee_percent_min {policy.fee_percent_min} exceeds "
            f"fee_percent_max {policy.fee_percent_max}"
        )
    return policy


def parse_export(data: dict[str, Any]) -> ExportPolicy:
    return ExportPolicy(
        compliance_threshold=int(data["compliance_threshold"]),
        alignment_threshold=int(data["alignment_threshold"]),
    )


def parse_phase_constraint(grant_type: str, data: dict[str, Any]) -> PhaseConstraintDef:
    pages = data.get("commercialization_plan_pages")
    return PhaseConstraintDef(
        grant_type=_check_grant_type(grant_type),
        budget_cap_key=data["budget_cap_key"],
        focus=data["focus"],
        required_elements=tuple(data.get("required_elements") or ()),
        commercialization_plan_required=bool(data.get("commercialization_plan_required", False)),
        commercialization_plan_pages=int(pages) if pages is not None else None,
        go_no_go_required=bool(data.get("go_no_go_required", False)),
    )


def parse_scoring(data: dict[str, Any]) -> ScoringPolicy:
    deductions = data["deductions"]
    for severity in deductions:
        Severity(severity)
    return ScoringPolicy(
        deductions=tuple(sorted((str(k), int(v)) for k, v in deductions.items())),
        go_no_go_markers=tuple(data.get("go_no_go_markers") or ()),
        statistical_tests=tuple(data.get("statistical_tests") or ()),
        promotional_terms=tuple(data.get("promotional_terms") or ()),
        placeholder_patterns=tuple(
            PlaceholderPatternDef(
                pattern=_check_pattern(p["pattern"]),
                ignore_case=bool(p.get("ignore_case", True)),
            )
            for p in data.get("placeholder_patterns") or ()
        ),
    )


def parse_section(section_type: str, data: dict[str, Any]) -> SectionRuleDef:
    elements = data["elements"]
    return SectionRuleDef(
        section_type=section_type,
        category=data["category"],
        description=data.get("description", ""),
        elements=tuple(
            SectionElementDef(name=name, patterns=tuple(_check_pattern(p) for p in patterns))
            for name, patterns in elements.items()
        ),
    )


def parse_policy(data: dict[str, Any], checksum: str = "") -> GrantPolicy:
    """
    Parse a ``GrantPolicy`` from the raw YAML document.

    Raises:
        KeyError: if a required section or key is missing.
        ValueError: if a value is malformed.
    """
    metadata = parse_metadata(data["policy"])
    institutes = tuple(
        parse_institute(code, entry) for code, entry in data["institutes"].items()
    )
    if metadata.default_institute not in {i.code for i in institutes}:
        raise ValueError(
            f"default_institute {metadata.default_institute!r} is not a defined institute"
        )
    completion = data.get("completion") or {}
    return GrantPolicy(
        metadata=metadata,
        institutes=institutes,
        budget=parse_budget(data["budget"]),
        export=parse_export(data["export"]),
        phase_constraints=tuple(
            parse_phase_constraint(gt, entry)
            for gt, entry in (data.get("phase_constraints") or {}).items()
        ),
        scoring=parse_scoring(data["scoring"]),
        sections=tuple(
            parse_section(st, entry) for st, entry in (data.get("sections") or {}).items()
        ),
        legacy_aims_fallback_grant_types=tuple(
            _check_grant_type(gt)
            for gt in completion.get("legacy_aims_fallback_grant_types") or ()
        ),
        checksum=checksum,
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def load_policy(path: Path | None = None) -> GrantPolicy:
    """Load, validate and checksum a policy pack.

    Raises:
        PolicyLoadError: on any read, YAML or parse failure.
    """
    policy_path = Path(path) if path is not None else DEFAULT_POLICY_PATH
    try:
        data = load_yaml_file(policy_path)
    except OSError as exc:
        raise PolicyLoadError(str(policy_path), f"cannot read file: {exc}") from exc
    except yaml.YAMLError as exc:
        raise PolicyLoadError(str(policy_path), f"invalid YAML: {exc}") from exc

    try:
        return parse_policy(data, checksum=compute_checksum(data))
    except KeyError as exc:
        raise PolicyLoadError(str(policy_path), f"missing key {exc}") from exc
    except (TypeError, ValueError) as exc:
        raise PolicyLoadError(str(policy_path), str(exc)) from exc
