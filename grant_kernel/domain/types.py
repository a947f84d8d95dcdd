"""
Core domain enums and the validation issue value object.

Responsibility:
    Defines the closed vocabularies shared by every layer: grant types,
    program types, module status, issue severity, audit actions and the
    phase selector for combined-phase applications.

Architecture position:
    Kernel > Domain -- pure definitions, zero I/O.

Invariants enforced:
    - ``ValidationIssue`` always carries a severity; there is no "unset"
      severity in this system.
    - Enum values are the wire values persisted in project payloads.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class GrantType(str, Enum):
    """Grant mechanisms an application can target."""

    PHASE_I = "Phase I"
    PHASE_II = "Phase II"
    FAST_TRACK = "Fast Track"
    DIRECT_TO_PHASE_II = "Direct to Phase II"
    PHASE_IIB = "Phase IIB"


class ProgramType(str, Enum):
    """Program variants; each has its own effort-allocation rules."""

    SBIR = "SBIR"
    STTR = "STTR"


class ModuleStatus(str, Enum):
    INCOMPLETE = "incomplete"
    PARTIAL = "partial"
    COMPLETE = "complete"


class Severity(str, Enum):
    """Issue severity.

    WARNING never blocks.  ERROR blocks "structurally ready".  CRITICAL
    blocks both readiness and export.
    """

    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"

    @property
    def is_blocking(self) -> bool:
        return self is not Severity.WARNING


class AuditAction(str, Enum):
    """Actions recorded in a project's compliance audit trail."""

    CHECK = "check"
    EXPORT_BLOCKED = "export_blocked"
    EXPORT_SUCCESS = "export_success"
    REVISION = "revision"


class ProjectPhase(str, Enum):
    """Active phase of a combined-phase (Fast Track) application."""

    PHASE1 = "phase1"
    PHASE2 = "phase2"


@dataclass(frozen=True)
class ValidationIssue:
    """A domain rule violation, returned as a value rather than raised."""

    code: str
    message: str
    field: str
    severity: Severity = Severity.ERROR

    def to_dict(self) -> dict[str, str]:
        return {
            "code": self.code,
            "message": self.message,
            "field": self.field,
            "severity": self.severity.value,
        }
