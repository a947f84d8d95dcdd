"""
Typed Exception Hierarchy for the Grant Kernel.

===============================================================================
WHAT RAISES AND WHAT RETURNS
===============================================================================

Expected domain conditions are NOT exceptions.  A budget over its cap, an
unmet allocation minimum, a missing prior-phase award number or an
incomplete module are all returned as ``ValidationIssue`` values from pure
functions, and the orchestrator merges them into one result.

Exceptions are reserved for:
  1. Configuration that makes a request impossible to honor (raised eagerly
     at project creation, never deferred to validation time).
  2. Commands the aggregate refuses (editing a locked phase block).
  3. Collaborator failures (storage, compliance scoring).  These propagate
     unchanged in meaning and never leave compliance state half-written.

Every class carries a class-level ``code`` and keeps its context as
attributes so handlers and the structured log formatter can use it without
parsing messages.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    GrantKernelError (base)
    |
    +-- ConfigurationError
    |   +-- UnknownInstituteError
    |   +-- MissingBudgetCapError
    |   +-- GrantTypeNotAllowedError
    |   +-- PolicyLoadError
    |
    +-- LifecycleError
    |   +-- GrantTypeAlreadySelectedError
    |
    +-- EditError
    |   +-- PhaseLockedError
    |   +-- SubAwardNotFoundError
    |   +-- VendorNotFoundError
    |
    +-- PersistenceError
    |   +-- ProjectNotFoundError
    |   +-- UnsupportedSchemaVersionError
    |   +-- OptimisticLockError
    |
    +-- AuditError
    |   +-- AuditTrailTamperedError
    |   +-- ComplianceScoringError
    |
    +-- ExportError
        +-- ExportNotAllowedError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category      | Code                          | When Raised
--------------|-------------------------------|---------------------------------------
Configuration | UNKNOWN_INSTITUTE             | Institute code not in the policy pack
              | MISSING_BUDGET_CAP            | Institute defines no cap for grant type
              | GRANT_TYPE_NOT_ALLOWED        | Funding opportunity forbids grant type
              | POLICY_LOAD_FAILED            | Policy YAML missing or malformed
--------------|-------------------------------|---------------------------------------
Lifecycle     | GRANT_TYPE_ALREADY_SELECTED   | Second grant-type selection attempted
--------------|-------------------------------|---------------------------------------
Edit          | PHASE_LOCKED                  | Phase-2 edit before phase-1 complete
              | SUB_AWARD_NOT_FOUND           | Edit/remove of unknown sub-award id
              | VENDOR_NOT_FOUND              | Edit/remove of unknown vendor id
--------------|-------------------------------|---------------------------------------
Persistence   | PROJECT_NOT_FOUND             | No stored record for project id
              | UNSUPPORTED_SCHEMA_VERSION    | Payload newer than this code / unknown
              | OPTIMISTIC_LOCK_CONFLICT      | Stored row changed since it was read
--------------|-------------------------------|---------------------------------------
Audit         | AUDIT_TRAIL_TAMPERED          | Save would rewrite existing entries
              | COMPLIANCE_SCORING_FAILED     | Scoring collaborator raised
--------------|-------------------------------|---------------------------------------
Export        | EXPORT_NOT_ALLOWED            | Artifact requested while gate is closed
"""


class GrantKernelError(Exception):
    """Base exception for all grant kernel errors."""

    code: str = "GRANT_KERNEL_ERROR"


# Configuration


class ConfigurationError(GrantKernelError):
    """Base for configuration problems detected at creation or load time."""

    code: str = "CONFIGURATION_ERROR"


class UnknownInstituteError(ConfigurationError):
    code: str = "UNKNOWN_INSTITUTE"

    def __init__(self, institute: str, known: tuple[str, ...] = ()):
        self.institute = institute
        self.known = known
        super().__init__(
            f"Institute {institute!r} is not configured"
            + (f" (known: {', '.join(known)})" if known else "")
        )


class MissingBudgetCapError(ConfigurationError):
    """The institute has no budget cap for the requested grant type."""

    code: str = "MISSING_BUDGET_CAP"

    def __init__(self, institute: str, grant_type: str):
        self.institute = institute
        self.grant_type = grant_type
        super().__init__(
            f"Institute {institute!r} defines no budget cap for {grant_type}"
        )


class GrantTypeNotAllowedError(ConfigurationError):
    code: str = "GRANT_TYPE_NOT_ALLOWED"

    def __init__(self, grant_type: str, foa_number: str | None = None):
        self.grant_type = grant_type
        self.foa_number = foa_number
        super().__init__(
            f"{grant_type} is not allowed by funding opportunity "
            f"{foa_number or '(unspecified)'}"
        )


class PolicyLoadError(ConfigurationError):
    code: str = "POLICY_LOAD_FAILED"

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Could not load policy from {path}: {reason}")


# Lifecycle


class LifecycleError(GrantKernelError):
    code: str = "LIFECYCLE_ERROR"


class GrantTypeAlreadySelectedError(LifecycleError):
    """The grant type is a one-time selection made at creation."""

    code: str = "GRANT_TYPE_ALREADY_SELECTED"

    def __init__(self, project_id: str, current: str):
        self.project_id = project_id
        self.current = current
        super().__init__(
            f"Project {project_id} already targets {current}; "
            f"the grant type cannot be changed"
        )


# Edits


class EditError(GrantKernelError):
    code: str = "EDIT_ERROR"


class PhaseLockedError(EditError):
    """Phase-2 content cannot be edited until the phase-1 block is complete."""

    code: str = "PHASE_LOCKED"

    def __init__(self, project_id: str, module_id: int, block: str):
        self.project_id = project_id
        self.module_id = module_id
        self.block = block
        super().__init__(
            f"Module {module_id} block {block!r} of project {project_id} is "
            f"locked until the first-phase block is complete"
        )


class SubAwardNotFoundError(EditError):
    code: str = "SUB_AWARD_NOT_FOUND"

    def __init__(self, sub_award_id: str):
        self.sub_award_id = sub_award_id
        super().__init__(f"Sub-award not found: {sub_award_id}")


class VendorNotFoundError(EditError):
    code: str = "VENDOR_NOT_FOUND"

    def __init__(self, vendor_id: str):
        self.vendor_id = vendor_id
        super().__init__(f"Vendor not found: {vendor_id}")


# Persistence


class PersistenceError(GrantKernelError):
    """Storage failure; wraps the underlying driver error."""

    code: str = "PERSISTENCE_ERROR"


class ProjectNotFoundError(PersistenceError):
    code: str = "PROJECT_NOT_FOUND"

    def __init__(self, project_id: str):
        self.project_id = project_id
        super().__init__(f"Project not found: {project_id}")


class UnsupportedSchemaVersionError(PersistenceError):
    code: str = "UNSUPPORTED_SCHEMA_VERSION"

    def __init__(self, schema_version: object, supported: int):
        self.schema_version = schema_version
        self.supported = supported
        super().__init__(
            f"Unsupported project schema version {schema_version!r} "
            f"(this build reads up to v{supported})"
        )


class OptimisticLockError(PersistenceError):
    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, project_id: str, expected_version: int, actual_version: int):
        self.project_id = project_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Project {project_id} was modified concurrently: expected row "
            f"version {expected_version}, found {actual_version}"
        )


# Audit


class AuditError(GrantKernelError):
    code: str = "AUDIT_ERROR"


class AuditTrailTamperedError(AuditError):
    """A save would remove or rewrite entries already on the audit trail."""

    code: str = "AUDIT_TRAIL_TAMPERED"

    def __init__(self, project_id: str, stored_length: int, first_mismatch: int):
        self.project_id = project_id
        self.stored_length = stored_length
        self.first_mismatch = first_mismatch
        super().__init__(
            f"Audit trail of project {project_id} diverges from the stored "
            f"trail at entry {first_mismatch} (stored entries: {stored_length})"
        )


class ComplianceScoringError(AuditError):
    """The compliance-scoring collaborator failed; nothing was recorded."""

    code: str = "COMPLIANCE_SCORING_FAILED"

    def __init__(self, project_id: str, reason: str):
        self.project_id = project_id
        self.reason = reason
        super().__init__(f"Compliance scoring failed for project {project_id}: {reason}")


# Export


class ExportError(GrantKernelError):
    code: str = "EXPORT_ERROR"


class ExportNotAllowedError(ExportError):
    code: str = "EXPORT_NOT_ALLOWED"

    def __init__(self, project_id: str, reason: str):
        self.project_id = project_id
        self.reason = reason
        super().__init__(f"Export of project {project_id} is not allowed: {reason}")
