"""
grant_services.project_repository -- SQLAlchemy persistence for projects.

Responsibility:
    Load and save the ``Project`` aggregate as one opaque, versioned JSON
    record in the ``grant_projects`` table.

Architecture position:
    Services -- the persistence collaborator.  Receives a ``Session`` via
    constructor injection and never commits; transaction boundaries belong
    to the caller (``grant_kernel.db.session_scope``).

Invariants enforced:
    - Loads upgrade older payloads to the current schema before
      deserializing; saves always write the current schema.
    - Append-only audit trail: a save whose trail does not extend the
      stored trail is refused.
    - Optimistic locking: when the caller passes the row version it read,
      a save against a newer row is refused.  ``row_version`` increases by
      one per save.

Failure modes:
    - ProjectNotFoundError for unknown ids.
    - UnsupportedSchemaVersionError for payloads this build cannot read.
    - OptimisticLockError on a concurrent modification.
    - AuditTrailTamperedError when a save would rewrite the trail.
    - PersistenceError wrapping any SQLAlchemy failure.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from grant_kernel.domain.clock import Clock, SystemClock
from grant_kernel.domain.project import CURRENT_SCHEMA_VERSION, Project
from grant_kernel.domain.serialization import audit_entry_to_dict, project_to_dict
from grant_kernel.exceptions import (
    AuditTrailTamperedError,
    OptimisticLockError,
    PersistenceError,
    ProjectNotFoundError,
)
from grant_kernel.logging_config import LogContext, get_logger
from grant_kernel.models.project_record import ProjectRecord
from grant_services.schema_upgrade import load_project

logger = get_logger("services.repository")


@dataclass(frozen=True)
class StoredProject:
    project: Project
    row_version: int


def _first_mismatch(stored: list[dict], current: list[dict]) -> int | None:
    """Index where ``stored`` stops being a prefix of ``current``, else None."""
    for index, entry in enumerate(stored):
        if index >= len(current) or current[index] != entry:
            return index
    return None


class ProjectRepository:
    """
    Stores projects in ``grant_projects``.

    Contract:
        Receives a ``Session`` and an optional ``Clock`` (used only to
        stamp v1 payloads during upgrade).
    Non-goals:
        - Does not commit or roll back.
        - Does not delete projects.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self._clock = clock or SystemClock()

    def _record(self, project_id: str) -> ProjectRecord | None:
        try:
            return self.session.execute(
                select(ProjectRecord).where(ProjectRecord.project_id == project_id)
            ).scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to read project {project_id}: {exc}") from exc

    def exists(self, project_id: str) -> bool:
        return self._record(project_id) is not None

    def get(self, project_id: str) -> StoredProject:
        """
        Load a project, upgrading its payload if needed.

        Raises:
            ProjectNotFoundError: no record for ``project_id``.
        """
        record = self._record(project_id)
        if record is None:
            raise ProjectNotFoundError(project_id)
        project = load_project(record.payload, self._clock.now(), project_id=record.project_id)
        return StoredProject(project, record.row_version)

    def list_ids(self, institute: str | None = None) -> list[str]:
        stmt = select(ProjectRecord.project_id).order_by(ProjectRecord.project_id)
        if institute is not None:
            stmt = stmt.where(ProjectRecord.institute == institute)
        try:
            return list(self.session.execute(stmt).scalars())
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to list projects: {exc}") from exc

    def save(self, project: Project, expected_version: int | None = None) -> int:
        """
        Insert or update ``project``; return the new row version.

        Raises:
            OptimisticLockError: ``expected_version`` differs from the
                stored row version.
            AuditTrailTamperedError: the stored audit trail is not a prefix
                of ``project.audit_trail``.
        """
        payload = project_to_dict(project)
        record = self._record(project.project_id)

        with LogContext.bind(project_id=project.project_id):
            if record is None:
                record = ProjectRecord(
                    project_id=project.project_id,
                    schema_version=CURRENT_SCHEMA_VERSION,
                    row_version=1,
                    created_at=project.created_at,
                    updated_at=project.updated_at,
                )
                self._apply(record, project, payload)
                self.session.add(record)
                event = "project_inserted"
            else:
                if expected_version is not None and record.row_version != expected_version:
                    raise OptimisticLockError(
                        project.project_id, expected_version, record.row_version
                    )
                self._check_append_only(record, project)
                self._apply(record, project, payload)
                record.schema_version = CURRENT_SCHEMA_VERSION
                record.updated_at = project.updated_at
                record.row_version = record.row_version + 1
                event = "project_updated"

            try:
                self.session.flush()
            except SQLAlchemyError as exc:
                raise PersistenceError(
                    f"Failed to save project {project.project_id}: {exc}"
                ) from exc

            logger.info(
                event,
                extra={
                    "row_version": record.row_version,
                    "audit_entry_count": record.audit_entry_count,
                },
            )
            return record.row_version

    @staticmethod
    def _apply(record: ProjectRecord, project: Project, payload: dict) -> None:
        record.grant_type = project.grant_type.value if project.grant_type else None
        record.program_type = project.program_type.value
        record.institute = project.institute
        record.audit_entry_count = len(project.audit_trail)
        record.payload = payload

    @staticmethod
    def _check_append_only(record: ProjectRecord, project: Project) -> None:
        stored = list((record.payload or {}).get("audit_trail") or ())
        if record.schema_version != CURRENT_SCHEMA_VERSION:
            # Older payloads are compared after the same upgrade a load applies.
            stored = [audit_entry_to_dict(e) for e in load_project(
                record.payload, project.updated_at, project_id=record.project_id
            ).audit_trail]
        current = [audit_entry_to_dict(e) for e in project.audit_trail]
        mismatch = _first_mismatch(stored, current)
        if mismatch is not None:
            raise AuditTrailTamperedError(project.project_id, len(stored), mismatch)
