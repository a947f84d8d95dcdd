"""
Module: grant_kernel.models.project_record
Responsibility: ORM persistence for the Project aggregate as one opaque,
    versioned JSON record plus a handful of indexed columns for lookup.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - ``payload`` is the complete current-version project document; the
      indexed columns are denormalized copies and are rewritten from the
      payload on every save.
    - ``row_version`` increases by exactly one per successful save and is
      compared by the repository for optimistic locking.

Audit relevance:
    The payload embeds the append-only compliance audit trail.  The
    repository refuses saves whose trail does not extend the stored one.
"""

from typing import Any

from sqlalchemy import JSON, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from grant_kernel.db.base import TimestampedBase


class ProjectRecord(TimestampedBase):
    """One stored grant application."""

    __tablename__ = "grant_projects"

    __table_args__ = (
        Index("idx_grant_projects_institute", "institute"),
        Index("idx_grant_projects_grant_type", "grant_type"),
    )

    project_id: Mapped[str] = mapped_column(String(64), primary_key=True)

    schema_version: Mapped[int] = mapped_column(Integer, nullable=False)

    # Nullable: legacy payloads may predate grant-type selection
    grant_type: Mapped[str | None] = mapped_column(String(32), nullable=True)

    program_type: Mapped[str] = mapped_column(String(8), nullable=False)

    institute: Mapped[str] = mapped_column(String(64), nullable=False)

    row_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    audit_entry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)

    def __repr__(self) -> str:
        return (
            f"<ProjectRecord {self.project_id} v{self.schema_version} "
            f"row={self.row_version} {self.grant_type}>"
        )
