"""
Module: grant_kernel.db.base
Responsibility: Declarative base for the grant kernel's SQLAlchemy ORM models
    and the type annotation map that keeps column types consistent.
Architecture position: Kernel > DB.  Lowest-level import target for ORM
    models.  MUST NOT import from models/, domain/, or outer layers.

Invariants enforced:
    - datetime maps to DateTime(timezone=True); naive timestamps are never
      written by services.
    - JSON payloads are stored with the generic JSON type so the same
      schema runs on SQLite (tests, CLI) and PostgreSQL.
"""

from datetime import datetime
from typing import Any, ClassVar

from sqlalchemy import JSON, DateTime, Integer, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """
    Declarative base for all grant kernel models.

    Guarantees:
        - datetime maps to DateTime(timezone=True).
        - dict maps to JSON.
        - str maps to String(255) unless a column overrides it.
    """

    type_annotation_map: ClassVar[dict] = {
        datetime: DateTime(timezone=True),
        dict[str, Any]: JSON,
        str: String(255),
        int: Integer,
    }


class TimestampedBase(Base):
    """Abstract base carrying the record's domain timestamps.

    Values are supplied by the writer from the injected clock, not by the
    database server, so stored rows match the persisted payload exactly.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(nullable=False)
    updated_at: Mapped[datetime] = mapped_column(nullable=False)
