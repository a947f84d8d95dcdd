"""ORM models for the grant kernel."""

from grant_kernel.models.project_record import ProjectRecord

__all__ = ["ProjectRecord"]
