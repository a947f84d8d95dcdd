"""
grant_config -- single public entrypoint for compliance policy.

Responsibility:
    Provides the ONLY way to obtain policy at runtime through
    ``get_active_policy()``.  Services never read the YAML pack, environment
    variables or feature flags directly.

Architecture position:
    Configuration -- YAML-driven policy pack.  Sits above ``grant_kernel``
    and ``grant_engines`` and below ``grant_services``.  Neither the kernel
    nor the engines may import from ``grant_config``; bridges in this
    package translate the pack into engine inputs.

Invariants enforced:
    - Single entrypoint: all runtime policy flows through
      ``get_active_policy()``.
    - Deterministic identity: the same YAML always yields the same checksum.

Failure modes:
    - ``PolicyLoadError`` -- unreadable, malformed or incomplete pack.

Audit relevance:
    Every successful ``get_active_policy()`` call emits a
    ``GRANT_POLICY_TRACE`` log entry with the policy id, version, checksum
    and institute count.  ``policy_warning()`` flags packs older than their
    declared expiry so stale caps are never applied silently.
"""

from __future__ import annotations

from datetime import date
from pathlib import Path

from grant_config.loader import DEFAULT_POLICY_PATH, load_policy
from grant_config.schema import GrantPolicy
from grant_kernel.logging_config import get_logger

_logger = get_logger("config")


def get_active_policy(path: Path | None = None) -> GrantPolicy:
    """The ONLY public policy entrypoint.

    Non-goals:
        - This function does NOT cache; callers hold the returned policy
          for the duration of a request or CLI run.

    Args:
        path: Override path to a policy YAML file.  Defaults to the
            bundled ``policies/nih_sbir.yaml``.

    Raises:
        PolicyLoadError: if the pack cannot be read or parsed.
    """
    policy = load_policy(path)
    _logger.info(
        "GRANT_POLICY_TRACE",
        extra={
            "trace_type": "GRANT_POLICY_TRACE",
            "policy_id": policy.metadata.policy_id,
            "policy_version": policy.version,
            "checksum": policy.checksum,
            "last_updated": policy.metadata.last_updated.isoformat(),
            "institute_count": len(policy.institutes),
            "source": str(path or DEFAULT_POLICY_PATH),
        },
    )
    return policy


def _add_months(start: date, months: int) -> date:
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    # Clamp to the last day of the target month.
    for day in (start.day, 30, 29, 28):
        try:
            return date(year, month, day)
        except ValueError:
            continue
    raise ValueError(f"Cannot add {months} months to {start}")


def policy_expiry_date(policy: GrantPolicy) -> date:
    meta = policy.metadata
    return _add_months(meta.last_updated, meta.expiry_months)


def policy_warning(policy: GrantPolicy, as_of: date) -> str | None:
    """Staleness warning when ``as_of`` is past the policy's expiry, else None."""
    if as_of <= policy_expiry_date(policy):
        return None
    return (
        f"Policy tables last updated {policy.metadata.last_updated.isoformat()}. "
        "Budget caps and allocation requirements may have changed. "
        "Please verify current NIH guidelines."
    )


__all__ = [
    "GrantPolicy",
    "get_active_policy",
    "policy_expiry_date",
    "policy_warning",
]
