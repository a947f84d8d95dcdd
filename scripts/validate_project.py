#!/usr/bin/env python3
"""
Validate a stored grant project document.

Usage:
    python scripts/validate_project.py project.json
    python scripts/validate_project.py project.json --audit --json
    python scripts/validate_project.py project.json --export out.json

The script:
  1. Loads the active policy pack (or --policy)
  2. Upgrades the project JSON to the current schema version
  3. Runs full validation and prints a summary (or --json)
  4. Optionally runs the rule-based compliance audit and, with --export,
     writes the export artifact when the export gate is open

Exit status is 0 when the project is structurally ready (and, with
--export, the artifact was written), 1 otherwise, 2 on load errors.
"""

import argparse
import json
import sys
from datetime import date
from pathlib import Path

# Add project root to path
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from grant_config import get_active_policy, policy_warning
from grant_kernel.exceptions import GrantKernelError
from grant_kernel.logging_config import configure_logging
from grant_services import GrantOrchestrator, load_project


def _print_summary(result, decision=None) -> None:
    print(f"Status:   {result.status.value}")
    print(f"Phase:    {result.phase}")
    print(f"Policy:   {result.policy_version}")
    print("Modules:")
    for state in result.module_states:
        lock = " (locked)" if state.locked else ""
        print(
            f"  M{state.module_id} {state.name:<28} {state.status.value:<10} "
            f"{len(state.completed_fields)}/{len(state.required_fields)}{lock}"
        )
    if result.errors:
        print("Errors:")
        for issue in result.errors:
            print(f"  [{issue.severity.value.upper()}] {issue.code} {issue.field}: {issue.message}")
    if result.warnings:
        print("Warnings:")
        for issue in result.warnings:
            print(f"  {issue.code} {issue.field}: {issue.message}")
    print(f"AI refinement: {'allowed' if result.ai_gating.allowed else result.ai_gating.blocking_reason}")
    if decision is not None:
        print(
            f"Export:   {'allowed' if decision.allowed else 'blocked'} "
            f"(compliance={decision.compliance_score}, "
            f"alignment={decision.agency_alignment_score})"
        )
        if decision.reason:
            print(f"          {decision.reason}")


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Validate an NIH SBIR/STTR grant project document.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("project", type=Path, help="Path to the project JSON document")
    parser.add_argument(
        "--policy", type=Path, default=None,
        help="Policy YAML (defaults to the bundled NIH pack)",
    )
    parser.add_argument(
        "--audit", action="store_true",
        help="Run the compliance audit and report the export decision",
    )
    parser.add_argument(
        "--export", type=Path, default=None, metavar="OUT",
        help="Audit, then write the export artifact to OUT if allowed",
    )
    parser.add_argument("--json", action="store_true", help="Print machine-readable JSON")
    parser.add_argument("--log-level", default="WARNING", help="Structured log level (stderr)")
    args = parser.parse_args()

    configure_logging(level=args.log_level.upper(), stream=sys.stderr)

    try:
        policy = get_active_policy(args.policy)
        grants = GrantOrchestrator(policy)
        with open(args.project) as f:
            raw = json.load(f)
        project = load_project(raw, grants.clock.now())
    except (OSError, json.JSONDecodeError, GrantKernelError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 2

    warning = policy_warning(policy, date.today())
    if warning:
        print(f"WARNING: {warning}", file=sys.stderr)

    result = grants.run_full_validation(project)
    decision = None
    exported = False
    if args.audit or args.export:
        try:
            project = grants.run_compliance_audit(project).project
        except GrantKernelError as exc:
            print(f"Error: {exc}", file=sys.stderr)
            return 2
        decision = grants.can_export_project(project)
        if args.export:
            outcome = grants.run_export(project)
            if outcome.artifact is not None:
                args.export.write_text(outcome.artifact)
                exported = True

    if args.json:
        payload = {"validation": result.to_dict()}
        if decision is not None:
            payload["export"] = decision.to_dict()
        print(json.dumps(payload, indent=2, sort_keys=True))
    else:
        _print_summary(result, decision)
        if exported:
            print(f"Wrote {args.export}")

    ok = result.is_ready and (exported or not args.export)
    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(main())
