"""
Tests for scripts/validate_project.py.

Covers:
- Exit status for ready, not-ready and unreadable documents
- JSON output including the export decision
"""

import json
import sys

from grant_kernel.domain.serialization import project_to_dict
from grant_kernel.domain.types import GrantType
from scripts.validate_project import main
from tests.builders import fill_modules


def _run(monkeypatch, *argv):
    monkeypatch.setattr(sys, "argv", ["validate_project.py", *argv])
    return main()


def _write(tmp_path, project):
    path = tmp_path / "project.json"
    path.write_text(json.dumps(project_to_dict(project)))
    return path


class TestValidateProjectCli:

    def test_ready_project(self, monkeypatch, capsys, tmp_path, make_project):
        path = _write(tmp_path, fill_modules(make_project(GrantType.PHASE_I)))

        assert _run(monkeypatch, str(path)) == 0
        assert "Status:   structurally_ready" in capsys.readouterr().out

    def test_incomplete_project(self, monkeypatch, capsys, tmp_path, make_project):
        path = _write(tmp_path, make_project())

        assert _run(monkeypatch, str(path)) == 1
        assert "MODULE_1_MISSING" in capsys.readouterr().out

    def test_json_with_audit(self, monkeypatch, capsys, tmp_path, make_project):
        path = _write(tmp_path, make_project())

        _run(monkeypatch, str(path), "--audit", "--json")
        payload = json.loads(capsys.readouterr().out)

        assert payload["validation"]["status"] == "not_ready"
        assert set(payload["export"]) == {
            "allowed",
            "reason",
            "compliance_score",
            "agency_alignment_score",
        }

    def test_unsupported_schema(self, monkeypatch, capsys, tmp_path):
        path = tmp_path / "project.json"
        path.write_text(json.dumps({"schema_version": 9}))

        assert _run(monkeypatch, str(path)) == 2
        assert "Unsupported project schema version" in capsys.readouterr().err

    def test_missing_file(self, monkeypatch, tmp_path):
        assert _run(monkeypatch, str(tmp_path / "absent.json")) == 2
