"""
Tests for persistence — atomic writes and the audit ledger.
"""

import json
import os
import stat
from pathlib import Path

from service_install.core.persistence.atomic import atomic_write_text
from service_install.core.persistence.audit import AuditEntry, AuditWriter, default_audit_path


class TestAtomicWrite:
    def test_creates_parents_and_sets_mode(self, tmp_path: Path):
        path = tmp_path / "deep" / "unit.service"
        atomic_write_text(path, "[Unit]\n", mode=0o600)
        assert path.read_text() == "[Unit]\n"
        assert stat.S_IMODE(os.stat(path).st_mode) == 0o600

    def test_replaces_without_leftovers(self, tmp_path: Path):
        path = tmp_path / "crontab"
        path.write_text("old\n")
        atomic_write_text(path, "new\n")
        assert path.read_text() == "new\n"
        assert [p.name for p in tmp_path.iterdir()] == ["crontab"]


class TestAuditWriter:
    def test_write_and_read(self, tmp_path: Path):
        writer = AuditWriter(tmp_path / "audit.ndjson")
        writer.write(AuditEntry(plan_id="plan-1", operation="install", service="cli", status="ok"))
        writer.write(AuditEntry(plan_id="plan-2", operation="remove", service="cli", status="ok"))

        entries = writer.read_all()
        assert [e.plan_id for e in entries] == ["plan-1", "plan-2"]

    def test_lines_are_json(self, tmp_path: Path):
        path = tmp_path / "audit.ndjson"
        AuditWriter(path).write(AuditEntry(plan_id="p", errors=["boom"]))
        data = json.loads(path.read_text().strip())
        assert data["errors"] == ["boom"]
        assert data["timestamp"]

    def test_read_recent(self, tmp_path: Path):
        writer = AuditWriter(tmp_path / "audit.ndjson")
        for i in range(5):
            writer.write(AuditEntry(plan_id=f"p{i}"))
        assert [e.plan_id for e in writer.read_recent(2)] == ["p3", "p4"]

    def test_corrupt_line_skipped(self, tmp_path: Path):
        path = tmp_path / "audit.ndjson"
        writer = AuditWriter(path)
        writer.write(AuditEntry(plan_id="good"))
        with path.open("a") as f:
            f.write("not json\n")
        assert [e.plan_id for e in writer.read_all()] == ["good"]

    def test_missing_ledger(self, tmp_path: Path):
        assert AuditWriter(tmp_path / "none.ndjson").read_all() == []

    def test_env_override(self, tmp_path: Path, monkeypatch):
        monkeypatch.setenv("SVCI_AUDIT_FILE", str(tmp_path / "x.ndjson"))
        assert default_audit_path() == tmp_path / "x.ndjson"
        assert AuditWriter().path == tmp_path / "x.ndjson"
