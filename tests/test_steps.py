"""
Tests for plan steps — inverses, descriptions and their side effects.
"""

import os
import stat
from pathlib import Path

import pytest

from service_install.adapters.mock import MockBackend
from service_install.core.engine.steps import apply_step
from service_install.core.models.service import ServiceDescriptor, ServiceHandle
from service_install.core.models.step import (
    BackupFile,
    CreateDirectory,
    DeleteFile,
    DisableService,
    DiscardBackup,
    EnableService,
    Noop,
    RegisterService,
    RemoveDirectory,
    RemoveFile,
    RestoreBackup,
    RestoreFile,
    SetMode,
    StartService,
    StopService,
    Tense,
    UnregisterService,
    WriteExecutable,
)


def _descriptor(name: str = "svc", body: str = "x") -> ServiceDescriptor:
    return ServiceDescriptor(
        backend="mock",
        name=name,
        exe_path="/opt/bin/svc",
        primary=f"{name}.mock",
        artifacts={f"{name}.mock": body},
    )


def _handle(name: str = "svc") -> ServiceHandle:
    return ServiceHandle(backend="mock", name=name, unit=f"{name}.mock")


class TestInverses:
    def test_write_with_backup_restores(self, tmp_path: Path):
        step = WriteExecutable(
            id="3:write_executable",
            source=tmp_path / "a",
            target=tmp_path / "b",
            backup_path=tmp_path / "b.bak",
        )
        inv = step.inverse()
        assert isinstance(inv, RestoreBackup)
        assert inv.backup_path == tmp_path / "b.bak"
        assert inv.id == "3:write_executable~undo"

    def test_write_without_backup_deletes(self, tmp_path: Path):
        step = WriteExecutable(source=tmp_path / "a", target=tmp_path / "b")
        assert isinstance(step.inverse(), DeleteFile)

    def test_set_mode_swaps(self, tmp_path: Path):
        inv = SetMode(path=tmp_path, mode=0o755, prior_mode=0o700).inverse()
        assert (inv.mode, inv.prior_mode) == (0o700, 0o755)

    def test_register_fresh_unregisters(self):
        inv = RegisterService(descriptor=_descriptor()).inverse()
        assert isinstance(inv, UnregisterService)

    def test_register_over_previous_restores_previous(self):
        previous = _descriptor(body="theirs")
        inv = RegisterService(descriptor=_descriptor(), previous=previous).inverse()
        assert isinstance(inv, RegisterService)
        assert inv.descriptor == previous

    def test_service_state_inverses(self):
        assert isinstance(EnableService(handle=_handle()).inverse(), DisableService)
        assert isinstance(EnableService(handle=_handle(), was_enabled=True).inverse(), Noop)
        assert isinstance(DisableService(handle=_handle()).inverse(), EnableService)
        assert isinstance(StartService(handle=_handle()).inverse(), StopService)
        assert isinstance(StopService(handle=_handle()).inverse(), StartService)
        assert isinstance(StopService(handle=_handle(), was_running=False).inverse(), Noop)

    def test_directory_inverses(self, tmp_path: Path):
        assert isinstance(CreateDirectory(path=tmp_path).inverse(), RemoveDirectory)
        assert isinstance(RemoveDirectory(path=tmp_path).inverse(), CreateDirectory)

    def test_remove_file_inverse_puts_back(self, tmp_path: Path):
        inv = RemoveFile(path=tmp_path / "x", backup_path=tmp_path / "x.bak").inverse()
        assert isinstance(inv, RestoreFile)

    def test_backup_inverse_discards(self, tmp_path: Path):
        inv = BackupFile(path=tmp_path / "x", backup_path=tmp_path / "x.bak").inverse()
        assert isinstance(inv, DiscardBackup)


class TestDescribe:
    def test_tenses(self):
        step = EnableService(handle=_handle("cli"))
        assert step.describe(Tense.FUTURE) == "will enable cli.mock"
        assert step.describe(Tense.ACTIVE) == "enabling cli.mock"
        assert step.describe(Tense.PAST) == "enabled cli.mock"

    def test_restart_reads_as_restart(self):
        step = StartService(handle=_handle("cli"), restart=True)
        assert step.describe(Tense.PAST) == "restarted cli.mock"

    def test_mode_is_octal(self, tmp_path: Path):
        step = SetMode(path=tmp_path / "x", mode=0o755, prior_mode=0o644)
        assert "0755" in step.describe()


class TestApplyStep:
    def test_write_replaces_inode(self, tmp_path: Path):
        source = tmp_path / "new"
        source.write_text("new")
        target = tmp_path / "old"
        target.write_text("old")
        before = os.stat(target).st_ino

        apply_step(WriteExecutable(source=source, target=target), MockBackend())

        assert target.read_text() == "new"
        assert os.stat(target).st_ino != before
        assert [p.name for p in tmp_path.iterdir() if p.name.endswith(".tmp")] == []

    def test_backup_then_restore(self, tmp_path: Path):
        target = tmp_path / "tool"
        target.write_text("original")
        backup = tmp_path / "tool.bak.p1"
        backend = MockBackend()

        apply_step(BackupFile(path=target, backup_path=backup), backend)
        target.unlink()
        target.write_text("replacement")
        apply_step(RestoreBackup(target=target, backup_path=backup), backend)

        assert target.read_text() == "original"
        assert not backup.exists()

    def test_remove_and_restore_file(self, tmp_path: Path):
        target = tmp_path / "tool"
        target.write_text("x")
        backup = tmp_path / "tool.bak.p1"
        backend = MockBackend()

        apply_step(RemoveFile(path=target, backup_path=backup), backend)
        assert not target.exists()
        apply_step(RestoreFile(path=target, backup_path=backup), backend)
        assert target.read_text() == "x"

    def test_set_mode(self, tmp_path: Path):
        target = tmp_path / "tool"
        target.write_text("x")
        apply_step(SetMode(path=target, mode=0o750, prior_mode=0o644), MockBackend())
        assert stat.S_IMODE(os.stat(target).st_mode) == 0o750

    def test_remove_directory_keeps_non_empty(self, tmp_path: Path):
        directory = tmp_path / "bin"
        directory.mkdir()
        (directory / "other").write_text("x")
        apply_step(RemoveDirectory(path=directory), MockBackend())
        assert directory.is_dir()

    def test_service_steps_reach_backend(self):
        backend = MockBackend()
        descriptor = _descriptor()
        apply_step(RegisterService(descriptor=descriptor), backend)
        apply_step(StartService(handle=backend.handle_for(descriptor)), backend)
        assert backend.is_running("svc.mock")
        assert backend.call_log == [("register", "svc.mock"), ("start", "svc.mock")]

    def test_unknown_kind(self):
        class Bogus(Noop):
            kind: str = "bogus"

        with pytest.raises(ValueError, match="bogus"):
            apply_step(Bogus(), MockBackend())
