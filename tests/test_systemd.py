"""
Tests for the systemd backend — unit rendering, lookups and manager calls.

The manager is driven through a fake ``systemctl`` runner; unit files
go to a temporary unit directory.
"""

from pathlib import Path

import pytest

from service_install.adapters.systemd import (
    SystemdBackend,
    SystemdManager,
    parse_exec_start,
    quote_word,
    render_service,
    split_command,
)
from service_install.core.errors import BackendError
from service_install.core.models.spec import InstallMode, InstallSpec
from service_install.core.schedule import parse_schedule


def _spec(schedule: str | None = None, **kwargs) -> InstallSpec:
    return InstallSpec(
        name="cli",
        source=Path("/tmp/dist/cli"),
        target=Path("/home/me/.local/bin/cli"),
        mode=kwargs.pop("mode", InstallMode.USER),
        backend="systemd",
        schedule=parse_schedule(schedule) if schedule else None,
        **kwargs,
    )


@pytest.fixture
def unit_dir(tmp_path: Path) -> Path:
    return tmp_path / "units"


@pytest.fixture
def systemd(unit_dir: Path, systemctl) -> SystemdBackend:
    manager = SystemdManager(user=True, runner=systemctl)
    return SystemdBackend(mode=InstallMode.USER, unit_dir=unit_dir, manager=manager)


class TestQuoting:
    def test_plain_word(self):
        assert quote_word("/usr/bin/cli") == "/usr/bin/cli"

    def test_specifiers_escaped(self):
        assert quote_word("100%") == "100%%"
        assert quote_word("$HOME") == "$$HOME"

    def test_spaces_quoted(self):
        assert quote_word("a b") == '"a b"'

    def test_split_reverses_quote(self):
        words = ["/opt/my tool/cli", "--rate=50%", "$x"]
        assert split_command(" ".join(quote_word(w) for w in words)) == words


class TestRender:
    def test_service_has_marker_and_exec(self):
        text = render_service(_spec(args=["--serve"]))
        assert text.startswith("# managed-by: service-install name=cli\n")
        assert "ExecStart=/home/me/.local/bin/cli --serve" in text
        assert "Type=simple" in text
        assert "[Install]" not in text

    def test_on_boot_installs_into_target(self):
        assert "WantedBy=default.target" in render_service(_spec("on-boot"))
        system = render_service(_spec("on-boot", mode=InstallMode.SYSTEM, run_as="daemon"))
        assert "WantedBy=multi-user.target" in system
        assert "User=daemon" in system

    def test_environment_and_workdir(self):
        text = render_service(
            _spec(environment={"B": "two words", "A": "1"}, working_dir=Path("/srv/app"))
        )
        assert text.index("Environment=A=1") < text.index('Environment="B=two words"')
        assert "WorkingDirectory=/srv/app" in text

    def test_timer_descriptor(self, systemd):
        descriptor = systemd.describe(_spec("daily 10:42"))
        assert descriptor.primary == "cli.timer"
        assert set(descriptor.artifacts) == {"cli.service", "cli.timer"}
        assert "Type=oneshot" in descriptor.artifacts["cli.service"]
        assert "OnCalendar=*-*-* 10:42:00" in descriptor.artifacts["cli.timer"]
        assert descriptor.enableable

    def test_unscheduled_descriptor(self, systemd):
        descriptor = systemd.describe(_spec())
        assert descriptor.primary == "cli.service"
        assert not descriptor.enableable

    def test_parse_exec_start(self):
        assert parse_exec_start("[Service]\nExecStart=-/usr/bin/foo --x\n") == "/usr/bin/foo"
        assert parse_exec_start("[Service]\nType=simple\n") is None


class TestBackend:
    def test_register_writes_then_reloads(self, systemd, unit_dir, systemctl):
        descriptor = systemd.describe(_spec("daily 10:42"))
        handle = systemd.register(descriptor)

        assert (unit_dir / "cli.service").is_file()
        assert (unit_dir / "cli.timer").is_file()
        assert systemctl.verbs == ["daemon-reload"]
        assert systemctl.calls[0][:2] == ["systemctl", "--user"]
        assert handle.created_by_us and handle.unit == "cli.timer"

    def test_daemon_reload_precedes_enable(self, systemd, systemctl):
        handle = systemd.register(systemd.describe(_spec("daily 10:42")))
        systemd.enable(handle)
        systemd.start(handle)
        assert systemctl.verbs == ["daemon-reload", "enable", "start"]

    def test_reregister_drops_stale_timer(self, systemd, unit_dir):
        systemd.register(systemd.describe(_spec("daily 10:42")))
        systemd.register(systemd.describe(_spec()))
        assert not (unit_dir / "cli.timer").exists()

    def test_find_existing_round_trip(self, systemd, systemctl):
        descriptor = systemd.describe(_spec("daily 10:42"))
        handle = systemd.register(descriptor)
        systemd.enable(handle)

        found = systemd.find_existing("cli")
        assert found is not None
        assert found.created_by_us
        assert found.enabled and not found.running
        assert found.matches(descriptor)
        assert found.exe_path == "/home/me/.local/bin/cli"

    def test_foreign_unit(self, systemd, unit_dir):
        unit_dir.mkdir()
        (unit_dir / "legacy.service").write_text(
            "[Service]\nExecStart=/home/me/.local/bin/cli\n\n[Install]\nWantedBy=default.target\n"
        )
        found = systemd.find_existing("legacy")
        assert found is not None and not found.created_by_us

        by_exe = systemd.find_by_exe(Path("/home/me/.local/bin/cli"))
        assert [h.unit for h in by_exe] == ["legacy.service"]

    def test_find_by_exe_marks_our_units(self, systemd):
        systemd.register(systemd.describe(_spec()))
        systemd.register(systemd.describe(_spec().model_copy(update={"name": "other"})))

        handles = systemd.find_by_exe(Path("/home/me/.local/bin/cli"))
        assert [h.name for h in handles] == ["cli", "other"]
        assert all(h.created_by_us for h in handles)

    def test_marker_records_created_dirs(self, systemd, unit_dir):
        dirs = [Path("/home/me/.local"), Path("/home/me/.local/bin")]
        descriptor = systemd.describe(_spec("daily 10:42", created_dirs=dirs))
        systemd.register(descriptor)

        for name in ("cli.service", "cli.timer"):
            assert "created=/home/me/.local:/home/me/.local/bin" in (unit_dir / name).read_text()
        found = systemd.find_existing("cli")
        assert found is not None and found.matches(descriptor)

    def test_unregister(self, systemd, unit_dir, systemctl):
        descriptor = systemd.describe(_spec("daily 10:42"))
        systemd.register(descriptor)
        systemd.unregister(descriptor)
        assert list(unit_dir.iterdir()) == []
        assert systemctl.verbs[-1] == "daemon-reload"
        assert systemd.find_existing("cli") is None

    def test_manager_failure_raises(self, systemd, systemctl):
        systemctl.fail["start"] = "Unit cli.service not found."
        handle = systemd.register(systemd.describe(_spec()))
        with pytest.raises(BackendError, match="not found"):
            systemd.start(handle)


class TestManager:
    def test_reachable(self, systemctl):
        assert SystemdManager(user=True, runner=systemctl).is_reachable()

    def test_offline(self, systemctl):
        systemctl.system_state = "offline"
        assert not SystemdManager(user=True, runner=systemctl).is_reachable()

    def test_system_scope_has_no_user_flag(self, systemctl):
        SystemdManager(user=False, runner=systemctl).daemon_reload()
        assert systemctl.calls == [["systemctl", "daemon-reload"]]
