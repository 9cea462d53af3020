"""
Tests for the cron backend — marked entries in a crontab.
"""

import textwrap
from pathlib import Path

import pytest

from service_install.adapters.cron import (
    DISABLED_PREFIX,
    CommandCrontab,
    CronBackend,
    FileCrontab,
    parse_rule_exe,
    render_command,
)
from service_install.core.errors import BackendError
from service_install.core.models.spec import InstallMode, InstallSpec
from service_install.core.schedule import parse_schedule

TARGET = "/home/me/.local/bin/cli"

EXISTING = textwrap.dedent("""\
    MAILTO=me@example.com
    # nightly backup
    0 2 * * * /usr/local/bin/backup --all
""")


def _spec(schedule: str = "daily 10:42", **kwargs) -> InstallSpec:
    return InstallSpec(
        name="cli",
        source=Path("/tmp/dist/cli"),
        target=Path(TARGET),
        mode=InstallMode.USER,
        backend="cron",
        schedule=parse_schedule(schedule),
        **kwargs,
    )


@pytest.fixture
def crontab(tmp_path: Path) -> FileCrontab:
    store = FileCrontab(tmp_path / "crontab")
    store.write(EXISTING)
    return store


@pytest.fixture
def cron(crontab: FileCrontab) -> CronBackend:
    return CronBackend(crontab)


class TestRules:
    def test_render_command(self):
        command = render_command(
            _spec(args=["--sync", "two words"], environment={"MODE": "fast"})
        )
        assert command == f"MODE=fast {TARGET} --sync 'two words'"

    def test_render_with_workdir(self):
        command = render_command(_spec(working_dir=Path("/srv/app")))
        assert command == f"cd /srv/app && {TARGET}"

    @pytest.mark.parametrize(
        "rule,exe",
        [
            ("0 2 * * * /usr/local/bin/backup --all", "/usr/local/bin/backup"),
            ("@reboot /opt/agent", "/opt/agent"),
            ("*/5 * * * * FOO=1 /opt/poll", "/opt/poll"),
            ("0 0 * * * cd /srv && /srv/run.sh", "/srv/run.sh"),
            ("MAILTO=me@example.com", None),
            ("# comment", None),
            ("", None),
        ],
    )
    def test_parse_rule_exe(self, rule, exe):
        assert parse_rule_exe(rule) == exe

    def test_describe(self, cron):
        descriptor = cron.describe(_spec())
        assert descriptor.primary == f"42 10 * * * {TARGET}"
        assert descriptor.artifacts["crontab"] == (
            f"# managed-by: service-install name=cli\n42 10 * * * {TARGET}\n"
        )


class TestBackend:
    def test_register_keeps_unrelated_lines(self, cron, crontab):
        cron.register(cron.describe(_spec()))
        text = crontab.read()
        assert text.startswith(EXISTING)
        assert text.endswith(f"# managed-by: service-install name=cli\n42 10 * * * {TARGET}\n")

    def test_register_replaces_own_entry(self, cron, crontab):
        cron.register(cron.describe(_spec()))
        cron.register(cron.describe(_spec("weekly mon 08:00")))
        text = crontab.read()
        assert text.count("managed-by") == 1
        assert f"0 8 * * 1 {TARGET}" in text
        assert "42 10" not in text

    def test_find_existing(self, cron):
        descriptor = cron.describe(_spec())
        cron.register(descriptor)
        handle = cron.find_existing("cli")
        assert handle is not None
        assert handle.created_by_us and handle.enabled
        assert handle.matches(descriptor)
        assert handle.exe_path == TARGET

    def test_find_by_exe_marks_our_rules(self, cron):
        cron.register(cron.describe(_spec()))

        handles = cron.find_by_exe(Path("/usr/local/bin/backup"))
        assert [h.unit for h in handles] == ["0 2 * * * /usr/local/bin/backup --all"]
        assert not handles[0].created_by_us

        (ours,) = cron.find_by_exe(Path(TARGET))
        assert ours.created_by_us and ours.name == "cli"

    def test_find_by_exe_sees_other_managed_names(self, cron):
        cron.register(cron.describe(_spec()))
        cron.register(cron.describe(_spec("daily 08:00").model_copy(update={"name": "other"})))

        handles = cron.find_by_exe(Path(TARGET))
        assert sorted(h.name for h in handles) == ["cli", "other"]
        assert all(h.created_by_us for h in handles)

    def test_marker_records_created_dirs(self, cron, crontab):
        dirs = [Path("/home/me/.local"), Path("/home/me/.local/bin")]
        descriptor = cron.describe(_spec(created_dirs=dirs))
        cron.register(descriptor)

        assert "created=/home/me/.local:/home/me/.local/bin" in crontab.read()
        handle = cron.find_existing("cli")
        assert handle is not None and handle.matches(descriptor)
        cron.unregister(descriptor)
        assert crontab.read() == EXISTING

    def test_disable_and_enable_foreign_rule(self, cron, crontab):
        (handle,) = cron.find_by_exe(Path("/usr/local/bin/backup"))
        cron.disable(handle)
        assert f"{DISABLED_PREFIX}0 2 * * * /usr/local/bin/backup --all\n" in crontab.read()

        (disabled,) = cron.find_by_exe(Path("/usr/local/bin/backup"))
        assert not disabled.enabled

        cron.enable(handle)
        assert crontab.read() == EXISTING

    def test_disable_twice_is_harmless(self, cron, crontab):
        (handle,) = cron.find_by_exe(Path("/usr/local/bin/backup"))
        cron.disable(handle)
        cron.disable(handle)
        assert crontab.read().count(DISABLED_PREFIX) == 1

    def test_enable_unknown_rule(self, cron):
        handle = cron.handle_for(cron.describe(_spec()))
        with pytest.raises(BackendError):
            cron.enable(handle)

    def test_unregister_restores_table(self, cron, crontab):
        descriptor = cron.describe(_spec())
        cron.register(descriptor)
        cron.unregister(descriptor)
        assert crontab.read() == EXISTING
        assert cron.find_existing("cli") is None

    def test_lifecycle_calls_are_noops(self, cron, crontab):
        handle = cron.register(cron.describe(_spec()))
        before = crontab.read()
        cron.start(handle)
        cron.stop(handle)
        cron.restart(handle)
        assert crontab.read() == before


class TestCommandCrontab:
    def test_empty_crontab(self):
        runner = lambda cmd: {"ok": False, "stdout": "", "stderr": "no crontab for me\n"}
        assert CommandCrontab(runner=runner).read() == ""

    def test_header_stripped(self):
        output = (
            "# DO NOT EDIT THIS FILE - edit the master and reinstall.\n"
            "# (/tmp/crontab.x installed on Mon)\n"
            "# (Cron version -- $Id$)\n"
            "0 1 * * * /bin/true\n"
        )
        runner = lambda cmd: {"ok": True, "stdout": output, "stderr": ""}
        assert CommandCrontab(runner=runner).read() == "0 1 * * * /bin/true\n"

    def test_write_installs_file(self):
        seen: dict = {}

        def runner(cmd):
            seen["cmd"] = cmd
            seen["content"] = Path(cmd[-1]).read_text()
            return {"ok": True, "stdout": "", "stderr": ""}

        CommandCrontab(user="svc", runner=runner).write("0 1 * * * /bin/true\n")
        assert seen["cmd"][:3] == ["crontab", "-u", "svc"]
        assert seen["content"] == "0 1 * * * /bin/true\n"
        assert not Path(seen["cmd"][-1]).exists()

    def test_read_failure(self):
        runner = lambda cmd: {"ok": False, "stdout": "", "stderr": "permission denied"}
        with pytest.raises(BackendError):
            CommandCrontab(runner=runner).read()
