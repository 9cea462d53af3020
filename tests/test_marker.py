"""
Tests for the registration marker line.
"""

from pathlib import Path

import pytest

from service_install.adapters.base import (
    MARKER_PREFIX,
    has_marker,
    marker_dirs,
    marker_line,
    marker_name,
    recorded_dirs,
)
from service_install.core.models.service import ServiceDescriptor

DIRS = [Path("/home/me/.local"), Path("/home/me/.local/bin")]


def test_plain_marker():
    line = marker_line("cli")
    assert line == f"{MARKER_PREFIX} name=cli"
    assert marker_name(line) == "cli"
    assert marker_dirs(line) == []


def test_marker_with_created_dirs():
    line = marker_line("cli", DIRS)
    assert line.endswith(" created=/home/me/.local:/home/me/.local/bin")
    assert marker_name(line) == "cli"
    assert marker_dirs(f"[Unit]\n{line}\nDescription=x\n") == DIRS


@pytest.mark.parametrize("line", ["# managed-by: someone-else name=cli", "ExecStart=/bin/cli", ""])
def test_not_a_marker(line):
    assert marker_name(line) is None


def test_has_marker_needs_exact_name():
    text = marker_line("cli-extra", DIRS) + "\n"
    assert has_marker(text, "cli-extra")
    assert not has_marker(text, "cli")


def test_recorded_dirs_from_any_artifact():
    descriptor = ServiceDescriptor(
        backend="mock",
        name="cli",
        exe_path="/home/me/.local/bin/cli",
        primary="cli.timer",
        artifacts={"cli.timer": "[Timer]\n", "cli.service": marker_line("cli", DIRS) + "\n"},
    )
    assert recorded_dirs(descriptor) == DIRS
    assert recorded_dirs(None) == []
