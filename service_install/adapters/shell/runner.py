"""
Subprocess runner for backend tools (systemctl, crontab).

The single place where ``subprocess.run`` is called. Results come back
as plain dicts; callers decide whether a non-zero exit is an error
(``systemctl is-active`` exits 3 for a stopped unit, for instance).
"""

from __future__ import annotations

import logging
import os
import subprocess
import time
from typing import Any

logger = logging.getLogger(__name__)

# Keep the tail of long outputs only
_MAX_OUTPUT = 4000


def run_command(
    cmd: list[str],
    *,
    timeout: float | None = None,
    input_text: str | None = None,
    env_overrides: dict[str, str] | None = None,
    cwd: str | None = None,
) -> dict[str, Any]:
    """Run a command and capture its output.

    No timeout is applied unless the caller passes one: manager calls
    block until the manager answers.

    Args:
        cmd: Command list for ``subprocess.run()``.
        timeout: Seconds before ``TimeoutExpired``. ``None`` waits forever.
        input_text: Text piped to stdin.
        env_overrides: Extra environment variables.
        cwd: Working directory for the command.

    Returns:
        ``{"ok": True, "returncode": 0, "stdout": "...", "stderr": "...",
        "elapsed_ms": N}`` on success, ``{"ok": False, "error": "...", ...}``
        on failure.
    """
    env = None
    if env_overrides:
        env = os.environ.copy()
        env.update(env_overrides)

    logger.debug("Running: %s", " ".join(cmd))
    start = time.monotonic()
    try:
        result = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            timeout=timeout,
            input=input_text,
            env=env,
            cwd=cwd,
        )
    except FileNotFoundError:
        return {
            "ok": False,
            "returncode": 127,
            "error": f"Command not found: {cmd[0]}",
            "stdout": "",
            "stderr": "",
            "elapsed_ms": int((time.monotonic() - start) * 1000),
        }
    except subprocess.TimeoutExpired:
        return {
            "ok": False,
            "returncode": None,
            "error": f"Command timed out after {timeout}s: {' '.join(cmd)}",
            "stdout": "",
            "stderr": "",
            "elapsed_ms": int((time.monotonic() - start) * 1000),
        }

    elapsed_ms = int((time.monotonic() - start) * 1000)
    stdout = result.stdout[-_MAX_OUTPUT:] if result.stdout else ""
    stderr = result.stderr[-_MAX_OUTPUT:] if result.stderr else ""

    if result.returncode == 0:
        return {
            "ok": True,
            "returncode": 0,
            "stdout": stdout,
            "stderr": stderr,
            "elapsed_ms": elapsed_ms,
        }

    logger.debug("Command exited %d: %s", result.returncode, stderr.strip())
    return {
        "ok": False,
        "returncode": result.returncode,
        "error": f"Command failed (exit {result.returncode})",
        "stdout": stdout,
        "stderr": stderr,
        "elapsed_ms": elapsed_ms,
    }
