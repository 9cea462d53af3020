"""
Process table queries and process termination (psutil).
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

import psutil

logger = logging.getLogger(__name__)

# Seconds to wait after SIGTERM before SIGKILL
TERMINATE_GRACE = 5.0


def processes_executing(path: Path) -> list[int]:
    """PIDs of live processes whose executable is ``path``.

    Processes we may not inspect are skipped silently.
    """
    wanted = os.path.realpath(path)
    pids: list[int] = []
    for proc in psutil.process_iter(["pid", "exe"]):
        exe = proc.info.get("exe")
        if not exe:
            continue
        # A replaced binary shows up as "/path (deleted)"
        if exe.endswith(" (deleted)"):
            exe = exe[: -len(" (deleted)")]
        if os.path.realpath(exe) == wanted:
            pids.append(proc.info["pid"])
    return sorted(pids)


def stop_process(pid: int, grace: float = TERMINATE_GRACE) -> None:
    """Terminate ``pid``, escalating to SIGKILL after ``grace`` seconds.

    A process that is already gone counts as stopped.
    """
    try:
        proc = psutil.Process(pid)
        proc.terminate()
        try:
            proc.wait(timeout=grace)
        except psutil.TimeoutExpired:
            logger.warning("Process %d ignored SIGTERM, killing it", pid)
            proc.kill()
            proc.wait(timeout=grace)
    except psutil.NoSuchProcess:
        logger.debug("Process %d already exited", pid)
