"""
Audit ledger: append-only history of installs and removals.

Every install or removal attempt, successful or not, appends one JSON
line to an NDJSON file. Entries are never modified or deleted.

Default location:
    root:   /var/lib/service-install/audit.ndjson
    others: ~/.local/state/service-install/audit.ndjson
Override with SVCI_AUDIT_FILE.
"""

from __future__ import annotations

import json
import logging
import os
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)

AUDIT_ENV_VAR = "SVCI_AUDIT_FILE"
SYSTEM_AUDIT_FILE = Path("/var/lib/service-install/audit.ndjson")
USER_AUDIT_FILE = Path(".local/state/service-install/audit.ndjson")   # relative to $HOME


def default_audit_path() -> Path:
    override = os.environ.get(AUDIT_ENV_VAR)
    if override:
        return Path(override)
    if os.geteuid() == 0:
        return SYSTEM_AUDIT_FILE
    return Path.home() / USER_AUDIT_FILE


class AuditEntry(BaseModel):
    """A single audit log entry."""

    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    plan_id: str = ""
    operation: str = ""            # install, remove, best_effort_remove

    # What was touched
    service: str = ""
    backend: str = ""
    target: str = ""

    # Results
    status: str = ""               # ok, partial, failed, rolled_back
    steps_total: int = 0
    steps_succeeded: int = 0
    steps_failed: int = 0
    duration_ms: int = 0

    errors: list[str] = Field(default_factory=list)
    context: dict[str, Any] = Field(default_factory=dict)


class AuditWriter:
    """Append-only audit ledger writer.

    Each call to write() appends a single JSON line to the ledger file.
    The file is created if it doesn't exist.
    """

    def __init__(self, path: Path | None = None):
        self._path = path or default_audit_path()

    @property
    def path(self) -> Path:
        return self._path

    def write(self, entry: AuditEntry) -> None:
        """Append an audit entry to the ledger.

        A ledger that cannot be written is logged, not raised: the
        install or removal it describes already happened.
        """
        data = entry.model_dump(mode="json")
        line = json.dumps(data, ensure_ascii=False) + "\n"

        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._path.open("a", encoding="utf-8") as f:
                f.write(line)
            logger.debug("Audit entry written: %s/%s", entry.operation, entry.plan_id)
        except OSError as e:
            logger.error("Failed to write audit entry: %s", e)

    def read_all(self) -> list[AuditEntry]:
        """Read all entries from the ledger, oldest first."""
        if not self._path.is_file():
            return []

        entries = []
        try:
            with self._path.open("r", encoding="utf-8") as f:
                for line_num, line in enumerate(f, start=1):
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        entries.append(AuditEntry.model_validate(json.loads(line)))
                    except (json.JSONDecodeError, ValidationError) as e:
                        logger.warning("Skipping corrupt audit entry at line %d: %s", line_num, e)
        except OSError as e:
            logger.error("Failed to read audit ledger: %s", e)

        return entries

    def read_recent(self, n: int = 20) -> list[AuditEntry]:
        """Read the most recent N entries."""
        return self.read_all()[-n:]
