"""
Step outcomes: what happened when a step ran.

The executor turns every step attempt into a ``StepOutcome``, whether
it ran forward, as part of a rollback, or in a best-effort pass.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class StepOutcome(BaseModel):
    """Result of one step attempt."""

    step_id: str
    kind: str
    description: str = ""
    status: Literal["ok", "skipped", "failed"] = "ok"

    started_at: str = Field(default_factory=_now_iso)
    duration_ms: int = 0

    error: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    @property
    def failed(self) -> bool:
        return self.status == "failed"

    @classmethod
    def success(cls, step_id: str, kind: str, description: str = "", **kwargs: Any) -> StepOutcome:
        return cls(step_id=step_id, kind=kind, description=description, status="ok", **kwargs)

    @classmethod
    def failure(
        cls,
        step_id: str,
        kind: str,
        error: str,
        description: str = "",
        **kwargs: Any,
    ) -> StepOutcome:
        return cls(
            step_id=step_id,
            kind=kind,
            description=description,
            status="failed",
            error=error,
            **kwargs,
        )

    @classmethod
    def skip(cls, step_id: str, kind: str, reason: str = "", **kwargs: Any) -> StepOutcome:
        return cls(step_id=step_id, kind=kind, description=reason, status="skipped", **kwargs)
