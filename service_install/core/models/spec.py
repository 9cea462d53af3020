"""
Install specification models.

``RawInstallSpec`` is whatever the caller handed us (CLI flags, a
service.yml file). ``InstallSpec`` is the validated, resolved and frozen
form the rest of the engine works with.
"""

from __future__ import annotations

import datetime as dt
from enum import StrEnum
from pathlib import Path
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class InstallMode(StrEnum):
    USER = "user"
    SYSTEM = "system"


class Weekday(StrEnum):
    MON = "mon"
    TUE = "tue"
    WED = "wed"
    THU = "thu"
    FRI = "fri"
    SAT = "sat"
    SUN = "sun"

    @property
    def cron_number(self) -> int:
        """Day-of-week field value (0 = Sunday)."""
        return (list(Weekday).index(self) + 1) % 7

    @property
    def systemd_name(self) -> str:
        return self.value.capitalize()


# ── Schedules ───────────────────────────────────────────────────


class OnBoot(BaseModel):
    """Start once every time the machine (or user session) boots."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["on_boot"] = "on_boot"

    def __str__(self) -> str:
        return "on boot"


class Daily(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["daily"] = "daily"
    time: dt.time

    def __str__(self) -> str:
        return f"daily at {self.time.isoformat()}"


class Weekly(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["weekly"] = "weekly"
    weekday: Weekday
    time: dt.time

    def __str__(self) -> str:
        return f"every {self.weekday.systemd_name} at {self.time.isoformat()}"


class Every(BaseModel):
    """Run repeatedly, ``interval`` after boot and after each activation."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["every"] = "every"
    interval: dt.timedelta

    @field_validator("interval")
    @classmethod
    def _positive(cls, v: dt.timedelta) -> dt.timedelta:
        if v.total_seconds() < 1 or v.microseconds:
            raise ValueError("interval must be a positive whole number of seconds")
        return v

    def __str__(self) -> str:
        return f"every {int(self.interval.total_seconds())}s"


Schedule = Annotated[OnBoot | Daily | Weekly | Every, Field(discriminator="kind")]


# ── Specs ───────────────────────────────────────────────────────


class RawInstallSpec(BaseModel):
    """Unvalidated install request.

    Every field is optional here; ``validate_spec`` decides what is
    missing. ``source`` of ``None`` or ``"@self"`` means the currently
    running executable. ``target`` is a directory.
    """

    model_config = ConfigDict(extra="forbid")

    name: str | None = None
    source: str | None = None
    exe_name: str | None = None
    target: str | None = None
    mode: InstallMode | None = None
    run_as: str | None = None
    schedule: str | None = None      # "on-boot", "daily 10:42", "weekly mon 10:42", "every 15m"
    backend: Literal["systemd", "cron"] | None = None

    overwrite: bool = False
    read_only: bool = False
    stop_running: bool = False       # confirm stopping a process that runs the target
    elevate: bool = False            # caller intends a privileged install

    args: list[str] = Field(default_factory=list)
    environment: dict[str, str] = Field(default_factory=dict)
    working_dir: str | None = None
    description: str | None = None


class InstallSpec(BaseModel):
    """A validated install specification. Immutable."""

    model_config = ConfigDict(frozen=True)

    name: str
    source: Path
    target: Path                     # full path of the installed executable
    mode: InstallMode
    backend: str                     # chosen once, fixed for the plan's lifetime
    schedule: Schedule | None = None
    run_as: str | None = None

    overwrite: bool = False
    read_only: bool = False
    stop_running: bool = False
    elevate: bool = False

    args: list[str] = Field(default_factory=list)
    environment: dict[str, str] = Field(default_factory=dict)
    working_dir: Path | None = None
    description: str = ""

    # directories this install owns, outermost first; removal deletes them if empty
    created_dirs: list[Path] = Field(default_factory=list)

    @property
    def target_dir(self) -> Path:
        return self.target.parent

    @property
    def is_system(self) -> bool:
        return self.mode == InstallMode.SYSTEM
