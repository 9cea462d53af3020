"""
Schedule parsing and translation into backend grammars.

Text forms accepted by ``parse_schedule`` (CLI flags, service.yml):

    on-boot
    daily 10:42          (or daily@10:42)
    weekly mon 10:42     (or weekly@mon@10:42)
    every 15m            (units: s, m, h, d; combinable: 1h30m)

Translation is exact or it fails. Cron has minute resolution and
clock-aligned steps, so anything it cannot say raises ``ScheduleError``
instead of being rounded.
"""

from __future__ import annotations

import datetime as dt
import re

from pydantic import ValidationError

from service_install.core.errors import ScheduleError
from service_install.core.models.spec import (
    Daily,
    Every,
    OnBoot,
    Schedule,
    Weekday,
    Weekly,
)

_INTERVAL_RE = re.compile(r"(\d+)\s*([smhd])")
_UNIT_SECONDS = {"s": 1, "m": 60, "h": 3600, "d": 86400}
_BOOT_WORDS = {"on-boot", "on_boot", "boot", "@reboot", "reboot"}


def parse_interval(text: str) -> dt.timedelta:
    """Parse ``15m``, ``1h30m``, ``90s`` or a bare number of seconds."""
    raw = text.strip().lower()
    if raw.isdigit():
        return dt.timedelta(seconds=int(raw))

    matches = list(_INTERVAL_RE.finditer(raw))
    if not matches or "".join(m.group(0) for m in matches).replace(" ", "") != raw.replace(" ", ""):
        raise ScheduleError(f"Cannot parse interval {text!r} (examples: 90s, 15m, 1h30m, 1d)")

    seconds = sum(int(m.group(1)) * _UNIT_SECONDS[m.group(2)] for m in matches)
    return dt.timedelta(seconds=seconds)


def _parse_time(text: str) -> dt.time:
    try:
        return dt.time.fromisoformat(text.strip())
    except ValueError as e:
        raise ScheduleError(f"Cannot parse time of day {text!r} (expected HH:MM)") from e


def parse_schedule(text: str) -> Schedule:
    """Parse the text form of a schedule into a schedule model."""
    parts = [p for p in re.split(r"[\s@]+", text.strip().lower()) if p]
    if not parts:
        raise ScheduleError("Empty schedule")

    if text.strip().lower() in _BOOT_WORDS or parts == ["on", "boot"]:
        return OnBoot()

    kind, rest = parts[0], parts[1:]
    try:
        if kind == "daily" and len(rest) == 1:
            return Daily(time=_parse_time(rest[0]))
        if kind == "weekly" and len(rest) == 2:
            try:
                weekday = Weekday(rest[0][:3])
            except ValueError as e:
                raise ScheduleError(f"Unknown weekday {rest[0]!r}") from e
            return Weekly(weekday=weekday, time=_parse_time(rest[1]))
        if kind == "every" and rest:
            return Every(interval=parse_interval("".join(rest)))
    except ValidationError as e:
        raise ScheduleError(f"Invalid schedule {text!r}: {e}") from e

    raise ScheduleError(
        f"Cannot parse schedule {text!r} "
        "(expected on-boot, 'daily HH:MM', 'weekly DAY HH:MM' or 'every 15m')"
    )


# ── systemd ─────────────────────────────────────────────────────


def systemd_timer_lines(schedule: Schedule) -> list[str]:
    """``[Timer]`` section body for a schedule. Empty for on-boot."""
    if isinstance(schedule, OnBoot):
        return []
    if isinstance(schedule, Daily):
        return [f"OnCalendar=*-*-* {schedule.time.strftime('%H:%M:%S')}", "AccuracySec=60"]
    if isinstance(schedule, Weekly):
        return [
            f"OnCalendar={schedule.weekday.systemd_name} *-*-* "
            f"{schedule.time.strftime('%H:%M:%S')}",
            "AccuracySec=60",
        ]
    seconds = int(schedule.interval.total_seconds())
    return [f"OnBootSec={seconds}s", f"OnUnitActiveSec={seconds}s", "AccuracySec=1s"]


# ── cron ────────────────────────────────────────────────────────


def cron_expression(schedule: Schedule | None) -> str:
    """Translate a schedule into a cron time spec, exactly or not at all."""
    if schedule is None:
        raise ScheduleError("cron cannot run a service without a schedule")
    if isinstance(schedule, OnBoot):
        return "@reboot"
    if isinstance(schedule, Daily):
        _require_whole_minute(schedule.time)
        return f"{schedule.time.minute} {schedule.time.hour} * * *"
    if isinstance(schedule, Weekly):
        _require_whole_minute(schedule.time)
        return (
            f"{schedule.time.minute} {schedule.time.hour} * * "
            f"{schedule.weekday.cron_number}"
        )
    return _cron_interval(int(schedule.interval.total_seconds()))


def _require_whole_minute(at: dt.time) -> None:
    if at.second or at.microsecond:
        raise ScheduleError(f"cron cannot schedule at {at.isoformat()}: seconds must be zero")


def _cron_interval(seconds: int) -> str:
    if seconds % 60:
        raise ScheduleError(f"cron cannot repeat every {seconds}s: minute resolution only")

    minutes = seconds // 60
    if minutes < 60 and 60 % minutes == 0:
        return "* * * * *" if minutes == 1 else f"*/{minutes} * * * *"

    if minutes % 60 == 0:
        hours = minutes // 60
        if hours < 24 and 24 % hours == 0:
            return "0 * * * *" if hours == 1 else f"0 */{hours} * * *"
        if hours == 24:
            return "0 0 * * *"

    raise ScheduleError(
        f"cron cannot repeat every {minutes} minutes exactly "
        "(the interval must divide an hour or a day)"
    )
