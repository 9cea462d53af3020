"""
service-install: CLI entrypoint.

Usage:
    service-install --help
    service-install install ./dist/backup --name backup --daily 03:30
    service-install plan --name backup --every 15m
    service-install remove backup
    service-install history
"""

from __future__ import annotations

import json
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

import click
from pydantic import ValidationError

from service_install import __version__
from service_install.core.observability.logging_config import setup_logging


@click.group()
@click.version_option(version=__version__, prog_name="service-install")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False),
    default=None,
    help="Path to service.yml (default: auto-detect when --name is not given).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    config_path: str | None,
) -> None:
    """Install an executable as a systemd or cron service, transactionally."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["debug"] = debug
    ctx.obj["config_path"] = Path(config_path) if config_path else None

    # ── Logging setup (once, at process start) ──────────────────
    level = None
    if debug:
        level = "DEBUG"
    elif verbose:
        level = "INFO"
    elif quiet:
        level = "ERROR"
    setup_logging(level=level)


# ── Helpers ─────────────────────────────────────────────────────


def _fail(message: str, as_json: bool = False, extra: dict[str, Any] | None = None) -> None:
    if as_json:
        click.echo(json.dumps({"error": message, **(extra or {})}, indent=2))
    else:
        click.secho(f"❌ {message}", fg="red")
    sys.exit(1)


def _parse_env(
    ctx: click.Context, param: click.Parameter, values: tuple[str, ...]
) -> dict[str, str]:
    env: dict[str, str] = {}
    for item in values:
        key, sep, value = item.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"expected KEY=VALUE, got {item!r}")
        env[key] = value
    return env


def _schedule_text(
    on_boot: bool,
    daily: str | None,
    weekly: str | None,
    every: str | None,
    schedule: str | None,
) -> str | None:
    chosen = []
    if on_boot:
        chosen.append("on-boot")
    if daily:
        chosen.append(f"daily {daily}")
    if weekly:
        day, sep, at = weekly.partition("@")
        if not sep:
            raise click.BadParameter("expected DAY@HH:MM, e.g. mon@10:42", param_hint="--weekly")
        chosen.append(f"weekly {day} {at}")
    if every:
        chosen.append(f"every {every}")
    if schedule:
        chosen.append(schedule)

    if len(chosen) > 1:
        raise click.UsageError("Choose at most one of --on-boot, --daily, --weekly, --every, --schedule")
    return chosen[0] if chosen else None


def _mode(user: bool, system: bool) -> str | None:
    if user and system:
        raise click.UsageError("--user and --system are mutually exclusive")
    if system:
        return "system"
    if user:
        return "user"
    return None


def _load_file_spec(ctx: click.Context, name: str | None) -> dict[str, Any]:
    """Values from service.yml, if one applies. CLI flags override them."""
    from service_install.core.config.loader import find_spec_file, load_install_spec

    path = ctx.obj.get("config_path")
    if path is None and name is None:
        path = find_spec_file()
    if path is None:
        return {}
    return load_install_spec(path).model_dump(exclude_unset=True)


def _hooks(ctx: click.Context) -> dict[str, Any]:
    """Injection points the CLI passes through to the use cases."""
    keys = ("registry", "home", "privileged", "candidates")
    return {k: ctx.obj[k] for k in keys if k in ctx.obj}


def _echo_plan(plan: Any, quiet: bool = False) -> None:
    click.secho(
        f"\n📋 {plan.operation} {plan.name} via {plan.backend.name}",
        fg="cyan",
        bold=True,
    )
    if not quiet:
        click.echo(f"   Plan:       {plan.plan_id}")
        if plan.spec is not None:
            click.echo(f"   Target:     {plan.spec.target}")
            if plan.spec.schedule is not None:
                click.echo(f"   Schedule:   {plan.spec.schedule}")
        if plan.conflict is not None and plan.resolution is not None:
            click.echo(f"   Conflict:   {plan.conflict.kind} → {plan.resolution.value}")
    click.echo()

    if not plan.steps:
        click.secho("   Nothing to do.", fg="green")
    for number, line in enumerate(plan.describe(), start=1):
        click.echo(f"   {number:>2}. {line}")
    click.echo()


def _echo_report(report: Any) -> None:
    for outcome in report.outcomes:
        if outcome.ok:
            click.secho(f"   ✓ {outcome.description}", fg="green")
        else:
            click.secho(f"   ✗ {outcome.description}: {outcome.error}", fg="red")


def _echo_failure(error: Any, as_json: bool) -> None:
    """Report a failed attempt (StepFailed / RollbackError) and exit."""
    report = getattr(error, "report", None)
    if as_json:
        _fail(str(error), True, {"report": report.to_dict() if report else None})
    if report is not None:
        _echo_report(report)
        for outcome in report.rolled_back:
            mark = "↩" if outcome.ok else "✗"
            click.secho(f"   {mark} {outcome.description}", fg="yellow")
    _fail(str(error))


def install_options(fn: Callable) -> Callable:
    """Options shared by ``install`` and ``plan``."""
    options = [
        click.argument("source", required=False),
        click.option("--name", "-n", default=None, help="Service name."),
        click.option("--on-boot", is_flag=True, help="Start on every boot."),
        click.option("--daily", default=None, metavar="HH:MM", help="Run daily at a time."),
        click.option("--weekly", default=None, metavar="DAY@HH:MM", help="Run weekly, e.g. mon@10:42."),
        click.option("--every", default=None, metavar="INTERVAL", help="Run repeatedly, e.g. 15m."),
        click.option("--schedule", default=None, help="Schedule as text, e.g. 'daily 10:42'."),
        click.option("--target", default=None, help="Install directory (default: first usable)."),
        click.option("--exe-name", default=None, help="File name in the install directory."),
        click.option("--user", "user_mode", is_flag=True, help="Install for the current user."),
        click.option("--system", "system_mode", is_flag=True, help="Install system-wide (root)."),
        click.option("--run-as", default=None, help="Account the service runs as."),
        click.option("--backend", type=click.Choice(["systemd", "cron"]), default=None),
        click.option("--overwrite", is_flag=True, help="Replace a different file or foreign service."),
        click.option("--read-only", is_flag=True, help="Install without group/other write bits."),
        click.option("--stop-running", is_flag=True, help="Stop a process running the target."),
        click.option("--env", "environment", multiple=True, callback=_parse_env, help="KEY=VALUE (repeatable)."),
        click.option("--arg", "args", multiple=True, help="Argument for the executable (repeatable)."),
        click.option("--workdir", default=None, help="Working directory of the service."),
        click.option("--description", default=None, help="Service description."),
        click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON."),
    ]
    for option in reversed(options):
        fn = option(fn)
    return fn


def _raw_spec(ctx: click.Context, opts: dict[str, Any]) -> Any:
    from service_install.core.models.spec import RawInstallSpec

    data = _load_file_spec(ctx, opts["name"])
    schedule = _schedule_text(
        opts["on_boot"], opts["daily"], opts["weekly"], opts["every"], opts["schedule"]
    )

    overrides = {
        "name": opts["name"],
        "source": opts["source"],
        "exe_name": opts["exe_name"],
        "target": opts["target"],
        "mode": _mode(opts["user_mode"], opts["system_mode"]),
        "run_as": opts["run_as"],
        "schedule": schedule,
        "backend": opts["backend"],
        "working_dir": opts["workdir"],
        "description": opts["description"],
        "environment": opts["environment"] or None,
        "args": list(opts["args"]) or None,
    }
    data.update({k: v for k, v in overrides.items() if v is not None})
    for flag in ("overwrite", "read_only", "stop_running"):
        if opts[flag]:
            data[flag] = True

    return RawInstallSpec.model_validate(data)


def _prepare_install(ctx: click.Context, opts: dict[str, Any]) -> Any:
    from service_install.core.errors import NeedsElevation, ServiceInstallError
    from service_install.core.use_cases.service import prepare_install

    try:
        raw = _raw_spec(ctx, opts)
        return prepare_install(raw, **_hooks(ctx))
    except NeedsElevation as e:
        _fail(f"{e} (re-run with sudo)", opts["as_json"], {"needs_elevation": e.reason})
    except ServiceInstallError as e:
        _fail(str(e), opts["as_json"])
    except ValidationError as e:
        _fail(f"Invalid options: {e}", opts["as_json"])


# ── Commands ────────────────────────────────────────────────────


@cli.command()
@install_options
@click.option("--dry-run", is_flag=True, help="Show the plan but don't execute.")
@click.pass_context
def install(ctx: click.Context, dry_run: bool, **opts: Any) -> None:
    """Install SOURCE (default: this program) as a service."""
    from service_install.core.errors import PlanError, RollbackError, StepFailed
    from service_install.core.persistence.audit import AuditWriter
    from service_install.core.use_cases.service import install as run_install

    as_json = opts["as_json"]
    plan = _prepare_install(ctx, opts)

    if dry_run:
        if as_json:
            click.echo(json.dumps({"plan": plan.to_dict(), "dry_run": True}, indent=2))
        else:
            _echo_plan(plan, ctx.obj.get("quiet", False))
        return

    try:
        report = run_install(plan, audit=AuditWriter())
    except (StepFailed, RollbackError) as e:
        _echo_failure(e, as_json)
        return
    except PlanError as e:
        _fail(str(e), as_json)
        return

    if as_json:
        click.echo(json.dumps({"plan": plan.to_dict(), "report": report.to_dict()}, indent=2))
        return

    if not report.outcomes:
        click.secho(f"✅ {plan.name} is already installed and up to date", fg="green", bold=True)
        return
    if not ctx.obj.get("quiet", False):
        _echo_report(report)
    click.secho(
        f"✅ Installed {plan.name} ({report.succeeded} step(s), {report.duration_ms}ms)",
        fg="green",
        bold=True,
    )


@cli.command("plan")
@install_options
@click.pass_context
def show_plan(ctx: click.Context, **opts: Any) -> None:
    """Show what installing would do, without touching anything."""
    plan = _prepare_install(ctx, opts)
    if opts["as_json"]:
        click.echo(json.dumps(plan.to_dict(), indent=2))
        return
    _echo_plan(plan, ctx.obj.get("quiet", False))


@cli.command()
@click.argument("name")
@click.option("--user", "user_mode", is_flag=True, help="Look in the current user's services.")
@click.option("--system", "system_mode", is_flag=True, help="Look in system services (root).")
@click.option("--backend", type=click.Choice(["systemd", "cron"]), default=None)
@click.option("--best-effort", is_flag=True, help="Attempt every step; don't roll back.")
@click.option("--dry-run", is_flag=True, help="Show the plan but don't execute.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def remove(
    ctx: click.Context,
    name: str,
    user_mode: bool,
    system_mode: bool,
    backend: str | None,
    best_effort: bool,
    dry_run: bool,
    as_json: bool,
) -> None:
    """Stop, unregister and delete the service NAME."""
    from service_install.core.errors import (
        AggregateError,
        PlanError,
        RollbackError,
        ServiceInstallError,
        StepFailed,
    )
    from service_install.core.models.spec import RawInstallSpec
    from service_install.core.persistence.audit import AuditWriter
    from service_install.core.use_cases.service import (
        best_effort_remove,
        prepare_remove,
    )
    from service_install.core.use_cases.service import remove as run_remove

    hooks = _hooks(ctx)
    hooks.pop("candidates", None)
    try:
        raw = RawInstallSpec(name=name, mode=_mode(user_mode, system_mode), backend=backend)
        plan = prepare_remove(raw, **hooks)
    except ServiceInstallError as e:
        _fail(str(e), as_json)
        return
    except ValidationError as e:
        _fail(f"Invalid options: {e}", as_json)
        return

    if dry_run:
        if as_json:
            click.echo(json.dumps({"plan": plan.to_dict(), "dry_run": True}, indent=2))
        else:
            _echo_plan(plan, ctx.obj.get("quiet", False))
        return

    audit = AuditWriter()
    if best_effort:
        try:
            result = best_effort_remove(plan, audit=audit)
        except AggregateError as e:
            if as_json:
                _fail(str(e), True, e.to_dict())
            click.secho(f"⚠️  {name} partially removed:", fg="yellow", bold=True)
            for outcome in e.outcomes:
                if outcome.ok:
                    click.secho(f"   ✓ {outcome.description}", fg="green")
                else:
                    click.secho(f"   ✗ {outcome.description}: {outcome.error}", fg="red")
            sys.exit(1)
        if as_json:
            click.echo(json.dumps(result.to_dict(), indent=2))
            return
    else:
        try:
            result = run_remove(plan, audit=audit)
        except (StepFailed, RollbackError) as e:
            _echo_failure(e, as_json)
            return
        except PlanError as e:
            _fail(str(e), as_json)
            return
        if as_json:
            click.echo(json.dumps(result.to_dict(), indent=2))
            return

    if not ctx.obj.get("quiet", False):
        _echo_report(result)
    click.secho(f"✅ Removed {name}", fg="green", bold=True)


@cli.command()
@click.option("--limit", "-n", default=20, type=int, help="Number of entries to show.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
def history(limit: int, as_json: bool) -> None:
    """Show recent installs and removals from the audit ledger."""
    from service_install.core.persistence.audit import AuditWriter

    writer = AuditWriter()
    entries = writer.read_recent(limit)

    if as_json:
        click.echo(json.dumps([e.model_dump(mode="json") for e in entries], indent=2))
        return

    if not entries:
        click.echo(f"No history yet ({writer.path}).")
        return

    colors = {"ok": "green", "partial": "yellow", "rolled_back": "yellow", "failed": "red"}
    for entry in entries:
        click.echo(f"{entry.timestamp[:19]}  {entry.operation:<18} {entry.service:<20} ", nl=False)
        click.secho(entry.status, fg=colors.get(entry.status, "white"))
        for err in entry.errors:
            click.echo(f"    • {err}")


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
