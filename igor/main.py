"""
igor — CLI entrypoint.

Usage:
    igor --help
    igor uninstall --dry-run
    igor discover --json
    igor modules
"""

from __future__ import annotations

import json
import signal
import sys
from pathlib import Path

import click

from igor import __version__
from igor.core.config.loader import load_config
from igor.core.discovery.discovery import PackageDiscovery
from igor.core.engine.builder import build_context, build_uninstall
from igor.core.errors import ConfigError, DetectionError, IgorError, PrivilegeError
from igor.core.kernel.modules import vendor_modules
from igor.core.models.config import UninstallConfig
from igor.core.models.report import ExecutionReport, UninstallStatus
from igor.core.models.step import StepProgress
from igor.core.observability.logging_config import resolve_level, setup_logging

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_PARTIAL = 2
EXIT_CANCELLED = 130

_EXIT_CODES = {
    UninstallStatus.COMPLETED: EXIT_OK,
    UninstallStatus.PARTIAL: EXIT_PARTIAL,
    UninstallStatus.CANCELLED: EXIT_CANCELLED,
}

_STATUS_COLORS = {
    UninstallStatus.COMPLETED: "green",
    UninstallStatus.PARTIAL: "yellow",
    UninstallStatus.FAILED: "red",
    UninstallStatus.CANCELLED: "yellow",
}


@click.group()
@click.version_option(version=__version__, prog_name="igor")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False),
    default=None,
    help="Path to igor.yml (default: auto-detect).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    config_path: str | None,
) -> None:
    """igor — remove the proprietary GPU driver and restore the fallback."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["debug"] = debug
    ctx.obj["config_path"] = Path(config_path) if config_path else None

    # ── Logging setup (once, at process start) ──────────────────
    if debug:
        flag = "DEBUG"
    elif verbose:
        flag = "INFO"
    elif quiet:
        flag = "ERROR"
    else:
        flag = None

    setup_logging(level=resolve_level(flag))


def _load(ctx: click.Context) -> UninstallConfig:
    try:
        return load_config(ctx.obj.get("config_path"))
    except ConfigError as e:
        click.secho(f"❌ {e}", fg="red", err=True)
        sys.exit(EXIT_FAILED)


def _print_report(report: ExecutionReport) -> None:
    result = report.result
    click.echo()
    click.secho(f"📋 {report.workflow_name}", fg="cyan", bold=True)
    if report.dry_run:
        click.secho("   (dry run — nothing was changed)", fg="yellow")

    click.echo("   Status: ", nl=False)
    click.secho(str(result.status), fg=_STATUS_COLORS.get(result.status, "white"), bold=True)
    click.echo(
        f"   Steps: {report.steps_completed} completed, {report.steps_skipped} skipped, "
        f"{report.steps_failed} failed  ({result.total_duration:.1f}s)"
    )

    if result.removed_packages:
        click.secho(f"   Removed packages: {len(result.removed_packages)}", bold=True)
        for name in result.removed_packages:
            click.echo(f"     • {name}")
    if result.failed_packages:
        click.secho(f"   Failed packages: {len(result.failed_packages)}", fg="red", bold=True)
        for name in result.failed_packages:
            click.echo(f"     • {name}")
    if result.cleaned_configs:
        click.secho(f"   Removed configs: {len(result.cleaned_configs)}", bold=True)
        for path in result.cleaned_configs:
            click.echo(f"     • {path}")

    if result.error is not None:
        click.secho(f"   ❌ {result.failed_step or 'workflow'}: {result.error}", fg="red")
    if report.rolled_back:
        if report.rollback_error:
            click.secho(f"   ⚠️  Rollback incomplete: {report.rollback_error}", fg="yellow")
        else:
            click.echo("   ↩ Changes rolled back")
    if result.driver_restored:
        click.echo("   ✓ Fallback driver restored")
    if result.needs_reboot:
        click.secho("   ⚠️  Reboot required to finish", fg="yellow", bold=True)
    click.echo()


@cli.command()
@click.option("--dry-run", is_flag=True, help="Show what would be done without changing anything.")
@click.option("--force", is_flag=True, help="Force-unload modules that stay in use.")
@click.option("--keep-config", is_flag=True, help="Leave configuration files in place.")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def uninstall(
    ctx: click.Context,
    dry_run: bool,
    force: bool,
    keep_config: bool,
    yes: bool,
    as_json: bool,
) -> None:
    """Remove the GPU driver, its packages and its configuration."""
    config = _load(ctx)
    config = config.model_copy(update={
        "dry_run": config.dry_run or dry_run,
        "force": config.force or force,
        "keep_config": config.keep_config or keep_config,
    })

    runtime = build_context(config)
    if not config.dry_run:
        try:
            runtime.privilege.require_root()
        except PrivilegeError as e:
            click.secho(f"❌ {e}", fg="red", err=True)
            sys.exit(EXIT_FAILED)

    if not (yes or config.dry_run or as_json):
        click.confirm("Remove the GPU driver and its packages?", abort=True)

    orchestrator = build_uninstall(config, runtime)
    quiet = ctx.obj.get("quiet", False)
    if not (as_json or quiet):
        def progress(p: StepProgress) -> None:
            click.echo(f"[{p.percent:3.0f}%] {p.message}")

        orchestrator.on_progress(progress)

    def on_sigint(signum, frame) -> None:
        click.echo("\n⊘ Cancelling after the current operation…", err=True)
        runtime.cancel()

    previous = signal.signal(signal.SIGINT, on_sigint)
    try:
        report = orchestrator.execute(runtime)
    finally:
        signal.signal(signal.SIGINT, previous)

    if as_json:
        click.echo(json.dumps(report.to_dict(), indent=2))
    else:
        _print_report(report)

    sys.exit(_EXIT_CODES.get(report.status, EXIT_FAILED))


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def discover(ctx: click.Context, as_json: bool) -> None:
    """List installed GPU driver packages by category."""
    config = _load(ctx)
    runtime = build_context(config)

    try:
        found = PackageDiscovery(runtime.package_manager, runtime.distro).discover()
    except IgorError as e:
        click.secho(f"❌ {e}", fg="red", err=True)
        sys.exit(EXIT_FAILED)

    if as_json:
        click.echo(json.dumps(found.model_dump(mode="json"), indent=2))
        return

    if found.is_empty:
        click.echo("No GPU driver packages installed.")
        return

    click.secho(f"\n📦 {found.total_count} GPU driver package(s)", fg="cyan", bold=True)
    if found.driver_version:
        click.echo(f"   Driver version: {found.driver_version}")
    if found.cuda_version:
        click.echo(f"   CUDA version: {found.cuda_version}")
    for category, names in found.by_category().items():
        click.secho(f"   {category}:", bold=True)
        for name in names:
            click.echo(f"     • {name}")
    click.echo()


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def modules(ctx: click.Context, as_json: bool) -> None:
    """List loaded GPU kernel modules."""
    config = _load(ctx)
    runtime = build_context(config)

    try:
        loaded = vendor_modules(runtime.detector.loaded_modules())
    except DetectionError as e:
        click.secho(f"❌ {e}", fg="red", err=True)
        sys.exit(EXIT_FAILED)

    if as_json:
        click.echo(json.dumps([m.model_dump(mode="json") for m in loaded], indent=2))
        return

    if not loaded:
        click.echo("No GPU kernel modules loaded.")
        return

    for m in loaded:
        used_by = f"  ← {', '.join(m.used_by)}" if m.used_by else ""
        click.echo(f"  • {m.name:<16} {m.size:>10}  refs={m.use_count}  {m.state}{used_by}")


if __name__ == "__main__":
    cli()
