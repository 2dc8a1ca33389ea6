"""
envforge — CLI entrypoint.

Usage:
    envforge --help
    envforge setup
    envforge verify --skip-e2e
    envforge uninstall --dry-run
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

import click

from envforge import __version__
from envforge.core.engine.exit_codes import ExitCode
from envforge.core.observability.logging_config import setup_logging

_STATUS_COLORS = {"ok": "green", "partial": "yellow", "failed": "red"}


def _exit(code: ExitCode) -> None:
    """0 success, 2 configuration error, 1 anything else."""
    if code == ExitCode.SUCCESS:
        return
    sys.exit(2 if code == ExitCode.CONFIG_ERROR else 1)


@click.group()
@click.version_option(version=__version__, prog_name="envforge")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False),
    default=None,
    help="Path to envforge.yml (default: auto-detect).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    config_path: str | None,
) -> None:
    """envforge — provision and tear down the developer environment."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["debug"] = debug
    ctx.obj["config_path"] = Path(config_path) if config_path else None

    # Register the repository root (state, summary and targets resolve against it)
    from envforge.core.config.loader import find_config_file
    from envforge.core.context import set_project_root as _set_ctx_root
    _cfg = ctx.obj["config_path"] or find_config_file()
    _set_ctx_root(_cfg.parent.resolve() if _cfg else Path.cwd().resolve())

    # ── Logging setup (once, at process start) ──────────────────
    setup_logging(debug=debug, verbose=verbose, quiet=quiet)


# ═══════════════════════════════════════════════════════════════════
#  setup
# ═══════════════════════════════════════════════════════════════════


@cli.command()
@click.option("--reset", is_flag=True, help="Forget checkpoints and re-run every step.")
@click.option("--mock", is_flag=True, help="Use mock adapters (no real execution).")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def setup(ctx: click.Context, reset: bool, mock: bool, as_json: bool) -> None:
    """Provision the environment, resuming from the last failed step.

    Examples:

        envforge setup

        envforge setup --reset
    """
    from envforge.core.use_cases.setup import run_setup

    result = run_setup(ctx.obj.get("config_path"), reset=reset, mock_mode=mock)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        _exit(result.exit_code)
        return

    if result.report is None:
        click.secho(f"❌ {result.error}", fg="red")
        _exit(result.exit_code)
        return

    report = result.report
    mode_label = "[mock] " if mock else ""
    click.secho(f"\n⚡ {mode_label}setup — {result.project_root}", fg="cyan", bold=True)
    if report.previous_failure:
        click.secho(f"   Previous attempt failed: {report.previous_failure}", fg="yellow")
    click.echo()

    for outcome in report.outcomes:
        timing = f" ({outcome.duration_ms}ms)" if outcome.duration_ms else ""
        if outcome.status == "done":
            click.secho(f"   ✓ {outcome.label}", fg="green", nl=False)
            click.echo(timing)
        elif outcome.status == "skipped":
            click.secho(f"   ⊘ {outcome.label}", fg="yellow", nl=False)
            click.echo(" (already completed)")
        elif outcome.status == "failed":
            click.secho(f"   ✗ {outcome.label}", fg="red", nl=False)
            click.echo(timing)
            detail = outcome.output if ctx.obj.get("verbose") else outcome.message
            for line in (detail or "").splitlines()[-5:]:
                click.echo(f"     │ {line}")
        else:
            click.secho(f"   · {outcome.label}", dim=True)

    click.echo()
    click.secho(
        f"   Result: {report.count('done')} done, {report.count('skipped')} skipped, "
        f"{report.count('failed')} failed",
        fg=_STATUS_COLORS.get(report.status, "white"),
        bold=True,
    )
    if not report.ok:
        click.echo("   Fix the issue and re-run `envforge setup` to resume.")
    click.echo()
    _exit(result.exit_code)


# ═══════════════════════════════════════════════════════════════════
#  verify
# ═══════════════════════════════════════════════════════════════════


@cli.command()
@click.option("--skip-unit", is_flag=True, help="Skip unit tests.")
@click.option("--skip-e2e", is_flag=True, help="Skip end-to-end tests.")
@click.option("--max-retries", type=click.IntRange(min=0), default=None, help="Override retry ceiling.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def verify(
    ctx: click.Context,
    skip_unit: bool,
    skip_e2e: bool,
    max_retries: int | None,
    as_json: bool,
) -> None:
    """Run lint, type-check and tests with automatic remediation."""
    from envforge.core.use_cases.verify import run_verify

    result = run_verify(
        ctx.obj.get("config_path"),
        skip_unit=skip_unit,
        skip_e2e=skip_e2e,
        max_retries=max_retries,
    )

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        _exit(result.exit_code)
        return

    if result.exit_code == ExitCode.CONFIG_ERROR:
        click.secho(f"❌ {result.error}", fg="red")
        _exit(result.exit_code)
        return

    click.secho("\n🔍 verify", fg="cyan", bold=True)
    click.echo()
    for r in result.results:
        retries = f" after {r.attempts - 1} retries" if r.attempts > 1 else ""
        if r.ok:
            click.secho(f"   ✓ {r.label}{retries}", fg="green")
        else:
            click.secho(f"   ✗ {r.label}", fg="red")
        if r.remediations:
            click.echo(f"     │ remediations: {', '.join(r.remediations)}")
    for label in result.skipped:
        click.secho(f"   ⊘ {label} (skipped)", fg="yellow")

    click.echo()
    if result.ok:
        click.secho("   ✅ All verification steps passed", fg="green", bold=True)
    else:
        click.secho(f"   ❌ {result.error}", fg="red", bold=True)
    click.echo()
    _exit(result.exit_code)


# ═══════════════════════════════════════════════════════════════════
#  uninstall
# ═══════════════════════════════════════════════════════════════════


@cli.command()
@click.option("--skip-repo", is_flag=True, help="Keep repository artifacts.")
@click.option("--skip-terraform-local", is_flag=True, help="Keep local terraform state and caches.")
@click.option("--skip-home", is_flag=True, help="Never touch caches under $HOME.")
@click.option("--include-home", is_flag=True, help="Also remove caches under $HOME.")
@click.option("--destroy-cloud", is_flag=True, help="Run terraform destroy for every environment first.")
@click.option("--skip-destroy-cloud", is_flag=True, help="Disable terraform destroy even with --destroy-cloud.")
@click.option("--force", "-f", is_flag=True, help="Do not prompt for confirmation.")
@click.option("--dry-run", is_flag=True, help="Report what would be removed; change nothing.")
@click.option(
    "--backup-dir",
    type=click.Path(file_okay=False),
    default=None,
    help="Archive each category here before deleting it.",
)
@click.option("--parallel", type=int, default=None, help="Concurrent deletions per category.")
@click.option("--telemetry", is_flag=True, help="Echo ledger events to stdout as JSON lines.")
@click.option("--full-reset", is_flag=True, help="Everything, including cloud destroy and host cleanup.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def uninstall(
    ctx: click.Context,
    skip_repo: bool,
    skip_terraform_local: bool,
    skip_home: bool,
    include_home: bool,
    destroy_cloud: bool,
    skip_destroy_cloud: bool,
    force: bool,
    dry_run: bool,
    backup_dir: str | None,
    parallel: int | None,
    telemetry: bool,
    full_reset: bool,
    as_json: bool,
) -> None:
    """Remove generated artifacts, caches and (optionally) cloud resources.

    Examples:

        envforge uninstall --dry-run

        envforge uninstall --include-home --backup-dir ~/envforge-backups

        envforge uninstall --full-reset
    """
    from envforge.core.use_cases.uninstall import UninstallOptions, run_uninstall

    options = UninstallOptions(
        skip_repo=skip_repo,
        skip_terraform_local=skip_terraform_local,
        skip_home=skip_home,
        include_home=include_home,
        destroy_cloud=destroy_cloud,
        skip_destroy_cloud=skip_destroy_cloud,
        force=force,
        dry_run=dry_run,
        backup_dir=Path(backup_dir).expanduser().resolve() if backup_dir else None,
        parallel=parallel,
        full_reset=full_reset,
    )

    def confirm(message: str) -> bool:
        return click.confirm(message, default=False)

    result = run_uninstall(
        options,
        ctx.obj.get("config_path"),
        confirm=confirm,
        telemetry=click.echo if telemetry else None,
    )

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        _exit(result.exit_code)
        return

    if result.aborted:
        click.echo("Aborted.")
        return

    pre_failed = result.pre_steps is not None and not result.pre_steps.ok
    if result.exit_code == ExitCode.CONFIG_ERROR or pre_failed:
        click.secho(f"❌ {result.error}", fg="red")
        _exit(result.exit_code)
        return

    _print_uninstall(result)
    _exit(result.exit_code)


def _print_uninstall(result) -> None:
    mode_label = "[dry-run] " if result.dry_run else ""
    click.secho(f"\n🧹 {mode_label}uninstall — {result.project_root}", fg="cyan", bold=True)
    for warning in result.warnings:
        click.secho(f"   ⚠️  {warning}", fg="yellow")

    # Destroy
    if result.destroy_results:
        click.echo()
        click.secho("   Terraform destruction summary:", fg="white", bold=True)
        colors = {"success": "green", "warning": "yellow", "failure": "red", "skipped": "white"}
        for r in result.destroy_results:
            click.secho(f"     - {r.describe()}", fg=colors.get(r.status.value, "white"))
        if result.summary_written:
            click.echo(f"   Summary written to {result.summary_path}")
    if result.summary_anomaly:
        click.secho(f"   ❌ {result.summary_anomaly}", fg="red")

    # Cleanup, one block per category
    markers = {
        "removed": ("✓", "green"),
        "would-remove": ("→", "cyan"),
        "missing": ("⊘", "white"),
        "failed": ("✗", "red"),
    }
    for category, outcomes in result.cleanup.by_category().items():
        click.echo()
        click.secho(f"   {category}:", fg="white", bold=True)
        for o in outcomes:
            if o.status == "missing" and not result.dry_run:
                continue
            marker, color = markers[o.status.value]
            click.secho(f"     {marker} {o.path}", fg=color, nl=False)
            click.echo(f"  ({o.status.value})" if result.dry_run else "")
    for category in result.categories_skipped:
        click.secho(f"   ⊘ {category} skipped", fg="yellow")

    # Backups
    for archive in result.cleanup.backups:
        click.echo(f"   📦 Backup {archive.category} → {archive.archive_path}")
    for category in result.cleanup.backup_failures:
        click.secho(f"   ⚠️  Backup for {category} failed; cleanup continued", fg="yellow")

    # Handoff
    if result.handoff is not None:
        click.echo()
        if result.handoff.completed:
            click.secho("   ✓ Host cleanup completed", fg="green")
        else:
            path = result.handoff.host_path or result.handoff.marker_path
            click.secho(
                f"   ⚠️  Host cleanup not confirmed; run {path} manually as administrator",
                fg="yellow",
            )

    # Residuals
    click.echo()
    residuals = result.cleanup.residuals
    if residuals:
        click.secho(f"   ❌ {len(residuals)} path(s) need manual attention:", fg="red", bold=True)
        for o in residuals:
            click.echo(f"     • {o.path}: {o.error}")
    elif result.ok:
        if result.dry_run:
            would = result.cleanup.count("would-remove")
            click.secho(f"   Dry run: {would} path(s) would be removed", fg="cyan", bold=True)
        else:
            click.secho("   ✅ Uninstall complete", fg="green", bold=True)
            click.echo("   Run `envforge setup` to reinstall when ready.")
    if result.error and not residuals:
        click.secho(f"   ❌ {result.error}", fg="red", bold=True)
    click.echo()


# ═══════════════════════════════════════════════════════════════════
#  state / summary
# ═══════════════════════════════════════════════════════════════════


@cli.group()
def state() -> None:
    """Inspect or reset checkpoint state."""


_PIPELINE_OPTION = click.option(
    "--pipeline",
    type=click.Choice(["setup", "teardown"]),
    default="setup",
    show_default=True,
    help="Which pipeline's state.",
)


@state.command("show")
@_PIPELINE_OPTION
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def state_show(ctx: click.Context, pipeline: str, as_json: bool) -> None:
    """Show completed steps and the last failure."""
    from envforge.core.use_cases.status import get_state

    result = get_state(pipeline, ctx.obj.get("config_path"))

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        if result.error:
            sys.exit(2)
        return

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(2)

    click.secho(f"\n📋 {pipeline} state — {result.state_path}", fg="cyan", bold=True)
    completed = result.completed_steps()
    if not completed and not result.pending_steps():
        click.echo("   (empty)")
    for key, timestamp in completed:
        click.secho(f"   ✓ {key}", fg="green", nl=False)
        click.echo(f"  {timestamp}")
    for key in result.pending_steps():
        click.secho(f"   · {key}", dim=True)
    if result.state and result.state.last_failure:
        click.echo()
        click.secho(f"   Last failure: {result.state.last_failure}", fg="red")
    click.echo()


@state.command("reset")
@_PIPELINE_OPTION
@click.pass_context
def state_reset(ctx: click.Context, pipeline: str) -> None:
    """Delete the state file and its backup."""
    from envforge.core.use_cases.status import reset_state

    result = reset_state(pipeline, ctx.obj.get("config_path"))
    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(2)
    click.secho(f"✅ {pipeline} state cleared ({result.state_path})", fg="green")


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def summary(ctx: click.Context, as_json: bool) -> None:
    """Print the destroy summary from the last destructive uninstall."""
    from envforge.core.use_cases.status import read_summary

    result = read_summary(ctx.obj.get("config_path"))

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        if not result.present:
            sys.exit(1)
        return

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(1)
    if not result.present:
        click.secho(f"No destroy summary at {result.path}", fg="yellow")
        sys.exit(1)

    click.secho(f"\n📄 {result.path}", fg="cyan", bold=True)
    for entry in result.entries or []:
        click.echo(f"   - {entry.describe()}")
    click.echo()


if __name__ == "__main__":
    cli()
