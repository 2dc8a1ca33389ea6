"""
Uninstall use case — the teardown pipeline.

    1. bookkeeping pre-steps    execution engine, teardown state file
    2. destroy                  per environment, if enabled
    3. summary                  destructive runs only
    4. cleanup categories       repo → infra-local → home-cache
    5. host handoff             full reset, destructive only

Failures in one target or one environment are collected, never fatal
to the rest. A fully clean destructive run also forgets the setup
checkpoints so the next ``envforge setup`` starts from scratch.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from envforge.adapters.registry import AdapterRegistry, default_registry
from envforge.core.config.loader import ConfigError
from envforge.core.engine.executor import ExecutionEngine, ExecutionReport
from envforge.core.engine.exit_codes import ExitCode
from envforge.core.models.cleanup import CleanupCategory, CleanupReport
from envforge.core.models.destroy import DestroyStatus, TerraformDestroyResult
from envforge.core.models.settings import Settings
from envforge.core.persistence.audit import AuditWriter
from envforge.core.persistence.summary import emit_summary, summary_anomaly
from envforge.core.services import cleanup_targets
from envforge.core.services.cleanup_pool import CleanupPool
from envforge.core.services.handoff import (
    HandoffSignaler,
    HandoffStatus,
    PollResult,
    render_host_script,
)
from envforge.core.services.terraform_destroy import DestroyCoordinator, discover_environments
from envforge.core.use_cases.workspace import Workspace, open_workspace

logger = logging.getLogger(__name__)

Confirm = Callable[[str], bool]


@dataclass
class UninstallOptions:
    """CLI-level switches for one teardown run."""

    skip_repo: bool = False
    skip_terraform_local: bool = False
    skip_home: bool = False
    include_home: bool = False
    destroy_cloud: bool = False
    skip_destroy_cloud: bool = False
    force: bool = False
    dry_run: bool = False
    backup_dir: Path | None = None
    parallel: int | None = None
    full_reset: bool = False

    def normalized(self) -> UninstallOptions:
        """Apply ``full_reset`` implications."""
        if not self.full_reset:
            return self
        return UninstallOptions(
            skip_repo=False,
            skip_terraform_local=False,
            skip_home=False,
            include_home=True,
            destroy_cloud=True,
            skip_destroy_cloud=False,
            force=True,
            dry_run=self.dry_run,
            backup_dir=self.backup_dir,
            parallel=self.parallel,
            full_reset=True,
        )

    @property
    def destroy_enabled(self) -> bool:
        return self.destroy_cloud and not self.skip_destroy_cloud

    @property
    def home_enabled(self) -> bool:
        return self.include_home and not self.skip_home


@dataclass
class UninstallResult:
    """Result of a teardown run."""

    project_root: Path | None = None
    dry_run: bool = False
    aborted: bool = False
    pre_steps: ExecutionReport | None = None
    destroy_results: list[TerraformDestroyResult] = field(default_factory=list)
    destroy_attempted: bool = False
    summary_path: Path | None = None
    summary_written: bool = False
    summary_anomaly: str | None = None
    cleanup: CleanupReport = field(default_factory=CleanupReport)
    categories_run: list[str] = field(default_factory=list)
    categories_skipped: list[str] = field(default_factory=list)
    handoff: PollResult | None = None
    state_cleared: bool = False
    warnings: list[str] = field(default_factory=list)
    exit_code: ExitCode = ExitCode.SUCCESS
    error: str | None = None

    @property
    def destroy_failures(self) -> list[TerraformDestroyResult]:
        return [r for r in self.destroy_results if r.status == DestroyStatus.FAILURE]

    @property
    def ok(self) -> bool:
        return self.exit_code == ExitCode.SUCCESS

    def to_dict(self) -> dict:
        result: dict = {
            "exit_code": int(self.exit_code),
            "dry_run": self.dry_run,
            "aborted": self.aborted,
        }
        if self.error:
            result["error"] = self.error
        if self.project_root:
            result["project_root"] = str(self.project_root)
        if self.pre_steps:
            result["pre_steps"] = self.pre_steps.to_dict()
        result["destroy"] = [r.to_summary_entry() for r in self.destroy_results]
        result["summary"] = {
            "path": str(self.summary_path) if self.summary_path else None,
            "written": self.summary_written,
            "anomaly": self.summary_anomaly,
        }
        result["cleanup"] = self.cleanup.to_dict()
        result["categories_run"] = list(self.categories_run)
        result["categories_skipped"] = list(self.categories_skipped)
        result["handoff"] = self.handoff.to_dict() if self.handoff else None
        result["state_cleared"] = self.state_cleared
        result["warnings"] = list(self.warnings)
        return result


def _deny(_message: str) -> bool:
    return False


def run_uninstall(
    options: UninstallOptions | None = None,
    config_path: Path | None = None,
    *,
    confirm: Confirm = _deny,
    registry: AdapterRegistry | None = None,
    coordinator: DestroyCoordinator | None = None,
    pool: CleanupPool | None = None,
    signaler: HandoffSignaler | None = None,
    settings: Settings | None = None,
    project_root: Path | None = None,
    home: Path | None = None,
    audit: AuditWriter | None = None,
    telemetry: Callable[[str], None] | None = None,
) -> UninstallResult:
    """Tear the environment down.

    Args:
        options: Teardown switches.
        config_path: Optional explicit envforge.yml.
        confirm: Asked before destructive work and before home-cache
            cleanup unless ``force``; default declines.
        registry: Adapter registry for the pre-steps.
        coordinator / pool / signaler: Pre-built collaborators (tests).
        settings / project_root / home: Bypass discovery.
        audit: Event ledger (default: the workspace ledger).
        telemetry: Sink that also receives every ledger line.
    """
    opts = (options or UninstallOptions()).normalized()
    result = UninstallResult(dry_run=opts.dry_run)

    try:
        ws = open_workspace(config_path, settings, project_root)
        pre_steps = ws.settings.teardown_steps()
    except (ConfigError, ValueError) as e:
        result.error = str(e)
        result.exit_code = ExitCode.CONFIG_ERROR
        return result

    result.project_root = ws.root
    audit = audit or ws.audit(echo=telemetry)
    teardown = ws.settings.teardown

    parallelism = teardown.parallelism
    if opts.parallel is not None:
        if opts.parallel < 1:
            msg = f"Invalid parallel worker count {opts.parallel}; using {parallelism}"
            logger.warning(msg)
            result.warnings.append(msg)
        else:
            parallelism = opts.parallel

    audit.emit("uninstall.start", "begin", f"dry_run={int(opts.dry_run)}")

    if not opts.force and not opts.dry_run:
        if not confirm(f"This will remove generated artifacts from {ws.root}. Proceed?"):
            logger.info("Teardown aborted by user")
            result.aborted = True
            audit.emit("uninstall.complete", "aborted")
            return result

    # ── 1. Bookkeeping pre-steps ─────────────────────────────────
    if pre_steps:
        if opts.dry_run:
            logger.info("Dry-run: skipping %d teardown pre-steps", len(pre_steps))
        else:
            if registry is None:
                registry = default_registry(str(ws.root))
            engine = ExecutionEngine(ws.state_store("teardown"), registry, audit=audit, pipeline="teardown")
            report = engine.execute(pre_steps)
            result.pre_steps = report
            if not report.ok:
                result.error = f"Teardown pre-step {report.failed_step} failed"
                result.exit_code = ExitCode.STEP_FAILED
                audit.emit("uninstall.complete", "failed", result.error)
                return result

    # ── 2–3. Destroy + summary ───────────────────────────────────
    result.summary_path = ws.summary_path
    if opts.destroy_enabled:
        _destroy(ws, opts, result, coordinator, audit)

    # ── 4. Cleanup categories ────────────────────────────────────
    backup_dir = opts.backup_dir or (Path(teardown.backup_dir) if teardown.backup_dir else None)
    if backup_dir is not None and not backup_dir.is_absolute():
        backup_dir = ws.root / backup_dir
    if pool is None:
        pool = CleanupPool(
            parallelism=parallelism,
            dry_run=opts.dry_run,
            backup_dir=backup_dir,
            attempts=teardown.delete_attempts,
            retry_delay=teardown.retry_delay,
            blocking_processes=teardown.blocking_processes,
            audit=audit,
        )

    for category in _selected_categories(opts, ws, result, confirm):
        targets = cleanup_targets.resolve(
            teardown.categories, [category], root=ws.root, home=home,
        )
        result.categories_run.append(category)
        result.cleanup.merge(pool.process_category(category, targets))
    result.cleanup.dry_run = opts.dry_run

    # ── 5. Host handoff ──────────────────────────────────────────
    if opts.full_reset:
        if opts.dry_run:
            logger.info("Full reset requested (dry-run); host script will not be generated")
        else:
            result.handoff = _handoff(ws, signaler)

    # ── Outcome ──────────────────────────────────────────────────
    if result.cleanup.residuals or result.destroy_failures or result.summary_anomaly:
        result.exit_code = ExitCode.RESIDUAL
        result.error = _failure_summary(result)
    elif not opts.dry_run:
        ws.state_store("setup").reset()
        ws.state_store("teardown").reset()
        result.state_cleared = True

    audit.emit(
        "uninstall.complete",
        "success" if result.ok else "failed",
        f"dry_run={int(opts.dry_run)}",
    )
    return result


def _destroy(
    ws: Workspace,
    opts: UninstallOptions,
    result: UninstallResult,
    coordinator: DestroyCoordinator | None,
    audit: AuditWriter,
) -> None:
    environments = discover_environments(ws.envs_root, ws.settings.teardown.environments)
    if coordinator is None:
        coordinator = DestroyCoordinator(dry_run=opts.dry_run, audit=audit)
    result.destroy_results = coordinator.destroy_all(environments)
    result.destroy_attempted = bool(result.destroy_results)

    if opts.dry_run:
        return
    try:
        result.summary_written = emit_summary(result.destroy_results, ws.summary_path)
    except OSError as e:
        msg = f"Could not write destroy summary {ws.summary_path}: {e}"
        logger.warning(msg)
        result.warnings.append(msg)
    result.summary_anomaly = summary_anomaly(ws.summary_path, result.destroy_attempted)


def _selected_categories(
    opts: UninstallOptions,
    ws: Workspace,
    result: UninstallResult,
    confirm: Confirm,
) -> list[str]:
    selected: list[str] = []
    configured = ws.settings.teardown.categories

    def take(category: str, enabled: bool) -> None:
        if category not in configured:
            return
        if enabled:
            selected.append(category)
        else:
            logger.info("%s cleanup skipped", category)
            result.categories_skipped.append(category)

    take(CleanupCategory.REPO, not opts.skip_repo)
    take(CleanupCategory.INFRA_LOCAL, not opts.skip_terraform_local)

    if CleanupCategory.HOME_CACHE in configured:
        if not opts.home_enabled:
            result.categories_skipped.append(CleanupCategory.HOME_CACHE)
        elif opts.force or opts.dry_run or confirm("Also remove cached state under your home directory?"):
            selected.append(CleanupCategory.HOME_CACHE)
        else:
            logger.info("Home cache cleanup skipped by user")
            result.categories_skipped.append(CleanupCategory.HOME_CACHE)

    known = {c.value for c in CleanupCategory}
    selected.extend(c for c in configured if c not in known)
    return [str(c) for c in selected]


def _handoff(ws: Workspace, signaler: HandoffSignaler | None) -> PollResult:
    handoff = ws.settings.handoff
    if signaler is None:
        signaler = HandoffSignaler(
            handoff.marker_path,
            launcher=handoff.launcher,
            poll_interval=handoff.poll_interval,
            timeout=handoff.timeout,
        )
    script = render_host_script(handoff.paths, handoff.packages, handoff.env_vars)
    try:
        return signaler.dispatch(script)
    except OSError as e:
        logger.warning("Could not write host script to %s: %s", signaler.marker_path, e)
        return PollResult(
            status=HandoffStatus.MANUAL_REQUIRED,
            marker_path=str(signaler.marker_path),
            error=str(e),
        )


def _failure_summary(result: UninstallResult) -> str:
    parts = []
    if result.cleanup.residuals:
        parts.append(f"{len(result.cleanup.residuals)} residual path(s)")
    if result.destroy_failures:
        names = ", ".join(r.environment for r in result.destroy_failures)
        parts.append(f"destroy failed for {names}")
    if result.summary_anomaly:
        parts.append(result.summary_anomaly)
    return "; ".join(parts)
