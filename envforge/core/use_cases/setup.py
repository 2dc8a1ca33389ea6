"""
Setup use case — run the provisioning pipeline with checkpoints.

Loads settings, builds the step list, and hands it to the execution
engine against the setup state file. A rerun resumes from the first
incomplete step; ``reset`` starts over.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from envforge.adapters.registry import AdapterRegistry, default_registry
from envforge.core.config.loader import ConfigError
from envforge.core.engine.executor import ExecutionEngine, ExecutionReport
from envforge.core.engine.exit_codes import ExitCode
from envforge.core.engine.recovery import RecoveryPolicy, build_ladder
from envforge.core.models.settings import Settings
from envforge.core.persistence.audit import AuditWriter
from envforge.core.use_cases.workspace import open_workspace

logger = logging.getLogger(__name__)


@dataclass
class SetupResult:
    """Result of a setup run."""

    report: ExecutionReport | None = None
    project_root: Path | None = None
    state_path: Path | None = None
    exit_code: ExitCode = ExitCode.SUCCESS
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.exit_code == ExitCode.SUCCESS

    def to_dict(self) -> dict:
        result: dict = {"exit_code": int(self.exit_code)}
        if self.error:
            result["error"] = self.error
        if self.project_root:
            result["project_root"] = str(self.project_root)
        if self.state_path:
            result["state_path"] = str(self.state_path)
        if self.report:
            result["report"] = self.report.to_dict()
        return result


def run_setup(
    config_path: Path | None = None,
    *,
    reset: bool = False,
    mock_mode: bool = False,
    registry: AdapterRegistry | None = None,
    settings: Settings | None = None,
    project_root: Path | None = None,
    audit: AuditWriter | None = None,
) -> SetupResult:
    """Run (or resume) the provisioning pipeline.

    Args:
        config_path: Optional explicit envforge.yml.
        reset: Clear the setup state first so every step re-runs.
        mock_mode: Every action succeeds without side effects.
        registry: Optional pre-configured adapter registry.
        settings / project_root: Bypass config discovery.
        audit: Optional event ledger (default: the workspace ledger).

    Returns:
        SetupResult with the engine report.
    """
    result = SetupResult()

    # ── Load settings ────────────────────────────────────────────
    try:
        ws = open_workspace(config_path, settings, project_root)
        steps = ws.settings.provisioning_steps()
    except (ConfigError, ValueError) as e:
        result.error = str(e)
        result.exit_code = ExitCode.CONFIG_ERROR
        return result

    result.project_root = ws.root

    # ── Wire the engine ──────────────────────────────────────────
    if registry is None:
        registry = default_registry(str(ws.root), mock_mode=mock_mode)

    store = ws.state_store("setup")
    result.state_path = store.path
    engine = ExecutionEngine(
        store,
        registry,
        RecoveryPolicy(registry, build_ladder(ws.settings.verification.remediation)),
        audit=audit or ws.audit(),
        pipeline="setup",
    )

    # ── Execute ──────────────────────────────────────────────────
    try:
        report = engine.execute(steps, reset=reset)
    except ValueError as e:
        result.error = str(e)
        result.exit_code = ExitCode.CONFIG_ERROR
        return result

    result.report = report
    result.exit_code = report.exit_code
    if not report.ok:
        failed = next((o for o in report.outcomes if o.key == report.failed_step), None)
        result.error = f"{failed.label} failed: {failed.message}" if failed else "setup failed"
    return result
