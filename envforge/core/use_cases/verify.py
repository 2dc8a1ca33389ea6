"""
Verify use case — lint, type-check and tests with automatic remediation.

Unlike setup this is not checkpointed: every invocation runs the whole
suite, fail-fast, each step through the recovery policy.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from envforge.adapters.registry import AdapterRegistry, default_registry
from envforge.core.config.loader import ConfigError
from envforge.core.engine.exit_codes import ExitCode
from envforge.core.engine.recovery import RecoveryPolicy, VerificationResult, build_ladder
from envforge.core.models.settings import Settings
from envforge.core.models.step import RecoveryCategory
from envforge.core.use_cases.workspace import open_workspace

logger = logging.getLogger(__name__)


@dataclass
class VerifyResult:
    """Result of a verification run."""

    results: list[VerificationResult] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    exit_code: ExitCode = ExitCode.SUCCESS
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.exit_code == ExitCode.SUCCESS

    def to_dict(self) -> dict:
        result: dict = {"exit_code": int(self.exit_code), "ok": self.ok}
        if self.error:
            result["error"] = self.error
        result["steps"] = [
            {
                "label": r.label,
                "ok": r.ok,
                "attempts": r.attempts,
                "remediations": list(r.remediations),
                "message": r.message,
            }
            for r in self.results
        ]
        result["skipped"] = list(self.skipped)
        return result


def run_verify(
    config_path: Path | None = None,
    *,
    skip_unit: bool = False,
    skip_e2e: bool = False,
    max_retries: int | None = None,
    registry: AdapterRegistry | None = None,
    settings: Settings | None = None,
    project_root: Path | None = None,
) -> VerifyResult:
    """Run the verification suite.

    Args:
        config_path: Optional explicit envforge.yml.
        skip_unit: Leave out unit-test steps.
        skip_e2e: Leave out end-to-end steps.
        max_retries: Override every step's retry ceiling.
        registry: Optional pre-configured adapter registry.
        settings / project_root: Bypass config discovery.
    """
    result = VerifyResult()

    try:
        ws = open_workspace(config_path, settings, project_root)
        steps = ws.settings.verification_steps()
    except (ConfigError, ValueError) as e:
        result.error = str(e)
        result.exit_code = ExitCode.CONFIG_ERROR
        return result

    if registry is None:
        registry = default_registry(str(ws.root))
    policy = RecoveryPolicy(registry, build_ladder(ws.settings.verification.remediation))

    excluded = set()
    if skip_unit:
        excluded.add(RecoveryCategory.UNIT)
    if skip_e2e:
        excluded.add(RecoveryCategory.E2E)

    for step in steps:
        if step.recovery_category in excluded:
            logger.info("%s skipped by request", step.label)
            result.skipped.append(step.label)
            continue

        retries = max_retries if max_retries is not None else step.max_retries
        logger.info("Verifying %s...", step.label)
        outcome = policy.attempt(step.label, step.action, retries, category=step.recovery_category)
        result.results.append(outcome)
        if not outcome.ok:
            result.exit_code = outcome.exit_code
            result.error = outcome.message
            return result

    return result
