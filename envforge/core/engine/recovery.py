"""
Recovery policy — remediation ladders for verification steps.

A verification step (lint, type-check, tests) that fails is not given
up on immediately. Between attempts the policy runs one remediation
picked by ``(category, attempt)``:

    attempt 0   reinstall dependencies from the lockfile
    attempt 1   category-specific:
                    lint      → automatic lint/format fixes
                    e2e       → reinstall browser automation deps
                    otherwise → clear build caches
    attempt 2   purge the dependency store and force a clean reinstall

The ladder is data (``RemediationLadder``), so a new category is one
more mapping entry. If a remediation itself fails the policy aborts
without spending another verification attempt.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from envforge.adapters.registry import AdapterRegistry
from envforge.core.engine.exit_codes import ExitCode
from envforge.core.models.action import Action, Receipt
from envforge.core.models.settings import RemediationSettings
from envforge.core.models.step import RecoveryCategory, infer_category

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Remediation:
    """One rung of a ladder."""

    key: str
    label: str
    action: Action


@dataclass
class RemediationLadder:
    """``category -> [remediation per attempt]`` with a shared fallback."""

    rungs: dict[RecoveryCategory, list[Remediation]] = field(default_factory=dict)
    default: list[Remediation] = field(default_factory=list)

    def select(self, category: RecoveryCategory, attempt: int) -> Remediation | None:
        """Remediation to run after failed attempt number ``attempt``."""
        ladder = self.rungs.get(category, self.default)
        if 0 <= attempt < len(ladder):
            return ladder[attempt]
        return None

    def depth(self, category: RecoveryCategory) -> int:
        return len(self.rungs.get(category, self.default))


def build_ladder(settings: RemediationSettings | None = None) -> RemediationLadder:
    """The stock ladder, with commands taken from ``settings``."""
    settings = settings or RemediationSettings()

    def rung(key: str, label: str, command: str) -> Remediation:
        return Remediation(
            key=key,
            label=label,
            action=Action.shell(f"remediate:{key}", command, timeout=settings.timeout),
        )

    reinstall = rung("reinstall-locked", "Reinstall dependencies from lockfile", settings.reinstall_locked)
    autofix = rung("lint-autofix", "Apply automatic lint fixes", settings.lint_autofix)
    browsers = rung("browser-deps", "Reinstall browser automation dependencies", settings.browser_deps)
    cache = rung("clear-build-cache", "Clear build cache", settings.clear_build_cache)
    purge = rung("purge-reinstall", "Purge dependency store and reinstall", settings.purge_and_reinstall)

    return RemediationLadder(
        rungs={
            RecoveryCategory.LINT: [reinstall, autofix, purge],
            RecoveryCategory.E2E: [reinstall, browsers, purge],
        },
        default=[reinstall, cache, purge],
    )


@dataclass
class VerificationResult:
    """What happened while verifying one step."""

    label: str
    exit_code: ExitCode = ExitCode.SUCCESS
    attempts: int = 0
    remediations: list[str] = field(default_factory=list)
    receipt: Receipt | None = None
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == ExitCode.SUCCESS


class RecoveryPolicy:
    """Retry a verification action, remediating between attempts.

    Args:
        registry: Dispatcher for both the verification and remediation actions.
        ladder: Remediation ladder (default: ``build_ladder()``).
    """

    def __init__(self, registry: AdapterRegistry, ladder: RemediationLadder | None = None):
        self._registry = registry
        self._ladder = ladder or build_ladder()

    @property
    def ladder(self) -> RemediationLadder:
        return self._ladder

    def verify(self, label: str, command: Action, max_retries: int) -> ExitCode:
        """Run ``command`` with up to ``max_retries`` remediated retries."""
        return self.attempt(label, command, max_retries).exit_code

    def attempt(
        self,
        label: str,
        command: Action,
        max_retries: int,
        category: RecoveryCategory | None = None,
    ) -> VerificationResult:
        """Like ``verify`` but returns the full result."""
        category = category or infer_category(label)
        result = VerificationResult(label=label)
        attempt = 0

        while True:
            result.attempts += 1
            receipt = self._registry.execute(command)
            result.receipt = receipt
            if receipt.ok:
                if attempt:
                    logger.info("%s passed after %d retries", label, attempt)
                result.exit_code = ExitCode.SUCCESS
                return result

            logger.warning("%s failed (attempt %d): %s", label, attempt + 1, receipt.diagnostic)

            if attempt >= max_retries:
                result.exit_code = ExitCode.VERIFICATION_FAILED
                result.message = (
                    f"{label} still failing after {max_retries} retries: {receipt.diagnostic}"
                )
                logger.error(result.message)
                return result

            remediation = self._ladder.select(category, attempt)
            if remediation is not None:
                logger.warning("Remediation for %s: %s", label, remediation.label)
                fix = self._registry.execute(remediation.action)
                result.remediations.append(remediation.key)
                if not fix.ok:
                    result.exit_code = ExitCode.REMEDIATION_FAILED
                    result.receipt = fix
                    result.message = (
                        f"Remediation '{remediation.label}' for {label} failed: {fix.diagnostic}"
                    )
                    logger.error(result.message)
                    return result

            attempt += 1
