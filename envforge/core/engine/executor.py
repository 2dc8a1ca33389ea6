"""
Engine executor — checkpointed, fail-fast step execution.

The engine walks an ordered list of steps against a state store:

    for each step:
        already completed?  → skip, no action
        provision step      → run once; failure aborts the run
        verify step         → run through the recovery policy
        success             → mark done, persist immediately

A failure persists a ``last_failure`` diagnostic before returning, so
the next invocation can announce it and resume from the failed step.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import StrEnum

from envforge.adapters.registry import AdapterRegistry
from envforge.core.engine.exit_codes import ExitCode
from envforge.core.engine.recovery import RecoveryPolicy
from envforge.core.models.step import StepDefinition, StepKind
from envforge.core.persistence.audit import AuditWriter
from envforge.core.persistence.state_file import StateStore

logger = logging.getLogger(__name__)


class StepStatus(StrEnum):
    DONE = "done"
    SKIPPED = "skipped"
    FAILED = "failed"
    PENDING = "pending"


@dataclass
class StepOutcome:
    """One line of the run report."""

    key: str
    label: str
    status: StepStatus
    message: str = ""
    output: str = ""
    attempts: int = 0
    duration_ms: int = 0

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "label": self.label,
            "status": self.status.value,
            "message": self.message,
            "attempts": self.attempts,
            "duration_ms": self.duration_ms,
        }


@dataclass
class ExecutionReport:
    """Result of one engine run."""

    pipeline: str = "setup"
    outcomes: list[StepOutcome] = field(default_factory=list)
    exit_code: ExitCode = ExitCode.SUCCESS
    previous_failure: str | None = None
    failed_step: str | None = None

    @property
    def ok(self) -> bool:
        return self.exit_code == ExitCode.SUCCESS

    @property
    def executed(self) -> list[str]:
        """Keys whose action ran this time (done or failed)."""
        return [
            o.key for o in self.outcomes if o.status in (StepStatus.DONE, StepStatus.FAILED)
        ]

    def count(self, status: StepStatus) -> int:
        return sum(1 for o in self.outcomes if o.status == status)

    @property
    def status(self) -> str:
        if self.ok:
            return "ok"
        if self.count(StepStatus.DONE) or self.count(StepStatus.SKIPPED):
            return "partial"
        return "failed"

    def to_dict(self) -> dict:
        return {
            "pipeline": self.pipeline,
            "status": self.status,
            "exit_code": int(self.exit_code),
            "previous_failure": self.previous_failure,
            "failed_step": self.failed_step,
            "done": self.count(StepStatus.DONE),
            "skipped": self.count(StepStatus.SKIPPED),
            "failed": self.count(StepStatus.FAILED),
            "steps": [o.to_dict() for o in self.outcomes],
        }


class ExecutionEngine:
    """Run a pipeline of steps with checkpoints.

    Args:
        store: Where ExecutionState is loaded from and persisted to.
        registry: Adapter registry that executes step actions.
        recovery: Policy for verify-kind steps (default: stock ladder).
        audit: Optional event ledger.
        pipeline: Name used in logs and events.
    """

    def __init__(
        self,
        store: StateStore,
        registry: AdapterRegistry,
        recovery: RecoveryPolicy | None = None,
        audit: AuditWriter | None = None,
        pipeline: str = "setup",
    ):
        self._store = store
        self._registry = registry
        self._recovery = recovery or RecoveryPolicy(registry)
        self._audit = audit
        self._pipeline = pipeline

    @property
    def store(self) -> StateStore:
        return self._store

    def reset(self) -> None:
        """Forget every checkpoint so the next run re-executes everything."""
        logger.info("Resetting %s state (%s)", self._pipeline, self._store.path)
        self._store.reset()

    def run(self, steps: list[StepDefinition]) -> ExitCode:
        """Execute ``steps`` in order and return the exit code."""
        return self.execute(steps).exit_code

    def execute(self, steps: list[StepDefinition], reset: bool = False) -> ExecutionReport:
        """Execute ``steps`` in order and return the full report."""
        _check_unique_keys(steps)
        if reset:
            self.reset()

        state = self._store.load()
        report = ExecutionReport(pipeline=self._pipeline, previous_failure=state.last_failure)
        if state.last_failure:
            logger.warning("Previous attempt failed: %s", state.last_failure)

        self._event("pipeline.start", "begin", f"{len(steps)} steps")

        for index, step in enumerate(steps):
            if state.is_done(step.key):
                logger.info("%s skipped (already completed)", step.label)
                report.outcomes.append(
                    StepOutcome(
                        key=step.key,
                        label=step.label,
                        status=StepStatus.SKIPPED,
                        message="already completed",
                    )
                )
                continue

            logger.info("Starting %s...", step.label)
            outcome, exit_code = self._run_step(step)
            report.outcomes.append(outcome)

            if exit_code != ExitCode.SUCCESS:
                failure = state.record_failure(step.label, outcome.message)
                self._store.save(state)
                self._event(f"step.{step.key}", "failed", outcome.message)
                logger.error("%s failed: %s", step.label, outcome.message)
                for pending in steps[index + 1:]:
                    report.outcomes.append(
                        StepOutcome(key=pending.key, label=pending.label, status=StepStatus.PENDING)
                    )
                report.exit_code = exit_code
                report.failed_step = step.key
                logger.debug("Recorded failure: %s", failure)
                self._event("pipeline.end", "failed", step.key)
                return report

            state.mark_done(step.key)
            self._store.save(state)
            self._event(f"step.{step.key}", "done")
            logger.info("Completed %s.", step.label)

        if state.last_failure is not None:
            state.clear_failure()
            self._store.save(state)

        self._event("pipeline.end", "ok")
        return report

    def _run_step(self, step: StepDefinition) -> tuple[StepOutcome, ExitCode]:
        if step.kind == StepKind.VERIFY:
            result = self._recovery.attempt(
                step.label, step.action, step.max_retries, category=step.recovery_category
            )
            receipt = result.receipt
            outcome = StepOutcome(
                key=step.key,
                label=step.label,
                status=StepStatus.DONE if result.ok else StepStatus.FAILED,
                message=result.message or (receipt.diagnostic if receipt and not result.ok else ""),
                output=(receipt.error or receipt.output) if receipt else "",
                attempts=result.attempts,
                duration_ms=receipt.duration_ms if receipt else 0,
            )
            return outcome, result.exit_code

        receipt = self._registry.execute(step.action)
        outcome = StepOutcome(
            key=step.key,
            label=step.label,
            status=StepStatus.DONE if receipt.ok else StepStatus.FAILED,
            message="" if receipt.ok else receipt.diagnostic,
            output=receipt.output if receipt.ok else (receipt.error or receipt.output),
            attempts=1,
            duration_ms=receipt.duration_ms,
        )
        return outcome, ExitCode.SUCCESS if receipt.ok else ExitCode.STEP_FAILED

    def _event(self, event: str, status: str, detail: str = "") -> None:
        if self._audit is not None:
            self._audit.emit(f"{self._pipeline}.{event}", status, detail)


def _check_unique_keys(steps: list[StepDefinition]) -> None:
    seen: set[str] = set()
    for step in steps:
        if step.key in seen:
            raise ValueError(f"Duplicate step key: {step.key!r}")
        seen.add(step.key)
