"""
Tests for the execution engine — skip rule, checkpoints, fail-fast, reset.
"""

from pathlib import Path

import pytest

from envforge.adapters.mock import MockAdapter
from envforge.adapters.registry import AdapterRegistry
from envforge.core.engine.executor import ExecutionEngine, StepStatus
from envforge.core.engine.exit_codes import ExitCode
from envforge.core.engine.recovery import RecoveryPolicy, RemediationLadder
from envforge.core.models.action import Action
from envforge.core.models.step import StepDefinition, StepKind
from envforge.core.persistence.audit import AuditWriter
from envforge.core.persistence.state_file import StateStore


def _step(key: str, kind: StepKind = StepKind.PROVISION, **kwargs) -> StepDefinition:
    return StepDefinition(
        key=key,
        label=kwargs.pop("label", key.title()),
        action=Action.shell(key, f"echo {key}"),
        kind=kind,
        **kwargs,
    )


STEPS = [_step(k) for k in ("one", "two", "three", "four", "five")]


@pytest.fixture
def store(tmp_state_dir: Path) -> StateStore:
    return StateStore(tmp_state_dir / "setup.state")


@pytest.fixture
def engine(store: StateStore, registry: AdapterRegistry) -> ExecutionEngine:
    return ExecutionEngine(store, registry)


class TestRun:
    def test_all_steps_run_in_order(self, engine, mock_adapter: MockAdapter):
        assert engine.run(STEPS) == ExitCode.SUCCESS
        assert mock_adapter.called_ids == ["one", "two", "three", "four", "five"]

    def test_each_success_is_persisted(self, engine, store, mock_adapter):
        mock_adapter.set_failure("three")
        engine.run(STEPS)
        assert set(store.load().completed) == {"one", "two"}

    def test_failure_aborts_and_records_diagnostic(self, engine, store, mock_adapter):
        mock_adapter.set_failure("two", error="npm ERR! network\nconnection reset")
        report = engine.execute(STEPS)

        assert report.exit_code == ExitCode.STEP_FAILED
        assert report.failed_step == "two"
        assert mock_adapter.called_ids == ["one", "two"]
        failure = store.load().last_failure
        assert failure is not None
        assert "Two: connection reset" in failure

    def test_pending_steps_reported_after_failure(self, engine, mock_adapter):
        mock_adapter.set_failure("two")
        report = engine.execute(STEPS)
        statuses = [o.status for o in report.outcomes]
        assert statuses == [
            StepStatus.DONE, StepStatus.FAILED,
            StepStatus.PENDING, StepStatus.PENDING, StepStatus.PENDING,
        ]
        assert report.status == "partial"

    def test_duplicate_keys_rejected(self, engine):
        with pytest.raises(ValueError, match="Duplicate"):
            engine.run([_step("a"), _step("a")])


class TestIdempotence:
    def test_second_run_performs_no_actions(self, engine, mock_adapter):
        assert engine.run(STEPS) == ExitCode.SUCCESS
        mock_adapter.reset()

        report = engine.execute(STEPS)
        assert report.ok
        assert mock_adapter.call_count == 0
        assert all(o.status == StepStatus.SKIPPED for o in report.outcomes)


class TestResumability:
    def test_resumes_from_failed_step(self, engine, mock_adapter):
        mock_adapter.set_failure("three", times=1)
        assert engine.run(STEPS) == ExitCode.STEP_FAILED
        mock_adapter.call_log.clear()

        assert engine.run(STEPS) == ExitCode.SUCCESS
        assert mock_adapter.called_ids == ["three", "four", "five"]

    def test_previous_failure_announced_then_cleared(self, engine, store, mock_adapter):
        mock_adapter.set_failure("two", times=1)
        engine.run(STEPS)

        report = engine.execute(STEPS)
        assert report.previous_failure is not None
        assert "Two" in report.previous_failure
        assert store.load().last_failure is None

    def test_fresh_engine_instance_resumes(self, store, registry, mock_adapter):
        mock_adapter.set_failure("four", times=1)
        ExecutionEngine(store, registry).run(STEPS)
        mock_adapter.call_log.clear()

        ExecutionEngine(store, registry).run(STEPS)
        assert mock_adapter.called_ids == ["four", "five"]


class TestReset:
    def test_reset_reexecutes_everything(self, engine, mock_adapter):
        engine.run(STEPS)
        mock_adapter.reset()

        report = engine.execute(STEPS, reset=True)
        assert report.ok
        assert mock_adapter.called_ids == ["one", "two", "three", "four", "five"]


class TestVerifySteps:
    def test_verify_step_uses_recovery_policy(self, store, registry, mock_adapter):
        ladder = RemediationLadder(default=[])
        engine = ExecutionEngine(store, registry, RecoveryPolicy(registry, ladder))
        mock_adapter.set_failure("lint", times=2)

        steps = [_step("lint", StepKind.VERIFY, max_retries=3)]
        report = engine.execute(steps)

        assert report.ok
        assert mock_adapter.calls_for("lint") == 3
        assert report.outcomes[0].attempts == 3

    def test_exhausted_verify_step_fails_run(self, store, registry, mock_adapter):
        engine = ExecutionEngine(store, registry, RecoveryPolicy(registry, RemediationLadder()))
        mock_adapter.set_failure("lint")

        steps = [_step("lint", StepKind.VERIFY, max_retries=1), _step("after")]
        report = engine.execute(steps)

        assert report.exit_code == ExitCode.VERIFICATION_FAILED
        assert "after" not in mock_adapter.called_ids
        assert store.load().last_failure is not None

    def test_provision_step_is_not_retried(self, engine, mock_adapter):
        mock_adapter.set_failure("one", times=1)
        assert engine.run(STEPS) == ExitCode.STEP_FAILED
        assert mock_adapter.calls_for("one") == 1


class TestEvents:
    def test_step_events_written(self, store, registry, mock_adapter):
        audit = AuditWriter()
        ExecutionEngine(store, registry, audit=audit).run(STEPS[:2])
        events = [(e.event, e.status) for e in audit.entries]
        assert ("setup.step.one", "done") in events
        assert events[-1] == ("setup.pipeline.end", "ok")
