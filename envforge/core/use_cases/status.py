"""
Status use case — checkpoint state and the destroy summary.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path

from envforge.core.config.loader import ConfigError
from envforge.core.models.destroy import TerraformDestroyResult
from envforge.core.models.settings import Settings
from envforge.core.models.state import ExecutionState
from envforge.core.persistence.summary import load_summary
from envforge.core.use_cases.workspace import open_workspace

PIPELINES = ("setup", "teardown")


@dataclass
class StateResult:
    """Checkpoints of one pipeline, in configured step order."""

    pipeline: str = "setup"
    state_path: Path | None = None
    state: ExecutionState | None = None
    step_order: list[str] = field(default_factory=list)
    error: str | None = None

    def completed_steps(self) -> list[tuple[str, str]]:
        """``(key, timestamp)`` for completed steps; configured ones first."""
        if self.state is None:
            return []
        done = self.state.completed
        keys = [k for k in self.step_order if k in done]
        keys += sorted(k for k in done if k not in self.step_order)
        return [(k, done[k].timestamp) for k in keys]

    def pending_steps(self) -> list[str]:
        if self.state is None:
            return list(self.step_order)
        return [k for k in self.step_order if not self.state.is_done(k)]

    def to_dict(self) -> dict:
        result: dict = {"pipeline": self.pipeline}
        if self.error:
            result["error"] = self.error
            return result
        result["state_path"] = str(self.state_path) if self.state_path else None
        result["completed"] = [{"key": k, "timestamp": ts} for k, ts in self.completed_steps()]
        result["pending"] = self.pending_steps()
        result["last_failure"] = self.state.last_failure if self.state else None
        return result


@dataclass
class SummaryResult:
    """Contents of the destroy summary file."""

    path: Path | None = None
    entries: list[TerraformDestroyResult] | None = None
    error: str | None = None

    @property
    def present(self) -> bool:
        return self.entries is not None

    def to_dict(self) -> dict:
        result: dict = {"path": str(self.path) if self.path else None, "present": self.present}
        if self.error:
            result["error"] = self.error
        result["entries"] = [e.to_summary_entry() for e in self.entries or []]
        return result


def _step_order(settings: Settings, pipeline: str) -> list[str]:
    steps = settings.teardown.pre_steps if pipeline == "teardown" else settings.provisioning.steps
    return [s.key for s in steps]


def get_state(
    pipeline: str = "setup",
    config_path: Path | None = None,
    *,
    settings: Settings | None = None,
    project_root: Path | None = None,
) -> StateResult:
    """Load the checkpoint state for ``pipeline``."""
    result = StateResult(pipeline=pipeline)
    try:
        ws = open_workspace(config_path, settings, project_root)
    except ConfigError as e:
        result.error = str(e)
        return result

    store = ws.state_store(pipeline)
    result.state_path = store.path
    result.state = store.load()
    result.step_order = _step_order(ws.settings, pipeline)
    return result


def reset_state(
    pipeline: str = "setup",
    config_path: Path | None = None,
    *,
    settings: Settings | None = None,
    project_root: Path | None = None,
) -> StateResult:
    """Delete the state file and its backup for ``pipeline``."""
    result = StateResult(pipeline=pipeline)
    try:
        ws = open_workspace(config_path, settings, project_root)
    except ConfigError as e:
        result.error = str(e)
        return result

    store = ws.state_store(pipeline)
    store.reset()
    result.state_path = store.path
    result.state = ExecutionState()
    result.step_order = _step_order(ws.settings, pipeline)
    return result


def read_summary(
    config_path: Path | None = None,
    *,
    settings: Settings | None = None,
    project_root: Path | None = None,
) -> SummaryResult:
    """Read the destroy summary written by the last destructive teardown."""
    result = SummaryResult()
    try:
        ws = open_workspace(config_path, settings, project_root)
    except ConfigError as e:
        result.error = str(e)
        return result

    result.path = ws.summary_path
    try:
        result.entries = load_summary(ws.summary_path)
    except (OSError, ValueError, KeyError, json.JSONDecodeError) as e:
        result.error = f"Cannot read summary {ws.summary_path}: {e}"
    return result
