"""
ExecutionState — which steps completed, and what failed last.

Owned by the execution engine. It is mutated only after an action
reports success (or, for ``last_failure``, right before a run aborts)
and is persisted after every mutation by the state store.
"""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel, Field


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class CompletionRecord(BaseModel):
    """Proof that a step finished."""

    timestamp: str = Field(default_factory=_now_iso)


class ExecutionState(BaseModel):
    """Checkpoint state for one pipeline instance."""

    completed: dict[str, CompletionRecord] = Field(default_factory=dict)
    last_failure: str | None = None

    @property
    def is_empty(self) -> bool:
        return not self.completed and self.last_failure is None

    def is_done(self, key: str) -> bool:
        return key in self.completed

    def mark_done(self, key: str) -> CompletionRecord:
        """Record that ``key`` completed now."""
        record = CompletionRecord()
        self.completed[key] = record
        return record

    def record_failure(self, label: str, message: str) -> str:
        """Store a one-line diagnostic for the failed step."""
        detail = " ".join(message.split()) or "no output"
        self.last_failure = f"{_now_iso()} {label}: {detail}"
        return self.last_failure

    def clear_failure(self) -> None:
        self.last_failure = None
