"""
Action and Receipt models — the contract at the external boundary.

An Action names a unit of work owned by an external collaborator (a
package manager, a cloud CLI, a provisioning script). A Receipt is what
comes back: an outcome plus captured text. The engine branches only on
the outcome; captured text is kept for diagnostics.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class Action(BaseModel):
    """An opaque unit of work, dispatched through the adapter registry."""

    id: str                         # stable key
    name: str = ""                  # human-readable name
    adapter: str = "shell"          # which adapter handles this
    params: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def shell(cls, action_id: str, command: str, **params: Any) -> Action:
        """Build a shell-command action."""
        return cls(
            id=action_id,
            name=action_id,
            adapter="shell",
            params={"command": command, **params},
        )

    @property
    def command(self) -> str:
        return str(self.params.get("command", ""))


class Receipt(BaseModel):
    """Outcome of an action.

    Adapters never raise; a failure is a Receipt with status='failed'
    and whatever text the collaborator produced.
    """

    adapter: str
    action_id: str
    status: Literal["ok", "skipped", "failed"] = "ok"

    started_at: str = Field(default_factory=_now_iso)
    duration_ms: int = 0
    exit_code: int | None = None

    output: str = ""
    error: str | None = None

    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        """Whether the action succeeded."""
        return self.status == "ok"

    @property
    def failed(self) -> bool:
        """Whether the action failed."""
        return self.status == "failed"

    @property
    def diagnostic(self) -> str:
        """Best single-line explanation of the outcome."""
        text = self.error or self.output or ""
        lines = [line for line in text.strip().splitlines() if line.strip()]
        if not lines:
            if self.exit_code is not None:
                return f"exit status {self.exit_code}"
            return self.status
        return lines[-1].strip()

    @classmethod
    def success(
        cls,
        adapter: str,
        action_id: str,
        output: str = "",
        **kwargs: Any,
    ) -> Receipt:
        """Create a success receipt."""
        return cls(
            adapter=adapter,
            action_id=action_id,
            status="ok",
            output=output,
            **kwargs,
        )

    @classmethod
    def failure(
        cls,
        adapter: str,
        action_id: str,
        error: str,
        **kwargs: Any,
    ) -> Receipt:
        """Create a failure receipt."""
        return cls(
            adapter=adapter,
            action_id=action_id,
            status="failed",
            error=error,
            **kwargs,
        )

    @classmethod
    def skip(
        cls,
        adapter: str,
        action_id: str,
        reason: str = "",
        **kwargs: Any,
    ) -> Receipt:
        """Create a skip receipt."""
        return cls(
            adapter=adapter,
            action_id=action_id,
            status="skipped",
            output=reason,
            **kwargs,
        )
