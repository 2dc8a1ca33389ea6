"""
Step definitions — the ordered units of a pipeline.

A pipeline is a plain list of StepDefinition. Order is total: there is
no dependency graph, step N+1 runs only after step N is done.
"""

from __future__ import annotations

import re
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, field_validator

from envforge.core.models.action import Action

# Step keys end up as keys in the state file (`step.<key>=<timestamp>`).
_STEP_KEY_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")


class StepKeyError(ValueError):
    """Raised when a step key cannot be stored in the state file."""


class StepKind(StrEnum):
    """How the engine treats a failing step."""

    PROVISION = "provision"   # fail the run immediately
    VERIFY = "verify"         # retry through the recovery policy


class RecoveryCategory(StrEnum):
    """Which remediation ladder applies to a verification step."""

    LINT = "lint"
    TYPECHECK = "typecheck"
    UNIT = "unit"
    E2E = "e2e"
    GENERIC = "generic"


_CATEGORY_HINTS: tuple[tuple[RecoveryCategory, tuple[str, ...]], ...] = (
    (RecoveryCategory.E2E, ("e2e", "playwright", "end-to-end", "browser")),
    (RecoveryCategory.TYPECHECK, ("type-check", "typecheck", "type check", "tsc", "mypy")),
    (RecoveryCategory.LINT, ("lint", "format", "eslint", "ruff")),
    (RecoveryCategory.UNIT, ("unit", "test")),
)


def infer_category(label: str) -> RecoveryCategory:
    """Guess a recovery category from a step label."""
    lowered = label.lower()
    for category, hints in _CATEGORY_HINTS:
        if any(hint in lowered for hint in hints):
            return category
    return RecoveryCategory.GENERIC


def validate_step_key(key: str) -> str:
    """Return ``key`` if it is storable, else raise StepKeyError."""
    if not _STEP_KEY_RE.match(key):
        raise StepKeyError(
            f"Invalid step key {key!r}: use letters, digits, '.', '_' or '-'"
        )
    return key


class StepDefinition(BaseModel):
    """One named step of a pipeline. Immutable once built."""

    model_config = ConfigDict(frozen=True)

    key: str
    label: str
    action: Action
    kind: StepKind = StepKind.PROVISION
    category: RecoveryCategory | None = None
    max_retries: int = 3

    @field_validator("key")
    @classmethod
    def _check_key(cls, value: str) -> str:
        return validate_step_key(value)

    @property
    def recovery_category(self) -> RecoveryCategory:
        """Explicit category, or one inferred from the label."""
        return self.category or infer_category(self.label)
