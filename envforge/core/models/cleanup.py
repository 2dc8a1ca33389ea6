"""
Cleanup models — targets, per-target outcomes, backups, the report.

Targets are computed fresh on every teardown run and never persisted.
Dry-run and destructive runs produce the same report shape, so the two
can be diffed target by target.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class CleanupCategory(StrEnum):
    """Known target groups, processed in this order."""

    REPO = "repo"
    INFRA_LOCAL = "infra-local"
    HOME_CACHE = "home-cache"


CATEGORY_ORDER: tuple[str, ...] = tuple(c.value for c in CleanupCategory)


class CleanupTarget(BaseModel):
    """A concrete filesystem path that teardown should remove."""

    category: str
    path: str
    exists: bool = False


class TargetStatus(StrEnum):
    """What happened (or would happen) to a target."""

    REMOVED = "removed"
    WOULD_REMOVE = "would-remove"
    MISSING = "missing"
    FAILED = "failed"


class TargetOutcome(BaseModel):
    """Per-target line of the cleanup report."""

    category: str
    path: str
    status: TargetStatus
    attempts: int = 0
    error: str | None = None

    @property
    def residual(self) -> bool:
        return self.status == TargetStatus.FAILED


class BackupArchive(BaseModel):
    """A compressed snapshot of one category, taken before deletion."""

    category: str
    archive_path: str
    created_at: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    files: int = 0


class CleanupReport(BaseModel):
    """Aggregate result of one pool run."""

    dry_run: bool = False
    outcomes: list[TargetOutcome] = Field(default_factory=list)
    backups: list[BackupArchive] = Field(default_factory=list)
    backup_failures: list[str] = Field(default_factory=list)

    @property
    def residuals(self) -> list[TargetOutcome]:
        """Targets that could not be removed."""
        return [o for o in self.outcomes if o.residual]

    @property
    def ok(self) -> bool:
        return not self.residuals

    def by_category(self) -> dict[str, list[TargetOutcome]]:
        grouped: dict[str, list[TargetOutcome]] = {}
        for outcome in self.outcomes:
            grouped.setdefault(outcome.category, []).append(outcome)
        return grouped

    def pairs(self) -> list[tuple[str, str]]:
        """(category, path) for every reported target, in report order."""
        return [(o.category, o.path) for o in self.outcomes]

    def count(self, status: TargetStatus) -> int:
        return sum(1 for o in self.outcomes if o.status == status)

    def merge(self, other: CleanupReport) -> None:
        """Fold another category's report into this one."""
        self.outcomes.extend(other.outcomes)
        self.backups.extend(other.backups)
        self.backup_failures.extend(other.backup_failures)

    def to_dict(self) -> dict[str, Any]:
        return {
            "dry_run": self.dry_run,
            "ok": self.ok,
            "targets": [o.model_dump(mode="json") for o in self.outcomes],
            "backups": [b.model_dump(mode="json") for b in self.backups],
            "backup_failures": list(self.backup_failures),
            "residuals": [o.path for o in self.residuals],
        }
