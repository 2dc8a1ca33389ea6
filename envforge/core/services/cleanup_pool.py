"""
Cleanup worker pool — bounded-parallel deletion, one category at a time.

Per category:

    1. backup   (destructive runs with a backup dir; failure = warning)
    2. delete   up to ``parallelism`` targets at once; a worker picks the
                next target as soon as it finishes its current one
    3. barrier  every target of the category has an outcome before the
                next category starts

A target that cannot be removed is retried a few times, terminating
known blocking processes between attempts, then recorded as a residual.
One residual never stops the rest of the pool.

Dry-run performs the same resolution and reporting with zero mutating
calls, and always runs sequentially.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import tarfile
import time
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from envforge.core.models.cleanup import (
    CleanupReport,
    CleanupTarget,
    TargetOutcome,
    TargetStatus,
)
from envforge.core.persistence.audit import AuditWriter
from envforge.core.services.backup_archive import create_category_backup
from envforge.core.services.cleanup_targets import group_by_category

logger = logging.getLogger(__name__)

Remover = Callable[[str], None]
Terminator = Callable[[Iterable[str]], None]


# ── Primitive operations ────────────────────────────────────────────


def remove_path(path: str) -> None:
    """Remove a file, symlink or directory tree."""
    if os.path.isdir(path) and not os.path.islink(path):
        shutil.rmtree(path)
    else:
        os.unlink(path)


def terminate_blocking_processes(names: Iterable[str]) -> None:
    """Best-effort ``pkill -x`` for each process name."""
    pkill = shutil.which("pkill")
    if pkill is None:
        return
    for name in names:
        try:
            subprocess.run(
                [pkill, "-x", name],
                capture_output=True,
                text=True,
                timeout=10,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.debug("pkill %s failed: %s", name, e)


# ── Pool ────────────────────────────────────────────────────────────


class CleanupPool:
    """Delete resolved targets with bounded parallelism.

    Args:
        parallelism: Max concurrent deletions within a category.
        dry_run: Report only; never touch the filesystem.
        backup_dir: Where to archive each category before deleting it.
        attempts: Deletion attempts per target before giving up.
        retry_delay: Seconds to wait between attempts.
        blocking_processes: Process names terminated between attempts.
        audit: Event ledger for per-target telemetry.
        remover: Deletion primitive (injectable for tests).
        terminator: Blocking-process killer (injectable for tests).
        sleep: Sleep function (injectable for tests).
    """

    def __init__(
        self,
        *,
        parallelism: int = 4,
        dry_run: bool = False,
        backup_dir: Path | None = None,
        attempts: int = 3,
        retry_delay: float = 1.0,
        blocking_processes: Iterable[str] = (),
        audit: AuditWriter | None = None,
        remover: Remover = remove_path,
        terminator: Terminator = terminate_blocking_processes,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if parallelism < 1:
            raise ValueError("parallelism must be >= 1")
        self.parallelism = parallelism
        self.dry_run = dry_run
        self.backup_dir = backup_dir
        self.attempts = max(1, attempts)
        self.retry_delay = retry_delay
        self.blocking_processes = list(blocking_processes)
        self._audit = audit or AuditWriter()
        self._remover = remover
        self._terminator = terminator
        self._sleep = sleep

    @property
    def sequential(self) -> bool:
        return self.dry_run or self.parallelism <= 1

    def process(self, targets: list[CleanupTarget]) -> CleanupReport:
        """Process every category in order, one barrier per category."""
        report = CleanupReport(dry_run=self.dry_run)
        for category, group in group_by_category(targets).items():
            report.merge(self.process_category(category, group))
        return report

    def process_category(self, category: str, targets: list[CleanupTarget]) -> CleanupReport:
        report = CleanupReport(dry_run=self.dry_run)
        if not targets:
            return report

        logger.info("Processing %s targets (%d)", category, len(targets))
        self._audit.emit(f"process.{category}", "begin", str(len(targets)))

        self._backup(category, targets, report)

        if self.sequential:
            report.outcomes.extend(self._handle(t) for t in targets)
        else:
            with ThreadPoolExecutor(
                max_workers=self.parallelism,
                thread_name_prefix=f"cleanup-{category}",
            ) as pool:
                # map() keeps report order stable regardless of completion order.
                report.outcomes.extend(pool.map(self._handle, targets))

        self._audit.emit(f"process.{category}", "end", str(len(targets)))
        return report

    # ── Internals ───────────────────────────────────────────────────

    def _backup(self, category: str, targets: list[CleanupTarget], report: CleanupReport) -> None:
        if self.backup_dir is None:
            return
        if self.dry_run:
            logger.info("Skipping backup for %s during dry-run", category)
            self._audit.emit("backup.skip", "dry-run", category)
            return
        try:
            archive = create_category_backup(category, targets, self.backup_dir)
        except (OSError, tarfile.TarError) as e:
            logger.warning("Backup for %s failed: %s", category, e)
            report.backup_failures.append(category)
            self._audit.emit(f"backup.{category}", "error", str(e))
            return
        if archive is not None:
            report.backups.append(archive)
            self._audit.emit(f"backup.{category}", "ok", archive.archive_path)

    def _handle(self, target: CleanupTarget) -> TargetOutcome:
        if self.dry_run:
            return self._preview(target)
        return self._delete(target)

    def _preview(self, target: CleanupTarget) -> TargetOutcome:
        present = os.path.lexists(target.path)
        status = TargetStatus.WOULD_REMOVE if present else TargetStatus.MISSING
        logger.info("[dry-run][%s] %s %s", target.category, status.value, target.path)
        self._audit.emit(
            f"dry-run.{target.category}", "present" if present else "missing", target.path,
        )
        return TargetOutcome(category=target.category, path=target.path, status=status)

    def _delete(self, target: CleanupTarget) -> TargetOutcome:
        if not os.path.lexists(target.path):
            logger.debug("Skipped [%s] %s (not found)", target.category, target.path)
            self._audit.emit(f"delete.{target.category}", "missing", target.path)
            return TargetOutcome(
                category=target.category, path=target.path, status=TargetStatus.MISSING,
            )

        error = ""
        for attempt in range(1, self.attempts + 1):
            try:
                self._remover(target.path)
            except FileNotFoundError:
                pass
            except OSError as e:
                error = str(e)
                logger.warning(
                    "Delete %s failed (attempt %d/%d): %s",
                    target.path, attempt, self.attempts, e,
                )
                if attempt < self.attempts:
                    self._terminator(self.blocking_processes)
                    self._sleep(self.retry_delay)
                continue

            logger.info("Removed [%s] %s", target.category, target.path)
            self._audit.emit(f"delete.{target.category}", "ok", target.path)
            return TargetOutcome(
                category=target.category,
                path=target.path,
                status=TargetStatus.REMOVED,
                attempts=attempt,
            )

        logger.error("Could not remove [%s] %s: %s", target.category, target.path, error)
        self._audit.emit(f"delete.{target.category}", "error", target.path)
        return TargetOutcome(
            category=target.category,
            path=target.path,
            status=TargetStatus.FAILED,
            attempts=self.attempts,
            error=error,
        )
