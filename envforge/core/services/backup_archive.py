"""Backup archiver — snapshot a cleanup category before deleting it."""

from __future__ import annotations

import io
import json
import logging
import os
import tarfile
from datetime import UTC, datetime
from pathlib import Path

from envforge.core.models.cleanup import BackupArchive, CleanupTarget

logger = logging.getLogger(__name__)

MANIFEST_NAME = "backup_manifest.json"


def archive_name(category: str, now: datetime | None = None) -> str:
    """``<category>-YYYYmmdd-HHMMSS.tar.gz``"""
    now = now or datetime.now(UTC)
    return f"{category}-{now.strftime('%Y%m%d-%H%M%S')}.tar.gz"


def _arcname(path: str) -> str:
    return path.lstrip(os.sep) or path


def create_category_backup(
    category: str,
    targets: list[CleanupTarget],
    backup_dir: Path,
) -> BackupArchive | None:
    """Archive every currently-existing target of ``category``.

    Returns the archive record, or None when there was nothing to back
    up. Raises OSError / tarfile.TarError on failure; the caller decides
    that a failed backup never blocks deletion.
    """
    present = [t.path for t in targets if os.path.lexists(t.path)]
    if not present:
        logger.debug("Nothing to back up for %s", category)
        return None

    backup_dir.mkdir(parents=True, exist_ok=True)
    now = datetime.now(UTC)
    archive_path = backup_dir / archive_name(category, now)

    manifest = {
        "format_version": 1,
        "created_at": now.isoformat(),
        "category": category,
        "paths": present,
    }

    files = 0
    try:
        with tarfile.open(archive_path, "w:gz") as tar:
            manifest_bytes = json.dumps(manifest, indent=2).encode("utf-8")
            info = tarfile.TarInfo(name=MANIFEST_NAME)
            info.size = len(manifest_bytes)
            info.mtime = int(now.timestamp())
            tar.addfile(info, io.BytesIO(manifest_bytes))

            for path in present:
                tar.add(path, arcname=_arcname(path))
                files += 1
    except (OSError, tarfile.TarError):
        # Never leave a truncated archive behind.
        archive_path.unlink(missing_ok=True)
        raise

    logger.info("Backup created: %s (%d paths)", archive_path, files)
    return BackupArchive(
        category=category,
        archive_path=str(archive_path),
        created_at=now.isoformat(),
        files=files,
    )


def read_manifest(archive_path: Path) -> dict | None:
    """Manifest embedded in an archive, or None if absent/unreadable."""
    try:
        with tarfile.open(archive_path, "r:gz") as tar:
            member = tar.extractfile(MANIFEST_NAME)
            if member is None:
                return None
            return json.loads(member.read().decode("utf-8"))
    except (OSError, KeyError, tarfile.TarError, json.JSONDecodeError):
        return None
