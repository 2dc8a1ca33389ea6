"""
Event ledger — append-only NDJSON record of pipeline events.

Every phase start/end, backup, per-target deletion and destroy call
appends one line. With telemetry enabled the same line is echoed to
stdout so an outer harness can stream it.

The ledger is append-only: entries are never modified or deleted.
"""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

# Default ledger location (relative to the repository root)
DEFAULT_AUDIT_DIR = ".state"
DEFAULT_AUDIT_FILE = "events.ndjson"


class AuditEntry(BaseModel):
    """A single ledger entry."""

    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    event: str = ""
    status: str = ""
    detail: str = ""


class AuditWriter:
    """Append-only ledger writer, safe to call from cleanup workers.

    Args:
        path: Ledger file. ``None`` keeps events in memory only.
        echo: Optional sink that receives each serialized line
            (the CLI passes ``click.echo`` when --telemetry is set).
    """

    def __init__(
        self,
        path: Path | None = None,
        echo: Callable[[str], None] | None = None,
    ):
        self._path = path
        self._echo = echo
        self._lock = threading.Lock()
        self._memory: list[AuditEntry] = []

    @property
    def path(self) -> Path | None:
        return self._path

    def emit(self, event: str, status: str, detail: str = "") -> AuditEntry:
        """Record an event and return the entry."""
        entry = AuditEntry(event=event, status=status, detail=detail)
        self.write(entry)
        return entry

    def write(self, entry: AuditEntry) -> None:
        """Append an entry to the ledger."""
        line = json.dumps(entry.model_dump(mode="json"), ensure_ascii=False)
        with self._lock:
            self._memory.append(entry)
            if self._path is not None:
                try:
                    self._path.parent.mkdir(parents=True, exist_ok=True)
                    with open(self._path, "a", encoding="utf-8") as f:
                        f.write(line + "\n")
                except OSError as e:
                    # The ledger may live inside a directory being cleaned up.
                    logger.debug("Cannot append to ledger %s: %s", self._path, e)
            if self._echo is not None:
                self._echo(line)

    @property
    def entries(self) -> list[AuditEntry]:
        """Entries written through this writer instance."""
        return list(self._memory)

    def read_all(self) -> list[AuditEntry]:
        """Read every entry from the ledger file, skipping corrupt lines."""
        if self._path is None or not self._path.is_file():
            return []

        entries: list[AuditEntry] = []
        for lineno, line in enumerate(
            self._path.read_text(encoding="utf-8").splitlines(), start=1
        ):
            line = line.strip()
            if not line:
                continue
            try:
                entries.append(AuditEntry.model_validate(json.loads(line)))
            except (json.JSONDecodeError, ValueError) as e:
                logger.warning("Skipping corrupt ledger line %d: %s", lineno, e)
        return entries

    def read_recent(self, n: int = 10) -> list[AuditEntry]:
        """Read the last ``n`` entries."""
        return self.read_all()[-n:]
