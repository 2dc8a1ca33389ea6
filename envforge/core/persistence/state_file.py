"""
State file persistence — checksummed key/value checkpoints.

Format (text, UTF-8)::

    # checksum=<sha256 of the body>
    last_failure=<one line>
    step.onboarding=2026-01-01T00:00:00+00:00
    step.toolchain=2026-01-01T00:00:00+00:00

The body is the sorted ``key=value`` lines. Writes go through a temp
file in the same directory and an atomic rename; the result is then
copied over a sibling ``.bak`` file. On load, a checksum mismatch (or an
unparseable body) discards the primary and falls back to the backup
once. If neither is usable, the state is empty and every step reruns.

Single writer per state path. No locking.
"""

from __future__ import annotations

import hashlib
import logging
import os
import shutil
import tempfile
from pathlib import Path

from envforge.core.models.state import CompletionRecord, ExecutionState

logger = logging.getLogger(__name__)

# Default state files (relative to the repository root)
DEFAULT_STATE_DIR = ".state"
SETUP_STATE_FILE = "setup.state"
TEARDOWN_STATE_FILE = "teardown.state"

CHECKSUM_PREFIX = "# checksum="
_STEP_PREFIX = "step."
_LAST_FAILURE_KEY = "last_failure"


class StateCorruptError(Exception):
    """The state file body does not match its checksum or cannot be parsed."""


def default_state_path(project_root: Path, pipeline: str = "setup", state_dir: str = DEFAULT_STATE_DIR) -> Path:
    """Get the state file path for a pipeline ('setup' or 'teardown')."""
    filename = TEARDOWN_STATE_FILE if pipeline == "teardown" else SETUP_STATE_FILE
    return project_root / state_dir / filename


def compute_checksum(body: bytes) -> str:
    return hashlib.sha256(body).hexdigest()


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace("\n", "\\n").replace("\r", "\\r")


def _unescape(value: str) -> str:
    out: list[str] = []
    chars = iter(value)
    for ch in chars:
        if ch != "\\":
            out.append(ch)
            continue
        nxt = next(chars, "")
        out.append({"n": "\n", "r": "\r", "\\": "\\"}.get(nxt, nxt))
    return "".join(out)


def serialize_body(state: ExecutionState) -> bytes:
    """Render the sorted ``key=value`` body for ``state``."""
    entries: dict[str, str] = {
        f"{_STEP_PREFIX}{key}": record.timestamp for key, record in state.completed.items()
    }
    if state.last_failure is not None:
        entries[_LAST_FAILURE_KEY] = state.last_failure
    lines = [f"{key}={_escape(entries[key])}\n" for key in sorted(entries)]
    return "".join(lines).encode("utf-8")


def parse_body(body: str) -> ExecutionState:
    """Parse a state body. Raises StateCorruptError on malformed lines."""
    state = ExecutionState()
    for lineno, line in enumerate(body.splitlines(), start=1):
        if not line.strip() or line.startswith("#"):
            continue
        key, sep, value = line.partition("=")
        if not sep or not key:
            raise StateCorruptError(f"line {lineno}: expected key=value")
        value = _unescape(value)
        if key.startswith(_STEP_PREFIX) and len(key) > len(_STEP_PREFIX):
            state.completed[key[len(_STEP_PREFIX):]] = CompletionRecord(timestamp=value)
        elif key == _LAST_FAILURE_KEY:
            state.last_failure = value
        else:
            logger.debug("Ignoring unknown state key %r", key)
    return state


def decode_state_file(raw: bytes) -> ExecutionState:
    """Verify and parse the full file contents (header + body)."""
    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise StateCorruptError(f"not UTF-8: {e}") from e

    first, sep, rest = text.partition("\n")
    if first.startswith(CHECKSUM_PREFIX):
        expected = first[len(CHECKSUM_PREFIX):].strip()
        body = rest if sep else ""
        actual = compute_checksum(body.encode("utf-8"))
        if actual != expected:
            raise StateCorruptError(f"checksum mismatch (expected {expected[:12]}, got {actual[:12]})")
        return parse_body(body)

    # No header: accepted as written by hand or by an older version.
    return parse_body(text)


class StateStore:
    """Durable ExecutionState for one pipeline instance.

    Args:
        path: Primary state file.
        backup_path: Backup slot (default: ``<path>.bak``).
    """

    def __init__(self, path: Path, backup_path: Path | None = None):
        self._path = path
        self._backup_path = backup_path or path.with_name(path.name + ".bak")

    @property
    def path(self) -> Path:
        return self._path

    @property
    def backup_path(self) -> Path:
        return self._backup_path

    def load(self) -> ExecutionState:
        """Load state, recovering once from the backup if needed."""
        return self._load(self._path, allow_fallback=True)

    def _load(self, path: Path, allow_fallback: bool) -> ExecutionState:
        if path.is_file():
            try:
                state = decode_state_file(path.read_bytes())
                logger.debug("Loaded state from %s (%d completed)", path, len(state.completed))
                return state
            except StateCorruptError as e:
                logger.warning("State corruption detected in %s: %s", path, e)
                if allow_fallback:
                    path.unlink(missing_ok=True)
            except OSError as e:
                logger.warning("Cannot read state file %s: %s", path, e)
        elif allow_fallback:
            logger.info("No state file at %s", path)

        if allow_fallback and self._backup_path.is_file():
            logger.warning("Recovering state from backup %s", self._backup_path)
            return self._load(self._backup_path, allow_fallback=False)

        if not allow_fallback:
            logger.warning("Backup %s unusable — starting fresh", path)
        return ExecutionState()

    def save(self, state: ExecutionState) -> None:
        """Persist ``state`` atomically, then refresh the backup slot."""
        self._path.parent.mkdir(parents=True, exist_ok=True)

        body = serialize_body(state)
        fd, tmp_name = tempfile.mkstemp(
            dir=self._path.parent,
            prefix=".state_",
            suffix=".tmp",
        )
        tmp = Path(tmp_name)
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(body)
            # Checksum over the exact bytes written, then prepend the header.
            checksum = compute_checksum(tmp.read_bytes())
            with open(tmp, "wb") as fh:
                fh.write(f"{CHECKSUM_PREFIX}{checksum}\n".encode("utf-8"))
                fh.write(body)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp, self._path)
        except Exception:
            tmp.unlink(missing_ok=True)
            logger.error("Failed to save state to %s", self._path)
            raise

        shutil.copyfile(self._path, self._backup_path)
        logger.debug("State saved to %s", self._path)

    def reset(self) -> None:
        """Remove the state file and its backup."""
        for path in (self._path, self._backup_path):
            if path.exists():
                path.unlink()
                logger.info("Removed %s", path)
