"""
Destroy summary — the JSON handoff to reporting steps.

The summary is a JSON array of ``{environment, status, backend,
message}`` objects, in the order environments were processed. Another
process (possibly on another machine) copies it for final verification.

An empty result list never produces ``[]``: a stale file is removed
instead, because "no environment attempted" must not read as "zero
environments, all fine".
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path

from envforge.core.models.destroy import DestroyStatus, TerraformDestroyResult

logger = logging.getLogger(__name__)

DEFAULT_SUMMARY_FILE = "uninstall-terraform-summary.json"


def emit_summary(results: list[TerraformDestroyResult], path: Path) -> bool:
    """Write ``results`` to ``path``.

    Returns:
        True if a summary file was written, False if none exists now.
    """
    if not results:
        if path.exists():
            path.unlink()
            logger.info("No destroy results; removed stale summary %s", path)
        return False

    path.parent.mkdir(parents=True, exist_ok=True)
    content = json.dumps([r.to_summary_entry() for r in results], indent=2) + "\n"

    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".summary_", suffix=".tmp")
    tmp = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(content)
        os.replace(tmp, path)
    except Exception:
        tmp.unlink(missing_ok=True)
        raise

    logger.info("Summary written to %s (%d environments)", path, len(results))
    return True


def load_summary(path: Path) -> list[TerraformDestroyResult] | None:
    """Read a summary file back. Returns None if it does not exist."""
    if not path.is_file():
        return None
    data = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, list):
        raise ValueError(f"Summary {path} is not a JSON array")
    return [
        TerraformDestroyResult(
            environment=item["environment"],
            status=DestroyStatus(item["status"]),
            backend_kind=item.get("backend", "unknown"),
            message=item.get("message", ""),
        )
        for item in data
    ]


def summary_anomaly(path: Path, destroy_attempted: bool) -> str | None:
    """Describe a missing summary after a destructive destroy pass.

    Returns None when the file is present or destruction was skipped.
    """
    if not destroy_attempted or path.is_file():
        return None
    return f"Destroy ran but no summary was written at {path}"
