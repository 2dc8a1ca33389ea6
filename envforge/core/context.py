"""
Repository context — which checkout envforge is operating on.

Set ONCE at startup by the CLI (or by a test fixture); every use case
resolves state files, the summary file and cleanup targets against it.

    - CLI:    main.py  → context.set_project_root(root)
    - Tests:  conftest → context.set_project_root(tmp_path)
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional


_project_root: Optional[Path] = None


def set_project_root(root: Path) -> None:
    """Register the repository root for the current process."""
    global _project_root
    _project_root = root


def get_project_root() -> Optional[Path]:
    """Return the repository root, or None if not yet set."""
    return _project_root


def require_project_root() -> Path:
    """The repository root, falling back to the current directory."""
    return _project_root or Path.cwd().resolve()
