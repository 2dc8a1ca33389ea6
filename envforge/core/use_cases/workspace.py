"""
Workspace — settings + repository root, shared by every use case.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from envforge.core import context
from envforge.core.config.loader import find_config_file, load_settings, project_root
from envforge.core.models.settings import Settings
from envforge.core.persistence.audit import DEFAULT_AUDIT_FILE, AuditWriter
from envforge.core.persistence.state_file import StateStore, default_state_path

logger = logging.getLogger(__name__)


@dataclass
class Workspace:
    """Everything a use case needs to know about the checkout."""

    settings: Settings
    root: Path
    config_path: Path | None = None

    def state_store(self, pipeline: str = "setup") -> StateStore:
        return StateStore(default_state_path(self.root, pipeline, self.settings.state_dir))

    @property
    def summary_path(self) -> Path:
        path = Path(self.settings.teardown.summary_file)
        return path if path.is_absolute() else self.root / path

    @property
    def envs_root(self) -> Path:
        path = Path(self.settings.teardown.terraform_envs_root)
        return path if path.is_absolute() else self.root / path

    def audit(self, echo: Callable[[str], None] | None = None) -> AuditWriter:
        return AuditWriter(self.root / self.settings.state_dir / DEFAULT_AUDIT_FILE, echo=echo)


def open_workspace(
    config_path: Path | None = None,
    settings: Settings | None = None,
    root: Path | None = None,
) -> Workspace:
    """Resolve settings and root.

    Explicit ``settings``/``root`` win (tests, embedding); otherwise the
    config file is located and loaded. Raises ConfigError.
    """
    if settings is None:
        if config_path is None:
            config_path = find_config_file(root)
        settings = load_settings(config_path) if config_path else Settings()

    if root is None:
        if config_path is not None:
            root = project_root(config_path)
        else:
            root = context.require_project_root()

    logger.debug("Workspace root: %s (config: %s)", root, config_path or "defaults")
    return Workspace(settings=settings, root=root, config_path=config_path)
