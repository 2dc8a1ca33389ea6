"""
Cleanup target resolution — config patterns → concrete paths.

Each category maps to a list of path patterns. Resolution expands
``{root}`` / ``{home}`` placeholders, ``~`` and ``$VARS``, then globs.
A pattern without glob characters always yields exactly one target,
existing or not, so dry-run can report it as missing; a glob that
matches nothing yields nothing.
"""

from __future__ import annotations

import glob
import logging
import os
from collections.abc import Iterable
from pathlib import Path

from envforge.core.models.cleanup import CATEGORY_ORDER, CleanupTarget

logger = logging.getLogger(__name__)

_GLOB_CHARS = frozenset("*?[")


def _has_glob(pattern: str) -> bool:
    return any(ch in pattern for ch in _GLOB_CHARS)


def _exists(path: str) -> bool:
    # Dangling symlinks are still removable targets.
    return os.path.lexists(path)


def expand_pattern(pattern: str, root: Path, home: Path) -> list[str]:
    """Expand one configured pattern into zero or more absolute paths."""
    text = pattern.replace("{root}", str(root)).replace("{home}", str(home))
    text = os.path.expandvars(os.path.expanduser(text))
    if not os.path.isabs(text):
        text = str(root / text)

    if not _has_glob(text):
        return [os.path.normpath(text)]

    return sorted(os.path.normpath(p) for p in glob.glob(text))


def resolve(
    categories_config: dict[str, list[str]],
    categories: Iterable[str] | None = None,
    *,
    root: Path,
    home: Path | None = None,
) -> list[CleanupTarget]:
    """Resolve the selected categories into an ordered target list.

    Args:
        categories_config: ``category -> [pattern, ...]`` from settings.
        categories: Categories to include (default: all configured).
            Known categories are returned in their canonical order;
            any others follow in the order given.
        root: Repository root (``{root}`` and relative patterns).
        home: Home directory (``{home}``), default ``Path.home()``.

    Returns:
        Targets grouped by category, de-duplicated within each category.
    """
    home = home or Path.home()
    selected = list(categories) if categories is not None else list(categories_config)

    ordered = [c for c in CATEGORY_ORDER if c in selected]
    ordered += [c for c in selected if c not in ordered]

    targets: list[CleanupTarget] = []
    for category in ordered:
        patterns = categories_config.get(category)
        if patterns is None:
            logger.warning("Unknown cleanup category: %s", category)
            continue
        seen: set[str] = set()
        for pattern in patterns:
            for path in expand_pattern(pattern, root, home):
                if path in seen:
                    continue
                seen.add(path)
                targets.append(CleanupTarget(category=category, path=path, exists=_exists(path)))

    logger.debug("Resolved %d cleanup targets across %s", len(targets), ordered)
    return targets


def group_by_category(targets: list[CleanupTarget]) -> dict[str, list[CleanupTarget]]:
    """``category -> targets`` preserving first-seen category order."""
    grouped: dict[str, list[CleanupTarget]] = {}
    for target in targets:
        grouped.setdefault(target.category, []).append(target)
    return grouped
