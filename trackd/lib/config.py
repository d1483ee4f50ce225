"""
Configuration loaders for trackd.

Loads tracker configuration from <root>/trackd.env and categories.yaml,
resolves the tracker root, and manages the current work unit context.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from . import envparse
from .atomic import atomic_write_text
from .categories import CategoriesConfig, load_categories_config
from .constants import (
    CONFIG_FILE,
    ISSUED_IDS_FILE,
    REGISTRY_FILE,
    ROOT_DIR_NAME,
    ROOT_ENV_VAR,
    TRACKS_DIR,
)

logger = logging.getLogger(__name__)

DEFAULT_STALE_PLANNING_DAYS = 7
DEFAULT_NEXT_TASKS_LIMIT = 3
DEFAULT_CATEGORY = "Feature"


@dataclass
class TrackerConfig:
    """Tracker configuration from trackd.env"""
    root: Path
    stale_planning_days: int = DEFAULT_STALE_PLANNING_DAYS
    next_tasks_limit: int = DEFAULT_NEXT_TASKS_LIMIT
    default_category: str = DEFAULT_CATEGORY
    repo_path: Path | None = None  # git repo inspected by revert; defaults to root's parent
    categories: CategoriesConfig = field(default_factory=CategoriesConfig)

    @property
    def tracks_dir(self) -> Path:
        return self.root / TRACKS_DIR

    @property
    def registry_path(self) -> Path:
        return self.root / REGISTRY_FILE

    @property
    def issued_ids_path(self) -> Path:
        return self.root / ISSUED_IDS_FILE

    @property
    def git_repo(self) -> Path:
        return self.repo_path if self.repo_path is not None else self.root.parent


def _int_setting(env: dict, key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning(f"Invalid {key} '{raw}' in {CONFIG_FILE}, using default {default}")
        return default
    if value < 0:
        logger.warning(f"Negative {key} '{raw}' in {CONFIG_FILE}, using default {default}")
        return default
    return value


def load_config(root: Path) -> TrackerConfig:
    """Load trackd.env (optional) and categories.yaml (optional) for a root.

    Raises:
        ValueError: if trackd.env has invalid syntax
    """
    root = Path(root)
    env_path = root / CONFIG_FILE
    env = envparse.load_env(env_path) if env_path.exists() else {}

    repo_path = env.get("REPO_PATH")
    return TrackerConfig(
        root=root,
        stale_planning_days=_int_setting(env, "STALE_PLANNING_DAYS", DEFAULT_STALE_PLANNING_DAYS),
        next_tasks_limit=_int_setting(env, "NEXT_TASKS_LIMIT", DEFAULT_NEXT_TASKS_LIMIT),
        default_category=env.get("DEFAULT_CATEGORY", DEFAULT_CATEGORY) or DEFAULT_CATEGORY,
        repo_path=Path(repo_path).expanduser() if repo_path else None,
        categories=load_categories_config(root),
    )


def resolve_root(explicit: str | None = None, cwd: Path | None = None) -> Path:
    """Find the tracker root.

    Order: explicit path, TRACKD_ROOT, nearest .trackd walking up from cwd,
    then <cwd>/.trackd (which may not exist yet).
    """
    if explicit:
        return Path(explicit).expanduser().resolve()

    env_root = os.getenv(ROOT_ENV_VAR)
    if env_root:
        return Path(env_root).expanduser().resolve()

    start = (cwd or Path.cwd()).resolve()
    for base in [start, *start.parents]:
        candidate = base / ROOT_DIR_NAME
        if candidate.is_dir():
            return candidate
    return start / ROOT_DIR_NAME


def _context_file(root: Path) -> Path:
    return root / "config" / "current_track"


def get_current_work_unit(root: Path) -> str | None:
    """Get the current work unit ID from context, or None if not set.

    Auto-clears stale context if the work unit no longer exists.
    """
    context_file = _context_file(root)
    if context_file.exists():
        unit_id = context_file.read_text(encoding="utf-8").strip()
        if unit_id:
            if (root / TRACKS_DIR / unit_id).is_dir():
                return unit_id
            logger.info(f"Clearing stale work unit context '{unit_id}'")
            context_file.unlink()
    return None


def set_current_work_unit(root: Path, unit_id: str) -> None:
    """Set the current work unit context."""
    atomic_write_text(_context_file(root), unit_id + "\n")


def clear_current_work_unit(root: Path) -> None:
    """Clear the current work unit context."""
    context_file = _context_file(root)
    if context_file.exists():
        context_file.unlink()
