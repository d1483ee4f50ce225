"""
Category configuration.

Loads categories.yaml to decide which work unit attributes show up as
registry columns for each category. If no config file exists, returns
defaults.

Example categories.yaml:

    categories:
      Connector:
        columns: [platform, apiType, authMethod]
      StorageComponent:
        columns: [storageBackend]
      Experiment:
        columns: [hypothesis]

Categories are an open set: a unit may use a category that is not listed
here, in which case all of its attributes are shown.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from trackd.lib.constants import CATEGORIES_FILE, DEFAULT_CATEGORIES

logger = logging.getLogger(__name__)


DEFAULT_CATEGORY_COLUMNS = {
    "Feature": [],
    "BugFix": [],
    "Connector": ["platform", "apiType", "authMethod"],
    "StorageComponent": ["storageBackend"],
}


@dataclass
class CategoriesConfig:
    """Category -> registry column configuration."""
    columns: dict[str, list[str]] = field(
        default_factory=lambda: {k: list(v) for k, v in DEFAULT_CATEGORY_COLUMNS.items()}
    )

    @property
    def known(self) -> list[str]:
        names = list(DEFAULT_CATEGORIES)
        names.extend(c for c in self.columns if c not in names)
        return names

    def columns_for(self, category: str) -> list[str] | None:
        """Configured columns, or None when the category shows everything."""
        cols = self.columns.get(category)
        return list(cols) if cols else None

    def registry_details(self, category: str, attributes: dict) -> dict[str, str]:
        """Select and stringify the attributes shown in the registry."""
        cols = self.columns_for(category)
        keys = cols if cols is not None else sorted(attributes)
        return {k: _stringify(attributes[k]) for k in keys if k in attributes and attributes[k] is not None}


def _stringify(value) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def load_categories_config(root: Path | None) -> CategoriesConfig:
    """Load categories.yaml from the tracker root, falling back to defaults."""
    if root is None:
        return CategoriesConfig()

    config_path = root / CATEGORIES_FILE
    if not config_path.exists():
        return CategoriesConfig()

    try:
        data = yaml.safe_load(config_path.read_text(encoding="utf-8"))
        config = CategoriesConfig()
        if data and "categories" in data:
            for name, spec in (data["categories"] or {}).items():
                cols = (spec or {}).get("columns", []) if isinstance(spec, dict) else []
                config.columns[str(name)] = [str(c) for c in cols or []]
        return config
    except (yaml.YAMLError, AttributeError, TypeError) as e:
        logger.warning(f"Failed to parse {config_path}: {e}")
        return CategoriesConfig()
