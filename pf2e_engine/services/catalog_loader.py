"""
PF2e Catalog Loader.

Singleton service that loads the reference catalog (feats, class features,
classes, ancestries, heritages, backgrounds, specializations, skills) from
JSON files once and hands out a read-only Catalog.
"""
import json
import logging
from pathlib import Path
from typing import Dict, List, Optional, Any

from pf2e_engine.core.catalog import Catalog

logger = logging.getLogger("pf2e_engine.catalog")

# Top-level keys whose lists are merged across files
CATALOG_SECTIONS = (
    "skills",
    "ancestries",
    "heritages",
    "backgrounds",
    "classes",
    "specializations",
    "class_features",
    "feats",
)


class CatalogLoader:
    """Loads and caches the PF2e catalog from a directory of JSON files."""

    _instance: Optional['CatalogLoader'] = None
    _initialized: bool = False

    _data_path: Optional[Path] = None
    _catalog: Optional[Catalog] = None
    _raw: Dict[str, List[Dict]] = {}

    def __new__(cls, data_path: Optional[Path] = None) -> 'CatalogLoader':
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self, data_path: Optional[Path] = None):
        if not self._initialized:
            CatalogLoader._data_path = Path(data_path) if data_path else self._default_data_path()
            self._load_all_data()
            CatalogLoader._initialized = True

    @classmethod
    def get_instance(cls, data_path: Optional[Path] = None) -> 'CatalogLoader':
        """Get the singleton instance."""
        if cls._instance is None:
            cls._instance = cls(data_path)
        return cls._instance

    @classmethod
    def reset(cls):
        """Reset the singleton (useful for testing)."""
        cls._instance = None
        cls._initialized = False
        cls._data_path = None
        cls._catalog = None
        cls._raw = {}

    def _default_data_path(self) -> Path:
        """Configured CATALOG_PATH, or the catalog bundled with the package."""
        from pf2e_engine.config import get_settings
        configured = get_settings().CATALOG_PATH
        if configured:
            return Path(configured)
        return Path(__file__).parent.parent / "data" / "catalog"

    def _load_json_file(self, filepath: Path) -> Optional[Dict]:
        """Load a single JSON file; malformed files are logged and skipped."""
        try:
            with open(filepath, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.error(f"Error loading {filepath}: {e}")
            return None
        if not isinstance(data, dict):
            logger.error(f"Skipping {filepath}: expected a JSON object at the top level")
            return None
        return data

    def _load_all_data(self):
        """Merge every *.json file in the data directory into one catalog."""
        raw: Dict[str, List[Dict]] = {section: [] for section in CATALOG_SECTIONS}
        data_path = CatalogLoader._data_path

        if not data_path.exists():
            logger.warning(f"Catalog directory not found: {data_path}")
        else:
            for filepath in sorted(data_path.glob("*.json")):
                data = self._load_json_file(filepath)
                if data is None:
                    continue
                for section in CATALOG_SECTIONS:
                    items = data.get(section, [])
                    if isinstance(items, list):
                        raw[section].extend(items)
                    else:
                        logger.error(f"Skipping '{section}' in {filepath}: expected a list")

        CatalogLoader._raw = raw
        try:
            CatalogLoader._catalog = Catalog.from_dict(raw)
        except (KeyError, ValueError, TypeError) as e:
            logger.error(f"Catalog data in {data_path} is malformed: {e}")
            CatalogLoader._catalog = Catalog()

        catalog = CatalogLoader._catalog
        logger.info(
            f"Loaded catalog from {data_path}: {len(catalog.get_feats())} feats, "
            f"{len(catalog.get_classes())} classes, {len(catalog.get_ancestries())} ancestries"
        )

    # ==================== Accessors ====================

    @property
    def data_path(self) -> Path:
        return CatalogLoader._data_path

    def get_catalog(self) -> Catalog:
        return CatalogLoader._catalog

    def get_raw(self, section: str) -> List[Dict[str, Any]]:
        """Raw entries of one section, as loaded."""
        return list(CatalogLoader._raw.get(section, []))


# Convenience functions to get the singleton
def get_catalog_loader() -> CatalogLoader:
    """Get the CatalogLoader singleton instance."""
    return CatalogLoader.get_instance()


def get_catalog() -> Catalog:
    return get_catalog_loader().get_catalog()
