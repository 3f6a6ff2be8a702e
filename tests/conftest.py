"""
PF2e Character Engine - Test Configuration and Fixtures
Shared test utilities and fixtures for pytest.
"""
import pytest
from pathlib import Path
from typing import Any, Callable
import sys
import os

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from pf2e_engine.core.catalog import Catalog
from pf2e_engine.core.character import CharacterSnapshot, DerivedCharacter
from pf2e_engine.core.character_editor import CharacterEditor
from pf2e_engine.core.recalculation import recalculate
from pf2e_engine.core.rules_config import reset_rules_config
from pf2e_engine.services.catalog_loader import CatalogLoader

BUNDLED_CATALOG = Path(__file__).parent.parent / "pf2e_engine" / "data" / "catalog"


# ==================== Global State Fixtures ====================

@pytest.fixture(autouse=True)
def default_rules():
    """Every test starts from the default ruleset tables."""
    reset_rules_config()
    yield
    reset_rules_config()


# ==================== Catalog Fixtures ====================

@pytest.fixture
def catalog() -> Catalog:
    """The bundled sample catalog, loaded fresh."""
    CatalogLoader.reset()
    loader = CatalogLoader(BUNDLED_CATALOG)
    yield loader.get_catalog()
    CatalogLoader.reset()


@pytest.fixture
def editor(catalog) -> CharacterEditor:
    return CharacterEditor(catalog)


# ==================== Character Fixtures ====================

@pytest.fixture
def make_snapshot() -> Callable[..., CharacterSnapshot]:
    """Factory for snapshots: a level 1 human acolyte fighter unless overridden."""
    def _make(**overrides: Any) -> CharacterSnapshot:
        values = {
            "level": 1,
            "ancestry_id": "human",
            "background_id": "acolyte",
            "class_ids": ("fighter",),
        }
        values.update(overrides)
        return CharacterSnapshot(**values)
    return _make


@pytest.fixture
def derive(catalog) -> Callable[[CharacterSnapshot], DerivedCharacter]:
    """Recalculate a snapshot against the sample catalog."""
    def _derive(snapshot: CharacterSnapshot) -> DerivedCharacter:
        return recalculate(snapshot, catalog)
    return _derive


@pytest.fixture
def fighter(make_snapshot) -> CharacterSnapshot:
    return make_snapshot()


@pytest.fixture
def wizard(make_snapshot) -> CharacterSnapshot:
    return make_snapshot(class_ids=("wizard",))
