"""
Services package for the PF2e Character Engine.

Provides the catalog loader.
"""

from .catalog_loader import CatalogLoader, get_catalog_loader, get_catalog

__all__ = [
    'CatalogLoader',
    'get_catalog_loader',
    'get_catalog',
]
