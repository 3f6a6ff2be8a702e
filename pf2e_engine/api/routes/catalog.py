"""
Catalog API Routes.

Read-only browsing of the loaded reference catalog.
"""
from fastapi import APIRouter, Query
from typing import Optional

from pf2e_engine.core.errors import NotFoundError
from pf2e_engine.services.catalog_loader import get_catalog

router = APIRouter()


def _feat_summary(entry) -> dict:
    return {
        "id": entry.id,
        "name": entry.name,
        "kind": entry.kind.value,
        "level": entry.level,
        "traits": sorted(entry.traits),
        "prerequisites": list(entry.prerequisites),
        "repeatable": entry.repeatable,
        "category": entry.category,
        "description": entry.description,
    }


@router.get("/feats")
async def list_feats(
    trait: Optional[str] = Query(None, description="Only feats carrying this trait"),
    max_level: Optional[int] = Query(None, ge=1, le=20, description="Highest feat level"),
):
    """List feats, optionally filtered by trait and maximum level."""
    catalog = get_catalog()
    feats = catalog.feats_by_trait(trait) if trait else catalog.get_feats()
    if max_level is not None:
        feats = [f for f in feats if f.level <= max_level]
    feats = sorted(feats, key=lambda f: (f.level, f.name))
    return {
        "feats": [_feat_summary(f) for f in feats],
        "count": len(feats),
    }


@router.get("/feats/{feat_id}")
async def get_feat(feat_id: str):
    """Get one feat or class feature by ID."""
    entry = get_catalog().get_entry(feat_id)
    if entry is None:
        raise NotFoundError("Feat", feat_id)
    return _feat_summary(entry)


@router.get("/classes")
async def list_classes():
    """List classes with their specializations."""
    catalog = get_catalog()
    return {
        "classes": [
            {
                "id": c.id,
                "name": c.name,
                "hit_points": c.hit_points,
                "key_ability": list(c.key_ability),
                "specializations": [
                    {"id": s.id, "name": s.name, "category": s.category}
                    for s in catalog.get_specializations(c.id)
                ],
            }
            for c in catalog.get_classes()
        ]
    }


@router.get("/ancestries")
async def list_ancestries():
    """List ancestries with their heritages."""
    catalog = get_catalog()
    return {
        "ancestries": [
            {
                "id": a.id,
                "name": a.name,
                "hit_points": a.hit_points,
                "boosts": list(a.boosts),
                "flaws": list(a.flaws),
                "heritages": [
                    {"id": h.id, "name": h.name}
                    for h in catalog.get_heritages(a.id)
                ],
            }
            for a in catalog.get_ancestries()
        ]
    }
