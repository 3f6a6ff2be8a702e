"""
Character API Routes.

Stateless adapter over the character editor: every request carries the
snapshot, every response returns the next snapshot and its derived
character. Rejected edits become 409 responses with the structured error
body.
"""
import logging
from fastapi import APIRouter
from typing import Dict, Any

from pf2e_engine.core.character import CharacterSnapshot, Selection
from pf2e_engine.core.character_editor import CharacterEditor, EditResult
from pf2e_engine.core.errors import (
    ErrorCode,
    IllegalCommitError,
    NotFoundError,
    ValidationError,
)
from pf2e_engine.core.feat_choices import is_free_text
from pf2e_engine.core.prerequisites import evaluate
from pf2e_engine.models.requests import (
    SnapshotRequest,
    SelectRequest,
    RemoveRequest,
    AbilityBoostRequest,
    ChoicesRequest,
    OptionsRequest,
    PrerequisiteRequest,
    AvailableFeatsRequest,
    EditResponse,
)
from pf2e_engine.services.catalog_loader import get_catalog

logger = logging.getLogger("pf2e_engine.api")

router = APIRouter()


def _editor() -> CharacterEditor:
    return CharacterEditor(get_catalog())


def _respond(result: EditResult) -> Dict[str, Any]:
    """Turn an EditResult into a response body, raising for rejections."""
    if not result.valid:
        rejection = result.rejection
        if rejection.code == ErrorCode.VALIDATION_ERROR:
            raise ValidationError(
                field=rejection.details.get("field", "request"),
                message=rejection.reason,
            )
        logger.warning(f"Rejected edit ({rejection.code.value}): {rejection.reason}")
        raise IllegalCommitError(rejection)

    return {
        "valid": True,
        "snapshot": result.snapshot.to_dict(),
        "derived": result.derived.to_dict(),
        "warnings": [w.to_dict() for w in result.warnings],
    }


def _require_entry(catalog_id: str):
    entry = get_catalog().get_entry(catalog_id)
    if entry is None:
        raise NotFoundError("Catalog entry", catalog_id)
    return entry


# =============================================================================
# Recalculation and edits
# =============================================================================

@router.post("/recalculate")
async def recalculate_character(request: SnapshotRequest):
    """Rebuild the derived character from a snapshot."""
    snapshot = CharacterSnapshot.from_dict(request.snapshot)
    derived = _editor().recalculate(snapshot)
    return {
        "snapshot": derived.snapshot.to_dict(),
        "derived": derived.to_dict(),
        "warnings": [w.to_dict() for w in derived.warnings],
    }


@router.post("/select", response_model=EditResponse)
async def select_entry(request: SelectRequest):
    """Commit a selection; 409 when it is illegal."""
    snapshot = CharacterSnapshot.from_dict(request.snapshot)
    selection = Selection(
        catalog_id=request.catalog_id,
        level=request.level,
        source=request.source,
        slot_type=request.slot_type,
        choices=dict(request.choices),
    )
    return _respond(_editor().select(snapshot, selection))


@router.post("/remove", response_model=EditResponse)
async def remove_entry(request: RemoveRequest):
    """Remove a selection and everything it granted."""
    snapshot = CharacterSnapshot.from_dict(request.snapshot)
    return _respond(_editor().remove(snapshot, request.catalog_id))


@router.post("/ability-boosts", response_model=EditResponse)
async def apply_ability_boosts(request: AbilityBoostRequest):
    """Assign the boosts of one level."""
    snapshot = CharacterSnapshot.from_dict(request.snapshot)
    return _respond(_editor().apply_ability_boosts(snapshot, request.level, request.boosts))


# =============================================================================
# Choices and prerequisites
# =============================================================================

@router.post("/choices")
async def pending_choices(request: ChoicesRequest):
    """Choice slots the player must resolve for an entry."""
    entry = _require_entry(request.catalog_id)
    snapshot = CharacterSnapshot.from_dict(request.snapshot)
    specs = _editor().pending_choices(snapshot, entry.id)
    return {
        "catalog_id": entry.id,
        "choices": [
            {
                "flag": spec.flag,
                "prompt": spec.prompt,
                "type": spec.type.value,
                "required": spec.required,
                "free_text": is_free_text(spec),
            }
            for spec in specs
        ],
    }


@router.post("/options")
async def choice_options(request: OptionsRequest):
    """Legal options of one choice slot."""
    entry = _require_entry(request.catalog_id)
    snapshot = CharacterSnapshot.from_dict(request.snapshot)
    editor = _editor()
    flags = [spec.flag for spec in editor.pending_choices(snapshot, entry.id)]
    if request.flag not in flags:
        raise NotFoundError("Choice", request.flag)
    options = editor.options(snapshot, entry.id, request.flag, request.prior_choices)
    return {"catalog_id": entry.id, "flag": request.flag, "options": options}


@router.post("/prerequisites/evaluate")
async def evaluate_prerequisites(request: PrerequisiteRequest):
    """Evaluate free-text prerequisites against the character."""
    snapshot = CharacterSnapshot.from_dict(request.snapshot)
    catalog = get_catalog()
    derived = _editor().recalculate(snapshot)
    results = []
    for text in request.prerequisites:
        data = evaluate(text, derived, catalog).to_dict()
        data["text"] = text
        results.append(data)
    return {
        "met": all(r["met"] for r in results),
        "results": results,
    }


@router.post("/available-feats")
async def available_feats(request: AvailableFeatsRequest):
    """Catalog feats annotated with eligibility and the dedication lock."""
    snapshot = CharacterSnapshot.from_dict(request.snapshot)
    feats = _editor().available_feats(
        snapshot,
        source=request.source,
        level=request.level,
        slot_type=request.slot_type,
        trait=request.trait,
    )
    if request.available_only:
        feats = [f for f in feats if f.available]
    return {
        "feats": [f.to_dict() for f in feats],
        "count": len(feats),
    }
