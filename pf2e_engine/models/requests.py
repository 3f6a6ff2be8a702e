"""
PF2e Character Engine - API Models.

Pydantic request bodies for the character endpoints. Snapshots travel as
plain objects and are parsed by `CharacterSnapshot.from_dict`, which accepts
older camelCase payloads.
"""
from typing import Dict, List, Optional, Any
from pydantic import BaseModel, Field

from pf2e_engine.core.character import SelectionSource


class SnapshotRequest(BaseModel):
    """A bare character snapshot."""
    snapshot: Dict[str, Any] = Field(default_factory=dict, description="Character snapshot")


class SelectRequest(SnapshotRequest):
    """Commit a feat, class feature or dedication into a slot."""
    catalog_id: str = Field(..., description="Catalog entry to select")
    level: int = Field(1, ge=1, le=20, description="Level the slot belongs to")
    source: SelectionSource = Field(SelectionSource.GENERAL, description="Slot family")
    slot_type: Optional[str] = Field(None, description="Disambiguates slots sharing source and level")
    choices: Dict[str, str] = Field(default_factory=dict, description="Choice flag -> chosen value")


class RemoveRequest(SnapshotRequest):
    """Remove a player selection and everything it granted."""
    catalog_id: str = Field(..., description="Catalog entry to remove")


class AbilityBoostRequest(SnapshotRequest):
    """Assign the ability boosts of one level (1 = free creation boosts)."""
    level: int = Field(..., ge=1, le=20)
    boosts: List[str] = Field(default_factory=list, description="Abilities to boost, e.g. ['str', 'dex']")


class ChoicesRequest(SnapshotRequest):
    """List the pending choice slots of a catalog entry."""
    catalog_id: str


class OptionsRequest(SnapshotRequest):
    """Legal options of one choice slot, given the choices made so far."""
    catalog_id: str
    flag: str
    prior_choices: Dict[str, str] = Field(default_factory=dict)


class PrerequisiteRequest(SnapshotRequest):
    """Evaluate free-text prerequisites against the character."""
    prerequisites: List[str] = Field(..., min_length=1)


class AvailableFeatsRequest(SnapshotRequest):
    """Browse catalog feats for a slot."""
    source: Optional[SelectionSource] = None
    level: Optional[int] = Field(None, ge=1, le=20)
    slot_type: Optional[str] = None
    trait: Optional[str] = None
    available_only: bool = Field(False, description="Drop feats that cannot be taken")


class EditResponse(BaseModel):
    """Accepted edit: the next snapshot and its derived character."""
    valid: bool
    snapshot: Dict[str, Any]
    derived: Dict[str, Any]
    warnings: List[Dict[str, Any]] = Field(default_factory=list)
