"""
Archetype Dedication Constraint.

After taking an archetype dedication feat, a character must take a number of
further feats from that archetype before drawing archetype feats from any
other family. The state is derived from the selections on every
recalculation and never stored:

    None                         -> Free
    DedicationConstraint(...)    -> Locked(archetype_name, remaining)
"""
from dataclasses import dataclass
from typing import Dict, List, Optional, Any, Sequence, Tuple

from pf2e_engine.core.catalog import Catalog, CatalogEntry
from pf2e_engine.core.character import Selection
from pf2e_engine.core.rules_config import RulesConfig, get_rules_config


@dataclass(frozen=True)
class DedicationConstraint:
    """An active, unsatisfied dedication restricting archetype feats."""
    archetype_name: str
    dedication_id: str
    dedication_taken_at_level: int
    archetype_feats_taken: int
    remaining_feats_needed: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "archetype_name": self.archetype_name,
            "dedication_id": self.dedication_id,
            "dedication_taken_at_level": self.dedication_taken_at_level,
            "archetype_feats_taken": self.archetype_feats_taken,
            "remaining_feats_needed": self.remaining_feats_needed,
        }


def is_archetype_dedication(entry: CatalogEntry) -> bool:
    return entry.has_trait("archetype") and (
        entry.has_trait("dedication") or "dedication" in entry.name.lower()
    )


def archetype_name_of(entry: CatalogEntry) -> str:
    """"Duelist Dedication" -> "duelist"."""
    if entry.archetype:
        return entry.archetype.strip().lower()
    return entry.name.lower().replace("dedication", "").strip()


def is_feat_of_archetype(entry: CatalogEntry, archetype_name: str) -> bool:
    """
    A feat belongs to an archetype family when it carries the archetype's
    name as a trait, when its name starts with the archetype name, when it
    requires the archetype's dedication, or when the catalog says so.
    """
    name = archetype_name.strip().lower()
    if not name:
        return False
    if entry.archetype and entry.archetype.strip().lower() == name:
        return True
    if name in entry.traits:
        return True
    if entry.name.lower().startswith(name):
        return True
    dedication_name = f"{name} dedication"
    return any(dedication_name in p.lower() for p in entry.prerequisites)


def feats_required(entry: CatalogEntry, rules: RulesConfig) -> int:
    if entry.dedication_feats_required is not None:
        return entry.dedication_feats_required
    return rules.dedication_feats_required


def _active_player_entries(
    selections: Sequence[Selection],
    catalog: Catalog,
    level: int
) -> List[Tuple[int, Selection, CatalogEntry]]:
    result = []
    for index, selection in enumerate(selections):
        if selection.is_granted or selection.level > level:
            continue
        entry = catalog.get_entry(selection.catalog_id)
        if entry is not None:
            result.append((index, selection, entry))
    return result


def compute_constraint(
    selections: Sequence[Selection],
    catalog: Catalog,
    level: int,
    rules: Optional[RulesConfig] = None
) -> Optional[DedicationConstraint]:
    """
    Scan the active, player-chosen dedications from most recent (by level,
    then insertion order) to oldest; the first whose family is still short of
    its required feat count locks the character.
    """
    rules = rules or get_rules_config()
    active = _active_player_entries(selections, catalog, level)
    dedications = sorted(
        (item for item in active if is_archetype_dedication(item[2])),
        key=lambda item: (item[1].level, item[0]),
        reverse=True,
    )

    for index, selection, entry in dedications:
        name = archetype_name_of(entry)
        taken = sum(
            1 for other_index, _, other in active
            if other_index != index
            and not is_archetype_dedication(other)
            and is_feat_of_archetype(other, name)
        )
        remaining = max(0, feats_required(entry, rules) - taken)
        if remaining > 0:
            return DedicationConstraint(
                archetype_name=name,
                dedication_id=entry.id,
                dedication_taken_at_level=selection.level,
                archetype_feats_taken=taken,
                remaining_feats_needed=remaining,
            )
    return None


def check_dedication_lock(
    constraint: Optional[DedicationConstraint],
    entry: CatalogEntry,
    replacing: Optional[str] = None
) -> Optional[str]:
    """
    Return why `entry` may not be taken under `constraint`, or None.

    `replacing` is the catalog id currently in the target slot; a dedication
    may always take the locking dedication's place.
    """
    if constraint is None:
        return None

    name = constraint.archetype_name
    remaining = constraint.remaining_feats_needed
    plural = "feat" if remaining == 1 else "feats"

    if is_archetype_dedication(entry):
        if archetype_name_of(entry) == name or replacing == constraint.dedication_id:
            return None
        return (
            f"Take {remaining} more {name} archetype {plural} "
            f"before another dedication"
        )

    if entry.has_trait("archetype") and not is_feat_of_archetype(entry, name):
        return f"Locked into the {name} archetype: {remaining} more {plural} needed"

    return None


def family_selections(
    selections: Sequence[Selection],
    catalog: Catalog,
    archetype_name: str
) -> List[Selection]:
    """Player-chosen selections belonging to an archetype family, dedication included."""
    family = []
    for selection in selections:
        if selection.is_granted:
            continue
        entry = catalog.get_entry(selection.catalog_id)
        if entry is not None and is_feat_of_archetype(entry, archetype_name):
            family.append(selection)
    return family


def lock_violations(
    selections: Sequence[Selection],
    catalog: Catalog,
    constraint: Optional[DedicationConstraint]
) -> List[Selection]:
    """
    Archetype selections taken after the locking dedication that fall
    outside its family. Empty whenever the lock has been respected.
    """
    if constraint is None:
        return []

    ordered = sorted(enumerate(selections), key=lambda item: (item[1].level, item[0]))
    violations = []
    seen_dedication = False
    for _, selection in ordered:
        if selection.catalog_id == constraint.dedication_id and not selection.is_granted:
            seen_dedication = True
            continue
        if not seen_dedication or selection.is_granted:
            continue
        entry = catalog.get_entry(selection.catalog_id)
        if entry is None:
            continue
        if check_dedication_lock(constraint, entry) is not None:
            violations.append(selection)
    return violations
