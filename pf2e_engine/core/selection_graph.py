"""
Provenance-Aware Selection Graph.

Selections form an ordered arena. A selection that was produced
automatically carries `granted_by`, the id of whatever granted it: another
selection's catalog id, or a synthetic id such as "class:fighter" for grants
that come from the snapshot's ancestry, heritage, background, class or
specialization. Removing a granter removes everything it granted.
"""
import logging
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Tuple, Sequence, Set, Iterable

from pf2e_engine.core.catalog import Catalog, CatalogEntry, GrantRef
from pf2e_engine.core.character import Selection, SelectionSource, SlotKey
from pf2e_engine.core.errors import (
    ErrorCode,
    IllegalCommit,
    EngineWarning,
    unresolved_dynamic_grant,
)

logger = logging.getLogger("pf2e_engine.graph")

SYNTHETIC_PREFIXES = ("ancestry:", "heritage:", "background:", "class:", "specialization:")


def is_synthetic(granter_id: Optional[str]) -> bool:
    return bool(granter_id) and granter_id.startswith(SYNTHETIC_PREFIXES)


@dataclass
class CommitResult:
    """Outcome of a commit: the new arena, or a rejection and the old one."""
    accepted: bool
    selections: Tuple[Selection, ...]
    rejection: Optional[IllegalCommit] = None
    replaced: Optional[Selection] = None
    removed: Tuple[Selection, ...] = ()
    warnings: Tuple[EngineWarning, ...] = ()


@dataclass(frozen=True)
class GrantSource:
    """Something that grants selections without being a selection itself."""
    granter_id: str
    grants: Tuple[GrantRef, ...]
    level: int = 1
    choices: Dict[str, str] = field(default_factory=dict)


# ==================== Grant derivation ====================

def grant_slot_type(granter_id: str, catalog_id: str) -> str:
    return f"granted:{granter_id}:{catalog_id}"


def resolve_grant(
    grant: GrantRef,
    granter_id: str,
    choices: Dict[str, str],
    level: int
) -> Tuple[Optional[Selection], Optional[EngineWarning]]:
    """Turn one GrantRef into a Selection, or a warning when its choice is unset."""
    if grant.is_dynamic:
        target = (choices.get(grant.choice_flag) or "").strip()
        if not target:
            logger.warning(
                f"Skipping grant from '{granter_id}': choice '{grant.choice_flag}' is not set"
            )
            return None, unresolved_dynamic_grant(granter_id, grant.choice_flag)
    else:
        target = grant.catalog_id
        if not target:
            return None, None

    source = SelectionSource(grant.source) if grant.source else SelectionSource.BONUS
    return Selection(
        catalog_id=target,
        level=max(level, grant.min_level),
        source=source,
        slot_type=grant.slot_type or grant_slot_type(granter_id, target),
        granted_by=granter_id,
    ), None


def derive_grants(
    selection: Selection,
    entry: CatalogEntry,
    level: Optional[int] = None
) -> Tuple[List[Selection], List[EngineWarning]]:
    """
    Direct grants of one selection.

    When `level` is given, grants whose `min_level` exceeds it are not yet
    in effect and are left out.
    """
    granted: List[Selection] = []
    warnings: List[EngineWarning] = []
    for grant in entry.grants:
        if level is not None and grant.min_level > level:
            continue
        child, warning = resolve_grant(grant, entry.id, selection.choices, selection.level)
        if warning is not None:
            warnings.append(warning)
        if child is not None:
            granted.append(child)
    return granted, warnings


def _is_equivalent(candidate: Selection, selections: Iterable[Selection]) -> bool:
    """The player already holds it, or the same granter already granted it."""
    for existing in selections:
        if existing.catalog_id != candidate.catalog_id:
            continue
        if not existing.is_granted or existing.granted_by == candidate.granted_by:
            return True
    return False


def reconcile(
    selections: Sequence[Selection],
    catalog: Catalog,
    level: int,
    sources: Sequence[GrantSource] = ()
) -> Tuple[Tuple[Selection, ...], List[EngineWarning]]:
    """
    Re-derive every automatic grant from scratch.

    Player selections are kept in stored order. Grants are derived from the
    snapshot-level sources, then from active player selections, then
    transitively from the grants themselves. A stored grant that is still
    implied keeps its stored choices; stale grants are dropped.
    """
    player = [s for s in selections if not s.is_granted]
    active_player = [s for s in player if s.level <= level]
    stored = {(s.granted_by, s.catalog_id): s for s in selections if s.is_granted}
    derived: List[Selection] = []
    warnings: List[EngineWarning] = []
    seen: Set[Tuple[str, str]] = set()

    def add(candidate: Selection) -> Optional[Selection]:
        ident = (candidate.granted_by, candidate.catalog_id)
        if ident in seen or _is_equivalent(candidate, active_player):
            return None
        seen.add(ident)
        previous = stored.get(ident)
        if previous is not None and previous.choices:
            candidate = replace(candidate, choices=dict(previous.choices))
        derived.append(candidate)
        return candidate

    queue: List[Selection] = []

    for source in sources:
        if source.level > level:
            continue
        for grant in source.grants:
            if grant.min_level > level:
                continue
            child, warning = resolve_grant(grant, source.granter_id, source.choices, source.level)
            if warning is not None:
                warnings.append(warning)
            added = add(child) if child is not None else None
            if added is not None:
                queue.append(added)

    queue = active_player + queue

    while queue:
        granter = queue.pop(0)
        entry = catalog.get_entry(granter.catalog_id)
        if entry is None:
            continue
        children, child_warnings = derive_grants(granter, entry, level)
        warnings.extend(child_warnings)
        for child in children:
            added = add(child)
            if added is not None:
                queue.append(added)

    return tuple(player) + tuple(derived), warnings


# ==================== Commit / retract ====================

def find_at_key(selections: Sequence[Selection], key: SlotKey) -> Optional[int]:
    for index, selection in enumerate(selections):
        if selection.key == key:
            return index
    return None


def occupants_at_key(selections: Sequence[Selection], key: SlotKey) -> List[int]:
    """Indices of every selection in a slot; more than one only for stacked repeatables."""
    return [index for index, selection in enumerate(selections) if selection.key == key]



def prune_orphans(selections: Sequence[Selection]) -> Tuple[List[Selection], List[Selection]]:
    """
    Drop every grant whose granter is no longer held, transitively.

    Returns (kept, removed).
    """
    kept = list(selections)
    removed: List[Selection] = []
    changed = True
    while changed:
        changed = False
        held = {s.catalog_id for s in kept}
        for selection in list(kept):
            granter = selection.granted_by
            if granter and not is_synthetic(granter) and granter not in held:
                kept.remove(selection)
                removed.append(selection)
                changed = True
    return kept, removed


def retract(
    selections: Sequence[Selection],
    catalog_id: str,
    key: Optional[SlotKey] = None
) -> Tuple[Selection, ...]:
    """
    Remove a selection and, transitively, everything its grant chain produced.

    With `key`, only the selection in that slot is removed (repeatable feats
    may be held more than once).
    """
    remaining = [
        s for s in selections
        if not (s.catalog_id == catalog_id and (key is None or s.key == key))
    ]
    kept, removed = prune_orphans(remaining)
    if removed:
        logger.debug(
            f"Retracting '{catalog_id}' cascaded to {[s.catalog_id for s in removed]}"
        )
    return tuple(kept)


def commit(
    selections: Sequence[Selection],
    new_selection: Selection,
    entry: CatalogEntry,
    catalog: Optional[Catalog] = None
) -> CommitResult:
    """
    Commit a player selection into its slot.

    A slot held by a granted selection cannot be overwritten. A repeatable
    entry taken again with different choices stacks beside its earlier
    copies. Anything else replaces every occupant of the slot and retracts
    what they granted, then the new entry's grants are appended with
    `granted_by` pointing at it. With a catalog, grants of grants are
    followed as well.
    """
    current = tuple(selections)
    indices = occupants_at_key(current, new_selection.key)

    granted = next((current[i] for i in indices if current[i].is_granted), None)
    if granted is not None:
        return CommitResult(
            accepted=False,
            selections=current,
            rejection=IllegalCommit(
                code=ErrorCode.SLOT_GRANTED,
                reason=f"Slot is held by '{granted.catalog_id}', granted by '{granted.granted_by}'",
                catalog_id=new_selection.catalog_id,
                details={"granted_by": granted.granted_by, "occupant": granted.catalog_id},
            ),
        )

    same_entry = entry.repeatable and all(
        current[i].catalog_id == new_selection.catalog_id for i in indices
    )
    if same_entry:
        targets = [i for i in indices if current[i].choices == new_selection.choices]
    else:
        targets = indices

    working = list(current)
    replaced = [current[i] for i in targets]
    if targets:
        working[targets[0]] = new_selection
        for i in reversed(targets[1:]):
            del working[i]
    else:
        working.append(new_selection)
    occupant = replaced[0] if replaced else None

    removed: List[Selection] = list(replaced[1:])
    if replaced:
        # grants of replaced occupants go, unless a remaining copy or the new one grants them again
        still_held = {s.catalog_id for s in working if not s.is_granted and s is not new_selection}
        gone = {s.catalog_id for s in replaced} - still_held
        without_old = [s for s in working if s.granted_by not in gone]
        removed.extend(s for s in working if s.granted_by in gone)
        working, cascaded = prune_orphans(without_old)
        removed.extend(cascaded)

    warnings: List[EngineWarning] = []
    queue: List[Tuple[Selection, CatalogEntry]] = [(new_selection, entry)]
    while queue:
        granter, granter_entry = queue.pop(0)
        children, child_warnings = derive_grants(granter, granter_entry)
        warnings.extend(child_warnings)
        for child in children:
            if _is_equivalent(child, working):
                continue
            working.append(child)
            child_entry = catalog.get_entry(child.catalog_id) if catalog else None
            if child_entry is not None:
                queue.append((child, child_entry))

    if occupant is not None:
        logger.debug(
            f"Replaced '{occupant.catalog_id}' with '{new_selection.catalog_id}' "
            f"at {new_selection.key}; removed {[s.catalog_id for s in removed]}"
        )

    return CommitResult(
        accepted=True,
        selections=tuple(working),
        replaced=occupant,
        removed=tuple(removed),
        warnings=tuple(warnings),
    )


# ==================== Invariant helpers ====================

def orphaned_grants(selections: Sequence[Selection]) -> List[Selection]:
    """Grants whose granter no longer exists; always empty after reconcile."""
    held = {s.catalog_id for s in selections}
    return [
        s for s in selections
        if s.granted_by and not is_synthetic(s.granted_by) and s.granted_by not in held
    ]


def slot_conflicts(selections: Sequence[Selection], catalog: Catalog) -> List[SlotKey]:
    """Keys held more than once by anything other than a repeatable entry."""
    by_key: Dict[SlotKey, List[Selection]] = {}
    for selection in selections:
        by_key.setdefault(selection.key, []).append(selection)

    conflicts = []
    for key, held in by_key.items():
        if len(held) < 2:
            continue
        ids = {s.catalog_id for s in held}
        entry = catalog.get_entry(held[0].catalog_id)
        if len(ids) == 1 and entry is not None and entry.repeatable:
            continue
        conflicts.append(key)
    return conflicts
