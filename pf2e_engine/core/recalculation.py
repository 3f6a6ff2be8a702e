"""
Recalculation Engine.

`recalculate(snapshot, catalog)` rebuilds the whole DerivedCharacter from the
raw snapshot. It is pure, total over any well-formed snapshot, and
idempotent: recalculating the snapshot it returns yields the same result.

Stages, each reading only the outputs of earlier ones:

    0. grant reconciliation (reads selections, catalog and level only)
    1. ability scores
    2. skill proficiencies
    3. saves and perception
    4. hit points and resources
    5. dedication constraint
    6. eligibility annotation
"""
import logging
from dataclasses import replace
from typing import Dict, List, Optional, Tuple

from pf2e_engine.core.catalog import Catalog, CatalogEntry, EffectKind, Effect
from pf2e_engine.core.character import (
    CharacterSnapshot,
    DerivedCharacter,
    AnnotatedSelection,
    Eligibility,
    Selection,
)
from pf2e_engine.core.dedication import compute_constraint
from pf2e_engine.core.errors import (
    EngineWarning,
    unknown_catalog_entry,
    excess_int_bonus_skill,
    excess_manual_skill,
    unparseable_prerequisite,
)
from pf2e_engine.core.prerequisites import check_prerequisites, normalize_skill
from pf2e_engine.core.rules_config import (
    RulesConfig,
    Proficiency,
    ABILITIES,
    get_rules_config,
)
from pf2e_engine.core.selection_graph import GrantSource, reconcile, retract

logger = logging.getLogger("pf2e_engine.recalc")

SAVES = ("fortitude", "reflex", "will")

# Choice flags added by the dedication analyzer; each trains the chosen skill
DEDICATION_SKILL_FLAGS = ("additionalSkill", "conditionalSkill_")


def ability_modifier(score: int) -> int:
    return (score - 10) // 2


# =============================================================================
# STAGE 0: GRANTS
# =============================================================================

def grant_sources(snapshot: CharacterSnapshot, catalog: Catalog) -> List[GrantSource]:
    """Grants that come from the snapshot itself rather than from a selection."""
    sources: List[GrantSource] = []

    for class_id in snapshot.class_ids:
        class_entry = catalog.get_class(class_id)
        if class_entry and class_entry.grants:
            sources.append(GrantSource(f"class:{class_entry.id}", class_entry.grants))

    for spec_id in snapshot.specialization_ids:
        spec = catalog.get_specialization(spec_id)
        if spec and spec.grants:
            sources.append(GrantSource(f"specialization:{spec.id}", spec.grants))

    background = catalog.get_background(snapshot.background_id)
    if background and background.grants:
        sources.append(GrantSource(f"background:{background.id}", background.grants))

    heritage = catalog.get_heritage(snapshot.heritage_id)
    if heritage and heritage.grants:
        choices = {"heritage": snapshot.heritage_choice} if snapshot.heritage_choice else {}
        sources.append(GrantSource(f"heritage:{heritage.id}", heritage.grants, choices=choices))

    return sources


def reconcile_grants(
    snapshot: CharacterSnapshot,
    catalog: Catalog
) -> Tuple[CharacterSnapshot, List[EngineWarning]]:
    selections, warnings = reconcile(
        snapshot.selections, catalog, snapshot.level, grant_sources(snapshot, catalog)
    )
    return snapshot.with_selections(selections), warnings


# =============================================================================
# STAGE 1: ABILITY SCORES
# =============================================================================

def int_boosts_at(snapshot: CharacterSnapshot, catalog: Catalog, level: int) -> int:
    """Number of Intelligence boosts applied at a given level."""
    boosts = snapshot.ability_boosts
    if level == 1:
        ancestry = catalog.get_ancestry(snapshot.ancestry_id)
        fixed = list(ancestry.boosts) if ancestry else []
        applied = fixed + list(boosts.ancestry) + list(boosts.background)
        applied += list(boosts.class_boost) + list(boosts.free)
        return sum(1 for a in applied if a == "int")
    return sum(1 for a in boosts.level_up.get(level, ()) if a == "int")


def manual_training_capacity(snapshot: CharacterSnapshot, catalog: Catalog, modifiers: Dict[str, int]) -> int:
    """
    Skills the player trains by hand: the class's additional trained skills
    plus the Intelligence modifier, if positive. With two classes the larger
    allowance applies.
    """
    allowances = [
        class_entry.additional_trained_skills
        for class_entry in (catalog.get_class(c) for c in snapshot.class_ids)
        if class_entry is not None
    ]
    return max(allowances, default=0) + max(0, modifiers.get("int", 0))


def resolve_ability_scores(
    snapshot: CharacterSnapshot,
    catalog: Catalog,
    rules: RulesConfig
) -> Dict[str, int]:
    scores = {
        a: snapshot.base_ability_scores.get(a, rules.base_ability_score)
        for a in ABILITIES
    }

    def boost(ability: str):
        ability = ability.lower()
        if ability in scores:
            scores[ability] = rules.apply_boost(scores[ability])

    ancestry = catalog.get_ancestry(snapshot.ancestry_id)
    if ancestry:
        for flaw in ancestry.flaws:
            if flaw in scores:
                scores[flaw] -= rules.flaw_amount
        for fixed in ancestry.boosts:
            if fixed != "free":
                boost(fixed)

    boosts = snapshot.ability_boosts
    for ability in list(boosts.ancestry) + list(boosts.background) + list(boosts.class_boost):
        boost(ability)
    for ability in boosts.free:
        boost(ability)

    for level in sorted(boosts.level_up):
        if level <= snapshot.level and rules.is_boost_level(level):
            for ability in boosts.level_up[level]:
                boost(ability)

    return scores


# =============================================================================
# STAGE 2: SKILLS
# =============================================================================

def _effect_target(effect: Effect, selection: Selection) -> Optional[str]:
    if effect.target:
        return effect.target.lower()
    if effect.choice_flag:
        value = selection.choices.get(effect.choice_flag)
        return value.lower() if value else None
    return None


def _apply_rank(table: Dict[str, Proficiency], name: str, effect: Effect):
    rank = Proficiency.parse(effect.rank or "trained")
    if effect.mode == "set":
        table[name] = rank
    else:
        table[name] = max(table.get(name, Proficiency.UNTRAINED), rank, key=lambda r: r.rank_index)


def resolve_skills(
    snapshot: CharacterSnapshot,
    catalog: Catalog,
    rules: RulesConfig,
    active: List[Tuple[Selection, CatalogEntry]],
    modifiers: Dict[str, int],
    warnings: List[EngineWarning]
) -> Dict[str, Proficiency]:
    table: Dict[str, Proficiency] = {name: Proficiency.UNTRAINED for name in catalog.skill_names()}

    def train(skill: Optional[str]):
        if not skill:
            return
        skill = normalize_skill(skill)
        if table.get(skill, Proficiency.UNTRAINED) < Proficiency.TRAINED:
            table[skill] = Proficiency.TRAINED

    for class_id in snapshot.class_ids:
        class_entry = catalog.get_class(class_id)
        if class_entry:
            for skill in class_entry.trained_skills:
                train(skill)

    background = catalog.get_background(snapshot.background_id)
    if background:
        for skill in background.trained_skills:
            train(skill)

    for spec_id in snapshot.specialization_ids:
        spec = catalog.get_specialization(spec_id)
        if spec:
            for skill in spec.trained_skills:
                train(skill)

    heritage = catalog.get_heritage(snapshot.heritage_id)
    if heritage:
        for skill in heritage.trained_skills:
            train(skill)
        if heritage.skill_choice:
            train(snapshot.heritage_choice)

    manual_capacity = manual_training_capacity(snapshot, catalog, modifiers)
    for position, skill in enumerate(snapshot.manual_skill_training):
        if position < manual_capacity:
            train(skill)
        else:
            warnings.append(excess_manual_skill(skill, manual_capacity))

    for level in sorted(snapshot.int_bonus_skills):
        if level > snapshot.level:
            continue
        capacity = int_boosts_at(snapshot, catalog, level)
        for position, skill in enumerate(snapshot.int_bonus_skills[level]):
            if position < capacity:
                train(skill)
            else:
                warnings.append(excess_int_bonus_skill(level, skill))

    for level in sorted(snapshot.skill_increases):
        if level > snapshot.level or level not in rules.skill_increase_levels:
            continue
        skill = normalize_skill(snapshot.skill_increases[level])
        raised = table.get(skill, Proficiency.UNTRAINED).step_up()
        if raised <= rules.max_skill_rank(level):
            table[skill] = raised
        else:
            logger.debug(f"Skill increase at level {level} would push {skill} past {raised.value}")

    # Feat skill effects stack on top of training and increases
    for selection, entry in active:
        for effect in entry.effects:
            if effect.kind != EffectKind.SKILL_RANK or effect.min_level > snapshot.level:
                continue
            target = _effect_target(effect, selection)
            if target:
                _apply_rank(table, normalize_skill(target), effect)
        for flag, value in selection.choices.items():
            if flag == DEDICATION_SKILL_FLAGS[0] or flag.startswith(DEDICATION_SKILL_FLAGS[1]):
                train(value)

    return table


# =============================================================================
# STAGE 3: SAVES AND PERCEPTION
# =============================================================================

def resolve_saves(
    snapshot: CharacterSnapshot,
    catalog: Catalog,
    rules: RulesConfig,
    active: List[Tuple[Selection, CatalogEntry]]
) -> Tuple[Dict[str, Proficiency], Proficiency]:
    table: Dict[str, Proficiency] = {name: Proficiency.UNTRAINED for name in SAVES}
    table["perception"] = Proficiency.parse(rules.default_perception)

    def upgrade(name: str, rank: Proficiency):
        if name in table and rank > table[name]:
            table[name] = rank

    for class_id in snapshot.class_ids:
        class_entry = catalog.get_class(class_id)
        if class_entry is None:
            continue
        upgrade("fortitude", Proficiency.parse(class_entry.fortitude))
        upgrade("reflex", Proficiency.parse(class_entry.reflex))
        upgrade("will", Proficiency.parse(class_entry.will))
        upgrade("perception", Proficiency.parse(class_entry.perception))
        for step in class_entry.progression:
            if step.level <= snapshot.level:
                upgrade(step.target.lower(), Proficiency.parse(step.rank))

    for selection, entry in active:
        for effect in entry.effects:
            if effect.kind != EffectKind.SAVE_RANK or effect.min_level > snapshot.level:
                continue
            target = _effect_target(effect, selection)
            if target in table:
                _apply_rank(table, target, effect)

    perception = table.pop("perception")
    return table, perception


# =============================================================================
# STAGE 4: HIT POINTS AND RESOURCES
# =============================================================================

def _effect_amount(effect: Effect, level: int) -> int:
    return effect.value * level if effect.per_level else effect.value


def resolve_hit_points(
    snapshot: CharacterSnapshot,
    catalog: Catalog,
    modifiers: Dict[str, int],
    active: List[Tuple[Selection, CatalogEntry]]
) -> int:
    ancestry = catalog.get_ancestry(snapshot.ancestry_id)
    hp = ancestry.hit_points if ancestry else 0

    class_hp = [c.hit_points for c in map(catalog.get_class, snapshot.class_ids) if c]
    if class_hp:
        # dual class uses the better hit die
        hp += (max(class_hp) + modifiers.get("con", 0)) * snapshot.level

    for _, entry in active:
        for effect in entry.effects:
            if effect.kind == EffectKind.HP and effect.min_level <= snapshot.level:
                hp += _effect_amount(effect, snapshot.level)
    return hp


def resolve_resources(
    snapshot: CharacterSnapshot,
    catalog: Catalog,
    active: List[Tuple[Selection, CatalogEntry]]
) -> Dict[str, int]:
    resources: Dict[str, int] = {}
    for class_id in snapshot.class_ids:
        class_entry = catalog.get_class(class_id)
        if class_entry:
            for name, amount in class_entry.resources:
                resources[name] = resources.get(name, 0) + amount

    for selection, entry in active:
        for effect in entry.effects:
            if effect.kind != EffectKind.RESOURCE or effect.min_level > snapshot.level:
                continue
            name = _effect_target(effect, selection)
            if name:
                resources[name] = resources.get(name, 0) + _effect_amount(effect, snapshot.level)
    return resources


# =============================================================================
# RECALCULATE
# =============================================================================

def _dedupe(warnings: List[EngineWarning]) -> Tuple[EngineWarning, ...]:
    seen = []
    for warning in warnings:
        if warning not in seen:
            seen.append(warning)
    return tuple(seen)


def _unknown_references(snapshot: CharacterSnapshot, catalog: Catalog) -> List[EngineWarning]:
    warnings = []
    lookups = [
        (snapshot.ancestry_id, catalog.get_ancestry),
        (snapshot.heritage_id, catalog.get_heritage),
        (snapshot.background_id, catalog.get_background),
    ]
    lookups += [(c, catalog.get_class) for c in snapshot.class_ids]
    lookups += [(s, catalog.get_specialization) for s in snapshot.specialization_ids]
    for ident, lookup in lookups:
        if ident and lookup(ident) is None:
            warnings.append(unknown_catalog_entry(ident))
    for selection in snapshot.selections:
        if catalog.get_entry(selection.catalog_id) is None:
            warnings.append(unknown_catalog_entry(selection.catalog_id))
    return warnings


def _derive_stats(
    snapshot: CharacterSnapshot,
    catalog: Catalog,
    rules: RulesConfig,
    warnings: List[EngineWarning]
) -> DerivedCharacter:
    """Stages 1 to 4 over an already reconciled snapshot."""
    active: List[Tuple[Selection, CatalogEntry]] = []
    for selection in snapshot.active_selections():
        entry = catalog.get_entry(selection.catalog_id)
        if entry is not None:
            active.append((selection, entry))

    scores = resolve_ability_scores(snapshot, catalog, rules)
    modifiers = {a: ability_modifier(s) for a, s in scores.items()}
    skills = resolve_skills(snapshot, catalog, rules, active, modifiers, warnings)
    saves, perception = resolve_saves(snapshot, catalog, rules, active)
    hit_points = resolve_hit_points(snapshot, catalog, modifiers, active)
    resources = resolve_resources(snapshot, catalog, active)

    specialization_names: List[str] = []
    for spec_id in snapshot.specialization_ids:
        spec = catalog.get_specialization(spec_id)
        if spec:
            specialization_names.append(spec.name.lower())
            if spec.localized_name:
                specialization_names.append(spec.localized_name.lower())

    class_features = set()
    for class_id in snapshot.class_ids:
        class_entry = catalog.get_class(class_id)
        if class_entry:
            class_features.update(class_entry.features)

    return DerivedCharacter(
        snapshot=snapshot,
        ability_scores=scores,
        ability_modifiers=modifiers,
        skills=skills,
        saves=saves,
        perception=perception,
        hit_points=hit_points,
        resources=resources,
        selections=tuple(
            AnnotatedSelection(s, active=s.level <= snapshot.level) for s in snapshot.selections
        ),
        specialization_names=tuple(specialization_names),
        feat_names=tuple(entry.name for _, entry in active),
        class_features=tuple(sorted(class_features)),
    )


def _judged_against(
    selection: Selection,
    entry: CatalogEntry,
    derived: DerivedCharacter,
    catalog: Catalog,
    rules: RulesConfig
) -> DerivedCharacter:
    """The character a selection's prerequisites are checked against: one without it."""
    snapshot = derived.snapshot
    if not entry.prerequisites or selection.level > snapshot.level:
        return derived
    if not (entry.effects or entry.grants):
        return derived
    # already reconciled, so the selection's own grants leave with it
    remaining = retract(snapshot.selections, selection.catalog_id, selection.key)
    return _derive_stats(snapshot.with_selections(remaining), catalog, rules, [])


def recalculate(
    snapshot: CharacterSnapshot,
    catalog: Catalog,
    rules: Optional[RulesConfig] = None
) -> DerivedCharacter:
    """Rebuild the derived character from scratch."""
    rules = rules or get_rules_config()

    snapshot, warnings = reconcile_grants(snapshot, catalog)
    warnings.extend(_unknown_references(snapshot, catalog))

    derived = _derive_stats(snapshot, catalog, rules, warnings)

    dedication = compute_constraint(snapshot.selections, catalog, snapshot.level, rules)

    annotated = []
    for selection in snapshot.selections:
        entry = catalog.get_entry(selection.catalog_id)
        eligibility = Eligibility()
        if entry is not None:
            judged = _judged_against(selection, entry, derived, catalog, rules)
            eligibility = check_prerequisites(entry, judged, catalog, level=selection.level)
            for text in eligibility.unrecognized:
                warnings.append(unparseable_prerequisite(text, entry.id))
        annotated.append(AnnotatedSelection(
            selection=selection,
            eligibility=eligibility,
            active=selection.level <= snapshot.level,
        ))

    logger.debug(
        f"Recalculated level {snapshot.level} character: "
        f"{len(snapshot.selections)} selections, {len(warnings)} warnings"
    )

    return replace(
        derived,
        selections=tuple(annotated),
        dedication=dedication,
        warnings=_dedupe(warnings),
    )
