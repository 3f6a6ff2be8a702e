"""
Choice Resolver.

Turns a catalog entry's embedded choice slots into the ordered list of
choices a player must make, computes the legal options of each slot, and
checks that a set of committed choices is complete.

Options of a feat slot are checked against a hypothetical character: the
real snapshot plus a virtual selection of the entry carrying the choices made
so far, recalculated. The real snapshot is never touched.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from pf2e_engine.core.catalog import (
    Catalog,
    CatalogEntry,
    ChoiceSpec,
    ChoiceFilter,
    ChoiceType,
    EffectKind,
)
from pf2e_engine.core.character import (
    CharacterSnapshot,
    DerivedCharacter,
    Selection,
    SelectionSource,
)
from pf2e_engine.core.dedication import check_dedication_lock
from pf2e_engine.core.prerequisites import check_prerequisites, evaluate, normalize_skill
from pf2e_engine.core.recalculation import recalculate
from pf2e_engine.core.rules_config import Proficiency, RulesConfig, ABILITIES
from pf2e_engine.core.selection_graph import retract

HYPOTHETICAL_SLOT = "hypothetical"

ADDITIONAL_SKILL_FLAG = "additionalSkill"
CONDITIONAL_SKILL_PREFIX = "conditionalSkill_"


@dataclass
class ChoiceValidation:
    """Completeness check of a set of committed choices."""
    complete: bool
    missing: List[str] = field(default_factory=list)
    invalid: List[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return self.complete and not self.invalid


# ==================== Dedication analysis ====================

def granted_skills(entry: CatalogEntry, catalog: Catalog) -> List[str]:
    """
    Skills a dedication can train: fixed skill effects and the skill options
    of its choice slots, falling back to "trained in <skill>" in the text.
    """
    skills: List[str] = []
    for effect in entry.effects:
        if effect.kind == EffectKind.SKILL_RANK and effect.target:
            skill = normalize_skill(effect.target)
            if skill not in skills:
                skills.append(skill)
    for spec in entry.choice_schema:
        if spec.type == ChoiceType.SKILL:
            for option in spec.options:
                skill = normalize_skill(option.value)
                if skill not in skills:
                    skills.append(skill)
    if not skills and entry.description:
        text = entry.description.lower()
        for skill in catalog.skill_names():
            if f"trained in {skill}" in text:
                skills.append(skill)
    return skills


def _dedication_choices(
    entry: CatalogEntry,
    character: DerivedCharacter,
    catalog: Catalog
) -> List[ChoiceSpec]:
    text = entry.description.lower()
    extra: List[ChoiceSpec] = []
    untrained_only = ChoiceFilter(max_rank=Proficiency.UNTRAINED.value)

    if "plus one skill" in text or "plus an additional skill" in text:
        extra.append(ChoiceSpec(
            flag=ADDITIONAL_SKILL_FLAG,
            prompt="Choose an additional skill",
            type=ChoiceType.SKILL,
            filter=untrained_only,
        ))

    if "already trained" in text:
        skills = granted_skills(entry, catalog)
        trained = [s for s in skills if character.skill_rank(s) >= Proficiency.TRAINED]
        if "both" in text:
            if skills and len(trained) == len(skills):
                extra.append(ChoiceSpec(
                    flag=f"{CONDITIONAL_SKILL_PREFIX}both",
                    prompt="Already trained in both skills: choose another skill",
                    type=ChoiceType.SKILL,
                    filter=untrained_only,
                ))
        else:
            for index, skill in enumerate(trained):
                extra.append(ChoiceSpec(
                    flag=f"{CONDITIONAL_SKILL_PREFIX}{index}",
                    prompt=f"Already trained in {skill}: choose another skill",
                    type=ChoiceType.SKILL,
                    filter=untrained_only,
                ))
    return extra


# ==================== Characters to evaluate against ====================

def baseline_character(
    entry: CatalogEntry,
    character: DerivedCharacter,
    catalog: Catalog,
    rules: Optional[RulesConfig] = None
) -> DerivedCharacter:
    """The character as it would be without `entry`, so its own effects don't count."""
    if not character.snapshot.find(entry.id):
        return character
    snapshot = character.snapshot.with_selections(retract(character.snapshot.selections, entry.id))
    return recalculate(snapshot, catalog, rules)


def hypothetical_character(
    entry: CatalogEntry,
    character: DerivedCharacter,
    catalog: Catalog,
    prior_choices: Optional[Dict[str, str]] = None,
    rules: Optional[RulesConfig] = None
) -> DerivedCharacter:
    """Recalculate with a virtual selection of `entry` carrying `prior_choices`."""
    snapshot: CharacterSnapshot = character.snapshot
    choices = dict(prior_choices or {})
    existing = snapshot.find(entry.id)
    if existing is not None and not existing.is_granted:
        selections = [
            s.with_choices(choices) if s is existing else s
            for s in snapshot.selections
        ]
    else:
        virtual = Selection(
            catalog_id=entry.id,
            level=snapshot.level,
            source=SelectionSource.BONUS,
            slot_type=HYPOTHETICAL_SLOT,
            choices=choices,
        )
        selections = list(snapshot.selections) + [virtual]
    return recalculate(snapshot.with_selections(selections), catalog, rules)


# ==================== Public API ====================

def choices_for(
    entry: CatalogEntry,
    character: DerivedCharacter,
    catalog: Catalog,
    rules: Optional[RulesConfig] = None
) -> List[ChoiceSpec]:
    """Ordered choice slots of an entry for this character."""
    specs = [c for c in entry.choice_schema if character.level >= c.min_level]
    if entry.has_trait("archetype") and entry.has_trait("dedication"):
        base = baseline_character(entry, character, catalog, rules)
        specs.extend(_dedication_choices(entry, base, catalog))
    return specs


def _rank_allowed(rank: Proficiency, choice_filter: ChoiceFilter) -> bool:
    if choice_filter.min_rank and rank < Proficiency.parse(choice_filter.min_rank):
        return False
    if choice_filter.max_rank and rank > Proficiency.parse(choice_filter.max_rank):
        return False
    return True


def _feat_options(
    choice: ChoiceSpec,
    entry: CatalogEntry,
    character: DerivedCharacter,
    catalog: Catalog,
    prior_choices: Dict[str, str],
    rules: Optional[RulesConfig]
) -> List[str]:
    choice_filter = choice.filter
    max_level = choice_filter.max_level if choice_filter.max_level is not None else character.level
    hypothetical = hypothetical_character(entry, character, catalog, prior_choices, rules)

    options = []
    for feat in catalog.get_feats():
        if feat.id == entry.id:
            continue
        if choice_filter.level is not None and feat.level != choice_filter.level:
            continue
        if choice_filter.level is None and feat.level > max_level:
            continue
        if choice_filter.traits and not all(feat.has_trait(t) for t in choice_filter.traits):
            continue
        if choice_filter.category and feat.category != choice_filter.category:
            continue
        if not feat.repeatable and character.holds(feat.id):
            continue
        if check_dedication_lock(character.dedication, feat) is not None:
            continue
        if not check_prerequisites(feat, hypothetical, catalog).met:
            continue
        options.append(feat.id)
    return options


def options_for(
    choice: ChoiceSpec,
    entry: CatalogEntry,
    character: DerivedCharacter,
    catalog: Catalog,
    prior_choices: Optional[Dict[str, str]] = None,
    rules: Optional[RulesConfig] = None
) -> List[str]:
    """
    Legal option values for one choice slot.

    Explicit options are filtered by their predicate; skill slots by the
    character's current rank; feat slots by level, traits, category, the
    dedication lock and prerequisites evaluated against the hypothetical
    character. Free-text slots have no option list.
    """
    prior = {k: v for k, v in (prior_choices or {}).items() if k != choice.flag}
    base = baseline_character(entry, character, catalog, rules)

    if choice.options:
        values = []
        for option in choice.options:
            if option.predicate and not evaluate(option.predicate, base, catalog).met:
                continue
            if choice.type == ChoiceType.SKILL and not _rank_allowed(
                base.skill_rank(option.value), choice.filter
            ):
                continue
            values.append(option.value)
        return values

    if choice.type == ChoiceType.SKILL:
        return [
            name for name in catalog.skill_names()
            if _rank_allowed(base.skill_rank(name), choice.filter)
        ]

    if choice.type == ChoiceType.ABILITY:
        return list(ABILITIES)

    if choice.type == ChoiceType.FEAT:
        return _feat_options(choice, entry, base, catalog, prior, rules)

    return []


def is_free_text(choice: ChoiceSpec) -> bool:
    return choice.type == ChoiceType.STRING and not choice.options


def validate_choices(
    entry: CatalogEntry,
    character: DerivedCharacter,
    catalog: Catalog,
    choices: Optional[Dict[str, str]],
    rules: Optional[RulesConfig] = None
) -> ChoiceValidation:
    """
    Complete iff every required slot, dynamic ones included, holds exactly
    one non-empty value. Values outside a slot's legal options are invalid.
    """
    choices = choices or {}
    missing: List[str] = []
    invalid: List[str] = []
    prior: Dict[str, str] = {}

    for spec in choices_for(entry, character, catalog, rules):
        value = choices.get(spec.flag)
        if not isinstance(value, str) or not value.strip():
            if spec.required:
                missing.append(spec.flag)
            continue
        if not is_free_text(spec):
            legal = options_for(spec, entry, character, catalog, prior, rules)
            candidate = value.strip()
            if spec.type in (ChoiceType.SKILL, ChoiceType.ABILITY):
                candidate = candidate.lower()
                legal = [option.lower() for option in legal]
            if candidate not in legal:
                invalid.append(spec.flag)
        prior[spec.flag] = value

    return ChoiceValidation(complete=not missing, missing=missing, invalid=invalid)
