"""
PF2e Character Editor.

Every edit takes the current CharacterSnapshot and returns an EditResult
holding the next snapshot and its freshly recalculated DerivedCharacter, or a
structured rejection. The editor keeps no character state between calls.
"""
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Any, Sequence

from pf2e_engine.core.catalog import Catalog, CatalogEntry, ChoiceSpec
from pf2e_engine.core.character import (
    CharacterSnapshot,
    DerivedCharacter,
    Eligibility,
    Selection,
    SelectionSource,
)
from pf2e_engine.core.dedication import (
    archetype_name_of,
    check_dedication_lock,
    family_selections,
    is_archetype_dedication,
)
from pf2e_engine.core.errors import ErrorCode, IllegalCommit, EngineWarning
from pf2e_engine.core.feat_choices import (
    choices_for,
    options_for,
    validate_choices,
)
from pf2e_engine.core.prerequisites import check_prerequisites
from pf2e_engine.core.recalculation import recalculate, int_boosts_at, manual_training_capacity
from pf2e_engine.core.rules_config import (
    ABILITIES,
    RulesConfig,
    get_rules_config,
)
from pf2e_engine.core.selection_graph import commit, find_at_key, occupants_at_key, retract

MAX_LEVEL = 20


@dataclass
class EditResult:
    """Result of an edit: the next state, or the unchanged one plus a rejection."""
    valid: bool
    snapshot: CharacterSnapshot
    derived: Optional[DerivedCharacter] = None
    errors: List[str] = field(default_factory=list)
    warnings: List[EngineWarning] = field(default_factory=list)
    rejection: Optional[IllegalCommit] = None


@dataclass
class FeatAvailability:
    """A catalog feat annotated for a feat browser."""
    entry: CatalogEntry
    eligibility: Eligibility
    locked_reason: Optional[str] = None
    held: bool = False

    @property
    def available(self) -> bool:
        return self.eligibility.met and self.locked_reason is None and not self.held

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.entry.id,
            "name": self.entry.name,
            "level": self.entry.level,
            "traits": sorted(self.entry.traits),
            "prerequisites": list(self.entry.prerequisites),
            "available": self.available,
            "held": self.held,
            "locked_reason": self.locked_reason,
            "eligibility": self.eligibility.to_dict(),
        }


class CharacterEditor:
    """Applies edits to character snapshots with full legality checks."""

    def __init__(self, catalog: Catalog, rules: Optional[RulesConfig] = None):
        self.catalog = catalog
        self._rules = rules

    @property
    def rules(self) -> RulesConfig:
        return self._rules or get_rules_config()

    def recalculate(self, snapshot: CharacterSnapshot) -> DerivedCharacter:
        return recalculate(snapshot, self.catalog, self.rules)

    def _accept(self, snapshot: CharacterSnapshot, warnings: Sequence[EngineWarning] = ()) -> EditResult:
        derived = self.recalculate(snapshot)
        combined = list(warnings)
        combined.extend(w for w in derived.warnings if w not in combined)
        return EditResult(
            valid=True,
            snapshot=derived.snapshot,
            derived=derived,
            warnings=combined,
        )

    def _reject(
        self,
        snapshot: CharacterSnapshot,
        code: ErrorCode,
        reason: str,
        catalog_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        errors: Optional[List[str]] = None
    ) -> EditResult:
        return EditResult(
            valid=False,
            snapshot=snapshot,
            errors=errors or [reason],
            rejection=IllegalCommit(code, reason, catalog_id, details or {}),
        )

    # ==================== Selections ====================

    def select(self, snapshot: CharacterSnapshot, selection: Selection) -> EditResult:
        """
        Commit a player selection.

        Rejected when the entry is unknown, when a non-repeatable entry is
        already held elsewhere, when the dedication lock forbids it, when its
        choices are incomplete or invalid, when prerequisites are unmet, or
        when its slot holds a granted selection. Everything is checked against
        the character with the target slot emptied.
        """
        entry = self.catalog.get_entry(selection.catalog_id)
        if entry is None:
            return self._reject(
                snapshot, ErrorCode.ENTRY_NOT_FOUND,
                f"Unknown catalog entry '{selection.catalog_id}'", selection.catalog_id,
            )
        selection = replace(selection, granted_by=None)

        current = self.recalculate(snapshot)
        selections = current.snapshot.selections
        occupants = [selections[i] for i in occupants_at_key(selections, selection.key)]

        granted = next((o for o in occupants if o.is_granted), None)
        if granted is not None:
            return self._reject(
                snapshot, ErrorCode.SLOT_GRANTED,
                f"Slot is held by '{granted.catalog_id}', granted by '{granted.granted_by}'",
                selection.catalog_id,
                {"granted_by": granted.granted_by, "occupant": granted.catalog_id},
            )

        baseline = current
        if occupants:
            emptied = selections
            for occupant_id in dict.fromkeys(o.catalog_id for o in occupants):
                emptied = retract(emptied, occupant_id, selection.key)
            baseline = self.recalculate(current.snapshot.with_selections(emptied))

        if not entry.repeatable:
            held = next((s for s in baseline.snapshot.selections if s.catalog_id == entry.id), None)
            if held is not None:
                return self._reject(
                    snapshot, ErrorCode.ALREADY_HELD,
                    f"{entry.name} is already held at level {held.level}",
                    entry.id,
                    {"level": held.level, "source": held.source.value, "granted_by": held.granted_by},
                )

        lock_reason = check_dedication_lock(baseline.dedication, entry)
        if lock_reason:
            return self._reject(
                snapshot, ErrorCode.DEDICATION_LOCKED, lock_reason, entry.id,
                {"dedication": baseline.dedication.to_dict()},
            )

        validation = validate_choices(entry, baseline, self.catalog, selection.choices, self.rules)
        if not validation.complete:
            return self._reject(
                snapshot, ErrorCode.CHOICES_INCOMPLETE,
                f"Missing choices for {entry.name}: {', '.join(validation.missing)}",
                entry.id, {"missing": validation.missing},
            )
        if validation.invalid:
            return self._reject(
                snapshot, ErrorCode.CHOICE_INVALID,
                f"Invalid choices for {entry.name}: {', '.join(validation.invalid)}",
                entry.id, {"invalid": validation.invalid},
            )

        eligibility = check_prerequisites(entry, baseline, self.catalog, level=selection.level)
        if not eligibility.met:
            return self._reject(
                snapshot, ErrorCode.PREREQUISITES_UNMET,
                f"{entry.name}: {'; '.join(eligibility.reasons)}",
                entry.id, {"reasons": list(eligibility.reasons)},
                errors=list(eligibility.reasons),
            )

        result = commit(selections, selection, entry, self.catalog)
        if not result.accepted:
            return EditResult(
                valid=False,
                snapshot=snapshot,
                errors=[result.rejection.reason],
                rejection=result.rejection,
            )

        committed = result.selections
        replaced_entry = self.catalog.get_entry(result.replaced.catalog_id) if result.replaced else None
        if (
            replaced_entry is not None
            and is_archetype_dedication(replaced_entry)
            and is_archetype_dedication(entry)
            and archetype_name_of(replaced_entry) != archetype_name_of(entry)
        ):
            # swapping archetypes drops the old family with it
            for stale in family_selections(committed, self.catalog, archetype_name_of(replaced_entry)):
                committed = retract(committed, stale.catalog_id, stale.key)

        return self._accept(current.snapshot.with_selections(committed), result.warnings)

    def remove(self, snapshot: CharacterSnapshot, catalog_id: str) -> EditResult:
        """Remove a player selection and everything it granted."""
        current = self.recalculate(snapshot)
        held = [s for s in current.snapshot.selections if s.catalog_id == catalog_id]
        if not held:
            return self._reject(
                snapshot, ErrorCode.ENTRY_NOT_FOUND,
                f"'{catalog_id}' is not selected", catalog_id,
            )
        if all(s.is_granted for s in held):
            return self._reject(
                snapshot, ErrorCode.SLOT_GRANTED,
                f"'{catalog_id}' was granted by '{held[0].granted_by}'; remove that instead",
                catalog_id, {"granted_by": held[0].granted_by},
            )

        selections = retract(current.snapshot.selections, catalog_id)
        entry = self.catalog.get_entry(catalog_id)
        if entry is not None and is_archetype_dedication(entry):
            for stale in family_selections(selections, self.catalog, archetype_name_of(entry)):
                selections = retract(selections, stale.catalog_id, stale.key)

        return self._accept(current.snapshot.with_selections(selections))

    # ==================== Building blocks ====================

    def set_level(self, snapshot: CharacterSnapshot, level: int) -> EditResult:
        if not 1 <= level <= MAX_LEVEL:
            return self._reject(
                snapshot, ErrorCode.VALIDATION_ERROR,
                f"Level must be between 1 and {MAX_LEVEL}", details={"field": "level"},
            )
        return self._accept(replace(snapshot, level=level))

    def set_ancestry(self, snapshot: CharacterSnapshot, ancestry_id: str) -> EditResult:
        """Change ancestry; the heritage and ancestry boosts no longer apply."""
        if self.catalog.get_ancestry(ancestry_id) is None:
            return self._reject(
                snapshot, ErrorCode.ENTRY_NOT_FOUND, f"Unknown ancestry '{ancestry_id}'", ancestry_id,
            )
        return self._accept(replace(
            snapshot,
            ancestry_id=ancestry_id,
            heritage_id=None,
            heritage_choice=None,
            ability_boosts=replace(snapshot.ability_boosts, ancestry=()),
        ))

    def set_heritage(
        self,
        snapshot: CharacterSnapshot,
        heritage_id: str,
        choice: Optional[str] = None
    ) -> EditResult:
        heritage = self.catalog.get_heritage(heritage_id)
        if heritage is None:
            return self._reject(
                snapshot, ErrorCode.ENTRY_NOT_FOUND, f"Unknown heritage '{heritage_id}'", heritage_id,
            )
        if heritage.ancestry_id and heritage.ancestry_id != snapshot.ancestry_id:
            return self._reject(
                snapshot, ErrorCode.PREREQUISITES_UNMET,
                f"{heritage.name} requires the {heritage.ancestry_id} ancestry", heritage_id,
            )
        if heritage.skill_choice and choice and choice.lower() not in self.catalog.skill_names():
            return self._reject(
                snapshot, ErrorCode.CHOICE_INVALID, f"Unknown skill '{choice}'", heritage_id,
            )
        return self._accept(replace(snapshot, heritage_id=heritage_id, heritage_choice=choice))

    def set_background(self, snapshot: CharacterSnapshot, background_id: str) -> EditResult:
        if self.catalog.get_background(background_id) is None:
            return self._reject(
                snapshot, ErrorCode.ENTRY_NOT_FOUND, f"Unknown background '{background_id}'", background_id,
            )
        return self._accept(replace(
            snapshot,
            background_id=background_id,
            ability_boosts=replace(snapshot.ability_boosts, background=()),
        ))

    def set_classes(self, snapshot: CharacterSnapshot, class_ids: Sequence[str]) -> EditResult:
        """One class, or two for dual-class characters."""
        class_ids = tuple(class_ids)
        if not 1 <= len(class_ids) <= 2 or len(set(class_ids)) != len(class_ids):
            return self._reject(
                snapshot, ErrorCode.VALIDATION_ERROR,
                "Choose one class, or two different classes", details={"field": "class_ids"},
            )
        for class_id in class_ids:
            if self.catalog.get_class(class_id) is None:
                return self._reject(
                    snapshot, ErrorCode.ENTRY_NOT_FOUND, f"Unknown class '{class_id}'", class_id,
                )

        kept_specs = []
        for spec_id in snapshot.specialization_ids:
            spec = self.catalog.get_specialization(spec_id)
            if spec is not None and (spec.class_id is None or spec.class_id in class_ids):
                kept_specs.append(spec_id)
        boosts = snapshot.ability_boosts
        if class_ids != snapshot.class_ids:
            boosts = replace(boosts, class_boost=())
        return self._accept(replace(
            snapshot, class_ids=class_ids, specialization_ids=tuple(kept_specs), ability_boosts=boosts,
        ))

    def set_specializations(self, snapshot: CharacterSnapshot, specialization_ids: Sequence[str]) -> EditResult:
        for spec_id in specialization_ids:
            spec = self.catalog.get_specialization(spec_id)
            if spec is None:
                return self._reject(
                    snapshot, ErrorCode.ENTRY_NOT_FOUND, f"Unknown specialization '{spec_id}'", spec_id,
                )
            if spec.class_id and spec.class_id not in snapshot.class_ids:
                return self._reject(
                    snapshot, ErrorCode.PREREQUISITES_UNMET,
                    f"{spec.name} requires the {spec.class_id} class", spec_id,
                )
        return self._accept(replace(snapshot, specialization_ids=tuple(specialization_ids)))

    # ==================== Ability boosts ====================

    def _boost_errors(self, boosts: Sequence[str], allowed: int) -> List[str]:
        errors = []
        if len(boosts) > allowed:
            errors.append(f"At most {allowed} boosts may be applied here")
        if len(set(boosts)) != len(boosts):
            errors.append("Each boost must go to a different ability")
        for ability in boosts:
            if ability not in ABILITIES:
                errors.append(f"Unknown ability '{ability}'")
        return errors

    def apply_ability_boosts(
        self,
        snapshot: CharacterSnapshot,
        level: int,
        boosts: Sequence[str]
    ) -> EditResult:
        """
        Assign the boosts granted at a level.

        Level 1 holds the free creation boosts; every other level must be a
        configured boost level.
        """
        boosts = tuple(b.lower() for b in boosts)
        rules = self.rules
        if level == 1:
            allowed = rules.free_boosts_at_creation
        elif rules.is_boost_level(level):
            allowed = rules.boosts_per_level
        else:
            return self._reject(
                snapshot, ErrorCode.INVALID_BOOST,
                f"Level {level} does not grant ability boosts",
                details={"level": level, "boost_levels": list(rules.ability_boost_levels)},
            )

        errors = self._boost_errors(boosts, allowed)
        if errors:
            return self._reject(
                snapshot, ErrorCode.INVALID_BOOST, errors[0],
                details={"level": level}, errors=errors,
            )

        current = snapshot.ability_boosts
        if level == 1:
            updated = replace(current, free=boosts)
        else:
            level_up = dict(current.level_up)
            level_up[level] = boosts
            updated = replace(current, level_up=level_up)
        return self._accept(replace(snapshot, ability_boosts=updated))

    def set_source_boosts(
        self,
        snapshot: CharacterSnapshot,
        source: str,
        boosts: Sequence[str]
    ) -> EditResult:
        """Chosen boosts from the ancestry, background or class."""
        boosts = tuple(b.lower() for b in boosts)
        if source == "ancestry":
            ancestry = self.catalog.get_ancestry(snapshot.ancestry_id)
            allowed = ancestry.free_boosts if ancestry else 0
            options = None
        elif source == "background":
            background = self.catalog.get_background(snapshot.background_id)
            allowed = 2 if background else 0
            options = set(background.boost_options) if background and background.boost_options else None
        elif source == "class":
            key_abilities = set()
            for class_id in snapshot.class_ids:
                class_entry = self.catalog.get_class(class_id)
                if class_entry:
                    key_abilities.update(class_entry.key_ability)
            allowed = 1 if snapshot.class_ids else 0
            options = key_abilities or None
        else:
            return self._reject(
                snapshot, ErrorCode.VALIDATION_ERROR,
                f"Unknown boost source '{source}'", details={"field": "source"},
            )

        errors = self._boost_errors(boosts, allowed)
        # the background's second boost is free
        restricted = boosts[:1] if source == "background" else boosts
        if options is not None:
            errors.extend(
                f"'{ability}' is not offered by the {source}"
                for ability in restricted if ability not in options
            )
        if errors:
            return self._reject(
                snapshot, ErrorCode.INVALID_BOOST, errors[0],
                details={"source": source}, errors=errors,
            )

        field_name = "class_boost" if source == "class" else source
        updated = replace(snapshot.ability_boosts, **{field_name: boosts})
        return self._accept(replace(snapshot, ability_boosts=updated))

    # ==================== Skills ====================

    def _unknown_skills(self, skills: Sequence[str]) -> List[str]:
        known = set(self.catalog.skill_names())
        return [s for s in skills if s.lower() not in known and not s.lower().endswith("lore")]

    def set_skill_increase(
        self,
        snapshot: CharacterSnapshot,
        level: int,
        skill: Optional[str]
    ) -> EditResult:
        """Assign (or clear, with None) the skill increase of a level."""
        rules = self.rules
        if level not in rules.skill_increase_levels:
            return self._reject(
                snapshot, ErrorCode.VALIDATION_ERROR,
                f"Level {level} does not grant a skill increase", details={"field": "level"},
            )

        increases = dict(snapshot.skill_increases)
        increases.pop(level, None)
        if skill is None:
            return self._accept(replace(snapshot, skill_increases=increases))

        skill = skill.lower()
        if self._unknown_skills([skill]):
            return self._reject(
                snapshot, ErrorCode.VALIDATION_ERROR, f"Unknown skill '{skill}'", details={"field": "skill"},
            )

        # rank of the skill at that level, before this increase
        before = self.recalculate(replace(
            snapshot, level=level, skill_increases=increases,
        )).skill_rank(skill)
        cap = rules.max_skill_rank(level)
        if before.step_up() > cap or before.step_up() == before:
            return self._reject(
                snapshot, ErrorCode.VALIDATION_ERROR,
                f"{skill} cannot be raised past {cap.value} at level {level}",
                details={"field": "skill", "current": before.value},
            )

        increases[level] = skill
        return self._accept(replace(snapshot, skill_increases=dict(sorted(increases.items()))))

    def set_int_bonus_skills(
        self,
        snapshot: CharacterSnapshot,
        level: int,
        skills: Sequence[str]
    ) -> EditResult:
        """Skills trained from the Intelligence boosts taken at a level."""
        skills = tuple(s.lower() for s in skills)
        capacity = int_boosts_at(snapshot, self.catalog, level)
        if len(skills) > capacity:
            return self._reject(
                snapshot, ErrorCode.VALIDATION_ERROR,
                f"Only {capacity} INT bonus skills are available at level {level}",
                details={"field": "skills", "capacity": capacity},
            )
        unknown = self._unknown_skills(skills)
        if unknown:
            return self._reject(
                snapshot, ErrorCode.VALIDATION_ERROR, f"Unknown skill '{unknown[0]}'",
                details={"field": "skills"},
            )

        int_bonus = dict(snapshot.int_bonus_skills)
        if skills:
            int_bonus[level] = skills
        else:
            int_bonus.pop(level, None)
        return self._accept(replace(snapshot, int_bonus_skills=dict(sorted(int_bonus.items()))))

    def set_manual_skill_training(self, snapshot: CharacterSnapshot, skills: Sequence[str]) -> EditResult:
        skills = tuple(s.lower() for s in skills)
        capacity = manual_training_capacity(
            snapshot, self.catalog, self.recalculate(snapshot).ability_modifiers
        )
        if len(skills) > capacity:
            return self._reject(
                snapshot, ErrorCode.VALIDATION_ERROR,
                f"Only {capacity} skills can be trained manually",
                details={"field": "skills", "capacity": capacity},
            )
        unknown = self._unknown_skills(skills)
        if unknown:
            return self._reject(
                snapshot, ErrorCode.VALIDATION_ERROR, f"Unknown skill '{unknown[0]}'",
                details={"field": "skills"},
            )
        return self._accept(replace(snapshot, manual_skill_training=skills))

    # ==================== Browsing ====================

    def available_feats(
        self,
        snapshot: CharacterSnapshot,
        source: Optional[SelectionSource] = None,
        level: Optional[int] = None,
        slot_type: Optional[str] = None,
        trait: Optional[str] = None
    ) -> List[FeatAvailability]:
        """
        Catalog feats annotated with eligibility and the dedication lock.

        With `source` and `level`, the feat currently in that slot is treated
        as replaceable, so a locking dedication can be swapped.
        """
        derived = self.recalculate(snapshot)
        max_level = level if level is not None else derived.level

        replacing = None
        if source is not None and level is not None:
            index = find_at_key(derived.snapshot.selections, (source, level, slot_type))
            if index is not None:
                replacing = derived.snapshot.selections[index].catalog_id

        results = []
        for entry in self.catalog.get_feats():
            if entry.level > max_level:
                continue
            if trait and not entry.has_trait(trait):
                continue
            results.append(FeatAvailability(
                entry=entry,
                eligibility=check_prerequisites(entry, derived, self.catalog, level=level),
                locked_reason=check_dedication_lock(derived.dedication, entry, replacing=replacing),
                held=derived.holds(entry.id) and not entry.repeatable,
            ))
        return results

    def pending_choices(self, snapshot: CharacterSnapshot, catalog_id: str) -> List[ChoiceSpec]:
        entry = self.catalog.get_entry(catalog_id)
        if entry is None:
            return []
        return choices_for(entry, self.recalculate(snapshot), self.catalog, self.rules)

    def options(
        self,
        snapshot: CharacterSnapshot,
        catalog_id: str,
        flag: str,
        prior_choices: Optional[Dict[str, str]] = None
    ) -> List[str]:
        entry = self.catalog.get_entry(catalog_id)
        if entry is None:
            return []
        derived = self.recalculate(snapshot)
        for spec in choices_for(entry, derived, self.catalog, self.rules):
            if spec.flag == flag:
                return options_for(spec, entry, derived, self.catalog, prior_choices, self.rules)
        return []
