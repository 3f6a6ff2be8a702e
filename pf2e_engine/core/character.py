"""
Character records.

`CharacterSnapshot` is the only authoritative state: the raw choices a player
made. `DerivedCharacter` is what the recalculation engine builds from it and
is never patched in place.
"""
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Any, Tuple, TYPE_CHECKING
from enum import Enum

from pf2e_engine.core.errors import MalformedSnapshotError, EngineWarning
from pf2e_engine.core.rules_config import Proficiency, ABILITIES

if TYPE_CHECKING:
    from pf2e_engine.core.dedication import DedicationConstraint


SCHEMA_VERSION = 2


class SelectionSource(str, Enum):
    """Slot families a selection can occupy."""
    ANCESTRY = "ancestry"
    CLASS = "class"
    BACKGROUND = "background"
    SKILL = "skill"
    GENERAL = "general"
    BONUS = "bonus"


SlotKey = Tuple[SelectionSource, int, Optional[str]]


def _pick(data: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    """First present key wins; lets older camelCase payloads through."""
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


def _expect(value: Any, types, field_name: str, reason: str) -> Any:
    types = types if isinstance(types, tuple) else (types,)
    # bool is an int subclass; reject it unless asked for
    if not isinstance(value, types) or (isinstance(value, bool) and bool not in types):
        raise MalformedSnapshotError(field_name, reason)
    return value


def _optional_string(value: Any, field_name: str) -> Optional[str]:
    if value is None:
        return None
    return _expect(value, str, field_name, "expected a string")


def _string_list(value: Any, field_name: str) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    _expect(value, (list, tuple), field_name, "expected a list of strings")
    for item in value:
        _expect(item, str, field_name, "expected a list of strings")
    return tuple(value)


def _level_map(value: Any, field_name: str) -> Dict[int, Any]:
    if value is None:
        return {}
    _expect(value, dict, field_name, "expected an object keyed by level")
    result = {}
    for key, item in value.items():
        try:
            result[int(key)] = item
        except (TypeError, ValueError):
            raise MalformedSnapshotError(field_name, f"level key {key!r} is not a number")
    return result


# =============================================================================
# SELECTIONS
# =============================================================================

@dataclass(frozen=True)
class Selection:
    """One acquired feat or feature, player-chosen or automatically granted."""
    catalog_id: str
    level: int = 1
    source: SelectionSource = SelectionSource.GENERAL
    slot_type: Optional[str] = None
    choices: Dict[str, str] = field(default_factory=dict)
    granted_by: Optional[str] = None

    @property
    def key(self) -> SlotKey:
        return (self.source, self.level, self.slot_type)

    @property
    def is_granted(self) -> bool:
        return self.granted_by is not None

    def with_choices(self, choices: Dict[str, str]) -> "Selection":
        return replace(self, choices=dict(choices))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "catalog_id": self.catalog_id,
            "level": self.level,
            "source": self.source.value,
            "slot_type": self.slot_type,
            "choices": dict(self.choices),
            "granted_by": self.granted_by,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "Selection":
        _expect(data, dict, "selections", "each selection must be an object")
        catalog_id = _pick(data, "catalog_id", "catalogId", "featId", "id")
        _expect(catalog_id, str, "selections.catalog_id", "catalog id must be a string")
        level = _expect(_pick(data, "level", default=1), int, "selections.level", "level must be an integer")
        source = _pick(data, "source", default=SelectionSource.GENERAL.value)
        try:
            source = SelectionSource(source)
        except ValueError:
            raise MalformedSnapshotError("selections.source", f"unknown source {source!r}")
        choices = _pick(data, "choices", default={})
        _expect(choices, dict, "selections.choices", "choices must be an object")
        return cls(
            catalog_id=catalog_id,
            level=level,
            source=source,
            slot_type=_optional_string(_pick(data, "slot_type", "slotType"), "selections.slot_type"),
            choices={str(k): str(v) for k, v in choices.items() if v is not None},
            granted_by=_optional_string(_pick(data, "granted_by", "grantedBy"), "selections.granted_by"),
        )


@dataclass(frozen=True)
class AbilityBoosts:
    """Ability boost assignments by source; `level_up` maps a level to its boosts."""
    ancestry: Tuple[str, ...] = ()
    background: Tuple[str, ...] = ()
    class_boost: Tuple[str, ...] = ()
    free: Tuple[str, ...] = ()
    level_up: Dict[int, Tuple[str, ...]] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ancestry": list(self.ancestry),
            "background": list(self.background),
            "class": list(self.class_boost),
            "free": list(self.free),
            "level_up": {str(k): list(v) for k, v in sorted(self.level_up.items())},
        }

    @classmethod
    def from_dict(cls, data: Any) -> "AbilityBoosts":
        if data is None:
            return cls()
        _expect(data, dict, "ability_boosts", "expected an object")
        level_up = _level_map(_pick(data, "level_up", "levelUp"), "ability_boosts.level_up")
        return cls(
            ancestry=_string_list(data.get("ancestry"), "ability_boosts.ancestry"),
            background=_string_list(data.get("background"), "ability_boosts.background"),
            class_boost=_string_list(_pick(data, "class", "class_boost", "classBoost"), "ability_boosts.class"),
            free=_string_list(data.get("free"), "ability_boosts.free"),
            level_up={
                lvl: _string_list(boosts, "ability_boosts.level_up")
                for lvl, boosts in sorted(level_up.items())
            },
        )


# =============================================================================
# SNAPSHOT
# =============================================================================

@dataclass(frozen=True)
class CharacterSnapshot:
    """The raw, persisted input to recalculation."""
    level: int = 1
    ancestry_id: Optional[str] = None
    heritage_id: Optional[str] = None
    heritage_choice: Optional[str] = None
    background_id: Optional[str] = None
    class_ids: Tuple[str, ...] = ()
    specialization_ids: Tuple[str, ...] = ()
    base_ability_scores: Dict[str, int] = field(default_factory=dict)
    selections: Tuple[Selection, ...] = ()
    ability_boosts: AbilityBoosts = field(default_factory=AbilityBoosts)
    skill_increases: Dict[int, str] = field(default_factory=dict)
    manual_skill_training: Tuple[str, ...] = ()
    int_bonus_skills: Dict[int, Tuple[str, ...]] = field(default_factory=dict)
    schema_version: int = SCHEMA_VERSION

    def with_selections(self, selections) -> "CharacterSnapshot":
        return replace(self, selections=tuple(selections))

    def active_selections(self) -> List[Selection]:
        """Selections taken at or below the current level."""
        return [s for s in self.selections if s.level <= self.level]

    def find(self, catalog_id: str) -> Optional[Selection]:
        for selection in self.selections:
            if selection.catalog_id == catalog_id:
                return selection
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "schema_version": self.schema_version,
            "level": self.level,
            "ancestry_id": self.ancestry_id,
            "heritage_id": self.heritage_id,
            "heritage_choice": self.heritage_choice,
            "background_id": self.background_id,
            "class_ids": list(self.class_ids),
            "specialization_ids": list(self.specialization_ids),
            "base_ability_scores": dict(self.base_ability_scores),
            "selections": [s.to_dict() for s in self.selections],
            "ability_boosts": self.ability_boosts.to_dict(),
            "skill_increases": {str(k): v for k, v in sorted(self.skill_increases.items())},
            "manual_skill_training": list(self.manual_skill_training),
            "int_bonus_skills": {str(k): list(v) for k, v in sorted(self.int_bonus_skills.items())},
        }

    @classmethod
    def from_dict(cls, data: Any) -> "CharacterSnapshot":
        """
        Build a snapshot from a plain payload.

        Missing optional fields mean "no selection". Older payloads using
        camelCase keys, a single `classId` or a `feats` list are accepted.
        Only a payload of the wrong shape raises MalformedSnapshotError.
        """
        _expect(data, dict, "snapshot", "expected an object")

        level = _expect(_pick(data, "level", default=1), int, "level", "level must be an integer")

        class_ids = _pick(data, "class_ids", "classIds")
        if class_ids is None:
            single = _pick(data, "class_id", "classId")
            class_ids = [single] if single else []
        specialization_ids = _pick(data, "specialization_ids", "specializationIds")
        if specialization_ids is None:
            single = _pick(data, "specialization_id", "classSpecializationId")
            specialization_ids = [single] if single else []

        scores = _pick(data, "base_ability_scores", "baseAbilityScores", "abilityScores", default={})
        _expect(scores, dict, "base_ability_scores", "expected an object of scores")
        for ability, score in scores.items():
            _expect(score, int, "base_ability_scores", f"score for {ability!r} must be an integer")

        raw_selections = _pick(data, "selections", "feats", default=[])
        _expect(raw_selections, (list, tuple), "selections", "expected a list")

        increases = _level_map(_pick(data, "skill_increases", "skillIncreases"), "skill_increases")
        for skill in increases.values():
            _expect(skill, str, "skill_increases", "each skill increase must name a skill")

        int_bonus = _level_map(_pick(data, "int_bonus_skills", "intBonusSkills"), "int_bonus_skills")

        return cls(
            level=level,
            ancestry_id=_optional_string(_pick(data, "ancestry_id", "ancestryId"), "ancestry_id"),
            heritage_id=_optional_string(_pick(data, "heritage_id", "heritageId"), "heritage_id"),
            heritage_choice=_optional_string(_pick(data, "heritage_choice", "heritageChoice"), "heritage_choice"),
            background_id=_optional_string(_pick(data, "background_id", "backgroundId"), "background_id"),
            class_ids=_string_list(class_ids, "class_ids"),
            specialization_ids=_string_list(specialization_ids, "specialization_ids"),
            base_ability_scores={k.lower(): v for k, v in scores.items()},
            selections=tuple(Selection.from_dict(s) for s in raw_selections),
            ability_boosts=AbilityBoosts.from_dict(_pick(data, "ability_boosts", "abilityBoosts")),
            skill_increases={k: v.lower() for k, v in sorted(increases.items())},
            manual_skill_training=tuple(
                s.lower() for s in _string_list(
                    _pick(data, "manual_skill_training", "manualSkillTraining"), "manual_skill_training"
                )
            ),
            int_bonus_skills={
                k: tuple(s.lower() for s in _string_list(v, "int_bonus_skills"))
                for k, v in sorted(int_bonus.items())
            },
            schema_version=_expect(
                _pick(data, "schema_version", "schemaVersion", default=SCHEMA_VERSION),
                int, "schema_version", "expected an integer",
            ),
        )


# =============================================================================
# DERIVED CHARACTER
# =============================================================================

@dataclass(frozen=True)
class Eligibility:
    """Prerequisite verdict for one entry against one character."""
    met: bool = True
    reasons: Tuple[str, ...] = ()
    unrecognized: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "met": self.met,
            "reasons": list(self.reasons),
            "unrecognized": list(self.unrecognized),
        }


@dataclass(frozen=True)
class AnnotatedSelection:
    selection: Selection
    eligibility: Eligibility = field(default_factory=Eligibility)
    active: bool = True

    def to_dict(self) -> Dict[str, Any]:
        data = self.selection.to_dict()
        data["active"] = self.active
        data["eligibility"] = self.eligibility.to_dict()
        return data


@dataclass(frozen=True)
class DerivedCharacter:
    """Fully derived character, rebuilt wholesale on every edit."""
    snapshot: CharacterSnapshot
    ability_scores: Dict[str, int] = field(default_factory=dict)
    ability_modifiers: Dict[str, int] = field(default_factory=dict)
    skills: Dict[str, Proficiency] = field(default_factory=dict)
    saves: Dict[str, Proficiency] = field(default_factory=dict)
    perception: Proficiency = Proficiency.TRAINED
    hit_points: int = 0
    resources: Dict[str, int] = field(default_factory=dict)
    selections: Tuple[AnnotatedSelection, ...] = ()
    dedication: Optional["DedicationConstraint"] = None
    warnings: Tuple[EngineWarning, ...] = ()
    specialization_names: Tuple[str, ...] = ()
    feat_names: Tuple[str, ...] = ()
    class_features: Tuple[str, ...] = ()

    @property
    def level(self) -> int:
        return self.snapshot.level

    @property
    def ancestry_id(self) -> Optional[str]:
        return self.snapshot.ancestry_id

    @property
    def class_ids(self) -> Tuple[str, ...]:
        return self.snapshot.class_ids

    def skill_rank(self, skill: str) -> Proficiency:
        return self.skills.get(skill.lower(), Proficiency.UNTRAINED)

    def ability_score(self, ability: str) -> int:
        return self.ability_scores.get(ability.lower(), 10)

    def holds(self, catalog_id: str) -> bool:
        """True if an active selection references the entry."""
        return any(
            a.active and a.selection.catalog_id == catalog_id
            for a in self.selections
        )

    def to_snapshot(self) -> CharacterSnapshot:
        return self.snapshot

    def to_dict(self) -> Dict[str, Any]:
        return {
            "snapshot": self.snapshot.to_dict(),
            "ability_scores": {a: self.ability_scores.get(a, 10) for a in ABILITIES},
            "ability_modifiers": {a: self.ability_modifiers.get(a, 0) for a in ABILITIES},
            "skills": {name: rank.value for name, rank in sorted(self.skills.items())},
            "saves": {name: rank.value for name, rank in self.saves.items()},
            "perception": self.perception.value,
            "hit_points": self.hit_points,
            "resources": dict(self.resources),
            "selections": [a.to_dict() for a in self.selections],
            "dedication": self.dedication.to_dict() if self.dedication else None,
            "warnings": [w.to_dict() for w in self.warnings],
            "specialization_names": list(self.specialization_names),
            "feat_names": list(self.feat_names),
        }
