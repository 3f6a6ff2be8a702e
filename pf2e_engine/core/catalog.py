"""
Read-only catalog of Pathfinder 2e reference data.

The engine treats the catalog as immutable: feats, class features,
specializations, classes, ancestries, heritages, backgrounds and skills are
loaded once (see `services.catalog_loader`) and queried by id, trait and
level throughout. Nothing in the core mutates catalog records.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Any, Tuple, FrozenSet, Iterable
from enum import Enum


class EntryKind(str, Enum):
    """Kinds of selectable catalog entries."""
    FEAT = "feat"
    CLASS_FEATURE = "class_feature"
    SPECIALIZATION = "specialization"


class ChoiceType(str, Enum):
    """What a choice slot asks the player to pick."""
    SKILL = "skill"
    FEAT = "feat"
    STRING = "string"
    ABILITY = "ability"


class EffectKind(str, Enum):
    """Structured effects the recalculation knows how to apply."""
    SKILL_RANK = "skill_rank"
    SAVE_RANK = "save_rank"      # fortitude / reflex / will / perception
    HP = "hp"
    RESOURCE = "resource"


def _tuple(value: Any) -> Tuple:
    if value is None:
        return ()
    if isinstance(value, (list, tuple, set, frozenset)):
        return tuple(value)
    return (value,)


def _traits(value: Any) -> FrozenSet[str]:
    return frozenset(str(t).lower() for t in _tuple(value))


@dataclass(frozen=True)
class ChoiceOption:
    """A predefined option of a choice slot."""
    value: str
    label: Optional[str] = None
    predicate: Optional[str] = None  # prerequisite text that must hold

    @classmethod
    def from_dict(cls, data: Any) -> "ChoiceOption":
        if isinstance(data, str):
            return cls(value=data)
        return cls(
            value=str(data["value"]),
            label=data.get("label"),
            predicate=data.get("predicate"),
        )


@dataclass(frozen=True)
class ChoiceFilter:
    """Restricts the option set of skill and feat choices."""
    level: Optional[int] = None          # exact feat level
    max_level: Optional[int] = None      # feat level at most
    traits: Tuple[str, ...] = ()         # all of these traits
    category: Optional[str] = None
    min_rank: Optional[str] = None       # current skill rank at least
    max_rank: Optional[str] = None       # current skill rank at most

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ChoiceFilter":
        if not data:
            return cls()
        return cls(
            level=data.get("level"),
            max_level=data.get("max_level"),
            traits=tuple(str(t).lower() for t in _tuple(data.get("traits"))),
            category=data.get("category"),
            min_rank=data.get("min_rank"),
            max_rank=data.get("max_rank"),
        )


@dataclass(frozen=True)
class ChoiceSpec:
    """One "make a choice" slot embedded in a catalog entry."""
    flag: str
    prompt: str = "Choose"
    type: ChoiceType = ChoiceType.STRING
    min_level: int = 1
    options: Tuple[ChoiceOption, ...] = ()
    filter: ChoiceFilter = field(default_factory=ChoiceFilter)
    required: bool = True

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChoiceSpec":
        return cls(
            flag=data["flag"],
            prompt=data.get("prompt", "Choose"),
            type=ChoiceType(data.get("type", "string")),
            min_level=data.get("min_level", 1),
            options=tuple(ChoiceOption.from_dict(o) for o in data.get("options", [])),
            filter=ChoiceFilter.from_dict(data.get("filter")),
            required=data.get("required", True),
        )


@dataclass(frozen=True)
class GrantRef:
    """
    Reference to something an entry grants automatically.

    Either a static `catalog_id`, or a dynamic reference to the value the
    player chose for `choice_flag` on the granting entry.
    """
    catalog_id: Optional[str] = None
    choice_flag: Optional[str] = None
    min_level: int = 1
    source: Optional[str] = None
    slot_type: Optional[str] = None

    @property
    def is_dynamic(self) -> bool:
        return self.catalog_id is None and self.choice_flag is not None

    @classmethod
    def from_dict(cls, data: Any) -> "GrantRef":
        if isinstance(data, str):
            return cls(catalog_id=data)
        return cls(
            catalog_id=data.get("catalog_id") or data.get("id"),
            choice_flag=data.get("choice_flag"),
            min_level=data.get("min_level", 1),
            source=data.get("source"),
            slot_type=data.get("slot_type"),
        )


@dataclass(frozen=True)
class Effect:
    """A structured, recalculation-applied effect of an entry."""
    kind: EffectKind
    target: Optional[str] = None         # fixed skill / save name
    choice_flag: Optional[str] = None    # target named by a choice value
    rank: Optional[str] = None
    mode: str = "upgrade"                # "upgrade" keeps the better rank, "set" overwrites
    value: int = 0
    per_level: bool = False
    min_level: int = 1

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Effect":
        return cls(
            kind=EffectKind(data["kind"]),
            target=data.get("target"),
            choice_flag=data.get("choice_flag"),
            rank=data.get("rank"),
            mode=data.get("mode", "upgrade"),
            value=data.get("value", 0),
            per_level=data.get("per_level", False),
            min_level=data.get("min_level", 1),
        )


@dataclass(frozen=True)
class CatalogEntry:
    """A feat or class feature definition."""
    id: str
    name: str
    kind: EntryKind = EntryKind.FEAT
    level: int = 1
    traits: FrozenSet[str] = frozenset()
    prerequisites: Tuple[str, ...] = ()
    choice_schema: Tuple[ChoiceSpec, ...] = ()
    grants: Tuple[GrantRef, ...] = ()
    effects: Tuple[Effect, ...] = ()
    repeatable: bool = False
    description: str = ""
    archetype: Optional[str] = None
    dedication_feats_required: Optional[int] = None
    category: Optional[str] = None

    def has_trait(self, trait: str) -> bool:
        return trait.lower() in self.traits

    @classmethod
    def from_dict(cls, data: Dict[str, Any], kind: Optional[EntryKind] = None) -> "CatalogEntry":
        return cls(
            id=data["id"],
            name=data.get("name", data["id"]),
            kind=kind or EntryKind(data.get("kind", "feat")),
            level=data.get("level", 1),
            traits=_traits(data.get("traits")),
            prerequisites=tuple(str(p) for p in _tuple(data.get("prerequisites"))),
            choice_schema=tuple(ChoiceSpec.from_dict(c) for c in data.get("choices", [])),
            grants=tuple(GrantRef.from_dict(g) for g in data.get("grants", [])),
            effects=tuple(Effect.from_dict(e) for e in data.get("effects", [])),
            repeatable=data.get("repeatable", False),
            description=data.get("description", ""),
            archetype=data.get("archetype"),
            dedication_feats_required=data.get("dedication_feats_required"),
            category=data.get("category"),
        )


@dataclass(frozen=True)
class ProgressionStep:
    """A class proficiency improvement: `target` reaches `rank` at `level`."""
    level: int
    target: str
    rank: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProgressionStep":
        return cls(level=data["level"], target=data["target"], rank=data["rank"])


@dataclass(frozen=True)
class AncestryEntry:
    id: str
    name: str
    hit_points: int = 8
    boosts: Tuple[str, ...] = ()         # fixed boosts; "free" entries are chosen
    flaws: Tuple[str, ...] = ()
    speed: int = 25
    traits: FrozenSet[str] = frozenset()

    @property
    def free_boosts(self) -> int:
        return sum(1 for b in self.boosts if b == "free")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AncestryEntry":
        return cls(
            id=data["id"],
            name=data.get("name", data["id"]),
            hit_points=data.get("hit_points", 8),
            boosts=_tuple(data.get("boosts")),
            flaws=_tuple(data.get("flaws")),
            speed=data.get("speed", 25),
            traits=_traits(data.get("traits")),
        )


@dataclass(frozen=True)
class HeritageEntry:
    id: str
    name: str
    ancestry_id: Optional[str] = None
    trained_skills: Tuple[str, ...] = ()
    skill_choice: bool = False           # heritage choice names a trained skill
    grants: Tuple[GrantRef, ...] = ()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HeritageEntry":
        return cls(
            id=data["id"],
            name=data.get("name", data["id"]),
            ancestry_id=data.get("ancestry_id"),
            trained_skills=_tuple(data.get("trained_skills")),
            skill_choice=data.get("skill_choice", False),
            grants=tuple(GrantRef.from_dict(g) for g in data.get("grants", [])),
        )


@dataclass(frozen=True)
class BackgroundEntry:
    id: str
    name: str
    trained_skills: Tuple[str, ...] = ()
    boost_options: Tuple[str, ...] = ()
    grants: Tuple[GrantRef, ...] = ()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BackgroundEntry":
        return cls(
            id=data["id"],
            name=data.get("name", data["id"]),
            trained_skills=_tuple(data.get("trained_skills")),
            boost_options=_tuple(data.get("boost_options")),
            grants=tuple(GrantRef.from_dict(g) for g in data.get("grants", [])),
        )


@dataclass(frozen=True)
class ClassEntry:
    id: str
    name: str
    hit_points: int = 8
    key_ability: Tuple[str, ...] = ()
    trained_skills: Tuple[str, ...] = ()
    additional_trained_skills: int = 0
    fortitude: str = "trained"
    reflex: str = "trained"
    will: str = "trained"
    perception: str = "trained"
    progression: Tuple[ProgressionStep, ...] = ()
    grants: Tuple[GrantRef, ...] = ()
    features: FrozenSet[str] = frozenset()
    resources: Tuple[Tuple[str, int], ...] = ()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ClassEntry":
        return cls(
            id=data["id"],
            name=data.get("name", data["id"]),
            hit_points=data.get("hit_points", 8),
            key_ability=_tuple(data.get("key_ability")),
            trained_skills=_tuple(data.get("trained_skills")),
            additional_trained_skills=data.get("additional_trained_skills", 0),
            fortitude=data.get("fortitude", "trained"),
            reflex=data.get("reflex", "trained"),
            will=data.get("will", "trained"),
            perception=data.get("perception", "trained"),
            progression=tuple(ProgressionStep.from_dict(p) for p in data.get("progression", [])),
            grants=tuple(GrantRef.from_dict(g) for g in data.get("grants", [])),
            features=_traits(data.get("features")),
            resources=tuple(sorted((k, int(v)) for k, v in data.get("resources", {}).items())),
        )


@dataclass(frozen=True)
class SpecializationEntry:
    """Class specialization: instinct, muse, doctrine, bloodline..."""
    id: str
    name: str
    class_id: Optional[str] = None
    category: Optional[str] = None
    localized_name: Optional[str] = None
    trained_skills: Tuple[str, ...] = ()
    grants: Tuple[GrantRef, ...] = ()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SpecializationEntry":
        return cls(
            id=data["id"],
            name=data.get("name", data["id"]),
            class_id=data.get("class_id"),
            category=data.get("category"),
            localized_name=data.get("localized_name"),
            trained_skills=_tuple(data.get("trained_skills")),
            grants=tuple(GrantRef.from_dict(g) for g in data.get("grants", [])),
        )


@dataclass(frozen=True)
class SkillEntry:
    name: str
    ability: str

    @classmethod
    def from_dict(cls, data: Any) -> "SkillEntry":
        if isinstance(data, str):
            return cls(name=data.lower(), ability="int")
        return cls(name=data["name"].lower(), ability=data.get("ability", "int"))


DEFAULT_SKILLS: Tuple[SkillEntry, ...] = (
    SkillEntry("acrobatics", "dex"),
    SkillEntry("arcana", "int"),
    SkillEntry("athletics", "str"),
    SkillEntry("crafting", "int"),
    SkillEntry("deception", "cha"),
    SkillEntry("diplomacy", "cha"),
    SkillEntry("intimidation", "cha"),
    SkillEntry("medicine", "wis"),
    SkillEntry("nature", "wis"),
    SkillEntry("occultism", "int"),
    SkillEntry("performance", "cha"),
    SkillEntry("religion", "wis"),
    SkillEntry("society", "int"),
    SkillEntry("stealth", "dex"),
    SkillEntry("survival", "wis"),
    SkillEntry("thievery", "dex"),
)


# =============================================================================
# CATALOG REGISTRY
# =============================================================================

class Catalog:
    """Read-only registry over every catalog record, queried by id, trait and level."""

    def __init__(
        self,
        feats: Iterable[CatalogEntry] = (),
        classes: Iterable[ClassEntry] = (),
        ancestries: Iterable[AncestryEntry] = (),
        heritages: Iterable[HeritageEntry] = (),
        backgrounds: Iterable[BackgroundEntry] = (),
        specializations: Iterable[SpecializationEntry] = (),
        skills: Iterable[SkillEntry] = DEFAULT_SKILLS,
    ):
        self._entries: Dict[str, CatalogEntry] = {e.id: e for e in feats}
        self._classes: Dict[str, ClassEntry] = {c.id: c for c in classes}
        self._ancestries: Dict[str, AncestryEntry] = {a.id: a for a in ancestries}
        self._heritages: Dict[str, HeritageEntry] = {h.id: h for h in heritages}
        self._backgrounds: Dict[str, BackgroundEntry] = {b.id: b for b in backgrounds}
        self._specializations: Dict[str, SpecializationEntry] = {s.id: s for s in specializations}
        self._skills: Tuple[SkillEntry, ...] = tuple(skills)
        self._by_name: Dict[str, CatalogEntry] = {e.name.lower(): e for e in self._entries.values()}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Catalog":
        """Build a catalog from plain data; unknown top-level keys are ignored."""
        entries = [CatalogEntry.from_dict(f) for f in data.get("feats", [])]
        entries += [
            CatalogEntry.from_dict(f, kind=EntryKind.CLASS_FEATURE)
            for f in data.get("class_features", [])
        ]
        skills = data.get("skills")
        return cls(
            feats=entries,
            classes=[ClassEntry.from_dict(c) for c in data.get("classes", [])],
            ancestries=[AncestryEntry.from_dict(a) for a in data.get("ancestries", [])],
            heritages=[HeritageEntry.from_dict(h) for h in data.get("heritages", [])],
            backgrounds=[BackgroundEntry.from_dict(b) for b in data.get("backgrounds", [])],
            specializations=[SpecializationEntry.from_dict(s) for s in data.get("specializations", [])],
            skills=[SkillEntry.from_dict(s) for s in skills] if skills else DEFAULT_SKILLS,
        )

    # ==================== Entries ====================

    def get_entry(self, entry_id: Optional[str]) -> Optional[CatalogEntry]:
        """Get a feat or class feature by ID."""
        if entry_id is None:
            return None
        return self._entries.get(entry_id)

    def get_feat(self, feat_id: Optional[str]) -> Optional[CatalogEntry]:
        entry = self.get_entry(feat_id)
        if entry and entry.kind == EntryKind.FEAT:
            return entry
        return None

    def get_feats(self) -> List[CatalogEntry]:
        return [e for e in self._entries.values() if e.kind == EntryKind.FEAT]

    def get_entries(self) -> List[CatalogEntry]:
        return list(self._entries.values())

    def feats_by_trait(self, trait: str) -> List[CatalogEntry]:
        return [f for f in self.get_feats() if f.has_trait(trait)]

    def feats_by_level(self, max_level: int) -> List[CatalogEntry]:
        return [f for f in self.get_feats() if f.level <= max_level]

    def find_feat_by_name(self, name: str) -> Optional[CatalogEntry]:
        return self._by_name.get(name.strip().lower())

    # ==================== Character building blocks ====================

    def get_class(self, class_id: Optional[str]) -> Optional[ClassEntry]:
        return self._classes.get(class_id) if class_id else None

    def get_classes(self) -> List[ClassEntry]:
        return list(self._classes.values())

    def get_ancestry(self, ancestry_id: Optional[str]) -> Optional[AncestryEntry]:
        return self._ancestries.get(ancestry_id) if ancestry_id else None

    def get_ancestries(self) -> List[AncestryEntry]:
        return list(self._ancestries.values())

    def get_heritage(self, heritage_id: Optional[str]) -> Optional[HeritageEntry]:
        return self._heritages.get(heritage_id) if heritage_id else None

    def get_heritages(self, ancestry_id: Optional[str] = None) -> List[HeritageEntry]:
        return [
            h for h in self._heritages.values()
            if ancestry_id is None or h.ancestry_id in (None, ancestry_id)
        ]

    def get_background(self, background_id: Optional[str]) -> Optional[BackgroundEntry]:
        return self._backgrounds.get(background_id) if background_id else None

    def get_backgrounds(self) -> List[BackgroundEntry]:
        return list(self._backgrounds.values())

    def get_specialization(self, specialization_id: Optional[str]) -> Optional[SpecializationEntry]:
        return self._specializations.get(specialization_id) if specialization_id else None

    def get_specializations(self, class_id: Optional[str] = None) -> List[SpecializationEntry]:
        return [
            s for s in self._specializations.values()
            if class_id is None or s.class_id == class_id
        ]

    @property
    def skills(self) -> Tuple[SkillEntry, ...]:
        return self._skills

    def skill_names(self) -> List[str]:
        return [s.name for s in self._skills]

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, entry_id: str) -> bool:
        return entry_id in self._entries
