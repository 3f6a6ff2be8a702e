"""
Prerequisite Evaluator.

Free-text prerequisites ("trained in Athletics", "Str +2", "dragon instinct")
are parsed into one of a fixed set of typed requirements, tried in order,
first match wins. Text that matches nothing becomes an UnparsedRequirement:
it is treated as satisfied but reported as unrecognized so callers can warn.
"""
import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple, FrozenSet, Iterable, Union
from enum import Enum

from pf2e_engine.core.catalog import Catalog, CatalogEntry, DEFAULT_SKILLS
from pf2e_engine.core.character import DerivedCharacter, Eligibility
from pf2e_engine.core.rules_config import Proficiency

logger = logging.getLogger("pf2e_engine.prereq")


# ==================== Keyword tables ====================

SKILL_ALIASES: Dict[str, str] = {
    "acrobatic": "acrobatics",
    "athletic": "athletics",
    "craft": "crafting",
    "intimidate": "intimidation",
    "perform": "performance",
    "occult": "occultism",
    "thief": "thievery",
}

ABILITY_ALIASES: Dict[str, str] = {
    "strength": "str", "str": "str",
    "dexterity": "dex", "dex": "dex",
    "constitution": "con", "con": "con",
    "intelligence": "int", "int": "int",
    "wisdom": "wis", "wis": "wis",
    "charisma": "cha", "cha": "cha",
}

CLASS_FEATURE_CLASSES: Dict[str, FrozenSet[str]] = {
    "rage": frozenset({"barbarian"}),
    "sneak attack": frozenset({"rogue"}),
    "spellcasting": frozenset({
        "wizard", "cleric", "druid", "bard", "sorcerer",
        "witch", "magus", "oracle", "psychic", "summoner",
    }),
    "divine ally": frozenset({"champion"}),
    "wild shape": frozenset({"druid"}),
    "flurry of blows": frozenset({"monk"}),
    "hunting prey": frozenset({"ranger"}),
    "panache": frozenset({"swashbuckler"}),
}

ANCESTRY_KEYWORDS: Tuple[str, ...] = (
    "human", "elf", "dwarf", "gnome", "halfling", "goblin", "orc", "leshy",
)

SPECIALIZATION_CATEGORIES: Tuple[str, ...] = (
    "instinct", "muse", "doctrine", "bloodline", "research field", "mystery",
    "philosophy", "way", "hybrid study", "rune", "style", "element",
    "conscious mind", "lesson", "gate", "innovation", "implement",
    "arcane school", "eidolon",
)

SAVE_NAMES = ("fortitude", "reflex", "will")

_RANK_RE = re.compile(
    r"\b(untrained|trained|expert|master|legendary)\s+in\s+([a-z]+(?:\s+lore)?)\b"
)
_ABILITY_RE = re.compile(
    r"\b(strength|str|dexterity|dex|constitution|con|intelligence|int|wisdom|wis|charisma|cha)"
    r"\s+(\+)?(\d+)\b"
)
_CLASS_FEATURE_RE = re.compile(
    r"\b(" + "|".join(re.escape(k) for k in CLASS_FEATURE_CLASSES) + r")\b"
)
_ANCESTRY_RE = re.compile(r"\b(" + "|".join(ANCESTRY_KEYWORDS) + r")\b")
_SPECIALIZATION_RE = re.compile(
    r"^(?:the\s+)?(.+?)\s+("
    + "|".join(re.escape(c) for c in sorted(SPECIALIZATION_CATEGORIES, key=len, reverse=True))
    + r")$"
)


def normalize(text: str) -> str:
    return " ".join(text.strip().lower().rstrip(".;,").split())


def normalize_skill(name: str) -> str:
    name = normalize(name)
    return SKILL_ALIASES.get(name, name)


# =============================================================================
# REQUIREMENTS
# =============================================================================

@dataclass(frozen=True)
class SkillRankRequirement:
    text: str
    rank: Proficiency
    skill: str

    def check(self, character: DerivedCharacter) -> Optional[str]:
        if self.skill == "perception":
            current = character.perception
        elif self.skill in SAVE_NAMES:
            current = character.saves.get(self.skill, Proficiency.UNTRAINED)
        elif self.skill == "lore":
            lores = [r for s, r in character.skills.items() if s.endswith("lore")]
            current = max(lores, key=lambda r: r.rank_index, default=Proficiency.UNTRAINED)
        else:
            current = character.skill_rank(self.skill)
        if current >= self.rank:
            return None
        return f"Requires {self.rank.value} in {self.skill}"


@dataclass(frozen=True)
class AbilityScoreRequirement:
    text: str
    ability: str
    value: int
    modifier_style: bool
    label: str

    @property
    def required_score(self) -> int:
        if self.modifier_style:
            return 10 + 2 * self.value
        return self.value

    def check(self, character: DerivedCharacter) -> Optional[str]:
        if character.ability_score(self.ability) >= self.required_score:
            return None
        if self.modifier_style:
            return f"Requires {self.label} +{self.value}"
        return f"Requires {self.label} {self.value}"


@dataclass(frozen=True)
class ClassFeatureRequirement:
    text: str
    feature: str
    class_ids: FrozenSet[str]

    def check(self, character: DerivedCharacter) -> Optional[str]:
        classes = {c.lower() for c in character.class_ids}
        if classes & self.class_ids or self.feature in character.class_features:
            return None
        return f"Requires {self.feature}"


@dataclass(frozen=True)
class AncestryRequirement:
    text: str
    ancestry: str

    def check(self, character: DerivedCharacter) -> Optional[str]:
        if (character.ancestry_id or "").lower() == self.ancestry:
            return None
        return f"Requires {self.ancestry} ancestry"


@dataclass(frozen=True)
class SpecializationRequirement:
    text: str
    name: str
    category: str

    def check(self, character: DerivedCharacter) -> Optional[str]:
        for held in character.specialization_names:
            held = held.lower()
            if held and (self.name in held or held in self.name):
                return None
        return f"Requires {self.name} {self.category}"


@dataclass(frozen=True)
class FeatRequirement:
    text: str
    catalog_id: str
    name: str

    def check(self, character: DerivedCharacter) -> Optional[str]:
        if character.holds(self.catalog_id):
            return None
        return f"Requires {self.name}"


@dataclass(frozen=True)
class UnparsedRequirement:
    text: str

    def check(self, character: DerivedCharacter) -> Optional[str]:
        return None


Requirement = Union[
    SkillRankRequirement,
    AbilityScoreRequirement,
    ClassFeatureRequirement,
    AncestryRequirement,
    SpecializationRequirement,
    FeatRequirement,
    UnparsedRequirement,
]


# =============================================================================
# PARSING
# =============================================================================

def _known_skills(catalog: Optional[Catalog]) -> FrozenSet[str]:
    if catalog is not None:
        return frozenset(catalog.skill_names())
    return frozenset(s.name for s in DEFAULT_SKILLS)


def _match_skill_rank(text: str, catalog: Optional[Catalog]) -> Optional[SkillRankRequirement]:
    match = _RANK_RE.search(text)
    if not match:
        return None
    skill = normalize_skill(match.group(2))
    known = _known_skills(catalog)
    if skill in known or skill.endswith("lore") or skill == "perception" or skill in SAVE_NAMES:
        return SkillRankRequirement(text, Proficiency(match.group(1)), skill)
    # "trained in a skill" and the like name no concrete skill
    return None


def _match_ability(text: str) -> Optional[AbilityScoreRequirement]:
    match = _ABILITY_RE.search(text)
    if not match:
        return None
    label = match.group(1)
    return AbilityScoreRequirement(
        text=text,
        ability=ABILITY_ALIASES[label],
        value=int(match.group(3)),
        modifier_style=match.group(2) == "+",
        label=label.capitalize(),
    )


def _match_class_feature(text: str) -> Optional[ClassFeatureRequirement]:
    match = _CLASS_FEATURE_RE.search(text)
    if not match:
        return None
    feature = match.group(1)
    return ClassFeatureRequirement(text, feature, CLASS_FEATURE_CLASSES[feature])


def _match_ancestry(text: str) -> Optional[AncestryRequirement]:
    match = _ANCESTRY_RE.search(text)
    if not match:
        return None
    return AncestryRequirement(text, match.group(1))


def _match_specialization(text: str) -> Optional[SpecializationRequirement]:
    match = _SPECIALIZATION_RE.match(text)
    if not match:
        return None
    return SpecializationRequirement(text, match.group(1).strip(), match.group(2))


def _match_feat(text: str, catalog: Optional[Catalog]) -> Optional[FeatRequirement]:
    if catalog is None:
        return None
    feat = catalog.find_feat_by_name(text)
    if feat is None:
        return None
    return FeatRequirement(text, feat.id, feat.name)


def parse_prerequisite(text: str, catalog: Optional[Catalog] = None) -> Requirement:
    """Parse one prerequisite string into a typed requirement."""
    norm = normalize(text)
    return (
        _match_skill_rank(norm, catalog)
        or _match_ability(norm)
        or _match_class_feature(norm)
        or _match_ancestry(norm)
        or _match_specialization(norm)
        or _match_feat(norm, catalog)
        or UnparsedRequirement(text)
    )


# =============================================================================
# EVALUATION
# =============================================================================

class PrerequisiteStatus(str, Enum):
    MET = "met"
    UNMET = "unmet"
    UNRECOGNIZED = "unrecognized"


@dataclass(frozen=True)
class PrerequisiteResult:
    status: PrerequisiteStatus
    reason: Optional[str] = None
    requirement: Optional[Requirement] = None

    @property
    def met(self) -> bool:
        return self.status != PrerequisiteStatus.UNMET

    def to_dict(self) -> Dict[str, object]:
        return {
            "status": self.status.value,
            "met": self.met,
            "reason": self.reason,
            "requirement": type(self.requirement).__name__ if self.requirement else None,
        }


def evaluate(
    text: str,
    character: DerivedCharacter,
    catalog: Optional[Catalog] = None
) -> PrerequisiteResult:
    """Evaluate a single prerequisite string against a derived character."""
    requirement = parse_prerequisite(text, catalog)
    if isinstance(requirement, UnparsedRequirement):
        logger.debug(f"Unrecognized prerequisite assumed met: {text!r}")
        return PrerequisiteResult(PrerequisiteStatus.UNRECOGNIZED, requirement=requirement)

    reason = requirement.check(character)
    if reason is None:
        return PrerequisiteResult(PrerequisiteStatus.MET, requirement=requirement)
    return PrerequisiteResult(PrerequisiteStatus.UNMET, reason=reason, requirement=requirement)


def check_prerequisites(
    entry: CatalogEntry,
    character: DerivedCharacter,
    catalog: Optional[Catalog] = None,
    level: Optional[int] = None
) -> Eligibility:
    """
    Check an entry's level and every text prerequisite.

    Not short-circuiting: an unmet level is reported first, followed by every
    unmet text prerequisite. `level` is the level the entry is taken at when
    that is below the character's current level.
    """
    reasons: List[str] = []
    unrecognized: List[str] = []

    taken_at = character.level if level is None else min(level, character.level)
    if taken_at < entry.level:
        reasons.append(f"Requires level {entry.level}")

    for text in entry.prerequisites:
        result = evaluate(text, character, catalog)
        if result.status == PrerequisiteStatus.UNMET:
            reasons.append(result.reason or text)
        elif result.status == PrerequisiteStatus.UNRECOGNIZED:
            unrecognized.append(text)

    return Eligibility(
        met=not reasons,
        reasons=tuple(reasons),
        unrecognized=tuple(unrecognized),
    )


def extract_skill_from_prerequisites(prerequisites: Iterable[str]) -> Optional[str]:
    """First skill named by a rank prerequisite, used to group skill feats."""
    for text in prerequisites:
        match = _RANK_RE.search(normalize(text))
        if match:
            return normalize_skill(match.group(2))
    return None
