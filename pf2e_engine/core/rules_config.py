"""
Rules Configuration System.

Holds the game-specific numeric tables the engine reads (proficiency rank
bonuses, ability boost thresholds, boost and skill increase levels, the
dedication feat requirement) so the derivation logic stays independent of a
particular ruleset printing.

Default configuration follows the Pathfinder 2e Remaster rules.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Any, List, Optional, Tuple
import json
from pathlib import Path


class Proficiency(str, Enum):
    """Proficiency ranks, in their total order."""
    UNTRAINED = "untrained"
    TRAINED = "trained"
    EXPERT = "expert"
    MASTER = "master"
    LEGENDARY = "legendary"

    @property
    def rank_index(self) -> int:
        return PROFICIENCY_ORDER.index(self)

    def __ge__(self, other):
        if isinstance(other, Proficiency):
            return self.rank_index >= other.rank_index
        return NotImplemented

    def __gt__(self, other):
        if isinstance(other, Proficiency):
            return self.rank_index > other.rank_index
        return NotImplemented

    def __le__(self, other):
        if isinstance(other, Proficiency):
            return self.rank_index <= other.rank_index
        return NotImplemented

    def __lt__(self, other):
        if isinstance(other, Proficiency):
            return self.rank_index < other.rank_index
        return NotImplemented

    def step_up(self) -> "Proficiency":
        if self is Proficiency.LEGENDARY:
            return self
        return PROFICIENCY_ORDER[self.rank_index + 1]

    @classmethod
    def from_index(cls, index: int) -> "Proficiency":
        index = max(0, min(index, len(PROFICIENCY_ORDER) - 1))
        return PROFICIENCY_ORDER[index]

    @classmethod
    def parse(cls, value: Any) -> "Proficiency":
        """Accept a rank name, a Proficiency or a 0-4 rank index."""
        if isinstance(value, Proficiency):
            return value
        if isinstance(value, int):
            return cls.from_index(value)
        return cls(str(value).strip().lower())


PROFICIENCY_ORDER: List[Proficiency] = [
    Proficiency.UNTRAINED,
    Proficiency.TRAINED,
    Proficiency.EXPERT,
    Proficiency.MASTER,
    Proficiency.LEGENDARY,
]

ABILITIES: Tuple[str, ...] = ("str", "dex", "con", "int", "wis", "cha")


@dataclass
class RulesConfig:
    """
    Configuration for the ruleset tables.

    Every constant the recalculation reads lives here; nothing in the
    derivation stages hard-codes a level or a bonus.
    """
    # Proficiency bonus added per rank (on top of level unless the
    # proficiency-without-level variant is on)
    rank_bonuses: Dict[str, int] = field(default_factory=lambda: {
        "untrained": 0, "trained": 2, "expert": 4, "master": 6, "legendary": 8,
    })
    proficiency_without_level: bool = False

    # Ability boosts
    base_ability_score: int = 10
    boost_threshold: int = 18
    boost_below_threshold: int = 2
    boost_at_or_above_threshold: int = 1
    flaw_amount: int = 2
    ability_boost_levels: List[int] = field(default_factory=lambda: [5, 10, 15, 20])
    boosts_per_level: int = 4
    free_boosts_at_creation: int = 4

    # Skills
    skill_increase_levels: List[int] = field(default_factory=lambda: [3, 5, 7, 9, 11, 13, 15, 17, 19])
    # (minimum level, highest rank a skill increase may reach)
    skill_rank_caps: List[Tuple[int, str]] = field(default_factory=lambda: [
        (1, "expert"), (7, "master"), (15, "legendary"),
    ])

    # Archetypes: additional feats from the archetype required after a dedication
    dedication_feats_required: int = 1

    # Perception is trained for every class unless the class says otherwise
    default_perception: str = "trained"

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary for serialization."""
        return {
            "rank_bonuses": dict(self.rank_bonuses),
            "proficiency_without_level": self.proficiency_without_level,
            "base_ability_score": self.base_ability_score,
            "boost_threshold": self.boost_threshold,
            "boost_below_threshold": self.boost_below_threshold,
            "boost_at_or_above_threshold": self.boost_at_or_above_threshold,
            "flaw_amount": self.flaw_amount,
            "ability_boost_levels": list(self.ability_boost_levels),
            "boosts_per_level": self.boosts_per_level,
            "free_boosts_at_creation": self.free_boosts_at_creation,
            "skill_increase_levels": list(self.skill_increase_levels),
            "skill_rank_caps": [list(cap) for cap in self.skill_rank_caps],
            "dedication_feats_required": self.dedication_feats_required,
            "default_perception": self.default_perception,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RulesConfig":
        """Create config from dictionary; missing keys keep their defaults."""
        defaults = cls()
        caps = data.get("skill_rank_caps")
        return cls(
            rank_bonuses=dict(data.get("rank_bonuses", defaults.rank_bonuses)),
            proficiency_without_level=data.get("proficiency_without_level", False),
            base_ability_score=data.get("base_ability_score", defaults.base_ability_score),
            boost_threshold=data.get("boost_threshold", defaults.boost_threshold),
            boost_below_threshold=data.get("boost_below_threshold", defaults.boost_below_threshold),
            boost_at_or_above_threshold=data.get(
                "boost_at_or_above_threshold", defaults.boost_at_or_above_threshold
            ),
            flaw_amount=data.get("flaw_amount", defaults.flaw_amount),
            ability_boost_levels=list(data.get("ability_boost_levels", defaults.ability_boost_levels)),
            boosts_per_level=data.get("boosts_per_level", defaults.boosts_per_level),
            free_boosts_at_creation=data.get("free_boosts_at_creation", defaults.free_boosts_at_creation),
            skill_increase_levels=list(data.get("skill_increase_levels", defaults.skill_increase_levels)),
            skill_rank_caps=[tuple(cap) for cap in caps] if caps else defaults.skill_rank_caps,
            dedication_feats_required=data.get(
                "dedication_feats_required", defaults.dedication_feats_required
            ),
            default_perception=data.get("default_perception", defaults.default_perception),
        )

    def save_to_file(self, filepath: Path) -> None:
        """Save configuration to JSON file."""
        with open(filepath, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)

    @classmethod
    def load_from_file(cls, filepath: Path) -> "RulesConfig":
        """Load configuration from JSON file."""
        with open(filepath, 'r') as f:
            data = json.load(f)
        return cls.from_dict(data)

    # ==================== Derived helpers ====================

    def apply_boost(self, score: int) -> int:
        """A boost adds the full amount below the threshold, one point above."""
        if score >= self.boost_threshold:
            return score + self.boost_at_or_above_threshold
        return score + self.boost_below_threshold

    def is_boost_level(self, level: int) -> bool:
        return level in self.ability_boost_levels

    def max_skill_rank(self, level: int) -> Proficiency:
        """Highest rank a skill increase taken at `level` may reach."""
        best = Proficiency.TRAINED
        for min_level, rank in sorted(self.skill_rank_caps):
            if level >= min_level:
                best = Proficiency.parse(rank)
        return best

    def proficiency_bonus(self, level: int, rank: Proficiency) -> int:
        if rank is Proficiency.UNTRAINED:
            return 0
        bonus = self.rank_bonuses.get(rank.value, 0)
        if self.proficiency_without_level:
            return bonus
        return level + bonus


# Global rules configuration instance
# This can be modified at runtime or loaded from a file
_current_config: Optional[RulesConfig] = None


def get_rules_config() -> RulesConfig:
    """Get the current rules configuration."""
    global _current_config
    if _current_config is None:
        _current_config = RulesConfig()
    return _current_config


def set_rules_config(config: RulesConfig) -> None:
    """Set the current rules configuration."""
    global _current_config
    _current_config = config


def reset_rules_config() -> None:
    """Reset to default rules configuration."""
    global _current_config
    _current_config = RulesConfig()


# Preset configurations for quick setup
PRESET_CONFIGS = {
    "remaster": RulesConfig(),
    # Older printings required two archetype feats before another dedication
    "legacy_dedication": RulesConfig(dedication_feats_required=2),
    "proficiency_without_level": RulesConfig(proficiency_without_level=True),
}


def apply_preset(preset_name: str) -> bool:
    """
    Apply a preset configuration.

    Args:
        preset_name: One of the keys of PRESET_CONFIGS

    Returns:
        True if preset was applied, False if preset name is invalid
    """
    if preset_name not in PRESET_CONFIGS:
        return False

    set_rules_config(RulesConfig.from_dict(PRESET_CONFIGS[preset_name].to_dict()))
    return True


class RulesContext:
    """
    Context manager for temporarily changing rules configuration.

    Example:
        with RulesContext(dedication_feats_required=2):
            # Two archetype feats are needed here
            pass
        # Original config is restored
    """

    def __init__(self, **kwargs):
        self.overrides = kwargs
        self.original_config = None

    def __enter__(self):
        self.original_config = get_rules_config()

        new_config_dict = self.original_config.to_dict()
        new_config_dict.update(self.overrides)

        set_rules_config(RulesConfig.from_dict(new_config_dict))
        return get_rules_config()

    def __exit__(self, exc_type, exc_val, exc_tb):
        set_rules_config(self.original_config)
        return False
