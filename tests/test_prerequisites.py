"""Tests for prerequisite parsing and evaluation."""
import pytest

from pf2e_engine.core.character import AbilityBoosts
from pf2e_engine.core.prerequisites import (
    AbilityScoreRequirement,
    AncestryRequirement,
    ClassFeatureRequirement,
    FeatRequirement,
    PrerequisiteStatus,
    SkillRankRequirement,
    SpecializationRequirement,
    UnparsedRequirement,
    check_prerequisites,
    evaluate,
    extract_skill_from_prerequisites,
    normalize_skill,
    parse_prerequisite,
)
from pf2e_engine.core.rules_config import Proficiency


class TestParsing:
    """Free text is matched against the typed patterns in order."""

    def test_skill_rank(self):
        """'trained in Athletics' parses to a skill rank requirement."""
        requirement = parse_prerequisite("trained in Athletics")

        assert isinstance(requirement, SkillRankRequirement)
        assert requirement.rank is Proficiency.TRAINED
        assert requirement.skill == "athletics"

    def test_lore_skill(self):
        """Lore skills keep their full name."""
        requirement = parse_prerequisite("expert in Warfare Lore")

        assert isinstance(requirement, SkillRankRequirement)
        assert requirement.skill == "warfare lore"

    def test_skill_alias(self):
        """Common short forms map to the skill name."""
        assert normalize_skill("Intimidate") == "intimidation"
        assert parse_prerequisite("master in Thief").skill == "thievery"

    def test_ability_modifier_style(self):
        """'Str +2' means a score of at least 14."""
        requirement = parse_prerequisite("Str +2")

        assert isinstance(requirement, AbilityScoreRequirement)
        assert requirement.ability == "str"
        assert requirement.required_score == 14

    def test_ability_score_style(self):
        """'Dexterity 16' is a raw score."""
        requirement = parse_prerequisite("Dexterity 16")

        assert isinstance(requirement, AbilityScoreRequirement)
        assert requirement.ability == "dex"
        assert requirement.required_score == 16

    def test_class_feature(self):
        """Class feature keywords map to the classes that have them."""
        requirement = parse_prerequisite("Rage")

        assert isinstance(requirement, ClassFeatureRequirement)
        assert requirement.class_ids == frozenset({"barbarian"})

    def test_ancestry(self):
        """Ancestry keywords match on word boundaries."""
        assert isinstance(parse_prerequisite("dwarf"), AncestryRequirement)
        assert isinstance(parse_prerequisite("itself"), UnparsedRequirement)

    def test_specialization(self):
        """'<name> <category>' names a class specialization."""
        requirement = parse_prerequisite("dragon instinct")

        assert isinstance(requirement, SpecializationRequirement)
        assert requirement.name == "dragon"
        assert requirement.category == "instinct"

    def test_feat_name_needs_catalog(self, catalog):
        """A feat name only resolves when a catalog is given."""
        assert isinstance(parse_prerequisite("Duelist Dedication"), UnparsedRequirement)

        requirement = parse_prerequisite("Duelist Dedication", catalog)
        assert isinstance(requirement, FeatRequirement)
        assert requirement.catalog_id == "duelist-dedication"

    def test_unrecognized_text(self, catalog):
        """Text naming no concrete skill falls through to Unparsed."""
        requirement = parse_prerequisite("trained in at least one skill", catalog)

        assert isinstance(requirement, UnparsedRequirement)
        assert requirement.text == "trained in at least one skill"

    def test_extract_skill(self):
        """The first skill named by a rank prerequisite groups skill feats."""
        assert extract_skill_from_prerequisites(["Str +2", "expert in Stealth"]) == "stealth"
        assert extract_skill_from_prerequisites(["Rage"]) is None


class TestEvaluation:
    """Requirements are checked against the derived character."""

    def test_skill_rank_met_and_unmet(self, fighter, derive, catalog):
        """The fighter is trained in athletics but not an expert."""
        character = derive(fighter)

        assert evaluate("trained in Athletics", character, catalog).status == PrerequisiteStatus.MET
        result = evaluate("expert in Athletics", character, catalog)
        assert result.status == PrerequisiteStatus.UNMET
        assert result.reason == "Requires expert in athletics"

    def test_perception_and_saves(self, fighter, derive, catalog):
        """Perception and saving throws are valid rank targets."""
        character = derive(fighter)

        assert evaluate("expert in Perception", character, catalog).met
        assert evaluate("expert in Fortitude", character, catalog).met
        assert not evaluate("expert in Will", character, catalog).met

    def test_monotonic_in_skill_rank(self, make_snapshot, derive, catalog):
        """Raising a skill from trained to expert keeps 'trained in' satisfied."""
        trained = derive(make_snapshot(level=3))
        expert = derive(make_snapshot(level=3, skill_increases={3: "athletics"}))

        assert expert.skill_rank("athletics") is Proficiency.EXPERT
        assert evaluate("trained in Athletics", trained, catalog).met
        assert evaluate("trained in Athletics", expert, catalog).met

    def test_ability_score(self, make_snapshot, derive, catalog):
        """'Dexterity +2' needs a score of 14."""
        low = derive(make_snapshot(class_ids=("rogue",), base_ability_scores={"dex": 12}))
        high = derive(make_snapshot(
            class_ids=("rogue",),
            base_ability_scores={"dex": 12},
            ability_boosts=AbilityBoosts(free=("dex",)),
        ))

        result = evaluate("Dexterity +2", low, catalog)
        assert result.status == PrerequisiteStatus.UNMET
        assert result.reason == "Requires Dexterity +2"
        assert evaluate("Dexterity +2", high, catalog).met

    def test_class_feature(self, make_snapshot, derive, catalog):
        """Rage is satisfied by the barbarian class only."""
        barbarian = derive(make_snapshot(class_ids=("barbarian",)))
        fighter = derive(make_snapshot())

        assert evaluate("Rage", barbarian, catalog).met
        assert evaluate("Rage", fighter, catalog).reason == "Requires rage"

    def test_ancestry(self, make_snapshot, derive, catalog):
        """Ancestry keywords compare against the ancestry id."""
        dwarf = derive(make_snapshot(ancestry_id="dwarf"))
        human = derive(make_snapshot())

        assert evaluate("dwarf", dwarf, catalog).met
        assert evaluate("dwarf", human, catalog).reason == "Requires dwarf ancestry"

    @pytest.mark.parametrize("specializations,expected", [
        (("dragon-instinct",), True),
        (("giant-instinct",), False),
        ((), False),
    ])
    def test_specialization(self, make_snapshot, derive, catalog, specializations, expected):
        """Only the matching specialization satisfies 'dragon instinct'."""
        character = derive(make_snapshot(class_ids=("barbarian",), specialization_ids=specializations))

        assert evaluate("dragon instinct", character, catalog).met is expected

    def test_unrecognized_is_assumed_met(self, fighter, derive, catalog):
        """Unparsed text never blocks but is reported as unrecognized."""
        result = evaluate("worships a nature deity", derive(fighter), catalog)

        assert result.status == PrerequisiteStatus.UNRECOGNIZED
        assert result.met is True


class TestCheckPrerequisites:
    """Whole-entry checks report every unmet requirement."""

    def test_level_reported_first(self, make_snapshot, derive, catalog):
        """An unmet level comes before the text prerequisites."""
        character = derive(make_snapshot(class_ids=("barbarian",), specialization_ids=("giant-instinct",)))
        entry = catalog.get_entry("dragons-rage-breath")

        eligibility = check_prerequisites(entry, character, catalog)

        assert eligibility.met is False
        assert eligibility.reasons == ("Requires level 6", "Requires dragon instinct")

    def test_taken_level_below_current(self, make_snapshot, derive, catalog):
        """A feat recorded at level 1 fails a level 2 requirement even on a level 5 character."""
        character = derive(make_snapshot(level=5))
        entry = catalog.get_entry("powerful-leap")

        assert check_prerequisites(entry, character, catalog).met is True
        assert check_prerequisites(entry, character, catalog, level=1).reasons == ("Requires level 2",)

    def test_unrecognized_collected(self, fighter, derive, catalog):
        """Unparsed prerequisites are collected without failing the check."""
        entry = catalog.get_entry("assurance")

        eligibility = check_prerequisites(entry, derive(fighter), catalog)

        assert eligibility.met is True
        assert eligibility.unrecognized == ("trained in at least one skill",)
