"""Tests for choice slots, option lists and choice validation."""
from pf2e_engine.core.catalog import ChoiceType
from pf2e_engine.core.character import Selection, SelectionSource
from pf2e_engine.core.feat_choices import (
    ADDITIONAL_SKILL_FLAG,
    CONDITIONAL_SKILL_PREFIX,
    baseline_character,
    choices_for,
    granted_skills,
    hypothetical_character,
    is_free_text,
    options_for,
    validate_choices,
)
from pf2e_engine.core.rules_config import Proficiency


def spec_by_flag(entry, flag):
    return next(c for c in entry.choice_schema if c.flag == flag)


class TestChoiceSlots:
    """Static and dynamic choice slots."""

    def test_static_slots_in_order(self, catalog, wizard, derive):
        """Slots come back in catalog order."""
        entry = catalog.get_entry("field-training")

        flags = [c.flag for c in choices_for(entry, derive(wizard), catalog)]

        assert flags == ["skill", "skillFeat"]

    def test_no_slots(self, catalog, fighter, derive):
        """Entries without choices need nothing."""
        assert choices_for(catalog.get_entry("toughness"), derive(fighter), catalog) == []

    def test_plus_one_skill(self, catalog, wizard, derive):
        """'plus one skill' adds an additional skill slot."""
        entry = catalog.get_entry("loremaster-dedication")

        flags = [c.flag for c in choices_for(entry, derive(wizard), catalog)]

        assert flags == [ADDITIONAL_SKILL_FLAG]

    def test_already_trained_single_skill(self, catalog, make_snapshot, derive):
        """A replacement slot appears only when the granted skill is already trained."""
        entry = catalog.get_entry("duelist-dedication")
        untrained = derive(make_snapshot(level=2))
        trained = derive(make_snapshot(level=2, manual_skill_training=("acrobatics",)))

        assert choices_for(entry, untrained, catalog) == []
        flags = [c.flag for c in choices_for(entry, trained, catalog)]
        assert flags == [f"{CONDITIONAL_SKILL_PREFIX}0"]

    def test_already_trained_in_both(self, catalog, make_snapshot, derive):
        """'both' wording needs every granted skill already trained."""
        entry = catalog.get_entry("assassin-dedication")
        one = derive(make_snapshot(level=2, manual_skill_training=("stealth",)))
        both = derive(make_snapshot(level=2, manual_skill_training=("stealth", "deception")))

        assert choices_for(entry, one, catalog) == []
        flags = [c.flag for c in choices_for(entry, both, catalog)]
        assert flags == [f"{CONDITIONAL_SKILL_PREFIX}both"]

    def test_held_dedication_ignores_its_own_training(self, catalog, make_snapshot, derive):
        """Skills the dedication itself trains don't count as already trained."""
        snapshot = make_snapshot(
            level=2,
            selections=(Selection("duelist-dedication", level=2, source=SelectionSource.CLASS),),
        )
        character = derive(snapshot)
        entry = catalog.get_entry("duelist-dedication")

        assert character.skill_rank("acrobatics") is Proficiency.TRAINED
        assert baseline_character(entry, character, catalog).skill_rank("acrobatics") is Proficiency.UNTRAINED
        assert choices_for(entry, character, catalog) == []

    def test_granted_skills(self, catalog):
        """Dedication skills come from the entry's skill effects."""
        assert granted_skills(catalog.get_entry("assassin-dedication"), catalog) == ["deception", "stealth"]


class TestOptions:
    """Legal options per slot."""

    def test_explicit_options(self, catalog, wizard, derive):
        """Predefined options are returned as listed."""
        entry = catalog.get_entry("canny-acumen")

        options = options_for(spec_by_flag(entry, "save"), entry, derive(wizard), catalog)

        assert options == ["fortitude", "reflex", "will", "perception"]

    def test_skill_filter_by_rank(self, catalog, wizard, derive):
        """An untrained-only slot omits trained skills."""
        entry = catalog.get_entry("skill-training")

        options = options_for(spec_by_flag(entry, "skill"), entry, derive(wizard), catalog)

        assert "arcana" not in options
        assert "religion" not in options
        assert "athletics" in options

    def test_trained_only_filter(self, catalog, fighter, derive):
        """A trained-only slot lists exactly the trained skills."""
        entry = catalog.get_entry("assurance")

        options = options_for(spec_by_flag(entry, "skill"), entry, derive(fighter), catalog)

        assert options == ["athletics", "religion"]

    def test_feat_options_use_hypothetical_character(self, catalog, wizard, derive):
        """Picking athletics first makes athletics feats available."""
        entry = catalog.get_entry("field-training")
        spec = spec_by_flag(entry, "skillFeat")
        character = derive(wizard)

        without = options_for(spec, entry, character, catalog)
        with_athletics = options_for(spec, entry, character, catalog, {"skill": "athletics"})

        assert "combat-climber" not in without
        assert "assurance" in without
        assert with_athletics == ["assurance", "combat-climber", "titan-wrestler"]

    def test_hypothetical_leaves_snapshot_alone(self, catalog, wizard, derive):
        """The hypothetical character is a separate recalculation."""
        character = derive(wizard)
        entry = catalog.get_entry("field-training")

        hypothetical = hypothetical_character(entry, character, catalog, {"skill": "athletics"})

        assert hypothetical.skill_rank("athletics") is Proficiency.TRAINED
        assert character.skill_rank("athletics") is Proficiency.UNTRAINED
        assert character.snapshot.find("field-training") is None

    def test_feat_options_filter_by_category(self, catalog, make_snapshot, derive):
        """Natural Ambition offers 1st-level class feats only."""
        entry = catalog.get_entry("natural-ambition")
        character = derive(make_snapshot())

        options = options_for(spec_by_flag(entry, "classFeat"), entry, character, catalog)

        assert "power-attack" in options
        assert "toughness" not in options
        # prerequisites still apply: fighters have no rage
        assert "moment-of-clarity" not in options

    def test_held_feats_excluded(self, catalog, make_snapshot, derive):
        """Non-repeatable feats already held are not offered again."""
        entry = catalog.get_entry("natural-ambition")
        snapshot = make_snapshot(selections=(Selection("power-attack", source=SelectionSource.CLASS),))

        options = options_for(spec_by_flag(entry, "classFeat"), entry, derive(snapshot), catalog)

        assert "power-attack" not in options

    def test_listed_options_not_free_text(self, catalog):
        """A string slot with predefined options is not free text."""
        entry = catalog.get_entry("canny-acumen")
        spec = spec_by_flag(entry, "save")

        assert spec.type is ChoiceType.STRING
        assert not is_free_text(spec)


class TestValidateChoices:
    """Completeness and validity of committed choices."""

    def test_missing_choice(self, catalog, wizard, derive):
        """Every required slot must hold a value."""
        entry = catalog.get_entry("field-training")

        result = validate_choices(entry, derive(wizard), catalog, {"skill": "athletics"})

        assert result.complete is False
        assert result.missing == ["skillFeat"]

    def test_blank_counts_as_missing(self, catalog, wizard, derive):
        """Whitespace is not a choice."""
        entry = catalog.get_entry("skill-training")

        result = validate_choices(entry, derive(wizard), catalog, {"skill": "  "})

        assert result.missing == ["skill"]

    def test_complete_and_valid(self, catalog, wizard, derive):
        """Choices are checked in order, each against the ones before it."""
        entry = catalog.get_entry("field-training")

        result = validate_choices(
            entry, derive(wizard), catalog, {"skill": "Athletics", "skillFeat": "combat-climber"}
        )

        assert result.valid

    def test_invalid_value(self, catalog, wizard, derive):
        """A value outside the legal options is invalid."""
        entry = catalog.get_entry("skill-training")

        result = validate_choices(entry, derive(wizard), catalog, {"skill": "arcana"})

        assert result.complete is True
        assert result.invalid == ["skill"]
        assert not result.valid

    def test_dynamic_slot_required(self, catalog, make_snapshot, derive):
        """Dynamic dedication slots are required like static ones."""
        entry = catalog.get_entry("duelist-dedication")
        character = derive(make_snapshot(level=2, manual_skill_training=("acrobatics",)))

        assert validate_choices(entry, character, catalog, {}).missing == [f"{CONDITIONAL_SKILL_PREFIX}0"]
        assert validate_choices(entry, character, catalog, {f"{CONDITIONAL_SKILL_PREFIX}0": "stealth"}).valid
