"""Tests for the provenance-aware selection graph."""
import pytest

from pf2e_engine.core.catalog import Catalog, GrantRef
from pf2e_engine.core.character import Selection, SelectionSource
from pf2e_engine.core.errors import ErrorCode, WarningCode
from pf2e_engine.core.selection_graph import (
    GrantSource,
    commit,
    derive_grants,
    find_at_key,
    grant_slot_type,
    is_synthetic,
    occupants_at_key,
    orphaned_grants,
    reconcile,
    resolve_grant,
    retract,
    slot_conflicts,
)


@pytest.fixture
def graph_catalog() -> Catalog:
    """A grants B, B grants C; D grants whatever was picked for 'pick'."""
    return Catalog.from_dict({
        "feats": [
            {"id": "a", "name": "Alpha", "grants": ["b"]},
            {"id": "b", "name": "Beta", "grants": ["c"]},
            {"id": "c", "name": "Gamma"},
            {"id": "d", "name": "Delta", "grants": [{"choice_flag": "pick", "source": "general"}]},
            {"id": "e", "name": "Epsilon", "grants": [{"id": "c", "min_level": 5}]},
            {"id": "lore", "name": "Additional Lore", "repeatable": True},
            {"id": "plain", "name": "Plain"},
        ]
    })


def player(catalog_id, level=1, source=SelectionSource.GENERAL, slot_type=None, **choices):
    return Selection(catalog_id=catalog_id, level=level, source=source, slot_type=slot_type, choices=choices)


class TestGrantResolution:
    """GrantRefs turn into granted selections."""

    def test_static_grant(self):
        """A static grant gets a slot of its own and points at its granter."""
        selection, warning = resolve_grant(GrantRef(catalog_id="c"), "b", {}, 3)

        assert warning is None
        assert selection.granted_by == "b"
        assert selection.level == 3
        assert selection.source is SelectionSource.BONUS
        assert selection.slot_type == grant_slot_type("b", "c")

    def test_dynamic_grant(self):
        """A dynamic grant resolves to the value of the granter's choice."""
        grant = GrantRef(choice_flag="pick", source="general")

        selection, warning = resolve_grant(grant, "d", {"pick": "plain"}, 1)

        assert selection.catalog_id == "plain"
        assert selection.source is SelectionSource.GENERAL

    def test_unresolved_dynamic_grant_warns(self):
        """An unset choice skips the grant and yields a typed warning."""
        selection, warning = resolve_grant(GrantRef(choice_flag="pick"), "d", {}, 1)

        assert selection is None
        assert warning.code is WarningCode.UNRESOLVED_DYNAMIC_GRANT
        assert warning.choice_flag == "pick"

    def test_min_level_respected(self, graph_catalog):
        """Grants above the current level are not yet in effect."""
        entry = graph_catalog.get_entry("e")

        assert derive_grants(player("e"), entry, level=4)[0] == []
        granted, _ = derive_grants(player("e"), entry, level=5)
        assert [s.catalog_id for s in granted] == ["c"]
        assert granted[0].level == 5

    def test_synthetic_granters(self):
        """Snapshot-level granters use prefixed ids."""
        assert is_synthetic("class:fighter")
        assert not is_synthetic("a")
        assert not is_synthetic(None)


class TestCommit:
    """Committing selections into slots."""

    def test_commit_appends_transitive_grants(self, graph_catalog):
        """Committing A brings in B and, through B, C."""
        result = commit((), player("a"), graph_catalog.get_entry("a"), graph_catalog)

        assert result.accepted
        by_id = {s.catalog_id: s for s in result.selections}
        assert by_id["b"].granted_by == "a"
        assert by_id["c"].granted_by == "b"

    def test_replacing_removes_granted_children(self, graph_catalog):
        """Replacing A in its slot removes B and C with it."""
        first = commit((), player("a"), graph_catalog.get_entry("a"), graph_catalog)

        result = commit(first.selections, player("plain"), graph_catalog.get_entry("plain"), graph_catalog)

        assert result.accepted
        assert [s.catalog_id for s in result.selections] == ["plain"]
        assert result.replaced.catalog_id == "a"
        assert {s.catalog_id for s in result.removed} == {"b", "c"}

    def test_granted_slot_rejected(self, graph_catalog):
        """A slot held by a granted selection cannot be overwritten."""
        first = commit((), player("a"), graph_catalog.get_entry("a"), graph_catalog)
        granted_b = next(s for s in first.selections if s.catalog_id == "b")
        intruder = Selection("plain", level=granted_b.level, source=granted_b.source, slot_type=granted_b.slot_type)

        result = commit(first.selections, intruder, graph_catalog.get_entry("plain"), graph_catalog)

        assert not result.accepted
        assert result.rejection.code is ErrorCode.SLOT_GRANTED
        assert result.selections == first.selections

    def test_repeatable_entry_stacks(self, graph_catalog):
        """A repeatable entry with different choices can share a slot."""
        entry = graph_catalog.get_entry("lore")
        first = commit((), player("lore", topic="sailing"), entry)

        result = commit(first.selections, player("lore", topic="warfare"), entry)

        assert len(result.selections) == 2
        assert slot_conflicts(result.selections, graph_catalog) == []

    def test_replacing_a_stack_clears_the_slot(self, graph_catalog):
        """A different entry committed over stacked copies replaces all of them."""
        entry = graph_catalog.get_entry("lore")
        stacked = commit((), player("lore", topic="sailing"), entry).selections
        stacked = commit(stacked, player("lore", topic="warfare"), entry).selections

        result = commit(stacked, player("plain"), graph_catalog.get_entry("plain"), graph_catalog)

        assert result.accepted
        assert [s.catalog_id for s in result.selections] == ["plain"]
        assert result.replaced.choices == {"topic": "sailing"}
        assert [s.choices for s in result.removed] == [{"topic": "warfare"}]
        assert slot_conflicts(result.selections, graph_catalog) == []

    def test_recommitting_a_stacked_copy(self, graph_catalog):
        """The same choices again replace only the matching copy."""
        entry = graph_catalog.get_entry("lore")
        stacked = commit((), player("lore", topic="sailing"), entry).selections
        stacked = commit(stacked, player("lore", topic="warfare"), entry).selections

        result = commit(stacked, player("lore", topic="warfare"), entry)

        assert [s.choices["topic"] for s in result.selections] == ["sailing", "warfare"]
        assert result.replaced.choices == {"topic": "warfare"}

    def test_occupants_at_key(self):
        """Every copy in a slot is found."""
        selections = (player("lore", topic="x"), player("a", level=2), player("lore", topic="y"))

        assert occupants_at_key(selections, (SelectionSource.GENERAL, 1, None)) == [0, 2]
        assert occupants_at_key(selections, (SelectionSource.CLASS, 1, None)) == []

    def test_dynamic_grant_on_commit(self, graph_catalog):
        """D grants the entry named by its 'pick' choice."""
        result = commit((), player("d", pick="plain"), graph_catalog.get_entry("d"), graph_catalog)

        plain = next(s for s in result.selections if s.catalog_id == "plain")
        assert plain.granted_by == "d"
        assert result.warnings == ()


class TestRetract:
    """Retraction cascades through the grant chain."""

    def test_retract_cascades(self, graph_catalog):
        """Removing A removes B and C; nothing is left orphaned."""
        committed = commit((), player("a"), graph_catalog.get_entry("a"), graph_catalog).selections
        committed = committed + (player("plain", level=2),)

        remaining = retract(committed, "a")

        assert [s.catalog_id for s in remaining] == ["plain"]
        assert orphaned_grants(remaining) == []

    def test_retract_by_key(self, graph_catalog):
        """With a key, only the selection in that slot goes."""
        selections = (player("lore", level=1), player("lore", level=2))

        remaining = retract(selections, "lore", (SelectionSource.GENERAL, 2, None))

        assert [s.level for s in remaining] == [1]

    def test_find_at_key(self):
        """Slots are addressed by (source, level, slot type)."""
        selections = (player("a", level=1), player("b", level=2, source=SelectionSource.CLASS))

        assert find_at_key(selections, (SelectionSource.CLASS, 2, None)) == 1
        assert find_at_key(selections, (SelectionSource.CLASS, 1, None)) is None


class TestReconcile:
    """Grants are re-derived from scratch on every pass."""

    def test_stale_grants_dropped(self, graph_catalog):
        """A stored grant whose granter is gone disappears."""
        stale = Selection("c", source=SelectionSource.BONUS, slot_type="x", granted_by="missing")

        selections, warnings = reconcile((player("plain"), stale), graph_catalog, 1)

        assert [s.catalog_id for s in selections] == ["plain"]
        assert warnings == []

    def test_missing_grants_restored(self, graph_catalog):
        """A snapshot holding only A regains B and C."""
        selections, _ = reconcile((player("a"),), graph_catalog, 1)

        assert [s.catalog_id for s in selections] == ["a", "b", "c"]

    def test_stored_choices_preserved(self, graph_catalog):
        """Choices made on a granted selection survive reconciliation."""
        stored = Selection(
            "b", source=SelectionSource.BONUS, slot_type=grant_slot_type("a", "b"),
            granted_by="a", choices={"note": "kept"},
        )

        selections, _ = reconcile((player("a"), stored), graph_catalog, 1)

        b = next(s for s in selections if s.catalog_id == "b")
        assert b.choices == {"note": "kept"}

    def test_inactive_selection_grants_nothing(self, graph_catalog):
        """Selections above the current level do not grant yet."""
        selections, _ = reconcile((player("a", level=4),), graph_catalog, 2)

        assert [s.catalog_id for s in selections] == ["a"]

    def test_player_copy_wins(self, graph_catalog):
        """A grant the player already holds is not duplicated."""
        selections, _ = reconcile((player("a"), player("b", level=2)), graph_catalog, 2)

        assert [s.catalog_id for s in selections].count("b") == 1

    def test_snapshot_sources(self, graph_catalog):
        """Synthetic sources grant like selections do."""
        source = GrantSource("class:test", (GrantRef(catalog_id="b"),))

        selections, _ = reconcile((), graph_catalog, 1, [source])

        assert [(s.catalog_id, s.granted_by) for s in selections] == [("b", "class:test"), ("c", "b")]

    def test_idempotent(self, graph_catalog):
        """Reconciling twice gives the same arena."""
        once, _ = reconcile((player("a"), player("d", level=1, source=SelectionSource.CLASS, pick="plain")), graph_catalog, 1)
        twice, _ = reconcile(once, graph_catalog, 1)

        assert once == twice
