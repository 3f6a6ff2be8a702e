"""Tests for the HTTP adapter."""
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from pf2e_engine.main import app
from pf2e_engine.services.catalog_loader import CatalogLoader

BUNDLED_CATALOG = Path(__file__).parent.parent / "pf2e_engine" / "data" / "catalog"


@pytest.fixture
def client():
    CatalogLoader.reset()
    CatalogLoader(BUNDLED_CATALOG)
    with TestClient(app) as test_client:
        yield test_client
    CatalogLoader.reset()


@pytest.fixture
def fighter_payload():
    return {"level": 1, "ancestry_id": "human", "background_id": "acolyte", "class_ids": ["fighter"]}


class TestService:
    """Health endpoints."""

    def test_root(self, client):
        response = client.get("/")

        assert response.status_code == 200
        assert response.json()["status"] == "online"

    def test_health(self, client):
        """The health check reports the loaded catalog."""
        data = client.get("/api/health").json()

        assert data["status"] == "healthy"
        assert data["catalog_entries"] > 0


class TestRecalculate:
    """POST /api/characters/recalculate"""

    def test_derived_character(self, client, fighter_payload):
        """The derived character comes back with its reconciled snapshot."""
        response = client.post("/api/characters/recalculate", json={"snapshot": fighter_payload})

        assert response.status_code == 200
        data = response.json()
        assert data["derived"]["hit_points"] == 18
        assert data["derived"]["skills"]["athletics"] == "trained"
        granted = [s["catalog_id"] for s in data["snapshot"]["selections"]]
        assert granted == ["reactive-strike", "shield-block"]

    def test_camel_case_snapshot(self, client):
        """Older payloads are accepted."""
        payload = {"ancestryId": "dwarf", "classId": "fighter", "level": 5}

        data = client.post("/api/characters/recalculate", json={"snapshot": payload}).json()

        assert data["derived"]["hit_points"] == 65

    def test_malformed_snapshot(self, client):
        """A snapshot of the wrong shape is a 422 with the field named."""
        response = client.post("/api/characters/recalculate", json={"snapshot": {"level": "one"}})

        assert response.status_code == 422
        error = response.json()["error"]
        assert error["code"] == "SNAPSHOT_MALFORMED"
        assert error["details"]["field"] == "level"

    def test_warnings_returned(self, client, fighter_payload):
        """Soft problems travel with the result."""
        fighter_payload["selections"] = [{"catalog_id": "no-such-feat"}]

        data = client.post("/api/characters/recalculate", json={"snapshot": fighter_payload}).json()

        assert [w["code"] for w in data["warnings"]] == ["UNKNOWN_CATALOG_ENTRY"]


class TestEdits:
    """Select, remove and boost endpoints."""

    def test_select(self, client, fighter_payload):
        """An accepted selection returns the next snapshot."""
        response = client.post("/api/characters/select", json={
            "snapshot": fighter_payload,
            "catalog_id": "combat-climber",
            "source": "skill",
        })

        assert response.status_code == 200
        data = response.json()
        assert data["valid"] is True
        assert "combat-climber" in [s["catalog_id"] for s in data["snapshot"]["selections"]]

    def test_rejected_select_is_conflict(self, client, fighter_payload):
        """Illegal commits are 409s with the rejection code."""
        response = client.post("/api/characters/select", json={
            "snapshot": fighter_payload,
            "catalog_id": "powerful-leap",
            "source": "skill",
        })

        assert response.status_code == 409
        error = response.json()["error"]
        assert error["code"] == "PREREQUISITES_UNMET"
        assert error["details"]["reasons"] == ["Requires level 2"]
        assert error["details"]["catalog_id"] == "powerful-leap"

    def test_dedication_lock(self, client, fighter_payload):
        """The dedication lock surfaces as DEDICATION_LOCKED."""
        fighter_payload["level"] = 4
        fighter_payload["selections"] = [
            {"catalog_id": "duelist-dedication", "level": 2, "source": "class"},
        ]

        response = client.post("/api/characters/select", json={
            "snapshot": fighter_payload,
            "catalog_id": "assassins-trick",
            "level": 4,
            "source": "class",
        })

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "DEDICATION_LOCKED"

    def test_remove_cascade(self, client):
        """Removing a granter removes its grants."""
        snapshot = {
            "ancestry_id": "human",
            "class_ids": ["wizard"],
            "selections": [{
                "catalog_id": "field-training",
                "choices": {"skill": "athletics", "skillFeat": "combat-climber"},
            }],
        }

        data = client.post("/api/characters/remove", json={
            "snapshot": snapshot, "catalog_id": "field-training",
        }).json()

        ids = [s["catalog_id"] for s in data["snapshot"]["selections"]]
        assert "combat-climber" not in ids
        assert "field-training" not in ids

    def test_remove_granted(self, client, fighter_payload):
        """Granted selections can't be removed directly."""
        response = client.post("/api/characters/remove", json={
            "snapshot": fighter_payload, "catalog_id": "shield-block",
        })

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "SLOT_GRANTED"

    def test_ability_boosts(self, client, fighter_payload):
        """Boosts apply through the API."""
        data = client.post("/api/characters/ability-boosts", json={
            "snapshot": fighter_payload, "level": 1, "boosts": ["str", "con"],
        }).json()

        assert data["derived"]["ability_scores"]["str"] == 12

    def test_invalid_boost_level(self, client, fighter_payload):
        """Level 4 has no boosts."""
        response = client.post("/api/characters/ability-boosts", json={
            "snapshot": fighter_payload, "level": 4, "boosts": ["str"],
        })

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "INVALID_BOOST"

    def test_request_validation(self, client, fighter_payload):
        """Bad request bodies are rejected before reaching the engine."""
        response = client.post("/api/characters/select", json={
            "snapshot": fighter_payload, "catalog_id": "toughness", "level": 25,
        })

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"


class TestChoicesAndPrerequisites:
    """Choice and prerequisite endpoints."""

    def test_choices(self, client):
        """Choice slots are listed in order."""
        data = client.post("/api/characters/choices", json={
            "snapshot": {"class_ids": ["wizard"]}, "catalog_id": "field-training",
        }).json()

        assert [c["flag"] for c in data["choices"]] == ["skill", "skillFeat"]
        assert data["choices"][0]["free_text"] is False

    def test_options(self, client):
        """Options depend on earlier choices."""
        data = client.post("/api/characters/options", json={
            "snapshot": {"ancestry_id": "human", "background_id": "acolyte", "class_ids": ["wizard"]},
            "catalog_id": "field-training",
            "flag": "skillFeat",
            "prior_choices": {"skill": "athletics"},
        }).json()

        assert data["options"] == ["assurance", "combat-climber", "titan-wrestler"]

    def test_unknown_flag(self, client):
        """A flag the entry doesn't have is not found."""
        response = client.post("/api/characters/options", json={
            "snapshot": {}, "catalog_id": "toughness", "flag": "skill",
        })

        assert response.status_code == 404

    def test_unknown_entry(self, client):
        """Choices of an unknown entry are not found."""
        response = client.post("/api/characters/choices", json={"snapshot": {}, "catalog_id": "nope"})

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND"

    def test_evaluate(self, client, fighter_payload):
        """Each prerequisite is reported with its status."""
        data = client.post("/api/characters/prerequisites/evaluate", json={
            "snapshot": fighter_payload,
            "prerequisites": ["trained in Athletics", "expert in Athletics", "follows a deity"],
        }).json()

        assert data["met"] is False
        assert [r["status"] for r in data["results"]] == ["met", "unmet", "unrecognized"]
        assert data["results"][1]["reason"] == "Requires expert in athletics"

    def test_available_feats(self, client, fighter_payload):
        """available_only drops feats that can't be taken."""
        everything = client.post("/api/characters/available-feats", json={"snapshot": fighter_payload}).json()
        available = client.post("/api/characters/available-feats", json={
            "snapshot": fighter_payload, "available_only": True,
        }).json()

        assert available["count"] < everything["count"]
        assert all(f["available"] for f in available["feats"])


class TestCatalogRoutes:
    """Read-only catalog browsing."""

    def test_list_feats_filtered(self, client):
        """Trait and level filters combine."""
        data = client.get("/api/catalog/feats", params={"trait": "archetype", "max_level": 2}).json()

        assert {f["id"] for f in data["feats"]} == {
            "duelist-dedication", "assassin-dedication", "loremaster-dedication",
        }

    def test_get_feat(self, client):
        """Single entries by id; unknown ids are 404."""
        assert client.get("/api/catalog/feats/toughness").json()["name"] == "Toughness"
        assert client.get("/api/catalog/feats/nope").status_code == 404

    def test_classes_and_ancestries(self, client):
        """Classes list their specializations, ancestries their heritages."""
        classes = {c["id"]: c for c in client.get("/api/catalog/classes").json()["classes"]}
        ancestries = {a["id"]: a for a in client.get("/api/catalog/ancestries").json()["ancestries"]}

        assert {s["id"] for s in classes["barbarian"]["specializations"]} == {"dragon-instinct", "giant-instinct"}
        assert "rock-dwarf" in [h["id"] for h in ancestries["dwarf"]["heritages"]]
