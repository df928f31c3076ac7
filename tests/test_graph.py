from __future__ import annotations

import pytest

from dancechives.errors import AlreadyTagged, TagNotFound, TargetNotFound, UserNotFound
from dancechives.graph import NS, GraphStore, TargetType


@pytest.fixture()
def store():
    store = GraphStore()
    store.add_user("u1", "First Dancer")
    store.add_user("u2")
    store.add_city("nyc", "New York")
    store.add_event("e1", title="Bronx Breaks", creator_id="u1", city_id="nyc")
    store.add_section("e1", "s1", title="1v1")
    store.add_video("e1", "s1", "v1", title="Final")
    return store


def test_projections(store):
    assert store.event_exists("e1")
    assert store.get_event_creator("e1") == "u1"
    assert store.is_event_creator("e1", "u1")
    assert store.get_event_city_id("e1") == "nyc"
    assert store.get_city_name("nyc") == "New York"
    assert store.get_event_title("e1") == "Bronx Breaks"
    assert store.get_event_type("e1") == "battle"
    assert store.get_video_type("v1") == "battle"
    assert store.get_user_name("u1") == "First Dancer"


def test_section_and_video_must_belong_to_event(store):
    store.add_user("u3")
    store.add_event("e2", title="Other", creator_id="u3")
    assert store.section_exists_in_event("e1", "s1")
    assert not store.section_exists_in_event("e2", "s1")
    assert store.video_exists_in_event("e1", "v1")
    assert not store.video_exists_in_event("e2", "v1")


def test_add_event_requires_known_creator_and_city(store):
    with pytest.raises(UserNotFound):
        store.add_event("e2", title="Nope", creator_id="missing")
    with pytest.raises(TargetNotFound):
        store.add_event("e2", title="Nope", creator_id="u1", city_id="atlantis")


def test_add_video_rejects_unknown_type(store):
    with pytest.raises(ValueError):
        store.add_video("e1", "s1", "v2", title="Odd", video_type="documentary")


def test_add_team_member_is_idempotent(store):
    store.add_team_member("e1", "u2")
    store.add_team_member("e1", "u2")
    edges = list(store.graph.triples((None, NS.teamMember, None)))
    assert len(edges) == 1
    assert store.get_event_team_members("e1") == ["u2"]
    assert store.get_user_team_memberships("u2") == ["e1"]


def test_remove_team_member(store):
    store.add_team_member("e1", "u2")
    assert store.remove_team_member("e1", "u2") is True
    assert store.remove_team_member("e1", "u2") is False
    assert not store.is_team_member("e1", "u2")


def test_apply_tag_rejects_duplicates(store):
    store.apply_tag(TargetType.EVENT, "e1", "u2", "Dancer")
    before = len(store)
    with pytest.raises(AlreadyTagged):
        store.apply_tag(TargetType.EVENT, "e1", "u2", "Dancer")
    assert len(store) == before
    assert store.get_tagged_user_ids(TargetType.EVENT, "e1", "Dancer") == ["u2"]


def test_apply_tag_checks_target_and_user(store):
    with pytest.raises(TargetNotFound):
        store.apply_tag(TargetType.VIDEO, "nope", "u2", "Dancer")
    with pytest.raises(UserNotFound):
        store.apply_tag(TargetType.VIDEO, "v1", "ghost", "Dancer")


def test_remove_tag(store):
    store.apply_tag(TargetType.VIDEO, "v1", "u2", "Winner")
    store.remove_tag(TargetType.VIDEO, "v1", "u2", "Winner")
    assert not store.has_tag(TargetType.VIDEO, "v1", "u2", "Winner")
    with pytest.raises(TagNotFound):
        store.remove_tag(TargetType.VIDEO, "v1", "u2", "Winner")


def test_user_roles_come_back_in_display_format(store):
    store.apply_tag(TargetType.EVENT, "e1", "u2", "Team Member")
    store.apply_tag(TargetType.EVENT, "e1", "u2", "DJ")
    assert store.get_user_roles(TargetType.EVENT, "e1", "u2") == ["DJ", "Team Member"]


def test_is_user_tagged_in_video(store):
    assert not store.is_user_tagged_in_video("e1", "v1", "u2")
    store.apply_tag(TargetType.VIDEO, "v1", "u2", "Dancer")
    assert store.is_user_tagged_in_video("e1", "v1", "u2")
    store.add_event("e2", title="Other", creator_id="u1")
    assert not store.is_user_tagged_in_video("e2", "v1", "u2")


def test_checkpoint_round_trips_through_turtle(store, tmp_path):
    path = tmp_path / "graph.ttl"
    store.path = path
    store.apply_tag(TargetType.EVENT, "e1", "u2", "MC")
    assert store.checkpoint() is True
    assert store.checkpoint() is False

    reloaded = GraphStore(path)
    assert len(reloaded) == len(store)
    assert reloaded.has_tag(TargetType.EVENT, "e1", "u2", "MC")


def test_checkpoint_without_path_is_a_no_op(store):
    assert store.dirty
    assert store.checkpoint() is False
