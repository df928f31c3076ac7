from __future__ import annotations

import pytest

from dancechives.approvers import (
    RequestType,
    can_user_approve_request,
    get_request_approvers,
)
from dancechives.auth import Actor, AuthLevel
from dancechives.crud import create_user, set_city_access
from dancechives.errors import TargetNotFound, ValidationError

from conftest import actor_for


def test_event_approvers_in_order(session, graph, scene):
    approvers = get_request_approvers(
        session, graph, RequestType.TAGGING, event_id="e1"
    )
    assert approvers == ["creator", "team", "mod-nyc", "admin"]


def test_moderator_without_city_access_is_excluded(session, graph, scene):
    approvers = get_request_approvers(
        session, graph, RequestType.TEAM_MEMBER, event_id="e1"
    )
    assert "mod-la" not in approvers


def test_all_city_access_moderator_is_included(session, graph, scene):
    set_city_access(session, "mod-la", all_cities=True, replace_city=False)
    approvers = get_request_approvers(
        session, graph, RequestType.TAGGING, event_id="e1"
    )
    assert approvers.index("mod-la") > approvers.index("team")
    assert approvers.index("mod-la") < approvers.index("admin")


def test_creator_who_is_also_admin_is_listed_once(session, graph, scene):
    create_user(
        session,
        graph,
        username="boss",
        auth_level=AuthLevel.SUPER_ADMIN,
        user_id="boss",
    )
    graph.add_event("e2", title="Boss Jam", creator_id="boss")
    approvers = get_request_approvers(
        session, graph, RequestType.TAGGING, event_id="e2"
    )
    assert approvers.count("boss") == 1
    assert approvers[0] == "boss"
    assert "mod-nyc" not in approvers


def test_removed_team_member_is_no_longer_an_approver(session, graph, scene):
    graph.add_team_member("e1", "u1")
    assert "u1" in get_request_approvers(
        session, graph, RequestType.TAGGING, event_id="e1"
    )
    graph.remove_team_member("e1", "u1")
    approvers = get_request_approvers(
        session, graph, RequestType.TAGGING, event_id="e1"
    )
    assert "u1" not in approvers
    assert "creator" in approvers


def test_global_requests_go_to_admins(session, graph, scene):
    assert get_request_approvers(session, graph, RequestType.AUTH_LEVEL_CHANGE) == [
        "admin"
    ]
    assert get_request_approvers(session, graph, RequestType.GLOBAL_ACCESS) == [
        "admin"
    ]


def test_event_requests_need_an_existing_event(session, graph, scene):
    with pytest.raises(ValidationError):
        get_request_approvers(session, graph, RequestType.TAGGING)
    with pytest.raises(TargetNotFound):
        get_request_approvers(session, graph, RequestType.TAGGING, event_id="nope")


@pytest.mark.parametrize(
    "request_type, event_id",
    [
        (RequestType.TAGGING, "e1"),
        (RequestType.TEAM_MEMBER, "e1"),
        (RequestType.AUTH_LEVEL_CHANGE, None),
    ],
)
def test_single_user_check_agrees_with_full_set(
    session, graph, scene, request_type, event_id
):
    approvers = set(
        get_request_approvers(session, graph, request_type, event_id=event_id)
    )
    for user in vars(scene).values():
        expected = user.id in approvers
        assert (
            can_user_approve_request(
                session, graph, actor_for(user), request_type, event_id=event_id
            )
            is expected
        ), user.id


def test_unknown_user_cannot_approve(session, graph, scene):
    assert not can_user_approve_request(
        session, graph, Actor(user_id="nobody"), RequestType.TAGGING, event_id="e1"
    )


def test_approver_check_uses_the_actor_level(session, graph, scene):
    promoted = Actor(user_id="u1", auth_level=AuthLevel.ADMIN)
    assert can_user_approve_request(
        session, graph, promoted, RequestType.AUTH_LEVEL_CHANGE
    )
    assert not can_user_approve_request(
        session, graph, actor_for(scene.u1), RequestType.AUTH_LEVEL_CHANGE
    )


def test_city_moderator_actor_needs_city_access(session, graph, scene):
    assert can_user_approve_request(
        session, graph, actor_for(scene.mod_nyc), RequestType.TAGGING, event_id="e1"
    )
    assert not can_user_approve_request(
        session, graph, actor_for(scene.mod_la), RequestType.TAGGING, event_id="e1"
    )
