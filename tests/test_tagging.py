from __future__ import annotations

import pytest
from sqlalchemy import select

from dancechives import tagging
from dancechives.errors import (
    Forbidden,
    InternalError,
    InvalidRole,
    TagNotFound,
    TargetNotFound,
    Unauthorized,
    UserNotFound,
    ValidationError,
)
from dancechives.graph import TargetType
from dancechives.models import Notification, TaggingRequest
from dancechives.notifications import INCOMING_REQUEST, TAGGED
from dancechives.tagging import (
    can_edit_event,
    mark_user_as_section_winner,
    mark_user_as_video_winner,
    remove_role_from_event,
    remove_section_winner_tag,
    remove_self_winner_tag_from_video,
    remove_tag_from_section,
    remove_tag_from_video,
    remove_video_winner_tag,
    tag_self_with_role,
    tag_users_in_section,
    tag_users_in_video,
    tag_users_with_role,
)

from conftest import actor_for


def _notifications(session, user_id=None):
    stmt = select(Notification)
    if user_id:
        stmt = stmt.where(Notification.user_id == user_id)
    return session.scalars(stmt).all()


def test_batch_reports_already_tagged_and_notifies_once(session, graph, scene):
    graph.apply_tag(TargetType.EVENT, "e1", "u1", "Dancer")

    result = tag_users_with_role(
        session, graph, actor_for(scene.admin), "e1", ["u1", "u2"], "DANCER"
    )

    assert result.succeeded == ["u2"]
    assert result.already_tagged == ["u1"]
    assert result.failed == []
    assert result.success
    notes = _notifications(session)
    assert len(notes) == 1
    assert notes[0].user_id == "u2"
    assert notes[0].type == TAGGED
    assert notes[0].payload == {"eventId": "e1", "role": "Dancer"}


def test_unknown_role_fails_whole_batch_without_writes(session, graph, scene):
    before = len(graph)
    with pytest.raises(InvalidRole):
        tag_users_with_role(
            session, graph, actor_for(scene.admin), "e1", ["u1", "u2"], "GOAT"
        )
    assert len(graph) == before
    assert _notifications(session) == []


def test_tagging_twice_does_not_duplicate(session, graph, scene):
    actor = actor_for(scene.admin)
    tag_users_with_role(session, graph, actor, "e1", ["u1"], "DJ")
    second = tag_users_with_role(session, graph, actor, "e1", ["u1"], "DJ")
    assert second.already_tagged == ["u1"]
    assert graph.get_tagged_user_ids(TargetType.EVENT, "e1", "DJ") == ["u1"]
    assert len(_notifications(session, "u1")) == 1


def test_duplicate_user_ids_are_collapsed(session, graph, scene):
    result = tag_users_with_role(
        session, graph, actor_for(scene.creator), "e1", ["u1", "u1", ""], "MC"
    )
    assert result.succeeded == ["u1"]


def test_empty_user_list_is_rejected(session, graph, scene):
    with pytest.raises(ValidationError):
        tag_users_with_role(session, graph, actor_for(scene.admin), "e1", [], "MC")


def test_missing_event_is_not_found(session, graph, scene):
    with pytest.raises(TargetNotFound):
        tag_users_with_role(
            session, graph, actor_for(scene.admin), "nope", ["u1"], "MC"
        )


def test_unknown_user_lands_in_failed(session, graph, scene):
    result = tag_users_with_role(
        session, graph, actor_for(scene.admin), "e1", ["u1", "missing"], "MC"
    )
    assert result.succeeded == ["u1"]
    assert result.failed == [{"userId": "missing", "error": "User missing not found"}]
    assert not result.success
    assert result.as_dict()["success"] is False


def test_unclaimed_and_self_tags_do_not_notify(session, graph, scene):
    result = tag_users_with_role(
        session,
        graph,
        actor_for(scene.admin),
        "e1",
        ["ghost", "admin"],
        "Photographer",
    )
    assert result.succeeded == ["ghost", "admin"]
    assert _notifications(session) == []


def test_verified_user_tags_directly(session, graph, scene):
    result = tag_users_with_role(
        session, graph, actor_for(scene.verified), "e1", ["u1"], "Judge"
    )
    assert result.succeeded == ["u1"]
    assert graph.has_tag(TargetType.EVENT, "e1", "u1", "Judge")


def test_unprivileged_actor_files_pending_requests(session, graph, scene):
    graph.apply_tag(TargetType.EVENT, "e1", "u2", "Dancer")

    result = tag_users_with_role(
        session, graph, actor_for(scene.outsider), "e1", ["u1", "u2"], "Dancer"
    )

    assert result.pending == ["u1"]
    assert result.already_tagged == ["u2"]
    assert not graph.has_tag(TargetType.EVENT, "e1", "u1", "Dancer")
    request = session.scalars(select(TaggingRequest)).one()
    assert request.sender_id == "outsider"
    assert request.target_user_id == "u1"
    assert request.role == "DANCER"
    incoming = session.scalars(
        select(Notification.user_id).where(Notification.type == INCOMING_REQUEST)
    ).all()
    assert sorted(incoming) == ["admin", "creator", "mod-nyc", "team"]


def test_winner_on_battle_video_also_tags_dancer(session, graph, scene):
    result = tag_users_in_video(
        session, graph, actor_for(scene.creator), "e1", "v1", ["u1"], "Winner"
    )
    assert result.succeeded == ["u1"]
    assert graph.get_user_roles(TargetType.VIDEO, "v1", "u1") == ["Dancer", "Winner"]
    notes = _notifications(session, "u1")
    assert len(notes) == 1
    assert notes[0].payload["videoId"] == "v1"
    assert 'video "Final"' in notes[0].message


def test_winner_rejected_on_freestyle_video(session, graph, scene):
    with pytest.raises(ValidationError):
        tag_users_in_video(
            session, graph, actor_for(scene.creator), "e1", "v2", ["u1"], "Winner"
        )
    assert graph.get_user_roles(TargetType.VIDEO, "v2", "u1") == []


def test_video_must_belong_to_event(session, graph, scene):
    graph.add_event("e2", title="Other", creator_id="creator")
    with pytest.raises(TargetNotFound) as excinfo:
        tag_users_in_video(
            session, graph, actor_for(scene.admin), "e2", "v1", ["u1"], "Dancer"
        )
    assert excinfo.value.message == "Video not found in this event"


def test_section_scope_only_allows_section_roles(session, graph, scene):
    with pytest.raises(InvalidRole):
        tag_users_in_section(
            session, graph, actor_for(scene.admin), "e1", "s1", ["u1"], "Dancer"
        )
    result = tag_users_in_section(
        session, graph, actor_for(scene.admin), "e1", "s1", ["u1"], "Judge"
    )
    assert result.succeeded == ["u1"]
    assert _notifications(session, "u1")[0].payload["sectionId"] == "s1"


def test_unexpected_store_error_becomes_internal_error(
    session, graph, scene, monkeypatch
):
    def boom(*args, **kwargs):
        raise RuntimeError("disk on fire")

    monkeypatch.setattr(tagging, "apply_target_tags", boom)
    with pytest.raises(InternalError) as excinfo:
        tag_users_with_role(
            session, graph, actor_for(scene.admin), "e1", ["u1"], "MC"
        )
    assert "disk" not in excinfo.value.message


def test_self_tag_by_approver_is_direct(session, graph, scene):
    result = tag_self_with_role(session, graph, actor_for(scene.team), "e1", "DJ")
    assert result.succeeded == ["team"]
    assert _notifications(session, "team") == []


def test_self_tag_by_verified_user_still_needs_approval(session, graph, scene):
    result = tag_self_with_role(session, graph, actor_for(scene.verified), "e1", "DJ")
    assert result.pending == ["verified"]
    assert not graph.has_tag(TargetType.EVENT, "e1", "verified", "DJ")


def test_self_winner_removal(session, graph, scene):
    graph.apply_tag(TargetType.VIDEO, "v1", "u1", "Winner")
    remove_self_winner_tag_from_video(
        session, graph, actor_for(scene.u1), "e1", "v1", "u1"
    )
    assert not graph.has_tag(TargetType.VIDEO, "v1", "u1", "Winner")


def test_self_winner_removal_rejects_other_users(session, graph, scene):
    graph.apply_tag(TargetType.VIDEO, "v1", "u1", "Winner")
    with pytest.raises(Unauthorized):
        remove_self_winner_tag_from_video(
            session, graph, actor_for(scene.u2), "e1", "v1", "u1"
        )
    assert graph.has_tag(TargetType.VIDEO, "v1", "u1", "Winner")


def test_self_winner_removal_without_tag(session, graph, scene):
    with pytest.raises(TagNotFound):
        remove_self_winner_tag_from_video(
            session, graph, actor_for(scene.u1), "e1", "v1", "u1"
        )


def test_remove_role_from_event(session, graph, scene):
    graph.apply_tag(TargetType.EVENT, "e1", "u1", "DJ")
    with pytest.raises(Forbidden):
        remove_role_from_event(session, graph, actor_for(scene.u2), "e1", "u1", "DJ")
    remove_role_from_event(session, graph, actor_for(scene.creator), "e1", "u1", "DJ")
    assert not graph.has_tag(TargetType.EVENT, "e1", "u1", "DJ")

    graph.apply_tag(TargetType.EVENT, "e1", "u2", "MC")
    remove_role_from_event(session, graph, actor_for(scene.u2), "e1", "u2", "mc")
    assert not graph.has_tag(TargetType.EVENT, "e1", "u2", "MC")


def test_event_editors(graph, scene):
    assert can_edit_event(graph, actor_for(scene.creator), "e1")
    assert can_edit_event(graph, actor_for(scene.team), "e1")
    assert can_edit_event(graph, actor_for(scene.mod_la), "e1")
    assert not can_edit_event(graph, actor_for(scene.verified), "e1")


def test_moderator_elsewhere_can_remove_event_role(session, graph, scene):
    graph.apply_tag(TargetType.EVENT, "e1", "u1", "DJ")
    remove_role_from_event(session, graph, actor_for(scene.mod_la), "e1", "u1", "DJ")
    assert not graph.has_tag(TargetType.EVENT, "e1", "u1", "DJ")


def test_remove_tag_from_video_strips_every_role(session, graph, scene):
    graph.apply_tag(TargetType.VIDEO, "v1", "u1", "Dancer")
    graph.apply_tag(TargetType.VIDEO, "v1", "u1", "Winner")

    with pytest.raises(Forbidden):
        remove_tag_from_video(session, graph, actor_for(scene.u2), "e1", "v1", "u1")

    removed = remove_tag_from_video(
        session, graph, actor_for(scene.team), "e1", "v1", "u1"
    )
    assert removed == ["Dancer", "Winner"]
    assert graph.get_user_roles(TargetType.VIDEO, "v1", "u1") == []


def test_remove_own_video_tag(session, graph, scene):
    graph.apply_tag(TargetType.VIDEO, "v2", "u2", "Dancer")
    assert remove_tag_from_video(
        session, graph, actor_for(scene.u2), "e1", "v2", "u2"
    ) == ["Dancer"]


def test_remove_tag_from_video_requires_a_tag(session, graph, scene):
    with pytest.raises(TagNotFound):
        remove_tag_from_video(
            session, graph, actor_for(scene.admin), "e1", "v1", "u1"
        )
    with pytest.raises(TargetNotFound):
        remove_tag_from_video(
            session, graph, actor_for(scene.admin), "e1", "nope", "u1"
        )


def test_remove_section_judge_and_winner(session, graph, scene):
    graph.apply_tag(TargetType.SECTION, "s1", "u1", "Judge")
    graph.apply_tag(TargetType.SECTION, "s1", "u2", "Winner")

    with pytest.raises(Forbidden):
        remove_tag_from_section(
            session, graph, actor_for(scene.u2), "e1", "s1", "u1", "JUDGE"
        )
    remove_tag_from_section(
        session, graph, actor_for(scene.u1), "e1", "s1", "u1", "JUDGE"
    )
    remove_tag_from_section(session, graph, actor_for(scene.creator), "e1", "s1", "u2")

    assert graph.get_user_roles(TargetType.SECTION, "s1", "u1") == []
    assert graph.get_user_roles(TargetType.SECTION, "s1", "u2") == []


def test_remove_section_tag_rejects_other_roles_and_missing_tags(
    session, graph, scene
):
    with pytest.raises(InvalidRole):
        remove_tag_from_section(
            session, graph, actor_for(scene.admin), "e1", "s1", "u1", "Dancer"
        )
    with pytest.raises(TagNotFound):
        remove_tag_from_section(session, graph, actor_for(scene.admin), "e1", "s1", "u1")


def test_mark_video_winner_adds_dancer_and_notifies(session, graph, scene):
    applied = mark_user_as_video_winner(
        session, graph, actor_for(scene.team), "e1", "v1", "u1"
    )
    assert applied == ["Dancer", "Winner"]
    assert [n.type for n in _notifications(session, "u1")] == [TAGGED]

    again = mark_user_as_video_winner(
        session, graph, actor_for(scene.team), "e1", "v1", "u1"
    )
    assert again == []
    assert len(_notifications(session, "u1")) == 1


def test_mark_video_winner_rules(session, graph, scene):
    with pytest.raises(Forbidden):
        mark_user_as_video_winner(
            session, graph, actor_for(scene.u2), "e1", "v1", "u1"
        )
    with pytest.raises(ValidationError):
        mark_user_as_video_winner(
            session, graph, actor_for(scene.creator), "e1", "v2", "u1"
        )
    with pytest.raises(UserNotFound):
        mark_user_as_video_winner(
            session, graph, actor_for(scene.creator), "e1", "v1", "nobody"
        )
    assert graph.get_user_roles(TargetType.VIDEO, "v1", "u1") == []


def test_remove_video_winner_keeps_dancer(session, graph, scene):
    mark_user_as_video_winner(session, graph, actor_for(scene.admin), "e1", "v1", "u1")
    with pytest.raises(Forbidden):
        remove_video_winner_tag(
            session, graph, actor_for(scene.u1), "e1", "v1", "u1"
        )
    remove_video_winner_tag(session, graph, actor_for(scene.creator), "e1", "v1", "u1")
    assert graph.get_user_roles(TargetType.VIDEO, "v1", "u1") == ["Dancer"]


def test_section_winners_accumulate_and_clear(session, graph, scene):
    editor = actor_for(scene.creator)
    assert mark_user_as_section_winner(session, graph, editor, "e1", "s1", "u1")
    assert mark_user_as_section_winner(session, graph, editor, "e1", "s1", "u2")
    assert not mark_user_as_section_winner(session, graph, editor, "e1", "s1", "u1")
    assert graph.get_tagged_user_ids(TargetType.SECTION, "s1", "Winner") == [
        "u1",
        "u2",
    ]

    assert remove_section_winner_tag(
        session, graph, editor, "e1", "s1", "u1"
    ) == ["u1"]
    assert remove_section_winner_tag(session, graph, editor, "e1", "s1") == ["u2"]
    assert graph.get_tagged_user_ids(TargetType.SECTION, "s1", "Winner") == []


def test_section_winner_editing_requires_editor(session, graph, scene):
    with pytest.raises(Forbidden):
        mark_user_as_section_winner(
            session, graph, actor_for(scene.u1), "e1", "s1", "u1"
        )
    with pytest.raises(Forbidden):
        remove_section_winner_tag(session, graph, actor_for(scene.u1), "e1", "s1")
