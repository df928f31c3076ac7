"""Batch tagging of users on events, sections and videos.

Each entry point validates its input, checks the target exists, then walks
the target users one at a time. Per-user outcomes are collected in a
``TagResult`` instead of aborting the whole batch.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable

from sqlalchemy.orm import Session

from .approvers import RequestType, can_user_approve_request
from .auth import Actor, can_edit_any_event
from .crud import get_user, get_users_by_ids
from .errors import (
    AlreadyTagged,
    DanceChivesError,
    Forbidden,
    InternalError,
    NotFound,
    TagNotFound,
    TargetNotFound,
    Unauthorized,
    UserNotFound,
    ValidationError,
)
from .graph import GraphStore, TargetType
from .models import User
from .roles import DANCER, EVENT_ROLES, SECTION_ROLES, WINNER, parse_scoped_role
from .targets import (
    TagTarget,
    apply_target_tags,
    notify_tagged_user,
    resolve_tag_target,
)
from .utils import unique_preserving_order
from .workflow import submit_tagging_request

logger = logging.getLogger("uvicorn.error")


@dataclass
class TagResult:
    succeeded: list[str] = field(default_factory=list)
    already_tagged: list[str] = field(default_factory=list)
    failed: list[dict[str, str]] = field(default_factory=list)
    pending: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.failed

    def as_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "succeeded": list(self.succeeded),
            "alreadyTagged": list(self.already_tagged),
            "failed": [dict(item) for item in self.failed],
            "pending": list(self.pending),
        }


def can_tag_directly(
    session: Session,
    graph: GraphStore,
    actor: Actor,
    event_id: str,
    *,
    allow_verified: bool = True,
) -> bool:
    if allow_verified and actor.verified:
        return True
    return can_user_approve_request(
        session, graph, actor, RequestType.TAGGING, event_id=event_id
    )


def _tag_user(
    session: Session,
    graph: GraphStore,
    actor: Actor,
    target: TagTarget,
    user_id: str,
    users: dict,
    result: TagResult,
) -> None:
    try:
        apply_target_tags(graph, target, user_id)
    except AlreadyTagged:
        result.already_tagged.append(user_id)
        return
    except NotFound as exc:
        result.failed.append({"userId": user_id, "error": exc.message})
        return
    result.succeeded.append(user_id)
    notify_tagged_user(
        session, graph, target, users.get(user_id), actor_id=actor.user_id
    )


def _request_user(
    session: Session,
    graph: GraphStore,
    actor: Actor,
    target: TagTarget,
    user_id: str,
    result: TagResult,
) -> None:
    if graph.has_tag(target.target_type, target.target_id, user_id, target.role):
        result.already_tagged.append(user_id)
        return
    try:
        submit_tagging_request(session, graph, actor, target, user_id)
    except UserNotFound as exc:
        result.failed.append({"userId": user_id, "error": exc.message})
        return
    result.pending.append(user_id)


def _run_batch(
    session: Session,
    graph: GraphStore,
    actor: Actor,
    user_ids: Iterable[str] | None,
    *,
    event_id: str,
    role: str,
    video_id: str | None = None,
    section_id: str | None = None,
    allow_verified: bool = True,
) -> TagResult:
    unique_ids = unique_preserving_order(user_ids)
    if not unique_ids:
        raise ValidationError("At least one user ID is required")
    target = resolve_tag_target(
        graph, event_id, role, video_id=video_id, section_id=section_id
    )
    result = TagResult()
    try:
        direct = can_tag_directly(
            session, graph, actor, target.event_id, allow_verified=allow_verified
        )
        users = get_users_by_ids(session, unique_ids)
        for user_id in unique_ids:
            if direct:
                _tag_user(session, graph, actor, target, user_id, users, result)
            else:
                _request_user(session, graph, actor, target, user_id, result)
    except DanceChivesError:
        raise
    except Exception as exc:
        logger.exception(
            "Unexpected error tagging users on %s %s",
            target.target_type.value,
            target.target_id,
        )
        raise InternalError() from exc

    logger.info(
        "Tagged %s as %s on %s %s by %s: %s succeeded, %s already tagged, "
        "%s failed, %s pending",
        len(unique_ids),
        target.role,
        target.target_type.value,
        target.target_id,
        actor.user_id,
        len(result.succeeded),
        len(result.already_tagged),
        len(result.failed),
        len(result.pending),
    )
    return result


def tag_users_with_role(
    session: Session,
    graph: GraphStore,
    actor: Actor,
    event_id: str,
    user_ids: Iterable[str],
    role: str,
) -> TagResult:
    return _run_batch(session, graph, actor, user_ids, event_id=event_id, role=role)


def tag_users_in_video(
    session: Session,
    graph: GraphStore,
    actor: Actor,
    event_id: str,
    video_id: str,
    user_ids: Iterable[str],
    role: str,
) -> TagResult:
    if not video_id:
        raise ValidationError("Video ID is required")
    return _run_batch(
        session,
        graph,
        actor,
        user_ids,
        event_id=event_id,
        role=role,
        video_id=video_id,
    )


def tag_users_in_section(
    session: Session,
    graph: GraphStore,
    actor: Actor,
    event_id: str,
    section_id: str,
    user_ids: Iterable[str],
    role: str,
) -> TagResult:
    if not section_id:
        raise ValidationError("Section ID is required")
    return _run_batch(
        session,
        graph,
        actor,
        user_ids,
        event_id=event_id,
        role=role,
        section_id=section_id,
    )


def tag_self_with_role(
    session: Session,
    graph: GraphStore,
    actor: Actor,
    event_id: str,
    role: str,
    *,
    video_id: str | None = None,
    section_id: str | None = None,
) -> TagResult:
    """Tag the actor directly when they may approve, otherwise file a request.

    Being verified is not enough to skip approval when tagging yourself.
    """
    return _run_batch(
        session,
        graph,
        actor,
        [actor.user_id],
        event_id=event_id,
        role=role,
        video_id=video_id,
        section_id=section_id,
        allow_verified=False,
    )


def remove_self_winner_tag_from_video(
    session: Session,
    graph: GraphStore,
    actor: Actor,
    event_id: str,
    video_id: str,
    user_id: str,
) -> None:
    """Remove the actor's own winner tag; no approval is involved."""
    if actor.user_id != user_id:
        raise Unauthorized("You can only remove your own winner tag")
    if not graph.event_exists(event_id):
        raise TargetNotFound("Event not found")
    if not graph.video_exists_in_event(event_id, video_id):
        raise TargetNotFound("Video not found in this event")
    graph.remove_tag(TargetType.VIDEO, video_id, user_id, WINNER)
    logger.info("User %s removed their winner tag from video %s", user_id, video_id)


def can_edit_event(graph: GraphStore, actor: Actor, event_id: str) -> bool:
    """Moderators and above, the event's creator and its team may edit its tags."""
    return (
        can_edit_any_event(actor.auth_level)
        or graph.is_event_creator(event_id, actor.user_id)
        or graph.is_team_member(event_id, actor.user_id)
    )


def _require_event(graph: GraphStore, event_id: str) -> None:
    if not event_id:
        raise ValidationError("Event ID is required")
    if not graph.event_exists(event_id):
        raise TargetNotFound("Event not found")


def _require_video(graph: GraphStore, event_id: str, video_id: str) -> None:
    _require_event(graph, event_id)
    if not graph.video_exists_in_event(event_id, video_id):
        raise TargetNotFound("Video not found in this event")


def _require_section(graph: GraphStore, event_id: str, section_id: str) -> None:
    _require_event(graph, event_id)
    if not graph.section_exists_in_event(event_id, section_id):
        raise TargetNotFound("Section not found in this event")


def _require_editor(
    graph: GraphStore, actor: Actor, event_id: str, action: str
) -> None:
    if not can_edit_event(graph, actor, event_id):
        raise Forbidden(f"You do not have permission to {action} for this event")


def remove_role_from_event(
    session: Session,
    graph: GraphStore,
    actor: Actor,
    event_id: str,
    user_id: str,
    role: str,
) -> None:
    """Remove an event role from a user: their own, or anyone's for editors."""
    parsed = parse_scoped_role(role, EVENT_ROLES, "event")
    _require_event(graph, event_id)
    if actor.user_id != user_id and not can_edit_event(graph, actor, event_id):
        raise Forbidden("You do not have permission to remove this role")
    graph.remove_tag(TargetType.EVENT, event_id, user_id, parsed)
    logger.info(
        "Removed %s from user %s on event %s by %s",
        parsed,
        user_id,
        event_id,
        actor.user_id,
    )


def remove_tag_from_video(
    session: Session,
    graph: GraphStore,
    actor: Actor,
    event_id: str,
    video_id: str,
    user_id: str,
) -> list[str]:
    """Strip every role the user holds on a video and return what was removed."""
    _require_video(graph, event_id, video_id)
    if not graph.is_user_tagged_in_video(event_id, video_id, user_id):
        raise TagNotFound("User is not tagged in this video")
    if actor.user_id != user_id and not can_edit_event(graph, actor, event_id):
        raise Forbidden("You do not have permission to remove this tag")
    with graph.lock:
        removed = graph.get_user_roles(TargetType.VIDEO, video_id, user_id)
        for role in removed:
            graph.remove_tag(TargetType.VIDEO, video_id, user_id, role)
    logger.info(
        "Removed %s from user %s on video %s by %s",
        ", ".join(removed),
        user_id,
        video_id,
        actor.user_id,
    )
    return removed


def remove_tag_from_section(
    session: Session,
    graph: GraphStore,
    actor: Actor,
    event_id: str,
    section_id: str,
    user_id: str,
    role: str = WINNER,
) -> None:
    """Remove a section Winner or Judge tag: own tag, or anyone's for editors."""
    parsed = parse_scoped_role(role, SECTION_ROLES, "section")
    _require_section(graph, event_id, section_id)
    if not graph.has_tag(TargetType.SECTION, section_id, user_id, parsed):
        raise TagNotFound(f"User is not a {parsed.lower()} of this section")
    if actor.user_id != user_id and not can_edit_event(graph, actor, event_id):
        raise Forbidden("You do not have permission to remove this tag")
    graph.remove_tag(TargetType.SECTION, section_id, user_id, parsed)
    logger.info(
        "Removed %s from user %s on section %s by %s",
        parsed,
        user_id,
        section_id,
        actor.user_id,
    )


def _require_tag_subject(session: Session, graph: GraphStore, user_id: str) -> User:
    user = get_user(session, user_id) if user_id else None
    if user is None or not graph.user_exists(user_id):
        raise UserNotFound(f"User {user_id} not found")
    return user


def mark_user_as_video_winner(
    session: Session,
    graph: GraphStore,
    actor: Actor,
    event_id: str,
    video_id: str,
    user_id: str,
) -> list[str]:
    """Tag a user Winner (and Dancer) on a battle or other video.

    Event editors only. Returns the roles newly applied; empty when the user
    already held both.
    """
    _require_editor(graph, actor, event_id, "mark winners")
    target = resolve_tag_target(graph, event_id, WINNER, video_id=video_id)
    user = _require_tag_subject(session, graph, user_id)
    applied: list[str] = []
    with graph.lock:
        for role in (DANCER, WINNER):
            if not graph.has_tag(TargetType.VIDEO, video_id, user_id, role):
                graph.apply_tag(TargetType.VIDEO, video_id, user_id, role)
                applied.append(role)
    if WINNER in applied:
        notify_tagged_user(session, graph, target, user, actor_id=actor.user_id)
        logger.info(
            "User %s marked winner of video %s by %s", user_id, video_id, actor.user_id
        )
    return applied


def mark_user_as_section_winner(
    session: Session,
    graph: GraphStore,
    actor: Actor,
    event_id: str,
    section_id: str,
    user_id: str,
) -> bool:
    """Add a user to a section's winners; existing winners are kept."""
    _require_editor(graph, actor, event_id, "mark winners")
    target = resolve_tag_target(graph, event_id, WINNER, section_id=section_id)
    user = _require_tag_subject(session, graph, user_id)
    try:
        graph.apply_tag(TargetType.SECTION, section_id, user_id, WINNER)
    except AlreadyTagged:
        return False
    notify_tagged_user(session, graph, target, user, actor_id=actor.user_id)
    logger.info(
        "User %s marked winner of section %s by %s", user_id, section_id, actor.user_id
    )
    return True


def remove_video_winner_tag(
    session: Session,
    graph: GraphStore,
    actor: Actor,
    event_id: str,
    video_id: str,
    user_id: str,
) -> None:
    """Take Winner off a user's video tags; Dancer stays."""
    _require_editor(graph, actor, event_id, "remove winner tags")
    _require_video(graph, event_id, video_id)
    graph.remove_tag(TargetType.VIDEO, video_id, user_id, WINNER)
    logger.info(
        "Winner tag of user %s removed from video %s by %s",
        user_id,
        video_id,
        actor.user_id,
    )


def remove_section_winner_tag(
    session: Session,
    graph: GraphStore,
    actor: Actor,
    event_id: str,
    section_id: str,
    user_id: str | None = None,
) -> list[str]:
    """Remove one winner from a section, or every winner when no user is given."""
    _require_editor(graph, actor, event_id, "remove winner tags")
    _require_section(graph, event_id, section_id)
    if user_id:
        graph.remove_tag(TargetType.SECTION, section_id, user_id, WINNER)
        removed = [user_id]
    else:
        with graph.lock:
            removed = graph.get_tagged_user_ids(TargetType.SECTION, section_id, WINNER)
            for winner_id in removed:
                graph.remove_tag(TargetType.SECTION, section_id, winner_id, WINNER)
    logger.info(
        "Winner tags of %s removed from section %s by %s",
        ", ".join(removed) or "nobody",
        section_id,
        actor.user_id,
    )
    return removed
