"""Who may approve a pending request.

Approver sets are recomputed on every call. ``get_request_approvers`` and
``can_user_approve_request`` share one qualification predicate so the two can
never disagree.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

from sqlalchemy.orm import Session

from .auth import (
    Actor,
    AuthLevel,
    can_tag_untag_any_user_anywhere,
    can_tag_untag_users_in_city,
    has_global_access,
)
from .crud import get_user, get_users_at_or_above, get_users_by_ids, has_city_access
from .errors import TargetNotFound, ValidationError
from .graph import GraphStore
from .models import User
from .utils import unique_preserving_order


class RequestType(str, Enum):
    TAGGING = "TAGGING"
    TEAM_MEMBER = "TEAM_MEMBER"
    GLOBAL_ACCESS = "GLOBAL_ACCESS"
    AUTH_LEVEL_CHANGE = "AUTH_LEVEL_CHANGE"


EVENT_SCOPED_TYPES = frozenset({RequestType.TAGGING, RequestType.TEAM_MEMBER})


@dataclass(frozen=True)
class ApprovalContext:
    request_type: RequestType
    event_id: str | None = None
    creator_id: str | None = None
    team_member_ids: frozenset[str] = field(default_factory=frozenset)
    city_id: str | None = None


def build_context(
    graph: GraphStore, request_type: RequestType, *, event_id: str | None = None
) -> ApprovalContext:
    request_type = RequestType(request_type)
    if request_type not in EVENT_SCOPED_TYPES:
        return ApprovalContext(request_type=request_type)
    if not event_id:
        raise ValidationError("Event ID is required")
    if not graph.event_exists(event_id):
        raise TargetNotFound(f"Event {event_id} not found")
    return ApprovalContext(
        request_type=request_type,
        event_id=event_id,
        creator_id=graph.get_event_creator(event_id),
        team_member_ids=frozenset(graph.get_event_team_members(event_id)),
        city_id=graph.get_event_city_id(event_id),
    )


def _qualifies(
    user_id: str,
    level: int,
    context: ApprovalContext,
    in_city: Callable[[], bool],
) -> bool:
    if context.request_type not in EVENT_SCOPED_TYPES:
        return has_global_access(level)
    if user_id == context.creator_id or user_id in context.team_member_ids:
        return True
    if can_tag_untag_any_user_anywhere(level):
        return True
    return can_tag_untag_users_in_city(level) and in_city()


def is_qualified_approver(user: User, context: ApprovalContext) -> bool:
    return _qualifies(
        user.id,
        user.auth_level,
        context,
        lambda: has_city_access(user, context.city_id),
    )


def is_qualified_actor(
    session: Session, actor: Actor, context: ApprovalContext
) -> bool:
    """``is_qualified_approver`` for the actor, using the level resolved on it.

    The user row is only loaded when city access decides the outcome.
    """

    def in_city() -> bool:
        user = get_user(session, actor.user_id)
        return user is not None and has_city_access(user, context.city_id)

    return _qualifies(actor.user_id, actor.auth_level, context, in_city)


def resolve_approvers(session: Session, context: ApprovalContext) -> list[str]:
    """Return approver ids ordered creator, team, city moderators, admins."""
    candidates: list[str] = []
    if context.request_type in EVENT_SCOPED_TYPES:
        if context.creator_id:
            candidates.append(context.creator_id)
        candidates.extend(sorted(context.team_member_ids))
        candidates.extend(
            user.id
            for user in get_users_at_or_above(session, AuthLevel.MODERATOR)
            if user.auth_level < AuthLevel.ADMIN
        )
    candidates.extend(
        user.id for user in get_users_at_or_above(session, AuthLevel.ADMIN)
    )
    ordered = unique_preserving_order(candidates)
    users = get_users_by_ids(session, ordered)
    return [
        user_id
        for user_id in ordered
        if user_id in users and is_qualified_approver(users[user_id], context)
    ]


def get_request_approvers(
    session: Session,
    graph: GraphStore,
    request_type: RequestType,
    *,
    event_id: str | None = None,
) -> list[str]:
    return resolve_approvers(
        session, build_context(graph, request_type, event_id=event_id)
    )


def can_user_approve_request(
    session: Session,
    graph: GraphStore,
    actor: Actor,
    request_type: RequestType,
    *,
    event_id: str | None = None,
) -> bool:
    context = build_context(graph, request_type, event_id=event_id)
    return is_qualified_actor(session, actor, context)
