"""Pending requests: create, approve, deny, cancel and list them.

Every request moves ``PENDING -> APPROVED | DENIED | CANCELLED`` exactly once.
Approvers are resolved per call through :mod:`dancechives.approvers`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from .approvers import (
    RequestType,
    build_context,
    get_request_approvers,
    is_qualified_actor,
    is_qualified_approver,
)
from .auth import Actor, auth_level_name, is_valid_auth_level
from .crud import get_user, require_user, set_auth_level
from .errors import (
    AlreadyTagged,
    Conflict,
    Forbidden,
    NotFound,
    TargetNotFound,
    UserNotFound,
    ValidationError,
)
from .graph import GraphStore
from .models import (
    STATUS_APPROVED,
    STATUS_CANCELLED,
    STATUS_DENIED,
    STATUS_PENDING,
    AuthLevelChangeRequest,
    RequestApproval,
    TaggingRequest,
    TeamMemberRequest,
)
from .notifications import (
    AUTH_LEVEL_CHANGED,
    INCOMING_REQUEST,
    REQUEST_APPROVED,
    REQUEST_DENIED,
    TEAM_MEMBER_ADDED,
    create_notification,
)
from .roles import parse_role, to_storage_format
from .targets import (
    TagTarget,
    apply_target_tags,
    describe_target,
    notify_tagged_user,
    resolve_tag_target,
)
from .utils import utcnow

logger = logging.getLogger("uvicorn.error")

REQUEST_MODELS = {
    RequestType.TAGGING: TaggingRequest,
    RequestType.TEAM_MEMBER: TeamMemberRequest,
    RequestType.AUTH_LEVEL_CHANGE: AuthLevelChangeRequest,
}


@dataclass
class RequestOutcome:
    request: Any
    is_existing: bool = False


def _request_type(raw) -> RequestType:
    try:
        request_type = RequestType(str(raw).upper().replace("-", "_"))
    except ValueError as exc:
        raise ValidationError(f"Unknown request type: {raw}") from exc
    if request_type not in REQUEST_MODELS:
        raise ValidationError(f"Unsupported request type: {request_type.value}")
    return request_type


def _load_request(session: Session, request_type: RequestType, request_id: str):
    request = session.get(REQUEST_MODELS[request_type], request_id)
    if not request:
        raise NotFound("Request not found")
    return request


def _set_status(session: Session, request, status: str) -> None:
    now = utcnow()
    request.status = status
    request.updated_at = now
    request.resolved_at = now
    session.add(request)
    session.flush()


def has_user_responded(
    session: Session, request_type: RequestType, request_id: str, approver_id: str
) -> bool:
    stmt = select(RequestApproval.id).where(
        RequestApproval.request_type == request_type.value,
        RequestApproval.request_id == request_id,
        RequestApproval.approver_id == approver_id,
    )
    return session.scalars(stmt).first() is not None


def _check_response(
    session: Session,
    graph: GraphStore,
    actor: Actor,
    request_type: RequestType,
    request,
    *,
    approved: bool,
    event_id: str | None = None,
) -> None:
    if request.status != STATUS_PENDING:
        raise Conflict("Request is not pending")
    try:
        context = build_context(graph, request_type, event_id=event_id)
    except TargetNotFound as exc:
        raise TargetNotFound("Event no longer exists") from exc
    if not is_qualified_actor(session, actor, context):
        verb = "approve" if approved else "deny"
        raise Forbidden(f"You do not have permission to {verb} this request")
    if has_user_responded(session, request_type, request.id, actor.user_id):
        raise Conflict("You have already responded to this request")


def _save_response(
    session: Session,
    actor: Actor,
    request_type: RequestType,
    request,
    *,
    approved: bool,
    message: str | None,
) -> None:
    session.add(
        RequestApproval(
            request_type=request_type.value,
            request_id=request.id,
            approver_id=actor.user_id,
            approved=approved,
            message=message,
        )
    )
    _set_status(session, request, STATUS_APPROVED if approved else STATUS_DENIED)
    logger.info(
        "%s request %s %s by %s",
        request_type.value,
        request.id,
        "approved" if approved else "denied",
        actor.user_id,
    )


def _notify_approvers(
    session: Session,
    approver_ids: Iterable[str],
    *,
    title: str,
    message: str,
    request_type: RequestType,
    request_id: str,
    payload: dict[str, Any] | None = None,
    skip: str | None = None,
) -> int:
    sent = 0
    for approver_id in approver_ids:
        if approver_id == skip:
            continue
        create_notification(
            session,
            approver_id,
            INCOMING_REQUEST,
            title,
            message,
            payload=payload,
            related_request_type=request_type.value,
            related_request_id=request_id,
        )
        sent += 1
    return sent


# -- tagging requests -------------------------------------------------------


def _tagging_target(request: TaggingRequest) -> TagTarget:
    return TagTarget(
        event_id=request.event_id,
        role=parse_role(request.role),
        video_id=request.video_id,
        section_id=request.section_id,
    )


def find_pending_tagging_request(
    session: Session,
    *,
    sender_id: str,
    target_user_id: str,
    target: TagTarget,
) -> TaggingRequest | None:
    stmt = select(TaggingRequest).where(
        TaggingRequest.sender_id == sender_id,
        TaggingRequest.target_user_id == target_user_id,
        TaggingRequest.event_id == target.event_id,
        TaggingRequest.video_id.is_(None)
        if target.video_id is None
        else TaggingRequest.video_id == target.video_id,
        TaggingRequest.section_id.is_(None)
        if target.section_id is None
        else TaggingRequest.section_id == target.section_id,
        TaggingRequest.role == to_storage_format(target.role),
        TaggingRequest.status == STATUS_PENDING,
    )
    return session.scalars(stmt).first()


def submit_tagging_request(
    session: Session,
    graph: GraphStore,
    actor: Actor,
    target: TagTarget,
    target_user_id: str,
) -> RequestOutcome:
    """File a pending tag of ``target_user_id`` on an already validated target.

    An identical pending request is returned as-is and nobody is notified
    again.
    """
    require_user(session, target_user_id)
    existing = find_pending_tagging_request(
        session, sender_id=actor.user_id, target_user_id=target_user_id, target=target
    )
    if existing:
        return RequestOutcome(request=existing, is_existing=True)

    request = TaggingRequest(
        sender_id=actor.user_id,
        target_user_id=target_user_id,
        event_id=target.event_id,
        video_id=target.video_id,
        section_id=target.section_id,
        role=to_storage_format(target.role),
        status=STATUS_PENDING,
    )
    session.add(request)
    session.flush()

    approvers = get_request_approvers(
        session, graph, RequestType.TAGGING, event_id=target.event_id
    )
    if target_user_id == actor.user_id:
        message = f'Request for "{target.role}" for {describe_target(graph, target)}'
    else:
        target_user = get_user(session, target_user_id)
        message = (
            f'Request to tag {target_user.display_name} as "{target.role}" '
            f"for {describe_target(graph, target)}"
        )
    sent = _notify_approvers(
        session,
        approvers,
        title="New Request",
        message=message,
        request_type=RequestType.TAGGING,
        request_id=request.id,
        payload={"eventId": target.event_id},
        skip=actor.user_id,
    )
    logger.info(
        "Tagging request %s created by %s for %s (%s approvers notified)",
        request.id,
        actor.user_id,
        target_user_id,
        sent,
    )
    return RequestOutcome(request=request)


def create_tagging_request(
    session: Session,
    graph: GraphStore,
    actor: Actor,
    event_id: str,
    *,
    role: str,
    video_id: str | None = None,
    section_id: str | None = None,
) -> RequestOutcome:
    """Ask the approvers of an event to tag the actor with ``role``."""
    target = resolve_tag_target(
        graph, event_id, role, video_id=video_id, section_id=section_id
    )
    if graph.has_tag(target.target_type, target.target_id, actor.user_id, target.role):
        raise AlreadyTagged(
            f"You are already tagged as {target.role} in this {target.target_type.value}"
        )
    return submit_tagging_request(session, graph, actor, target, actor.user_id)


def approve_tagging_request(
    session: Session,
    graph: GraphStore,
    actor: Actor,
    request_id: str,
    message: str | None = None,
) -> TaggingRequest:
    request = _load_request(session, RequestType.TAGGING, request_id)
    _check_response(
        session,
        graph,
        actor,
        RequestType.TAGGING,
        request,
        approved=True,
        event_id=request.event_id,
    )
    target = _tagging_target(request)
    if target.video_id and not graph.video_exists_in_event(
        target.event_id, target.video_id
    ):
        raise TargetNotFound("Video no longer exists in this event")
    if target.section_id and not graph.section_exists_in_event(
        target.event_id, target.section_id
    ):
        raise TargetNotFound("Section no longer exists in this event")
    _save_response(
        session, actor, RequestType.TAGGING, request, approved=True, message=message
    )

    try:
        apply_target_tags(graph, target, request.target_user_id)
    except AlreadyTagged:
        logger.info(
            "Tagging request %s approved but %s was already tagged",
            request.id,
            request.target_user_id,
        )
    else:
        notify_tagged_user(
            session,
            graph,
            target,
            get_user(session, request.target_user_id),
            actor_id=request.sender_id,
        )

    create_notification(
        session,
        request.sender_id,
        REQUEST_APPROVED,
        "Request Approved",
        f'Approved for "{target.role}" for {describe_target(graph, target)}',
        payload={"eventId": target.event_id},
        related_request_type=RequestType.TAGGING.value,
        related_request_id=request.id,
    )
    return request


def deny_tagging_request(
    session: Session,
    graph: GraphStore,
    actor: Actor,
    request_id: str,
    message: str | None = None,
) -> TaggingRequest:
    request = _load_request(session, RequestType.TAGGING, request_id)
    _check_response(
        session,
        graph,
        actor,
        RequestType.TAGGING,
        request,
        approved=False,
        event_id=request.event_id,
    )
    _save_response(
        session, actor, RequestType.TAGGING, request, approved=False, message=message
    )
    target = _tagging_target(request)
    create_notification(
        session,
        request.sender_id,
        REQUEST_DENIED,
        "Request Denied",
        f'Denied for "{target.role}" for {describe_target(graph, target)}',
        payload={"eventId": target.event_id, "reason": message},
        related_request_type=RequestType.TAGGING.value,
        related_request_id=request.id,
    )
    return request


# -- team member requests ---------------------------------------------------


def create_team_member_request(
    session: Session, graph: GraphStore, actor: Actor, event_id: str
) -> TeamMemberRequest:
    if not event_id:
        raise ValidationError("Event ID is required")
    if not graph.event_exists(event_id):
        raise TargetNotFound("Event not found")
    if graph.is_event_creator(event_id, actor.user_id):
        raise ValidationError(
            "You are the event creator and cannot request team membership"
        )
    if graph.is_team_member(event_id, actor.user_id):
        raise Conflict("You are already a team member of this event")
    existing = session.scalars(
        select(TeamMemberRequest).where(
            TeamMemberRequest.event_id == event_id,
            TeamMemberRequest.sender_id == actor.user_id,
            TeamMemberRequest.status == STATUS_PENDING,
        )
    ).first()
    if existing:
        raise Conflict("A pending team member request already exists")

    sender = require_user(session, actor.user_id)
    request = TeamMemberRequest(
        event_id=event_id, sender_id=sender.id, status=STATUS_PENDING
    )
    session.add(request)
    session.flush()

    event_name = graph.get_event_title(event_id) or event_id
    _notify_approvers(
        session,
        get_request_approvers(session, graph, RequestType.TEAM_MEMBER, event_id=event_id),
        title="New Team Member Request",
        message=f"{sender.display_name} wants to join as a team member for {event_name}",
        request_type=RequestType.TEAM_MEMBER,
        request_id=request.id,
        payload={"eventId": event_id},
        skip=actor.user_id,
    )
    return request


def approve_team_member_request(
    session: Session,
    graph: GraphStore,
    actor: Actor,
    request_id: str,
    message: str | None = None,
) -> TeamMemberRequest:
    request = _load_request(session, RequestType.TEAM_MEMBER, request_id)
    _check_response(
        session,
        graph,
        actor,
        RequestType.TEAM_MEMBER,
        request,
        approved=True,
        event_id=request.event_id,
    )
    _save_response(
        session, actor, RequestType.TEAM_MEMBER, request, approved=True, message=message
    )
    graph.add_team_member(request.event_id, request.sender_id)
    event_name = graph.get_event_title(request.event_id) or request.event_id
    create_notification(
        session,
        request.sender_id,
        TEAM_MEMBER_ADDED,
        "Team Member Request Approved",
        f"You have been added as a team member for {event_name}",
        payload={"eventId": request.event_id},
        related_request_type=RequestType.TEAM_MEMBER.value,
        related_request_id=request.id,
    )
    return request


def deny_team_member_request(
    session: Session,
    graph: GraphStore,
    actor: Actor,
    request_id: str,
    message: str | None = None,
) -> TeamMemberRequest:
    request = _load_request(session, RequestType.TEAM_MEMBER, request_id)
    _check_response(
        session,
        graph,
        actor,
        RequestType.TEAM_MEMBER,
        request,
        approved=False,
        event_id=request.event_id,
    )
    _save_response(
        session, actor, RequestType.TEAM_MEMBER, request, approved=False, message=message
    )
    event_name = graph.get_event_title(request.event_id) or request.event_id
    create_notification(
        session,
        request.sender_id,
        REQUEST_DENIED,
        "Team Member Request Denied",
        f"Your team member request for {event_name} was denied",
        payload={"eventId": request.event_id, "reason": message},
        related_request_type=RequestType.TEAM_MEMBER.value,
        related_request_id=request.id,
    )
    return request


# -- auth level change requests ---------------------------------------------


def create_auth_level_change_request(
    session: Session,
    graph: GraphStore,
    actor: Actor,
    target_user_id: str,
    requested_level: int,
    message: str,
) -> AuthLevelChangeRequest:
    if not message or not message.strip():
        raise ValidationError(
            "Message is required for authorization level change requests"
        )
    if not is_valid_auth_level(requested_level):
        raise ValidationError("Invalid authorization level")
    target_user = get_user(session, target_user_id)
    if not target_user:
        raise UserNotFound("Target user not found")
    if target_user.auth_level == requested_level:
        raise ValidationError("Target user already has this authorization level")
    existing = session.scalars(
        select(AuthLevelChangeRequest).where(
            AuthLevelChangeRequest.target_user_id == target_user_id,
            AuthLevelChangeRequest.sender_id == actor.user_id,
            AuthLevelChangeRequest.status == STATUS_PENDING,
        )
    ).first()
    if existing:
        raise Conflict("A pending authorization level change request already exists")

    sender = require_user(session, actor.user_id)
    request = AuthLevelChangeRequest(
        sender_id=sender.id,
        target_user_id=target_user.id,
        current_level=target_user.auth_level,
        requested_level=int(requested_level),
        message=message.strip(),
        status=STATUS_PENDING,
    )
    session.add(request)
    session.flush()
    _notify_approvers(
        session,
        get_request_approvers(session, graph, RequestType.AUTH_LEVEL_CHANGE),
        title="New Authorization Level Change Request",
        message=(
            f"{sender.display_name} wants to change {target_user.display_name}'s "
            f"authorization level from {auth_level_name(request.current_level)} "
            f"to {auth_level_name(request.requested_level)}"
        ),
        request_type=RequestType.AUTH_LEVEL_CHANGE,
        request_id=request.id,
        skip=actor.user_id,
    )
    return request


def approve_auth_level_change_request(
    session: Session,
    graph: GraphStore,
    actor: Actor,
    request_id: str,
    message: str | None = None,
) -> AuthLevelChangeRequest:
    request = _load_request(session, RequestType.AUTH_LEVEL_CHANGE, request_id)
    _check_response(
        session,
        graph,
        actor,
        RequestType.AUTH_LEVEL_CHANGE,
        request,
        approved=True,
    )
    _save_response(
        session, actor, RequestType.AUTH_LEVEL_CHANGE, request, approved=True, message=message
    )
    target_user = set_auth_level(session, request.target_user_id, request.requested_level)
    create_notification(
        session,
        request.sender_id,
        REQUEST_APPROVED,
        "Authorization Level Change Approved",
        f"Authorization level change request for {target_user.display_name} has been approved",
        related_request_type=RequestType.AUTH_LEVEL_CHANGE.value,
        related_request_id=request.id,
    )
    create_notification(
        session,
        request.target_user_id,
        AUTH_LEVEL_CHANGED,
        "Your Authorization Level Changed",
        f"Your authorization level has been changed to {auth_level_name(request.requested_level)}",
        payload={"authLevel": request.requested_level},
        related_request_type=RequestType.AUTH_LEVEL_CHANGE.value,
        related_request_id=request.id,
    )
    return request


def deny_auth_level_change_request(
    session: Session,
    graph: GraphStore,
    actor: Actor,
    request_id: str,
    message: str | None = None,
) -> AuthLevelChangeRequest:
    request = _load_request(session, RequestType.AUTH_LEVEL_CHANGE, request_id)
    _check_response(
        session,
        graph,
        actor,
        RequestType.AUTH_LEVEL_CHANGE,
        request,
        approved=False,
    )
    _save_response(
        session, actor, RequestType.AUTH_LEVEL_CHANGE, request, approved=False, message=message
    )
    target_user = get_user(session, request.target_user_id)
    target_name = target_user.display_name if target_user else request.target_user_id
    create_notification(
        session,
        request.sender_id,
        REQUEST_DENIED,
        "Authorization Level Change Denied",
        f"Authorization level change request for {target_name} has been denied",
        payload={"reason": message},
        related_request_type=RequestType.AUTH_LEVEL_CHANGE.value,
        related_request_id=request.id,
    )
    return request


# -- generic entry points ---------------------------------------------------

_APPROVE = {
    RequestType.TAGGING: approve_tagging_request,
    RequestType.TEAM_MEMBER: approve_team_member_request,
    RequestType.AUTH_LEVEL_CHANGE: approve_auth_level_change_request,
}
_DENY = {
    RequestType.TAGGING: deny_tagging_request,
    RequestType.TEAM_MEMBER: deny_team_member_request,
    RequestType.AUTH_LEVEL_CHANGE: deny_auth_level_change_request,
}


def respond_to_request(
    session: Session,
    graph: GraphStore,
    actor: Actor,
    request_type,
    request_id: str,
    *,
    approve: bool,
    message: str | None = None,
):
    handlers = _APPROVE if approve else _DENY
    return handlers[_request_type(request_type)](
        session, graph, actor, request_id, message
    )


def cancel_request(session: Session, actor: Actor, request_type, request_id: str):
    """Cancel one of the actor's own pending requests."""
    request_type = _request_type(request_type)
    request = _load_request(session, request_type, request_id)
    if request.sender_id != actor.user_id:
        raise Forbidden("You can only cancel your own requests")
    if request.status != STATUS_PENDING:
        raise Conflict("Only pending requests can be cancelled")
    _set_status(session, request, STATUS_CANCELLED)
    return request


def get_incoming_requests(
    session: Session, graph: GraphStore, actor: Actor
) -> dict[str, list]:
    """Pending requests the actor may approve, newest first."""
    approver = get_user(session, actor.user_id)
    incoming: dict[str, list] = {request_type.value: [] for request_type in REQUEST_MODELS}
    if not approver:
        return incoming
    contexts: dict[tuple[RequestType, str | None], Any] = {}
    for request_type, model in REQUEST_MODELS.items():
        pending = session.scalars(
            select(model)
            .where(model.status == STATUS_PENDING)
            .order_by(model.created_at.desc())
        ).all()
        for request in pending:
            event_id = getattr(request, "event_id", None)
            key = (request_type, event_id)
            if key not in contexts:
                try:
                    contexts[key] = build_context(graph, request_type, event_id=event_id)
                except TargetNotFound:
                    contexts[key] = None
            context = contexts[key]
            if context is not None and is_qualified_approver(approver, context):
                incoming[request_type.value].append(request)
    return incoming


def get_outgoing_requests(session: Session, actor: Actor) -> dict[str, list]:
    outgoing: dict[str, list] = {}
    for request_type, model in REQUEST_MODELS.items():
        outgoing[request_type.value] = list(
            session.scalars(
                select(model)
                .where(model.sender_id == actor.user_id)
                .order_by(model.created_at.desc())
            ).all()
        )
    return outgoing


def get_pending_tag_requests_for_event(
    session: Session,
    actor: Actor,
    event_id: str,
    roles: Sequence[str] | None = None,
) -> dict[str, TaggingRequest]:
    """Map display role to the actor's own pending event-level tag request."""
    stmt = select(TaggingRequest).where(
        TaggingRequest.event_id == event_id,
        TaggingRequest.sender_id == actor.user_id,
        TaggingRequest.target_user_id == actor.user_id,
        TaggingRequest.status == STATUS_PENDING,
        TaggingRequest.video_id.is_(None),
        TaggingRequest.section_id.is_(None),
    )
    if roles:
        stmt = stmt.where(
            TaggingRequest.role.in_([to_storage_format(parse_role(r)) for r in roles])
        )
    return {
        parse_role(request.role): request
        for request in session.scalars(stmt.order_by(TaggingRequest.created_at)).all()
    }


def serialize_request(request) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "id": request.id,
        "senderId": request.sender_id,
        "status": request.status,
        "createdAt": request.created_at.isoformat(),
        "resolvedAt": request.resolved_at.isoformat() if request.resolved_at else None,
    }
    if isinstance(request, TaggingRequest):
        payload.update(
            type=RequestType.TAGGING.value,
            targetUserId=request.target_user_id,
            eventId=request.event_id,
            videoId=request.video_id,
            sectionId=request.section_id,
            role=parse_role(request.role),
        )
    elif isinstance(request, TeamMemberRequest):
        payload.update(type=RequestType.TEAM_MEMBER.value, eventId=request.event_id)
    else:
        payload.update(
            type=RequestType.AUTH_LEVEL_CHANGE.value,
            targetUserId=request.target_user_id,
            currentLevel=request.current_level,
            requestedLevel=request.requested_level,
            message=request.message,
        )
    return payload
