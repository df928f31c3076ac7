"""Tag targets shared by direct tagging and request approval."""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.orm import Session

from .errors import TargetNotFound, ValidationError
from .graph import GraphStore, TargetType
from .models import User
from .notifications import create_tag_notification
from .roles import (
    DANCER,
    EVENT_ROLES,
    SECTION_ROLES,
    VIDEO_ROLES,
    WINNER,
    WINNER_VIDEO_TYPES,
    parse_scoped_role,
)


@dataclass(frozen=True)
class TagTarget:
    """A validated (event, optional section or video, role) combination."""

    event_id: str
    role: str
    video_id: str | None = None
    section_id: str | None = None

    @property
    def target_type(self) -> TargetType:
        if self.video_id:
            return TargetType.VIDEO
        if self.section_id:
            return TargetType.SECTION
        return TargetType.EVENT

    @property
    def target_id(self) -> str:
        return self.video_id or self.section_id or self.event_id


def resolve_tag_target(
    graph: GraphStore,
    event_id: str | None,
    role: str | None,
    *,
    video_id: str | None = None,
    section_id: str | None = None,
) -> TagTarget:
    """Validate ids and role for a scope, then check the target exists.

    Structural problems raise ``ValidationError``/``InvalidRole`` before any
    graph lookup; a missing event, section or video raises ``TargetNotFound``.
    """
    if not event_id:
        raise ValidationError("Event ID is required")
    if video_id and section_id:
        raise ValidationError("Cannot provide both videoId and sectionId")
    if video_id:
        parsed = parse_scoped_role(role, VIDEO_ROLES, "video")
    elif section_id:
        parsed = parse_scoped_role(role, SECTION_ROLES, "section")
    else:
        parsed = parse_scoped_role(role, EVENT_ROLES, "event")

    if not graph.event_exists(event_id):
        raise TargetNotFound("Event not found")
    if video_id:
        if not graph.video_exists_in_event(event_id, video_id):
            raise TargetNotFound("Video not found in this event")
        if parsed == WINNER and graph.get_video_type(video_id) not in WINNER_VIDEO_TYPES:
            raise ValidationError(
                "Winner can only be tagged on battle videos or videos with type other"
            )
    if section_id and not graph.section_exists_in_event(event_id, section_id):
        raise TargetNotFound("Section not found in this event")
    return TagTarget(
        event_id=event_id, role=parsed, video_id=video_id, section_id=section_id
    )


def apply_target_tags(graph: GraphStore, target: TagTarget, user_id: str) -> list[str]:
    """Apply the target's role and return every role newly written.

    A video winner is also a dancer on that video, so Winner brings Dancer
    along when it is missing. Raises ``AlreadyTagged`` when the primary role
    is already present.
    """
    with graph.lock:
        graph.apply_tag(target.target_type, target.target_id, user_id, target.role)
        applied = [target.role]
        if (
            target.target_type is TargetType.VIDEO
            and target.role == WINNER
            and not graph.has_tag(TargetType.VIDEO, target.target_id, user_id, DANCER)
        ):
            graph.apply_tag(TargetType.VIDEO, target.target_id, user_id, DANCER)
            applied.append(DANCER)
    return applied


def notify_tagged_user(
    session: Session,
    graph: GraphStore,
    target: TagTarget,
    user: User | None,
    *,
    actor_id: str,
    role: str | None = None,
) -> bool:
    """Notify a claimed user that someone else tagged them."""
    if user is None or not user.claimed or user.id == actor_id:
        return False
    create_tag_notification(
        session,
        user.id,
        event_id=target.event_id,
        event_title=graph.get_event_title(target.event_id),
        role=role or target.role,
        video_id=target.video_id,
        video_title=graph.get_video_title(target.video_id) if target.video_id else None,
        section_id=target.section_id,
        section_title=(
            graph.get_section_title(target.section_id) if target.section_id else None
        ),
    )
    return True


def describe_target(graph: GraphStore, target: TagTarget) -> str:
    event_name = graph.get_event_title(target.event_id) or target.event_id
    if target.video_id:
        return f"{graph.get_video_title(target.video_id) or target.video_id} in {event_name}"
    if target.section_id:
        section = graph.get_section_title(target.section_id) or target.section_id
        return f"{section} in {event_name}"
    return event_name
