"""SQLAlchemy models for Dance Chives."""

from __future__ import annotations

import secrets
import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

from .utils import utcnow

Base = declarative_base()

STATUS_PENDING = "PENDING"
STATUS_APPROVED = "APPROVED"
STATUS_DENIED = "DENIED"
STATUS_CANCELLED = "CANCELLED"


def _uuid() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return utcnow()


def new_api_token() -> str:
    return secrets.token_urlsafe(32)


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_uuid)
    username = Column(String(64), nullable=False, unique=True)
    display_name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    auth_level = Column(Integer, default=0, nullable=False)
    # Unclaimed users are placeholders created by others; they get no notifications.
    claimed = Column(Boolean, default=True, nullable=False)
    verified = Column(Boolean, default=False, nullable=False)
    all_city_access = Column(Boolean, default=False, nullable=False)
    api_token = Column(String(128), nullable=False, unique=True, default=new_api_token)
    created_at = Column(DateTime, default=_now, nullable=False)
    updated_at = Column(DateTime, default=_now, onupdate=_now, nullable=False)

    city = relationship(
        "UserCity",
        back_populates="user",
        uselist=False,
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    notifications = relationship(
        "Notification",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="desc(Notification.created_at)",
    )


class UserCity(Base):
    """The single city a moderator administers."""

    __tablename__ = "user_cities"

    user_id = Column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    city_id = Column(String(64), nullable=False, index=True)
    created_at = Column(DateTime, default=_now, nullable=False)

    user = relationship("User", back_populates="city")


class Notification(Base):
    __tablename__ = "notifications"
    __table_args__ = (Index("ix_notifications_user_is_old", "user_id", "is_old"),)

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    type = Column(String(32), nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    payload = Column(JSON, nullable=True)
    related_request_type = Column(String(32), nullable=True)
    related_request_id = Column(String(36), nullable=True)
    is_old = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=_now, nullable=False, index=True)

    user = relationship("User", back_populates="notifications")


class TaggingRequest(Base):
    __tablename__ = "tagging_requests"

    id = Column(String(36), primary_key=True, default=_uuid)
    sender_id = Column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    target_user_id = Column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    event_id = Column(String(64), nullable=False, index=True)
    video_id = Column(String(64), nullable=True)
    section_id = Column(String(64), nullable=True)
    role = Column(String(32), nullable=False)
    status = Column(String(16), default=STATUS_PENDING, nullable=False, index=True)
    created_at = Column(DateTime, default=_now, nullable=False)
    updated_at = Column(DateTime, default=_now, onupdate=_now, nullable=False)
    resolved_at = Column(DateTime, nullable=True)

    sender = relationship("User", foreign_keys=[sender_id])
    target_user = relationship("User", foreign_keys=[target_user_id])


class TeamMemberRequest(Base):
    __tablename__ = "team_member_requests"

    id = Column(String(36), primary_key=True, default=_uuid)
    sender_id = Column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    event_id = Column(String(64), nullable=False, index=True)
    status = Column(String(16), default=STATUS_PENDING, nullable=False, index=True)
    created_at = Column(DateTime, default=_now, nullable=False)
    updated_at = Column(DateTime, default=_now, onupdate=_now, nullable=False)
    resolved_at = Column(DateTime, nullable=True)

    sender = relationship("User")


class AuthLevelChangeRequest(Base):
    __tablename__ = "auth_level_change_requests"

    id = Column(String(36), primary_key=True, default=_uuid)
    sender_id = Column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    target_user_id = Column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    current_level = Column(Integer, nullable=False)
    requested_level = Column(Integer, nullable=False)
    message = Column(Text, nullable=False)
    status = Column(String(16), default=STATUS_PENDING, nullable=False, index=True)
    created_at = Column(DateTime, default=_now, nullable=False)
    updated_at = Column(DateTime, default=_now, onupdate=_now, nullable=False)
    resolved_at = Column(DateTime, nullable=True)

    sender = relationship("User", foreign_keys=[sender_id])
    target_user = relationship("User", foreign_keys=[target_user_id])


class RequestApproval(Base):
    """One approver's response to one request."""

    __tablename__ = "request_approvals"
    __table_args__ = (
        UniqueConstraint(
            "request_type",
            "request_id",
            "approver_id",
            name="uq_request_approvals_approver",
        ),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    request_type = Column(String(32), nullable=False)
    request_id = Column(String(36), nullable=False, index=True)
    approver_id = Column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    approved = Column(Boolean, nullable=False)
    message = Column(Text, nullable=True)
    created_at = Column(DateTime, default=_now, nullable=False)
