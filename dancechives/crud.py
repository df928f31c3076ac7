"""CRUD helpers for users and city access."""

from __future__ import annotations

from typing import Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from .auth import AuthLevel, is_valid_auth_level
from .errors import UserNotFound, ValidationError
from .graph import GraphStore
from .models import User, UserCity, new_api_token
from .utils import slugify


def get_user(session: Session, user_id: str) -> User | None:
    if not user_id:
        return None
    return session.get(User, user_id)


def require_user(session: Session, user_id: str) -> User:
    user = get_user(session, user_id)
    if not user:
        raise UserNotFound(f"User {user_id} not found")
    return user


def get_user_by_username(session: Session, username: str) -> User | None:
    normalized = slugify(username)
    if not normalized:
        return None
    return session.scalars(select(User).where(User.username == normalized)).first()


def get_user_by_token(session: Session, token: str | None) -> User | None:
    if not token:
        return None
    return session.scalars(select(User).where(User.api_token == token)).first()


def get_users_by_ids(session: Session, user_ids: Sequence[str]) -> dict[str, User]:
    if not user_ids:
        return {}
    users = session.scalars(select(User).where(User.id.in_(list(user_ids)))).all()
    return {user.id: user for user in users}


def get_users_at_or_above(session: Session, level: int) -> Sequence[User]:
    stmt = (
        select(User)
        .where(User.auth_level >= int(level))
        .order_by(User.auth_level.desc(), User.created_at.asc(), User.id.asc())
    )
    return session.scalars(stmt).all()


def create_user(
    session: Session,
    graph: GraphStore,
    *,
    username: str,
    display_name: str | None = None,
    email: str | None = None,
    auth_level: int = AuthLevel.BASE_USER,
    claimed: bool = True,
    verified: bool = False,
    user_id: str | None = None,
) -> User:
    """Create a user row and its matching graph node."""
    normalized = slugify(username)
    if not normalized:
        raise ValidationError("Username must include at least one letter or number")
    if not is_valid_auth_level(auth_level):
        raise ValidationError(f"Invalid auth level: {auth_level}")
    if get_user_by_username(session, normalized):
        raise ValidationError(f"Username {normalized} is already taken")
    user = User(
        username=normalized,
        display_name=(display_name or username).strip(),
        email=email,
        auth_level=int(auth_level),
        claimed=claimed,
        verified=verified,
    )
    if user_id:
        user.id = user_id
    session.add(user)
    session.flush()
    graph.add_user(user.id, user.display_name)
    return user


def set_auth_level(session: Session, user_id: str, level: int) -> User:
    if not is_valid_auth_level(level):
        raise ValidationError(
            f"Invalid auth level. Must be between {AuthLevel.BASE_USER} and {AuthLevel.SUPER_ADMIN}"
        )
    user = require_user(session, user_id)
    user.auth_level = int(level)
    session.add(user)
    session.flush()
    return user


def rotate_token(session: Session, user_id: str) -> str:
    user = require_user(session, user_id)
    user.api_token = new_api_token()
    session.add(user)
    session.flush()
    return user.api_token


def set_city_access(
    session: Session,
    user_id: str,
    *,
    city_id: str | None = None,
    all_cities: bool | None = None,
    replace_city: bool = True,
) -> User:
    """Replace the user's city grant; ``city_id=None`` clears it.

    Pass ``replace_city=False`` to only toggle ``all_cities``.
    """
    user = require_user(session, user_id)
    if all_cities is not None:
        user.all_city_access = all_cities
    if not replace_city:
        session.add(user)
        session.flush()
        return user
    if city_id and user.city is not None:
        user.city.city_id = city_id
    elif city_id:
        user.city = UserCity(user_id=user.id, city_id=city_id)
    elif user.city is not None:
        user.city = None
    session.add(user)
    session.flush()
    return user


def has_city_access(user: User, city_id: str | None) -> bool:
    if user.all_city_access:
        return True
    if not city_id or user.city is None:
        return False
    return user.city.city_id == city_id
