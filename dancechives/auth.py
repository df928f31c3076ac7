"""Authorization levels and permission predicates.

Nothing in here reads ambient session state: callers resolve an ``Actor`` once
at the request boundary and pass it along.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum


class AuthLevel(IntEnum):
    BASE_USER = 0
    CREATOR = 1
    MODERATOR = 2
    ADMIN = 3
    SUPER_ADMIN = 4


@dataclass(frozen=True)
class Actor:
    """The authenticated caller of a workflow operation."""

    user_id: str
    auth_level: int = AuthLevel.BASE_USER
    verified: bool = False


def auth_level_name(level: int) -> str:
    try:
        return AuthLevel(level).name
    except ValueError:
        return f"Level {level}"


def is_valid_auth_level(level: int) -> bool:
    return AuthLevel.BASE_USER <= level <= AuthLevel.SUPER_ADMIN


def can_tag_untag_any_user_anywhere(level: int) -> bool:
    return level >= AuthLevel.ADMIN


def can_tag_untag_users_in_city(level: int) -> bool:
    return level >= AuthLevel.MODERATOR


def can_update_user_cities(level: int) -> bool:
    return level >= AuthLevel.ADMIN


def has_global_access(level: int) -> bool:
    return level >= AuthLevel.ADMIN


def can_edit_any_event(level: int) -> bool:
    return level >= AuthLevel.MODERATOR
