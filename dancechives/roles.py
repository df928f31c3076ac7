"""Role vocabulary for event, section and video tags.

Roles are shown to people in display format ("Team Member") and written to the
graph in storage format ("TEAM_MEMBER"). Every valid role round-trips through
the two formats unchanged.
"""

from __future__ import annotations

from .errors import InvalidRole

ORGANIZER = "Organizer"
DJ = "DJ"
PHOTOGRAPHER = "Photographer"
VIDEOGRAPHER = "Videographer"
DESIGNER = "Designer"
MC = "MC"
TEAM_MEMBER = "Team Member"
DANCER = "Dancer"
WINNER = "Winner"
CHOREOGRAPHER = "Choreographer"
TEACHER = "Teacher"
JUDGE = "Judge"

AVAILABLE_ROLES: tuple[str, ...] = (
    ORGANIZER,
    DJ,
    PHOTOGRAPHER,
    VIDEOGRAPHER,
    DESIGNER,
    MC,
    TEAM_MEMBER,
    DANCER,
    WINNER,
    CHOREOGRAPHER,
    TEACHER,
    JUDGE,
)

EVENT_ROLES = frozenset(
    {
        ORGANIZER,
        DJ,
        PHOTOGRAPHER,
        VIDEOGRAPHER,
        DESIGNER,
        MC,
        TEAM_MEMBER,
        DANCER,
        TEACHER,
        JUDGE,
    }
)
VIDEO_ROLES = EVENT_ROLES | {WINNER, CHOREOGRAPHER}
SECTION_ROLES = frozenset({WINNER, JUDGE})

# Winner tags only make sense on videos that have an outcome.
WINNER_VIDEO_TYPES = frozenset({"battle", "other"})


def to_storage_format(role: str) -> str:
    """Return the graph label for a display role ("Team Member" -> "TEAM_MEMBER")."""
    return role.strip().upper().replace(" ", "_")


_STORAGE_TO_DISPLAY = {to_storage_format(role): role for role in AVAILABLE_ROLES}


def from_storage_format(stored: str | None) -> str | None:
    """Return the display role for a graph label."""
    if not stored:
        return None
    known = _STORAGE_TO_DISPLAY.get(stored)
    if known:
        return known
    return " ".join(part.capitalize() for part in stored.split("_"))


def get_storage_formats() -> list[str]:
    return [to_storage_format(role) for role in AVAILABLE_ROLES]


def is_valid_role(role: str | None) -> bool:
    return role in AVAILABLE_ROLES


def is_valid_event_role(role: str | None) -> bool:
    return role in EVENT_ROLES


def is_valid_video_role(role: str | None) -> bool:
    return role in VIDEO_ROLES


def is_valid_section_role(role: str | None) -> bool:
    return role in SECTION_ROLES


def parse_role(raw: str | None) -> str:
    """Normalize user input in either format to a display role.

    Raises ``InvalidRole`` for anything outside the vocabulary.
    """
    candidate = (raw or "").strip()
    if not candidate:
        raise InvalidRole("Role is required")
    if candidate in AVAILABLE_ROLES:
        return candidate
    stored = to_storage_format(candidate)
    if stored in _STORAGE_TO_DISPLAY:
        return _STORAGE_TO_DISPLAY[stored]
    raise InvalidRole(
        f"Invalid role: {candidate}. Must be one of: {', '.join(AVAILABLE_ROLES)}"
    )


def parse_scoped_role(raw: str | None, allowed: frozenset[str], scope: str) -> str:
    role = parse_role(raw)
    if role not in allowed:
        allowed_list = ", ".join(r for r in AVAILABLE_ROLES if r in allowed)
        raise InvalidRole(
            f"Invalid {scope} role: {role}. Must be one of: {allowed_list}"
        )
    return role
