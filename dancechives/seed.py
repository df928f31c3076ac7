"""Development helpers for populating fake dancers, events and videos."""

from __future__ import annotations

import random
import uuid

from faker import Faker
from sqlalchemy.orm import Session

from .auth import AuthLevel
from .crud import create_user, get_user_by_username, set_city_access
from .database import get_session
from .graph import GraphStore, TargetType, get_store
from .models import User
from .roles import DANCER, DJ, JUDGE, MC, ORGANIZER
from .storage import init_db
from .utils import slugify

_styles = [
    "Breaking",
    "Popping",
    "Locking",
    "Waacking",
    "House",
    "Krump",
    "Hip Hop",
    "Vogue",
]
_event_suffixes = ["Jam", "Battle", "Session", "Throwdown", "Cypher", "Showdown"]
_section_formats = ["1v1", "2v2", "3v3", "Crew vs Crew", "Kids 1v1", "Top 16"]
_video_types = ["battle", "battle", "battle", "freestyle", "other"]
_event_roles = [ORGANIZER, DJ, MC, JUDGE]


def seed_fake_data(
    *,
    user_count: int = 12,
    event_count: int = 4,
    sections_per_event: int = 2,
    videos_per_section: int = 3,
    graph: GraphStore | None = None,
) -> dict[str, int]:
    """Populate SQLite and the graph with a synthetic scene."""
    if user_count < 1:
        raise ValueError("user_count must be >= 1")
    if event_count < 0:
        raise ValueError("event_count must be >= 0")
    if sections_per_event < 0:
        raise ValueError("sections_per_event must be >= 0")
    if videos_per_section < 0:
        raise ValueError("videos_per_section must be >= 0")

    init_db()
    if graph is None:
        graph = get_store()
    fake = Faker()
    stats = {"users": 0, "cities": 0, "events": 0, "sections": 0, "videos": 0, "tags": 0}

    with get_session() as session:
        city_ids = _create_cities(graph, fake, max(1, event_count // 2))
        stats["cities"] = len(city_ids)
        users = [
            _create_dancer(session, graph, fake, city_id=random.choice(city_ids))
            for _ in range(user_count)
        ]
        stats["users"] = len(users)

        for _ in range(event_count):
            creator = random.choice(users)
            city_id = random.choice(city_ids)
            event_id = _new_id()
            graph.add_event(
                event_id,
                title=_event_title(fake),
                creator_id=creator.id,
                city_id=city_id,
            )
            stats["events"] += 1
            for member in random.sample(users, k=min(2, len(users))):
                if member.id != creator.id:
                    graph.add_team_member(event_id, member.id)
            stats["tags"] += _tag_event_staff(graph, event_id, users)

            for _ in range(sections_per_event):
                section_id = _new_id()
                graph.add_section(
                    event_id, section_id, title=random.choice(_section_formats)
                )
                stats["sections"] += 1
                for number in range(1, videos_per_section + 1):
                    video_id = _new_id()
                    graph.add_video(
                        event_id,
                        section_id,
                        video_id,
                        title=f"Round {number}",
                        video_type=random.choice(_video_types),
                    )
                    stats["videos"] += 1
                    stats["tags"] += _tag_video_dancers(graph, video_id, users)

    graph.checkpoint()
    return stats


def _new_id() -> str:
    return str(uuid.uuid4())


def _create_cities(graph: GraphStore, fake: Faker, count: int) -> list[str]:
    city_ids: list[str] = []
    for _ in range(count):
        city_id = _new_id()
        graph.add_city(city_id, fake.city())
        city_ids.append(city_id)
    return city_ids


def _create_dancer(
    session: Session, graph: GraphStore, fake: Faker, *, city_id: str
) -> User:
    for _ in range(20):
        name = fake.name()
        username = slugify(f"{fake.first_name()} {random.randint(1, 999)}")
        if not username or get_user_by_username(session, username):
            continue
        level = random.choice(
            [AuthLevel.BASE_USER] * 6 + [AuthLevel.CREATOR, AuthLevel.MODERATOR]
        )
        user = create_user(
            session,
            graph,
            username=username,
            display_name=name,
            email=fake.email(),
            auth_level=level,
            verified=random.random() < 0.3,
        )
        set_city_access(session, user.id, city_id=city_id)
        return user
    raise RuntimeError("Failed to create a unique username")


def _event_title(fake: Faker) -> str:
    return f"{fake.city()} {random.choice(_styles)} {random.choice(_event_suffixes)}"


def _tag_event_staff(graph: GraphStore, event_id: str, users: list[User]) -> int:
    applied = 0
    for role in random.sample(_event_roles, k=2):
        user = random.choice(users)
        if graph.has_tag(TargetType.EVENT, event_id, user.id, role):
            continue
        graph.apply_tag(TargetType.EVENT, event_id, user.id, role)
        applied += 1
    return applied


def _tag_video_dancers(graph: GraphStore, video_id: str, users: list[User]) -> int:
    dancers = random.sample(users, k=min(2, len(users)))
    for user in dancers:
        graph.apply_tag(TargetType.VIDEO, video_id, user.id, DANCER)
    return len(dancers)
