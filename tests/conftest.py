"""Shared pytest fixtures for Dance Chives."""

from __future__ import annotations

import sys
from pathlib import Path
from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import scoped_session, sessionmaker
from sqlalchemy.pool import StaticPool

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from dancechives import api, database, storage
from dancechives.auth import Actor, AuthLevel
from dancechives.crud import create_user, set_city_access
from dancechives.graph import GraphStore, set_store
from dancechives.models import Base


@pytest.fixture(scope="session", autouse=True)
def configure_in_memory_db():
    """Reuse a single in-memory SQLite database for fast, isolated tests."""

    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    event.listen(engine, "connect", database.enable_sqlite_foreign_keys)
    session_factory = scoped_session(
        sessionmaker(
            bind=engine,
            autoflush=False,
            autocommit=False,
            future=True,
            expire_on_commit=False,
        )
    )
    database.engine = engine
    database.SessionLocal = session_factory
    storage.engine = engine
    api.SessionLocal = session_factory
    Base.metadata.create_all(bind=engine)
    yield
    session_factory.remove()


@pytest.fixture(autouse=True)
def clean_database():
    """Reset all tables between tests to guarantee isolation."""

    database.SessionLocal.remove()
    Base.metadata.drop_all(bind=database.engine)
    Base.metadata.create_all(bind=database.engine)
    yield


@pytest.fixture(autouse=True)
def graph():
    """A fresh, file-less graph installed as the process-wide store."""

    store = GraphStore()
    set_store(store)
    yield store
    set_store(None)


@pytest.fixture()
def session():
    db = database.SessionLocal()
    try:
        yield db
    finally:
        db.close()


def actor_for(user) -> Actor:
    return Actor(user_id=user.id, auth_level=user.auth_level, verified=user.verified)


def auth_header(user) -> dict[str, str]:
    return {"Authorization": f"Bearer {user.api_token}"}


@pytest.fixture()
def scene(session, graph):
    """Two cities, one event with a section and two videos, and a cast of users.

    E1 is in NYC, created by ``creator`` with ``team`` on its team. ``v1`` is a
    battle video and ``v2`` a freestyle video, both in section ``s1``.
    """

    def user(user_id, level=AuthLevel.BASE_USER, **kwargs):
        return create_user(
            session,
            graph,
            username=user_id,
            display_name=user_id.replace("-", " ").title(),
            auth_level=level,
            user_id=user_id,
            **kwargs,
        )

    graph.add_city("nyc", "New York")
    graph.add_city("la", "Los Angeles")

    cast = SimpleNamespace(
        creator=user("creator", AuthLevel.CREATOR),
        team=user("team"),
        mod_nyc=user("mod-nyc", AuthLevel.MODERATOR),
        mod_la=user("mod-la", AuthLevel.MODERATOR),
        admin=user("admin", AuthLevel.ADMIN),
        u1=user("u1"),
        u2=user("u2"),
        verified=user("verified", verified=True),
        ghost=user("ghost", claimed=False),
        outsider=user("outsider"),
    )
    set_city_access(session, "mod-nyc", city_id="nyc")
    set_city_access(session, "mod-la", city_id="la")

    graph.add_event("e1", title="Bronx Breaks", creator_id="creator", city_id="nyc")
    graph.add_team_member("e1", "team")
    graph.add_section("e1", "s1", title="1v1")
    graph.add_video("e1", "s1", "v1", title="Final", video_type="battle")
    graph.add_video("e1", "s1", "v2", title="Cypher", video_type="freestyle")
    session.commit()
    return cast
