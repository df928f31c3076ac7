from __future__ import annotations

import pytest
from rdflib import RDF
from sqlalchemy import func, select

from dancechives.graph import NS
from dancechives.models import User
from dancechives.seed import seed_fake_data


def test_seed_fake_data_populates_graph_and_users(session, graph):
    stats = seed_fake_data(
        user_count=5,
        event_count=2,
        sections_per_event=2,
        videos_per_section=2,
        graph=graph,
    )

    assert stats["users"] == 5
    assert stats["events"] == 2
    assert stats["sections"] == 4
    assert stats["videos"] == 8
    assert session.scalar(select(func.count(User.id))) == 5
    assert len(list(graph.graph.subjects(RDF.type, NS.Event))) == 2
    assert len(list(graph.graph.subjects(RDF.type, NS.Video))) == 8


def test_seed_fake_data_validates_counts(graph):
    with pytest.raises(ValueError):
        seed_fake_data(user_count=0, graph=graph)
    with pytest.raises(ValueError):
        seed_fake_data(event_count=-1, graph=graph)
