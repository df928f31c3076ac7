from __future__ import annotations

from datetime import timedelta

import pytest

from dancechives import maintenance
from dancechives.errors import NotFound
from dancechives.notifications import (
    INCOMING_REQUEST,
    count_new_notifications,
    create_notification,
    create_tag_notification,
    list_notifications,
    mark_all_notifications_as_old,
    mark_notification_as_old,
    prune_old_notifications,
    serialize_notification,
)
from dancechives.utils import utcnow


def _note(session, user_id, title="Hello"):
    return create_notification(session, user_id, INCOMING_REQUEST, title, "body")


def test_list_is_newest_first_and_filterable(session, scene):
    older = _note(session, "u1", "older")
    older.created_at = utcnow() - timedelta(hours=1)
    newer = _note(session, "u1", "newer")
    session.flush()

    assert [n.id for n in list_notifications(session, "u1")] == [newer.id, older.id]
    assert len(list_notifications(session, "u1", limit=1)) == 1

    mark_notification_as_old(session, "u1", older.id)
    assert [n.id for n in list_notifications(session, "u1", is_old=False)] == [
        newer.id
    ]
    assert [n.id for n in list_notifications(session, "u1", is_old=True)] == [
        older.id
    ]


def test_only_owner_can_mark_old(session, scene):
    note = _note(session, "u1")
    with pytest.raises(NotFound):
        mark_notification_as_old(session, "u2", note.id)
    with pytest.raises(NotFound):
        mark_notification_as_old(session, "u1", "missing")
    assert note.is_old is False


def test_mark_all_and_count(session, scene):
    _note(session, "u1")
    _note(session, "u1")
    _note(session, "u2")
    assert count_new_notifications(session, "u1") == 2
    assert mark_all_notifications_as_old(session, "u1") == 2
    assert count_new_notifications(session, "u1") == 0
    assert count_new_notifications(session, "u2") == 1


def test_tag_notification_message_and_payload(session, scene):
    note = create_tag_notification(
        session,
        "u1",
        event_id="e1",
        event_title="Bronx Breaks",
        role="Judge",
        section_id="s1",
        section_title="1v1",
    )
    assert note.message == 'You were tagged as Judge in section "1v1" in Bronx Breaks'
    data = serialize_notification(note)
    assert data["payload"] == {"eventId": "e1", "role": "Judge", "sectionId": "s1"}
    assert data["isOld"] is False
    assert data["type"] == "TAGGED"


def test_prune_removes_only_old_read_notifications(session, scene):
    now = utcnow()
    stale_read = _note(session, "u1", "stale read")
    stale_read.created_at = now - timedelta(days=120)
    stale_read.is_old = True
    stale_unread = _note(session, "u1", "stale unread")
    stale_unread.created_at = now - timedelta(days=120)
    fresh_read = _note(session, "u1", "fresh read")
    fresh_read.is_old = True
    session.flush()

    removed = prune_old_notifications(session, timedelta(days=90), now=now)

    assert removed == 1
    titles = sorted(n.title for n in list_notifications(session, "u1"))
    assert titles == ["fresh read", "stale unread"]


def test_prune_job_commits(session, scene):
    note = _note(session, "u1")
    note.created_at = utcnow() - timedelta(days=365)
    note.is_old = True
    session.commit()

    assert maintenance.run_notification_prune() == 1
    assert list_notifications(session, "u1") == []
