from __future__ import annotations

import types

from dancechives import maintenance, scheduler
from dancechives.graph import TargetType


def _settings(enabled: bool):
    return types.SimpleNamespace(
        enable_scheduler=enabled,
        graph_checkpoint_minutes=5,
        notification_prune_hours=24,
    )


def test_scheduler_disabled(monkeypatch):
    monkeypatch.setattr(scheduler, "settings", _settings(False))
    assert scheduler.start_scheduler() is None


def test_scheduler_registers_jobs(monkeypatch):
    monkeypatch.setattr(scheduler, "settings", _settings(True))
    started = scheduler.start_scheduler()
    try:
        job_ids = sorted(job.id for job in started.get_jobs())
        assert job_ids == ["graph-checkpoint", "notification-prune"]
        assert scheduler.start_scheduler() is started
    finally:
        scheduler.stop_scheduler()


def test_graph_checkpoint_job_writes_dirty_graph(graph, tmp_path, monkeypatch):
    graph.path = tmp_path / "graph.ttl"
    graph.add_user("u1")
    graph.add_event("e1", title="Jam", creator_id="u1")
    graph.apply_tag(TargetType.EVENT, "e1", "u1", "Organizer")
    monkeypatch.setattr(
        maintenance, "settings", types.SimpleNamespace(graph_path=graph.path)
    )

    assert maintenance.run_graph_checkpoint() is True
    assert graph.path.exists()
    assert maintenance.run_graph_checkpoint() is False
