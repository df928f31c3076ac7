"""APScheduler integration."""

from __future__ import annotations

from apscheduler.schedulers.background import BackgroundScheduler

from .config import settings
from .maintenance import run_graph_checkpoint, run_notification_prune

_scheduler: BackgroundScheduler | None = None


def start_scheduler() -> BackgroundScheduler | None:
    global _scheduler
    if not settings.enable_scheduler:
        return None
    if _scheduler and _scheduler.running:
        return _scheduler
    scheduler = BackgroundScheduler(timezone="UTC")
    scheduler.add_job(
        run_graph_checkpoint,
        "interval",
        minutes=settings.graph_checkpoint_minutes,
        id="graph-checkpoint",
        max_instances=1,
        replace_existing=True,
    )
    scheduler.add_job(
        run_notification_prune,
        "interval",
        hours=settings.notification_prune_hours,
        id="notification-prune",
        max_instances=1,
        replace_existing=True,
    )
    scheduler.start()
    _scheduler = scheduler
    return scheduler


def stop_scheduler() -> None:
    global _scheduler
    if _scheduler and _scheduler.running:
        _scheduler.shutdown(wait=False)
        _scheduler = None
