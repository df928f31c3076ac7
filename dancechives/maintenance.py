"""Housekeeping jobs run by the scheduler and the CLI."""

from __future__ import annotations

import logging

from .config import settings
from .database import get_session
from .notifications import prune_old_notifications
from .storage import checkpoint_graph

# Use uvicorn's error logger so job messages show up with level prefixes.
logger = logging.getLogger("uvicorn.error")


def run_notification_prune() -> int:
    """Delete read notifications older than the retention window."""
    with get_session() as session:
        removed = prune_old_notifications(session, settings.notification_retention)
    logger.info(
        "Notification prune removed %d rows (retention_days=%d)",
        removed,
        settings.notification_retention_days,
    )
    return removed


def run_graph_checkpoint() -> bool:
    written = checkpoint_graph()
    if written:
        logger.info("Graph checkpoint written to %s", settings.graph_path)
    return written
