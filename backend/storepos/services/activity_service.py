# Overview: Service-layer operations for the activity log; append-only audit trail.

from __future__ import annotations

from datetime import datetime

from ..extensions import db
from ..models import ActivityLog
"""
Activity log invariants

- Append-only: no updates or deletes of existing rows.
- Written in the same DB transaction as the action it records (flush, never commit).
- details may mention amounts and balances; never credentials.
"""


def append_activity(
    *,
    user_id: int | None,
    action: str,
    module: str,
    entity_id: int | None = None,
    details: str | None = None,
) -> ActivityLog:
    entry = ActivityLog(
        user_id=user_id,
        action=action,
        module=module,
        entity_id=entity_id,
        details=details,
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def list_activity(
    *,
    user_id: int | None = None,
    module: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int = 100,
) -> list[ActivityLog]:
    """Newest first; date bounds are inclusive."""
    q = db.session.query(ActivityLog)
    if user_id is not None:
        q = q.filter(ActivityLog.user_id == user_id)
    if module:
        q = q.filter(ActivityLog.module == module)
    if start is not None:
        q = q.filter(ActivityLog.created_at >= start)
    if end is not None:
        q = q.filter(ActivityLog.created_at <= end)
    return q.order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc()).limit(limit).all()
