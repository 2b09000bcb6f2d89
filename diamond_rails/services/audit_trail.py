"""
diamond_rails.services.audit_trail — admin_log writer
=====================================================

Integrity events and operator actions are recorded in ``admin_log`` with
before/after snapshots of the affected row, inside the same transaction
as the change itself.  Nothing is ever corrected silently.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import Engine, select
from sqlalchemy.orm import Session

from diamond_rails.database.models import AdminLog

logger = logging.getLogger(__name__)


def row_to_dict(obj: Any) -> dict | None:
    """Convert a SQLAlchemy model instance to a JSON-serializable dict."""
    if obj is None:
        return None
    result = {}
    for col in obj.__table__.columns:
        val = getattr(obj, col.key if col.key != "metadata" else "metadata_", None)
        if isinstance(val, datetime):
            val = val.isoformat()
        result[col.name] = val
    return result


def log_action(
    session: Session,
    *,
    actor_id: str,
    action_type: str,
    target_table: str,
    target_id: str | None,
    before: dict | None,
    after: dict | None,
    reason: str | None = None,
) -> None:
    """Insert a row into admin_log within the current transaction."""
    session.add(AdminLog(
        actor_id=actor_id,
        action_type=action_type,
        target_table=target_table,
        target_id=target_id,
        before_snapshot=before,
        after_snapshot=after,
        reason=reason,
    ))


def list_actions(engine: Engine, *, limit: int = 50, action_type: str | None = None) -> list[dict]:
    stmt = select(AdminLog)
    if action_type:
        stmt = stmt.where(AdminLog.action_type == action_type)
    stmt = stmt.order_by(AdminLog.id.desc()).limit(limit)
    with Session(engine) as session:
        return [row_to_dict(row) for row in session.scalars(stmt)]
