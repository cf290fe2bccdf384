"""
Append-only audit trail.

`log` adds an entry to the caller's transaction and flushes it so the id is
available, but never commits: an entry is persisted together with the
mutation it describes, or not at all.
"""
import json
import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from app.models.audit_log import AuditLogEntry

logger = logging.getLogger(__name__)

USER_ACTIVITY_LIMIT = 50
SEARCH_DEFAULT_LIMIT = 10
SEARCH_MAX_LIMIT = 100


def _to_json(value) -> Optional[str]:
    if value is None:
        return None
    return json.dumps(value, default=str)


def log(
    db: Session,
    action: str,
    entity_type: str,
    entity_id: int,
    performed_by: Optional[int],
    changes: Optional[dict] = None,
    metadata: Optional[dict] = None,
    description: str = "",
) -> AuditLogEntry:
    entry = AuditLogEntry(
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        performed_by=performed_by,
        changes=_to_json(changes),
        metadata_json=_to_json(metadata or None),
        description=description,
    )
    db.add(entry)
    db.flush()
    logger.info(
        "audit: action=%s entity=%s:%s performed_by=%s",
        action, entity_type, entity_id, performed_by,
    )
    return entry


def get_entity_history(db: Session, entity_type: str, entity_id: int) -> List[AuditLogEntry]:
    """All entries for one entity, newest first."""
    return (
        db.query(AuditLogEntry)
        .filter(AuditLogEntry.entity_type == entity_type, AuditLogEntry.entity_id == entity_id)
        .order_by(AuditLogEntry.created_at.desc(), AuditLogEntry.id.desc())
        .all()
    )


def get_user_activity(db: Session, user_id: int, limit: int = USER_ACTIVITY_LIMIT) -> List[AuditLogEntry]:
    return (
        db.query(AuditLogEntry)
        .filter(AuditLogEntry.performed_by == user_id)
        .order_by(AuditLogEntry.created_at.desc(), AuditLogEntry.id.desc())
        .limit(limit)
        .all()
    )


def search_entries(
    db: Session,
    entity_type: Optional[str] = None,
    action: Optional[str] = None,
    user_id: Optional[int] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: int = SEARCH_DEFAULT_LIMIT,
    offset: int = 0,
) -> List[AuditLogEntry]:
    """Filtered view over the whole trail for admins. Date bounds are inclusive."""
    q = db.query(AuditLogEntry)
    if entity_type:
        q = q.filter(AuditLogEntry.entity_type == entity_type)
    if action:
        q = q.filter(AuditLogEntry.action == action)
    if user_id is not None:
        q = q.filter(AuditLogEntry.performed_by == user_id)
    if start is not None:
        q = q.filter(AuditLogEntry.created_at >= start)
    if end is not None:
        q = q.filter(AuditLogEntry.created_at <= end)
    return (
        q.order_by(AuditLogEntry.created_at.desc(), AuditLogEntry.id.desc())
        .offset(offset)
        .limit(min(limit, SEARCH_MAX_LIMIT))
        .all()
    )
