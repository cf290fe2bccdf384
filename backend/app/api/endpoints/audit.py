from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.deps import require_roles
from app.database import get_db
from app.models.user import UserRole
from app.schemas.audit import AuditLogEntryResponse
from app.services import audit
from app.services.actors import Actor

router = APIRouter(prefix="/audit", tags=["audit"])

_admin = require_roles(UserRole.ADMIN)


@router.get("", response_model=list[AuditLogEntryResponse])
def search_audit_log(
    entity_type: Optional[str] = None,
    action: Optional[str] = None,
    user_id: Optional[int] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: int = audit.SEARCH_DEFAULT_LIMIT,
    offset: int = 0,
    actor: Actor = Depends(_admin),
    db: Session = Depends(get_db),
):
    return audit.search_entries(
        db, entity_type=entity_type, action=action, user_id=user_id, start=start, end=end, limit=limit, offset=offset
    )


@router.get("/users/{user_id}", response_model=list[AuditLogEntryResponse])
def user_activity(
    user_id: int,
    limit: int = audit.USER_ACTIVITY_LIMIT,
    actor: Actor = Depends(_admin),
    db: Session = Depends(get_db),
):
    return audit.get_user_activity(db, user_id, min(limit, audit.USER_ACTIVITY_LIMIT))
