"""
Request-scoped dependencies: who is calling, and may they.

The caller identifies with the X-User-Id header; authentication proper sits in
front of this service. Role checks here gate the endpoint, the workflow engine
still checks stage ownership on every transition.
"""
import logging

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.orm import Session

from app.database import get_db
from app.models.user import User
from app.services.actors import Actor

logger = logging.getLogger(__name__)


def get_actor(
    x_user_id: str | None = Header(None, alias="X-User-Id"),
    db: Session = Depends(get_db),
) -> Actor:
    if not x_user_id or not x_user_id.strip().isdigit():
        raise HTTPException(status_code=401, detail="Missing or malformed X-User-Id header")
    user = db.query(User).filter(User.id == int(x_user_id), User.is_active.is_(True)).first()
    if not user:
        raise HTTPException(status_code=401, detail="Unknown or inactive user")
    return Actor.from_user(user)


def require_roles(*roles: str):
    """Dependency factory: the actor must hold one of `roles`."""

    def _check(actor: Actor = Depends(get_actor)) -> Actor:
        if actor.role not in roles:
            logger.warning("access: user_id=%s role=%s denied (needs %s)", actor.id, actor.role, ",".join(roles))
            raise HTTPException(status_code=403, detail="Insufficient role for this action")
        return actor

    return _check


def request_meta(request: Request) -> dict:
    return {
        "ip_address": request.client.host if request.client else None,
        "user_agent": request.headers.get("user-agent"),
    }
