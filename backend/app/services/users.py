import logging

from sqlalchemy.orm import Session

from app.exceptions import ForbiddenError, NotFoundError, ValidationError
from app.models.audit_log import AuditAction, EntityType
from app.models.user import User, UserRole
from app.services import audit
from app.services.actors import Actor

logger = logging.getLogger(__name__)


def get_user(db: Session, user_id: int) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if user is None:
        raise NotFoundError("User", user_id)
    return user


def set_user_active(db: Session, user_id: int, is_active: bool, actor: Actor) -> User:
    """Activate or deactivate an account. Inactive users are refused at the X-User-Id check."""
    if actor.role != UserRole.ADMIN:
        raise ForbiddenError("Only admins can change account status")
    if user_id == actor.id:
        raise ValidationError("Cannot change the status of your own account", fields=["is_active"])
    user = get_user(db, user_id)
    before = user.is_active
    if before == is_active:
        return user
    try:
        user.is_active = is_active
        db.flush()
        audit.log(
            db,
            AuditAction.STATUS_CHANGE,
            EntityType.USER,
            user.id,
            actor.id,
            changes={"before": {"is_active": before}, "after": {"is_active": is_active}},
            description=f"User {user.email} {'activated' if is_active else 'deactivated'}",
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(user)
    logger.info("user-status: user_id=%s is_active=%s by user_id=%s", user.id, is_active, actor.id)
    return user
