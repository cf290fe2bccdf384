import logging

from fastapi import APIRouter, Depends, Header, HTTPException
from sqlalchemy.orm import Session

from app.api.deps import get_actor, require_roles
from app.database import get_db
from app.models.user import User, UserRole
from app.schemas.user import UserCreate, UserResponse, UserStatusBody
from app.services import users
from app.services.actors import Actor
from app.services.providers import normalize_email, verify_email

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["users"])


@router.post("", response_model=UserResponse, status_code=201)
def create_user(
    payload: UserCreate,
    x_user_id: str | None = Header(None, alias="X-User-Id"),
    db: Session = Depends(get_db),
):
    """Admin creates a user. The very first user may be created without a caller (bootstrap)."""
    if db.query(User.id).first() is not None:
        actor = get_actor(x_user_id, db)
        if actor.role != UserRole.ADMIN:
            raise HTTPException(status_code=403, detail="Only admins can create users")
    email = normalize_email(payload.email)
    if not verify_email(email):
        raise HTTPException(status_code=422, detail="Please provide a valid email")
    if db.query(User).filter(User.email == email).first():
        raise HTTPException(status_code=409, detail="User already exists with this email")
    user = User(
        first_name=payload.first_name.strip(),
        last_name=payload.last_name.strip(),
        email=email,
        role=payload.role,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info("create-user: user_id=%s role=%s", user.id, user.role)
    return user


@router.get("/me", response_model=UserResponse)
def get_me(actor: Actor = Depends(get_actor), db: Session = Depends(get_db)):
    return users.get_user(db, actor.id)


@router.put("/{user_id}/status", response_model=UserResponse)
def update_user_status(
    user_id: int,
    body: UserStatusBody,
    actor: Actor = Depends(require_roles(UserRole.ADMIN)),
    db: Session = Depends(get_db),
):
    return users.set_user_active(db, user_id, body.is_active, actor)
