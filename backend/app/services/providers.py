"""
Provider registry. Providers are not accounts: they are identified by e-mail
and created implicitly the first time they submit an offer. Admins verify
providers and toggle their availability.
"""
import json
import logging
import re
from typing import List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.exceptions import ForbiddenError, NotFoundError, ValidationError
from app.models.audit_log import AuditAction, EntityType
from app.models.base import utcnow
from app.models.provider import Provider
from app.models.user import UserRole
from app.schemas.offer import ProviderIn
from app.services import audit
from app.services.actors import Actor

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
DEFAULT_LIST_LIMIT = 10
MAX_LIST_LIMIT = 100


def verify_email(email: Optional[str]) -> Optional[bool]:
    """Return True if email format is valid, False if invalid, None if no email."""
    if not email or not str(email).strip():
        return None
    return bool(EMAIL_PATTERN.match(str(email).strip()))


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def get_provider_by_email(db: Session, email: str) -> Optional[Provider]:
    return db.query(Provider).filter(Provider.email == normalize_email(email)).first()


def find_or_create_provider(db: Session, data: ProviderIn) -> tuple[Provider, bool]:
    """Match provider by e-mail (case-insensitive); if not found create it. Returns (provider, created)."""
    email = normalize_email(data.email)
    if not verify_email(email):
        raise ValidationError("Please provide a valid email", fields=["provider.email"])

    existing = get_provider_by_email(db, email)
    if existing:
        return existing, False

    provider = Provider(
        name=data.name.strip(),
        organization=(data.organization or "").strip() or None,
        email=email,
        category=data.category.strip(),
        tags=json.dumps(data.tags or []),
        rate_min=data.rate_min,
        rate_max=data.rate_max,
        phone=(data.phone or "").strip() or None,
    )
    db.add(provider)
    db.flush()
    logger.info("provider: created provider_id=%s email=%s", provider.id, email)
    return provider, True


def record_completed_task(db: Session, provider_id: int) -> Provider:
    provider = get_provider(db, provider_id)
    provider.tasks_completed = (provider.tasks_completed or 0) + 1
    return provider


def get_provider(db: Session, provider_id: int) -> Provider:
    provider = db.query(Provider).filter(Provider.id == provider_id).first()
    if provider is None:
        raise NotFoundError("Provider", provider_id)
    return provider


def list_providers(
    db: Session,
    verified: Optional[bool] = None,
    available: Optional[bool] = None,
    category: Optional[str] = None,
    search: Optional[str] = None,
    limit: int = DEFAULT_LIST_LIMIT,
    offset: int = 0,
) -> List[Provider]:
    """Active providers, best rated first."""
    q = db.query(Provider).filter(Provider.is_active.is_(True))
    if verified is not None:
        q = q.filter(Provider.verified.is_(verified))
    if available is not None:
        q = q.filter(Provider.availability.is_(available))
    if category:
        q = q.filter(Provider.category == category)
    if search and search.strip():
        pattern = f"%{search.strip()}%"
        q = q.filter(
            or_(Provider.name.ilike(pattern), Provider.email.ilike(pattern), Provider.organization.ilike(pattern))
        )
    return (
        q.order_by(Provider.rating.desc(), Provider.created_at.desc(), Provider.id.desc())
        .offset(offset)
        .limit(min(limit, MAX_LIST_LIMIT))
        .all()
    )


def _require_admin(actor: Actor, what: str) -> None:
    if actor.role != UserRole.ADMIN:
        raise ForbiddenError(f"Only admins can {what}")


def verify_provider(db: Session, provider_id: int, actor: Actor) -> Provider:
    _require_admin(actor, "verify providers")
    provider = get_provider(db, provider_id)
    if provider.verified:
        return provider
    try:
        provider.verified = True
        provider.verified_at = utcnow()
        provider.verified_by = actor.id
        db.flush()
        audit.log(
            db,
            AuditAction.VERIFY,
            EntityType.PROVIDER,
            provider.id,
            actor.id,
            changes={"before": {"verified": False}, "after": {"verified": True}},
            description=f"Provider {provider.email} verified",
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(provider)
    logger.info("verify-provider: provider_id=%s by user_id=%s", provider.id, actor.id)
    return provider


def set_availability(db: Session, provider_id: int, available: bool, actor: Actor) -> Provider:
    _require_admin(actor, "change provider availability")
    provider = get_provider(db, provider_id)
    before = provider.availability
    if before == available:
        return provider
    try:
        provider.availability = available
        db.flush()
        audit.log(
            db,
            AuditAction.UPDATE,
            EntityType.PROVIDER,
            provider.id,
            actor.id,
            changes={"before": {"availability": before}, "after": {"availability": available}},
            description=f"Provider {provider.email} marked {'available' if available else 'unavailable'}",
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(provider)
    logger.info("provider-availability: provider_id=%s available=%s", provider.id, available)
    return provider
