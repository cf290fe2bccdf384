from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.deps import require_roles
from app.database import get_db
from app.models.user import UserRole
from app.schemas.offer import OfferResponse
from app.schemas.provider import AvailabilityBody, ProviderResponse
from app.services import offers, providers
from app.services.actors import Actor

router = APIRouter(prefix="/providers", tags=["providers"])

_admin = require_roles(UserRole.ADMIN)


@router.get("", response_model=list[ProviderResponse])
def list_providers(
    verified: Optional[bool] = None,
    available: Optional[bool] = None,
    category: Optional[str] = None,
    search: Optional[str] = None,
    limit: int = providers.DEFAULT_LIST_LIMIT,
    offset: int = 0,
    actor: Actor = Depends(_admin),
    db: Session = Depends(get_db),
):
    return providers.list_providers(
        db, verified=verified, available=available, category=category, search=search, limit=limit, offset=offset
    )


@router.get("/{provider_id}", response_model=ProviderResponse)
def get_provider(provider_id: int, actor: Actor = Depends(_admin), db: Session = Depends(get_db)):
    return providers.get_provider(db, provider_id)


@router.get("/{provider_id}/offers", response_model=list[OfferResponse])
def provider_offers(
    provider_id: int,
    status: Optional[str] = None,
    actor: Actor = Depends(_admin),
    db: Session = Depends(get_db),
):
    providers.get_provider(db, provider_id)
    return offers.list_provider_offers(db, provider_id, status)


@router.post("/{provider_id}/verify", response_model=ProviderResponse)
def verify_provider(provider_id: int, actor: Actor = Depends(_admin), db: Session = Depends(get_db)):
    return providers.verify_provider(db, provider_id, actor)


@router.put("/{provider_id}/availability", response_model=ProviderResponse)
def set_availability(
    provider_id: int,
    body: AvailabilityBody,
    actor: Actor = Depends(_admin),
    db: Session = Depends(get_db),
):
    return providers.set_availability(db, provider_id, body.available, actor)
