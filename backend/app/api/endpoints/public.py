"""Unauthenticated surface for service providers: browse open contracts, submit and withdraw offers."""
import logging
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.deps import request_meta
from app.database import get_db
from app.exceptions import ForbiddenError, NotOpenForOffersError
from app.models.contract import ContractStatus, ContractType
from app.schemas.contract import PublicContractResponse
from app.schemas.offer import (
    ContractRef,
    OfferResponse,
    OfferSubmission,
    OfferSubmitResponse,
    ProviderRef,
    WithdrawBody,
)
from app.services import contracts, offers
from app.services.providers import get_provider_by_email
from app.services.workflow import accepts_offers

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/public", tags=["public"])


@router.get("/contract-types")
def contract_types():
    return {"contract_types": list(ContractType.ALL)}


@router.get("/contracts", response_model=list[PublicContractResponse])
def list_open_contracts(
    contract_type: Optional[str] = None,
    limit: int = contracts.DEFAULT_LIST_LIMIT,
    db: Session = Depends(get_db),
):
    return contracts.list_contracts(
        db, status=ContractStatus.OPEN_FOR_OFFERS, contract_type=contract_type, limit=min(limit, 100)
    )


@router.get("/contracts/{contract_id}", response_model=PublicContractResponse)
def get_open_contract(contract_id: int, db: Session = Depends(get_db)):
    contract = contracts.get_contract(db, contract_id)
    if not accepts_offers(contract):
        raise NotOpenForOffersError(contract_id)
    contracts.record_view(db, contract_id)
    return contract


@router.post("/contracts/{contract_id}/offers", response_model=OfferSubmitResponse, status_code=201)
def submit_offer(
    contract_id: int,
    payload: OfferSubmission,
    meta: dict = Depends(request_meta),
    db: Session = Depends(get_db),
):
    offer, provider, created = offers.submit_offer(db, contract_id, payload.provider, payload.offer, meta)
    contract = contracts.get_contract(db, contract_id)
    return OfferSubmitResponse(
        offer=OfferResponse.model_validate(offer),
        provider=ProviderRef(id=provider.id, name=provider.name, email=provider.email, is_new=created),
        contract=ContractRef.model_validate(contract),
    )


@router.post("/offers/{offer_id}/withdraw", response_model=OfferResponse)
def withdraw_offer(offer_id: int, body: WithdrawBody, db: Session = Depends(get_db)):
    """The submitting provider's e-mail stands in as proof of ownership."""
    provider = get_provider_by_email(db, body.provider_email)
    if provider is None:
        raise ForbiddenError("Only the submitting provider can withdraw this offer")
    return offers.withdraw_offer(db, offer_id, provider.id)
