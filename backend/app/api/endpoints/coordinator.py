from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.deps import request_meta, require_roles
from app.database import get_db
from app.models.audit_log import EntityType
from app.models.user import UserRole
from app.schemas.audit import AuditLogEntryResponse
from app.schemas.contract import ContractResponse, NotesBody, ReasonBody
from app.schemas.offer import OfferResponse, SelectOfferResponse
from app.services import audit, contracts, offers, workflow
from app.services.actors import Actor

router = APIRouter(prefix="/coordinator", tags=["coordinator"])

_coordinator = require_roles(UserRole.CONTRACT_COORDINATOR, UserRole.ADMIN)


@router.get("/contracts/{contract_id}/offers", response_model=list[OfferResponse])
def list_offers(
    contract_id: int,
    status: Optional[str] = None,
    actor: Actor = Depends(_coordinator),
    db: Session = Depends(get_db),
):
    contracts.get_contract(db, contract_id)
    return offers.list_contract_offers(db, contract_id, status)


@router.post("/contracts/{contract_id}/offers/{offer_id}/select", response_model=SelectOfferResponse)
def select_offer(
    contract_id: int,
    offer_id: int,
    body: NotesBody | None = None,
    actor: Actor = Depends(_coordinator),
    db: Session = Depends(get_db),
):
    contract, offer = offers.select_offer(db, contract_id, offer_id, actor, body.notes if body else None)
    return {"contract": contract, "selected_offer": offer}


@router.post("/offers/{offer_id}/reject", response_model=OfferResponse)
def reject_offer(
    offer_id: int,
    body: ReasonBody,
    actor: Actor = Depends(_coordinator),
    db: Session = Depends(get_db),
):
    return offers.reject_offer(db, offer_id, actor, body.reason)


@router.post("/contracts/{contract_id}/resubmit", response_model=ContractResponse)
def resubmit(
    contract_id: int,
    body: NotesBody | None = None,
    actor: Actor = Depends(_coordinator),
    meta: dict = Depends(request_meta),
    db: Session = Depends(get_db),
):
    contract = contracts.get_contract(db, contract_id)
    return workflow.resubmit_for_final_approval(db, contract, actor, body.notes if body else None, meta)


@router.get("/offers/{offer_id}/history", response_model=list[AuditLogEntryResponse])
def offer_history(offer_id: int, actor: Actor = Depends(_coordinator), db: Session = Depends(get_db)):
    offers.get_offer(db, offer_id)
    return audit.get_entity_history(db, EntityType.OFFER, offer_id)
