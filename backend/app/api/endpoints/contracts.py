from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.api.deps import get_actor, request_meta, require_roles
from app.database import get_db
from app.models.audit_log import EntityType
from app.models.user import UserRole
from app.schemas.audit import AuditLogEntryResponse
from app.schemas.contract import (
    ContractCreate,
    ContractResponse,
    ContractUpdate,
    LegacyTransitionBody,
    ReasonBody,
)
from app.services import audit, contracts, workflow
from app.services.actors import Actor

router = APIRouter(prefix="/contracts", tags=["contracts"])


def _visible_contract(db: Session, contract_id: int, actor: Actor):
    contract = contracts.get_contract(db, contract_id)
    if actor.role == UserRole.CLIENT and contract.client_id != actor.id:
        raise HTTPException(status_code=403, detail="You do not have access to this contract")
    return contract


@router.post("", response_model=ContractResponse, status_code=201)
def create_contract(
    payload: ContractCreate,
    actor: Actor = Depends(require_roles(UserRole.CLIENT, UserRole.PROCUREMENT_MANAGER)),
    meta: dict = Depends(request_meta),
    db: Session = Depends(get_db),
):
    return contracts.create_contract(db, payload, actor, meta)


@router.get("", response_model=list[ContractResponse])
def list_contracts(
    status: Optional[str] = None,
    contract_type: Optional[str] = None,
    limit: int = contracts.DEFAULT_LIST_LIMIT,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    """Clients see their own contracts; staff roles see all."""
    client_id = actor.id if actor.role == UserRole.CLIENT else None
    return contracts.list_contracts(
        db, status=status, client_id=client_id, contract_type=contract_type, limit=min(limit, 100)
    )


@router.get("/{contract_id}", response_model=ContractResponse)
def get_contract(contract_id: int, actor: Actor = Depends(get_actor), db: Session = Depends(get_db)):
    return _visible_contract(db, contract_id, actor)


@router.patch("/{contract_id}", response_model=ContractResponse)
def update_contract(
    contract_id: int,
    payload: ContractUpdate,
    actor: Actor = Depends(get_actor),
    meta: dict = Depends(request_meta),
    db: Session = Depends(get_db),
):
    return contracts.update_contract(db, contract_id, payload, actor, meta)


@router.delete("/{contract_id}", status_code=204)
def delete_contract(
    contract_id: int,
    actor: Actor = Depends(get_actor),
    meta: dict = Depends(request_meta),
    db: Session = Depends(get_db),
):
    contracts.delete_contract(db, contract_id, actor, meta)


@router.post("/{contract_id}/submit", response_model=ContractResponse)
def submit_contract(
    contract_id: int,
    actor: Actor = Depends(require_roles(UserRole.CLIENT)),
    meta: dict = Depends(request_meta),
    db: Session = Depends(get_db),
):
    contract = contracts.get_contract(db, contract_id)
    return workflow.submit_contract(db, contract, actor, meta)


@router.post("/{contract_id}/cancel", response_model=ContractResponse)
def cancel_contract(
    contract_id: int,
    body: ReasonBody,
    actor: Actor = Depends(require_roles(UserRole.ADMIN)),
    meta: dict = Depends(request_meta),
    db: Session = Depends(get_db),
):
    contract = contracts.get_contract(db, contract_id)
    return workflow.cancel_contract(db, contract, actor, body.reason, meta)


@router.post("/{contract_id}/complete", response_model=ContractResponse)
def complete_contract(
    contract_id: int,
    actor: Actor = Depends(require_roles(UserRole.ADMIN)),
    meta: dict = Depends(request_meta),
    db: Session = Depends(get_db),
):
    contract = contracts.get_contract(db, contract_id)
    return workflow.complete_contract(db, contract, actor, meta)


@router.post("/{contract_id}/legacy-transition", response_model=ContractResponse)
def legacy_transition(
    contract_id: int,
    body: LegacyTransitionBody,
    actor: Actor = Depends(require_roles(UserRole.ADMIN)),
    meta: dict = Depends(request_meta),
    db: Session = Depends(get_db),
):
    contract = contracts.get_contract(db, contract_id)
    return workflow.advance_legacy(db, contract, actor, body.status, body.reason, meta)


@router.get("/{contract_id}/history", response_model=list[AuditLogEntryResponse])
def contract_history(contract_id: int, actor: Actor = Depends(get_actor), db: Session = Depends(get_db)):
    contract = contracts.get_contract(db, contract_id)
    if actor.role != UserRole.ADMIN and contract.client_id != actor.id:
        raise HTTPException(status_code=403, detail="Only the owner or an admin can view contract history")
    return audit.get_entity_history(db, EntityType.CONTRACT, contract_id)
