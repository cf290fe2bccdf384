"""Stage reviews: procurement, legal and admin final approval share one set of endpoints."""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.deps import request_meta, require_roles
from app.database import get_db
from app.models.user import UserRole
from app.schemas.contract import ContractResponse, NotesBody, OptionalReasonBody, ReasonBody
from app.services import contracts, workflow
from app.services.actors import Actor

router = APIRouter(prefix="/reviews", tags=["reviews"])

_reviewer = require_roles(UserRole.PROCUREMENT_MANAGER, UserRole.LEGAL_COUNSEL, UserRole.ADMIN)


@router.post("/contracts/{contract_id}/approve", response_model=ContractResponse)
def approve(
    contract_id: int,
    body: NotesBody | None = None,
    actor: Actor = Depends(_reviewer),
    meta: dict = Depends(request_meta),
    db: Session = Depends(get_db),
):
    contract = contracts.get_contract(db, contract_id)
    return workflow.approve_contract(db, contract, actor, body.notes if body else None, meta)


@router.post("/contracts/{contract_id}/reject", response_model=ContractResponse)
def reject(
    contract_id: int,
    body: ReasonBody,
    actor: Actor = Depends(_reviewer),
    meta: dict = Depends(request_meta),
    db: Session = Depends(get_db),
):
    contract = contracts.get_contract(db, contract_id)
    return workflow.reject_contract(db, contract, actor, body.reason, meta)


@router.post("/contracts/{contract_id}/send-back", response_model=ContractResponse)
def send_back(
    contract_id: int,
    body: OptionalReasonBody | None = None,
    actor: Actor = Depends(_reviewer),
    meta: dict = Depends(request_meta),
    db: Session = Depends(get_db),
):
    contract = contracts.get_contract(db, contract_id)
    return workflow.send_back(db, contract, actor, body.reason if body else None, meta)
