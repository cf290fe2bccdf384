import logging
import secrets
import time
from typing import List, Optional

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app.exceptions import (
    ConcurrentModificationError,
    ContractLockedError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from app.models.audit_log import AuditAction, EntityType
from app.models.base import utcnow
from app.models.contract import Contract, ContractStatus
from app.models.user import User, UserRole
from app.schemas.contract import ContractCreate, ContractUpdate
from app.services import audit
from app.services.actors import Actor
from app.services.workflow import can_be_edited

logger = logging.getLogger(__name__)

DEFAULT_LIST_LIMIT = 50

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"

# Status in which each creating role's contract starts
_INITIAL_STATUS = {
    UserRole.CLIENT: ContractStatus.DRAFT,
    UserRole.PROCUREMENT_MANAGER: ContractStatus.PENDING_PROCUREMENT,
}

# Besides admin and the owner, who may edit a contract in which status
_STAGE_EDITORS = {
    ContractStatus.PENDING_PROCUREMENT: UserRole.PROCUREMENT_MANAGER,
    ContractStatus.PENDING_LEGAL: UserRole.LEGAL_COUNSEL,
}

_SNAPSHOT_FIELDS = (
    "title", "contract_type", "description", "target_conditions", "target_persons",
    "budget_minimum", "budget_maximum", "budget_currency", "start_date", "end_date", "status",
)


def _base36(n: int) -> str:
    out = ""
    while n:
        n, r = divmod(n, 36)
        out = _BASE36[r] + out
    return out or "0"


def generate_reference_number() -> str:
    """CTR-<base36 epoch millis>-<6 hex>, e.g. CTR-LX2K9Q1B-3FA01C."""
    return f"CTR-{_base36(int(time.time() * 1000)).upper()}-{secrets.token_hex(3).upper()}"


def contract_snapshot(contract: Contract) -> dict:
    return {f: getattr(contract, f) for f in _SNAPSHOT_FIELDS}


def get_contract(db: Session, contract_id: int) -> Contract:
    contract = (
        db.query(Contract)
        .filter(Contract.id == contract_id, Contract.is_deleted.is_(False))
        .first()
    )
    if contract is None:
        raise NotFoundError("Contract", contract_id)
    return contract


def list_contracts(
    db: Session,
    status: Optional[str] = None,
    client_id: Optional[int] = None,
    contract_type: Optional[str] = None,
    limit: int = DEFAULT_LIST_LIMIT,
) -> List[Contract]:
    q = db.query(Contract).filter(Contract.is_deleted.is_(False))
    if status:
        q = q.filter(Contract.status == status)
    if client_id is not None:
        q = q.filter(Contract.client_id == client_id)
    if contract_type:
        q = q.filter(Contract.contract_type == contract_type)
    return q.order_by(Contract.created_at.desc(), Contract.id.desc()).limit(limit).all()


def create_contract(db: Session, payload: ContractCreate, actor: Actor,
                    request_meta: Optional[dict] = None) -> Contract:
    status = _INITIAL_STATUS.get(actor.role)
    if status is None:
        raise ForbiddenError(f"Role {actor.role} cannot create contracts")

    if actor.role == UserRole.CLIENT:
        client_id = actor.id
    else:
        client_id = payload.client_id
        if client_id is not None:
            client = (
                db.query(User)
                .filter(User.id == client_id, User.role == UserRole.CLIENT, User.is_active.is_(True))
                .first()
            )
            if client is None:
                raise NotFoundError("Client", client_id)

    contract = Contract(
        reference_number=generate_reference_number(),
        title=payload.title.strip(),
        contract_type=payload.contract_type,
        description=payload.description.strip(),
        target_conditions=(payload.target_conditions or "").strip() or None,
        target_persons=payload.target_persons,
        budget_minimum=payload.budget.minimum,
        budget_maximum=payload.budget.maximum,
        budget_currency=payload.budget.currency or "EUR",
        start_date=payload.start_date,
        end_date=payload.end_date,
        status=status,
        client_id=client_id,
    )
    try:
        db.add(contract)
        db.flush()
        audit.log(
            db,
            AuditAction.CREATE,
            EntityType.CONTRACT,
            contract.id,
            actor.id,
            changes={"after": contract_snapshot(contract)},
            metadata=request_meta,
            description=f"Contract {contract.reference_number} created",
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(contract)
    logger.info("create-contract: contract_id=%s status=%s by user_id=%s", contract.id, status, actor.id)
    return contract


def _ensure_can_edit(contract: Contract, actor: Actor) -> None:
    if actor.role == UserRole.ADMIN:
        return
    if actor.role == UserRole.CLIENT and contract.client_id == actor.id and contract.status == ContractStatus.DRAFT:
        return
    if _STAGE_EDITORS.get(contract.status) == actor.role:
        return
    logger.warning("update-contract: contract_id=%s denied for user_id=%s", contract.id, actor.id)
    raise ForbiddenError("You do not have permission to edit this contract")


def update_contract(db: Session, contract_id: int, payload: ContractUpdate, actor: Actor,
                    request_meta: Optional[dict] = None) -> Contract:
    contract = get_contract(db, contract_id)
    data = payload.model_dump(exclude_unset=True)
    if data.get("status") is not None:
        raise InvalidTransitionError(
            contract.status, data["status"], "Status can only change through workflow actions"
        )
    data.pop("status", None)
    # Only target_conditions is optional on the model
    data = {k: v for k, v in data.items() if v is not None or k == "target_conditions"}
    if not can_be_edited(contract):
        raise ContractLockedError(contract_id, contract.status)
    _ensure_can_edit(contract, actor)

    budget = data.pop("budget", None)
    if budget is not None:
        data["budget_minimum"] = budget["minimum"]
        data["budget_maximum"] = budget["maximum"]
        data["budget_currency"] = budget.get("currency") or "EUR"

    # Re-check cross-field rules against the merged state
    start = data.get("start_date", contract.start_date)
    end = data.get("end_date", contract.end_date)
    if start >= end:
        raise ValidationError("End date must be after start date", fields=["start_date", "end_date"])
    bmin = data.get("budget_minimum", contract.budget_minimum)
    bmax = data.get("budget_maximum", contract.budget_maximum)
    if bmin > bmax:
        raise ValidationError(
            "Minimum budget cannot be greater than maximum budget",
            fields=["budget.minimum", "budget.maximum"],
        )

    before = contract_snapshot(contract)
    try:
        for key, value in data.items():
            setattr(contract, key, value)
        db.flush()
        audit.log(
            db,
            AuditAction.UPDATE,
            EntityType.CONTRACT,
            contract_id,
            actor.id,
            changes={"before": before, "after": contract_snapshot(contract)},
            metadata=request_meta,
            description=f"Contract {contract.reference_number} updated",
        )
        db.commit()
    except StaleDataError as e:
        db.rollback()
        raise ConcurrentModificationError(contract_id) from e
    except Exception:
        db.rollback()
        raise
    logger.info("update-contract: contract_id=%s fields=%s by user_id=%s", contract_id, sorted(data), actor.id)
    return contract


def delete_contract(db: Session, contract_id: int, actor: Actor,
                    request_meta: Optional[dict] = None) -> None:
    contract = get_contract(db, contract_id)
    if actor.role != UserRole.ADMIN and contract.client_id != actor.id:
        raise ForbiddenError("Only the owner or an admin can delete this contract")
    try:
        contract.is_deleted = True
        contract.deleted_at = utcnow()
        contract.deleted_by = actor.id
        db.flush()
        audit.log(
            db,
            AuditAction.DELETE,
            EntityType.CONTRACT,
            contract_id,
            actor.id,
            changes={"before": contract_snapshot(contract)},
            metadata=request_meta,
            description=f"Contract {contract.reference_number} deleted",
        )
        db.commit()
    except StaleDataError as e:
        db.rollback()
        raise ConcurrentModificationError(contract_id) from e
    except Exception:
        db.rollback()
        raise
    logger.info("delete-contract: contract_id=%s by user_id=%s", contract_id, actor.id)


def record_view(db: Session, contract_id: int) -> None:
    db.query(Contract).filter(Contract.id == contract_id).update(
        {Contract.view_count: Contract.view_count + 1}, synchronize_session=False
    )
    db.commit()
