"""
Contract status state machine.

Two tables drive everything here:

* TRANSITIONS: from-status -> statuses it may move to (current and legacy
  workflows in one map).
* STAGE_OWNERS: (from, to) -> roles allowed to trigger that move.

`transition_to` is the only writer of Contract.status. It checks the table,
checks the role, stamps the matching timestamp, flushes (a versioned UPDATE),
writes the audit entry and commits. On any failure it rolls back, so the
persisted contract is left as it was.
"""
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app.exceptions import (
    ConcurrentModificationError,
    ForbiddenError,
    InvalidTransitionError,
    ValidationError,
)
from app.models.audit_log import AuditAction, EntityType
from app.models.base import utcnow
from app.models.contract import Contract, ContractStatus, RejectionStage
from app.models.offer import Offer
from app.models.user import UserRole
from app.services import audit
from app.services.actors import Actor
from app.services.providers import record_completed_task

logger = logging.getLogger(__name__)

S = ContractStatus

TRANSITIONS: dict[str, frozenset] = {
    S.DRAFT: frozenset({S.PENDING_PROCUREMENT}),
    S.PENDING_PROCUREMENT: frozenset({S.PENDING_LEGAL, S.REJECTED, S.DRAFT}),
    S.PENDING_LEGAL: frozenset({S.OPEN_FOR_OFFERS, S.REJECTED, S.PENDING_PROCUREMENT}),
    S.OPEN_FOR_OFFERS: frozenset({S.OFFER_SELECTED, S.CANCELLED}),
    S.OFFER_SELECTED: frozenset({S.PENDING_FINAL_APPROVAL}),
    S.PENDING_FINAL_APPROVAL: frozenset({S.FINAL_APPROVED, S.REJECTED, S.OFFER_SELECTED}),
    S.FINAL_APPROVED: frozenset({S.COMPLETED, S.CANCELLED}),
    S.REJECTED: frozenset(),
    S.CANCELLED: frozenset(),
    S.COMPLETED: frozenset(),
    # Legacy workflow
    S.PENDING_APPROVAL: frozenset({S.PUBLISHED, S.DRAFT}),
    S.PUBLISHED: frozenset({S.SEARCHING_PROVIDER, S.CANCELLED}),
    S.SEARCHING_PROVIDER: frozenset({S.PROVIDER_ASSIGNED, S.CANCELLED}),
    S.PROVIDER_ASSIGNED: frozenset({S.IN_PROGRESS, S.SEARCHING_PROVIDER, S.CANCELLED}),
    S.IN_PROGRESS: frozenset({S.COMPLETED, S.CANCELLED}),
}

_ADMIN = frozenset({UserRole.ADMIN})

STAGE_OWNERS: dict[tuple, frozenset] = {
    (S.DRAFT, S.PENDING_PROCUREMENT): frozenset({UserRole.CLIENT}),
    (S.PENDING_PROCUREMENT, S.PENDING_LEGAL): frozenset({UserRole.PROCUREMENT_MANAGER}),
    (S.PENDING_PROCUREMENT, S.REJECTED): frozenset({UserRole.PROCUREMENT_MANAGER}),
    (S.PENDING_PROCUREMENT, S.DRAFT): frozenset({UserRole.PROCUREMENT_MANAGER}),
    (S.PENDING_LEGAL, S.OPEN_FOR_OFFERS): frozenset({UserRole.LEGAL_COUNSEL}),
    (S.PENDING_LEGAL, S.REJECTED): frozenset({UserRole.LEGAL_COUNSEL}),
    (S.PENDING_LEGAL, S.PENDING_PROCUREMENT): frozenset({UserRole.LEGAL_COUNSEL}),
    (S.OPEN_FOR_OFFERS, S.OFFER_SELECTED): frozenset({UserRole.CONTRACT_COORDINATOR}),
    (S.OPEN_FOR_OFFERS, S.CANCELLED): _ADMIN,
    (S.OFFER_SELECTED, S.PENDING_FINAL_APPROVAL): frozenset({UserRole.CONTRACT_COORDINATOR}),
    (S.PENDING_FINAL_APPROVAL, S.FINAL_APPROVED): _ADMIN,
    (S.PENDING_FINAL_APPROVAL, S.REJECTED): _ADMIN,
    (S.PENDING_FINAL_APPROVAL, S.OFFER_SELECTED): _ADMIN,
    (S.FINAL_APPROVED, S.COMPLETED): _ADMIN,
    (S.FINAL_APPROVED, S.CANCELLED): _ADMIN,
}
for _from in S.LEGACY:
    for _to in TRANSITIONS[_from]:
        STAGE_OWNERS[(_from, _to)] = _ADMIN

TRANSITION_ACTIONS: dict[tuple, str] = {
    (S.PENDING_PROCUREMENT, S.PENDING_LEGAL): AuditAction.PROCUREMENT_APPROVE,
    (S.PENDING_PROCUREMENT, S.REJECTED): AuditAction.PROCUREMENT_REJECT,
    (S.PENDING_LEGAL, S.OPEN_FOR_OFFERS): AuditAction.LEGAL_APPROVE,
    (S.PENDING_LEGAL, S.REJECTED): AuditAction.LEGAL_REJECT,
    (S.OPEN_FOR_OFFERS, S.OFFER_SELECTED): AuditAction.OFFER_SELECT,
    (S.PENDING_FINAL_APPROVAL, S.FINAL_APPROVED): AuditAction.FINAL_APPROVE,
    (S.PENDING_FINAL_APPROVAL, S.REJECTED): AuditAction.FINAL_REJECT,
}

EDITABLE_STATUSES = frozenset({S.DRAFT, S.PENDING_PROCUREMENT, S.PENDING_LEGAL, S.PENDING_APPROVAL})

# Review stages: which sub-record a decision is stamped on, where approval leads,
# where a send-back returns to, and how a rejection is labelled.
REVIEW_STAGES = {
    S.PENDING_PROCUREMENT: "procurement",
    S.PENDING_LEGAL: "legal",
    S.PENDING_FINAL_APPROVAL: "final_approval",
}
APPROVAL_TARGETS = {
    S.PENDING_PROCUREMENT: S.PENDING_LEGAL,
    S.PENDING_LEGAL: S.OPEN_FOR_OFFERS,
    S.PENDING_FINAL_APPROVAL: S.FINAL_APPROVED,
}
SEND_BACK_TARGETS = {
    S.PENDING_PROCUREMENT: S.DRAFT,
    S.PENDING_LEGAL: S.PENDING_PROCUREMENT,
    S.PENDING_FINAL_APPROVAL: S.OFFER_SELECTED,
}
REJECTION_STAGES = {
    S.PENDING_PROCUREMENT: RejectionStage.PROCUREMENT,
    S.PENDING_LEGAL: RejectionStage.LEGAL,
    S.PENDING_FINAL_APPROVAL: RejectionStage.ADMIN,
}
# Review sub-records cleared when a send-back re-enters a stage
CLEARED_ON_SEND_BACK = {
    S.DRAFT: ("procurement", "legal"),
    S.PENDING_PROCUREMENT: ("procurement", "legal"),
    S.OFFER_SELECTED: ("final_approval",),
}


def allowed_transitions(status: str) -> frozenset:
    return TRANSITIONS.get(status, frozenset())


def can_be_edited(contract: Contract) -> bool:
    return contract.status in EDITABLE_STATUSES


def accepts_offers(contract: Contract) -> bool:
    return contract.status == S.OPEN_FOR_OFFERS


def check_transition(from_status: str, to_status: str) -> None:
    if to_status not in allowed_transitions(from_status):
        logger.warning("transition: rejected %s -> %s", from_status, to_status)
        raise InvalidTransitionError(from_status, to_status)


def authorize_transition(actor: Actor, from_status: str, to_status: str) -> None:
    roles = STAGE_OWNERS.get((from_status, to_status), frozenset())
    if actor.role not in roles:
        logger.warning(
            "transition: forbidden %s -> %s for user_id=%s role=%s",
            from_status, to_status, actor.id, actor.role,
        )
        raise ForbiddenError(
            f"Role {actor.role} may not move a contract from {from_status} to {to_status}"
        )


def apply_transition(contract: Contract, new_status: str, reason: Optional[str] = None,
                     now: Optional[datetime] = None) -> str:
    """Check the move against the table, set status and stamp its timestamp. Returns the previous status."""
    from_status = contract.status
    check_transition(from_status, new_status)
    now = now or utcnow()
    contract.status = new_status
    if new_status == S.OPEN_FOR_OFFERS:
        contract.open_for_offers_at = now
    elif new_status == S.PUBLISHED:
        contract.published_at = now
    elif new_status == S.COMPLETED:
        contract.completed_at = now
    elif new_status == S.CANCELLED:
        contract.cancelled_at = now
        contract.cancellation_reason = reason
    elif new_status == S.REJECTED:
        contract.rejected_at = now
        contract.rejection_reason = reason
    return from_status


def transition_to(
    db: Session,
    contract: Contract,
    new_status: str,
    actor: Actor,
    reason: Optional[str] = None,
    *,
    action: Optional[str] = None,
    description: Optional[str] = None,
    metadata: Optional[dict] = None,
    commit: bool = True,
) -> Contract:
    contract_id = contract.id
    from_status = contract.status
    try:
        check_transition(from_status, new_status)
        authorize_transition(actor, from_status, new_status)
        apply_transition(contract, new_status, reason)
        db.flush()
        meta = dict(metadata or {})
        if reason:
            meta.setdefault("reason", reason)
        audit.log(
            db,
            action or TRANSITION_ACTIONS.get((from_status, new_status), AuditAction.STATUS_CHANGE),
            EntityType.CONTRACT,
            contract_id,
            actor.id,
            changes={"before": {"status": from_status}, "after": {"status": new_status}},
            metadata=meta,
            description=description or f"Contract status changed from {from_status} to {new_status}",
        )
        if commit:
            db.commit()
    except StaleDataError as e:
        db.rollback()
        logger.warning("transition: stale contract_id=%s %s -> %s", contract_id, from_status, new_status)
        raise ConcurrentModificationError(contract_id) from e
    except Exception:
        db.rollback()
        raise
    logger.info(
        "transition: contract_id=%s %s -> %s by user_id=%s",
        contract_id, from_status, new_status, actor.id,
    )
    return contract


# Stage operations


def _stamp_review(contract: Contract, stage: str, actor_id: Optional[int], decision: Optional[str],
                  notes: Optional[str], now: Optional[datetime]) -> None:
    if stage == "procurement":
        contract.procurement_reviewed_by = actor_id
        contract.procurement_reviewed_at = now
        contract.procurement_status = decision
        contract.procurement_notes = notes
    elif stage == "legal":
        contract.legal_reviewed_by = actor_id
        contract.legal_reviewed_at = now
        contract.legal_status = decision
        contract.legal_notes = notes
    elif stage == "final_approval":
        contract.final_approved_by = actor_id
        contract.final_approved_at = now
        contract.final_status = decision
        contract.final_notes = notes


def _require_stage(table: dict, contract: Contract, operation: str) -> str:
    target = table.get(contract.status)
    if target is None:
        raise InvalidTransitionError(
            contract.status, None, f"Cannot {operation} a contract in status {contract.status}"
        )
    return target


def _require_reason(reason: Optional[str]) -> str:
    if not reason or not reason.strip():
        raise ValidationError("A reason is required", fields=["reason"])
    return reason.strip()


def submit_contract(db: Session, contract: Contract, actor: Actor,
                    request_meta: Optional[dict] = None) -> Contract:
    if contract.client_id != actor.id:
        raise ForbiddenError("Only the owning client can submit this contract")
    return transition_to(
        db, contract, S.PENDING_PROCUREMENT, actor,
        metadata=request_meta,
        description=f"Contract {contract.reference_number} submitted for procurement review",
    )


def approve_contract(db: Session, contract: Contract, actor: Actor, notes: Optional[str] = None,
                     request_meta: Optional[dict] = None) -> Contract:
    from_status = contract.status
    target = _require_stage(APPROVAL_TARGETS, contract, "approve")
    authorize_transition(actor, from_status, target)
    stage = REVIEW_STAGES[from_status]
    try:
        _stamp_review(contract, stage, actor.id, "approved", notes, utcnow())
        if from_status == S.PENDING_FINAL_APPROVAL and contract.coordinator_selected_offer_id:
            offer = db.query(Offer).filter(Offer.id == contract.coordinator_selected_offer_id).first()
            if offer is not None:
                record_completed_task(db, offer.provider_id)
    except Exception:
        db.rollback()
        raise
    meta = dict(request_meta or {})
    if notes:
        meta["notes"] = notes
    return transition_to(
        db, contract, target, actor,
        metadata=meta,
        description=f"Contract {contract.reference_number} approved at {stage} stage",
    )


def reject_contract(db: Session, contract: Contract, actor: Actor, reason: Optional[str],
                    request_meta: Optional[dict] = None) -> Contract:
    from_status = contract.status
    reason = _require_reason(reason)
    _require_stage(REJECTION_STAGES, contract, "reject")
    authorize_transition(actor, from_status, S.REJECTED)
    _stamp_review(contract, REVIEW_STAGES[from_status], actor.id, "rejected", reason, utcnow())
    contract.rejected_by = actor.id
    contract.rejection_stage = REJECTION_STAGES[from_status]
    return transition_to(
        db, contract, S.REJECTED, actor, reason,
        metadata=request_meta,
        description=f"Contract {contract.reference_number} rejected at {REVIEW_STAGES[from_status]} stage",
    )


def send_back(db: Session, contract: Contract, actor: Actor, reason: Optional[str] = None,
              request_meta: Optional[dict] = None) -> Contract:
    from_status = contract.status
    target = _require_stage(SEND_BACK_TARGETS, contract, "send back")
    authorize_transition(actor, from_status, target)
    for stage in CLEARED_ON_SEND_BACK[target]:
        _stamp_review(contract, stage, None, None, None, None)
    return transition_to(
        db, contract, target, actor, reason,
        action=AuditAction.STATUS_CHANGE,
        metadata=request_meta,
        description=f"Contract {contract.reference_number} sent back from {from_status} to {target}",
    )


def resubmit_for_final_approval(db: Session, contract: Contract, actor: Actor, notes: Optional[str] = None,
                                request_meta: Optional[dict] = None) -> Contract:
    if notes:
        contract.coordinator_notes = notes
    return transition_to(
        db, contract, S.PENDING_FINAL_APPROVAL, actor,
        metadata=request_meta,
        description=f"Contract {contract.reference_number} resubmitted for final approval",
    )


def cancel_contract(db: Session, contract: Contract, actor: Actor, reason: Optional[str],
                    request_meta: Optional[dict] = None) -> Contract:
    reason = _require_reason(reason)
    return transition_to(
        db, contract, S.CANCELLED, actor, reason,
        metadata=request_meta,
        description=f"Contract {contract.reference_number} cancelled",
    )


def complete_contract(db: Session, contract: Contract, actor: Actor,
                      request_meta: Optional[dict] = None) -> Contract:
    return transition_to(
        db, contract, S.COMPLETED, actor,
        metadata=request_meta,
        description=f"Contract {contract.reference_number} completed",
    )


def advance_legacy(db: Session, contract: Contract, actor: Actor, new_status: str,
                   reason: Optional[str] = None, request_meta: Optional[dict] = None) -> Contract:
    """Drive a contract persisted under the pre multi-role workflow."""
    if contract.status not in S.LEGACY:
        raise InvalidTransitionError(
            contract.status, new_status, f"Contract in status {contract.status} is not in the legacy workflow"
        )
    return transition_to(db, contract, new_status, actor, reason, metadata=request_meta)


def publish_contract(db: Session, contract: Contract, actor: Actor,
                     request_meta: Optional[dict] = None) -> Contract:
    return advance_legacy(db, contract, actor, S.PUBLISHED, request_meta=request_meta)
