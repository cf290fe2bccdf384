"""
Offer lifecycle: submission by (unauthenticated) providers, selection by the
contract coordinator, withdrawal by the submitting provider.

Selection is one unit of work. The contract flush is a versioned UPDATE, so of
two coordinators racing on the same contract only the first to commit wins;
the other gets StaleDataError, rolls back and surfaces NotSelectableError.

Offer status changes (select, reject, withdraw) are UPDATEs guarded on
status = pending, so an offer that moved after it was read is never
overwritten; the write claims no row and the operation fails instead.
"""
import json
import logging
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app.exceptions import (
    DuplicateOfferError,
    ForbiddenError,
    NotFoundError,
    NotOpenForOffersError,
    NotSelectableError,
    NotWithdrawableError,
    ValidationError,
)
from app.models.audit_log import AuditAction, EntityType
from app.models.base import utcnow
from app.models.contract import Contract, ContractStatus
from app.models.offer import SIBLING_SELECTED_REASON, Offer, OfferStatus
from app.models.provider import Provider
from app.models.user import UserRole
from app.schemas.offer import OfferIn, ProviderIn
from app.services import audit
from app.services.actors import Actor
from app.services.contracts import get_contract
from app.services.providers import find_or_create_provider, normalize_email
from app.services.workflow import accepts_offers, apply_transition, authorize_transition

logger = logging.getLogger(__name__)

OFFER_REVIEWER_ROLES = frozenset({UserRole.CONTRACT_COORDINATOR, UserRole.ADMIN})


def offer_snapshot(offer: Offer) -> dict:
    return {
        "contract_id": offer.contract_id,
        "provider_id": offer.provider_id,
        "amount": offer.amount,
        "currency": offer.currency,
        "proposed_start_date": offer.proposed_start_date,
        "proposed_end_date": offer.proposed_end_date,
        "status": offer.status,
    }


def get_offer(db: Session, offer_id: int) -> Offer:
    offer = db.query(Offer).filter(Offer.id == offer_id).first()
    if offer is None:
        raise NotFoundError("Offer", offer_id)
    return offer


def _claim_pending(db: Session, offer_id: int, values: dict) -> bool:
    """UPDATE the offer only while it is still pending; False if another transaction moved it first."""
    claimed = (
        db.query(Offer)
        .filter(Offer.id == offer_id, Offer.status == OfferStatus.PENDING)
        .update(values, synchronize_session=False)
    )
    return claimed == 1


def _current_status(db: Session, offer_id: int) -> Optional[str]:
    row = db.query(Offer.status).filter(Offer.id == offer_id).first()
    return row.status if row else None


def list_contract_offers(db: Session, contract_id: int, status: Optional[str] = None) -> List[Offer]:
    q = db.query(Offer).filter(Offer.contract_id == contract_id)
    if status:
        q = q.filter(Offer.status == status)
    return q.order_by(Offer.created_at.desc(), Offer.id.desc()).all()


def list_provider_offers(db: Session, provider_id: int, status: Optional[str] = None) -> List[Offer]:
    q = db.query(Offer).filter(Offer.provider_id == provider_id)
    if status:
        q = q.filter(Offer.status == status)
    return q.order_by(Offer.created_at.desc(), Offer.id.desc()).all()


def submit_offer(
    db: Session,
    contract_id: int,
    provider_data: ProviderIn,
    offer_data: OfferIn,
    request_meta: Optional[dict] = None,
) -> tuple[Offer, Provider, bool]:
    contract = get_contract(db, contract_id)
    if not accepts_offers(contract):
        logger.warning("submit-offer: contract_id=%s not open (status=%s)", contract_id, contract.status)
        raise NotOpenForOffersError(contract_id)

    email = normalize_email(provider_data.email)
    try:
        provider, created = find_or_create_provider(db, provider_data)
        existing = (
            db.query(Offer)
            .filter(Offer.contract_id == contract_id, Offer.provider_id == provider.id)
            .first()
        )
        if existing:
            raise DuplicateOfferError(contract_id, email)

        # Guarded on status: a contract that left OPEN_FOR_OFFERS since it was read claims no row
        claimed = (
            db.query(Contract)
            .filter(
                Contract.id == contract_id,
                Contract.status == ContractStatus.OPEN_FOR_OFFERS,
                Contract.is_deleted.is_(False),
            )
            .update({Contract.offer_count: Contract.offer_count + 1}, synchronize_session=False)
        )
        if claimed != 1:
            raise NotOpenForOffersError(contract_id)

        offer = Offer(
            contract_id=contract_id,
            provider_id=provider.id,
            provider_company_name=(provider_data.company_name or "").strip() or provider.name,
            provider_role=(provider_data.role or "").strip() or provider.category,
            provider_email=provider.email,
            provider_category=provider.category,
            amount=offer_data.amount,
            currency=offer_data.currency or "EUR",
            proposed_start_date=offer_data.proposed_start_date,
            proposed_end_date=offer_data.proposed_end_date,
            description=offer_data.description,
            deliverables=json.dumps([d.model_dump(mode="json") for d in offer_data.deliverables]),
            terms=offer_data.terms,
            status=OfferStatus.PENDING,
        )
        db.add(offer)
        db.flush()

        meta = dict(request_meta or {})
        meta.update({"contract_id": contract_id, "provider_id": provider.id, "provider_email": provider.email})
        audit.log(
            db,
            AuditAction.OFFER_SUBMIT,
            EntityType.OFFER,
            offer.id,
            None,
            changes={"after": offer_snapshot(offer)},
            metadata=meta,
            description=f"New offer submitted by {provider.name} for contract {contract.reference_number}",
        )
        db.commit()
    except IntegrityError as e:
        db.rollback()
        logger.warning("submit-offer: contract_id=%s duplicate for %s", contract_id, email)
        raise DuplicateOfferError(contract_id, email) from e
    except Exception:
        db.rollback()
        raise

    db.refresh(offer)
    logger.info(
        "submit-offer: contract_id=%s offer_id=%s provider_id=%s new_provider=%s",
        contract_id, offer.id, provider.id, created,
    )
    return offer, provider, created


def select_offer(
    db: Session,
    contract_id: int,
    offer_id: int,
    actor: Actor,
    notes: Optional[str] = None,
) -> tuple[Contract, Offer]:
    contract = get_contract(db, contract_id)
    if contract.status != ContractStatus.OPEN_FOR_OFFERS:
        raise NotSelectableError(f"Contract {contract_id} is not open for offers (status {contract.status})")
    authorize_transition(actor, ContractStatus.OPEN_FOR_OFFERS, ContractStatus.OFFER_SELECTED)

    offer = get_offer(db, offer_id)
    if offer.contract_id != contract_id:
        raise NotSelectableError(f"Offer {offer_id} does not belong to contract {contract_id}")
    if offer.status != OfferStatus.PENDING:
        raise NotSelectableError(f"Offer {offer_id} is {offer.status}, only pending offers can be selected")

    now = utcnow()
    try:
        contract.coordinator_selected_by = actor.id
        contract.coordinator_selected_at = now
        contract.coordinator_selected_offer_id = offer_id
        contract.coordinator_notes = notes

        before_status = apply_transition(contract, ContractStatus.OFFER_SELECTED, now=now)
        authorize_transition(actor, ContractStatus.OFFER_SELECTED, ContractStatus.PENDING_FINAL_APPROVAL)
        apply_transition(contract, ContractStatus.PENDING_FINAL_APPROVAL, now=now)
        # Compare-and-swap on contracts.version; the loser of a race fails here
        db.flush()

        claimed = _claim_pending(
            db,
            offer_id,
            {
                Offer.status: OfferStatus.SELECTED,
                Offer.selected_by: actor.id,
                Offer.selected_at: now,
                Offer.selection_notes: notes,
            },
        )
        if not claimed:
            logger.warning("select-offer: offer_id=%s left pending before it was claimed", offer_id)
            raise NotSelectableError(f"Offer {offer_id} is no longer pending and cannot be selected")

        sibling_ids = [
            row.id
            for row in db.query(Offer.id).filter(
                Offer.contract_id == contract_id,
                Offer.id != offer_id,
                Offer.status == OfferStatus.PENDING,
            )
        ]
        rejected_ids = [
            sibling_id
            for sibling_id in sibling_ids
            if _claim_pending(
                db,
                sibling_id,
                {
                    Offer.status: OfferStatus.REJECTED,
                    Offer.rejected_by: actor.id,
                    Offer.rejected_at: now,
                    Offer.rejection_reason: SIBLING_SELECTED_REASON,
                },
            )
        ]
        audit.log(
            db,
            AuditAction.OFFER_SELECT,
            EntityType.CONTRACT,
            contract_id,
            actor.id,
            changes={
                "before": {"status": before_status},
                "after": {"status": contract.status, "selected_offer_id": offer_id},
            },
            metadata={"selected_offer_id": offer_id, "rejected_offer_ids": rejected_ids, "notes": notes},
            description=(
                f"Offer {offer_id} selected for contract {contract.reference_number}; "
                f"{len(rejected_ids)} other offer(s) rejected"
            ),
        )
        audit.log(
            db,
            AuditAction.OFFER_SELECT,
            EntityType.OFFER,
            offer_id,
            actor.id,
            changes={"before": {"status": OfferStatus.PENDING}, "after": {"status": OfferStatus.SELECTED}},
            metadata={"contract_id": contract_id},
            description=f"Offer selected for contract {contract.reference_number}",
        )
        for sibling_id in rejected_ids:
            audit.log(
                db,
                AuditAction.OFFER_REJECT,
                EntityType.OFFER,
                sibling_id,
                actor.id,
                changes={"before": {"status": OfferStatus.PENDING}, "after": {"status": OfferStatus.REJECTED}},
                metadata={"contract_id": contract_id, "reason": SIBLING_SELECTED_REASON},
                description=SIBLING_SELECTED_REASON,
            )
        db.commit()
    except StaleDataError as e:
        db.rollback()
        logger.warning("select-offer: contract_id=%s offer_id=%s lost race", contract_id, offer_id)
        raise NotSelectableError(
            f"Contract {contract_id} changed while selecting offer {offer_id}; another offer may already be selected"
        ) from e
    except Exception:
        db.rollback()
        raise

    logger.info(
        "select-offer: contract_id=%s offer_id=%s rejected=%s by user_id=%s",
        contract_id, offer_id, len(rejected_ids), actor.id,
    )
    return contract, offer


def reject_offer(db: Session, offer_id: int, actor: Actor, reason: Optional[str]) -> Offer:
    if actor.role not in OFFER_REVIEWER_ROLES:
        raise ForbiddenError("Only a contract coordinator or admin can reject offers")
    if not reason or not reason.strip():
        raise ValidationError("A reason is required", fields=["reason"])
    offer = get_offer(db, offer_id)
    contract = get_contract(db, offer.contract_id)
    if not accepts_offers(contract):
        raise NotSelectableError(f"Contract {contract.id} is not open for offers")
    if offer.status != OfferStatus.PENDING:
        raise NotSelectableError(f"Offer {offer_id} is {offer.status}, only pending offers can be rejected")
    reason = reason.strip()
    try:
        claimed = _claim_pending(
            db,
            offer_id,
            {
                Offer.status: OfferStatus.REJECTED,
                Offer.rejected_by: actor.id,
                Offer.rejected_at: utcnow(),
                Offer.rejection_reason: reason,
            },
        )
        if not claimed:
            raise NotSelectableError(
                f"Offer {offer_id} is {_current_status(db, offer_id)}, only pending offers can be rejected"
            )
        audit.log(
            db,
            AuditAction.OFFER_REJECT,
            EntityType.OFFER,
            offer_id,
            actor.id,
            changes={"before": {"status": OfferStatus.PENDING}, "after": {"status": OfferStatus.REJECTED}},
            metadata={"contract_id": contract.id, "reason": reason},
            description=f"Offer rejected for contract {contract.reference_number}",
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info("reject-offer: offer_id=%s by user_id=%s", offer_id, actor.id)
    return offer


def withdraw_offer(db: Session, offer_id: int, provider_id: int) -> Offer:
    offer = get_offer(db, offer_id)
    if offer.provider_id != provider_id:
        logger.warning("withdraw-offer: offer_id=%s not owned by provider_id=%s", offer_id, provider_id)
        raise ForbiddenError("Only the submitting provider can withdraw this offer")
    if offer.status != OfferStatus.PENDING:
        raise NotWithdrawableError(offer_id, offer.status)
    contract_id = offer.contract_id
    try:
        claimed = _claim_pending(db, offer_id, {Offer.status: OfferStatus.WITHDRAWN, Offer.withdrawn_at: utcnow()})
        if not claimed:
            raise NotWithdrawableError(offer_id, _current_status(db, offer_id))
        audit.log(
            db,
            AuditAction.OFFER_WITHDRAW,
            EntityType.OFFER,
            offer_id,
            None,
            changes={"before": {"status": OfferStatus.PENDING}, "after": {"status": OfferStatus.WITHDRAWN}},
            metadata={"contract_id": contract_id, "provider_id": provider_id},
            description="Offer withdrawn by provider",
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info("withdraw-offer: offer_id=%s provider_id=%s", offer_id, provider_id)
    return offer
