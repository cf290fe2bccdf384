import json

import pytest

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
from app.models.contract import Contract, ContractStatus
from app.models.offer import SIBLING_SELECTED_REASON, Offer, OfferStatus
from app.models.provider import Provider
from app.models.user import UserRole
from app.services import audit, offers
from tests.conftest import offer_in, provider_in

S = ContractStatus


def _contract(db, contract_id):
    db.expire_all()
    return db.query(Contract).filter(Contract.id == contract_id).one()


class TestSubmitOffer:
    def test_submit_creates_pending_offer_and_provider(self, db, make_contract):
        contract = make_contract(S.OPEN_FOR_OFFERS)
        offer, provider, created = offers.submit_offer(
            db, contract.id, provider_in("Ada@Example.com", company_name=None, role=None), offer_in()
        )
        assert created is True
        assert provider.email == "ada@example.com"
        assert offer.status == OfferStatus.PENDING
        assert offer.provider_email == "ada@example.com"
        # Snapshot falls back to the provider's name and category
        assert offer.provider_company_name == "Ada Provider"
        assert offer.provider_role == "IT Services"
        assert offer.currency == "EUR"
        assert json.loads(offer.deliverables)[0]["title"] == "Onboarding runbook"
        assert _contract(db, contract.id).offer_count == 1

    def test_submit_is_audited_without_actor(self, db, make_contract):
        contract = make_contract(S.OPEN_FOR_OFFERS)
        offer, provider, _ = offers.submit_offer(db, contract.id, provider_in("ada@example.com"), offer_in(), {"ip_address": "10.0.0.8"})
        [entry] = audit.get_entity_history(db, EntityType.OFFER, offer.id)
        assert entry.action == AuditAction.OFFER_SUBMIT
        assert entry.performed_by is None
        meta = json.loads(entry.metadata_json)
        assert meta["ip_address"] == "10.0.0.8"
        assert meta["provider_id"] == provider.id

    def test_returning_provider_is_reused(self, db, make_contract):
        first = make_contract(S.OPEN_FOR_OFFERS)
        second = make_contract(S.OPEN_FOR_OFFERS)
        _, p1, created1 = offers.submit_offer(db, first.id, provider_in("ada@example.com"), offer_in())
        _, p2, created2 = offers.submit_offer(db, second.id, provider_in("ADA@example.com"), offer_in())
        assert (created1, created2) == (True, False)
        assert p1.id == p2.id
        assert db.query(Provider).count() == 1

    def test_offer_against_draft_fails(self, db, make_contract):
        contract = make_contract()
        with pytest.raises(NotOpenForOffersError):
            offers.submit_offer(db, contract.id, provider_in("ada@example.com"), offer_in())
        assert db.query(Offer).count() == 0
        assert db.query(Provider).count() == 0

    def test_missing_contract(self, db):
        with pytest.raises(NotFoundError):
            offers.submit_offer(db, 9999, provider_in("ada@example.com"), offer_in())

    def test_duplicate_offer_fails(self, db, make_contract, make_offer):
        contract = make_contract(S.OPEN_FOR_OFFERS)
        make_offer(contract.id, "ada@example.com")
        with pytest.raises(DuplicateOfferError):
            offers.submit_offer(db, contract.id, provider_in("ADA@EXAMPLE.COM"), offer_in(amount=6000))
        assert db.query(Offer).filter(Offer.contract_id == contract.id).count() == 1
        assert _contract(db, contract.id).offer_count == 1

    def test_invalid_email_fails(self, db, make_contract):
        contract = make_contract(S.OPEN_FOR_OFFERS)
        with pytest.raises(ValidationError):
            offers.submit_offer(db, contract.id, provider_in("not-an-email"), offer_in())


class TestSelectOffer:
    def test_select_one_rejects_the_rest(self, db, actors, make_contract, make_offer):
        contract = make_contract(S.OPEN_FOR_OFFERS)
        a = make_offer(contract.id, "a@example.com")
        b = make_offer(contract.id, "b@example.com")
        c = make_offer(contract.id, "c@example.com")
        coordinator = actors[UserRole.CONTRACT_COORDINATOR]

        result, selected = offers.select_offer(db, contract.id, a.id, coordinator, notes="Best value")

        assert result.status == S.PENDING_FINAL_APPROVAL
        assert selected.status == OfferStatus.SELECTED
        assert selected.selected_by == coordinator.id
        assert selected.selection_notes == "Best value"
        db.expire_all()
        for other in (b, c):
            other = db.query(Offer).filter(Offer.id == other.id).one()
            assert other.status == OfferStatus.REJECTED
            assert other.rejection_reason == SIBLING_SELECTED_REASON
        contract = _contract(db, contract.id)
        assert contract.coordinator_selected_offer_id == a.id
        assert contract.coordinator_selected_by == coordinator.id

        history = audit.get_entity_history(db, EntityType.CONTRACT, contract.id)
        assert history[0].action == AuditAction.OFFER_SELECT
        changes = json.loads(history[0].changes)
        assert changes["before"]["status"] == S.OPEN_FOR_OFFERS
        assert changes["after"]["status"] == S.PENDING_FINAL_APPROVAL
        assert sorted(json.loads(history[0].metadata_json)["rejected_offer_ids"]) == sorted([b.id, c.id])

        affected = [
            *audit.get_entity_history(db, EntityType.OFFER, a.id),
            *audit.get_entity_history(db, EntityType.OFFER, b.id),
            *audit.get_entity_history(db, EntityType.OFFER, c.id),
        ]
        actions = [e.action for e in affected]
        assert actions.count(AuditAction.OFFER_SELECT) == 1
        assert actions.count(AuditAction.OFFER_REJECT) == 2

    def test_at_most_one_selected(self, db, actors, make_contract, make_offer):
        contract = make_contract(S.OPEN_FOR_OFFERS)
        a = make_offer(contract.id, "a@example.com")
        b = make_offer(contract.id, "b@example.com")
        coordinator = actors[UserRole.CONTRACT_COORDINATOR]
        offers.select_offer(db, contract.id, a.id, coordinator)

        with pytest.raises(NotSelectableError):
            offers.select_offer(db, contract.id, b.id, coordinator)
        selected = db.query(Offer).filter(Offer.contract_id == contract.id, Offer.status == OfferStatus.SELECTED)
        assert [o.id for o in selected] == [a.id]

    def test_offer_from_other_contract(self, db, actors, make_contract, make_offer):
        contract = make_contract(S.OPEN_FOR_OFFERS)
        other = make_contract(S.OPEN_FOR_OFFERS)
        foreign = make_offer(other.id, "a@example.com")
        with pytest.raises(NotSelectableError):
            offers.select_offer(db, contract.id, foreign.id, actors[UserRole.CONTRACT_COORDINATOR])
        assert _contract(db, contract.id).status == S.OPEN_FOR_OFFERS

    def test_withdrawn_offer_cannot_be_selected(self, db, actors, make_contract, make_offer):
        contract = make_contract(S.OPEN_FOR_OFFERS)
        offer = make_offer(contract.id, "a@example.com")
        offers.withdraw_offer(db, offer.id, offer.provider_id)
        with pytest.raises(NotSelectableError):
            offers.select_offer(db, contract.id, offer.id, actors[UserRole.CONTRACT_COORDINATOR])

    def test_missing_offer(self, db, actors, make_contract):
        contract = make_contract(S.OPEN_FOR_OFFERS)
        with pytest.raises(NotFoundError):
            offers.select_offer(db, contract.id, 4242, actors[UserRole.CONTRACT_COORDINATOR])

    def test_only_coordinator_selects(self, db, actors, make_contract, make_offer):
        contract = make_contract(S.OPEN_FOR_OFFERS)
        offer = make_offer(contract.id, "a@example.com")
        for role in (UserRole.ADMIN, UserRole.CLIENT, UserRole.LEGAL_COUNSEL):
            with pytest.raises(ForbiddenError):
                offers.select_offer(db, contract.id, offer.id, actors[role])
        db.expire_all()
        assert db.query(Offer).filter(Offer.id == offer.id).one().status == OfferStatus.PENDING

    def test_submission_closed_after_selection(self, db, actors, make_contract, make_offer):
        contract = make_contract(S.OPEN_FOR_OFFERS)
        offer = make_offer(contract.id, "a@example.com")
        offers.select_offer(db, contract.id, offer.id, actors[UserRole.CONTRACT_COORDINATOR])
        with pytest.raises(NotOpenForOffersError):
            offers.submit_offer(db, contract.id, provider_in("late@example.com"), offer_in())


class TestRejectAndWithdraw:
    def test_coordinator_rejects_single_offer(self, db, actors, make_contract, make_offer):
        contract = make_contract(S.OPEN_FOR_OFFERS)
        offer = make_offer(contract.id, "a@example.com")
        rejected = offers.reject_offer(db, offer.id, actors[UserRole.CONTRACT_COORDINATOR], "Over budget")
        assert rejected.status == OfferStatus.REJECTED
        assert rejected.rejection_reason == "Over budget"
        assert _contract(db, contract.id).status == S.OPEN_FOR_OFFERS
        with pytest.raises(NotSelectableError):
            offers.reject_offer(db, offer.id, actors[UserRole.CONTRACT_COORDINATOR], "Again")

    def test_client_cannot_reject_offer(self, db, actors, make_contract, make_offer):
        contract = make_contract(S.OPEN_FOR_OFFERS)
        offer = make_offer(contract.id, "a@example.com")
        with pytest.raises(ForbiddenError):
            offers.reject_offer(db, offer.id, actors[UserRole.CLIENT], "No")

    def test_withdraw(self, db, make_contract, make_offer):
        contract = make_contract(S.OPEN_FOR_OFFERS)
        offer = make_offer(contract.id, "a@example.com")
        withdrawn = offers.withdraw_offer(db, offer.id, offer.provider_id)
        assert withdrawn.status == OfferStatus.WITHDRAWN
        assert withdrawn.withdrawn_at is not None
        assert _contract(db, contract.id).status == S.OPEN_FOR_OFFERS
        history = audit.get_entity_history(db, EntityType.OFFER, offer.id)
        assert history[0].action == AuditAction.OFFER_WITHDRAW

    def test_withdraw_twice_fails(self, db, make_contract, make_offer):
        contract = make_contract(S.OPEN_FOR_OFFERS)
        offer = make_offer(contract.id, "a@example.com")
        offers.withdraw_offer(db, offer.id, offer.provider_id)
        with pytest.raises(NotWithdrawableError) as exc:
            offers.withdraw_offer(db, offer.id, offer.provider_id)
        assert exc.value.status == OfferStatus.WITHDRAWN

    def test_only_owner_withdraws(self, db, make_contract, make_offer):
        contract = make_contract(S.OPEN_FOR_OFFERS)
        offer = make_offer(contract.id, "a@example.com")
        other = make_offer(contract.id, "b@example.com")
        with pytest.raises(ForbiddenError):
            offers.withdraw_offer(db, offer.id, other.provider_id)

    def test_selected_offer_cannot_be_withdrawn(self, db, actors, make_contract, make_offer):
        contract = make_contract(S.OPEN_FOR_OFFERS)
        offer = make_offer(contract.id, "a@example.com")
        offers.select_offer(db, contract.id, offer.id, actors[UserRole.CONTRACT_COORDINATOR])
        with pytest.raises(NotWithdrawableError):
            offers.withdraw_offer(db, offer.id, offer.provider_id)


class TestQueries:
    def test_list_contract_and_provider_offers(self, db, make_contract, make_offer):
        first = make_contract(S.OPEN_FOR_OFFERS)
        second = make_contract(S.OPEN_FOR_OFFERS)
        o1 = make_offer(first.id, "a@example.com")
        o2 = make_offer(second.id, "a@example.com")
        make_offer(first.id, "b@example.com")

        assert len(offers.list_contract_offers(db, first.id)) == 2
        mine = offers.list_provider_offers(db, o1.provider_id)
        assert [o.id for o in mine] == [o2.id, o1.id]
        assert offers.list_contract_offers(db, first.id, OfferStatus.SELECTED) == []
