import json

import pytest

from app.exceptions import ForbiddenError, NotFoundError, ValidationError
from app.models.audit_log import AuditAction, EntityType
from app.models.provider import Provider
from app.models.user import UserRole
from app.services import audit, providers
from tests.conftest import provider_in


def _provider(db, email: str, **overrides) -> Provider:
    provider, _ = providers.find_or_create_provider(db, provider_in(email, **overrides))
    db.commit()
    return provider


class TestFindOrCreate:
    def test_lookup_is_case_insensitive(self, db):
        first, created = providers.find_or_create_provider(db, provider_in("Ada@Example.com"))
        again, created_again = providers.find_or_create_provider(db, provider_in("ada@example.COM"))
        assert (created, created_again) == (True, False)
        assert again.id == first.id
        assert first.verified is False
        assert first.availability is True

    @pytest.mark.parametrize("email", ["", "ada", "ada@example", "ada @example.com"])
    def test_invalid_email(self, db, email):
        with pytest.raises(ValidationError):
            providers.find_or_create_provider(db, provider_in(email))

    def test_record_completed_task(self, db):
        provider = _provider(db, "ada@example.com")
        providers.record_completed_task(db, provider.id)
        assert provider.tasks_completed == 1
        with pytest.raises(NotFoundError):
            providers.record_completed_task(db, 4040)


class TestVerification:
    def test_admin_verifies(self, db, actors):
        provider = _provider(db, "ada@example.com")
        admin = actors[UserRole.ADMIN]
        verified = providers.verify_provider(db, provider.id, admin)
        assert verified.verified is True
        assert verified.verified_by == admin.id
        assert verified.verified_at is not None
        [entry] = audit.get_entity_history(db, EntityType.PROVIDER, provider.id)
        assert entry.action == AuditAction.VERIFY
        assert entry.performed_by == admin.id

    def test_verifying_twice_writes_one_entry(self, db, actors):
        provider = _provider(db, "ada@example.com")
        providers.verify_provider(db, provider.id, actors[UserRole.ADMIN])
        providers.verify_provider(db, provider.id, actors[UserRole.ADMIN])
        assert len(audit.get_entity_history(db, EntityType.PROVIDER, provider.id)) == 1

    @pytest.mark.parametrize("role", [UserRole.CONTRACT_COORDINATOR, UserRole.CLIENT])
    def test_only_admin_verifies(self, db, actors, role):
        provider = _provider(db, "ada@example.com")
        with pytest.raises(ForbiddenError):
            providers.verify_provider(db, provider.id, actors[role])
        assert provider.verified is False

    def test_unknown_provider(self, db, actors):
        with pytest.raises(NotFoundError):
            providers.verify_provider(db, 4040, actors[UserRole.ADMIN])


class TestAvailability:
    def test_toggle_is_audited(self, db, actors):
        provider = _provider(db, "ada@example.com")
        updated = providers.set_availability(db, provider.id, False, actors[UserRole.ADMIN])
        assert updated.availability is False
        [entry] = audit.get_entity_history(db, EntityType.PROVIDER, provider.id)
        assert json.loads(entry.changes) == {"before": {"availability": True}, "after": {"availability": False}}

    def test_unchanged_value_is_a_no_op(self, db, actors):
        provider = _provider(db, "ada@example.com")
        providers.set_availability(db, provider.id, True, actors[UserRole.ADMIN])
        assert audit.get_entity_history(db, EntityType.PROVIDER, provider.id) == []


class TestListProviders:
    def test_filters(self, db, actors):
        ada = _provider(db, "ada@example.com", name="Ada Lovelace", category="IT Services")
        bob = _provider(db, "bob@builders.example.com", name="Bob Builder", category="Construction")
        cy = _provider(db, "cy@example.com", name="Cy Ops", category="IT Services", organization="Builders United")
        providers.verify_provider(db, ada.id, actors[UserRole.ADMIN])
        providers.set_availability(db, cy.id, False, actors[UserRole.ADMIN])

        assert [p.id for p in providers.list_providers(db, verified=True)] == [ada.id]
        assert {p.id for p in providers.list_providers(db, verified=False)} == {bob.id, cy.id}
        assert {p.id for p in providers.list_providers(db, available=True)} == {ada.id, bob.id}
        assert {p.id for p in providers.list_providers(db, category="IT Services")} == {ada.id, cy.id}
        # Matches name, e-mail or organization
        assert {p.id for p in providers.list_providers(db, search="builder")} == {bob.id, cy.id}

    def test_inactive_providers_are_hidden(self, db):
        provider = _provider(db, "ada@example.com")
        provider.is_active = False
        db.commit()
        assert providers.list_providers(db) == []

    def test_best_rated_first_and_paged(self, db):
        low = _provider(db, "low@example.com")
        high = _provider(db, "high@example.com")
        low.rating, high.rating = 2.5, 4.8
        db.commit()
        assert [p.id for p in providers.list_providers(db)] == [high.id, low.id]
        assert [p.id for p in providers.list_providers(db, limit=1, offset=1)] == [low.id]
