"""
Pytest fixtures for the ContractFlow backend.

Provides:
- an in-memory SQLite session per test (schema created and dropped around it)
- one persisted user per role, plus the matching Actor
- factories for a valid contract payload, a contract walked to a given stage,
  and a provider offer
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")

from datetime import date, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import app.models  # noqa: F401 - register all models for create_all
from app.models.base import Base
from app.models.contract import ContractStatus, ContractType
from app.models.user import User, UserRole
from app.schemas.contract import Budget, ContractCreate
from app.schemas.offer import OfferIn, ProviderIn
from app.services import contracts, offers, workflow
from app.services.actors import Actor


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=eng)
    yield eng
    Base.metadata.drop_all(bind=eng)
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


def _make_user(db, role: str, email: str) -> User:
    user = User(first_name=role.replace("_", " ").title(), last_name="Tester", email=email, role=role)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def users(db) -> dict:
    """One user per role, keyed by role."""
    out = {role: _make_user(db, role, f"{role}@example.com") for role in UserRole.ALL}
    out["other_client"] = _make_user(db, UserRole.CLIENT, "other.client@example.com")
    return out


@pytest.fixture
def actors(users) -> dict:
    return {key: Actor.from_user(user) for key, user in users.items()}


def contract_payload(**overrides) -> ContractCreate:
    data = dict(
        title="Managed office IT support",
        contract_type=ContractType.IT_SERVICE,
        description="First-line IT support for the Berlin office, including onboarding of new staff.",
        target_conditions="Remote first, on-site twice a week.",
        target_persons=3,
        budget=Budget(minimum=5000, maximum=10000),
        start_date=date.today() + timedelta(days=30),
        end_date=date.today() + timedelta(days=210),
    )
    data.update(overrides)
    return ContractCreate(**data)


@pytest.fixture
def make_payload():
    return contract_payload


# Which role drives each forward step from DRAFT to PENDING_FINAL_APPROVAL
_FORWARD = [
    (ContractStatus.PENDING_PROCUREMENT, UserRole.CLIENT),
    (ContractStatus.PENDING_LEGAL, UserRole.PROCUREMENT_MANAGER),
    (ContractStatus.OPEN_FOR_OFFERS, UserRole.LEGAL_COUNSEL),
]


@pytest.fixture
def make_contract(db, actors):
    """Create a contract as the client and walk it forward to `status` (at most OPEN_FOR_OFFERS)."""

    def _make(status: str = ContractStatus.DRAFT, **overrides):
        contract = contracts.create_contract(db, contract_payload(**overrides), actors[UserRole.CLIENT])
        for target, role in _FORWARD:
            if contract.status == status:
                break
            if target == ContractStatus.PENDING_PROCUREMENT:
                workflow.submit_contract(db, contract, actors[role])
            else:
                workflow.approve_contract(db, contract, actors[role])
        assert contract.status == status
        return contract

    return _make


def provider_in(email: str, **overrides) -> ProviderIn:
    data = dict(email=email, name="Ada Provider", category="IT Services", company_name="Ada GmbH")
    data.update(overrides)
    return ProviderIn(**data)


def offer_in(**overrides) -> OfferIn:
    data = dict(
        amount=7500,
        proposed_start_date=date.today() + timedelta(days=30),
        proposed_end_date=date.today() + timedelta(days=200),
        description="Two engineers, weekly on-site visits, ticket SLA of four hours.",
        deliverables=[{"title": "Onboarding runbook"}],
    )
    data.update(overrides)
    return OfferIn(**data)


@pytest.fixture
def make_offer(db):
    def _make(contract_id: int, email: str, **offer_overrides):
        offer, _provider, _created = offers.submit_offer(
            db, contract_id, provider_in(email), offer_in(**offer_overrides)
        )
        return offer

    return _make
