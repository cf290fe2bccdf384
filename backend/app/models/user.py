from sqlalchemy import Boolean, Column, DateTime, Integer, String
from sqlalchemy.sql import func

from app.models.base import Base


class UserRole:
    ADMIN = "admin"
    CLIENT = "client"
    SERVICE_PROVIDER = "service_provider"
    PROCUREMENT_MANAGER = "procurement_manager"
    LEGAL_COUNSEL = "legal_counsel"
    CONTRACT_COORDINATOR = "contract_coordinator"

    ALL = (ADMIN, CLIENT, SERVICE_PROVIDER, PROCUREMENT_MANAGER, LEGAL_COUNSEL, CONTRACT_COORDINATOR)


class User(Base):
    """Internal actor. Credentials live with the auth provider, not here."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    first_name = Column(String(50), nullable=False)
    last_name = Column(String(50), nullable=False)
    email = Column(String(255), unique=True, nullable=False, index=True)
    role = Column(String(50), default=UserRole.CLIENT, nullable=False, index=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
