from app.models.user import User, UserRole
from app.models.contract import Contract, ContractStatus, ContractType, RejectionStage
from app.models.offer import Offer, OfferStatus
from app.models.provider import Provider
from app.models.audit_log import AuditLogEntry, AuditAction, EntityType

__all__ = [
    "User",
    "UserRole",
    "Contract",
    "ContractStatus",
    "ContractType",
    "RejectionStage",
    "Offer",
    "OfferStatus",
    "Provider",
    "AuditLogEntry",
    "AuditAction",
    "EntityType",
]
