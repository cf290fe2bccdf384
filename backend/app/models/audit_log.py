import logging

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, Text, event

from app.exceptions import AuditImmutableError
from app.models.base import Base, utcnow

logger = logging.getLogger(__name__)


class AuditAction:
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    STATUS_CHANGE = "status_change"
    APPROVE = "approve"
    REJECT = "reject"
    ASSIGN = "assign"
    PROCUREMENT_APPROVE = "procurement_approve"
    PROCUREMENT_REJECT = "procurement_reject"
    LEGAL_APPROVE = "legal_approve"
    LEGAL_REJECT = "legal_reject"
    OFFER_SUBMIT = "offer_submit"
    OFFER_SELECT = "offer_select"
    OFFER_REJECT = "offer_reject"
    OFFER_WITHDRAW = "offer_withdraw"
    FINAL_APPROVE = "final_approve"
    FINAL_REJECT = "final_reject"
    VERIFY = "verify"


class EntityType:
    CONTRACT = "Contract"
    OFFER = "Offer"
    PROVIDER = "Provider"
    USER = "User"


class AuditLogEntry(Base):
    """Audit trail: who did what to which entity and when. Append-only."""
    __tablename__ = "audit_log"
    __table_args__ = (Index("ix_audit_log_entity", "entity_type", "entity_id"),)

    id = Column(Integer, primary_key=True, index=True)
    action = Column(String(50), nullable=False, index=True)
    entity_type = Column(String(30), nullable=False)
    entity_id = Column(Integer, nullable=False)
    performed_by = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)  # NULL = public API
    changes = Column(Text, nullable=True)  # JSON {before, after}
    metadata_json = Column("metadata", Text, nullable=True)  # JSON: ip_address, user_agent, reason, ...
    description = Column(Text, nullable=True)
    # Set in Python for sub-second ordering; server clocks on SQLite are second-granular
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)


@event.listens_for(AuditLogEntry, "before_update")
def _block_audit_update(mapper, connection, target):
    logger.error("audit-immutability: blocked UPDATE of entry_id=%s", target.id)
    raise AuditImmutableError(target.id, "modified")


@event.listens_for(AuditLogEntry, "before_delete")
def _block_audit_delete(mapper, connection, target):
    logger.error("audit-immutability: blocked DELETE of entry_id=%s", target.id)
    raise AuditImmutableError(target.id, "deleted")
