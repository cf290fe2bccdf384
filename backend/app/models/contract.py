from sqlalchemy import Boolean, Column, Date, DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship, validates
from sqlalchemy.sql import func

from app.exceptions import ValidationError
from app.models.base import Base


class ContractStatus:
    DRAFT = "draft"
    PENDING_PROCUREMENT = "pending_procurement"
    PENDING_LEGAL = "pending_legal"
    OPEN_FOR_OFFERS = "open_for_offers"
    OFFER_SELECTED = "offer_selected"
    PENDING_FINAL_APPROVAL = "pending_final_approval"
    FINAL_APPROVED = "final_approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    # Pre multi-role workflow; rows in these states may still exist.
    PENDING_APPROVAL = "pending_approval"
    PUBLISHED = "published"
    SEARCHING_PROVIDER = "searching_provider"
    PROVIDER_ASSIGNED = "provider_assigned"
    IN_PROGRESS = "in_progress"

    CURRENT = (
        DRAFT, PENDING_PROCUREMENT, PENDING_LEGAL, OPEN_FOR_OFFERS, OFFER_SELECTED,
        PENDING_FINAL_APPROVAL, FINAL_APPROVED, REJECTED, CANCELLED, COMPLETED,
    )
    LEGACY = (PENDING_APPROVAL, PUBLISHED, SEARCHING_PROVIDER, PROVIDER_ASSIGNED, IN_PROGRESS)
    ALL = CURRENT + LEGACY


class ContractType:
    IT_SERVICE = "IT Service"
    DATA_SERVER_MANAGEMENT = "Data Server Management"
    OFFICE_ADMINISTRATOR = "Office Administrator"
    SOFTWARE_HANDLING = "Software Handling"

    ALL = (IT_SERVICE, DATA_SERVER_MANAGEMENT, OFFICE_ADMINISTRATOR, SOFTWARE_HANDLING)


class RejectionStage:
    PROCUREMENT = "procurement"
    LEGAL = "legal"
    COORDINATOR = "coordinator"
    ADMIN = "admin"


class Contract(Base):
    __tablename__ = "contracts"

    id = Column(Integer, primary_key=True, index=True)
    reference_number = Column(String(40), unique=True, nullable=False, index=True)
    title = Column(String(200), nullable=False)
    contract_type = Column(String(50), nullable=False, index=True)
    description = Column(Text, nullable=False)
    target_conditions = Column(Text, nullable=True)
    target_persons = Column(Integer, nullable=False)
    budget_minimum = Column(Float, nullable=False)
    budget_maximum = Column(Float, nullable=False)
    budget_currency = Column(String(3), default="EUR", nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    status = Column(String(50), default=ContractStatus.DRAFT, nullable=False, index=True)
    client_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)

    # Workflow stage records, flattened; exposed together via `workflow`
    procurement_reviewed_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    procurement_reviewed_at = Column(DateTime(timezone=True), nullable=True)
    procurement_status = Column(String(20), nullable=True)  # "approved" | "rejected"
    procurement_notes = Column(Text, nullable=True)
    legal_reviewed_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    legal_reviewed_at = Column(DateTime(timezone=True), nullable=True)
    legal_status = Column(String(20), nullable=True)
    legal_notes = Column(Text, nullable=True)
    coordinator_selected_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    coordinator_selected_at = Column(DateTime(timezone=True), nullable=True)
    coordinator_selected_offer_id = Column(Integer, nullable=True)  # offers.id; no FK, avoids a table cycle
    coordinator_notes = Column(Text, nullable=True)
    final_approved_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    final_approved_at = Column(DateTime(timezone=True), nullable=True)
    final_status = Column(String(20), nullable=True)
    final_notes = Column(Text, nullable=True)

    rejected_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    rejected_at = Column(DateTime(timezone=True), nullable=True)
    rejection_reason = Column(Text, nullable=True)
    rejection_stage = Column(String(20), nullable=True)

    open_for_offers_at = Column(DateTime(timezone=True), nullable=True)
    published_at = Column(DateTime(timezone=True), nullable=True)  # legacy workflow
    completed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    cancellation_reason = Column(Text, nullable=True)

    offer_count = Column(Integer, default=0, nullable=False)
    view_count = Column(Integer, default=0, nullable=False)

    is_deleted = Column(Boolean, default=False, nullable=False, index=True)
    deleted_at = Column(DateTime(timezone=True), nullable=True)
    deleted_by = Column(Integer, ForeignKey("users.id"), nullable=True)

    # Optimistic concurrency token: every ORM UPDATE is "... WHERE version = :seen"
    version = Column(Integer, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    __mapper_args__ = {"version_id_col": version}

    client = relationship("User", foreign_keys=[client_id])
    offers = relationship(
        "Offer",
        back_populates="contract",
        foreign_keys="Offer.contract_id",
        order_by="Offer.created_at.desc()",
    )

    @validates("status")
    def _validate_status(self, key, value):
        if value not in ContractStatus.ALL:
            raise ValidationError(f"Unknown contract status: {value}", fields=["status"])
        return value

    @property
    def workflow(self) -> dict:
        return {
            "procurement": {
                "reviewed_by": self.procurement_reviewed_by,
                "reviewed_at": self.procurement_reviewed_at,
                "status": self.procurement_status,
                "notes": self.procurement_notes,
            },
            "legal": {
                "reviewed_by": self.legal_reviewed_by,
                "reviewed_at": self.legal_reviewed_at,
                "status": self.legal_status,
                "notes": self.legal_notes,
            },
            "coordinator": {
                "selected_by": self.coordinator_selected_by,
                "selected_at": self.coordinator_selected_at,
                "selected_offer_id": self.coordinator_selected_offer_id,
                "notes": self.coordinator_notes,
            },
            "final_approval": {
                "approved_by": self.final_approved_by,
                "approved_at": self.final_approved_at,
                "status": self.final_status,
                "notes": self.final_notes,
            },
        }
