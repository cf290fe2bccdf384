from sqlalchemy import Column, Date, DateTime, Float, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from app.models.base import Base


class OfferStatus:
    PENDING = "pending"
    SELECTED = "selected"
    REJECTED = "rejected"
    WITHDRAWN = "withdrawn"

    ALL = (PENDING, SELECTED, REJECTED, WITHDRAWN)


SIBLING_SELECTED_REASON = "Another offer was selected"


class Offer(Base):
    __tablename__ = "offers"
    # One offer per provider per contract
    __table_args__ = (UniqueConstraint("contract_id", "provider_id", name="uq_offer_contract_provider"),)

    id = Column(Integer, primary_key=True, index=True)
    contract_id = Column(Integer, ForeignKey("contracts.id"), nullable=False, index=True)
    provider_id = Column(Integer, ForeignKey("providers.id"), nullable=False, index=True)
    # Snapshot of the provider at submission time; not kept in sync
    provider_company_name = Column(String(200), nullable=True)
    provider_role = Column(String(100), nullable=True)
    provider_email = Column(String(255), nullable=False)
    provider_category = Column(String(100), nullable=True)
    amount = Column(Float, nullable=False)
    currency = Column(String(3), default="EUR", nullable=False)
    proposed_start_date = Column(Date, nullable=False)
    proposed_end_date = Column(Date, nullable=False)
    description = Column(Text, nullable=False)
    deliverables = Column(Text, nullable=True)  # JSON array of {title, description, due_date}
    terms = Column(Text, nullable=True)
    status = Column(String(20), default=OfferStatus.PENDING, nullable=False, index=True)
    selected_at = Column(DateTime(timezone=True), nullable=True)
    selected_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    selection_notes = Column(Text, nullable=True)
    rejected_at = Column(DateTime(timezone=True), nullable=True)
    rejected_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    rejection_reason = Column(Text, nullable=True)
    withdrawn_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    contract = relationship("Contract", back_populates="offers", foreign_keys=[contract_id])
    provider = relationship("Provider", back_populates="offers")
