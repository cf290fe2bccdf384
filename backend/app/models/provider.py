from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from app.models.base import Base


class Provider(Base):
    """External company or individual submitting offers; keyed by e-mail."""
    __tablename__ = "providers"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False, index=True)
    organization = Column(String(200), nullable=True)
    email = Column(String(255), unique=True, nullable=False, index=True)  # stored lowercase
    category = Column(String(100), nullable=False)
    tags = Column(Text, nullable=True)  # JSON array of skill tags
    rate_min = Column(Float, default=0, nullable=False)
    rate_max = Column(Float, default=0, nullable=False)
    phone = Column(String(64), nullable=True)
    # Maintained by the review subsystem, except tasks_completed (final approval)
    rating = Column(Float, default=0, nullable=False)
    reviews_count = Column(Integer, default=0, nullable=False)
    tasks_completed = Column(Integer, default=0, nullable=False)
    availability = Column(Boolean, default=True, nullable=False)
    verified = Column(Boolean, default=False, nullable=False, index=True)
    verified_at = Column(DateTime(timezone=True), nullable=True)
    verified_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    offers = relationship("Offer", back_populates="provider")
