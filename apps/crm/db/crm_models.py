"""
Sales pipeline models: leads and their activity log.
"""

from datetime import datetime
from enum import Enum
from sqlalchemy import Column, String, DateTime, Date, JSON, Text, Integer, Float, ForeignKey, Index
from sqlalchemy.orm import relationship
import uuid

from ..core.database import Base
from .types import UUID


class LeadStatus(str, Enum):
    """Lead pipeline status."""
    NEW = "new"
    CONTACTED = "contacted"
    QUALIFIED = "qualified"
    PROPOSAL = "proposal"
    NEGOTIATION = "negotiation"
    WON = "won"
    LOST = "lost"


class LeadSource(str, Enum):
    """Where a lead came from."""
    WEBSITE = "website"
    REFERRAL = "referral"
    EMAIL = "email"
    PHONE = "phone"
    SOCIAL = "social"
    OTHER = "other"


LEAD_STATUS_LABELS = {
    LeadStatus.NEW: "Ny",
    LeadStatus.CONTACTED: "Kontaktet",
    LeadStatus.QUALIFIED: "Kvalificeret",
    LeadStatus.PROPOSAL: "Tilbud sendt",
    LeadStatus.NEGOTIATION: "Forhandling",
    LeadStatus.WON: "Vundet",
    LeadStatus.LOST: "Tabt",
}


class Lead(Base):
    """Sales lead model."""
    __tablename__ = "leads"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    # Contact info
    company_name = Column(String(200), nullable=False)
    contact_person = Column(String(200), nullable=False)
    email = Column(String(255), nullable=False)
    phone = Column(String(50), nullable=True)

    # Pipeline
    status = Column(String(20), default=LeadStatus.NEW.value, nullable=False)
    source = Column(String(20), default=LeadSource.OTHER.value, nullable=False)
    value = Column(Float, nullable=True)
    probability = Column(Integer, nullable=True)  # 0-100
    expected_close_date = Column(Date, nullable=True)

    notes = Column(Text, nullable=True)
    tags = Column(JSON, default=list)
    custom_fields = Column(JSON, default=dict)

    assigned_to = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True)
    customer_id = Column(UUID(as_uuid=True), ForeignKey("customers.id"), nullable=True)
    created_by = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    assigned_user = relationship("User", foreign_keys=[assigned_to])
    activities = relationship(
        "LeadActivity",
        back_populates="lead",
        cascade="all, delete-orphan",
        order_by="LeadActivity.created_at.desc()",
    )

    __table_args__ = (
        Index("idx_lead_status", "status"),
        Index("idx_lead_source", "source"),
        Index("idx_lead_assigned", "assigned_to"),
    )


class LeadActivity(Base):
    """Timeline entry on a lead (status changes, calls, notes)."""
    __tablename__ = "lead_activities"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    lead_id = Column(UUID(as_uuid=True), ForeignKey("leads.id", ondelete="CASCADE"), nullable=False)
    activity_type = Column(String(50), nullable=False)
    description = Column(Text, nullable=False)
    performed_by = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    lead = relationship("Lead", back_populates="activities")

    __table_args__ = (
        Index("idx_lead_activity_lead", "lead_id"),
    )
