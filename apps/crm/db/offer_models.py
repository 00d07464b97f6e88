"""
Offer (tilbud) models: the quote header, its line items and activity log.
"""

from datetime import datetime
from enum import Enum
from sqlalchemy import Column, String, DateTime, Date, JSON, Text, Integer, Float, ForeignKey, Index
from sqlalchemy.orm import relationship
import uuid

from ..core.database import Base
from .types import UUID


class OfferStatus(str, Enum):
    """Offer lifecycle status."""
    DRAFT = "draft"
    SENT = "sent"
    VIEWED = "viewed"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    EXPIRED = "expired"


OFFER_STATUS_LABELS = {
    OfferStatus.DRAFT: "Kladde",
    OfferStatus.SENT: "Sendt",
    OfferStatus.VIEWED: "Set",
    OfferStatus.ACCEPTED: "Accepteret",
    OfferStatus.REJECTED: "Afvist",
    OfferStatus.EXPIRED: "Udløbet",
}


class Offer(Base):
    """Customer facing price quote."""
    __tablename__ = "offers"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    offer_number = Column(String(30), unique=True, nullable=False)
    title = Column(String(300), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String(20), default=OfferStatus.DRAFT.value, nullable=False)

    customer_id = Column(UUID(as_uuid=True), ForeignKey("customers.id"), nullable=True)
    lead_id = Column(UUID(as_uuid=True), ForeignKey("leads.id"), nullable=True)

    # Totals, maintained by services.offers.recalculate_offer_totals
    total_amount = Column(Float, default=0.0, nullable=False)
    discount_percentage = Column(Float, default=0.0, nullable=False)
    discount_amount = Column(Float, default=0.0, nullable=False)
    tax_percentage = Column(Float, default=25.0, nullable=False)
    tax_amount = Column(Float, default=0.0, nullable=False)
    final_amount = Column(Float, default=0.0, nullable=False)
    currency = Column(String(3), default="DKK", nullable=False)

    valid_until = Column(Date, nullable=True)
    terms = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)

    sent_at = Column(DateTime, nullable=True)
    viewed_at = Column(DateTime, nullable=True)
    accepted_at = Column(DateTime, nullable=True)
    rejected_at = Column(DateTime, nullable=True)

    created_by = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    customer = relationship("Customer")
    lead = relationship("Lead")
    line_items = relationship(
        "OfferLineItem",
        back_populates="offer",
        cascade="all, delete-orphan",
        order_by="OfferLineItem.position",
    )
    activities = relationship(
        "OfferActivity",
        back_populates="offer",
        cascade="all, delete-orphan",
        order_by="OfferActivity.created_at.desc()",
    )

    __table_args__ = (
        Index("idx_offer_status", "status"),
        Index("idx_offer_customer", "customer_id"),
    )


class OfferLineItem(Base):
    """Single priced line on an offer."""
    __tablename__ = "offer_line_items"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    offer_id = Column(UUID(as_uuid=True), ForeignKey("offers.id", ondelete="CASCADE"), nullable=False)
    position = Column(Integer, nullable=False, default=1)
    section = Column(String(100), nullable=True)
    description = Column(Text, nullable=False)
    quantity = Column(Float, nullable=False, default=1.0)
    unit = Column(String(20), nullable=False, default="stk")
    unit_price = Column(Float, nullable=False, default=0.0)
    discount_percentage = Column(Float, nullable=False, default=0.0)
    total = Column(Float, nullable=False, default=0.0)
    cost_price = Column(Float, nullable=True)

    # Supplier tracking, frozen at creation time
    supplier_product_id = Column(UUID(as_uuid=True), ForeignKey("supplier_products.id", ondelete="SET NULL"), nullable=True)
    supplier_cost_price_at_creation = Column(Float, nullable=True)
    supplier_margin_applied = Column(Float, nullable=True)
    supplier_name_at_creation = Column(String(200), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    offer = relationship("Offer", back_populates="line_items")
    supplier_product = relationship("SupplierProduct")

    __table_args__ = (
        Index("idx_line_item_offer", "offer_id"),
        Index("idx_line_item_supplier_product", "supplier_product_id"),
    )


class OfferActivity(Base):
    """Timeline entry on an offer."""
    __tablename__ = "offer_activities"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    offer_id = Column(UUID(as_uuid=True), ForeignKey("offers.id", ondelete="CASCADE"), nullable=False)
    activity_type = Column(String(50), nullable=False)
    description = Column(Text, nullable=False)
    performed_by = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True)
    metadata_json = Column("metadata", JSON, default=dict)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    offer = relationship("Offer", back_populates="activities")
