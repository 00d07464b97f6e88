"""
Supplier catalog, price history and customer specific pricing agreements.
"""

from datetime import datetime
from sqlalchemy import Column, String, DateTime, Date, Text, Integer, Float, Boolean, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import relationship
import uuid

from ..core.database import Base
from .types import UUID


class Supplier(Base):
    """Wholesaler delivering priced products (AO, Lemvigh-Müller, ...)."""
    __tablename__ = "suppliers"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(200), nullable=False)
    code = Column(String(50), unique=True, nullable=False)
    website = Column(String(200), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    settings = relationship("SupplierSettings", back_populates="supplier", uselist=False, cascade="all, delete-orphan")
    products = relationship("SupplierProduct", back_populates="supplier", cascade="all, delete-orphan")
    sync_logs = relationship("SupplierSyncLog", back_populates="supplier", cascade="all, delete-orphan")
    margin_rules = relationship("SupplierMarginRule", back_populates="supplier", cascade="all, delete-orphan")


class SupplierSettings(Base):
    __tablename__ = "supplier_settings"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    supplier_id = Column(UUID(as_uuid=True), ForeignKey("suppliers.id", ondelete="CASCADE"), unique=True, nullable=False)
    default_margin_percentage = Column(Float, nullable=True)
    is_preferred = Column(Boolean, default=False, nullable=False)

    supplier = relationship("Supplier", back_populates="settings")


class SupplierProduct(Base):
    """Catalog item as last synced from the supplier feed."""
    __tablename__ = "supplier_products"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    supplier_id = Column(UUID(as_uuid=True), ForeignKey("suppliers.id", ondelete="CASCADE"), nullable=False)
    supplier_sku = Column(String(100), nullable=False)
    supplier_name = Column(String(500), nullable=False)
    manufacturer = Column(String(200), nullable=True)
    category = Column(String(200), nullable=True)
    cost_price = Column(Float, nullable=True)
    list_price = Column(Float, nullable=True)
    margin_percentage = Column(Float, nullable=True)
    unit = Column(String(20), default="stk", nullable=False)
    is_available = Column(Boolean, default=True, nullable=False)
    last_synced_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    supplier = relationship("Supplier", back_populates="products")
    price_history = relationship(
        "PriceHistory",
        back_populates="supplier_product",
        cascade="all, delete-orphan",
        order_by="PriceHistory.created_at.desc()",
    )

    __table_args__ = (
        UniqueConstraint("supplier_id", "supplier_sku", name="uq_supplier_product_sku"),
        Index("idx_supplier_product_sku", "supplier_sku"),
        Index("idx_supplier_product_name", "supplier_name"),
    )


class PriceHistory(Base):
    """One recorded price change on a supplier product."""
    __tablename__ = "price_history"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    supplier_product_id = Column(UUID(as_uuid=True), ForeignKey("supplier_products.id", ondelete="CASCADE"), nullable=False)
    old_cost_price = Column(Float, nullable=True)
    new_cost_price = Column(Float, nullable=True)
    old_list_price = Column(Float, nullable=True)
    new_list_price = Column(Float, nullable=True)
    change_percentage = Column(Float, nullable=True)
    change_source = Column(String(20), default="manual", nullable=False)  # import, manual, api_sync
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    supplier_product = relationship("SupplierProduct", back_populates="price_history")

    __table_args__ = (
        Index("idx_price_history_product", "supplier_product_id"),
        Index("idx_price_history_created", "created_at"),
    )


class SupplierSyncLog(Base):
    """Result of a catalog synchronisation run."""
    __tablename__ = "supplier_sync_logs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    supplier_id = Column(UUID(as_uuid=True), ForeignKey("suppliers.id", ondelete="CASCADE"), nullable=False)
    status = Column(String(20), default="running", nullable=False)  # running, completed, failed
    started_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    completed_at = Column(DateTime, nullable=True)
    products_processed = Column(Integer, default=0)
    products_updated = Column(Integer, default=0)
    price_changes = Column(Integer, default=0)
    error_message = Column(Text, nullable=True)

    supplier = relationship("Supplier", back_populates="sync_logs")


class CustomerSupplierPrice(Base):
    """Customer agreement covering every product from one supplier."""
    __tablename__ = "customer_supplier_prices"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    customer_id = Column(UUID(as_uuid=True), ForeignKey("customers.id", ondelete="CASCADE"), nullable=False)
    supplier_id = Column(UUID(as_uuid=True), ForeignKey("suppliers.id", ondelete="CASCADE"), nullable=False)
    discount_percentage = Column(Float, default=0.0, nullable=False)
    custom_margin_percentage = Column(Float, nullable=True)
    price_list_code = Column(String(100), nullable=True)
    notes = Column(Text, nullable=True)
    valid_from = Column(Date, nullable=True)
    valid_to = Column(Date, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    supplier = relationship("Supplier")

    __table_args__ = (
        UniqueConstraint("customer_id", "supplier_id", name="uq_customer_supplier_price"),
    )


class CustomerProductPrice(Base):
    """Customer specific price for a single supplier product."""
    __tablename__ = "customer_product_prices"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    customer_id = Column(UUID(as_uuid=True), ForeignKey("customers.id", ondelete="CASCADE"), nullable=False)
    supplier_product_id = Column(UUID(as_uuid=True), ForeignKey("supplier_products.id", ondelete="CASCADE"), nullable=False)
    custom_cost_price = Column(Float, nullable=True)
    custom_list_price = Column(Float, nullable=True)
    custom_discount_percentage = Column(Float, nullable=True)
    notes = Column(Text, nullable=True)
    valid_from = Column(Date, nullable=True)
    valid_to = Column(Date, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    source = Column(String(20), default="manual", nullable=False)  # manual, import, api
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    supplier_product = relationship("SupplierProduct")

    __table_args__ = (
        UniqueConstraint("customer_id", "supplier_product_id", name="uq_customer_product_price"),
    )


class SupplierMarginRule(Base):
    """
    Margin applied to a supplier's products when pricing offer lines.

    Scope by rule_type, most specific first: product, customer, subcategory,
    category, supplier. Within one scope the highest priority wins.
    """
    __tablename__ = "supplier_margin_rules"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    supplier_id = Column(UUID(as_uuid=True), ForeignKey("suppliers.id", ondelete="CASCADE"), nullable=False)
    rule_type = Column(String(20), nullable=False)
    category = Column(String(200), nullable=True)
    sub_category = Column(String(200), nullable=True)
    supplier_product_id = Column(UUID(as_uuid=True), ForeignKey("supplier_products.id", ondelete="CASCADE"), nullable=True)
    customer_id = Column(UUID(as_uuid=True), ForeignKey("customers.id", ondelete="CASCADE"), nullable=True)

    margin_percentage = Column(Float, nullable=False)
    min_margin_percentage = Column(Float, nullable=True)
    max_margin_percentage = Column(Float, nullable=True)
    fixed_markup = Column(Float, default=0.0, nullable=False)
    round_to = Column(Float, nullable=True)

    valid_from = Column(Date, nullable=True)
    valid_to = Column(Date, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    priority = Column(Integer, default=0, nullable=False)
    notes = Column(Text, nullable=True)
    created_by = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    supplier = relationship("Supplier", back_populates="margin_rules")

    __table_args__ = (
        Index("idx_margin_rule_supplier", "supplier_id"),
        Index("idx_margin_rule_type", "rule_type"),
    )
