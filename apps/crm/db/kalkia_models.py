"""
Kalkia job costing models.

Nodes form a component tree (group → operation/composite). Operations carry
variants, variants carry materials, and rules adjust time based on site
conditions. Saved calculations snapshot the totals and one row per item.
"""

from datetime import datetime
from enum import Enum
from sqlalchemy import Column, String, DateTime, JSON, Text, Integer, Float, Boolean, ForeignKey, Index
from sqlalchemy.orm import relationship
import uuid

from ..core.database import Base
from .types import UUID


class NodeType(str, Enum):
    GROUP = "group"
    OPERATION = "operation"
    COMPOSITE = "composite"


class FactorValueType(str, Enum):
    PERCENTAGE = "percentage"
    MULTIPLIER = "multiplier"
    FIXED = "fixed"


class RuleType(str, Enum):
    HEIGHT = "height"
    QUANTITY = "quantity"
    ACCESS = "access"
    DISTANCE = "distance"
    CUSTOM = "custom"


class CalculationStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    ARCHIVED = "archived"
    CONVERTED = "converted"


class KalkiaNode(Base):
    """Component in the Kalkia catalog tree."""
    __tablename__ = "kalkia_nodes"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    parent_id = Column(UUID(as_uuid=True), ForeignKey("kalkia_nodes.id", ondelete="CASCADE"), nullable=True)
    path = Column(String(500), nullable=False)  # dotted codes from the root
    depth = Column(Integer, default=0, nullable=False)
    code = Column(String(50), unique=True, nullable=False)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    node_type = Column(String(20), default=NodeType.OPERATION.value, nullable=False)
    base_time_seconds = Column(Integer, default=0, nullable=False)
    category = Column(String(100), nullable=True)
    default_cost_price = Column(Float, default=0.0, nullable=False)
    default_sale_price = Column(Float, default=0.0, nullable=False)
    difficulty_level = Column(Integer, default=1, nullable=False)
    requires_certification = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    sort_order = Column(Integer, default=0, nullable=False)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    parent = relationship("KalkiaNode", remote_side=[id], back_populates="children")
    children = relationship("KalkiaNode", back_populates="parent", order_by="KalkiaNode.sort_order")
    variants = relationship(
        "KalkiaVariant",
        back_populates="node",
        cascade="all, delete-orphan",
        order_by="KalkiaVariant.sort_order",
    )
    rules = relationship("KalkiaRule", back_populates="node", cascade="all, delete-orphan")

    __table_args__ = (
        Index("idx_kalkia_node_parent", "parent_id"),
        Index("idx_kalkia_node_path", "path"),
    )


class KalkiaVariant(Base):
    """Execution variant of an operation (e.g. concrete wall vs. plaster)."""
    __tablename__ = "kalkia_variants"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    node_id = Column(UUID(as_uuid=True), ForeignKey("kalkia_nodes.id", ondelete="CASCADE"), nullable=False)
    code = Column(String(50), nullable=False)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    base_time_seconds = Column(Integer, default=0, nullable=False)
    time_multiplier = Column(Float, default=1.0, nullable=False)
    extra_time_seconds = Column(Integer, default=0, nullable=False)
    price_multiplier = Column(Float, default=1.0, nullable=False)
    cost_multiplier = Column(Float, default=1.0, nullable=False)
    waste_percentage = Column(Float, default=0.0, nullable=False)
    is_default = Column(Boolean, default=False, nullable=False)
    sort_order = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    node = relationship("KalkiaNode", back_populates="variants")
    materials = relationship(
        "KalkiaVariantMaterial",
        back_populates="variant",
        cascade="all, delete-orphan",
        order_by="KalkiaVariantMaterial.sort_order",
    )
    rules = relationship("KalkiaRule", back_populates="variant", cascade="all, delete-orphan")


class KalkiaVariantMaterial(Base):
    """Material consumed per unit of a variant."""
    __tablename__ = "kalkia_variant_materials"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    variant_id = Column(UUID(as_uuid=True), ForeignKey("kalkia_variants.id", ondelete="CASCADE"), nullable=False)
    material_name = Column(String(300), nullable=False)
    quantity = Column(Float, default=1.0, nullable=False)
    unit = Column(String(20), default="stk", nullable=False)
    cost_price = Column(Float, nullable=True)
    sale_price = Column(Float, nullable=True)
    supplier_product_id = Column(UUID(as_uuid=True), ForeignKey("supplier_products.id", ondelete="SET NULL"), nullable=True)
    auto_update_price = Column(Boolean, default=False, nullable=False)
    is_optional = Column(Boolean, default=False, nullable=False)
    sort_order = Column(Integer, default=0, nullable=False)

    variant = relationship("KalkiaVariant", back_populates="materials")
    supplier_product = relationship("SupplierProduct")

    __table_args__ = (
        Index("idx_kalkia_material_supplier_product", "supplier_product_id"),
    )


class KalkiaBuildingProfile(Base):
    """Site type multipliers (villa, apartment, industrial, ...)."""
    __tablename__ = "kalkia_building_profiles"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    code = Column(String(50), unique=True, nullable=False)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    time_multiplier = Column(Float, default=1.0, nullable=False)
    difficulty_multiplier = Column(Float, default=1.0, nullable=False)
    material_waste_multiplier = Column(Float, default=1.0, nullable=False)
    overhead_multiplier = Column(Float, default=1.0, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    sort_order = Column(Integer, default=0, nullable=False)


class KalkiaGlobalFactor(Base):
    """Company wide factor such as indirect time or overhead."""
    __tablename__ = "kalkia_global_factors"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    factor_key = Column(String(100), unique=True, nullable=False)
    factor_name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    value_type = Column(String(20), default=FactorValueType.PERCENTAGE.value, nullable=False)
    value = Column(Float, nullable=False)
    category = Column(String(50), default="time", nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)


class KalkiaRule(Base):
    """Condition based time adjustment on a node or variant."""
    __tablename__ = "kalkia_rules"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    node_id = Column(UUID(as_uuid=True), ForeignKey("kalkia_nodes.id", ondelete="CASCADE"), nullable=True)
    variant_id = Column(UUID(as_uuid=True), ForeignKey("kalkia_variants.id", ondelete="CASCADE"), nullable=True)
    rule_name = Column(String(200), nullable=False)
    rule_type = Column(String(20), nullable=False)
    condition = Column(JSON, default=dict)
    time_multiplier = Column(Float, default=1.0, nullable=False)
    extra_time_seconds = Column(Integer, default=0, nullable=False)
    cost_multiplier = Column(Float, default=1.0, nullable=False)
    priority = Column(Integer, default=0, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    node = relationship("KalkiaNode", back_populates="rules")
    variant = relationship("KalkiaVariant", back_populates="rules")


class KalkiaCalculation(Base):
    """Saved calculation with its full cost and price breakdown."""
    __tablename__ = "kalkia_calculations"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(300), nullable=False)
    description = Column(Text, nullable=True)
    customer_id = Column(UUID(as_uuid=True), ForeignKey("customers.id", ondelete="SET NULL"), nullable=True)
    building_profile_id = Column(UUID(as_uuid=True), ForeignKey("kalkia_building_profiles.id", ondelete="SET NULL"), nullable=True)

    # Time (seconds)
    total_direct_time_seconds = Column(Integer, default=0, nullable=False)
    total_indirect_time_seconds = Column(Integer, default=0, nullable=False)
    total_personal_time_seconds = Column(Integer, default=0, nullable=False)
    total_labor_time_seconds = Column(Integer, default=0, nullable=False)

    # Costs
    hourly_rate = Column(Float, default=495.0, nullable=False)
    total_material_cost = Column(Float, default=0.0, nullable=False)
    total_material_waste = Column(Float, default=0.0, nullable=False)
    total_labor_cost = Column(Float, default=0.0, nullable=False)
    total_other_costs = Column(Float, default=0.0, nullable=False)
    cost_price = Column(Float, default=0.0, nullable=False)

    # Overhead and basis
    overhead_percentage = Column(Float, default=0.0, nullable=False)
    overhead_amount = Column(Float, default=0.0, nullable=False)
    risk_percentage = Column(Float, default=0.0, nullable=False)
    risk_amount = Column(Float, default=0.0, nullable=False)
    sales_basis = Column(Float, default=0.0, nullable=False)

    # Pricing
    margin_percentage = Column(Float, default=0.0, nullable=False)
    margin_amount = Column(Float, default=0.0, nullable=False)
    sale_price_excl_vat = Column(Float, default=0.0, nullable=False)
    discount_percentage = Column(Float, default=0.0, nullable=False)
    discount_amount = Column(Float, default=0.0, nullable=False)
    net_price = Column(Float, default=0.0, nullable=False)
    vat_percentage = Column(Float, default=25.0, nullable=False)
    vat_amount = Column(Float, default=0.0, nullable=False)
    final_amount = Column(Float, default=0.0, nullable=False)

    # Key metrics
    db_amount = Column(Float, default=0.0, nullable=False)
    db_percentage = Column(Float, default=0.0, nullable=False)
    db_per_hour = Column(Float, default=0.0, nullable=False)
    coverage_ratio = Column(Float, default=0.0, nullable=False)

    factors_snapshot = Column(JSON, default=dict)
    building_profile_snapshot = Column(JSON, default=dict)

    status = Column(String(20), default=CalculationStatus.DRAFT.value, nullable=False)
    is_template = Column(Boolean, default=False, nullable=False)
    offer_id = Column(UUID(as_uuid=True), ForeignKey("offers.id", ondelete="SET NULL"), nullable=True)

    created_by = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    building_profile = relationship("KalkiaBuildingProfile")
    customer = relationship("Customer")
    rows = relationship(
        "KalkiaCalculationRow",
        back_populates="calculation",
        cascade="all, delete-orphan",
        order_by="KalkiaCalculationRow.position",
    )

    __table_args__ = (
        Index("idx_kalkia_calc_status", "status"),
        Index("idx_kalkia_calc_customer", "customer_id"),
    )


class KalkiaCalculationRow(Base):
    __tablename__ = "kalkia_calculation_rows"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    calculation_id = Column(UUID(as_uuid=True), ForeignKey("kalkia_calculations.id", ondelete="CASCADE"), nullable=False)
    node_id = Column(UUID(as_uuid=True), ForeignKey("kalkia_nodes.id", ondelete="SET NULL"), nullable=True)
    variant_id = Column(UUID(as_uuid=True), ForeignKey("kalkia_variants.id", ondelete="SET NULL"), nullable=True)

    position = Column(Integer, default=1, nullable=False)
    section = Column(String(100), nullable=True)
    description = Column(Text, nullable=False)
    quantity = Column(Float, default=1.0, nullable=False)
    unit = Column(String(20), default="stk", nullable=False)

    base_time_seconds = Column(Integer, default=0, nullable=False)
    adjusted_time_seconds = Column(Integer, default=0, nullable=False)

    material_cost = Column(Float, default=0.0, nullable=False)
    material_waste = Column(Float, default=0.0, nullable=False)
    labor_cost = Column(Float, default=0.0, nullable=False)
    total_cost = Column(Float, default=0.0, nullable=False)
    sale_price = Column(Float, default=0.0, nullable=False)
    total_sale = Column(Float, default=0.0, nullable=False)

    rules_applied = Column(JSON, default=list)
    conditions = Column(JSON, default=dict)
    show_on_offer = Column(Boolean, default=True, nullable=False)
    is_optional = Column(Boolean, default=False, nullable=False)

    calculation = relationship("KalkiaCalculation", back_populates="rows")
