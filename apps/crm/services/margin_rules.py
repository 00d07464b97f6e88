"""
Supplier margin rules.

A supplier can carry margin rules at several scopes. The effective rule for a
product is the most specific active one: product, customer, subcategory,
category, then the supplier wide default. Rules of the same scope are ordered
by priority, highest first.
"""

from datetime import date
from enum import Enum
from typing import Any, Dict, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from .pricing import calculate_sale_price
from ..core.errors import ValidationError
from ..core.logging import get_logger
from ..core.settings import settings
from ..db.supplier_models import SupplierMarginRule

logger = get_logger(__name__)


class MarginRuleType(str, Enum):
    PRODUCT = "product"
    CUSTOMER = "customer"
    SUBCATEGORY = "subcategory"
    CATEGORY = "category"
    SUPPLIER = "supplier"


RULE_TYPE_RANK = {
    MarginRuleType.PRODUCT.value: 1,
    MarginRuleType.CUSTOMER.value: 2,
    MarginRuleType.SUBCATEGORY.value: 3,
    MarginRuleType.CATEGORY.value: 4,
    MarginRuleType.SUPPLIER.value: 5,
}


def validate_rule_scope(
    rule_type: str,
    category: Optional[str] = None,
    sub_category: Optional[str] = None,
    supplier_product_id: Optional[UUID] = None,
    customer_id: Optional[UUID] = None,
) -> None:
    """Each scope needs the field it matches on."""
    if rule_type == MarginRuleType.CATEGORY.value and not category:
        raise ValidationError("Category rules need a category")
    if rule_type == MarginRuleType.SUBCATEGORY.value and not (category and sub_category):
        raise ValidationError("Subcategory rules need a category and a subcategory")
    if rule_type == MarginRuleType.PRODUCT.value and not supplier_product_id:
        raise ValidationError("Product rules need a supplier product")
    if rule_type == MarginRuleType.CUSTOMER.value and not customer_id:
        raise ValidationError("Customer rules need a customer")


def _is_current(rule: SupplierMarginRule, today: date) -> bool:
    if rule.valid_from and rule.valid_from > today:
        return False
    if rule.valid_to and rule.valid_to < today:
        return False
    return True


def _matches(
    rule: SupplierMarginRule,
    supplier_product_id: Optional[UUID],
    category: Optional[str],
    sub_category: Optional[str],
    customer_id: Optional[UUID],
) -> bool:
    if rule.rule_type == MarginRuleType.PRODUCT.value:
        return supplier_product_id is not None and rule.supplier_product_id == supplier_product_id
    if rule.rule_type == MarginRuleType.CUSTOMER.value:
        return customer_id is not None and rule.customer_id == customer_id
    if rule.rule_type == MarginRuleType.SUBCATEGORY.value:
        return category is not None and rule.category == category and rule.sub_category == sub_category
    if rule.rule_type == MarginRuleType.CATEGORY.value:
        return category is not None and rule.category == category
    return rule.rule_type == MarginRuleType.SUPPLIER.value


def get_effective_margin(
    db: Session,
    supplier_id: UUID,
    supplier_product_id: Optional[UUID] = None,
    category: Optional[str] = None,
    sub_category: Optional[str] = None,
    customer_id: Optional[UUID] = None,
    today: Optional[date] = None,
) -> Optional[SupplierMarginRule]:
    """The winning rule for a product, or None when no rule applies."""
    today = today or date.today()
    rules = db.query(SupplierMarginRule).filter(
        SupplierMarginRule.supplier_id == supplier_id,
        SupplierMarginRule.is_active.is_(True),
    ).all()

    candidates = [
        rule for rule in rules
        if _is_current(rule, today) and _matches(rule, supplier_product_id, category, sub_category, customer_id)
    ]
    if not candidates:
        return None

    candidates.sort(key=lambda rule: (RULE_TYPE_RANK.get(rule.rule_type, 99), -(rule.priority or 0)))
    return candidates[0]


def sale_price_with_rules(
    db: Session,
    cost_price: float,
    supplier_id: UUID,
    supplier_product_id: Optional[UUID] = None,
    category: Optional[str] = None,
    sub_category: Optional[str] = None,
    customer_id: Optional[UUID] = None,
) -> Dict[str, Any]:
    """Sale price from the effective rule, or the materials default without one."""
    rule = get_effective_margin(db, supplier_id, supplier_product_id, category, sub_category, customer_id)
    if rule is None:
        return {
            "sale_price": calculate_sale_price(cost_price, settings.MATERIAL_MARGIN),
            "margin_percentage": settings.MATERIAL_MARGIN,
            "rule_id": None,
            "rule_type": None,
        }

    return {
        "sale_price": calculate_sale_price(cost_price, rule.margin_percentage, rule.fixed_markup or 0.0, rule.round_to),
        "margin_percentage": rule.margin_percentage,
        "rule_id": str(rule.id),
        "rule_type": rule.rule_type,
    }


def set_default_supplier_margin(
    db: Session,
    supplier_id: UUID,
    margin_percentage: float,
    fixed_markup: float = 0.0,
    round_to: Optional[float] = None,
    user_id: Optional[UUID] = None,
) -> SupplierMarginRule:
    """Create or replace the supplier wide rule."""
    rule = db.query(SupplierMarginRule).filter(
        SupplierMarginRule.supplier_id == supplier_id,
        SupplierMarginRule.rule_type == MarginRuleType.SUPPLIER.value,
    ).first()

    if rule is None:
        rule = SupplierMarginRule(
            supplier_id=supplier_id,
            rule_type=MarginRuleType.SUPPLIER.value,
            is_active=True,
            priority=0,
            created_by=user_id,
        )
        db.add(rule)

    rule.margin_percentage = margin_percentage
    rule.fixed_markup = fixed_markup or 0.0
    rule.round_to = round_to or None
    db.flush()

    logger.info("Default supplier margin set", supplier_id=str(supplier_id), margin=margin_percentage)
    return rule


def margin_rule_summary(db: Session, supplier_id: UUID) -> Dict[str, Any]:
    rules = db.query(SupplierMarginRule).filter(SupplierMarginRule.supplier_id == supplier_id).all()

    rules_by_type = {rule_type.value: 0 for rule_type in MarginRuleType}
    default_margin = None
    for rule in rules:
        rules_by_type[rule.rule_type] = rules_by_type.get(rule.rule_type, 0) + 1
        if rule.rule_type == MarginRuleType.SUPPLIER.value and rule.is_active:
            default_margin = rule.margin_percentage

    return {
        "total_rules": len(rules),
        "active_rules": sum(1 for rule in rules if rule.is_active),
        "default_margin": default_margin,
        "rules_by_type": rules_by_type,
    }
