"""
Tests for customer specific supplier prices and catalog price updates.
"""

from datetime import date, datetime, timedelta

import pytest
from sqlalchemy.orm import Session

from ..core.errors import ValidationError
from ..core.settings import settings
from ..db.kalkia_models import KalkiaNode, KalkiaVariant, KalkiaVariantMaterial
from ..db.models import Customer
from ..db.supplier_models import (
    CustomerProductPrice,
    CustomerSupplierPrice,
    Supplier,
    SupplierProduct,
    SupplierSettings,
)
from ..services.supplier_pricing import (
    get_best_price_for_customer,
    is_price_stale,
    link_material_to_supplier_product,
    load_supplier_prices_for_variant,
    resolve_effective_price,
    search_products,
    sync_material_prices_from_supplier,
    update_product_prices,
)


def add_supplier_agreement(db: Session, customer: Customer, supplier: Supplier, **values) -> CustomerSupplierPrice:
    agreement = CustomerSupplierPrice(customer_id=customer.id, supplier_id=supplier.id, **values)
    db.add(agreement)
    db.commit()
    return agreement


class TestEffectivePrice:
    def test_standard_price_uses_material_margin(self, test_db: Session, test_product: SupplierProduct):
        price = resolve_effective_price(test_db, test_product)

        assert price.price_source == "standard"
        assert price.effective_cost_price == 100.0
        assert price.margin_percentage == settings.MATERIAL_MARGIN
        assert price.effective_sale_price == pytest.approx(100.0 * (1 + settings.MATERIAL_MARGIN / 100))

    def test_supplier_default_margin(self, test_db: Session, test_supplier: Supplier, test_product: SupplierProduct):
        test_db.add(SupplierSettings(supplier_id=test_supplier.id, default_margin_percentage=40.0))
        test_db.commit()
        test_db.refresh(test_supplier)

        price = resolve_effective_price(test_db, test_product)
        assert price.margin_percentage == 40.0
        assert price.effective_sale_price == 140.0

    def test_supplier_agreement(self, test_db, test_customer, test_supplier, test_product):
        add_supplier_agreement(
            test_db, test_customer, test_supplier, discount_percentage=10.0, custom_margin_percentage=30.0
        )

        price = resolve_effective_price(test_db, test_product, test_customer.id)

        assert price.price_source == "customer_supplier"
        assert price.effective_cost_price == 90.0
        assert price.effective_sale_price == 117.0
        assert price.base_cost_price == 100.0

    def test_product_agreement_wins(self, test_db, test_customer, test_supplier, test_product):
        add_supplier_agreement(test_db, test_customer, test_supplier, discount_percentage=10.0)
        test_db.add(CustomerProductPrice(
            customer_id=test_customer.id,
            supplier_product_id=test_product.id,
            custom_cost_price=80.0,
        ))
        test_db.commit()

        price = resolve_effective_price(test_db, test_product, test_customer.id)

        assert price.price_source == "customer_product"
        assert price.effective_cost_price == 80.0
        assert price.discount_percentage == 0.0

    def test_expired_agreement_is_ignored(self, test_db, test_customer, test_supplier, test_product):
        add_supplier_agreement(
            test_db,
            test_customer,
            test_supplier,
            discount_percentage=10.0,
            valid_to=date.today() - timedelta(days=1),
        )

        price = resolve_effective_price(test_db, test_product, test_customer.id)
        assert price.price_source == "standard"
        assert price.effective_cost_price == 100.0


def test_best_price_prefers_preferred_supplier(test_db, test_customer, test_product):
    preferred = Supplier(name="Lemvigh-Müller", code="LM")
    test_db.add(preferred)
    test_db.flush()
    test_db.add(SupplierSettings(supplier_id=preferred.id, is_preferred=True))
    test_db.add(SupplierProduct(
        supplier_id=preferred.id,
        supplier_sku="AO-1001",
        supplier_name="Installationskabel 3G1,5",
        cost_price=120.0,
    ))
    cheap = Supplier(name="Solar", code="SOLAR")
    test_db.add(cheap)
    test_db.flush()
    test_db.add(SupplierProduct(
        supplier_id=cheap.id,
        supplier_sku="AO-1001",
        supplier_name="Installationskabel 3G1,5",
        cost_price=90.0,
    ))
    test_db.commit()

    results = get_best_price_for_customer(test_db, test_customer.id, "AO-1001")

    assert [row["supplier_code"] for row in results] == ["LM", "SOLAR", "AO"]
    assert results[0]["is_preferred"] is True


def test_stale_prices():
    now = datetime(2024, 6, 10)
    assert is_price_stale(None) is True
    assert is_price_stale(now - timedelta(days=1), now) is False
    assert is_price_stale(now - timedelta(days=settings.SUPPLIER_PRICE_STALE_DAYS + 1), now) is True


class TestUpdateProductPrices:
    def test_change_is_recorded(self, test_db: Session, test_product: SupplierProduct):
        history = update_product_prices(test_db, test_product, cost_price=110.0)
        test_db.commit()

        assert history.old_cost_price == 100.0
        assert history.new_cost_price == 110.0
        assert history.change_percentage == 10.0
        assert test_product.list_price == 150.0
        assert test_product.last_synced_at is not None

    def test_unchanged_prices_write_nothing(self, test_db: Session, test_product: SupplierProduct):
        assert update_product_prices(test_db, test_product, cost_price=100.0, list_price=150.0) is None

    def test_negative_price_rejected(self, test_db: Session, test_product: SupplierProduct):
        with pytest.raises(ValidationError):
            update_product_prices(test_db, test_product, cost_price=-1.0)


def make_variant(db: Session) -> KalkiaVariant:
    node = KalkiaNode(code="EL01", name="Stikkontakt", path="EL01", base_time_seconds=600)
    db.add(node)
    db.flush()
    variant = KalkiaVariant(node_id=node.id, code="STD", name="Standard", is_default=True)
    db.add(variant)
    db.flush()
    return variant


def test_material_link_and_sync(test_db: Session, test_product: SupplierProduct):
    variant = make_variant(test_db)
    material = KalkiaVariantMaterial(variant_id=variant.id, material_name="Kabel", quantity=5, cost_price=70.0)
    test_db.add(material)
    test_db.flush()

    link_material_to_supplier_product(test_db, material, test_product, auto_update_price=True)
    test_db.commit()
    assert material.cost_price == 100.0
    assert material.sale_price == 150.0

    update_product_prices(test_db, test_product, cost_price=105.0)
    test_db.commit()

    result = sync_material_prices_from_supplier(test_db, variant.id)
    test_db.commit()

    assert result == {"updated": 1, "skipped": 0}
    test_db.refresh(material)
    assert material.cost_price == 105.0


def test_variant_supplier_prices_flag_stale_products(test_db: Session, test_product: SupplierProduct):
    variant = make_variant(test_db)
    material = KalkiaVariantMaterial(
        variant_id=variant.id,
        material_name="Kabel",
        quantity=5,
        supplier_product_id=test_product.id,
    )
    test_db.add(material)
    test_db.commit()
    test_db.refresh(variant)

    prices = load_supplier_prices_for_variant(test_db, variant)

    assert prices[material.id].effective_cost_price == 100.0
    assert prices[material.id].is_stale is True


def test_search_products(test_db: Session, test_product: SupplierProduct):
    results = search_products(test_db, "kabel")

    assert len(results) == 1
    assert results[0]["supplier_sku"] == "AO-1001"
    assert results[0]["price_source"] == "standard"
