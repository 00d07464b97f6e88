"""
Tier and volume price engine.

Builds on the margin rules and customer agreements: customer tier discounts,
quantity brackets, comparison of the same product across suppliers, margin
analysis of a set of lines and price suggestions. Pure functions, no
database access.
"""

from enum import Enum
from typing import Dict, List, Optional, Sequence

from pydantic import BaseModel, Field

from .pricing import round_half_up, round_money


class CustomerTier(str, Enum):
    STANDARD = "standard"
    SILVER = "silver"
    GOLD = "gold"
    PLATINUM = "platinum"


class TierConfig(BaseModel):
    tier: CustomerTier
    label: str
    description: str
    base_discount_percent: float
    volume_discount_percent: float
    volume_threshold_dkk: float
    min_annual_purchase_dkk: float
    max_discount_percent: float


CUSTOMER_TIERS: Dict[CustomerTier, TierConfig] = {
    CustomerTier.STANDARD: TierConfig(
        tier=CustomerTier.STANDARD,
        label="Standard",
        description="Standardkunde - ingen rabataftale",
        base_discount_percent=0,
        volume_discount_percent=0,
        volume_threshold_dkk=0,
        min_annual_purchase_dkk=0,
        max_discount_percent=5,
    ),
    CustomerTier.SILVER: TierConfig(
        tier=CustomerTier.SILVER,
        label="Sølv",
        description="Fast kunde med basisrabat",
        base_discount_percent=5,
        volume_discount_percent=2,
        volume_threshold_dkk=50000,
        min_annual_purchase_dkk=100000,
        max_discount_percent=10,
    ),
    CustomerTier.GOLD: TierConfig(
        tier=CustomerTier.GOLD,
        label="Guld",
        description="Vigtig kunde med udvidet rabat",
        base_discount_percent=10,
        volume_discount_percent=3,
        volume_threshold_dkk=100000,
        min_annual_purchase_dkk=500000,
        max_discount_percent=18,
    ),
    CustomerTier.PLATINUM: TierConfig(
        tier=CustomerTier.PLATINUM,
        label="Platin",
        description="Strategisk samarbejdspartner",
        base_discount_percent=15,
        volume_discount_percent=5,
        volume_threshold_dkk=200000,
        min_annual_purchase_dkk=1000000,
        max_discount_percent=25,
    ),
}


class VolumeBracket(BaseModel):
    min_quantity: float
    max_quantity: Optional[float] = None
    discount_percent: float
    label: str


DEFAULT_VOLUME_BRACKETS = [
    VolumeBracket(min_quantity=1, max_quantity=9, discount_percent=0, label="Enkelt"),
    VolumeBracket(min_quantity=10, max_quantity=24, discount_percent=3, label="10+ stk"),
    VolumeBracket(min_quantity=25, max_quantity=49, discount_percent=5, label="25+ stk"),
    VolumeBracket(min_quantity=50, max_quantity=99, discount_percent=8, label="50+ stk"),
    VolumeBracket(min_quantity=100, max_quantity=None, discount_percent=12, label="100+ stk"),
]


class VolumeDiscount(BaseModel):
    discount_percent: float
    bracket_label: str


def get_volume_discount(quantity: float, brackets: Optional[Sequence[VolumeBracket]] = None) -> VolumeDiscount:
    """Discount of the highest bracket the quantity reaches."""
    brackets = brackets or DEFAULT_VOLUME_BRACKETS
    for bracket in reversed(list(brackets)):
        if quantity >= bracket.min_quantity:
            return VolumeDiscount(discount_percent=bracket.discount_percent, bracket_label=bracket.label)
    return VolumeDiscount(discount_percent=0, bracket_label="Enkelt")


class PriceCalculationInput(BaseModel):
    cost_price: float = Field(..., ge=0)
    quantity: float = Field(..., gt=0)
    customer_tier: CustomerTier = CustomerTier.STANDARD
    margin_percent: float
    list_price: Optional[float] = None
    customer_discount_override: Optional[float] = None
    fixed_markup: Optional[float] = None
    round_to: Optional[float] = None
    volume_brackets: Optional[List[VolumeBracket]] = None
    order_total_dkk: Optional[float] = None


class AppliedDiscounts(BaseModel):
    tier_discount_percent: float
    volume_discount_percent: float
    customer_override_percent: float
    total_discount_percent: float


class PriceStep(BaseModel):
    step: str
    value: float


class PriceCalculationResult(BaseModel):
    unit_cost_price: float
    effective_cost_price: float
    unit_sale_price: float
    total_cost: float
    total_sale: float
    total_profit: float
    effective_margin_percent: float
    discounts: AppliedDiscounts
    breakdown: List[PriceStep]


def _pct(value: float) -> str:
    return f"{value:g}%"


def calculate_price(data: PriceCalculationInput) -> PriceCalculationResult:
    """
    Full unit and line price.

    Order: tier discount, volume discount, customer override, margin, fixed
    markup, rounding to the nearest multiple. The tier discount gains the
    tier's volume bonus when the order total reaches its threshold and is
    capped at the tier maximum.
    """
    tier = CUSTOMER_TIERS[data.customer_tier]
    breakdown = []

    cost = data.cost_price
    breakdown.append(PriceStep(step="Indkøbspris", value=cost))

    tier_discount = tier.base_discount_percent
    if data.order_total_dkk and data.order_total_dkk >= tier.volume_threshold_dkk:
        tier_discount += tier.volume_discount_percent
    tier_discount = min(tier_discount, tier.max_discount_percent)
    if tier_discount > 0:
        cost *= 1 - tier_discount / 100
        breakdown.append(PriceStep(step=f"Kundetrin rabat ({tier.label}: {_pct(tier_discount)})", value=cost))

    volume = get_volume_discount(data.quantity, data.volume_brackets)
    if volume.discount_percent > 0:
        cost *= 1 - volume.discount_percent / 100
        breakdown.append(PriceStep(
            step=f"Mængderabat ({volume.bracket_label}: {_pct(volume.discount_percent)})", value=cost
        ))

    override = data.customer_discount_override or 0.0
    if override > 0:
        cost *= 1 - override / 100
        breakdown.append(PriceStep(step=f"Kundeaftale rabat ({_pct(override)})", value=cost))

    total_discount = (data.cost_price - cost) / data.cost_price * 100 if data.cost_price > 0 else 0.0

    sale = cost * (1 + data.margin_percent / 100)
    breakdown.append(PriceStep(step=f"Avance ({_pct(data.margin_percent)})", value=sale))

    if data.fixed_markup and data.fixed_markup > 0:
        sale += data.fixed_markup
        breakdown.append(PriceStep(step=f"Fast tillæg ({data.fixed_markup:g} DKK)", value=sale))

    if data.round_to and data.round_to > 0:
        sale = round_half_up(round(sale / data.round_to, 9)) * data.round_to
        breakdown.append(PriceStep(step=f"Afrunding til {data.round_to:g} DKK", value=sale))

    total_cost = cost * data.quantity
    total_sale = sale * data.quantity
    total_profit = total_sale - total_cost
    margin = total_profit / total_sale * 100 if total_sale > 0 else 0.0

    return PriceCalculationResult(
        unit_cost_price=round_money(data.cost_price),
        effective_cost_price=round_money(cost),
        unit_sale_price=round_money(sale),
        total_cost=round_money(total_cost),
        total_sale=round_money(total_sale),
        total_profit=round_money(total_profit),
        effective_margin_percent=round_half_up(margin, 1),
        discounts=AppliedDiscounts(
            tier_discount_percent=tier_discount,
            volume_discount_percent=volume.discount_percent,
            customer_override_percent=override,
            total_discount_percent=round_half_up(total_discount, 1),
        ),
        breakdown=breakdown,
    )


# Supplier comparison

class ComparableProduct(BaseModel):
    supplier_id: str
    supplier_name: str
    supplier_product_id: str
    sku: str
    product_name: str
    cost_price: float
    list_price: Optional[float] = None
    is_available: bool = True
    lead_time_days: Optional[int] = None


class SupplierOffer(BaseModel):
    supplier_id: str
    supplier_name: str
    sku: str
    unit_cost: float
    unit_sale: float
    total_cost: float
    total_sale: float
    margin_percent: float
    is_available: bool
    lead_time_days: Optional[int] = None
    is_cheapest: bool = False
    is_recommended: bool = False
    savings_vs_most_expensive: float = 0.0


class PriceComparison(BaseModel):
    product_description: str
    quantity: float
    suppliers: List[SupplierOffer]
    cheapest_supplier: str
    most_expensive_supplier: str
    price_spread_percent: float


def compare_supplier_prices(
    products: Sequence[ComparableProduct],
    quantity: float,
    margin_percent: float,
    customer_tier: CustomerTier = CustomerTier.STANDARD,
    description: str = "",
) -> PriceComparison:
    """Same product priced at every supplier, cheapest first; the cheapest available one is recommended."""
    if not products:
        return PriceComparison(
            product_description=description,
            quantity=quantity,
            suppliers=[],
            cheapest_supplier="",
            most_expensive_supplier="",
            price_spread_percent=0.0,
        )

    priced = []
    for product in products:
        calc = calculate_price(PriceCalculationInput(
            cost_price=product.cost_price,
            list_price=product.list_price,
            quantity=quantity,
            customer_tier=customer_tier,
            margin_percent=margin_percent,
        ))
        priced.append(SupplierOffer(
            supplier_id=product.supplier_id,
            supplier_name=product.supplier_name,
            sku=product.sku,
            unit_cost=calc.effective_cost_price,
            unit_sale=calc.unit_sale_price,
            total_cost=calc.total_cost,
            total_sale=calc.total_sale,
            margin_percent=calc.effective_margin_percent,
            is_available=product.is_available,
            lead_time_days=product.lead_time_days,
        ))

    priced.sort(key=lambda offer: offer.total_cost)

    cheapest_available = next((offer for offer in priced if offer.is_available), None)
    if cheapest_available is not None:
        cheapest_available.is_cheapest = True
        cheapest_available.is_recommended = True

    max_cost = max(offer.total_cost for offer in priced)
    for offer in priced:
        offer.savings_vs_most_expensive = round_money(max_cost - offer.total_cost)

    cheapest = priced[0]
    most_expensive = priced[-1]
    spread = 0.0
    if cheapest.total_cost > 0:
        spread = (most_expensive.total_cost - cheapest.total_cost) / cheapest.total_cost * 100

    return PriceComparison(
        product_description=products[0].product_name,
        quantity=quantity,
        suppliers=priced,
        cheapest_supplier=cheapest.supplier_name,
        most_expensive_supplier=most_expensive.supplier_name,
        price_spread_percent=round_half_up(spread, 1),
    )


# Margin analysis

class MarginLine(BaseModel):
    description: str
    cost: float
    sale: float


class AnalyzedLine(MarginLine):
    profit: float
    margin_percent: float
    is_below_minimum: bool


class MarginAnalysis(BaseModel):
    total_cost: float
    total_sale: float
    total_profit: float
    overall_margin_percent: float
    items: List[AnalyzedLine]
    warnings: List[str]
    below_minimum_count: int
    average_margin_percent: float
    weakest_item: Optional[str] = None
    strongest_item: Optional[str] = None


def analyze_margins(items: Sequence[MarginLine], minimum_margin_percent: float = 15) -> MarginAnalysis:
    """Margin on sale per line and overall, with Danish warnings for weak spots."""
    total_cost = 0.0
    total_sale = 0.0
    below_minimum = 0
    weakest = strongest = None
    weakest_margin = float("inf")
    strongest_margin = float("-inf")
    analyzed = []

    for item in items:
        profit = item.sale - item.cost
        margin = profit / item.sale * 100 if item.sale > 0 else 0.0
        is_below = margin < minimum_margin_percent

        total_cost += item.cost
        total_sale += item.sale
        if is_below:
            below_minimum += 1
        if margin < weakest_margin:
            weakest_margin, weakest = margin, item.description
        if margin > strongest_margin:
            strongest_margin, strongest = margin, item.description

        analyzed.append(AnalyzedLine(
            description=item.description,
            cost=round_money(item.cost),
            sale=round_money(item.sale),
            profit=round_money(profit),
            margin_percent=round_half_up(margin, 1),
            is_below_minimum=is_below,
        ))

    total_profit = total_sale - total_cost
    overall = total_profit / total_sale * 100 if total_sale > 0 else 0.0
    average = sum(line.margin_percent for line in analyzed) / len(analyzed) if analyzed else 0.0

    warnings = []
    if below_minimum:
        warnings.append(f"{below_minimum} af {len(items)} linjer har margin under {minimum_margin_percent:g}%")
    if overall < minimum_margin_percent:
        warnings.append(f"Samlet margin {overall:.1f}% er under minimumskravet på {minimum_margin_percent:g}%")
    if weakest_margin < 0:
        warnings.append(f'"{weakest}" har negativ margin ({weakest_margin:.1f}%) - tab på denne linje')

    return MarginAnalysis(
        total_cost=round_money(total_cost),
        total_sale=round_money(total_sale),
        total_profit=round_money(total_profit),
        overall_margin_percent=round_half_up(overall, 1),
        items=analyzed,
        warnings=warnings,
        below_minimum_count=below_minimum,
        average_margin_percent=round_half_up(average, 1),
        weakest_item=weakest,
        strongest_item=strongest,
    )


# Suggestions

class PriceSuggestion(BaseModel):
    suggested_price: float
    reason: str
    confidence: str
    based_on: str


def suggest_price(
    cost_price: float,
    target_margin: float,
    historical_prices: Sequence[float] = (),
    competitor_prices: Sequence[float] = (),
) -> List[PriceSuggestion]:
    """
    Candidate sale prices.

    Always the target margin price. The historical average needs at least
    three earlier prices. The competitive price sits 5% under the competitor
    average and is only offered while it keeps more than 10% margin.
    """
    suggestions = [PriceSuggestion(
        suggested_price=round_money(cost_price * (1 + target_margin / 100)),
        reason=f"Målmargin på {target_margin:g}%",
        confidence="high",
        based_on="Beregnet fra kostpris og målmargin",
    )]

    if len(historical_prices) >= 3:
        average = sum(historical_prices) / len(historical_prices)
        margin = (average - cost_price) / average * 100 if average > 0 else 0.0
        suggestions.append(PriceSuggestion(
            suggested_price=round_money(average),
            reason=f"Historisk gennemsnitspris (margin: {margin:.1f}%)",
            confidence="high" if len(historical_prices) >= 10 else "medium",
            based_on=f"Baseret på {len(historical_prices)} tidligere tilbud",
        ))

    if competitor_prices:
        competitive = sum(competitor_prices) / len(competitor_prices) * 0.95
        margin = (competitive - cost_price) / competitive * 100 if competitive > 0 else 0.0
        if margin > 10:
            suggestions.append(PriceSuggestion(
                suggested_price=round_money(competitive),
                reason=f"5% under konkurrentens gennemsnitspris (margin: {margin:.1f}%)",
                confidence="medium",
                based_on=f"Baseret på {len(competitor_prices)} konkurrentpriser",
            ))

    return suggestions
