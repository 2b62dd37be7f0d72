"""
Price / Margin Engine — sale prices, discounts, customer tiers and DB figures.

Pure functions only: no I/O, no clock, no module state.  Every default the
functions need arrives through an ``EstimationSettings`` argument.

Formulas:
    sale      = cost × (1 − customer_discount/100) × (1 + margin/100) + markup
    line      = quantity × unit_price × (1 − line_discount/100)
    DB%       = round((sale − cost) / sale × 100)   (0 when sale ≤ 0)

Project chain (price_project):
    cost price → + overhead → + risk → sales basis → + margin
    → sale excl. VAT → − discount → net → + VAT → final amount
"""
from __future__ import annotations

import math
import logging
from dataclasses import dataclass, field, asdict
from typing import Iterable, List, Literal, Optional

from app.config import (
    EstimationSettings,
    DB_THRESHOLD_GREEN,
    DB_THRESHOLD_YELLOW,
    DB_THRESHOLD_RED,
)

logger = logging.getLogger("elinstall-pricing")


# ── Customer tiers ───────────────────────────────────────────────────────────

@dataclass(frozen=True)
class CustomerTier:
    code: str
    label: str
    base_discount_percent: float
    volume_discount_percent: float
    volume_threshold: float          # order total (DKK) that unlocks the volume discount
    max_discount_percent: float
    minimum_margin_percent: float    # lines below this DB% are flagged


CUSTOMER_TIERS: dict[str, CustomerTier] = {
    "standard": CustomerTier("standard", "Standard", 0.0, 0.0, 0.0, 5.0, 20.0),
    "silver":   CustomerTier("silver", "Sølv", 5.0, 2.0, 50_000.0, 10.0, 18.0),
    "gold":     CustomerTier("gold", "Guld", 10.0, 3.0, 100_000.0, 18.0, 15.0),
    "platinum": CustomerTier("platinum", "Platin", 15.0, 5.0, 200_000.0, 25.0, 12.0),
}

DEFAULT_TIER = "standard"


def resolve_tier(tier: Optional[str]) -> CustomerTier:
    """Unknown or missing tier codes resolve to the standard tier."""
    if tier and tier.lower() in CUSTOMER_TIERS:
        return CUSTOMER_TIERS[tier.lower()]
    return CUSTOMER_TIERS[DEFAULT_TIER]


def tier_minimum_margin(tier: CustomerTier, default_minimum: float) -> float:
    """Minimum line DB% for a tier; the standard tier uses the configured default."""
    return default_minimum if tier.code == DEFAULT_TIER else tier.minimum_margin_percent


# ── Volume brackets ──────────────────────────────────────────────────────────

@dataclass(frozen=True)
class VolumeBracket:
    min_quantity: int
    max_quantity: Optional[int]
    discount_percent: float
    label: str


DEFAULT_VOLUME_BRACKETS: List[VolumeBracket] = [
    VolumeBracket(1, 9, 0.0, "1-9 stk"),
    VolumeBracket(10, 24, 3.0, "10-24 stk"),
    VolumeBracket(25, 49, 5.0, "25-49 stk"),
    VolumeBracket(50, 99, 8.0, "50-99 stk"),
    VolumeBracket(100, None, 12.0, "100+ stk"),
]


def get_volume_discount(
    quantity: float,
    brackets: Optional[List[VolumeBracket]] = None,
) -> tuple[float, str]:
    """Return (discount %, bracket label) for a quantity."""
    for bracket in brackets or DEFAULT_VOLUME_BRACKETS:
        upper_ok = bracket.max_quantity is None or quantity <= bracket.max_quantity
        if quantity >= bracket.min_quantity and upper_ok:
            return bracket.discount_percent, bracket.label
    return 0.0, ""


# ---------------------------------------------------------------------------
# Core price functions
# ---------------------------------------------------------------------------

def calculate_sale_price(
    cost_price: float,
    margin_percentage: float,
    fixed_markup: float = 0.0,
    round_to: Optional[float] = None,
    customer_discount: float = 0.0,
) -> float:
    """
    Sale price from cost and margin (markup on cost).

    ``round_to`` rounds UP to the next increment; the result is always rounded
    to whole øre (2 decimals).
    """
    effective_cost = cost_price
    if customer_discount and customer_discount > 0:
        effective_cost = cost_price * (1 - customer_discount / 100)

    price = effective_cost * (1 + margin_percentage / 100)
    if fixed_markup:
        price += fixed_markup
    if round_to and round_to > 0:
        price = math.ceil(price / round_to) * round_to
    return round(price, 2)


def calculate_line_total(quantity: float, unit_price: float, discount_percentage: float = 0.0) -> float:
    return quantity * unit_price * (1 - discount_percentage / 100)


def calculate_db_percentage(total_cost: float, total_sale: float) -> int:
    """DB% on sale price; defined as 0 when there is no sale."""
    if total_sale <= 0:
        return 0
    return round((total_sale - total_cost) / total_sale * 100)


def calculate_db_amount(total_cost: float, total_sale: float) -> float:
    return total_sale - total_cost


def calculate_margin_from_prices(cost_price: float, sale_price: float) -> Optional[int]:
    """Markup % implied by a unit cost and sale price; None without a cost."""
    if not cost_price or cost_price <= 0:
        return None
    return round((sale_price / cost_price - 1) * 100)


def db_level(db_percentage: float) -> Literal["green", "yellow", "red"]:
    if db_percentage >= DB_THRESHOLD_GREEN:
        return "green"
    if db_percentage >= DB_THRESHOLD_YELLOW:
        return "yellow"
    return "red"


def can_send_offer(db_percentage: float) -> bool:
    """Offers below the red threshold must not be sent without review."""
    return db_percentage >= DB_THRESHOLD_RED


def resolve_margin(
    custom_margin: Optional[float] = None,
    product_margin: Optional[float] = None,
    fallback: Literal["products", "materials"] = "products",
    settings: Optional[EstimationSettings] = None,
) -> float:
    """
    Effective margin: explicit override → product margin → category default.

    Negative values are treated as "not set" so callers never end up at 0
    by accident.
    """
    if custom_margin is not None and custom_margin >= 0:
        return custom_margin
    if product_margin is not None and product_margin >= 0:
        return product_margin
    cfg = settings or EstimationSettings()
    if fallback == "products":
        return cfg.product_margin_percentage
    return cfg.material_margin_percentage


def effective_discount(tier: CustomerTier, requested: Optional[float], default: float = 0.0) -> float:
    """
    Project discount: the requested value, else the larger of the tier base and
    the configured default.  Always capped at the tier max.
    """
    discount = max(tier.base_discount_percent, default) if requested is None else requested
    return max(0.0, min(discount, tier.max_discount_percent))


# ---------------------------------------------------------------------------
# Tiered unit pricing
# ---------------------------------------------------------------------------

@dataclass
class PriceCalculation:
    unit_cost_price: float
    effective_cost_price: float
    unit_sale_price: float
    total_cost: float
    total_sale: float
    total_profit: float
    effective_margin_percent: float
    tier_discount_percent: float
    volume_discount_percent: float
    customer_override_percent: float
    total_discount_percent: float
    breakdown: List[tuple[str, float]] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


def calculate_price(
    cost_price: float,
    margin_percentage: float,
    quantity: float = 1,
    tier: Optional[str] = None,
    order_total: Optional[float] = None,
    customer_discount_override: float = 0.0,
    fixed_markup: float = 0.0,
    round_to: Optional[float] = None,
    volume_brackets: Optional[List[VolumeBracket]] = None,
) -> PriceCalculation:
    """Tier discount → volume discount → customer override → margin → markup → rounding."""
    tier_cfg = resolve_tier(tier)
    breakdown: List[tuple[str, float]] = [("cost_price", cost_price)]
    effective_cost = cost_price

    tier_discount = tier_cfg.base_discount_percent
    if order_total is not None and order_total >= tier_cfg.volume_threshold:
        tier_discount += tier_cfg.volume_discount_percent
    tier_discount = min(tier_discount, tier_cfg.max_discount_percent)
    if tier_discount > 0:
        effective_cost *= 1 - tier_discount / 100
        breakdown.append((f"tier_discount:{tier_cfg.code}", effective_cost))

    volume_discount, bracket_label = get_volume_discount(quantity, volume_brackets)
    if volume_discount > 0:
        effective_cost *= 1 - volume_discount / 100
        breakdown.append((f"volume_discount:{bracket_label}", effective_cost))

    if customer_discount_override > 0:
        effective_cost *= 1 - customer_discount_override / 100
        breakdown.append(("customer_override", effective_cost))

    total_discount = (cost_price - effective_cost) / cost_price * 100 if cost_price > 0 else 0.0

    sale = effective_cost * (1 + margin_percentage / 100)
    breakdown.append(("margin", sale))
    if fixed_markup > 0:
        sale += fixed_markup
        breakdown.append(("fixed_markup", sale))
    if round_to and round_to > 0:
        sale = round(sale / round_to) * round_to
        breakdown.append(("rounding", sale))

    total_cost = effective_cost * quantity
    total_sale = sale * quantity
    profit = total_sale - total_cost
    margin = profit / total_sale * 100 if total_sale > 0 else 0.0

    return PriceCalculation(
        unit_cost_price=round(cost_price, 2),
        effective_cost_price=round(effective_cost, 2),
        unit_sale_price=round(sale, 2),
        total_cost=round(total_cost, 2),
        total_sale=round(total_sale, 2),
        total_profit=round(profit, 2),
        effective_margin_percent=round(margin, 1),
        tier_discount_percent=tier_discount,
        volume_discount_percent=volume_discount,
        customer_override_percent=customer_discount_override,
        total_discount_percent=round(total_discount, 1),
        breakdown=[(step, round(value, 2)) for step, value in breakdown],
    )


# ---------------------------------------------------------------------------
# Project pricing
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ProjectPricing:
    cost_price: float
    overhead_amount: float
    risk_amount: float
    sales_basis: float
    margin_amount: float
    sale_price_excl_vat: float
    discount_amount: float
    net_price: float
    vat_amount: float
    final_amount: float
    db_amount: float
    db_percentage: int
    db_per_hour: float
    margin_percentage: float
    discount_percentage: float

    def to_dict(self) -> dict:
        return asdict(self)


def price_project(
    cost_price: float,
    labor_hours: float,
    margin_percentage: float,
    discount_percentage: float = 0.0,
    overhead_percentage: float = 12.0,
    risk_percentage: float = 3.0,
    vat_percentage: float = 25.0,
    overhead_multiplier: float = 1.0,
) -> ProjectPricing:
    """
    Run the project price chain.  DB is measured on the net price (after
    discount, before VAT); ``overhead_multiplier`` comes from the building
    profile.
    """
    overhead = cost_price * (overhead_percentage * overhead_multiplier / 100)
    risk = cost_price * (risk_percentage / 100)
    basis = cost_price + overhead + risk
    margin = basis * (margin_percentage / 100)
    sale_excl_vat = basis + margin
    discount = sale_excl_vat * (discount_percentage / 100)
    net = sale_excl_vat - discount
    vat = net * (vat_percentage / 100)
    db = calculate_db_amount(cost_price, net)
    db_per_hour = db / labor_hours if labor_hours > 0 else 0.0
    logger.debug(
        f"Price chain: cost {cost_price:.2f} -> net {net:.2f} (margin {margin_percentage:g}%, "
        f"discount {discount_percentage:g}%)"
    )

    return ProjectPricing(
        cost_price=round(cost_price, 2),
        overhead_amount=round(overhead, 2),
        risk_amount=round(risk, 2),
        sales_basis=round(basis, 2),
        margin_amount=round(margin, 2),
        sale_price_excl_vat=round(sale_excl_vat, 2),
        discount_amount=round(discount, 2),
        net_price=round(net, 2),
        vat_amount=round(vat, 2),
        final_amount=round(net + vat, 2),
        db_amount=round(db, 2),
        db_percentage=calculate_db_percentage(cost_price, net),
        db_per_hour=round(db_per_hour, 2),
        margin_percentage=margin_percentage,
        discount_percentage=discount_percentage,
    )


_PROFIT_SCENARIOS = [
    ("minimal_margin", 10.0, 0.0),
    ("low_margin", 15.0, 0.0),
    ("high_margin", 30.0, 0.0),
    ("premium_margin", 40.0, 0.0),
]


def simulate_profit(
    cost_price: float,
    labor_hours: float,
    margin_percentage: float,
    discount_percentage: float = 0.0,
    overhead_percentage: float = 12.0,
    risk_percentage: float = 3.0,
    vat_percentage: float = 25.0,
) -> List[dict]:
    """What-if table over alternative margin / discount combinations."""
    scenarios = [("standard", margin_percentage, discount_percentage)]
    scenarios += _PROFIT_SCENARIOS
    scenarios += [
        ("discount_5", margin_percentage, 5.0),
        ("discount_10", margin_percentage, 10.0),
    ]
    out = []
    for name, margin, discount in scenarios:
        p = price_project(
            cost_price, labor_hours, margin, discount,
            overhead_percentage, risk_percentage, vat_percentage,
        )
        out.append({"scenario": name, **p.to_dict()})
    return out


# ---------------------------------------------------------------------------
# Margin analysis
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class LineItem:
    description: str
    cost: float
    sale: float


@dataclass(frozen=True)
class AnalyzedLine:
    description: str
    cost: float
    sale: float
    profit: float
    margin_percent: float
    is_below_minimum: bool


@dataclass(frozen=True)
class MarginAnalysis:
    total_cost: float
    total_sale: float
    total_profit: float
    overall_margin_percent: float
    average_margin_percent: float
    minimum_margin_percent: float
    below_minimum_count: int
    weakest_item: Optional[str]
    strongest_item: Optional[str]
    items: List[AnalyzedLine]
    warnings: List[str]

    def to_dict(self) -> dict:
        return asdict(self)


def analyze_margins(items: Iterable[LineItem], minimum_margin_percent: float = 15.0) -> MarginAnalysis:
    """
    Per-line DB% against the minimum.  Lines below the minimum are flagged,
    never removed.
    """
    items = list(items)
    analyzed: List[AnalyzedLine] = []
    total_cost = total_sale = 0.0
    weakest: Optional[AnalyzedLine] = None
    strongest: Optional[AnalyzedLine] = None
    weakest_raw = math.inf

    for item in items:
        profit = item.sale - item.cost
        margin = profit / item.sale * 100 if item.sale > 0 else 0.0
        line = AnalyzedLine(
            description=item.description,
            cost=round(item.cost, 2),
            sale=round(item.sale, 2),
            profit=round(profit, 2),
            margin_percent=round(margin, 1),
            is_below_minimum=margin < minimum_margin_percent,
        )
        analyzed.append(line)
        total_cost += item.cost
        total_sale += item.sale
        if margin < weakest_raw:
            weakest_raw = margin
            weakest = line
        if strongest is None or line.margin_percent > strongest.margin_percent:
            strongest = line

    total_profit = total_sale - total_cost
    overall = total_profit / total_sale * 100 if total_sale > 0 else 0.0
    average = sum(a.margin_percent for a in analyzed) / len(analyzed) if analyzed else 0.0
    below = sum(1 for a in analyzed if a.is_below_minimum)

    warnings: List[str] = []
    if below:
        warnings.append(f"{below} of {len(items)} lines have a margin below {minimum_margin_percent:g}%")
    if analyzed and overall < minimum_margin_percent:
        warnings.append(
            f"Overall margin {overall:.1f}% is below the minimum of {minimum_margin_percent:g}%"
        )
    if weakest is not None and weakest_raw < 0:
        warnings.append(
            f'"{weakest.description}" has a negative margin ({weakest_raw:.1f}%) - loss on this line'
        )

    return MarginAnalysis(
        total_cost=round(total_cost, 2),
        total_sale=round(total_sale, 2),
        total_profit=round(total_profit, 2),
        overall_margin_percent=round(overall, 1),
        average_margin_percent=round(average, 1),
        minimum_margin_percent=minimum_margin_percent,
        below_minimum_count=below,
        weakest_item=weakest.description if weakest else None,
        strongest_item=strongest.description if strongest else None,
        items=analyzed,
        warnings=warnings,
    )


def suggest_price(
    cost_price: float,
    target_margin: float,
    historical_prices: Optional[List[float]] = None,
    competitor_prices: Optional[List[float]] = None,
) -> List[dict]:
    """Candidate unit prices: target margin, historical average, competitive."""
    suggestions = [{
        "suggested_price": round(cost_price * (1 + target_margin / 100), 2),
        "reason": f"target margin {target_margin:g}%",
        "confidence": "high",
    }]

    historical = historical_prices or []
    if len(historical) >= 3:
        avg = sum(historical) / len(historical)
        suggestions.append({
            "suggested_price": round(avg, 2),
            "reason": f"historical average (DB {calculate_db_percentage(cost_price, avg)}%)",
            "confidence": "high" if len(historical) >= 10 else "medium",
        })

    competitors = competitor_prices or []
    if competitors:
        competitive = sum(competitors) / len(competitors) * 0.95
        margin = (competitive - cost_price) / competitive * 100 if competitive > 0 else 0.0
        if margin > 10:
            suggestions.append({
                "suggested_price": round(competitive, 2),
                "reason": f"5% below competitor average (DB {margin:.1f}%)",
                "confidence": "medium",
            })
    return suggestions
