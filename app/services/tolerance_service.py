"""Numeric tolerance windows for candidate selection.

Area tolerance is a table lookup on (category, size) rather than a fixed
percentage: a compact villa gets a much wider window than the villa default,
otherwise a category dominated by large properties leaves it with no
comparables at all. The table, the price windows and the related category
map are read from the Settings each caller was built with.
"""
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

from app.config import AreaToleranceRule, Settings, settings as default_settings
from app.schemas.property_schema import TransactionType


@dataclass(frozen=True)
class AreaTolerance:
    min: float
    max: float

    def contains(self, area: float) -> bool:
        return self.min <= area <= self.max

    def union(self, other: "AreaTolerance") -> "AreaTolerance":
        return AreaTolerance(min=min(self.min, other.min), max=max(self.max, other.max))


@dataclass(frozen=True)
class NumericTolerance:
    """Tolerances of one search pass.

    ``price``/``size`` of None mean "use the per-transaction price window"
    and "use the dynamic area table" respectively.
    """

    bedrooms: int
    price: Optional[float] = None
    size: Optional[float] = None


def _rule_matches(rule: AreaToleranceRule, category: str, size: float) -> bool:
    if rule.categories and category not in rule.categories:
        return False
    return rule.max_area is None or size < rule.max_area


def tolerance_for(
    category: str,
    size: float,
    rules: Optional[Sequence[AreaToleranceRule]] = None,
    config: Settings = default_settings,
) -> AreaTolerance:
    """Area window for a subject of this category and size (first matching rule)."""
    table = config.area_tolerance_rules if rules is None else rules
    category = (category or "").lower()
    for rule in table:
        if _rule_matches(rule, category, size):
            return AreaTolerance(min=size * rule.lower, max=size * rule.upper)
    return AreaTolerance(min=size * config.default_area_lower, max=size * config.default_area_upper)


def relative_window(value: float, tolerance: float) -> Tuple[float, float]:
    return (max(0.0, value * (1 - tolerance)), value * (1 + tolerance))


def price_window(
    price: float,
    transaction_type: TransactionType,
    config: Settings = default_settings,
) -> Tuple[float, float]:
    """Default price window by transaction type."""
    if transaction_type == TransactionType.SALE and price > config.high_value_sale_price:
        # High-end sales are sparse, accept a much wider spread
        return (price * config.high_value_sale_lower, price * config.high_value_sale_upper)
    return relative_window(price, config.price_window_tolerances[transaction_type.value])


def price_range(
    price: float,
    transaction_type: TransactionType,
    tolerance: Optional[float],
    config: Settings = default_settings,
) -> Tuple[float, float]:
    if tolerance is None:
        return price_window(price, transaction_type, config)
    return relative_window(price, tolerance)


def area_window(
    category: str,
    area: float,
    tolerance: Optional[float],
    config: Settings = default_settings,
) -> AreaTolerance:
    """Dynamic window, widened by a relative tolerance when one is given."""
    dynamic = tolerance_for(category, area, config=config)
    if tolerance is None:
        return dynamic
    low, high = relative_window(area, tolerance)
    return dynamic.union(AreaTolerance(min=low, max=high))


def categories_for(
    category: str,
    allow_related: bool,
    config: Settings = default_settings,
) -> frozenset[str]:
    """The subject's category, plus the ones that may stand in for it when allowed."""
    if not allow_related:
        return frozenset({category})
    return frozenset({category}) | frozenset(config.related_categories.get(category, ()))
