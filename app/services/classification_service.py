"""Subject classification: standard subjects vs. edge cases.

Rare large or luxury subjects are starved by strict matching, so they are
searched with progressive relaxation instead of adaptive radius.
"""
from dataclasses import dataclass
from typing import Union

from app.config import Settings, settings as default_settings
from app.schemas.property_schema import PropertyRecord
from app.schemas.search_schema import Classification


@dataclass(frozen=True)
class Standard:
    kind = Classification.STANDARD
    reason = None


@dataclass(frozen=True)
class EdgeCase:
    reason: str
    kind = Classification.EDGE_CASE


SubjectClass = Union[Standard, EdgeCase]


def classify_subject(subject: PropertyRecord, thresholds: Settings = default_settings) -> SubjectClass:
    """Return Standard() or EdgeCase(reason); first matching reason wins."""
    if subject.bedrooms is not None and subject.bedrooms > thresholds.edge_case_max_bedrooms:
        return EdgeCase("many_bedrooms")

    threshold = thresholds.luxury_price_thresholds.get(subject.transaction_type.value)
    if subject.price is not None and threshold is not None and subject.price > threshold:
        return EdgeCase("luxury_price")

    if subject.build_area is not None and subject.build_area > thresholds.edge_case_max_build_area:
        return EdgeCase("large_build_area")

    area = subject.effective_area
    if (
        subject.property_type in thresholds.luxury_categories
        and area is not None
        and area > thresholds.luxury_category_min_area
    ):
        return EdgeCase("large_luxury_category")

    return Standard()


def from_override(override: Classification) -> SubjectClass:
    if override == Classification.EDGE_CASE:
        return EdgeCase("override")
    return Standard()
