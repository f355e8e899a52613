"""Search strategies — ordered passes over the tier ladder.

Standard subjects are well served by widening the radius alone; edge-case
subjects (large or luxury) are starved by strict matching and get
progressively relaxed tolerances instead. The strategy is chosen once per
request from the classification.
"""
from dataclasses import dataclass
from typing import Optional, Protocol

from app.config import Settings, settings as default_settings
from app.schemas.search_schema import SearchCriteria
from app.services.classification_service import EdgeCase, SubjectClass
from app.services.tolerance_service import NumericTolerance


@dataclass(frozen=True)
class SearchPass:
    name: str
    tolerance: NumericTolerance
    radius_km: Optional[float] = None
    allow_related_types: bool = False
    degraded: bool = False


class SearchStrategy(Protocol):
    name: str

    def passes(self, criteria: SearchCriteria) -> list[SearchPass]:
        ...


class AdaptiveRadiusStrategy:
    """One pass per radius step when the subject has usable coordinates."""

    name = "adaptive_radius"

    def __init__(self, config: Settings = default_settings):
        self.config = config

    def passes(self, criteria: SearchCriteria) -> list[SearchPass]:
        tolerance = NumericTolerance(bedrooms=self.config.default_bedroom_tolerance)
        if criteria.coordinates is None:
            return [SearchPass(name="name_only", tolerance=tolerance)]
        return [
            SearchPass(name=f"radius_{radius:g}km", tolerance=tolerance, radius_km=radius)
            for radius in self.config.radius_steps_km
        ]


class ProgressiveRelaxationStrategy:
    """One pass per relaxation level; every level after the first is degraded."""

    name = "progressive_relaxation"

    def __init__(self, config: Settings = default_settings):
        self.config = config

    def passes(self, criteria: SearchCriteria) -> list[SearchPass]:
        passes = []
        for position, level in enumerate(self.config.relaxation_levels):
            passes.append(
                SearchPass(
                    name=level.name,
                    tolerance=NumericTolerance(
                        bedrooms=level.bedroom_tolerance,
                        price=level.price_tolerance,
                        size=level.size_tolerance,
                    ),
                    # Without trusted coordinates a radius could only ever keep named matches
                    radius_km=level.radius_km if criteria.coordinates is not None else None,
                    allow_related_types=level.allow_related_types,
                    degraded=position > 0,
                )
            )
        return passes


def strategy_for(classification: SubjectClass, config: Settings = default_settings) -> SearchStrategy:
    if isinstance(classification, EdgeCase):
        return ProgressiveRelaxationStrategy(config)
    return AdaptiveRadiusStrategy(config)
