"""Composite similarity cost of a candidate against the subject (lower = more similar).

    total = w_distance * distance_km
          + w_bedrooms * |Δ bedrooms|
          + w_price    * |Δ price| / subject price
          + w_size     * |Δ area| / subject area
          + w_type     * type mismatch (0/1)

An exact named micro-location match collapses the distance to a near-zero
constant so it always dominates raw geodesic distance.
"""
from typing import Optional

from app.config import ScoringWeights, Settings, settings as default_settings
from app.schemas.property_schema import PropertyRecord
from app.schemas.search_schema import ScoreBreakdown, SearchCriteria
from app.services.location_service import (
    LocationTier,
    ResolvedLocation,
    haversine_km,
    location_of,
    usable_coordinates,
)


def _pct_diff(subject_value: Optional[float], candidate_value: Optional[float]) -> float:
    if not subject_value:
        return 0.0
    return abs((candidate_value or 0.0) - subject_value) / subject_value


class SimilarityScorer:
    def __init__(self, config: Settings = default_settings, weights: Optional[ScoringWeights] = None):
        self.config = config
        self.weights = weights or config.scoring_weights

    def distance_km(
        self,
        subject: SearchCriteria,
        candidate: PropertyRecord,
        candidate_location: ResolvedLocation,
    ) -> float:
        subject_location = location_of(subject)
        if subject_location.shares(candidate_location, LocationTier.STREET) or subject_location.shares(
            candidate_location, LocationTier.URBANIZATION
        ):
            return self.config.exact_location_distance_km
        if subject_location.shares(candidate_location, LocationTier.SUBURB):
            return self.config.same_suburb_distance_km

        candidate_coords = usable_coordinates(candidate, self.config.geocode_min_confidence)
        if subject.coordinates is not None and candidate_coords is not None:
            return haversine_km(subject.coordinates, candidate_coords)
        return self.config.missing_coordinates_penalty_km

    def score(
        self,
        subject: SearchCriteria,
        candidate: PropertyRecord,
        candidate_location: ResolvedLocation,
    ) -> ScoreBreakdown:
        distance = self.distance_km(subject, candidate, candidate_location)
        bedroom_diff = 0.0
        if subject.bedrooms is not None:
            bedroom_diff = float(abs((candidate.bedrooms or 0) - subject.bedrooms))
        price_diff = _pct_diff(subject.price, candidate.price)
        size_diff = _pct_diff(subject.area, candidate.effective_area)
        type_mismatch = 0 if candidate.property_type == subject.property_type else 1

        w = self.weights
        total = (
            w.distance * distance
            + w.bedrooms * bedroom_diff
            + w.price * price_diff
            + w.size * size_diff
            + w.type * type_mismatch
        )
        return ScoreBreakdown(
            distance_km=round(distance, 3),
            bedroom_diff=bedroom_diff,
            price_diff_pct=round(price_diff, 4),
            size_diff_pct=round(size_diff, 4),
            type_mismatch=type_mismatch,
            total=round(total, 6),
        )
