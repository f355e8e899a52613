"""Candidate selector — bounded candidate sets by postings intersection.

Never scans the corpus: the starting set is always the intersection of the
city (or province) postings with the type and transaction-type postings,
optionally narrowed to named micro-location postings. Ids are visited in
sorted order so the same snapshot always yields the same candidates, and at
most `candidate_cap` ids ever leave the selector.
"""
from dataclasses import dataclass
from typing import Optional

from app.config import Settings, settings as default_settings
from app.schemas.search_schema import SearchCriteria
from app.services.corpus_service import PropertyIndex
from app.services.guard_service import SelfExclusionGuard
from app.services.location_service import (
    LocationTier,
    MicroLocation,
    ResolvedLocation,
    haversine_km,
    location_of,
    usable_coordinates,
)
from app.services.tolerance_service import NumericTolerance, area_window, price_range


@dataclass(frozen=True)
class TierConstraint:
    """What one tier asks of the selector."""

    categories: frozenset[str]
    tolerance: NumericTolerance
    locations: tuple[MicroLocation, ...] = ()
    radius_km: Optional[float] = None
    province_scope: bool = False


# Named tiers that let a candidate without coordinates through a radius filter
_RADIUS_NAMED_TIERS = (LocationTier.STREET, LocationTier.URBANIZATION, LocationTier.SUBURB)


class CandidateSelector:
    def __init__(self, index: PropertyIndex, config: Settings = default_settings):
        self.index = index
        self.config = config

    def _postings(self, criteria: SearchCriteria, constraint: TierConstraint) -> frozenset[str]:
        index = self.index
        if constraint.province_scope:
            ids = index.province_ids(criteria.province)
        else:
            ids = index.city_ids(criteria.city)
        if not ids:
            return ids

        ids = ids & index.type_ids(constraint.categories)
        ids = ids & index.transaction_ids(criteria.transaction_type)
        if constraint.locations and ids:
            named: frozenset[str] = frozenset()
            for location in constraint.locations:
                named = named | index.location_ids(location)
            ids = ids & named
        return ids

    def _within_radius(
        self,
        criteria: SearchCriteria,
        subject_location: ResolvedLocation,
        candidate_id: str,
        radius_km: float,
    ) -> bool:
        candidate = self.index.records[candidate_id]
        candidate_coords = usable_coordinates(candidate, self.config.geocode_min_confidence)
        if criteria.coordinates is not None and candidate_coords is not None:
            return haversine_km(criteria.coordinates, candidate_coords) <= radius_km
        candidate_location = self.index.locations[candidate_id]
        return any(subject_location.shares(candidate_location, tier) for tier in _RADIUS_NAMED_TIERS)

    def select(
        self,
        criteria: SearchCriteria,
        constraint: TierConstraint,
        guard: Optional[SelfExclusionGuard] = None,
    ) -> list[str]:
        """Candidate ids for one tier, sorted, self-excluded, at most candidate_cap."""
        tolerance = constraint.tolerance
        price_bounds = None
        if criteria.price:
            price_bounds = price_range(criteria.price, criteria.transaction_type, tolerance.price, self.config)
        area_bounds = None
        if criteria.area:
            area_bounds = area_window(criteria.property_type, criteria.area, tolerance.size, self.config)
        subject_location = location_of(criteria)

        selected: list[str] = []
        for candidate_id in sorted(self._postings(criteria, constraint)):
            if candidate_id == criteria.subject_id:
                continue
            candidate = self.index.records[candidate_id]
            if guard is not None and guard.rejects(
                candidate_id, candidate, self.index.locations[candidate_id]
            ):
                continue

            if (
                criteria.bedrooms is not None
                and candidate.bedrooms is not None
                and abs(candidate.bedrooms - criteria.bedrooms) > tolerance.bedrooms
            ):
                continue
            if price_bounds is not None:
                low, high = price_bounds
                if candidate.price is None or not (low <= candidate.price <= high):
                    continue
            if area_bounds is not None:
                area = candidate.effective_area
                if area is None or not area_bounds.contains(area):
                    continue
            if constraint.radius_km is not None and not self._within_radius(
                criteria, subject_location, candidate_id, constraint.radius_km
            ):
                continue

            selected.append(candidate_id)
            if len(selected) >= self.config.candidate_cap:
                break
        return selected
