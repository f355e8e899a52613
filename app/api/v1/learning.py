"""Learning API router — inspect the location relationship store.
/api/v1/learning
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from app.api.deps import get_learning_store
from app.api.responses import ok
from app.schemas.base_schema import ApiResponse
from app.services.learning_service import LocationRelationshipStore
from app.services.location_service import LocationTier, MicroLocation, normalize_location_name

router = APIRouter()


@router.get("/stats", response_model=ApiResponse[dict])
async def learning_stats(
    request: Request,
    store: LocationRelationshipStore = Depends(get_learning_store),
):
    """Relationship counts, confidence and persistence status."""
    return ok(store.stats(), "Learning stats", request)


@router.get("/nearby", response_model=ApiResponse[list[dict]])
async def nearby_locations(
    request: Request,
    name: str = Query(..., min_length=1),
    tier: LocationTier = LocationTier.URBANIZATION,
    store: LocationRelationshipStore = Depends(get_learning_store),
):
    """Learned same-tier neighbours of a micro-location, strongest first."""
    location = MicroLocation(tier, normalize_location_name(name) or "")
    items = [
        {"tier": loc.tier.value, "name": loc.name, "confidence": confidence}
        for loc, confidence in store.nearby(location, tier)
    ]
    return ok(items, f"{len(items)} nearby {tier.value} locations", request)


@router.get("/locations", response_model=ApiResponse[list[dict]])
async def discovered_locations(
    request: Request,
    tier: Optional[LocationTier] = None,
    store: LocationRelationshipStore = Depends(get_learning_store),
):
    """Discovered micro-locations with their aliases and common streets."""
    items = [
        {
            "tier": d.location.tier.value,
            "name": d.location.name,
            "city": d.city,
            "aliases": sorted(d.aliases),
            "common_streets": sorted(d.common_streets),
            "frequency": d.frequency,
            "first_seen": d.first_seen.isoformat(),
            "last_seen": d.last_seen.isoformat(),
        }
        for d in store.discovered(tier)
    ]
    return ok(items, f"{len(items)} discovered locations", request)
