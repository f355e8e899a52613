"""SQLAlchemy models for the comparables service."""
from app.models.property_model import Property
from app.models.location_relationship_model import DiscoveredLocation, LocationRelationship

__all__ = [
    "Property",
    "LocationRelationship",
    "DiscoveredLocation",
]
