"""Stable property identity derived from identity-bearing fields only.

The same listing re-read from a feed (new timestamps, new photos, freshly
geocoded coordinates) keeps the same identity; a different price or size
yields a new one.
"""
import hashlib
import json
from typing import Any, Optional

from app.core.exceptions import IdentityError
from app.schemas.property_schema import PropertyRecord
from app.services.location_service import normalize_location_name

IDENTITY_HASH_LENGTH = 12


def _canonical_number(value: Optional[float], ndigits: int = 2) -> Optional[float]:
    if value is None:
        return None
    return round(float(value), ndigits)


def identity_fields(record: PropertyRecord) -> dict[str, Any]:
    """Canonical identity-bearing subset of a record."""
    return {
        "address": normalize_location_name(record.address),
        "city": normalize_location_name(record.city),
        "province": normalize_location_name(record.province),
        "property_type": record.property_type,
        "bedrooms": record.bedrooms,
        "bathrooms": record.bathrooms,
        "build_area": _canonical_number(record.build_area),
        "price": _canonical_number(record.price),
    }


def derive_property_identity(record: PropertyRecord) -> str:
    """Derive ``{feed_source}-{reference}-{hash}`` (or ``{feed_source}-{hash}``).

    Raises IdentityError when no identity-bearing field carries a value.
    """
    fields = identity_fields(record)
    if all(v is None for k, v in fields.items() if k != "property_type") and not record.reference:
        raise IdentityError(
            "Cannot derive a stable identity: no identity-bearing field is set",
            detail={"feed_source": record.feed_source},
        )

    payload = json.dumps(fields, sort_keys=True, ensure_ascii=True, separators=(",", ":"))
    digest = hashlib.sha256(payload.encode("utf-8")).hexdigest()[:IDENTITY_HASH_LENGTH]

    if record.reference:
        return f"{record.feed_source}-{record.reference}-{digest}"
    return f"{record.feed_source}-{digest}"


def ensure_identity(record: PropertyRecord) -> PropertyRecord:
    """Return the record with an id, deriving one when missing."""
    if record.id:
        return record
    return record.model_copy(update={"id": derive_property_identity(record)})


def listing_key(record: PropertyRecord) -> tuple[str, str]:
    """Feed-level identity of a listing.

    The derived id changes when a feed refresh changes the price or the size;
    ``(feed_source, reference)`` does not. Records without a reference fall
    back to their derived id.
    """
    if record.reference:
        return (record.feed_source, record.reference)
    return (record.feed_source, ensure_identity(record).id)
