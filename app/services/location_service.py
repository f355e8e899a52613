"""Location hierarchy resolver — typed micro-locations from records or free addresses.

Handles:
- Name normalization: case and diacritic folding ("Nueva Andalucía" == "nueva andalucia")
- Address parsing: "Calle Sol 4, Urb. Los Naranjos, Marbella, Málaga" → street/urbanization/city/province
- Typed comparison: a street is only ever compared with a street, an urbanization with an urbanization
- Coordinate usability: geocoded coordinates below the confidence floor count as absent
- Precision exclusions: "Golden Mile" never pulls in "New Golden Mile" (a different area in Estepona)

Everything here is pure; no geocoder or database is ever called.
"""
import math
import re
import unicodedata
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Optional, Tuple

from app.schemas.property_schema import PropertyRecord


class LocationTier(str, Enum):
    STREET = "street"
    URBANIZATION = "urbanization"
    SUBURB = "suburb"
    CITY = "city"

    @property
    def specificity(self) -> int:
        """Lower is more specific."""
        return _TIER_ORDER.index(self)


_TIER_ORDER = [LocationTier.STREET, LocationTier.URBANIZATION, LocationTier.SUBURB, LocationTier.CITY]


@dataclass(frozen=True, order=True)
class MicroLocation:
    """A named place at exactly one hierarchy tier."""

    tier: LocationTier
    name: str

    def __str__(self) -> str:
        return f"{self.tier.value}:{self.name}"


@dataclass(frozen=True)
class ResolvedLocation:
    """Normalized location components of one property."""

    city: Optional[str]
    province: Optional[str]
    street: Optional[str] = None
    urbanization: Optional[str] = None
    suburb: Optional[str] = None

    def component(self, tier: LocationTier) -> Optional[MicroLocation]:
        name = getattr(self, tier.value)
        if not name:
            return None
        return MicroLocation(tier, name)

    def micro_locations(self) -> list[MicroLocation]:
        return [loc for loc in (self.component(t) for t in _TIER_ORDER) if loc is not None]

    def shares(self, other: "ResolvedLocation", tier: LocationTier) -> bool:
        mine = self.component(tier)
        return mine is not None and mine == other.component(tier)


_PUNCTUATION_RE = re.compile(r"[^\w\s]")

_STREET_RE = re.compile(
    r"(?:^|\s)(?:calle|c/|avenida|avda\.?|av\.|paseo|plaza|camino|carretera|ctra\.?)\s*([^,\d]+)",
    re.IGNORECASE,
)
_URBANIZATION_RE = re.compile(
    r"(?:^|\s)(?:urbanizaci[oó]n|urbanisation|urbanization|urb\.)\s*([^,]+)",
    re.IGNORECASE,
)
_POSTCODE_RE = re.compile(r"^\d{4,5}\s*")

# Field aliases found in older feeds and sessions
_FIELD_ALIASES = {
    "street": ("street", "street_name"),
    "urbanization": ("urbanization", "urbanisation", "urbanization_name", "development_name"),
    "suburb": ("suburb", "neighbourhood", "neighborhood"),
    "city": ("city", "town"),
    "province": ("province", "region"),
}

# When the subject sits in the key area, candidates in these areas are never comparable
LOCATION_EXCLUSIONS: dict[str, Tuple[str, ...]] = {
    "golden mile": ("new golden mile", "nuevo golden mile"),
    "marbella golden mile": ("new golden mile", "nuevo golden mile"),
    "new golden mile": ("marbella golden mile", "golden mile"),
}


def normalize_location_name(value: Any) -> Optional[str]:
    """Fold case, diacritics and punctuation; None for empty input."""
    if value is None:
        return None
    text = unicodedata.normalize("NFKD", str(value))
    text = "".join(ch for ch in text if not unicodedata.combining(ch))
    text = _PUNCTUATION_RE.sub(" ", text.casefold())
    text = " ".join(text.split())
    return text or None


def parse_address(address: str) -> dict[str, Optional[str]]:
    """Split a free-text Spanish address into raw location components."""
    parsed: dict[str, Optional[str]] = {
        "street": None, "urbanization": None, "suburb": None, "city": None, "province": None,
    }
    if not address:
        return parsed

    rest: list[str] = []
    for part in (p.strip() for p in address.split(",")):
        if not part:
            continue
        urb_match = _URBANIZATION_RE.search(part)
        if urb_match and parsed["urbanization"] is None:
            parsed["urbanization"] = urb_match.group(1).strip()
            continue
        street_match = _STREET_RE.search(part)
        if street_match and parsed["street"] is None:
            parsed["street"] = street_match.group(1).strip()
            continue
        cleaned = _POSTCODE_RE.sub("", part).strip()
        if cleaned and not cleaned.isdigit():
            rest.append(cleaned)

    # Trailing components read right-to-left: province, city, suburb
    if len(rest) >= 2:
        parsed["province"] = rest[-1]
        parsed["city"] = rest[-2]
        if len(rest) >= 3:
            parsed["suburb"] = rest[-3]
    elif len(rest) == 1:
        parsed["city"] = rest[0]

    return parsed


def _pick(source: Mapping[str, Any], field: str) -> Optional[str]:
    for key in _FIELD_ALIASES[field]:
        value = source.get(key)
        if value:
            return str(value)
    return None


def resolve(source: PropertyRecord | Mapping[str, Any] | str) -> ResolvedLocation:
    """Resolve a record, a raw mapping or an address string into typed components.

    Explicit fields win over components parsed from the address.
    """
    if isinstance(source, str):
        raw = parse_address(source)
    else:
        fields = source.model_dump() if isinstance(source, PropertyRecord) else dict(source)
        raw = {name: _pick(fields, name) for name in _FIELD_ALIASES}
        address = fields.get("address")
        if address:
            for name, value in parse_address(str(address)).items():
                if raw.get(name) is None and value is not None:
                    raw[name] = value

    return ResolvedLocation(
        street=normalize_location_name(raw.get("street")),
        urbanization=normalize_location_name(raw.get("urbanization")),
        suburb=normalize_location_name(raw.get("suburb")),
        city=normalize_location_name(raw.get("city")),
        province=normalize_location_name(raw.get("province")),
    )


def usable_coordinates(record: PropertyRecord, min_confidence: float) -> Optional[Tuple[float, float]]:
    """Return (lat, lng) when present and trusted enough, else None."""
    if record.latitude is None or record.longitude is None:
        return None
    if record.coordinate_confidence is not None and record.coordinate_confidence < min_confidence:
        return None
    return (record.latitude, record.longitude)


def haversine_km(a: Tuple[float, float], b: Tuple[float, float]) -> float:
    """Great-circle distance in kilometres."""
    lat1, lng1 = map(math.radians, a)
    lat2, lng2 = map(math.radians, b)
    d_lat = lat2 - lat1
    d_lng = lng2 - lng1
    h = math.sin(d_lat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(d_lng / 2) ** 2
    return 2 * 6371.0 * math.asin(math.sqrt(min(1.0, h)))


def _contains_phrase(text: str, phrase: str) -> bool:
    return re.search(rf"(?:^| ){re.escape(phrase)}(?: |$)", text) is not None


def should_exclude_location(subject: ResolvedLocation, candidate: ResolvedLocation) -> bool:
    """True when the candidate's area is a known look-alike of the subject's area."""
    subject_area = subject.suburb or subject.urbanization
    candidate_area = candidate.suburb or candidate.urbanization
    if not subject_area or not candidate_area or subject_area == candidate_area:
        return False

    for excluded in LOCATION_EXCLUSIONS.get(subject_area, ()):
        if not _contains_phrase(candidate_area, excluded):
            continue
        # "golden mile" is part of "new golden mile": only exclude when the
        # candidate is not itself inside the subject's area
        if _contains_phrase(subject_area, excluded) and _contains_phrase(candidate_area, subject_area):
            continue
        return True
    return False


def location_of(criteria: Any) -> ResolvedLocation:
    """ResolvedLocation view of anything carrying normalized location fields."""
    return ResolvedLocation(
        city=criteria.city,
        province=criteria.province,
        street=criteria.street,
        urbanization=criteria.urbanization,
        suburb=criteria.suburb,
    )
