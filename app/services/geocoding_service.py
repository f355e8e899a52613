"""Coordinate backfill — consumes a geocoder, never runs inside a search.

Rules:
1. Only records without usable coordinates are sent to the geocoder
2. Mandatory rate limiting: random delay between min/max BEFORE each call (after the first)
3. Results below the confidence floor are treated as absent
4. Geocoder failures are logged and the record is skipped; the batch carries on

Exposed as POST /api/v1/properties/backfill, which stores `report.updated`
and rebuilds the index.
"""
import asyncio
import random
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, Protocol, Sequence

from app.config import Settings, settings as default_settings
from app.core.logging import get_logger
from app.schemas.property_schema import PropertyRecord
from app.services.location_service import usable_coordinates

logger = get_logger(__name__)


@dataclass(frozen=True)
class GeocodeResult:
    lat: float
    lng: float
    confidence: float
    resolved_name: Optional[str] = None


class Geocoder(Protocol):
    async def resolve(self, text: str) -> Optional[GeocodeResult]:
        ...


@dataclass
class BackfillReport:
    records: list[PropertyRecord] = field(default_factory=list)
    # Only the records that gained coordinates
    updated: list[PropertyRecord] = field(default_factory=list)
    geocoded: int = 0
    skipped: int = 0
    low_confidence: int = 0
    failed: int = 0


def geocode_query(record: PropertyRecord) -> Optional[str]:
    """Most specific free-text description of the record's location."""
    if record.address:
        return record.address
    parts = [record.street, record.urbanization, record.suburb, record.city, record.province]
    parts = [p for p in parts if p]
    if not record.city or len(parts) < 2:
        return None
    return ", ".join(parts)


async def backfill_coordinates(
    records: Sequence[PropertyRecord],
    geocoder: Geocoder,
    config: Settings = default_settings,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> BackfillReport:
    """Geocode records lacking usable coordinates. Returns updated copies."""
    report = BackfillReport()
    calls = 0

    for record in records:
        if usable_coordinates(record, config.geocode_min_confidence) is not None:
            report.records.append(record)
            report.skipped += 1
            continue
        query = geocode_query(record)
        if query is None:
            report.records.append(record)
            report.skipped += 1
            continue

        if calls:
            delay = random.uniform(config.geocode_min_delay, config.geocode_max_delay)
            await sleep(delay)
        calls += 1

        try:
            result = await geocoder.resolve(query)
        except Exception as e:
            logger.warning("Geocoding failed for %s: %s", record.id or query, e)
            report.records.append(record)
            report.failed += 1
            continue

        if result is None or result.confidence < config.geocode_min_confidence:
            logger.debug("Geocode result below confidence floor for %s", record.id or query)
            report.records.append(record)
            report.low_confidence += 1
            continue

        geocoded = record.model_copy(
            update={
                "latitude": result.lat,
                "longitude": result.lng,
                "coordinate_confidence": result.confidence,
            }
        )
        report.records.append(geocoded)
        report.updated.append(geocoded)
        report.geocoded += 1

    logger.info(
        "Backfill done: %d geocoded, %d low confidence, %d failed, %d skipped",
        report.geocoded,
        report.low_confidence,
        report.failed,
        report.skipped,
    )
    return report
