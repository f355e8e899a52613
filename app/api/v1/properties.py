"""Properties API router — corpus listing, bulk upsert, reindex and coordinate backfill.
/api/v1/properties

Cada upsert grava na DB e reconstrói o índice em memória (swap atómico).
O backfill chama o geocoder fora de qualquer pesquisa e só grava os registos
que ganharam coordenadas.
"""
import math
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_corpus, get_db, get_geocoder
from app.api.responses import ok
from app.config import settings
from app.core.logging import get_logger
from app.schemas.base_schema import ApiResponse
from app.schemas.property_schema import PropertyRecord, PropertyUpsert, TransactionType
from app.services.corpus_service import PropertyCorpus, PropertyRepository
from app.services.geocoding_service import Geocoder, backfill_coordinates
from app.services.location_service import usable_coordinates

logger = get_logger(__name__)

router = APIRouter()


def _index_stats(corpus: PropertyCorpus) -> dict:
    index = corpus.snapshot()
    return {
        "index_version": index.version,
        "records": corpus.size,
        "searchable": len(index),
        "excluded": index.excluded,
    }


@router.get("", response_model=ApiResponse[list[PropertyRecord]])
async def list_properties(
    request: Request,
    city: Optional[str] = None,
    property_type: Optional[str] = None,
    transaction_type: Optional[TransactionType] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    corpus: PropertyCorpus = Depends(get_corpus),
):
    """List stored properties with filters and pagination."""
    items, total = await PropertyRepository(db).list_page(
        city=city,
        property_type=property_type,
        transaction_type=transaction_type,
        page=page,
        page_size=page_size,
    )
    return ok(
        items,
        f"{total} properties",
        request,
        meta={
            "page": page,
            "page_size": page_size,
            "total": total,
            "pages": math.ceil(total / page_size) if total else 0,
            "index_version": corpus.snapshot().version,
        },
    )


@router.get("/{property_id}", response_model=ApiResponse[PropertyRecord])
async def get_property(
    request: Request,
    property_id: str,
    db: AsyncSession = Depends(get_db),
):
    """Get one stored property by its stable identity."""
    record = await PropertyRepository(db).get(property_id)
    return ok(record, "Property found", request)


@router.post("", response_model=ApiResponse[dict], status_code=201)
async def upsert_properties(
    request: Request,
    payload: PropertyUpsert,
    db: AsyncSession = Depends(get_db),
    corpus: PropertyCorpus = Depends(get_corpus),
):
    """Insert or update properties by identity, then rebuild the index."""
    stored = await PropertyRepository(db).upsert(payload.properties)
    await db.commit()
    await corpus.upsert(stored)
    return ok(
        {"ids": [r.id for r in stored], **_index_stats(corpus)},
        f"{len(stored)} properties upserted",
        request,
    )


@router.post("/reindex", response_model=ApiResponse[dict])
async def reindex_properties(
    request: Request,
    db: AsyncSession = Depends(get_db),
    corpus: PropertyCorpus = Depends(get_corpus),
):
    """Reload every property from the database and swap in a fresh index."""
    records = await PropertyRepository(db).load_all()
    await corpus.rebuild(records)
    return ok(_index_stats(corpus), "Index rebuilt", request)


@router.post("/backfill", response_model=ApiResponse[dict])
async def backfill_properties(
    request: Request,
    limit: int = Query(100, ge=1, le=1000),
    db: AsyncSession = Depends(get_db),
    corpus: PropertyCorpus = Depends(get_corpus),
    geocoder: Geocoder = Depends(get_geocoder),
):
    """Geocode up to `limit` stored properties without usable coordinates."""
    repo = PropertyRepository(db)
    pending = [
        record
        for record in await repo.load_all()
        if usable_coordinates(record, settings.geocode_min_confidence) is None
    ][:limit]

    report = await backfill_coordinates(pending, geocoder)
    if report.updated:
        stored = await repo.upsert(report.updated)
        await db.commit()
        await corpus.upsert(stored)

    return ok(
        {
            "pending": len(pending),
            "geocoded": report.geocoded,
            "low_confidence": report.low_confidence,
            "failed": report.failed,
            "skipped": report.skipped,
            **_index_stats(corpus),
        },
        f"{report.geocoded} properties geocoded",
        request,
    )
