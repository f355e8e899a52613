"""Property corpus and its in-memory lookup index.

Handles:
- PropertyIndex: immutable snapshot with postings by city, province, type,
  transaction type and named micro-location (street/urbanization/suburb)
- PropertyCorpus: holds the current snapshot; rebuilds happen off to the side
  and the reference is swapped in one assignment, so a search never sees a
  half-built index
- PropertyRepository: load/upsert of records in the `properties` table

Records that are not searchable (no city+province, price or area) stay in
storage and in the corpus, but never reach the postings.

CONCORRÊNCIA:
  - Leitores usam snapshot() sem lock
  - Rebuilds serializados com asyncio.Lock (um de cada vez)
"""
import asyncio
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional, Sequence

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import NotFoundError
from app.core.logging import get_logger
from app.models.property_model import Property
from app.schemas.property_schema import PropertyRecord, TransactionType
from app.services.identity_service import ensure_identity, listing_key
from app.services.location_service import MicroLocation, ResolvedLocation, resolve

logger = get_logger(__name__)

_EMPTY: frozenset[str] = frozenset()


def _freeze(postings: dict) -> dict:
    return {key: frozenset(ids) for key, ids in postings.items()}


def _merge(
    current: dict[str, PropertyRecord],
    incoming: Iterable[PropertyRecord],
) -> dict[str, PropertyRecord]:
    """Copy of `current` with `incoming` applied, one record per listing.

    A refreshed listing (same feed and reference, new price or size) derives a
    new id; the version it replaces is dropped.
    """
    merged = dict(current)
    by_listing = {listing_key(record): pid for pid, record in merged.items()}
    for record in incoming:
        record = ensure_identity(record)
        key = listing_key(record)
        previous = by_listing.get(key)
        if previous is not None and previous != record.id:
            del merged[previous]
        merged[record.id] = record
        by_listing[key] = record.id
    return merged


@dataclass(frozen=True)
class PropertyIndex:
    """Read-only snapshot of the searchable corpus."""

    version: int
    records: dict[str, PropertyRecord] = field(default_factory=dict)
    locations: dict[str, ResolvedLocation] = field(default_factory=dict)
    by_city: dict[str, frozenset[str]] = field(default_factory=dict)
    by_province: dict[str, frozenset[str]] = field(default_factory=dict)
    by_type: dict[str, frozenset[str]] = field(default_factory=dict)
    by_transaction: dict[TransactionType, frozenset[str]] = field(default_factory=dict)
    by_location: dict[MicroLocation, frozenset[str]] = field(default_factory=dict)
    excluded: int = 0
    built_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def build(cls, records: Iterable[PropertyRecord], version: int) -> "PropertyIndex":
        indexed: dict[str, PropertyRecord] = {}
        locations: dict[str, ResolvedLocation] = {}
        by_city: dict[str, set[str]] = defaultdict(set)
        by_province: dict[str, set[str]] = defaultdict(set)
        by_type: dict[str, set[str]] = defaultdict(set)
        by_transaction: dict[TransactionType, set[str]] = defaultdict(set)
        by_location: dict[MicroLocation, set[str]] = defaultdict(set)
        excluded = 0

        for record in records:
            if not record.is_searchable:
                excluded += 1
                continue
            record = ensure_identity(record)
            location = resolve(record)
            if not location.city or not location.province:
                excluded += 1
                continue

            pid = record.id
            indexed[pid] = record
            locations[pid] = location
            by_city[location.city].add(pid)
            by_province[location.province].add(pid)
            by_type[record.property_type].add(pid)
            by_transaction[record.transaction_type].add(pid)
            for micro in location.micro_locations():
                by_location[micro].add(pid)

        return cls(
            version=version,
            records=indexed,
            locations=locations,
            by_city=_freeze(by_city),
            by_province=_freeze(by_province),
            by_type=_freeze(by_type),
            by_transaction=_freeze(by_transaction),
            by_location=_freeze(by_location),
            excluded=excluded,
        )

    def __len__(self) -> int:
        return len(self.records)

    def city_ids(self, city: Optional[str]) -> frozenset[str]:
        return self.by_city.get(city, _EMPTY) if city else _EMPTY

    def province_ids(self, province: Optional[str]) -> frozenset[str]:
        return self.by_province.get(province, _EMPTY) if province else _EMPTY

    def type_ids(self, categories: Iterable[str]) -> frozenset[str]:
        ids: frozenset[str] = _EMPTY
        for category in categories:
            ids = ids | self.by_type.get(category, _EMPTY)
        return ids

    def transaction_ids(self, transaction_type: TransactionType) -> frozenset[str]:
        return self.by_transaction.get(transaction_type, _EMPTY)

    def location_ids(self, location: MicroLocation) -> frozenset[str]:
        return self.by_location.get(location, _EMPTY)


class PropertyCorpus:
    """Current corpus plus the snapshot searches run against."""

    def __init__(self, records: Iterable[PropertyRecord] = ()):
        self._records: dict[str, PropertyRecord] = _merge({}, records)
        self._index = PropertyIndex.build(self._records.values(), version=0)
        self._lock = asyncio.Lock()
        self._listeners: list[Callable[[PropertyIndex], None]] = []

    def snapshot(self) -> PropertyIndex:
        return self._index

    def on_rebuild(self, callback: Callable[[PropertyIndex], None]) -> None:
        self._listeners.append(callback)

    @property
    def size(self) -> int:
        return len(self._records)

    def get(self, property_id: str) -> Optional[PropertyRecord]:
        return self._records.get(property_id)

    async def rebuild(self, records: Optional[Iterable[PropertyRecord]] = None) -> PropertyIndex:
        """Rebuild the index (optionally replacing all records) and swap it in."""
        async with self._lock:
            if records is not None:
                self._records = _merge({}, records)
            return self._swap()

    async def upsert(self, records: Sequence[PropertyRecord]) -> PropertyIndex:
        """Copy-on-write upsert followed by an atomic rebuild."""
        async with self._lock:
            self._records = _merge(self._records, records)
            return self._swap()

    def _swap(self) -> PropertyIndex:
        start = datetime.now(timezone.utc)
        index = PropertyIndex.build(self._records.values(), version=self._index.version + 1)
        self._index = index
        duration = (datetime.now(timezone.utc) - start).total_seconds()

        if index.excluded:
            logger.warning(
                "Index v%d excluded %d unsearchable records", index.version, index.excluded
            )
        logger.info(
            "Index v%d built: %d searchable of %d records",
            index.version,
            len(index),
            len(self._records),
            extra={"duration": round(duration, 3)},
        )
        for callback in self._listeners:
            callback(index)
        return index


class PropertyRepository:
    """Persistence of PropertyRecords in the `properties` table."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def load_all(self) -> list[PropertyRecord]:
        result = await self.db.execute(select(Property))
        return [row.to_record() for row in result.scalars().all()]

    async def get(self, property_id: str) -> PropertyRecord:
        row = await self.db.get(Property, property_id)
        if not row:
            raise NotFoundError(f"Property {property_id} not found")
        return row.to_record()

    async def list_page(
        self,
        city: Optional[str] = None,
        property_type: Optional[str] = None,
        transaction_type: Optional[TransactionType] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> tuple[list[PropertyRecord], int]:
        query = select(Property)
        count_query = select(func.count(Property.id))

        if city:
            query = query.where(Property.city.ilike(city))
            count_query = count_query.where(Property.city.ilike(city))
        if property_type:
            query = query.where(Property.property_type == property_type.lower())
            count_query = count_query.where(Property.property_type == property_type.lower())
        if transaction_type:
            query = query.where(Property.transaction_type == transaction_type.value)
            count_query = count_query.where(Property.transaction_type == transaction_type.value)

        total = (await self.db.execute(count_query)).scalar() or 0
        query = query.order_by(Property.id).offset((page - 1) * page_size).limit(page_size)
        result = await self.db.execute(query)
        return [row.to_record() for row in result.scalars().all()], total

    async def upsert(self, records: Sequence[PropertyRecord]) -> list[PropertyRecord]:
        """Insert or update by stable identity. Returns the records with ids.

        Rows of the same listing stored under an older identity are removed.
        """
        stored: dict[tuple[str, str], PropertyRecord] = {}
        for record in records:
            record = ensure_identity(record)
            if record.reference:
                await self.db.execute(
                    delete(Property).where(
                        Property.feed_source == record.feed_source,
                        Property.reference == record.reference,
                        Property.id != record.id,
                    )
                )
            row = await self.db.get(Property, record.id)
            if row:
                row.apply_record(record)
                row.updated_at = datetime.now(timezone.utc)
            else:
                self.db.add(Property.from_record(record))
            stored[listing_key(record)] = record
        await self.db.flush()
        logger.info("Upserted %d properties", len(stored))
        return list(stored.values())
