"""Location relationship store — the learning engine behind tier 4.

After a search is accepted, every micro-location of the subject is linked to
the distinct same-tier micro-locations of its comparables. Repetition raises
an edge's confidence, time without reinforcement decays it:

    confidence(t) = min(1, frequency / saturation) * 0.5 ** (days_since_last_seen / half_life)

Handles:
- Same-tier invariant: an edge between different tiers raises CrossTierRelationshipError
- Per-edge asyncio.Lock: concurrent reinforcements of one edge never lose updates
- Lock-free nearby(): readers see the latest fully-applied edges, never wait on writers
- Bounded size: lowest-confidence, then oldest, edges are evicted first
- Discovered micro-location metadata (aliases, common streets): informative only,
  exact-match tiers never read it

CONFIGURATION:
  - nearby_confidence_floor, relationship_half_life_days,
    relationship_saturation_frequency, max_relationships, max_discovered_locations
  - Persistence é opcional: sem repository o store funciona só em memória
  - Falhas de persistência são registadas em log e o estado em memória mantém-se
"""
import asyncio
from collections import defaultdict
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Iterable, Optional, Sequence

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError

from app.config import Settings, settings as default_settings
from app.core.exceptions import CollaboratorUnavailableError, CrossTierRelationshipError
from app.core.logging import get_logger
from app.database import async_session_factory
from app.models.location_relationship_model import DiscoveredLocation, LocationRelationship
from app.schemas.property_schema import PropertyRecord
from app.services.location_service import (
    LocationTier,
    MicroLocation,
    normalize_location_name,
    parse_address,
    resolve,
)

logger = get_logger(__name__)

# Cold-start nearby urbanizations (Costa del Sol), symmetric by construction below
_STATIC_NEARBY_GROUPS = [
    ("benahavis", "nueva andalucia", "artola", "cabopino"),
    ("nueva andalucia", "costabella"),
    ("nagueles", "sierra blanca", "la campana", "golden mile"),
    ("elviria", "las chapas", "calahonda", "marbella club"),
    ("puerto banus", "marina puerto banus", "puerto deportivo"),
]


def _build_static_table() -> dict[str, tuple[str, ...]]:
    table: dict[str, set[str]] = defaultdict(set)
    for group in _STATIC_NEARBY_GROUPS:
        for name in group:
            table[name].update(other for other in group if other != name)
    return {name: tuple(sorted(others)) for name, others in table.items()}


STATIC_NEARBY_URBANIZATIONS: dict[str, tuple[str, ...]] = _build_static_table()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: datetime) -> datetime:
    # sqlite devolve datetimes naive
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass(frozen=True)
class RelationshipEdge:
    """Directed same-tier co-occurrence edge."""

    source: MicroLocation
    target: MicroLocation
    frequency: int = 1
    last_seen: datetime = field(default_factory=_utcnow)
    base_confidence: float = 0.0

    def __post_init__(self):
        if self.source.tier != self.target.tier:
            raise CrossTierRelationshipError(
                "Relationship edges must connect micro-locations of the same tier",
                detail={"source": str(self.source), "target": str(self.target)},
            )
        object.__setattr__(self, "last_seen", _aware(self.last_seen))
        object.__setattr__(self, "base_confidence", min(1.0, max(0.0, self.base_confidence)))

    @property
    def tier(self) -> LocationTier:
        return self.source.tier

    @property
    def key(self) -> tuple[MicroLocation, MicroLocation]:
        return (self.source, self.target)

    def confidence_at(self, now: datetime, half_life_days: float) -> float:
        elapsed_days = max(0.0, (_aware(now) - self.last_seen).total_seconds() / 86400)
        return min(1.0, self.base_confidence) * 0.5 ** (elapsed_days / half_life_days)


@dataclass
class DiscoveredMicroLocation:
    location: MicroLocation
    city: Optional[str] = None
    aliases: set[str] = field(default_factory=set)
    common_streets: set[str] = field(default_factory=set)
    frequency: int = 0
    first_seen: datetime = field(default_factory=_utcnow)
    last_seen: datetime = field(default_factory=_utcnow)


class RelationshipRepository:
    """Durable storage for edges and discovered micro-locations."""

    def __init__(self, session_factory=async_session_factory):
        self.session_factory = session_factory

    async def load(self) -> tuple[list[RelationshipEdge], list[DiscoveredMicroLocation]]:
        try:
            async with self.session_factory() as db:
                edge_rows = (await db.execute(select(LocationRelationship))).scalars().all()
                discovered_rows = (await db.execute(select(DiscoveredLocation))).scalars().all()
        except SQLAlchemyError as e:
            raise CollaboratorUnavailableError("Relationship storage unavailable", detail=str(e)) from e

        edges: list[RelationshipEdge] = []
        for row in edge_rows:
            tier = LocationTier(row.tier)
            try:
                edges.append(
                    RelationshipEdge(
                        source=MicroLocation(tier, row.source_name),
                        target=MicroLocation(tier, row.target_name),
                        frequency=row.frequency,
                        last_seen=row.last_seen,
                        base_confidence=row.base_confidence,
                    )
                )
            except CrossTierRelationshipError:
                logger.error("Skipping corrupt relationship row %s", row.id)

        discovered = [
            DiscoveredMicroLocation(
                location=MicroLocation(LocationTier(row.tier), row.name),
                city=row.city,
                aliases=set(row.aliases or []),
                common_streets=set(row.common_streets or []),
                frequency=row.frequency,
                first_seen=_aware(row.first_seen),
                last_seen=_aware(row.last_seen),
            )
            for row in discovered_rows
        ]
        return edges, discovered

    async def save_edge(self, edge: RelationshipEdge) -> None:
        try:
            async with self.session_factory() as db:
                result = await db.execute(
                    select(LocationRelationship).where(
                        LocationRelationship.tier == edge.tier.value,
                        LocationRelationship.source_name == edge.source.name,
                        LocationRelationship.target_name == edge.target.name,
                    )
                )
                row = result.scalar_one_or_none()
                if row is None:
                    row = LocationRelationship(
                        tier=edge.tier.value,
                        source_name=edge.source.name,
                        target_name=edge.target.name,
                    )
                    db.add(row)
                row.frequency = edge.frequency
                row.base_confidence = edge.base_confidence
                row.last_seen = edge.last_seen
                await db.commit()
        except SQLAlchemyError as e:
            raise CollaboratorUnavailableError("Relationship storage unavailable", detail=str(e)) from e

    async def delete_edges(self, edges: Sequence[RelationshipEdge]) -> None:
        try:
            async with self.session_factory() as db:
                for edge in edges:
                    await db.execute(
                        delete(LocationRelationship).where(
                            LocationRelationship.tier == edge.tier.value,
                            LocationRelationship.source_name == edge.source.name,
                            LocationRelationship.target_name == edge.target.name,
                        )
                    )
                await db.commit()
        except SQLAlchemyError as e:
            raise CollaboratorUnavailableError("Relationship storage unavailable", detail=str(e)) from e

    async def save_discovered(self, item: DiscoveredMicroLocation) -> None:
        try:
            async with self.session_factory() as db:
                result = await db.execute(
                    select(DiscoveredLocation).where(
                        DiscoveredLocation.tier == item.location.tier.value,
                        DiscoveredLocation.name == item.location.name,
                    )
                )
                row = result.scalar_one_or_none()
                if row is None:
                    row = DiscoveredLocation(
                        tier=item.location.tier.value,
                        name=item.location.name,
                        first_seen=item.first_seen,
                    )
                    db.add(row)
                row.city = item.city
                row.aliases = sorted(item.aliases)
                row.common_streets = sorted(item.common_streets)
                row.frequency = item.frequency
                row.last_seen = item.last_seen
                await db.commit()
        except SQLAlchemyError as e:
            raise CollaboratorUnavailableError("Relationship storage unavailable", detail=str(e)) from e


class LocationRelationshipStore:
    """Confidence-scored, tier-partitioned graph of co-occurring micro-locations."""

    def __init__(
        self,
        repository: Optional[RelationshipRepository] = None,
        config: Settings = default_settings,
    ):
        self.repository = repository
        self.config = config
        self._edges: dict[tuple[MicroLocation, MicroLocation], RelationshipEdge] = {}
        self._by_source: dict[MicroLocation, set[MicroLocation]] = defaultdict(set)
        self._discovered: dict[MicroLocation, DiscoveredMicroLocation] = {}
        self._locks: dict[tuple[MicroLocation, MicroLocation], asyncio.Lock] = defaultdict(asyncio.Lock)
        self._discovery_lock = asyncio.Lock()
        self._version = 0
        self._loaded = False

    @property
    def version(self) -> int:
        return self._version

    @property
    def is_cold(self) -> bool:
        return not self._edges

    def __len__(self) -> int:
        return len(self._edges)

    async def load(self) -> None:
        """Load persisted edges. Storage failures leave a cold in-memory store."""
        if self.repository is None:
            return
        try:
            edges, discovered = await self.repository.load()
        except CollaboratorUnavailableError as e:
            logger.warning("Relationship store not loaded, starting cold: %s", e.detail)
            return

        for edge in edges:
            self._put(edge)
        for item in discovered:
            self._discovered[item.location] = item
        self._loaded = True
        self._version += 1
        logger.info("Loaded %d relationships, %d discovered locations", len(edges), len(discovered))

    def _put(self, edge: RelationshipEdge) -> None:
        self._edges[edge.key] = edge
        self._by_source[edge.source].add(edge.target)

    def _drop(self, edge: RelationshipEdge) -> None:
        self._edges.pop(edge.key, None)
        targets = self._by_source.get(edge.source)
        if targets is not None:
            targets.discard(edge.target)
            if not targets:
                del self._by_source[edge.source]
        self._locks.pop(edge.key, None)

    def edge(self, source: MicroLocation, target: MicroLocation) -> Optional[RelationshipEdge]:
        return self._edges.get((source, target))

    def confidence(self, edge: RelationshipEdge, now: Optional[datetime] = None) -> float:
        return edge.confidence_at(now or _utcnow(), self.config.relationship_half_life_days)

    # Reads

    def nearby(
        self,
        location: MicroLocation,
        tier: Optional[LocationTier] = None,
        now: Optional[datetime] = None,
    ) -> list[tuple[MicroLocation, float]]:
        """Same-tier neighbours at or above the confidence floor, strongest first."""
        if tier is not None and tier != location.tier:
            return []
        now = now or _utcnow()
        ranked: list[tuple[float, int, MicroLocation]] = []
        for target in list(self._by_source.get(location, ())):
            edge = self._edges.get((location, target))
            if edge is None:
                continue
            confidence = self.confidence(edge, now)
            if confidence >= self.config.nearby_confidence_floor:
                ranked.append((confidence, edge.frequency, target))

        ranked.sort(key=lambda item: (-item[0], -item[1], item[2].name))
        return [(target, round(confidence, 4)) for confidence, _, target in ranked]

    def discovered(self, tier: Optional[LocationTier] = None) -> list[DiscoveredMicroLocation]:
        items = [d for d in self._discovered.values() if tier is None or d.location.tier == tier]
        return sorted(items, key=lambda d: (-d.frequency, d.location.name))

    def stats(self, now: Optional[datetime] = None) -> dict:
        now = now or _utcnow()
        by_tier: dict[str, int] = defaultdict(int)
        above_floor = 0
        total_confidence = 0.0
        for edge in self._edges.values():
            by_tier[edge.tier.value] += 1
            confidence = self.confidence(edge, now)
            total_confidence += confidence
            if confidence >= self.config.nearby_confidence_floor:
                above_floor += 1
        count = len(self._edges)
        return {
            "relationships": count,
            "relationships_by_tier": dict(by_tier),
            "above_confidence_floor": above_floor,
            "average_confidence": round(total_confidence / count, 4) if count else 0.0,
            "discovered_locations": len(self._discovered),
            "version": self._version,
            "persistent": self.repository is not None,
            "loaded": self._loaded,
        }

    # Writes

    async def reinforce(
        self,
        subject: PropertyRecord,
        comparables: Sequence[PropertyRecord],
        now: Optional[datetime] = None,
    ) -> int:
        """Strengthen same-tier edges between the subject and its accepted comparables.

        Returns the number of directed edges written.
        """
        now = now or _utcnow()
        subject_location = resolve(subject)
        comparable_locations = [resolve(c) for c in comparables]

        written = 0
        for tier in LocationTier:
            source = subject_location.component(tier)
            if source is None:
                continue
            targets = {
                loc.component(tier) for loc in comparable_locations if loc.component(tier) is not None
            }
            targets.discard(source)
            written += await self.reinforce_locations(source, targets, now=now)

        await self._record_discoveries([subject, *comparables], now)
        if written:
            await self._evict(now)
        return written

    async def reinforce_locations(
        self,
        source: MicroLocation,
        targets: Iterable[MicroLocation],
        now: Optional[datetime] = None,
    ) -> int:
        now = now or _utcnow()
        written = 0
        for target in sorted(set(targets)):
            if target.tier != source.tier:
                raise CrossTierRelationshipError(
                    "Relationship edges must connect micro-locations of the same tier",
                    detail={"source": str(source), "target": str(target)},
                )
            # Co-occurrence is symmetric
            await self._reinforce_edge(source, target, now)
            await self._reinforce_edge(target, source, now)
            written += 2
        if written:
            self._version += 1
        return written

    async def _reinforce_edge(self, source: MicroLocation, target: MicroLocation, now: datetime) -> None:
        key = (source, target)
        async with self._locks[key]:
            current = self._edges.get(key)
            if current is None:
                frequency = 1
                edge = RelationshipEdge(source=source, target=target)
            else:
                frequency = current.frequency + 1
                edge = current
            edge = replace(
                edge,
                frequency=frequency,
                last_seen=now,
                base_confidence=min(1.0, frequency / self.config.relationship_saturation_frequency),
            )
            self._put(edge)

            if self.repository is not None:
                try:
                    await self.repository.save_edge(edge)
                except CollaboratorUnavailableError as e:
                    logger.warning("Relationship %s -> %s kept in memory only: %s", source, target, e.detail)

    async def _evict(self, now: datetime) -> None:
        overflow = len(self._edges) - self.config.max_relationships
        if overflow <= 0:
            return
        victims = sorted(
            self._edges.values(),
            key=lambda e: (self.confidence(e, now), e.last_seen),
        )[:overflow]
        for edge in victims:
            self._drop(edge)
        self._version += 1
        logger.info("Evicted %d low-confidence relationships", len(victims))

        if self.repository is not None:
            try:
                await self.repository.delete_edges(victims)
            except CollaboratorUnavailableError as e:
                logger.warning("Evicted relationships not removed from storage: %s", e.detail)

    async def _record_discoveries(self, records: Sequence[PropertyRecord], now: datetime) -> None:
        touched: list[DiscoveredMicroLocation] = []
        async with self._discovery_lock:
            for record in records:
                location = resolve(record)
                urbanization = location.component(LocationTier.URBANIZATION)
                if urbanization is None:
                    continue
                item = self._discovered.get(urbanization)
                if item is None:
                    item = DiscoveredMicroLocation(location=urbanization, city=location.city, first_seen=now)
                    self._discovered[urbanization] = item
                raw = record.urbanization or parse_address(record.address or "")["urbanization"]
                if raw and normalize_location_name(raw) == urbanization.name:
                    item.aliases.add(raw.strip())
                if location.street:
                    item.common_streets.add(location.street)
                item.frequency += 1
                item.last_seen = now
                touched.append(item)

            overflow = len(self._discovered) - self.config.max_discovered_locations
            if overflow > 0:
                victims = sorted(self._discovered.values(), key=lambda d: (d.frequency, d.last_seen))[:overflow]
                for victim in victims:
                    del self._discovered[victim.location]

        if self.repository is None:
            return
        for item in touched:
            if item.location not in self._discovered:
                continue
            try:
                await self.repository.save_discovered(item)
            except CollaboratorUnavailableError as e:
                logger.warning("Discovered location %s kept in memory only: %s", item.location, e.detail)
                break

    # Tier 4 input

    def nearby_urbanizations(self, urbanization: MicroLocation, now: Optional[datetime] = None) -> list[MicroLocation]:
        """Learned neighbours, or the static table while the store knows nothing about this area."""
        learned = [loc for loc, _ in self.nearby(urbanization, LocationTier.URBANIZATION, now)]
        if learned:
            return learned
        return static_nearby(urbanization)


def static_nearby(urbanization: MicroLocation) -> list[MicroLocation]:
    return [
        MicroLocation(LocationTier.URBANIZATION, name)
        for name in STATIC_NEARBY_URBANIZATIONS.get(urbanization.name, ())
    ]
