"""Tiered comparable search — the orchestrator.

Flow per request:
  subject → validate + identity → criteria → cache lookup
          → classify (Standard | EdgeCase) → strategy passes
          → per pass: tiers 1..5 (+6 on the last pass when 1..5 are empty)
          → guard re-check → result (+ cache, + log)

Tier ladder (earlier tiers always precede later tiers, whatever the score):
  1 street · 2 urbanization · 3 suburb · 4 nearby urbanizations (learned,
  static table on cold start) · 5 city (radius-limited on radius passes) ·
  6 broad fallback (city, relaxed tolerances)

A tier is selected, scored and sorted completely before the cap is checked,
so the result never depends on the order candidates happened to arrive in.

MELHORIAS:
  - Reinforcement do learning store é fire-and-forget, nunca falha a pesquisa
  - Falhas do store de relações degradam para a tabela estática
"""
import time
from dataclasses import dataclass, field
from typing import Optional, Sequence

from app.config import Settings, settings as default_settings
from app.core.exceptions import CollaboratorUnavailableError, InputError
from app.core.logging import get_logger, search_scope
from app.schemas.property_schema import PropertyRecord
from app.schemas.search_schema import (
    ComparableMatch,
    ComparablesResult,
    MatchTier,
    SearchCriteria,
    SearchOptions,
)
from app.services.cache_service import ResultCache
from app.services.candidate_service import CandidateSelector, TierConstraint
from app.services.classification_service import SubjectClass, classify_subject, from_override
from app.services.corpus_service import PropertyCorpus, PropertyIndex
from app.services.guard_service import SelfExclusionGuard
from app.services.identity_service import ensure_identity, listing_key
from app.services.learning_service import LocationRelationshipStore, static_nearby
from app.services.location_service import (
    LocationTier,
    MicroLocation,
    ResolvedLocation,
    location_of,
    resolve,
    usable_coordinates,
)
from app.services.scoring_service import SimilarityScorer
from app.services.strategy_service import SearchPass, strategy_for
from app.services.tolerance_service import NumericTolerance, categories_for

logger = get_logger(__name__)

_NAMED_TIERS = (
    (MatchTier.STREET, LocationTier.STREET),
    (MatchTier.URBANIZATION, LocationTier.URBANIZATION),
    (MatchTier.SUBURB, LocationTier.SUBURB),
)


@dataclass
class PassOutcome:
    search_pass: SearchPass
    matches: list[ComparableMatch] = field(default_factory=list)
    candidates: int = 0


class ComparableSearchService:
    def __init__(
        self,
        corpus: PropertyCorpus,
        store: LocationRelationshipStore,
        cache: Optional[ResultCache] = None,
        config: Settings = default_settings,
        scorer: Optional[SimilarityScorer] = None,
    ):
        self.corpus = corpus
        self.store = store
        self.cache = cache
        self.config = config
        self.scorer = scorer or SimilarityScorer(config)
        if cache is not None:
            corpus.on_rebuild(cache.invalidate)

    # Criteria

    def build_criteria(
        self,
        subject: PropertyRecord,
        options: SearchOptions,
        location: Optional[ResolvedLocation] = None,
    ) -> SearchCriteria:
        """Validate the subject and build per-request criteria.

        Raises InputError when the subject cannot be searched.
        """
        subject = ensure_identity(subject)
        location = location or resolve(subject)
        if not location.city or not location.province:
            raise InputError(
                "Subject property needs a city and a province",
                detail={"city": subject.city, "province": subject.province},
            )
        if subject.price is None and subject.effective_area is None:
            raise InputError("Subject property needs a price or an area")

        transaction_type = options.transaction_type or subject.transaction_type
        # A sale price says nothing about rents (and vice versa)
        price = subject.price if transaction_type == subject.transaction_type else None

        return SearchCriteria(
            subject_id=subject.id,
            feed_source=subject.feed_source,
            reference=subject.reference,
            transaction_type=transaction_type,
            property_type=subject.property_type,
            street=location.street,
            urbanization=location.urbanization,
            suburb=location.suburb,
            city=location.city,
            province=location.province,
            coordinates=usable_coordinates(subject, self.config.geocode_min_confidence),
            bedrooms=subject.bedrooms,
            bathrooms=subject.bathrooms,
            price=price,
            area=subject.effective_area,
            limit=options.limit or self.config.default_result_limit,
            classification_override=options.classification_override,
        )

    # Search

    async def find_comparables(
        self,
        subject: PropertyRecord,
        options: Optional[SearchOptions] = None,
    ) -> ComparablesResult:
        options = options or SearchOptions()
        subject = ensure_identity(subject)
        location = resolve(subject)
        criteria = self.build_criteria(subject, options, location)

        with search_scope():
            return self._search(subject, location, criteria, options)

    def _search(
        self,
        subject: PropertyRecord,
        location: ResolvedLocation,
        criteria: SearchCriteria,
        options: SearchOptions,
    ) -> ComparablesResult:
        start = time.perf_counter()
        index = self.corpus.snapshot()

        cache_key = None
        if self.cache is not None and options.use_cache:
            cache_key = self.cache.make_key(criteria, index.version, self.store.version)
            cached = self.cache.get(cache_key)
            if cached is not None:
                logger.info("Comparables cache hit for %s", criteria.subject_id)
                return cached

        if options.classification_override is not None:
            classification = from_override(options.classification_override)
        else:
            classification = classify_subject(subject, self.config)
        strategy = strategy_for(classification, self.config)
        guard = SelfExclusionGuard(subject, location)

        passes = strategy.passes(criteria)
        outcome = PassOutcome(search_pass=passes[-1])
        for position, search_pass in enumerate(passes):
            outcome = self.run_pass(
                index, criteria, guard, search_pass, is_last=position == len(passes) - 1
            )
            logger.debug(
                "Pass %s found %d comparables", search_pass.name, len(outcome.matches),
                extra={"strategy": strategy.name, "pass_name": search_pass.name, "candidates": outcome.candidates},
            )
            if len(outcome.matches) >= criteria.limit:
                break

        result = self._assemble(criteria, classification, strategy.name, guard, outcome)

        if cache_key is not None:
            self.cache.put(cache_key, result)

        logger.info(
            "Found %d comparables for %s (%s/%s, tiers=%s)",
            len(result.results),
            result.subject_id,
            strategy.name,
            outcome.search_pass.name,
            ",".join(t.value for t in result.tiers_used) or "-",
            extra={
                "subject_id": result.subject_id,
                "strategy": strategy.name,
                "candidates": result.total_candidates,
                "index_version": index.version,
                "duration": round(time.perf_counter() - start, 4),
            },
        )
        return result

    def run_pass(
        self,
        index: PropertyIndex,
        criteria: SearchCriteria,
        guard: SelfExclusionGuard,
        search_pass: SearchPass,
        is_last: bool = True,
    ) -> PassOutcome:
        """Run the tier ladder once. Broad fallback only runs on the last pass."""
        selector = CandidateSelector(index, self.config)
        categories = categories_for(criteria.property_type, search_pass.allow_related_types, self.config)
        subject_location = location_of(criteria)
        outcome = PassOutcome(search_pass=search_pass)
        seen: set[tuple[str, str]] = set()

        def run_tier(tier: MatchTier, constraint: TierConstraint) -> bool:
            ids = selector.select(criteria, constraint, guard)
            outcome.candidates += len(ids)
            outcome.matches.extend(self._score_tier(index, criteria, ids, tier, seen))
            return len(outcome.matches) >= criteria.limit

        for match_tier, location_tier in _NAMED_TIERS:
            micro = subject_location.component(location_tier)
            if micro is None:
                continue
            if run_tier(match_tier, TierConstraint(categories, search_pass.tolerance, locations=(micro,))):
                return outcome

        urbanization = subject_location.component(LocationTier.URBANIZATION)
        if urbanization is not None:
            nearby = self._nearby_urbanizations(urbanization)
            if nearby:
                constraint = TierConstraint(
                    categories, search_pass.tolerance, locations=tuple(nearby), province_scope=True
                )
                if run_tier(MatchTier.NEARBY_URBANIZATION, constraint):
                    return outcome

        city_constraint = TierConstraint(categories, search_pass.tolerance, radius_km=search_pass.radius_km)
        if run_tier(MatchTier.CITY, city_constraint):
            return outcome

        if is_last and not outcome.matches:
            run_tier(
                MatchTier.BROAD_FALLBACK,
                TierConstraint(categories, self._broad_tolerance(search_pass.tolerance)),
            )
        return outcome

    def _score_tier(
        self,
        index: PropertyIndex,
        criteria: SearchCriteria,
        ids: Sequence[str],
        tier: MatchTier,
        seen: set[tuple[str, str]],
    ) -> list[ComparableMatch]:
        matches: list[ComparableMatch] = []
        for pid in ids:
            record = index.records[pid]
            if listing_key(record) in seen:
                continue
            breakdown = self.scorer.score(criteria, record, index.locations[pid])
            matches.append(
                ComparableMatch(
                    property=record,
                    score=breakdown.total,
                    matched_tier=tier,
                    distance_km=breakdown.distance_km,
                    breakdown=breakdown,
                )
            )
        matches.sort(key=lambda m: (m.score, m.property.id))
        # one match per listing, keeping its best-scoring version
        unique: list[ComparableMatch] = []
        for match in matches:
            key = listing_key(match.property)
            if key not in seen:
                seen.add(key)
                unique.append(match)
        return unique

    def _broad_tolerance(self, tolerance: NumericTolerance) -> NumericTolerance:
        return NumericTolerance(
            bedrooms=max(tolerance.bedrooms, self.config.broad_fallback_bedroom_tolerance),
            price=max(tolerance.price or 0.0, self.config.broad_fallback_price_tolerance),
            size=max(tolerance.size or 0.0, self.config.broad_fallback_size_tolerance),
        )

    def _nearby_urbanizations(self, urbanization: MicroLocation) -> list[MicroLocation]:
        try:
            return self.store.nearby_urbanizations(urbanization)
        except CollaboratorUnavailableError as e:
            logger.warning("Relationship store unavailable, using static nearby table: %s", e.message)
            return static_nearby(urbanization)

    def _assemble(
        self,
        criteria: SearchCriteria,
        classification: SubjectClass,
        strategy_name: str,
        guard: SelfExclusionGuard,
        outcome: PassOutcome,
    ) -> ComparablesResult:
        # Guard re-check, then precedence order: tier rank first, score within a tier
        matches = guard.filter(outcome.matches)
        matches.sort(key=lambda m: (m.matched_tier.rank, m.score, m.property.id))
        matches = matches[: criteria.limit]

        tiers_used: list[MatchTier] = []
        for match in matches:
            if match.matched_tier not in tiers_used:
                tiers_used.append(match.matched_tier)

        warnings: list[str] = []
        degraded = False
        if not matches:
            warnings.append("No comparable properties found")
        else:
            if tiers_used == [MatchTier.BROAD_FALLBACK]:
                degraded = True
                warnings.append("Comparables come only from the broad city-level fallback")
            if outcome.search_pass.degraded:
                degraded = True
                warnings.append(f"Comparables found only after relaxing criteria ({outcome.search_pass.name})")
            if len(matches) < criteria.limit:
                warnings.append(f"Only {len(matches)} of {criteria.limit} comparables found")

        return ComparablesResult(
            subject_id=criteria.subject_id,
            results=matches,
            tiers_used=tiers_used,
            strategy=strategy_name,
            classification=classification.kind,
            edge_case_reason=classification.reason,
            pass_name=outcome.search_pass.name,
            radius_km=outcome.search_pass.radius_km,
            degraded=degraded,
            confidence="reduced" if degraded else ("none" if not matches else "normal"),
            warnings=warnings,
            total_candidates=outcome.candidates,
        )

    # Learning feedback

    async def reinforce(self, subject: PropertyRecord, accepted: Sequence[PropertyRecord]) -> int:
        """Feed an accepted comparable set to the relationship store. Never raises."""
        try:
            written = await self.store.reinforce(subject, accepted)
        except Exception as e:
            logger.error("Reinforcement failed for %s: %s", subject.id, e, exc_info=True)
            return 0
        logger.info("Reinforced %d relationships from %d comparables", written, len(accepted))
        return written
