"""Tests for candidate selector — postings intersection, windows, radius, cap."""
from app.config import AreaToleranceRule, settings
from app.schemas.search_schema import SearchOptions
from app.services.candidate_service import CandidateSelector, TierConstraint
from app.services.comparable_service import ComparableSearchService
from app.services.corpus_service import PropertyCorpus, PropertyIndex
from app.services.guard_service import SelfExclusionGuard
from app.services.identity_service import ensure_identity
from app.services.learning_service import LocationRelationshipStore
from app.services.location_service import LocationTier, MicroLocation
from app.services.tolerance_service import NumericTolerance
from tests.conftest import make_property

STRICT = NumericTolerance(bedrooms=2)


def _villa(ref, **overrides):
    defaults = {"reference": ref, "address": None}
    defaults.update(overrides)
    return ensure_identity(make_property(**defaults))


def _criteria(subject, **options):
    service = ComparableSearchService(PropertyCorpus(), LocationRelationshipStore())
    return service.build_criteria(ensure_identity(subject), SearchOptions(**options))


def _select(records, subject, constraint=None, guard=None, config=settings, **options):
    index = PropertyIndex.build(records, version=1)
    constraint = constraint or TierConstraint(frozenset({subject.property_type}), STRICT)
    return CandidateSelector(index, config).select(_criteria(subject, **options), constraint, guard)


class TestPostings:
    def test_same_city_type_and_transaction_only(self):
        records = [
            _villa("A"),
            _villa("B", city="Estepona"),
            _villa("C", property_type="apartment"),
            _villa("D", transaction_type="long_term_rental", sale_price=None, rental_price=5_000.0),
        ]
        subject = _villa("S")
        assert _select(records, subject) == [records[0].id]

    def test_ids_are_sorted(self):
        records = [_villa(ref) for ref in ("Z", "M", "A")]
        ids = _select(records, _villa("S"))
        assert ids == sorted(ids)
        assert len(ids) == 3

    def test_subject_never_selected(self):
        subject = _villa("S")
        records = [subject, _villa("A")]
        assert subject.id not in _select(records, subject)

    def test_guard_rejects_same_feed_reference(self):
        subject = _villa("S")
        relisted = _villa("S", sale_price=1_190_000.0)
        assert relisted.id != subject.id
        ids = _select([relisted], subject, guard=SelfExclusionGuard(subject))
        assert ids == []

    def test_location_postings(self):
        inside = _villa("A", urbanization="Los Naranjos")
        outside = _villa("B", urbanization="La Zagaleta")
        constraint = TierConstraint(
            frozenset({"villa"}), STRICT,
            locations=(MicroLocation(LocationTier.URBANIZATION, "los naranjos"),),
        )
        assert _select([inside, outside], _villa("S"), constraint) == [inside.id]

    def test_street_name_never_matches_urbanization_postings(self):
        street_only = _villa("A", urbanization=None, street="Los Naranjos")
        constraint = TierConstraint(
            frozenset({"villa"}), STRICT,
            locations=(MicroLocation(LocationTier.URBANIZATION, "los naranjos"),),
        )
        assert _select([street_only], _villa("S"), constraint) == []


class TestToleranceWindows:
    def test_bedroom_window(self):
        records = [_villa("A", bedrooms=6), _villa("B", bedrooms=7)]
        assert _select(records, _villa("S")) == [records[0].id]

    def test_price_window(self):
        # 1.2M sale → [240k, 2.16M]
        records = [_villa("A", sale_price=2_100_000.0), _villa("B", sale_price=2_200_000.0)]
        assert _select(records, _villa("S")) == [records[0].id]

    def test_area_window(self):
        # villa 300 m² → [180, 420]
        records = [_villa("A", build_area=400.0), _villa("B", build_area=430.0)]
        assert _select(records, _villa("S")) == [records[0].id]

    def test_missing_subject_price_skips_price_window(self):
        records = [_villa("A", sale_price=9_000_000.0)]
        assert _select(records, _villa("S", sale_price=None)) == [records[0].id]

    def test_area_rules_come_from_selector_config(self):
        config = settings.model_copy(
            update={"area_tolerance_rules": [AreaToleranceRule(lower=0.99, upper=1.01)]}
        )
        records = [_villa("A", build_area=300.0), _villa("B", build_area=400.0)]
        assert _select(records, _villa("S"), config=config) == [records[0].id]

    def test_price_windows_come_from_selector_config(self):
        config = settings.model_copy(
            update={
                "high_value_sale_price": 5_000_000,
                "price_window_tolerances": {"sale": 0.1, "long_term_rental": 0.4, "short_term_rental": 0.6},
            }
        )
        # 1.2M sale → [1.08M, 1.32M]
        records = [_villa("A", sale_price=1_300_000.0), _villa("B", sale_price=1_400_000.0)]
        assert _select(records, _villa("S"), config=config) == [records[0].id]


class TestRadius:
    def test_geodesic_radius(self):
        near = _villa("A", urbanization="Other", latitude=36.518, longitude=-4.9)
        far = _villa("B", urbanization="Other", latitude=36.60, longitude=-4.9)
        subject = _villa("S", urbanization=None, latitude=36.50, longitude=-4.9)
        constraint = TierConstraint(frozenset({"villa"}), STRICT, radius_km=3)
        assert _select([near, far], subject, constraint) == [near.id]

    def test_candidate_without_coordinates_needs_named_match(self):
        named = _villa("A")
        unnamed = _villa("B", urbanization="Elsewhere")
        subject = _villa("S", latitude=36.50, longitude=-4.9)
        constraint = TierConstraint(frozenset({"villa"}), STRICT, radius_km=3)
        assert _select([named, unnamed], subject, constraint) == [named.id]


class TestCap:
    def test_never_more_than_cap(self):
        records = [_villa(f"R{i:03d}") for i in range(30)]
        capped = settings.model_copy(update={"candidate_cap": 10})
        ids = _select(records, _villa("S"), config=capped)
        assert len(ids) == 10
        assert ids == sorted(r.id for r in records)[:10]
