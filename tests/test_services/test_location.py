"""Tests for location service — normalization, address parsing, typed tiers."""
import pytest

from app.services.location_service import (
    LocationTier,
    MicroLocation,
    ResolvedLocation,
    haversine_km,
    normalize_location_name,
    parse_address,
    resolve,
    should_exclude_location,
    usable_coordinates,
)
from tests.conftest import make_property


class TestNormalizeLocationName:
    def test_folds_case_and_diacritics(self):
        assert normalize_location_name("Nueva Andalucía") == "nueva andalucia"
        assert normalize_location_name("nueva  ANDALUCIA") == "nueva andalucia"

    def test_punctuation_becomes_space(self):
        assert normalize_location_name("Puerto Banús!") == "puerto banus"
        assert normalize_location_name("Nagüeles-Sierra Blanca") == "nagueles sierra blanca"

    def test_empty_values(self):
        assert normalize_location_name(None) is None
        assert normalize_location_name("   ") is None


class TestParseAddress:
    def test_full_address(self):
        parsed = parse_address("Calle Sol 4, Urb. Los Naranjos, Marbella, Málaga")
        assert parsed["street"] == "Sol"
        assert parsed["urbanization"] == "Los Naranjos"
        assert parsed["city"] == "Marbella"
        assert parsed["province"] == "Málaga"

    def test_avenue_prefix(self):
        parsed = parse_address("Avda. Ricardo Soriano 12, Marbella, Málaga")
        assert parsed["street"] == "Ricardo Soriano"
        assert parsed["urbanization"] is None

    def test_postcode_is_stripped(self):
        parsed = parse_address("29660 Marbella, Málaga")
        assert parsed["city"] == "Marbella"
        assert parsed["province"] == "Málaga"

    def test_suburb_before_city(self):
        parsed = parse_address("Nueva Andalucía, Marbella, Málaga")
        assert parsed["suburb"] == "Nueva Andalucía"
        assert parsed["city"] == "Marbella"

    def test_single_component_is_city(self):
        parsed = parse_address("Estepona")
        assert parsed["city"] == "Estepona"
        assert parsed["province"] is None

    def test_empty(self):
        assert all(v is None for v in parse_address("").values())


class TestResolve:
    def test_record_fields_win_over_address(self):
        record = make_property(urbanization="La Zagaleta")
        location = resolve(record)
        assert location.urbanization == "la zagaleta"
        assert location.street == "sol"
        assert location.city == "marbella"
        assert location.province == "malaga"

    def test_address_fills_missing_fields(self):
        record = make_property(urbanization=None)
        assert resolve(record).urbanization == "los naranjos"

    def test_mapping_aliases(self):
        location = resolve({"urbanisation": "Sierra Blanca", "town": "Marbella", "region": "Málaga"})
        assert location.urbanization == "sierra blanca"
        assert location.city == "marbella"
        assert location.province == "malaga"

    def test_size_field_named_area_is_not_a_suburb(self):
        location = resolve({"city": "Marbella", "province": "Málaga", "area": 120})
        assert location.suburb is None
        assert location.city == "marbella"

    def test_neighbourhood_alias_is_a_suburb(self):
        location = resolve({"neighbourhood": "Nagüeles", "city": "Marbella", "province": "Málaga"})
        assert location.suburb == "nagueles"

    def test_address_string(self):
        location = resolve("Urbanización El Paraíso, Estepona, Málaga")
        assert location.urbanization == "el paraiso"
        assert location.city == "estepona"


class TestTypedComponents:
    def test_same_name_different_tier_never_equal(self):
        assert MicroLocation(LocationTier.STREET, "los naranjos") != MicroLocation(
            LocationTier.URBANIZATION, "los naranjos"
        )

    def test_component_returns_only_that_tier(self):
        location = ResolvedLocation(city="marbella", province="malaga", street="los naranjos")
        assert location.component(LocationTier.STREET) == MicroLocation(LocationTier.STREET, "los naranjos")
        assert location.component(LocationTier.URBANIZATION) is None

    def test_shares_is_tier_scoped(self):
        a = ResolvedLocation(city="marbella", province="malaga", street="los naranjos")
        b = ResolvedLocation(city="marbella", province="malaga", urbanization="los naranjos")
        assert not a.shares(b, LocationTier.STREET)
        assert not a.shares(b, LocationTier.URBANIZATION)
        assert a.shares(b, LocationTier.CITY)

    def test_specificity_order(self):
        assert LocationTier.STREET.specificity < LocationTier.URBANIZATION.specificity
        assert LocationTier.SUBURB.specificity < LocationTier.CITY.specificity


class TestUsableCoordinates:
    def test_missing(self):
        assert usable_coordinates(make_property(), 0.5) is None

    def test_below_confidence_floor(self):
        record = make_property(latitude=36.5, longitude=-4.9, coordinate_confidence=0.2)
        assert usable_coordinates(record, 0.5) is None

    def test_unknown_confidence_is_trusted(self):
        record = make_property(latitude=36.5, longitude=-4.9)
        assert usable_coordinates(record, 0.5) == (36.5, -4.9)


class TestHaversine:
    def test_same_point(self):
        assert haversine_km((36.51, -4.88), (36.51, -4.88)) == pytest.approx(0.0)

    def test_marbella_to_malaga(self):
        distance = haversine_km((36.5101, -4.8825), (36.7213, -4.4214))
        assert 40 < distance < 55


class TestShouldExcludeLocation:
    def _loc(self, suburb):
        return ResolvedLocation(city="marbella", province="malaga", suburb=suburb)

    def test_golden_mile_excludes_new_golden_mile(self):
        assert should_exclude_location(self._loc("golden mile"), self._loc("new golden mile"))

    def test_new_golden_mile_excludes_golden_mile(self):
        assert should_exclude_location(self._loc("new golden mile"), self._loc("golden mile"))
        assert should_exclude_location(self._loc("new golden mile"), self._loc("marbella golden mile"))

    def test_unrelated_areas_pass(self):
        assert not should_exclude_location(self._loc("golden mile"), self._loc("nagueles"))

    def test_same_area_passes(self):
        assert not should_exclude_location(self._loc("new golden mile"), self._loc("new golden mile"))
