"""Tests for identity service — stable derived property identities."""
from datetime import datetime, timedelta, timezone

import pytest

from app.core.exceptions import IdentityError, InputError
from app.schemas.property_schema import PropertyRecord
from app.services.identity_service import derive_property_identity, ensure_identity, listing_key
from tests.conftest import make_property


class TestDerivePropertyIdentity:
    def test_idempotent(self):
        record = make_property()
        assert derive_property_identity(record) == derive_property_identity(record)

    def test_format_with_reference(self):
        identity = derive_property_identity(make_property(feed_source="kyero", reference="R-77"))
        prefix, _, digest = identity.rpartition("-")
        assert prefix == "kyero-R-77"
        assert len(digest) == 12

    def test_format_without_reference(self):
        identity = derive_property_identity(make_property(feed_source="kyero", reference=None))
        assert identity.startswith("kyero-")
        assert len(identity) == len("kyero-") + 12

    def test_volatile_fields_do_not_change_identity(self):
        record = make_property()
        later = record.model_copy(
            update={
                "updated_at": datetime.now(timezone.utc) + timedelta(days=3),
                "features": {"sea-views"},
                "latitude": 36.5,
                "longitude": -4.9,
                "coordinate_confidence": 0.9,
            }
        )
        assert derive_property_identity(record) == derive_property_identity(later)

    def test_case_and_accents_do_not_change_identity(self):
        a = make_property(city="Málaga", province="Málaga")
        b = make_property(city="MALAGA", province="malaga")
        assert derive_property_identity(a) == derive_property_identity(b)

    def test_identity_bearing_fields_change_identity(self):
        record = make_property()
        assert derive_property_identity(record) != derive_property_identity(
            make_property(sale_price=1_250_000.0)
        )
        assert derive_property_identity(record) != derive_property_identity(make_property(bedrooms=5))
        assert derive_property_identity(record) != derive_property_identity(make_property(build_area=310.0))

    def test_no_identity_bearing_data_raises(self):
        record = PropertyRecord(property_type="villa", feed_source="manual")
        with pytest.raises(IdentityError):
            derive_property_identity(record)

    def test_identity_error_is_input_error(self):
        assert issubclass(IdentityError, InputError)


class TestEnsureIdentity:
    def test_keeps_existing_id(self):
        record = make_property(id="fixed-id")
        assert ensure_identity(record).id == "fixed-id"

    def test_derives_missing_id(self):
        record = make_property()
        assert record.id is None
        assert ensure_identity(record).id == derive_property_identity(record)


class TestListingKey:
    def test_survives_price_refresh(self):
        old = ensure_identity(make_property(sale_price=1_000_000.0))
        new = ensure_identity(make_property(sale_price=1_050_000.0))
        assert old.id != new.id
        assert listing_key(old) == listing_key(new) == ("test-feed", "REF-1")

    def test_without_reference_uses_derived_id(self):
        record = make_property(reference=None)
        assert listing_key(record) == ("test-feed", derive_property_identity(record))
