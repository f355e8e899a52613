"""Tests for corpus service — index snapshot, atomic rebuild, repository."""
import asyncio

import pytest

from app.core.exceptions import NotFoundError
from app.schemas.property_schema import TransactionType
from app.services.corpus_service import PropertyCorpus, PropertyIndex, PropertyRepository
from app.services.identity_service import ensure_identity
from app.services.location_service import LocationTier, MicroLocation
from tests.conftest import make_property


class TestPropertyIndex:
    def test_postings(self):
        villa = ensure_identity(make_property())
        flat = ensure_identity(make_property(reference="REF-2", property_type="apartment", city="Estepona"))
        index = PropertyIndex.build([villa, flat], version=1)

        assert index.city_ids("marbella") == {villa.id}
        assert index.province_ids("malaga") == {villa.id, flat.id}
        assert index.type_ids(["villa", "apartment"]) == {villa.id, flat.id}
        assert index.transaction_ids(TransactionType.SALE) == {villa.id, flat.id}
        assert villa.id in index.location_ids(MicroLocation(LocationTier.URBANIZATION, "los naranjos"))

    def test_unsearchable_records_are_excluded(self):
        records = [
            make_property(),
            make_property(reference="NO-PRICE", sale_price=None),
            make_property(reference="NO-AREA", build_area=None, plot_area=None),
            make_property(reference="NO-CITY", address=None, city=None),
        ]
        index = PropertyIndex.build(records, version=1)
        assert len(index) == 1
        assert index.excluded == 3

    def test_unknown_keys_return_empty(self):
        index = PropertyIndex.build([], version=0)
        assert index.city_ids("nowhere") == frozenset()
        assert index.city_ids(None) == frozenset()


class TestPropertyCorpus:
    @pytest.mark.asyncio
    async def test_upsert_bumps_version_and_keeps_old_snapshot(self):
        corpus = PropertyCorpus([make_property()])
        before = corpus.snapshot()

        await corpus.upsert([make_property(reference="REF-2")])

        after = corpus.snapshot()
        assert after.version == before.version + 1
        assert len(before) == 1
        assert len(after) == 2

    @pytest.mark.asyncio
    async def test_rebuild_replaces_records(self):
        corpus = PropertyCorpus([make_property(), make_property(reference="REF-2")])
        await corpus.rebuild([make_property(reference="REF-3")])
        assert corpus.size == 1
        assert [r.reference for r in corpus.snapshot().records.values()] == ["REF-3"]

    @pytest.mark.asyncio
    async def test_price_refresh_replaces_listing(self):
        corpus = PropertyCorpus([make_property(reference="OTHER", sale_price=1_000_000.0)])
        await corpus.upsert([make_property(reference="OTHER", sale_price=1_050_000.0)])
        assert corpus.size == 1
        [record] = corpus.snapshot().records.values()
        assert record.sale_price == 1_050_000.0
        assert len(corpus.snapshot()) == 1

    def test_initial_records_hold_one_version_per_listing(self):
        corpus = PropertyCorpus(
            [
                make_property(sale_price=1_000_000.0),
                make_property(sale_price=1_100_000.0),
                make_property(reference="REF-2"),
            ]
        )
        assert corpus.size == 2

    @pytest.mark.asyncio
    async def test_unsearchable_records_kept_in_corpus(self):
        corpus = PropertyCorpus()
        await corpus.upsert([make_property(sale_price=None)])
        assert corpus.size == 1
        assert len(corpus.snapshot()) == 0

    @pytest.mark.asyncio
    async def test_listeners_notified(self):
        corpus = PropertyCorpus()
        seen = []
        corpus.on_rebuild(lambda index: seen.append(index.version))
        await corpus.upsert([make_property()])
        await corpus.rebuild()
        assert seen == [1, 2]

    @pytest.mark.asyncio
    async def test_concurrent_upserts_are_serialized(self):
        corpus = PropertyCorpus()
        await asyncio.gather(*(corpus.upsert([make_property(reference=f"R{i}")]) for i in range(10)))
        assert corpus.size == 10
        assert corpus.snapshot().version == 10
        assert len(corpus.snapshot()) == 10


class TestPropertyRepository:
    @pytest.mark.asyncio
    async def test_upsert_and_load(self, db_session):
        repo = PropertyRepository(db_session)
        stored = await repo.upsert([make_property(), make_property(reference="REF-2")])
        await db_session.commit()

        loaded = await repo.load_all()
        assert {r.id for r in loaded} == {r.id for r in stored}
        assert loaded[0].features == {"pool", "garden"}

    @pytest.mark.asyncio
    async def test_upsert_same_identity_updates(self, db_session):
        repo = PropertyRepository(db_session)
        [first] = await repo.upsert([make_property()])
        # Coordinates are not identity-bearing
        await repo.upsert([make_property(latitude=36.5, longitude=-4.9)])
        await db_session.commit()

        record = await repo.get(first.id)
        assert record.latitude == 36.5
        assert len(await repo.load_all()) == 1

    @pytest.mark.asyncio
    async def test_price_refresh_replaces_stored_row(self, db_session):
        repo = PropertyRepository(db_session)
        [old] = await repo.upsert([make_property(sale_price=1_000_000.0)])
        await db_session.commit()
        [new] = await repo.upsert([make_property(sale_price=1_050_000.0)])
        await db_session.commit()

        assert new.id != old.id
        loaded = await repo.load_all()
        assert [r.id for r in loaded] == [new.id]
        assert loaded[0].sale_price == 1_050_000.0

    @pytest.mark.asyncio
    async def test_get_missing(self, db_session):
        with pytest.raises(NotFoundError):
            await PropertyRepository(db_session).get("nope")

    @pytest.mark.asyncio
    async def test_list_page_filters(self, db_session):
        repo = PropertyRepository(db_session)
        await repo.upsert(
            [
                make_property(),
                make_property(reference="REF-2", property_type="apartment"),
                make_property(reference="REF-3", city="Estepona"),
            ]
        )
        await db_session.commit()

        items, total = await repo.list_page(city="marbella")
        assert total == 2
        items, total = await repo.list_page(property_type="apartment")
        assert total == 1
        assert items[0].reference == "REF-2"
        items, total = await repo.list_page(page=2, page_size=2)
        assert total == 3
        assert len(items) == 1
