"""Tests for Properties API endpoints."""
import pytest
from httpx import AsyncClient

from app.api.deps import get_geocoder
from app.main import app
from app.services.geocoding_service import GeocodeResult
from tests.conftest import make_property_payload


class FakeGeocoder:
    def __init__(self):
        self.queries = []

    async def resolve(self, text):
        self.queries.append(text)
        return GeocodeResult(lat=36.5, lng=-4.9, confidence=0.9)


@pytest.mark.asyncio
async def test_list_properties_empty(client: AsyncClient):
    """GET /api/v1/properties returns an empty page initially."""
    response = await client.get("/api/v1/properties")
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["data"] == []
    assert body["meta"]["total"] == 0
    assert body["meta"]["page"] == 1
    assert body["meta"]["index_version"] == 0


@pytest.mark.asyncio
async def test_upsert_and_get_property(client: AsyncClient):
    """POST + GET /api/v1/properties stores a property under its derived identity."""
    resp = await client.post("/api/v1/properties", json={"properties": [make_property_payload()]})
    assert resp.status_code == 201
    data = resp.json()["data"]
    assert data["records"] == 1
    assert data["searchable"] == 1
    [property_id] = data["ids"]
    assert property_id.startswith("test-feed-REF-1-")

    get_resp = await client.get(f"/api/v1/properties/{property_id}")
    assert get_resp.status_code == 200
    assert get_resp.json()["data"]["urbanization"] == "Los Naranjos"


@pytest.mark.asyncio
async def test_upsert_is_idempotent(client: AsyncClient):
    """Re-posting the same listing keeps one record."""
    payload = {"properties": [make_property_payload()]}
    first = await client.post("/api/v1/properties", json=payload)
    second = await client.post("/api/v1/properties", json=payload)
    assert first.json()["data"]["ids"] == second.json()["data"]["ids"]
    assert second.json()["data"]["records"] == 1
    assert second.json()["data"]["index_version"] > first.json()["data"]["index_version"]


@pytest.mark.asyncio
async def test_price_refresh_keeps_one_listing(client: AsyncClient, search_service):
    """Re-posting a listing with a new price replaces the stored and indexed version."""
    first = await client.post("/api/v1/properties", json={"properties": [make_property_payload()]})
    refreshed = make_property_payload(sale_price=1_250_000.0)
    second = await client.post("/api/v1/properties", json={"properties": [refreshed]})
    [old_id] = first.json()["data"]["ids"]
    [new_id] = second.json()["data"]["ids"]
    assert new_id != old_id
    assert second.json()["data"]["records"] == 1

    listing = await client.get("/api/v1/properties")
    assert listing.json()["meta"]["total"] == 1
    assert (await client.get(f"/api/v1/properties/{old_id}")).status_code == 404
    assert search_service.corpus.get(new_id).sale_price == 1_250_000.0


@pytest.mark.asyncio
async def test_unsearchable_property_is_stored_but_not_indexed(client: AsyncClient):
    """A record without a price stays in storage and out of the index."""
    payload = make_property_payload(sale_price=None)
    resp = await client.post("/api/v1/properties", json={"properties": [payload]})
    assert resp.status_code == 201
    data = resp.json()["data"]
    assert data["searchable"] == 0
    assert data["excluded"] == 1


@pytest.mark.asyncio
async def test_get_property_not_found(client: AsyncClient):
    """GET /api/v1/properties/{id} returns 404 for an unknown id."""
    response = await client.get("/api/v1/properties/nope")
    assert response.status_code == 404
    assert response.json()["success"] is False


@pytest.mark.asyncio
async def test_invalid_property_rejected(client: AsyncClient):
    """A sale listing carrying a rental price fails validation."""
    payload = make_property_payload(rental_price=5_000.0)
    resp = await client.post("/api/v1/properties", json={"properties": [payload]})
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_list_properties_with_filters(client: AsyncClient):
    """GET /api/v1/properties filters by type and paginates."""
    payload = {
        "properties": [
            make_property_payload(),
            make_property_payload(reference="REF-2", property_type="apartment"),
            make_property_payload(reference="REF-3", property_type="apartment"),
        ]
    }
    await client.post("/api/v1/properties", json=payload)

    resp = await client.get("/api/v1/properties", params={"property_type": "apartment", "page_size": 1})
    body = resp.json()
    assert body["meta"]["total"] == 2
    assert body["meta"]["pages"] == 2
    assert len(body["data"]) == 1


@pytest.mark.asyncio
async def test_reindex_reloads_from_database(client: AsyncClient, search_service):
    """POST /api/v1/properties/reindex rebuilds the index from storage."""
    await client.post("/api/v1/properties", json={"properties": [make_property_payload()]})
    await search_service.corpus.rebuild([])
    assert search_service.corpus.size == 0

    resp = await client.post("/api/v1/properties/reindex")
    assert resp.status_code == 200
    assert resp.json()["data"]["searchable"] == 1
    assert search_service.corpus.size == 1


@pytest.mark.asyncio
async def test_backfill_geocodes_and_reindexes(client: AsyncClient, search_service):
    """POST /api/v1/properties/backfill stores coordinates and rebuilds the index."""
    resp = await client.post("/api/v1/properties", json={"properties": [make_property_payload()]})
    [property_id] = resp.json()["data"]["ids"]
    geocoder = FakeGeocoder()
    app.dependency_overrides[get_geocoder] = lambda: geocoder

    resp = await client.post("/api/v1/properties/backfill")
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["pending"] == 1
    assert data["geocoded"] == 1
    assert geocoder.queries == ["Calle Sol 4, Urb. Los Naranjos, Marbella, Málaga"]
    assert search_service.corpus.get(property_id).latitude == 36.5

    stored = await client.get(f"/api/v1/properties/{property_id}")
    assert stored.json()["data"]["longitude"] == -4.9

    again = await client.post("/api/v1/properties/backfill")
    assert again.json()["data"]["pending"] == 0
    assert len(geocoder.queries) == 1


@pytest.mark.asyncio
async def test_backfill_without_geocoder(client: AsyncClient):
    """Backfill without a configured geocoder is a 503."""
    resp = await client.post("/api/v1/properties/backfill")
    assert resp.status_code == 503
    assert resp.json()["success"] is False
