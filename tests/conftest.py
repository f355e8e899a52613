"""Test fixtures — async test client, test database, factories."""
from typing import AsyncGenerator

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.database import Base
from app.api.deps import (
    get_corpus,
    get_db,
    get_learning_store,
    get_search_service,
    verify_api_key,
)
from app.main import app
from app.schemas.property_schema import PropertyRecord
from app.services.cache_service import ResultCache
from app.services.comparable_service import ComparableSearchService
from app.services.corpus_service import PropertyCorpus
from app.services.learning_service import LocationRelationshipStore


TEST_DATABASE_URL = "sqlite+aiosqlite:///./test.db"

test_engine = create_async_engine(TEST_DATABASE_URL, echo=False)
test_session_factory = async_sessionmaker(
    test_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


@pytest_asyncio.fixture(scope="function")
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Create tables and yield a test database session."""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with test_session_factory() as session:
        yield session

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest_asyncio.fixture(scope="function")
async def search_service() -> ComparableSearchService:
    """Fresh in-memory corpus, learning store and cache."""
    return ComparableSearchService(PropertyCorpus(), LocationRelationshipStore(), ResultCache())


@pytest_asyncio.fixture(scope="function")
async def client(
    db_session: AsyncSession,
    search_service: ComparableSearchService,
) -> AsyncGenerator[AsyncClient, None]:
    """Yield an HTTP test client with the test DB and a fresh search core injected."""

    async def override_get_db():
        try:
            yield db_session
            await db_session.commit()
        except Exception:
            await db_session.rollback()
            raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_corpus] = lambda: search_service.corpus
    app.dependency_overrides[get_learning_store] = lambda: search_service.store
    app.dependency_overrides[get_search_service] = lambda: search_service
    app.dependency_overrides[verify_api_key] = lambda: "test-key"

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


def make_property_payload(**overrides) -> dict:
    """Create a valid property payload (a villa in Marbella)."""
    defaults = {
        "feed_source": "test-feed",
        "reference": "REF-1",
        "transaction_type": "sale",
        "property_type": "villa",
        "address": "Calle Sol 4, Urb. Los Naranjos, Marbella, Málaga",
        "city": "Marbella",
        "province": "Málaga",
        "urbanization": "Los Naranjos",
        "bedrooms": 4,
        "bathrooms": 3,
        "build_area": 300.0,
        "plot_area": 1000.0,
        "sale_price": 1_200_000.0,
        "features": ["pool", "garden"],
    }
    defaults.update(overrides)
    return defaults


def make_property(**overrides) -> PropertyRecord:
    """Create a PropertyRecord from make_property_payload defaults."""
    return PropertyRecord(**make_property_payload(**overrides))
