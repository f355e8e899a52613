"""API dependencies — database session, authentication, and the search core.

Autenticação por API key: header X-API-Key obrigatório em todos os endpoints
(exceto /health e /docs). A key é configurada via API_KEY no .env.

O corpus, o learning store e a cache de resultados são partilhados pelo
processo inteiro: criados uma vez aqui e carregados no lifespan do main.py.
Nos testes são substituídos via app.dependency_overrides.
"""
import secrets
from typing import AsyncGenerator, Annotated, Optional

from fastapi import Depends, HTTPException, Security, status
from fastapi.security import APIKeyHeader
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.exceptions import CollaboratorUnavailableError
from app.database import async_session_factory
from app.services.cache_service import ResultCache
from app.services.comparable_service import ComparableSearchService
from app.services.corpus_service import PropertyCorpus
from app.services.geocoding_service import Geocoder
from app.services.learning_service import LocationRelationshipStore, RelationshipRepository


# ---------------------------------------------------------------------------
# Database session dependency
# ---------------------------------------------------------------------------

async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session for request scope."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


# ---------------------------------------------------------------------------
# Search core (process-wide)
# ---------------------------------------------------------------------------

corpus = PropertyCorpus()
learning_store = LocationRelationshipStore(repository=RelationshipRepository())
result_cache = ResultCache()
search_service = ComparableSearchService(corpus, learning_store, result_cache)


def get_corpus() -> PropertyCorpus:
    return corpus


def get_learning_store() -> LocationRelationshipStore:
    return learning_store


def get_search_service() -> ComparableSearchService:
    return search_service


# Geocoder do backfill: nenhum por omissão, o deployment atribui um cliente aqui
geocoder: Optional[Geocoder] = None


def get_geocoder() -> Geocoder:
    if geocoder is None:
        raise CollaboratorUnavailableError("No geocoder configured for coordinate backfill")
    return geocoder


# ---------------------------------------------------------------------------
# API Key authentication
# ---------------------------------------------------------------------------

_api_key_header = APIKeyHeader(
    name="X-API-Key",
    auto_error=False,  # False para retornar 401 customizado em vez de 403
    description="API key de autenticação. Configurada via API_KEY no .env",
)


async def verify_api_key(
    api_key: Annotated[str | None, Security(_api_key_header)],
) -> str:
    """Valida o header X-API-Key com comparação constant-time.

    Raises:
        HTTPException 401: se a key estiver ausente ou incorreta.
        HTTPException 500: se API_KEY não estiver configurada no servidor.
    """
    if not settings.api_key:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Servidor não configurado corretamente (API_KEY em falta).",
        )

    if not api_key or not secrets.compare_digest(api_key, settings.api_key):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="API key inválida ou ausente. Usa o header X-API-Key.",
            headers={"WWW-Authenticate": "ApiKey"},
        )

    return api_key


# Shorthand para usar como dependency nos routers
RequireApiKey = Depends(verify_api_key)
