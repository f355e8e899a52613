"""FastAPI application factory and startup configuration.

Autenticação aplicada via router dependencies (`dependencies=[RequireApiKey]`
em cada router) para manter /health e /docs públicos.

STARTUP:
  - Corpus carregado da tabela `properties` e indexado em memória
  - Learning store carregado das tabelas de relações
  - Falhas de storage no arranque ficam em log: o serviço arranca com corpus
    vazio / learning store frio em vez de não arrancar
"""
from contextlib import asynccontextmanager
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from app.config import settings
from app.core.exceptions import (
    CollaboratorUnavailableError,
    InputError,
    NotFoundError,
)
from app.core.logging import setup_logging, get_logger
from app.api.v1.comparables import router as comparables_router
from app.api.v1.properties import router as properties_router
from app.api.v1.learning import router as learning_router
from app.api.deps import RequireApiKey, corpus, learning_store
from app.api.responses import error, ok
from app.database import async_session_factory
from app.services.corpus_service import PropertyRepository

logger = get_logger(__name__)


async def load_corpus() -> None:
    """Load every stored property into the in-memory index."""
    try:
        async with async_session_factory() as session:
            records = await PropertyRepository(session).load_all()
    except SQLAlchemyError as e:
        logger.warning("Corpus not loaded, starting empty: %s", str(e))
        return
    await corpus.rebuild(records)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan — startup and shutdown events."""
    setup_logging()
    logger.info("Starting %s v%s", settings.app_name, settings.app_version)

    if not settings.api_key:
        logger.warning(
            "API_KEY não configurada — endpoints desprotegidos. "
            "Define API_KEY no .env antes de ir a produção."
        )

    await load_corpus()
    await learning_store.load()

    yield

    logger.info("Shutting down %s", settings.app_name)


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Comparable property retrieval and ranking API — tiered search, scoring and location learning.",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @application.middleware("http")
    async def add_trace_id(request: Request, call_next):
        request.state.trace_id = str(uuid4())
        response = await call_next(request)
        response.headers["X-Trace-Id"] = request.state.trace_id
        return response

    @application.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        trace_id = getattr(request.state, "trace_id", None)
        logger.exception("Unhandled exception [trace_id=%s]", trace_id, exc_info=exc)
        return error(500, "Erro interno", request, errors=["Internal server error"])

    @application.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError):
        return error(404, str(exc), request)

    @application.exception_handler(InputError)
    async def input_error_handler(request: Request, exc: InputError):
        return error(422, str(exc), request, errors=[str(exc), exc.detail] if exc.detail else None)

    @application.exception_handler(CollaboratorUnavailableError)
    async def collaborator_handler(request: Request, exc: CollaboratorUnavailableError):
        logger.warning("Collaborator unavailable: %s", exc.message)
        return error(503, str(exc), request)

    # /health fica público: necessário para Docker healthchecks e monitorização.
    _auth = [RequireApiKey]

    application.include_router(comparables_router, prefix="/api/v1/comparables", tags=["comparables"], dependencies=_auth)
    application.include_router(properties_router, prefix="/api/v1/properties", tags=["properties"], dependencies=_auth)
    application.include_router(learning_router, prefix="/api/v1/learning", tags=["learning"], dependencies=_auth)

    @application.get("/health", tags=["system"])
    async def health_check(request: Request):
        from sqlalchemy import text

        db_status = "ok"
        try:
            async with async_session_factory() as session:
                await session.execute(text("SELECT 1"))
        except Exception as e:
            db_status = f"error: {str(e)}"

        index = corpus.snapshot()
        return ok(
            {
                "status": "healthy" if db_status == "ok" else "unhealthy",
                "version": settings.app_version,
                "database": db_status,
                "corpus_size": corpus.size,
                "searchable": len(index),
                "index_version": index.version,
                "relationships": len(learning_store),
            },
            "Health check completed",
            request,
        )

    return application


app = create_app()
