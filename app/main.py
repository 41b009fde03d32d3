import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.core.config import settings
from app.core.exceptions import LedgerError
from app.core.logging import configure_logging
from app.db.mongo import connect_to_mongo, close_mongo_connection, mongodb
from app.api.v1.api import api_router
from app.repositories.exchange_rate_repo import ExchangeRateRepository
from app.services.currency_service import CurrencyService, HttpRateProvider, StaticRateProvider
from app.services.rate_cache import MemoryRateCache, RateCache

configure_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


def build_currency_service(db) -> CurrencyService:
    """One service per process; its in-memory rate tier lives as long as the app."""
    if settings.RATE_PROVIDER == "http":
        provider = HttpRateProvider(
            settings.RATE_API_URL, settings.RATE_API_KEY, settings.RATE_FETCH_TIMEOUT_SECONDS
        )
    else:
        provider = StaticRateProvider()
    cache = RateCache(
        ExchangeRateRepository(db),
        MemoryRateCache(settings.RATE_CACHE_MAX_ENTRIES),
        settings.RATE_CACHE_TTL_SECONDS,
    )
    return CurrencyService(cache, provider, settings.RATE_FETCH_TIMEOUT_SECONDS)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await connect_to_mongo()
    app.state.currency_service = build_currency_service(mongodb.db)
    logger.info("Using %s exchange-rate provider", settings.RATE_PROVIDER)
    yield
    await close_mongo_connection()


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.PROJECT_VERSION,
    description=settings.DESCRIPTION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError):
    if exc.status_code >= 500:
        logger.error("%s on %s: %s", type(exc).__name__, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error": type(exc).__name__},
    )


@app.get("/")
async def root():
    return {"message": f"Welcome to {settings.PROJECT_NAME}"}

app.include_router(api_router, prefix=settings.API_V1_STR)
