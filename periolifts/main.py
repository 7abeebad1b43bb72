import logging
import uuid

import httpx
from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from periolifts.config import settings
from periolifts.core import exceptions
from periolifts.core.exceptions import AppError
from periolifts.database import build_engine, build_session_factory, init_cache_db
from periolifts.routers.analytics import router as analytics_router
from periolifts.routers.history import router as history_router
from periolifts.services.offline_cache import OfflineCache
from periolifts.services.record_store import PocketBaseClient

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    openapi_url=f"{settings.API_V1_STR}/openapi.json"
)
app.state.http_client = None
app.state.offline_cache = None
app.state.cache_engine = None

# CORS must be added before other middleware
configured_origins = [str(origin).rstrip("/") for origin in settings.BACKEND_CORS_ORIGINS]
default_origins = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
    "http://localhost:8000",
    "http://127.0.0.1:8000",
]
allow_origins = configured_origins if settings.APP_ENV == "production" else list(dict.fromkeys([*default_origins, *configured_origins]))

app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def attach_request_id(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response

# Exception Handlers
app.add_exception_handler(RequestValidationError, exceptions.validation_exception_handler)  # type: ignore
app.add_exception_handler(AppError, exceptions.app_error_exception_handler)  # type: ignore
app.add_exception_handler(Exception, exceptions.unhandled_exception_handler)

# Routers
app.include_router(history_router, prefix=f"{settings.API_V1_STR}/history", tags=["History"])
app.include_router(analytics_router, prefix=f"{settings.API_V1_STR}/analytics", tags=["Analytics"])


@app.get("/health")
async def health_check():
    return {"status": "ok"}


@app.get("/healthz")
async def healthz():
    client = PocketBaseClient(app.state.http_client, retry_attempts=0)
    try:
        await client.health()
    except AppError as exc:
        logger.warning("Health check failed: %s", exc.message)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="record store unavailable",
        ) from exc
    return {"status": "ok", "record_store": "ok"}


@app.on_event("startup")
async def startup() -> None:
    if app.state.http_client is None:
        app.state.http_client = httpx.AsyncClient(
            base_url=settings.POCKETBASE_URL,
            timeout=settings.POCKETBASE_TIMEOUT_SECONDS,
        )
    if settings.OFFLINE_CACHE_ENABLED and app.state.offline_cache is None:
        engine = build_engine(settings.OFFLINE_CACHE_URL)
        await init_cache_db(engine)
        app.state.cache_engine = engine
        app.state.offline_cache = OfflineCache(
            build_session_factory(engine), query_limit=settings.OFFLINE_QUERY_CACHE_LIMIT
        )
        logger.info("Offline cache enabled at %s", settings.OFFLINE_CACHE_URL)
    logger.info("%s started against %s", settings.PROJECT_NAME, settings.POCKETBASE_URL)


@app.on_event("shutdown")
async def shutdown() -> None:
    if app.state.http_client is not None:
        await app.state.http_client.aclose()
        app.state.http_client = None
    if app.state.cache_engine is not None:
        await app.state.cache_engine.dispose()
        app.state.cache_engine = None
        app.state.offline_cache = None
