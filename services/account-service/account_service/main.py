"""FastAPI application wiring for the account service."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import httpx
import redis.asyncio as redis
from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from psycopg_pool import AsyncConnectionPool

from .api.errors import register_error_handlers
from .api.routes import router as v1_router
from .config import get_settings
from .domain.background import DetachedTasks
from .domain.federation import FederationService
from .domain.service import AccountService
from .mail import ActivationMailer
from .providers.qq import QQConnectClient
from .repository import AccountRepository
from .security.sessions import SessionIssuer

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialise shared resources (Postgres pool, Redis, HTTP client, services) for the app lifecycle."""
    pool = AsyncConnectionPool(settings.database_url, open=False)
    await pool.open()
    redis_client = redis.from_url(settings.redis_url, decode_responses=True)
    http_client = httpx.AsyncClient(timeout=settings.provider_timeout_seconds)
    background = DetachedTasks()

    repository = AccountRepository(pool)
    sessions = SessionIssuer(redis_client, ttl_seconds=settings.session_ttl_seconds)
    mailer = ActivationMailer(
        api_key=settings.resend_api_key,
        from_email=settings.mail_from,
        public_base_url=settings.public_base_url,
    )
    provider = QQConnectClient(
        http_client,
        app_id=settings.qq_app_id,
        app_key=settings.qq_app_key,
        redirect_uri=settings.qq_redirect_uri,
    )

    app.state.pool = pool
    app.state.session_issuer = sessions
    app.state.account_service = AccountService(repository, sessions, mailer, background)
    app.state.federation_service = FederationService(repository, provider, sessions)
    logger.info("%s %s started", settings.app_name, settings.version)
    try:
        yield
    finally:
        if background.pending:
            logger.info("waiting for %d background tasks", background.pending)
        await background.drain()
        await http_client.aclose()
        await redis_client.aclose()
        await pool.close()


app = FastAPI(title=settings.app_name, version=settings.version, lifespan=lifespan)

# CORS for local frontend dev
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://127.0.0.1:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    max_age=600,
)

register_error_handlers(app)


@app.get("/healthz", tags=["health"])
def healthz() -> dict[str, str]:
    """Return a minimal readiness indicator used by orchestration systems."""
    return {"status": "ok"}


app.include_router(v1_router)


@app.get("/metrics")
def metrics() -> Response:
    """Expose Prometheus counters in the text exposition format."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
