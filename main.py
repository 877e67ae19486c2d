# main.py: builds the app, wires adapters, mounts routers and exposes health

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from adapters.db import DocumentStore, InMemoryDocumentStore, SupabaseDocumentStore
from adapters.identity import IdentityOracle, InMemoryIdentityOracle
from adapters.identity_client import ClerkIdentityOracle
from api.admin.roles import router as admin_router
from api.auth import router as auth_router
from api.middleware.roles import RouteGuardMiddleware
from app.settings import Settings, get_settings
from core.rbac.routes import PROTECTED_ROUTES, PUBLIC_ROUTE_PATTERNS, warn_on_shadowed_rules
from core.rbac.session import SessionResolver

logger = logging.getLogger(__name__)

HEALTH_PATH = "/health"


def _build_identity_oracle(settings: Settings) -> IdentityOracle:
    if settings.IDENTITY_SECRET_KEY:
        return ClerkIdentityOracle(
            secret_key=settings.IDENTITY_SECRET_KEY,
            base_url=settings.IDENTITY_API_URL,
            timeout_ms=settings.IDENTITY_TIMEOUT_MS,
        )
    logger.warning("IDENTITY_SECRET_KEY not set, using in-memory identity oracle")
    return InMemoryIdentityOracle()


def _build_document_store(settings: Settings) -> DocumentStore:
    if settings.SUPABASE_URL and settings.SUPABASE_SERVICE_KEY:
        return SupabaseDocumentStore(settings.SUPABASE_URL, settings.SUPABASE_SERVICE_KEY)
    logger.warning("SUPABASE_URL / SUPABASE_SERVICE_KEY not set, role audit log is in-memory")
    return InMemoryDocumentStore()


def create_app(
    settings: Optional[Settings] = None,
    identity_oracle: Optional[IdentityOracle] = None,
    document_store: Optional[DocumentStore] = None,
) -> FastAPI:
    """
    Build the application.

    Adapters not passed in are chosen from settings: the Clerk oracle and
    Supabase store when credentials are present, in-memory ones otherwise.
    """
    settings = settings or get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    oracle = identity_oracle or _build_identity_oracle(settings)
    store = document_store or _build_document_store(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        close = getattr(oracle, "close", None)
        if close is not None:
            await close()

    app = FastAPI(
        title="SecureAware Access Control",
        version="0.1.0",
        description="Role-based access control and compliance gating.",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.identity_oracle = oracle
    app.state.document_store = store

    warn_on_shadowed_rules(PROTECTED_ROUTES)

    app.add_middleware(
        RouteGuardMiddleware,
        session_resolver=SessionResolver(
            secret=settings.SESSION_JWT_SECRET,
            public_key=settings.SESSION_JWT_PUBLIC_KEY,
            algorithm=settings.SESSION_JWT_ALGO,
            cookie_name=settings.SESSION_COOKIE_NAME,
        ),
        identity_oracle=oracle,
        rules=PROTECTED_ROUTES,
        public_patterns=PUBLIC_ROUTE_PATTERNS + (HEALTH_PATH,),
        claims_max_age_seconds=settings.ROLE_CLAIMS_MAX_AGE_SECONDS,
        enforce_compliance=settings.ROUTE_GUARD_ENFORCE_COMPLIANCE,
    )

    app.include_router(admin_router)
    app.include_router(auth_router)

    @app.get(HEALTH_PATH)
    async def health():
        """Minimal liveness probe."""
        return {
            "status": "ok",
            "identity_oracle": type(oracle).__name__,
            "document_store": type(store).__name__,
        }

    logger.info(
        f"App created: oracle={type(oracle).__name__}, store={type(store).__name__}, "
        f"claims_max_age={settings.ROLE_CLAIMS_MAX_AGE_SECONDS}s, "
        f"enforce_compliance={settings.ROUTE_GUARD_ENFORCE_COMPLIANCE}"
    )
    return app


app = create_app()
