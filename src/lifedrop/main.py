"""FastAPI application factory."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from lifedrop.auth.router import router as auth_router
from lifedrop.bloodtypes.router import router as bloodtypes_router
from lifedrop.config import get_settings
from lifedrop.database import close_db, get_session, init_db
from lifedrop.db.seed import seed_blood_types
from lifedrop.donations.router import router as donations_router
from lifedrop.email.service import reset_email_service
from lifedrop.health.router import router as health_router
from lifedrop.middleware import setup_middleware
from lifedrop.redis_client import close_redis, init_redis
from lifedrop.requests.router import router as requests_router
from lifedrop.users.router import router as users_router

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings.database_url, settings.db_pool_size, settings.db_max_overflow)
    if settings.redis_url:
        await init_redis(settings.redis_url)

    # Blood types are also seeded by the initial migration; this is idempotent.
    try:
        async for db in get_session():
            await seed_blood_types(db)
            break
    except Exception:
        logger.warning("blood_type_seed_skipped", reason="tables may not exist yet", exc_info=True)

    yield

    reset_email_service()
    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="LifeDrop API",
        description="Blood donation matchmaking: recipients post requests, eligible donors nearby are notified",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router)
    app.include_router(bloodtypes_router)
    app.include_router(auth_router)
    app.include_router(users_router)
    app.include_router(requests_router)
    app.include_router(donations_router)

    return app


app = create_app()
