"""
CoffeePass - FastAPI Backend
Main application entry point: lifespan, middleware and API routing.
"""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config import settings, validate_security_settings
from database import Store
import models  # noqa: F401
from routers import (
    health,
    auth,
    user,
    billing,
    codes,
    partners,
)
from routers.error_handlers import register_error_handlers
from services.partners import ensure_default_partners

logging.basicConfig(
    level=getattr(logging, str(settings.LOG_LEVEL).upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


async def _periodic_store_ping(store: Store) -> None:
    interval_seconds = max(int(settings.STORE_PING_INTERVAL_SECONDS), 0)
    if interval_seconds <= 0:
        return
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await asyncio.wait_for(store.ping(), timeout=max(int(settings.DB_COMMAND_TIMEOUT_SECONDS), 1))
        except Exception as exc:
            logger.warning("Store liveness ping failed: %s", exc)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    # Startup
    print("🚀 Starting CoffeePass API...")
    validate_security_settings()
    store = await Store(settings.DATABASE_URL).open()
    app.state.store = store
    if settings.AUTO_CREATE_DB_SCHEMA:
        try:
            await store.create_schema()
            print("🗄️ Database schema verified.")
        except Exception as e:
            print(f"⚠️ Database bootstrap skipped: {e}")
    if settings.SEED_DEFAULT_PARTNERS:
        try:
            async with store.session() as session:
                seeded = await ensure_default_partners(session)
            if seeded:
                print(f"☕ Seeded {seeded} default partners.")
        except Exception as exc:
            print(f"⚠️ Partner seeding skipped: {exc}")
    ping_task = None
    if int(settings.STORE_PING_INTERVAL_SECONDS) > 0:
        ping_task = asyncio.create_task(_periodic_store_ping(store))
        print(f"📅 Store ping loop enabled (every {int(settings.STORE_PING_INTERVAL_SECONDS)} s).")
    yield
    # Shutdown
    if ping_task is not None:
        ping_task.cancel()
        try:
            await ping_task
        except asyncio.CancelledError:
            pass
    await store.close()
    print("👋 Shutting down API...")


app = FastAPI(
    title="CoffeePass API",
    description="Monthly coffee pass for the Telegram mini-app: cups, codes, partners and payments",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_error_handlers(app)

# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(auth.router, prefix="/api/auth", tags=["Authentication"])
app.include_router(user.router, prefix="/api", tags=["User"])
app.include_router(billing.router, prefix="/api", tags=["Billing"])
app.include_router(codes.router, prefix="/api", tags=["Codes"])
app.include_router(partners.router, prefix="/api", tags=["Partners"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "CoffeePass API",
        "version": "0.1.0",
        "status": "running"
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host=settings.API_HOST, port=settings.API_PORT, reload=False)
