from contextlib import asynccontextmanager
import logging
import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Configure root logger so all poolsync.* module loggers emit to console
logging.basicConfig(
    level=getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO),
    format="%(asctime)s %(levelname)-8s [%(name)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)

from poolsync.config import database_dsn_safe, running_in_hosted_env, settings
from poolsync.routes import admin, health, points, referrals, webhooks
from poolsync.scheduler import get_scheduler
from poolsync.services.database import dispose_engine


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger(__name__)
    logger.info("Database DSN: %s", database_dsn_safe())
    if running_in_hosted_env() and settings.database_url.startswith("sqlite"):
        logger.warning(
            "DATABASE_PRIVATE_URL/DATABASE_URL not set to Postgres in hosted env. "
            "Falling back to SQLite, data will NOT persist across deploys."
        )

    scheduler = get_scheduler()
    await scheduler.start()

    yield

    await scheduler.stop()
    await dispose_engine()


app = FastAPI(
    title="PoolSync API",
    description="Pool contract event ingestion and points ledger",
    version=settings.api_version,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router, tags=["Health"])
app.include_router(webhooks.router)
app.include_router(points.router)
app.include_router(referrals.router)
app.include_router(admin.router)


@app.get("/")
async def root() -> dict:
    return {"message": "PoolSync API", "docs": "/docs"}
