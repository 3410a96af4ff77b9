import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import inspect

from coupons_api.core import config
from coupons_api.core.database import Base, engine
from coupons_api.core.errors import register_exception_handlers
from coupons_api.core.logging_setup import configure_logging
from coupons_api.core.startup_checks import (
    apply_migrations,
    ensure_migrations_applied,
    validate_database_environment,
)
from coupons_api.middleware.observability import ObservabilityMiddleware
import coupons_api.models  # models must be imported before create_all

from coupons_api.routers.coupons import router as coupons_router
from coupons_api.routers.internal_metrics import router as internal_metrics_router

configure_logging()

logger = logging.getLogger(__name__)
STARTUP_PREFIX = "[STARTUP]"
REPO_ROOT = Path(__file__).resolve().parents[1]
ALEMBIC_CONFIG_PATH = Path(
    os.getenv("ALEMBIC_CONFIG", str(REPO_ROOT / "alembic.ini"))
)


@asynccontextmanager
async def lifespan(_: FastAPI):
    _startup_tasks()
    yield
    logger.info("%s shutting down", STARTUP_PREFIX)


app = FastAPI(
    title="Coupons API",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(ObservabilityMiddleware)
register_exception_handlers(app)


def _has_migration_state() -> bool:
    return inspect(engine).has_table("alembic_version")


def _startup_tasks() -> None:
    logger.info("%s env=%s", STARTUP_PREFIX, config.ENV_NORMALIZED)
    validate_database_environment()
    apply_migrations(alembic_config_path=ALEMBIC_CONFIG_PATH)

    if config.CREATE_SCHEMA_ON_STARTUP and not _has_migration_state():
        logger.warning("%s no migration state; creating tables from models", STARTUP_PREFIX)
        Base.metadata.create_all(bind=engine)
        return

    ensure_migrations_applied(engine=engine, alembic_config_path=ALEMBIC_CONFIG_PATH)


@app.get("/")
def root():
    return {"status": "ok"}


@app.get("/health")
def health():
    return {"status": "ok"}


app.include_router(coupons_router)
app.include_router(internal_metrics_router)
