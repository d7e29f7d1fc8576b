from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from collections.abc import AsyncIterator

from fastapi import FastAPI

from app.config import get_log_level

logger = logging.getLogger(__name__)

_DATABASE_URL_VARIABLES = ("DATABASE_URL", "CLOUD_DATABASE_URL", "LOCAL_DATABASE_URL")
_POSTGRES_PREFIXES = ("postgres://", "postgresql://", "postgresql+psycopg://")


def _validate_env() -> None:
    """
    Validate all required environment variables at startup.

    Runs before any service or database connection is initialised.
    Raises RuntimeError listing every missing or invalid variable so the
    operator can fix all problems in one restart cycle.

    Rules:
    - At least one database URL must be configured.
    - Every configured database URL must point at PostgreSQL.
    - LOG_LEVEL, when set, must name a standard logging level.
    """

    from db.config import load_env_files

    load_env_files()

    errors: list[str] = []

    # --- Database URL ---------------------------------------------------
    configured = {
        name: os.getenv(name, "").strip()
        for name in _DATABASE_URL_VARIABLES
        if os.getenv(name, "").strip()
    }
    if not configured:
        errors.append(
            "No database URL configured. Set DATABASE_URL, CLOUD_DATABASE_URL "
            "or LOCAL_DATABASE_URL."
        )
    for name, url in configured.items():
        if not url.startswith(_POSTGRES_PREFIXES):
            errors.append(f"{name} must be a PostgreSQL URL; other databases are not supported.")

    # --- Log level ------------------------------------------------------
    log_level = os.getenv("LOG_LEVEL", "").strip().upper()
    if log_level and not isinstance(logging.getLevelName(log_level), int):
        errors.append(f"LOG_LEVEL='{log_level}' is not a valid logging level.")

    if errors:
        raise RuntimeError(
            "Startup validation failed, missing or invalid environment variables:\n"
            + "\n".join(f"  - {e}" for e in errors)
        )


def _configure_logging() -> None:
    """
    Configure root logging once for the API process.
    """

    logging.basicConfig(
        level=getattr(logging, get_log_level(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def _verify_database() -> None:
    """
    Fail startup when the database is unreachable or a mapped table is
    missing. Migrations are never applied automatically.
    """
    from sqlalchemy import inspect as sa_inspect
    from sqlalchemy import text
    from sqlalchemy.exc import SQLAlchemyError

    import db.models  # noqa: F401  registers all ORM models on Base.metadata
    from db.base import Base
    from db.session import get_engine

    try:
        with get_engine().connect() as connection:
            connection.execute(text("SELECT 1"))
            present = set(sa_inspect(connection).get_table_names())
    except SQLAlchemyError as exc:
        raise RuntimeError("Database unavailable.") from exc
    logger.info("Database connectivity confirmed")

    missing = sorted(set(Base.metadata.tables) - present)
    if missing:
        logger.critical(
            "Schema mismatch: %d table(s) absent from the database: %s. "
            "Run 'alembic upgrade head' and restart.",
            len(missing),
            ", ".join(missing),
        )
        raise RuntimeError(
            f"Schema mismatch: {len(missing)} table(s) missing from the database "
            f"({', '.join(missing)}). Run migrations and restart."
        )


@asynccontextmanager
async def _lifespan(application: FastAPI) -> AsyncIterator[None]:
    """Verify the database and start the scheduler; on exit drain refreshes and release connections."""
    _verify_database()

    from app.api.dependencies import get_refresh_queue
    from app.scheduler.jobs import build_scheduler
    from db.session import dispose_engine

    scheduler = build_scheduler()
    scheduler.start()
    logger.info("Scheduler started with %d jobs", len(scheduler.get_jobs()))
    try:
        yield
    finally:
        scheduler.shutdown(wait=True)
        if not get_refresh_queue().wait_idle(timeout=30.0):
            logger.warning("Analytics refresh still running at shutdown")
        dispose_engine()
        logger.info("Scheduler shut down")


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.
    """

    _validate_env()
    _configure_logging()

    application = FastAPI(
        title="roamwatch API",
        version="1.0.0",
        lifespan=_lifespan,
    )

    from app.api.routers import alerts_router, analytics_router, scorecard_router

    application.include_router(alerts_router)
    application.include_router(scorecard_router)
    application.include_router(analytics_router)

    @application.get("/health")
    def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    return application


app = create_app()
