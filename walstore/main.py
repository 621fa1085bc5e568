"""walstore — FastAPI application entry point."""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager

import sentry_sdk
from fastapi import FastAPI

from walstore import __version__
from walstore.api.admin import router as admin_router
from walstore.api.settings import router as settings_router
from walstore.config import AppConfig, load_config
from walstore.db.connection import Database
from walstore.db.errors import CloseError, DatabaseError
from walstore.logging_config import configure_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup/shutdown lifecycle. The database is opened in create_app."""
    logger.info("starting server (environment=%s)", app.state.config.environment)

    yield

    # Requests are drained by the server before shutdown reaches this point
    try:
        app.state.db.close()
    except CloseError:
        logger.exception("Error closing database")
    logger.info("server stopped")


def _init_sentry(dsn: str, environment: str) -> None:
    """Initialize Sentry SDK if a DSN is configured and not in development."""
    if not dsn or environment == "development":
        return
    sentry_sdk.init(
        dsn,
        environment=environment,
        traces_sample_rate=0,
        send_client_reports=False,
        auto_session_tracking=False,
    )


def create_app(config: AppConfig | None = None, db: Database | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Opens and migrates the database unless one is passed in. Open and
    migration errors propagate: the app must not serve on a bad schema.
    """
    if config is None:
        config = load_config()

    _init_sentry(config.sentry_dsn, config.environment)

    configure_logging(config.server.log_level, json_output=config.server.log_json)

    if config.database.replication:
        logger.info("Replication active: WAL auto-checkpointing disabled")

    if db is None:
        db = Database.from_config(config)

    app = FastAPI(
        title="walstore",
        version=__version__,
        lifespan=lifespan,
        debug=config.environment == "development",
    )
    app.state.config = config
    app.state.db = db

    app.include_router(admin_router)
    app.include_router(settings_router)

    return app


def cli_entry() -> None:
    """CLI entry point for running the server."""
    import uvicorn

    config = load_config()
    try:
        app = create_app(config)
    except DatabaseError as e:
        logger.critical("Database startup failed: %s", e)
        sys.exit(1)

    uvicorn.run(
        app,
        host=config.server.host,
        port=config.server.port,
        log_level=config.server.log_level,
    )


if __name__ == "__main__":
    cli_entry()
