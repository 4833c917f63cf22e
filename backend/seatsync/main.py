"""Main module of the FastAPI application.

Sets up the application, its middleware and the mapping of domain errors to
HTTP responses.
"""

import os
import subprocess
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError

from seatsync.api.middleware import (
    add_request_id,
    exception_logging_middleware,
    log_requests,
    seatsync_exception_handler,
    validation_exception_handler,
)
from seatsync.api.router import TrailingSlashRouter
from seatsync.api.v1.api import api_router
from seatsync.core.config import settings
from seatsync.core.exceptions import SeatSyncException
from seatsync.core.logging import logger
from seatsync.integrations.lemonsqueezy_client import lemonsqueezy_client
from seatsync.platform.billing.occupancy import UnconfiguredSeatOccupancy


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events.

    Runs alembic migrations on startup and closes the provider client on shutdown.
    """
    if settings.RUN_ALEMBIC_MIGRATIONS:
        logger.info("Running alembic migrations...")
        env = os.environ.copy()
        backend_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
        env["PYTHONPATH"] = backend_dir
        subprocess.run(
            ["alembic", "upgrade", "head"],
            check=True,
            cwd=backend_dir,
            env=env,
        )

    if not settings.lemonsqueezy_enabled:
        logger.warning("LEMONSQUEEZY_API_KEY is not set; provider-backed operations return 503")
    if not getattr(app.state, "seat_occupancy", None):
        # The host application replaces this with its membership-backed source
        app.state.seat_occupancy = UnconfiguredSeatOccupancy()

    yield

    if lemonsqueezy_client is not None:
        await lemonsqueezy_client.aclose()


app = FastAPI(
    title=settings.PROJECT_NAME,
    openapi_url="/openapi.json",
    lifespan=lifespan,
    router=TrailingSlashRouter(),
    redirect_slashes=False,
)

app.include_router(api_router)

# Register middleware directly
app.middleware("http")(add_request_id)
app.middleware("http")(log_requests)
app.middleware("http")(exception_logging_middleware)

# Register exception handlers
app.exception_handler(RequestValidationError)(validation_exception_handler)
app.exception_handler(ValidationError)(validation_exception_handler)
app.exception_handler(SeatSyncException)(seatsync_exception_handler)
