"""Main application entry point."""

from contextlib import asynccontextmanager
from datetime import UTC, datetime

from fastapi import Depends, FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from vesrates.api.dependencies import get_rate_store, scheduler_service
from vesrates.api.error_handlers import (
    rate_service_exception_handler,
    validation_exception_handler,
)
from vesrates.api.routes import router
from vesrates.database.db import init_db
from vesrates.database.rate_store import RateStore
from vesrates.services.errors import RateServiceError, TransientStorageError
from vesrates.utils.config import config

VERSION = "1.0.0"

# Initialize database
init_db()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Validate configuration and run the refresh scheduler for the app's lifetime."""
    try:
        config.validate()
    except ValueError as e:
        print(f"Configuration error: {e}")
        raise
    if config.scheduler.enabled:
        scheduler_service.start()
    yield
    scheduler_service.stop()


app = FastAPI(
    title="VES Rates",
    description="Official and P2P bolivar exchange rates behind a tiered cache",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type"],
)

app.add_exception_handler(RateServiceError, rate_service_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)

app.include_router(router, prefix="/api", tags=["rates"])


@app.get("/health")
async def health_check(store: RateStore = Depends(get_rate_store)):
    """Health check with a trivial database round trip."""
    try:
        store.ping()
        database = "connected"
    except TransientStorageError:
        database = "disconnected"

    return {
        "status": "ok",
        "timestamp": datetime.now(UTC).isoformat(),
        "database": database,
        "version": VERSION,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
