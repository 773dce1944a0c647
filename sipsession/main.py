"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .config import get_settings
from .api import session_router
from .dispatcher import get_event_dispatcher

# Configure logging
settings = get_settings()
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup/shutdown."""
    logger.info(f"sipsession starting, provider: {settings.provider}")
    async with get_event_dispatcher().activate():
        yield
    logger.info("sipsession shutting down")


# Create FastAPI app
app = FastAPI(
    title="sipsession",
    description="SIP session controller: registration, calls and provider events",
    version="0.1.0",
    lifespan=lifespan,
)

# Include API routers
app.include_router(session_router)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}


def run():
    """Run the API server with uvicorn."""
    import uvicorn

    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())
