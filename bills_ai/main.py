"""
bills-ai service entrypoint.

Serves the document analysis API to the desktop shell on loopback.
"""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from prometheus_client import make_asgi_app

from bills_ai import __version__
from bills_ai.api import api_router
from bills_ai.api.v1.ai import get_manager
from bills_ai.core.config import get_settings
from bills_ai.utils.logging import setup_logging

settings = get_settings()
setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting bills-ai...")
    await get_manager().initialize()

    yield

    logger.info("Shutting down bills-ai...")
    await get_manager().cleanup()


app = FastAPI(
    title="bills-ai",
    description="Document analysis provider layer",
    version=__version__,
    lifespan=lifespan,
)

app.include_router(api_router, prefix="/api")
app.mount("/metrics", make_asgi_app())


@app.get("/health")
async def health_check():
    status = await get_manager().get_status()
    return {
        "status": "healthy",
        "backend": status.backend.value,
        "local_status": status.local_status.value,
        "version": __version__,
    }


if __name__ == "__main__":
    uvicorn.run("bills_ai.main:app", host="127.0.0.1", port=8765, log_level=settings.LOG_LEVEL.lower())
