"""
FastAPI application entry point.
"""

from fastapi import FastAPI

from docs_preview import __version__
from docs_preview.api import webhooks
from docs_preview.config import settings
from docs_preview.services.redis_client import get_redis_client
from docs_preview.utils.logging import get_logger, setup_logging

# Configure structured logging
setup_logging(settings.log_level.upper())

logger = get_logger(__name__)

app = FastAPI(
    title="Docs Preview Deployer",
    description="Publishes pull request documentation previews after their build succeeds",
    version=__version__
)


@app.get("/health")
async def health_check():
    """Health check endpoint for container orchestration."""
    return {"status": "healthy", "version": __version__}


app.include_router(webhooks.router)


@app.on_event("startup")
async def startup_event():
    """Connect to Redis on application startup."""
    logger.info("Starting docs preview webhook API")
    await get_redis_client().initialize()


@app.on_event("shutdown")
async def shutdown_event():
    """Close Redis on application shutdown."""
    logger.info("Shutting down docs preview webhook API")
    await get_redis_client().close()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
