"""
PureTrust Live Chat - Main FastAPI Application
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api import files_router
from .config import settings
from .core.logging_config import setup_logging
from .gateway import create_gateway
from .middleware import RequestLoggingMiddleware
from .storage import LocalStorage

# Logger will be initialized after setup_logging() is called
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the blob storage and persistence gateway for the app's lifetime."""
    setup_logging(settings)

    blob_storage = LocalStorage(settings.local_storage_path)
    gateway = create_gateway(settings, storage=blob_storage)
    app.state.blob_storage = blob_storage
    app.state.gateway = gateway

    logger.info(f"Starting {settings.app_name} v{settings.app_version}")
    logger.info(f"Gateway backend: {settings.gateway_backend}")
    logger.info(f"Storage path: {settings.local_storage_path}")
    logger.info(f"Debug mode: {settings.debug}")
    try:
        yield
    finally:
        await gateway.aclose()
        logger.info(f"Shutting down {settings.app_name}")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Real-time customer support chat between site visitors and operators",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Add request logging middleware (after CORS)
if settings.log_api_requests:
    app.add_middleware(RequestLoggingMiddleware)

app.include_router(files_router)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "app": settings.app_name,
        "version": settings.app_version,
        "status": "running",
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "gateway": settings.gateway_backend,
        "version": settings.app_version
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "livechat.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug
    )
