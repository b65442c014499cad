"""FastAPI application entry point."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI

from order_tagger import __version__
from order_tagger.api.v1.router import api_router
from order_tagger.config import get_settings
from order_tagger.observability import configure_logging

configure_logging()

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager for startup and shutdown events."""
    settings = get_settings()
    logger.info(
        "Starting order sequence tagger",
        app_env=settings.app_env,
        shop=settings.shop,
        api_version=settings.api_version,
    )
    if not settings.shopify_configured:
        logger.warning("SHOP or ACCESS_TOKEN is not set; runs will fail")

    yield

    logger.info("Shutting down order sequence tagger")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Order Sequence Tagger API",
        description="Tags Shopify orders with their purchase sequence number and new/returning customer marker",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    app.include_router(api_router, prefix="/api/v1")

    return app


app = create_app()


def run() -> None:
    """Run the application using uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "order_tagger.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
        workers=1 if settings.debug else settings.api_workers,
    )


if __name__ == "__main__":
    run()
