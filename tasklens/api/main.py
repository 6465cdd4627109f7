"""
TaskLens API

FastAPI application exposing the image-to-task extraction pipeline.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from tasklens import __version__
from tasklens.config import Settings, get_settings
from tasklens.kernel.http.errors import register_exception_handlers
from tasklens.kernel.logging import configure_logging
from tasklens.pipeline.service import ExtractionPipeline, build_pipeline

from .middleware import RequestIDMiddleware
from .routes import health, image_analysis

logger = structlog.get_logger()


def create_app(settings: Settings | None = None, pipeline: ExtractionPipeline | None = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger.info(
            "Starting TaskLens",
            version=__version__,
            vision_model=settings.vision_model,
            thread_store=settings.thread_store_backend,
            blob_store=settings.blob_store_backend,
        )
        yield
        logger.info("Shutting down TaskLens")
        await app.state.pipeline.close()

    app = FastAPI(
        title="TaskLens API",
        description="Turns whiteboard photos, screenshots and sketches into validated task records",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.pipeline = pipeline or build_pipeline(settings)

    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )
    register_exception_handlers(app)

    app.include_router(health.router, tags=["Health"])
    app.include_router(image_analysis.router, tags=["Image Analysis"])
    return app


app = create_app()
