"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from sortify.api.routes import install_error_handlers, router
from sortify.capture import OpenCvCamera
from sortify.config import get_settings
from sortify.ml.classifier import WasteClassifier
from sortify.ml.inference import InferencePool
from sortify.ml.model_manager import SessionRegistry
from sortify.ml.runtime import BootstrapPoller
from sortify.persistence import HttpScanResultStore
from sortify.scanner import ScanSession

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: load models and mount the scan session, release everything on shutdown."""
    settings = get_settings()
    app.state.settings = settings

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting Sortify (device=%s, max_concurrent=%s, presence=%s, category=%s)",
        settings.device,
        settings.max_concurrent,
        settings.presence_model,
        settings.category_model,
    )

    inference_pool = InferencePool(settings)
    registry = SessionRegistry(settings)
    classifier = WasteClassifier(registry, inference_pool, gate_threshold=settings.gate_threshold)
    store = HttpScanResultStore.from_settings(settings)
    scan_session = ScanSession(
        settings,
        registry,
        classifier,
        camera=OpenCvCamera.from_settings(settings) if settings.camera_enabled else None,
        store=store,
        bootstrap=BootstrapPoller.from_settings(settings),
    )

    app.state.inference_pool = inference_pool
    app.state.registry = registry
    app.state.classifier = classifier
    app.state.scan_session = scan_session

    await scan_session.mount()
    logger.info("Sortify ready (models_ready=%s)", scan_session.models_ready)
    yield

    logger.info("Shutting down Sortify")
    scan_session.close()
    registry.unload_sessions()
    if store is not None:
        await store.aclose()
    inference_pool.shutdown()
    logger.info("Sortify shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="Sortify",
        description="Two-stage waste classification with camera and upload scanning",
        version="0.1.0",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    install_error_handlers(application)
    application.include_router(router)
    return application


app = create_app()


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    settings = get_settings()
    uvicorn.run("sortify.main:app", host=settings.host, port=settings.port)
