import asyncio
import logging
import time
from typing import Optional

from fastapi import FastAPI

from pdf_forge.core.config import VERSION, Settings, settings as default_settings
from pdf_forge.core.logging_config import setup_logging
from pdf_forge.core.middleware import install_exception_handlers, install_middleware
from pdf_forge.routers import convert, extended, health
from pdf_forge.services.admission import AdmissionGate
from pdf_forge.services.browser_engine import BrowserEngine
from pdf_forge.services.converter import ConversionCore
from pdf_forge.services.dispatcher import ConversionDispatcher
from pdf_forge.services.manipulator import PDFManipulator
from pdf_forge.services.pdf_processor import PDFProcessor
from pdf_forge.services.storage import StorageService
from pdf_forge.services.template_engine import TemplateEngine
from pdf_forge.services.tools import ToolRunner
from pdf_forge.services.webhook import WebhookService
from pdf_forge.utils.metrics import ConversionMetrics
from pdf_forge.utils.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    engine: Optional[BrowserEngine] = None,
    runner: Optional[ToolRunner] = None,
    webhook: Optional[WebhookService] = None,
    storage: Optional[StorageService] = None,
) -> FastAPI:
    """
    Build the API with one shared browser engine, admission gate and metrics.

    Collaborators can be injected; tests pass a fake engine and tool runner.
    """
    settings = settings or default_settings
    setup_logging(log_level=settings.LOG_LEVEL, log_file=settings.LOG_FILE or None)

    app = FastAPI(title="PDF Forge API", version=VERSION)

    engine = engine or BrowserEngine(headless=settings.BROWSER_HEADLESS, max_sessions=settings.ENGINE_MAX_SESSIONS)
    runner = runner or ToolRunner()
    gate = AdmissionGate(settings.MAX_WORKERS)
    metrics = ConversionMetrics()
    core = ConversionCore(engine, gate, metrics, settings)
    processor = PDFProcessor(runner)
    rate_limiter = RateLimiter(settings.RATE_LIMIT)

    app.state.settings = settings
    app.state.engine = engine
    app.state.gate = gate
    app.state.metrics = metrics
    app.state.core = core
    app.state.processor = processor
    app.state.manipulator = PDFManipulator(runner)
    app.state.rate_limiter = rate_limiter
    app.state.dispatcher = ConversionDispatcher(
        core,
        processor,
        TemplateEngine(),
        webhook or WebhookService(timeout=settings.WEBHOOK_TIMEOUT_SECONDS, retries=settings.WEBHOOK_RETRIES),
        storage or StorageService(local_root=settings.LOCAL_STORAGE_ROOT, timeout=settings.STORAGE_TIMEOUT_SECONDS),
        settings,
    )
    app.state.started_at = time.time()

    install_middleware(app, settings, rate_limiter)
    install_exception_handlers(app)

    @app.on_event("startup")
    async def on_startup():
        logger.info("Starting PDF Forge API...")
        try:
            await engine.start()
        except Exception as e:
            logger.error(f"Failed to start browser engine: {str(e)}")
            raise

        if rate_limiter.enabled:
            app.state.cleanup_task = asyncio.create_task(rate_limiter.cleanup_loop())
            logger.info("Rate limiter cleanup task started")

        logger.info(
            f"PDF Forge API started - version: {VERSION}, workers: {settings.MAX_WORKERS}, "
            f"readiness: {settings.READINESS_MODE}"
        )

    @app.on_event("shutdown")
    async def on_shutdown():
        cleanup_task = getattr(app.state, "cleanup_task", None)
        if cleanup_task is not None:
            cleanup_task.cancel()
        await engine.stop()
        logger.info("PDF Forge API stopped")

    app.include_router(health.router)
    app.include_router(convert.router)
    app.include_router(extended.router)
    return app


app = create_app()
