"""
MODULE OVERVIEW:
The FastAPI application Factory.

WHAT IS HAPPENING HERE:
`create_app(settings)` configures loguru, builds the `NotifierContainer` and hangs it
on `app.state`. There are no background tasks: every stream is its own bounded
session, and all shared state is on disk. The `lifespan` only makes sure the
storage directory exists and that processed events past retention are swept once
at startup.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from order_notifier.server.container import NotifierContainer
from order_notifier.server.middleware import TimingMiddleware
from order_notifier.server.routes import admin, hooks, polling, stream
from order_notifier.shared.config import Settings, settings as default_settings
from order_notifier.shared.debug_log import configure_logging
from order_notifier.shared.errors import NotifierError, notifier_error_handler


def create_app(settings: Settings | None = None, container: NotifierContainer | None = None) -> FastAPI:
    settings = settings or default_settings
    configure_logging(settings)
    container = container or NotifierContainer(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # STARTUP
        settings.storage_dir.mkdir(parents=True, exist_ok=True)
        removed = container.buffer.cleanup()
        logger.info(f"event=startup storage={settings.storage_dir} expired_removed={removed}")

        yield

        # SHUTDOWN
        logger.info("event=shutdown")

    app = FastAPI(
        title="Order Notifier",
        description="Near-real-time order notifications for admin tabs over SSE with a polling fallback",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.container = container

    app.add_middleware(TimingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(NotifierError, notifier_error_handler)

    app.include_router(stream.router, tags=["Delivery"])
    app.include_router(polling.router, tags=["Delivery"])
    app.include_router(hooks.router, tags=["Host Hooks"])
    app.include_router(admin.router, tags=["Admin"])

    @app.get("/healthz", tags=["Ops"])
    def health_check():
        return {"status": "ok", "pending_events": len(container.buffer.pending())}

    return app
