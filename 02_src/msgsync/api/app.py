"""FastAPI application setup."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ..app import Application
from ..logging_config import get_logger
from .routes import control, messaging, observability

logger = get_logger(__name__)

# Process-wide application used when none is injected
_app: Application | None = None


def get_app() -> Application:
    """Get the global application instance, built from the environment on first use."""
    global _app
    if _app is None:
        _app = Application()
    return _app


def create_fastapi_app(application: Application | None = None) -> FastAPI:
    """Create the FastAPI app around an Application.

    The application is started and stopped with the server lifespan. Routers
    are built per call so several apps can coexist (tests).
    """
    core = application or get_app()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await core.start()
        logger.info("Messaging core started for user %s", core.settings.sync_user_id)
        try:
            yield
        finally:
            await core.stop()
            logger.info("Messaging core stopped")

    fastapi_app = FastAPI(
        title="Message Sync API",
        description="Offline-first messaging core: cache, outbound queue and sync",
        version="0.1.0",
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=list(core.settings.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @fastapi_app.get("/health")
    async def health():
        return {
            "status": "ok",
            "online": core.queue.is_online,
            "realtime_connected": core.realtime.is_connected,
        }

    for build_router in (
        messaging.create_messaging_router,
        observability.create_observability_router,
        control.create_control_router,
    ):
        fastapi_app.include_router(build_router(core))

    return fastapi_app
