import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from streamrelay.api.chat import router as chat_router
from streamrelay.api.health import router as health_router
from streamrelay.api.threads import router as threads_router
from streamrelay.config import settings
from streamrelay.services.container import Services, build_services

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def create_app(services: Optional[Services] = None) -> FastAPI:
    """
    Build the application.

    With ``services`` given (tests), the app uses them as-is; otherwise they
    are built from settings at startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup and shutdown events."""
        # Startup
        logger.info("Backend starting...")
        settings.export_provider_keys()

        app.state.services = services or build_services(settings)

        try:
            health = await app.state.services.store.health_check()
            logger.info("Store connected: %s", health.get("message", "OK"))
        except Exception as e:
            logger.error("Store connection failed: %s", e)

        if await app.state.services.bus.health_check():
            logger.info("Bus connected")
        else:
            logger.warning("Bus unavailable (live updates will not reach viewers)")

        logger.info("Backend started")

        yield

        # Shutdown
        logger.info("Backend shutting down...")
        await app.state.services.close()

    app = FastAPI(title="Streamrelay Backend", lifespan=lifespan)

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Connection-Id"],
    )

    # Include routers
    app.include_router(health_router)
    app.include_router(chat_router)
    app.include_router(threads_router)

    return app


app = create_app()
