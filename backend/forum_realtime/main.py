"""Forum Real-Time Backend Application.

This is the main entry point for the forum's real-time service: user
presence, the global chat room and one-to-one private conversations, all
served over a single WebSocket endpoint, plus read-only history endpoints.

Modules:
    - chat: WebSocket transport, presence, global and private channels
    - auth: JWT verification for sockets and HTTP requests
    - users: user directory and attachment catalog
    - notifications: per-user notification push
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from forum_realtime.chat.history_router import router as history_router
from forum_realtime.chat.router import router as chat_router
from forum_realtime.chat.services import ChatServices
from forum_realtime.config import get_config
from forum_realtime.database import Database

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# uvicorn.access logs every history poll; not useful when debugging chat.
for _noisy in (
    "uvicorn.access",
    "httpx",
    "httpcore",
):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


def create_app(services: Optional[ChatServices] = None) -> FastAPI:
    """Build the application.

    Args:
        services: Pre-built chat services (tests). When omitted, the
            lifespan hook opens the configured database and builds them.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager for startup/shutdown events."""
        # Startup
        config = services.config if services is not None else get_config()

        configured_level = getattr(logging, config.logging.level.upper(), None)
        if configured_level is not None:
            logging.getLogger().setLevel(configured_level)
            logger.info("Root logger level set to %s", config.logging.level.upper())

        owned = services is None
        if owned:
            database = Database.get_instance(config.database.path)
            app.state.chat = ChatServices.build(config, database)
        else:
            app.state.chat = services
        logger.info(
            f"Forum real-time service running on "
            f"http://{config.server.host}:{config.server.port}"
        )

        yield  # Application runs here

        # Shutdown
        app.state.chat.connections.clear()
        if owned:
            Database.reset_instance()
        logger.info("Application shutdown complete")

    app = FastAPI(
        title="Forum Real-Time API",
        description="Presence, global chat and private chat for the student forum",
        version="0.1.0",
        lifespan=lifespan,
    )
    if services is not None:
        app.state.chat = services

    allowed_origins = (services.config if services is not None else get_config()).server.allowed_origins
    if allowed_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=allowed_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.include_router(chat_router)
    app.include_router(history_router)

    @app.get("/health")
    async def health() -> dict:
        """Health check endpoint.

        Returns:
            dict: Status object indicating the server is running.
        """
        return {"status": "ok"}

    return app


app = create_app()
