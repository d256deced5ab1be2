"""DM Relay Backend Application.

This is the main entry point for the private-messaging relay service.
Clients connect over a WebSocket, announce who they are, and exchange
private messages, read receipts and typing indicators with other
connected users. All state is in memory and lives as long as the process.

Modules:
    - chat: WebSocket relay (presence, routing, message store)
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from dmrelay.chat.router import router as chat_router
from dmrelay.chat.service import ChatRelay
from dmrelay.config import AppConfig, get_config

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# Silence verbose third-party loggers.
# uvicorn.access logs the WebSocket upgrade of every client.
for _noisy in (
    "uvicorn.access",
    "websockets",
    "websockets.protocol",
):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


def create_app(config: Optional[AppConfig] = None) -> FastAPI:
    """Build the FastAPI application.

    Args:
        config: Settings to use. Defaults to the process-wide ``get_config()``.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Create the relay on startup and tear it down on shutdown."""
        cfg = config or get_config()

        # Apply configured log level to root logger so that
        # `logging.level: "debug"` in relay.settings.yaml activates DEBUG output.
        configured_level = getattr(logging, cfg.logging.level.upper(), None)
        if configured_level is not None:
            logging.getLogger().setLevel(configured_level)
            logger.info("Root logger level set to %s", cfg.logging.level.upper())

        app.state.relay = ChatRelay(cfg)
        logger.info(
            f"Relay ready on ws://{cfg.server.host}:{cfg.server.port}/ws "
            f"(reap delay {cfg.presence.reap_delay_seconds}s)"
        )

        yield  # Application runs here

        # Shutdown
        await app.state.relay.shutdown()
        logger.info("Application shutdown complete")

    app = FastAPI(
        title="DM Relay API",
        description="Realtime private-messaging relay with presence and read receipts",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.include_router(chat_router)

    @app.get("/health")
    async def health() -> dict:
        """Health check endpoint.

        Returns:
            dict: Status object indicating the server is running.
        """
        return {"status": "ok"}

    return app


app = create_app()


def run() -> None:
    """Console entry point: serve ``app`` with uvicorn."""
    import uvicorn

    cfg = get_config()
    uvicorn.run(app, host=cfg.server.host, port=cfg.server.port)
