"""FastAPI application serving the extension WebSocket and health endpoint."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, WebSocket

from . import __version__
from .broker import BrokerConfig, SessionBroker
from .config import Settings, settings as default_settings
from .exceptions import InvalidOriginError
from .websocket import ConnectionManager

logger = logging.getLogger(__name__)


def create_app(
    broker: Optional[SessionBroker] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """
    Build the FastAPI app around an explicitly owned broker.

    Args:
        broker: Broker shared with the MCP tool layer; created if omitted
        settings: Settings to read origins and keepalive from

    Returns:
        FastAPI: App with ``state.broker`` and ``state.connection_manager``
    """
    settings = settings or default_settings
    broker = broker or SessionBroker(BrokerConfig.from_settings(settings))
    connection_manager = ConnectionManager(
        broker,
        allowed_origins=settings.ALLOWED_ORIGINS,
        ping_interval=settings.WS_PING_INTERVAL,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan: startup and shutdown."""
        logger.info(f"Starting {settings.PROJECT_NAME} WebSocket server...")

        # The CLI may already run the broker for the MCP side
        started_here = not broker.running
        broker.start()

        logger.info(f"{settings.PROJECT_NAME} listening for the extension")

        yield

        logger.info("Shutting down gracefully...")
        await connection_manager.close_all()
        if started_here:
            await broker.shutdown()
        logger.info("Shutdown complete")

    app = FastAPI(
        title=settings.PROJECT_NAME,
        version=__version__,
        lifespan=lifespan,
    )
    app.state.broker = broker
    app.state.connection_manager = connection_manager

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return broker.health()

    async def extension_endpoint(websocket: WebSocket) -> None:
        """WebSocket endpoint for the browser extension."""
        try:
            connection_id = await connection_manager.connect(websocket)
        except InvalidOriginError:
            return

        connection_manager.start_ping(connection_id)
        try:
            await connection_manager.receive_loop(connection_id, websocket)
        except Exception as e:
            logger.error(f"WebSocket error on {connection_id}: {e}", exc_info=True)

    # The extension connects to the bare host; /ws is kept for manual testing
    app.add_api_websocket_route("/", extension_endpoint)
    app.add_api_websocket_route("/ws", extension_endpoint)

    return app
