"""WebSocket connection management for the browser extension."""

import asyncio
import itertools
import json
import logging
from functools import partial
from typing import Dict, List, Optional

from fastapi import WebSocket, WebSocketDisconnect, status

from .broker import ExtensionConnection, SessionBroker
from .exceptions import ConnectionLostError, InvalidOriginError
from .types import CommandMessageDict

logger = logging.getLogger(__name__)


class ConnectionManager:
    """
    Manages extension WebSocket connections on behalf of the broker.

    Features:
    - Origin validation (chrome-extension:// only by default)
    - Connection lifecycle posted to the broker's inbox
    - Receiver loop forwarding decoded messages to the broker
    - Application-level PING keepalive for the authoritative connection
    - Debug message logging
    """

    def __init__(
        self,
        broker: SessionBroker,
        allowed_origins: Optional[List[str]] = None,
        ping_interval: float = 30,
    ):
        self.broker = broker
        self.allowed_origins = allowed_origins or ["chrome-extension://"]
        self.ping_interval = ping_interval  # seconds between pings
        self.active_connections: Dict[str, WebSocket] = {}
        self.ping_tasks: Dict[str, asyncio.Task[None]] = {}
        self._counter = itertools.count(1)

    def is_allowed_origin(self, origin: str) -> bool:
        return any(origin.startswith(prefix) for prefix in self.allowed_origins)

    async def connect(self, websocket: WebSocket) -> str:
        """
        Accept an extension WebSocket and hand it to the broker.

        Args:
            websocket: FastAPI WebSocket instance

        Returns:
            str: Connection id assigned to the socket

        Raises:
            InvalidOriginError: If the origin is not an allowed extension origin
        """
        # Validate origin (CRITICAL for security)
        origin = websocket.headers.get("origin", "")
        if not self.is_allowed_origin(origin):
            logger.warning(f"Rejected connection from invalid origin: {origin}")
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            raise InvalidOriginError(origin)

        await websocket.accept()
        connection_id = f"ext_{next(self._counter)}"
        self.active_connections[connection_id] = websocket
        self.broker.post_connection_opened(
            ExtensionConnection(connection_id, send=partial(self.send_message, connection_id))
        )
        logger.info(
            f"WebSocket connected: {connection_id} from {origin} "
            f"(open sockets: {len(self.active_connections)})"
        )
        return connection_id

    def disconnect(self, connection_id: str) -> None:
        """Remove connection, stop its keepalive and tell the broker."""
        if self.active_connections.pop(connection_id, None) is None:
            return

        ping_task = self.ping_tasks.pop(connection_id, None)
        if ping_task:
            ping_task.cancel()

        self.broker.post_connection_closed(connection_id)
        logger.info(f"WebSocket disconnected: {connection_id}")

    async def send_message(self, connection_id: str, message: CommandMessageDict) -> None:
        """
        Send JSON message to one connection with debug logging.

        Raises:
            ConnectionLostError: The socket is gone or the send failed
        """
        websocket = self.active_connections.get(connection_id)
        if websocket is None:
            raise ConnectionLostError(message.get("id", ""))

        logger.debug(f"[WS OUT] {connection_id} | {message.get('type')} | {json.dumps(message)[:200]}")
        try:
            await websocket.send_json(message)
        except RuntimeError as e:
            # Starlette raises RuntimeError once the socket is closed
            logger.warning(f"Cannot send to {connection_id}: {e}")
            self.disconnect(connection_id)
            raise ConnectionLostError(message.get("id", "")) from e

    def get_connection_count(self) -> int:
        """Get number of open sockets (authoritative or not)."""
        return len(self.active_connections)

    async def _ping_loop(self, connection_id: str) -> None:
        """
        Background task sending PING to the connection while it is authoritative.

        Args:
            connection_id: Connection to ping
        """
        try:
            while True:
                await asyncio.sleep(self.ping_interval)

                websocket = self.active_connections.get(connection_id)
                if not websocket:
                    break
                if not self.broker.is_authoritative(connection_id):
                    continue

                try:
                    logger.debug(f"[WS PING] {connection_id} | Sending ping")
                    await websocket.send_json({"type": "PING"})
                except Exception as e:
                    logger.warning(f"Ping failed for {connection_id}: {e}")
                    break

        except asyncio.CancelledError:
            logger.debug(f"Ping task cancelled for {connection_id}")

    def start_ping(self, connection_id: str) -> None:
        """Start ping keepalive task for a connection."""
        if connection_id not in self.ping_tasks:
            task = asyncio.create_task(self._ping_loop(connection_id))
            self.ping_tasks[connection_id] = task
            logger.debug(f"Started ping task for {connection_id}")

    async def receive_loop(self, connection_id: str, websocket: WebSocket) -> None:
        """
        Receive messages until the socket closes, posting each to the broker.

        Frames that are not valid JSON are logged and skipped. The connection
        is always deregistered on exit.
        """
        try:
            while True:
                raw = await websocket.receive_text()
                try:
                    data = json.loads(raw)
                except json.JSONDecodeError:
                    logger.warning(f"[WS IN] {connection_id} | Dropping non-JSON frame: {raw[:200]}")
                    continue

                msg_type = data.get("type", "unknown") if isinstance(data, dict) else "unknown"
                logger.debug(f"[WS IN] {connection_id} | {msg_type} | {raw[:200]}")
                self.broker.post_message(connection_id, data)

        except WebSocketDisconnect as e:
            logger.info(f"WebSocket closed by extension: {connection_id} (code {e.code})")
        finally:
            self.disconnect(connection_id)

    async def close_all(self) -> None:
        """Close every open socket (shutdown)."""
        for connection_id, websocket in list(self.active_connections.items()):
            try:
                await websocket.close(code=status.WS_1001_GOING_AWAY)
            except RuntimeError:
                pass
            self.disconnect(connection_id)
