"""Common type definitions for Clueprint.

This module provides TypedDict definitions for the plain-dict structures
that cross the WebSocket and HTTP boundaries, to avoid Dict[str, Any].
"""

from typing import Any, Awaitable, Callable, Dict, Optional, TypedDict


class CommandMessageDict(TypedDict, total=False):
    """Command sent to the extension."""
    type: str
    id: str
    payload: Optional[Dict[str, Any]]


class HealthDict(TypedDict):
    """Health endpoint payload."""
    status: str
    service: str
    extension_connected: bool
    recording: str
    pending_requests: int
    snapshots: int


# Type alias for sending one JSON message over an extension WebSocket
ExtensionSendCallback = Callable[[CommandMessageDict], Awaitable[None]]

# Wall clock in epoch seconds, injectable for tests
Clock = Callable[[], float]
