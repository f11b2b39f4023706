"""
Logging configuration for Clueprint.

Clueprint serves two transports from one process. The MCP stdio transport
owns stdout, where every byte must be a JSON-RPC frame, so application
logs, uvicorn logs and the rich console all write to stderr. Nothing here
may ever attach a handler to stdout.
"""

import logging
import sys
from typing import Dict, Optional, TextIO

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(message)s"
DEBUG_LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(message)s"


def _library_levels(log_level: int, debug: bool) -> Dict[str, int]:
    """Per-logger levels for the libraries Clueprint runs on."""
    return {
        "uvicorn": log_level,
        "uvicorn.error": log_level,
        "uvicorn.access": logging.DEBUG if debug else logging.WARNING,
        # WebSocket frame dumps
        "websockets": logging.DEBUG if debug else logging.WARNING,
        "httpx": logging.WARNING,
        "httpcore": logging.WARNING,
        "mcp": logging.DEBUG if debug else logging.WARNING,
    }


def setup_logging(level: str = "INFO", debug: bool = False, stream: Optional[TextIO] = None) -> None:
    """
    Configure logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        debug: Enable debug mode with verbose formatting
        stream: Log destination; defaults to stderr and must never be stdout
    """
    stream = stream or sys.stderr
    if stream is sys.stdout:
        raise ValueError("stdout is reserved for the MCP stdio transport")

    log_level = logging.DEBUG if debug else getattr(logging, level.upper(), logging.INFO)

    logging.basicConfig(
        level=log_level,
        format=DEBUG_LOG_FORMAT if debug else LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[logging.StreamHandler(stream)],
        force=True,
    )

    for name, logger_level in _library_levels(log_level, debug).items():
        logging.getLogger(name).setLevel(logger_level)
