"""Typer CLI interface for Clueprint."""

import asyncio
import logging
from typing import Any, Dict, Optional

import httpx
import typer
import uvicorn
from rich.console import Console
from rich.panel import Panel

from .broker import BrokerConfig, SessionBroker
from .config import Settings
from .logging_config import setup_logging
from .main import create_app
from .mcp_server import create_mcp_server
from .tools import ToolHandlers

app = typer.Typer(
    name="clueprint",
    help="Clueprint - let your AI assistant see the page in your browser",
    add_completion=False,
)
# stdout carries the MCP protocol; everything human-readable goes to stderr
console = Console(stderr=True)
logger = logging.getLogger(__name__)


async def check_service_running(host: str, port: int) -> bool:
    """Check if a Clueprint server already owns the port."""
    try:
        async with httpx.AsyncClient() as client:
            resp = await client.get(f"http://{host}:{port}/health", timeout=2.0)
            return resp.status_code == 200 and resp.json().get("service") == "clueprint"
    except (httpx.HTTPError, ValueError):
        return False


async def run_service(settings: Settings, with_websocket: bool = True) -> None:
    """
    Run the MCP stdio server and the extension WebSocket server in one loop.

    Returns when the assistant closes stdin; pending requests are cancelled
    and the WebSocket server is stopped.
    """
    broker = SessionBroker(BrokerConfig.from_settings(settings))
    handlers = ToolHandlers.from_settings(broker, settings)
    mcp = create_mcp_server(handlers)
    broker.start()

    server: Optional[uvicorn.Server] = None
    server_task: Optional[asyncio.Task[None]] = None
    if with_websocket:
        config = uvicorn.Config(
            create_app(broker, settings),
            host=settings.HOST,
            port=settings.PORT,
            log_level="debug" if settings.DEBUG else "info",
            access_log=settings.DEBUG,
            # Keep our stderr logging; uvicorn's default config writes to stdout
            log_config=None,
        )
        server = uvicorn.Server(config)
        server_task = asyncio.create_task(server.serve())

    try:
        await mcp.run_stdio_async()
    finally:
        logger.info("Assistant disconnected, shutting down")
        broker.cancel_all_pending()
        if server is not None and server_task is not None:
            server.should_exit = True
            await server_task
        await broker.shutdown()


@app.command()
def serve(
    port: Optional[int] = typer.Option(None, "--port", help="WebSocket port for the extension"),
    host: Optional[str] = typer.Option(None, "--host", help="Bind address"),
    debug: bool = typer.Option(False, "--debug", help="Enable debug logging"),
):
    """Start the MCP server (stdio) and the extension WebSocket server."""
    overrides: Dict[str, Any] = {}
    if port is not None:
        overrides["PORT"] = port
    if host is not None:
        overrides["HOST"] = host
    if debug:
        overrides["DEBUG"] = True
    settings = Settings(**overrides)

    setup_logging(level=settings.LOG_LEVEL, debug=settings.DEBUG)

    with_websocket = True
    if asyncio.run(check_service_running(settings.HOST, settings.PORT)):
        console.print(
            f"[yellow]Warning:[/yellow] Clueprint already running on port {settings.PORT}; "
            "starting without a WebSocket server (extension features unavailable here)"
        )
        with_websocket = False

    console.print(
        Panel.fit(
            f"[bold]Clueprint MCP Server[/bold]\n\n"
            f"📡 WebSocket: {f'ws://{settings.HOST}:{settings.PORT}' if with_websocket else 'disabled'}\n"
            f"🔌 MCP: stdio\n"
            f"🔍 Debug: {'enabled' if settings.DEBUG else 'disabled'}",
            border_style="green",
        )
    )

    try:
        asyncio.run(run_service(settings, with_websocket=with_websocket))
    except KeyboardInterrupt:
        console.print("\n[yellow]Shut down[/yellow]")


@app.command()
def status(
    port: Optional[int] = typer.Option(None, "--port", help="WebSocket port to query"),
    host: Optional[str] = typer.Option(None, "--host", help="Host to query"),
):
    """Show whether the server is running and the extension is connected."""
    settings = Settings()
    host = host or settings.HOST
    port = port or settings.PORT

    try:
        resp = httpx.get(f"http://{host}:{port}/health", timeout=2.0)
        resp.raise_for_status()
        health = resp.json()
    except (httpx.HTTPError, ValueError) as e:
        console.print(f"[red]✗[/red] Clueprint is not running on {host}:{port} ({e.__class__.__name__})")
        raise typer.Exit(1)

    connected = health.get("extension_connected")
    console.print(
        Panel.fit(
            f"[bold]Clueprint[/bold] on {host}:{port}\n\n"
            f"Extension: {'[green]connected[/green]' if connected else '[yellow]not connected[/yellow]'}\n"
            f"Recording: {health.get('recording')}\n"
            f"Pending requests: {health.get('pending_requests')}\n"
            f"Snapshots: {health.get('snapshots')}",
            border_style="green" if connected else "yellow",
        )
    )


if __name__ == "__main__":
    app()
