"""MCP server exposing the browser tools and prompts to the assistant.

Transport: stdio. Tool argument names are camelCase because that is what
the assistant sends on the wire.
"""

import base64
import logging
from typing import Annotated, List, Optional, Union

from mcp.server.fastmcp import FastMCP, Image
from mcp.server.fastmcp.exceptions import ToolError
from pydantic import Field

from .models.tool import ToolResponse
from .tools import ToolHandlers

logger = logging.getLogger(__name__)

SERVER_NAME = "clueprint"

ToolResult = List[Union[str, Image]]


def to_mcp_result(response: ToolResponse) -> ToolResult:
    """
    Convert a ToolResponse into FastMCP content.

    Raises:
        ToolError: For error responses, so the client sees ``isError``
    """
    if response.is_error:
        raise ToolError(response.text)

    blocks: ToolResult = []
    for item in response.content:
        if item.type == "image" and item.data:
            blocks.append(Image(data=base64.b64decode(item.data), format="jpeg"))
        elif item.text is not None:
            blocks.append(item.text)
    return blocks


def create_mcp_server(handlers: ToolHandlers) -> FastMCP:
    """Create and configure the FastMCP server instance."""
    mcp = FastMCP(SERVER_NAME)

    @mcp.tool(name="inspect")
    async def inspect(
        includeScreenshot: Annotated[
            bool, Field(description="Include a screenshot (always included for region selections)")
        ] = False,
        cssDetail: Annotated[
            int,
            Field(
                ge=0,
                le=3,
                description="CSS detail for element selections: 0=none, 1=layout+visual, "
                "2=+typography, 3=full computed",
            ),
        ] = 1,
    ) -> ToolResult:
        """Get detailed information about what the user selected in the browser: a single
        element (Option+Click) or a region (Cmd+Shift+Drag). Call when the user says
        "clueprint inspect" or mentions selecting or clicking something in the browser."""
        return to_mcp_result(
            await handlers.inspect(include_screenshot=includeScreenshot, css_detail=cssDetail)
        )

    @mcp.tool(name="audit")
    async def audit(
        includeWarnings: Annotated[bool, Field(description="Include warnings, not just errors")] = False,
        includePerformance: Annotated[
            bool, Field(description="Include performance metrics (LCP, CLS, long tasks)")
        ] = True,
    ) -> ToolResult:
        """Get page diagnostics: console errors, network failures, performance metrics and
        accessibility issues. Call when the user says "clueprint audit" or asks what is
        wrong with the page."""
        return to_mcp_result(
            await handlers.audit(include_warnings=includeWarnings, include_performance=includePerformance)
        )

    @mcp.tool(name="start_flow_recording")
    async def start_flow_recording() -> ToolResult:
        """Start recording user actions, network requests and errors in the browser. Call
        when the user wants to show a sequence of steps or reproduce a bug."""
        return to_mcp_result(await handlers.start_flow_recording())

    @mcp.tool(name="stop_flow_recording")
    async def stop_flow_recording(
        includeSuccessfulRequests: Annotated[
            bool, Field(description="Include successful (2xx) network requests")
        ] = False,
    ) -> ToolResult:
        """Stop the current flow recording and return the captured timeline of events,
        network requests and errors, with a diagnosis."""
        return to_mcp_result(
            await handlers.stop_flow_recording(include_successful_requests=includeSuccessfulRequests)
        )

    @mcp.tool(name="recording")
    async def recording() -> ToolResult:
        """Get the most recent flow recording. Call when the user says "clueprint recording"
        or asks about what was recorded."""
        return to_mcp_result(await handlers.recording())

    @mcp.tool(name="recent_activity")
    async def recent_activity() -> ToolResult:
        """Get what happened in the browser over the last few seconds (clicks, requests,
        errors) without having started a recording."""
        return to_mcp_result(await handlers.recent_activity())

    @mcp.tool(name="snapshot_dom")
    async def snapshot_dom(
        selector: Annotated[
            Optional[str], Field(description="CSS selector to snapshot a subtree instead of the full page")
        ] = None,
    ) -> ToolResult:
        """Take a snapshot of the current DOM state for later comparison. Returns a snapshot ID."""
        return to_mcp_result(await handlers.snapshot_dom(selector=selector))

    @mcp.tool(name="diff_dom_snapshots")
    async def diff_dom_snapshots(
        before: Annotated[str, Field(description='ID of the "before" snapshot')],
        after: Annotated[str, Field(description='ID of the "after" snapshot')],
    ) -> ToolResult:
        """Compare two DOM snapshots to see what changed (classes, sizes, inline styles)."""
        return to_mcp_result(await handlers.diff_dom_snapshots(before=before, after=after))

    @mcp.prompt(name="inspect", description="Analyze the element or region selected in the browser")
    def inspect_prompt() -> str:
        return (
            "Use the clueprint inspect tool to get what I selected in the browser, "
            "then explain what is wrong with it and how to fix it."
        )

    @mcp.prompt(
        name="audit",
        description="Check the current page for errors, network failures, and performance issues",
    )
    def audit_prompt() -> str:
        return (
            "Use the clueprint audit tool to check the current page, "
            "then summarize the problems it finds in order of severity."
        )

    @mcp.prompt(name="recording", description="Get and analyze the most recent flow recording from the browser")
    def recording_prompt() -> str:
        return (
            "Use the clueprint recording tool to get my most recent flow recording, "
            "then walk through what happened and what likely went wrong."
        )

    logger.debug(f"MCP server '{SERVER_NAME}' configured")
    return mcp
