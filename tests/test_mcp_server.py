"""Tests for the MCP server wiring."""

import pytest
from mcp.server.fastmcp import Image
from mcp.server.fastmcp.exceptions import ToolError

from clueprint.mcp_server import create_mcp_server, to_mcp_result
from clueprint.models.tool import ToolResponse
from clueprint.tools import ToolHandlers


def test_to_mcp_result_text_and_image():
    response = ToolResponse.from_text("ELEMENT: button", screenshot="data:image/jpeg;base64,QUJD")

    blocks = to_mcp_result(response)

    assert blocks[0] == "ELEMENT: button"
    assert isinstance(blocks[1], Image)
    assert blocks[1].data == b"ABC"


def test_to_mcp_result_error_raises_tool_error():
    """Error responses surface to the client with isError set."""
    with pytest.raises(ToolError, match="Nothing selected"):
        to_mcp_result(ToolResponse.error("Nothing selected."))


@pytest.mark.asyncio
async def test_server_registers_every_tool(broker):
    mcp = create_mcp_server(ToolHandlers(broker))

    tools = {tool.name: tool for tool in await mcp.list_tools()}

    assert set(tools) == {
        "inspect",
        "audit",
        "start_flow_recording",
        "stop_flow_recording",
        "recording",
        "recent_activity",
        "snapshot_dom",
        "diff_dom_snapshots",
    }
    assert set(tools["inspect"].inputSchema["properties"]) == {"includeScreenshot", "cssDetail"}
    assert tools["diff_dom_snapshots"].inputSchema["required"] == ["before", "after"]


@pytest.mark.asyncio
async def test_server_registers_prompts(broker):
    mcp = create_mcp_server(ToolHandlers(broker))

    prompts = {prompt.name for prompt in await mcp.list_prompts()}

    assert prompts == {"inspect", "audit", "recording"}
