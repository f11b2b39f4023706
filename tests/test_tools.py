"""Tests for the MCP tool handlers."""

import asyncio

import pytest
from conftest import answer, connect, sent_command

from clueprint.models.context import BrowserContext, ConsoleEntry, NetworkEntry
from clueprint.tools import ToolHandlers, merge_browser_context


@pytest.fixture
def handlers(broker):
    return ToolHandlers(broker)


def select_element(broker, clock, age_seconds: float = 0, **element):
    element = {"selector": "#buy", "tag": "button", "id": "buy", "classes": ["btn", "primary"], **element}
    broker.on_extension_message(
        "ext_1",
        {
            "type": "ELEMENT_SELECTED",
            "payload": {"element": element, "timestamp": (clock.now - age_seconds) * 1000},
        },
    )


# ---------------------------------------------------------------------------
# inspect

@pytest.mark.asyncio
async def test_inspect_without_extension_is_an_error(handlers):
    response = await handlers.inspect()

    assert response.is_error
    assert "Browser extension not connected" in response.text


@pytest.mark.asyncio
async def test_inspect_with_nothing_selected(handlers, broker, connection):
    task = asyncio.create_task(handlers.inspect())
    command = await answer(broker, connection, "SELECTION_RESPONSE", None)

    response = await task

    assert command["type"] == "GET_SELECTION"
    assert response.is_error
    assert "Nothing selected" in response.text


@pytest.mark.asyncio
async def test_inspect_uses_pushed_selection(handlers, broker, connection, clock):
    """A selection pushed by the extension is reported without a round trip."""
    select_element(broker, clock, text="Buy now")

    response = await handlers.inspect()

    assert not response.is_error
    assert response.text.startswith("ELEMENT: button#buy.btn.primary")
    assert 'TEXT: "Buy now"' in response.text
    assert "Selection is" not in response.text
    connection.send.assert_not_awaited()


@pytest.mark.asyncio
async def test_inspect_fetches_selection_from_extension(handlers, broker, connection):
    task = asyncio.create_task(handlers.inspect())
    await answer(
        broker,
        connection,
        "SELECTION_RESPONSE",
        {"mode": "inspect", "element": {"selector": "#nav", "tag": "nav"}},
    )

    response = await task

    assert response.text.startswith("ELEMENT: nav")


@pytest.mark.asyncio
async def test_inspect_warns_on_stale_selection(handlers, broker, connection, clock):
    select_element(broker, clock, age_seconds=120)

    response = await handlers.inspect()

    assert "⚠️ Selection is 120s old" in response.text


@pytest.mark.asyncio
async def test_inspect_correlates_buffered_console_errors(handlers, broker, connection, clock):
    broker.on_extension_message(
        "ext_1",
        {
            "type": "CONSOLE_EVENT",
            "payload": {"type": "error", "message": "Cannot read price of #buy", "timestamp": clock.now * 1000 - 1000},
        },
    )
    select_element(broker, clock)

    response = await handlers.inspect()

    assert "BROWSER CONTEXT:" in response.text
    assert "DIAGNOSIS:" in response.text
    assert "  • Cannot read price of #buy" in response.text


@pytest.mark.asyncio
async def test_inspect_repeated_error_counts_from_latest_occurrence(handlers, broker, connection, clock):
    """An error repeating right before the capture is related even if it first fired long ago."""
    error = {"type": "error", "message": "Cannot render .price-card", "source": "app.js"}
    broker.on_extension_message("ext_1", {"type": "CONSOLE_EVENT", "payload": {**error, "timestamp": clock.now * 1000}})
    clock.advance(20)
    broker.on_extension_message("ext_1", {"type": "CONSOLE_EVENT", "payload": {**error, "timestamp": clock.now * 1000}})
    clock.advance(0.5)
    select_element(broker, clock, selector=".price-card", tag="div", id=None, classes=["price-card"])

    response = await handlers.inspect()

    assert "  • Cannot render .price-card (app.js) x2" in response.text
    assert "Console error" not in response.text
    assert broker.console.items()[0].timestamp == (clock.now - 0.5) * 1000


@pytest.mark.asyncio
async def test_inspect_rejects_bad_css_detail(handlers, broker, connection, clock):
    select_element(broker, clock)

    response = await handlers.inspect(css_detail=5)

    assert response.is_error
    assert "cssDetail" in response.text


@pytest.mark.asyncio
async def test_inspect_screenshot_only_on_request(handlers, broker, connection, clock):
    broker.on_extension_message(
        "ext_1",
        {
            "type": "ELEMENT_SELECTED",
            "payload": {
                "element": {"selector": "#buy", "tag": "button"},
                "timestamp": clock.now * 1000,
                "screenshot": "data:image/jpeg;base64,QUJD",
            },
        },
    )

    without = await handlers.inspect()
    with_screenshot = await handlers.inspect(include_screenshot=True)

    assert [c.type for c in without.content] == ["text"]
    assert [c.type for c in with_screenshot.content] == ["text", "image"]
    assert with_screenshot.content[1].data == "QUJD"


@pytest.mark.asyncio
async def test_inspect_region_always_includes_screenshot(handlers, broker, connection):
    broker.on_extension_message(
        "ext_1",
        {
            "type": "REGION_SELECTED",
            "payload": {
                "region": {"width": 400, "height": 300},
                "screenshot": "data:image/jpeg;base64,QUJD",
                "elements": [{"selector": "div.card", "tag": "div", "text": "Pricing"}],
            },
        },
    )

    response = await handlers.inspect()

    assert response.text.startswith("REGION: 400×300px")
    assert response.content[1].type == "image"


# ---------------------------------------------------------------------------
# audit

@pytest.mark.asyncio
async def test_audit_reports_page_diagnostics(handlers, broker, connection):
    task = asyncio.create_task(handlers.audit(include_warnings=True))
    command = await answer(
        broker,
        connection,
        "DIAGNOSTICS_RESPONSE",
        {
            "url": "https://app.test/checkout?step=2",
            "errors": [{"message": "TypeError: x is undefined", "source": "app.js:10", "count": 3}],
            "networkFailures": [{"url": "https://api.test/cart", "method": "POST", "status": 500, "statusText": "Server Error"}],
            "warnings": ["Deprecated API"],
        },
    )

    response = await task

    assert command["payload"] == {"includeWarnings": True, "includePerformance": True}
    assert response.text.startswith("PAGE DIAGNOSTICS: app.test/checkout")
    assert "ERRORS (1):" in response.text
    assert "(×3)" in response.text
    assert "POST /cart → 500 Server Error" in response.text
    assert "⚠️ Deprecated API" in response.text


@pytest.mark.asyncio
async def test_audit_timeout_is_an_error(broker, connection):
    handlers = ToolHandlers(broker)
    broker.config.request_timeout = 0.05

    response = await handlers.audit()

    assert response.is_error
    assert "Request timed out: GET_DIAGNOSTICS" in response.text
    assert broker.pending_count == 0


# ---------------------------------------------------------------------------
# Flow recording

@pytest.mark.asyncio
async def test_start_flow_recording(handlers, broker, connection):
    task = asyncio.create_task(handlers.start_flow_recording())
    command = await answer(broker, connection, "RECORDING_STARTED", None)

    response = await task

    assert command["type"] == "START_RECORDING"
    assert response.text.startswith("Recording started!")
    assert broker.is_recording


@pytest.mark.asyncio
async def test_start_flow_recording_twice(handlers, broker, connection):
    broker.start_recording()

    response = await handlers.start_flow_recording()

    assert response.is_error
    assert "already in progress" in response.text
    connection.send.assert_not_awaited()


@pytest.mark.asyncio
async def test_start_flow_recording_rolls_back_on_extension_error(handlers, broker, connection):
    task = asyncio.create_task(handlers.start_flow_recording())
    await answer(broker, connection, "RECORDING_STARTED", error="Cannot record chrome:// pages")

    response = await task

    assert response.is_error
    assert not broker.is_recording


@pytest.mark.asyncio
async def test_start_flow_recording_without_extension(handlers, broker):
    response = await handlers.start_flow_recording()

    assert response.is_error
    assert not broker.is_recording


@pytest.mark.asyncio
async def test_stop_flow_recording_when_idle(handlers, broker, connection):
    response = await handlers.stop_flow_recording()

    assert response.is_error
    assert "No recording in progress" in response.text


@pytest.mark.asyncio
async def test_stop_flow_recording_adopts_extension_events(handlers, broker, connection):
    broker.start_recording()
    task = asyncio.create_task(handlers.stop_flow_recording())
    command = await answer(
        broker,
        connection,
        "RECORDING_RESPONSE",
        {"events": [{"time": 100, "type": "click", "data": {"selector": "#save", "text": "Save"}}]},
    )

    response = await task

    assert command["type"] == "STOP_RECORDING"
    assert response.text.startswith("FLOW RECORDING")
    assert "CLICK TARGETS:" in response.text
    assert not broker.is_recording
    assert broker.last_recording.summary.clicks == 1


@pytest.mark.asyncio
async def test_stop_flow_recording_with_extension_gone(handlers, broker, connection):
    """Streamed events still produce a recording when the stop cannot be confirmed."""
    start = broker.start_recording()
    broker.on_extension_message(
        "ext_1",
        {"type": "FLOW_EVENT", "payload": {"time": start + 100, "type": "click", "data": {"selector": "#save"}}},
    )
    broker.on_extension_message(
        "ext_1",
        {"type": "FLOW_EVENT", "payload": {"time": start + 400, "type": "console_error", "data": {"message": "boom"}}},
    )
    broker.on_connection_closed("ext_1")

    response = await handlers.stop_flow_recording()

    assert not response.is_error
    assert "Root cause: Click on #save" in response.text
    assert broker.last_recording.summary.total_events == 2


@pytest.mark.asyncio
async def test_stop_flow_recording_hides_successful_requests_by_default(handlers, broker, connection):
    start = broker.start_recording()
    broker.on_extension_message(
        "ext_1",
        {
            "type": "NETWORK_EVENT",
            "payload": {"url": "https://api.test/items", "status": 200, "timestamp": start + 50},
        },
    )
    broker.on_connection_closed("ext_1")

    response = await handlers.stop_flow_recording()

    assert "NETWORK ACTIVITY:" not in response.text
    assert "items" not in response.text.split("DIAGNOSIS:")[0]


@pytest.mark.asyncio
async def test_recording_tool_states(handlers, broker):
    no_recording = await handlers.recording()
    broker.start_recording()
    in_progress = await handlers.recording()
    broker.stop_recording()
    done = await handlers.recording()

    assert no_recording.is_error
    assert "No recording available" in no_recording.text
    assert in_progress.is_error
    assert "still in progress" in in_progress.text
    assert not done.is_error
    assert done.text.startswith("FLOW RECORDING")


# ---------------------------------------------------------------------------
# recent_activity

@pytest.mark.asyncio
async def test_recent_activity_empty_without_extension(handlers):
    response = await handlers.recent_activity()

    assert not response.is_error
    assert response.text == "No browser activity in the last 30s."


@pytest.mark.asyncio
async def test_recent_activity_from_local_buffer(handlers, broker, connection):
    now = broker.now_ms()
    broker.on_extension_message(
        "ext_1", {"type": "FLOW_EVENT", "payload": {"time": now - 2000, "type": "click", "data": {"selector": "#a"}}}
    )

    response = await handlers.recent_activity()

    assert response.text.startswith("RECENT ACTIVITY (last 30s)")
    connection.send.assert_not_awaited()


@pytest.mark.asyncio
async def test_recent_activity_falls_back_to_extension(handlers, broker, connection):
    task = asyncio.create_task(handlers.recent_activity())
    command = await answer(
        broker,
        connection,
        "RECENT_ACTIVITY_RESPONSE",
        {"events": [{"time": 0, "type": "scroll", "data": {"direction": "down", "scrollPercent": 40}}]},
    )

    response = await task

    assert command["type"] == "GET_RECENT_ACTIVITY"
    assert "SCROLL BEHAVIOR:" in response.text


# ---------------------------------------------------------------------------
# DOM snapshots

async def take_snapshot(handlers, broker, connection, elements, selector=None):
    task = asyncio.create_task(handlers.snapshot_dom(selector=selector))
    command = await sent_command(connection)
    broker.on_extension_message(
        "ext_1",
        {"type": "SNAPSHOT_RESPONSE", "id": command["id"], "payload": {"url": "https://app.test", "elements": elements}},
    )
    return command, await task


@pytest.mark.asyncio
async def test_snapshot_then_diff(handlers, broker, connection):
    command, first = await take_snapshot(
        handlers, broker, connection, {"#a": {"classes": ["x"]}, "#b": {"classes": ["btn", "primary"]}}
    )
    connection.send.reset_mock()
    _, second = await take_snapshot(
        handlers, broker, connection, {"#b": {"classes": ["btn", "disabled"]}, "#c": {}}
    )

    assert "payload" not in command
    assert "ID: snap_1" in first.text
    assert "ID: snap_2" in second.text

    response = await handlers.diff_dom_snapshots("snap_1", "snap_2")

    assert response.text.startswith("DOM DIFF: snap_1 → snap_2")
    assert "Changes: 3" in response.text
    assert "- REMOVED: #a" in response.text
    assert "~ CHANGED: #b" in response.text
    assert "   + classes: disabled" in response.text
    assert "+ ADDED: #c" in response.text


@pytest.mark.asyncio
async def test_snapshot_subtree_sends_selector(handlers, broker, connection):
    command, response = await take_snapshot(handlers, broker, connection, {}, selector="#main")

    assert command["payload"] == {"selector": "#main"}
    assert "Elements: 0" in response.text


@pytest.mark.asyncio
async def test_snapshot_malformed_payload(handlers, broker, connection):
    task = asyncio.create_task(handlers.snapshot_dom())
    await answer(broker, connection, "SNAPSHOT_RESPONSE", {"elements": {"#a": {"classes": 5}}})

    response = await task

    assert response.is_error
    assert "unexpected shape" in response.text
    assert len(broker.snapshots) == 0


@pytest.mark.asyncio
async def test_diff_unknown_snapshot(handlers):
    response = await handlers.diff_dom_snapshots("snap_1", "nope")

    assert response.is_error
    assert "Snapshot not found: snap_1" in response.text


@pytest.mark.asyncio
async def test_diff_requires_both_ids(handlers):
    response = await handlers.diff_dom_snapshots("", "snap_2")

    assert response.is_error
    assert '"before" and "after"' in response.text


# ---------------------------------------------------------------------------
# Context merging

def test_merge_browser_context_skips_duplicates_and_non_failures():
    context = BrowserContext(
        errors=[ConsoleEntry(type="error", message="boom", source="a.js")],
        network_failures=[NetworkEntry(url="https://api.test/x", status=500)],
    )
    console = [
        ConsoleEntry(type="error", message="boom", source="a.js"),
        ConsoleEntry(type="warn", message="careful"),
        ConsoleEntry(type="error", message="new error"),
    ]
    network = [
        NetworkEntry(url="https://api.test/x", status=500),
        NetworkEntry(url="https://api.test/ok", status=200),
        NetworkEntry(url="https://api.test/blocked", status=0),
    ]

    merged = merge_browser_context(context, console, network)

    assert [e.message for e in merged.errors] == ["boom", "new error"]
    assert [f.url for f in merged.network_failures] == ["https://api.test/x", "https://api.test/blocked"]
    assert len(context.errors) == 1


def test_handlers_from_settings(broker):
    from clueprint.config import Settings

    handlers = ToolHandlers.from_settings(broker, Settings(SELECTION_STALE_SECONDS=5, INCLUDE_SCREENSHOTS=False))

    assert handlers.selection_stale_seconds == 5
    assert handlers.include_screenshots is False


def test_connect_helper_installs_connection(broker):
    connection = connect(broker, "ext_7")

    assert broker.is_authoritative(connection.connection_id)
