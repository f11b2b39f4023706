"""Tool handlers: one coroutine per MCP tool, each returning a ToolResponse."""

import logging
from typing import Any, Awaitable, Callable, List, Optional

from pydantic import TypeAdapter, ValidationError

from .broker import SessionBroker
from .config import Settings
from .diagnosis import diagnose_capture
from .diff_engine import diff
from .exceptions import (
    BrokerError,
    ClueprintError,
    InvalidToolParamsError,
    NoActiveRecordingError,
    NothingSelectedError,
)
from .formatting import (
    format_diagnostics_report,
    format_diff_report,
    format_element_report,
    format_flow_report,
    format_region_report,
    format_snapshot_report,
)
from .models.context import (
    BrowserContext,
    ConsoleEntry,
    FreeSelectCapture,
    InspectCapture,
    NetworkEntry,
    PageDiagnostics,
    Selection,
)
from .models.flow import FlowRecording
from .models.messages import Command
from .models.tool import ToolResponse

logger = logging.getLogger(__name__)

_selection_adapter: TypeAdapter[Selection] = TypeAdapter(Selection)

RECORDING_STARTED_TEXT = (
    "Recording started! Now:\n"
    "1. Perform the actions you want to capture in the browser\n"
    "2. End by selecting the problem element (Option+Click)\n"
    "3. Tell me \"stop recording\" when done"
)


def merge_browser_context(
    context: BrowserContext,
    console: List[ConsoleEntry],
    network: List[NetworkEntry],
) -> BrowserContext:
    """
    Add broker-buffered console errors and network failures to a capture's context.

    Entries the capture already carries (same message and source, or same
    url and status) are not repeated.
    """
    errors = list(context.errors)
    seen_errors = {(e.message, e.source) for e in errors}
    for entry in console:
        if entry.type == "error" and (entry.message, entry.source) not in seen_errors:
            errors.append(entry)
            seen_errors.add((entry.message, entry.source))

    failures = list(context.network_failures)
    seen_failures = {(f.url, f.status) for f in failures}
    for entry in network:
        if entry.failed and (entry.url, entry.status) not in seen_failures:
            failures.append(entry)
            seen_failures.add((entry.url, entry.status))

    return BrowserContext(
        errors=errors,
        network_failures=failures,
        layout_shifts=list(context.layout_shifts),
    )


class ToolHandlers:
    """
    Implements the assistant-facing tools on top of a SessionBroker.

    Every public coroutine returns a ToolResponse; Clueprint errors become
    error responses (``isError``) instead of propagating.
    """

    def __init__(
        self,
        broker: SessionBroker,
        include_screenshots: bool = True,
        selection_stale_seconds: float = 60,
        capture_window_ms: float = 5000,
    ):
        self.broker = broker
        self.include_screenshots = include_screenshots
        self.selection_stale_seconds = selection_stale_seconds
        self.capture_window_ms = capture_window_ms

    @classmethod
    def from_settings(cls, broker: SessionBroker, settings: Settings) -> "ToolHandlers":
        return cls(
            broker,
            include_screenshots=settings.INCLUDE_SCREENSHOTS,
            selection_stale_seconds=settings.SELECTION_STALE_SECONDS,
            capture_window_ms=settings.CAPTURE_WINDOW_MS,
        )

    async def _run(self, tool_name: str, handler: Callable[[], Awaitable[ToolResponse]]) -> ToolResponse:
        try:
            return await handler()
        except ClueprintError as e:
            logger.info(f"[{tool_name}] {e.code}: {e.message.splitlines()[0]}")
            return ToolResponse.error(e.message)
        except ValidationError as e:
            logger.warning(f"[{tool_name}] Malformed extension payload: {e}")
            return ToolResponse.error(
                f"The extension returned data in an unexpected shape ({e.error_count()} validation error(s)). "
                "Make sure the extension and server versions match."
            )
        except Exception as e:
            logger.error(f"[{tool_name}] Unexpected error: {e}", exc_info=True)
            return ToolResponse.error(f"Internal error: {e}")

    # ------------------------------------------------------------------
    # inspect

    async def inspect(self, include_screenshot: bool = False, css_detail: int = 1) -> ToolResponse:
        """Report on the element or region the user selected."""
        return await self._run("inspect", lambda: self._inspect(include_screenshot, css_detail))

    async def _inspect(self, include_screenshot: bool, css_detail: int) -> ToolResponse:
        if css_detail not in (0, 1, 2, 3):
            raise InvalidToolParamsError(f"cssDetail must be 0, 1, 2 or 3 (got {css_detail})")

        selection = self.broker.current_selection
        if selection is None:
            payload = await self.broker.submit_tool_call("inspect", Command.GET_SELECTION)
            if not payload:
                raise NothingSelectedError()
            selection = _selection_adapter.validate_python(payload)

        if isinstance(selection, FreeSelectCapture):
            screenshot = selection.screenshot if self.include_screenshots else None
            return ToolResponse.from_text(format_region_report(selection), screenshot)

        capture = self._with_diagnosis(selection)
        report = format_element_report(capture, css_detail=css_detail)

        age = self._selection_age_seconds(capture)
        if age is not None and age > self.selection_stale_seconds:
            report += (
                f"\n\n⚠️ Selection is {round(age)}s old. The page may have changed. "
                "Select again for fresh data."
            )

        screenshot = capture.screenshot if include_screenshot and self.include_screenshots else None
        return ToolResponse.from_text(report, screenshot)

    def _with_diagnosis(self, capture: InspectCapture) -> InspectCapture:
        context = merge_browser_context(
            capture.browser_context,
            self.broker.console.items(),
            self.broker.network.items(),
        )
        diagnosis = diagnose_capture(
            capture.timestamp or self.broker.now_ms(),
            capture.element,
            context,
            window_ms=self.capture_window_ms,
            existing=capture.diagnosis,
            source_info=capture.source_info,
        )
        return capture.model_copy(update={"browser_context": context, "diagnosis": diagnosis})

    def _selection_age_seconds(self, capture: InspectCapture) -> Optional[float]:
        if capture.timestamp:
            return (self.broker.now_ms() - capture.timestamp) / 1000
        if self.broker.selection_received_at is not None:
            return self.broker.now_ms() / 1000 - self.broker.selection_received_at
        return None

    # ------------------------------------------------------------------
    # audit

    async def audit(self, include_warnings: bool = False, include_performance: bool = True) -> ToolResponse:
        """Whole-page health check."""

        async def handler() -> ToolResponse:
            payload = await self.broker.submit_tool_call(
                "audit",
                Command.GET_DIAGNOSTICS,
                payload={"includeWarnings": include_warnings, "includePerformance": include_performance},
            )
            diagnostics = PageDiagnostics.model_validate(payload or {})
            return ToolResponse.from_text(
                format_diagnostics_report(
                    diagnostics,
                    include_warnings=include_warnings,
                    include_performance=include_performance,
                )
            )

        return await self._run("audit", handler)

    # ------------------------------------------------------------------
    # Flow recording

    async def start_flow_recording(self) -> ToolResponse:
        async def handler() -> ToolResponse:
            self.broker.start_recording()
            try:
                await self.broker.submit_tool_call("start_flow_recording", Command.START_RECORDING)
            except ClueprintError:
                self.broker.abort_recording()
                raise
            return ToolResponse.from_text(RECORDING_STARTED_TEXT)

        return await self._run("start_flow_recording", handler)

    async def stop_flow_recording(self, include_successful_requests: bool = False) -> ToolResponse:
        async def handler() -> ToolResponse:
            if not self.broker.is_recording:
                raise NoActiveRecordingError()

            payload: Any = None
            try:
                payload = await self.broker.submit_tool_call("stop_flow_recording", Command.STOP_RECORDING)
            except BrokerError as e:
                logger.warning(f"Extension did not confirm stop ({e.code}); finalizing with streamed events")

            try:
                recording = self.broker.stop_recording(extension_payload=payload)
            except NoActiveRecordingError:
                # Stopped from the extension while the command was in flight
                if self.broker.last_recording is None:
                    raise
                recording = self.broker.last_recording

            return ToolResponse.from_text(
                format_flow_report(recording, include_successful_requests=include_successful_requests)
            )

        return await self._run("stop_flow_recording", handler)

    async def recording(self) -> ToolResponse:
        """The most recent completed recording."""

        async def handler() -> ToolResponse:
            recording = self.broker.last_recording
            if recording is None:
                if self.broker.is_recording:
                    return ToolResponse.error(
                        "Recording is still in progress. Stop it first with stop_flow_recording."
                    )
                return ToolResponse.error("No recording available. Start one with start_flow_recording.")
            return ToolResponse.from_text(format_flow_report(recording))

        return await self._run("recording", handler)

    async def recent_activity(self) -> ToolResponse:
        """What happened in the browser during the activity window."""

        async def handler() -> ToolResponse:
            recording: Optional[FlowRecording] = self.broker.recent_activity()
            if recording is None and self.broker.is_connected:
                payload = await self.broker.submit_tool_call("recent_activity", Command.GET_RECENT_ACTIVITY)
                if payload:
                    recording = FlowRecording.model_validate(payload)

            window = self.broker.config.activity_window_seconds
            if recording is None or not recording.events:
                return ToolResponse.from_text(f"No browser activity in the last {window:g}s.")
            return ToolResponse.from_text(
                format_flow_report(recording, title=f"RECENT ACTIVITY (last {window:g}s)")
            )

        return await self._run("recent_activity", handler)

    # ------------------------------------------------------------------
    # DOM snapshots

    async def snapshot_dom(self, selector: Optional[str] = None) -> ToolResponse:
        async def handler() -> ToolResponse:
            payload = await self.broker.submit_tool_call(
                "snapshot_dom",
                Command.SNAPSHOT_DOM,
                payload={"selector": selector} if selector else None,
            )
            snapshot = self.broker.store_snapshot(payload)
            return ToolResponse.from_text(format_snapshot_report(snapshot))

        return await self._run("snapshot_dom", handler)

    async def diff_dom_snapshots(self, before: str, after: str) -> ToolResponse:
        async def handler() -> ToolResponse:
            if not before or not after:
                raise InvalidToolParamsError('Both "before" and "after" snapshot IDs are required.')
            result = diff(self.broker.snapshots, before, after)
            return ToolResponse.from_text(format_diff_report(result))

        return await self._run("diff_dom_snapshots", handler)
